"""Shared helpers for the pipeline."""

from .clock import now_ms, now_seconds
from .url_tools import (
    extract_click_id,
    extract_etld_plus_one,
    get_hostname,
    get_query_param,
    is_same_site,
    is_same_site_referrer,
    page_location_without_params,
)

__all__ = [
    "now_ms",
    "now_seconds",
    "extract_click_id",
    "extract_etld_plus_one",
    "get_hostname",
    "get_query_param",
    "is_same_site",
    "is_same_site_referrer",
    "page_location_without_params",
]
