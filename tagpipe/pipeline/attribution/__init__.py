"""Attribution resolution package."""

from .resolver import (
    AttributionResolver,
    extract_utm_parameters,
    resolve_attribution,
    should_persist_attribution,
)
from .referrers import ReferrerType, classify_referrer

__all__ = [
    'AttributionResolver',
    'extract_utm_parameters',
    'resolve_attribution',
    'should_persist_attribution',
    'ReferrerType',
    'classify_referrer',
]
