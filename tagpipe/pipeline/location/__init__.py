"""Location enrichment package."""

from .enricher import LocationEnricher
from .providers import (
    GeolocationProvider,
    HttpGeolocationProvider,
    NoGeolocation,
    StaticGeolocation,
)
from .timezones import coarse_location

__all__ = [
    'LocationEnricher',
    'GeolocationProvider',
    'HttpGeolocationProvider',
    'NoGeolocation',
    'StaticGeolocation',
    'coarse_location',
]
