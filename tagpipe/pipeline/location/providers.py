"""IP geolocation providers.

A provider returns a single optional ``GeoLocation``. ``HttpGeolocationProvider``
walks a chain of public lookup services and caches the first complete answer
in the user data store.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from ..models.location import GeoLocation
from ..storage.user_data import UserDataStore
from ..utils.clock import Clock, now_ms

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER_URLS = [
    "https://ipapi.co/json/",
    "https://ipinfo.io/json",
    "https://json.geoiplookup.io/",
]


class GeolocationProvider(ABC):
    """Interface for precise location lookups."""

    @abstractmethod
    async def lookup(self) -> Optional[GeoLocation]:
        """Return the visitor's location, or None when unavailable."""
        pass

    async def close(self) -> None:
        pass


class NoGeolocation(GeolocationProvider):
    """Provider used when no lookup service is configured."""

    async def lookup(self) -> Optional[GeoLocation]:
        return None


class StaticGeolocation(GeolocationProvider):
    """Provider returning a fixed location."""

    def __init__(self, location: Optional[GeoLocation]):
        self.location = location

    async def lookup(self) -> Optional[GeoLocation]:
        return self.location


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_provider_response(url: str, data: Dict[str, Any], timestamp: int) -> GeoLocation:
    """Normalize the response shapes of the supported services."""
    host = (urlparse(url).hostname or "").lower()

    if host.endswith("ipinfo.io") or "loc" in data:
        latitude = longitude = None
        loc = str(data.get("loc") or "")
        if "," in loc:
            lat_str, lon_str = loc.split(",", 1)
            latitude, longitude = _to_float(lat_str), _to_float(lon_str)
        return GeoLocation(
            latitude=latitude,
            longitude=longitude,
            city=data.get("city") or "",
            region=data.get("region") or "",
            country=data.get("country") or "",
            timestamp=timestamp,
        )

    return GeoLocation(
        latitude=_to_float(data.get("latitude")),
        longitude=_to_float(data.get("longitude")),
        city=data.get("city") or "",
        region=data.get("region") or "",
        country=data.get("country_name") or data.get("country") or "",
        timestamp=timestamp,
    )


class HttpGeolocationProvider(GeolocationProvider):
    """Chain of HTTP lookup services with a user data cache."""

    def __init__(
        self,
        urls: Optional[List[str]] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 5.0,
        cache: Optional[UserDataStore] = None,
        clock: Clock = now_ms,
    ):
        self.urls = list(urls or DEFAULT_PROVIDER_URLS)
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))
        self._owns_client = client is None
        self.cache = cache
        self.clock = clock

    async def lookup(self) -> Optional[GeoLocation]:
        if self.cache is not None:
            cached = self.cache.get_cached_location()
            if cached is not None:
                logger.debug("Using cached location")
                return cached

        for url in self.urls:
            try:
                response = await self.client.get(url)
                response.raise_for_status()
                location = parse_provider_response(url, response.json(), self.clock())
            except (httpx.HTTPError, ValueError) as e:
                logger.debug(f"Location service {url} failed, trying next: {e}")
                continue

            if not location.has_coordinates:
                logger.debug(f"Location service {url} returned incomplete coordinates")
                continue

            logger.debug(f"Location obtained from {url}")
            if self.cache is not None:
                self.cache.set_cached_location(location)
            return location

        logger.debug("All location services failed")
        return None

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()
