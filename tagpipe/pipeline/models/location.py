"""Location models."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


PRECISE_GEO_FIELDS = ("geo_latitude", "geo_longitude", "geo_city", "geo_region", "geo_country")
COARSE_GEO_FIELDS = ("geo_continent_tz", "geo_country_tz", "geo_city_tz", "timezone")


class GeoLocation(BaseModel):
    """IP-derived location returned by a geolocation provider."""

    latitude: Optional[float] = None
    longitude: Optional[float] = None
    city: str = ""
    region: str = ""
    country: str = ""
    timestamp: Optional[int] = Field(default=None, description="Lookup time in ms since epoch")

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def to_record_fields(self) -> Dict[str, Any]:
        return {
            "geo_latitude": self.latitude,
            "geo_longitude": self.longitude,
            "geo_city": self.city,
            "geo_region": self.region,
            "geo_country": self.country,
        }


class CoarseLocation(BaseModel):
    """Location inferred from the local timezone only."""

    continent: str = ""
    country: str = ""
    city: str = ""
    timezone: str = ""

    def to_record_fields(self) -> Dict[str, Any]:
        return {
            "geo_continent_tz": self.continent,
            "geo_country_tz": self.country,
            "geo_city_tz": self.city,
            "timezone": self.timezone,
        }
