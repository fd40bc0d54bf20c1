"""Coarse location from an IANA timezone identifier.

The mapping is intentionally coarse: it never identifies more than the
timezone's reference city, so it is applied regardless of consent.
"""

import os
from typing import Optional

from ..models.location import CoarseLocation


TIMEZONE_COUNTRIES = {
    # Europe
    "Europe/Amsterdam": "Netherlands",
    "Europe/London": "United Kingdom",
    "Europe/Paris": "France",
    "Europe/Berlin": "Germany",
    "Europe/Rome": "Italy",
    "Europe/Madrid": "Spain",
    "Europe/Vienna": "Austria",
    "Europe/Brussels": "Belgium",
    "Europe/Zurich": "Switzerland",
    "Europe/Stockholm": "Sweden",
    "Europe/Oslo": "Norway",
    "Europe/Copenhagen": "Denmark",
    "Europe/Helsinki": "Finland",
    "Europe/Warsaw": "Poland",
    "Europe/Prague": "Czech Republic",
    "Europe/Budapest": "Hungary",
    "Europe/Athens": "Greece",
    "Europe/Lisbon": "Portugal",
    "Europe/Dublin": "Ireland",
    "Europe/Moscow": "Russia",
    "Europe/Kiev": "Ukraine",
    "Europe/Kyiv": "Ukraine",

    # Americas
    "America/New_York": "United States",
    "America/Los_Angeles": "United States",
    "America/Chicago": "United States",
    "America/Denver": "United States",
    "America/Phoenix": "United States",
    "America/Toronto": "Canada",
    "America/Vancouver": "Canada",
    "America/Montreal": "Canada",
    "America/Mexico_City": "Mexico",
    "America/Sao_Paulo": "Brazil",
    "America/Buenos_Aires": "Argentina",
    "America/Argentina/Buenos_Aires": "Argentina",
    "America/Santiago": "Chile",
    "America/Lima": "Peru",
    "America/Bogota": "Colombia",
    "America/Caracas": "Venezuela",

    # Asia
    "Asia/Tokyo": "Japan",
    "Asia/Shanghai": "China",
    "Asia/Hong_Kong": "Hong Kong",
    "Asia/Singapore": "Singapore",
    "Asia/Seoul": "South Korea",
    "Asia/Bangkok": "Thailand",
    "Asia/Jakarta": "Indonesia",
    "Asia/Manila": "Philippines",
    "Asia/Kuala_Lumpur": "Malaysia",
    "Asia/Mumbai": "India",
    "Asia/Kolkata": "India",
    "Asia/Delhi": "India",
    "Asia/Dubai": "United Arab Emirates",
    "Asia/Riyadh": "Saudi Arabia",
    "Asia/Tel_Aviv": "Israel",
    "Asia/Jerusalem": "Israel",
    "Asia/Istanbul": "Turkey",

    # Oceania
    "Australia/Sydney": "Australia",
    "Australia/Melbourne": "Australia",
    "Australia/Perth": "Australia",
    "Australia/Brisbane": "Australia",
    "Pacific/Auckland": "New Zealand",
    "Pacific/Fiji": "Fiji",

    # Africa
    "Africa/Cairo": "Egypt",
    "Africa/Lagos": "Nigeria",
    "Africa/Johannesburg": "South Africa",
    "Africa/Nairobi": "Kenya",
    "Africa/Casablanca": "Morocco",
    "Africa/Tunis": "Tunisia",
}

US_CITIES = ("New_York", "Los_Angeles", "Chicago", "Denver", "Phoenix", "Detroit", "Atlanta", "Miami")
CANADIAN_CITIES = ("Toronto", "Vancouver", "Montreal", "Edmonton")


def local_timezone_name() -> str:
    """Best-effort IANA name of the process's local timezone."""
    return os.environ.get("TZ", "").lstrip(":")


def continent_from_timezone(timezone: str) -> str:
    if not timezone:
        return ""
    return timezone.split("/")[0]


def city_from_timezone(timezone: str) -> str:
    parts = timezone.split("/") if timezone else []
    if len(parts) < 2:
        return ""
    return parts[-1].replace("_", " ")


def country_from_timezone(timezone: str) -> str:
    if not timezone:
        return ""
    if timezone in TIMEZONE_COUNTRIES:
        return TIMEZONE_COUNTRIES[timezone]

    parts = timezone.split("/")
    if len(parts) < 2:
        return ""

    continent, location = parts[0], parts[1]
    if continent == "America":
        if any(city in location for city in US_CITIES):
            return "United States"
        if any(city in location for city in CANADIAN_CITIES):
            return "Canada"
        if "Mexico" in location:
            return "Mexico"

    # Unknown zone: the location name is the best guess
    return location.replace("_", " ")


def coarse_location(timezone: Optional[str] = None) -> CoarseLocation:
    """Derive continent/country/city from a timezone identifier."""
    tz = timezone if timezone is not None else local_timezone_name()
    return CoarseLocation(
        continent=continent_from_timezone(tz),
        country=country_from_timezone(tz),
        city=city_from_timezone(tz),
        timezone=tz,
    )
