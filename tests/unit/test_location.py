"""Unit tests for coarse and precise location enrichment."""

from unittest.mock import AsyncMock

import httpx
import pytest

from tagpipe.pipeline.location import (
    HttpGeolocationProvider,
    LocationEnricher,
    NoGeolocation,
    StaticGeolocation,
    coarse_location,
)
from tagpipe.pipeline.location.providers import parse_provider_response
from tagpipe.pipeline.location.timezones import (
    city_from_timezone,
    continent_from_timezone,
    country_from_timezone,
)
from tagpipe.pipeline.models.consent import ConsentState
from tagpipe.pipeline.models.location import GeoLocation
from tagpipe.pipeline.storage import UserDataStore

AMSTERDAM = GeoLocation(latitude=52.37, longitude=4.89, city="Amsterdam", region="North Holland", country="Netherlands")


class TestTimezones:
    """Test cases for timezone-derived coarse location."""

    @pytest.mark.parametrize("timezone,country", [
        ("Europe/Amsterdam", "Netherlands"),
        ("America/Detroit", "United States"),
        ("America/Edmonton", "Canada"),
        ("America/Argentina/Buenos_Aires", "Argentina"),
        ("Atlantic/Reykjavik", "Reykjavik"),
        ("UTC", ""),
        ("", ""),
    ])
    def test_country_from_timezone(self, timezone, country):
        assert country_from_timezone(timezone) == country

    def test_continent_and_city(self):
        assert continent_from_timezone("America/New_York") == "America"
        assert city_from_timezone("America/New_York") == "New York"
        assert city_from_timezone("America/Argentina/Buenos_Aires") == "Buenos Aires"
        assert city_from_timezone("UTC") == ""

    def test_coarse_location(self):
        location = coarse_location("Asia/Tokyo")
        assert location.to_record_fields() == {
            "geo_continent_tz": "Asia",
            "geo_country_tz": "Japan",
            "geo_city_tz": "Tokyo",
            "timezone": "Asia/Tokyo",
        }

    def test_coarse_location_uses_tz_environment(self, monkeypatch):
        monkeypatch.setenv("TZ", "Europe/Berlin")
        assert coarse_location().country == "Germany"


class TestProviders:
    """Test cases for geolocation providers."""

    def test_parse_ipinfo_format(self):
        location = parse_provider_response(
            "https://ipinfo.io/json",
            {"loc": "52.37,4.89", "city": "Amsterdam", "region": "North Holland", "country": "NL"},
            1000,
        )
        assert location.latitude == 52.37
        assert location.longitude == 4.89
        assert location.country == "NL"
        assert location.timestamp == 1000

    def test_parse_coordinate_format(self):
        location = parse_provider_response(
            "https://ipapi.co/json/",
            {"latitude": "48.85", "longitude": 2.35, "city": "Paris", "region": "IDF", "country_name": "France"},
            1000,
        )
        assert location.has_coordinates
        assert location.country == "France"

    @pytest.mark.asyncio
    async def test_http_chain_falls_back(self, storage, clock):
        calls = []

        def handler(request):
            calls.append(str(request.url))
            if "first" in str(request.url):
                return httpx.Response(500)
            return httpx.Response(200, json={"latitude": 1.5, "longitude": 2.5, "city": "X", "country_name": "Y"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            cache = UserDataStore(storage, clock=clock)
            provider = HttpGeolocationProvider(
                urls=["https://first.example/json", "https://second.example/json"],
                client=client,
                cache=cache,
                clock=clock,
            )
            location = await provider.lookup()
            assert location.latitude == 1.5
            assert len(calls) == 2

            # Cached result short-circuits the chain
            again = await provider.lookup()
            assert again.latitude == 1.5
            assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_http_chain_exhausted_returns_none(self, clock):
        def handler(request):
            return httpx.Response(200, json={"city": "Nowhere"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            provider = HttpGeolocationProvider(urls=["https://a.example/json"], client=client, clock=clock)
            assert await provider.lookup() is None


class TestLocationEnricher:
    """Test cases for enrichment rules."""

    @pytest.mark.asyncio
    async def test_coarse_fields_always_added(self):
        enricher = LocationEnricher(provider=NoGeolocation(), timezone="Europe/Paris")
        result = await enricher.enrich({"a": 1}, ConsentState.DENIED)
        assert result["geo_country_tz"] == "France"
        assert "geo_latitude" not in result

    @pytest.mark.asyncio
    async def test_precise_fields_when_granted(self):
        enricher = LocationEnricher(provider=StaticGeolocation(AMSTERDAM), timezone="Europe/Amsterdam")
        result = await enricher.enrich({}, ConsentState.GRANTED)
        assert result["geo_latitude"] == 52.37
        assert result["geo_city"] == "Amsterdam"

    @pytest.mark.asyncio
    async def test_precise_lookup_speculative_before_decision(self):
        enricher = LocationEnricher(provider=StaticGeolocation(AMSTERDAM), timezone="Europe/Amsterdam")
        queued = await enricher.enrich({}, ConsentState.UNKNOWN, pre_consent=True)
        immediate = await enricher.enrich({}, ConsentState.UNKNOWN)
        assert queued["geo_latitude"] == 52.37
        assert "geo_latitude" not in immediate

    @pytest.mark.asyncio
    async def test_no_precise_lookup_when_denied(self):
        provider = AsyncMock()
        enricher = LocationEnricher(provider=provider, timezone="Europe/Paris")
        await enricher.enrich({}, ConsentState.DENIED)
        provider.lookup.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_kill_switch(self):
        provider = AsyncMock()
        enricher = LocationEnricher(provider=provider, disable_precise=True, timezone="Europe/Paris")
        result = await enricher.enrich({}, ConsentState.GRANTED, pre_consent=True)
        provider.lookup.assert_not_awaited()
        assert result["geo_country_tz"] == "France"

    @pytest.mark.asyncio
    async def test_provider_failure_keeps_coarse_fields(self):
        provider = AsyncMock()
        provider.lookup.side_effect = RuntimeError("service down")
        enricher = LocationEnricher(provider=provider, timezone="Europe/Paris")
        result = await enricher.enrich({"a": 1}, ConsentState.GRANTED)
        assert result == {
            "a": 1,
            "geo_continent_tz": "Europe",
            "geo_country_tz": "France",
            "geo_city_tz": "Paris",
            "timezone": "Europe/Paris",
        }

    @pytest.mark.asyncio
    async def test_incomplete_coordinates_are_ignored(self):
        enricher = LocationEnricher(provider=StaticGeolocation(GeoLocation(latitude=1.0)), timezone="Europe/Paris")
        result = await enricher.enrich({}, ConsentState.GRANTED)
        assert "geo_latitude" not in result

    @pytest.mark.asyncio
    async def test_input_not_mutated(self):
        record = {"a": 1}
        enricher = LocationEnricher(provider=StaticGeolocation(AMSTERDAM), timezone="Europe/Amsterdam")
        await enricher.enrich(record, ConsentState.GRANTED)
        assert record == {"a": 1}
