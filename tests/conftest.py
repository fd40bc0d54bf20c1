"""Shared test fixtures and configuration for TagPipe tests."""

import json
import sys
from pathlib import Path
from typing import List

import httpx
import pytest
import pytest_asyncio

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from tagpipe.pipeline.config import (
    DeliveryConfig,
    EndpointsConfig,
    LocationConfig,
    PipelineConfiguration,
    RoutingConfig,
)
from tagpipe.pipeline.models.delivery import RoutingStrategy
from tagpipe.pipeline.models.events import PageContext
from tagpipe.pipeline.storage.backends import MemoryStorage


ENCRYPTION_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
COLLECTION_URL = "https://collect.example.com/g/collect"
RELAY_URL = "https://example.com/relay"
BROWSER_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/118.0.5993.88 Safari/537.36"
)

# 2024-01-01T00:00:00Z in ms
START_MS = 1704067200000


class FakeClock:
    """Millisecond clock advanced manually by tests."""

    def __init__(self, start: int = START_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now

    def advance_hours(self, hours: float) -> int:
        return self.advance(int(hours * 60 * 60 * 1000))


class RecordingEndpoint:
    """httpx mock transport handler that records every request."""

    def __init__(self, status_code: int = 204):
        self.status_code = status_code
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code)

    def bodies(self) -> List[dict]:
        return [json.loads(request.content) for request in self.requests]

    def sent_events(self) -> List[dict]:
        """Flatten every envelope into its event entries, in send order."""
        events = []
        for body in self.bodies():
            events.extend(body["events"])
        return events


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def direct_config():
    """Configuration routing straight to the collection endpoint."""
    return PipelineConfiguration(
        endpoints=EndpointsConfig(collection_url=COLLECTION_URL),
        routing=RoutingConfig(strategy=RoutingStrategy.DIRECT, bot_check_enabled=False),
        location=LocationConfig(disable_precise=True),
        delivery=DeliveryConfig(beacon_enabled=False),
    )


@pytest.fixture
def relay_config():
    """Configuration for relay_secure with relay_checked and direct fallbacks."""
    return PipelineConfiguration(
        endpoints=EndpointsConfig(
            collection_url=COLLECTION_URL,
            relay_url=RELAY_URL,
            relay_nonce="nonce-123",
            api_key="site-key",
            encryption_key=ENCRYPTION_KEY,
        ),
        routing=RoutingConfig(
            strategy=RoutingStrategy.RELAY_SECURE,
            fallbacks=[RoutingStrategy.RELAY_CHECKED, RoutingStrategy.DIRECT],
        ),
        location=LocationConfig(disable_precise=True),
    )


@pytest.fixture
def endpoint():
    return RecordingEndpoint()


@pytest_asyncio.fixture
async def http_client(endpoint):
    client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
    yield client
    await client.aclose()


@pytest.fixture
def landing_page():
    """Landing page reached from a paid-search click with conflicting UTM values."""
    return PageContext(
        page_url="https://shop.example.com/landing?utm_source=newsletter&utm_medium=email&gclid=abc123",
        referrer="",
        hostname="shop.example.com",
        page_title="Landing",
        user_agent=BROWSER_UA,
        language="en-US",
        timezone="Europe/Amsterdam",
        screen_resolution="1920x1080",
    )
