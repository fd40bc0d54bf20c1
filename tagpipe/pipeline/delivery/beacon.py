"""Beacon-style fire-and-forget transport.

A beacon hands the payload off and returns immediately; it reports only
whether the handoff was accepted. It cannot carry custom headers, which is
why relay routes expose dedicated beacon paths.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional, Set

import httpx

logger = logging.getLogger(__name__)


class Beacon(ABC):
    """Interface for transports that survive page teardown."""

    @property
    @abstractmethod
    def available(self) -> bool:
        pass

    @abstractmethod
    def send(self, url: str, data: str) -> bool:
        """Queue ``data`` for delivery to ``url``; returns True if accepted."""
        pass

    async def aclose(self) -> None:
        return None


class NullBeacon(Beacon):
    """Used where no beacon mechanism exists."""

    @property
    def available(self) -> bool:
        return False

    def send(self, url: str, data: str) -> bool:
        return False


class HttpBeacon(Beacon):
    """Beacon backed by a detached httpx POST.

    The request runs as a background task owned by the beacon, so callers
    never await the network. Payloads above ``max_bytes`` are refused.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, max_bytes: int = 65536):
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(10.0))
        self._owns_client = client is None
        self.max_bytes = max_bytes
        self._pending: Set[asyncio.Task] = set()

    @property
    def available(self) -> bool:
        return not self.client.is_closed

    def send(self, url: str, data: str) -> bool:
        if not self.available:
            return False
        if len(data.encode('utf-8')) > self.max_bytes:
            logger.debug(f"Beacon payload exceeds {self.max_bytes} bytes, refusing")
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return False

        task = loop.create_task(self._post(url, data))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return True

    async def _post(self, url: str, data: str) -> None:
        try:
            response = await self.client.post(
                url,
                content=data,
                headers={"Content-Type": "text/plain;charset=UTF-8"},
            )
            if response.status_code >= 400:
                logger.warning(f"Beacon to {url} answered HTTP {response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"Beacon to {url} failed: {e}")

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for handed-off beacons to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        if self._owns_client:
            await self.client.aclose()
