"""Durable, bounded queue for events captured before a consent decision.

This module implements the pre-consent event queue, providing TTL and size
eviction, persistence to a single storage slot and an automatic flush
request once the queue reaches its batch threshold.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError

from ..errors import QueueClosedError, StorageError
from ..location.enricher import LocationEnricher
from ..models.consent import ConsentState
from ..models.events import EventRecord, PersistedQueue, QueuedEvent
from ..storage.backends import StorageBackend
from ..storage.slots import QUEUE_STORAGE_KEY
from ..utils.clock import Clock, now_ms


logger = logging.getLogger(__name__)

QUEUE_FORMAT_VERSION = "1.0"

FlushHandler = Callable[[], Awaitable[Any]]


async def _no_flush() -> None:
    return None


class EventQueueStats:
    """Statistics tracking for event queue operations."""

    def __init__(self):
        self.enqueued_total = 0
        self.drained_total = 0
        self.expired_total = 0
        self.overflow_total = 0
        self.flush_requests = 0
        self.sweeps = 0
        self.queue_size_max = 0

    def export(self) -> Dict[str, Any]:
        """Export statistics as dictionary."""
        return {
            "enqueued_total": self.enqueued_total,
            "drained_total": self.drained_total,
            "expired_total": self.expired_total,
            "overflow_total": self.overflow_total,
            "flush_requests": self.flush_requests,
            "sweeps": self.sweeps,
            "queue_size_max": self.queue_size_max,
        }


class EventQueue:
    """Persistent FIFO of events waiting for a consent decision.

    Storage is the source of truth: every operation reads the slot, changes
    it and writes it back without awaiting in between, so enqueue, drain and
    sweep can never interleave their writes.

    Features:
    - Expiry of entries older than ``ttl_hours``
    - Oldest-first truncation over ``max_events`` or ``max_bytes``
    - Flush request when the queue reaches ``batch_size``
    - Periodic background sweep
    """

    def __init__(
        self,
        storage: StorageBackend,
        enricher: Optional[LocationEnricher] = None,
        max_events: int = 50,
        max_bytes: int = 51200,
        ttl_hours: float = 24,
        batch_size: int = 35,
        sweep_interval_seconds: float = 300,
        flush_handler: Optional[FlushHandler] = None,
        clock: Clock = now_ms,
    ):
        """Initialize the event queue.

        Args:
            storage: Backend holding the queue slot
            enricher: Location enricher applied before queueing
            max_events: Maximum number of retained events
            max_bytes: Maximum serialized size of retained events
            ttl_hours: Lifetime of a queued event
            batch_size: Size that triggers a flush request
            sweep_interval_seconds: Interval of the background sweep
            flush_handler: Coroutine function invoked on flush requests
            clock: Millisecond clock
        """
        self.storage = storage
        self.enricher = enricher or LocationEnricher()
        self.max_events = max_events
        self.max_bytes = max_bytes
        self.ttl_ms = int(ttl_hours * 60 * 60 * 1000)
        self.batch_size = batch_size
        self.sweep_interval_seconds = sweep_interval_seconds
        self.clock = clock
        self._flush_handler: FlushHandler = flush_handler or _no_flush

        self._stats = EventQueueStats()
        self._sweep_task: Optional[asyncio.Task] = None
        self._closed = False

    @classmethod
    def from_config(cls, storage: StorageBackend, queue_config, enricher=None, flush_handler=None, clock: Clock = now_ms):
        return cls(
            storage=storage,
            enricher=enricher,
            max_events=queue_config.max_events,
            max_bytes=queue_config.max_bytes,
            ttl_hours=queue_config.ttl_hours,
            batch_size=queue_config.batch_size,
            sweep_interval_seconds=queue_config.sweep_interval_seconds,
            flush_handler=flush_handler,
            clock=clock,
        )

    def set_flush_handler(self, handler: Optional[FlushHandler]) -> None:
        self._flush_handler = handler or _no_flush

    async def enqueue(self, name: str, payload: EventRecord) -> QueuedEvent:
        """Queue an event until consent is decided.

        Args:
            name: Event name
            payload: Event parameters

        Returns:
            The queued event

        Raises:
            QueueClosedError: If the queue has been closed
        """
        event = await self.prepare(name, payload)
        return await self.add(event)

    async def prepare(self, name: str, payload: EventRecord) -> QueuedEvent:
        """Enrich ``payload`` for queueing without touching storage.

        The precise location lookup may suspend, so callers gating on consent
        must re-check the state before handing the event to ``add``.
        """
        if self._closed:
            raise QueueClosedError("Queue has been closed")
        enriched = await self.enricher.enrich(payload, ConsentState.UNKNOWN, pre_consent=True)
        return QueuedEvent(name=name, payload=enriched, enqueued_at=self.clock())

    async def add(self, event: QueuedEvent) -> QueuedEvent:
        """Append a prepared event and request a flush at the batch size."""
        if self._closed:
            raise QueueClosedError("Queue has been closed")

        # Read-modify-write without suspension
        events = self._load()
        events.append(event)
        events = self._evict(events)
        self._persist(events)

        size = len(events)
        self._stats.enqueued_total += 1
        self._stats.queue_size_max = max(self._stats.queue_size_max, size)
        logger.debug(f"Queued event {event.name} ({size} pending)")

        if size >= self.batch_size:
            self._stats.flush_requests += 1
            logger.info(f"Queue reached batch size {self.batch_size}, requesting flush")
            await self._flush_handler()

        return event

    def drain_all(self) -> List[QueuedEvent]:
        """Remove and return every queued event in insertion order.

        Storage is cleared before the events are handed back, so a failed
        replay loses events rather than sending them twice.
        """
        events = self._load()
        self._clear_storage()
        self._stats.drained_total += len(events)
        if events:
            logger.debug(f"Drained {len(events)} queued events")
        return events

    def size(self) -> int:
        return len(self._load())

    def peek(self) -> List[QueuedEvent]:
        """Return queued events without removing them."""
        return self._load()

    def sweep(self) -> int:
        """Re-apply expiry and size eviction; returns the number of evicted events."""
        events = self._load()
        retained = self._evict(events)
        evicted = len(events) - len(retained)
        if evicted:
            self._persist(retained)
            logger.debug(f"Sweep evicted {evicted} queued events")
        self._stats.sweeps += 1
        return evicted

    def clear(self) -> None:
        """Discard every queued event."""
        self._clear_storage()

    async def start(self) -> None:
        """Sweep once and start the periodic background sweep."""
        if self._closed:
            raise QueueClosedError("Queue has been closed")
        self.sweep()
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def close(self) -> None:
        """Stop the background sweep and reject further enqueues."""
        self._closed = True
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

    def is_closed(self) -> bool:
        return self._closed

    def get_stats(self) -> Dict[str, Any]:
        stats = self._stats.export()
        stats["queue_size"] = self.size()
        stats["is_closed"] = self._closed
        return stats

    async def _sweep_loop(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                self.sweep()
            except StorageError as e:
                logger.warning(f"Queue sweep failed: {e}")

    def _evict(self, events: List[QueuedEvent]) -> List[QueuedEvent]:
        now = self.clock()
        retained = [event for event in events if now - event.enqueued_at <= self.ttl_ms]
        self._stats.expired_total += len(events) - len(retained)

        overflow = 0
        if len(retained) > self.max_events:
            overflow = len(retained) - self.max_events
            retained = retained[overflow:]

        while retained and self._serialized_size(retained) > self.max_bytes:
            retained.pop(0)
            overflow += 1

        if overflow:
            self._stats.overflow_total += overflow
            logger.warning(f"Queue over capacity, dropped {overflow} oldest events")
        return retained

    def _serialized_size(self, events: List[QueuedEvent]) -> int:
        encoded = json.dumps([event.model_dump(mode="json") for event in events], separators=(',', ':'))
        return len(encoded.encode('utf-8'))

    def _load(self) -> List[QueuedEvent]:
        raw = self.storage.get_json(QUEUE_STORAGE_KEY)
        if raw is None:
            return []
        try:
            persisted = PersistedQueue.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Discarding corrupt event queue: {e}")
            self._clear_storage()
            return []
        return list(persisted.events)

    def _persist(self, events: List[QueuedEvent]) -> None:
        if not events:
            self._clear_storage()
            return
        persisted = PersistedQueue(events=events, timestamp=self.clock(), version=QUEUE_FORMAT_VERSION)
        self.storage.set_json(QUEUE_STORAGE_KEY, persisted.model_dump(mode="json"))

    def _clear_storage(self) -> None:
        self.storage.remove(QUEUE_STORAGE_KEY)
