"""Consent state machine.

States are UNKNOWN, GRANTED and DENIED. A decision arrives from an explicit
grant/deny, a consent platform callback or the configured timeout. Entering
a decided state persists the record, notifies listeners and drains the
pre-consent queue in the same scheduling turn; the drained events are then
replayed in order against the new record.

Transitions are serialized: concurrent callers wait for the running
transition, and a transition started from inside another one (for example
by a listener or during replay) is rejected.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Mapping, Optional, Union

from pydantic import ValidationError

from ..models.consent import ConsentRecord, ConsentSource, ConsentState
from ..models.events import QueuedEvent
from ..privacy.cleanup import consent_withdrawal_cleanup, reset_all_tracking_data
from ..queue.event_queue import EventQueue
from ..storage.backends import StorageBackend
from ..utils.clock import Clock, now_ms
from .storage import ConsentStore

logger = logging.getLogger(__name__)

ConsentListener = Callable[[ConsentRecord, ConsentSource], Any]


class ReplayTarget(ABC):
    """Receives events drained from the queue after a transition."""

    @abstractmethod
    async def replay_queued(self, events: List[QueuedEvent], record: ConsentRecord) -> None:
        pass


class DiscardingReplayTarget(ReplayTarget):
    """Replay target used before a tracker is attached."""

    async def replay_queued(self, events: List[QueuedEvent], record: ConsentRecord) -> None:
        if events:
            logger.warning(f"No replay target attached, discarding {len(events)} queued events")


class ConsentManager:
    """Holds the authoritative consent record and drives transitions."""

    def __init__(
        self,
        storage: StorageBackend,
        consent_config=None,
        clock: Clock = now_ms,
    ):
        self.storage = storage
        self.enabled = getattr(consent_config, "enabled", True)
        self.timeout_seconds: Optional[float] = getattr(consent_config, "default_timeout_seconds", None)
        self.timeout_action: str = getattr(consent_config, "timeout_action", "grant")
        max_age_days = getattr(consent_config, "record_max_age_days", 365)
        self.store = ConsentStore(storage, max_age_ms=max_age_days * 24 * 60 * 60 * 1000, clock=clock)
        self.clock = clock

        self._record: Optional[ConsentRecord] = None
        self._listeners: List[ConsentListener] = []
        self._queue: Optional[EventQueue] = None
        self._replay_target: ReplayTarget = DiscardingReplayTarget()

        self._lock = asyncio.Lock()
        self._transition_task: Optional[asyncio.Task] = None
        self._timeout_task: Optional[asyncio.Task] = None

    def attach(self, queue: EventQueue, replay_target: ReplayTarget) -> None:
        """Wire the queue to drain and the service that replays drained events."""
        self._queue = queue
        self._replay_target = replay_target

    @property
    def state(self) -> ConsentState:
        if self._record is None:
            return ConsentState.UNKNOWN
        return self._record.state

    @property
    def record(self) -> Optional[ConsentRecord]:
        return self._record

    @property
    def transitioning(self) -> bool:
        return self._transition_task is not None

    def add_listener(self, listener: ConsentListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ConsentListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def start(self) -> ConsentState:
        """Restore a stored decision or arm the timeout."""
        if not self.enabled:
            logger.info("Consent gating disabled, treating all events as consented")
            await self._transition(ConsentRecord.granted_all(self.clock()), ConsentSource.STORED, persist=False)
            return self.state

        stored = self.store.load()
        if stored is not None:
            logger.info(f"Restored stored consent ({stored.consent_mode})")
            await self._transition(stored, ConsentSource.STORED, persist=False)
        elif self.timeout_seconds:
            self.start_timeout()
        return self.state

    async def grant(self, categories: Optional[Mapping[str, Any]] = None) -> bool:
        """Explicit accept; ``categories`` grants only the named categories."""
        if categories is None:
            record = ConsentRecord.granted_all(self.clock())
        else:
            try:
                record = ConsentRecord.from_categories(categories, self.clock())
            except ValidationError as e:
                logger.warning(f"Ignoring grant with malformed categories: {e}")
                return False
        return await self._transition(record, ConsentSource.EXPLICIT)

    async def deny(self) -> bool:
        return await self._transition(ConsentRecord.denied_all(self.clock()), ConsentSource.EXPLICIT)

    async def apply_platform_signal(self, signal: Union[bool, Mapping[str, Any]]) -> bool:
        """Callback for third-party consent platforms.

        Accepts either a single accept/deny boolean or a category map such as
        ``{"analytics_storage": "GRANTED", "ad_storage": "DENIED"}``. A map
        with values that are not a recognizable decision is ignored.
        """
        if isinstance(signal, bool):
            record = ConsentRecord.granted_all(self.clock()) if signal else ConsentRecord.denied_all(self.clock())
        else:
            try:
                record = ConsentRecord.from_categories(signal, self.clock())
            except ValidationError as e:
                logger.warning(f"Ignoring malformed consent platform signal: {e}")
                return False
        return await self._transition(record, ConsentSource.PLATFORM)

    async def reset(self) -> None:
        """Return to UNKNOWN, purging the queue, stored data and the timeout."""
        if self._is_reentrant():
            logger.warning("Ignoring consent reset requested during a transition")
            return
        async with self._lock:
            self.cancel_timeout()
            self._record = None
            if self._queue is not None:
                self._queue.clear()
            self.store.clear()
            reset_all_tracking_data(self.storage, reason="Consent reset")
            logger.info("Consent reset to UNKNOWN")

    def start_timeout(self) -> None:
        """Arm the implicit-decision timeout."""
        self.cancel_timeout()
        if not self.timeout_seconds:
            return
        self._timeout_task = asyncio.create_task(self._timeout_after(self.timeout_seconds))
        logger.debug(f"Consent timeout armed for {self.timeout_seconds}s")

    def cancel_timeout(self) -> None:
        task = self._timeout_task
        self._timeout_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _timeout_after(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
        if self.state is not ConsentState.UNKNOWN:
            return
        logger.info(f"Consent timeout reached, applying implicit {self.timeout_action}")
        if self.timeout_action == "deny":
            record = ConsentRecord.denied_all(self.clock())
        else:
            record = ConsentRecord.granted_all(self.clock())
        await self._transition(record, ConsentSource.TIMEOUT)

    def _is_reentrant(self) -> bool:
        return self._transition_task is not None and self._transition_task is asyncio.current_task()

    async def _transition(self, record: ConsentRecord, source: ConsentSource, persist: bool = True) -> bool:
        if self._is_reentrant():
            logger.warning(f"Ignoring re-entrant consent transition from {source.value}")
            return False

        async with self._lock:
            if record.same_decision_as(self._record):
                logger.debug(f"Consent unchanged ({record.consent_mode}), ignoring {source.value} signal")
                return False

            self._transition_task = asyncio.current_task()
            try:
                previous = self._record

                # Persist, notify and drain before yielding
                self.cancel_timeout()
                self._record = record
                if persist:
                    self.store.save(record)
                self._notify(record, source)
                events = self._queue.drain_all() if self._queue is not None else []

                logger.info(
                    f"Consent {record.state.value} ({record.consent_mode}) from {source.value}, "
                    f"replaying {len(events)} queued events"
                )
                await self._replay_target.replay_queued(events, record)

                if previous is not None and previous.analytics_granted and not record.analytics_granted:
                    consent_withdrawal_cleanup(self.storage)
            finally:
                self._transition_task = None
        return True

    def _notify(self, record: ConsentRecord, source: ConsentSource) -> None:
        for listener in list(self._listeners):
            try:
                listener(record, source)
            except Exception as e:
                logger.warning(f"Consent listener {listener!r} failed: {e}")
