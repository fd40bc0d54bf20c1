"""Unit tests for the consent state machine."""

import asyncio
from typing import List

import pytest

from tagpipe.pipeline.config import ConsentConfig
from tagpipe.pipeline.consent import ConsentManager, ReplayTarget
from tagpipe.pipeline.location import LocationEnricher
from tagpipe.pipeline.models.consent import ConsentRecord, ConsentSource, ConsentState
from tagpipe.pipeline.queue import EventQueue
from tagpipe.pipeline.storage import CONSENT_STORAGE_KEY, USER_DATA_KEY

DAY_MS = 24 * 60 * 60 * 1000


class RecordingReplayTarget(ReplayTarget):
    """Collects replays and the queue size observed when each one starts."""

    def __init__(self, queue: EventQueue):
        self.queue = queue
        self.replays: List[tuple] = []
        self.queue_sizes: List[int] = []
        self.active = 0
        self.max_active = 0

    async def replay_queued(self, events, record):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.queue_sizes.append(self.queue.size())
        await asyncio.sleep(0)
        self.replays.append(([event.name for event in events], record.state))
        self.active -= 1


@pytest.fixture
def queue(storage, clock):
    return EventQueue(storage, enricher=LocationEnricher(timezone="Europe/Paris"), clock=clock)


def make_manager(storage, clock, queue, **consent):
    manager = ConsentManager(storage, ConsentConfig(**consent), clock=clock)
    target = RecordingReplayTarget(queue)
    manager.attach(queue, target)
    return manager, target


class TestConsentManager:
    """Test cases for consent transitions."""

    @pytest.mark.asyncio
    async def test_starts_unknown(self, storage, clock, queue):
        manager, _ = make_manager(storage, clock, queue)
        assert await manager.start() is ConsentState.UNKNOWN
        assert manager.record is None

    @pytest.mark.asyncio
    async def test_restores_stored_record(self, storage, clock, queue):
        manager, _ = make_manager(storage, clock, queue)
        manager.store.save(ConsentRecord.denied_all(clock()))

        restored, _ = make_manager(storage, clock, queue)
        assert await restored.start() is ConsentState.DENIED

    @pytest.mark.asyncio
    async def test_expired_record_is_discarded(self, storage, clock, queue):
        manager, _ = make_manager(storage, clock, queue, record_max_age_days=30)
        manager.store.save(ConsentRecord.granted_all(clock()))
        clock.advance(31 * DAY_MS)

        assert await manager.start() is ConsentState.UNKNOWN
        assert storage.get(CONSENT_STORAGE_KEY) is None

    @pytest.mark.asyncio
    async def test_disabled_consent_grants_without_persisting(self, storage, clock, queue):
        manager, _ = make_manager(storage, clock, queue, enabled=False)
        assert await manager.start() is ConsentState.GRANTED
        assert manager.record.consent_mode == "GRANTED"
        assert storage.get(CONSENT_STORAGE_KEY) is None

    @pytest.mark.asyncio
    async def test_grant_persists_and_replays_queue(self, storage, clock, queue):
        manager, target = make_manager(storage, clock, queue)
        for name in ("page_view", "scroll", "click"):
            await queue.enqueue(name, {})

        assert await manager.grant()
        assert manager.state is ConsentState.GRANTED
        assert manager.store.load().analytics_granted
        assert target.replays == [(["page_view", "scroll", "click"], ConsentState.GRANTED)]
        assert queue.size() == 0

    @pytest.mark.asyncio
    async def test_queue_drained_before_replay_starts(self, storage, clock, queue):
        manager, target = make_manager(storage, clock, queue)
        await queue.enqueue("page_view", {})
        await manager.deny()
        assert target.queue_sizes == [0]

    @pytest.mark.asyncio
    async def test_partial_grant(self, storage, clock, queue):
        manager, _ = make_manager(storage, clock, queue)
        await manager.grant({"analytics_storage": "GRANTED"})
        assert manager.state is ConsentState.GRANTED
        assert manager.record.consent_mode == "PARTIAL"
        assert not manager.record.ad_granted

    @pytest.mark.asyncio
    async def test_repeated_decision_is_ignored(self, storage, clock, queue):
        manager, target = make_manager(storage, clock, queue)
        assert await manager.grant()
        clock.advance(1000)
        assert not await manager.grant()
        assert len(target.replays) == 1

    @pytest.mark.asyncio
    async def test_listeners_notified(self, storage, clock, queue):
        manager, _ = make_manager(storage, clock, queue)
        seen = []

        def broken(record, source):
            raise RuntimeError("listener bug")

        manager.add_listener(broken)
        manager.add_listener(lambda record, source: seen.append((record.state, source)))
        await manager.apply_platform_signal(False)

        assert seen == [(ConsentState.DENIED, ConsentSource.PLATFORM)]
        assert manager.state is ConsentState.DENIED

    @pytest.mark.asyncio
    async def test_removed_listener_not_called(self, storage, clock, queue):
        manager, _ = make_manager(storage, clock, queue)
        seen = []
        listener = lambda record, source: seen.append(source)
        manager.add_listener(listener)
        manager.remove_listener(listener)
        await manager.grant()
        assert seen == []

    @pytest.mark.asyncio
    async def test_platform_category_map(self, storage, clock, queue):
        manager, _ = make_manager(storage, clock, queue)
        await manager.apply_platform_signal({"analytics_storage": "granted", "ad_storage": "denied"})
        assert manager.state is ConsentState.GRANTED
        assert manager.record.consent_mode == "PARTIAL"

    @pytest.mark.asyncio
    async def test_malformed_platform_signal_ignored(self, storage, clock, queue):
        manager, target = make_manager(storage, clock, queue)
        await queue.enqueue("page_view", {})

        assert await manager.apply_platform_signal({"analytics_storage": "maybe"}) is False
        assert manager.state is ConsentState.UNKNOWN
        assert storage.get(CONSENT_STORAGE_KEY) is None
        assert queue.size() == 1
        assert target.replays == []

    @pytest.mark.asyncio
    async def test_malformed_grant_categories_ignored(self, storage, clock, queue):
        manager, _ = make_manager(storage, clock, queue)

        assert await manager.grant({"ad_storage": 42}) is False
        assert manager.state is ConsentState.UNKNOWN

        assert await manager.grant({"analytics_storage": "GRANTED"}) is True
        assert manager.state is ConsentState.GRANTED

    @pytest.mark.asyncio
    async def test_reentrant_transition_rejected(self, storage, clock, queue):
        manager = ConsentManager(storage, ConsentConfig(), clock=clock)
        results = []

        class ReentrantTarget(ReplayTarget):
            async def replay_queued(self, events, record):
                results.append(await manager.deny())

        manager.attach(queue, ReentrantTarget())
        assert await manager.grant()
        assert results == [False]
        assert manager.state is ConsentState.GRANTED
        assert not manager.transitioning

    @pytest.mark.asyncio
    async def test_concurrent_transitions_serialized(self, storage, clock, queue):
        manager, target = make_manager(storage, clock, queue)
        await queue.enqueue("page_view", {})

        results = await asyncio.gather(manager.grant(), manager.deny())

        assert results == [True, True]
        assert target.max_active == 1
        assert target.replays == [(["page_view"], ConsentState.GRANTED), ([], ConsentState.DENIED)]
        assert manager.state is ConsentState.DENIED

    @pytest.mark.asyncio
    async def test_timeout_grants_by_default(self, storage, clock, queue):
        manager, _ = make_manager(storage, clock, queue, default_timeout_seconds=0.01)
        await manager.start()
        await asyncio.sleep(0.05)
        assert manager.state is ConsentState.GRANTED
        assert manager.store.load() is not None

    @pytest.mark.asyncio
    async def test_timeout_can_deny(self, storage, clock, queue):
        manager, _ = make_manager(storage, clock, queue, default_timeout_seconds=0.01, timeout_action="deny")
        await manager.start()
        await asyncio.sleep(0.05)
        assert manager.state is ConsentState.DENIED

    @pytest.mark.asyncio
    async def test_explicit_decision_cancels_timeout(self, storage, clock, queue):
        manager, target = make_manager(storage, clock, queue, default_timeout_seconds=0.02)
        await manager.start()
        await manager.deny()
        await asyncio.sleep(0.05)
        assert manager.state is ConsentState.DENIED
        assert len(target.replays) == 1

    def test_invalid_timeout_action(self):
        with pytest.raises(ValueError):
            ConsentConfig(timeout_action="ignore")

    @pytest.mark.asyncio
    async def test_reset_clears_everything(self, storage, clock, queue):
        manager, _ = make_manager(storage, clock, queue)
        await manager.grant()
        storage.set_json(USER_DATA_KEY, {"client_id": "1.2"})
        await queue.enqueue("page_view", {})

        await manager.reset()

        assert manager.state is ConsentState.UNKNOWN
        assert storage.get(CONSENT_STORAGE_KEY) is None
        assert storage.get(USER_DATA_KEY) is None
        assert queue.size() == 0

    @pytest.mark.asyncio
    async def test_withdrawal_cleans_tracking_data(self, storage, clock, queue):
        manager, _ = make_manager(storage, clock, queue)
        await manager.grant()
        storage.set_json(USER_DATA_KEY, {"client_id": "1.2", "session_id": "abc", "session_count": 2})

        await manager.deny()

        user_data = storage.get_json(USER_DATA_KEY)
        assert "client_id" not in user_data
        assert "session_id" not in user_data
        assert manager.store.load().state is ConsentState.DENIED
