"""Unit tests for session tracking and client identifiers."""

import re

from tagpipe.pipeline.models.consent import ConsentRecord
from tagpipe.pipeline.session import SessionStore, generate_client_id
from tagpipe.pipeline.storage import UserDataStore


def make_store(storage, clock, timeout_minutes=30):
    return SessionStore(UserDataStore(storage, clock=clock), timeout_minutes=timeout_minutes, clock=clock)


class TestSessionStore:
    """Test cases for session lifecycle."""

    def test_first_touch_starts_first_visit_session(self, storage, clock):
        session = make_store(storage, clock).touch()
        assert session.is_new_session
        assert session.is_first_visit
        assert session.session_count == 1
        assert session.start_time == clock()

    def test_activity_within_timeout_continues_session(self, storage, clock):
        store = make_store(storage, clock)
        first = store.touch()
        clock.advance(29 * 60 * 1000)
        second = store.touch()
        assert second.session_id == first.session_id
        assert not second.is_new_session
        assert not second.is_first_visit

    def test_inactivity_starts_new_session(self, storage, clock):
        store = make_store(storage, clock)
        first = store.touch()
        clock.advance(31 * 60 * 1000)
        second = store.touch()
        assert second.session_id != first.session_id
        assert second.is_new_session
        assert second.session_count == 2

    def test_timeout_counts_from_last_activity(self, storage, clock):
        store = make_store(storage, clock)
        first = store.touch()
        for _ in range(3):
            clock.advance(20 * 60 * 1000)
            assert store.touch().session_id == first.session_id

    def test_current_does_not_start_session(self, storage, clock):
        store = make_store(storage, clock)
        assert store.current() is None
        started = store.touch()
        assert store.current().session_id == started.session_id


class TestClientId:
    """Test cases for consent-aware client ids."""

    def test_generated_format(self, clock):
        client_id = generate_client_id(clock)
        assert re.fullmatch(r"\d+\.\d+", client_id)
        assert client_id.endswith(f".{clock() // 1000}")

    def test_persistent_id_requires_analytics_consent(self, storage, clock):
        store = make_store(storage, clock)
        session = store.touch()

        denied_id = store.get_client_id(ConsentRecord.denied_all())
        assert denied_id == f"session_{session.session_id}"
        assert store.user_data.load().client_id is None

        granted_id = store.get_client_id(ConsentRecord.granted_all())
        assert re.fullmatch(r"\d+\.\d+", granted_id)
        assert store.get_client_id(ConsentRecord.granted_all()) == granted_id

    def test_unknown_consent_uses_session_id(self, storage, clock):
        store = make_store(storage, clock)
        assert store.get_client_id(None).startswith("session_")
