"""Session tracking and client identifiers."""

import logging
import random
import uuid
from typing import Optional

from .models.consent import ConsentRecord
from .models.events import SessionContext
from .storage.user_data import UserDataStore
from .utils.clock import Clock, now_ms

logger = logging.getLogger(__name__)


def generate_client_id(clock: Clock = now_ms) -> str:
    """Persistent client id in ``<random>.<unix seconds>`` form."""
    return f"{round(2147483647 * random.random())}.{clock() // 1000}"


class SessionStore:
    """Keeps the visitor's session in the user data slot.

    A session ends after ``timeout_minutes`` without activity. Touching the
    session records activity; the first ever touch marks a first visit.
    """

    def __init__(self, user_data: UserDataStore, timeout_minutes: float = 30, clock: Clock = now_ms):
        self.user_data = user_data
        self.timeout_ms = int(timeout_minutes * 60 * 1000)
        self.clock = clock

    def touch(self) -> SessionContext:
        """Return the current session, starting a new one when needed."""
        data = self.user_data.load()
        now = self.clock()
        is_first_visit = False
        is_new_session = False

        if not data.first_visit:
            data = data.model_copy(update={"first_visit": now})
            is_first_visit = True

        last_activity = data.last_activity or data.session_start
        if not data.session_id or not last_activity or now - last_activity > self.timeout_ms:
            data = data.model_copy(update={
                "session_id": uuid.uuid4().hex,
                "session_start": now,
                "session_count": data.session_count + 1,
            })
            is_new_session = True
            logger.debug(f"Started session {data.session_id} (count {data.session_count})")

        data = self.user_data.save(data.model_copy(update={"last_activity": now}))

        return SessionContext(
            session_id=data.session_id,
            start_time=data.session_start,
            is_new_session=is_new_session,
            is_first_visit=is_first_visit,
            session_count=max(data.session_count, 1),
        )

    def current(self) -> Optional[SessionContext]:
        """Return the active session without recording activity."""
        data = self.user_data.load()
        last_activity = data.last_activity or data.session_start
        if not data.session_id or not last_activity or self.clock() - last_activity > self.timeout_ms:
            return None
        return SessionContext(
            session_id=data.session_id,
            start_time=data.session_start,
            session_count=max(data.session_count, 1),
        )

    def get_persistent_client_id(self) -> str:
        data = self.user_data.load()
        if data.client_id:
            return data.client_id
        client_id = generate_client_id(self.clock)
        self.user_data.save(data.model_copy(update={"client_id": client_id}))
        return client_id

    def get_client_id(self, consent: Optional[ConsentRecord]) -> str:
        """Consent-aware client id.

        Without analytics consent the id is derived from the session so no
        persistent identifier is created or sent.
        """
        if consent is not None and consent.analytics_granted:
            return self.get_persistent_client_id()
        session = self.current() or self.touch()
        return f"session_{session.session_id}"
