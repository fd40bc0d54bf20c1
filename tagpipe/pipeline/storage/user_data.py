"""Unified persisted user data: identifiers, session, last attribution, location."""

import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

from ..models.attribution import AttributionRecord
from ..models.location import GeoLocation
from ..utils.clock import Clock, now_ms
from .backends import StorageBackend
from .slots import USER_DATA_KEY

logger = logging.getLogger(__name__)


class UserData(BaseModel):
    """Everything the pipeline remembers about a visitor besides consent."""

    client_id: Optional[str] = None
    session_id: Optional[str] = None
    session_start: Optional[int] = None
    last_activity: Optional[int] = None
    session_count: int = 0
    first_visit: Optional[int] = None
    last_attribution: Optional[Dict[str, Any]] = None
    location: Optional[GeoLocation] = None
    timestamp: int = Field(default_factory=now_ms)
    version: str = "1.0"


class UserDataStore:
    """Reads and writes the user data slot with whole-record expiry.

    The record expires when it has not been saved for ``expiration_hours``;
    an expired or corrupt record is wiped and replaced by defaults.
    """

    def __init__(
        self,
        storage: StorageBackend,
        expiration_hours: float = 24,
        clock: Clock = now_ms,
    ):
        self.storage = storage
        self.expiration_hours = expiration_hours
        self.clock = clock

    @property
    def expiration_ms(self) -> int:
        return int(self.expiration_hours * 60 * 60 * 1000)

    def load(self) -> UserData:
        raw = self.storage.get_json(USER_DATA_KEY)
        if raw is None:
            return UserData(timestamp=self.clock())
        try:
            data = UserData.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Discarding invalid user data: {e}")
            self.clear()
            return UserData(timestamp=self.clock())

        if self.clock() - data.timestamp > self.expiration_ms:
            logger.debug("User data expired, clearing")
            self.clear()
            return UserData(timestamp=self.clock())
        return data

    def save(self, data: UserData) -> UserData:
        stamped = data.model_copy(update={"timestamp": self.clock()})
        self.storage.set_json(USER_DATA_KEY, stamped.model_dump(mode="json"))
        return stamped

    def update(self, **fields: Any) -> UserData:
        data = self.load()
        return self.save(data.model_copy(update=fields))

    def clear(self) -> None:
        self.storage.remove(USER_DATA_KEY)

    # Convenience accessors

    def get_last_attribution(self) -> Optional[AttributionRecord]:
        return AttributionRecord.from_storage(self.load().last_attribution)

    def set_last_attribution(self, attribution: AttributionRecord) -> None:
        self.update(last_attribution=attribution.model_dump())

    def get_cached_location(self) -> Optional[GeoLocation]:
        location = self.load().location
        if location is not None and location.has_coordinates:
            return location
        return None

    def set_cached_location(self, location: GeoLocation) -> None:
        self.update(location=location)
