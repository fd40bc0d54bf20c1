"""Persistence of the consent record."""

import logging
from typing import Optional

from pydantic import ValidationError

from ..models.consent import ONE_YEAR_MS, ConsentRecord
from ..storage.backends import StorageBackend
from ..storage.slots import CONSENT_STORAGE_KEY
from ..utils.clock import Clock, now_ms

logger = logging.getLogger(__name__)


class ConsentStore:
    """Reads and writes the consent slot; records older than the max age are discarded."""

    def __init__(self, storage: StorageBackend, max_age_ms: int = ONE_YEAR_MS, clock: Clock = now_ms):
        self.storage = storage
        self.max_age_ms = max_age_ms
        self.clock = clock

    def load(self) -> Optional[ConsentRecord]:
        raw = self.storage.get_json(CONSENT_STORAGE_KEY)
        if raw is None:
            return None
        try:
            record = ConsentRecord.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Discarding corrupt consent record: {e}")
            self.clear()
            return None

        if record.is_expired(self.clock(), self.max_age_ms):
            logger.info("Stored consent record is older than its max age, discarding")
            self.clear()
            return None
        return record

    def save(self, record: ConsentRecord) -> None:
        self.storage.set_json(CONSENT_STORAGE_KEY, record.to_storage())

    def clear(self) -> None:
        self.storage.remove(CONSENT_STORAGE_KEY)
