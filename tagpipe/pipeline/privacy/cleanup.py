"""Removal of stored tracking data on consent withdrawal or reset."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from ..storage.backends import StorageBackend
from ..storage.slots import CONSENT_STORAGE_KEY, QUEUE_STORAGE_KEY, USER_DATA_KEY
from ..utils.clock import now_ms

logger = logging.getLogger(__name__)


@dataclass
class CleanupOptions:
    """Which categories of stored data to remove."""
    clear_client_id: bool = True
    clear_session_data: bool = True
    clear_consent_data: bool = False
    clear_location_data: bool = True
    clear_queued_events: bool = True
    clear_attribution: bool = True
    custom_keys: List[str] = field(default_factory=list)
    reason: str = "Manual cleanup"


@dataclass
class CleanupResult:
    reason: str
    removed_keys: List[str] = field(default_factory=list)
    cleared_fields: List[str] = field(default_factory=list)
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reason": self.reason,
            "removed_keys": list(self.removed_keys),
            "cleared_fields": list(self.cleared_fields),
            "timestamp": self.timestamp,
        }


def cleanup_user_data(storage: StorageBackend, options: CleanupOptions) -> CleanupResult:
    """Remove the selected categories of tracking data from ``storage``."""
    result = CleanupResult(reason=options.reason)

    user_data = storage.get_json(USER_DATA_KEY)
    if isinstance(user_data, dict):
        fields_to_clear = []
        if options.clear_client_id:
            fields_to_clear.append("client_id")
        if options.clear_session_data:
            fields_to_clear.extend(["session_id", "session_start", "last_activity", "session_count", "first_visit"])
        if options.clear_location_data:
            fields_to_clear.append("location")
        if options.clear_attribution:
            fields_to_clear.append("last_attribution")

        for field_name in fields_to_clear:
            if user_data.pop(field_name, None) is not None:
                result.cleared_fields.append(field_name)

        if result.cleared_fields:
            storage.set_json(USER_DATA_KEY, user_data)

    keys_to_remove = list(options.custom_keys)
    if options.clear_queued_events:
        keys_to_remove.append(QUEUE_STORAGE_KEY)
    if options.clear_consent_data:
        keys_to_remove.append(CONSENT_STORAGE_KEY)

    for key in keys_to_remove:
        if storage.remove(key):
            result.removed_keys.append(key)

    logger.info(
        f"Cleanup '{options.reason}': removed keys {result.removed_keys}, "
        f"cleared fields {result.cleared_fields}"
    )
    return result


def consent_withdrawal_cleanup(storage: StorageBackend, reason: str = "Consent withdrawal") -> CleanupResult:
    """Remove tracking data but keep the consent record that records the withdrawal."""
    return cleanup_user_data(storage, CleanupOptions(clear_consent_data=False, reason=reason))


def reset_all_tracking_data(storage: StorageBackend, reason: str = "Reset all tracking data") -> CleanupResult:
    """Remove everything, consent record included."""
    options = CleanupOptions(clear_consent_data=True, reason=reason)
    result = cleanup_user_data(storage, options)
    if storage.remove(USER_DATA_KEY):
        result.removed_keys.append(USER_DATA_KEY)
    return result
