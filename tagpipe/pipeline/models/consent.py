"""Consent models: the gating state and the persisted consent record."""

from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

from ..utils.clock import now_ms


CONSENT_CATEGORIES = (
    "analytics_storage",
    "ad_storage",
    "ad_user_data",
    "ad_personalization",
    "functionality_storage",
    "personalization_storage",
    "security_storage",
)

ONE_YEAR_MS = 365 * 24 * 60 * 60 * 1000


class ConsentDecision(str, Enum):
    """Value of a single consent category."""
    GRANTED = "GRANTED"
    DENIED = "DENIED"


class ConsentState(str, Enum):
    """Gating state of the pipeline."""
    UNKNOWN = "UNKNOWN"
    GRANTED = "GRANTED"
    DENIED = "DENIED"


class ConsentSource(str, Enum):
    """What triggered a consent transition."""
    EXPLICIT = "explicit"
    PLATFORM = "platform"
    TIMEOUT = "timeout"
    STORED = "stored"


class ConsentRecord(BaseModel):
    """Authoritative consent decision across all storage categories.

    ``security_storage`` is consent-exempt and stays GRANTED unless a caller
    explicitly overrides it.
    """

    model_config = {"frozen": True}

    analytics_storage: ConsentDecision = ConsentDecision.DENIED
    ad_storage: ConsentDecision = ConsentDecision.DENIED
    ad_user_data: ConsentDecision = ConsentDecision.DENIED
    ad_personalization: ConsentDecision = ConsentDecision.DENIED
    functionality_storage: ConsentDecision = ConsentDecision.DENIED
    personalization_storage: ConsentDecision = ConsentDecision.DENIED
    security_storage: ConsentDecision = ConsentDecision.GRANTED
    timestamp: int = Field(default_factory=now_ms, description="Creation time in ms since epoch")

    @field_validator(*CONSENT_CATEGORIES, mode="before")
    @classmethod
    def normalize_decision(cls, v):
        if isinstance(v, str):
            return v.upper()
        if isinstance(v, bool):
            return ConsentDecision.GRANTED if v else ConsentDecision.DENIED
        return v

    @classmethod
    def granted_all(cls, timestamp: Optional[int] = None) -> "ConsentRecord":
        values = {category: ConsentDecision.GRANTED for category in CONSENT_CATEGORIES}
        if timestamp is not None:
            values["timestamp"] = timestamp
        return cls(**values)

    @classmethod
    def denied_all(cls, timestamp: Optional[int] = None) -> "ConsentRecord":
        values: Dict[str, Any] = {}
        if timestamp is not None:
            values["timestamp"] = timestamp
        return cls(**values)

    @classmethod
    def from_categories(cls, categories: Mapping[str, Any], timestamp: Optional[int] = None) -> "ConsentRecord":
        """Build a record from a partial category map; unnamed categories are DENIED."""
        values = {key: value for key, value in categories.items() if key in CONSENT_CATEGORIES}
        if timestamp is not None:
            values["timestamp"] = timestamp
        return cls(**values)

    @property
    def analytics_granted(self) -> bool:
        return self.analytics_storage == ConsentDecision.GRANTED

    @property
    def ad_granted(self) -> bool:
        return self.ad_storage == ConsentDecision.GRANTED

    @property
    def state(self) -> ConsentState:
        """Gating state implied by this record."""
        return ConsentState.GRANTED if self.analytics_granted else ConsentState.DENIED

    @property
    def consent_mode(self) -> str:
        if self.analytics_granted and self.ad_granted:
            return "GRANTED"
        if not self.analytics_granted and not self.ad_granted:
            return "DENIED"
        return "PARTIAL"

    def same_decision_as(self, other: Optional["ConsentRecord"]) -> bool:
        """Compare categories only, ignoring the timestamp."""
        if other is None:
            return False
        return all(getattr(self, c) == getattr(other, c) for c in CONSENT_CATEGORIES)

    def is_expired(self, now: Optional[int] = None, max_age_ms: int = ONE_YEAR_MS) -> bool:
        current = now if now is not None else now_ms()
        return current - self.timestamp >= max_age_ms

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    def categories(self) -> Dict[str, str]:
        return {category: getattr(self, category).value for category in CONSENT_CATEGORIES}
