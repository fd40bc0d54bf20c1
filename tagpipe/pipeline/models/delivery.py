"""Delivery models: routing strategies, the wire envelope and send outcomes."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..utils.clock import now_ms


class RoutingStrategy(str, Enum):
    """How a payload reaches the collection endpoint."""
    DIRECT = "direct"
    RELAY_CHECKED = "relay_checked"
    RELAY_SECURE = "relay_secure"

    @property
    def uses_relay(self) -> bool:
        return self is not RoutingStrategy.DIRECT

    @property
    def encrypts(self) -> bool:
        return self is RoutingStrategy.RELAY_SECURE


class DeliveryMode(str, Enum):
    BEST_EFFORT = "best_effort"
    RELIABLE = "reliable"


class TransportKind(str, Enum):
    REQUEST = "request"
    BEACON = "beacon"


class EnvelopeEvent(BaseModel):
    name: str
    params: Dict[str, Any] = Field(default_factory=dict)
    isCompleteData: bool = True
    timestamp: int = Field(default_factory=now_ms)


class EventEnvelope(BaseModel):
    """The one payload shape the collection endpoint parses."""

    batch: bool = False
    events: List[EnvelopeEvent] = Field(min_length=1)
    consent: Dict[str, str] = Field(default_factory=dict)
    timestamp: int = Field(default_factory=now_ms)


class BotVerdict(BaseModel):
    is_bot: bool = False
    score: float = 0.0
    reasons: List[str] = Field(default_factory=list)


@dataclass
class DeliveryAttempt:
    """Result of one strategy/transport attempt."""
    strategy: RoutingStrategy
    transport: TransportKind
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None


@dataclass
class DeliveryOutcome:
    """Aggregate result of ``DeliveryTransport.send``."""
    success: bool
    event_count: int
    mode: DeliveryMode
    strategy: Optional[RoutingStrategy] = None
    transport: Optional[TransportKind] = None
    attempts: List[DeliveryAttempt] = field(default_factory=list)
    skipped_reason: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None
