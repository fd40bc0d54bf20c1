"""Data models for the event pipeline."""

from .attribution import (
    AttributionRecord,
    UTMParameters,
    DENIED_CONSENT,
    NOT_PROVIDED,
    NOT_SET,
)
from .consent import (
    CONSENT_CATEGORIES,
    ConsentDecision,
    ConsentRecord,
    ConsentSource,
    ConsentState,
)
from .events import (
    CONVERSION_EVENTS,
    CRITICAL_EVENTS,
    EventRecord,
    PageContext,
    PersistedQueue,
    QueuedEvent,
    SessionContext,
    is_conversion_event,
    is_critical_event,
)
from .location import COARSE_GEO_FIELDS, PRECISE_GEO_FIELDS, CoarseLocation, GeoLocation
from .delivery import (
    BotVerdict,
    DeliveryAttempt,
    DeliveryMode,
    DeliveryOutcome,
    EnvelopeEvent,
    EventEnvelope,
    RoutingStrategy,
    TransportKind,
)

__all__ = [
    # Attribution
    "AttributionRecord",
    "UTMParameters",
    "DENIED_CONSENT",
    "NOT_PROVIDED",
    "NOT_SET",

    # Consent
    "CONSENT_CATEGORIES",
    "ConsentDecision",
    "ConsentRecord",
    "ConsentSource",
    "ConsentState",

    # Events
    "CONVERSION_EVENTS",
    "CRITICAL_EVENTS",
    "EventRecord",
    "PageContext",
    "PersistedQueue",
    "QueuedEvent",
    "SessionContext",
    "is_conversion_event",
    "is_critical_event",

    # Location
    "COARSE_GEO_FIELDS",
    "PRECISE_GEO_FIELDS",
    "CoarseLocation",
    "GeoLocation",

    # Delivery
    "BotVerdict",
    "DeliveryAttempt",
    "DeliveryMode",
    "DeliveryOutcome",
    "EnvelopeEvent",
    "EventEnvelope",
    "RoutingStrategy",
    "TransportKind",
]
