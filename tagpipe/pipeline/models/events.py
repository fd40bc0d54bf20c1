"""Event, session and page-context models."""

import uuid
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..utils.clock import now_ms


# Events whose loss materially harms reporting accuracy
CRITICAL_EVENTS = frozenset({"session_start", "first_visit", "page_view"})

# Events that take the persisted last-known attribution
CONVERSION_EVENTS = frozenset({"purchase", "generate_lead", "quote_request", "form_conversion"})

EventRecord = Dict[str, Any]


def is_critical_event(name: str) -> bool:
    return name in CRITICAL_EVENTS


def is_conversion_event(name: str) -> bool:
    return name in CONVERSION_EVENTS


class SessionContext(BaseModel):
    """Snapshot of the visitor's session, produced by the session store."""

    model_config = {"frozen": True}

    session_id: str = Field(description="Session identifier")
    start_time: int = Field(description="Session start in ms since epoch")
    is_new_session: bool = Field(default=False)
    is_first_visit: bool = Field(default=False)
    session_count: int = Field(default=1, ge=1)


class PageContext(BaseModel):
    """Browser-side facts about the page an interaction happened on."""

    page_url: str = ""
    referrer: str = ""
    hostname: str = ""
    page_title: str = ""
    user_agent: str = ""
    language: str = ""
    timezone: str = Field(default="", description="IANA timezone identifier of the local clock")
    screen_resolution: str = ""
    is_headless: bool = False
    webdriver: bool = False


class QueuedEvent(BaseModel):
    """An event captured while consent was undecided."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str
    payload: EventRecord = Field(default_factory=dict)
    enqueued_at: int = Field(default_factory=now_ms, description="Enqueue time in ms since epoch")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("Event name cannot be empty")
        return v

    def age_ms(self, now: Optional[int] = None) -> int:
        current = now if now is not None else now_ms()
        return current - self.enqueued_at


class PersistedQueue(BaseModel):
    """Shape of the queue storage slot."""

    events: List[QueuedEvent] = Field(default_factory=list)
    timestamp: int = Field(default_factory=now_ms)
    version: str = "1.0"
