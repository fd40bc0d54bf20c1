"""Pre-consent event queue package."""

from .event_queue import EventQueue, EventQueueStats, QUEUE_FORMAT_VERSION

__all__ = [
    'EventQueue',
    'EventQueueStats',
    'QUEUE_FORMAT_VERSION',
]
