"""Consent state package."""

from .manager import ConsentManager, DiscardingReplayTarget, ReplayTarget
from .storage import ConsentStore

__all__ = [
    'ConsentManager',
    'ConsentStore',
    'DiscardingReplayTarget',
    'ReplayTarget',
]
