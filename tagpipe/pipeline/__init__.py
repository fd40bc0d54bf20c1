"""Event pipeline package for TagPipe.

This package turns raw page interactions into analytics events: it resolves
marketing attribution, holds events until the visitor's consent decision,
strips data the decision does not allow and delivers the result through a
configurable routing strategy.
"""

from .config import PipelineConfiguration, get_pipeline_config, load_pipeline_config_from_file
from .consent import ConsentManager
from .errors import TagPipeError
from .models import ConsentRecord, ConsentState, DeliveryOutcome, PageContext
from .queue import EventQueue
from .storage import JsonFileStorage, MemoryStorage, StorageBackend
from .tracker import Tracker, create_tracker

__all__ = [
    # Entry points
    'Tracker',
    'create_tracker',

    # Configuration
    'PipelineConfiguration',
    'get_pipeline_config',
    'load_pipeline_config_from_file',

    # Components
    'ConsentManager',
    'EventQueue',

    # Storage
    'StorageBackend',
    'MemoryStorage',
    'JsonFileStorage',

    # Models
    'ConsentRecord',
    'ConsentState',
    'DeliveryOutcome',
    'PageContext',

    # Errors
    'TagPipeError',
]
