"""Privacy package: anonymization and stored-data cleanup."""

from .anonymizer import Anonymizer, anonymize_user_agent
from .cleanup import (
    CleanupOptions,
    CleanupResult,
    cleanup_user_data,
    consent_withdrawal_cleanup,
    reset_all_tracking_data,
)

__all__ = [
    'Anonymizer',
    'anonymize_user_agent',
    'CleanupOptions',
    'CleanupResult',
    'cleanup_user_data',
    'consent_withdrawal_cleanup',
    'reset_all_tracking_data',
]
