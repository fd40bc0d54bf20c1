"""Durable storage for queue, consent and user data slots."""

from .backends import JsonFileStorage, MemoryStorage, StorageBackend
from .slots import CONSENT_STORAGE_KEY, QUEUE_STORAGE_KEY, USER_DATA_KEY
from .user_data import UserData, UserDataStore

__all__ = [
    'JsonFileStorage',
    'MemoryStorage',
    'StorageBackend',
    'CONSENT_STORAGE_KEY',
    'QUEUE_STORAGE_KEY',
    'USER_DATA_KEY',
    'UserData',
    'UserDataStore',
]
