"""Durable key/value storage backends.

Values are stored as serialized strings, mirroring browser-style local
storage. Reads and writes are synchronous so that callers can perform a full
read-modify-write cycle without yielding to the event loop.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..errors import StorageError

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """Abstract base class for durable storage slots."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the raw stored string for ``key`` or None when absent."""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a raw string under ``key``.

        Raises:
            StorageError: If the value cannot be written
        """
        pass

    @abstractmethod
    def remove(self, key: str) -> bool:
        """Delete ``key``; returns True if something was removed."""
        pass

    @abstractmethod
    def keys(self) -> List[str]:
        pass

    def get_json(self, key: str) -> Optional[Any]:
        """Read and parse a JSON slot.

        Unparsable content is wiped and treated as absent.
        """
        raw = self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Discarding corrupt storage slot {key}: {e}")
            self.remove(key)
            return None

    def set_json(self, key: str, value: Any) -> None:
        try:
            encoded = json.dumps(value, separators=(',', ':'), default=str)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value for {key} is not serializable: {e}")
        self.set(key, encoded)


class MemoryStorage(StorageBackend):
    """In-process storage, used by tests and short-lived trackers."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def keys(self) -> List[str]:
        return list(self._data.keys())


class JsonFileStorage(StorageBackend):
    """Storage persisted as a single JSON document on disk.

    The document is re-read on every access so that separate processes (for
    example successive CLI invocations) observe each other's writes. Writes go
    to a temporary file that is then renamed over the original.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Storage file {self.path} is unreadable, starting empty: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Storage file {self.path} has unexpected shape, starting empty")
            return {}
        return {str(k): v if isinstance(v, str) else json.dumps(v) for k, v in data.items()}

    def _save(self, data: Dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), suffix='.tmp')
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageError(f"Failed to write storage file {self.path}: {e}")

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove(self, key: str) -> bool:
        data = self._load()
        if key not in data:
            return False
        del data[key]
        self._save(data)
        return True

    def keys(self) -> List[str]:
        return list(self._load().keys())
