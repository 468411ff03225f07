"""
Local Key/Value Storage
=======================

Two storage tiers back the client-side identity cache:

- a session tier (``MemoryStorage``) holding the current identity snapshot,
  discarded with the process or on explicit logout;
- a long-lived tier (``JsonFileStorage``) holding the optional session-expiry
  epoch and the backend session artifacts.

Both tiers expose the same small string-to-string interface.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)


class KeyValueStorage:
    """String key/value storage interface."""

    def get_item(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove_item(self, key: str) -> None:
        raise NotImplementedError

    def keys(self) -> List[str]:
        raise NotImplementedError

    def clear(self) -> None:
        for key in self.keys():
            self.remove_item(key)

    def remove_prefixed(self, prefix: str) -> List[str]:
        """Remove every key starting with ``prefix`` and return the removed keys."""
        removed = [key for key in self.keys() if key.startswith(prefix)]
        for key in removed:
            self.remove_item(key)
        return removed

    def __contains__(self, key: str) -> bool:
        return self.get_item(key) is not None

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())


class MemoryStorage(KeyValueStorage):
    """In-process storage; contents vanish with the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = str(value)

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data.keys())

    def clear(self) -> None:
        self._data.clear()


class JsonFileStorage(KeyValueStorage):
    """
    Storage persisted as a single JSON object on disk.

    Every write rewrites the file through a temporary file and an atomic
    replace, so a crash never leaves a truncated document behind. A missing
    or unreadable file is treated as empty.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._data: Dict[str, str] = self._load()

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable local storage at {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring local storage at {self.path}: expected a JSON object")
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".storage-", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
        except OSError:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = str(value)
        self._flush()

    def remove_item(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._flush()

    def keys(self) -> List[str]:
        return list(self._data.keys())

    def clear(self) -> None:
        self._data.clear()
        self._flush()


def create_local_storage(path: Optional[str]) -> KeyValueStorage:
    """Build the long-lived tier: file-backed when a path is configured."""
    if path:
        return JsonFileStorage(path)
    return MemoryStorage()
