"""
Generic key-value settings store.

The hub persists exactly one thing (the OAuth token map) and does so under a
single key of the host's settings store. ``JsonFileSettingsStore`` is the
default backing for standalone use; hosts can supply their own store.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


class SettingsStore(ABC):
    """Key-value store for JSON-compatible values."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None when the key is absent."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store a JSON-compatible value under key."""
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete key if present."""
        pass


class MemorySettingsStore(SettingsStore):
    """Settings store that lives only as long as the process."""

    def __init__(self, initial: Optional[dict[str, Any]] = None) -> None:
        self._values: dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Optional[Any]:
        return self._values.get(key)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)


class JsonFileSettingsStore(SettingsStore):
    """Settings store backed by one JSON object on disk.

    Every write rewrites the whole file through a temporary file and an
    atomic rename, so a crash never leaves a half-written document.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def _read(self) -> dict[str, Any]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable settings file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, sort_keys=True)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> Optional[Any]:
        return self._read().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)
