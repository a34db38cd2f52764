"""Storage backends for the LLM cache.

The cache only needs four operations keyed by ``(category, key)``; anything
that can provide them (a local directory, an object store bucket, a dict) can
back it.
"""

from __future__ import annotations

import logging
import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

_SAFE_NAME = re.compile(r"^[A-Za-z0-9_.-]+$")


class StorageBackend(ABC):
    """Minimal key/value capability keyed by category and key."""

    @abstractmethod
    def get(self, category: str, key: str) -> Optional[str]:
        """Return the stored payload, or None if absent."""
        ...

    @abstractmethod
    def set(self, category: str, key: str, data: str) -> None:
        """Store a payload, replacing any existing one."""
        ...

    @abstractmethod
    def list(self, category: str) -> list[str]:
        """List keys stored under a category."""
        ...

    @abstractmethod
    def delete(self, category: str, key: str) -> bool:
        """Delete a payload. Returns True if it existed."""
        ...

    def categories(self) -> list[str]:
        """List categories that currently hold data."""
        return []

    def size(self, category: str, key: str) -> int:
        """Payload size in bytes (0 if absent)."""
        data = self.get(category, key)
        return len(data.encode("utf-8")) if data is not None else 0


def _check_name(value: str) -> str:
    if not _SAFE_NAME.match(value):
        raise ValueError(f"Invalid storage name: {value!r}")
    return value


class LocalFileStorage(StorageBackend):
    """Stores each payload as ``{base_dir}/{category}/{key}.json``."""

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, category: str, key: str) -> Path:
        return self.base_dir / _check_name(category) / f"{_check_name(key)}.json"

    def get(self, category: str, key: str) -> Optional[str]:
        path = self._path(category, key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, category: str, key: str, data: str) -> None:
        path = self._path(category, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        # Write-then-rename so concurrent readers never see a partial file
        tmp_path = path.with_suffix(f".{threading.get_ident()}.tmp")
        tmp_path.write_text(data, encoding="utf-8")
        tmp_path.replace(path)

    def list(self, category: str) -> list[str]:
        directory = self.base_dir / _check_name(category)
        if not directory.is_dir():
            return []
        return sorted(p.stem for p in directory.glob("*.json"))

    def delete(self, category: str, key: str) -> bool:
        path = self._path(category, key)
        if not path.exists():
            return False
        path.unlink()
        return True

    def categories(self) -> list[str]:
        return sorted(p.name for p in self.base_dir.iterdir() if p.is_dir())

    def size(self, category: str, key: str) -> int:
        path = self._path(category, key)
        return path.stat().st_size if path.exists() else 0


class InMemoryStorage(StorageBackend):
    """Thread-safe in-process storage, mainly for tests."""

    def __init__(self):
        self._data: dict[str, dict[str, str]] = {}
        self._lock = threading.Lock()

    def get(self, category: str, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(category, {}).get(key)

    def set(self, category: str, key: str, data: str) -> None:
        with self._lock:
            self._data.setdefault(category, {})[key] = data

    def list(self, category: str) -> list[str]:
        with self._lock:
            return sorted(self._data.get(category, {}))

    def delete(self, category: str, key: str) -> bool:
        with self._lock:
            return self._data.get(category, {}).pop(key, None) is not None

    def categories(self) -> list[str]:
        with self._lock:
            return sorted(name for name, items in self._data.items() if items)
