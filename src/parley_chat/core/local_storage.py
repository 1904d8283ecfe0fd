"""
Client-side durable storage.

A tiny JSON-file key/value store, the terminal equivalent of a browser's
``localStorage``.  It holds the active conversation id (``conversationId``)
and the identity access token.  Deleting the file orphans the server-side
conversation; the next bootstrap starts a fresh one.

Passing ``path=None`` keeps values in memory only.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import MutableMapping, Optional

_log = logging.getLogger(__name__)


class LocalStorage:
    """String-keyed, string-valued persistent storage."""

    def __init__(self, path: str | Path | None):
        self._path = Path(path) if path is not None else None
        self._memory: dict[str, str] = {}
        self._lock = threading.Lock()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _load(self) -> MutableMapping[str, str]:
        if self._path is None:
            return dict(self._memory)
        if self._path.is_file():
            try:
                with self._path.open("r", encoding="utf-8") as f:
                    data = json.load(f)
                    if isinstance(data, dict):
                        return {str(k): str(v) for k, v in data.items()}
            except (OSError, ValueError) as exc:
                _log.warning("Failed to read local storage %s: %s", self._path, exc)
        return {}

    def _save(self, data: MutableMapping[str, str]) -> None:
        if self._path is None:
            self._memory = dict(data)
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = str(value)
            self._save(data)

    def remove_item(self, key: str) -> bool:
        """Remove *key*; return whether it was present."""
        with self._lock:
            data = self._load()
            if key not in data:
                return False
            del data[key]
            self._save(data)
            return True

    def clear(self) -> None:
        with self._lock:
            self._save({})
