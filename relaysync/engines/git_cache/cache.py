"""How much git data each repository has materialized locally."""

from __future__ import annotations

import threading
from enum import IntEnum


class DataLevel(IntEnum):
    NONE = 0
    REFS = 1
    SHALLOW = 2
    FULL = 3


class RepoDataCache:
    """Per-repository data level; the guard in front of every clone/fetch.

    Levels only rise, except across :meth:`invalidate` (force-push detected,
    repository deleted). Safe to share between the event loop and worker
    threads.
    """

    def __init__(self) -> None:
        self._levels: dict[str, DataLevel] = {}
        self._lock = threading.Lock()

    def level(self, repo_key: str) -> DataLevel:
        with self._lock:
            return self._levels.get(repo_key, DataLevel.NONE)

    def record_fetch(self, repo_key: str, level: DataLevel) -> DataLevel:
        """Raise the stored level to *level*; a lower level is ignored."""
        with self._lock:
            current = self._levels.get(repo_key, DataLevel.NONE)
            new = max(current, DataLevel(level))
            self._levels[repo_key] = new
            return new

    def should_skip(self, repo_key: str, requested: DataLevel) -> bool:
        return self.level(repo_key) >= requested

    def invalidate(self, repo_key: str) -> None:
        with self._lock:
            self._levels.pop(repo_key, None)

    def snapshot(self) -> dict[str, DataLevel]:
        with self._lock:
            return dict(self._levels)
