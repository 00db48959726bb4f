"""In-memory cache of project analyses, invalidated by file change events."""

import logging
import os
import queue
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 100


@dataclass
class FileChangeEvent:
    """A file was created, modified, moved or deleted.

    An event without ``file_path`` invalidates every cached entry.
    """

    file_path: Optional[str] = None
    event_type: str = "modified"
    timestamp: float = field(default_factory=time.time)


@dataclass
class CacheEntry:
    key: str
    project_path: str
    value: Any
    created_at: float = field(default_factory=time.time)
    access_count: int = 0


def path_contains(project_path: str, file_path: str) -> bool:
    """Whether ``file_path`` is ``project_path`` or lies below it."""
    project = os.path.normpath(project_path)
    changed = os.path.normpath(file_path)
    return changed == project or changed.startswith(project.rstrip(os.sep) + os.sep)


class AnalysisCache:
    """LRU cache of analysis results keyed by project and options.

    Change events may be published from any thread (the file watcher runs in
    its own thread). They are queued and applied before every read, so a read
    never returns a result for a project with pending changes.

    Every applied event bumps a version counter. Callers take ``mark()``
    before computing a result and pass it to ``set``; a result computed
    before a change to its project is not stored.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        """Initialize the cache.

        Args:
            max_entries: Entries kept before the least recently used is evicted
        """
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._events: "queue.SimpleQueue[FileChangeEvent]" = queue.SimpleQueue()
        self._metrics = {"hits": 0, "misses": 0, "evictions": 0, "invalidations": 0}
        self._version = 0
        self._clear_version = 0
        # Changed path -> version of its latest change event
        self._path_versions: Dict[str, int] = {}

    def notify(self, event: FileChangeEvent) -> None:
        """Queue a change event. Safe to call from any thread."""
        self._events.put(event)

    def drain_events(self) -> int:
        """Apply every pending change event.

        Returns:
            Number of cache entries dropped
        """
        dropped = 0
        while True:
            try:
                event = self._events.get_nowait()
            except queue.Empty:
                break
            dropped += self._apply(event)
        return dropped

    def discard_events(self) -> None:
        while True:
            try:
                self._events.get_nowait()
            except queue.Empty:
                break

    def mark(self) -> int:
        """Apply pending events and return the current change version."""
        self.drain_events()
        return self._version

    def changed_since(self, project_path: str, version: int) -> bool:
        """Whether a change event for ``project_path`` was applied after ``version``."""
        if self._clear_version > version:
            return True
        return any(
            changed_at > version and path_contains(project_path, path)
            for path, changed_at in self._path_versions.items()
        )

    def _apply(self, event: FileChangeEvent) -> int:
        self._version += 1
        if event.file_path is None:
            self._clear_version = self._version
            count = len(self._entries)
            self._entries.clear()
        else:
            self._path_versions[os.path.normpath(event.file_path)] = self._version
            stale = [
                key
                for key, entry in self._entries.items()
                if path_contains(entry.project_path, event.file_path)
            ]
            for key in stale:
                del self._entries[key]
            count = len(stale)

        if count:
            self._metrics["invalidations"] += count
            logger.debug(
                f"Invalidated {count} cached analyses after {event.event_type}: {event.file_path}"
            )
        return count

    def get(self, key: str) -> Optional[Any]:
        self.drain_events()

        entry = self._entries.get(key)
        if entry is None:
            self._metrics["misses"] += 1
            return None

        self._entries.move_to_end(key)
        entry.access_count += 1
        self._metrics["hits"] += 1
        return entry.value

    def set(self, key: str, project_path: str, value: Any, since: Optional[int] = None) -> bool:
        """Store a result unless its project changed after ``since``.

        Args:
            key: Cache key
            project_path: Project the result belongs to
            value: Result to store
            since: Version from ``mark()`` taken before the result was computed

        Returns:
            True if the result was stored
        """
        self.drain_events()
        if since is not None and self.changed_since(project_path, since):
            logger.debug(f"Not caching stale analysis of {project_path}")
            return False

        self._entries[key] = CacheEntry(key=key, project_path=project_path, value=value)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            self._metrics["evictions"] += 1
        return True

    def invalidate(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def invalidate_path(self, file_path: str) -> int:
        """Drop entries for every project containing ``file_path`` right away."""
        self.drain_events()
        return self._apply(FileChangeEvent(file_path=file_path))

    def clear(self) -> None:
        self._entries.clear()
        self._metrics = {"hits": 0, "misses": 0, "evictions": 0, "invalidations": 0}

    def __len__(self) -> int:
        return len(self._entries)

    def get_metrics(self) -> Dict[str, Any]:
        lookups = self._metrics["hits"] + self._metrics["misses"]
        return {
            **self._metrics,
            "entries": len(self._entries),
            "pending_events": self._events.qsize(),
            "hit_rate": self._metrics["hits"] / lookups if lookups else 0,
        }
