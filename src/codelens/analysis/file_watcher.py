"""Watch a source tree and report debounced batches of changed files."""

import asyncio
import logging
import threading
import time
from pathlib import Path
from typing import Awaitable, Callable, Optional, Set, Tuple

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .code_analyzer import DEFAULT_EXCLUDES
from .parser import TypeScriptParser

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[Set[str], Set[str]], Awaitable[None]]

EDITOR_DIRECTORIES = {".idea", ".vscode"}
POLL_INTERVAL_SECONDS = 0.5


class SourceFileEventHandler(FileSystemEventHandler):
    """Collect changes to supported TypeScript/JavaScript files.

    watchdog calls the ``on_*`` methods from its observer thread; the pending
    sets are only touched under ``_lock``.
    """

    def __init__(self):
        super().__init__()
        self.exclude_dirs = DEFAULT_EXCLUDES | EDITOR_DIRECTORIES
        self.modified_files: Set[str] = set()
        self.deleted_files: Set[str] = set()
        self.last_change_time = 0.0
        self._lock = threading.Lock()

    def should_process_file(self, file_path: str) -> bool:
        path = Path(file_path)
        if any(part in self.exclude_dirs for part in path.parts):
            return False
        if path.name.startswith("."):
            return False
        return TypeScriptParser.is_supported_file(file_path)

    def _record(self, file_path: str, deleted: bool) -> None:
        with self._lock:
            if deleted:
                self.modified_files.discard(file_path)
                self.deleted_files.add(file_path)
            else:
                self.deleted_files.discard(file_path)
                self.modified_files.add(file_path)
            self.last_change_time = time.time()

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self.should_process_file(event.src_path):
            logger.debug(f"File modified: {event.src_path}")
            self._record(event.src_path, deleted=False)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self.should_process_file(event.src_path):
            logger.debug(f"File created: {event.src_path}")
            self._record(event.src_path, deleted=False)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self.should_process_file(event.src_path):
            logger.debug(f"File deleted: {event.src_path}")
            self._record(event.src_path, deleted=True)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return

        # A move is a delete of the old path and a create of the new one
        if self.should_process_file(event.src_path):
            self._record(event.src_path, deleted=True)
        dest_path = getattr(event, "dest_path", None)
        if dest_path and self.should_process_file(dest_path):
            self._record(dest_path, deleted=False)

    def get_pending_changes(self) -> Tuple[Set[str], Set[str]]:
        """Return (modified, deleted) and clear them."""
        with self._lock:
            modified, deleted = self.modified_files, self.deleted_files
            self.modified_files, self.deleted_files = set(), set()
        return modified, deleted

    def has_pending_changes(self) -> bool:
        with self._lock:
            return bool(self.modified_files or self.deleted_files)

    def time_since_last_change(self) -> float:
        return time.time() - self.last_change_time


class SourceWatcher:
    """Watch a directory and hand debounced change batches to a callback."""

    def __init__(
        self,
        watch_path: str,
        on_change_callback: ChangeCallback,
        debounce_seconds: float = 2.0,
        recursive: bool = True,
    ):
        """Initialize the watcher.

        Args:
            watch_path: Directory to watch
            on_change_callback: Async callback receiving (modified_files, deleted_files)
            debounce_seconds: Quiet period before a batch is delivered
            recursive: Whether to watch subdirectories
        """
        self.watch_path = Path(watch_path)
        self.on_change_callback = on_change_callback
        self.debounce_seconds = debounce_seconds

        self.event_handler = SourceFileEventHandler()
        self.observer = Observer()
        self.observer.schedule(self.event_handler, str(self.watch_path), recursive=recursive)

        self._running = False
        self._debounce_task: Optional[asyncio.Task] = None

        logger.info(f"Initialized file watcher for: {self.watch_path}")

    def start(self) -> None:
        if not self._running:
            self.observer.start()
            self._running = True
            logger.info(f"Started watching: {self.watch_path}")

    def stop(self) -> None:
        if self._running:
            self.observer.stop()
            self.observer.join(timeout=5.0)
            self._running = False
            logger.info("Stopped file watcher")

    def is_running(self) -> bool:
        return self._running

    async def flush(self) -> bool:
        """Deliver pending changes if the debounce period has elapsed.

        Returns:
            True if a batch was delivered
        """
        if not self.event_handler.has_pending_changes():
            return False
        if self.event_handler.time_since_last_change() < self.debounce_seconds:
            return False

        modified, deleted = self.event_handler.get_pending_changes()
        if not (modified or deleted):
            return False

        logger.info(f"Processing changes: {len(modified)} modified, {len(deleted)} deleted")
        try:
            await self.on_change_callback(modified, deleted)
        except Exception as e:
            logger.error(f"Error processing file changes: {e}")
        return True

    async def start_debounce_processor(self) -> None:
        logger.info("Started debounce processor")

        while self._running:
            try:
                await self.flush()
                await asyncio.sleep(POLL_INTERVAL_SECONDS)
            except asyncio.CancelledError:
                logger.info("Debounce processor cancelled")
                break
            except Exception as e:
                logger.error(f"Error in debounce processor: {e}")
                await asyncio.sleep(1.0)

    async def run_async(self) -> None:
        """Watch until ``stop`` is called."""
        self.start()
        self._debounce_task = asyncio.create_task(self.start_debounce_processor())

        try:
            while self._running:
                await asyncio.sleep(1.0)
        finally:
            self._debounce_task.cancel()
            try:
                await self._debounce_task
            except asyncio.CancelledError:
                pass

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
