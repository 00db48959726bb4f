"""Tests for the source file watcher."""

import pytest
from watchdog.events import (
    DirModifiedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from codelens.analysis.file_watcher import SourceFileEventHandler, SourceWatcher


@pytest.fixture
def handler():
    return SourceFileEventHandler()


class TestEventHandler:
    @pytest.mark.parametrize(
        "path,expected",
        [
            ("/work/src/app.ts", True),
            ("/work/src/view.jsx", True),
            ("/work/node_modules/lib/index.js", False),
            ("/work/.vscode/settings.ts", False),
            ("/work/src/.hidden.ts", False),
            ("/work/README.md", False),
        ],
    )
    def test_should_process_file(self, handler, path, expected):
        assert handler.should_process_file(path) is expected

    def test_modified_and_created(self, handler):
        handler.on_modified(FileModifiedEvent("/work/a.ts"))
        handler.on_created(FileCreatedEvent("/work/b.ts"))
        handler.on_modified(FileModifiedEvent("/work/notes.txt"))
        handler.on_modified(DirModifiedEvent("/work/src"))

        modified, deleted = handler.get_pending_changes()

        assert modified == {"/work/a.ts", "/work/b.ts"}
        assert deleted == set()
        assert not handler.has_pending_changes()

    def test_delete_after_modify_wins(self, handler):
        handler.on_modified(FileModifiedEvent("/work/a.ts"))
        handler.on_deleted(FileDeletedEvent("/work/a.ts"))

        modified, deleted = handler.get_pending_changes()

        assert modified == set()
        assert deleted == {"/work/a.ts"}

    def test_recreate_after_delete(self, handler):
        handler.on_deleted(FileDeletedEvent("/work/a.ts"))
        handler.on_created(FileCreatedEvent("/work/a.ts"))

        assert handler.get_pending_changes() == ({"/work/a.ts"}, set())

    def test_move_is_delete_plus_create(self, handler):
        handler.on_moved(FileMovedEvent("/work/old.ts", "/work/new.ts"))

        assert handler.get_pending_changes() == ({"/work/new.ts"}, {"/work/old.ts"})

    def test_move_out_of_scope(self, handler):
        handler.on_moved(FileMovedEvent("/work/a.ts", "/work/a.ts.bak"))

        assert handler.get_pending_changes() == (set(), {"/work/a.ts"})


@pytest.mark.asyncio
class TestDebounce:
    async def test_flush_delivers_batch(self, tmp_path):
        batches = []

        async def on_change(modified, deleted):
            batches.append((modified, deleted))

        watcher = SourceWatcher(str(tmp_path), on_change, debounce_seconds=0)
        watcher.event_handler.on_modified(FileModifiedEvent(str(tmp_path / "a.ts")))

        assert await watcher.flush() is True
        assert batches == [({str(tmp_path / "a.ts")}, set())]
        assert await watcher.flush() is False

    async def test_flush_waits_for_quiet_period(self, tmp_path):
        async def on_change(modified, deleted):
            raise AssertionError("should not be called")

        watcher = SourceWatcher(str(tmp_path), on_change, debounce_seconds=60)
        watcher.event_handler.on_modified(FileModifiedEvent(str(tmp_path / "a.ts")))

        assert await watcher.flush() is False
        assert watcher.event_handler.has_pending_changes()

    async def test_callback_errors_are_contained(self, tmp_path):
        async def on_change(modified, deleted):
            raise RuntimeError("boom")

        watcher = SourceWatcher(str(tmp_path), on_change, debounce_seconds=0)
        watcher.event_handler.on_deleted(FileDeletedEvent(str(tmp_path / "a.ts")))

        assert await watcher.flush() is True
        assert not watcher.event_handler.has_pending_changes()

    async def test_start_and_stop(self, tmp_path):
        async def on_change(modified, deleted):
            pass

        with SourceWatcher(str(tmp_path), on_change) as watcher:
            assert watcher.is_running()
        assert not watcher.is_running()
