"""Tests for the file watch bridge."""

import asyncio
import threading
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.config import with_overrides
from watcher.watch import FileChangeEvent, FileWatchBridge, _WatcherHandler


def _bridge(config, **overrides):
    observer = MagicMock()
    observer.schedule.side_effect = lambda handler, directory, recursive: ("watch", directory)
    bridge = FileWatchBridge(config=with_overrides(config, **overrides), observer_factory=lambda: observer)
    return bridge, observer


class TestFileWatchBridge:

    def test_file_change_event(self):
        event = FileChangeEvent("a.txt", "modified")
        assert event.path == "a.txt"
        assert event.event_type == "modified"
        assert not event.is_dir
        assert isinstance(event.timestamp, float)

    @pytest.mark.asyncio
    async def test_watches_are_reference_counted(self, config, tmp_path):
        bridge, observer = _bridge(config)
        a, b = str(tmp_path / "a.txt"), str(tmp_path / "b.txt")

        first = bridge.watch(a, lambda p: None)
        second = bridge.watch(a, lambda p: None)
        third = bridge.watch(b, lambda p: None)

        assert observer.schedule.call_count == 1
        observer.start.assert_called_once()
        assert bridge.subscriptions() == {a: 2, b: 1}

        bridge.unwatch(first)
        bridge.unwatch(third)
        observer.unschedule.assert_not_called()

        bridge.unwatch(second)
        observer.unschedule.assert_called_once_with(("watch", str(tmp_path)))
        assert bridge.subscriptions() == {}

        # Unwatching twice is harmless
        bridge.unwatch(second)
        bridge.unwatch(None)

    @pytest.mark.asyncio
    async def test_disabled_watcher_returns_none(self, config, tmp_path):
        bridge, observer = _bridge(config, watch_enabled=False)
        assert bridge.watch(str(tmp_path / "a.txt"), lambda p: None) is None
        observer.schedule.assert_not_called()

    @pytest.mark.asyncio
    async def test_schedule_failure_returns_none(self, config, tmp_path):
        bridge, observer = _bridge(config)
        observer.schedule.side_effect = OSError("inotify limit reached")

        assert bridge.watch(str(tmp_path / "a.txt"), lambda p: None) is None
        assert bridge.subscriptions() == {}

    @pytest.mark.asyncio
    async def test_events_are_debounced_onto_the_loop(self, config, tmp_path):
        bridge, _ = _bridge(config, watch_debounce_ms=20)
        path = str(tmp_path / "a.txt")
        calls = []
        bridge.watch(path, lambda p: calls.append((p, threading.get_ident())))

        def fire():
            for _ in range(5):
                bridge._on_raw_event(FileChangeEvent(path, "modified"))

        worker = threading.Thread(target=fire)
        worker.start()
        worker.join()
        await asyncio.sleep(0.1)

        assert len(calls) == 1
        assert calls[0] == (path, threading.get_ident())
        assert bridge.get_stats()["events_received"] == 5
        assert bridge.get_stats()["events_dispatched"] == 1

    @pytest.mark.asyncio
    async def test_events_from_several_threads_are_all_counted(self, config, tmp_path):
        bridge, _ = _bridge(config)
        path = str(tmp_path / "a.txt")
        bridge.watch(path, lambda p: None)

        def fire():
            for _ in range(200):
                bridge._on_raw_event(FileChangeEvent(path, "modified"))
            bridge._on_raw_event(FileChangeEvent(str(tmp_path / "other.txt"), "modified"))

        workers = [threading.Thread(target=fire) for _ in range(4)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()
        await asyncio.sleep(0.05)

        assert bridge.get_stats()["events_received"] == 800

    @pytest.mark.asyncio
    async def test_coroutine_callbacks_and_shared_subscribers(self, config, tmp_path):
        bridge, _ = _bridge(config)
        path = str(tmp_path / "a.txt")
        callback = AsyncMock()
        bridge.watch(path, callback)
        bridge.watch(path, callback)

        bridge._on_raw_event(FileChangeEvent(path, "modified"))
        await asyncio.sleep(0.05)

        callback.assert_awaited_once_with(path)

    @pytest.mark.asyncio
    async def test_unwatched_paths_are_ignored(self, config, tmp_path):
        bridge, _ = _bridge(config)
        calls = []
        bridge.watch(str(tmp_path / "a.txt"), calls.append)

        bridge._on_raw_event(FileChangeEvent(str(tmp_path / "other.txt"), "modified"))
        await asyncio.sleep(0.05)

        assert calls == []

    @pytest.mark.asyncio
    async def test_stop(self, config, tmp_path):
        bridge, observer = _bridge(config)
        bridge.watch(str(tmp_path / "a.txt"), lambda p: None)

        bridge.stop()

        observer.stop.assert_called_once()
        observer.join.assert_called_once()
        assert bridge.subscriptions() == {}


def test_handler_maps_moves_to_delete_and_create():
    bridge = MagicMock()
    handler = _WatcherHandler(bridge)

    handler.on_moved(SimpleNamespace(is_directory=False, src_path="/d/.a.swp", dest_path="/d/a.txt"))
    handler.on_modified(SimpleNamespace(is_directory=True, src_path="/d"))

    events = [c.args[0] for c in bridge._on_raw_event.call_args_list]
    assert [(e.event_type, e.path) for e in events] == [("deleted", "/d/.a.swp"), ("created", "/d/a.txt")]
