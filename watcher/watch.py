"""File system watching for open tabs."""

import asyncio
import inspect
import itertools
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from core.config import Config, get_config

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[str], Any]

_ids = itertools.count(1)


def _norm(path: str) -> str:
    return os.path.normcase(os.path.abspath(path))


class FileChangeEvent:
    """Represents a file system change event."""

    def __init__(self, path: str, event_type: str, is_dir: bool = False):
        self.path = path
        self.event_type = event_type  # 'created', 'modified', 'deleted', 'moved'
        self.is_dir = is_dir
        self.timestamp = time.time()

    def __repr__(self):
        return f"FileChangeEvent({self.event_type}, {self.path})"


@dataclass
class Subscription:
    """Handle returned by ``FileWatchBridge.watch``."""
    path: str
    callback: ChangeCallback
    id: int = field(default_factory=lambda: next(_ids))


class _WatcherHandler(FileSystemEventHandler):
    def __init__(self, bridge: "FileWatchBridge"):
        self.bridge = bridge

    def on_created(self, event):
        if not event.is_directory:
            self.bridge._on_raw_event(FileChangeEvent(event.src_path, 'created'))

    def on_modified(self, event):
        if not event.is_directory:
            self.bridge._on_raw_event(FileChangeEvent(event.src_path, 'modified'))

    def on_deleted(self, event):
        if not event.is_directory:
            self.bridge._on_raw_event(FileChangeEvent(event.src_path, 'deleted'))

    def on_moved(self, event):
        if not event.is_directory:
            # Editors that save atomically rename a temp file over the target
            self.bridge._on_raw_event(FileChangeEvent(event.src_path, 'deleted'))
            self.bridge._on_raw_event(FileChangeEvent(event.dest_path, 'created'))


class FileWatchBridge:
    """Reference-counted, debounced per-path change notifications.

    Watchdog delivers events on its own thread; they are handed to the
    event loop and debounced there, so callbacks always run on the loop
    that owns the tab registry.
    """

    def __init__(
        self,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        config: Optional[Config] = None,
        observer_factory: Callable[[], Any] = Observer
    ):
        self.config = config or get_config()
        self.enabled = self.config.watch_enabled
        self.debounce_ms = self.config.watch_debounce_ms
        self.loop = loop
        self._observer_factory = observer_factory
        self._observer = None
        self._lock = threading.Lock()

        self._subs: Dict[str, List[Subscription]] = {}
        self._dir_watches: Dict[str, Any] = {}
        self._dir_refs: Dict[str, int] = {}
        self._pending: Dict[str, asyncio.TimerHandle] = {}
        self._tasks: set = set()

        # Stats
        self.stats = {
            'events_received': 0,
            'events_dispatched': 0,
            'last_update': 0.0,
        }

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self.loop is None:
            self.loop = asyncio.get_running_loop()
        return self.loop

    def _ensure_observer(self):
        if self._observer is None:
            self._observer = self._observer_factory()
            self._observer.start()
            logger.info("File watcher started")
        return self._observer

    def watch(self, path: str, callback: ChangeCallback) -> Optional[Subscription]:
        """
        Subscribe to changes of ``path``.

        Args:
            path: File to watch.
            callback: Called with the path on the event loop; may be a coroutine function.

        Returns:
            Subscription handle, or None when watching is disabled or fails.
        """
        if not self.enabled or not path:
            return None

        self._get_loop()
        key = _norm(path)
        directory = os.path.dirname(key)
        sub = Subscription(path=path, callback=callback)

        with self._lock:
            first_for_path = key not in self._subs
            self._subs.setdefault(key, []).append(sub)

            if first_for_path:
                try:
                    if self._dir_refs.get(directory, 0) == 0:
                        observer = self._ensure_observer()
                        self._dir_watches[directory] = observer.schedule(
                            _WatcherHandler(self), directory, recursive=False
                        )
                    self._dir_refs[directory] = self._dir_refs.get(directory, 0) + 1
                except Exception as e:
                    self._subs.pop(key, None)
                    logger.warning(f"Failed to watch {path}: {e}")
                    return None

        logger.debug(f"Watching {path} ({len(self._subs[key])} subscribers)")
        return sub

    def unwatch(self, subscription: Optional[Subscription]) -> None:
        """Drop a subscription; the OS watch goes away with the last one."""
        if subscription is None:
            return

        key = _norm(subscription.path)
        directory = os.path.dirname(key)

        with self._lock:
            subs = self._subs.get(key)
            if not subs or subscription not in subs:
                return
            subs.remove(subscription)
            if subs:
                return

            del self._subs[key]
            handle = self._pending.pop(key, None)
            if handle is not None:
                handle.cancel()

            self._dir_refs[directory] = self._dir_refs.get(directory, 1) - 1
            if self._dir_refs[directory] <= 0:
                del self._dir_refs[directory]
                watch = self._dir_watches.pop(directory, None)
                if watch is not None and self._observer is not None:
                    try:
                        self._observer.unschedule(watch)
                    except Exception as e:
                        logger.warning(f"Failed to unwatch {directory}: {e}")

        logger.debug(f"Stopped watching {subscription.path}")

    def subscriptions(self) -> Dict[str, int]:
        """Subscriber count per watched path."""
        with self._lock:
            return {subs[0].path: len(subs) for subs in self._subs.values() if subs}

    def _on_raw_event(self, event: FileChangeEvent) -> None:
        """Called on the watchdog thread."""
        with self._lock:
            watched = _norm(event.path) in self._subs and self.loop is not None
            if watched:
                self.stats['events_received'] += 1
        if not watched:
            return
        self.loop.call_soon_threadsafe(self._queue_event, event)

    def _queue_event(self, event: FileChangeEvent) -> None:
        """Debounce: replace any pending notification for the same path."""
        key = _norm(event.path)
        handle = self._pending.pop(key, None)
        if handle is not None:
            handle.cancel()
        self._pending[key] = self._get_loop().call_later(
            self.debounce_ms / 1000.0, self._dispatch, key
        )

    def _dispatch(self, key: str) -> None:
        self._pending.pop(key, None)
        with self._lock:
            subs = list(self._subs.get(key, []))
        if not subs:
            return

        self.stats['events_dispatched'] += 1
        self.stats['last_update'] = time.time()

        # Subscribers sharing a callback get one notification
        seen = []
        for sub in subs:
            if sub.callback in seen:
                continue
            seen.append(sub.callback)
            try:
                result = sub.callback(sub.path)
                if inspect.isawaitable(result):
                    task = self._get_loop().create_task(result)
                    self._tasks.add(task)
                    task.add_done_callback(self._tasks.discard)
            except Exception as e:
                logger.error(f"Callback error: {e}")

    def stop(self) -> None:
        """Stop the observer and drop all subscriptions."""
        for handle in self._pending.values():
            handle.cancel()
        self._pending.clear()

        with self._lock:
            self._subs.clear()
            self._dir_refs.clear()
            self._dir_watches.clear()
            observer, self._observer = self._observer, None

        if observer is not None:
            observer.stop()
            observer.join(timeout=5.0)
            logger.info("File watcher stopped")

    def get_stats(self) -> Dict:
        """Get watcher statistics."""
        return dict(self.stats)
