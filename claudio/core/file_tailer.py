"""Incremental tailer for append-only JSONL transcript files.

Only bytes appended after `watch()` matter: history is owned by whoever
parses the session index. Watchdog callbacks arrive on the observer thread
and are queued onto the event loop; a single consumer task reads and frames
the data, so lines from one file are delivered strictly in file order.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import BinaryIO, Literal, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver, ObservedWatch

from claudio.core.line_buffer import LineBuffer
from claudio.core.models import WatchedLine
from claudio.core.subscriptions import Handler, Subscribers, Subscription

logger = logging.getLogger(__name__)

TailEventKind = Literal["modified", "gone"]


def _normalize(path: str) -> str:
    return os.path.realpath(os.path.expanduser(path))


@dataclass
class TailState:
    path: str  # As given by the caller; echoed back in WatchedLine
    handle: BinaryIO
    buffer: LineBuffer = field(default_factory=LineBuffer)


@dataclass
class _DirectoryWatch:
    watch: Optional[ObservedWatch]
    files: set[str] = field(default_factory=set)


class _DirectoryHandler(FileSystemEventHandler):
    """Watchdog handler for one directory; forwards events for watched files only."""

    def __init__(self, tailer: "FileTailer") -> None:
        super().__init__()
        self._tailer = tailer

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._tailer._enqueue("modified", event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._tailer._enqueue("gone", event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._tailer._enqueue("gone", event.src_path)


class FileTailer:
    """Watches files for appended newline-delimited records."""

    def __init__(self) -> None:
        self._lines: Subscribers[WatchedLine] = Subscribers("watched line")
        self._states: dict[str, TailState] = {}
        self._directories: dict[str, _DirectoryWatch] = {}
        self._handler = _DirectoryHandler(self)
        self._observer: Optional[BaseObserver] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue[tuple[TailEventKind, str]]] = None
        self._consumer: Optional[asyncio.Task[None]] = None
        self._read_lock = asyncio.Lock()

    def subscribe(self, handler: Handler[WatchedLine]) -> Subscription:
        return self._lines.subscribe(handler)

    @property
    def watched_paths(self) -> set[str]:
        return {state.path for state in self._states.values()}

    def is_watching(self, path: str) -> bool:
        return _normalize(path) in self._states

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        if self._consumer and not self._consumer.done():
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        observer = Observer()
        observer.daemon = True
        observer.start()
        self._observer = observer
        self._consumer = asyncio.create_task(self._consume())
        logger.info("FileTailer started")

    async def stop(self) -> None:
        self.unwatch_all()
        self._loop = None
        self._queue = None
        if self._consumer:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None
        if self._observer:
            observer = self._observer
            self._observer = None
            observer.stop()
            await asyncio.to_thread(observer.join, 2)
        logger.info("FileTailer stopped")

    # ==================== Watch management ====================

    def watch(self, path: str) -> bool:
        """Start tailing `path` from its current end. Returns False if it cannot be opened."""
        if self._loop is None:
            raise RuntimeError("FileTailer not started - call start() first")

        key = _normalize(path)
        if key in self._states:
            return True

        try:
            handle = open(key, "rb")  # noqa: SIM115 - closed in unwatch()
        except OSError as e:
            logger.warning("Cannot watch %s: %s", path, e)
            return False
        handle.seek(0, os.SEEK_END)
        self._states[key] = TailState(path=path, handle=handle)

        directory = os.path.dirname(key)
        entry = self._directories.get(directory)
        if entry is None:
            watch = self._observer.schedule(self._handler, directory, recursive=False) if self._observer else None
            entry = _DirectoryWatch(watch=watch)
            self._directories[directory] = entry
        entry.files.add(key)

        logger.debug("Watching %s from offset %d", path, handle.tell())
        return True

    def unwatch(self, path: str) -> None:
        """Stop tailing `path`; unknown paths are ignored."""
        key = _normalize(path)
        state = self._states.pop(key, None)
        if state is None:
            return
        state.buffer.clear()
        try:
            state.handle.close()
        except OSError as e:
            logger.debug("Error closing %s: %s", path, e)

        directory = os.path.dirname(key)
        entry = self._directories.get(directory)
        if entry:
            entry.files.discard(key)
            if not entry.files:
                del self._directories[directory]
                if entry.watch is not None and self._observer is not None:
                    try:
                        self._observer.unschedule(entry.watch)
                    except (KeyError, OSError) as e:
                        logger.debug("Unschedule failed for %s: %s", directory, e)
        logger.debug("Stopped watching %s", path)

    def unwatch_all(self) -> None:
        for state in list(self._states.values()):
            self.unwatch(state.path)

    # ==================== Event handling ====================

    def _enqueue(self, kind: TailEventKind, src_path: object) -> None:
        """Called on the observer thread."""
        if not isinstance(src_path, str) or self._loop is None or self._queue is None:
            return
        key = _normalize(src_path)
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, (kind, key))
        except RuntimeError:
            pass  # Loop closed

    async def _consume(self) -> None:
        queue = self._queue
        assert queue is not None
        while True:
            kind, key = await queue.get()
            state = self._states.get(key)
            if state is None:
                continue
            if kind == "gone":
                logger.info("Watched file %s deleted or renamed; unwatching", state.path)
                self.unwatch(state.path)
                continue
            try:
                await self._read_available(key, state)
            except OSError as e:
                logger.error("Error tailing file %s: %s", state.path, e)

    async def poll(self, path: str) -> None:
        """Read whatever was appended to `path` without waiting for a notification."""
        key = _normalize(path)
        state = self._states.get(key)
        if state is not None:
            await self._read_available(key, state)

    async def _read_available(self, key: str, state: TailState) -> None:
        async with self._read_lock:
            if key in self._states:
                await self._drain(key, state)

    async def _drain(self, key: str, state: TailState) -> None:
        handle = state.handle
        position = handle.tell()
        if os.fstat(handle.fileno()).st_size < position:
            logger.info("Watched file %s was truncated; restarting from the beginning", state.path)
            handle.seek(0)
            state.buffer.clear()

        data = handle.read()
        if not data:
            return

        for line in state.buffer.feed(data):
            if key not in self._states:
                return  # Unwatched by a subscriber mid-batch
            if line:
                await self._lines.emit(WatchedLine(path=state.path, data=line))
