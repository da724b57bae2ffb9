"""A thread-safe buffer manager caching fixed-size pages of segment files.

Pages enter a FIFO queue when first loaded and move to an LRU queue once
they are fixed again. Eviction prefers unfixed pages from the FIFO queue,
then from the LRU queue. Each segment lives in a file named after its id.
"""

from __future__ import annotations

import enum
import os
import threading
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from .errors import BufferFullError
from .file import File, FileMode
from .pid import segment_id, segment_page_id


class _FrameState(enum.Enum):
    NEW = enum.auto()  # no data yet; a buffer is being found for it
    LOADING = enum.auto()  # data is being read from disk
    LOADED = enum.auto()  # data is in memory
    EVICTING = enum.auto()  # chosen for eviction, being written out
    RELOADED = enum.auto()  # fixed again while it was being evicted


class _SharedLock:
    """A readers-writer lock: many shared holders or one exclusive holder."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    def acquire(self, exclusive: bool) -> None:
        with self._cond:
            if exclusive:
                self._cond.wait_for(lambda: not self._writer and self._readers == 0)
                self._writer = True
            else:
                self._cond.wait_for(lambda: not self._writer)
                self._readers += 1

    def release(self) -> None:
        with self._cond:
            if self._writer:
                self._writer = False
            elif self._readers > 0:
                self._readers -= 1
            else:
                raise RuntimeError("release of an unheld lock")
            self._cond.notify_all()


class BufferFrame:
    """A page held in memory; ``data`` is its mutable content."""

    def __init__(self, page_id: int) -> None:
        self.page_id = page_id
        self.data: bytearray | None = None
        self._latch = _SharedLock()
        self._state = _FrameState.NEW
        self._users = 0
        self._dirty = False

    def __repr__(self) -> str:
        return f"BufferFrame(page_id={self.page_id}, state={self._state.name})"


@dataclass
class _SegmentFile:
    file: File
    lock: threading.Lock = field(default_factory=threading.Lock)


class BufferManager:
    """Caches at most ``page_count`` pages of ``page_size`` bytes each."""

    def __init__(
        self,
        page_size: int,
        page_count: int,
        directory: str | os.PathLike | None = None,
    ) -> None:
        if page_size <= 0:
            raise ValueError("page size must be positive")
        if page_count < 0:
            raise ValueError("page count must not be negative")
        self.page_size = page_size
        self.page_count = page_count
        self.directory = Path(directory) if directory is not None else Path(".")
        self._latch = threading.Lock()
        self._frames: dict[int, BufferFrame] = {}
        self._fifo: OrderedDict[int, BufferFrame] = OrderedDict()
        self._lru: OrderedDict[int, BufferFrame] = OrderedDict()
        self._segment_files: dict[int, _SegmentFile] = {}
        self._closed = False

    @contextmanager
    def _unlatched(self) -> Iterator[None]:
        """Release the directory latch for the duration of the block."""
        self._latch.release()
        try:
            yield
        finally:
            self._latch.acquire()

    def fix_page(self, page_id: int, exclusive: bool = False) -> BufferFrame:
        """Return the frame for ``page_id``, loading it if needed, and lock it.

        Raises BufferFullError when no page can be evicted to make room.
        """
        with self._latch:
            if self._closed:
                raise ValueError("buffer manager is closed")
            frame = self._frames.get(page_id)
            while frame is not None:
                frame._users += 1
                if frame._state is _FrameState.EVICTING:
                    frame._state = _FrameState.RELOADED
                elif frame._state is _FrameState.NEW:
                    # Another thread is looking for a buffer for this page.
                    with self._unlatched():
                        frame._latch.acquire(True)
                        frame._latch.release()
                    if frame._state is _FrameState.NEW:
                        frame._users -= 1
                        if frame._users == 0 and self._frames.get(page_id) is frame:
                            del self._frames[page_id]
                        frame = self._frames.get(page_id)
                        continue
                self._promote(frame)
                break
            else:
                frame = self._load_new(page_id)
        frame._latch.acquire(exclusive)
        return frame

    def unfix_page(self, page: BufferFrame, is_dirty: bool) -> None:
        """Release a fixed page; a dirty page is written back eventually."""
        page._latch.release()
        with self._latch:
            if is_dirty:
                page._dirty = True
            page._users -= 1

    def get_fifo_list(self) -> list[int]:
        """Page ids in the FIFO queue, oldest first. Not thread-safe."""
        return list(self._fifo)

    def get_lru_list(self) -> list[int]:
        """Page ids in the LRU queue, least recently used first. Not thread-safe."""
        return list(self._lru)

    def close(self) -> None:
        """Write all loaded pages to disk and close the segment files."""
        with self._latch:
            if self._closed:
                return
            self._closed = True
            for frame in self._frames.values():
                if frame.data is not None and frame._state in (
                    _FrameState.LOADED,
                    _FrameState.RELOADED,
                ):
                    self._write_block(frame.page_id, bytes(frame.data))
                    frame._dirty = False
            for segment in self._segment_files.values():
                segment.file.close()
            self._segment_files.clear()

    def __enter__(self) -> BufferManager:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _promote(self, frame: BufferFrame) -> None:
        """Refresh a page in the LRU queue, or move it there from the FIFO queue."""
        if frame.page_id in self._lru:
            self._lru.move_to_end(frame.page_id)
        else:
            self._fifo.pop(frame.page_id, None)
            self._lru[frame.page_id] = frame

    def _load_new(self, page_id: int) -> BufferFrame:
        """Create, register and load a frame; the caller holds the latch."""
        frame = BufferFrame(page_id)
        frame._users = 1
        frame._latch.acquire(True)
        self._frames[page_id] = frame
        if len(self._frames) - 1 < self.page_count:
            data = bytearray(self.page_size)
        else:
            data = self._evict_page()
            if data is None:
                frame._users -= 1
                frame._latch.release()
                if self._frames.get(page_id) is frame:
                    del self._frames[page_id]
                raise BufferFullError()
        frame._state = _FrameState.LOADING
        frame.data = data
        self._fifo[page_id] = frame
        self._load_page(frame)
        frame._latch.release()
        return frame

    def _segment_file(self, segment: int) -> _SegmentFile:
        entry = self._segment_files.get(segment)
        if entry is None:
            entry = _SegmentFile(File.open(self.directory / str(segment), FileMode.WRITE))
            self._segment_files[segment] = entry
        return entry

    def _load_page(self, frame: BufferFrame) -> None:
        """Read a page from its segment file, growing the file when it is too short."""
        segment = self._segment_file(segment_id(frame.page_id))
        offset = segment_page_id(frame.page_id) * self.page_size
        end = offset + self.page_size
        with segment.lock:
            fresh = segment.file.size() < end
            if fresh:
                segment.file.resize(end)
        if fresh:
            frame.data[:] = bytes(self.page_size)
        else:
            with self._unlatched():
                frame.data[:] = segment.file.read_block(offset, self.page_size)
        frame._state = _FrameState.LOADED
        frame._dirty = False

    def _write_block(self, page_id: int, data: bytes) -> None:
        segment = self._segment_files[segment_id(page_id)]
        segment.file.write_block(data, segment_page_id(page_id) * self.page_size)

    def _find_victim(self) -> BufferFrame | None:
        for queue in (self._fifo, self._lru):
            for frame in queue.values():
                if frame._users == 0 and frame._state is _FrameState.LOADED:
                    return frame
        return None

    def _evict_page(self) -> bytearray | None:
        """Evict an unfixed page and hand back its buffer, or None if none can go."""
        while True:
            victim = self._find_victim()
            if victim is None:
                return None
            victim._state = _FrameState.EVICTING
            if not victim._dirty:
                break
            # Write a snapshot so others may keep using the page meanwhile.
            snapshot = bytes(victim.data)
            with self._unlatched():
                self._write_block(victim.page_id, snapshot)
            if victim._state is _FrameState.EVICTING:
                break
            victim._state = _FrameState.LOADED
        if victim.page_id in self._lru:
            del self._lru[victim.page_id]
        else:
            del self._fifo[victim.page_id]
        del self._frames[victim.page_id]
        data = victim.data
        victim.data = None
        return data