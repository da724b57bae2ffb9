"""Block-wise access to files on disk."""

from __future__ import annotations

import enum
import os
import tempfile

_O_SYNC = getattr(os, "O_SYNC", 0)


class FileMode(enum.Enum):
    """Mode a file is opened with."""

    READ = "read"
    WRITE = "write"


class File:
    """A file read and written in blocks at explicit offsets."""

    def __init__(self, fd: int, mode: FileMode, size: int) -> None:
        self._fd: int | None = fd
        self.mode = mode
        self._size = size

    @classmethod
    def open(cls, path: str | os.PathLike, mode: FileMode) -> File:
        """Open ``path``; in write mode it is created if missing, never truncated."""
        if mode is FileMode.READ:
            fd = os.open(path, os.O_RDONLY | _O_SYNC)
        else:
            fd = os.open(path, os.O_RDWR | os.O_CREAT | _O_SYNC, 0o666)
        try:
            size = os.fstat(fd).st_size
        except OSError:
            os.close(fd)
            raise
        return cls(fd, mode, size)

    @classmethod
    def temporary(cls) -> File:
        """Open an anonymous file in write mode that vanishes once closed."""
        fd, path = tempfile.mkstemp(prefix=".tmpfile-", dir=os.getcwd())
        try:
            os.unlink(path)
        except OSError:
            os.close(fd)
            raise
        return cls(fd, FileMode.WRITE, 0)

    @property
    def closed(self) -> bool:
        return self._fd is None

    def _descriptor(self) -> int:
        if self._fd is None:
            raise ValueError("I/O operation on closed file")
        return self._fd

    def size(self) -> int:
        """Return the current size of the file in bytes."""
        self._descriptor()
        return self._size

    def resize(self, new_size: int) -> None:
        """Cut off or zero-extend the file to ``new_size`` bytes."""
        fd = self._descriptor()
        if new_size < 0:
            raise ValueError("size must not be negative")
        if new_size == self._size:
            return
        os.ftruncate(fd, new_size)
        self._size = new_size

    def read_block(self, offset: int, size: int) -> bytes:
        """Read ``size`` bytes at ``offset``; bytes past the end read as zero."""
        fd = self._descriptor()
        chunks = []
        done = 0
        while done < size:
            chunk = os.pread(fd, size - done, offset + done)
            if not chunk:
                break
            chunks.append(chunk)
            done += len(chunk)
        return b"".join(chunks).ljust(size, b"\0")

    def write_block(self, block: bytes, offset: int) -> None:
        """Write ``block`` at ``offset``; it must lie within the current size."""
        fd = self._descriptor()
        if self.mode is FileMode.READ:
            raise PermissionError("file was opened for reading only")
        view = memoryview(bytes(block))
        if offset < 0 or offset + len(view) > self._size:
            raise ValueError("block lies beyond the end of the file; resize first")
        done = 0
        while done < len(view):
            written = os.pwrite(fd, view[done:], offset + done)
            if written == 0:
                return
            done += written

    def close(self) -> None:
        """Close the file; closing twice is harmless."""
        if self._fd is not None:
            fd, self._fd = self._fd, None
            os.close(fd)

    def __enter__(self) -> File:
        return self

    def __exit__(self, *args) -> None:
        self.close()