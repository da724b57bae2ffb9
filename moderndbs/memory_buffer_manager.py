"""An in-memory stand-in for the buffer manager.

Pages are kept in a dictionary and never written to disk. The page count is
not enforced, pages are not latched and the replacement queues stay empty, so
it suits single-threaded use only.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(eq=False)
class PageFrame:
    """A page kept in memory; ``data`` is its mutable content."""

    page_id: int
    data: bytearray = field(default_factory=bytearray, repr=False)


class MemoryBufferManager:
    """Hands out zero-filled pages of ``page_size`` bytes that live in memory."""

    def __init__(self, page_size: int, page_count: int = 0) -> None:
        if page_size <= 0:
            raise ValueError("page size must be positive")
        self.page_size = page_size
        self.page_count = page_count
        self._pages: dict[int, PageFrame] = {}

    def fix_page(self, page_id: int, exclusive: bool = False) -> PageFrame:
        """Return the frame for ``page_id``, creating a zeroed page on first use."""
        frame = self._pages.get(page_id)
        if frame is None:
            frame = PageFrame(page_id, bytearray(self.page_size))
            self._pages[page_id] = frame
        return frame

    def unfix_page(self, page: PageFrame, is_dirty: bool) -> None:
        """Release a page handed out by this manager.

        Pages stay in memory, so nothing is written back; a frame that this
        manager did not hand out raises ``ValueError``.
        """
        if self._pages.get(page.page_id) is not page:
            raise ValueError(f"page {page.page_id} was not fixed by this manager")

    def get_fifo_list(self) -> list[int]:
        """Always empty: no replacement queues are kept."""
        return []

    def get_lru_list(self) -> list[int]:
        """Always empty: no replacement queues are kept."""
        return []