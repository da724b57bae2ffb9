"""Page identifiers: a 16-bit segment id and a 48-bit page number in one integer."""

from __future__ import annotations

from dataclasses import dataclass

SEGMENT_SHIFT = 48
PAGE_MASK = (1 << SEGMENT_SHIFT) - 1
MAX_SEGMENT = 0xFFFF


def segment_id(page_id: int) -> int:
    """Return the segment id held in the 16 most significant bits."""
    return (page_id >> SEGMENT_SHIFT) & MAX_SEGMENT


def segment_page_id(page_id: int) -> int:
    """Return the page number within its segment (the 48 low bits)."""
    return page_id & PAGE_MASK


def make_page_id(segment: int, page: int) -> int:
    """Combine a segment id and a page number into a page id."""
    if not 0 <= segment <= MAX_SEGMENT:
        raise ValueError(f"segment id out of range: {segment}")
    if not 0 <= page <= PAGE_MASK:
        raise ValueError(f"segment page id out of range: {page}")
    return (segment << SEGMENT_SHIFT) + page


@dataclass(frozen=True, order=True)
class PID:
    """A page id wrapping its 64-bit integer value."""

    value: int

    @classmethod
    def from_parts(cls, segment: int, page: int) -> PID:
        """Build a page id from a segment id and a page number."""
        return cls(make_page_id(segment, page))

    @property
    def segment_id(self) -> int:
        return segment_id(self.value)

    @property
    def page_id(self) -> int:
        return segment_page_id(self.value)

    def __int__(self) -> int:
        return self.value

    def __str__(self) -> str:
        return f"(segNr: {self.segment_id}, pageNr: {self.page_id})"