"""B+ tree nodes laid out inside page buffers.

Every node starts with a header of a 16-bit level and a 16-bit count, padded
to 8 bytes. Level 0 marks a leaf. An inner node stores ``capacity`` child page
ids followed by ``capacity`` keys; the last key is never valid. A leaf stores
``capacity`` keys followed by ``capacity`` values. All integers are little
endian; keys and values use ``struct`` formats (unsigned 64-bit by default).
"""

from __future__ import annotations

import struct
from bisect import bisect_left
from typing import Any

_U16 = struct.Struct("<H")
_HEADER_SIZE = 8
_NODE_SIZE = 4
_LEAF_RESERVED = 16  # room kept for a link to the next leaf
_CHILD_FORMAT = "Q"


class _Slots:
    """A fixed-size array of packed items at an offset of a buffer."""

    def __init__(self, view: memoryview, offset: int, fmt: str, capacity: int) -> None:
        self._view = view
        self._offset = offset
        self._item = struct.Struct("<" + fmt)
        self.capacity = capacity

    def _pos(self, index: int) -> int:
        return self._offset + index * self._item.size

    def __getitem__(self, index: int) -> Any:
        return self._item.unpack_from(self._view, self._pos(index))[0]

    def __setitem__(self, index: int, value: Any) -> None:
        self._item.pack_into(self._view, self._pos(index), value)

    def read(self, start: int, stop: int) -> list:
        raw = self._view[self._pos(start):self._pos(stop)]
        return [item for (item,) in self._item.iter_unpack(raw)]

    def move(self, src: int, dst: int, n: int) -> None:
        if n <= 0:
            return
        chunk = bytes(self._view[self._pos(src):self._pos(src + n)])
        self._view[self._pos(dst):self._pos(dst + n)] = chunk

    def copy_to(self, other: _Slots, src: int, dst: int, n: int) -> None:
        if n <= 0:
            return
        chunk = bytes(self._view[self._pos(src):self._pos(src + n)])
        other._view[other._pos(dst):other._pos(dst + n)] = chunk


class Node:
    """A view of the node header at the start of a page buffer."""

    def __init__(self, buffer) -> None:
        view = memoryview(buffer)
        if view.readonly:
            raise TypeError("node buffer must be writable")
        view = view.cast("B")
        if len(view) < _HEADER_SIZE:
            raise ValueError("buffer too small for a node header")
        self._view = view

    @property
    def page_size(self) -> int:
        return len(self._view)

    @property
    def level(self) -> int:
        return _U16.unpack_from(self._view, 0)[0]

    @level.setter
    def level(self, value: int) -> None:
        _U16.pack_into(self._view, 0, value)

    @property
    def count(self) -> int:
        return _U16.unpack_from(self._view, 2)[0]

    @count.setter
    def count(self, value: int) -> None:
        _U16.pack_into(self._view, 2, value)

    def is_leaf(self) -> bool:
        return self.level == 0

    def is_inner(self) -> bool:
        return self.level != 0


class InnerNode(Node):
    """An inner node: ``count`` child page ids and ``count - 1`` valid keys.

    Child ``i`` holds the keys not greater than key ``i``; the last child holds
    everything larger.
    """

    def __init__(self, buffer, *, key_format: str = "Q") -> None:
        super().__init__(buffer)
        self.key_format = key_format
        key_size = struct.calcsize("<" + key_format)
        child_size = struct.calcsize("<" + _CHILD_FORMAT)
        self.capacity = (self.page_size - _HEADER_SIZE) // (key_size + child_size)
        if self.capacity < 2:
            raise ValueError("page too small for an inner node")
        self._children = _Slots(self._view, _HEADER_SIZE, _CHILD_FORMAT, self.capacity)
        keys_offset = _HEADER_SIZE + self.capacity * child_size
        self._keys = _Slots(self._view, keys_offset, key_format, self.capacity)

    def is_full(self) -> bool:
        return self.count == self.capacity

    def lower_bound(self, key) -> tuple[int, bool]:
        """Index of the first valid key not less than ``key``, and whether it equals it."""
        count = self.count
        if count == 0:
            return 0, False
        first = bisect_left(self._keys.read(0, count - 1), key)
        return first, first < count and self._keys[first] == key

    def lookup(self, key) -> int:
        """Page id of the child whose subtree may hold ``key``."""
        count = self.count
        if count < 2:
            raise ValueError("inner node holds no separator")
        index, _ = self.lower_bound(key)
        return self._children[index - 1 if index == count else index]

    def init_insert(self, key, left_page_id: int, right_page_id: int) -> None:
        """Fill an empty node with one separator and its two children."""
        if self.count != 0:
            raise ValueError("inner node is not empty")
        self._children[0] = left_page_id
        self._keys[0] = key
        self._children[1] = right_page_id
        self._keys[1] = key
        self.count = 2

    def insert(self, key, left_page_id: int, right_page_id: int) -> None:
        """Add separator ``key`` after splitting child ``left_page_id`` into ``right_page_id``."""
        count = self.count
        if count < 2:
            raise ValueError("inner node must be filled with init_insert first")
        if self.is_full():
            raise ValueError("inner node is full")
        index, found = self.lower_bound(key)
        if found:
            raise ValueError(f"separator key {key!r} is already present")
        if self._children[index] != left_page_id:
            raise ValueError(f"page {left_page_id} is not the child for key {key!r}")
        if index == count - 1:
            self._keys[index] = key
            self._keys[index + 1] = key
            self._children[index + 1] = right_page_id
        else:
            moved = count - 1 - index
            self._keys.move(index, index + 1, moved + 1)
            self._children.move(index + 1, index + 2, moved)
            self._children[index + 1] = right_page_id
            self._keys[index] = key
        self.count = count + 1

    def split(self, buffer) -> Any:
        """Move the upper half into the node in ``buffer``; return the separator key."""
        count = self.count
        if count < self.capacity - 1:
            raise ValueError("only a full or nearly full inner node may be split")
        other = InnerNode(buffer, key_format=self.key_format)
        if other.capacity != self.capacity:
            raise ValueError("split target has a different page size")
        separator = self._keys[(count - 1) // 2]
        kept = (count - 1) // 2 + 1
        other.level = self.level
        other.count = count - kept
        self.count = kept
        self._keys.copy_to(other._keys, kept, 0, count - kept)
        self._children.copy_to(other._children, kept, 0, count - kept)
        return separator

    def keys(self) -> list:
        """The valid keys, in order."""
        return self._keys.read(0, max(self.count - 1, 0))

    def children(self) -> list[int]:
        """The child page ids, in order."""
        return self._children.read(0, self.count)


class LeafNode(Node):
    """A leaf node of unique keys, kept sorted, each with its value."""

    def __init__(self, buffer, *, key_format: str = "Q", value_format: str = "Q") -> None:
        super().__init__(buffer)
        self.key_format = key_format
        self.value_format = value_format
        key_size = struct.calcsize("<" + key_format)
        value_size = struct.calcsize("<" + value_format)
        self.capacity = (self.page_size - _NODE_SIZE - _LEAF_RESERVED) // (key_size + value_size)
        if self.capacity < 2:
            raise ValueError("page too small for a leaf node")
        self._keys = _Slots(self._view, _HEADER_SIZE, key_format, self.capacity)
        values_offset = _HEADER_SIZE + self.capacity * key_size
        self._values = _Slots(self._view, values_offset, value_format, self.capacity)

    def is_full(self) -> bool:
        return self.count == self.capacity

    def lower_bound(self, key) -> tuple[int, bool]:
        """Index of the first key not less than ``key``, and whether it equals it."""
        count = self.count
        if count == 0:
            return 0, False
        first = bisect_left(self._keys.read(0, count), key)
        return first, first < count and self._keys[first] == key

    def lookup(self, key) -> Any | None:
        """The value stored for ``key``, or None."""
        index, found = self.lower_bound(key)
        return self._values[index] if found else None

    def insert(self, key, value) -> None:
        """Insert ``key`` with ``value``, replacing the value of an existing key."""
        if self.is_full():
            raise ValueError("leaf node is full")
        count = self.count
        index, found = self.lower_bound(key)
        if found:
            self._values[index] = value
            return
        moved = count - index
        self._values.move(index, index + 1, moved)
        self._keys.move(index, index + 1, moved)
        self._keys[index] = key
        self._values[index] = value
        self.count = count + 1

    def erase(self, key) -> None:
        """Remove ``key`` if present."""
        index, found = self.lower_bound(key)
        if not found:
            return
        count = self.count
        moved = count - 1 - index
        self._values.move(index + 1, index, moved)
        self._keys.move(index + 1, index, moved)
        self.count = count - 1

    def split(self, buffer) -> Any:
        """Move the upper half into the leaf in ``buffer``; return the separator key."""
        count = self.count
        if count < self.capacity - 1:
            raise ValueError("only a full or nearly full leaf node may be split")
        other = LeafNode(buffer, key_format=self.key_format, value_format=self.value_format)
        if other.capacity != self.capacity:
            raise ValueError("split target has a different page size")
        separator = self._keys[count // 2]
        kept = count // 2 + 1
        other.level = 0
        other.count = count - kept
        self.count = kept
        self._keys.copy_to(other._keys, kept, 0, count - kept)
        self._values.copy_to(other._values, kept, 0, count - kept)
        return separator

    def keys(self) -> list:
        """The keys, in order."""
        return self._keys.read(0, self.count)

    def values(self) -> list:
        """The values, in key order."""
        return self._values.read(0, self.count)