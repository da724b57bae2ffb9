"""A B+ tree index stored in the pages of a buffer-managed segment.

Traversal uses lock coupling: at most a parent and a child page are fixed at
a time. Inserts split full or nearly full inner nodes on the way down, so a
leaf split only ever has to touch its immediate parent.
"""

from __future__ import annotations

import enum
from typing import Any

from .nodes import InnerNode, LeafNode, Node
from .pid import MAX_SEGMENT, make_page_id


class Segment:
    """A numbered segment whose pages are reached through a buffer manager."""

    def __init__(self, segment_id: int, buffer_manager) -> None:
        if not 0 <= segment_id <= MAX_SEGMENT:
            raise ValueError(f"segment id out of range: {segment_id}")
        self.segment_id = segment_id
        self.buffer_manager = buffer_manager


class _Traversal(enum.Enum):
    INSERT = enum.auto()
    ERASE = enum.auto()
    LOOKUP = enum.auto()


class BTree(Segment):
    """A B+ tree of unique keys mapped to values.

    Keys and values are packed with ``struct`` formats; by default both are
    unsigned 64-bit integers.
    """

    def __init__(
        self,
        segment_id: int,
        buffer_manager,
        *,
        key_format: str = "Q",
        value_format: str = "Q",
    ) -> None:
        super().__init__(segment_id, buffer_manager)
        self.key_format = key_format
        self.value_format = value_format
        self.root: int | None = None
        self.next_page_id = make_page_id(segment_id, 0)
        page_size = buffer_manager.page_size
        self.leaf_capacity = LeafNode(
            bytearray(page_size), key_format=key_format, value_format=value_format
        ).capacity
        self.inner_capacity = InnerNode(bytearray(page_size), key_format=key_format).capacity

    def _inner(self, frame) -> InnerNode:
        return InnerNode(frame.data, key_format=self.key_format)

    def _leaf(self, frame) -> LeafNode:
        return LeafNode(frame.data, key_format=self.key_format, value_format=self.value_format)

    def _new_page(self, level: int):
        """Allocate the next page id, fix it exclusively and reset its header."""
        page_id = self.next_page_id
        self.next_page_id += 1
        frame = self.buffer_manager.fix_page(page_id, True)
        node = Node(frame.data)
        node.level = level
        node.count = 0
        return page_id, frame

    def _find_leaf(self, key, traversal: _Traversal):
        """Descend to the leaf for ``key``.

        Returns ``(parent, leaf)``, both fixed. ``parent`` is the level-1 inner
        page, kept fixed only for inserts; otherwise it is None.
        """
        bm = self.buffer_manager
        inserting = traversal is _Traversal.INSERT
        parent_id = self.root
        parent_page = bm.fix_page(parent_id, inserting)

        if Node(parent_page.data).is_leaf():
            if traversal is _Traversal.ERASE:
                bm.unfix_page(parent_page, False)
                parent_page = bm.fix_page(parent_id, True)
            return None, parent_page

        parent = self._inner(parent_page)
        parent_dirty = False

        if inserting and parent.count >= parent.capacity - 1:
            # Split the root and grow the tree by one level.
            new_id, new_page = self._new_page(parent.level)
            new_node = self._inner(new_page)
            separator = parent.split(new_page.data)
            root_id, root_page = self._new_page(parent.level + 1)
            self._inner(root_page).init_insert(separator, parent_id, new_id)
            self.root = root_id
            bm.unfix_page(root_page, True)
            if separator < key:
                bm.unfix_page(parent_page, True)
                parent_id, parent_page, parent = new_id, new_page, new_node
            else:
                bm.unfix_page(new_page, True)
            parent_dirty = True

        child_id = parent.lookup(key)
        exclusive = inserting or (traversal is _Traversal.ERASE and parent.level == 1)
        child_page = bm.fix_page(child_id, exclusive)
        child_dirty = False

        while Node(child_page.data).is_inner():
            child = self._inner(child_page)
            if inserting and child.count >= child.capacity - 1:
                new_id, new_page = self._new_page(child.level)
                new_node = self._inner(new_page)
                separator = child.split(new_page.data)
                parent.insert(separator, child_id, new_id)
                if separator < key:
                    bm.unfix_page(child_page, True)
                    child_id, child_page, child = new_id, new_page, new_node
                else:
                    bm.unfix_page(new_page, True)
                parent_dirty = True
                child_dirty = True

            bm.unfix_page(parent_page, parent_dirty)
            parent_id, parent_page, parent = child_id, child_page, child
            parent_dirty = child_dirty

            child_id = parent.lookup(key)
            exclusive = inserting or (traversal is _Traversal.ERASE and parent.level == 1)
            child_page = bm.fix_page(child_id, exclusive)
            child_dirty = False

        if inserting:
            return parent_page, child_page
        bm.unfix_page(parent_page, parent_dirty)
        return None, child_page

    def lookup(self, key) -> Any | None:
        """Return the value stored for ``key``, or None."""
        if self.root is None:
            return None
        _, leaf_page = self._find_leaf(key, _Traversal.LOOKUP)
        try:
            return self._leaf(leaf_page).lookup(key)
        finally:
            self.buffer_manager.unfix_page(leaf_page, False)

    def erase(self, key) -> None:
        """Remove ``key`` from the tree if present."""
        if self.root is None:
            return
        _, leaf_page = self._find_leaf(key, _Traversal.ERASE)
        try:
            self._leaf(leaf_page).erase(key)
        finally:
            self.buffer_manager.unfix_page(leaf_page, True)

    def insert(self, key, value) -> None:
        """Insert ``key`` with ``value``, replacing the value of an existing key."""
        bm = self.buffer_manager
        if self.root is None:
            root_id, root_page = self._new_page(0)
            try:
                self._leaf(root_page).insert(key, value)
            finally:
                bm.unfix_page(root_page, True)
            self.root = root_id
            return

        parent_page, leaf_page = self._find_leaf(key, _Traversal.INSERT)
        leaf = self._leaf(leaf_page)

        if not leaf.is_full():
            if parent_page is not None:
                bm.unfix_page(parent_page, True)
            leaf.insert(key, value)
            bm.unfix_page(leaf_page, True)
            return

        new_id, new_page = self._new_page(0)
        new_leaf = self._leaf(new_page)
        separator = leaf.split(new_page.data)

        if parent_page is None:
            root_id, root_page = self._new_page(1)
            self._inner(root_page).init_insert(separator, leaf_page.page_id, new_id)
            self.root = root_id
            bm.unfix_page(root_page, True)
        else:
            self._inner(parent_page).insert(separator, leaf_page.page_id, new_id)
            bm.unfix_page(parent_page, True)

        if separator < key:
            new_leaf.insert(key, value)
        else:
            leaf.insert(key, value)
        bm.unfix_page(new_page, True)
        bm.unfix_page(leaf_page, True)