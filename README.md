# moderndbs

This package provides building blocks for a disk-based storage engine. It is
written in plain Python and has no third-party dependencies. Block file access
uses `os.pread` and `os.pwrite`, so it needs a POSIX system.

## Modules

- `moderndbs.pid`: 64-bit page identifiers. The top 16 bits hold the segment
  id and the lower 48 bits hold the page number within that segment. It
  provides `segment_id`, `segment_page_id` and `make_page_id`, and the frozen
  `PID` class. `PID` has `PID.from_parts`, the `segment_id` and `page_id`
  properties, and `str()` output of the form `(segNr: 1, pageNr: 2)`.
- `moderndbs.file`: block-wise file access through `File` and `FileMode`.
  - `File.open(path, mode)` opens a file. In `FileMode.WRITE` the file is
    created if it is missing and is never truncated.
  - `File.temporary()` returns an anonymous file that disappears once it is
    closed.
  - `File` has `size()`, `resize()`, `read_block(offset, size)`,
    `write_block(block, offset)` and `close()`, and can be used as a context
    manager.
  - `read_block` returns zero bytes for anything past the end of the file.
  - `write_block` must stay within the current size, so call `resize()` first
    when writing past the end.
- `moderndbs.buffer_manager`: `BufferManager`, a thread-safe buffer manager
  that holds at most `page_count` pages of `page_size` bytes.
  - A page fixed for the first time goes into a FIFO queue. When it is fixed
    again it moves to an LRU queue.
  - Eviction takes an unfixed page from the FIFO queue first, then from the
    LRU queue. Dirty pages are written out when they are evicted.
  - Each page is guarded by a readers-writer latch. `fix_page(page_id,
    exclusive)` takes it shared or exclusive, and `unfix_page(page, is_dirty)`
    releases it.
  - `get_fifo_list()` and `get_lru_list()` return the queues as lists of page
    ids.
- `moderndbs.memory_buffer_manager`: `MemoryBufferManager`, which has the same
  `fix_page` / `unfix_page` interface. Its `PageFrame` pages live in memory
  only. It places no limit on the number of pages, takes no latches, and its
  queue lists are always empty. It is meant for single-threaded use.
- `moderndbs.nodes`: B+ tree node layouts that work directly on page buffers.
  - `Node` is the header: a 16-bit `level` and a 16-bit `count`.
  - `InnerNode` and `LeafNode` provide `lower_bound`, `lookup`, `insert`,
    `split`, `keys()` and more.
  - `LeafNode` also has `erase`, `values()` and `is_full()`.
  - Keys and values are packed with `struct` formats. The default for both is
    `"Q"`, an unsigned 64-bit integer.
- `moderndbs.btree`: `BTree`, a B+ tree index on top of any buffer manager
  with a `page_size` attribute.
  - Traversal uses lock coupling.
  - On insert, full or nearly full inner nodes are split on the way down.
  - `Segment` is its base class.
- `moderndbs.hex_dump`: `hex_dump(data, out, width)` and
  `hex_dump_str(data, width)` produce hex and ASCII dumps.
- `moderndbs.errors`: `BufferFullError` and `SchemaParseError`.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Buffer manager

```python
from moderndbs.buffer_manager import BufferManager
from moderndbs.errors import BufferFullError

with BufferManager(page_size=1024, page_count=10) as manager:
    page = manager.fix_page(1, exclusive=True)
    page.data[:8] = (42).to_bytes(8, "little")
    manager.unfix_page(page, is_dirty=True)

    print(manager.get_fifo_list())   # [1]
    print(manager.get_lru_list())    # []
```

`fix_page` raises `BufferFullError` when every frame is fixed and no page can
be evicted.

Each segment is stored in a file named after its segment id. The files live
in the `directory` passed to `BufferManager`, which defaults to the current
directory.

`close()` (also called when the `with` block ends) writes every loaded page
back to its segment file and closes the files. A new `BufferManager` on the
same directory then reads the pages back.

## B+ tree

```python
from moderndbs.btree import BTree
from moderndbs.memory_buffer_manager import MemoryBufferManager

manager = MemoryBufferManager(page_size=1024, page_count=100)
tree = BTree(0, manager)

for key in range(1000):
    tree.insert(key, 2 * key)

assert tree.lookup(10) == 20
tree.erase(10)
assert tree.lookup(10) is None
```

Keys are unique, and inserting an existing key replaces its value.

Page ids come from the tree's segment: tree `0` allocates pages `0, 1, 2, …`,
and tree `1` starts at `1 << 48`.

## Hex dumps

```python
from moderndbs.hex_dump import hex_dump_str

print(hex_dump_str(b"hello, world", 16))
```

Each line shows the offset, the printable characters (others appear as `.`)
and the byte values in hex.

## What it does not do

- There is no command-line tool and no server. The package is a library only.
- A `BTree` keeps its root page id and next free page id on the object only.
  These are not written to any page, so a tree cannot be reopened from its
  segment files later.
- Erasing keys never merges or rebalances nodes.
- There are no range scans. Leaves are not linked to each other.

## Module list

`moderndbs` provides the modules `btree`, `buffer_manager`, `errors`, `file`,
`hex_dump`, `memory_buffer_manager`, `nodes` and `pid`.