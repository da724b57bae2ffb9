"""Storage engine building blocks: block files, buffer managers, B+ tree nodes and index, hex dumps."""

__version__ = "0.1.0"

__all__ = [
    "btree",
    "buffer_manager",
    "errors",
    "file",
    "hex_dump",
    "memory_buffer_manager",
    "nodes",
    "pid",
]