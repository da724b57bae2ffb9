"""Hex dumps of byte buffers."""

from __future__ import annotations

import io
from typing import TextIO


def _printable(byte: int) -> str:
    return chr(byte) if 32 <= byte < 128 else "."


def hex_dump(data: bytes, out: TextIO, width: int = 16) -> None:
    """Write a hex dump of ``data`` to ``out``, ``width`` bytes per line."""
    if width <= 0:
        raise ValueError("width must be positive")
    view = memoryview(bytes(data))
    for offset in range(0, len(view), width):
        line = view[offset:offset + width]
        text = "".join(_printable(b) for b in line).ljust(width)
        hexes = " ".join(f"{b:02X}" for b in line)
        out.write(f"{offset:04X} : {text} {hexes} \n")


def hex_dump_str(data: bytes, width: int = 16) -> str:
    """Return a hex dump of ``data`` as a string."""
    out = io.StringIO()
    hex_dump(data, out, width)
    return out.getvalue()