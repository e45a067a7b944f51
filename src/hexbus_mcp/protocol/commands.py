"""Wire tags and constants of the hexbus protocol.

Every token on the wire starts with a single ASCII tag character,
optionally followed by lowercase hexadecimal digits.  The same tags are
used in both directions: ``R`` is a read request from the host and a
read datum from the remote end, ``A`` sets the address from the host
and echoes it back from the remote end.
"""

from __future__ import annotations

from enum import IntEnum


class Tag(IntEnum):
    """Tag characters, as their ASCII codes."""

    ADDR = ord("A")
    READ = ord("R")
    WRITE = ord("W")
    ACK = ord("K")
    RESET = ord("T")
    INTERRUPT = ord("I")
    ERROR = ord("E")
    IDLE = ord("Z")

    def __str__(self) -> str:
        return chr(self.value)


IDLE_FILLER_MASK = 0x7F
TERMINATOR = b"\n"
WHITESPACE = frozenset(b" \t\n\r\v\f")

BUS_WIDTH_MASK = 0xFFFFFFFF
WORD_SIZE = 4

# Idle tokens tolerated while waiting for a read before giving up
IDLE_ABORT_COUNT = 3


def tag_name(byte: int | None) -> str:
    """Readable name for a tag byte, for logging."""
    if byte is None:
        return "<none>"
    try:
        return Tag(byte).name
    except ValueError:
        return repr(chr(byte)) if 0x20 <= byte < 0x7F else f"0x{byte:02x}"
