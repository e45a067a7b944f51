"""Command encoders and the inbound token lexer.

Token layout::

    +-----+---------------------+------------+
    | Tag | Hex digits          | Terminator |
    | 1 B | 0-8 B, [0-9a-f]     | any non-hex|
    +-----+---------------------+------------+

- Tag: one of :class:`~.commands.Tag` (unknown tags are passed through)
- Hex digits: the payload, most significant nibble first, no padding
  required; a bare tag carries the value zero
- Terminator: whitespace, or the tag of the next token
- Bytes with all of their low seven bits set are idle filler and are
  dropped before lexing
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from .commands import (
    BUS_WIDTH_MASK,
    IDLE_FILLER_MASK,
    TERMINATOR,
    WHITESPACE,
    WORD_SIZE,
    Tag,
    tag_name,
)


@dataclass(frozen=True)
class Token:
    """A completed wire token."""

    tag: int | None
    value: int = 0

    def __repr__(self) -> str:
        return f"Token(tag={tag_name(self.tag)}, value=0x{self.value:08x})"


def _check_word(value: int, what: str) -> None:
    if not 0 <= value <= BUS_WIDTH_MASK:
        raise ValueError(f"{what} must fit in 32 bits, got {value:#x}")


def encode_address(address: int, increment: bool = True) -> bytes:
    """Build an address command.

    The address is always sent as eight hex digits.  Its low bit is
    cleared when the remote end should advance the address after every
    word, and set when every word should go to the same address.

    Args:
        address: Word-aligned 32-bit bus address.
        increment: Whether the remote end auto-increments.

    Raises:
        ValueError: If the address is out of range or not word aligned.
    """
    _check_word(address, "Address")
    if address % WORD_SIZE:
        raise ValueError(f"Address must be {WORD_SIZE}-byte aligned, got {address:#x}")
    encoded = address if increment else address | 1
    return b"%c%08x" % (Tag.ADDR, encoded)


def encode_write(value: int) -> bytes:
    """Build a write command; zero is sent as the bare tag."""
    _check_word(value, "Value")
    if value == 0:
        return bytes([Tag.WRITE]) + TERMINATOR
    return b"%c%x" % (Tag.WRITE, value) + TERMINATOR


def encode_read() -> bytes:
    """Build a read request."""
    return bytes([Tag.READ]) + TERMINATOR


def is_idle_filler(byte: int) -> bool:
    return (byte & IDLE_FILLER_MASK) == IDLE_FILLER_MASK


def strip_idle(data: bytes) -> bytes:
    """Remove idle filler bytes from ``data``."""
    return bytes(b for b in data if not is_idle_filler(b))


def is_hex_digit(byte: int) -> bool:
    # Uppercase letters are tags (A, E), so only lowercase counts as hex
    return 0x30 <= byte <= 0x39 or 0x61 <= byte <= 0x66


def hex_value(byte: int) -> int:
    if 0x30 <= byte <= 0x39:
        return byte - 0x30
    if 0x61 <= byte <= 0x66:
        return byte - 0x61 + 10
    raise ValueError(f"Not a hex digit: 0x{byte:02x}")


class TokenLexer:
    """Splits a character stream into tokens.

    Feed it one byte at a time (idle filler already removed).  A token
    is complete when a non-hex byte arrives; at that point the token
    opened by the previous tag is returned, carrying whatever hex value
    was accumulated.  Runs of whitespace, and whitespace straight after
    a token that was already completed, produce nothing.

    The lexer is direction agnostic: it decodes the remote end's
    responses as well as the host's command stream.
    """

    def __init__(self) -> None:
        self.current_tag: int | None = None
        self.accumulator = 0
        self.in_token = False
        self.after_space = True

    def feed(self, byte: int) -> Token | None:
        if is_hex_digit(byte):
            self.accumulator = ((self.accumulator << 4) | hex_value(byte)) & BUS_WIDTH_MASK
            self.in_token = True
            self.after_space = False
            return None

        token = None
        if not self.after_space:
            token = Token(self.current_tag, self.accumulator)

        if byte in WHITESPACE:
            self.after_space = True
        else:
            self.current_tag = byte
            self.after_space = False
        self.accumulator = 0
        self.in_token = False
        return token

    def feed_bytes(self, data: Iterable[int]) -> Iterator[Token]:
        """Feed several bytes, yielding every token they complete."""
        for byte in data:
            if is_idle_filler(byte):
                continue
            token = self.feed(byte)
            if token is not None:
                yield token
