"""Hexbus protocol engine.

Turns register reads and writes into hexbus commands, and the inbound
character stream back into results.  All decoding happens synchronously
inside the call that needs the next token; there is no reader thread.

Usage::

    engine = ProtocolEngine(SocketConnection("localhost", 8363).open())
    engine.write_vector(0x1000, [1, 2, 3])
    values = engine.read_vector(0x1000, 3)
    engine.close()
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from ..errors import BusFault, BusTimeout, ProtocolDesync, TransportClosed
from ..transport.base import Transport
from .commands import BUS_WIDTH_MASK, IDLE_ABORT_COUNT, WORD_SIZE, Tag, tag_name
from .framing import (
    Token,
    TokenLexer,
    encode_address,
    encode_read,
    encode_write,
    is_idle_filler,
)

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_MS = 200
DEFAULT_WRITE_WINDOW = 1


class ProtocolEngine:
    """Hexbus protocol state for one open transport.

    Attributes:
        last_address: Last address sent to, or echoed by, the remote end.
        address_known: Whether ``last_address`` can be trusted.
        auto_increment: Whether the remote end advances the address
            after every word.
        acks: Write acknowledgements received during the current write.
        interrupt_flag: Latched when the remote end sends an interrupt.
        bus_error_flag: Latched when the remote end reports a bus error.
        total_bytes_read: Raw bytes read from the transport, idle
            filler included.
    """

    def __init__(
        self,
        transport: Transport,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        write_window: int = DEFAULT_WRITE_WINDOW,
    ) -> None:
        if poll_interval_ms <= 0:
            raise ValueError(f"Poll interval must be positive, got {poll_interval_ms}")
        if write_window < 1:
            raise ValueError(f"Write window must be at least 1, got {write_window}")

        self._transport = transport
        self.poll_interval_ms = poll_interval_ms
        self.write_window = write_window

        self.last_address = 0
        self.address_known = False
        self.auto_increment = False
        self.acks = 0
        self.interrupt_flag = False
        self.bus_error_flag = False
        self.total_bytes_read = 0

        self._lexer = TokenLexer()
        self._buffer = bytearray()
        self._abort_countdown = IDLE_ABORT_COUNT
        self._closed = False
        # Only announce an idle drain once between other traces
        self._last_drain_idle = True

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def transport(self) -> Transport:
        return self._transport

    # ─── LOW LEVEL I/O ───────────────────────────────────────────────

    def _trace(self, msg: str, *args) -> None:
        logger.debug(msg, *args)
        self._last_drain_idle = False

    def _ensure_open(self) -> None:
        if self._closed:
            raise TransportClosed("hexbus connection is closed")

    def _send(self) -> None:
        """Transmit and clear the command buffer."""
        data = bytes(self._buffer)
        self._buffer.clear()
        self._trace(">> %r", data)
        self._transport.write(data)

    def _next_byte(self) -> int:
        data = self._transport.read(1)
        if not data:
            logger.info("Connection closed by remote end")
            self.close()
            raise TransportClosed("Transport closed during a hexbus operation")
        self.total_bytes_read += len(data)
        return data[0]

    def _queue_address(self, address: int, increment: bool) -> None:
        """Queue an address command unless the remote end is already there."""
        if (
            self.address_known
            and self.last_address == address
            and self.auto_increment == increment
        ):
            self._trace("Address is already set to %08x", address)
        else:
            self._buffer += encode_address(address, increment)
        self.last_address = address
        self.address_known = True
        self.auto_increment = increment

    def _advance(self) -> None:
        if self.auto_increment:
            self.last_address = (self.last_address + WORD_SIZE) & BUS_WIDTH_MASK

    # ─── TOKEN DISPATCH ──────────────────────────────────────────────

    def _dispatch(
        self, token: Token, reading: bool = False, in_operation: bool = True
    ) -> None:
        """Apply a completed token to the engine state.

        Args:
            token: The completed token.
            reading: A read request is waiting for its datum.
            in_operation: A bus read or write is in flight.  Outside one
                an error token is only latched in ``bus_error_flag``.

        Raises:
            BusFault: On an error token during an operation.
            BusTimeout: When too many idle tokens arrive during a read.
        """
        tag = token.tag
        if tag == Tag.ADDR:
            self.address_known = True
            self.auto_increment = not token.value & 1
            self.last_address = token.value & ~(WORD_SIZE - 1) & BUS_WIDTH_MASK
            self._trace(
                "RCVD ADDR: 0x%08x%s",
                self.last_address,
                " INC" if self.auto_increment else "",
            )
        elif tag == Tag.READ:
            self._advance()
            if not reading:
                self._trace("Ignoring unrequested read datum 0x%08x", token.value)
        elif tag == Tag.ACK:
            self._advance()
            self.acks += 1
        elif tag == Tag.INTERRUPT:
            self._trace("Interrupt received")
            self.interrupt_flag = True
        elif tag == Tag.ERROR:
            self._trace("Bus error (0x%08x)", self.last_address)
            self.bus_error_flag = True
            if in_operation:
                raise BusFault(self.last_address)
        elif tag == Tag.RESET:
            self._trace("Bus reset")
            self.address_known = False
            self.bus_error_flag = False
        elif tag == Tag.IDLE:
            if reading:
                self._abort_countdown -= 1
                if self._abort_countdown == 0:
                    self._trace("Bus idle while reading, aborting")
                    raise BusTimeout()
        else:
            self._trace("Other out-of-band token: %s", tag_name(tag))

    def _read_word(self) -> int:
        """Block until the datum for an outstanding read request arrives."""
        self._abort_countdown = IDLE_ABORT_COUNT
        while True:
            byte = self._next_byte()
            if is_idle_filler(byte):
                continue
            token = self._lexer.feed(byte)
            if token is None:
                continue
            self._dispatch(token, reading=True)
            if token.tag == Tag.READ:
                return token.value

    def _check_address(self, expected: int) -> None:
        if self.last_address == expected:
            return
        actual = self.last_address
        logger.critical(
            "LAST-ADDR MISMATCH: (RCVD) %08x != %08x (EXPECTED)", actual, expected
        )
        self.address_known = False
        self.close()
        raise ProtocolDesync(expected, actual)

    # ─── PUBLIC OPERATIONS ───────────────────────────────────────────

    def drain_idle(self, in_operation: bool = True) -> None:
        """Consume whatever the transport has buffered, without blocking.

        Args:
            in_operation: Raise :class:`BusFault` on an error token.  When
                False the error is only latched in ``bus_error_flag``.
        """
        self._ensure_open()
        if not self._last_drain_idle:
            logger.debug("READ-IDLE()")
            self._last_drain_idle = True

        while self._transport.available():
            byte = self._next_byte()
            if is_idle_filler(byte):
                continue
            token = self._lexer.feed(byte)
            if token is not None:
                self._dispatch(token, in_operation=in_operation)

    def read_vector(self, address: int, count: int, increment: bool = True) -> list[int]:
        """Read ``count`` words starting at ``address``.

        Args:
            address: Word-aligned bus address.
            count: Number of words to read.
            increment: Advance the address after every word, or read the
                same address ``count`` times.

        Raises:
            BusFault: Annotated with the address the read had reached.
            BusTimeout: If the remote end stopped answering.
            TransportClosed: If the transport closed mid-read.
            ProtocolDesync: If the remote end ended up elsewhere.
        """
        self._ensure_open()
        if count <= 0:
            return []
        self._trace("READV(%08x,%d,#%4d)", address, int(increment), count)

        self._buffer.clear()
        self._queue_address(address, increment)
        words: list[int] = []
        try:
            while len(words) < count:
                self._buffer += encode_read()
                self._send()
                words.append(self._read_word())
        except BusTimeout:
            raise
        except BusFault as e:
            reached = address + (len(words) * WORD_SIZE if increment else 0)
            self._trace("READV::BUSERR trying to read %08x", reached)
            raise BusFault(reached & BUS_WIDTH_MASK) from e

        self._check_address(
            (address + (count * WORD_SIZE if increment else 0)) & BUS_WIDTH_MASK
        )
        self._trace(
            "READV::COMPLETE, [%08x] -> %08x%s", address, words[0], ", ..." if count > 1 else ""
        )
        return words

    def read_word(self, address: int) -> int:
        """Read a single word."""
        try:
            value = self.read_vector(address, 1, increment=False)[0]
        except BusTimeout:
            raise
        except BusFault as e:
            raise BusFault(address) from e
        return value

    def write_vector(
        self, address: int, words: Iterable[int], increment: bool = True
    ) -> None:
        """Write ``words`` starting at ``address``.

        No more than ``write_window`` writes are ever in flight: before
        each word is sent, acknowledgements are collected until the
        window has room for it.

        Raises:
            ValueError: If a word does not fit in 32 bits.
            BusFault: If the remote end reports a bus error.
            TransportClosed: If the transport closed mid-write.
            ProtocolDesync: If the remote end ended up elsewhere.
        """
        self._ensure_open()
        commands = [encode_write(word) for word in words]
        if not commands:
            return
        self._trace("WRITEV(%08x,%d,#%d)", address, int(increment), len(commands))

        self._buffer.clear()
        self._queue_address(address, increment)
        self.acks = 0
        for k, command in enumerate(commands):
            self._wait_for_acks(k + 1 - self.write_window)
            self._buffer += command
            self._send()

        self._trace("Missing %d acks still", len(commands) - self.acks)
        self._wait_for_acks(len(commands))

        self._check_address(
            (address + (len(commands) * WORD_SIZE if increment else 0)) & BUS_WIDTH_MASK
        )
        self._trace("WR: LAST ADDRESS LEFT AT %08x", self.last_address)

    def write_word(self, address: int, value: int) -> None:
        """Write a single word."""
        self.write_vector(address, [value], increment=False)

    def _wait_for_acks(self, target: int) -> None:
        self.drain_idle()
        while self.acks < target:
            self._transport.wait(self.poll_interval_ms)
            self.drain_idle()

    def sleep(self, timeout_ms: int) -> None:
        """Wait up to ``timeout_ms`` for traffic and process whatever arrives.

        Bus errors seen here are latched in ``bus_error_flag``, not raised.
        """
        self._ensure_open()
        if self._transport.wait(timeout_ms):
            self.drain_idle(in_operation=False)

    def wait_for_interrupt(self, timeout_ms: int | None = None) -> bool:
        """Block until the remote end raises an interrupt.

        Args:
            timeout_ms: Give up after this long; ``None`` waits forever.
                Closing the transport is the only other way out.

        Returns:
            True if the interrupt flag is set, False on timeout.
        """
        if self.interrupt_flag:
            self._trace("Interrupted prior to wait()")
            return True

        remaining = timeout_ms
        while not self.interrupt_flag:
            if remaining is None:
                self.sleep(self.poll_interval_ms)
                continue
            if remaining <= 0:
                return False
            slice_ms = min(self.poll_interval_ms, remaining)
            remaining -= slice_ms
            self.sleep(slice_ms)
        return True

    def clear_interrupt(self) -> None:
        self.interrupt_flag = False

    def clear_bus_error(self) -> None:
        self.bus_error_flag = False

    def close(self) -> None:
        """Close the transport.  Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            self._transport.close()
        except Exception as e:
            logger.warning("Error closing transport: %s", e)

    def kill(self) -> None:
        """Drop the connection, e.g. from a signal handler."""
        logger.debug("hexbus killed")
        self.close()
