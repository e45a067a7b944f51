"""Shared fixtures: a simulated hexbus remote end."""

from __future__ import annotations

import random

import pytest

from hexbus_mcp.client import HexBus
from hexbus_mcp.protocol.commands import Tag
from hexbus_mcp.protocol.framing import TokenLexer


class SimulatedDevice:
    """In-memory transport that behaves like the FPGA side of a hexbus.

    Host commands are decoded with the same lexer the host uses for
    responses.  Responses are queued and handed back through ``read``.

    Args:
        hold_acks: Keep write acknowledgements back until the host waits
            for them (``wait`` or a read on an empty queue).
        error_addresses: Addresses that answer reads and writes with ``E``.
        address_skew: Added to every echoed address, to fake a desync.
        stall: Answer every read request with idle tokens only.
        filler_rate: Probability of inserting an idle filler byte before
            each response byte.
    """

    def __init__(
        self,
        hold_acks: bool = False,
        error_addresses: tuple[int, ...] = (),
        address_skew: int = 0,
        stall: bool = False,
        filler_rate: float = 0.0,
        seed: int = 1,
    ) -> None:
        self.memory: dict[int, int] = {}
        self.tx = bytearray()
        self.rx = bytearray()
        self.closed = False

        self.hold_acks = hold_acks
        self.error_addresses = set(error_addresses)
        self.address_skew = address_skew
        self.stall = stall
        self.filler_rate = filler_rate
        self._random = random.Random(seed)

        self.address = 0
        self.increment = True
        self.held_acks = 0
        self.writes_received = 0
        self.acks_delivered = 0
        self.max_outstanding = 0
        self.wait_calls = 0
        self._lexer = TokenLexer()

    # Remote-end behaviour

    def respond(self, data: bytes) -> None:
        for byte in data:
            if self.filler_rate and self._random.random() < self.filler_rate:
                self.rx.append(self._random.choice((0x7F, 0xFF)))
            self.rx.append(byte)

    def interrupt(self) -> None:
        self.respond(b"I\n")

    def reset(self) -> None:
        self.respond(b"T\n")

    def _advance(self) -> None:
        if self.increment:
            self.address += 4

    def _handle(self, tag: int | None, value: int) -> None:
        if tag == Tag.ADDR:
            self.address = value & ~3
            self.increment = not value & 1
            echo = (self.address + self.address_skew) | (0 if self.increment else 1)
            self.respond(b"A%08x\n" % echo)
        elif tag == Tag.READ:
            if self.stall:
                self.respond(b"Z\nZ\nZ\n")
            elif self.address in self.error_addresses:
                self.respond(b"E\n")
            else:
                word = self.memory.get(self.address, 0)
                self.respond(b"R%x\n" % word if word else b"R\n")
                self._advance()
        elif tag == Tag.WRITE:
            self.writes_received += 1
            self.max_outstanding = max(
                self.max_outstanding, self.writes_received - self.acks_delivered
            )
            if self.address in self.error_addresses:
                self.respond(b"E\n")
                return
            self.memory[self.address] = value
            self._advance()
            if self.hold_acks:
                self.held_acks += 1
            else:
                self.respond(b"K\n")

    def _release_ack(self) -> None:
        if self.held_acks:
            self.held_acks -= 1
            self.respond(b"K\n")

    # Transport interface

    def write(self, data: bytes) -> int:
        if self.closed:
            raise ConnectionError("closed")
        self.tx += data
        for token in self._lexer.feed_bytes(data):
            self._handle(token.tag, token.value)
        return len(data)

    def read(self, size: int = 1) -> bytes:
        if not self.rx:
            self._release_ack()
        if self.closed or not self.rx:
            return b""
        data = bytes(self.rx[:size])
        del self.rx[:size]
        self.acks_delivered += data.count(Tag.ACK)
        return data

    def available(self) -> bool:
        return not self.closed and bool(self.rx)

    def wait(self, timeout_ms: int) -> bool:
        self.wait_calls += 1
        self._release_ack()
        return self.available()

    def close(self) -> None:
        self.closed = True

    # Inspection helpers

    def address_commands(self) -> int:
        return self.tx.count(Tag.ADDR)


@pytest.fixture
def device() -> SimulatedDevice:
    return SimulatedDevice()


@pytest.fixture
def bus(device: SimulatedDevice) -> HexBus:
    return HexBus(device, poll_interval_ms=10)
