"""Exceptions raised by the hexbus client."""

from __future__ import annotations


class HexbusError(Exception):
    """Base class for recoverable hexbus errors."""


class BusFault(HexbusError):
    """The remote bus reported an error, or stopped answering a read.

    Attributes:
        address: Bus address that was active when the fault was seen.
    """

    def __init__(self, address: int, message: str | None = None) -> None:
        self.address = address
        super().__init__(message or f"Bus fault at 0x{address:08x}")


class BusTimeout(BusFault):
    """The remote end sent only idle tokens while a read was pending."""

    def __init__(self) -> None:
        super().__init__(0, "Bus timeout: remote end is not responding")


class TransportClosed(HexbusError, ConnectionError):
    """The transport closed underneath an operation."""


class ProtocolDesync(SystemExit):
    """Host and remote disagree on the current bus address.

    Byte-level framing can no longer be trusted once this happens, so it
    derives from ``SystemExit``: unless explicitly caught it ends the
    process instead of letting register traffic continue.
    """

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"hexbus desync: last address 0x{actual:08x} != 0x{expected:08x} (expected)"
        )
