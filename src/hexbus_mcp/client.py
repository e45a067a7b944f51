"""Register-level client for a remote hexbus."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .protocol.engine import ProtocolEngine
from .transport import open_transport
from .transport.base import Transport

logger = logging.getLogger(__name__)


class HexBus:
    """Reads and writes 32-bit registers on the FPGA.

    Every call blocks until it completes.  Bus faults are raised to the
    caller and never retried.

    Usage::

        with HexBus.open("/dev/ttyUSB1") as bus:
            bus.write(0x400, 0x12345678)
            print(hex(bus.read(0x400)))
    """

    def __init__(self, transport: Transport, **engine_options) -> None:
        self._engine = ProtocolEngine(transport, **engine_options)

    @classmethod
    def open(
        cls,
        target: str | None = None,
        baudrate: int | None = None,
        **engine_options,
    ) -> HexBus:
        """Open a transport (see :func:`open_transport`) and wrap it."""
        return cls(open_transport(target, baudrate), **engine_options)

    def __enter__(self) -> HexBus:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def engine(self) -> ProtocolEngine:
        return self._engine

    @property
    def closed(self) -> bool:
        return self._engine.closed

    @property
    def total_bytes_read(self) -> int:
        return self._engine.total_bytes_read

    def read(self, address: int) -> int:
        return self._engine.read_word(address)

    def write(self, address: int, value: int) -> None:
        self._engine.write_word(address, value)

    def read_block(self, address: int, count: int) -> list[int]:
        """Read ``count`` consecutive words starting at ``address``."""
        return self._engine.read_vector(address, count, increment=True)

    def read_same(self, address: int, count: int) -> list[int]:
        """Read the word at ``address`` ``count`` times, e.g. to drain a FIFO."""
        return self._engine.read_vector(address, count, increment=False)

    def write_block(self, address: int, values: Iterable[int]) -> None:
        self._engine.write_vector(address, values, increment=True)

    def write_same(self, address: int, values: Iterable[int]) -> None:
        self._engine.write_vector(address, values, increment=False)

    def poll_interrupt(self) -> bool:
        return self._engine.interrupt_flag

    def clear_interrupt(self) -> None:
        self._engine.clear_interrupt()

    def wait_interrupt(self, timeout_ms: int | None = None) -> bool:
        """Block until the FPGA raises an interrupt, or the timeout expires."""
        return self._engine.wait_for_interrupt(timeout_ms)

    def sleep(self, timeout_ms: int) -> None:
        self._engine.sleep(timeout_ms)

    def has_bus_error(self) -> bool:
        return self._engine.bus_error_flag

    def clear_bus_error(self) -> None:
        self._engine.clear_bus_error()

    def kill(self) -> None:
        self._engine.kill()

    def close(self) -> None:
        self._engine.close()
        logger.debug("hexbus closed after %d bytes read", self._engine.total_bytes_read)
