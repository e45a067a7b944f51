"""Serial-port transport for the hexbus, using pyserial."""

from __future__ import annotations

import logging
import time

import serial

logger = logging.getLogger(__name__)

DEFAULT_BAUDRATE = 115200
# Granularity of the in_waiting poll used by wait()
POLL_STEP_S = 0.001


class SerialConnection:
    """Manages a serial connection to the FPGA's hexbus UART.

    Usage::

        conn = SerialConnection("/dev/ttyUSB1").open()
        conn.write(b"A00001000R\\n")
        data = conn.read(1)
        conn.close()
    """

    def __init__(self, port: str, baudrate: int = DEFAULT_BAUDRATE) -> None:
        self._port = port
        self._baudrate = baudrate
        self._serial: serial.Serial | None = None

    @property
    def connected(self) -> bool:
        return self._serial is not None and self._serial.is_open

    @property
    def port(self) -> str:
        return self._port

    def open(self) -> SerialConnection:
        """Open the serial port.

        Raises:
            ConnectionError: If the port cannot be opened.
        """
        try:
            # timeout=None: reads block until data arrives
            self._serial = serial.Serial(self._port, self._baudrate, timeout=None)
        except serial.SerialException as e:
            raise ConnectionError(
                f"Could not open serial port {self._port} at {self._baudrate} baud: {e}"
            ) from e
        logger.info("Connected to %s at %d baud", self._port, self._baudrate)
        return self

    def _device(self) -> serial.Serial:
        if self._serial is None:
            raise ConnectionError("Serial port is not open")
        return self._serial

    def write(self, data: bytes) -> int:
        dev = self._device()
        written = dev.write(data)
        dev.flush()
        return written

    def read(self, size: int = 1) -> bytes:
        return self._device().read(size)

    def available(self) -> bool:
        return self._device().in_waiting > 0

    def wait(self, timeout_ms: int) -> bool:
        dev = self._device()
        deadline = time.monotonic() + timeout_ms / 1000.0
        while dev.in_waiting == 0:
            if time.monotonic() >= deadline:
                return False
            time.sleep(POLL_STEP_S)
        return True

    def close(self) -> None:
        """Close the serial port."""
        if self._serial is None:
            return
        try:
            self._serial.close()
        except Exception as e:
            logger.warning("Error closing %s: %s", self._port, e)
        finally:
            self._serial = None
            logger.info("Disconnected from %s", self._port)
