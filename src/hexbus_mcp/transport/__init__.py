"""Transport layer: serial and TCP byte channels to the remote hexbus."""

from __future__ import annotations

import os

from .base import Transport
from .serial_connection import DEFAULT_BAUDRATE, SerialConnection
from .socket_connection import SocketConnection

DEVICE_ENV = "HEXBUS_DEVICE"
BAUD_ENV = "HEXBUS_BAUD"


def parse_target(target: str) -> tuple[str, int] | None:
    """Split a ``host:port`` or ``tcp://host:port`` target.

    Returns:
        ``(host, port)`` for network targets, or None for anything that
        should be treated as a serial device path.
    """
    if target.startswith("tcp://"):
        target = target[len("tcp://"):]
    elif target.startswith("/") or ":" not in target:
        return None

    host, _, port = target.rpartition(":")
    if not host or not port.isdigit():
        raise ValueError(f"Invalid network target '{target}', expected host:port")
    return host, int(port)


def open_transport(
    target: str | None = None,
    baudrate: int | None = None,
) -> SerialConnection | SocketConnection:
    """Open a transport to ``target``.

    Args:
        target: Serial device path, ``host:port`` or ``tcp://host:port``.
            Defaults to the ``HEXBUS_DEVICE`` environment variable.
        baudrate: Serial baud rate.  Defaults to ``HEXBUS_BAUD`` or
            :data:`DEFAULT_BAUDRATE`; ignored for network targets.

    Raises:
        ValueError: If no target is given or the target is malformed.
        ConnectionError: If the transport cannot be opened.
    """
    target = target or os.environ.get(DEVICE_ENV)
    if not target:
        raise ValueError(f"No hexbus target given and ${DEVICE_ENV} is not set")

    network = parse_target(target)
    if network is not None:
        return SocketConnection(*network).open()

    if baudrate is None:
        baudrate = int(os.environ.get(BAUD_ENV, DEFAULT_BAUDRATE))
    return SerialConnection(target, baudrate).open()
