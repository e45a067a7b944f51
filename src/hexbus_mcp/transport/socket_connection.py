"""TCP transport for the hexbus.

Used to reach a hexbus that is exported over the network, either by a
UART-to-TCP bridge next to the board or by a simulation.
"""

from __future__ import annotations

import logging
import select
import socket

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_S = 5.0


class SocketConnection:
    """Manages a TCP connection to a hexbus server."""

    def __init__(self, host: str, port: int) -> None:
        self._host = host
        self._port = port
        self._sock: socket.socket | None = None

    @classmethod
    def from_socket(cls, sock: socket.socket) -> SocketConnection:
        """Wrap an already connected socket."""
        conn = cls(*_peer(sock))
        sock.settimeout(None)
        conn._sock = sock
        return conn

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def open(self) -> SocketConnection:
        """Connect to the server.

        Raises:
            ConnectionError: If the connection cannot be established.
        """
        try:
            sock = socket.create_connection((self._host, self._port), CONNECT_TIMEOUT_S)
        except OSError as e:
            raise ConnectionError(
                f"Could not connect to {self._host}:{self._port}: {e}"
            ) from e
        sock.settimeout(None)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        self._sock = sock
        logger.info("Connected to %s:%d", self._host, self._port)
        return self

    def _socket(self) -> socket.socket:
        if self._sock is None:
            raise ConnectionError("Socket is not connected")
        return self._sock

    def write(self, data: bytes) -> int:
        self._socket().sendall(data)
        return len(data)

    def read(self, size: int = 1) -> bytes:
        return self._socket().recv(size)

    def available(self) -> bool:
        return self.wait(0)

    def wait(self, timeout_ms: int) -> bool:
        readable, _, _ = select.select([self._socket()], [], [], timeout_ms / 1000.0)
        return bool(readable)

    def close(self) -> None:
        """Close the connection."""
        if self._sock is None:
            return
        try:
            self._sock.close()
        except OSError as e:
            logger.warning("Error closing socket: %s", e)
        finally:
            self._sock = None
            logger.info("Disconnected from %s:%d", self._host, self._port)


def _peer(sock: socket.socket) -> tuple[str, int]:
    try:
        peer = sock.getpeername()
    except OSError:
        return ("", 0)
    if isinstance(peer, tuple):
        return peer[0], peer[1]
    # AF_UNIX socket pairs have no host/port
    return (str(peer), 0)
