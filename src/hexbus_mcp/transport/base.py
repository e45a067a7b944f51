"""Transport interface used by the protocol engine."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Transport(Protocol):
    """A duplex byte channel to the remote end.

    Serial ports and TCP sockets implement this; so can test fixtures.
    The channel may insert idle filler bytes but must not drop or
    reorder anything.
    """

    def write(self, data: bytes) -> int:
        """Send all of ``data``, returning the number of bytes written."""
        ...

    def read(self, size: int = 1) -> bytes:
        """Block for up to ``size`` bytes.  ``b""`` means the channel closed."""
        ...

    def available(self) -> bool:
        """Whether a read would return without blocking."""
        ...

    def wait(self, timeout_ms: int) -> bool:
        """Wait up to ``timeout_ms`` for incoming data."""
        ...

    def close(self) -> None:
        ...
