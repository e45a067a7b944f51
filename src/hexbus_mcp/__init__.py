"""Host-side client and MCP server for the hexbus FPGA debugging bus."""

from .client import HexBus
from .errors import BusFault, BusTimeout, HexbusError, ProtocolDesync, TransportClosed

__version__ = "0.1.0"
