"""MCP server entry point for the hexbus.

Exposes register access on a connected FPGA as tools, resources, and
prompts via the Model Context Protocol using the official Python MCP SDK
with stdio transport.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from mcp.server.fastmcp import FastMCP

from .client import HexBus
from .errors import BusFault, TransportClosed
from .protocol.commands import BUS_WIDTH_MASK, WORD_SIZE

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "hexbus",
    instructions="MCP server for reading and writing FPGA registers over a hexbus",
)

# Largest block a single tool call may transfer
MAX_BLOCK_WORDS = 4096

# Global connection state
_bus: HexBus | None = None
_target: str = ""


def _get_bus() -> HexBus:
    """Get the active bus, raising if not connected."""
    if _bus is None or _bus.closed:
        raise RuntimeError("Not connected to a hexbus. Use the 'connect' tool first.")
    return _bus


def _parse_word(value: int | str, what: str) -> int:
    """Accept ints or hex/decimal strings ("0x400", "1024")."""
    if isinstance(value, str):
        value = int(value, 0)
    if not 0 <= value <= BUS_WIDTH_MASK:
        raise ValueError(f"{what} must fit in 32 bits, got {value:#x}")
    return value


def _parse_address(address: int | str) -> int:
    addr = _parse_word(address, "Address")
    if addr % WORD_SIZE:
        raise ValueError(f"Address must be {WORD_SIZE}-byte aligned, got {addr:#x}")
    return addr


def _check_count(count: int) -> None:
    if not 1 <= count <= MAX_BLOCK_WORDS:
        raise ValueError(f"Count must be 1-{MAX_BLOCK_WORDS}, got {count}")


def _fault(e: Exception) -> dict[str, Any]:
    if isinstance(e, BusFault):
        return {"error": str(e), "bus_fault": True, "address": f"0x{e.address:08x}"}
    return {"error": str(e)}


def _words(values: list[int]) -> list[str]:
    return [f"0x{v:08x}" for v in values]


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def connect(target: str | None = None, baudrate: int | None = None) -> dict[str, Any]:
    """Open a hexbus connection to the FPGA.

    Args:
        target: Serial device (e.g. /dev/ttyUSB1) or host:port of a
                network bridge. Defaults to $HEXBUS_DEVICE.
        baudrate: Serial baud rate. Defaults to $HEXBUS_BAUD or 115200.
    """
    global _bus, _target
    if _bus is not None and not _bus.closed:
        return {"connected": True, "message": "Already connected", "target": _target}

    try:
        _bus = HexBus.open(target, baudrate)
    except (ValueError, ConnectionError) as e:
        return {"error": str(e)}

    _target = target or "(from environment)"
    return {"connected": True, "target": _target}


@mcp.tool()
def disconnect() -> dict[str, bool]:
    """Close the hexbus connection."""
    global _bus
    if _bus is None:
        return {"disconnected": True}
    _bus.close()
    _bus = None
    return {"disconnected": True}


# ─── REGISTER TOOLS ───────────────────────────────────────────────────

@mcp.tool()
def read_register(address: int | str) -> dict[str, Any]:
    """Read one 32-bit register.

    Args:
        address: Word-aligned bus address, as an int or a string such as "0x400".
    """
    try:
        addr = _parse_address(address)
        value = _get_bus().read(addr)
    except (ValueError, BusFault, TransportClosed) as e:
        return _fault(e)
    return {"address": f"0x{addr:08x}", "value": f"0x{value:08x}"}


@mcp.tool()
def write_register(address: int | str, value: int | str) -> dict[str, Any]:
    """Write one 32-bit register.

    Args:
        address: Word-aligned bus address.
        value: 32-bit value, as an int or a string such as "0xdeadbeef".
    """
    try:
        addr = _parse_address(address)
        word = _parse_word(value, "Value")
        _get_bus().write(addr, word)
    except (ValueError, BusFault, TransportClosed) as e:
        return _fault(e)
    return {"written": True, "address": f"0x{addr:08x}", "value": f"0x{word:08x}"}


@mcp.tool()
def read_block(address: int | str, count: int) -> dict[str, Any]:
    """Read consecutive registers starting at an address.

    Args:
        address: First word-aligned bus address.
        count: Number of words to read (1-4096).
    """
    try:
        addr = _parse_address(address)
        _check_count(count)
        values = _get_bus().read_block(addr, count)
    except (ValueError, BusFault, TransportClosed) as e:
        return _fault(e)
    return {"address": f"0x{addr:08x}", "values": _words(values)}


@mcp.tool()
def read_same(address: int | str, count: int) -> dict[str, Any]:
    """Read the same register repeatedly, e.g. to drain a FIFO.

    Args:
        address: Word-aligned bus address.
        count: Number of reads (1-4096).
    """
    try:
        addr = _parse_address(address)
        _check_count(count)
        values = _get_bus().read_same(addr, count)
    except (ValueError, BusFault, TransportClosed) as e:
        return _fault(e)
    return {"address": f"0x{addr:08x}", "values": _words(values)}


@mcp.tool()
def write_block(address: int | str, values: list[int | str]) -> dict[str, Any]:
    """Write consecutive registers starting at an address.

    Args:
        address: First word-aligned bus address.
        values: Words to write, ints or hex strings.
    """
    try:
        addr = _parse_address(address)
        _check_count(len(values))
        words = [_parse_word(v, "Value") for v in values]
        _get_bus().write_block(addr, words)
    except (ValueError, BusFault, TransportClosed) as e:
        return _fault(e)
    return {"written": len(words), "address": f"0x{addr:08x}"}


@mcp.tool()
def write_same(address: int | str, values: list[int | str]) -> dict[str, Any]:
    """Write several words to one register, e.g. to fill a FIFO.

    Args:
        address: Word-aligned bus address.
        values: Words to write, ints or hex strings.
    """
    try:
        addr = _parse_address(address)
        _check_count(len(values))
        words = [_parse_word(v, "Value") for v in values]
        _get_bus().write_same(addr, words)
    except (ValueError, BusFault, TransportClosed) as e:
        return _fault(e)
    return {"written": len(words), "address": f"0x{addr:08x}"}


# ─── INTERRUPT / STATUS TOOLS ─────────────────────────────────────────

@mcp.tool()
def wait_interrupt(timeout_ms: int = 1000) -> dict[str, Any]:
    """Wait for the FPGA to raise an interrupt.

    Args:
        timeout_ms: How long to wait before giving up.
    """
    try:
        interrupted = _get_bus().wait_interrupt(timeout_ms)
    except (BusFault, TransportClosed) as e:
        return _fault(e)
    return {"interrupted": interrupted}


@mcp.tool()
def clear_interrupt() -> dict[str, bool]:
    """Clear the latched interrupt flag."""
    _get_bus().clear_interrupt()
    return {"interrupted": False}


@mcp.tool()
def bus_status() -> dict[str, Any]:
    """Report interrupt and bus-error flags of the current connection."""
    bus = _get_bus()
    return {
        "target": _target,
        "interrupted": bus.poll_interrupt(),
        "bus_error": bus.has_bus_error(),
        "bytes_read": bus.total_bytes_read,
    }


@mcp.tool()
def clear_bus_error() -> dict[str, bool]:
    """Acknowledge a latched bus error."""
    _get_bus().clear_bus_error()
    return {"bus_error": False}


# ─── MCP RESOURCES ────────────────────────────────────────────────────

@mcp.resource("hexbus://connection/status")
def resource_connection_status() -> str:
    """Connection state of the hexbus."""
    if _bus is None or _bus.closed:
        return json.dumps({"connected": False})
    return json.dumps({
        "connected": True,
        "target": _target,
        "interrupted": _bus.poll_interrupt(),
        "bus_error": _bus.has_bus_error(),
    })


# ─── MCP PROMPTS ─────────────────────────────────────────────────────

@mcp.prompt()
def inspect_memory(address: str, count: int = 16) -> str:
    """Guide the AI through dumping and interpreting a memory region.

    Args:
        address: First address to inspect, e.g. "0x2000".
        count: Number of words.
    """
    return f"""Read {count} words starting at {address} using the read_block tool.
Present them as a table of address and value.
Consider:
- Words that look like ASCII text or pointers into the same region
- Runs of identical values (unused or erased memory)
- Any bus fault reported part way through the region

Use bus_status afterwards to check for latched errors or interrupts."""


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
