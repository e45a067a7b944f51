"""Tests for the MCP tool layer."""

from __future__ import annotations

import json
import sys
from unittest.mock import MagicMock, patch

import pytest

from hexbus_mcp.client import HexBus

from conftest import SimulatedDevice


def _get_server_module():
    """Import server module with FastMCP mocked to avoid init issues."""
    mock_fastmcp_cls = MagicMock()
    mock_fastmcp_instance = MagicMock()
    # Make the @mcp.tool() decorator a no-op that returns the function unchanged
    mock_fastmcp_instance.tool.return_value = lambda fn: fn
    mock_fastmcp_instance.resource.return_value = lambda fn: fn
    mock_fastmcp_instance.prompt.return_value = lambda fn: fn
    mock_fastmcp_cls.return_value = mock_fastmcp_instance

    with patch("mcp.server.fastmcp.FastMCP", mock_fastmcp_cls):
        # Remove cached server module so it re-imports with our mock
        sys.modules.pop("hexbus_mcp.server", None)
        import hexbus_mcp.server as server_mod

    return server_mod


@pytest.fixture
def server():
    server_mod = _get_server_module()
    yield server_mod
    sys.modules.pop("hexbus_mcp.server", None)


@pytest.fixture
def connected(server):
    device = SimulatedDevice()
    bus = HexBus(device, poll_interval_ms=10)
    server._bus = bus
    server._target = "sim"
    return server, device


def test_tools_require_connection(server):
    with pytest.raises(RuntimeError):
        server.read_register(0x0)


def test_read_register_accepts_hex_strings(connected):
    server, device = connected
    device.memory[0x400] = 0xBEEF
    result = server.read_register("0x400")
    assert result == {"address": "0x00000400", "value": "0x0000beef"}


def test_write_register(connected):
    server, device = connected
    result = server.write_register(0x10, "0xdeadbeef")
    assert result["written"] is True
    assert device.memory[0x10] == 0xDEADBEEF


def test_unaligned_address_is_an_error(connected):
    server, device = connected
    result = server.read_register("0x402")
    assert "error" in result
    assert device.tx == b""


def test_bad_value_is_an_error(connected):
    server, _ = connected
    assert "error" in server.write_register(0x0, 1 << 32)
    assert "error" in server.write_register(0x0, "zzz")


def test_block_tools(connected):
    server, device = connected
    result = server.write_block("0x100", [1, "0x2", 3])
    assert result == {"written": 3, "address": "0x00000100"}

    result = server.read_block("0x100", 3)
    assert result["values"] == ["0x00000001", "0x00000002", "0x00000003"]


def test_same_tools(connected):
    server, device = connected
    server.write_same(0x40, [5, 6])
    assert device.memory == {0x40: 6}
    assert server.read_same(0x40, 2)["values"] == ["0x00000006", "0x00000006"]


def test_block_count_limits(connected):
    server, _ = connected
    assert "error" in server.read_block(0x0, 0)
    assert "error" in server.read_block(0x0, server.MAX_BLOCK_WORDS + 1)
    assert "error" in server.write_block(0x0, [])


def test_bus_fault_is_reported(server):
    bus = HexBus(SimulatedDevice(error_addresses=(0x8,)), poll_interval_ms=10)
    server._bus = bus
    result = server.read_register(0x8)
    assert result["bus_fault"] is True
    assert result["address"] == "0x00000008"

    status = server.bus_status()
    assert status["bus_error"] is True
    server.clear_bus_error()
    assert server.bus_status()["bus_error"] is False


def test_interrupt_tools(connected):
    server, device = connected
    assert server.wait_interrupt(timeout_ms=20) == {"interrupted": False}
    device.interrupt()
    assert server.wait_interrupt(timeout_ms=20) == {"interrupted": True}
    assert server.bus_status()["interrupted"] is True
    server.clear_interrupt()
    assert server.bus_status()["interrupted"] is False


def test_connect_and_disconnect(server):
    device = SimulatedDevice()
    with patch("hexbus_mcp.client.open_transport", return_value=device):
        result = server.connect("localhost:8363")
    assert result == {"connected": True, "target": "localhost:8363"}
    assert server.connect("elsewhere:1")["message"] == "Already connected"

    assert server.disconnect() == {"disconnected": True}
    assert device.closed
    assert server._bus is None


def test_connect_failure(server):
    with patch(
        "hexbus_mcp.client.open_transport",
        side_effect=ConnectionError("refused"),
    ):
        result = server.connect("localhost:1")
    assert result == {"error": "refused"}


def test_status_resource(connected):
    server, _ = connected
    status = json.loads(server.resource_connection_status())
    assert status["connected"] is True
    assert status["target"] == "sim"

    server.disconnect()
    assert json.loads(server.resource_connection_status()) == {"connected": False}


def test_inspect_memory_prompt(server):
    text = server.inspect_memory("0x2000", 8)
    assert "0x2000" in text
    assert "read_block" in text
