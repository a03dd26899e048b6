"""
MCP Protocol Layer

Protocol gate, per-session transports and tool dispatch.
"""

from indicator_server.services.mcp.gate import GateResponse, ProtocolGate
from indicator_server.services.mcp.tools import ToolRegistry
from indicator_server.services.mcp.transport import SessionTransport

__all__ = ["GateResponse", "ProtocolGate", "SessionTransport", "ToolRegistry"]
