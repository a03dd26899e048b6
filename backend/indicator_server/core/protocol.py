"""
MCP Protocol Constants

Error codes and HTTP status pairs shared by the protocol gate and the
session transports. Clients rely on these for retry logic; do not change.
"""

from dataclasses import dataclass
from typing import Any, Optional

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2025-06-18"
SESSION_HEADER = "Mcp-Session-Id"


class ErrorCode:
    """JSON-RPC error codes."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    BAD_REQUEST = -32000
    SESSION_NOT_FOUND = -32004


class HttpStatus:
    OK = 200
    ACCEPTED = 202
    BAD_REQUEST = 400
    NOT_FOUND = 404
    METHOD_NOT_ALLOWED = 405
    INTERNAL_ERROR = 500


@dataclass(frozen=True)
class ProtocolError:
    """A protocol-level rejection: JSON-RPC code plus transport status."""

    code: int
    http_status: int
    message: str


MISSING_SESSION_ID = ProtocolError(
    code=ErrorCode.INVALID_PARAMS,
    http_status=HttpStatus.BAD_REQUEST,
    message="Session ID required (call initialize first)",
)

SESSION_NOT_FOUND = ProtocolError(
    code=ErrorCode.SESSION_NOT_FOUND,
    http_status=HttpStatus.NOT_FOUND,
    message="Session not found",
)

INITIALIZE_WITH_EXISTING_SESSION = ProtocolError(
    code=ErrorCode.INVALID_PARAMS,
    http_status=HttpStatus.BAD_REQUEST,
    message="Initialize called with existing session ID",
)

INTERNAL_ERROR = ProtocolError(
    code=ErrorCode.INTERNAL_ERROR,
    http_status=HttpStatus.INTERNAL_ERROR,
    message="Internal server error",
)

PARSE_ERROR = ProtocolError(
    code=ErrorCode.PARSE_ERROR,
    http_status=HttpStatus.BAD_REQUEST,
    message="Parse error",
)

INVALID_REQUEST = ProtocolError(
    code=ErrorCode.INVALID_REQUEST,
    http_status=HttpStatus.BAD_REQUEST,
    message="Invalid Request",
)


def error_envelope(
    code: int, message: str, request_id: Optional[Any] = None
) -> dict[str, Any]:
    """Build a JSON-RPC error response."""
    return {
        "jsonrpc": JSONRPC_VERSION,
        "error": {"code": code, "message": message},
        "id": request_id,
    }


def result_envelope(result: Any, request_id: Any) -> dict[str, Any]:
    """Build a JSON-RPC success response."""
    return {"jsonrpc": JSONRPC_VERSION, "result": result, "id": request_id}
