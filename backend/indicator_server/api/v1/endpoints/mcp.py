"""
MCP Endpoint

Streamable-HTTP style JSON-RPC endpoint. The session identifier travels in
the ``Mcp-Session-Id`` header; every request is admitted by the
ProtocolGate stored on ``app.state``.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from indicator_server.core.protocol import (
    PARSE_ERROR,
    SESSION_HEADER,
    ErrorCode,
    HttpStatus,
    error_envelope,
)
from indicator_server.services.mcp.gate import GateResponse, ProtocolGate

logger = logging.getLogger(__name__)

router = APIRouter()


def _gate(request: Request) -> ProtocolGate:
    return request.app.state.protocol_gate


def _session_id(request: Request) -> Optional[str]:
    return request.headers.get(SESSION_HEADER) or None


def _to_response(result: GateResponse) -> Response:
    headers = {SESSION_HEADER: result.session_id} if result.session_id else None
    if result.payload is None:
        return Response(status_code=result.status_code, headers=headers)
    return JSONResponse(status_code=result.status_code, content=result.payload, headers=headers)


@router.post("/mcp")
async def mcp_post(request: Request):
    """Client-to-server JSON-RPC messages. Notifications-only payloads get 202."""
    raw = await request.body()
    try:
        body = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Rejected MCP request: body is not valid JSON")
        return JSONResponse(
            status_code=PARSE_ERROR.http_status,
            content=error_envelope(PARSE_ERROR.code, PARSE_ERROR.message),
        )

    metadata = {
        "clientIp": request.client.host if request.client else None,
        "userAgent": request.headers.get("user-agent"),
    }
    result = await _gate(request).handle_post(_session_id(request), body, metadata)
    return _to_response(result)


@router.get("/mcp")
async def mcp_get():
    """Server-initiated streams are not offered."""
    return JSONResponse(
        status_code=HttpStatus.METHOD_NOT_ALLOWED,
        content=error_envelope(
            ErrorCode.BAD_REQUEST, "Method not allowed: server-initiated streams are not supported"
        ),
        headers={"Allow": "POST, DELETE"},
    )


@router.delete("/mcp")
async def mcp_delete(request: Request):
    """Terminate the session named in the header."""
    return _to_response(await _gate(request).handle_delete(_session_id(request)))
