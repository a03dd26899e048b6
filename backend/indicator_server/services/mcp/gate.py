"""
Protocol Gate

Classifies every inbound ``/mcp`` request against the Session Registry and
either dispatches it to the session's transport or answers with a fixed
protocol error. Faults while handling one request never escape: they become
a -32603 / 500 response and other sessions keep running.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from indicator_server.core.protocol import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    MISSING_SESSION_ID,
    SESSION_NOT_FOUND,
    HttpStatus,
    ProtocolError,
    error_envelope,
)
from indicator_server.services.mcp.tools import ToolRegistry
from indicator_server.services.mcp.transport import SessionTransport, TransportClosedError
from indicator_server.services.sessions.registry import SessionRegistry, ValidationStatus

logger = logging.getLogger(__name__)


@dataclass
class GateResponse:
    """What the HTTP edge sends back. ``payload`` None means an empty body."""

    status_code: int
    payload: Optional[Any] = None
    session_id: Optional[str] = None


def _request_id(body: Any) -> Optional[Any]:
    return body.get("id") if isinstance(body, dict) else None


def _is_initialize(body: Any) -> bool:
    return isinstance(body, dict) and body.get("method") == "initialize"


def _rejection(error: ProtocolError, body: Any = None) -> GateResponse:
    return GateResponse(
        status_code=error.http_status,
        payload=error_envelope(error.code, error.message, _request_id(body)),
    )


class ProtocolGate:
    """
    Request router for the session-oriented endpoint.

    Args:
        registry: Live session store
        tools: Tool registry shared by every session transport
        server_info: Name and version reported during the handshake
    """

    def __init__(self, registry: SessionRegistry, tools: ToolRegistry, server_info: dict[str, str]):
        self.registry = registry
        self.tools = tools
        self.server_info = server_info

    async def handle_post(
        self,
        session_id: Optional[str],
        body: Any,
        metadata: Optional[dict[str, Any]] = None,
    ) -> GateResponse:
        """Admit and dispatch one POSTed JSON-RPC payload."""
        try:
            return await self._handle_post(session_id, body, metadata or {})
        except Exception:
            logger.exception("Error handling MCP request")
            return _rejection(INTERNAL_ERROR, body)

    async def _handle_post(
        self, session_id: Optional[str], body: Any, metadata: dict[str, Any]
    ) -> GateResponse:
        if not isinstance(body, (dict, list)) or (isinstance(body, list) and not body):
            return _rejection(INVALID_REQUEST, body)

        is_initialize = _is_initialize(body)
        validation = self.registry.validate(session_id, is_initialize)

        if validation.is_error:
            logger.warning(
                f"Rejected MCP request (session={session_id}, initialize={is_initialize}): "
                f"{validation.error.message}"
            )
            return _rejection(validation.error, body)

        if validation.status == ValidationStatus.USE_EXISTING:
            self.registry.touch(session_id)
            transport = self.registry.get_transport(session_id)
        elif is_initialize:
            transport = self._new_transport(metadata)
        else:
            transport = self._recreated_transport(metadata)

        try:
            payload = await transport.handle(body)
        except TransportClosedError:
            logger.warning(f"Session {transport.session_id} closed while a request was queued")
            return _rejection(SESSION_NOT_FOUND, body)

        status_code = HttpStatus.ACCEPTED if payload is None else HttpStatus.OK
        return GateResponse(status_code=status_code, payload=payload, session_id=transport.session_id)

    def _new_transport(self, metadata: dict[str, Any]) -> SessionTransport:
        """Transport that registers itself during the initialize handshake."""
        transport = SessionTransport(
            self.tools,
            self.server_info,
            on_session_initialized=lambda sid: self.registry.register(sid, transport, metadata),
        )
        transport.onclose = self.registry.remove
        return transport

    def _recreated_transport(self, metadata: dict[str, Any]) -> SessionTransport:
        """Fresh session for an unknown identifier (compatibility mode)."""
        transport = SessionTransport(self.tools, self.server_info)
        transport.bind(self.registry.create(transport, metadata))
        transport.onclose = self.registry.remove
        logger.info(f"Auto-created session {transport.session_id} for unknown session ID")
        return transport

    async def handle_delete(self, session_id: Optional[str]) -> GateResponse:
        """Explicitly close a session."""
        if not session_id:
            return _rejection(MISSING_SESSION_ID)
        if not self.registry.has_session(session_id):
            return _rejection(SESSION_NOT_FOUND)

        self.registry.remove(session_id)
        return GateResponse(
            status_code=HttpStatus.OK,
            payload={"status": "closed", "sessionId": session_id},
        )
