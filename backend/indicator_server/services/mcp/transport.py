"""
Session Transport

Per-session JSON-RPC handler. Each transport belongs to exactly one session:
it allocates the session identifier during the ``initialize`` handshake,
serializes the session's requests in arrival order and dispatches
``tools/call`` through the shared ToolRegistry.
"""

import asyncio
import logging
import uuid
from typing import Any, Callable, Optional

from indicator_server.core.protocol import (
    PROTOCOL_VERSION,
    ErrorCode,
    error_envelope,
    result_envelope,
)
from indicator_server.services.mcp.tools import ToolRegistry

logger = logging.getLogger(__name__)

SUPPORTED_PROTOCOL_VERSIONS = ("2025-06-18", "2025-03-26", "2024-11-05")


class TransportClosedError(Exception):
    """Raised when a message reaches a transport whose session has ended."""


class _HandshakeError(Exception):
    pass


class _InvalidParamsError(Exception):
    pass


class SessionTransport:
    """
    JSON-RPC message handler bound to one session.

    Args:
        tools: Tool registry used for ``tools/list`` and ``tools/call``
        server_info: ``{"name": ..., "version": ...}`` reported on initialize
        on_session_initialized: Called with the new identifier during the
            handshake, before the initialize response is produced
        session_id: Identifier allocated up front (auto-recreated sessions);
            such a transport skips the handshake
    """

    def __init__(
        self,
        tools: ToolRegistry,
        server_info: dict[str, str],
        on_session_initialized: Optional[Callable[[str], None]] = None,
        session_id: Optional[str] = None,
    ):
        self.tools = tools
        self.server_info = server_info
        self.on_session_initialized = on_session_initialized
        self.onclose: Optional[Callable[[str], Any]] = None

        self.session_id = session_id
        self.initialized = session_id is not None
        self.client_info: dict[str, Any] = {}

        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def bind(self, session_id: str) -> None:
        """Attach an identifier allocated outside the handshake."""
        if self.session_id is not None:
            raise ValueError("Transport is already bound to a session")
        self.session_id = session_id
        self.initialized = True

    def close(self) -> None:
        """Close the transport and fire the close hook. Idempotent."""
        if self._closed:
            return
        self._closed = True
        logger.debug(f"Transport closed for session {self.session_id}")
        if self.onclose and self.session_id:
            self.onclose(self.session_id)

    # ============ Message handling ============

    async def handle(self, body: Any) -> Optional[Any]:
        """
        Process a JSON-RPC message or batch.

        Returns:
            - dict response for a single request
            - list of responses for a batch
            - None when the payload holds only notifications
        """
        async with self._lock:
            if self._closed:
                raise TransportClosedError(f"Session {self.session_id} is closed")

            if isinstance(body, list):
                responses = []
                for message in body:
                    response = await self._process_message(message)
                    if response is not None:
                        responses.append(response)
                return responses or None

            return await self._process_message(body)

    async def _process_message(self, message: Any) -> Optional[dict[str, Any]]:
        if not isinstance(message, dict):
            return error_envelope(ErrorCode.INVALID_REQUEST, "Invalid Request")

        method = message.get("method")
        request_id = message.get("id")
        is_notification = "id" not in message

        if method is None and ("result" in message or "error" in message):
            # Client response; this server never sends requests.
            return None

        if not isinstance(method, str):
            return error_envelope(ErrorCode.INVALID_REQUEST, "Invalid Request", request_id)

        if method.startswith("notifications/"):
            logger.debug(f"Notification: {method}")
            return None

        if not self.initialized and method not in ("initialize", "ping"):
            if is_notification:
                return None
            return error_envelope(
                ErrorCode.INVALID_REQUEST, "Server not initialized", request_id
            )

        params = message.get("params") or {}
        if not isinstance(params, dict):
            return error_envelope(ErrorCode.INVALID_PARAMS, "Invalid params", request_id)

        try:
            if method == "initialize":
                result = self._initialize(params)
            elif method == "ping":
                result = {}
            elif method == "tools/list":
                result = {"tools": self.tools.list_tools()}
            elif method == "tools/call":
                name = params.get("name")
                if not isinstance(name, str) or not name:
                    return error_envelope(ErrorCode.INVALID_PARAMS, "Missing tool name", request_id)
                result = await self.tools.call(name, params.get("arguments"))
            else:
                if is_notification:
                    logger.debug(f"Ignoring unknown notification: {method}")
                    return None
                return error_envelope(
                    ErrorCode.METHOD_NOT_FOUND, f"Method not found: {method}", request_id
                )
        except _HandshakeError as e:
            return error_envelope(ErrorCode.INVALID_REQUEST, str(e), request_id)
        except _InvalidParamsError as e:
            return error_envelope(ErrorCode.INVALID_PARAMS, str(e), request_id)
        except Exception as e:
            logger.error(f"Error processing {method} for session {self.session_id}: {e}")
            if is_notification:
                return None
            return error_envelope(ErrorCode.INTERNAL_ERROR, str(e), request_id)

        if is_notification:
            return None
        return result_envelope(result, request_id)

    def _initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        if self.initialized:
            raise _HandshakeError("Server already initialized")

        client_info = params.get("clientInfo") or {}
        if not isinstance(client_info, dict):
            raise _InvalidParamsError("Invalid params: clientInfo must be an object")

        requested = params.get("protocolVersion")
        version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else PROTOCOL_VERSION

        # Nothing is registered until the request is known to be well formed
        session_id = str(uuid.uuid4())
        if self.on_session_initialized:
            self.on_session_initialized(session_id)
        self.session_id = session_id
        self.initialized = True
        self.client_info = client_info

        logger.info(
            f"Session {session_id} initialized by "
            f"{self.client_info.get('name', 'unknown client')} (protocol {version})"
        )
        return {
            "protocolVersion": version,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": dict(self.server_info),
        }

