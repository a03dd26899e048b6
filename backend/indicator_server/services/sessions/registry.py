"""
Session Registry

Authoritative store of live MCP sessions.

A session moves ``absent -> live -> (closed | evicted)`` and never comes
back under the same identifier. The registry is created when the service
starts and shut down when it stops; it is mutated only from the event loop,
so the request path and the eviction task never need a lock.

Usage:
    registry = SessionRegistry(inactive_timeout=300, cleanup_interval=30)
    await registry.start()
    ...
    await registry.shutdown()
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from indicator_server.core.protocol import (
    INITIALIZE_WITH_EXISTING_SESSION,
    MISSING_SESSION_ID,
    SESSION_NOT_FOUND,
    ProtocolError,
)

logger = logging.getLogger(__name__)


class Closable(Protocol):
    def close(self) -> None: ...


class ValidationStatus(str, Enum):
    CREATE_NEW = "create_new"
    USE_EXISTING = "use_existing"
    ERROR = "error"


@dataclass(frozen=True)
class SessionValidation:
    """Outcome of admitting one request."""

    status: ValidationStatus
    error: Optional[ProtocolError] = None

    @property
    def is_error(self) -> bool:
        return self.status == ValidationStatus.ERROR


CREATE_NEW = SessionValidation(ValidationStatus.CREATE_NEW)
USE_EXISTING = SessionValidation(ValidationStatus.USE_EXISTING)


@dataclass
class Session:
    """A live session and the transport it owns."""

    session_id: str
    transport: Closable
    connected_at: datetime
    last_activity: float
    metadata: dict[str, Any] = field(default_factory=dict)


class SessionRegistry:
    """
    Session lifecycle, admission rules and inactivity eviction.

    Args:
        inactive_timeout: Seconds without activity before a session is evicted
        cleanup_interval: Seconds between eviction sweeps (< inactive_timeout)
        allow_auto_recreate: Treat unknown session IDs as new sessions
            (non-standard compatibility mode)
        clock: Monotonic time source, in seconds
    """

    def __init__(
        self,
        inactive_timeout: float = 300.0,
        cleanup_interval: float = 30.0,
        allow_auto_recreate: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        if cleanup_interval <= 0:
            raise ValueError("Cleanup interval must be positive")
        if cleanup_interval >= inactive_timeout:
            raise ValueError("Cleanup interval must be less than session timeout")

        self.inactive_timeout = inactive_timeout
        self.cleanup_interval = cleanup_interval
        self.allow_auto_recreate = allow_auto_recreate
        self._clock = clock

        self._sessions: dict[str, Session] = {}
        self._cleanup_task: Optional[asyncio.Task] = None
        self._shut_down = False

    def __len__(self) -> int:
        return len(self._sessions)

    # ============ Lookup ============

    def has_session(self, session_id: Optional[str]) -> bool:
        return session_id is not None and session_id in self._sessions

    def get_session(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def get_transport(self, session_id: str) -> Optional[Closable]:
        session = self._sessions.get(session_id)
        return session.transport if session else None

    # ============ Admission ============

    def validate(self, session_id: Optional[str], is_initialize: bool) -> SessionValidation:
        """
        Classify a request by (identifier presence, liveness, initialize).

        Depends only on those three facts and the auto-recreate flag.
        """
        if is_initialize:
            if self.has_session(session_id):
                return SessionValidation(ValidationStatus.ERROR, INITIALIZE_WITH_EXISTING_SESSION)
            return CREATE_NEW

        if not session_id:
            return SessionValidation(ValidationStatus.ERROR, MISSING_SESSION_ID)

        if not self.has_session(session_id):
            if self.allow_auto_recreate:
                logger.warning(f"Auto-recreating session {session_id} (compatibility mode)")
                return CREATE_NEW
            return SessionValidation(ValidationStatus.ERROR, SESSION_NOT_FOUND)

        return USE_EXISTING

    # ============ Lifecycle ============

    def create(self, transport: Closable, metadata: Optional[dict[str, Any]] = None) -> str:
        """Allocate a fresh identifier and store the session."""
        session_id = str(uuid.uuid4())
        self.register(session_id, transport, metadata)
        return session_id

    def register(
        self, session_id: str, transport: Closable, metadata: Optional[dict[str, Any]] = None
    ) -> None:
        """Bind an identifier allocated by the transport during its handshake."""
        if self._shut_down:
            raise RuntimeError("Session registry is shut down")
        if session_id in self._sessions:
            raise ValueError(f"Session {session_id} is already live")

        self._sessions[session_id] = Session(
            session_id=session_id,
            transport=transport,
            connected_at=datetime.now(timezone.utc),
            last_activity=self._clock(),
            metadata=dict(metadata or {}),
        )
        logger.info(f"New MCP session created: {session_id}")

    def touch(self, session_id: str) -> None:
        """Refresh last activity; no-op if the session is already gone."""
        session = self._sessions.get(session_id)
        if session:
            session.last_activity = self._clock()

    def remove(self, session_id: str) -> bool:
        """
        Drop a session and close its transport.

        Idempotent. Transport close failures are logged, not raised.
        Returns True if a live session was removed.
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False

        try:
            session.transport.close()
        except Exception as e:
            logger.error(f"Error closing transport for session {session_id}: {e}")

        logger.info(f"Session removed: {session_id}")
        return True

    # ============ Eviction ============

    def sweep(self, now: Optional[float] = None) -> list[str]:
        """Remove every session inactive for longer than the timeout."""
        if now is None:
            now = self._clock()

        expired = [
            (session_id, now - session.last_activity)
            for session_id, session in self._sessions.items()
            if now - session.last_activity > self.inactive_timeout
        ]

        for session_id, inactive in expired:
            logger.info(f"Session timeout: {session_id} (inactive for {round(inactive)}s)")
            self.remove(session_id)

        return [session_id for session_id, _ in expired]

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Session sweep failed: {e}")

    async def start(self) -> None:
        """Start the periodic eviction task on the running loop."""
        if self._shut_down:
            raise RuntimeError("Session registry is shut down")
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info(
                f"Session registry started (timeout={self.inactive_timeout}s, "
                f"sweep every {self.cleanup_interval}s)"
            )

    async def shutdown(self) -> None:
        """Stop eviction and close every live session. Runs once."""
        if self._shut_down:
            return
        self._shut_down = True
        logger.info("Shutting down MCP session registry...")

        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        for session_id in list(self._sessions):
            self.remove(session_id)

        logger.info("MCP session registry shutdown complete")

    # ============ Stats ============

    def get_stats(self) -> dict[str, Any]:
        now = self._clock()
        return {
            "activeSessions": len(self._sessions),
            "inactiveTimeoutMs": int(self.inactive_timeout * 1000),
            "cleanupIntervalMs": int(self.cleanup_interval * 1000),
            "allowAutoSessionRecreate": self.allow_auto_recreate,
            "sessions": [
                {
                    "id": session.session_id,
                    "connectedAt": session.connected_at.isoformat(),
                    "inactiveMs": int((now - session.last_activity) * 1000),
                    **session.metadata,
                }
                for session in self._sessions.values()
            ],
        }
