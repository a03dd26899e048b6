"""
Session Management

Live session store with admission rules and inactivity eviction.
"""

from indicator_server.services.sessions.registry import (
    Session,
    SessionRegistry,
    SessionValidation,
    ValidationStatus,
)

__all__ = ["Session", "SessionRegistry", "SessionValidation", "ValidationStatus"]
