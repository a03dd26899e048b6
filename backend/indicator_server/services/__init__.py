"""
Indicator Server Services

Service layer: indicator computation, MCP protocol handling and sessions.
"""

from indicator_server.services.base import BaseService, ServiceError

__all__ = ["BaseService", "ServiceError"]
