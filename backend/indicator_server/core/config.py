"""
Application Configuration

All settings loaded from environment variables.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "mcp-server-trading-indicators"
    app_version: str = "1.0.0"
    description: str = "MCP Server for Trading Indicators - Technical Analysis Tools"
    environment: str = "development"
    log_level: str = "info"

    # Server
    host: str = "0.0.0.0"
    port: int = 3000

    # CORS
    allowed_origins: list[str] = ["*"]

    # Session management
    mcp_session_timeout_ms: int = 5 * 60 * 1000
    mcp_cleanup_interval_ms: int = 30 * 1000
    allow_auto_session_recreate: bool = False  # strict standard compliance

    # Timeouts
    tool_execution_timeout_ms: int = 20 * 1000
    operation_timeout_ms: int = 5 * 1000
    atomic_operation_timeout_ms: int = 1 * 1000
    batch_timeout_ms: int = 15 * 1000

    # Engine worker pool
    engine_max_workers: int = 8
    batch_max_concurrency: int = 4  # per batch, below engine_max_workers

    @property
    def session_timeout(self) -> float:
        return self.mcp_session_timeout_ms / 1000

    @property
    def cleanup_interval(self) -> float:
        return self.mcp_cleanup_interval_ms / 1000

    @property
    def tool_execution_timeout(self) -> float:
        return self.tool_execution_timeout_ms / 1000

    @property
    def operation_timeout(self) -> float:
        return self.operation_timeout_ms / 1000

    @property
    def atomic_operation_timeout(self) -> float:
        return self.atomic_operation_timeout_ms / 1000

    @property
    def batch_timeout(self) -> float:
        return self.batch_timeout_ms / 1000

    def timeout_ordering_errors(self) -> list[str]:
        """
        Check that timeouts are properly ordered.

        atomic < operation < tool execution < session, cleanup < session,
        and the batch budget sits between the per-item and per-tool budgets.
        A single batch must not be able to occupy every engine worker.
        """
        errors = []

        if self.atomic_operation_timeout_ms >= self.operation_timeout_ms:
            errors.append("Atomic operation timeout must be less than operation timeout")

        if self.operation_timeout_ms >= self.tool_execution_timeout_ms:
            errors.append("Operation timeout must be less than tool execution timeout")

        if self.tool_execution_timeout_ms >= self.mcp_session_timeout_ms:
            errors.append("Tool execution timeout must be less than session timeout")

        if self.mcp_cleanup_interval_ms >= self.mcp_session_timeout_ms:
            errors.append("Cleanup interval must be less than session timeout")

        if self.atomic_operation_timeout_ms >= self.batch_timeout_ms:
            errors.append("Atomic operation timeout must be less than batch timeout")

        if self.batch_timeout_ms >= self.tool_execution_timeout_ms:
            errors.append("Batch timeout must be less than tool execution timeout")

        if self.batch_max_concurrency >= self.engine_max_workers:
            errors.append("Batch concurrency must be less than engine worker count")

        return errors


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
