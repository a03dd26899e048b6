"""
Tests for settings loading and timeout ordering checks.
"""

from indicator_server.core.config import Settings


class TestSettings:
    def test_defaults_are_ordered(self):
        settings = Settings(_env_file=None)
        assert settings.timeout_ordering_errors() == []
        assert settings.session_timeout == 300.0
        assert settings.cleanup_interval == 30.0
        assert settings.atomic_operation_timeout == 1.0
        assert settings.allow_auto_session_recreate is False

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("MCP_SESSION_TIMEOUT_MS", "60000")
        monkeypatch.setenv("ALLOW_AUTO_SESSION_RECREATE", "true")

        settings = Settings(_env_file=None)

        assert settings.session_timeout == 60.0
        assert settings.allow_auto_session_recreate is True

    def test_ordering_violations(self):
        settings = Settings(
            _env_file=None,
            atomic_operation_timeout_ms=6000,
            operation_timeout_ms=5000,
            mcp_cleanup_interval_ms=400_000,
        )
        errors = settings.timeout_ordering_errors()

        assert "Atomic operation timeout must be less than operation timeout" in errors
        assert "Cleanup interval must be less than session timeout" in errors

    def test_batch_must_fit_between_item_and_tool(self):
        settings = Settings(_env_file=None, batch_timeout_ms=25_000)
        assert "Batch timeout must be less than tool execution timeout" in settings.timeout_ordering_errors()

    def test_worker_pool_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.engine_max_workers == 8
        assert settings.batch_max_concurrency == 4

    def test_batch_concurrency_must_stay_below_worker_count(self):
        settings = Settings(_env_file=None, engine_max_workers=4, batch_max_concurrency=4)
        assert "Batch concurrency must be less than engine worker count" in settings.timeout_ordering_errors()
