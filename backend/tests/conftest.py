"""
Shared pytest fixtures for the indicator server test suite.

Provides synthetic price series, fast-timeout settings and helpers that
wire a ProtocolGate against a real SessionRegistry, so every test module
can exercise the protocol without starting a server.
"""

import time
from typing import Optional

import numpy as np
import pytest

from indicator_server.core.config import Settings
from indicator_server.services.indicators.calculations import compute
from indicator_server.services.indicators.tools import IndicatorTools
from indicator_server.services.mcp.gate import ProtocolGate
from indicator_server.services.mcp.tools import ToolRegistry
from indicator_server.services.sessions.registry import SessionRegistry

# ---------------------------------------------------------------------------
# Synthetic data generators
# ---------------------------------------------------------------------------


def random_walk(n: int = 100, start_price: float = 100.0, seed: int = 42) -> dict[str, list[float]]:
    """Close/high/low lists (plain floats) from a geometric random walk."""
    rng = np.random.default_rng(seed)
    close = start_price * np.exp(np.cumsum(rng.normal(0, 0.01, n)))
    spread = close * rng.uniform(0.002, 0.01, n)
    return {
        "close": close.round(4).tolist(),
        "high": (close + spread).round(4).tolist(),
        "low": (close - spread).round(4).tolist(),
    }


def initialize_message(request_id: int = 1) -> dict:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "initialize",
        "params": {
            "protocolVersion": "2025-06-18",
            "capabilities": {},
            "clientInfo": {"name": "pytest", "version": "1.0"},
        },
    }


def tool_call(name: str, arguments: Optional[dict] = None, request_id: int = 2) -> dict:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "tools/call",
        "params": {"name": name, "arguments": arguments or {}},
    }


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def slow_engine(delays: dict[str, float]):
    """Engine that sleeps before computing the named indicators."""

    def run(indicator, inputs, params):
        time.sleep(delays.get(indicator, 0))
        return compute(indicator, inputs, params)

    return run


def make_gate(
    settings: Settings,
    engine=compute,
    allow_auto_recreate: bool = False,
    clock=time.monotonic,
) -> tuple[ProtocolGate, SessionRegistry]:
    registry = SessionRegistry(
        inactive_timeout=settings.session_timeout,
        cleanup_interval=settings.cleanup_interval,
        allow_auto_recreate=allow_auto_recreate,
        clock=clock,
    )
    indicator_tools = IndicatorTools(settings=settings, engine=engine)
    tools = ToolRegistry(indicator_tools.handlers(), execution_timeout=settings.tool_execution_timeout)
    gate = ProtocolGate(registry, tools, server_info={"name": settings.app_name, "version": settings.app_version})
    return gate, registry


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        environment="test",
        mcp_session_timeout_ms=300_000,
        mcp_cleanup_interval_ms=30_000,
        allow_auto_session_recreate=False,
        tool_execution_timeout_ms=20_000,
        operation_timeout_ms=5_000,
        atomic_operation_timeout_ms=1_000,
        batch_timeout_ms=15_000,
    )


@pytest.fixture()
def series() -> dict[str, list[float]]:
    return random_walk(n=100, seed=42)


@pytest.fixture()
def prices(series) -> list[float]:
    return series["close"]
