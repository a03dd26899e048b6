"""
Trading Indicators MCP Server - FastAPI Application

Main entry point: the session-oriented ``/mcp`` endpoint, the direct-call
indicator API and health reporting.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from indicator_server.api.v1 import router as api_v1_router
from indicator_server.api.v1.endpoints import mcp
from indicator_server.core.config import Settings, get_settings
from indicator_server.core.protocol import SESSION_HEADER
from indicator_server.services.indicators.calculations import compute
from indicator_server.services.indicators.gateway import Engine, create_engine_executor
from indicator_server.services.indicators.tools import IndicatorTools
from indicator_server.services.mcp.gate import ProtocolGate
from indicator_server.services.mcp.tools import ToolRegistry
from indicator_server.services.sessions.registry import SessionRegistry

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, engine: Engine = compute) -> FastAPI:
    """
    Build the application.

    The session registry and the engine worker pool live for the duration
    of the lifespan: both are created on startup and shut down (closing
    every session) on shutdown.
    """
    settings = settings or get_settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        # Startup
        logger.info(f"Starting {settings.app_name} v{settings.app_version}")
        logger.info(f"Environment: {settings.environment}")
        for problem in settings.timeout_ordering_errors():
            logger.warning(f"Timeout configuration: {problem}")

        registry = SessionRegistry(
            inactive_timeout=settings.session_timeout,
            cleanup_interval=settings.cleanup_interval,
            allow_auto_recreate=settings.allow_auto_session_recreate,
        )
        executor = create_engine_executor(settings.engine_max_workers)
        indicator_tools = IndicatorTools(settings=settings, engine=engine, executor=executor)
        tool_registry = ToolRegistry(
            indicator_tools.handlers(), execution_timeout=settings.tool_execution_timeout
        )

        app.state.settings = settings
        app.state.session_registry = registry
        app.state.indicator_tools = indicator_tools
        app.state.engine_executor = executor
        app.state.protocol_gate = ProtocolGate(
            registry,
            tool_registry,
            server_info={"name": settings.app_name, "version": settings.app_version},
        )

        await registry.start()
        if settings.allow_auto_session_recreate:
            logger.warning("Auto session recreation enabled (non-standard compatibility mode)")

        yield

        # Shutdown
        logger.info("Shutting down...")
        await registry.shutdown()
        # Abandoned engine calls are not waited for
        executor.shutdown(wait=False, cancel_futures=True)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="""
        Trading Indicators MCP Server

        ## Endpoints
        - **/mcp**: JSON-RPC over HTTP with `Mcp-Session-Id` sessions
        - **/api/v1**: direct indicator calls without a session
        - **/health**: status and session statistics

        ## Indicators
        RSI, EMA, SMA, MACD, Bollinger Bands, Stochastic, ATR
        """,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[SESSION_HEADER],
    )

    app.include_router(mcp.router, tags=["MCP"])
    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        return {
            "status": "healthy",
            "app": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
            "sessions": request.app.state.session_registry.get_stats(),
        }

    @app.get("/")
    async def root(request: Request):
        """Root endpoint."""
        return {
            "message": f"{settings.app_name} v{settings.app_version}",
            "endpoints": {
                "mcp": "/mcp",
                "api": "/api/v1",
                "health": "/health",
                "docs": "/docs",
            },
            "tools": list(request.app.state.indicator_tools.handlers()),
        }

    return app


app = create_app()
