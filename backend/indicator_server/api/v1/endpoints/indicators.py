"""
Indicator API Endpoints

Direct-call HTTP API for clients that do not speak MCP. Each endpoint takes
the same argument object as the matching tool and returns the decoded tool
payload.
"""

import logging
from typing import Any

from fastapi import APIRouter, Body, Request
from fastapi.responses import JSONResponse

from indicator_server.schemas.indicators import ErrorCategory
from indicator_server.services.indicators.tools import IndicatorTools
from indicator_server.services.mcp.results import parse_result

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_STATUS = {
    ErrorCategory.VALIDATION.value: 400,
    ErrorCategory.NOT_FOUND.value: 404,
    ErrorCategory.TIMEOUT.value: 504,
}

# route -> tool name
INDICATOR_ROUTES = {
    "all": "calculate_all_indicators",
    "rsi": "calculate_rsi",
    "ema": "calculate_ema",
    "sma": "calculate_sma",
    "macd": "calculate_macd",
    "bollinger": "calculate_bollinger_bands",
    "stochastic": "calculate_stochastic",
    "atr": "calculate_atr",
}


def _tools(request: Request) -> IndicatorTools:
    return request.app.state.indicator_tools


def to_response(result: dict[str, Any]) -> JSONResponse:
    """Map a tool result onto an HTTP response."""
    payload = parse_result(result)
    if not result.get("isError"):
        return JSONResponse(content=payload)

    status_code = ERROR_STATUS.get(payload.get("category"), 500)
    return JSONResponse(status_code=status_code, content=payload)


async def _invoke(request: Request, route: str, arguments: dict[str, Any]) -> JSONResponse:
    tool_name = INDICATOR_ROUTES[route]
    handler = _tools(request).handlers()[tool_name]
    logger.info(f"Direct API call: {tool_name}")
    return to_response(await handler(arguments))


@router.get("/info")
async def get_server_info(request: Request):
    """Server information, same payload as the ``get_server_info`` tool."""
    return to_response(await _tools(request).get_server_info({}))


@router.post("/indicators/all")
async def calculate_all(request: Request, arguments: dict[str, Any] = Body(default={})):
    """
    Calculate several indicators over one OHLCV dataset.

    A batch cut short by its global timeout answers 504 with the indicators
    that finished.
    """
    return await _invoke(request, "all", arguments)


@router.post("/indicators/rsi")
async def calculate_rsi(request: Request, arguments: dict[str, Any] = Body(default={})):
    return await _invoke(request, "rsi", arguments)


@router.post("/indicators/ema")
async def calculate_ema(request: Request, arguments: dict[str, Any] = Body(default={})):
    return await _invoke(request, "ema", arguments)


@router.post("/indicators/sma")
async def calculate_sma(request: Request, arguments: dict[str, Any] = Body(default={})):
    return await _invoke(request, "sma", arguments)


@router.post("/indicators/macd")
async def calculate_macd(request: Request, arguments: dict[str, Any] = Body(default={})):
    return await _invoke(request, "macd", arguments)


@router.post("/indicators/bollinger")
async def calculate_bollinger(request: Request, arguments: dict[str, Any] = Body(default={})):
    return await _invoke(request, "bollinger", arguments)


@router.post("/indicators/stochastic")
async def calculate_stochastic(request: Request, arguments: dict[str, Any] = Body(default={})):
    return await _invoke(request, "stochastic", arguments)


@router.post("/indicators/atr")
async def calculate_atr(request: Request, arguments: dict[str, Any] = Body(default={})):
    return await _invoke(request, "atr", arguments)
