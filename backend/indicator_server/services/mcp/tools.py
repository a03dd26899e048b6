"""
MCP Tool Registry

Tool definitions advertised through ``tools/list`` and name-based dispatch
for ``tools/call``. Dispatch never raises: unknown tools, handler faults and
handlers overrunning the tool execution timeout all come back as
``isError`` results so the session stays usable.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Type

from pydantic import BaseModel

from indicator_server.schemas.indicators import (
    AtrArgs,
    BollingerArgs,
    CalculateAllArgs,
    EmaArgs,
    EmptyArgs,
    ErrorCategory,
    MacdArgs,
    RsiArgs,
    SmaArgs,
    StochasticArgs,
)
from indicator_server.services.mcp.results import error_result

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


# name -> (argument model, description)
TOOL_SPECS: dict[str, tuple[Type[BaseModel], str]] = {
    "get_server_info": (
        EmptyArgs,
        "Get server information including version, uptime, available trading indicators, and system stats",
    ),
    "calculate_all_indicators": (
        CalculateAllArgs,
        "Calculate multiple technical indicators in a single call for maximum performance. "
        "Returns RSI, EMA, SMA, MACD, Bollinger Bands, Stochastic, and ATR all at once. "
        "Each indicator can be configured with an object or an array of objects "
        "(e.g. RSI 7 and RSI 14 together).",
    ),
    "calculate_rsi": (
        RsiArgs,
        "Calculate RSI (Relative Strength Index) - Momentum oscillator measuring speed and change "
        "of price movements. Values above 70 suggest overbought, below 30 oversold.",
    ),
    "calculate_ema": (
        EmaArgs,
        "Calculate EMA (Exponential Moving Average) - Trend indicator giving more weight to recent prices.",
    ),
    "calculate_sma": (
        SmaArgs,
        "Calculate SMA (Simple Moving Average) - Classic trend indicator averaging prices over a period. "
        "Common periods: 20, 50, 100, 200.",
    ),
    "calculate_macd": (
        MacdArgs,
        "Calculate MACD (Moving Average Convergence Divergence) - Momentum indicator showing trend and "
        "strength. Standard settings: 12,26,9.",
    ),
    "calculate_bollinger_bands": (
        BollingerArgs,
        "Calculate Bollinger Bands - Volatility bands placed above and below a moving average.",
    ),
    "calculate_stochastic": (
        StochasticArgs,
        "Calculate Stochastic Oscillator - Momentum indicator comparing the close to the high-low range. "
        "Above 80 overbought, below 20 oversold.",
    ),
    "calculate_atr": (
        AtrArgs,
        "Calculate ATR (Average True Range) - Volatility indicator measuring the degree of price movement.",
    ),
}


def tool_definitions() -> list[dict[str, Any]]:
    """Definitions in ``tools/list`` format."""
    definitions = []
    for name, (model, description) in TOOL_SPECS.items():
        schema = model.model_json_schema(by_alias=True)
        schema.pop("title", None)
        definitions.append({"name": name, "description": description, "inputSchema": schema})
    return definitions


class ToolRegistry:
    """Name -> handler dispatch with fault isolation."""

    def __init__(self, handlers: dict[str, ToolHandler], execution_timeout: Optional[float] = None):
        self._handlers = dict(handlers)
        self._definitions = [d for d in tool_definitions() if d["name"] in self._handlers]
        self.execution_timeout = execution_timeout

    @property
    def names(self) -> list[str]:
        return list(self._handlers)

    def list_tools(self) -> list[dict[str, Any]]:
        return self._definitions

    def has_tool(self, name: str) -> bool:
        return name in self._handlers

    async def call(self, name: str, arguments: Optional[dict[str, Any]]) -> dict[str, Any]:
        """Invoke a tool by name and return its result verbatim."""
        handler = self._handlers.get(name)
        if handler is None:
            logger.error(f"Unknown tool: {name}")
            return error_result(f"Unknown tool: {name}", ErrorCategory.NOT_FOUND)

        logger.info(f"Tool execution request: {name}")
        try:
            if self.execution_timeout:
                result = await asyncio.wait_for(handler(arguments or {}), timeout=self.execution_timeout)
            else:
                result = await handler(arguments or {})
        except asyncio.TimeoutError:
            logger.error(f"Tool {name} exceeded {self.execution_timeout}s")
            return error_result(
                f"Tool execution timed out after {int(self.execution_timeout * 1000)}ms",
                ErrorCategory.TIMEOUT,
            )
        except Exception as e:
            logger.exception(f"Error executing tool {name}")
            return error_result(f"Error: {e}", ErrorCategory.INTERNAL)

        logger.debug(f"Tool {name} executed")
        return result
