"""
Tool Argument Contracts

Pydantic models for every tool's arguments. The same models produce the
JSON input schemas advertised through ``tools/list``.
"""

from indicator_server.schemas.indicators import (
    AtrArgs,
    BollingerArgs,
    CalculateAllArgs,
    EmaArgs,
    EmptyArgs,
    ErrorCategory,
    IndicatorKind,
    IndicatorSelection,
    MacdArgs,
    OhlcvInput,
    RsiArgs,
    SmaArgs,
    StochasticArgs,
)

__all__ = [
    # Enums
    "IndicatorKind",
    "ErrorCategory",
    # Single-indicator tools
    "RsiArgs",
    "EmaArgs",
    "SmaArgs",
    "MacdArgs",
    "BollingerArgs",
    "StochasticArgs",
    "AtrArgs",
    # Batch tool
    "OhlcvInput",
    "IndicatorSelection",
    "CalculateAllArgs",
    "EmptyArgs",
]
