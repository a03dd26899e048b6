"""
Indicator Engine Service

RESPONSIBILITIES:
    - Calculate technical indicators (RSI, EMA, SMA, MACD, Bollinger Bands,
      Stochastic, ATR)
    - Run each calculation under a hard timeout, isolating its failure
    - Run batches concurrently under a global deadline with partial results

PURE PYTHON - Uses NumPy for calculations.
All math is deterministic and reproducible.
"""

from indicator_server.services.indicators.aggregate import AggregateIndicatorService
from indicator_server.services.indicators.gateway import run_indicator
from indicator_server.services.indicators.tools import IndicatorTools

__all__ = [
    "AggregateIndicatorService",
    "IndicatorTools",
    "run_indicator",
]
