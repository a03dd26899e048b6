"""
Aggregate Calculation Service

Computes many indicators (possibly several parameterizations of the same
indicator) over one OHLCV dataset in a single call.

- Every enabled configuration with enough data is submitted as its own
  gateway call; they run concurrently, at most ``max_concurrency`` at a
  time per batch.
- Configurations with too little data are skipped, not reported.
- A failing item becomes ``{"error": ...}`` under its name; siblings are
  unaffected.
- The whole batch runs under one global deadline. When it expires, the
  items that already settled are returned with a timeout marker and the
  rest are abandoned.
"""

import asyncio
import logging
import time
from concurrent.futures import Executor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from indicator_server.core.config import settings
from indicator_server.schemas.indicators import (
    CalculateAllArgs,
    IndicatorConfig,
    IndicatorKind,
)
from indicator_server.services.base import BaseService
from indicator_server.services.indicators.calculations import compute, min_data_points
from indicator_server.services.indicators.gateway import (
    ComputationResult,
    Engine,
    run_indicator,
)

logger = logging.getLogger(__name__)


@dataclass
class BatchItem:
    """One submitted computation."""

    name: str
    kind: IndicatorKind
    params: list[float]
    meta: dict[str, Any]
    inputs: list[list[float]]


@dataclass
class BatchResult:
    """Merged batch output."""

    symbol: Optional[str]
    data_points: int
    indicators: dict[str, dict[str, Any]] = field(default_factory=dict)
    execution_time_ms: int = 0
    timed_out: bool = False
    pending: list[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.timed_out

    def to_payload(self) -> dict[str, Any]:
        payload = {
            "symbol": self.symbol,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "dataPoints": self.data_points,
            "indicators": self.indicators,
            "executionTime": self.execution_time_ms,
        }
        if self.timed_out:
            payload["error"] = self.error
            payload["category"] = "timeout"
            payload["timedOut"] = True
            payload["pending"] = self.pending
        return payload


# =============================================================================
# CONFIGURATION -> ITEMS
# =============================================================================


def _item_spec(kind: IndicatorKind, config: IndicatorConfig) -> tuple[str, list[float], dict]:
    """Derive (default name, engine params, descriptive fields) for a config."""
    if kind in (IndicatorKind.RSI, IndicatorKind.EMA, IndicatorKind.SMA, IndicatorKind.ATR):
        return f"{kind.value}_{config.period}", [config.period], {"period": config.period}

    if kind == IndicatorKind.MACD:
        fast, slow, signal = config.fast_period, config.slow_period, config.signal_period
        return (
            f"macd_{fast}_{slow}_{signal}",
            [fast, slow, signal],
            {"fastPeriod": fast, "slowPeriod": slow, "signalPeriod": signal},
        )

    if kind == IndicatorKind.BOLLINGER:
        stddev = config.stddev
        label = int(stddev) if float(stddev).is_integer() else stddev
        return (
            f"bb_{config.period}_{label}",
            [config.period, stddev],
            {"period": config.period, "stddev": stddev},
        )

    if kind == IndicatorKind.STOCHASTIC:
        k, slowing, d = config.k_period, config.k_slowing, config.d_period
        return (
            f"stoch_{k}_{slowing}_{d}",
            [k, slowing, d],
            {"kPeriod": k, "kSlowing": slowing, "dPeriod": d},
        )

    raise ValueError(f"Unknown indicator: {kind}")


_TYPE_LABELS = {
    IndicatorKind.RSI: "RSI",
    IndicatorKind.EMA: "EMA",
    IndicatorKind.SMA: "SMA",
    IndicatorKind.MACD: "MACD",
    IndicatorKind.BOLLINGER: "Bollinger Bands",
    IndicatorKind.STOCHASTIC: "Stochastic",
    IndicatorKind.ATR: "ATR",
}

_OUTPUT_NAMES = {
    IndicatorKind.MACD: ("macd", "signal", "histogram"),
    IndicatorKind.BOLLINGER: ("lower", "middle", "upper"),
    IndicatorKind.STOCHASTIC: ("k", "d"),
}


def _last(values: list[float]) -> Optional[float]:
    return values[-1] if values else None


def format_item(item: BatchItem, outputs: list[list[float]]) -> dict[str, Any]:
    """Shape engine outputs into a result entry."""
    entry: dict[str, Any] = {"type": _TYPE_LABELS[item.kind], **item.meta}

    names = _OUTPUT_NAMES.get(item.kind)
    if names is None:
        entry["values"] = outputs[0]
        entry["latest"] = _last(outputs[0])
        return entry

    for output_name, values in zip(names, outputs):
        entry[output_name] = values
    entry["latest"] = {
        output_name: _last(values) for output_name, values in zip(names, outputs)
    }
    return entry


def build_items(args: CalculateAllArgs) -> list[BatchItem]:
    """Expand the indicator selection into submitted items, in submission order."""
    ohlcv = args.ohlcv
    length = len(ohlcv.close)
    items: list[BatchItem] = []
    used_names: set[str] = set()

    for kind in IndicatorKind:
        for config in args.indicators.configs_for(kind):
            if not config.enabled:
                continue

            default_name, params, meta = _item_spec(kind, config)

            if length < min_data_points(kind.engine_name, params):
                logger.debug(f"Skipping {default_name}: {length} points is not enough")
                continue

            name = config.name or default_name
            if name in used_names:
                suffix = 2
                while f"{name}_{suffix}" in used_names:
                    suffix += 1
                name = f"{name}_{suffix}"
            used_names.add(name)

            if kind in (IndicatorKind.STOCHASTIC, IndicatorKind.ATR):
                inputs = [ohlcv.high, ohlcv.low, ohlcv.close]
            else:
                inputs = [ohlcv.close]

            items.append(BatchItem(name=name, kind=kind, params=params, meta=meta, inputs=inputs))

    return items


# =============================================================================
# SERVICE
# =============================================================================


class AggregateIndicatorService(BaseService[CalculateAllArgs, BatchResult]):
    """
    Aggregate Calculation Service.

    Runs a batch of indicator computations concurrently under a global
    deadline that must exceed the per-item deadline. At most
    ``max_concurrency`` of a batch's engine calls occupy workers at once,
    abandoned ones included.
    """

    def __init__(
        self,
        item_timeout: Optional[float] = None,
        batch_timeout: Optional[float] = None,
        engine: Engine = compute,
        executor: Optional[Executor] = None,
        max_concurrency: Optional[int] = None,
    ):
        self.item_timeout = item_timeout if item_timeout is not None else settings.atomic_operation_timeout
        self.batch_timeout = batch_timeout if batch_timeout is not None else settings.batch_timeout
        if self.batch_timeout <= self.item_timeout:
            raise ValueError("Batch timeout must be greater than the per-item timeout")
        self._engine = engine
        self._executor = executor
        self.max_concurrency = max_concurrency if max_concurrency is not None else settings.batch_max_concurrency
        if self.max_concurrency < 1:
            raise ValueError("Batch concurrency must be at least 1")

    @property
    def name(self) -> str:
        return "AggregateIndicatorService"

    async def _run_item(self, item: BatchItem, limiter: asyncio.Semaphore) -> dict[str, Any]:
        result: ComputationResult = await run_indicator(
            item.kind.engine_name,
            item.inputs,
            item.params,
            timeout=self.item_timeout,
            engine=self._engine,
            executor=self._executor,
            limiter=limiter,
        )
        if not result.ok:
            return {"error": result.message}
        return format_item(item, result.outputs)

    async def execute(self, input_data: CalculateAllArgs) -> BatchResult:
        """Calculate every enabled indicator in the selection."""
        started = time.monotonic()
        items = build_items(input_data)
        result = BatchResult(symbol=input_data.symbol, data_points=len(input_data.ohlcv.close))

        limiter = asyncio.Semaphore(self.max_concurrency)
        tasks = [asyncio.create_task(self._run_item(item, limiter)) for item in items]

        try:
            if tasks:
                done, pending = await asyncio.wait(tasks, timeout=self.batch_timeout)
            else:
                done, pending = set(), set()
        finally:
            # Also reached when the caller cancels the whole batch
            for task in tasks:
                if not task.done():
                    task.cancel()

        for item, task in zip(items, tasks):
            if task in done:
                try:
                    result.indicators[item.name] = task.result()
                except Exception as e:
                    logger.error(f"Indicator {item.name} failed unexpectedly: {e}")
                    result.indicators[item.name] = {"error": str(e)}
            else:
                result.pending.append(item.name)

        if pending:
            result.timed_out = True
            result.error = (
                f"Batch timed out after {int(self.batch_timeout * 1000)}ms: "
                f"{len(done)} of {len(tasks)} indicators completed"
            )
            logger.warning(result.error)

        result.execution_time_ms = int((time.monotonic() - started) * 1000)
        return result
