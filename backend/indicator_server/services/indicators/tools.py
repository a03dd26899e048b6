"""
Indicator Tools

One handler per indicator plus the batch tool and server info. Every
handler takes a plain argument dict and returns a tool result envelope;
validation and computation failures come back as ``isError`` results,
never as exceptions.
"""

import logging
import platform
import sys
import time
from concurrent.futures import Executor
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Type

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from indicator_server.core.config import Settings, settings as default_settings
from indicator_server.schemas.indicators import (
    AtrArgs,
    BollingerArgs,
    CalculateAllArgs,
    EmaArgs,
    ErrorCategory,
    IndicatorKind,
    MacdArgs,
    RsiArgs,
    SmaArgs,
    StochasticArgs,
)
from indicator_server.services.base import ComputationError, ValidationError
from indicator_server.services.indicators.aggregate import AggregateIndicatorService
from indicator_server.services.indicators.calculations import compute
from indicator_server.services.indicators.gateway import (
    Engine,
    create_engine_executor,
    run_indicator,
)
from indicator_server.services.mcp.results import (
    error_result,
    format_validation_error,
    text_result,
)
from indicator_server.services.mcp.tools import ToolHandler

logger = logging.getLogger(__name__)


def _r(value: float, digits: int = 2) -> float:
    return round(float(value), digits)


def _statistics(values: list[float]) -> dict[str, float]:
    return {
        "min": _r(min(values)),
        "max": _r(max(values)),
        "average": _r(sum(values) / len(values)),
    }


def _price_vs_average(label: str, price: float, current: float, previous: float) -> dict[str, Any]:
    """Trend and price-position analysis shared by SMA and EMA."""
    if current > previous:
        trend = "uptrend"
    elif current < previous:
        trend = "downtrend"
    else:
        trend = "neutral"

    if price > current:
        signal = "bullish"
        interpretation = f"Price ({price:.2f}) is above {label} ({current:.2f}) - bullish signal"
    elif price < current:
        signal = "bearish"
        interpretation = f"Price ({price:.2f}) is below {label} ({current:.2f}) - bearish signal"
    else:
        signal = "hold"
        interpretation = f"Price is at {label} level - neutral signal"

    return {
        label.lower(): _r(current),
        "price": _r(price),
        "trend": trend,
        "signal": signal,
        "interpretation": interpretation,
    }


class IndicatorTools:
    """
    Indicator tool handlers.

    Single-indicator tools run under the operation timeout; the batch tool
    delegates to AggregateIndicatorService. All engine calls share one
    worker pool, normally owned by the application lifespan.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        engine: Engine = compute,
        executor: Optional[Executor] = None,
    ):
        self.settings = settings or default_settings
        self._engine = engine
        self.executor = executor or create_engine_executor(self.settings.engine_max_workers)
        self._started = time.monotonic()
        self.aggregate = AggregateIndicatorService(
            item_timeout=self.settings.atomic_operation_timeout,
            batch_timeout=self.settings.batch_timeout,
            engine=engine,
            executor=self.executor,
            max_concurrency=self.settings.batch_max_concurrency,
        )

    def handlers(self) -> dict[str, ToolHandler]:
        return {
            "get_server_info": self.get_server_info,
            "calculate_all_indicators": self.calculate_all_indicators,
            "calculate_rsi": self.calculate_rsi,
            "calculate_ema": self.calculate_ema,
            "calculate_sma": self.calculate_sma,
            "calculate_macd": self.calculate_macd,
            "calculate_bollinger_bands": self.calculate_bollinger_bands,
            "calculate_stochastic": self.calculate_stochastic,
            "calculate_atr": self.calculate_atr,
        }

    # ============ Shared plumbing ============

    @staticmethod
    def _parse(model: Type[BaseModel], args: Optional[dict[str, Any]]) -> BaseModel:
        try:
            return model.model_validate(args or {})
        except PydanticValidationError as e:
            raise ValidationError(model.__name__, format_validation_error(e)) from e

    async def _compute(
        self, label: str, kind: IndicatorKind, inputs: list[list[float]], params: list[float]
    ) -> list[list[float]]:
        result = await run_indicator(
            kind.engine_name,
            inputs,
            params,
            timeout=self.settings.operation_timeout,
            engine=self._engine,
            executor=self.executor,
        )
        if not result.ok:
            raise ComputationError(
                label,
                f"{label} calculation failed: {result.message}",
                details={"timed_out": result.timed_out},
            )
        return result.outputs

    async def _run(self, label: str, build: Callable[[], Awaitable[dict[str, Any]]]) -> dict[str, Any]:
        """Run a tool body, converting known failures into error results."""
        try:
            return text_result(await build())
        except ValidationError as e:
            logger.info(f"{label} rejected: {e.message}")
            return error_result(e.message, ErrorCategory.VALIDATION)
        except ComputationError as e:
            category = ErrorCategory.TIMEOUT if e.details.get("timed_out") else ErrorCategory.COMPUTATION
            logger.warning(e.message)
            return error_result(e.message, category)

    # ============ Tools ============

    async def get_server_info(self, args: dict[str, Any]) -> dict[str, Any]:
        """Server version, uptime and the available tools."""
        tools = list(self.handlers())
        return text_result(
            {
                "name": self.settings.app_name,
                "version": self.settings.app_version,
                "description": self.settings.description,
                "uptime": round(time.monotonic() - self._started, 3),
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "pythonVersion": sys.version.split()[0],
                "platform": platform.system().lower(),
                "architecture": platform.machine(),
                "tradingIndicators": {
                    "total": len(tools) - 1,
                    "available": [name for name in tools if name != "get_server_info"],
                },
            }
        )

    async def calculate_all_indicators(self, args: dict[str, Any]) -> dict[str, Any]:
        started = time.monotonic()
        try:
            request = self._parse(CalculateAllArgs, args)
        except ValidationError as e:
            logger.info(f"Batch rejected: {e.message}")
            return error_result(
                e.message,
                ErrorCategory.VALIDATION,
                executionTime=int((time.monotonic() - started) * 1000),
            )

        result = await self.aggregate.execute(request)
        return text_result(result.to_payload(), is_error=result.is_error)

    async def calculate_rsi(self, args: dict[str, Any]) -> dict[str, Any]:
        async def build():
            request = self._parse(RsiArgs, args)
            values = (await self._compute("RSI", IndicatorKind.RSI, [request.prices], [request.period]))[0]
            last = values[-1]

            if last > 70:
                signal = "overbought"
                interpretation = "RSI above 70 indicates potential overbought conditions - possible sell signal"
            elif last < 30:
                signal = "oversold"
                interpretation = "RSI below 30 indicates potential oversold conditions - possible buy signal"
            else:
                signal = "neutral"
                interpretation = "RSI in neutral range (30-70) - no clear overbought/oversold signal"

            return {
                "indicator": "RSI",
                "period": request.period,
                "dataPoints": len(request.prices),
                "values": values,
                "latest": last,
                "current": {"value": _r(last), "signal": signal, "interpretation": interpretation},
                "statistics": _statistics(values),
            }

        return await self._run("RSI", build)

    async def _moving_average(self, label: str, kind: IndicatorKind, model, args) -> dict[str, Any]:
        async def build():
            request = self._parse(model, args)
            values = (await self._compute(label, kind, [request.prices], [request.period]))[0]
            previous = values[-2] if len(values) > 1 else values[-1]

            return {
                "indicator": label,
                "period": request.period,
                "dataPoints": len(request.prices),
                "values": values,
                "latest": values[-1],
                "current": _price_vs_average(label, request.prices[-1], values[-1], previous),
                "statistics": _statistics(values),
            }

        return await self._run(label, build)

    async def calculate_ema(self, args: dict[str, Any]) -> dict[str, Any]:
        return await self._moving_average("EMA", IndicatorKind.EMA, EmaArgs, args)

    async def calculate_sma(self, args: dict[str, Any]) -> dict[str, Any]:
        return await self._moving_average("SMA", IndicatorKind.SMA, SmaArgs, args)

    async def calculate_macd(self, args: dict[str, Any]) -> dict[str, Any]:
        async def build():
            request = self._parse(MacdArgs, args)
            macd_line, signal_line, histogram = await self._compute(
                "MACD",
                IndicatorKind.MACD,
                [request.prices],
                [request.fast_period, request.slow_period, request.signal_period],
            )
            current_macd, current_signal = macd_line[-1], signal_line[-1]
            current_hist, previous_hist = histogram[-1], histogram[-2]

            if current_macd > current_signal and previous_hist <= 0 < current_hist:
                signal = "bullish_crossover"
                interpretation = "MACD line crossed above signal line - bullish crossover signal"
            elif current_macd < current_signal and previous_hist >= 0 > current_hist:
                signal = "bearish_crossover"
                interpretation = "MACD line crossed below signal line - bearish crossover signal"
            elif current_macd > current_signal:
                signal = "bullish"
                interpretation = "MACD line above signal line - bullish momentum"
            elif current_macd < current_signal:
                signal = "bearish"
                interpretation = "MACD line below signal line - bearish momentum"
            else:
                signal = "neutral"
                interpretation = "MACD and signal lines are converging - neutral"

            return {
                "indicator": "MACD",
                "parameters": {
                    "fastPeriod": request.fast_period,
                    "slowPeriod": request.slow_period,
                    "signalPeriod": request.signal_period,
                },
                "dataPoints": len(request.prices),
                "values": {"macd": macd_line, "signal": signal_line, "histogram": histogram},
                "latest": {"macd": current_macd, "signal": current_signal, "histogram": current_hist},
                "current": {
                    "macd": _r(current_macd, 6),
                    "signalLine": _r(current_signal, 6),
                    "histogram": _r(current_hist, 6),
                    "trend": "increasing" if current_hist > previous_hist else "decreasing",
                    "position": "above_zero" if current_macd > 0 else "below_zero",
                    "signal": signal,
                    "interpretation": interpretation,
                },
                "analysis": {
                    "convergence": abs(current_macd - current_signal)
                    < abs(macd_line[-2] - signal_line[-2]),
                    "momentum": "bullish" if current_hist > 0 else "bearish",
                    "strength": abs(current_hist),
                },
            }

        return await self._run("MACD", build)

    async def calculate_bollinger_bands(self, args: dict[str, Any]) -> dict[str, Any]:
        async def build():
            request = self._parse(BollingerArgs, args)
            lower, middle, upper = await self._compute(
                "Bollinger Bands",
                IndicatorKind.BOLLINGER,
                [request.prices],
                [request.period, request.std_dev],
            )
            price = request.prices[-1]
            cur_lower, cur_middle, cur_upper = lower[-1], middle[-1], upper[-1]
            band_width = cur_upper - cur_lower

            if price > cur_upper:
                signal = "overbought"
                interpretation = f"Price ({price:.2f}) is above upper band ({cur_upper:.2f}) - potential overbought condition"
            elif price < cur_lower:
                signal = "oversold"
                interpretation = f"Price ({price:.2f}) is below lower band ({cur_lower:.2f}) - potential oversold condition"
            elif price > cur_middle:
                signal = "upper_half"
                interpretation = "Price is in upper half of bands - potential resistance near upper band"
            else:
                signal = "lower_half"
                interpretation = "Price is in lower half of bands - potential support near lower band"

            percent_b = (price - cur_lower) / band_width if band_width else 0.5
            width_percent = band_width / cur_middle * 100 if cur_middle else 0.0

            return {
                "indicator": "Bollinger Bands",
                "parameters": {"period": request.period, "standardDeviation": request.std_dev},
                "dataPoints": len(request.prices),
                "values": {"lower": lower, "middle": middle, "upper": upper},
                "latest": {"lower": cur_lower, "middle": cur_middle, "upper": cur_upper},
                "current": {
                    "price": _r(price),
                    "lower": _r(cur_lower),
                    "middle": _r(cur_middle),
                    "upper": _r(cur_upper),
                    "signal": signal,
                    "interpretation": interpretation,
                },
                "analysis": {
                    "percentB": _r(percent_b * 100),
                    "bandWidth": _r(band_width),
                    "bandWidthPercent": _r(width_percent),
                    "squeeze": width_percent < 10,
                    "volatility": "high" if width_percent > 20 else "low" if width_percent < 10 else "normal",
                },
                "signals": {
                    "breakoutAbove": price > cur_upper,
                    "breakoutBelow": price < cur_lower,
                },
            }

        return await self._run("Bollinger Bands", build)

    async def calculate_stochastic(self, args: dict[str, Any]) -> dict[str, Any]:
        async def build():
            request = self._parse(StochasticArgs, args)
            k_values, d_values = await self._compute(
                "Stochastic",
                IndicatorKind.STOCHASTIC,
                [request.high, request.low, request.close],
                [request.k_period, request.k_smooth_period, request.d_period],
            )
            k, d = k_values[-1], d_values[-1]
            prev_k, prev_d = k_values[-2], d_values[-2]

            if k > 80 and d > 80:
                signal = "overbought"
                interpretation = "Both %K and %D above 80 - strong overbought condition, potential sell signal"
            elif k < 20 and d < 20:
                signal = "oversold"
                interpretation = "Both %K and %D below 20 - strong oversold condition, potential buy signal"
            elif k > d and prev_k <= prev_d:
                signal = "bullish_crossover"
                interpretation = "%K crossed above %D - bullish crossover signal"
            elif k < d and prev_k >= prev_d:
                signal = "bearish_crossover"
                interpretation = "%K crossed below %D - bearish crossover signal"
            elif k > d:
                signal = "bullish"
                interpretation = "%K above %D - bullish momentum"
            elif k < d:
                signal = "bearish"
                interpretation = "%K below %D - bearish momentum"
            else:
                signal = "neutral"
                interpretation = "%K and %D converging - neutral signal"

            payload = {
                "indicator": "Stochastic Oscillator",
                "parameters": {
                    "kPeriod": request.k_period,
                    "kSmoothPeriod": request.k_smooth_period,
                    "dPeriod": request.d_period,
                },
                "dataPoints": len(request.close),
                "values": {"k": k_values, "d": d_values},
                "latest": {"k": k, "d": d},
                "current": {"k": _r(k), "d": _r(d), "signal": signal, "interpretation": interpretation},
                "analysis": {
                    "momentum": "increasing" if k > prev_k else "decreasing",
                    "divergence": _r(abs(k - d)),
                    "overboughtLevel": k > 80 or d > 80,
                    "oversoldLevel": k < 20 or d < 20,
                },
            }
            if request.warning:
                payload["warning"] = request.warning
            return payload

        return await self._run("Stochastic", build)

    async def calculate_atr(self, args: dict[str, Any]) -> dict[str, Any]:
        async def build():
            request = self._parse(AtrArgs, args)
            values = (
                await self._compute(
                    "ATR",
                    IndicatorKind.ATR,
                    [request.high, request.low, request.close],
                    [request.period],
                )
            )[0]
            current = values[-1]
            previous = values[-2] if len(values) > 1 else current
            price = request.close[-1]

            atr_percent = current / price * 100 if price else 0.0
            change = (current - previous) / previous * 100 if previous else 0.0

            if change > 5:
                trend = "increasing"
                interpretation = "Volatility is increasing - market becoming more active"
            elif change < -5:
                trend = "decreasing"
                interpretation = "Volatility is decreasing - market becoming quieter"
            else:
                trend = "stable"
                interpretation = "Volatility is stable - consistent market conditions"

            if atr_percent > 3:
                level = "high"
            elif atr_percent < 1:
                level = "low"
            else:
                level = "normal"

            payload = {
                "indicator": "ATR",
                "parameters": {"period": request.period},
                "dataPoints": len(request.close),
                "values": values,
                "latest": current,
                "current": {
                    "atr": _r(current, 4),
                    "atrPercent": _r(atr_percent),
                    "price": _r(price),
                    "volatilityLevel": level,
                    "volatilityTrend": trend,
                    "interpretation": interpretation,
                },
                "analysis": {
                    "changePercent": _r(change),
                    "averageATR": _r(sum(values) / len(values), 4),
                    "minATR": _r(min(values), 4),
                    "maxATR": _r(max(values), 4),
                },
                "tradingLevels": {
                    "support": _r(price - current),
                    "resistance": _r(price + current),
                    "stopLossDistance": _r(current, 4),
                    "takeProfitDistance": _r(current * 2, 4),
                },
            }
            if request.warning:
                payload["warning"] = request.warning
            return payload

        return await self._run("ATR", build)
