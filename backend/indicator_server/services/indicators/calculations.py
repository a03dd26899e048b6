"""
Technical Indicator Calculations

Pure Python/NumPy implementations of technical indicators.
All math is deterministic.

The per-indicator functions return arrays aligned with their input, with
NaN over the warm-up region. ``compute()`` is the engine entry point used by
the rest of the service: it dispatches by indicator name and trims the
warm-up region so every output starts at the first fully-defined value.
"""

from typing import Callable, Sequence

import numpy as np


# =============================================================================
# MOVING AVERAGES
# =============================================================================


def sma(data: np.ndarray, period: int) -> np.ndarray:
    """Simple Moving Average."""
    if len(data) < period:
        return np.full(len(data), np.nan)

    result = np.full(len(data), np.nan)
    for i in range(period - 1, len(data)):
        result[i] = np.mean(data[i - period + 1 : i + 1])
    return result


def ema(data: np.ndarray, period: int) -> np.ndarray:
    """
    Exponential Moving Average.

    Seeded with the SMA of the first ``period`` defined values, so it can be
    chained onto another indicator's NaN-prefixed output.
    """
    result = np.full(len(data), np.nan)

    valid = np.flatnonzero(~np.isnan(data))
    if len(valid) == 0:
        return result

    start = valid[0]
    if len(data) - start < period:
        return result

    multiplier = 2 / (period + 1)
    seed = start + period - 1

    # Start with SMA
    result[seed] = np.mean(data[start : seed + 1])

    for i in range(seed + 1, len(data)):
        result[i] = (data[i] - result[i - 1]) * multiplier + result[i - 1]

    return result


# =============================================================================
# MOMENTUM INDICATORS
# =============================================================================


def rsi(closes: np.ndarray, period: int = 14) -> np.ndarray:
    """Relative Strength Index (Wilder smoothing)."""
    if len(closes) < period + 1:
        return np.full(len(closes), np.nan)

    deltas = np.diff(closes)

    gains = np.where(deltas > 0, deltas, 0)
    losses = np.where(deltas < 0, -deltas, 0)

    avg_gain = np.mean(gains[:period])
    avg_loss = np.mean(losses[:period])

    result = np.full(len(closes), np.nan)

    if avg_loss == 0:
        result[period] = 100
    else:
        rs = avg_gain / avg_loss
        result[period] = 100 - (100 / (1 + rs))

    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period

        if avg_loss == 0:
            result[i + 1] = 100
        else:
            rs = avg_gain / avg_loss
            result[i + 1] = 100 - (100 / (1 + rs))

    return result


def macd(
    closes: np.ndarray,
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    MACD (Moving Average Convergence Divergence).

    Returns: (macd_line, signal_line, histogram)
    """
    fast_ema = ema(closes, fast_period)
    slow_ema = ema(closes, slow_period)

    macd_line = fast_ema - slow_ema

    # Signal line is EMA of MACD line
    signal_line = ema(macd_line, signal_period)

    histogram = macd_line - signal_line

    return macd_line, signal_line, histogram


def stochastic(
    highs: np.ndarray,
    lows: np.ndarray,
    closes: np.ndarray,
    k_period: int = 14,
    k_slowing: int = 3,
    d_period: int = 3,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Slow Stochastic Oscillator.

    Returns: (k, d)
    """
    if len(closes) < k_period:
        return np.full(len(closes), np.nan), np.full(len(closes), np.nan)

    fast_k = np.full(len(closes), np.nan)

    for i in range(k_period - 1, len(closes)):
        highest_high = np.max(highs[i - k_period + 1 : i + 1])
        lowest_low = np.min(lows[i - k_period + 1 : i + 1])

        if highest_high == lowest_low:
            fast_k[i] = 50
        else:
            fast_k[i] = ((closes[i] - lowest_low) / (highest_high - lowest_low)) * 100

    k = sma(fast_k, k_slowing)
    d = sma(k, d_period)

    return k, d


# =============================================================================
# VOLATILITY INDICATORS
# =============================================================================


def atr(
    highs: np.ndarray, lows: np.ndarray, closes: np.ndarray, period: int = 14
) -> np.ndarray:
    """Average True Range."""
    if len(closes) < 2:
        return np.full(len(closes), np.nan)

    # True Range
    tr = np.zeros(len(closes))
    tr[0] = highs[0] - lows[0]

    for i in range(1, len(closes)):
        tr[i] = max(
            highs[i] - lows[i],
            abs(highs[i] - closes[i - 1]),
            abs(lows[i] - closes[i - 1]),
        )

    # ATR is EMA of TR
    return ema(tr, period)


def bollinger_bands(
    closes: np.ndarray, period: int = 20, std_dev: float = 2.0
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Bollinger Bands.

    Returns: (lower, middle, upper)
    """
    middle = sma(closes, period)

    std = np.full(len(closes), np.nan)
    for i in range(period - 1, len(closes)):
        std[i] = np.std(closes[i - period + 1 : i + 1])

    upper = middle + (std_dev * std)
    lower = middle - (std_dev * std)

    return lower, middle, upper


# =============================================================================
# ENGINE ENTRY POINT
# =============================================================================


def _single(fn: Callable) -> Callable:
    def run(inputs: list[np.ndarray], params: Sequence[float]) -> list[np.ndarray]:
        return [fn(*inputs, *params)]

    return run


def _multi(fn: Callable) -> Callable:
    def run(inputs: list[np.ndarray], params: Sequence[float]) -> list[np.ndarray]:
        return list(fn(*inputs, *params))

    return run


# name -> (runner, input count, integer params, float params)
INDICATORS: dict[str, tuple[Callable, int, int, int]] = {
    "sma": (_single(sma), 1, 1, 0),
    "ema": (_single(ema), 1, 1, 0),
    "rsi": (_single(rsi), 1, 1, 0),
    "macd": (_multi(macd), 1, 3, 0),
    "bbands": (_multi(bollinger_bands), 1, 1, 1),
    "stoch": (_multi(stochastic), 3, 3, 0),
    "atr": (_single(atr), 3, 1, 0),
}


def min_data_points(indicator: str, params: Sequence[float]) -> int:
    """Minimum input length for an indicator with the given parameters."""
    if indicator in ("sma", "ema", "bbands"):
        return int(params[0])
    if indicator in ("rsi", "atr"):
        return int(params[0]) + 1
    if indicator == "macd":
        return int(params[1]) + int(params[2])
    if indicator == "stoch":
        return int(params[0]) + int(params[1]) + int(params[2])
    raise ValueError(f"Unknown indicator: {indicator}")


def _trim_warmup(outputs: list[np.ndarray]) -> list[np.ndarray]:
    """Drop the leading region where any output is still undefined."""
    start = 0
    for output in outputs:
        valid = np.flatnonzero(~np.isnan(output))
        if len(valid) == 0:
            return [o[:0] for o in outputs]
        start = max(start, valid[0])
    return [output[start:] for output in outputs]


def compute(
    indicator: str,
    inputs: Sequence[Sequence[float]],
    params: Sequence[float],
) -> list[np.ndarray]:
    """
    Run one indicator.

    Args:
        indicator: Engine name (sma, ema, rsi, macd, bbands, stoch, atr)
        inputs: Equal-length input series (close, or high/low/close)
        params: Positional parameters, periods first

    Returns:
        Output arrays with the warm-up region removed

    Raises:
        ValueError: Unknown indicator, bad parameters or too little data
    """
    if indicator not in INDICATORS:
        raise ValueError(f"Unknown indicator: {indicator}")

    runner, n_inputs, n_int_params, n_float_params = INDICATORS[indicator]

    if len(inputs) != n_inputs:
        raise ValueError(f"{indicator} expects {n_inputs} input series, got {len(inputs)}")
    if len(params) != n_int_params + n_float_params:
        raise ValueError(
            f"{indicator} expects {n_int_params + n_float_params} parameters, got {len(params)}"
        )

    periods = [int(p) for p in params[:n_int_params]]
    if any(p < 1 for p in periods):
        raise ValueError(f"{indicator} periods must be positive")
    if indicator == "macd" and periods[0] >= periods[1]:
        raise ValueError("Fast period must be less than slow period")

    arrays = [np.asarray(series, dtype=float) for series in inputs]
    length = len(arrays[0])
    if any(len(a) != length for a in arrays):
        raise ValueError("Input series must have the same length")
    if length < min_data_points(indicator, params):
        raise ValueError(f"Insufficient data for {indicator}: got {length} points")

    outputs = runner(arrays, periods + [float(p) for p in params[n_int_params:]])
    return _trim_warmup(outputs)
