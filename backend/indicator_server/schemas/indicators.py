"""
Indicator Tool Schemas

Argument models for the indicator tools. The same models validate MCP
``tools/call`` arguments and direct API request bodies, and generate the
JSON input schemas advertised by ``tools/list``.

Field names are camelCase on the wire (``fastPeriod``, ``kPeriod`` ...).
"""

from enum import Enum
from typing import Annotated, Optional, Union

from pydantic import (
    AllowInfNan,
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    Strict,
    model_validator,
)
from pydantic.alias_generators import to_camel


# =============================================================================
# ENUMS
# =============================================================================


class IndicatorKind(str, Enum):
    RSI = "rsi"
    EMA = "ema"
    SMA = "sma"
    MACD = "macd"
    BOLLINGER = "bollinger"
    STOCHASTIC = "stochastic"
    ATR = "atr"

    @property
    def engine_name(self) -> str:
        """Indicator name understood by the calculation engine."""
        return {
            IndicatorKind.BOLLINGER: "bbands",
            IndicatorKind.STOCHASTIC: "stoch",
        }.get(self, self.value)


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    COMPUTATION = "computation"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    INTERNAL = "internal"


Price = Annotated[float, Strict(), AllowInfNan(False)]


class ToolArgs(BaseModel):
    """Base for tool argument bags."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# =============================================================================
# SINGLE-SERIES INDICATORS (close prices)
# =============================================================================


class PriceSeriesArgs(ToolArgs):
    prices: list[Price] = Field(
        ...,
        min_length=1,
        description="Array of closing prices in chronological order (oldest first)",
    )

    def _require(self, points: int, label: str) -> None:
        if len(self.prices) < points:
            raise ValueError(
                f"Insufficient data: need at least {points} prices for {label} calculation"
            )


class RsiArgs(PriceSeriesArgs):
    period: int = Field(default=14, ge=1, le=100, description="RSI period. Standard: 14")

    @model_validator(mode="after")
    def check_length(self) -> "RsiArgs":
        self._require(self.period + 1, f"RSI with period {self.period}")
        return self


class EmaArgs(PriceSeriesArgs):
    period: int = Field(default=20, ge=1, le=500, description="EMA period. Common: 9, 20, 50, 200")

    @model_validator(mode="after")
    def check_length(self) -> "EmaArgs":
        self._require(self.period, f"EMA with period {self.period}")
        return self


class SmaArgs(PriceSeriesArgs):
    period: int = Field(default=20, ge=1, le=500, description="SMA period. Common: 20, 50, 100, 200")

    @model_validator(mode="after")
    def check_length(self) -> "SmaArgs":
        self._require(self.period, f"SMA with period {self.period}")
        return self


class MacdArgs(PriceSeriesArgs):
    fast_period: int = Field(default=12, ge=1, le=100, description="Fast EMA period. Standard: 12")
    slow_period: int = Field(default=26, ge=1, le=100, description="Slow EMA period. Standard: 26")
    signal_period: int = Field(default=9, ge=1, le=50, description="Signal line EMA period. Standard: 9")

    @model_validator(mode="after")
    def check_periods(self) -> "MacdArgs":
        if self.fast_period >= self.slow_period:
            raise ValueError("Fast period must be less than slow period")
        self._require(self.slow_period + self.signal_period, "MACD")
        return self


class BollingerArgs(PriceSeriesArgs):
    period: int = Field(default=20, ge=2, le=500, description="Moving average period. Standard: 20")
    std_dev: float = Field(default=2.0, gt=0, le=5, description="Standard deviation multiplier. Standard: 2")

    @model_validator(mode="after")
    def check_length(self) -> "BollingerArgs":
        self._require(self.period, "Bollinger Bands")
        return self


# =============================================================================
# HIGH/LOW/CLOSE INDICATORS
# =============================================================================


class HighLowCloseArgs(ToolArgs):
    high: list[Price] = Field(..., description="Array of high prices (oldest first)")
    low: list[Price] = Field(..., description="Array of low prices (oldest first)")
    close: list[Price] = Field(..., description="Array of closing prices (oldest first)")

    _warning: Optional[str] = PrivateAttr(default=None)

    @property
    def warning(self) -> Optional[str]:
        return self._warning

    def _align_and_require(self, points: int, label: str) -> None:
        """Truncate mismatched series to the shortest one, then check length."""
        lengths = (len(self.high), len(self.low), len(self.close))
        if len(set(lengths)) > 1:
            shortest = min(lengths)
            self._warning = (
                f"Array length mismatch detected (high={lengths[0]}, low={lengths[1]}, "
                f"close={lengths[2]}). Automatically adjusted to shortest length: {shortest}"
            )
            self.high = self.high[:shortest]
            self.low = self.low[:shortest]
            self.close = self.close[:shortest]

        if not self.close:
            raise ValueError("Price arrays must not be empty")
        if len(self.close) < points:
            raise ValueError(
                f"Insufficient data: need at least {points} data points for {label} calculation"
            )


class StochasticArgs(HighLowCloseArgs):
    k_period: int = Field(default=14, ge=1, le=100, description="%K lookback period. Standard: 14")
    k_smooth_period: int = Field(default=3, ge=1, le=20, description="%K slowing period. Standard: 3")
    d_period: int = Field(default=3, ge=1, le=20, description="%D smoothing period. Standard: 3")

    @model_validator(mode="after")
    def check_length(self) -> "StochasticArgs":
        self._align_and_require(self.k_period + self.k_smooth_period + self.d_period, "Stochastic")
        return self


class AtrArgs(HighLowCloseArgs):
    period: int = Field(default=14, ge=1, le=100, description="ATR period. Standard: 14")

    @model_validator(mode="after")
    def check_length(self) -> "AtrArgs":
        self._align_and_require(self.period + 1, "ATR")
        return self


# =============================================================================
# BATCH: calculate_all_indicators
# =============================================================================


class OhlcvInput(ToolArgs):
    high: list[Price] = Field(..., description="Array of high prices")
    low: list[Price] = Field(..., description="Array of low prices")
    close: list[Price] = Field(..., description="Array of closing prices")
    volume: Optional[list[Price]] = Field(default=None, description="Array of volumes (optional)")

    @model_validator(mode="after")
    def check_shape(self) -> "OhlcvInput":
        if len(self.high) != len(self.low) or len(self.high) != len(self.close):
            raise ValueError("OHLCV arrays must have the same length")
        if len(self.close) < 2:
            raise ValueError("Need at least 2 data points")
        return self


class IndicatorConfig(ToolArgs):
    enabled: bool = Field(default=False, description="Calculate this indicator")
    name: Optional[str] = Field(default=None, description="Custom result name (e.g. 'RSI14')")


class RsiConfig(IndicatorConfig):
    period: int = Field(default=14, ge=1)


class EmaConfig(IndicatorConfig):
    period: int = Field(default=20, ge=1)


class SmaConfig(IndicatorConfig):
    period: int = Field(default=20, ge=1)


class MacdConfig(IndicatorConfig):
    fast_period: int = Field(default=12, ge=1)
    slow_period: int = Field(default=26, ge=1)
    signal_period: int = Field(default=9, ge=1)


class BollingerConfig(IndicatorConfig):
    period: int = Field(default=20, ge=2)
    stddev: float = Field(default=2.0, gt=0)


class StochasticConfig(IndicatorConfig):
    k_period: int = Field(default=14, ge=1)
    k_slowing: int = Field(default=3, ge=1)
    d_period: int = Field(default=3, ge=1)


class AtrConfig(IndicatorConfig):
    period: int = Field(default=14, ge=1)


class IndicatorSelection(ToolArgs):
    """Each indicator may be configured with one object or a list of objects."""

    rsi: Union[RsiConfig, list[RsiConfig], None] = None
    ema: Union[EmaConfig, list[EmaConfig], None] = None
    sma: Union[SmaConfig, list[SmaConfig], None] = None
    macd: Union[MacdConfig, list[MacdConfig], None] = None
    bollinger: Union[BollingerConfig, list[BollingerConfig], None] = None
    stochastic: Union[StochasticConfig, list[StochasticConfig], None] = None
    atr: Union[AtrConfig, list[AtrConfig], None] = None

    def configs_for(self, kind: IndicatorKind) -> list[IndicatorConfig]:
        """Normalize one-or-many configuration to a list."""
        value = getattr(self, kind.value)
        if value is None:
            return []
        if isinstance(value, list):
            return value
        return [value]


class CalculateAllArgs(ToolArgs):
    symbol: Optional[str] = Field(default=None, description="Trading symbol, for reference only")
    ohlcv: OhlcvInput
    indicators: IndicatorSelection = Field(default_factory=IndicatorSelection)


class EmptyArgs(ToolArgs):
    pass
