"""
Volatility (range) series used to size the bracket.

Two sources, selected by strategy config:

  atr        Simple moving average of True Range over the last ``period`` bars.
  bar_range  High - low of the bar itself.

True Range = max(
    high - low,
    |high - prev_close|,
    |low  - prev_close|
)

The engine reads one value per evaluation, at the current bar index.
Pure functions; no I/O.
"""

from __future__ import annotations

from enum import Enum
from typing import Protocol, Sequence

from scalper_core.contracts import Bar


class VolatilitySource(str, Enum):
    ATR = "atr"
    BAR_RANGE = "bar_range"


def true_range(current: Bar, prev_close: float) -> float:
    """Compute the True Range for a single bar.

    The True Range accounts for gaps between bars by comparing
    the current bar's high/low against the previous close.
    """
    return max(
        current.high - current.low,
        abs(current.high - prev_close),
        abs(current.low - prev_close),
    )


def compute_atr(bars: Sequence[Bar], period: int = 14) -> float:
    """Compute ATR over the last ``period`` bars using SMA.

    Returns 0.0 if fewer than 2 bars are provided.
    """
    if len(bars) < 2:
        return 0.0

    tr_values = [true_range(bars[i], bars[i - 1].close) for i in range(1, len(bars))]
    window = tr_values[-period:] if len(tr_values) >= period else tr_values
    return sum(window) / len(window)


def range_series(
    bars: Sequence[Bar],
    source: VolatilitySource | str = VolatilitySource.ATR,
    period: int = 14,
) -> list[float | None]:
    """One volatility value per bar (None where no reading exists yet)."""
    source = VolatilitySource(source)
    if source == VolatilitySource.BAR_RANGE:
        return [b.bar_range() for b in bars]

    out: list[float | None] = []
    for i in range(len(bars)):
        if i == 0:
            out.append(None)
            continue
        start = max(0, i - period)
        out.append(compute_atr(bars[start : i + 1], period))
    return out


class VolatilityFeed(Protocol):
    """Indexed read of a numeric series."""

    def value_at(self, index: int) -> float | None:
        ...


class SeriesFeed:
    """VolatilityFeed over a precomputed list."""

    def __init__(self, values: Sequence[float | None]) -> None:
        self._values = list(values)

    def __len__(self) -> int:
        return len(self._values)

    def value_at(self, index: int) -> float | None:
        if index < 0 or index >= len(self._values):
            return None
        return self._values[index]

    @classmethod
    def from_bars(cls, bars: Sequence[Bar], source: VolatilitySource | str, period: int) -> "SeriesFeed":
        return cls(range_series(bars, source, period))
