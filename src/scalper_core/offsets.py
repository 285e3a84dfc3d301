"""
Price/offset calculator.

Turns a volatility reading R into entry, stop and target distances:

    entry  = round(R * bracket_frac, tick)
    stop   = round(R * stop_frac, tick)
    target = round(R * target_frac, tick)

each floored up to one tick. Bracket prices straddle the close by the entry
offset. Pure functions; no I/O.
"""

from __future__ import annotations

import math

from scalper_core.contracts import OffsetPlan


def round_to_tick(value: float, tick: float) -> float:
    """Round *value* to the nearest multiple of *tick*."""
    if tick <= 0:
        raise ValueError(f"tick size must be positive, got {tick}")
    steps = round(value / tick)
    # Re-quantize to strip float noise (e.g. 0.1 * 3 -> 0.30000000000000004)
    decimals = max(0, -math.floor(math.log10(tick)) + 2)
    return round(steps * tick, decimals)


def _offset(range_value: float, fraction: float, tick: float) -> float:
    if fraction <= 0:
        raise ValueError(f"offset fraction must be positive, got {fraction}")
    return max(round_to_tick(range_value * fraction, tick), tick)


def compute_offsets(
    range_value: float | None,
    bracket_frac: float,
    stop_frac: float,
    target_frac: float,
    tick: float,
) -> OffsetPlan | None:
    """Compute tick-rounded offsets from a volatility reading.

    Returns None when the reading is missing, not finite, or <= 0; the
    caller skips the tick and tries again on the next one.
    """
    if range_value is None or not math.isfinite(range_value) or range_value <= 0:
        return None
    return OffsetPlan(
        entry_offset=_offset(range_value, bracket_frac, tick),
        stop_offset=_offset(range_value, stop_frac, tick),
        target_offset=_offset(range_value, target_frac, tick),
        tick_size=tick,
    )


def bracket_prices(close: float, entry_offset: float, tick: float) -> tuple[float, float] | None:
    """Buy and sell limit prices straddling *close*.

    If rounding collapses the bracket (buy >= sell) the buy limit is moved
    down one tick. Returns None if the bracket is still not valid.
    """
    buy = round_to_tick(close - entry_offset, tick)
    sell = round_to_tick(close + entry_offset, tick)
    if buy >= sell:
        buy = round_to_tick(buy - tick, tick)
    if buy >= sell or buy <= 0:
        return None
    return buy, sell
