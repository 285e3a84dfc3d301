"""
Trading-window gate: time-of-day enable/disable and end-of-session flatten.

Evaluated before the order state machine on every tick.

- DISABLED      master switch off; nothing is touched.
- BEFORE_START  an armed bracket is cancelled and state reset; positions untouched.
- AFTER_STOP    armed legs cancelled, position flattened if non-zero, state reset.
- OPEN          hand over to the state machine.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import time
from typing import TYPE_CHECKING

from scalper_core.contracts import BotState, WindowPhase

if TYPE_CHECKING:
    from execution.broker import BrokerAdapter

logger = logging.getLogger("scalper.window")


def parse_time_of_day(value: str | time) -> time:
    """Parse 'HH:MM' or 'HH:MM:SS' into a time."""
    if isinstance(value, time):
        return value
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time of day {value!r} (use HH:MM or HH:MM:SS)")
    h, m = int(parts[0]), int(parts[1])
    s = int(parts[2]) if len(parts) == 3 else 0
    return time(h, m, s)


@dataclass(frozen=True)
class TradingWindow:
    start: time
    stop: time
    enabled: bool = True

    def phase(self, now: time, trading_enabled: bool = True) -> WindowPhase:
        if not trading_enabled:
            return WindowPhase.DISABLED
        if not self.enabled:
            return WindowPhase.OPEN
        if now < self.start:
            return WindowPhase.BEFORE_START
        if now >= self.stop:
            return WindowPhase.AFTER_STOP
        return WindowPhase.OPEN


def _cancel_armed_legs(state: BotState, broker: BrokerAdapter) -> None:
    if not state.bracket_armed:
        return
    for leg_id in (state.buy_leg_id, state.sell_leg_id):
        if leg_id:
            broker.cancel_order(leg_id)


def enforce_window(phase: WindowPhase, state: BotState, broker: BrokerAdapter) -> BotState:
    """Apply the gate's side effects for *phase*. Returns the resulting state."""
    if phase in (WindowPhase.DISABLED, WindowPhase.OPEN):
        return state

    if phase == WindowPhase.BEFORE_START:
        if state.bracket_armed:
            logger.info(
                "Before trading window: cancelling armed bracket (buy #%d, sell #%d)",
                state.buy_leg_id, state.sell_leg_id,
            )
            _cancel_armed_legs(state, broker)
            return state.reset()
        return state

    # AFTER_STOP: authoritative end-of-session action, whatever the phase.
    if state.bracket_armed:
        logger.info(
            "After trading window: cancelling bracket (buy #%d, sell #%d)",
            state.buy_leg_id, state.sell_leg_id,
        )
        _cancel_armed_legs(state, broker)
    position = broker.get_position()
    if not position.is_flat:
        logger.warning("After trading window: flattening open position of %d", position.quantity)
        broker.flatten_position()
    if not state.is_zero:
        logger.info("After trading window: state reset to flat")
    return state.reset()
