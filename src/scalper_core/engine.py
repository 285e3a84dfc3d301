"""
Engine: one evaluation per tick.

    Gate -> (if open) offset calculator -> state machine dispatch -> state store

The engine owns nothing but wiring. Truth lives at the broker and in the
state store; each tick re-reads both, runs at most one transition, and
writes the state back. Broker failures abort the tick without persisting
partial state; the next tick starts again from whatever the broker says.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Protocol, Sequence
from zoneinfo import ZoneInfo

from execution.broker import BrokerAdapter, BrokerError
from scalper_core.contracts import Bar, BotState, TickResult, WindowPhase
from scalper_core.offsets import compute_offsets
from scalper_core.reconciliation import ReconcileResult, reconcile
from scalper_core.state_machine import OrderStateMachine
from scalper_core.trading_window import enforce_window
from scalper_core.volatility import VolatilityFeed

if TYPE_CHECKING:
    from config.strategy_config import StrategyConfig

logger = logging.getLogger("scalper.engine")

EventCallback = Callable[[str, dict], None]

ACTION_DISABLED = "disabled"
ACTION_BEFORE_WINDOW = "before_window"
ACTION_AFTER_WINDOW = "after_window"
ACTION_INVALID_RANGE = "invalid_range"
ACTION_BROKER_ERROR = "broker_error"


class StateStoreLike(Protocol):
    def load(self, symbol: str) -> BotState:
        ...

    def save(self, symbol: str, state: BotState) -> None:
        ...


class ScalpEngine:
    """Tick-driven driver for the bracket scalper on one instrument."""

    def __init__(
        self,
        broker: BrokerAdapter,
        store: StateStoreLike,
        config: StrategyConfig,
        symbol: str,
        *,
        on_event: EventCallback | None = None,
    ) -> None:
        self._broker = broker
        self._store = store
        self._config = config
        self._symbol = symbol
        self._on_event = on_event
        self._window = config.window.trading_window()
        self._tz = ZoneInfo(config.window.timezone)
        self._machine = OrderStateMachine(broker, config.quantity, on_event=self._forward)
        self._waiting_logged: dict[str, datetime] = {}

    @property
    def symbol(self) -> str:
        return self._symbol

    def _forward(self, event_type: str, payload: dict) -> None:
        if self._on_event:
            self._on_event(event_type, {"symbol": self._symbol, **payload})

    def _log_waiting(self, key: str, bar: Bar, msg: str, *args) -> None:
        """Routine waiting conditions: DEBUG, at most once per bar."""
        if self._waiting_logged.get(key) == bar.timestamp:
            return
        self._waiting_logged[key] = bar.timestamp
        logger.debug(msg, *args)

    def local_time(self, ts: datetime):
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return ts.astimezone(self._tz).time()

    def state(self) -> BotState:
        return self._store.load(self._symbol)

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    def bootstrap(self) -> ReconcileResult:
        """Rebuild state from the order book and persist it. Once per process start."""
        prior = self._store.load(self._symbol)
        result = reconcile(self._broker, prior)
        self._store.save(self._symbol, result.state)
        for err in result.consistency_errors:
            self._forward("consistency_error", {"detail": err, "stage": "bootstrap"})
        self._forward("reconciled", {
            "phase": result.state.phase.value,
            "buy_leg_id": result.state.buy_leg_id,
            "sell_leg_id": result.state.sell_leg_id,
            "active_parent_id": result.state.active_parent_id,
            "notes": result.notes,
        })
        return result

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def evaluate_tick(self, bar: Bar, range_value: float | None) -> TickResult:
        state = self._store.load(self._symbol)
        phase = self._window.phase(self.local_time(bar.timestamp), self._config.enabled)

        try:
            if phase == WindowPhase.DISABLED:
                self._log_waiting("disabled", bar, "Trading disabled")
                return TickResult(phase, ACTION_DISABLED, state)

            if phase != WindowPhase.OPEN:
                new_state = enforce_window(phase, state, self._broker)
                action = ACTION_BEFORE_WINDOW if phase == WindowPhase.BEFORE_START else ACTION_AFTER_WINDOW
                if new_state != state:
                    self._forward("window_reset", {
                        "window": phase.value,
                        "prior_phase": state.phase.value,
                        "prior_side": state.trade_side.name,
                    })
                else:
                    self._log_waiting("window", bar, "Outside trading window (%s, bar %s)",
                                      phase.value, bar.timestamp.isoformat())
                self._store.save(self._symbol, new_state)
                return TickResult(phase, action, new_state)

            offsets = compute_offsets(
                range_value,
                self._config.fractions.bracket,
                self._config.fractions.stop,
                self._config.fractions.target,
                self._config.tick_size,
            )
            if offsets is None:
                self._log_waiting("range", bar, "No volatility data at %s (R=%s)", bar.timestamp.isoformat(), range_value)
                return TickResult(phase, ACTION_INVALID_RANGE, state)

            new_state, action = self._machine.dispatch(state, bar.close, offsets)
        except BrokerError as exc:
            logger.exception("Broker call failed; tick abandoned, state left as %s", state.phase.value)
            self._forward("error", {"message": "broker call failed", "detail": str(exc)})
            return TickResult(phase, ACTION_BROKER_ERROR, state, notes=[str(exc)])

        if action.startswith("waiting"):
            self._log_waiting(action, bar, "%s: %s", state.phase.value, action)
        self._store.save(self._symbol, new_state)
        return TickResult(phase, action, new_state)

    def process_bars(
        self,
        bars: Sequence[Bar],
        feed: VolatilityFeed,
        *,
        full_reload: bool = False,
    ) -> TickResult | None:
        """Catch-up semantics: reconcile on a full reload, then evaluate the latest bar only."""
        if full_reload:
            self.bootstrap()
        if not bars:
            return None
        index = len(bars) - 1
        return self.evaluate_tick(bars[index], feed.value_at(index))
