"""
Data contracts for scalper-core: Bar, BotState, OffsetPlan, TickResult.

scalper-core consumes Bars and a volatility reading, talks to the broker
only through execution.broker.BrokerAdapter, and produces BotState.
No I/O; these are plain dataclasses.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum


class TradeSide(int, Enum):
    """Side of the open trade. Persisted as an integer."""

    FLAT = 0
    LONG = 1
    SHORT = 2


class BotPhase(str, Enum):
    """Order state machine phase, derived from BotState."""

    FLAT_READY = "FLAT_READY"
    BRACKET_ARMED = "BRACKET_ARMED"
    IN_TRADE = "IN_TRADE"


class WindowPhase(str, Enum):
    """Result of the trading-window gate for one tick."""

    DISABLED = "DISABLED"
    BEFORE_START = "BEFORE_START"
    OPEN = "OPEN"
    AFTER_STOP = "AFTER_STOP"


@dataclass(frozen=True)
class Bar:
    """OHLCV bar; timestamps in UTC."""

    open: float
    high: float
    low: float
    close: float
    volume: int
    timestamp: datetime
    symbol: str
    bar_index: int | None = None

    def bar_range(self) -> float:
        """Full extent of the candle: high - low."""
        return self.high - self.low


@dataclass(frozen=True)
class BotState:
    """Persisted strategy state. Zero value is flat with nothing tracked.

    Invariants:
      - bracket_armed implies trade_side == FLAT
      - trade_side != FLAT implies not bracket_armed and active_parent_id != 0
    """

    buy_leg_id: int = 0
    sell_leg_id: int = 0
    active_parent_id: int = 0
    trade_side: TradeSide = TradeSide.FLAT
    bracket_armed: bool = False

    @property
    def phase(self) -> BotPhase:
        if self.trade_side != TradeSide.FLAT:
            return BotPhase.IN_TRADE
        if self.bracket_armed:
            return BotPhase.BRACKET_ARMED
        return BotPhase.FLAT_READY

    @property
    def is_zero(self) -> bool:
        return self == BotState()

    def reset(self) -> "BotState":
        return BotState()

    def with_changes(self, **changes) -> "BotState":
        return replace(self, **changes)


@dataclass(frozen=True)
class OffsetPlan:
    """Entry, stop and target distances in price units, tick-rounded."""

    entry_offset: float
    stop_offset: float
    target_offset: float
    tick_size: float


@dataclass(frozen=True)
class TickResult:
    """Outcome of one engine evaluation."""

    window_phase: WindowPhase
    action: str
    state: BotState
    notes: list[str] = field(default_factory=list)
