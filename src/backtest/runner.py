"""
Event-driven backtest: replay bars through the paper broker and the engine.

Per bar, in order:
    1. broker.on_bar(bar)      resting orders fill against the bar's range
    2. engine.evaluate_tick()  the gate and state machine react at bar close

No lookahead: a bracket submitted at a bar's close can only fill on a
later bar. Trades are paired from the broker's own fill log, so the result
reflects what the venue did, not what the engine believed.
"""

from __future__ import annotations

import tempfile
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from config.strategy_config import StrategyConfig, load_strategy_config
from execution.models import Fill, OrderSide
from execution.paper_broker import PaperBroker
from execution.state_store import StateStore
from scalper_core.contracts import Bar
from scalper_core.engine import ScalpEngine
from scalper_core.volatility import SeriesFeed


@dataclass
class BacktestTrade:
    """One round-trip trade in backtest."""

    symbol: str
    side: str  # "LONG" | "SHORT"
    entry_time: datetime
    entry_price: float
    exit_time: datetime
    exit_price: float
    qty: int
    pnl: float
    exit_reason: str  # "stop" | "target" | "flatten" | "end_of_data"


@dataclass
class BacktestResult:
    """Result of a backtest run."""

    symbol: str
    timeframe: str
    start_time: datetime
    end_time: datetime
    trades: list[BacktestTrade] = field(default_factory=list)
    actions: Counter = field(default_factory=Counter)

    @property
    def total_pnl(self) -> float:
        return sum(t.pnl for t in self.trades)

    @property
    def win_count(self) -> int:
        return sum(1 for t in self.trades if t.pnl > 0)

    @property
    def loss_count(self) -> int:
        return sum(1 for t in self.trades if t.pnl < 0)

    @property
    def brackets_submitted(self) -> int:
        return self.actions.get("bracket_submitted", 0)


def pair_trades(symbol: str, fills: list[Fill]) -> list[BacktestTrade]:
    """Pair entry fills with the next closing fill (oldest first)."""
    trades: list[BacktestTrade] = []
    entry: Fill | None = None
    for f in sorted(fills, key=lambda x: x.id):
        if f.reason == "entry":
            entry = f
            continue
        if entry is None:
            continue
        sign = 1 if entry.side == OrderSide.BUY else -1
        trades.append(
            BacktestTrade(
                symbol=symbol,
                side="LONG" if sign > 0 else "SHORT",
                entry_time=entry.timestamp,
                entry_price=entry.price,
                exit_time=f.timestamp,
                exit_price=f.price,
                qty=entry.qty,
                pnl=(f.price - entry.price) * entry.qty * sign,
                exit_reason=f.reason,
            )
        )
        entry = None
    return trades


def run_backtest(
    bars: list[Bar],
    symbol: str,
    timeframe: str,
    *,
    config: StrategyConfig | None = None,
    journal_callback: Callable[[str, dict], None] | None = None,
) -> BacktestResult:
    """Replay *bars* through PaperBroker + ScalpEngine.

    Parameters
    ----------
    bars:
        Chronological bar history for one symbol.
    config:
        Strategy configuration. Loaded from default (with per-symbol
        overrides) if None.
    journal_callback:
        Optional engine event callback.
    """
    if config is None:
        config = load_strategy_config(symbol=symbol)

    now = datetime.now(timezone.utc)
    result = BacktestResult(
        symbol=symbol,
        timeframe=timeframe,
        start_time=bars[0].timestamp if bars else now,
        end_time=bars[-1].timestamp if bars else now,
    )
    if not bars:
        return result

    feed = SeriesFeed.from_bars(bars, config.volatility.source, config.volatility.period)

    with tempfile.TemporaryDirectory(prefix="scalper-bt-") as tmp:
        broker = PaperBroker(Path(tmp) / "orders.db", symbol)
        store = StateStore(Path(tmp) / "state.db")
        engine = ScalpEngine(broker, store, config, symbol, on_event=journal_callback)
        engine.bootstrap()

        for i, bar in enumerate(bars):
            broker.on_bar(bar)
            tick = engine.evaluate_tick(bar, feed.value_at(i))
            result.actions[tick.action] += 1

        end_of_data = not broker.get_position().is_flat
        if end_of_data:
            broker.flatten_position()

        trades = pair_trades(symbol, broker.list_fills(limit=1_000_000))

    if end_of_data and trades:
        trades[-1].exit_reason = "end_of_data"
        trades[-1].exit_time = bars[-1].timestamp
    result.trades = trades
    return result
