"""
Live paper-trading scheduler: window-aware loop that ingests bars and
runs one engine tick at each bar close.

Sleeps between the trading window's stop and the next start (skipping
weekends) once the bot is flat and disarmed. While anything is armed or
open it keeps ticking so the window close can cancel and flatten.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable
from zoneinfo import ZoneInfo

import click

from config.loader import AppConfig
from data.fetcher import ingest_bars
from scalper_core.contracts import Bar, TickResult, WindowPhase
from scalper_core.volatility import SeriesFeed

if TYPE_CHECKING:
    from cli.structured_log import StructuredEventLogger
    from config.strategy_config import StrategyConfig
    from data.bar_store import BarStore
    from data.fetcher import BarFetcher
    from execution.models import Fill
    from execution.paper_broker import PaperBroker
    from scalper_core.engine import ScalpEngine

logger = logging.getLogger("scalper.scheduler")

BAR_BUFFER_SECONDS = 30
INGEST_LOOKBACK = timedelta(days=1)


def parse_tf_minutes(timeframe: str) -> int:
    """Convert a timeframe string like '15m' or '1h' to minutes."""
    tf = timeframe.strip().lower()
    if tf.endswith("m"):
        return int(tf[:-1])
    if tf.endswith("h"):
        return int(tf[:-1]) * 60
    raise ValueError(f"Unsupported timeframe for live mode: {timeframe!r} (use e.g. '5m', '1h')")


def next_bar_close(now: datetime, tf_minutes: int) -> datetime:
    """Next bar-close timestamp aligned to *tf_minutes* intervals from midnight."""
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    interval = tf_minutes * 60
    bars_elapsed = int((now - midnight).total_seconds() // interval) + 1
    return midnight + timedelta(seconds=bars_elapsed * interval)


def next_window_open(now: datetime, start) -> datetime:
    """Next weekday datetime at local time *start* strictly after *now*."""
    candidate = now.replace(hour=start.hour, minute=start.minute, second=0, microsecond=0)
    if candidate <= now or candidate.weekday() >= 5:
        candidate += timedelta(days=1)
        while candidate.weekday() >= 5:
            candidate += timedelta(days=1)
    return candidate


def seconds_until(target: datetime, now: datetime) -> float:
    return max(0.0, (target - now).total_seconds())


def history_size(strategy: StrategyConfig) -> int:
    """Bars needed to warm up the volatility series."""
    return max(strategy.volatility.period * 3, 50)


def feed_new_bars(broker: PaperBroker, bars: list[Bar]) -> list[Fill]:
    """Pass bars the paper broker has not matched yet to on_bar().

    On a fresh order book only the latest bar is matched, so historical
    bars never fill orders that did not exist when they printed.
    """
    if not bars:
        return []
    last = broker.last_bar_time()
    if last is None:
        pending = bars[-1:]
    else:
        pending = [b for b in bars if _utc(b.timestamp) > last]
    fills: list[Fill] = []
    for bar in pending:
        fills.extend(broker.on_bar(bar))
    return fills


def _utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def ingest_latest(cfg: AppConfig, fetcher: BarFetcher, store: BarStore) -> int:
    """Fetch the last day of bars into the store. Returns number of bars fetched."""
    end = datetime.now(timezone.utc)
    result = ingest_bars(fetcher, store, cfg.symbol, cfg.timeframe, end - INGEST_LOOKBACK, end)
    return len(result.bars)


def run_cycle(
    cfg: AppConfig,
    strategy: StrategyConfig,
    engine: ScalpEngine,
    broker: PaperBroker,
    store: BarStore,
) -> TickResult | None:
    """One evaluation: match new bars at the broker, then tick the engine on the latest."""
    bars = store.get_bars(cfg.symbol, cfg.timeframe, limit=history_size(strategy))
    if not bars:
        logger.warning("No %s %s bars in store; skipping cycle", cfg.symbol, cfg.timeframe)
        return None
    for fill in feed_new_bars(broker, bars):
        logger.info("Paper fill: %s %d @ %.5f (%s)", fill.side.value, fill.qty, fill.price, fill.reason)
    feed = SeriesFeed.from_bars(bars, strategy.volatility.source, strategy.volatility.period)
    return engine.process_bars(bars, feed)


def run_live_loop(
    cfg: AppConfig,
    strategy: StrategyConfig,
    engine: ScalpEngine,
    broker: PaperBroker,
    store: BarStore,
    fetcher: BarFetcher,
    *,
    events: StructuredEventLogger | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], datetime] | None = None,
    max_cycles: int | None = None,
) -> int:
    """
    Main loop: sleep until each bar close, ingest, evaluate, repeat.
    Ctrl+C for graceful shutdown. Returns the number of cycles run.
    """
    from cli.output import format_tick

    tz = ZoneInfo(strategy.window.timezone)
    clock = clock or (lambda: datetime.now(tz))
    window = strategy.window.trading_window()
    tf_minutes = parse_tf_minutes(cfg.timeframe)
    cycles = 0

    engine.bootstrap()
    click.echo(f"Live paper trading started: {cfg.symbol} {cfg.timeframe}")
    click.echo(f"Trading window: {window.start:%H:%M}-{window.stop:%H:%M} {strategy.window.timezone}"
               f"  |  Ctrl+C to stop\n")

    try:
        while max_cycles is None or cycles < max_cycles:
            now = clock()
            phase = window.phase(now.time(), strategy.enabled)

            if phase in (WindowPhase.BEFORE_START, WindowPhase.AFTER_STOP) and engine.state().is_zero:
                nxt = next_window_open(now, window.start)
                wait = seconds_until(nxt, now)
                click.echo(f"[{now:%H:%M:%S}] Window closed. "
                           f"Sleeping until {nxt:%Y-%m-%d %H:%M} ({wait / 3600:.1f}h)")
                if events:
                    events.window_closed(nxt.isoformat(), wait / 3600)
                sleep(wait)
                continue

            nxt_bar = next_bar_close(now, tf_minutes)
            wait = seconds_until(nxt_bar + timedelta(seconds=BAR_BUFFER_SECONDS), now)
            logger.debug("Next bar close %s (sleeping %.0fs)", nxt_bar.isoformat(), wait)
            if wait > 0:
                sleep(wait)

            try:
                ingested = ingest_latest(cfg, fetcher, store)
            except Exception as exc:
                logger.exception("Bar ingest failed")
                if events:
                    events.error("ingest failed", str(exc))
                cycles += 1
                continue
            if events:
                events.cycle_start(nxt_bar.isoformat(), ingested)

            result = run_cycle(cfg, strategy, engine, broker, store)
            cycles += 1
            if result is None:
                continue
            click.echo(format_tick(result, bar_time=f"{nxt_bar:%H:%M}", range_value=None))
            if events:
                events.cycle_complete(result.window_phase.value, result.action, result.state.phase.value)

    except KeyboardInterrupt:
        click.echo(f"\n\nShutting down after {cycles} cycle(s). Goodbye.")

    if events:
        events.shutdown(cycles)
    return cycles
