"""
CLI entry point: scalper ingest | tick | run | reconcile | status | flatten | backtest | health.

Every command loads config from --config (default config.yaml), prints
human-readable state next to what the broker reports, and logs engine
events to the journal.
"""

import logging
import sys
from datetime import datetime, timedelta, timezone

import click
from dotenv import load_dotenv

from config import LogVerbosity, load_config

load_dotenv()

logger = logging.getLogger("scalper")

VERBOSE = 5
logging.addLevelName(VERBOSE, "VERBOSE")

_LEVELS = {
    LogVerbosity.ERROR: logging.ERROR,
    LogVerbosity.WARN: logging.WARNING,
    LogVerbosity.INFO: logging.INFO,
    LogVerbosity.DEBUG: logging.DEBUG,
    LogVerbosity.VERBOSE: VERBOSE,
}


def _setup_logging(verbosity: LogVerbosity = LogVerbosity.INFO) -> None:
    logging.basicConfig(
        level=_LEVELS.get(verbosity, logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s  %(message)s",
        stream=sys.stderr,
        force=True,
    )
    # NONE silences everything, including warnings from libraries.
    logging.disable(logging.CRITICAL if verbosity == LogVerbosity.NONE else logging.NOTSET)


def _load(ctx: click.Context):
    cfg = load_config(ctx.obj["config_path"])
    level = ctx.obj.get("log_level")
    _setup_logging(LogVerbosity.parse(level) if level else cfg.logging.level)
    return cfg


def _strategy(cfg):
    from config.strategy_config import load_strategy_config

    return load_strategy_config(cfg.strategy_path, symbol=cfg.symbol)


def _runtime(cfg, strategy, *, events=None):
    """Paper broker, state store and engine wired to the journal (and event log)."""
    from execution import PaperBroker, StateStore
    from journal import JournalWriter
    from scalper_core.engine import ScalpEngine

    journal = JournalWriter(cfg.journal.path, echo_stdout=cfg.journal.echo_stdout)

    def on_event(event_type: str, payload: dict) -> None:
        journal.event(event_type, payload)
        if events is not None:
            events.engine_event(event_type, payload)

    broker = PaperBroker(cfg.broker.order_book_path, cfg.symbol)
    store = StateStore(cfg.broker.state_path)
    engine = ScalpEngine(broker, store, strategy, cfg.symbol, on_event=on_event)
    return broker, store, engine


@click.group()
@click.option("--config", "config_path", default="config.yaml", help="Path to config file.")
@click.option("--log-level", "log_level", default=None,
              help="Override logging.level (none, error, warn, info, debug, verbose).")
@click.pass_context
def cli(ctx: click.Context, config_path: str, log_level: str | None) -> None:
    """oco-scalper: volatility-scaled OCO bracket scalper with crash-safe reconciliation."""
    _setup_logging()
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["log_level"] = log_level


# ---------- scalper ingest ----------


@cli.command()
@click.option("--days", default=5, type=int, help="Number of calendar days to fetch.")
@click.option("--start", "start_str", default=None, help="Start date (ISO, e.g. 2024-01-01).")
@click.option("--end", "end_str", default=None, help="End date (ISO, e.g. 2024-02-01).")
@click.pass_context
def ingest(ctx: click.Context, days: int, start_str: str | None, end_str: str | None) -> None:
    """Fetch bars from Alpaca and store locally."""
    cfg = _load(ctx)
    from data import get_alpaca_fetcher, ingest_bars
    from data.bar_store import BarStore

    fetcher = get_alpaca_fetcher(cfg.data.api_key, cfg.data.api_secret)
    store = BarStore(cfg.data.bar_store_path)

    end_dt = datetime.fromisoformat(end_str).replace(tzinfo=timezone.utc) if end_str else datetime.now(timezone.utc)
    start_dt = datetime.fromisoformat(start_str).replace(tzinfo=timezone.utc) if start_str else end_dt - timedelta(days=days)

    click.echo(f"Fetching {cfg.symbol} {cfg.timeframe} bars from {start_dt.date()} to {end_dt.date()} ...")
    result = ingest_bars(fetcher, store, cfg.symbol, cfg.timeframe, start_dt, end_dt)
    if result.bars:
        click.echo(f"Stored {len(result.bars)} bars in {cfg.data.bar_store_path}")
        click.echo(f"  Range: {result.first_ts.isoformat()} -> {result.last_ts.isoformat()}")
        click.echo(f"  Total {cfg.timeframe} bars in store: {store.count_bars(cfg.symbol, cfg.timeframe)}")
    else:
        click.echo("No bars returned. Check symbol, timeframe, date range, and API keys.")


# ---------- scalper tick ----------


@cli.command()
@click.option("--reload", "full_reload", is_flag=True, default=False,
              help="Treat as a full history reload: reconcile against the order book first.")
@click.pass_context
def tick(ctx: click.Context, full_reload: bool) -> None:
    """Evaluate the latest stored bar once (paper broker matches any new bars first)."""
    cfg = _load(ctx)
    from cli.output import format_state, format_tick
    from cli.scheduler import feed_new_bars, history_size
    from data.bar_store import BarStore
    from scalper_core.volatility import SeriesFeed

    strategy = _strategy(cfg)
    bars = BarStore(cfg.data.bar_store_path).get_bars(cfg.symbol, cfg.timeframe, limit=history_size(strategy))
    if not bars:
        click.echo("No bars in store. Run 'scalper ingest' first.")
        return

    broker, _, engine = _runtime(cfg, strategy)
    for fill in feed_new_bars(broker, bars):
        click.echo(f"  Fill: {fill.side.value} {fill.qty} @ {fill.price:.2f} ({fill.reason})")

    feed = SeriesFeed.from_bars(bars, strategy.volatility.source, strategy.volatility.period)
    result = engine.process_bars(bars, feed, full_reload=full_reload)
    click.echo(format_tick(result, bar_time=bars[-1].timestamp.isoformat(), range_value=feed.value_at(len(bars) - 1)))
    click.echo(format_state(result.state))


# ---------- scalper run ----------


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Run continuously, ticking at each bar close inside the trading window."""
    cfg = _load(ctx)
    from cli.scheduler import run_live_loop
    from cli.structured_log import StructuredEventLogger
    from data import get_alpaca_fetcher
    from data.bar_store import BarStore

    strategy = _strategy(cfg)
    events = StructuredEventLogger(
        cfg.symbol,
        enabled=cfg.alerting.structured_logs,
        webhook_url=cfg.alerting.webhook_url,
    )
    broker, _, engine = _runtime(cfg, strategy, events=events)
    fetcher = get_alpaca_fetcher(cfg.data.api_key, cfg.data.api_secret)
    run_live_loop(cfg, strategy, engine, broker, BarStore(cfg.data.bar_store_path), fetcher, events=events)


# ---------- scalper reconcile ----------


@cli.command()
@click.pass_context
def reconcile(ctx: click.Context) -> None:
    """Rebuild bot state from the broker's order book and persist it."""
    cfg = _load(ctx)
    from cli.output import format_reconcile

    _, _, engine = _runtime(cfg, _strategy(cfg))
    result = engine.bootstrap()
    click.echo(format_reconcile(result))
    if result.consistency_errors:
        raise SystemExit(1)


# ---------- scalper status ----------


@cli.command()
@click.option("--fills", default=5, help="Number of recent fills to show.")
@click.option("--all-orders", is_flag=True, default=False, help="Show every order, not only working ones.")
@click.pass_context
def status(ctx: click.Context, fills: int, all_orders: bool) -> None:
    """Show persisted bot state, broker position, working orders and recent fills."""
    cfg = _load(ctx)
    from cli.output import format_fills, format_orders, format_position, format_state
    from execution import PaperBroker, StateStore

    broker = PaperBroker(cfg.broker.order_book_path, cfg.symbol)
    state = StateStore(cfg.broker.state_path).load(cfg.symbol)
    click.echo(format_state(state))
    click.echo(format_position(broker.get_position()))
    click.echo(format_orders(broker.list_orders(), working_only=not all_orders))
    click.echo("")
    click.echo(format_fills(broker.list_fills(limit=fills)))


# ---------- scalper flatten ----------


@cli.command()
@click.option("--yes", is_flag=True, default=False, help="Skip confirmation.")
@click.pass_context
def flatten(ctx: click.Context, yes: bool) -> None:
    """Cancel every working order, close the position and reset bot state."""
    cfg = _load(ctx)
    from cli.output import format_position, format_state

    if not yes:
        click.confirm(f"Cancel all orders and flatten {cfg.symbol}?", abort=True)

    broker, store, _ = _runtime(cfg, _strategy(cfg))
    for order in broker.list_orders():
        if order.is_active and order.is_top_level:
            broker.cancel_order(order.order_id)
    broker.flatten_position()
    state = store.reset(cfg.symbol)
    logger.warning("Operator flatten: %s orders canceled, position closed, state reset", cfg.symbol)
    click.echo(format_position(broker.get_position()))
    click.echo(format_state(state))


# ---------- scalper backtest ----------


@cli.command()
@click.option("--start", "start_str", default=None, help="Start date filter (ISO).")
@click.option("--end", "end_str", default=None, help="End date filter (ISO).")
@click.pass_context
def backtest(ctx: click.Context, start_str: str | None, end_str: str | None) -> None:
    """Replay stored bars through the paper broker and engine."""
    cfg = _load(ctx)
    from backtest import run_backtest
    from cli.output import format_backtest_summary
    from data.bar_store import BarStore
    from journal import JournalWriter

    store = BarStore(cfg.data.bar_store_path)
    since = datetime.fromisoformat(start_str).replace(tzinfo=timezone.utc) if start_str else None
    until = datetime.fromisoformat(end_str).replace(tzinfo=timezone.utc) if end_str else None
    bars = store.get_bars(cfg.symbol, cfg.timeframe, since=since, until=until)
    if not bars:
        click.echo("No bars in store. Run 'scalper ingest' first.")
        return

    journal = JournalWriter(cfg.journal.path, echo_stdout=cfg.journal.echo_stdout)

    click.echo(f"Running backtest: {cfg.symbol} {cfg.timeframe}, {len(bars)} bars ...")
    result = run_backtest(
        bars,
        cfg.symbol,
        cfg.timeframe,
        config=_strategy(cfg),
        journal_callback=journal.event,
    )
    for t in result.trades:
        journal.trade(t.symbol, t.side, t.entry_price, t.exit_price, t.qty, t.pnl, t.exit_reason)
    click.echo(format_backtest_summary(result))


# ---------- scalper health ----------


@cli.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Check system health: config, strategy config, order book, bar data.

    Exit code 0 = healthy, 1 = unhealthy. Designed for Docker HEALTHCHECK.
    """
    checks: list[tuple[str, bool, str]] = []

    try:
        cfg = _load(ctx)
        checks.append(("config", True, f"loaded ({cfg.symbol} {cfg.timeframe})"))
    except Exception as e:
        checks.append(("config", False, str(e)))
        _print_health(checks)
        raise SystemExit(1)

    try:
        strategy = _strategy(cfg)
        checks.append(("strategy_config", True,
                       f"validated (enabled={strategy.enabled}, tick={strategy.tick_size})"))
    except Exception as e:
        checks.append(("strategy_config", False, str(e)))

    try:
        from execution import PaperBroker, StateStore
        broker = PaperBroker(cfg.broker.order_book_path, cfg.symbol)
        working = sum(1 for o in broker.list_orders() if o.is_active)
        state = StateStore(cfg.broker.state_path).load(cfg.symbol)
        checks.append(("order_book", True, f"{working} working orders, phase={state.phase.value}"))
    except Exception as e:
        checks.append(("order_book", False, str(e)))

    try:
        from data.bar_store import BarStore
        bar_count = BarStore(cfg.data.bar_store_path).count_bars(cfg.symbol, cfg.timeframe)
        if bar_count > 0:
            checks.append(("bars", True, f"{bar_count} {cfg.timeframe} bars"))
        else:
            checks.append(("bars", False, f"no {cfg.timeframe} bars for {cfg.symbol}"))
    except Exception as e:
        checks.append(("bars", False, str(e)))

    _print_health(checks)
    healthy = all(ok for _, ok, _ in checks)
    raise SystemExit(0 if healthy else 1)


def _print_health(checks: list[tuple[str, bool, str]]) -> None:
    for name, ok, detail in checks:
        status = "OK" if ok else "FAIL"
        click.echo(f"  [{status}] {name}: {detail}")
    healthy = all(ok for _, ok, _ in checks)
    click.echo(f"\nHealth: {'HEALTHY' if healthy else 'UNHEALTHY'}")


if __name__ == "__main__":
    cli()
