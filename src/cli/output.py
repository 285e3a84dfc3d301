"""
Human-readable terminal output: bot state, order book, tick results, backtests.

Every CLI command uses these formatters so the operator always sees what
the engine believes next to what the broker says.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from scalper_core.contracts import BotState, TickResult

if TYPE_CHECKING:
    from backtest.runner import BacktestResult
    from execution.models import Fill, OrderLeg, Position
    from scalper_core.reconciliation import ReconcileResult


def format_state(state: BotState) -> str:
    lines = [
        "--- Bot State ---",
        f"Phase        : {state.phase.value}",
        f"Trade side   : {state.trade_side.name}",
        f"Bracket armed: {'yes' if state.bracket_armed else 'no'}",
        f"Buy leg      : #{state.buy_leg_id}" if state.buy_leg_id else "Buy leg      : -",
        f"Sell leg     : #{state.sell_leg_id}" if state.sell_leg_id else "Sell leg     : -",
        f"Active parent: #{state.active_parent_id}" if state.active_parent_id else "Active parent: -",
    ]
    return "\n".join(lines)


def format_position(position: Position) -> str:
    if position.is_flat:
        return "Position     : flat"
    side = "LONG" if position.quantity > 0 else "SHORT"
    return f"Position     : {side} {abs(position.quantity)} @ {position.avg_price:.2f}"


def format_orders(orders: list[OrderLeg], *, working_only: bool = True) -> str:
    shown = [o for o in orders if o.is_active] if working_only else list(orders)
    if not shown:
        return "Orders       : none working" if working_only else "Orders       : none"
    lines = [f"Orders ({len(shown)}):"]
    for o in shown:
        parent = f"  child of #{o.parent_id}" if o.parent_id else ""
        lines.append(
            f"  #{o.order_id:<5d} {o.side.value:4s} {o.order_type.value:5s} {o.quantity} @ {o.price:.2f}  {o.status.value}{parent}"
        )
    return "\n".join(lines)


def format_fills(fills: list[Fill]) -> str:
    if not fills:
        return "No fills yet."
    lines = [f"Recent fills ({len(fills)}):"]
    for f in fills:
        lines.append(f"  {f.side.value:4s} {f.qty} @ {f.price:.2f}  {f.reason:7s} {f.timestamp.isoformat()}")
    return "\n".join(lines)


def format_tick(result: TickResult, *, bar_time: str, range_value: float | None) -> str:
    r = f"{range_value:.4f}" if range_value is not None else "n/a"
    return (
        f"[{bar_time}] window={result.window_phase.value}  R={r}  "
        f"action={result.action}  phase={result.state.phase.value}"
    )


def format_reconcile(result: ReconcileResult) -> str:
    lines = ["--- Reconciliation ---"]
    lines.extend(f"  {n}" for n in result.notes)
    lines.extend(f"  ERROR: {e}" for e in result.consistency_errors)
    lines.append(format_state(result.state))
    return "\n".join(lines)


def format_backtest_summary(result: BacktestResult) -> str:
    lines = [
        f"=== Backtest: {result.symbol} {result.timeframe} ===",
        f"Period        : {result.start_time.isoformat()} -> {result.end_time.isoformat()}",
        f"Brackets      : {result.brackets_submitted}",
        f"Trades        : {len(result.trades)}  (wins {result.win_count}, losses {result.loss_count})",
        f"Total PnL     : {result.total_pnl:+.2f}",
    ]
    for t in result.trades[-10:]:
        lines.append(
            f"  {t.side:5s} {t.qty} {t.entry_price:.2f} -> {t.exit_price:.2f}  "
            f"{t.pnl:+.2f}  ({t.exit_reason})  {t.exit_time.isoformat()}"
        )
    if result.actions:
        lines.append("Actions       : " + ", ".join(f"{k}={v}" for k, v in sorted(result.actions.items())))
    return "\n".join(lines)
