"""
Reconciliation: rebuild BotState from the authoritative order book at start-up.

The process may have died while orders were still working at the broker,
so persisted values are re-derived rather than trusted:

1. Position sign gives the trade side.
2. Flat: a working bracket is recognised as exactly two open top-level
   LIMIT orders that each carry exactly two attached children. Lower price
   is the buy leg, higher price the sell leg. Any other count resets to zero;
   submitting a fresh bracket is preferred over trusting an ambiguous match.
3. In a position: keep the tracked parent from the persisted state. An
   armed flag next to a live position is an inconsistency and is cleared.

Matching is by shape, not by tag: unrelated manual orders with the same
shape can be mistaken for the bracket.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field

from execution.broker import BrokerAdapter
from execution.models import OrderLeg, OrderSide, OrderStatus, OrderType
from scalper_core.contracts import BotState, TradeSide

logger = logging.getLogger("scalper.reconcile")


@dataclass(frozen=True)
class ReconcileResult:
    state: BotState
    notes: list[str] = field(default_factory=list)
    consistency_errors: list[str] = field(default_factory=list)


def _side_from_quantity(quantity: int) -> TradeSide:
    if quantity > 0:
        return TradeSide.LONG
    if quantity < 0:
        return TradeSide.SHORT
    return TradeSide.FLAT


def find_bracket_candidates(orders: list[OrderLeg]) -> list[OrderLeg]:
    """Open top-level LIMIT orders with exactly two attached children."""
    child_counts = Counter(o.parent_id for o in orders if o.parent_id != 0)
    return [
        o for o in orders
        if o.parent_id == 0
        and o.status == OrderStatus.OPEN
        and o.order_type == OrderType.LIMIT
        and child_counts.get(o.order_id, 0) == 2
    ]


def _recover_active_parent(orders: list[OrderLeg], side: TradeSide) -> int:
    """The single filled entry on *side* that still has a working child, else 0."""
    entry_side = OrderSide.BUY if side == TradeSide.LONG else OrderSide.SELL
    working_parents = {o.parent_id for o in orders if o.parent_id != 0 and o.status == OrderStatus.OPEN}
    matches = [
        o.order_id for o in orders
        if o.parent_id == 0
        and o.status == OrderStatus.FILLED
        and o.order_type == OrderType.LIMIT
        and o.side == entry_side
        and o.order_id in working_parents
    ]
    return matches[0] if len(matches) == 1 else 0


def reconcile(broker: BrokerAdapter, prior: BotState | None = None) -> ReconcileResult:
    """Derive BotState from the broker. *prior* is the persisted state, if any."""
    prior = prior or BotState()
    notes: list[str] = []
    errors: list[str] = []

    position = broker.get_position()
    side = _side_from_quantity(position.quantity)

    if side == TradeSide.FLAT:
        candidates = find_bracket_candidates(broker.list_orders())
        if len(candidates) == 2:
            low, high = sorted(candidates, key=lambda o: (o.price, o.order_id))
            state = BotState(buy_leg_id=low.order_id, sell_leg_id=high.order_id, bracket_armed=True)
            notes.append(f"working bracket found: buy #{low.order_id} @ {low.price}, sell #{high.order_id} @ {high.price}")
            logger.info("Reconciled armed bracket: buy #%d sell #%d", low.order_id, high.order_id)
        else:
            state = BotState()
            notes.append(f"flat; {len(candidates)} bracket candidate(s), starting clean")
            logger.info("Reconciled flat: %d bracket candidate(s), state reset", len(candidates))
        return ReconcileResult(state=state, notes=notes, consistency_errors=errors)

    state = prior.with_changes(trade_side=side)
    if prior.bracket_armed:
        msg = f"position {position.quantity} open while bracket flagged armed; clearing armed flag"
        logger.error("Consistency error at bootstrap: %s", msg)
        errors.append(msg)
        state = state.with_changes(bracket_armed=False)

    if not state.active_parent_id:
        recovered = _recover_active_parent(broker.list_orders(), side)
        if recovered:
            notes.append(f"recovered protective parent #{recovered} from order book")
            logger.warning("Recovered protective parent #%d from order book", recovered)
            state = state.with_changes(
                active_parent_id=recovered,
                buy_leg_id=recovered if side == TradeSide.LONG else 0,
                sell_leg_id=recovered if side == TradeSide.SHORT else 0,
            )
        else:
            notes.append("position open but no protective parent identified")
            logger.error("Position %d open with no identifiable protective parent", position.quantity)

    notes.append(f"in trade: {side.name} {position.quantity}, parent #{state.active_parent_id}")
    logger.info("Reconciled in-trade: side=%s parent #%d", side.name, state.active_parent_id)
    return ReconcileResult(state=state, notes=notes, consistency_errors=errors)
