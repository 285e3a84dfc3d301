"""
Order state machine: FLAT_READY -> BRACKET_ARMED -> IN_TRADE -> FLAT_READY.

Driven by polling. Each call to dispatch() pulls current truth from the
broker, runs exactly one branch for the current phase, and returns the new
state; nothing is retried inside a tick.

    FLAT_READY     submit an OCO bracket straddling the close
    BRACKET_ARMED  poll buy leg, then sell leg; first FILLED wins
    IN_TRADE       scan children of the filled parent for the exit;
                   a dead protective order forces a flatten
"""

from __future__ import annotations

import logging
from typing import Callable

from execution.broker import BrokerAdapter
from execution.models import DEAD_STATUSES, OrderLeg, OrderSide, OrderStatus, OrderType
from scalper_core.contracts import BotPhase, BotState, OffsetPlan, TradeSide
from scalper_core.offsets import bracket_prices

logger = logging.getLogger("scalper.engine")

EventCallback = Callable[[str, dict], None]

# Actions returned alongside the new state.
ACTION_BRACKET_SUBMITTED = "bracket_submitted"
ACTION_SUBMIT_FAILED = "submit_failed"
ACTION_BRACKET_INVALID = "bracket_invalid"
ACTION_ENTRY_FILLED = "entry_filled"
ACTION_LEG_INVALIDATED = "leg_invalidated"
ACTION_BRACKET_DEAD = "bracket_dead"
ACTION_WAITING_FILL = "waiting_fill"
ACTION_EXIT = "exit"
ACTION_FORCED_FLATTEN = "forced_flatten"
ACTION_WAITING_EXIT = "waiting_exit"


def _side_for(leg: OrderLeg) -> TradeSide:
    return TradeSide.LONG if leg.side == OrderSide.BUY else TradeSide.SHORT


def _exit_kind(child: OrderLeg) -> str:
    return "Stop" if child.order_type == OrderType.STOP else "Target"


class OrderStateMachine:
    """Bracket submission, fill detection and exit detection for one instrument."""

    def __init__(
        self,
        broker: BrokerAdapter,
        quantity: int,
        *,
        on_event: EventCallback | None = None,
    ) -> None:
        if quantity <= 0:
            raise ValueError(f"quantity must be positive, got {quantity}")
        self._broker = broker
        self._quantity = quantity
        self._on_event = on_event

    def _emit(self, event_type: str, **payload) -> None:
        if self._on_event:
            self._on_event(event_type, payload)

    def dispatch(self, state: BotState, close: float, offsets: OffsetPlan) -> tuple[BotState, str]:
        """Run the one branch that matches *state*'s phase."""
        phase = state.phase
        if phase == BotPhase.FLAT_READY:
            return self.place_bracket(state, close, offsets)
        if phase == BotPhase.BRACKET_ARMED:
            return self.poll_entry(state)
        return self.poll_exit(state)

    # ------------------------------------------------------------------
    # FLAT_READY -> BRACKET_ARMED
    # ------------------------------------------------------------------

    def place_bracket(self, state: BotState, close: float, offsets: OffsetPlan) -> tuple[BotState, str]:
        prices = bracket_prices(close, offsets.entry_offset, offsets.tick_size)
        if prices is None:
            logger.warning(
                "Bracket skipped: no valid prices around close=%.5f entry_offset=%.5f",
                close, offsets.entry_offset,
            )
            self._emit(ACTION_BRACKET_INVALID, close=close, entry_offset=offsets.entry_offset)
            return state, ACTION_BRACKET_INVALID

        buy_price, sell_price = prices
        logger.info(
            "Placing bracket: buy %.5f / sell %.5f  entryOff=%.5f stopOff=%.5f tpOff=%.5f",
            buy_price, sell_price, offsets.entry_offset, offsets.stop_offset, offsets.target_offset,
        )
        result = self._broker.submit_bracket(
            self._quantity, buy_price, sell_price, offsets.stop_offset, offsets.target_offset,
        )
        if not result.ok:
            logger.warning("Bracket submission failed: code=%d", result.error_code)
            self._emit(ACTION_SUBMIT_FAILED, error_code=result.error_code)
            return state.reset(), ACTION_SUBMIT_FAILED

        logger.info("Bracket submitted: buy #%d sell #%d", result.buy_leg_id, result.sell_leg_id)
        self._emit(
            ACTION_BRACKET_SUBMITTED,
            buy_leg_id=result.buy_leg_id,
            sell_leg_id=result.sell_leg_id,
            buy_price=buy_price,
            sell_price=sell_price,
            stop_offset=offsets.stop_offset,
            target_offset=offsets.target_offset,
            quantity=self._quantity,
        )
        new_state = BotState(
            buy_leg_id=result.buy_leg_id,
            sell_leg_id=result.sell_leg_id,
            bracket_armed=True,
        )
        return new_state, ACTION_BRACKET_SUBMITTED

    # ------------------------------------------------------------------
    # BRACKET_ARMED -> IN_TRADE
    # ------------------------------------------------------------------

    def poll_entry(self, state: BotState) -> tuple[BotState, str]:
        leg_ids = {"buy": state.buy_leg_id, "sell": state.sell_leg_id}
        invalidated = False

        for name in ("buy", "sell"):
            leg_id = leg_ids[name]
            if not leg_id:
                continue
            leg = self._broker.get_order(leg_id)
            if leg is None:
                logger.debug("Entry leg #%d not found this tick", leg_id)
                continue

            if leg.status == OrderStatus.FILLED:
                side = _side_for(leg)
                logger.info(
                    "Entry filled on %s leg #%d side=%s @ %.5f",
                    name, leg_id, side.name, leg.avg_fill_price,
                )
                self._emit(
                    ACTION_ENTRY_FILLED,
                    leg_id=leg_id,
                    side=side.name,
                    price=leg.avg_fill_price,
                    quantity=leg.filled_quantity,
                )
                # The other leg is cancelled by the broker (OCO); stop tracking it.
                new_state = BotState(
                    buy_leg_id=leg_id if name == "buy" else 0,
                    sell_leg_id=leg_id if name == "sell" else 0,
                    active_parent_id=leg_id,
                    trade_side=side,
                    bracket_armed=False,
                )
                return new_state, ACTION_ENTRY_FILLED

            if leg.status in DEAD_STATUSES:
                logger.warning("Entry %s leg #%d is %s without a fill; dropping it", name, leg_id, leg.status.value)
                self._emit(ACTION_LEG_INVALIDATED, leg_id=leg_id, status=leg.status.value)
                leg_ids[name] = 0
                invalidated = True

        state = state.with_changes(buy_leg_id=leg_ids["buy"], sell_leg_id=leg_ids["sell"])
        if not state.buy_leg_id and not state.sell_leg_id:
            logger.warning("Bracket dead: both legs inactive without a fill")
            self._emit(ACTION_BRACKET_DEAD)
            return state.reset(), ACTION_BRACKET_DEAD
        if invalidated:
            return state, ACTION_LEG_INVALIDATED
        return state, ACTION_WAITING_FILL

    # ------------------------------------------------------------------
    # IN_TRADE -> FLAT_READY
    # ------------------------------------------------------------------

    def force_flatten(self, state: BotState, reason: str) -> BotState:
        logger.error("Forcing flatten: %s", reason)
        self._broker.flatten_position()
        self._emit(ACTION_FORCED_FLATTEN, reason=reason, side=state.trade_side.name,
                   parent_id=state.active_parent_id)
        return state.reset()

    def poll_exit(self, state: BotState) -> tuple[BotState, str]:
        if not state.active_parent_id:
            logger.error("Consistency error: in trade (%s) with no tracked protective parent", state.trade_side.name)
            self._emit("consistency_error", detail="in trade without active parent",
                       side=state.trade_side.name)
            return self.force_flatten(state, "no active parent while in trade"), ACTION_FORCED_FLATTEN

        children = [o for o in self._broker.list_orders() if o.parent_id == state.active_parent_id]

        # A filled child is the exit; its OCO sibling shows up cancelled, which is expected.
        for child in children:
            if child.status == OrderStatus.FILLED:
                kind = _exit_kind(child)
                logger.info(
                    "Exit detected: %s child #%d of parent #%d filled @ %.5f",
                    kind, child.order_id, state.active_parent_id, child.avg_fill_price,
                )
                self._emit(
                    ACTION_EXIT,
                    kind=kind.lower(),
                    child_id=child.order_id,
                    parent_id=state.active_parent_id,
                    side=state.trade_side.name,
                    price=child.avg_fill_price,
                )
                return state.reset(), ACTION_EXIT

        for child in children:
            if child.status in DEAD_STATUSES:
                reason = (
                    f"{_exit_kind(child)} child #{child.order_id} of parent #{state.active_parent_id} "
                    f"is {child.status.value}; position unprotected"
                )
                return self.force_flatten(state, reason), ACTION_FORCED_FLATTEN

        logger.debug("In trade (%s): waiting for stop/target of #%d", state.trade_side.name, state.active_parent_id)
        return state, ACTION_WAITING_EXIT
