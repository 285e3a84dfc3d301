"""Tests for the order state machine: submission, fill detection, exit detection, safety flatten."""

import pytest

from execution.broker import ERR_BROKER_UNAVAILABLE
from execution.models import OrderSide, OrderStatus, OrderType
from scalper_core.contracts import BotPhase, BotState, OffsetPlan, TradeSide
from scalper_core.state_machine import (
    ACTION_BRACKET_DEAD,
    ACTION_BRACKET_INVALID,
    ACTION_BRACKET_SUBMITTED,
    ACTION_ENTRY_FILLED,
    ACTION_EXIT,
    ACTION_FORCED_FLATTEN,
    ACTION_LEG_INVALIDATED,
    ACTION_SUBMIT_FAILED,
    ACTION_WAITING_EXIT,
    ACTION_WAITING_FILL,
    OrderStateMachine,
)

PLAN = OffsetPlan(entry_offset=1.0, stop_offset=1.0, target_offset=2.0, tick_size=0.25)


def _consistent(state: BotState) -> bool:
    return not (state.bracket_armed and state.trade_side != TradeSide.FLAT)


@pytest.fixture
def machine(broker, record_event) -> OrderStateMachine:
    return OrderStateMachine(broker, quantity=1, on_event=record_event)


@pytest.fixture
def armed(machine) -> BotState:
    state, _ = machine.place_bracket(BotState(), 100.0, PLAN)
    return state


def test_quantity_must_be_positive(broker) -> None:
    with pytest.raises(ValueError, match="quantity"):
        OrderStateMachine(broker, quantity=0)


class TestPlaceBracket:
    def test_submits_bracket_around_close(self, machine, broker) -> None:
        state, action = machine.place_bracket(BotState(), 100.0, PLAN)
        assert action == ACTION_BRACKET_SUBMITTED
        assert broker.calls_named("submit_bracket") == [("submit_bracket", 1, 99.0, 101.0, 1.0, 2.0)]
        assert state == BotState(buy_leg_id=1, sell_leg_id=2, bracket_armed=True)
        assert state.phase == BotPhase.BRACKET_ARMED

    def test_submission_event(self, machine, events) -> None:
        machine.place_bracket(BotState(), 100.0, PLAN)
        event_type, payload = events[-1]
        assert event_type == "bracket_submitted"
        assert payload["buy_price"] == 99.0
        assert payload["sell_price"] == 101.0
        assert payload["quantity"] == 1

    def test_failure_leaves_flat_for_retry(self, machine, broker, events) -> None:
        broker.submit_error = ERR_BROKER_UNAVAILABLE
        state, action = machine.place_bracket(BotState(), 100.0, PLAN)
        assert action == ACTION_SUBMIT_FAILED
        assert state.is_zero
        assert events[-1] == ("submit_failed", {"error_code": ERR_BROKER_UNAVAILABLE})

    def test_invalid_prices_skip_submission(self, machine, broker) -> None:
        tiny = OffsetPlan(entry_offset=0.1, stop_offset=1.0, target_offset=1.0, tick_size=1.0)
        state, action = machine.place_bracket(BotState(), 0.2, tiny)
        assert action == ACTION_BRACKET_INVALID
        assert state.is_zero
        assert broker.calls_named("submit_bracket") == []

    def test_dispatch_from_flat_submits(self, machine, broker) -> None:
        state, action = machine.dispatch(BotState(), 100.0, PLAN)
        assert action == ACTION_BRACKET_SUBMITTED
        assert state.buy_leg_id and state.sell_leg_id


class TestPollEntry:
    def test_no_fill_keeps_waiting(self, machine, armed) -> None:
        state, action = machine.poll_entry(armed)
        assert action == ACTION_WAITING_FILL
        assert state == armed

    def test_buy_fill_goes_long(self, machine, broker, armed) -> None:
        broker.set_status(armed.buy_leg_id, OrderStatus.FILLED)
        state, action = machine.poll_entry(armed)
        assert action == ACTION_ENTRY_FILLED
        assert state.trade_side == TradeSide.LONG
        assert state.active_parent_id == armed.buy_leg_id
        assert state.bracket_armed is False
        assert state.sell_leg_id == 0
        assert state.phase == BotPhase.IN_TRADE

    def test_sell_fill_goes_short(self, machine, broker, armed) -> None:
        broker.set_status(armed.sell_leg_id, OrderStatus.FILLED)
        state, action = machine.poll_entry(armed)
        assert action == ACTION_ENTRY_FILLED
        assert state.trade_side == TradeSide.SHORT
        assert state.active_parent_id == armed.sell_leg_id
        assert state.buy_leg_id == 0

    def test_buy_leg_wins_when_both_filled(self, machine, broker, armed) -> None:
        broker.set_status(armed.buy_leg_id, OrderStatus.FILLED)
        broker.set_status(armed.sell_leg_id, OrderStatus.FILLED)
        state, _ = machine.poll_entry(armed)
        assert state.trade_side == TradeSide.LONG
        assert state.active_parent_id == armed.buy_leg_id

    def test_sell_leg_not_queried_after_buy_fill(self, machine, broker, armed) -> None:
        broker.set_status(armed.buy_leg_id, OrderStatus.FILLED)
        broker.calls.clear()
        machine.poll_entry(armed)
        assert broker.calls == [("get_order", armed.buy_leg_id)]

    @pytest.mark.parametrize("status", [OrderStatus.CANCELED, OrderStatus.REJECTED])
    def test_dead_leg_invalidated_other_still_armed(self, machine, broker, armed, status) -> None:
        broker.set_status(armed.sell_leg_id, status)
        state, action = machine.poll_entry(armed)
        assert action == ACTION_LEG_INVALIDATED
        assert state.sell_leg_id == 0
        assert state.buy_leg_id == armed.buy_leg_id
        assert state.bracket_armed is True

    def test_invalidated_leg_not_retried_same_tick(self, machine, broker, armed) -> None:
        broker.set_status(armed.buy_leg_id, OrderStatus.REJECTED)
        state, _ = machine.poll_entry(armed)
        assert broker.calls_named("submit_bracket") == [("submit_bracket", 1, 99.0, 101.0, 1.0, 2.0)]

        broker.set_status(armed.sell_leg_id, OrderStatus.FILLED)
        state, action = machine.poll_entry(state)
        assert action == ACTION_ENTRY_FILLED
        assert state.trade_side == TradeSide.SHORT

    def test_both_legs_dead_resets(self, machine, broker, armed, events) -> None:
        broker.set_status(armed.buy_leg_id, OrderStatus.CANCELED)
        broker.set_status(armed.sell_leg_id, OrderStatus.CANCELED)
        state, action = machine.poll_entry(armed)
        assert action == ACTION_BRACKET_DEAD
        assert state.is_zero
        assert events[-1][0] == "bracket_dead"

    def test_missing_order_is_transient(self, machine, broker, armed) -> None:
        del broker.orders[armed.buy_leg_id]
        state, action = machine.poll_entry(armed)
        assert action == ACTION_WAITING_FILL
        assert state == armed


class TestPollExit:
    @pytest.fixture
    def long_trade(self, machine, broker, armed) -> BotState:
        broker.set_status(armed.buy_leg_id, OrderStatus.FILLED)
        broker.position = 1
        state, _ = machine.poll_entry(armed)
        return state

    def _child(self, broker, parent_id: int, order_type: OrderType) -> int:
        return next(o.order_id for o in broker.children(parent_id) if o.order_type == order_type)

    def test_waiting_while_children_open(self, machine, long_trade) -> None:
        state, action = machine.poll_exit(long_trade)
        assert action == ACTION_WAITING_EXIT
        assert state == long_trade

    def test_target_fill_is_normal_exit(self, machine, broker, long_trade, events) -> None:
        target = self._child(broker, long_trade.active_parent_id, OrderType.LIMIT)
        broker.set_status(target, OrderStatus.FILLED)
        state, action = machine.poll_exit(long_trade)
        assert action == ACTION_EXIT
        assert state.is_zero
        assert broker.calls_named("flatten_position") == []
        assert events[-1][1]["kind"] == "target"

    def test_stop_fill_with_cancelled_sibling_is_normal_exit(self, machine, broker, long_trade, events) -> None:
        stop = self._child(broker, long_trade.active_parent_id, OrderType.STOP)
        target = self._child(broker, long_trade.active_parent_id, OrderType.LIMIT)
        broker.set_status(target, OrderStatus.CANCELED)
        broker.set_status(stop, OrderStatus.FILLED)
        state, action = machine.poll_exit(long_trade)
        assert action == ACTION_EXIT
        assert state.is_zero
        assert broker.calls_named("flatten_position") == []
        assert events[-1][1]["kind"] == "stop"

    @pytest.mark.parametrize("status", [OrderStatus.CANCELED, OrderStatus.REJECTED, OrderStatus.ERROR])
    def test_dead_protection_forces_flatten_once(self, machine, broker, long_trade, status) -> None:
        stop = self._child(broker, long_trade.active_parent_id, OrderType.STOP)
        broker.set_status(stop, status)
        state, action = machine.poll_exit(long_trade)
        assert action == ACTION_FORCED_FLATTEN
        assert state.is_zero
        assert len(broker.calls_named("flatten_position")) == 1

    def test_forced_flatten_event(self, machine, broker, long_trade, events) -> None:
        stop = self._child(broker, long_trade.active_parent_id, OrderType.STOP)
        broker.set_status(stop, OrderStatus.CANCELED)
        machine.poll_exit(long_trade)
        event_type, payload = events[-1]
        assert event_type == "forced_flatten"
        assert payload["side"] == "LONG"
        assert "unprotected" in payload["reason"]

    def test_in_trade_without_parent_is_consistency_error(self, machine, broker, events) -> None:
        broken = BotState(trade_side=TradeSide.SHORT)
        state, action = machine.poll_exit(broken)
        assert action == ACTION_FORCED_FLATTEN
        assert state.is_zero
        assert len(broker.calls_named("flatten_position")) == 1
        assert [e[0] for e in events] == ["consistency_error", "forced_flatten"]

    def test_other_parents_children_ignored(self, machine, broker, long_trade) -> None:
        stray_parent = broker.add_order(OrderSide.BUY, OrderType.LIMIT, 90.0, status=OrderStatus.FILLED)
        broker.add_order(OrderSide.SELL, OrderType.STOP, 89.0, parent_id=stray_parent, status=OrderStatus.CANCELED)
        state, action = machine.poll_exit(long_trade)
        assert action == ACTION_WAITING_EXIT
        assert state == long_trade


def test_full_cycle_keeps_invariants(machine, broker) -> None:
    """Flat -> armed -> long -> flat, checking the armed/in-trade exclusion at every step."""
    seen = []
    state, _ = machine.dispatch(BotState(), 100.0, PLAN)
    seen.append(state)
    state, _ = machine.dispatch(state, 100.0, PLAN)
    seen.append(state)

    broker.set_status(state.buy_leg_id, OrderStatus.FILLED)
    state, _ = machine.dispatch(state, 99.0, PLAN)
    seen.append(state)
    parent = state.active_parent_id

    target = next(o.order_id for o in broker.children(parent) if o.order_type == OrderType.LIMIT)
    broker.set_status(target, OrderStatus.FILLED)
    state, action = machine.dispatch(state, 101.0, PLAN)
    seen.append(state)

    assert action == ACTION_EXIT
    assert all(_consistent(s) for s in seen)
    assert [s.phase for s in seen] == [
        BotPhase.BRACKET_ARMED,
        BotPhase.BRACKET_ARMED,
        BotPhase.IN_TRADE,
        BotPhase.FLAT_READY,
    ]
    assert len(broker.calls_named("submit_bracket")) == 1
