"""Pytest fixtures: in-memory broker, bar builders and strategy configs for deterministic tests."""

from dataclasses import replace
from datetime import datetime, time, timezone

import pytest

from config.strategy_config import (
    FractionsConfig,
    StrategyConfig,
    VolatilityConfig,
    WindowConfig,
)
from execution.broker import BrokerError
from execution.models import OrderLeg, OrderSide, OrderStatus, OrderType, Position, SubmitResult
from scalper_core.contracts import Bar
from scalper_core.volatility import VolatilitySource


def _ts(year: int, month: int, day: int, hour: int = 14, minute: int = 30) -> datetime:
    return datetime(year, month, day, hour, minute, 0, tzinfo=timezone.utc)


def make_bar(close: float, *, ts: datetime | None = None, spread: float = 1.0, symbol: str = "SPY") -> Bar:
    return Bar(
        open=close,
        high=close + spread / 2,
        low=close - spread / 2,
        close=close,
        volume=1_000,
        timestamp=ts or _ts(2024, 1, 2),
        symbol=symbol,
    )


class FakeBroker:
    """In-memory BrokerAdapter that records every call.

    submit_bracket() creates the buy leg, the sell leg, then a STOP and a
    LIMIT child for each, with consecutive ids.
    """

    def __init__(self) -> None:
        self.orders: dict[int, OrderLeg] = {}
        self.position = 0
        self.calls: list[tuple] = []
        self.submit_error = 0
        self.raise_on: str | None = None
        self._next_id = 1

    def _call(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if self.raise_on == name:
            raise BrokerError(f"{name} unavailable")

    def calls_named(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    def add_order(self, side: OrderSide, order_type: OrderType, price: float, *,
                  status: OrderStatus = OrderStatus.OPEN, parent_id: int = 0, quantity: int = 1) -> int:
        order_id = self._next_id
        self._next_id += 1
        self.orders[order_id] = OrderLeg(
            order_id=order_id, side=side, order_type=order_type, price=price,
            quantity=quantity, status=status, parent_id=parent_id,
        )
        return order_id

    def add_bracket_leg(self, side: OrderSide, price: float, *, status: OrderStatus = OrderStatus.OPEN) -> int:
        """Top-level LIMIT entry with a stop and a target child."""
        leg_id = self.add_order(side, OrderType.LIMIT, price, status=status)
        exit_side = OrderSide.SELL if side == OrderSide.BUY else OrderSide.BUY
        self.add_order(exit_side, OrderType.STOP, price, parent_id=leg_id)
        self.add_order(exit_side, OrderType.LIMIT, price, parent_id=leg_id)
        return leg_id

    def set_status(self, order_id: int, status: OrderStatus, *, fill_price: float | None = None) -> None:
        leg = self.orders[order_id]
        changes = {"status": status}
        if status == OrderStatus.FILLED:
            changes["filled_quantity"] = leg.quantity
            changes["avg_fill_price"] = leg.price if fill_price is None else fill_price
        self.orders[order_id] = replace(leg, **changes)

    def children(self, parent_id: int) -> list[OrderLeg]:
        return [o for o in self.orders.values() if o.parent_id == parent_id]

    # BrokerAdapter

    def submit_bracket(self, quantity, buy_price, sell_price, stop_offset, target_offset) -> SubmitResult:
        self._call("submit_bracket", quantity, buy_price, sell_price, stop_offset, target_offset)
        if self.submit_error:
            return SubmitResult(error_code=self.submit_error)
        buy_id = self.add_order(OrderSide.BUY, OrderType.LIMIT, buy_price, quantity=quantity)
        sell_id = self.add_order(OrderSide.SELL, OrderType.LIMIT, sell_price, quantity=quantity)
        self.add_order(OrderSide.SELL, OrderType.STOP, buy_price - stop_offset, parent_id=buy_id, quantity=quantity)
        self.add_order(OrderSide.SELL, OrderType.LIMIT, buy_price + target_offset, parent_id=buy_id, quantity=quantity)
        self.add_order(OrderSide.BUY, OrderType.STOP, sell_price + stop_offset, parent_id=sell_id, quantity=quantity)
        self.add_order(OrderSide.BUY, OrderType.LIMIT, sell_price - target_offset, parent_id=sell_id, quantity=quantity)
        return SubmitResult(buy_leg_id=buy_id, sell_leg_id=sell_id)

    def cancel_order(self, order_id: int) -> bool:
        self._call("cancel_order", order_id)
        leg = self.orders.get(order_id)
        if leg is None or leg.status != OrderStatus.OPEN:
            return False
        self.set_status(order_id, OrderStatus.CANCELED)
        return True

    def flatten_position(self) -> bool:
        self._call("flatten_position")
        self.position = 0
        for o in list(self.orders.values()):
            if o.parent_id and o.status == OrderStatus.OPEN:
                self.set_status(o.order_id, OrderStatus.CANCELED)
        return True

    def get_order(self, order_id: int) -> OrderLeg | None:
        self._call("get_order", order_id)
        return self.orders.get(order_id)

    def list_orders(self) -> list[OrderLeg]:
        self._call("list_orders")
        return [self.orders[k] for k in sorted(self.orders)]

    def get_position(self) -> Position:
        self._call("get_position")
        return Position(quantity=self.position)


def make_strategy(
    *,
    enabled: bool = True,
    quantity: int = 1,
    tick_size: float = 0.25,
    bracket: float = 0.5,
    stop: float = 0.5,
    target: float = 1.0,
    window_enabled: bool = True,
    start: time = time(14, 0),
    stop_time: time = time(20, 0),
    source: VolatilitySource = VolatilitySource.BAR_RANGE,
    period: int = 14,
) -> StrategyConfig:
    return StrategyConfig(
        version="test",
        enabled=enabled,
        quantity=quantity,
        tick_size=tick_size,
        fractions=FractionsConfig(bracket=bracket, stop=stop, target=target),
        volatility=VolatilityConfig(source=source, period=period),
        window=WindowConfig(enabled=window_enabled, start=start, stop=stop_time, timezone="UTC"),
    )


@pytest.fixture
def symbol() -> str:
    return "SPY"


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def strategy() -> StrategyConfig:
    """Enabled, 14:00-20:00 UTC window, tick 0.25, fractions 0.5/0.5/1.0 of the bar range."""
    return make_strategy()


@pytest.fixture
def events() -> list[tuple[str, dict]]:
    return []


@pytest.fixture
def record_event(events: list[tuple[str, dict]]):
    def _record(event_type: str, payload: dict) -> None:
        events.append((event_type, payload))
    return _record
