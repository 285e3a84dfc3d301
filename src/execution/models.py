"""OrderLeg, Position, SubmitResult, Fill: the broker-side view of the order book."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderType(str, Enum):
    LIMIT = "LIMIT"
    STOP = "STOP"
    MARKET = "MARKET"


class OrderStatus(str, Enum):
    OPEN = "OPEN"
    FILLED = "FILLED"
    CANCELED = "CANCELED"
    REJECTED = "REJECTED"
    ERROR = "ERROR"


# A protective child in one of these states no longer protects the position.
DEAD_STATUSES = frozenset({OrderStatus.CANCELED, OrderStatus.REJECTED, OrderStatus.ERROR})


@dataclass(frozen=True)
class OrderLeg:
    order_id: int
    side: OrderSide
    order_type: OrderType
    price: float
    quantity: int
    status: OrderStatus
    parent_id: int = 0  # 0 = top-level
    filled_quantity: int = 0
    avg_fill_price: float = 0.0

    @property
    def is_active(self) -> bool:
        return self.status == OrderStatus.OPEN

    @property
    def is_top_level(self) -> bool:
        return self.parent_id == 0


@dataclass(frozen=True)
class Position:
    """Signed quantity: > 0 long, < 0 short, 0 flat."""

    quantity: int = 0
    avg_price: float = 0.0

    @property
    def is_flat(self) -> bool:
        return self.quantity == 0


@dataclass(frozen=True)
class SubmitResult:
    """Broker acknowledgement of a bracket submission. Negative error_code = failure."""

    buy_leg_id: int = 0
    sell_leg_id: int = 0
    error_code: int = 0

    @property
    def ok(self) -> bool:
        return self.error_code == 0 and self.buy_leg_id > 0 and self.sell_leg_id > 0


@dataclass(frozen=True)
class Fill:
    id: int
    order_id: int
    side: OrderSide
    qty: int
    price: float
    timestamp: datetime
    reason: str = ""  # "entry" | "stop" | "target" | "flatten"
