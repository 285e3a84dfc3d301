"""
Broker order-book adapter contract.

The order state machine and reconciliation only ever see this protocol.
Implement per venue; PaperBroker is the bundled simulated implementation.
"""

from typing import Protocol

from execution.models import OrderLeg, Position, SubmitResult

# Submission failure codes (SubmitResult.error_code)
ERR_INVALID_QUANTITY = -1
ERR_INVALID_PRICE = -2
ERR_BRACKET_EXISTS = -3
ERR_BROKER_UNAVAILABLE = -9


class BrokerError(Exception):
    """Raised by an adapter when the venue cannot be reached or answers garbage."""


class BrokerAdapter(Protocol):
    """Protocol for the external, authoritative order book."""

    def submit_bracket(
        self,
        quantity: int,
        buy_price: float,
        sell_price: float,
        stop_offset: float,
        target_offset: float,
    ) -> SubmitResult:
        """Submit an OCO pair of limit entries, each with stop and target attached."""
        ...

    def cancel_order(self, order_id: int) -> bool:
        """Request cancellation. Fire-and-forget: confirm by polling later."""
        ...

    def flatten_position(self) -> bool:
        """Close the open position and cancel its protective orders."""
        ...

    def get_order(self, order_id: int) -> OrderLeg | None:
        """Look up one order. None means not found (treated as transient)."""
        ...

    def list_orders(self) -> list[OrderLeg]:
        """Snapshot of every order the account knows about."""
        ...

    def get_position(self) -> Position:
        ...
