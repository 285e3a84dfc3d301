"""
Execution: broker contract, simulated OCO order book, durable bot state.
Restart-safe. No live capital.
"""

from execution.broker import BrokerAdapter, BrokerError
from execution.models import Fill, OrderLeg, OrderSide, OrderStatus, OrderType, Position, SubmitResult
from execution.paper_broker import PaperBroker
from execution.state_store import StateStore

__all__ = [
    "BrokerAdapter",
    "BrokerError",
    "Fill",
    "OrderLeg",
    "OrderSide",
    "OrderStatus",
    "OrderType",
    "PaperBroker",
    "Position",
    "StateStore",
    "SubmitResult",
]
