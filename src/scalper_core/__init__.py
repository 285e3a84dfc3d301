"""
scalper-core: OCO bracket scalper order lifecycle.

Offset calculator, trading-window gate, order state machine and
reconciliation. The broker is reached only through
execution.broker.BrokerAdapter; persistence through a load/save store.
"""

from scalper_core.contracts import (
    Bar,
    BotPhase,
    BotState,
    OffsetPlan,
    TickResult,
    TradeSide,
    WindowPhase,
)
from scalper_core.offsets import bracket_prices, compute_offsets, round_to_tick

__all__ = [
    "Bar",
    "BotPhase",
    "BotState",
    "bracket_prices",
    "compute_offsets",
    "OffsetPlan",
    "round_to_tick",
    "TickResult",
    "TradeSide",
    "WindowPhase",
]
