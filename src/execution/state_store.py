"""
Durable state store: BotState as integer fields keyed by stable names (SQLite).

Read once at bootstrap, then read/written every tick. Whole-state
replacement per save, inside one transaction.
"""

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from scalper_core.contracts import BotState, TradeSide

logger = logging.getLogger("scalper.state")

KEY_BUY_LEG = "buy_leg_id"
KEY_SELL_LEG = "sell_leg_id"
KEY_ACTIVE_PARENT = "active_parent_id"
KEY_TRADE_SIDE = "trade_side"
KEY_BRACKET_ARMED = "bracket_armed"

STATE_KEYS = (KEY_BUY_LEG, KEY_SELL_LEG, KEY_ACTIVE_PARENT, KEY_TRADE_SIDE, KEY_BRACKET_ARMED)


def _to_fields(state: BotState) -> dict[str, int]:
    return {
        KEY_BUY_LEG: int(state.buy_leg_id),
        KEY_SELL_LEG: int(state.sell_leg_id),
        KEY_ACTIVE_PARENT: int(state.active_parent_id),
        KEY_TRADE_SIDE: int(state.trade_side.value),
        KEY_BRACKET_ARMED: 1 if state.bracket_armed else 0,
    }


def _from_fields(fields: dict[str, int]) -> BotState:
    return BotState(
        buy_leg_id=fields.get(KEY_BUY_LEG, 0),
        sell_leg_id=fields.get(KEY_SELL_LEG, 0),
        active_parent_id=fields.get(KEY_ACTIVE_PARENT, 0),
        trade_side=TradeSide(fields.get(KEY_TRADE_SIDE, 0)),
        bracket_armed=bool(fields.get(KEY_BRACKET_ARMED, 0)),
    )


class StateStore:
    """SQLite-backed key/value store of persisted strategy fields, one scope per symbol."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _conn(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self._path), timeout=10.0)

    def _init_schema(self) -> None:
        with self._conn() as c:
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS bot_state (
                    scope TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value INTEGER NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (scope, key)
                )
                """
            )

    def load(self, symbol: str) -> BotState:
        """Return the persisted state, or the zero state on first run."""
        with self._conn() as c:
            rows = c.execute(
                "SELECT key, value FROM bot_state WHERE scope = ?", (symbol,)
            ).fetchall()
        fields = {k: int(v) for k, v in rows if k in STATE_KEYS}
        try:
            return _from_fields(fields)
        except ValueError:
            logger.error("Unreadable persisted state for %s (%s); starting from zero", symbol, fields)
            return BotState()

    def save(self, symbol: str, state: BotState) -> None:
        ts = datetime.now(timezone.utc).isoformat()
        with self._conn() as c:
            c.executemany(
                "INSERT OR REPLACE INTO bot_state (scope, key, value, updated_at) VALUES (?, ?, ?, ?)",
                [(symbol, k, v, ts) for k, v in _to_fields(state).items()],
            )

    def reset(self, symbol: str) -> BotState:
        state = BotState()
        self.save(symbol, state)
        return state
