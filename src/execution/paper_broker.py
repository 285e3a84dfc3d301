"""
Paper broker: simulated OCO order book for one instrument, restart-safe (SQLite).

Implements execution.broker.BrokerAdapter. Orders, fills and the position
live in SQLite so a restarted process sees the same working orders it left
behind, which is exactly what reconciliation has to cope with.

Matching happens in on_bar(): resting limit entries fill when the bar
trades through them; attached stop/target children only become eligible on
the bar after their parent filled.
"""

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from scalper_core.contracts import Bar

from execution.broker import (
    ERR_BRACKET_EXISTS,
    ERR_INVALID_PRICE,
    ERR_INVALID_QUANTITY,
)
from execution.models import (
    Fill,
    OrderLeg,
    OrderSide,
    OrderStatus,
    OrderType,
    Position,
    SubmitResult,
)

logger = logging.getLogger("scalper.broker")

_ORDER_COLUMNS = "id, side, order_type, price, qty, status, parent_id, filled_qty, avg_fill_price"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _row_to_leg(row: tuple) -> OrderLeg:
    return OrderLeg(
        order_id=row[0],
        side=OrderSide(row[1]),
        order_type=OrderType(row[2]),
        price=row[3],
        quantity=row[4],
        status=OrderStatus(row[5]),
        parent_id=row[6],
        filled_quantity=row[7],
        avg_fill_price=row[8],
    )


class PaperBroker:
    """
    Simulated venue with native OCO brackets and attached stop/target orders.
    Single writer (one process).
    """

    def __init__(self, state_path: str | Path, symbol: str) -> None:
        self._path = Path(state_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._symbol = symbol
        self._init_schema()

    @property
    def symbol(self) -> str:
        return self._symbol

    def _conn(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self._path), timeout=10.0)

    def _init_schema(self) -> None:
        with self._conn() as c:
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS orders (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    symbol TEXT NOT NULL,
                    parent_id INTEGER NOT NULL DEFAULT 0,
                    oco_group INTEGER NOT NULL DEFAULT 0,
                    role TEXT NOT NULL,
                    side TEXT NOT NULL,
                    order_type TEXT NOT NULL,
                    price REAL NOT NULL,
                    price_offset REAL NOT NULL DEFAULT 0,
                    qty INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    filled_qty INTEGER NOT NULL DEFAULT 0,
                    avg_fill_price REAL NOT NULL DEFAULT 0,
                    ts_utc TEXT NOT NULL
                )
                """
            )
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS fills (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    order_id INTEGER NOT NULL,
                    symbol TEXT NOT NULL,
                    side TEXT NOT NULL,
                    qty INTEGER NOT NULL,
                    price REAL NOT NULL,
                    ts_utc TEXT NOT NULL,
                    reason TEXT NOT NULL
                )
                """
            )
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS positions (
                    symbol TEXT PRIMARY KEY,
                    qty INTEGER NOT NULL,
                    avg_price REAL NOT NULL,
                    mark REAL NOT NULL DEFAULT 0,
                    mark_ts TEXT,
                    bar_ts TEXT,
                    updated_at TEXT NOT NULL
                )
                """
            )
            c.execute(
                "INSERT OR IGNORE INTO positions (symbol, qty, avg_price, mark, updated_at) VALUES (?, 0, 0, 0, ?)",
                (self._symbol, _utc_now()),
            )

    # ------------------------------------------------------------------
    # BrokerAdapter
    # ------------------------------------------------------------------

    def submit_bracket(
        self,
        quantity: int,
        buy_price: float,
        sell_price: float,
        stop_offset: float,
        target_offset: float,
    ) -> SubmitResult:
        if quantity <= 0:
            return SubmitResult(error_code=ERR_INVALID_QUANTITY)
        if buy_price <= 0 or sell_price <= 0 or buy_price >= sell_price:
            return SubmitResult(error_code=ERR_INVALID_PRICE)
        if stop_offset <= 0 or target_offset <= 0:
            return SubmitResult(error_code=ERR_INVALID_PRICE)

        ts = _utc_now()
        with self._conn() as c:
            working = c.execute(
                "SELECT COUNT(*) FROM orders WHERE symbol = ? AND parent_id = 0 AND status = ?",
                (self._symbol, OrderStatus.OPEN.value),
            ).fetchone()[0]
            if working:
                return SubmitResult(error_code=ERR_BRACKET_EXISTS)

            buy_id = self._insert(c, "entry", OrderSide.BUY, OrderType.LIMIT, buy_price, quantity, ts=ts)
            c.execute("UPDATE orders SET oco_group = ? WHERE id = ?", (buy_id, buy_id))
            sell_id = self._insert(c, "entry", OrderSide.SELL, OrderType.LIMIT, sell_price, quantity, oco_group=buy_id, ts=ts)

            # Long protection below/above the buy entry; short protection mirrored.
            self._insert(c, "stop", OrderSide.SELL, OrderType.STOP, buy_price - stop_offset, quantity,
                         parent_id=buy_id, price_offset=stop_offset, ts=ts)
            self._insert(c, "target", OrderSide.SELL, OrderType.LIMIT, buy_price + target_offset, quantity,
                         parent_id=buy_id, price_offset=target_offset, ts=ts)
            self._insert(c, "stop", OrderSide.BUY, OrderType.STOP, sell_price + stop_offset, quantity,
                         parent_id=sell_id, price_offset=stop_offset, ts=ts)
            self._insert(c, "target", OrderSide.BUY, OrderType.LIMIT, sell_price - target_offset, quantity,
                         parent_id=sell_id, price_offset=target_offset, ts=ts)

        logger.info("Bracket accepted: buy #%d @ %.5f  sell #%d @ %.5f", buy_id, buy_price, sell_id, sell_price)
        return SubmitResult(buy_leg_id=buy_id, sell_leg_id=sell_id)

    def cancel_order(self, order_id: int) -> bool:
        with self._conn() as c:
            row = c.execute(
                "SELECT status FROM orders WHERE id = ? AND symbol = ?", (order_id, self._symbol)
            ).fetchone()
            if not row or row[0] != OrderStatus.OPEN.value:
                return False
            self._cancel(c, order_id)
            self._cancel_children(c, order_id)
        return True

    def flatten_position(self) -> bool:
        with self._conn() as c:
            qty, mark, mark_ts = c.execute(
                "SELECT qty, mark, mark_ts FROM positions WHERE symbol = ?", (self._symbol,)
            ).fetchone()
            ts = mark_ts or _utc_now()
            c.execute(
                "UPDATE orders SET status = ? WHERE symbol = ? AND parent_id != 0 AND status = ?",
                (OrderStatus.CANCELED.value, self._symbol, OrderStatus.OPEN.value),
            )
            if qty != 0:
                side = OrderSide.SELL if qty > 0 else OrderSide.BUY
                c.execute(
                    "INSERT INTO fills (order_id, symbol, side, qty, price, ts_utc, reason) VALUES (0, ?, ?, ?, ?, ?, 'flatten')",
                    (self._symbol, side.value, abs(qty), mark, ts),
                )
                c.execute(
                    "UPDATE positions SET qty = 0, avg_price = 0, updated_at = ? WHERE symbol = ?",
                    (ts, self._symbol),
                )
                logger.info("Flattened %d @ %.5f", qty, mark)
        return True

    def get_order(self, order_id: int) -> OrderLeg | None:
        with self._conn() as c:
            row = c.execute(
                f"SELECT {_ORDER_COLUMNS} FROM orders WHERE id = ? AND symbol = ?",
                (order_id, self._symbol),
            ).fetchone()
        return _row_to_leg(row) if row else None

    def list_orders(self) -> list[OrderLeg]:
        with self._conn() as c:
            rows = c.execute(
                f"SELECT {_ORDER_COLUMNS} FROM orders WHERE symbol = ? ORDER BY id ASC",
                (self._symbol,),
            ).fetchall()
        return [_row_to_leg(r) for r in rows]

    def get_position(self) -> Position:
        with self._conn() as c:
            qty, avg_price = c.execute(
                "SELECT qty, avg_price FROM positions WHERE symbol = ?", (self._symbol,)
            ).fetchone()
        return Position(quantity=qty, avg_price=avg_price)

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------

    def set_mark(self, price: float) -> None:
        """Last traded price; flatten_position() fills here."""
        with self._conn() as c:
            c.execute(
                "UPDATE positions SET mark = ?, mark_ts = ? WHERE symbol = ?", (price, _utc_now(), self._symbol)
            )

    def set_order_status(self, order_id: int, status: OrderStatus) -> None:
        """Operator/test hook: force a venue-side status change (reject, cancel)."""
        with self._conn() as c:
            c.execute("UPDATE orders SET status = ? WHERE id = ?", (OrderStatus(status).value, order_id))
            if status != OrderStatus.OPEN:
                parent = c.execute("SELECT parent_id FROM orders WHERE id = ?", (order_id,)).fetchone()
                if parent and parent[0] == 0 and status != OrderStatus.FILLED:
                    self._cancel_children(c, order_id)

    def on_bar(self, bar: Bar) -> list[Fill]:
        """Match working orders against *bar*. Returns fills generated by this bar."""
        ts = _utc(bar.timestamp).isoformat()
        fills: list[Fill] = []
        with self._conn() as c:
            fills.extend(self._match_children(c, bar, ts))
            fills.extend(self._match_entries(c, bar, ts))
            c.execute(
                "UPDATE positions SET mark = ?, mark_ts = ?, bar_ts = ? WHERE symbol = ?",
                (bar.close, ts, ts, self._symbol),
            )
        return fills

    def last_bar_time(self) -> datetime | None:
        """Timestamp of the last bar passed to on_bar(), or None if none yet."""
        with self._conn() as c:
            row = c.execute("SELECT bar_ts FROM positions WHERE symbol = ?", (self._symbol,)).fetchone()
        if not row or not row[0]:
            return None
        return datetime.fromisoformat(row[0].replace("Z", "+00:00"))

    def list_fills(self, limit: int = 100) -> list[Fill]:
        with self._conn() as c:
            rows = c.execute(
                "SELECT id, order_id, side, qty, price, ts_utc, reason FROM fills WHERE symbol = ? ORDER BY id DESC LIMIT ?",
                (self._symbol, limit),
            ).fetchall()
        return [
            Fill(
                id=r[0],
                order_id=r[1],
                side=OrderSide(r[2]),
                qty=r[3],
                price=r[4],
                timestamp=datetime.fromisoformat(r[5].replace("Z", "+00:00")),
                reason=r[6],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _insert(
        self,
        c: sqlite3.Connection,
        role: str,
        side: OrderSide,
        order_type: OrderType,
        price: float,
        qty: int,
        *,
        parent_id: int = 0,
        oco_group: int = 0,
        price_offset: float = 0.0,
        ts: str,
    ) -> int:
        cur = c.execute(
            """INSERT INTO orders (symbol, parent_id, oco_group, role, side, order_type, price, price_offset, qty, status, ts_utc)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (self._symbol, parent_id, oco_group, role, side.value, order_type.value, price, price_offset, qty,
             OrderStatus.OPEN.value, ts),
        )
        return int(cur.lastrowid)

    def _cancel(self, c: sqlite3.Connection, order_id: int) -> None:
        c.execute(
            "UPDATE orders SET status = ? WHERE id = ? AND status = ?",
            (OrderStatus.CANCELED.value, order_id, OrderStatus.OPEN.value),
        )

    def _cancel_children(self, c: sqlite3.Connection, parent_id: int) -> None:
        c.execute(
            "UPDATE orders SET status = ? WHERE parent_id = ? AND status = ?",
            (OrderStatus.CANCELED.value, parent_id, OrderStatus.OPEN.value),
        )

    def _record_fill(
        self,
        c: sqlite3.Connection,
        order_id: int,
        side: OrderSide,
        qty: int,
        price: float,
        ts: str,
        reason: str,
    ) -> Fill:
        c.execute(
            "UPDATE orders SET status = ?, filled_qty = ?, avg_fill_price = ? WHERE id = ?",
            (OrderStatus.FILLED.value, qty, price, order_id),
        )
        cur = c.execute(
            "INSERT INTO fills (order_id, symbol, side, qty, price, ts_utc, reason) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (order_id, self._symbol, side.value, qty, price, ts, reason),
        )
        return Fill(
            id=int(cur.lastrowid),
            order_id=order_id,
            side=side,
            qty=qty,
            price=price,
            timestamp=datetime.fromisoformat(ts),
            reason=reason,
        )

    def _match_entries(self, c: sqlite3.Connection, bar: Bar, ts: str) -> list[Fill]:
        rows = c.execute(
            """SELECT id, side, price, qty, oco_group FROM orders
               WHERE symbol = ? AND parent_id = 0 AND status = ? AND order_type = ?
               ORDER BY CASE side WHEN 'BUY' THEN 0 ELSE 1 END, id ASC""",
            (self._symbol, OrderStatus.OPEN.value, OrderType.LIMIT.value),
        ).fetchall()
        fills: list[Fill] = []
        filled_groups: set[int] = set()
        for order_id, side_raw, price, qty, group in rows:
            if group in filled_groups:
                continue
            side = OrderSide(side_raw)
            if side == OrderSide.BUY and bar.low <= price:
                fill_price = min(bar.open, price)
            elif side == OrderSide.SELL and bar.high >= price:
                fill_price = max(bar.open, price)
            else:
                continue

            fills.append(self._record_fill(c, order_id, side, qty, fill_price, ts, "entry"))
            filled_groups.add(group)

            # OCO: the sibling entry and its dormant children go away.
            for (sibling_id,) in c.execute(
                "SELECT id FROM orders WHERE oco_group = ? AND id != ? AND status = ?",
                (group, order_id, OrderStatus.OPEN.value),
            ).fetchall():
                self._cancel(c, sibling_id)
                self._cancel_children(c, sibling_id)

            # Re-anchor protection on the actual fill price.
            sign = 1 if side == OrderSide.BUY else -1
            c.execute(
                """UPDATE orders SET price = ? - ? * price_offset
                   WHERE parent_id = ? AND role = 'stop' AND status = ?""",
                (fill_price, sign, order_id, OrderStatus.OPEN.value),
            )
            c.execute(
                """UPDATE orders SET price = ? + ? * price_offset
                   WHERE parent_id = ? AND role = 'target' AND status = ?""",
                (fill_price, sign, order_id, OrderStatus.OPEN.value),
            )
            signed_qty = qty if side == OrderSide.BUY else -qty
            c.execute(
                "UPDATE positions SET qty = qty + ?, avg_price = ?, updated_at = ? WHERE symbol = ?",
                (signed_qty, fill_price, ts, self._symbol),
            )
            logger.info("Entry filled: #%d %s %d @ %.5f", order_id, side.value, qty, fill_price)
        return fills

    def _match_children(self, c: sqlite3.Connection, bar: Bar, ts: str) -> list[Fill]:
        rows = c.execute(
            """SELECT ch.id, ch.parent_id, ch.role, ch.side, ch.price, ch.qty FROM orders ch
               JOIN orders p ON p.id = ch.parent_id
               WHERE ch.symbol = ? AND ch.status = ? AND p.status = ?
               ORDER BY ch.parent_id, CASE ch.role WHEN 'stop' THEN 0 ELSE 1 END""",
            (self._symbol, OrderStatus.OPEN.value, OrderStatus.FILLED.value),
        ).fetchall()
        fills: list[Fill] = []
        done_parents: set[int] = set()
        for order_id, parent_id, role, side_raw, price, qty in rows:
            if parent_id in done_parents:
                continue
            side = OrderSide(side_raw)
            fill_price = None
            if role == "stop":
                if side == OrderSide.SELL and bar.low <= price:
                    fill_price = min(bar.open, price)
                elif side == OrderSide.BUY and bar.high >= price:
                    fill_price = max(bar.open, price)
            else:
                if side == OrderSide.SELL and bar.high >= price:
                    fill_price = max(bar.open, price)
                elif side == OrderSide.BUY and bar.low <= price:
                    fill_price = min(bar.open, price)
            if fill_price is None:
                continue

            fills.append(self._record_fill(c, order_id, side, qty, fill_price, ts, role))
            done_parents.add(parent_id)
            c.execute(
                "UPDATE orders SET status = ? WHERE parent_id = ? AND id != ? AND status = ?",
                (OrderStatus.CANCELED.value, parent_id, order_id, OrderStatus.OPEN.value),
            )
            signed_qty = qty if side == OrderSide.BUY else -qty
            c.execute(
                "UPDATE positions SET qty = qty + ?, updated_at = ? WHERE symbol = ?",
                (signed_qty, ts, self._symbol),
            )
            c.execute(
                "UPDATE positions SET avg_price = 0 WHERE symbol = ? AND qty = 0",
                (self._symbol,),
            )
            logger.info("Exit filled: #%d (%s of #%d) %d @ %.5f", order_id, role, parent_id, qty, fill_price)
        return fills
