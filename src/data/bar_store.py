"""
Persist and load OHLCV bars (SQLite). Timestamps in UTC.

The engine evaluates the last stored bar; the volatility series is built
from the trailing window returned by get_bars(limit=...).
"""

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

from scalper_core.contracts import Bar


def _utc_ts(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


class BarStore:
    """SQLite-backed bar storage keyed by (symbol, timeframe, ts_utc)."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _conn(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self._path))

    def _init_schema(self) -> None:
        with self._conn() as c:
            c.execute(
                """
                CREATE TABLE IF NOT EXISTS bars (
                    symbol TEXT NOT NULL,
                    timeframe TEXT NOT NULL,
                    ts_utc TEXT NOT NULL,
                    open REAL NOT NULL,
                    high REAL NOT NULL,
                    low REAL NOT NULL,
                    close REAL NOT NULL,
                    volume INTEGER NOT NULL,
                    PRIMARY KEY (symbol, timeframe, ts_utc)
                )
                """
            )

    def write_bars(self, symbol: str, timeframe: str, bars: Sequence[Bar]) -> int:
        """Upsert bars. Returns the number written."""
        rows = [
            (symbol, timeframe, _utc_ts(b.timestamp).isoformat(), b.open, b.high, b.low, b.close, b.volume)
            for b in bars
        ]
        with self._conn() as c:
            c.executemany(
                """
                INSERT OR REPLACE INTO bars (symbol, timeframe, ts_utc, open, high, low, close, volume)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
        return len(rows)

    def get_bars(
        self,
        symbol: str,
        timeframe: str,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> list[Bar]:
        """Bars in ascending time order. With *limit*, the most recent *limit* bars."""
        q = "SELECT ts_utc, open, high, low, close, volume FROM bars WHERE symbol = ? AND timeframe = ?"
        params: list = [symbol, timeframe]
        if since is not None:
            q += " AND ts_utc >= ?"
            params.append(_utc_ts(since).isoformat())
        if until is not None:
            q += " AND ts_utc <= ?"
            params.append(_utc_ts(until).isoformat())
        q += " ORDER BY ts_utc DESC"
        if limit is not None:
            q += " LIMIT ?"
            params.append(limit)
        with self._conn() as c:
            rows = c.execute(q, params).fetchall()
        rows.reverse()
        return [
            Bar(
                open=o,
                high=h,
                low=lo,
                close=cl,
                volume=vol,
                timestamp=_utc_ts(datetime.fromisoformat(ts.replace("Z", "+00:00"))),
                symbol=symbol,
                bar_index=i,
            )
            for i, (ts, o, h, lo, cl, vol) in enumerate(rows)
        ]

    def count_bars(self, symbol: str, timeframe: str) -> int:
        with self._conn() as c:
            row = c.execute(
                "SELECT COUNT(*) FROM bars WHERE symbol = ? AND timeframe = ?",
                (symbol, timeframe),
            ).fetchone()
        return row[0] if row else 0
