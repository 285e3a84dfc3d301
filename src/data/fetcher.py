"""
Bar source contract and the ingest step shared by `scalper ingest` and the live loop.

The scalper only needs recent OHLCV to build its range series, so a
fetch is always a bounded [start, end] window that gets upserted into
the bar store.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

from scalper_core.contracts import Bar

if TYPE_CHECKING:
    from data.bar_store import BarStore

logger = logging.getLogger("scalper.data")


@dataclass
class FetchResult:
    bars: list[Bar]
    symbol: str
    timeframe: str
    next_cursor: str | None = None

    @property
    def first_ts(self) -> datetime | None:
        return self.bars[0].timestamp if self.bars else None

    @property
    def last_ts(self) -> datetime | None:
        return self.bars[-1].timestamp if self.bars else None


class BarFetcher(Protocol):
    """Implement per provider. Timestamps must come back in UTC."""

    def fetch(
        self,
        symbol: str,
        timeframe: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> FetchResult:
        ...


def ingest_bars(
    fetcher: BarFetcher,
    store: "BarStore",
    symbol: str,
    timeframe: str,
    start: datetime,
    end: datetime,
) -> FetchResult:
    """Fetch [start, end] and upsert into *store*. Returns what the provider sent."""
    if start >= end:
        raise ValueError(f"ingest window is empty: start {start.isoformat()} >= end {end.isoformat()}")
    result = fetcher.fetch(symbol, timeframe, start=start, end=end)
    if result.bars:
        store.write_bars(symbol, timeframe, result.bars)
        logger.info("Ingested %d %s %s bars (%s -> %s)", len(result.bars), symbol, timeframe,
                    result.first_ts.isoformat(), result.last_ts.isoformat())
    else:
        logger.warning("No %s %s bars returned for %s -> %s", symbol, timeframe, start.isoformat(), end.isoformat())
    return result
