"""
Alpaca bar fetcher: implements BarFetcher using the alpaca-py SDK.

Free tier uses IEX data; SIP requires a paid subscription.
"""

import logging
from datetime import datetime, timezone

from scalper_core.contracts import Bar

from data.fetcher import FetchResult

logger = logging.getLogger(__name__)

_TIMEFRAME_MAP = {
    "1m": ("Minute", 1),
    "2m": ("Minute", 2),
    "5m": ("Minute", 5),
    "15m": ("Minute", 15),
    "30m": ("Minute", 30),
    "1h": ("Hour", 1),
}


def _parse_timeframe(tf_str: str):
    from alpaca.data.timeframe import TimeFrame, TimeFrameUnit

    if tf_str not in _TIMEFRAME_MAP:
        raise ValueError(f"Unsupported timeframe '{tf_str}'. Supported: {list(_TIMEFRAME_MAP)}")
    unit_str, amount = _TIMEFRAME_MAP[tf_str]
    return TimeFrame(amount, getattr(TimeFrameUnit, unit_str))


def _to_bar(raw, symbol: str, index: int) -> Bar:
    ts = raw.timestamp
    ts = ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts.astimezone(timezone.utc)
    return Bar(
        open=float(raw.open),
        high=float(raw.high),
        low=float(raw.low),
        close=float(raw.close),
        volume=int(raw.volume),
        timestamp=ts,
        symbol=symbol,
        bar_index=index,
    )


class AlpacaBarFetcher:
    """Intraday bars from the Alpaca Market Data API (StockHistoricalDataClient)."""

    def __init__(self, api_key: str, api_secret: str, *, feed: str = "iex") -> None:
        if not api_key or not api_secret:
            raise ValueError(
                "Alpaca API key and secret are required. "
                "Set APCA_API_KEY_ID and APCA_API_SECRET_KEY environment variables."
            )
        from alpaca.data.historical import StockHistoricalDataClient

        self._client = StockHistoricalDataClient(api_key, api_secret)
        self._feed = feed

    def fetch(
        self,
        symbol: str,
        timeframe: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> FetchResult:
        from alpaca.data.enums import DataFeed
        from alpaca.data.requests import StockBarsRequest

        request = StockBarsRequest(
            symbol_or_symbols=symbol,
            timeframe=_parse_timeframe(timeframe),
            start=start,
            end=end,
            limit=limit,
            feed=DataFeed(self._feed.lower()),
        )
        response = self._client.get_stock_bars(request)
        raw_bars = response.data.get(symbol, []) if hasattr(response, "data") else response.get(symbol, [])
        bars = [_to_bar(b, symbol, i) for i, b in enumerate(raw_bars)]
        logger.info("Fetched %d %s bars for %s", len(bars), timeframe, symbol)
        return FetchResult(
            bars=bars,
            symbol=symbol,
            timeframe=timeframe,
            next_cursor=getattr(response, "next_page_token", None),
        )
