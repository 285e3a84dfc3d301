"""
Bars in, bars stored: provider fetchers, the SQLite bar store and the ingest step.

Only scalper_core.contracts.Bar crosses the boundary; scalper_core never imports data.
"""

from data.bar_store import BarStore
from data.fetcher import BarFetcher, FetchResult, ingest_bars

__all__ = [
    "BarFetcher",
    "BarStore",
    "FetchResult",
    "get_alpaca_fetcher",
    "ingest_bars",
]


def get_alpaca_fetcher(api_key: str, api_secret: str, *, feed: str = "iex"):
    """Imported on demand so commands that never fetch don't load alpaca-py."""
    from data.alpaca_fetcher import AlpacaBarFetcher

    return AlpacaBarFetcher(api_key, api_secret, feed=feed)
