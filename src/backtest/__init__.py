"""
Backtest: replay stored bars through the paper broker and the scalp engine.
"""

from backtest.runner import BacktestResult, BacktestTrade, run_backtest

__all__ = ["BacktestResult", "BacktestTrade", "run_backtest"]
