"""Tests for CLI commands using click CliRunner. No network; uses fixture data."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from click.testing import CliRunner

from conftest import make_bar
from cli.main import cli
from config.strategy_config import DEFAULT_CONFIG_PATH
from data.bar_store import BarStore
from execution.paper_broker import PaperBroker
from execution.state_store import StateStore

T0 = datetime(2024, 1, 2, 15, 0, tzinfo=timezone.utc)


def _write_strategy(tmp_path: Path) -> Path:
    raw = json.loads(Path(DEFAULT_CONFIG_PATH).read_text())
    raw["enabled"] = True
    raw["tick_size"] = 0.25
    raw["volatility"] = {"source": "bar_range", "period": 14}
    raw["window"] = {"enabled": True, "start": "14:00", "stop": "20:00", "timezone": "UTC"}
    path = tmp_path / "strategy.json"
    path.write_text(json.dumps(raw))
    return path


@pytest.fixture
def tmp_config(tmp_path: Path) -> Path:
    """Write a temp config.yaml and an enabled strategy; bars are added per test."""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        f"""
symbol: SPY
timeframe: "5m"
strategy_path: "{_write_strategy(tmp_path)}"
data:
  source: alpaca
  bar_store_path: "{tmp_path / 'bars.db'}"
broker:
  order_book_path: "{tmp_path / 'orders.db'}"
  state_path: "{tmp_path / 'state.db'}"
journal:
  path: "{tmp_path / 'journal.jsonl'}"
  echo_stdout: false
logging:
  level: warn
"""
    )
    return config_path


@pytest.fixture
def with_bars(tmp_config: Path) -> Path:
    bars = [make_bar(100.0, ts=T0 + timedelta(minutes=5 * i)) for i in range(3)]
    BarStore(tmp_config.parent / "bars.db").write_bars("SPY", "5m", bars)
    return tmp_config


def _invoke(config: Path, *args: str):
    return CliRunner().invoke(cli, ["--config", str(config), *args])


def test_cli_tick_no_bars(tmp_config: Path) -> None:
    result = _invoke(tmp_config, "tick")
    assert result.exit_code == 0
    assert "No bars in store" in result.output


def test_cli_tick_submits_bracket(with_bars: Path) -> None:
    result = _invoke(with_bars, "tick")
    assert result.exit_code == 0, result.output
    assert "action=bracket_submitted" in result.output
    assert "Phase        : BRACKET_ARMED" in result.output

    tmp = with_bars.parent
    state = StateStore(tmp / "state.db").load("SPY")
    assert state.bracket_armed is True
    entries = [o for o in PaperBroker(tmp / "orders.db", "SPY").list_orders() if o.is_top_level]
    assert [o.price for o in entries] == [99.5, 100.5]

    journal = [json.loads(line) for line in (tmp / "journal.jsonl").read_text().splitlines()]
    assert journal[-1]["event"] == "bracket_submitted"


def test_cli_second_tick_waits(with_bars: Path) -> None:
    _invoke(with_bars, "tick")
    result = _invoke(with_bars, "tick")
    assert result.exit_code == 0
    assert "action=waiting_fill" in result.output


def test_cli_status(with_bars: Path) -> None:
    _invoke(with_bars, "tick")
    result = _invoke(with_bars, "status")
    assert result.exit_code == 0
    assert "--- Bot State ---" in result.output
    assert "Position     : flat" in result.output
    assert "Orders (6):" in result.output
    assert "No fills yet." in result.output


def test_cli_reconcile(with_bars: Path) -> None:
    _invoke(with_bars, "tick")
    result = _invoke(with_bars, "reconcile")
    assert result.exit_code == 0, result.output
    assert "--- Reconciliation ---" in result.output
    assert "BRACKET_ARMED" in result.output


def test_cli_flatten(with_bars: Path) -> None:
    _invoke(with_bars, "tick")
    result = _invoke(with_bars, "flatten", "--yes")
    assert result.exit_code == 0, result.output
    assert "Position     : flat" in result.output
    assert "Phase        : FLAT_READY" in result.output
    broker = PaperBroker(with_bars.parent / "orders.db", "SPY")
    assert not any(o.is_active for o in broker.list_orders())


def test_cli_flatten_requires_confirmation(with_bars: Path) -> None:
    _invoke(with_bars, "tick")
    result = CliRunner().invoke(cli, ["--config", str(with_bars), "flatten"], input="n\n")
    assert result.exit_code != 0
    broker = PaperBroker(with_bars.parent / "orders.db", "SPY")
    assert any(o.is_active for o in broker.list_orders())


def test_cli_backtest(with_bars: Path) -> None:
    result = _invoke(with_bars, "backtest")
    assert result.exit_code == 0, result.output
    assert "=== Backtest: SPY 5m ===" in result.output
    assert "Brackets      : 1" in result.output


def test_cli_backtest_no_bars(tmp_config: Path) -> None:
    result = _invoke(tmp_config, "backtest")
    assert result.exit_code == 0
    assert "No bars in store" in result.output


def test_cli_health_ok(with_bars: Path) -> None:
    result = _invoke(with_bars, "health")
    assert result.exit_code == 0, result.output
    assert "[OK] strategy_config" in result.output
    assert "Health: HEALTHY" in result.output


def test_cli_health_without_bars(tmp_config: Path) -> None:
    result = _invoke(tmp_config, "health")
    assert result.exit_code == 1
    assert "[FAIL] bars" in result.output
    assert "Health: UNHEALTHY" in result.output


def test_cli_health_missing_config(tmp_path: Path) -> None:
    result = _invoke(tmp_path / "missing.yaml", "health")
    assert result.exit_code == 1
    assert "[FAIL] config" in result.output


def test_cli_ingest(tmp_config: Path, monkeypatch) -> None:
    from data.fetcher import FetchResult

    class Fetcher:
        def fetch(self, symbol, timeframe, *, start=None, end=None, limit=None):
            bars = [make_bar(100.0, ts=T0 + timedelta(minutes=5 * i)) for i in range(4)]
            return FetchResult(bars=bars, symbol=symbol, timeframe=timeframe)

    monkeypatch.setattr("data.get_alpaca_fetcher", lambda key, secret: Fetcher())
    result = _invoke(tmp_config, "ingest", "--start", "2024-01-01", "--end", "2024-01-03")
    assert result.exit_code == 0, result.output
    assert "Stored 4 bars" in result.output
    assert "Total 5m bars in store: 4" in result.output
