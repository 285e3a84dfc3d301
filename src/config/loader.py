"""
Config loader: YAML file -> frozen dataclass tree.

API secrets resolved from environment variables (APCA_API_KEY_ID, APCA_API_SECRET_KEY).
Config file holds only non-secret values.
"""

import os
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path

import yaml


class LogVerbosity(IntEnum):
    """Ordered log verbosity: NONE < ERROR < WARN < INFO < DEBUG < VERBOSE."""

    NONE = 0
    ERROR = 1
    WARN = 2
    INFO = 3
    DEBUG = 4
    VERBOSE = 5

    @classmethod
    def parse(cls, value: "str | int | LogVerbosity") -> "LogVerbosity":
        if isinstance(value, int):
            return cls(value)
        name = str(value).strip().upper()
        if name == "WARNING":
            name = "WARN"
        try:
            return cls[name]
        except KeyError:
            raise ValueError(
                f"Unknown log level {value!r}; expected one of {[m.name.lower() for m in cls]}"
            ) from None


@dataclass(frozen=True)
class DataConfig:
    source: str
    bar_store_path: str
    api_key: str = ""
    api_secret: str = ""


@dataclass(frozen=True)
class BrokerConfig:
    order_book_path: str = "data/paper_orders.db"
    state_path: str = "data/bot_state.db"


@dataclass(frozen=True)
class JournalConfig:
    path: str = "data/journal.jsonl"
    echo_stdout: bool = False


@dataclass(frozen=True)
class AlertingConfig:
    structured_logs: bool = True
    webhook_url: str = ""


@dataclass(frozen=True)
class LoggingConfig:
    level: LogVerbosity = LogVerbosity.INFO


@dataclass(frozen=True)
class AppConfig:
    symbol: str
    timeframe: str
    data: DataConfig
    broker: BrokerConfig
    journal: JournalConfig
    alerting: AlertingConfig = AlertingConfig()
    logging: LoggingConfig = LoggingConfig()
    strategy_path: str | None = None


def load_config(path: str | Path = "config.yaml") -> AppConfig:
    """
    Load configuration from a YAML file.

    API keys are resolved from environment variables:
      - APCA_API_KEY_ID
      - APCA_API_SECRET_KEY
    These follow Alpaca's standard env var names.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ValueError(f"Config file must be a YAML mapping, got {type(raw).__name__}")

    data_raw = raw.get("data", {})
    data_cfg = DataConfig(
        source=data_raw.get("source", "alpaca"),
        bar_store_path=data_raw.get("bar_store_path", "data/bars.db"),
        api_key=os.environ.get("APCA_API_KEY_ID", ""),
        api_secret=os.environ.get("APCA_API_SECRET_KEY", ""),
    )

    b_raw = raw.get("broker", {})
    b_cfg = BrokerConfig(
        order_book_path=b_raw.get("order_book_path", "data/paper_orders.db"),
        state_path=b_raw.get("state_path", "data/bot_state.db"),
    )

    j_raw = raw.get("journal", {})
    j_cfg = JournalConfig(
        path=j_raw.get("path", "data/journal.jsonl"),
        echo_stdout=bool(j_raw.get("echo_stdout", False)),
    )

    a_raw = raw.get("alerting", {})
    a_cfg = AlertingConfig(
        structured_logs=bool(a_raw.get("structured_logs", True)),
        webhook_url=str(a_raw.get("webhook_url", "")),
    )

    l_raw = raw.get("logging", {})
    l_cfg = LoggingConfig(level=LogVerbosity.parse(l_raw.get("level", "info")))

    return AppConfig(
        symbol=raw.get("symbol", "SPY"),
        timeframe=raw.get("timeframe", "5m"),
        data=data_cfg,
        broker=b_cfg,
        journal=j_cfg,
        alerting=a_cfg,
        logging=l_cfg,
        strategy_path=raw.get("strategy_path"),
    )
