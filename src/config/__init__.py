"""
Configuration loaders.

App config:       reads config.yaml, resolves env vars for secrets.
Strategy config:  reads scalper.default.json (or override), validates against JSON Schema.
"""

from config.loader import (
    AlertingConfig,
    AppConfig,
    BrokerConfig,
    DataConfig,
    JournalConfig,
    LoggingConfig,
    LogVerbosity,
    load_config,
)
from config.strategy_config import (
    FractionsConfig,
    StrategyConfig,
    StrategyConfigError,
    VolatilityConfig,
    WindowConfig,
    load_strategy_config,
)

__all__ = [
    # App config (YAML)
    "AlertingConfig",
    "AppConfig",
    "BrokerConfig",
    "DataConfig",
    "JournalConfig",
    "LoggingConfig",
    "LogVerbosity",
    "load_config",
    # Strategy config (JSON + schema)
    "FractionsConfig",
    "StrategyConfig",
    "StrategyConfigError",
    "VolatilityConfig",
    "WindowConfig",
    "load_strategy_config",
]
