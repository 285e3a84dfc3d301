"""
Strategy config loader: JSON file -> frozen dataclass tree, validated against JSON Schema.

Default values:      docs/config/scalper.default.json
Schema:              docs/config/scalper_config.schema.json

Per-symbol overrides: place a partial JSON file named ``scalper.{SYMBOL}.json``
next to the default config (e.g. ``docs/config/scalper.ES.json``). Only the
keys you want to override need to be present (typically ``tick_size`` and
``quantity``); they are deep-merged on top of the base config before schema
validation.

Usage:
    from config.strategy_config import load_strategy_config
    cfg = load_strategy_config()                    # loads default
    cfg = load_strategy_config(symbol="ES")         # merges scalper.ES.json if present
    cfg.fractions.bracket  # -> 0.5
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import time
from pathlib import Path
from typing import Any

import jsonschema

from scalper_core.trading_window import TradingWindow, parse_time_of_day
from scalper_core.volatility import VolatilitySource

logger = logging.getLogger("scalper.config")

# ---------------------------------------------------------------------------
# Project root detection (walk up from this file to find pyproject.toml)
# ---------------------------------------------------------------------------


def _find_project_root() -> Path:
    """Walk up from this file looking for pyproject.toml.

    When installed as a package, pyproject.toml won't exist; fall back to CWD.
    """
    candidate = Path(__file__).resolve().parent
    for _ in range(10):
        if (candidate / "pyproject.toml").exists():
            return candidate
        parent = candidate.parent
        if parent == candidate:
            break
        candidate = parent
    return Path.cwd()


_PROJECT_ROOT = _find_project_root()

DEFAULT_CONFIG_PATH = _PROJECT_ROOT / "docs" / "config" / "scalper.default.json"
DEFAULT_SCHEMA_PATH = _PROJECT_ROOT / "docs" / "config" / "scalper_config.schema.json"


# ---------------------------------------------------------------------------
# Frozen dataclass tree: mirrors scalper.default.json structure exactly
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FractionsConfig:
    bracket: float
    stop: float
    target: float


@dataclass(frozen=True)
class VolatilityConfig:
    source: VolatilitySource
    period: int = 14


@dataclass(frozen=True)
class WindowConfig:
    enabled: bool
    start: time
    stop: time
    timezone: str = "America/New_York"

    def trading_window(self) -> TradingWindow:
        return TradingWindow(start=self.start, stop=self.stop, enabled=self.enabled)


@dataclass(frozen=True)
class StrategyConfig:
    """Top-level strategy configuration."""
    version: str
    enabled: bool
    quantity: int
    tick_size: float
    fractions: FractionsConfig
    volatility: VolatilityConfig
    window: WindowConfig


# ---------------------------------------------------------------------------
# Deep merge for per-symbol overrides
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge *overrides* into a copy of *base*.

    - Dict values are merged recursively (override keys win).
    - Non-dict values in overrides replace the base value.
    - Keys in base that are absent from overrides are preserved.
    """
    merged = dict(base)
    for key, val in overrides.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(val, dict):
            merged[key] = _deep_merge(merged[key], val)
        else:
            merged[key] = val
    return merged


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------


class StrategyConfigError(Exception):
    """Raised when strategy config loading or validation fails."""


def _validate_schema(data: dict[str, Any], schema_path: Path) -> None:
    """Validate *data* against the JSON Schema at *schema_path*."""
    if not schema_path.exists():
        raise StrategyConfigError(f"Schema file not found: {schema_path}")
    with open(schema_path) as f:
        schema = json.load(f)
    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as exc:
        raise StrategyConfigError(f"Strategy config validation failed: {exc.message}") from exc


def _build_config(data: dict[str, Any]) -> StrategyConfig:
    """Convert a raw dict (already validated) into the frozen dataclass tree."""
    win_raw = data["window"]
    vol_raw = data.get("volatility", {})
    try:
        start = parse_time_of_day(win_raw["start"])
        stop = parse_time_of_day(win_raw["stop"])
    except ValueError as exc:
        raise StrategyConfigError(f"Invalid trading window: {exc}") from exc
    # Windows are intraday only; start > stop would never open.
    if win_raw["enabled"] and start >= stop:
        raise StrategyConfigError(
            f"Invalid trading window: start {start:%H:%M} must be before stop {stop:%H:%M}"
        )

    return StrategyConfig(
        version=data["version"],
        enabled=data["enabled"],
        quantity=data["quantity"],
        tick_size=data["tick_size"],
        fractions=FractionsConfig(
            bracket=data["fractions"]["bracket"],
            stop=data["fractions"]["stop"],
            target=data["fractions"]["target"],
        ),
        volatility=VolatilityConfig(
            source=VolatilitySource(vol_raw.get("source", "atr")),
            period=vol_raw.get("period", 14),
        ),
        window=WindowConfig(
            enabled=win_raw["enabled"],
            start=start,
            stop=stop,
            timezone=win_raw.get("timezone", "America/New_York"),
        ),
    )


def load_strategy_config(
    config_path: str | Path | None = None,
    schema_path: str | Path | None = None,
    symbol: str | None = None,
) -> StrategyConfig:
    """Load and validate strategy configuration.

    Parameters
    ----------
    config_path:
        Path to a strategy JSON config file.  Defaults to ``docs/config/scalper.default.json``.
    schema_path:
        Path to the JSON Schema file.  Defaults to ``docs/config/scalper_config.schema.json``.
    symbol:
        Optional instrument symbol.  When provided, ``scalper.{SYMBOL}.json``
        in the same directory as the base config is deep-merged on top of
        the base config before validation, if it exists.

    Raises
    ------
    StrategyConfigError
        If the file is missing, unparseable, or fails schema validation.
    """
    cfg_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    sch_path = Path(schema_path) if schema_path else DEFAULT_SCHEMA_PATH

    if not cfg_path.exists():
        raise StrategyConfigError(f"Strategy config file not found: {cfg_path}")

    try:
        with open(cfg_path) as f:
            data = json.load(f)
    except json.JSONDecodeError as exc:
        raise StrategyConfigError(f"Strategy config is not valid JSON: {exc}") from exc

    if symbol:
        override_path = cfg_path.parent / f"scalper.{symbol.upper()}.json"
        if override_path.exists():
            try:
                with open(override_path) as f:
                    overrides = json.load(f)
            except json.JSONDecodeError as exc:
                raise StrategyConfigError(
                    f"Per-symbol config {override_path.name} is not valid JSON: {exc}"
                ) from exc
            data = _deep_merge(data, overrides)
            logger.info("Loaded per-symbol config: %s", override_path.name)
        else:
            logger.debug("No per-symbol config found at %s, using defaults", override_path)

    _validate_schema(data, sch_path)

    return _build_config(data)
