"""
Structured journal: append-only JSON lines, one per engine event.

Every state transition, submission attempt and safety action the engine
reports lands here, so a session can be audited after the fact.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any


def _serialize(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.name if isinstance(obj.value, int) else obj.value
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_serialize(x) for x in obj]
    if hasattr(obj, "__dict__") and not isinstance(obj, type):
        return {k: _serialize(v) for k, v in vars(obj).items() if not k.startswith("_")}
    return obj


class JournalWriter:
    """Append-only journal. Each line is a JSON object with event type and payload."""

    def __init__(self, path: str | Path, *, echo_stdout: bool = False) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._echo = echo_stdout

    def _write(self, event_type: str, payload: dict) -> None:
        record = {"ts_utc": datetime.now(timezone.utc).isoformat(), "event": event_type, **payload}
        line = json.dumps(_serialize(record)) + "\n"
        with open(self._path, "a") as f:
            f.write(line)
        if self._echo:
            print(line.rstrip())

    def event(self, event_type: str, payload: dict) -> None:
        """Engine event callback: ScalpEngine(on_event=journal.event)."""
        self._write(event_type, payload)

    def trade(self, symbol: str, side: str, entry_price: float, exit_price: float, qty: int, pnl: float, exit_reason: str, **extra: Any) -> None:
        self._write(
            "trade",
            {"symbol": symbol, "side": side, "entry_price": entry_price, "exit_price": exit_price, "qty": qty, "pnl": pnl, "exit_reason": exit_reason, **extra},
        )

    def read(self, limit: int | None = None) -> list[dict]:
        """Most recent records, oldest first."""
        if not self._path.exists():
            return []
        with open(self._path) as f:
            records = [json.loads(line) for line in f if line.strip()]
        return records[-limit:] if limit else records
