"""
Structured JSON event logger for container observability.

Emits one JSON object per line to stderr. Events are designed to be
parsed by log aggregators (Grafana Loki, CloudWatch, ELK).

Optional webhook: when configured, safety-relevant events (bracket_submitted,
forced_flatten, consistency_error, error) are POSTed to the URL.
"""

from __future__ import annotations

import json
import logging
import sys
import urllib.request
from datetime import datetime, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger("scalper.events")

ALERT_EVENTS = frozenset({
    "bracket_submitted",
    "forced_flatten",
    "consistency_error",
    "error",
})


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.name if isinstance(value.value, int) else value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


class StructuredEventLogger:
    """Emit structured JSON events to stderr and optional webhook."""

    def __init__(
        self,
        symbol: str,
        *,
        enabled: bool = True,
        webhook_url: str = "",
        stream: Any = None,
    ) -> None:
        self._symbol = symbol
        self._enabled = enabled
        self._webhook_url = webhook_url.strip()
        self._stream = stream or sys.stderr

    def _emit(self, event_type: str, **fields: Any) -> dict:
        record = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "event": event_type,
            "symbol": self._symbol,
            **{k: _plain(v) for k, v in fields.items()},
        }
        if self._enabled:
            self._stream.write(json.dumps(record) + "\n")
            self._stream.flush()

        if self._webhook_url and event_type in ALERT_EVENTS:
            self._post_webhook(record)

        return record

    def _post_webhook(self, record: dict) -> None:
        try:
            data = json.dumps(record).encode("utf-8")
            req = urllib.request.Request(
                self._webhook_url,
                data=data,
                headers={"Content-Type": "application/json"},
                method="POST",
            )
            urllib.request.urlopen(req, timeout=5)
        except Exception as exc:
            logger.warning("Webhook POST failed: %s", exc)

    def engine_event(self, event_type: str, payload: dict) -> dict:
        """ScalpEngine on_event callback."""
        fields = {k: v for k, v in payload.items() if k != "symbol"}
        return self._emit(event_type, **fields)

    def cycle_start(self, bar_close: str, bars_ingested: int) -> dict:
        return self._emit("cycle_start", bar_close=bar_close, bars_ingested=bars_ingested)

    def cycle_complete(self, window: str, action: str, phase: str) -> dict:
        return self._emit("cycle_complete", window=window, action=action, phase=phase)

    def window_closed(self, next_open: str, wait_hours: float) -> dict:
        return self._emit("window_closed", next_open=next_open, wait_hours=round(wait_hours, 1))

    def error(self, message: str, detail: str = "") -> dict:
        return self._emit("error", message=message, detail=detail)

    def shutdown(self, cycles: int) -> dict:
        return self._emit("shutdown", cycles=cycles)
