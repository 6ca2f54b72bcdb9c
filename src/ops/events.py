from __future__ import annotations

import logging
import re
from collections import Counter, deque
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from threading import Lock
from typing import Any, Literal, TypedDict
from uuid import uuid4

EventLevel = Literal["info", "warning", "error"]

API_KEY_RE = re.compile(r"\bsk-[A-Za-z0-9_\-]{8,}\b")
BEARER_RE = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._\-]+")
SENSITIVE_KEYWORDS = {
    "api_key",
    "api-key",
    "apikey",
    "authorization",
    "token",
    "secret",
    "password",
}
REDACTED = "[REDACTED]"
_run_id_ctx: ContextVar[str | None] = ContextVar("run_id", default=None)


class OpsEvent(TypedDict):
    timestamp: str
    level: EventLevel
    component: str
    event_type: str
    message: str
    run_id: str | None
    payload: dict[str, Any]


def iso_now() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _is_sensitive_key(key: str) -> bool:
    lower = key.lower()
    return any(keyword in lower for keyword in SENSITIVE_KEYWORDS)


def redact_text(value: str) -> str:
    return BEARER_RE.sub(REDACTED, API_KEY_RE.sub(REDACTED, value))


def sanitize_value(value: Any, key_hint: str | None = None) -> Any:
    if key_hint and _is_sensitive_key(key_hint):
        return REDACTED
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return {key: sanitize_value(nested, key) for key, nested in value.items()}
    if isinstance(value, list):
        return [sanitize_value(item) for item in value]
    return value


def get_run_id() -> str | None:
    return _run_id_ctx.get()


def set_run_id(run_id: str) -> Token[str | None]:
    return _run_id_ctx.set(run_id)


def reset_run_id(token: Token[str | None]) -> None:
    _run_id_ctx.reset(token)


def new_run_id() -> str:
    return uuid4().hex


class RunDigest(TypedDict):
    run_id: str
    warnings: int
    errors: int
    event_types: dict[str, int]


class OpsEventBuffer:
    """Bounded in-memory log of pipeline events, newest last."""

    def __init__(self, max_size: int = 500) -> None:
        self._events: deque[OpsEvent] = deque(maxlen=max_size)
        self._lock = Lock()

    def add(self, event: OpsEvent) -> None:
        with self._lock:
            self._events.append(event)

    def _snapshot(self) -> list[OpsEvent]:
        with self._lock:
            return list(self._events)

    def recent(
        self,
        *,
        limit: int,
        level: EventLevel | None = None,
        event_type: str | None = None,
        run_id: str | None = None,
    ) -> list[OpsEvent]:
        """Newest-first events; ``event_type`` matches as a prefix."""
        filtered = [
            item
            for item in self._snapshot()
            if (level is None or item["level"] == level)
            and (event_type is None or item["event_type"].startswith(event_type))
            and (run_id is None or item["run_id"] == run_id)
        ]
        return list(reversed(filtered[-limit:]))

    def digest(self, run_id: str) -> RunDigest:
        """Warning/error totals and per-type counts for one pipeline run."""
        events = [item for item in self._snapshot() if item["run_id"] == run_id]
        return {
            "run_id": run_id,
            "warnings": sum(1 for item in events if item["level"] == "warning"),
            "errors": sum(1 for item in events if item["level"] == "error"),
            "event_types": dict(Counter(item["event_type"] for item in events)),
        }


ops_event_buffer = OpsEventBuffer()


class OpsEventHandler(logging.Handler):
    """Mirrors log records into the in-memory event buffer with secrets redacted."""

    def emit(self, record: logging.LogRecord) -> None:
        level_name = record.levelname.lower()
        level: EventLevel = "info"
        if level_name in {"warning", "error", "critical"}:
            level = "warning" if level_name == "warning" else "error"

        payload = sanitize_value(getattr(record, "ops_payload", {}))
        if not isinstance(payload, dict):
            payload = {"value": payload}

        ops_event_buffer.add(
            {
                "timestamp": iso_now(),
                "level": level,
                "component": record.name,
                "event_type": str(getattr(record, "event_type", record.name)),
                "message": redact_text(record.getMessage()),
                "run_id": getattr(record, "run_id", None) or get_run_id(),
                "payload": payload,
            }
        )


def configure_ops_event_logging(max_size: int) -> OpsEventBuffer:
    global ops_event_buffer
    ops_event_buffer = OpsEventBuffer(max_size=max_size)

    root_logger = logging.getLogger()
    if not any(isinstance(handler, OpsEventHandler) for handler in root_logger.handlers):
        root_logger.addHandler(OpsEventHandler())
    return ops_event_buffer
