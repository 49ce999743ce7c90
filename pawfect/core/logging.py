"""
Structured logging with request and actor correlation.

Features:
- JSON logs in production, key=value logs in development.
- request_id and actor_id bound per task through context variables.
- log_event helper for entitlement/billing events with safe truncation.
"""

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Iterator, Optional

LOGGER_NAME = "pawfect"

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
actor_id_ctx_var: ContextVar[Optional[str]] = ContextVar("actor_id", default=None)

_CONTEXT_FIELDS = ("request_id", "actor_id")

# Attributes every LogRecord carries; anything else came in through extra=
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime", *_CONTEXT_FIELDS}


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    """Fetch the current request_id from context (if any)."""
    rid = request_id_ctx_var.get()
    return rid if rid is not None else default


def get_actor_id() -> Optional[str]:
    """Admin or system actor the current task acts for."""
    return actor_id_ctx_var.get()


@contextmanager
def bound_context(*, request_id: Optional[str] = None, actor_id: Optional[str] = None) -> Iterator[None]:
    """Bind correlation ids for the duration of a block (one request, one job)."""
    rid_token = request_id_ctx_var.set(request_id)
    actor_token = actor_id_ctx_var.set(actor_id)
    try:
        yield
    finally:
        actor_id_ctx_var.reset(actor_token)
        request_id_ctx_var.reset(rid_token)


def _format_timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace('+00:00', 'Z')


def _extra_fields(record: logging.LogRecord) -> Dict[str, object]:
    return {
        k: v
        for k, v in vars(record).items()
        if k not in _RESERVED_ATTRS and not k.startswith("_") and v is not None
    }


class ContextFilter(logging.Filter):
    """Inject request_id and actor_id into log records that lack them."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        if getattr(record, "actor_id", None) is None:
            record.actor_id = get_actor_id()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": _format_timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in _CONTEXT_FIELDS:
            payload[field] = getattr(record, field, None)
        payload.update(_extra_fields(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ctx = " ".join(
            f"{field}={getattr(record, field)}" for field in _CONTEXT_FIELDS if getattr(record, field, None)
        )
        ctx_part = f" [{ctx}]" if ctx else ""
        fields = _extra_fields(record)
        field_part = ""
        if fields:
            field_part = " " + " ".join(f"{k}={v}" for k, v in sorted(fields.items()))
        return f"{_format_timestamp(record)} {record.levelname} [{LOGGER_NAME}]{ctx_part} {record.getMessage()}{field_part}"


def configure_logging(env: str = "development", level: int = logging.INFO) -> None:
    """Install the environment's formatter on the package logger."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    formatter: logging.Formatter = JsonFormatter() if env.lower() == "production" else PrettyFormatter()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())

    logger.handlers = [handler]
    logger.propagate = True


def _safe_truncate(value, limit: int = 500):
    if value is None or isinstance(value, (bool, int, float)):
        return value
    try:
        text = str(value)
    except Exception:
        return "<unserializable>"
    if len(text) <= limit:
        return text
    return text[:limit] + "...<truncated>"


def log_event(
    level: str,
    msg: str,
    *,
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    subscription_id: Optional[str] = None,
    event_type: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, object]] = None,
):
    """Emit one structured entitlement/billing event on the package logger."""

    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        # Library use without startup(); tests land here too
        configure_logging(os.getenv("ENV", "development"))

    payload = {
        "request_id": request_id or get_request_id(),
        "actor_id": get_actor_id(),
        "user_id": user_id,
        "subscription_id": subscription_id,
        "event_type": event_type,
        "error_code": error_code,
    }
    for k, v in (extra or {}).items():
        if k in payload:
            k = f"extra_{k}"
        payload[k] = _safe_truncate(v)

    log_fn = getattr(logger, level, logger.info)
    log_fn(msg, extra=payload)
