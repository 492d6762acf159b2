"""
Structured Logging
==================

JSON log lines on stdout, one object per record.

Every record carries a UTC timestamp and the deployment environment. Records
emitted while handling a webhook or running a ticket's pipeline also carry
the ``correlation_id`` of the inbound request, so a single ticket can be
followed from acknowledgment to Slack delivery.

Credentials never reach the log stream: values under keys that look like
secrets are replaced before serialization.

Usage:
    from triage_relay.shared.infrastructure.logging import get_context_logger

    log = get_context_logger(__name__, ticket.request_id)
    log.info("Triage pipeline started", extra={"ticket_id": ticket.ticket_id})
"""

import logging
import sys
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, Optional, Union

from pythonjsonlogger import jsonlogger

REDACTED = "***REDACTED***"

QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "uvicorn.error": logging.ERROR,
    "sqlalchemy.engine": logging.WARNING,
    "httpx": logging.WARNING,
    "apscheduler": logging.WARNING,
}

_environment = "unknown"


def _is_sensitive(key: str) -> bool:
    # token counters (prompt_tokens, completion_tokens) stay visible
    key = key.lower()
    if "password" in key or "api_key" in key or "secret" in key:
        return True
    return "token" in key and "tokens" not in key


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Adds timestamp, environment and correlation id; redacts secrets."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        log_record["environment"] = _environment

        correlation_id = getattr(record, "correlation_id", None)
        if correlation_id:
            log_record["correlation_id"] = correlation_id

        for key, value in list(log_record.items()):
            if isinstance(value, str) and _is_sensitive(key):
                log_record[key] = REDACTED


def setup_logging(level: str = "INFO", environment: str = "development") -> None:
    """
    Route all records through a single stdout handler with JSON output.

    Replaces any handlers already attached to the root logger, so calling
    it again (e.g. on reload) does not duplicate lines.
    """
    global _environment
    _environment = environment

    numeric_level = logging.getLevelName(level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CustomJsonFormatter("%(asctime)s %(name)s %(levelname)s %(message)s"))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(numeric_level)

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class _MergingAdapter(logging.LoggerAdapter):
    """LoggerAdapter that keeps per-call ``extra`` instead of replacing it."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_context_logger(
    name: str,
    correlation_id: Optional[str] = None
) -> Union[logging.Logger, logging.LoggerAdapter]:
    """Logger that stamps ``correlation_id`` on every record it emits."""
    logger = get_logger(name)
    if not correlation_id:
        return logger
    return _MergingAdapter(logger, {"correlation_id": correlation_id})


@contextmanager
def log_latency(logger, operation: str, **context: Any) -> Iterator[None]:
    """
    Log how long the wrapped block took, whether or not it raised.

    Emits ``"<operation> completed"`` with ``latency_ms`` and ``context``.
    """
    started = time.perf_counter()
    try:
        yield
    finally:
        logger.info(
            f"{operation} completed",
            extra={
                "operation": operation,
                "latency_ms": round((time.perf_counter() - started) * 1000, 2),
                **context,
            },
        )
