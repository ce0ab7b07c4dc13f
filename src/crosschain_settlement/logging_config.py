"""Structured logging with a per-settlement correlation id.

Every ``SettlementRouter.execute`` call binds a fresh settlement id so that the
log lines of one multi-step protocol run (approve, burn, attestation polls,
mint) can be grouped, even when several settlements run concurrently.
"""
from __future__ import annotations

import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

MASK_PATTERN = "***MASKED***"

settlement_id_var: ContextVar[Optional[str]] = ContextVar("settlement_id", default=None)
route_var: ContextVar[Optional[str]] = ContextVar("settlement_route", default=None)

_SENSITIVE_KEYS = ("private_key", "privatekey", "secret", "token", "signature", "authorization")

_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "message", "pathname", "process",
    "processName", "relativeCreated", "thread", "threadName", "exc_info",
    "exc_text", "stack_info", "taskName", "settlement_id", "route",
))


def mask_secret(value: Optional[str], show_chars: int = 4) -> str:
    """Mask a key or token, keeping a few characters at each end."""
    if not value or len(value) <= show_chars * 2:
        return MASK_PATTERN
    return f"{value[:show_chars]}...{value[-show_chars:]}"


def mask_sensitive_data(data: Any) -> Any:
    """Return a copy of ``data`` with sensitive dictionary values masked."""
    if isinstance(data, dict):
        masked = {}
        for key, value in data.items():
            key_lower = str(key).lower().replace("-", "_")
            if any(marker in key_lower for marker in _SENSITIVE_KEYS):
                masked[key] = MASK_PATTERN
            else:
                masked[key] = mask_sensitive_data(value)
        return masked
    if isinstance(data, (list, tuple)):
        return type(data)(mask_sensitive_data(item) for item in data)
    return data


class SettlementContextFilter(logging.Filter):
    """Adds the settlement id and chain route to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.settlement_id = settlement_id_var.get()
        record.route = route_var.get()
        return True


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        settlement_id = getattr(record, "settlement_id", None)
        if settlement_id:
            log_data["settlement_id"] = settlement_id
        route = getattr(record, "route", None)
        if route:
            log_data["route"] = route

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(mask_sensitive_data(log_data), default=str)


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure logging for processes embedding the engine.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON structured logging (True) or a plain format (False)
        log_file: Optional file path for logging output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - "
            "[%(settlement_id)s %(route)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(SettlementContextFilter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(StructuredFormatter())
        file_handler.addFilter(SettlementContextFilter())
        root_logger.addHandler(file_handler)


def generate_settlement_id() -> str:
    return f"stl_{uuid.uuid4().hex[:16]}"


@contextmanager
def settlement_context(
    source_chain: str,
    dest_chain: str,
    settlement_id: Optional[str] = None,
) -> Iterator[str]:
    """Bind a settlement id and route for the duration of one settlement."""
    settlement_id = settlement_id or generate_settlement_id()
    id_token = settlement_id_var.set(settlement_id)
    route_token = route_var.set(f"{source_chain}->{dest_chain}")
    try:
        yield settlement_id
    finally:
        route_var.reset(route_token)
        settlement_id_var.reset(id_token)


def get_settlement_id() -> Optional[str]:
    return settlement_id_var.get()


__all__ = [
    "MASK_PATTERN",
    "mask_secret",
    "mask_sensitive_data",
    "SettlementContextFilter",
    "StructuredFormatter",
    "configure_logging",
    "generate_settlement_id",
    "settlement_context",
    "get_settlement_id",
]
