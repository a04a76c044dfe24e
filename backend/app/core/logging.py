"""Structured logging with correlation IDs and billing context.

Every charge submission and webhook delivery runs under one correlation id.
Services additionally bind the account, invoice and payment they are working
on, so one reconciliation can be followed across the submission path, the
gateway calls and the store writes.
"""

import json
import logging
import sys
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
billing_context_var: ContextVar[dict] = ContextVar("billing_context", default={})

# Fields a service may bind to the billing context
BILLING_CONTEXT_FIELDS = ("account_id", "invoice_id", "payment_id", "plan_type")

# Attributes every LogRecord has; anything else came in through ``extra``
_RECORD_ATTRIBUTES = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "correlation_id", "billing"}


def get_correlation_id() -> str:
    """Current correlation ID, generating one on first use in this context."""
    cid = correlation_id_var.get()
    if cid is None:
        cid = str(uuid.uuid4())
        correlation_id_var.set(cid)
    return cid


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    correlation_id_var.set(None)


def get_billing_context() -> dict:
    return dict(billing_context_var.get())


@contextmanager
def billing_context(**fields: Any) -> Iterator[dict]:
    """Bind billing identifiers to every record logged inside the block.

    Nested blocks extend the outer context; ``None`` values are not bound.

    Raises:
        ValueError: If a field is not a known billing context field
    """
    unknown = set(fields) - set(BILLING_CONTEXT_FIELDS)
    if unknown:
        raise ValueError(f"Unknown billing context fields: {sorted(unknown)}")

    merged = {**billing_context_var.get()}
    merged.update({k: str(v) for k, v in fields.items() if v is not None})
    token = billing_context_var.set(merged)
    try:
        yield merged
    finally:
        billing_context_var.reset(token)


class BillingContextFilter(logging.Filter):
    """Stamps the correlation id and bound billing context on each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        record.billing = get_billing_context()
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def __init__(self, include_stack_trace: bool = True):
        super().__init__()
        self.include_stack_trace = include_stack_trace

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
        }

        billing = getattr(record, "billing", None)
        if billing:
            log_data["billing"] = billing

        extra = self._extra_fields(record)
        if extra:
            log_data["extra"] = extra

        if record.levelno >= logging.WARNING:
            log_data["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, exc_tb = record.exc_info
            log_data["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
            }
            if self.include_stack_trace and exc_tb is not None:
                log_data["exception"]["stack_trace"] = traceback.format_exception(*record.exc_info)

        return json.dumps(log_data, default=str)

    @staticmethod
    def _extra_fields(record: logging.LogRecord) -> dict:
        fields = {}
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRIBUTES or key.startswith("_"):
                continue
            try:
                json.dumps(value)
                fields[key] = value
            except (TypeError, ValueError):
                fields[key] = str(value)
        return fields


class PlainFormatter(logging.Formatter):
    """Human readable format for scripts and local runs."""

    def __init__(self):
        super().__init__(
            "%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] - %(message)s"
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        billing = getattr(record, "billing", None)
        if billing:
            line += " " + " ".join(f"{k}={v}" for k, v in billing.items())
        return line


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_stack_trace: bool = True,
) -> None:
    """Set up application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON structured logging
        include_stack_trace: Include stack traces in error logs
    """
    log_level = getattr(logging, level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.addFilter(BillingContextFilter())
    console_handler.setFormatter(
        StructuredFormatter(include_stack_trace=include_stack_trace)
        if json_format
        else PlainFormatter()
    )
    root_logger.addHandler(console_handler)

    # Request and query logs are covered by the request middleware
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(max(log_level, logging.INFO))


def log_error(
    logger: logging.Logger,
    message: str,
    exception: Optional[Exception] = None,
    **extra: Any,
) -> None:
    """Log an error, attaching the exception's traceback when given."""
    if exception is not None:
        logger.error(message, exc_info=exception, extra=extra)
    else:
        logger.error(message, extra=extra)


def log_warning(logger: logging.Logger, message: str, **extra: Any) -> None:
    logger.warning(message, extra=extra)
