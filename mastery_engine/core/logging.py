"""Structured JSON logging configuration.

Every line carries the request and learner it belongs to: the request
middleware binds them once, and the formatter copies them onto records
emitted anywhere below it, engine code included.
"""

import logging
import sys
from contextvars import ContextVar, Token
from typing import Any

from pythonjsonlogger.json import JsonFormatter

from mastery_engine.core.config import settings

# Logger namespaces configured by setup_logging
ENGINE_LOGGER = "mastery_engine.learning_engine"
AUDIT_LOGGER = "mastery_engine.audit"

_request_context: ContextVar[dict[str, str]] = ContextVar("request_context", default={})


def bind_request_context(request_id: str, user_id: str | None = None) -> Token:
    """Attach request/learner IDs to log lines emitted in this context."""
    context = {"request_id": request_id}
    if user_id is not None:
        context["user_id"] = user_id
    return _request_context.set(context)


def reset_request_context(token: Token) -> None:
    _request_context.reset(token)


def current_request_context() -> dict[str, str]:
    return dict(_request_context.get())


class CustomJsonFormatter(JsonFormatter):
    """JSON formatter with consistent fields plus request/learner context."""

    def add_fields(self, log_record: dict[str, Any], record: logging.LogRecord, message_dict: dict) -> None:
        """Add custom fields to log record."""
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["module"] = record.module
        log_record["function"] = record.funcName

        # Explicit `extra=` values win over the bound context
        for key, value in _request_context.get().items():
            log_record.setdefault(key, value)

        log_record.pop("asctime", None)


def setup_logging(level: str | None = None) -> None:
    """
    Configure application logging.

    The root logger gets one JSON stdout handler at `level` (default
    LOG_LEVEL). Engine loggers follow ENGINE_LOG_LEVEL when set. The
    reward audit logger stays at INFO so audit lines survive a quieter
    root level.
    """
    root_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)
    root_logger.handlers.clear()

    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(logger)s %(module)s %(function)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    engine_level = settings.ENGINE_LOG_LEVEL or logging.getLevelName(root_level)
    logging.getLogger(ENGINE_LOGGER).setLevel(engine_level)
    logging.getLogger(AUDIT_LOGGER).setLevel(logging.INFO)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)
