"""JSON-lines logging for the ledger, with per-operation ledger context."""

from __future__ import annotations

import inspect
import json
import logging
import sys
from contextlib import contextmanager
from typing import Any, Dict, Iterator, TextIO
from uuid import UUID

from loguru import logger
from opentelemetry import trace

from loyalty_ledger import __version__
from loyalty_ledger.core.settings import settings

# Attributes present on every stdlib record; anything else arrived through ``extra=``.
_STANDARD_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}

_QUIET_LOGGERS = {
    "sqlalchemy.engine": logging.WARNING,
    "aiosqlite": logging.WARNING,
}


class InterceptHandler(logging.Handler):
    """Send SQLAlchemy and alembic records through the loguru sink."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = inspect.currentframe(), 0
        while frame is not None and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        extra = {key: value for key, value in record.__dict__.items() if key not in _STANDARD_RECORD_ATTRS}
        logger.bind(**extra).opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _trace_fields() -> Dict[str, str]:
    span_context = trace.get_current_span().get_span_context()
    if not span_context.is_valid:
        return {}
    return {
        "trace_id": format(span_context.trace_id, "032x"),
        "span_id": format(span_context.span_id, "016x"),
    }


def build_log_payload(
    record: Dict[str, Any], *, service: str, environment: str, version: str
) -> Dict[str, Any]:
    """Flatten a loguru record; ledger context and bound fields land at the top level."""

    payload: Dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name.lower(),
        "message": record["message"],
        "logger": record["name"],
        "service": service,
        "environment": environment,
        "version": version,
    }
    payload.update(_trace_fields())
    payload.update(record["extra"])
    return payload


def configure_logging(
    *,
    service_name: str | None = None,
    environment: str | None = None,
    version: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """Replace loguru's sinks with one JSON object per line on ``stream`` (stdout by default)."""

    service = service_name or settings.service_name
    env = environment or settings.environment
    release = version or __version__
    target = stream or sys.stdout

    def _write(message: Any) -> None:
        payload = build_log_payload(message.record, service=service, environment=env, version=release)
        target.write(json.dumps(payload, default=str) + "\n")

    logger.remove()
    logger.add(_write, level=settings.log_level, backtrace=False, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name, level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


@contextmanager
def ledger_context(**fields: UUID | str | None) -> Iterator[None]:
    """Tag every log line emitted inside the block with the given ids."""

    bound = {key: str(value) for key, value in fields.items() if value is not None}
    with logger.contextualize(**bound):
        yield
