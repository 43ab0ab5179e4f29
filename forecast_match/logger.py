"""structlog setup and logging helpers for the matching services.

JSON lines in production, a console renderer when ``DEBUG`` is on. Stdlib
loggers (SQLAlchemy, asyncio) are routed through the same formatter so every
record shares one shape.
"""

import logging
import sys
import time
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from typing import Any

import structlog
from structlog.stdlib import BoundLogger
from structlog.types import Processor

from forecast_match.config import settings

SHARED_PROCESSORS: list[Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.format_exc_info,
    structlog.processors.TimeStamper(fmt="iso"),
]


def _renderer() -> Processor:
    if settings.debug:
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def configure_logging() -> None:
    """Install structlog and a stdout handler on the root logger.

    Call once at process start; tests configure their own capture.
    """
    structlog.configure(
        processors=[*SHARED_PROCESSORS, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(processor=_renderer(), foreign_pre_chain=SHARED_PROCESSORS)
    )

    level = logging.DEBUG if settings.debug else logging.getLevelName(settings.log_level.upper())
    logging.basicConfig(handlers=[handler], level=level, force=True)


def get_logger(name: str | None = None) -> BoundLogger:
    return structlog.get_logger(name)


# --- timing ---


class _Timer:
    """Collects extra fields during a timed block and logs once at the end."""

    def __init__(self, operation: str, logger: BoundLogger | None, level: str, context: dict[str, Any]) -> None:
        self.operation = operation
        self.log = logger or get_logger(__name__)
        self.level = level
        self.context = context
        self.fields: dict[str, Any] = {}
        self.started = time.perf_counter()

    def finish(self) -> None:
        duration_ms = round((time.perf_counter() - self.started) * 1000, 2)
        self.fields["duration_ms"] = duration_ms
        emit = getattr(self.log, self.level, self.log.info)
        extra = {k: v for k, v in self.fields.items() if k != "duration_ms"}
        emit(f"{self.operation} completed", operation=self.operation, duration_ms=duration_ms, **self.context, **extra)


@contextmanager
def log_timing(
    operation: str,
    logger: BoundLogger | None = None,
    level: str = "info",
    **context: Any,
) -> Iterator[dict[str, Any]]:
    """Log how long a block took.

    The yielded dict is merged into the log event, so callers can attach
    counts discovered inside the block::

        with log_timing("score_transactions", logger=logger) as timing:
            timing["candidates"] = len(candidates)

    The event is logged even when the block raises.
    """
    timer = _Timer(operation, logger, level, context)
    try:
        yield timer.fields
    finally:
        timer.finish()


@asynccontextmanager
async def async_log_timing(
    operation: str,
    logger: BoundLogger | None = None,
    level: str = "info",
    **context: Any,
) -> AsyncIterator[dict[str, Any]]:
    """Async variant of :func:`log_timing`."""
    timer = _Timer(operation, logger, level, context)
    try:
        yield timer.fields
    finally:
        timer.finish()


# --- exceptions ---


def log_exception(
    logger: BoundLogger,
    exc: BaseException,
    context: str,
    *,
    level: str = "error",
    include_traceback: bool = True,
    **extra: Any,
) -> None:
    """Log ``exc`` under the message ``context`` with its type and module.

    Expected domain errors (not found, already matched) are usually logged
    with ``include_traceback=False`` at warning level.
    """
    emit = getattr(logger, level, logger.error)
    fields: dict[str, Any] = {
        "error": str(exc),
        "error_type": type(exc).__name__,
        "error_module": type(exc).__module__,
        **extra,
    }
    if include_traceback:
        fields["exc_info"] = exc
    emit(context, **fields)
