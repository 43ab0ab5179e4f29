"""Tests for logging helpers."""

import logging

import pytest
import structlog
from structlog.testing import capture_logs

from forecast_match.logger import async_log_timing, configure_logging, get_logger, log_exception, log_timing
from forecast_match.services.errors import NotFoundError

logger = get_logger(__name__)


def test_log_timing_records_duration_and_context():
    with capture_logs() as logs:
        with log_timing("score_batch", logger=logger, user_id="u1") as ctx:
            ctx["candidates"] = 3

    event = logs[0]
    assert event["event"] == "score_batch completed"
    assert event["user_id"] == "u1"
    assert event["candidates"] == 3
    assert event["duration_ms"] >= 0


@pytest.mark.asyncio
async def test_async_log_timing_logs_on_error():
    with capture_logs() as logs:
        with pytest.raises(RuntimeError):
            async with async_log_timing("load_occurrences", logger=logger, level="debug"):
                raise RuntimeError("boom")

    assert logs[0]["event"] == "load_occurrences completed"
    assert logs[0]["log_level"] == "debug"


def test_log_exception_includes_error_details():
    with capture_logs() as logs:
        log_exception(
            logger,
            NotFoundError("Transaction not found"),
            "Auto-match failed",
            level="warning",
            include_traceback=False,
            transaction_id="t1",
        )

    event = logs[0]
    assert event["log_level"] == "warning"
    assert event["error"] == "Transaction not found"
    assert event["error_type"] == "NotFoundError"
    assert event["transaction_id"] == "t1"


def test_configure_logging_installs_structlog_formatter():
    root_logger = logging.getLogger()
    saved_handlers = root_logger.handlers[:]
    saved_level = root_logger.level
    saved_config = structlog.get_config()
    try:
        configure_logging()

        assert len(root_logger.handlers) == 1
        assert isinstance(root_logger.handlers[0].formatter, structlog.stdlib.ProcessorFormatter)
    finally:
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        for handler in saved_handlers:
            root_logger.addHandler(handler)
        root_logger.setLevel(saved_level)
        structlog.configure(**saved_config)
