"""Test fixtures and configuration."""

import logging
import os
import sys
from collections.abc import Iterable
from datetime import date
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
import structlog

from forecast_match.database import Base, build_engine, build_session_maker, init_db
from forecast_match.models import PlannedTemplate
from forecast_match.services import scoring
from forecast_match.services.matching import MatchingService
from forecast_match.services.occurrences import DatabaseOccurrenceSource


# --- Structlog Configuration for Tests ---
@pytest.fixture(autouse=True, scope="session")
def configure_structlog_for_tests():
    """Configure structlog for proper capsys capture in tests."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.dev.ConsoleRenderer(colors=False),
        foreign_pre_chain=processors[:-1],
    )

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG)

    yield

    structlog.reset_defaults()


# --- Matching config cache isolation ---
@pytest.fixture(autouse=True)
def reset_matching_config_cache():
    scoring._config_cache = None
    yield
    scoring._config_cache = None


@pytest.fixture
def test_database_url(tmp_path):
    """Per-test SQLite file unless TEST_DATABASE_URL points at a real server."""
    return os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'forecast_match.db'}"


@pytest_asyncio.fixture
async def db_engine(test_database_url):
    engine = build_engine(test_database_url, echo=False)
    await init_db(engine)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return build_session_maker(db_engine)


@pytest_asyncio.fixture
async def db(session_maker):
    """Session for seeding and assertions.

    Seed data must be committed before calling MatchingService, which opens
    its own sessions.
    """
    async with session_maker() as session:
        yield session


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


@pytest.fixture
def other_user_id() -> UUID:
    return uuid4()


class FixedDateScheduler:
    """Template scheduler returning preset dates per template."""

    def __init__(self) -> None:
        self.dates: dict[UUID, list[date]] = {}

    def add(self, template: PlannedTemplate, *dates: date) -> None:
        self.dates.setdefault(template.id, []).extend(dates)

    def occurrence_dates(self, template: PlannedTemplate, start_date: date, end_date: date) -> Iterable[date]:
        return [d for d in self.dates.get(template.id, []) if start_date <= d <= end_date]


@pytest.fixture
def scheduler() -> FixedDateScheduler:
    return FixedDateScheduler()


@pytest.fixture
def occurrence_source(scheduler) -> DatabaseOccurrenceSource:
    return DatabaseOccurrenceSource(scheduler)


@pytest.fixture
def matching_config() -> scoring.MatchingConfig:
    return scoring.DEFAULT_CONFIG


@pytest.fixture
def service(session_maker, occurrence_source, matching_config) -> MatchingService:
    return MatchingService(session_maker, occurrence_source, matching_config)
