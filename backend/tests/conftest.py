"""Pytest fixtures for HealthStats backend tests."""

import os

# The app builds its engine at import time; point it at SQLite first
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from collections.abc import Generator
from datetime import date, datetime
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import Settings
from app.database import get_db
from app.main import app
from app.models import Base, User
from app.services.metrics import MetricBundle
from app.services.periods import iter_days
from app.services.progress import ProgressReporter
from app.services.sources.base import FetchResult, RawDataSource
from app.services.store import AnalyticsStore
from app.services.users import UserService

# Use SQLite in-memory for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


class StaticSource(RawDataSource):
    """Raw data source serving fixed per-day bundles."""

    name = "static"

    def __init__(self, days: Optional[dict[date, MetricBundle]] = None, earliest=None):
        self.days = dict(days or {})
        self.earliest = earliest
        self.fetches: list[tuple[date, date]] = []

    async def fetch_daily_metrics(
        self,
        user_id: int,
        start: date,
        end: date,
        progress: Optional[ProgressReporter] = None,
    ) -> FetchResult:
        self.fetches.append((start, end))
        if progress is not None:
            progress.complete("Fetched")
        return FetchResult(
            days={day: self.days.get(day, MetricBundle()) for day in iter_days(start, end)}
        )

    async def earliest_available_date(self, user_id: int) -> Optional[datetime]:
        if self.earliest is not None:
            return self.earliest
        if not self.days:
            return None
        return datetime.combine(min(self.days), datetime.min.time())


@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """Create a fresh test database for each test."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
    )

    # Create all tables
    Base.metadata.create_all(bind=engine)

    # Override the get_db dependency
    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        app.dependency_overrides.clear()


@pytest.fixture
def client(test_db: Session) -> TestClient:
    """Create a test client with test database."""
    return TestClient(app)


@pytest.fixture
def settings() -> Settings:
    """Settings pinned to UTC, Monday weeks and a two-source sleep ranking."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        timezone="UTC",
        first_weekday=0,
        daily_commit_batch_size=3,
        sleep_source_priority=["A", "B"],
    )


@pytest.fixture
def store(test_db: Session) -> AnalyticsStore:
    return AnalyticsStore(test_db)


@pytest.fixture
def user(test_db: Session, settings: Settings) -> User:
    """A user with a fresh (sentinel) sync cursor."""
    return UserService(test_db, settings).create(birthdate=date(1990, 5, 17))


@pytest.fixture
def static_source() -> type[StaticSource]:
    """Factory for in-memory raw data sources."""
    return StaticSource
