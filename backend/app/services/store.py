"""
Persistent store for period analytics and personal records.

Keyed reads and create-or-overwrite writes over the SQLAlchemy session. Every
write failure is rolled back and re-raised as StoreWriteError so callers can
abort the remaining phases of a sync.
"""

from datetime import date, datetime
from typing import Optional, Type, TypeVar

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import StoreWriteError
from app.core.logging import get_logger
from app.models import (
    DailyAnalytics,
    HighscoreRecord,
    MonthlyAnalytics,
    User,
    WeeklyAnalytics,
    YearlyAnalytics,
)
from app.services.metrics import FIELD_TYPES, METRIC_FIELDS, MetricBundle
from app.services.periods import PeriodRange

logger = get_logger(__name__)

PeriodModel = TypeVar(
    "PeriodModel", DailyAnalytics, WeeklyAnalytics, MonthlyAnalytics, YearlyAnalytics
)

ANALYTICS_MODELS = (DailyAnalytics, WeeklyAnalytics, MonthlyAnalytics, YearlyAnalytics)

# Ordering that puts the most recent period first
LATEST_ORDER = {
    DailyAnalytics: (DailyAnalytics.date.desc(),),
    WeeklyAnalytics: (WeeklyAnalytics.start_date.desc(),),
    MonthlyAnalytics: (MonthlyAnalytics.year.desc(), MonthlyAnalytics.month.desc()),
    YearlyAnalytics: (YearlyAnalytics.year.desc(),),
}


class AnalyticsStore:
    """Keyed upsert/read access to the analytics tables of one database session."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # Transactions
    # =========================================================================

    def commit(self, operation: str) -> None:
        """Commit pending writes, converting failures into StoreWriteError."""
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("store_write_failed", operation=operation, error=str(e))
            raise StoreWriteError(operation, str(e)) from e

    def rollback(self) -> None:
        self.db.rollback()

    # =========================================================================
    # Users
    # =========================================================================

    def get_user(self, user_id: int) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    # =========================================================================
    # Daily
    # =========================================================================

    def get_day(self, user_id: int, day: date) -> Optional[DailyAnalytics]:
        return (
            self.db.query(DailyAnalytics)
            .filter(DailyAnalytics.user_id == user_id, DailyAnalytics.date == day)
            .first()
        )

    def upsert_day(
        self, user_id: int, day: date, bundle: MetricBundle, recorded_at: datetime
    ) -> bool:
        """Write one day. Returns True when a new record was created."""
        record = self.get_day(user_id, day)
        created = record is None
        if created:
            record = DailyAnalytics(user_id=user_id, date=day)
            self.db.add(record)
        bundle.apply_to(record)
        record.recorded_at = recorded_at
        return created

    def days_between(self, user_id: int, start: date, end: date) -> list[DailyAnalytics]:
        return (
            self.db.query(DailyAnalytics)
            .filter(
                DailyAnalytics.user_id == user_id,
                DailyAnalytics.date >= start,
                DailyAnalytics.date <= end,
            )
            .order_by(DailyAnalytics.date)
            .all()
        )

    def all_days(self, user_id: int) -> list[DailyAnalytics]:
        return (
            self.db.query(DailyAnalytics)
            .filter(DailyAnalytics.user_id == user_id)
            .order_by(DailyAnalytics.date)
            .all()
        )

    def sum_days(self, user_id: int, start: date, end: date) -> MetricBundle:
        """Elementwise sum of every stored day within [start, end]."""
        columns = [
            func.coalesce(func.sum(getattr(DailyAnalytics, name)), 0) for name in METRIC_FIELDS
        ]
        row = (
            self.db.query(*columns)
            .filter(
                DailyAnalytics.user_id == user_id,
                DailyAnalytics.date >= start,
                DailyAnalytics.date <= end,
            )
            .one()
        )
        return MetricBundle(
            **{name: FIELD_TYPES[name](value) for name, value in zip(METRIC_FIELDS, row)}
        )

    # =========================================================================
    # Weekly / Monthly / Yearly
    # =========================================================================

    def get_week(self, user_id: int, start: date) -> Optional[WeeklyAnalytics]:
        return (
            self.db.query(WeeklyAnalytics)
            .filter(WeeklyAnalytics.user_id == user_id, WeeklyAnalytics.start_date == start)
            .first()
        )

    def upsert_week(
        self, user_id: int, week: PeriodRange, bundle: MetricBundle, recorded_at: datetime
    ) -> bool:
        record = self.get_week(user_id, week.start)
        created = record is None
        if created:
            record = WeeklyAnalytics(user_id=user_id, start_date=week.start)
            self.db.add(record)
        record.end_date = week.end
        bundle.apply_to(record)
        record.recorded_at = recorded_at
        return created

    def get_month(self, user_id: int, year: int, month: int) -> Optional[MonthlyAnalytics]:
        return (
            self.db.query(MonthlyAnalytics)
            .filter(
                MonthlyAnalytics.user_id == user_id,
                MonthlyAnalytics.year == year,
                MonthlyAnalytics.month == month,
            )
            .first()
        )

    def upsert_month(
        self,
        user_id: int,
        year: int,
        month: int,
        bounds: PeriodRange,
        bundle: MetricBundle,
        recorded_at: datetime,
    ) -> bool:
        record = self.get_month(user_id, year, month)
        created = record is None
        if created:
            record = MonthlyAnalytics(user_id=user_id, year=year, month=month)
            self.db.add(record)
        record.start_date = bounds.start
        record.end_date = bounds.end
        bundle.apply_to(record)
        record.recorded_at = recorded_at
        return created

    def get_year(self, user_id: int, year: int) -> Optional[YearlyAnalytics]:
        return (
            self.db.query(YearlyAnalytics)
            .filter(YearlyAnalytics.user_id == user_id, YearlyAnalytics.year == year)
            .first()
        )

    def upsert_year(
        self,
        user_id: int,
        year: int,
        bounds: PeriodRange,
        bundle: MetricBundle,
        recorded_at: datetime,
    ) -> bool:
        record = self.get_year(user_id, year)
        created = record is None
        if created:
            record = YearlyAnalytics(user_id=user_id, year=year)
            self.db.add(record)
        record.start_date = bounds.start
        record.end_date = bounds.end
        bundle.apply_to(record)
        record.recorded_at = recorded_at
        return created

    # =========================================================================
    # Generic reads
    # =========================================================================

    def all_records(self, model: Type[PeriodModel], user_id: int) -> list[PeriodModel]:
        return (
            self.db.query(model)
            .filter(model.user_id == user_id)
            .order_by(*(column.asc() for column in _key_columns(model)))
            .all()
        )

    def latest(self, model: Type[PeriodModel], user_id: int) -> Optional[PeriodModel]:
        return (
            self.db.query(model)
            .filter(model.user_id == user_id)
            .order_by(*LATEST_ORDER[model])
            .first()
        )

    def count(self, model, user_id: int) -> int:
        return self.db.query(func.count(model.id)).filter(model.user_id == user_id).scalar() or 0

    def max_id(self, model) -> int:
        """Highest identifier assigned so far for a record type (0 when empty)."""
        return self.db.query(func.max(model.id)).scalar() or 0

    # =========================================================================
    # Highscores
    # =========================================================================

    def get_highscores(self, user_id: int) -> Optional[HighscoreRecord]:
        return (
            self.db.query(HighscoreRecord).filter(HighscoreRecord.user_id == user_id).first()
        )

    def get_or_create_highscores(self, user_id: int) -> HighscoreRecord:
        record = self.get_highscores(user_id)
        if record is None:
            record = new_highscore_record(user_id)
            self.db.add(record)
        return record

    # =========================================================================
    # Maintenance
    # =========================================================================

    def clear_analytics(self, user_id: int) -> dict[str, int]:
        """Delete every derived record of a user. Raw samples are kept."""
        deleted = {}
        try:
            for model in (*ANALYTICS_MODELS, HighscoreRecord):
                deleted[model.__tablename__] = (
                    self.db.query(model)
                    .filter(model.user_id == user_id)
                    .delete(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("store_write_failed", operation="clear_analytics", error=str(e))
            raise StoreWriteError("clear_analytics", str(e)) from e
        return deleted


def _key_columns(model) -> tuple:
    if model is DailyAnalytics:
        return (DailyAnalytics.date,)
    if model is WeeklyAnalytics:
        return (WeeklyAnalytics.start_date,)
    if model is MonthlyAnalytics:
        return (MonthlyAnalytics.year, MonthlyAnalytics.month)
    return (YearlyAnalytics.year,)


def new_highscore_record(user_id: int) -> HighscoreRecord:
    """A highscore row with every maximum and streak at zero."""
    now = datetime.utcnow()
    record = HighscoreRecord(user_id=user_id, last_updated=now, recorded_at=now)
    for column in HighscoreRecord.__table__.columns:
        if column.name.endswith("_date") or column.name in ("id", "user_id"):
            continue
        if column.default is not None and getattr(record, column.name) is None:
            setattr(record, column.name, column.default.arg)
    return record
