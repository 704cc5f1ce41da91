from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


# =============================================================================
# Users & Sync Cursor
# =============================================================================


class User(Base):
    """A tracked person. The sync cursor lives on this row."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    birthdate = Column(Date)
    uses_metric = Column(Boolean, default=True)

    # Sync cursor (naive UTC)
    last_processed_at = Column(DateTime, nullable=False)  # raw-data high-water mark
    highscores_last_updated = Column(DateTime, nullable=False)
    first_health_record_at = Column(DateTime, nullable=False)  # lower bound for full init

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    samples = relationship("HealthSample", back_populates="user", cascade="all, delete-orphan")
    daily_analytics = relationship(
        "DailyAnalytics", back_populates="user", cascade="all, delete-orphan"
    )
    weekly_analytics = relationship(
        "WeeklyAnalytics", back_populates="user", cascade="all, delete-orphan"
    )
    monthly_analytics = relationship(
        "MonthlyAnalytics", back_populates="user", cascade="all, delete-orphan"
    )
    yearly_analytics = relationship(
        "YearlyAnalytics", back_populates="user", cascade="all, delete-orphan"
    )
    highscores = relationship(
        "HighscoreRecord", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )


# =============================================================================
# Raw Samples
# =============================================================================


class HealthSample(Base):
    """A single raw sensor sample as delivered by a device or app."""

    __tablename__ = "health_samples"
    __table_args__ = (
        Index("ix_health_samples_user_type_end", "user_id", "sample_type", "end_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    sample_type = Column(String(64), nullable=False)  # step_count, sleep_analysis, ...
    value = Column(Float, nullable=False, default=0.0)
    unit = Column(String(20))
    start_at = Column(DateTime, nullable=False)  # naive UTC
    end_at = Column(DateTime, nullable=False)
    source_id = Column(String(255), nullable=False, default="unknown")  # bundle identifier
    sleep_stage = Column(String(32))  # in_bed, asleep_core, asleep_deep, ...
    record_hash = Column(String(64), unique=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="samples")


# =============================================================================
# Period Analytics
# =============================================================================


class MetricColumns:
    """The 17 additive metric columns shared by every period table."""

    steps = Column(Integer, nullable=False, default=0)
    cycling_distance = Column(Float, nullable=False, default=0.0)  # meters
    walking_distance = Column(Float, nullable=False, default=0.0)  # meters
    running_distance = Column(Float, nullable=False, default=0.0)  # meters
    swimming_distance = Column(Float, nullable=False, default=0.0)  # meters
    swimming_strokes = Column(Integer, nullable=False, default=0)
    cross_country_skiing_distance = Column(Float, nullable=False, default=0.0)  # meters
    downhill_snow_sports_distance = Column(Float, nullable=False, default=0.0)  # meters
    energy_active = Column(Float, nullable=False, default=0.0)  # kcal
    energy_resting = Column(Float, nullable=False, default=0.0)  # kcal
    heartbeats = Column(Integer, nullable=False, default=0)
    stairs_climbed = Column(Integer, nullable=False, default=0)
    exercise_minutes = Column(Integer, nullable=False, default=0)
    stand_minutes = Column(Integer, nullable=False, default=0)
    sleep_total = Column(Integer, nullable=False, default=0)  # minutes
    sleep_deep = Column(Integer, nullable=False, default=0)  # minutes
    sleep_rem = Column(Integer, nullable=False, default=0)  # minutes

    recorded_at = Column(DateTime, default=datetime.utcnow)  # last write


class DailyAnalytics(MetricColumns, Base):
    __tablename__ = "daily_analytics"
    __table_args__ = (UniqueConstraint("user_id", "date", name="uq_daily_analytics_user_date"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False, index=True)

    user = relationship("User", back_populates="daily_analytics")


class WeeklyAnalytics(MetricColumns, Base):
    __tablename__ = "weekly_analytics"
    __table_args__ = (
        UniqueConstraint("user_id", "start_date", name="uq_weekly_analytics_user_start"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    start_date = Column(Date, nullable=False, index=True)
    end_date = Column(Date, nullable=False)  # start + 6 days

    user = relationship("User", back_populates="weekly_analytics")


class MonthlyAnalytics(MetricColumns, Base):
    __tablename__ = "monthly_analytics"
    __table_args__ = (
        UniqueConstraint("user_id", "year", "month", name="uq_monthly_analytics_user_month"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    user = relationship("User", back_populates="monthly_analytics")


class YearlyAnalytics(MetricColumns, Base):
    __tablename__ = "yearly_analytics"
    __table_args__ = (UniqueConstraint("user_id", "year", name="uq_yearly_analytics_user_year"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    year = Column(Integer, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    user = relationship("User", back_populates="yearly_analytics")


# =============================================================================
# Personal Records
# =============================================================================


class HighscoreRecord(Base):
    """Running maxima over the daily series plus the two longest streaks."""

    __tablename__ = "highscore_records"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )

    # Daily activity
    most_steps_in_a_day = Column(Integer, nullable=False, default=0)
    most_steps_in_a_day_date = Column(Date)
    most_calories_in_a_day = Column(Float, nullable=False, default=0.0)  # active + resting
    most_calories_in_a_day_date = Column(Date)
    most_exercise_minutes_in_a_day = Column(Integer, nullable=False, default=0)
    most_exercise_minutes_in_a_day_date = Column(Date)
    most_stand_minutes_in_a_day = Column(Integer, nullable=False, default=0)
    most_stand_minutes_in_a_day_date = Column(Date)
    most_stairs_climbed_in_a_day = Column(Integer, nullable=False, default=0)
    most_stairs_climbed_in_a_day_date = Column(Date)

    # Distances (daily totals, meters)
    longest_walk = Column(Float, nullable=False, default=0.0)
    longest_walk_date = Column(Date)
    longest_run = Column(Float, nullable=False, default=0.0)
    longest_run_date = Column(Date)
    longest_bike_ride = Column(Float, nullable=False, default=0.0)
    longest_bike_ride_date = Column(Date)
    longest_swim = Column(Float, nullable=False, default=0.0)
    longest_swim_date = Column(Date)
    longest_cross_country_ski = Column(Float, nullable=False, default=0.0)
    longest_cross_country_ski_date = Column(Date)
    longest_downhill_run = Column(Float, nullable=False, default=0.0)
    longest_downhill_run_date = Column(Date)

    # Sleep (minutes)
    longest_sleep = Column(Integer, nullable=False, default=0)
    longest_sleep_date = Column(Date)
    most_deep_sleep = Column(Integer, nullable=False, default=0)
    most_deep_sleep_date = Column(Date)
    most_rem_sleep = Column(Integer, nullable=False, default=0)
    most_rem_sleep_date = Column(Date)

    # Streaks (consecutive days)
    sleep_streak_record = Column(Integer, nullable=False, default=0)
    sleep_streak_record_start_date = Column(Date)
    sleep_streak_record_end_date = Column(Date)
    workout_streak_record = Column(Integer, nullable=False, default=0)
    workout_streak_record_start_date = Column(Date)
    workout_streak_record_end_date = Column(Date)

    last_updated = Column(DateTime, default=datetime.utcnow)
    recorded_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="highscores")
