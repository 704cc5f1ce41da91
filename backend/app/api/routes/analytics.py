from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from app.api.deps import get_query_service
from app.models import DailyAnalytics, MonthlyAnalytics, WeeklyAnalytics, YearlyAnalytics
from app.services.queries import AnalyticsQueryService

router = APIRouter()


class MetricsResponse(BaseModel):
    steps: int = 0
    cycling_distance: float = 0.0
    walking_distance: float = 0.0
    running_distance: float = 0.0
    swimming_distance: float = 0.0
    swimming_strokes: int = 0
    cross_country_skiing_distance: float = 0.0
    downhill_snow_sports_distance: float = 0.0
    energy_active: float = 0.0
    energy_resting: float = 0.0
    heartbeats: int = 0
    stairs_climbed: int = 0
    exercise_minutes: int = 0
    stand_minutes: int = 0
    sleep_total: int = 0
    sleep_deep: int = 0
    sleep_rem: int = 0
    recorded_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DailyResponse(MetricsResponse):
    date: date


class WeeklyResponse(MetricsResponse):
    start_date: date
    end_date: date


class MonthlyResponse(MetricsResponse):
    year: int
    month: int
    start_date: date
    end_date: date


class YearlyResponse(MetricsResponse):
    year: int
    start_date: date
    end_date: date


class HighscoresResponse(BaseModel):
    most_steps_in_a_day: int
    most_steps_in_a_day_date: Optional[date] = None
    most_calories_in_a_day: float
    most_calories_in_a_day_date: Optional[date] = None
    most_exercise_minutes_in_a_day: int
    most_exercise_minutes_in_a_day_date: Optional[date] = None
    most_stand_minutes_in_a_day: int
    most_stand_minutes_in_a_day_date: Optional[date] = None
    most_stairs_climbed_in_a_day: int
    most_stairs_climbed_in_a_day_date: Optional[date] = None
    longest_walk: float
    longest_walk_date: Optional[date] = None
    longest_run: float
    longest_run_date: Optional[date] = None
    longest_bike_ride: float
    longest_bike_ride_date: Optional[date] = None
    longest_swim: float
    longest_swim_date: Optional[date] = None
    longest_cross_country_ski: float
    longest_cross_country_ski_date: Optional[date] = None
    longest_downhill_run: float
    longest_downhill_run_date: Optional[date] = None
    longest_sleep: int
    longest_sleep_date: Optional[date] = None
    most_deep_sleep: int
    most_deep_sleep_date: Optional[date] = None
    most_rem_sleep: int
    most_rem_sleep_date: Optional[date] = None
    sleep_streak_record: int
    sleep_streak_record_start_date: Optional[date] = None
    sleep_streak_record_end_date: Optional[date] = None
    workout_streak_record: int
    workout_streak_record_start_date: Optional[date] = None
    workout_streak_record_end_date: Optional[date] = None
    last_updated: Optional[datetime] = None

    class Config:
        from_attributes = True


# =============================================================================
# Daily
# =============================================================================


@router.get("/{user_id}/daily")
async def list_daily(
    user_id: int,
    start: Optional[date] = None,
    end: Optional[date] = None,
    queries: AnalyticsQueryService = Depends(get_query_service),
):
    """Daily records, optionally limited to [start, end]."""
    days = queries.days(user_id, start, end)
    return {"daily": [DailyResponse.model_validate(d) for d in days]}


@router.get("/{user_id}/daily/latest", response_model=DailyResponse)
async def latest_daily(user_id: int, queries: AnalyticsQueryService = Depends(get_query_service)):
    return DailyResponse.model_validate(queries.latest(user_id, DailyAnalytics))


@router.get("/{user_id}/daily/{day}", response_model=DailyResponse)
async def get_daily(
    user_id: int, day: date, queries: AnalyticsQueryService = Depends(get_query_service)
):
    return DailyResponse.model_validate(queries.day(user_id, day))


# =============================================================================
# Weekly
# =============================================================================


@router.get("/{user_id}/weekly")
async def list_weekly(
    user_id: int,
    start: Optional[date] = None,
    end: Optional[date] = None,
    queries: AnalyticsQueryService = Depends(get_query_service),
):
    """Weeks overlapping [start, end], or all weeks."""
    weeks = queries.weeks(user_id, start, end)
    return {"weekly": [WeeklyResponse.model_validate(w) for w in weeks]}


@router.get("/{user_id}/weekly/latest", response_model=WeeklyResponse)
async def latest_weekly(user_id: int, queries: AnalyticsQueryService = Depends(get_query_service)):
    return WeeklyResponse.model_validate(queries.latest(user_id, WeeklyAnalytics))


@router.get("/{user_id}/weekly/{day}", response_model=WeeklyResponse)
async def get_weekly(
    user_id: int, day: date, queries: AnalyticsQueryService = Depends(get_query_service)
):
    """The week containing ``day``."""
    return WeeklyResponse.model_validate(queries.week_containing(user_id, day))


# =============================================================================
# Monthly / Yearly
# =============================================================================


@router.get("/{user_id}/monthly")
async def list_monthly(
    user_id: int,
    year: Optional[int] = Query(None, ge=1),
    queries: AnalyticsQueryService = Depends(get_query_service),
):
    months = queries.months(user_id, year)
    return {"monthly": [MonthlyResponse.model_validate(m) for m in months]}


@router.get("/{user_id}/monthly/latest", response_model=MonthlyResponse)
async def latest_monthly(user_id: int, queries: AnalyticsQueryService = Depends(get_query_service)):
    return MonthlyResponse.model_validate(queries.latest(user_id, MonthlyAnalytics))


@router.get("/{user_id}/monthly/{year}/{month}", response_model=MonthlyResponse)
async def get_monthly(
    user_id: int,
    year: int,
    month: int,
    queries: AnalyticsQueryService = Depends(get_query_service),
):
    return MonthlyResponse.model_validate(queries.month(user_id, year, month))


@router.get("/{user_id}/yearly")
async def list_yearly(user_id: int, queries: AnalyticsQueryService = Depends(get_query_service)):
    years = queries.years(user_id)
    return {"yearly": [YearlyResponse.model_validate(y) for y in years]}


@router.get("/{user_id}/yearly/latest", response_model=YearlyResponse)
async def latest_yearly(user_id: int, queries: AnalyticsQueryService = Depends(get_query_service)):
    return YearlyResponse.model_validate(queries.latest(user_id, YearlyAnalytics))


@router.get("/{user_id}/yearly/{year}", response_model=YearlyResponse)
async def get_yearly(
    user_id: int, year: int, queries: AnalyticsQueryService = Depends(get_query_service)
):
    return YearlyResponse.model_validate(queries.year(user_id, year))


# =============================================================================
# Highscores & verification
# =============================================================================


@router.get("/{user_id}/highscores", response_model=HighscoresResponse)
async def get_highscores(
    user_id: int, queries: AnalyticsQueryService = Depends(get_query_service)
):
    return HighscoresResponse.model_validate(queries.highscores(user_id))


@router.get("/{user_id}/verify")
async def verify_rollups(
    user_id: int, queries: AnalyticsQueryService = Depends(get_query_service)
):
    """Check every stored week, month and year against the sum of its days."""
    checked = queries.verify_rollups(user_id)
    return {"status": "consistent", "checked": checked}
