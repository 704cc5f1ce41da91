"""API dependencies for dependency injection."""

from fastapi import Depends
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.database import get_db
from app.services.queries import AnalyticsQueryService
from app.services.sources import SampleStoreSource
from app.services.store import AnalyticsStore
from app.services.sync import SyncService


def get_store(db: Session = Depends(get_db)) -> AnalyticsStore:
    return AnalyticsStore(db)


def get_sync_service(
    store: AnalyticsStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> SyncService:
    """Sync service reading raw data from the samples stored in the same database."""
    return SyncService(store, SampleStoreSource(store.db, settings), settings)


def get_query_service(
    store: AnalyticsStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> AnalyticsQueryService:
    return AnalyticsQueryService(store, settings)
