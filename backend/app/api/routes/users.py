from datetime import date, datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.database import get_db
from app.services.ingest import SampleIngestService
from app.services.users import UserService

logger = get_logger(__name__)

router = APIRouter()


class UserCreate(BaseModel):
    birthdate: Optional[date] = None
    uses_metric: bool = True


class UserResponse(BaseModel):
    id: int
    birthdate: Optional[date] = None
    uses_metric: bool = True
    last_processed_at: datetime
    highscores_last_updated: datetime
    first_health_record_at: datetime
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SampleBatch(BaseModel):
    """Raw samples as exported by a device or app.

    Each item carries ``type``, ``value``, ``unit``, ``start``, ``end``,
    ``source`` and, for sleep, ``stage``. Export-style aliases such as
    ``startDate``/``endDate``/``qty``/``sourceName`` are accepted too.
    """

    samples: list[dict[str, Any]] = Field(default_factory=list)


class IngestResponse(BaseModel):
    records_processed: int
    records_inserted: int
    records_duplicate: int
    records_skipped: int
    data_start: Optional[datetime] = None
    data_end: Optional[datetime] = None
    processing_time_ms: float

    class Config:
        from_attributes = True


@router.get("/")
async def list_users(db: Session = Depends(get_db)):
    """List all users."""
    users = UserService(db).all()
    return {"users": [UserResponse.model_validate(u) for u in users]}


@router.post("/", response_model=UserResponse, status_code=201)
async def create_user(request: UserCreate, db: Session = Depends(get_db)):
    """Create a user with a fresh sync cursor."""
    user = UserService(db).create(birthdate=request.birthdate, uses_metric=request.uses_metric)
    return UserResponse.model_validate(user)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: int, db: Session = Depends(get_db)):
    return UserResponse.model_validate(UserService(db).get(user_id))


@router.delete("/{user_id}")
async def delete_user(user_id: int, db: Session = Depends(get_db)):
    """Delete a user together with samples and analytics."""
    UserService(db).delete(user_id)
    return {"message": "User deleted"}


@router.post("/{user_id}/samples", response_model=IngestResponse)
async def ingest_samples(user_id: int, batch: SampleBatch, db: Session = Depends(get_db)):
    """Store a batch of raw samples; exact duplicates are counted and skipped."""
    result = SampleIngestService(db).ingest(user_id, batch.samples)
    return IngestResponse.model_validate(result)
