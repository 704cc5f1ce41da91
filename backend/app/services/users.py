"""User lifecycle and sync cursor bookkeeping."""

from datetime import date, datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.core.exceptions import NotFoundError, StoreWriteError
from app.core.logging import get_logger
from app.models import User

logger = get_logger(__name__)


def reset_cursor(user: User, sentinel: datetime) -> None:
    """Put every cursor mark back to the sentinel so the next sync starts over."""
    user.last_processed_at = sentinel
    user.highscores_last_updated = sentinel
    user.first_health_record_at = sentinel


class UserService:
    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    def get(self, user_id: int) -> User:
        user = self.db.query(User).filter(User.id == user_id).first()
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    def all(self) -> list[User]:
        return self.db.query(User).order_by(User.id).all()

    def create(self, birthdate: Optional[date] = None, uses_metric: bool = True) -> User:
        user = User(birthdate=birthdate, uses_metric=uses_metric)
        reset_cursor(user, self.settings.cursor_sentinel)
        self.db.add(user)
        self._commit("create_user")
        self.db.refresh(user)
        logger.info("user_created", user_id=user.id)
        return user

    def delete(self, user_id: int) -> None:
        user = self.get(user_id)
        self.db.delete(user)
        self._commit("delete_user")
        logger.info("user_deleted", user_id=user_id)

    def _commit(self, operation: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("store_write_failed", operation=operation, error=str(e))
            raise StoreWriteError(operation, str(e)) from e
