"""
User and Book Directories

Read-only lookups the reading-group subsystem needs from the rest of the
catalogue:

- get_user_summary(): display fields for notification text and payloads.
  Best-effort: a failed lookup yields an empty placeholder instead of
  blocking the membership command that needed it.
- book_exists(): existence check used when creating a group.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from readalong.models.book import Book
from readalong.models.user import User
from readalong.schemas.user import UserSummary

logger = logging.getLogger(__name__)


def find_user(db: Session, user_id: int) -> User | None:
    """Get a user by ID, or None."""
    return db.execute(select(User).where(User.id == user_id)).scalar_one_or_none()


def get_user_summary(db: Session, user_id: int) -> UserSummary:
    """
    Resolve a user's display fields.

    Never raises: missing users and database errors fall back to a
    placeholder with empty names.
    """
    try:
        # Pending changes of the calling command must not be flushed here.
        with db.no_autoflush:
            user = find_user(db, user_id)
    except SQLAlchemyError as e:
        logger.warning(f"User lookup failed for {user_id}: {e}")
        return UserSummary(id=user_id)

    if user is None:
        logger.warning(f"User {user_id} not found, using placeholder display")
        return UserSummary(id=user_id)

    return UserSummary.model_validate(user)


def book_exists(db: Session, book_id: int) -> bool:
    """Check whether a book is catalogued."""
    stmt = select(Book.id).where(Book.id == book_id)
    return db.execute(stmt).scalar_one_or_none() is not None
