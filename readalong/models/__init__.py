"""
SQLAlchemy Models Package

This package contains all database models for the ReadAlong API.

Model Relationships:
- ReadingGroup -> Book: Many-to-One (many groups can read the same book)
- ReadingGroup -> GroupMember: One-to-Many (ordered by join position)
- ReadingGroup -> GroupMessage: One-to-Many (append-only log)
- GroupMember / GroupMessage -> User: Many-to-One

Import all models here so Alembic discovers them for migrations.
"""

from readalong.models.user import User, UserRole
from readalong.models.book import Book
from readalong.models.reading_group import GroupMember, MemberRole, ReadingGroup
from readalong.models.group_message import GroupMessage, MessageType

__all__ = [
    "User",
    "UserRole",
    "Book",
    "ReadingGroup",
    "GroupMember",
    "MemberRole",
    "GroupMessage",
    "MessageType",
]
