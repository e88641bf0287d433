"""
User Model

Represents a registered reader. Account management (registration, login,
passwords) lives outside this service; the reading-group subsystem only
reads users to resolve display fields for members and message authors.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from readalong.database import Base


class UserRole(str, Enum):
    """
    System-wide user roles.

    Unrelated to the admin/member role a user holds inside a reading group.
    """
    CLIENT = "client"
    ADMIN = "admin"


class User(Base):
    """
    User model representing registered readers.

    Table: users

    Indexes:
    - Primary key on id (automatic)
    - email: Unique index for lookups
    """

    __tablename__ = "users"

    # -------------------------------------------------------------------------
    # Primary Key
    # -------------------------------------------------------------------------
    id: Mapped[int] = mapped_column(primary_key=True)

    # -------------------------------------------------------------------------
    # Identity Fields
    # -------------------------------------------------------------------------
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        index=True,
        nullable=False,
        comment="User's email address"
    )

    role: Mapped[str] = mapped_column(
        String(20),
        default=UserRole.CLIENT.value,
        nullable=False,
        comment="System-wide role (client, admin)"
    )

    # -------------------------------------------------------------------------
    # Profile Fields
    # -------------------------------------------------------------------------
    first_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Given name"
    )

    last_name1: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="First surname"
    )

    last_name2: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Second surname"
    )

    avatar: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="URL to user's avatar image"
    )

    # -------------------------------------------------------------------------
    # Timestamps
    # -------------------------------------------------------------------------
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        comment="When the user registered"
    )

    def __repr__(self) -> str:
        """Developer-friendly string representation."""
        return f"User(id={self.id}, email='{self.email}')"
