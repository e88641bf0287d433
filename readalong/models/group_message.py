"""
Group Message Model

Append-only log of a reading group: chat messages written by members,
system messages describing membership events, and progress messages.

Business Rules:
- Messages are immutable once created
- Messages are only removed in bulk, when their group is deleted
- Chat displays them newest first (created_at descending)
"""

from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from readalong.database import Base

if TYPE_CHECKING:
    from readalong.models.reading_group import ReadingGroup
    from readalong.models.user import User


class MessageType(str, Enum):
    """
    Kinds of entries in a group log.

    - TEXT: chat message written by a member
    - SYSTEM: generated on membership/administrative events
    - PROGRESS: generated when a member reports a new page
    """
    TEXT = "text"
    SYSTEM = "system"
    PROGRESS = "progress"


class GroupMessage(Base):
    """
    Group message model.

    Attributes:
        id: Primary key
        group_id: Foreign key to reading_groups
        user_id: Author, or the actor that triggered a system/progress entry
        text: Message content
        type: text, system or progress
        created_at: When the entry was appended
    """

    __tablename__ = "group_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    group_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("reading_groups.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )

    text: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    type: Mapped[str] = mapped_column(
        String(20),
        default=MessageType.TEXT.value,
        nullable=False,
        comment="text, system or progress"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    group: Mapped["ReadingGroup"] = relationship("ReadingGroup", back_populates="messages")
    user: Mapped["User"] = relationship("User")

    __table_args__ = (
        Index("ix_group_messages_group_created", "group_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<GroupMessage(id={self.id}, group_id={self.group_id}, type={self.type})>"
