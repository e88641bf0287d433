"""
Reading Group Models

A reading group ties a set of readers to one shared book, a chat log and
live progress updates.

Tables:
- reading_groups: group metadata, creator, reading goal, row version
- reading_group_members: one row per member (role, current page, position)

Invariants kept by readalong.services.membership:
- (group_id, user_id) is unique: a user is a member at most once
- the creator is always a member
- a group with members always has at least one admin
- a group is deleted, never left empty

Concurrency:
The `version` column is SQLAlchemy's version_id_col. Every UPDATE of a
group row is issued as "UPDATE ... WHERE id = :id AND version = :seen" and
raises StaleDataError when another writer got there first. Membership
commands always touch the group row, so member edits are versioned too.
"""

from datetime import UTC, date, datetime
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from readalong.database import Base

if TYPE_CHECKING:
    from readalong.models.book import Book
    from readalong.models.group_message import GroupMessage
    from readalong.models.user import User


def _utcnow() -> datetime:
    return datetime.now(UTC)


class MemberRole(str, Enum):
    """Roles a member can hold inside one group."""

    ADMIN = "admin"
    MEMBER = "member"


class ReadingGroup(Base):
    """
    Reading group model.

    Table: reading_groups

    Relationships:
    - book: the shared book (many-to-one)
    - creator: current owner (many-to-one, reassigned when the owner leaves)
    - members: ordered by join position (one-to-many, delete-orphan)
    - messages: chat/system/progress log (one-to-many, deleted with the group)
    """

    __tablename__ = "reading_groups"

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(
        String(200),
        index=True,
        nullable=False,
        comment="Group name"
    )
    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Free-text description"
    )

    book_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("books.id"),
        nullable=False,
        index=True,
    )
    creator_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id"),
        nullable=False,
        comment="Current owner of the group"
    )

    is_private: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="Private groups are only visible to members"
    )

    # Reading goal (optional, both parts independent)
    pages_per_day: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    target_finish_date: Mapped[date | None] = mapped_column(
        Date,
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Optimistic concurrency counter"
    )

    # -------------------------------------------------------------------------
    # Relationships
    # -------------------------------------------------------------------------
    book: Mapped["Book"] = relationship("Book")
    creator: Mapped["User"] = relationship("User")

    members: Mapped[list["GroupMember"]] = relationship(
        "GroupMember",
        back_populates="group",
        cascade="all, delete-orphan",
        order_by="GroupMember.position",
    )

    messages: Mapped[list["GroupMessage"]] = relationship(
        "GroupMessage",
        back_populates="group",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "pages_per_day IS NULL OR pages_per_day > 0",
            name="ck_reading_group_pages_per_day",
        ),
    )

    @property
    def reading_goal(self) -> dict | None:
        """Reading goal as a dict, or None when neither part is set."""
        if self.pages_per_day is None and self.target_finish_date is None:
            return None
        return {
            "pages_per_day": self.pages_per_day,
            "target_finish_date": self.target_finish_date,
        }

    # -------------------------------------------------------------------------
    # Member lookups
    # -------------------------------------------------------------------------
    def members_by_user(self) -> dict[int, "GroupMember"]:
        """Members keyed by user id, in join order."""
        return {member.user_id: member for member in self.members}

    def get_member(self, user_id: int) -> "GroupMember | None":
        return self.members_by_user().get(user_id)

    def is_member(self, user_id: int) -> bool:
        return self.get_member(user_id) is not None

    @property
    def admins(self) -> list["GroupMember"]:
        return [m for m in self.members if m.role == MemberRole.ADMIN.value]

    @property
    def member_count(self) -> int:
        return len(self.members)

    def next_position(self) -> int:
        """Sequence value for a newly added member (keeps join order)."""
        return max((m.position for m in self.members), default=-1) + 1

    def __repr__(self) -> str:
        return f"ReadingGroup(id={self.id}, name='{self.name}', members={len(self.members)})"


class GroupMember(Base):
    """
    Membership of one user in one reading group.

    Table: reading_group_members
    """

    __tablename__ = "reading_group_members"

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("reading_groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    role: Mapped[str] = mapped_column(
        String(20),
        default=MemberRole.MEMBER.value,
        nullable=False,
        comment="admin or member"
    )
    current_page: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Last page the member reported"
    )
    position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Join order inside the group"
    )
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )

    group: Mapped["ReadingGroup"] = relationship("ReadingGroup", back_populates="members")
    user: Mapped["User"] = relationship("User")

    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_group_member_user"),
        CheckConstraint("current_page >= 0", name="ck_group_member_current_page"),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == MemberRole.ADMIN.value

    def __repr__(self) -> str:
        return f"GroupMember(group_id={self.group_id}, user_id={self.user_id}, role='{self.role}')"
