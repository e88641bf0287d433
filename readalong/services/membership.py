"""
Group Membership Engine

Business rules for who belongs to a reading group and with which role.

Operations:
- create_group: creator becomes the first (admin) member
- join_group / leave_group: membership changes, ownership transfer on leave
- set_member_role: promote, demote or kick (admins only)
- update_progress: a member reports the page they reached
- update_settings: partial update of name/description/privacy/goal
- get_group, list_groups_for_user, search_public_groups: reads
- post_message, list_messages: the group chat log

Invariants (hold after every command):
- a user appears at most once in a group's member list
- the creator is a member
- every group with members has at least one admin
- a group is deleted, with its messages, when its last member leaves

Concurrency:
Commands follow read → validate → mutate → commit. Each mutation touches
the group row, whose version column turns the commit into a conditional
write. If another writer committed first, StaleDataError is raised; the
command is rolled back and re-run from a fresh read, up to
settings.group_write_retries times.

Results are returned as ORM objects (plus the extra facts the
notification layer needs); nothing here talks to the real-time channel.
"""

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, TypeVar

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from readalong.config import get_settings
from readalong.models.group_message import GroupMessage, MessageType
from readalong.models.reading_group import GroupMember, MemberRole, ReadingGroup
from readalong.schemas.user import UserSummary
from readalong.services import notifications
from readalong.services.directory import book_exists, get_user_summary
from readalong.services.exceptions import (
    ConcurrentModificationError,
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
)

logger = logging.getLogger(__name__)
settings = get_settings()

T = TypeVar("T")


class MemberAction(StrEnum):
    """Administrative actions on another member."""

    PROMOTE = "promote"
    DEMOTE = "demote"
    KICK = "kick"


# =============================================================================
# Command results
# =============================================================================


@dataclass
class ProgressResult:
    group: ReadingGroup
    user: UserSummary
    previous_page: int
    current_page: int
    message: GroupMessage


@dataclass
class JoinResult:
    group: ReadingGroup
    user: UserSummary
    message: GroupMessage


@dataclass
class RoleChangeResult:
    group: ReadingGroup
    action: MemberAction
    actor_id: int
    target_user_id: int
    message: GroupMessage


@dataclass
class LeaveResult:
    """
    Outcome of leave_group.

    When group_deleted is True the group no longer exists, `group` is
    None and no log entry was written.
    """

    group_id: int
    user_id: int
    group_deleted: bool
    group: ReadingGroup | None = None
    new_creator_id: int | None = None
    messages: list[GroupMessage] = field(default_factory=list)


@dataclass
class Page:
    items: list[Any]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total > 0 else 0


# =============================================================================
# Helpers
# =============================================================================


def _now() -> datetime:
    return datetime.now(UTC)


def _touch(group: ReadingGroup) -> None:
    """Mark the group row dirty so the commit runs the version check."""
    group.updated_at = _now()


def _run_versioned(db: Session, group_id: int, command: Callable[[], T]) -> T:
    """
    Run a read-modify-write command, retrying on concurrent writes.

    `command` must re-read the group itself; after a rollback every
    loaded instance is expired, so the retry sees the winner's state.
    """
    attempts = settings.group_write_retries
    for attempt in range(1, attempts + 1):
        try:
            return command()
        except StaleDataError:
            db.rollback()
            logger.warning(
                f"Concurrent write on group {group_id} (attempt {attempt}/{attempts})"
            )
    raise ConcurrentModificationError()


def _load_group(db: Session, group_id: int) -> ReadingGroup:
    """Fetch a group with members, refreshing any stale identity-map copy."""
    stmt = (
        select(ReadingGroup)
        .options(selectinload(ReadingGroup.members))
        .where(ReadingGroup.id == group_id)
        .execution_options(populate_existing=True)
    )
    group = db.execute(stmt).scalar_one_or_none()
    if group is None:
        raise NotFoundError(f"Reading group with id {group_id} not found")
    return group


def _require_member(group: ReadingGroup, user_id: int) -> GroupMember:
    member = group.get_member(user_id)
    if member is None:
        raise ForbiddenError("You are not a member of this group")
    return member


def _require_admin(group: ReadingGroup, user_id: int) -> GroupMember:
    member = _require_member(group, user_id)
    if not member.is_admin:
        raise ForbiddenError("Only group admins can do this")
    return member


def _pick_new_creator(group: ReadingGroup, leaving_user_id: int) -> GroupMember | None:
    """
    Choose who inherits ownership when the creator leaves.

    First other admin in join order; otherwise the first other member.
    """
    others = [m for m in group.members if m.user_id != leaving_user_id]
    for member in others:
        if member.is_admin:
            return member
    return others[0] if others else None


# =============================================================================
# Reads
# =============================================================================


def get_group(db: Session, group_id: int, user_id: int) -> ReadingGroup:
    """
    Get a group visible to `user_id`.

    Raises:
        NotFoundError: group does not exist
        ForbiddenError: group is private and the user is not a member
    """
    group = _load_group(db, group_id)
    if group.is_private and not group.is_member(user_id):
        raise ForbiddenError("You do not have access to this group")
    return group


def list_groups_for_user(db: Session, user_id: int) -> list[ReadingGroup]:
    """All groups the user belongs to, newest first."""
    stmt = (
        select(ReadingGroup)
        .join(GroupMember, GroupMember.group_id == ReadingGroup.id)
        .options(selectinload(ReadingGroup.members))
        .where(GroupMember.user_id == user_id)
        .order_by(ReadingGroup.created_at.desc(), ReadingGroup.id.desc())
    )
    return list(db.execute(stmt).scalars().unique().all())


def search_public_groups(
    db: Session,
    query: str | None,
    page: int = 1,
    limit: int = 20,
) -> Page:
    """
    Search non-private groups by name or description.

    Matching is a case-insensitive substring match; an empty query lists
    every public group.
    """
    if page < 1 or limit < 1:
        raise InvalidArgumentError("page and limit must be positive")

    conditions = [ReadingGroup.is_private.is_(False)]
    if query:
        pattern = f"%{query.strip()}%"
        conditions.append(
            or_(
                ReadingGroup.name.ilike(pattern),
                ReadingGroup.description.ilike(pattern),
            )
        )

    total = db.execute(
        select(func.count()).select_from(ReadingGroup).where(*conditions)
    ).scalar() or 0

    stmt = (
        select(ReadingGroup)
        .options(selectinload(ReadingGroup.members))
        .where(*conditions)
        .order_by(ReadingGroup.created_at.desc(), ReadingGroup.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = list(db.execute(stmt).scalars().all())
    return Page(items=items, total=total, page=page, limit=limit)


def member_group_ids(db: Session, user_id: int) -> list[int]:
    """Ids of the groups a user belongs to (used for channel auto-join)."""
    stmt = select(GroupMember.group_id).where(GroupMember.user_id == user_id)
    return list(db.execute(stmt).scalars().all())


# =============================================================================
# Create / join
# =============================================================================


def create_group(
    db: Session,
    creator_id: int,
    name: str,
    book_id: int,
    is_private: bool = False,
    description: str | None = None,
    reading_goal: dict | None = None,
) -> ReadingGroup:
    """
    Create a group with the creator as its only (admin) member.

    Raises:
        NotFoundError: the book is not catalogued
    """
    if not book_exists(db, book_id):
        raise NotFoundError(f"Book with id {book_id} not found")

    goal = reading_goal or {}
    group = ReadingGroup(
        name=name,
        description=description,
        book_id=book_id,
        creator_id=creator_id,
        is_private=is_private,
        pages_per_day=goal.get("pages_per_day"),
        target_finish_date=goal.get("target_finish_date"),
    )
    group.members.append(
        GroupMember(
            user_id=creator_id,
            role=MemberRole.ADMIN.value,
            current_page=0,
            position=0,
        )
    )
    db.add(group)
    db.flush()

    notifications.record_message(db, group.id, creator_id, notifications.GROUP_CREATED_TEXT)
    db.commit()
    db.refresh(group)

    logger.info(f"User {creator_id} created reading group {group.id}")
    return group


def join_group(db: Session, group_id: int, user_id: int) -> JoinResult:
    """
    Add a user as a plain member.

    Raises:
        NotFoundError: group does not exist
        ConflictError: user is already a member
    """

    def command() -> JoinResult:
        group = _load_group(db, group_id)
        if group.is_member(user_id):
            raise ConflictError("You are already a member of this group")

        group.members.append(
            GroupMember(
                user_id=user_id,
                role=MemberRole.MEMBER.value,
                current_page=0,
                position=group.next_position(),
            )
        )
        _touch(group)

        user = get_user_summary(db, user_id)
        message = notifications.record_message(
            db, group_id, user_id, notifications.joined_text(user)
        )
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ConflictError("You are already a member of this group")
        return JoinResult(group=group, user=user, message=message)

    result = _run_versioned(db, group_id, command)
    logger.info(f"User {user_id} joined reading group {group_id}")
    return result


# =============================================================================
# Progress
# =============================================================================


def update_progress(
    db: Session,
    group_id: int,
    user_id: int,
    current_page: int,
) -> ProgressResult:
    """
    Record the page a member has reached.

    Unchanged pages are still recorded and broadcast.

    Raises:
        InvalidArgumentError: current_page < 0
        NotFoundError: group does not exist
        ForbiddenError: user is not a member
    """
    if current_page is None or current_page < 0:
        raise InvalidArgumentError("Current page must be zero or greater")

    def command() -> ProgressResult:
        group = _load_group(db, group_id)
        member = _require_member(group, user_id)

        previous_page = member.current_page
        member.current_page = current_page
        _touch(group)

        user = get_user_summary(db, user_id)
        message = notifications.record_message(
            db,
            group_id,
            user_id,
            notifications.progress_text(user, previous_page, current_page),
            MessageType.PROGRESS,
        )
        db.commit()
        return ProgressResult(
            group=group,
            user=user,
            previous_page=previous_page,
            current_page=current_page,
            message=message,
        )

    result = _run_versioned(db, group_id, command)
    logger.info(
        f"User {user_id} progress in group {group_id}: "
        f"{result.previous_page} -> {result.current_page}"
    )
    return result


# =============================================================================
# Administration
# =============================================================================


SETTINGS_FIELDS = {"name", "description", "is_private", "reading_goal"}


def update_settings(
    db: Session,
    group_id: int,
    admin_id: int,
    patch: dict,
) -> ReadingGroup:
    """
    Partially update group settings.

    Only name, description, is_private and reading_goal are settable; a
    reading_goal of None clears the goal.

    Raises:
        NotFoundError: group does not exist
        ForbiddenError: caller is not an admin of the group
        InvalidArgumentError: patch contains non-settable fields
    """
    unknown = set(patch) - SETTINGS_FIELDS
    if unknown:
        raise InvalidArgumentError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
    if "name" in patch and not (patch["name"] or "").strip():
        raise InvalidArgumentError("Group name must not be blank")
    if "is_private" in patch and patch["is_private"] is None:
        raise InvalidArgumentError("is_private must be true or false")

    def command() -> ReadingGroup:
        group = _load_group(db, group_id)
        _require_admin(group, admin_id)

        if "name" in patch:
            group.name = patch["name"].strip()
        if "description" in patch:
            group.description = patch["description"]
        if "is_private" in patch:
            group.is_private = patch["is_private"]
        if "reading_goal" in patch:
            goal = patch["reading_goal"] or {}
            group.pages_per_day = goal.get("pages_per_day")
            group.target_finish_date = goal.get("target_finish_date")

        _touch(group)
        db.commit()
        return group

    group = _run_versioned(db, group_id, command)
    logger.info(f"Admin {admin_id} updated settings of group {group_id}: {sorted(patch)}")
    return group


def set_member_role(
    db: Session,
    group_id: int,
    admin_id: int,
    target_user_id: int,
    action: MemberAction | str,
) -> RoleChangeResult:
    """
    Promote, demote or kick another member.

    Raises:
        InvalidArgumentError: unknown action
        NotFoundError: group does not exist, or target is not a member
        ForbiddenError: caller is not an admin of the group
        InvalidStateError: self-action, promoting an admin, demoting a
            non-admin, or demoting the last admin
    """
    try:
        action = MemberAction(action)
    except ValueError:
        raise InvalidArgumentError(f"Unknown member action: {action}")

    def command() -> RoleChangeResult:
        group = _load_group(db, group_id)
        _require_admin(group, admin_id)

        if admin_id == target_user_id:
            raise InvalidStateError("You cannot change your own role")

        target = group.get_member(target_user_id)
        if target is None:
            raise NotFoundError("User is not a member of this group")

        target_user = get_user_summary(db, target_user_id)

        if action is MemberAction.PROMOTE:
            if target.is_admin:
                raise InvalidStateError("User is already an admin")
            target.role = MemberRole.ADMIN.value
            text = notifications.promoted_text(target_user)

        elif action is MemberAction.DEMOTE:
            if not target.is_admin:
                raise InvalidStateError("User is not an admin")
            if len(group.admins) <= 1:
                raise InvalidStateError("A group must keep at least one admin")
            target.role = MemberRole.MEMBER.value
            text = notifications.demoted_text(target_user)

        else:
            group.members.remove(target)
            if group.creator_id == target_user_id:
                group.creator_id = admin_id
            actor = get_user_summary(db, admin_id)
            text = notifications.kicked_text(target_user, actor)

        _touch(group)
        message = notifications.record_message(db, group_id, admin_id, text)
        db.commit()
        return RoleChangeResult(
            group=group,
            action=action,
            actor_id=admin_id,
            target_user_id=target_user_id,
            message=message,
        )

    result = _run_versioned(db, group_id, command)
    logger.info(f"Admin {admin_id} applied {action} to user {target_user_id} in group {group_id}")
    return result


# =============================================================================
# Leave
# =============================================================================


def leave_group(db: Session, group_id: int, user_id: int) -> LeaveResult:
    """
    Remove the caller from a group.

    1. The caller must be a member.
    2. The only admin of a group with other members must appoint another
       admin first.
    3. A leaving creator hands ownership to the first other admin, or the
       first other member, who is promoted to admin.
    4. The last member leaving deletes the group and all its messages.

    Raises:
        NotFoundError: group does not exist
        InvalidStateError: caller is not a member, or is the only admin
    """

    def command() -> LeaveResult:
        group = _load_group(db, group_id)
        member = group.get_member(user_id)
        if member is None:
            raise InvalidStateError("You are not a member of this group")

        if group.member_count == 1:
            db.execute(delete(GroupMessage).where(GroupMessage.group_id == group_id))
            db.delete(group)
            db.commit()
            return LeaveResult(group_id=group_id, user_id=user_id, group_deleted=True)

        if member.is_admin and len(group.admins) == 1:
            raise InvalidStateError(
                "You are the only admin. Appoint another admin before leaving the group"
            )

        messages = []
        new_creator_id = None
        if group.creator_id == user_id:
            heir = _pick_new_creator(group, user_id)
            heir.role = MemberRole.ADMIN.value
            group.creator_id = heir.user_id
            new_creator_id = heir.user_id
            messages.append(
                notifications.record_message(
                    db,
                    group_id,
                    heir.user_id,
                    notifications.new_owner_text(get_user_summary(db, heir.user_id)),
                )
            )

        group.members.remove(member)
        _touch(group)

        user = get_user_summary(db, user_id)
        messages.insert(
            0, notifications.record_message(db, group_id, user_id, notifications.left_text(user))
        )
        db.commit()
        return LeaveResult(
            group_id=group_id,
            user_id=user_id,
            group_deleted=False,
            group=group,
            new_creator_id=new_creator_id,
            messages=messages,
        )

    result = _run_versioned(db, group_id, command)
    if result.group_deleted:
        logger.info(f"Reading group {group_id} deleted: last member {user_id} left")
    else:
        logger.info(f"User {user_id} left reading group {group_id}")
    return result


# =============================================================================
# Chat log
# =============================================================================


def post_message(db: Session, group_id: int, user_id: int, text: str) -> GroupMessage:
    """
    Append a chat message written by a member.

    Raises:
        InvalidArgumentError: blank text
        NotFoundError: group does not exist
        ForbiddenError: user is not a member
    """
    text = (text or "").strip()
    if not text:
        raise InvalidArgumentError("Message must not be empty")

    group = _load_group(db, group_id)
    _require_member(group, user_id)

    message = notifications.record_message(db, group_id, user_id, text, MessageType.TEXT)
    db.commit()
    db.refresh(message)
    return message


def list_messages(
    db: Session,
    group_id: int,
    user_id: int,
    page: int = 1,
    limit: int = 20,
) -> Page:
    """
    List a group's log, newest first.

    Raises:
        NotFoundError: group does not exist
        ForbiddenError: user is not a member
    """
    if page < 1 or limit < 1:
        raise InvalidArgumentError("page and limit must be positive")

    group = _load_group(db, group_id)
    _require_member(group, user_id)

    total = db.execute(
        select(func.count()).select_from(GroupMessage).where(GroupMessage.group_id == group_id)
    ).scalar() or 0

    stmt = (
        select(GroupMessage)
        .options(selectinload(GroupMessage.user))
        .where(GroupMessage.group_id == group_id)
        .order_by(GroupMessage.created_at.desc(), GroupMessage.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = list(db.execute(stmt).scalars().all())
    return Page(items=items, total=total, page=page, limit=limit)
