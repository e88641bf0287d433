"""
Notification Composer

Builds the text of system/progress log entries and the payloads pushed
over the real-time channel.

Log entries are added to the caller's session and committed together
with the membership change that produced them, so a broadcast is only
ever built from state that is already durable.
"""

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, TypeVar

from sqlalchemy.orm import Session

from readalong.models.group_message import GroupMessage, MessageType
from readalong.schemas.group_message import GroupMessageResponse
from readalong.schemas.user import UserSummary
from readalong.services.events import Broadcast, Event, EventType
from readalong.services.websocket import group_room

if TYPE_CHECKING:
    from readalong.services.membership import (
        JoinResult,
        LeaveResult,
        ProgressResult,
        RoleChangeResult,
    )

logger = logging.getLogger(__name__)

R = TypeVar("R")

UNKNOWN_READER = "A reader"

GROUP_CREATED_TEXT = "Group created"


def display_name(user: UserSummary) -> str:
    """Name used in generated text; placeholder when the lookup failed."""
    return user.display_name or UNKNOWN_READER


# =============================================================================
# Message text
# =============================================================================


def joined_text(user: UserSummary) -> str:
    return f"{display_name(user)} joined the group"


def left_text(user: UserSummary) -> str:
    return f"{display_name(user)} left the group"


def progress_text(user: UserSummary, previous_page: int, current_page: int) -> str:
    return f"{display_name(user)} moved from page {previous_page} to page {current_page}"


def kicked_text(target: UserSummary, actor: UserSummary) -> str:
    return f"{display_name(target)} was removed from the group by {display_name(actor)}"


def promoted_text(target: UserSummary) -> str:
    return f"{display_name(target)} is now an admin"


def demoted_text(target: UserSummary) -> str:
    return f"{display_name(target)} is no longer an admin"


def new_owner_text(owner: UserSummary) -> str:
    return f"{display_name(owner)} is now the group owner"


# =============================================================================
# Log entries
# =============================================================================


def record_message(
    db: Session,
    group_id: int,
    user_id: int,
    text: str,
    message_type: MessageType = MessageType.SYSTEM,
) -> GroupMessage:
    """
    Append an entry to a group's log.

    The entry is added to the session but not committed; the caller
    commits it with the rest of the command.
    """
    message = GroupMessage(
        group_id=group_id,
        user_id=user_id,
        text=text,
        type=message_type.value,
    )
    db.add(message)
    return message


# =============================================================================
# Channel payloads
# =============================================================================


def message_payload(message: GroupMessage, author: UserSummary | None = None) -> dict:
    """
    Serialize a persisted message with its author's display fields.

    When `author` is given it is used instead of the message's user
    relationship, which avoids another lookup.
    """
    response = GroupMessageResponse.model_validate(message)
    if author is not None:
        response = response.model_copy(update={"user": author})
    return response.model_dump(mode="json")


def progress_payload(
    group_id: int,
    user: UserSummary,
    previous_page: int,
    current_page: int,
    message: GroupMessage,
) -> dict:
    """Payload of `reading-progress:updated`."""
    return {
        "group_id": group_id,
        "user_id": user.id,
        "user": user.model_dump(mode="json"),
        "previous_page": previous_page,
        "current_page": current_page,
        "message": message_payload(message, author=user),
    }


def kicked_payload(group_id: int, actor_id: int) -> dict:
    """Payload of `group:kicked`, sent to the removed user only."""
    return {"group_id": group_id, "by": actor_id}


# =============================================================================
# Broadcast plans
# =============================================================================
#
# Built right after a command committed, while the session is still open,
# so the plan holds plain JSON and can be dispatched after the request.


def _message_event(group_id: int, message: GroupMessage, author: UserSummary | None = None) -> Event:
    return Event(
        type=EventType.GROUP_MESSAGE_NEW,
        data=message_payload(message, author=author),
        channel=group_room(group_id),
    )


def message_broadcast(message: GroupMessage) -> Broadcast:
    """A new chat or system entry for everyone in the group room."""
    return Broadcast(events=[_message_event(message.group_id, message)])


def progress_broadcast(result: "ProgressResult") -> Broadcast:
    group_id = result.group.id
    return Broadcast(
        events=[
            Event(
                type=EventType.READING_PROGRESS_UPDATED,
                data=progress_payload(
                    group_id,
                    result.user,
                    result.previous_page,
                    result.current_page,
                    result.message,
                ),
                channel=group_room(group_id),
            )
        ]
    )


def join_broadcast(result: "JoinResult") -> Broadcast:
    """Subscribe the new member's live connections, then announce them."""
    group_id = result.group.id
    return Broadcast(
        subscribe=[(result.user.id, group_room(group_id))],
        events=[_message_event(group_id, result.message, author=result.user)],
    )


def leave_broadcast(result: "LeaveResult") -> Broadcast:
    room = group_room(result.group_id)
    plan = Broadcast(unsubscribe=[(result.user_id, room)])
    if not result.group_deleted:
        plan.events = [_message_event(result.group_id, m) for m in result.messages]
    return plan


def role_change_broadcast(result: "RoleChangeResult") -> Broadcast:
    """
    Announce a promote/demote/kick to the group.

    A kicked user is dropped from the group room before the announcement
    and told directly with `group:kicked`.
    """
    group_id = result.group.id
    plan = Broadcast(events=[_message_event(group_id, result.message)])
    if result.action == "kick":
        plan.unsubscribe.append((result.target_user_id, group_room(group_id)))
        plan.notices.append(
            (
                result.target_user_id,
                EventType.GROUP_KICKED,
                kicked_payload(group_id, result.actor_id),
            )
        )
    return plan


def build_broadcast(builder: Callable[[R], Broadcast], result: R) -> Broadcast:
    """
    Build the plan for a command that already committed.

    Never raises: a failure (e.g. a lazy load hitting the database) is
    logged and yields an empty plan, so the command still succeeds.
    """
    try:
        return builder(result)
    except Exception as e:
        logger.error(f"Failed to build {builder.__name__} plan: {e}", exc_info=True)
        return Broadcast()
