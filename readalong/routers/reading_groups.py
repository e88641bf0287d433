"""
Reading Groups Router

Endpoints for reading groups, their members and their message log.

Endpoints:
- GET /reading-groups - Groups the caller belongs to
- GET /reading-groups/search - Search public groups
- GET /reading-groups/{group_id} - Get a group (private groups: members only)
- POST /reading-groups - Create a group (caller becomes its first admin)
- PATCH /reading-groups/{group_id} - Update settings (admins only)
- POST /reading-groups/{group_id}/join - Join a group
- DELETE /reading-groups/{group_id}/leave - Leave a group
- PATCH /reading-groups/{group_id}/progress - Report reading progress
- POST /reading-groups/{group_id}/members/{user_id}/{action} - promote, demote or kick
- GET /reading-groups/{group_id}/messages - Message log, newest first
- POST /reading-groups/{group_id}/messages - Post a chat message

Every endpoint requires a Bearer token.

Real-time:
Commands that change a group broadcast to the group's room once the
response is produced, through a background task. The broadcast plan is
built before the session closes, after the command committed.
"""

import logging
from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Query, Request, status

from readalong.config import get_settings
from readalong.dependencies import CurrentIdentity, DbSession, Pagination
from readalong.models.reading_group import ReadingGroup
from readalong.schemas.group_message import (
    GroupMessageCreate,
    GroupMessageListResponse,
    GroupMessageResponse,
)
from readalong.schemas.reading_group import (
    LeaveGroupResponse,
    ProgressUpdate,
    ProgressUpdateResponse,
    ReadingGroupCreate,
    ReadingGroupListResponse,
    ReadingGroupResponse,
    ReadingGroupSearchResponse,
    ReadingGroupUpdate,
)
from readalong.services import membership, notifications
from readalong.services.events import Broadcast, event_publisher
from readalong.services.rate_limiter import limiter

logger = logging.getLogger(__name__)

settings = get_settings()

# =============================================================================
# Router Configuration
# =============================================================================

router = APIRouter(
    prefix="/reading-groups",
    tags=["Reading Groups"],
    responses={
        401: {"description": "Missing or invalid credentials"},
        404: {"description": "Group not found"},
    },
)


def to_response(group: ReadingGroup) -> ReadingGroupResponse:
    return ReadingGroupResponse.model_validate(group)


def schedule_broadcast(
    background_tasks: BackgroundTasks,
    builder: Callable[[Any], Broadcast],
    result: Any,
) -> None:
    """Build the plan while the session is open; send it after the response."""
    background_tasks.add_task(
        event_publisher.dispatch, notifications.build_broadcast(builder, result)
    )


# =============================================================================
# Read Endpoints
# =============================================================================


@router.get(
    "",
    response_model=ReadingGroupListResponse,
    summary="List my reading groups",
    description="Get every group the authenticated user is a member of, newest first.",
)
@limiter.limit(settings.rate_limit_default)
def list_my_groups(
    request: Request,
    db: DbSession,
    identity: CurrentIdentity,
) -> ReadingGroupListResponse:
    groups = membership.list_groups_for_user(db, identity.user_id)
    return ReadingGroupListResponse(
        items=[to_response(g) for g in groups],
        total=len(groups),
    )


@router.get(
    "/search",
    response_model=ReadingGroupSearchResponse,
    summary="Search public groups",
    description="Case-insensitive search over the name and description of public groups.",
)
@limiter.limit(settings.rate_limit_default)
def search_groups(
    request: Request,
    db: DbSession,
    identity: CurrentIdentity,
    pagination: Pagination,
    q: str | None = Query(
        default=None,
        max_length=100,
        description="Text to look for in group name or description",
        examples=["dune"],
    ),
) -> ReadingGroupSearchResponse:
    page = membership.search_public_groups(db, q, pagination.page, pagination.limit)
    return ReadingGroupSearchResponse(
        items=[to_response(g) for g in page.items],
        total=page.total,
        page=page.page,
        limit=page.limit,
        pages=page.pages,
    )


@router.get(
    "/{group_id}",
    response_model=ReadingGroupResponse,
    summary="Get a reading group",
    responses={403: {"description": "Private group and caller is not a member"}},
)
@limiter.limit(settings.rate_limit_default)
def get_group(
    request: Request,
    group_id: int,
    db: DbSession,
    identity: CurrentIdentity,
) -> ReadingGroupResponse:
    """
    Get a group with its members in join order.

    Public groups are visible to any authenticated user; private groups
    only to their members.
    """
    return to_response(membership.get_group(db, group_id, identity.user_id))


# =============================================================================
# Write Endpoints
# =============================================================================


@router.post(
    "",
    response_model=ReadingGroupResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a reading group",
)
@limiter.limit(settings.rate_limit_write)
def create_group(
    request: Request,
    group_in: ReadingGroupCreate,
    db: DbSession,
    identity: CurrentIdentity,
) -> ReadingGroupResponse:
    """
    Create a group for a catalogued book.

    The caller becomes the creator and the only member, as admin.
    """
    group = membership.create_group(
        db,
        creator_id=identity.user_id,
        name=group_in.name,
        book_id=group_in.book_id,
        is_private=group_in.is_private,
        description=group_in.description,
        reading_goal=group_in.reading_goal.model_dump() if group_in.reading_goal else None,
    )
    return to_response(group)


@router.patch(
    "/{group_id}",
    response_model=ReadingGroupResponse,
    summary="Update group settings",
    responses={403: {"description": "Caller is not an admin of the group"}},
)
@limiter.limit(settings.rate_limit_write)
def update_group_settings(
    request: Request,
    group_id: int,
    group_in: ReadingGroupUpdate,
    db: DbSession,
    identity: CurrentIdentity,
) -> ReadingGroupResponse:
    """
    Partially update name, description, privacy or reading goal.

    Only fields present in the body are applied; `"reading_goal": null`
    clears the goal.
    """
    patch = group_in.model_dump(exclude_unset=True)
    group = membership.update_settings(db, group_id, identity.user_id, patch)
    return to_response(group)


@router.post(
    "/{group_id}/join",
    response_model=ReadingGroupResponse,
    summary="Join a reading group",
    responses={409: {"description": "Already a member"}},
)
@limiter.limit(settings.rate_limit_write)
def join_group(
    request: Request,
    group_id: int,
    db: DbSession,
    identity: CurrentIdentity,
    background_tasks: BackgroundTasks,
) -> ReadingGroupResponse:
    result = membership.join_group(db, group_id, identity.user_id)
    schedule_broadcast(background_tasks, notifications.join_broadcast, result)
    return to_response(result.group)


@router.delete(
    "/{group_id}/leave",
    response_model=LeaveGroupResponse,
    summary="Leave a reading group",
    responses={400: {"description": "Not a member, or the only admin"}},
)
@limiter.limit(settings.rate_limit_write)
def leave_group(
    request: Request,
    group_id: int,
    db: DbSession,
    identity: CurrentIdentity,
    background_tasks: BackgroundTasks,
) -> LeaveGroupResponse:
    """
    Leave a group.

    The only admin must appoint another admin first. A leaving creator
    hands ownership over; the last member leaving deletes the group.
    """
    result = membership.leave_group(db, group_id, identity.user_id)
    schedule_broadcast(background_tasks, notifications.leave_broadcast, result)

    if result.group_deleted:
        return LeaveGroupResponse(
            group_deleted=True,
            message="You left the group. It had no other members and was deleted",
        )
    return LeaveGroupResponse(
        group_deleted=False,
        message="You left the group",
        new_creator_id=result.new_creator_id,
        group=to_response(result.group),
    )


@router.patch(
    "/{group_id}/progress",
    response_model=ProgressUpdateResponse,
    summary="Report reading progress",
    responses={403: {"description": "Caller is not a member"}},
)
@limiter.limit(settings.rate_limit_write)
def update_progress(
    request: Request,
    group_id: int,
    progress_in: ProgressUpdate,
    db: DbSession,
    identity: CurrentIdentity,
    background_tasks: BackgroundTasks,
) -> ProgressUpdateResponse:
    """
    Set the page the caller has reached.

    Repeating the same page is recorded and broadcast again.
    """
    result = membership.update_progress(db, group_id, identity.user_id, progress_in.current_page)
    schedule_broadcast(background_tasks, notifications.progress_broadcast, result)
    return ProgressUpdateResponse(
        group=to_response(result.group),
        previous_page=result.previous_page,
        current_page=result.current_page,
        message=GroupMessageResponse.model_validate(result.message),
    )


@router.post(
    "/{group_id}/members/{user_id}/{action}",
    response_model=ReadingGroupResponse,
    summary="Promote, demote or kick a member",
    responses={
        400: {"description": "Unknown action, self-action or last-admin demotion"},
        403: {"description": "Caller is not an admin of the group"},
    },
)
@limiter.limit(settings.rate_limit_write)
def change_member_role(
    request: Request,
    group_id: int,
    user_id: int,
    action: str,
    db: DbSession,
    identity: CurrentIdentity,
    background_tasks: BackgroundTasks,
) -> ReadingGroupResponse:
    result = membership.set_member_role(db, group_id, identity.user_id, user_id, action)
    schedule_broadcast(background_tasks, notifications.role_change_broadcast, result)
    return to_response(result.group)


# =============================================================================
# Message Log Endpoints
# =============================================================================


@router.get(
    "/{group_id}/messages",
    response_model=GroupMessageListResponse,
    summary="List group messages",
    responses={403: {"description": "Caller is not a member"}},
)
@limiter.limit(settings.rate_limit_default)
def list_messages(
    request: Request,
    group_id: int,
    db: DbSession,
    identity: CurrentIdentity,
    pagination: Pagination,
) -> GroupMessageListResponse:
    page = membership.list_messages(
        db, group_id, identity.user_id, pagination.page, pagination.limit
    )
    return GroupMessageListResponse(
        items=[GroupMessageResponse.model_validate(m) for m in page.items],
        total=page.total,
        page=page.page,
        limit=page.limit,
        pages=page.pages,
    )


@router.post(
    "/{group_id}/messages",
    response_model=GroupMessageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Post a chat message",
    responses={403: {"description": "Caller is not a member"}},
)
@limiter.limit(settings.rate_limit_write)
def post_message(
    request: Request,
    group_id: int,
    message_in: GroupMessageCreate,
    db: DbSession,
    identity: CurrentIdentity,
    background_tasks: BackgroundTasks,
) -> GroupMessageResponse:
    message = membership.post_message(db, group_id, identity.user_id, message_in.text)
    schedule_broadcast(background_tasks, notifications.message_broadcast, message)
    return GroupMessageResponse.model_validate(message)
