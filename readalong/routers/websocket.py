"""
WebSocket Router

Real-time channel for reading groups.

Endpoints:
- /ws: the channel (one connection per client tab/device)
- GET /ws/stats: connection statistics

Frames are JSON text: {"type": "<event>", "data": {...}}. Outbound frames
also carry "timestamp".

Authentication:
1. Query parameter: /ws?token=<jwt>. A valid token authenticates the
   connection immediately.
2. Otherwise the connection stays pending for
   settings.ws_auth_timeout_seconds and must send
   {"type": "authenticate", "data": {"token": "<jwt>"}}.
   Other commands are answered with `auth-error` while pending. A bad
   token or the timeout sends `auth-error` and closes with code 4001.

Once authenticated the connection is in rooms user:{id} and
group:{id} for every group the user belongs to, and receives `connected`.

Commands:
- ping → pong
- join:group {groupId} → joined:group (public groups or own groups only)
- leave:group {groupId} → left:group
- update:reading-progress {groupId, currentPage} → reading-progress:updated
  to the group room
- subscribe:book-comments {bookId} → subscribed:book-comments
Failures are reported as `error` events; the connection stays open.

Each command runs in its own short-lived database session; an idle
socket holds no pooled connection. Writes run in the threadpool.
"""

import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from readalong.config import get_settings
from readalong.database import SessionFactory, get_session_factory
from readalong.schemas.realtime import (
    AuthenticateCommand,
    BookCommentsCommand,
    GroupRoomCommand,
    ReadingProgressCommand,
)
from readalong.services import membership, notifications
from readalong.services.events import Broadcast, Event, EventType, event_publisher
from readalong.services.exceptions import ReadingGroupError, UnauthorizedError
from readalong.services.security import Identity, authenticate_token
from readalong.services.websocket import (
    Connection,
    ConnectionManager,
    book_room,
    get_connection_manager,
    group_room,
)

logger = logging.getLogger(__name__)
settings = get_settings()

AUTH_FAILED_CLOSE_CODE = 4001

router = APIRouter(
    tags=["WebSocket"],
)


class FrameError(ValueError):
    """Raised when a text frame is not a {"type", "data"} object."""


def parse_frame(raw: str) -> tuple[str, dict[str, Any]]:
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        raise FrameError("Message is not valid JSON")

    if not isinstance(frame, dict) or not isinstance(frame.get("type"), str):
        raise FrameError("Message must be an object with a string 'type'")

    data = frame.get("data") or {}
    if not isinstance(data, dict):
        raise FrameError("'data' must be an object")
    return frame["type"], data


async def reply(
    manager: ConnectionManager,
    connection: Connection,
    event_type: EventType,
    data: dict[str, Any],
) -> None:
    await manager.send(connection, Event(type=event_type, data=data).to_dict())


async def reject(
    manager: ConnectionManager,
    connection: Connection,
    websocket: WebSocket,
    message: str,
) -> None:
    """Send auth-error and close the socket."""
    await reply(manager, connection, EventType.AUTH_ERROR, {"message": message})
    try:
        await websocket.close(code=AUTH_FAILED_CLOSE_CODE, reason=message)
    except RuntimeError:
        # Already closed by the failed send above
        pass


# =============================================================================
# Handshake
# =============================================================================


def try_token(token: str | None) -> Identity | None:
    """Validate a connect-time token; failures leave the connection pending."""
    if not token:
        return None
    try:
        return authenticate_token(token)
    except UnauthorizedError as e:
        logger.warning(f"Connect-time token rejected, waiting for authenticate: {e.message}")
        return None


async def wait_for_authentication(
    websocket: WebSocket,
    connection: Connection,
    manager: ConnectionManager,
) -> Identity | None:
    """
    Run the grace window of a pending connection.

    Returns the identity on success; None once the connection has been
    rejected and closed.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + settings.ws_auth_timeout_seconds

    while True:
        remaining = deadline - loop.time()
        try:
            if remaining <= 0:
                raise TimeoutError
            raw = await asyncio.wait_for(websocket.receive_text(), timeout=remaining)
        except TimeoutError:
            logger.warning(f"WebSocket {connection.id} did not authenticate in time")
            await reject(manager, connection, websocket, "Authentication timeout")
            return None

        try:
            event_type, data = parse_frame(raw)
        except FrameError as e:
            await reply(manager, connection, EventType.AUTH_ERROR, {"message": str(e)})
            continue

        if event_type != EventType.AUTHENTICATE:
            await reply(
                manager,
                connection,
                EventType.AUTH_ERROR,
                {"message": "Authentication required", "event": event_type},
            )
            continue

        try:
            command = AuthenticateCommand.model_validate(data)
            return authenticate_token(command.token)
        except ValidationError:
            message = "Token required"
        except UnauthorizedError as e:
            message = e.message

        logger.warning(f"WebSocket {connection.id} authentication failed: {message}")
        await reject(manager, connection, websocket, message)
        return None


async def complete_authentication(
    db: Session,
    connection: Connection,
    identity: Identity,
    manager: ConnectionManager,
) -> None:
    """Bind the user, join their rooms and send `connected`."""
    manager.authenticate(connection, identity.user_id)

    group_ids = membership.member_group_ids(db, identity.user_id)
    for group_id in group_ids:
        manager.join_room(connection, group_room(group_id))

    await reply(
        manager,
        connection,
        EventType.CONNECTED,
        {"status": "connected", "user_id": identity.user_id, "groups": group_ids},
    )


# =============================================================================
# Endpoint
# =============================================================================


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str | None = Query(default=None),
    open_session: SessionFactory = Depends(get_session_factory),
):
    """
    Reading-group real-time channel.

    Message format (received):
    ```json
    {
        "type": "reading-progress:updated",
        "data": {...},
        "timestamp": "2024-01-20T12:00:00+00:00"
    }
    ```
    """
    manager = get_connection_manager()
    connection = await manager.accept(websocket)

    try:
        identity = try_token(token)
        if identity is None:
            identity = await wait_for_authentication(websocket, connection, manager)
            if identity is None:
                return

        with open_session() as db:
            await complete_authentication(db, connection, identity, manager)

        while True:
            raw = await websocket.receive_text()
            with open_session() as db:
                await handle_message(db, connection, raw, manager)

    except WebSocketDisconnect:
        logger.info(f"WebSocket {connection.id} closed by client")
    except Exception as e:
        logger.error(f"WebSocket {connection.id} error: {e}", exc_info=True)
    finally:
        manager.disconnect(connection)


async def handle_message(
    db: Session,
    connection: Connection,
    raw: str,
    manager: ConnectionManager,
) -> None:
    """
    Handle one command from an authenticated connection.

    Never raises for bad input or rejected commands; those become `error`
    events.
    """
    try:
        event_type, data = parse_frame(raw)
    except FrameError as e:
        await reply(manager, connection, EventType.ERROR, {"message": str(e)})
        return

    try:
        await handle_command(db, connection, event_type, data, manager)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        await reply(
            manager,
            connection,
            EventType.ERROR,
            {"message": f"Invalid payload: {field}: {first['msg']}", "event": event_type},
        )
    except ReadingGroupError as e:
        await reply(
            manager,
            connection,
            EventType.ERROR,
            {"message": e.message, "event": event_type},
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error handling '{event_type}' for user {connection.user_id}: {e}")
        await reply(
            manager,
            connection,
            EventType.ERROR,
            {"message": "A database error occurred. Please try again later.", "event": event_type},
        )


def record_progress(db: Session, group_id: int, user_id: int, current_page: int) -> Broadcast:
    """Run the progress command and build its plan; called in the threadpool."""
    result = membership.update_progress(db, group_id, user_id, current_page)
    return notifications.build_broadcast(notifications.progress_broadcast, result)


async def handle_command(
    db: Session,
    connection: Connection,
    event_type: str,
    data: dict[str, Any],
    manager: ConnectionManager,
) -> None:
    user_id = connection.user_id

    if event_type == EventType.PING:
        await reply(manager, connection, EventType.PONG, {})

    elif event_type == EventType.AUTHENTICATE:
        await reply(
            manager, connection, EventType.ERROR, {"message": "Already authenticated"}
        )

    elif event_type == EventType.JOIN_GROUP:
        command = GroupRoomCommand.model_validate(data)
        # Raises NotFound, or Forbidden for private groups the user is not in
        membership.get_group(db, command.group_id, user_id)
        manager.join_room(connection, group_room(command.group_id))
        await reply(manager, connection, EventType.JOINED_GROUP, {"group_id": command.group_id})

    elif event_type == EventType.LEAVE_GROUP:
        command = GroupRoomCommand.model_validate(data)
        manager.leave_room(connection, group_room(command.group_id))
        await reply(manager, connection, EventType.LEFT_GROUP, {"group_id": command.group_id})

    elif event_type == EventType.UPDATE_READING_PROGRESS:
        command = ReadingProgressCommand.model_validate(data)
        plan = await run_in_threadpool(
            record_progress, db, command.group_id, user_id, command.current_page
        )
        await event_publisher.dispatch(plan)

    elif event_type == EventType.SUBSCRIBE_BOOK_COMMENTS:
        command = BookCommentsCommand.model_validate(data)
        manager.join_room(connection, book_room(command.book_id))
        await reply(
            manager,
            connection,
            EventType.SUBSCRIBED_BOOK_COMMENTS,
            {"book_id": command.book_id},
        )

    else:
        await reply(
            manager,
            connection,
            EventType.ERROR,
            {"message": f"Unknown message type: {event_type}"},
        )


@router.get("/ws/stats", tags=["WebSocket"])
async def get_websocket_stats():
    """
    Get WebSocket connection statistics.

    Returns total connections, authenticated users and per-room counts.
    """
    manager = get_connection_manager()
    return manager.get_stats()
