"""
WebSocket Connection Manager

Process-wide registry of live real-time connections.

Features:
- Per-connection state machine: PENDING → AUTHENTICATED → CLOSED
- Rooms: "user:{id}" (personal), "group:{id}" (reading group),
  "book:{id}" (book comments)
- user id → live connections lookup, so business code can address a user
  without knowing their sockets
- Guaranteed cleanup: disconnect() removes a connection from every map

Only the WebSocket router mutates room membership directly; everything
else goes through notify(), broadcast(), subscribe_user() and
unsubscribe_user().

Usage:
    manager = get_connection_manager()
    connection = await manager.accept(websocket)
    manager.authenticate(connection, user_id=7)
    manager.join_room(connection, group_room(3))
    await manager.broadcast(group_room(3), {"type": "...", "data": {...}})
    manager.disconnect(connection)
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from fastapi import WebSocket

from readalong.services.exceptions import InvalidStateError

logger = logging.getLogger(__name__)


def user_room(user_id: int) -> str:
    return f"user:{user_id}"


def group_room(group_id: int) -> str:
    return f"group:{group_id}"


def book_room(book_id: int) -> str:
    return f"book:{book_id}"


class ConnectionState(str, Enum):
    """Lifecycle of a connection."""

    PENDING = "pending"  # connected, waiting for a credential
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


@dataclass(eq=False)
class Connection:
    """A live WebSocket connection with its session state."""

    websocket: WebSocket
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    user_id: int | None = None
    state: ConnectionState = ConnectionState.PENDING
    rooms: set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def authenticated(self) -> bool:
        return self.state is ConnectionState.AUTHENTICATED

    @property
    def pending(self) -> bool:
        return self.state is ConnectionState.PENDING

    def mark_authenticated(self, user_id: int) -> None:
        """PENDING → AUTHENTICATED. Any other transition is an error."""
        if self.state is not ConnectionState.PENDING:
            raise InvalidStateError(f"Cannot authenticate a {self.state.value} connection")
        self.user_id = user_id
        self.state = ConnectionState.AUTHENTICATED

    def mark_closed(self) -> None:
        self.state = ConnectionState.CLOSED


class ConnectionManager:
    """
    Tracks connections, the rooms they are in, and which user owns them.

    All three maps are kept consistent by the methods below:
    - connections: connection id → Connection
    - rooms: room name → set of connection ids
    - user_connections: user id → set of connection ids
    """

    def __init__(self):
        self.connections: dict[str, Connection] = {}
        self.rooms: dict[str, set[str]] = {}
        self.user_connections: dict[int, set[str]] = {}

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    async def accept(self, websocket: WebSocket) -> Connection:
        """Accept the socket and register it as a pending connection."""
        await websocket.accept()
        return self.register(websocket)

    def register(self, websocket: WebSocket) -> Connection:
        connection = Connection(websocket=websocket)
        self.connections[connection.id] = connection
        logger.info(f"WebSocket {connection.id} connected (pending authentication)")
        return connection

    def authenticate(self, connection: Connection, user_id: int) -> None:
        """Bind a pending connection to a user and join their personal room."""
        connection.mark_authenticated(user_id)
        self.user_connections.setdefault(user_id, set()).add(connection.id)
        self.join_room(connection, user_room(user_id))
        logger.info(f"WebSocket {connection.id} authenticated as user {user_id}")

    def disconnect(self, connection: Connection) -> None:
        """
        Remove a connection from every map.

        Safe to call more than once and on connections that never
        authenticated.
        """
        for room in list(connection.rooms):
            self.leave_room(connection, room)

        if connection.user_id is not None:
            user_conns = self.user_connections.get(connection.user_id)
            if user_conns is not None:
                user_conns.discard(connection.id)
                if not user_conns:
                    del self.user_connections[connection.user_id]

        if self.connections.pop(connection.id, None) is not None:
            logger.info(f"WebSocket {connection.id} disconnected (user_id={connection.user_id})")
        connection.mark_closed()

    # -------------------------------------------------------------------------
    # Rooms
    # -------------------------------------------------------------------------
    def join_room(self, connection: Connection, room: str) -> None:
        self.rooms.setdefault(room, set()).add(connection.id)
        connection.rooms.add(room)

    def leave_room(self, connection: Connection, room: str) -> None:
        members = self.rooms.get(room)
        if members is not None:
            members.discard(connection.id)
            # Clean up empty rooms
            if not members:
                del self.rooms[room]
        connection.rooms.discard(room)

    def connections_for_user(self, user_id: int) -> list[Connection]:
        return [
            self.connections[conn_id]
            for conn_id in self.user_connections.get(user_id, set())
            if conn_id in self.connections
        ]

    def subscribe_user(self, user_id: int, room: str) -> int:
        """Join every live connection of a user to a room."""
        connections = self.connections_for_user(user_id)
        for connection in connections:
            self.join_room(connection, room)
        return len(connections)

    def unsubscribe_user(self, user_id: int, room: str) -> int:
        """Remove every live connection of a user from a room."""
        connections = self.connections_for_user(user_id)
        for connection in connections:
            self.leave_room(connection, room)
        return len(connections)

    def is_online(self, user_id: int) -> bool:
        return bool(self.user_connections.get(user_id))

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------
    async def send(self, connection: Connection, message: dict[str, Any]) -> bool:
        """Send to one connection. A failing connection is dropped."""
        try:
            await connection.websocket.send_json(message)
            return True
        except Exception as e:
            logger.warning(f"Failed to send to websocket {connection.id}: {e}")
            self.disconnect(connection)
            return False

    async def broadcast(self, room: str, message: dict[str, Any]) -> int:
        """
        Broadcast a message to every connection in a room.

        Returns:
            Number of connections the message was sent to
        """
        conn_ids = list(self.rooms.get(room, set()))
        sent_count = 0
        for conn_id in conn_ids:
            connection = self.connections.get(conn_id)
            if connection is None:
                continue
            if await self.send(connection, message):
                sent_count += 1

        logger.debug(
            f"Broadcast to room '{room}': {sent_count} sent, "
            f"{len(conn_ids) - sent_count} failed"
        )
        return sent_count

    async def notify(self, user_id: int, message: dict[str, Any]) -> int:
        """Send a message to all live connections of one user."""
        return await self.broadcast(user_room(user_id), message)

    # -------------------------------------------------------------------------
    # Stats
    # -------------------------------------------------------------------------
    def get_room_count(self, room: str) -> int:
        """Get the number of connections in a room."""
        return len(self.rooms.get(room, set()))

    def get_total_connections(self) -> int:
        """Get total number of WebSocket connections."""
        return len(self.connections)

    def get_stats(self) -> dict[str, Any]:
        """Get connection statistics."""
        return {
            "total_connections": self.get_total_connections(),
            "authenticated_users": len(self.user_connections),
            "rooms": {room: len(members) for room, members in self.rooms.items()},
        }


# Global connection manager instance
manager = ConnectionManager()


def get_connection_manager() -> ConnectionManager:
    """Get the global connection manager instance."""
    return manager
