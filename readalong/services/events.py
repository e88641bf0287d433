"""
Event System for Real-Time Broadcasting

Delivers reading-group events to WebSocket rooms.

Features:
- Wire-level event names (EventType)
- Event frames: {"type": ..., "data": {...}, "timestamp": ...}
- Broadcast plans: room subscription changes plus the events to send,
  built by readalong.services.notifications while the database session
  is still open and dispatched afterwards (usually as a background task)

Ordering:
Plans are only built after the command committed, so a client that
re-reads the group after receiving an event sees the new state.

Failure policy:
Delivery is best-effort. Any failure while dispatching is logged and
swallowed; the command that produced the event has already succeeded.

Usage:
    from readalong.services.events import event_publisher

    plan = notifications.progress_broadcast(result)
    background_tasks.add_task(event_publisher.dispatch, plan)
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from readalong.services.websocket import get_connection_manager, user_room

logger = logging.getLogger(__name__)


# =============================================================================
# Event Types
# =============================================================================


class EventType(StrEnum):
    """Wire-level event names of the real-time channel."""

    # Inbound commands
    AUTHENTICATE = "authenticate"
    JOIN_GROUP = "join:group"
    LEAVE_GROUP = "leave:group"
    UPDATE_READING_PROGRESS = "update:reading-progress"
    SUBSCRIBE_BOOK_COMMENTS = "subscribe:book-comments"
    PING = "ping"

    # Outbound events
    CONNECTED = "connected"
    JOINED_GROUP = "joined:group"
    LEFT_GROUP = "left:group"
    SUBSCRIBED_BOOK_COMMENTS = "subscribed:book-comments"
    ERROR = "error"
    AUTH_ERROR = "auth-error"
    PONG = "pong"
    READING_PROGRESS_UPDATED = "reading-progress:updated"
    GROUP_MESSAGE_NEW = "group-message:new"
    GROUP_KICKED = "group:kicked"


@dataclass
class Event:
    """
    Represents an event to be published.

    Attributes:
        type: The event type
        data: Event payload data (JSON-ready)
        timestamp: When the event occurred
        channel: Target room(s); None for direct replies
    """

    type: EventType
    data: dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    channel: str | list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert event to the JSON frame sent to clients."""
        return {
            "type": self.type.value,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> str:
        """Convert event to JSON string."""
        return json.dumps(self.to_dict())

    @property
    def channels(self) -> list[str]:
        if not self.channel:
            return []
        if isinstance(self.channel, list):
            return self.channel
        return [self.channel]


@dataclass
class Broadcast:
    """
    What to do on the channel after a command committed.

    Room changes are applied first (in order: subscribe, unsubscribe),
    then personal notices are sent, then events are published in list
    order.

    Attributes:
        events: Events to publish
        notices: (user_id, event type, data) sent to one user's connections
        subscribe: (user_id, room) pairs to join for every live connection
        unsubscribe: (user_id, room) pairs to leave for every live connection
    """

    events: list[Event] = field(default_factory=list)
    notices: list[tuple[int, EventType, dict[str, Any]]] = field(default_factory=list)
    subscribe: list[tuple[int, str]] = field(default_factory=list)
    unsubscribe: list[tuple[int, str]] = field(default_factory=list)


# =============================================================================
# Event Publisher
# =============================================================================


class EventPublisher:
    """Publishes events to WebSocket rooms through the ConnectionManager."""

    async def publish(self, event: Event) -> int:
        """
        Publish an event to every room it targets.

        Returns:
            Number of connections reached
        """
        manager = get_connection_manager()
        total_sent = 0
        message = event.to_dict()

        for channel in event.channels:
            try:
                sent = await manager.broadcast(channel, message)
            except Exception as e:
                logger.warning(f"Failed to publish {event.type.value} to '{channel}': {e}")
                continue
            total_sent += sent
            logger.debug(f"Published {event.type.value} to '{channel}': {sent} clients")

        return total_sent

    async def dispatch(self, broadcast: Broadcast) -> int:
        """
        Apply a broadcast plan. Never raises.

        Returns:
            Number of deliveries made
        """
        manager = get_connection_manager()
        try:
            for user_id, room in broadcast.subscribe:
                manager.subscribe_user(user_id, room)
            for user_id, room in broadcast.unsubscribe:
                manager.unsubscribe_user(user_id, room)
        except Exception as e:
            logger.warning(f"Failed to update room subscriptions: {e}")

        total = 0
        for user_id, event_type, data in broadcast.notices:
            total += await self.notify_user(user_id, event_type, data)
        for event in broadcast.events:
            total += await self.publish(event)
        return total

    async def notify_user(
        self,
        user_id: int,
        event_type: EventType,
        data: dict[str, Any],
    ) -> int:
        """Send an event to all live connections of one user."""
        event = Event(type=event_type, data=data, channel=user_room(user_id))
        try:
            return await get_connection_manager().notify(user_id, event.to_dict())
        except Exception as e:
            logger.warning(f"Failed to notify user {user_id} of {event_type.value}: {e}")
            return 0


# =============================================================================
# Global Event Publisher Instance
# =============================================================================

event_publisher = EventPublisher()


def get_event_publisher() -> EventPublisher:
    """Get the global event publisher instance."""
    return event_publisher
