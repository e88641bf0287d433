"""
Real-time Channel Schemas

Inbound command payloads for the WebSocket channel. Clients send JSON text
frames shaped like:

    {"type": "update:reading-progress", "data": {"groupId": 3, "currentPage": 42}}

Payload keys are accepted in camelCase (what existing clients send) or
snake_case.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ChannelCommand(BaseModel):
    """Base for inbound command payloads."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AuthenticateCommand(ChannelCommand):
    token: str = Field(..., min_length=1)


class GroupRoomCommand(ChannelCommand):
    group_id: int


class ReadingProgressCommand(ChannelCommand):
    group_id: int
    current_page: int


class BookCommentsCommand(ChannelCommand):
    book_id: int
