"""
Group Message Pydantic Schemas

Schemas:
- GroupMessageCreate: Post a chat message
- GroupMessageResponse: One log entry with its author's display fields
- GroupMessageListResponse: Paginated log, newest first
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from readalong.schemas.user import UserSummary


class GroupMessageCreate(BaseModel):
    """
    Schema for posting a chat message.

    Example request body:
    {
        "text": "Chapter 3 was amazing!"
    }
    """

    text: str = Field(
        ...,
        max_length=2000,
        description="Message content",
        examples=["Who else finished part one?"],
    )

    @field_validator("text")
    @classmethod
    def strip_text(cls, v: str) -> str:
        """Trim surrounding whitespace; blank text is rejected by the service."""
        return v.strip()


class GroupMessageResponse(BaseModel):
    """Schema for a group log entry."""

    id: int = Field(..., description="Unique message identifier")
    group_id: int = Field(..., description="Group the message belongs to")
    user_id: int = Field(..., description="Author or triggering user")
    text: str = Field(..., description="Message content")
    type: str = Field(..., description="text, system or progress")
    created_at: datetime = Field(..., description="When the message was created")

    user: UserSummary | None = Field(default=None, description="Author display fields")

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": 12,
                "group_id": 3,
                "user_id": 7,
                "text": "Ana García moved from page 10 to page 42",
                "type": "progress",
                "created_at": "2024-01-15T10:30:00Z",
                "user": {"id": 7, "first_name": "Ana", "last_name1": "García", "avatar": None},
            }
        },
    )


class GroupMessageListResponse(BaseModel):
    """
    Schema for paginated message lists.

    Includes pagination metadata:
    - total: Total number of messages in the group
    - page: Current page number
    - limit: Number of items per page
    - pages: Total number of pages
    """

    items: list[GroupMessageResponse] = Field(..., description="Messages, newest first")
    total: int = Field(..., ge=0, description="Total number of messages")
    page: int = Field(..., ge=1, description="Current page number")
    limit: int = Field(..., ge=1, description="Number of items per page")
    pages: int = Field(..., ge=0, description="Total number of pages")
