"""
Pydantic Schemas Package

Request/response validation models, kept separate from the SQLAlchemy
models so the API shape can evolve independently of the database.

Schema Naming Convention:
- XxxCreate: Fields required when creating a new record
- XxxUpdate: Fields allowed when updating (all optional)
- XxxResponse: Fields returned in API responses
"""

from readalong.schemas.group_message import (
    GroupMessageCreate,
    GroupMessageListResponse,
    GroupMessageResponse,
)
from readalong.schemas.reading_group import (
    BookSummary,
    LeaveGroupResponse,
    MemberResponse,
    ProgressUpdate,
    ProgressUpdateResponse,
    ReadingGoal,
    ReadingGroupCreate,
    ReadingGroupListResponse,
    ReadingGroupResponse,
    ReadingGroupSearchResponse,
    ReadingGroupUpdate,
)
from readalong.schemas.user import UserSummary

__all__ = [
    # Message schemas
    "GroupMessageCreate",
    "GroupMessageResponse",
    "GroupMessageListResponse",
    # Group schemas
    "BookSummary",
    "MemberResponse",
    "ReadingGoal",
    "ReadingGroupCreate",
    "ReadingGroupUpdate",
    "ReadingGroupResponse",
    "ReadingGroupListResponse",
    "ReadingGroupSearchResponse",
    "ProgressUpdate",
    "ProgressUpdateResponse",
    "LeaveGroupResponse",
    # User schemas
    "UserSummary",
]
