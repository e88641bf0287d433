"""
Reading Group Pydantic Schemas

Schemas:
- ReadingGoal: Optional pace target for the group
- ReadingGroupCreate: Create a new group (creator becomes the first admin)
- ReadingGroupUpdate: Partial settings update (admins only)
- ProgressUpdate: Report the page a member has reached
- MemberResponse: One member with role, progress and display fields
- ReadingGroupResponse: Full group representation
- ReadingGroupListResponse / ReadingGroupSearchResponse: Listings
- ProgressUpdateResponse, LeaveGroupResponse: Command outcomes

Business Rules:
- creator, book and members are never settable through ReadingGroupUpdate
- current_page must be >= 0 (not clamped to the book's page count)
"""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from readalong.schemas.group_message import GroupMessageResponse
from readalong.schemas.user import UserSummary


# =============================================================================
# Embedded Schemas
# =============================================================================


class ReadingGoal(BaseModel):
    """Reading pace target. Both parts are optional."""

    pages_per_day: int | None = Field(
        default=None,
        gt=0,
        description="Pages the group aims to read per day",
        examples=[20],
    )
    target_finish_date: date | None = Field(
        default=None,
        description="Date the group aims to finish the book",
        examples=["2024-03-01"],
    )

    model_config = ConfigDict(from_attributes=True)


class BookSummary(BaseModel):
    """Minimal book info embedded in group responses."""

    id: int = Field(..., description="Book ID")
    title: str = Field(..., description="Book title")
    authors: list[str] = Field(default_factory=list, description="Author names")
    cover_image: str | None = Field(default=None, description="Cover image URL")

    model_config = ConfigDict(from_attributes=True)

    @field_validator("authors", mode="before")
    @classmethod
    def split_authors(cls, v):
        """Books store authors as a comma-separated string."""
        if v is None:
            return []
        if isinstance(v, str):
            return [name.strip() for name in v.split(",") if name.strip()]
        return v


class MemberResponse(BaseModel):
    """A group member, in join order."""

    user_id: int = Field(..., description="Member's user ID")
    role: str = Field(..., description="admin or member")
    current_page: int = Field(..., ge=0, description="Last reported page")
    joined_at: datetime = Field(..., description="When the user joined")
    user: UserSummary | None = Field(default=None, description="Display fields")

    model_config = ConfigDict(from_attributes=True)


# =============================================================================
# Request Schemas
# =============================================================================


class ReadingGroupCreate(BaseModel):
    """
    Schema for creating a reading group.

    Example request body:
    {
        "name": "Sci-fi Sundays",
        "book_id": 42,
        "is_private": false,
        "reading_goal": {"pages_per_day": 20}
    }
    """

    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Group name",
        examples=["Sci-fi Sundays"],
    )
    description: str | None = Field(
        default=None,
        max_length=2000,
        description="What the group is about",
    )
    book_id: int = Field(..., ge=1, description="Book the group reads")
    is_private: bool = Field(default=False, description="Hide the group from search")
    reading_goal: ReadingGoal | None = Field(default=None, description="Optional pace target")

    @field_validator("name")
    @classmethod
    def name_must_not_be_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Group name must not be blank")
        return v


class ReadingGroupUpdate(BaseModel):
    """
    Schema for updating group settings.

    All fields are optional for PATCH-style updates. Only fields present in
    the request body are applied.
    """

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    is_private: bool | None = Field(default=None)
    reading_goal: ReadingGoal | None = Field(default=None)


class ProgressUpdate(BaseModel):
    """
    Schema for reporting reading progress.

    Negative pages are rejected by the membership service with a 400 so
    that HTTP and WebSocket callers get the same error.
    """

    current_page: int = Field(..., description="Page the member has reached", examples=[42])


# =============================================================================
# Response Schemas
# =============================================================================


class ReadingGroupResponse(BaseModel):
    """Full reading group representation."""

    id: int = Field(..., description="Unique group identifier")
    name: str
    description: str | None = None
    book_id: int
    creator_id: int
    is_private: bool
    reading_goal: ReadingGoal | None = None
    members: list[MemberResponse] = Field(default_factory=list)
    book: BookSummary | None = None
    creator: UserSummary | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReadingGroupListResponse(BaseModel):
    """Groups the caller belongs to."""

    items: list[ReadingGroupResponse]
    total: int = Field(..., ge=0)


class ReadingGroupSearchResponse(BaseModel):
    """Paginated public group search results."""

    items: list[ReadingGroupResponse]
    total: int = Field(..., ge=0)
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)
    pages: int = Field(..., ge=0)


class ProgressUpdateResponse(BaseModel):
    """Outcome of a progress update."""

    group: ReadingGroupResponse
    previous_page: int
    current_page: int
    message: GroupMessageResponse


class LeaveGroupResponse(BaseModel):
    """
    Outcome of leaving a group.

    group_deleted is true when the caller was the last member; group is
    then None.
    """

    group_deleted: bool
    message: str
    new_creator_id: int | None = None
    group: ReadingGroupResponse | None = None
