"""
User Pydantic Schemas

Only the public display fields of a user are exposed by this service:
they are embedded in member lists, message authors and progress events.
"""

from pydantic import BaseModel, ConfigDict, Field


class UserSummary(BaseModel):
    """
    Display fields of a user.

    Used for denormalized author/member info. When a lookup fails, a
    placeholder with empty names is used instead (see services.directory).
    """

    id: int = Field(..., description="Unique user identifier")
    first_name: str = Field(default="", description="Given name")
    last_name1: str = Field(default="", description="First surname")
    avatar: str | None = Field(default=None, description="URL to avatar image")

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": 7,
                "first_name": "Ana",
                "last_name1": "García",
                "avatar": None,
            }
        },
    )

    @property
    def display_name(self) -> str:
        """First name and surname, or empty when unknown."""
        return f"{self.first_name} {self.last_name1}".strip()
