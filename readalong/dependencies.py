"""
FastAPI Dependencies Module

Reusable components injected into route handlers:
- DbSession: per-request database session
- CurrentIdentity: the authenticated caller, from the Bearer token
- Pagination: page/limit query parameters

Authentication goes through readalong.services.security.authenticate_token,
the same function the WebSocket handshake uses.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Query, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from readalong.config import get_settings
from readalong.database import get_db
from readalong.services.exceptions import UnauthorizedError
from readalong.services.security import Identity, authenticate_token

settings = get_settings()

# =============================================================================
# Type Aliases with Annotated
# =============================================================================

DbSession = Annotated[Session, Depends(get_db)]


# =============================================================================
# Pagination Parameters
# =============================================================================
class PaginationParams:
    """
    Page/limit query parameters for list endpoints.

    Usage in route:
        @router.get("/{group_id}/messages")
        def list_messages(pagination: Pagination):
            ...
    """

    def __init__(
        self,
        page: int = Query(
            default=1,
            ge=1,
            description="Page number (1-indexed)",
            examples=[1, 2, 3],
        ),
        limit: int = Query(
            default=20,
            ge=1,
            le=settings.messages_page_size_max,
            description="Number of items per page",
            examples=[20, 50],
        ),
    ) -> None:
        self.page = page
        self.limit = limit

    @property
    def skip(self) -> int:
        """Number of records to skip (page 1 → 0)."""
        return (self.page - 1) * self.limit


Pagination = Annotated[PaginationParams, Depends()]


# =============================================================================
# JWT Authentication
# =============================================================================
# OAuth2PasswordBearer extracts the token from "Authorization: Bearer <token>"
# and answers 401 when the header is missing. Tokens are issued by the
# account service that owns /api/v1/auth/login.

oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl="/api/v1/auth/login",
    auto_error=True,
)


def get_current_identity(token: str = Depends(oauth2_scheme)) -> Identity:
    """
    Validate the Bearer token and return the caller's identity.

    Raises:
        HTTPException: 401 if the token is invalid or expired
    """
    try:
        return authenticate_token(token)
    except UnauthorizedError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )


CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]
