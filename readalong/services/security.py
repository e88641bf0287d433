"""
Security Service (Identity Gate)

Turns a bearer credential into an authenticated identity. The same
function is used by the HTTP dependency and the WebSocket handshake, so
both surfaces accept exactly the same tokens.

Token format:
    JWT signed with settings.secret_key, carrying:
    - sub: user id (string)
    - role: system-wide role ("client" or "admin")
    - type: "access"
    - exp: expiry

Usage:
    from readalong.services.security import authenticate_token

    identity = authenticate_token("Bearer eyJ...")
    identity.user_id, identity.role
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from jose import ExpiredSignatureError, JWTError, jwt

from readalong.config import get_settings
from readalong.services.exceptions import TokenExpiredError, UnauthorizedError

logger = logging.getLogger(__name__)
settings = get_settings()

BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class Identity:
    """Authenticated caller: user id plus system-wide role."""

    user_id: int
    role: str = "client"


def create_access_token(
    data: dict,
    expires_delta: timedelta | None = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        data: Payload data to encode in the token (at least "sub")
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(UTC) + expires_delta
    else:
        expire = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode.update({"exp": expire, "type": "access"})

    return jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )


def decode_token(token: str) -> dict:
    """
    Decode and validate a JWT token.

    Raises:
        TokenExpiredError: If the signature is valid but the token expired
        UnauthorizedError: If the token is malformed or badly signed
    """
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except ExpiredSignatureError:
        logger.warning("Rejected expired token")
        raise TokenExpiredError()
    except JWTError as e:
        logger.warning(f"JWT decode error: {e}")
        raise UnauthorizedError("Invalid token")


def authenticate_token(token: str | None) -> Identity:
    """
    Validate a bearer credential and return the caller's identity.

    Accepts the raw token or the "Bearer <token>" header form.

    Args:
        token: Credential string, possibly None

    Returns:
        Identity with the user id and role claims

    Raises:
        UnauthorizedError: Missing, malformed or wrong-type token
        TokenExpiredError: Expired token
    """
    if not token:
        raise UnauthorizedError("Access denied: no credential supplied")

    if token.startswith(BEARER_PREFIX):
        token = token[len(BEARER_PREFIX):]

    payload = decode_token(token)

    if payload.get("type") != "access":
        logger.warning("Token type mismatch: expected access")
        raise UnauthorizedError("Invalid token type")

    subject = payload.get("sub")
    try:
        user_id = int(subject)
    except (TypeError, ValueError):
        raise UnauthorizedError("Invalid token subject")

    return Identity(user_id=user_id, role=payload.get("role", "client"))
