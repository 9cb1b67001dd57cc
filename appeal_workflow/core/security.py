"""Security utilities: bearer token issuing and decoding."""

from datetime import datetime, timedelta, timezone
import logging

import jwt
from pydantic import BaseModel

from .config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class TokenPayload(BaseModel):
    """JWT token payload."""

    sub: str  # User ID
    role: str = "user"
    name: str | None = None
    email: str | None = None
    exp: datetime
    iat: datetime


def create_access_token(
    user_id: str,
    role: str = "user",
    name: str | None = None,
    email: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token."""
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )

    payload = {
        "sub": str(user_id),
        "role": role,
        "name": name,
        "email": email,
        "exp": expire,
        "iat": now,
    }

    return jwt.encode(payload, settings.secret_key, algorithm="HS256")


def decode_token(token: str) -> TokenPayload | None:
    """Decode and validate a JWT token."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=["HS256"])
        return TokenPayload(**payload)
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired access token")
        return None
    except jwt.InvalidTokenError:
        return None
