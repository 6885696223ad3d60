"""
Order Tracking — JWT verification (shared secret with the identity service)

The same verify_token() is used by the HTTP middleware and by the realtime
handshake.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import jwt, JWTError, ExpiredSignatureError

from order_tracking.core.config import get_settings
from order_tracking.core.errors import AuthenticationError

settings = get_settings()
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthenticatedUser:
    """Identity extracted from a verified token, threaded into every call."""

    id: str
    email: str | None = None


def decode_token(token: str) -> dict[str, Any]:
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


def verify_token(token: str | None) -> AuthenticatedUser:
    """Decode a bearer credential. Raises AuthenticationError on any failure."""
    if not token:
        raise AuthenticationError("Authentication token required")
    try:
        claims = decode_token(token)
    except ExpiredSignatureError:
        logger.warning("Token verification failed: token expired")
        raise AuthenticationError("Token expired")
    except JWTError as exc:
        logger.warning("Token verification failed: %s", exc)
        raise AuthenticationError("Invalid token")

    user_id = claims.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token")
    return AuthenticatedUser(id=str(user_id), email=claims.get("email"))


def extract_bearer(header_value: str | None) -> str | None:
    if not header_value or not header_value.startswith("Bearer "):
        return None
    return header_value.split(" ", 1)[1].strip() or None


def create_access_token(user_id: str, email: str | None = None, expires_minutes: int | None = None) -> str:
    expire = datetime.now(tz=timezone.utc) + timedelta(
        minutes=expires_minutes if expires_minutes is not None else settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
    )
    payload = {"sub": user_id, "email": email, "exp": expire, "type": "access", "jti": str(uuid.uuid4())}
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
