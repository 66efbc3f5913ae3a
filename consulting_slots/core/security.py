from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from consulting_slots.core.config import settings


def create_access_token(
    subject: str | int,
    email: str,
    name: str | None = None,
    expires_minutes: int | None = None,
) -> str:
    """Issue an access token the way the identity service does (tooling and tests)."""
    minutes = expires_minutes if expires_minutes is not None else settings.access_token_expire_minutes
    expire = datetime.now(UTC) + timedelta(minutes=minutes)
    to_encode = {
        "sub": str(subject),
        "email": email,
        "name": name,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Returns the claims of a valid access token, or None."""
    try:
        payload = jwt.decode(
            token, settings.secret_key, algorithms=[settings.algorithm]
        )
    except JWTError:
        return None
    if payload.get("type") != "access" or not payload.get("sub"):
        return None
    return payload
