from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from consulting_slots.core.db import get_session  # noqa: F401 - re-exported for routes
from consulting_slots.core.security import decode_access_token
from consulting_slots.services.booking_service import Actor, BookingEngine

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    """The authenticated caller, as vouched for by the identity service."""

    user_id: str
    email: str
    name: str | None = None

    def as_actor(self) -> Actor:
        return Actor(user_id=self.user_id, email=self.email)


async def get_current_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Identity:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )
    claims = decode_access_token(credentials.credentials)
    if not claims:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    email = claims.get("email")
    if not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has no email claim",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return Identity(user_id=str(claims["sub"]), email=email, name=claims.get("name"))


def get_booking_engine(request: Request) -> BookingEngine:
    return request.app.state.booking_engine
