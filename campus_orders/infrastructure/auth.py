from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import jwt
from typing import Optional
from campus_orders.core_settings import Settings, get_settings
from campus_orders.domain.exceptions import TokenExpired, Unauthenticated

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Identity:
    user_id: int
    name: str = ""
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def create_access_token(
    user_id: int,
    name: str = "",
    role: str = "user",
    expires_minutes: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> str:
    settings = settings or get_settings()
    if expires_minutes is None:
        expires_minutes = settings.ACCESS_TOKEN_EXPIRE_MINUTES
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "name": name,
        "role": role,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_access_token(token: str, settings: Optional[Settings] = None) -> Identity:
    settings = settings or get_settings()
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.ExpiredSignatureError:
        raise TokenExpired() from None
    except jwt.PyJWTError:
        raise Unauthenticated("invalid token") from None

    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise Unauthenticated("invalid token subject") from None
    return Identity(user_id=user_id, name=payload.get("name", ""), role=payload.get("role", "user"))
