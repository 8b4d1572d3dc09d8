"""
Token verification for the signaling service.

Tokens are issued by the auth service; this module only decodes them and
resolves the local user.  No JWT decoding should happen outside this module.
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from sqlalchemy.orm import Session

from app.config import settings
from app.models.user import User


def create_access_token(user_id: int, expires_delta: timedelta | None = None) -> str:
    """Mint a token in the format the auth service issues."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    payload = {"sub": str(user_id), "user_id": user_id, "exp": expire}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and validate a JWT. Returns payload dict or None on failure."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None


def get_user_from_token(token: str, db: Session) -> User | None:
    payload = decode_access_token(token)
    if payload is None:
        return None

    user_id = payload.get("user_id", payload.get("sub"))
    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        return None
    return db.query(User).filter(User.id == user_id, User.is_active == True).first()  # noqa: E712
