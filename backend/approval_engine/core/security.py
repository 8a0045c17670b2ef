"""Bearer-token helpers.

Tokens are issued by the dashboard's identity provider; this service only
verifies them. ``create_access_token`` exists for tests and local tooling.
"""
from datetime import datetime, timedelta, timezone

from jose import jwt

from approval_engine.core.config import settings


def create_access_token(subject: str, role: str, client_ids: list[str] | None = None) -> str:
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
    )
    return jwt.encode(
        {
            "sub": subject,
            "role": role,
            "client_ids": [str(c) for c in client_ids or []],
            "exp": expire,
            "type": "access",
        },
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


def decode_token(token: str) -> dict:
    """Raises JWTError on invalid/expired token."""
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
