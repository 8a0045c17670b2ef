import uuid
from dataclasses import dataclass, field
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from approval_engine.core.config import settings
from approval_engine.core.security import decode_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token", auto_error=True)

ADMIN_ROLE = "ADMIN"


@dataclass(frozen=True)
class Identity:
    """Authenticated caller, as resolved from the bearer token."""

    id: uuid.UUID
    role: str
    client_ids: frozenset[uuid.UUID] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE

    @property
    def is_ad_hoc_reviewer(self) -> bool:
        return self.role in settings.ad_hoc_reviewer_roles

    @property
    def visible_client_ids(self) -> frozenset[uuid.UUID] | None:
        """Tenants this caller may see; None means all (admins)."""
        return None if self.is_admin else self.client_ids

    def can_access_client(self, client_id: uuid.UUID | None) -> bool:
        return client_id is None or self.is_admin or client_id in self.client_ids


async def get_current_identity(
    token: Annotated[str, Depends(oauth2_scheme)],
) -> Identity:
    """Validate the JWT and return the caller's identity."""
    credentials_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_token(token)
        if payload.get("type") != "access":
            raise credentials_exc
        subject: str | None = payload.get("sub")
        if not subject:
            raise credentials_exc
        return Identity(
            id=UUID(subject),
            role=str(payload.get("role") or "").upper(),
            client_ids=frozenset(UUID(c) for c in payload.get("client_ids") or []),
        )
    except (JWTError, ValueError):
        raise credentials_exc


def require_role(*roles: str):
    """Dependency factory — raises 403 if the caller's role is not in the allowed list."""
    async def check(identity: Identity = Depends(get_current_identity)):
        if identity.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{identity.role}' is not permitted for this action.",
            )
        return identity
    return check


def ensure_client_access(identity: Identity, client_id: uuid.UUID | None) -> None:
    if not identity.can_access_client(client_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have access to this client.",
        )
