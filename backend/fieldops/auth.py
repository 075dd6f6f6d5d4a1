"""Authentication: bearer token -> request actor, and the role/capability matrix."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Optional
import logging
import time
from uuid import UUID
from jose import JWTError, jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from .config import settings
from .database import get_db
from .domain_errors import UnauthorizedError
from .models import User

logger = logging.getLogger(__name__)

# Bearer token scheme (missing header is answered with our own 401 envelope)
security = HTTPBearer(auto_error=False)


class Capability(str, Enum):
    """Enumerated permissions checked through security.has_capability."""

    ADMIN = "admin"
    MANAGE_ORG = "manage_org"
    MANAGE_STAFF = "manage_staff"
    MANAGE_JOBS = "manage_jobs"
    MANAGE_SCHEDULE = "manage_schedule"
    VIEW_SCHEDULE = "view_schedule"


# Role capability matrix
ROLE_CAPABILITIES: dict[str, frozenset[Capability]] = {
    "admin": frozenset({Capability.ADMIN}),
    "manager": frozenset({
        Capability.MANAGE_ORG,
        Capability.MANAGE_STAFF,
        Capability.MANAGE_JOBS,
        Capability.MANAGE_SCHEDULE,
        Capability.VIEW_SCHEDULE,
    }),
    "scheduler": frozenset({
        Capability.MANAGE_JOBS,
        Capability.MANAGE_SCHEDULE,
        Capability.VIEW_SCHEDULE,
    }),
    # Crew leads may reshuffle their own crew's slots only (job-scoped write access).
    "crew_lead": frozenset({Capability.MANAGE_SCHEDULE, Capability.VIEW_SCHEDULE}),
    "installer": frozenset({Capability.VIEW_SCHEDULE}),
    "viewer": frozenset({Capability.VIEW_SCHEDULE}),
}


@dataclass(frozen=True)
class RequestActor:
    """Resolved caller for one request."""

    user_id: UUID | None
    org_id: UUID | None
    role_key: str | None = None
    crew_id: UUID | None = None
    capabilities: frozenset[Capability] = field(default_factory=frozenset)


def capabilities_for_role(role: str | None) -> frozenset[Capability]:
    """Unknown roles get no capabilities."""
    return ROLE_CAPABILITIES.get(role or "", frozenset())


def actor_from_user(user: User) -> RequestActor:
    return RequestActor(
        user_id=user.id,
        org_id=user.org_id,
        role_key=user.role,
        crew_id=user.crew_id,
        capabilities=capabilities_for_role(user.role),
    )


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token (used by the session service and tests)."""
    to_encode = data.copy()
    now = int(time.time())
    if expires_delta:
        exp = now + int(expires_delta.total_seconds())
    else:
        exp = now + int(settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES) * 60
    to_encode.update({"exp": exp, "iat": now, "type": "access"})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode JWT token."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        raise UnauthorizedError("Could not validate credentials")

    now = int(time.time())
    try:
        exp_int = int(payload["exp"])
    except (KeyError, TypeError, ValueError):
        raise UnauthorizedError("Could not validate credentials")
    if now > exp_int + int(settings.JWT_LEEWAY_SECONDS):
        raise UnauthorizedError("Token expired")

    iat = payload.get("iat")
    if iat is not None:
        try:
            iat_int = int(iat)
        except (TypeError, ValueError):
            raise UnauthorizedError("Could not validate credentials")
        # Reject tokens issued far in the future (clock skew / malicious tokens).
        if iat_int > now + int(settings.JWT_LEEWAY_SECONDS):
            raise UnauthorizedError("Could not validate credentials")
    return payload


def _parse_token_subject(payload: dict) -> UUID:
    """Parse and validate JWT subject as UUID."""
    sub = payload.get("sub")
    if not sub:
        raise UnauthorizedError("Could not validate credentials")
    try:
        return UUID(str(sub))
    except ValueError:
        raise UnauthorizedError("Could not validate credentials")


def _assert_token_not_revoked(user: User, payload: dict) -> None:
    try:
        token_ver = int(payload.get("ver", 0))
    except (TypeError, ValueError):
        raise UnauthorizedError("Could not validate credentials")
    if user.token_version != token_ver:
        raise UnauthorizedError("Token has been revoked")


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user."""
    if credentials is None:
        raise UnauthorizedError("Not authenticated")
    payload = decode_token(credentials.credentials)

    if payload.get("type") != "access":
        raise UnauthorizedError("Invalid token type")

    user_id = _parse_token_subject(payload)
    user = db.query(User).filter(User.id == user_id, User.is_active == True).first()  # noqa: E712
    if user is None:
        raise UnauthorizedError("User not found or inactive")

    _assert_token_not_revoked(user, payload)
    return user


def get_current_actor(current_user: User = Depends(get_current_user)) -> RequestActor:
    """Resolve the request actor for the authenticated user."""
    return actor_from_user(current_user)
