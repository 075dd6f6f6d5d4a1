"""Security helpers (capability checks, org context, job-scoped write access)."""

from __future__ import annotations

from typing import Any, Literal
from uuid import UUID

from sqlalchemy import false

from .auth import Capability, RequestActor
from .domain_errors import ForbiddenError, UnauthorizedError, ValidationError
from .models import ScheduleAssignment

VisibilityMode = Literal["org_wide", "crew_scoped"]

# Holders of any of these see (and may write) every job in the org.
ORG_WIDE_VISIBILITY_CAPABILITIES: frozenset[Capability] = frozenset({
    Capability.ADMIN,
    Capability.MANAGE_ORG,
    Capability.MANAGE_STAFF,
    Capability.MANAGE_JOBS,
})


def has_capability(actor: RequestActor, capability: Capability) -> bool:
    """Single capability check; admin implies everything."""
    if not actor.user_id:
        return False
    if Capability.ADMIN in actor.capabilities:
        return True
    return capability in actor.capabilities


def get_visibility_mode(actor: RequestActor) -> VisibilityMode:
    if not actor.user_id:
        return "crew_scoped"
    if actor.capabilities & ORG_WIDE_VISIBILITY_CAPABILITIES:
        return "org_wide"
    return "crew_scoped"


def require_org_context(actor: RequestActor, org_id: UUID | None) -> UUID:
    """Verify the actor belongs to the requested org and return the resolved org id."""
    if not actor.user_id or not actor.org_id:
        raise UnauthorizedError("Not authenticated")
    if org_id is None:
        raise ValidationError("orgId is required")
    if org_id != actor.org_id:
        raise UnauthorizedError("Not a member of this organization")
    return actor.org_id


def require_capability(actor: RequestActor, capability: Capability) -> None:
    """Org-level capability gate."""
    if not has_capability(actor, capability):
        raise ForbiddenError(
            "Insufficient permissions",
            details={"reason": "capability", "capability": capability.value},
        )


def can_write_job(job: Any, actor: RequestActor) -> bool:
    """Org-wide actors write any job; crew-scoped actors only their own crew's jobs."""
    if get_visibility_mode(actor) == "org_wide":
        return True
    return bool(job.crew_id and actor.crew_id and job.crew_id == actor.crew_id)


def assert_job_write_access(job: Any, actor: RequestActor) -> None:
    """Job-scoped gate, evaluated after the job is loaded."""
    if not can_write_job(job, actor):
        raise ForbiddenError(
            "Insufficient permissions for this job",
            details={"reason": "job_write_access", "jobId": str(job.id)},
        )


def apply_assignment_visibility(query: Any, actor: RequestActor):
    """Apply assignment visibility policy to a SQLAlchemy query."""
    if get_visibility_mode(actor) == "org_wide":
        return query
    if not actor.crew_id:
        return query.filter(false())
    return query.filter(ScheduleAssignment.crew_id == actor.crew_id)
