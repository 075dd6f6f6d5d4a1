from __future__ import annotations

from types import SimpleNamespace
from uuid import uuid4

import pytest

from conftest import make_actor
from fieldops.auth import ROLE_CAPABILITIES, Capability, RequestActor
from fieldops.domain_errors import ForbiddenError, UnauthorizedError, ValidationError
from fieldops.security import (
    assert_job_write_access,
    get_visibility_mode,
    has_capability,
    require_capability,
    require_org_context,
)


@pytest.mark.parametrize(
    ("role", "can_view", "can_manage", "visibility"),
    [
        ("admin", True, True, "org_wide"),
        ("manager", True, True, "org_wide"),
        ("scheduler", True, True, "org_wide"),
        ("crew_lead", True, True, "crew_scoped"),
        ("installer", True, False, "crew_scoped"),
        ("viewer", True, False, "crew_scoped"),
        ("unknown_role", False, False, "crew_scoped"),
    ],
)
def test_role_capability_matrix(role: str, can_view: bool, can_manage: bool, visibility: str) -> None:
    actor = make_actor(org_id=uuid4(), role=role)

    assert has_capability(actor, Capability.VIEW_SCHEDULE) is can_view
    assert has_capability(actor, Capability.MANAGE_SCHEDULE) is can_manage
    assert get_visibility_mode(actor) == visibility


def test_every_role_has_an_entry_for_each_known_role() -> None:
    assert set(ROLE_CAPABILITIES) == {"admin", "manager", "scheduler", "crew_lead", "installer", "viewer"}


def test_anonymous_actor_has_no_capabilities() -> None:
    actor = RequestActor(user_id=None, org_id=None, capabilities=frozenset({Capability.ADMIN}))

    assert has_capability(actor, Capability.VIEW_SCHEDULE) is False


def test_org_context_accepts_own_org() -> None:
    org_id = uuid4()
    actor = make_actor(org_id=org_id)

    assert require_org_context(actor, org_id) == org_id


def test_org_context_rejects_foreign_org_as_unauthorized() -> None:
    actor = make_actor(org_id=uuid4())

    with pytest.raises(UnauthorizedError) as exc_info:
        require_org_context(actor, uuid4())

    assert exc_info.value.http_status == 401


def test_org_context_requires_org_id() -> None:
    actor = make_actor(org_id=uuid4())

    with pytest.raises(ValidationError, match="orgId is required"):
        require_org_context(actor, None)


def test_org_context_rejects_unauthenticated_actor() -> None:
    with pytest.raises(UnauthorizedError):
        require_org_context(RequestActor(user_id=None, org_id=None), uuid4())


def test_capability_failure_reports_capability_reason() -> None:
    actor = make_actor(org_id=uuid4(), role="viewer")

    with pytest.raises(ForbiddenError) as exc_info:
        require_capability(actor, Capability.MANAGE_SCHEDULE)

    assert exc_info.value.details == {"reason": "capability", "capability": "manage_schedule"}


def test_org_wide_actor_can_write_any_job() -> None:
    actor = make_actor(org_id=uuid4(), role="scheduler")
    job = SimpleNamespace(id=uuid4(), crew_id=uuid4())

    assert_job_write_access(job, actor)


def test_crew_lead_can_write_own_crew_job() -> None:
    crew_id = uuid4()
    actor = make_actor(org_id=uuid4(), role="crew_lead", crew_id=crew_id)
    job = SimpleNamespace(id=uuid4(), crew_id=crew_id)

    assert_job_write_access(job, actor)


@pytest.mark.parametrize("job_crew", [None, "other"])
def test_crew_lead_cannot_write_other_crew_job(job_crew) -> None:
    actor = make_actor(org_id=uuid4(), role="crew_lead", crew_id=uuid4())
    job = SimpleNamespace(id=uuid4(), crew_id=uuid4() if job_crew else None)

    with pytest.raises(ForbiddenError) as exc_info:
        assert_job_write_access(job, actor)

    assert exc_info.value.details == {"reason": "job_write_access", "jobId": str(job.id)}
