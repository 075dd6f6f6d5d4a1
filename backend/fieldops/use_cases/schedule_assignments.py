"""Schedule assignment use-cases: authorize, persist, classify, dispatch, enrich."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Iterable, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from ..auth import Capability, RequestActor
from ..domain_errors import InternalError, ValidationError
from ..schemas import ScheduleAssignmentCreate, ScheduleAssignmentUpdate, ScheduleAssignmentWithJob
from ..security import assert_job_write_access, require_capability, require_org_context
from ..services.change_classifier import (
    DEFAULT_AUDIT_PRECEDENCE,
    choose_audit_action,
    classify_change,
    classify_delete,
)
from ..services.event_dispatcher import EventDispatcher, build_sink_jobs

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleAssignmentServices:
    """Collaborators for schedule use-cases, bound to one request."""

    repository: Any
    get_job: Callable[[UUID, UUID], Any]
    dispatcher: EventDispatcher
    responses: Any
    audit_precedence: Iterable[str] = DEFAULT_AUDIT_PRECEDENCE
    require_version: bool = False
    today: Callable[[], date] = date.today


def _ensure_version_supplied(services: ScheduleAssignmentServices, version: Optional[int]) -> None:
    if services.require_version and version is None:
        raise ValidationError("version is required")


def list_schedule_assignments_use_case(
    *,
    actor: RequestActor,
    org_id: Optional[UUID],
    services: ScheduleAssignmentServices,
    day: Optional[date] = None,
    job_id: Optional[UUID] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> list[ScheduleAssignmentWithJob]:
    """Filters: date, else jobId, else startDate..endDate (both inclusive), else today."""
    resolved_org_id = require_org_context(actor, org_id)
    require_capability(actor, Capability.VIEW_SCHEDULE)

    use_range = day is None and job_id is None and start_date is not None and end_date is not None
    if use_range and start_date > end_date:
        raise ValidationError("startDate must not be after endDate")

    repository = services.repository
    try:
        if day is not None:
            states = repository.list_by_date(resolved_org_id, day, actor)
        elif job_id is not None:
            states = repository.list_by_job_id(job_id, resolved_org_id, actor)
        elif use_range:
            states = repository.list_by_date_range(resolved_org_id, start_date, end_date, actor)
        else:
            # A lone range bound is ignored.
            today = services.today()
            states = repository.list_by_date_range(resolved_org_id, today, today, actor)
    except SQLAlchemyError as error:
        logger.exception(f"Failed to query schedule assignments for org {resolved_org_id}")
        raise InternalError("Failed to load schedule assignments") from error

    return services.responses.build_many(states, resolved_org_id)


def create_schedule_assignment_use_case(
    *,
    actor: RequestActor,
    data: ScheduleAssignmentCreate,
    services: ScheduleAssignmentServices,
    request_metadata: Optional[dict[str, Any]] = None,
) -> ScheduleAssignmentWithJob:
    org_id = require_org_context(actor, data.org_id)
    require_capability(actor, Capability.MANAGE_SCHEDULE)
    if data.job_id is None:
        raise ValidationError("jobId is required")

    job = services.get_job(data.job_id, org_id)
    assert_job_write_access(job, actor)

    created = services.repository.create(org_id=org_id, data=data, created_by=actor.user_id)

    events = classify_change(None, created)
    services.dispatcher.dispatch(
        build_sink_jobs(
            operation="create",
            actor=actor,
            previous=None,
            next_state=created,
            events=events,
            audit_action=choose_audit_action(None, created),
            materials=services.responses.load_materials(created.job_id, org_id),
            request_metadata=request_metadata,
        )
    )
    return services.responses.build_one(created)


def update_schedule_assignment_use_case(
    *,
    actor: RequestActor,
    data: ScheduleAssignmentUpdate,
    services: ScheduleAssignmentServices,
    request_metadata: Optional[dict[str, Any]] = None,
) -> ScheduleAssignmentWithJob:
    org_id = require_org_context(actor, data.org_id)
    require_capability(actor, Capability.MANAGE_SCHEDULE)

    previous = services.repository.get_by_id(data.id, org_id)
    job = services.get_job(previous.job_id, org_id)
    assert_job_write_access(job, actor)
    _ensure_version_supplied(services, data.version)

    updated = services.repository.update(
        data.id,
        org_id,
        data.changes(),
        expected_version=data.version,
    )

    events = classify_change(previous, updated)
    action = choose_audit_action(previous, updated, services.audit_precedence)
    logger.info(
        f"Schedule assignment {updated.id} updated by {actor.user_id}: "
        f"{action} ({', '.join(event.kind.value for event in events)})"
    )
    services.dispatcher.dispatch(
        build_sink_jobs(
            operation="update",
            actor=actor,
            previous=previous,
            next_state=updated,
            events=events,
            audit_action=action,
            materials=services.responses.load_materials(updated.job_id, org_id),
            request_metadata=request_metadata,
        )
    )
    return services.responses.build_one(updated)


def delete_schedule_assignment_use_case(
    *,
    actor: RequestActor,
    assignment_id: Optional[UUID],
    org_id: Optional[UUID],
    services: ScheduleAssignmentServices,
    version: Optional[int] = None,
    request_metadata: Optional[dict[str, Any]] = None,
) -> None:
    if assignment_id is None:
        raise ValidationError("id is required")
    resolved_org_id = require_org_context(actor, org_id)
    require_capability(actor, Capability.MANAGE_SCHEDULE)

    existing = services.repository.get_by_id(assignment_id, resolved_org_id)
    job = services.get_job(existing.job_id, resolved_org_id)
    assert_job_write_access(job, actor)
    _ensure_version_supplied(services, version)

    deleted = services.repository.delete(assignment_id, resolved_org_id, expected_version=version)

    services.dispatcher.dispatch(
        build_sink_jobs(
            operation="delete",
            actor=actor,
            previous=deleted,
            next_state=deleted,
            events=classify_delete(deleted),
            audit_action="DELETE",
            materials=services.responses.load_materials(deleted.job_id, resolved_org_id),
            request_metadata=request_metadata,
        )
    )
