"""Schedule assignment endpoints (crew-to-job time slots)."""

from __future__ import annotations

import ipaddress
from datetime import date
from functools import partial
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ..auth import RequestActor, get_current_actor
from ..config import settings
from ..database import get_db
from ..domain_errors import ValidationError
from ..error_responses import ok_response
from ..repositories.schedule_assignments import AssignmentRepository
from ..schemas import ScheduleAssignmentCreate, ScheduleAssignmentUpdate
from ..services.assignment_response_builder import AssignmentResponseBuilder
from ..services.directories import get_job_by_id
from ..services.event_dispatcher import get_event_dispatcher
from ..use_cases.schedule_assignments import (
    ScheduleAssignmentServices,
    create_schedule_assignment_use_case,
    delete_schedule_assignment_use_case,
    list_schedule_assignments_use_case,
    update_schedule_assignment_use_case,
)

router = APIRouter(tags=["schedule"])


def get_schedule_services(db: Session = Depends(get_db)) -> ScheduleAssignmentServices:
    return ScheduleAssignmentServices(
        repository=AssignmentRepository(db),
        get_job=partial(get_job_by_id, db),
        dispatcher=get_event_dispatcher(),
        responses=AssignmentResponseBuilder(db),
        audit_precedence=tuple(settings.audit_action_precedence),
        require_version=settings.SCHEDULE_REQUIRE_VERSION,
    )


def _get_client_ip(request: Request) -> str:
    if settings.TRUST_PROXY_HEADERS:
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            try:
                ipaddress.ip_address(real_ip)
                return real_ip
            except ValueError:
                pass

        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # X-Forwarded-For may contain a list: client, proxy1, proxy2
            candidate = forwarded.split(",")[0].strip()
            try:
                ipaddress.ip_address(candidate)
                return candidate
            except ValueError:
                pass

    if request.client:
        return request.client.host
    return "unknown"


def _request_metadata(request: Request) -> dict[str, str]:
    return {
        "ip": _get_client_ip(request),
        "userAgent": (request.headers.get("user-agent") or "")[:512],
    }


def _parse_day(value: Optional[str], field: str) -> Optional[date]:
    """Accept YYYY-MM-DD or a full ISO timestamp; only the calendar day is kept."""
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        raise ValidationError(f"Invalid {field}", details={"field": field})


@router.get("/schedule-assignments")
def list_schedule_assignments(
    org_id: Optional[UUID] = Query(None, alias="orgId"),
    day: Optional[str] = Query(None, alias="date"),
    job_id: Optional[UUID] = Query(None, alias="jobId"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    actor: RequestActor = Depends(get_current_actor),
    services: ScheduleAssignmentServices = Depends(get_schedule_services),
):
    items = list_schedule_assignments_use_case(
        actor=actor,
        org_id=org_id,
        services=services,
        day=_parse_day(day, "date"),
        job_id=job_id,
        start_date=_parse_day(start_date, "startDate"),
        end_date=_parse_day(end_date, "endDate"),
    )
    return ok_response(items)


@router.post("/schedule-assignments")
def create_schedule_assignment(
    data: ScheduleAssignmentCreate,
    request: Request,
    actor: RequestActor = Depends(get_current_actor),
    services: ScheduleAssignmentServices = Depends(get_schedule_services),
):
    item = create_schedule_assignment_use_case(
        actor=actor,
        data=data,
        services=services,
        request_metadata=_request_metadata(request),
    )
    return ok_response(item)


@router.patch("/schedule-assignments")
def update_schedule_assignment(
    data: ScheduleAssignmentUpdate,
    request: Request,
    actor: RequestActor = Depends(get_current_actor),
    services: ScheduleAssignmentServices = Depends(get_schedule_services),
):
    item = update_schedule_assignment_use_case(
        actor=actor,
        data=data,
        services=services,
        request_metadata=_request_metadata(request),
    )
    return ok_response(item)


@router.delete("/schedule-assignments")
def delete_schedule_assignment(
    request: Request,
    assignment_id: Optional[UUID] = Query(None, alias="id"),
    org_id: Optional[UUID] = Query(None, alias="orgId"),
    version: Optional[int] = Query(None),
    actor: RequestActor = Depends(get_current_actor),
    services: ScheduleAssignmentServices = Depends(get_schedule_services),
):
    delete_schedule_assignment_use_case(
        actor=actor,
        assignment_id=assignment_id,
        org_id=org_id,
        services=services,
        version=version,
        request_metadata=_request_metadata(request),
    )
    return ok_response(None)
