"""Org-scoped persistence for schedule assignments."""
from __future__ import annotations

import logging
from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..auth import RequestActor
from ..config import settings
from ..domain_errors import ConflictError, NotFoundError, ValidationError
from ..models import Job, ScheduleAssignment
from ..schemas import ScheduleAssignmentCreate
from ..security import apply_assignment_visibility
from ..services.assignment_rules import (
    AssignmentState,
    normalize_status,
    validate_status_transition,
    validate_time_window,
)

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = (
    "crew_id", "date", "start_minutes", "end_minutes", "assignment_type",
    "status", "start_at_hq", "end_at_hq",
)


class AssignmentRepository:
    """CRUD over schedule_assignments; every lookup is filtered by org_id."""

    def __init__(self, db: Session, *, day_length_minutes: int | None = None) -> None:
        self.db = db
        self.day_length_minutes = day_length_minutes or settings.WORKDAY_LENGTH_MINUTES

    def _get_row(self, assignment_id: UUID, org_id: UUID) -> ScheduleAssignment:
        row = self.db.query(ScheduleAssignment).filter(
            ScheduleAssignment.id == assignment_id,
            ScheduleAssignment.org_id == org_id,
        ).first()
        if not row:
            raise NotFoundError("Schedule assignment not found")
        return row

    def _ensure_job_in_org(self, job_id: UUID, org_id: UUID) -> None:
        exists = self.db.query(Job.id).filter(Job.id == job_id, Job.org_id == org_id).first()
        if not exists:
            raise ValidationError("Job does not exist in this organization", details={"jobId": str(job_id)})

    def _validate_window(self, start_minutes: int, end_minutes: int) -> None:
        try:
            validate_time_window(
                start_minutes=start_minutes,
                end_minutes=end_minutes,
                day_length_minutes=self.day_length_minutes,
            )
        except ValueError as error:
            raise ValidationError(str(error)) from error

    @staticmethod
    def _check_version(row: ScheduleAssignment, expected_version: int | None) -> None:
        if expected_version is not None and row.version != expected_version:
            raise ConflictError(
                "Schedule assignment was modified by another request",
                details={"expectedVersion": expected_version, "currentVersion": row.version},
            )

    def get_by_id(self, assignment_id: UUID, org_id: UUID) -> AssignmentState:
        return AssignmentState.from_row(self._get_row(assignment_id, org_id))

    def list_by_date_range(
        self, org_id: UUID, start: date, end: date, actor: RequestActor
    ) -> list[AssignmentState]:
        """Assignments with start <= date <= end."""
        query = self.db.query(ScheduleAssignment).filter(
            ScheduleAssignment.org_id == org_id,
            ScheduleAssignment.date >= start,
            ScheduleAssignment.date <= end,
        )
        query = apply_assignment_visibility(query, actor)
        rows = query.order_by(ScheduleAssignment.date, ScheduleAssignment.start_minutes).all()
        return [AssignmentState.from_row(row) for row in rows]

    def list_by_date(self, org_id: UUID, day: date, actor: RequestActor) -> list[AssignmentState]:
        query = self.db.query(ScheduleAssignment).filter(
            ScheduleAssignment.org_id == org_id,
            ScheduleAssignment.date == day,
        )
        query = apply_assignment_visibility(query, actor)
        rows = query.order_by(ScheduleAssignment.start_minutes).all()
        return [AssignmentState.from_row(row) for row in rows]

    def list_by_job_id(self, job_id: UUID, org_id: UUID, actor: RequestActor) -> list[AssignmentState]:
        query = self.db.query(ScheduleAssignment).filter(
            ScheduleAssignment.org_id == org_id,
            ScheduleAssignment.job_id == job_id,
        )
        query = apply_assignment_visibility(query, actor)
        rows = query.order_by(ScheduleAssignment.date, ScheduleAssignment.start_minutes).all()
        return [AssignmentState.from_row(row) for row in rows]

    def create(
        self, *, org_id: UUID, data: ScheduleAssignmentCreate, created_by: UUID | None
    ) -> AssignmentState:
        if data.job_id is None:
            raise ValidationError("jobId is required")
        self._validate_window(data.start_minutes, data.end_minutes)
        self._ensure_job_in_org(data.job_id, org_id)

        # Reject exact duplicates (same job + crew + day + window); other overlaps are allowed.
        crew_condition = (
            ScheduleAssignment.crew_id.is_(None)
            if data.crew_id is None
            else ScheduleAssignment.crew_id == data.crew_id
        )
        duplicate = self.db.query(ScheduleAssignment.id).filter(
            ScheduleAssignment.org_id == org_id,
            ScheduleAssignment.job_id == data.job_id,
            crew_condition,
            ScheduleAssignment.date == data.date,
            ScheduleAssignment.start_minutes == data.start_minutes,
            ScheduleAssignment.end_minutes == data.end_minutes,
        ).first()
        if duplicate:
            raise ValidationError("This job is already assigned to this crew at the same time.")

        row = ScheduleAssignment(
            org_id=org_id,
            job_id=data.job_id,
            crew_id=data.crew_id,
            date=data.date,
            start_minutes=data.start_minutes,
            end_minutes=data.end_minutes,
            assignment_type=data.assignment_type,
            status=normalize_status(data.status),
            start_at_hq=data.start_at_hq,
            end_at_hq=data.end_at_hq,
            created_by=created_by,
        )
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        logger.info(f"Created schedule assignment {row.id} for job {row.job_id}")
        return AssignmentState.from_row(row)

    def update(
        self,
        assignment_id: UUID,
        org_id: UUID,
        changes: dict[str, Any],
        *,
        expected_version: int | None = None,
    ) -> AssignmentState:
        row = self._get_row(assignment_id, org_id)
        self._check_version(row, expected_version)

        job_id = changes.get("job_id")
        if job_id is not None and job_id != row.job_id:
            raise ValidationError("jobId cannot be changed on an existing assignment")

        # Validate the merged state before touching the row.
        start_minutes = changes.get("start_minutes", row.start_minutes)
        end_minutes = changes.get("end_minutes", row.end_minutes)
        self._validate_window(start_minutes, end_minutes)
        try:
            status = validate_status_transition(
                current_status=row.status,
                next_status=changes.get("status"),
            )
        except ValueError as error:
            raise ValidationError(str(error)) from error

        for name in _UPDATABLE_FIELDS:
            if name in changes:
                setattr(row, name, changes[name])
        row.status = status

        try:
            self.db.commit()
        except StaleDataError as error:
            self.db.rollback()
            raise ConflictError("Schedule assignment was modified by another request") from error
        self.db.refresh(row)
        return AssignmentState.from_row(row)

    def delete(
        self, assignment_id: UUID, org_id: UUID, *, expected_version: int | None = None
    ) -> AssignmentState:
        row = self._get_row(assignment_id, org_id)
        self._check_version(row, expected_version)
        snapshot = AssignmentState.from_row(row)
        self.db.delete(row)
        try:
            self.db.commit()
        except StaleDataError as error:
            self.db.rollback()
            raise ConflictError("Schedule assignment was modified by another request") from error
        logger.info(f"Deleted schedule assignment {snapshot.id} for job {snapshot.job_id}")
        return snapshot
