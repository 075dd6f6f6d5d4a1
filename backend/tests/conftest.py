from __future__ import annotations

import os

# Settings are read at import time; tests never talk to a real broker or database.
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("EVENT_DISPATCH_MODE", "inline")

from dataclasses import replace
from datetime import date
from types import SimpleNamespace
from uuid import UUID, uuid4

import pytest

from fieldops.auth import RequestActor, capabilities_for_role
from fieldops.domain_errors import ConflictError, NotFoundError, ValidationError
from fieldops.services.assignment_rules import (
    AssignmentState,
    validate_status_transition,
    validate_time_window,
)


class InMemoryAssignmentRepository:
    """Repository double with the same contract as AssignmentRepository."""

    def __init__(self, jobs: dict[UUID, object]) -> None:
        self.jobs = jobs
        self.rows: dict[UUID, AssignmentState] = {}
        self.mutation_calls = 0

    def seed(self, state: AssignmentState) -> AssignmentState:
        self.rows[state.id] = state
        return state

    def get_by_id(self, assignment_id, org_id):
        row = self.rows.get(assignment_id)
        if row is None or row.org_id != org_id:
            raise NotFoundError("Schedule assignment not found")
        return row

    def _visible(self, org_id, actor):
        return [row for row in self.rows.values() if row.org_id == org_id]

    def list_by_date_range(self, org_id, start, end, actor):
        return [row for row in self._visible(org_id, actor) if start <= row.date <= end]

    def list_by_date(self, org_id, day, actor):
        return [row for row in self._visible(org_id, actor) if row.date == day]

    def list_by_job_id(self, job_id, org_id, actor):
        return [row for row in self._visible(org_id, actor) if row.job_id == job_id]

    def _check_window(self, start_minutes, end_minutes):
        try:
            validate_time_window(start_minutes=start_minutes, end_minutes=end_minutes, day_length_minutes=720)
        except ValueError as error:
            raise ValidationError(str(error)) from error

    def create(self, *, org_id, data, created_by):
        self._check_window(data.start_minutes, data.end_minutes)
        job = self.jobs.get(data.job_id)
        if job is None or job.org_id != org_id:
            raise ValidationError("Job does not exist in this organization")
        self.mutation_calls += 1
        state = AssignmentState(
            id=uuid4(),
            org_id=org_id,
            job_id=data.job_id,
            crew_id=data.crew_id,
            date=data.date,
            start_minutes=data.start_minutes,
            end_minutes=data.end_minutes,
            assignment_type=data.assignment_type,
            status=data.status,
            start_at_hq=data.start_at_hq,
            end_at_hq=data.end_at_hq,
        )
        self.rows[state.id] = state
        return state

    def update(self, assignment_id, org_id, changes, *, expected_version=None):
        row = self.get_by_id(assignment_id, org_id)
        if expected_version is not None and expected_version != row.version:
            raise ConflictError("Schedule assignment was modified by another request")
        merged = replace(row, **{key: value for key, value in changes.items() if key != "status"})
        self._check_window(merged.start_minutes, merged.end_minutes)
        try:
            status = validate_status_transition(current_status=row.status, next_status=changes.get("status"))
        except ValueError as error:
            raise ValidationError(str(error)) from error
        self.mutation_calls += 1
        updated = replace(merged, status=status, version=row.version + 1)
        self.rows[assignment_id] = updated
        return updated

    def delete(self, assignment_id, org_id, *, expected_version=None):
        row = self.get_by_id(assignment_id, org_id)
        if expected_version is not None and expected_version != row.version:
            raise ConflictError("Schedule assignment was modified by another request")
        self.mutation_calls += 1
        return self.rows.pop(assignment_id)


class RecordingSubmitter:
    """Collects submitted sink jobs; optionally fails for chosen sinks."""

    def __init__(self, failing_sinks: tuple[str, ...] = ()) -> None:
        self.failing_sinks = failing_sinks
        self.jobs: list = []

    def __call__(self, job) -> None:
        if job.sink in self.failing_sinks:
            raise RuntimeError(f"{job.sink} sink is down")
        self.jobs.append(job)

    def of(self, sink: str, event_type: str | None = None) -> list:
        return [
            job for job in self.jobs
            if job.sink == sink and (event_type is None or job.event_type == event_type)
        ]


def make_actor(*, org_id: UUID, role: str = "scheduler", crew_id: UUID | None = None) -> RequestActor:
    return RequestActor(
        user_id=uuid4(),
        org_id=org_id,
        role_key=role,
        crew_id=crew_id,
        capabilities=capabilities_for_role(role),
    )


def make_job(*, org_id: UUID, crew_id: UUID | None = None, client_id: UUID | None = None):
    return SimpleNamespace(
        id=uuid4(),
        org_id=org_id,
        title="Window install",
        status="scheduled",
        crew_id=crew_id,
        client_id=client_id,
        job_type_id=None,
        address="12 Harbor Rd",
    )


def make_state(*, org_id: UUID, job_id: UUID, crew_id: UUID | None = None, **overrides) -> AssignmentState:
    values = dict(
        id=uuid4(),
        org_id=org_id,
        job_id=job_id,
        crew_id=crew_id,
        date=date(2024, 1, 10),
        start_minutes=540,
        end_minutes=600,
        assignment_type="install",
        status="scheduled",
    )
    values.update(overrides)
    return AssignmentState(**values)


@pytest.fixture
def org_id() -> UUID:
    return uuid4()
