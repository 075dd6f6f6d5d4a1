from __future__ import annotations

from datetime import date
from uuid import uuid4

import pytest

from conftest import InMemoryAssignmentRepository, RecordingSubmitter, make_actor, make_job, make_state
from fieldops.domain_errors import ConflictError, ForbiddenError, NotFoundError, UnauthorizedError, ValidationError
from fieldops.schemas import ScheduleAssignmentCreate, ScheduleAssignmentUpdate
from fieldops.services.assignment_response_builder import AssignmentResponseBuilder
from fieldops.services.event_dispatcher import EventDispatcher
from fieldops.services.idempotency import assign_key, cancel_key
from fieldops.use_cases.schedule_assignments import (
    ScheduleAssignmentServices,
    create_schedule_assignment_use_case,
    delete_schedule_assignment_use_case,
    list_schedule_assignments_use_case,
    update_schedule_assignment_use_case,
)


class _Env:
    def __init__(self, *, org_id, job_crew_id=None, require_version=False, failing_sinks=()) -> None:
        self.org_id = org_id
        self.job = make_job(org_id=org_id, crew_id=job_crew_id)
        self.jobs = {self.job.id: self.job}
        self.repository = InMemoryAssignmentRepository(self.jobs)
        self.submitter = RecordingSubmitter(failing_sinks=failing_sinks)
        self.job_lookups = 0
        self.services = ScheduleAssignmentServices(
            repository=self.repository,
            get_job=self._get_job,
            dispatcher=EventDispatcher(self.submitter),
            responses=AssignmentResponseBuilder(
                None,
                workday_start_minutes=360,
                jobs_loader=lambda _db, ids, _org: {i: self.jobs[i] for i in ids if i in self.jobs},
                clients_loader=lambda _db, _ids, _org: {},
                materials_loader=lambda _db, _job_id, _org: [],
            ),
            require_version=require_version,
            today=lambda: date(2024, 1, 10),
        )

    def _get_job(self, job_id, org_id):
        self.job_lookups += 1
        job = self.jobs.get(job_id)
        if job is None or job.org_id != org_id:
            raise NotFoundError("Job not found")
        return job

    def seed(self, **overrides):
        return self.repository.seed(make_state(org_id=self.org_id, job_id=self.job.id, **overrides))


def _create_body(env: _Env, **overrides) -> ScheduleAssignmentCreate:
    values = dict(
        orgId=env.org_id,
        jobId=env.job.id,
        crewId=uuid4(),
        date="2024-01-10",
        startMinutes=540,
        endMinutes=600,
        assignmentType="install",
    )
    values.update(overrides)
    return ScheduleAssignmentCreate(**values)


def test_create_returns_scheduled_assignment_and_fires_assign_events(org_id) -> None:
    env = _Env(org_id=org_id)
    crew_id = uuid4()

    result = create_schedule_assignment_use_case(
        actor=make_actor(org_id=org_id),
        data=_create_body(env, crewId=crew_id),
        services=env.services,
    )

    assert result.status == "scheduled"
    assert result.job.title == "Window install"
    assert len(env.submitter.of("app_event", "job.assigned")) == 1
    [comm] = env.submitter.of("comm_event", "job_assigned")
    assert comm.entity_id == assign_key(result.id, crew_id)


def test_create_requires_job_id_after_authorization(org_id) -> None:
    env = _Env(org_id=org_id)

    with pytest.raises(ValidationError, match="jobId is required"):
        create_schedule_assignment_use_case(
            actor=make_actor(org_id=org_id),
            data=_create_body(env, jobId=None),
            services=env.services,
        )


def test_create_for_missing_job_is_not_found(org_id) -> None:
    env = _Env(org_id=org_id)

    with pytest.raises(NotFoundError):
        create_schedule_assignment_use_case(
            actor=make_actor(org_id=org_id),
            data=_create_body(env, jobId=uuid4()),
            services=env.services,
        )
    assert env.repository.mutation_calls == 0


def test_create_with_inverted_window_is_rejected_without_side_effects(org_id) -> None:
    env = _Env(org_id=org_id)

    with pytest.raises(ValidationError):
        create_schedule_assignment_use_case(
            actor=make_actor(org_id=org_id),
            data=_create_body(env, startMinutes=600, endMinutes=600),
            services=env.services,
        )

    assert env.repository.rows == {}
    assert env.submitter.jobs == []


def test_viewer_cannot_create(org_id) -> None:
    env = _Env(org_id=org_id)

    with pytest.raises(ForbiddenError) as exc_info:
        create_schedule_assignment_use_case(
            actor=make_actor(org_id=org_id, role="viewer"),
            data=_create_body(env),
            services=env.services,
        )

    assert exc_info.value.details["reason"] == "capability"
    assert env.job_lookups == 0


def test_actor_from_other_org_is_unauthorized_and_never_touches_repository(org_id) -> None:
    env = _Env(org_id=org_id)
    existing = env.seed(crew_id=uuid4())

    with pytest.raises(UnauthorizedError):
        update_schedule_assignment_use_case(
            actor=make_actor(org_id=uuid4()),
            data=ScheduleAssignmentUpdate(id=existing.id, orgId=org_id, startMinutes=0),
            services=env.services,
        )

    assert env.repository.mutation_calls == 0
    assert env.repository.rows[existing.id] == existing


def test_assignment_from_other_org_is_not_found(org_id) -> None:
    env = _Env(org_id=org_id)
    foreign = env.repository.seed(make_state(org_id=uuid4(), job_id=env.job.id))

    with pytest.raises(NotFoundError):
        update_schedule_assignment_use_case(
            actor=make_actor(org_id=org_id),
            data=ScheduleAssignmentUpdate(id=foreign.id, orgId=org_id, startMinutes=0),
            services=env.services,
        )


def test_crew_change_emits_unassign_then_assign_and_audits_assign(org_id) -> None:
    env = _Env(org_id=org_id)
    crew_1, crew_2 = uuid4(), uuid4()
    existing = env.seed(crew_id=crew_1)

    result = update_schedule_assignment_use_case(
        actor=make_actor(org_id=org_id),
        data=ScheduleAssignmentUpdate(id=existing.id, orgId=org_id, crewId=crew_2),
        services=env.services,
    )

    assert result.crew_id == crew_2
    app_events = [job.event_type for job in env.submitter.of("app_event")]
    assert app_events == ["schedule.updated", "job.unassigned", "job.assigned"]
    [audit] = env.submitter.of("audit")
    assert audit.payload.action == "ASSIGN"


def test_time_change_emits_reschedule_only(org_id) -> None:
    env = _Env(org_id=org_id)
    existing = env.seed(crew_id=uuid4())

    update_schedule_assignment_use_case(
        actor=make_actor(org_id=org_id),
        data=ScheduleAssignmentUpdate(id=existing.id, orgId=org_id, startMinutes=600, endMinutes=660),
        services=env.services,
    )

    [audit] = env.submitter.of("audit")
    assert audit.payload.action == "RESCHEDULE"
    assert env.submitter.of("app_event", "job.rescheduled")
    assert env.submitter.of("app_event", "job.assigned") == []
    assert env.submitter.of("app_event", "job.unassigned") == []


def test_cancel_emits_job_cancelled_with_stable_key(org_id) -> None:
    env = _Env(org_id=org_id)
    existing = env.seed(crew_id=uuid4())

    update_schedule_assignment_use_case(
        actor=make_actor(org_id=org_id),
        data=ScheduleAssignmentUpdate(id=existing.id, orgId=org_id, status="cancelled"),
        services=env.services,
    )
    [first] = env.submitter.of("comm_event", "job_cancelled")

    # A second cancel of an already cancelled slot emits nothing new, but the
    # key for this assignment's cancellation never changes.
    update_schedule_assignment_use_case(
        actor=make_actor(org_id=org_id),
        data=ScheduleAssignmentUpdate(id=existing.id, orgId=org_id, status="cancelled"),
        services=env.services,
    )

    assert first.entity_id == cancel_key(existing.id)
    assert len(env.submitter.of("comm_event", "job_cancelled")) == 1


def test_manage_capability_without_job_access_is_forbidden_before_update(org_id) -> None:
    env = _Env(org_id=org_id, job_crew_id=uuid4())
    existing = env.seed(crew_id=env.job.crew_id)
    crew_lead = make_actor(org_id=org_id, role="crew_lead", crew_id=uuid4())

    with pytest.raises(ForbiddenError) as exc_info:
        update_schedule_assignment_use_case(
            actor=crew_lead,
            data=ScheduleAssignmentUpdate(id=existing.id, orgId=org_id, startMinutes=0),
            services=env.services,
        )

    assert exc_info.value.details["reason"] == "job_write_access"
    assert env.repository.mutation_calls == 0
    assert env.submitter.jobs == []


def test_crew_lead_may_update_own_crew_job(org_id) -> None:
    crew_id = uuid4()
    env = _Env(org_id=org_id, job_crew_id=crew_id)
    existing = env.seed(crew_id=crew_id)

    result = update_schedule_assignment_use_case(
        actor=make_actor(org_id=org_id, role="crew_lead", crew_id=crew_id),
        data=ScheduleAssignmentUpdate(id=existing.id, orgId=org_id, assignmentType="inspection"),
        services=env.services,
    )

    assert result.assignment_type == "inspection"
    [audit] = env.submitter.of("audit")
    assert audit.payload.action == "UPDATE"


def test_stale_version_is_conflict_and_leaves_row_unchanged(org_id) -> None:
    env = _Env(org_id=org_id)
    existing = env.seed(version=2)

    with pytest.raises(ConflictError):
        update_schedule_assignment_use_case(
            actor=make_actor(org_id=org_id),
            data=ScheduleAssignmentUpdate(id=existing.id, orgId=org_id, version=1, startMinutes=0),
            services=env.services,
        )

    assert env.repository.rows[existing.id] == existing
    assert env.submitter.jobs == []


def test_version_can_be_made_mandatory(org_id) -> None:
    env = _Env(org_id=org_id, require_version=True)
    existing = env.seed()

    with pytest.raises(ValidationError, match="version is required"):
        delete_schedule_assignment_use_case(
            actor=make_actor(org_id=org_id),
            assignment_id=existing.id,
            org_id=org_id,
            services=env.services,
        )

    assert existing.id in env.repository.rows


def test_delete_missing_assignment_is_not_found_and_dispatches_nothing(org_id) -> None:
    env = _Env(org_id=org_id)

    with pytest.raises(NotFoundError):
        delete_schedule_assignment_use_case(
            actor=make_actor(org_id=org_id),
            assignment_id=uuid4(),
            org_id=org_id,
            services=env.services,
        )

    assert env.submitter.jobs == []


def test_delete_requires_id(org_id) -> None:
    env = _Env(org_id=org_id)

    with pytest.raises(ValidationError, match="id is required"):
        delete_schedule_assignment_use_case(
            actor=make_actor(org_id=org_id),
            assignment_id=None,
            org_id=org_id,
            services=env.services,
        )


def test_delete_without_id_is_rejected_before_org_check(org_id) -> None:
    env = _Env(org_id=org_id)

    with pytest.raises(ValidationError, match="id is required"):
        delete_schedule_assignment_use_case(
            actor=make_actor(org_id=org_id),
            assignment_id=None,
            org_id=uuid4(),
            services=env.services,
        )


def test_delete_removes_row_and_emits_unassign_and_cancel(org_id) -> None:
    env = _Env(org_id=org_id)
    existing = env.seed(crew_id=uuid4())

    result = delete_schedule_assignment_use_case(
        actor=make_actor(org_id=org_id),
        assignment_id=existing.id,
        org_id=org_id,
        services=env.services,
    )

    assert result is None
    assert existing.id not in env.repository.rows
    assert [job.payload.action for job in env.submitter.of("audit")] == ["DELETE"]
    assert env.submitter.of("app_event", "job.unassigned")
    [cancelled] = env.submitter.of("comm_event", "job_cancelled")
    assert cancelled.entity_id == cancel_key(existing.id)


def test_failing_sinks_do_not_fail_the_mutation(org_id) -> None:
    env = _Env(org_id=org_id, failing_sinks=("audit", "activity", "app_event", "comm_event"))

    result = create_schedule_assignment_use_case(
        actor=make_actor(org_id=org_id),
        data=_create_body(env),
        services=env.services,
    )

    assert result.id in env.repository.rows


def test_list_defaults_to_today(org_id) -> None:
    env = _Env(org_id=org_id)
    today_row = env.seed(date=date(2024, 1, 10))
    env.seed(date=date(2024, 1, 11))

    items = list_schedule_assignments_use_case(
        actor=make_actor(org_id=org_id, role="viewer"),
        org_id=org_id,
        services=env.services,
    )

    assert [item.id for item in items] == [today_row.id]


def test_list_date_range_includes_end_day(org_id) -> None:
    env = _Env(org_id=org_id)
    first = env.seed(date=date(2024, 1, 8))
    last = env.seed(date=date(2024, 1, 14))
    env.seed(date=date(2024, 1, 15))

    items = list_schedule_assignments_use_case(
        actor=make_actor(org_id=org_id),
        org_id=org_id,
        services=env.services,
        start_date=date(2024, 1, 8),
        end_date=date(2024, 1, 14),
    )

    assert {item.id for item in items} == {first.id, last.id}


def test_list_with_lone_range_bound_falls_back_to_today(org_id) -> None:
    env = _Env(org_id=org_id)
    today_row = env.seed(date=date(2024, 1, 10))
    env.seed(date=date(2024, 1, 12))

    items = list_schedule_assignments_use_case(
        actor=make_actor(org_id=org_id),
        org_id=org_id,
        services=env.services,
        start_date=date(2024, 1, 12),
    )

    assert [item.id for item in items] == [today_row.id]


def test_list_date_takes_precedence_over_job_and_range(org_id) -> None:
    env = _Env(org_id=org_id)
    on_day = env.seed(date=date(2024, 1, 10))
    env.seed(date=date(2024, 1, 11))

    items = list_schedule_assignments_use_case(
        actor=make_actor(org_id=org_id),
        org_id=org_id,
        services=env.services,
        day=date(2024, 1, 10),
        job_id=env.job.id,
        start_date=date(2024, 1, 1),
        end_date=date(2024, 1, 31),
    )

    assert [item.id for item in items] == [on_day.id]


def test_list_job_takes_precedence_over_range(org_id) -> None:
    env = _Env(org_id=org_id)
    outside_range = env.seed(date=date(2024, 2, 1))

    items = list_schedule_assignments_use_case(
        actor=make_actor(org_id=org_id),
        org_id=org_id,
        services=env.services,
        job_id=env.job.id,
        start_date=date(2024, 1, 1),
        end_date=date(2024, 1, 31),
    )

    assert [item.id for item in items] == [outside_range.id]


def test_list_rejects_inverted_range(org_id) -> None:
    env = _Env(org_id=org_id)

    with pytest.raises(ValidationError, match="startDate must not be after endDate"):
        list_schedule_assignments_use_case(
            actor=make_actor(org_id=org_id),
            org_id=org_id,
            services=env.services,
            start_date=date(2024, 1, 12),
            end_date=date(2024, 1, 10),
        )


def test_list_by_job_id(org_id) -> None:
    env = _Env(org_id=org_id)
    row = env.seed()
    env.repository.seed(make_state(org_id=org_id, job_id=uuid4()))

    items = list_schedule_assignments_use_case(
        actor=make_actor(org_id=org_id),
        org_id=org_id,
        services=env.services,
        job_id=env.job.id,
    )

    assert [item.id for item in items] == [row.id]
