"""
Fan a schedule mutation out to the audit, activity, app-event and comm-event sinks.

The dispatcher builds one SinkJob per sink call and hands each to a submitter.
A failing submit is logged and never reaches the HTTP response; retries live
behind the submitter (Celery task autoretry) rather than in the request.
"""
from __future__ import annotations

import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Callable, Iterable, Literal, Optional

from ..auth import RequestActor
from ..config import settings
from ..database import SessionLocal
from ..schemas import (
    ActivityPayload,
    AssignEventPayload,
    AuditPayload,
    JobAssignedCommPayload,
    JobCancelledCommPayload,
    JobRescheduledCommPayload,
    JobScheduledCommPayload,
    MaterialLine,
    RescheduleEventPayload,
    ScheduleUpdatedPayload,
    SinkJob,
    UnassignEventPayload,
)
from .assignment_rules import AssignmentState
from .change_classifier import BusinessEvent, BusinessEventKind
from .event_sinks import deliver_sink_job
from .idempotency import assign_key, cancel_key, schedule_key

logger = logging.getLogger(__name__)

Operation = Literal["create", "update", "delete"]

_ACTIVITY_TYPES = {
    "create": "schedule_assignment_created",
    "update": "schedule_assignment_updated",
    "delete": "schedule_assignment_deleted",
}


def _snapshot(state: AssignmentState) -> dict[str, Any]:
    return {
        "assignment_id": state.id,
        "job_id": state.job_id,
        "crew_id": state.crew_id,
        "date": state.date_iso,
        "start_minutes": state.start_minutes,
        "end_minutes": state.end_minutes,
        "assignment_type": state.assignment_type,
        "status": state.status,
        "start_at_hq": state.start_at_hq,
        "end_at_hq": state.end_at_hq,
    }


def _activity_details(operation: Operation, state: AssignmentState) -> dict[str, Any]:
    details: dict[str, Any] = {
        "assignmentId": str(state.id),
        "crewId": str(state.crew_id) if state.crew_id else None,
        "date": state.date_iso,
        "startMinutes": state.start_minutes,
        "endMinutes": state.end_minutes,
        "assignmentType": state.assignment_type,
    }
    if operation != "delete":
        details["startAtHq"] = state.start_at_hq
        details["endAtHq"] = state.end_at_hq
    if operation == "update":
        details["status"] = state.status
    return details


def build_sink_jobs(
    *,
    operation: Operation,
    actor: RequestActor,
    previous: Optional[AssignmentState],
    next_state: AssignmentState,
    events: Iterable[BusinessEvent],
    audit_action: str,
    materials: list[MaterialLine],
    request_metadata: Optional[dict[str, Any]] = None,
) -> list[SinkJob]:
    """Translate one mutation and its business events into sink calls."""
    org_id = next_state.org_id
    jobs: list[SinkJob] = []

    def add(sink: str, event_type: str, payload: Any, entity_id: Optional[str] = None) -> None:
        jobs.append(
            SinkJob(
                sink=sink,
                org_id=org_id,
                actor_user_id=actor.user_id,
                actor_role_key=actor.role_key,
                event_type=event_type,
                entity_id=entity_id,
                payload=payload,
            )
        )

    metadata = {
        "assignmentId": str(next_state.id),
        "jobId": str(next_state.job_id),
        "crewId": str(next_state.crew_id) if next_state.crew_id else None,
        **(request_metadata or {}),
    }
    add(
        "audit",
        audit_action,
        AuditPayload(
            action=audit_action,
            entity_id=next_state.job_id,
            before=previous.to_record() if previous is not None else None,
            after=None if operation == "delete" else next_state.to_record(),
            metadata=metadata,
        ),
    )
    add(
        "activity",
        _ACTIVITY_TYPES[operation],
        ActivityPayload(
            job_id=next_state.job_id,
            type=_ACTIVITY_TYPES[operation],
            actor_crew_id=actor.crew_id,
            details=_activity_details(operation, next_state),
        ),
    )
    add("app_event", "schedule.updated", ScheduleUpdatedPayload(**_snapshot(next_state), materials=materials))

    for event in events:
        subject = event.subject
        if event.kind is BusinessEventKind.UNASSIGN:
            add("app_event", "job.unassigned", UnassignEventPayload(**_snapshot(subject), materials=materials))
        elif event.kind is BusinessEventKind.ASSIGN:
            add("app_event", "job.assigned", AssignEventPayload(**_snapshot(subject), materials=materials))
            add(
                "comm_event",
                "job_assigned",
                JobAssignedCommPayload(
                    **_snapshot(subject),
                    previous_crew_id=event.previous.crew_id if event.previous is not None else None,
                ),
                entity_id=assign_key(subject.id, subject.crew_id),
            )
        elif event.kind is BusinessEventKind.RESCHEDULE:
            add("app_event", "job.rescheduled", RescheduleEventPayload(**_snapshot(subject), materials=materials))
            add(
                "comm_event",
                "job_rescheduled",
                JobRescheduledCommPayload(**_snapshot(subject)),
                entity_id=schedule_key(subject.id, subject.date_iso, subject.start_minutes, subject.end_minutes),
            )
        elif event.kind is BusinessEventKind.STATUS_CHANGE:
            add(
                "comm_event",
                "job_cancelled",
                JobCancelledCommPayload(**_snapshot(subject)),
                entity_id=cancel_key(subject.id),
            )

    if operation == "create":
        add(
            "comm_event",
            "job_scheduled",
            JobScheduledCommPayload(**_snapshot(next_state)),
            entity_id=schedule_key(next_state.id, next_state.date_iso, next_state.start_minutes, next_state.end_minutes),
        )
    return jobs


Submitter = Callable[[SinkJob], None]


def celery_submitter(job: SinkJob) -> None:
    """Enqueue one sink call as an independent Celery task."""
    from ..celery_app import deliver_sink_job_task

    deliver_sink_job_task.delay(job.model_dump(mode="json", by_alias=True))


class InlineSubmitter:
    """
    Run sink writers in-process, each on its own session.

    With an executor the call returns immediately; without one it runs
    synchronously (used by tests). Failures are logged per job.
    """

    def __init__(self, session_factory: Callable = SessionLocal, executor: Optional[Executor] = None):
        self.session_factory = session_factory
        self.executor = executor

    def _run(self, job: SinkJob) -> None:
        db = None
        try:
            db = self.session_factory()
            deliver_sink_job(db, job)
        except Exception:
            logger.exception(f"Sink {job.sink} failed for {job.event_type} (org {job.org_id})")
        finally:
            if db is not None:
                db.close()

    def __call__(self, job: SinkJob) -> None:
        if self.executor is None:
            self._run(job)
        else:
            self.executor.submit(self._run, job)


class EventDispatcher:
    def __init__(self, submit: Submitter):
        self.submit = submit

    def dispatch(self, jobs: Iterable[SinkJob]) -> int:
        """Submit every job independently; returns how many were accepted."""
        accepted = 0
        for job in jobs:
            try:
                self.submit(job)
                accepted += 1
            except Exception:
                logger.exception(f"Failed to submit {job.sink} sink job {job.event_type} (org {job.org_id})")
        return accepted


_inline_executor: Optional[ThreadPoolExecutor] = None


def get_event_dispatcher() -> EventDispatcher:
    """Dispatcher for the configured EVENT_DISPATCH_MODE."""
    global _inline_executor
    if settings.EVENT_DISPATCH_MODE == "inline":
        if _inline_executor is None:
            _inline_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="sink")
        return EventDispatcher(InlineSubmitter(executor=_inline_executor))
    return EventDispatcher(celery_submitter)
