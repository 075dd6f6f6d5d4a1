"""
Sink writers for schedule mutations: audit log, job activity timeline,
internal app events and outbound comm events.

Each writer persists exactly one SinkJob and raises on failure so the caller
(Celery task or inline submitter) decides about retry / isolation.
"""
from __future__ import annotations

import logging
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import AppEvent, AuditEvent, CommEvent, JobActivityEvent
from ..schemas import ActivityPayload, AuditPayload, SinkJob

logger = logging.getLogger(__name__)

REDACT_KEYS = {
    "credentials",
    "password",
    "passwordHash",
    "secret",
    "apiKey",
    "token",
    "accessToken",
    "refreshToken",
}


def redact(value: Any) -> Any:
    """Recursively replace sensitive keys with a placeholder."""
    if isinstance(value, list):
        return [redact(item) for item in value]
    if isinstance(value, dict):
        return {
            key: "[REDACTED]" if key in REDACT_KEYS else redact(item)
            for key, item in value.items()
        }
    return value


def _payload_json(job: SinkJob) -> dict[str, Any]:
    return job.payload.model_dump(mode="json", by_alias=True, exclude={"kind"})


def write_audit_event(db: Session, job: SinkJob) -> None:
    payload = job.payload
    if not isinstance(payload, AuditPayload):
        raise TypeError(f"audit sink cannot handle payload kind {payload.kind}")
    db.add(
        AuditEvent(
            org_id=job.org_id,
            action=payload.action,
            entity_type=payload.entity_type,
            entity_id=payload.entity_id,
            actor_type="user" if job.actor_user_id else "system",
            user_id=job.actor_user_id,
            before=redact(payload.before),
            after=redact(payload.after),
            details=redact(payload.metadata),
        )
    )
    db.commit()


def write_activity_event(db: Session, job: SinkJob) -> None:
    payload = job.payload
    if not isinstance(payload, ActivityPayload):
        raise TypeError(f"activity sink cannot handle payload kind {payload.kind}")
    db.add(
        JobActivityEvent(
            org_id=job.org_id,
            job_id=payload.job_id,
            type=payload.type,
            actor_crew_id=payload.actor_crew_id,
            payload=payload.model_dump(mode="json", by_alias=True)["details"],
        )
    )
    db.commit()


def write_app_event(db: Session, job: SinkJob) -> None:
    db.add(
        AppEvent(
            org_id=job.org_id,
            event_type=job.event_type,
            payload=_payload_json(job),
            actor_user_id=job.actor_user_id,
        )
    )
    db.commit()


def write_comm_event(db: Session, job: SinkJob) -> None:
    """One row per logical notification; a repeated (org, key, entity) trigger is a no-op."""
    if not job.entity_id:
        raise ValueError(f"comm event {job.event_type} has no entity key")
    entity_id = UUID(job.entity_id)

    existing = db.query(CommEvent.id).filter(
        CommEvent.org_id == job.org_id,
        CommEvent.event_key == job.event_type,
        CommEvent.entity_id == entity_id,
    ).first()
    if existing:
        logger.info(f"Skipping duplicate comm event {job.event_type}:{job.entity_id}")
        return

    db.add(
        CommEvent(
            org_id=job.org_id,
            event_key=job.event_type,
            entity_type="schedule_assignment",
            entity_id=entity_id,
            triggered_by_user_id=job.actor_user_id,
            actor_role_key=job.actor_role_key,
            payload=_payload_json(job),
            status="pending",
            attempts=0,
        )
    )
    try:
        db.commit()
    except IntegrityError:
        # Concurrent delivery of the same trigger won the unique constraint.
        db.rollback()
        logger.info(f"Comm event {job.event_type}:{job.entity_id} already recorded")


SINKS: dict[str, Callable[[Session, SinkJob], None]] = {
    "audit": write_audit_event,
    "activity": write_activity_event,
    "app_event": write_app_event,
    "comm_event": write_comm_event,
}


def deliver_sink_job(db: Session, job: SinkJob) -> None:
    """Route one SinkJob to its writer; errors propagate after rollback."""
    writer = SINKS[job.sink]
    try:
        writer(db, job)
    except Exception:
        db.rollback()
        raise
