"""
Celery worker: per-sink delivery of schedule side effects, and the comm_events
outbox drained with SELECT FOR UPDATE SKIP LOCKED.
"""
from celery import Celery
from sqlalchemy import text
from datetime import datetime, timedelta
import requests
import logging
from .config import settings
from .database import SessionLocal
from .models import CommEvent
from .schemas import SinkJob
from .services.event_sinks import deliver_sink_job

logger = logging.getLogger(__name__)

celery_app = Celery(
    "fieldops",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
)


@celery_app.task(
    name="deliver_sink_job",
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=settings.EVENT_SINK_RETRY_BACKOFF_MAX_SECONDS,
    retry_jitter=True,
    max_retries=settings.EVENT_SINK_MAX_RETRIES,
)
def deliver_sink_job_task(job_data: dict):
    """Write one sink row; any failure is retried with exponential backoff."""
    job = SinkJob.model_validate(job_data)
    db = SessionLocal()
    try:
        deliver_sink_job(db, job)
        logger.info(f"Delivered {job.sink} sink job {job.event_type} (org {job.org_id})")
    finally:
        db.close()
    return {"sink": job.sink, "event_type": job.event_type}


def send_comm_webhook(event: CommEvent) -> tuple[bool, str | None]:
    """POST one comm event to the outbound communications webhook."""
    if not settings.COMM_WEBHOOK_URL:
        return False, "NO_WEBHOOK"

    body = {
        "id": str(event.id),
        "orgId": str(event.org_id),
        "eventKey": event.event_key,
        "entityType": event.entity_type,
        "entityId": str(event.entity_id),
        "triggeredByUserId": str(event.triggered_by_user_id) if event.triggered_by_user_id else None,
        "actorRoleKey": event.actor_role_key,
        "payload": event.payload or {},
    }
    try:
        response = requests.post(
            settings.COMM_WEBHOOK_URL,
            json=body,
            # Receivers dedupe on this key.
            headers={"Idempotency-Key": f"{event.event_key}:{event.entity_id}"},
            timeout=settings.COMM_WEBHOOK_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        return False, f"EXCEPTION: {str(e)}"

    if 200 <= response.status_code < 300:
        return True, None
    if response.status_code == 429:
        retry_after = response.headers.get("Retry-After", "60")
        return False, f"RATE_LIMIT:{retry_after if retry_after.isdigit() else 60}"
    return False, f"HTTP_{response.status_code}: {response.text[:200]}"


@celery_app.task(name="process_comm_event_outbox")
def process_comm_event_outbox(batch_size: int = settings.COMM_OUTBOX_BATCH_SIZE):
    """
    Deliver pending comm events using SELECT FOR UPDATE SKIP LOCKED.

    Concurrent workers never pick up the same row.
    """
    db = SessionLocal()
    processed_count = 0
    event_ids: list = []

    try:
        query = text("""
            SELECT id
            FROM comm_events
            WHERE status = 'pending'
              AND (next_retry_at IS NULL OR next_retry_at <= NOW())
            ORDER BY created_at
            LIMIT :batch_size
            FOR UPDATE SKIP LOCKED
        """)

        result = db.execute(query, {"batch_size": batch_size})
        event_ids = [row[0] for row in result.fetchall()]

        logger.info(f"Locked {len(event_ids)} comm events for delivery")

        for event_id in event_ids:
            event = db.query(CommEvent).filter(CommEvent.id == event_id).first()
            if not event:
                continue

            success, error = send_comm_webhook(event)

            if success:
                event.status = 'sent'
                event.sent_at = datetime.utcnow()
                event.last_error = None
                processed_count += 1
                logger.info(f"Sent comm event {event.event_key} {event_id}")
                continue

            if error == "NO_WEBHOOK":
                event.status = 'skipped'
                event.last_error = "COMM_WEBHOOK_URL not configured"
                continue

            event.attempts = (event.attempts or 0) + 1
            event.last_error = error

            if error and error.startswith("RATE_LIMIT:"):
                # 429 - apply backoff
                retry_after = int(error.split(":")[1])
                event.next_retry_at = datetime.utcnow() + timedelta(seconds=retry_after)
                logger.warning(f"Rate limited for {retry_after}s: {event_id}")

            elif event.attempts >= settings.COMM_MAX_ATTEMPTS:
                event.status = 'failed'
                event.failed_at = datetime.utcnow()
                logger.error(f"Comm event {event_id} failed after {event.attempts} attempts: {error}")

            else:
                backoff_seconds = 2 ** event.attempts * 60  # 2min, 4min, 8min
                event.next_retry_at = datetime.utcnow() + timedelta(seconds=backoff_seconds)
                logger.warning(
                    f"Retry {event.attempts}/{settings.COMM_MAX_ATTEMPTS} in {backoff_seconds}s: {event_id}"
                )

        db.commit()
        logger.info(f"Delivered {processed_count}/{len(event_ids)} comm events")

    except Exception as e:
        db.rollback()
        logger.error(f"Error processing comm event outbox: {e}", exc_info=True)
        raise

    finally:
        db.close()

    return {"processed": processed_count, "total_locked": len(event_ids)}


# Schedule periodic processing
celery_app.conf.beat_schedule = {
    'process-comm-outbox': {
        'task': 'process_comm_event_outbox',
        'schedule': settings.COMM_OUTBOX_INTERVAL_SECONDS,
    },
}
