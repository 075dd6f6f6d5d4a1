"""Deterministic external entity keys for downstream notification dedup."""

from __future__ import annotations

import hashlib
from typing import Iterable, Optional
from uuid import UUID

KEY_SEPARATOR = ":"


def derive_entity_key(parts: Iterable[object], separator: str = KEY_SEPARATOR) -> str:
    """SHA-256 over the joined parts, first 32 hex chars grouped 8-4-4-4-12."""
    raw = separator.join("" if part is None else str(part) for part in parts)
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()
    return f"{digest[:8]}-{digest[8:12]}-{digest[12:16]}-{digest[16:20]}-{digest[20:32]}"


def assign_key(assignment_id: UUID, crew_id: Optional[UUID]) -> str:
    return derive_entity_key([assignment_id, crew_id or "none"])


def schedule_key(assignment_id: UUID, date_iso: str, start_minutes: int, end_minutes: int) -> str:
    """Shared by job_scheduled and job_rescheduled; a new slot yields a new key."""
    return derive_entity_key([assignment_id, date_iso, start_minutes, end_minutes])


def cancel_key(assignment_id: UUID) -> str:
    return derive_entity_key([assignment_id, "cancelled"])
