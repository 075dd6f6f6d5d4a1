"""Schedule assignment invariant helpers and the immutable assignment snapshot."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any
from uuid import UUID

TERMINAL_STATUSES: set[str] = {"completed", "cancelled"}
_ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "scheduled": {"in_progress", "cancelled"},
    "in_progress": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}


@dataclass(frozen=True)
class AssignmentState:
    """Detached copy of one assignment row; safe to diff after the row has been mutated."""

    id: UUID
    org_id: UUID
    job_id: UUID
    crew_id: UUID | None
    date: date
    start_minutes: int
    end_minutes: int
    assignment_type: str
    status: str
    start_at_hq: bool = False
    end_at_hq: bool = False
    version: int = 1

    @classmethod
    def from_row(cls, row: Any) -> "AssignmentState":
        return cls(
            id=row.id,
            org_id=row.org_id,
            job_id=row.job_id,
            crew_id=row.crew_id,
            date=row.date,
            start_minutes=row.start_minutes,
            end_minutes=row.end_minutes,
            assignment_type=row.assignment_type,
            status=row.status,
            start_at_hq=bool(row.start_at_hq),
            end_at_hq=bool(row.end_at_hq),
            version=row.version or 1,
        )

    @property
    def date_iso(self) -> str:
        return self.date.isoformat()

    def to_record(self) -> dict[str, Any]:
        """JSON-ready camelCase record for audit before/after snapshots."""
        return {
            "id": str(self.id),
            "orgId": str(self.org_id),
            "jobId": str(self.job_id),
            "crewId": str(self.crew_id) if self.crew_id else None,
            "date": self.date_iso,
            "startMinutes": self.start_minutes,
            "endMinutes": self.end_minutes,
            "assignmentType": self.assignment_type,
            "status": self.status,
            "startAtHq": self.start_at_hq,
            "endAtHq": self.end_at_hq,
            "version": self.version,
        }


def normalize_status(status: str | None) -> str:
    if not status:
        return "scheduled"
    return status.strip().lower()


def validate_time_window(*, start_minutes: int, end_minutes: int, day_length_minutes: int) -> None:
    if start_minutes >= end_minutes:
        raise ValueError("Start time must be before end time")
    if start_minutes < 0 or start_minutes > day_length_minutes:
        raise ValueError(f"Start time must be between 0 and {day_length_minutes} minutes")
    if end_minutes < 0 or end_minutes > day_length_minutes:
        raise ValueError(f"End time must be between 0 and {day_length_minutes} minutes")


def validate_status_transition(*, current_status: str | None, next_status: str | None) -> str:
    if next_status is None:
        return normalize_status(current_status)

    current = normalize_status(current_status)
    nxt = normalize_status(next_status)

    if nxt == current:
        return nxt

    allowed = _ALLOWED_TRANSITIONS.get(current, set())
    if nxt not in allowed:
        raise ValueError(f"Invalid assignment status transition: {current} -> {nxt}")
    return nxt
