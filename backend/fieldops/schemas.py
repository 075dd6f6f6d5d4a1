"""Pydantic schemas for API and event payloads (camelCase on the wire)."""
from datetime import date as date_type, datetime
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

AssignmentStatus = Literal["scheduled", "in_progress", "completed", "cancelled"]
SinkName = Literal["audit", "activity", "app_event", "comm_event"]


class ApiModel(BaseModel):
    """Base model: snake_case in Python, camelCase in JSON."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _coerce_calendar_day(value: Any) -> Any:
    """Accept ISO date or datetime strings; datetimes are normalized to their calendar day."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str) and "T" in value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        except ValueError:
            return value
    return value


# Schedule assignment requests
class ScheduleAssignmentCreate(ApiModel):
    org_id: Optional[UUID] = None
    # Optional at parse time so the use-case can answer "jobId is required" after auth.
    job_id: Optional[UUID] = None
    crew_id: Optional[UUID] = None
    date: date_type
    start_minutes: int
    end_minutes: int
    assignment_type: str = Field(min_length=1, max_length=50)
    status: AssignmentStatus = "scheduled"
    start_at_hq: bool = False
    end_at_hq: bool = False

    @field_validator("date", mode="before")
    @classmethod
    def normalize_date(cls, value: Any) -> Any:
        return _coerce_calendar_day(value)

    @field_validator("assignment_type", mode="before")
    @classmethod
    def strip_assignment_type(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class ScheduleAssignmentUpdate(ApiModel):
    """Partial update. Fields absent from the body are left untouched; explicit null crewId unassigns."""
    id: UUID
    org_id: Optional[UUID] = None
    version: Optional[int] = None
    job_id: Optional[UUID] = None
    crew_id: Optional[UUID] = None
    date: Optional[date_type] = None
    start_minutes: Optional[int] = None
    end_minutes: Optional[int] = None
    assignment_type: Optional[str] = Field(default=None, min_length=1, max_length=50)
    status: Optional[AssignmentStatus] = None
    start_at_hq: Optional[bool] = None
    end_at_hq: Optional[bool] = None

    @field_validator("date", mode="before")
    @classmethod
    def normalize_date(cls, value: Any) -> Any:
        return _coerce_calendar_day(value)

    @field_validator("assignment_type", mode="before")
    @classmethod
    def strip_assignment_type(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    def changes(self) -> dict[str, Any]:
        """Mutable fields explicitly present in the request."""
        mutable = {
            "crew_id", "date", "start_minutes", "end_minutes", "assignment_type",
            "status", "start_at_hq", "end_at_hq",
        }
        values: dict[str, Any] = {}
        for name in self.model_fields_set & mutable:
            value = getattr(self, name)
            # Only crew_id may be explicitly cleared.
            if value is None and name != "crew_id":
                continue
            values[name] = value
        return values


# Schedule assignment responses
class JobBrief(ApiModel):
    """Joined job data for display purposes."""
    id: UUID
    title: str
    status: Optional[str] = None
    crew_id: Optional[UUID] = None
    client_id: Optional[UUID] = None
    job_type_id: Optional[UUID] = None
    address: Optional[str] = None
    client_display_name: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class ScheduleAssignmentWithJob(ApiModel):
    id: UUID
    job_id: UUID
    job: JobBrief
    crew_id: Optional[UUID] = None
    date: date_type
    start_minutes: int
    end_minutes: int
    assignment_type: str
    start_at_hq: bool
    end_at_hq: bool
    status: AssignmentStatus
    version: int
    scheduled_start: datetime
    scheduled_end: datetime


class MaterialLine(ApiModel):
    material_id: UUID
    quantity: float


# Event payloads
class AssignmentSnapshot(ApiModel):
    """Common body shared by every schedule event payload."""
    assignment_id: UUID
    job_id: UUID
    crew_id: Optional[UUID] = None
    date: Optional[str] = None
    start_minutes: int
    end_minutes: int
    assignment_type: str
    status: AssignmentStatus
    start_at_hq: bool = False
    end_at_hq: bool = False


class ScheduleUpdatedPayload(AssignmentSnapshot):
    kind: Literal["schedule.updated"] = "schedule.updated"
    materials: list[MaterialLine] = []


class AssignEventPayload(AssignmentSnapshot):
    kind: Literal["job.assigned"] = "job.assigned"
    materials: list[MaterialLine] = []


class UnassignEventPayload(AssignmentSnapshot):
    kind: Literal["job.unassigned"] = "job.unassigned"
    materials: list[MaterialLine] = []


class RescheduleEventPayload(AssignmentSnapshot):
    kind: Literal["job.rescheduled"] = "job.rescheduled"
    materials: list[MaterialLine] = []


class JobScheduledCommPayload(AssignmentSnapshot):
    kind: Literal["job_scheduled"] = "job_scheduled"


class JobAssignedCommPayload(AssignmentSnapshot):
    kind: Literal["job_assigned"] = "job_assigned"
    previous_crew_id: Optional[UUID] = None


class JobRescheduledCommPayload(AssignmentSnapshot):
    kind: Literal["job_rescheduled"] = "job_rescheduled"


class JobCancelledCommPayload(AssignmentSnapshot):
    kind: Literal["job_cancelled"] = "job_cancelled"


class AuditPayload(ApiModel):
    kind: Literal["audit"] = "audit"
    action: str
    entity_type: str = "schedule"
    entity_id: UUID
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None
    metadata: dict[str, Any] = {}


class ActivityPayload(ApiModel):
    kind: Literal["activity"] = "activity"
    job_id: UUID
    type: Literal[
        "schedule_assignment_created",
        "schedule_assignment_updated",
        "schedule_assignment_deleted",
    ]
    actor_crew_id: Optional[UUID] = None
    details: dict[str, Any] = {}


SinkPayload = Annotated[
    Union[
        AuditPayload,
        ActivityPayload,
        ScheduleUpdatedPayload,
        AssignEventPayload,
        UnassignEventPayload,
        RescheduleEventPayload,
        JobScheduledCommPayload,
        JobAssignedCommPayload,
        JobRescheduledCommPayload,
        JobCancelledCommPayload,
    ],
    Field(discriminator="kind"),
]


class SinkJob(ApiModel):
    """Envelope for one sink call; JSON-serializable for the task queue."""
    sink: SinkName
    org_id: UUID
    actor_user_id: Optional[UUID] = None
    actor_role_key: Optional[str] = None
    event_type: str
    # Idempotency key for comm events; None for other sinks.
    entity_id: Optional[str] = None
    payload: SinkPayload


class HealthCheckResponse(BaseModel):
    status: str
    version: str
