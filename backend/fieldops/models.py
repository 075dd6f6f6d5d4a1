"""SQLAlchemy models - schedule assignments, read-only collaborators and sink tables."""
from sqlalchemy import (
    Boolean, Column, String, Integer, Date, DateTime, Text, Numeric,
    ForeignKey, CheckConstraint, Index, UniqueConstraint
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from .database import Base


ASSIGNMENT_STATUSES = ("scheduled", "in_progress", "completed", "cancelled")


class Organization(Base):
    """Organization model (multi-tenant support)."""
    __tablename__ = "organizations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Crew(Base):
    """Crew model (read-only here)."""
    __tablename__ = "crews"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True)


class User(Base):
    """User model. Sessions are issued elsewhere; the API only resolves users by token subject."""
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False, index=True)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    role = Column(String(50), nullable=False, index=True)
    # Crew membership used for crew-scoped visibility (NULL for office staff).
    crew_id = Column(UUID(as_uuid=True), ForeignKey("crews.id"), nullable=True, index=True)
    # Monotonically increasing version used to revoke previously issued tokens.
    token_version = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            role.in_(['admin', 'manager', 'scheduler', 'crew_lead', 'installer', 'viewer']),
            name='chk_user_role'
        ),
    )


class Client(Base):
    """Client model (read-only here)."""
    __tablename__ = "clients"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False, index=True)
    display_name = Column(String(255), nullable=False)


class Job(Base):
    """Job model - immutable reference data for scheduling."""
    __tablename__ = "jobs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    status = Column(String(50), nullable=False, default="new")
    crew_id = Column(UUID(as_uuid=True), ForeignKey("crews.id"), nullable=True, index=True)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=True, index=True)
    job_type_id = Column(UUID(as_uuid=True), nullable=True)
    address = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class JobMaterialAllocation(Base):
    """Planned material allocation for a job (read-only here)."""
    __tablename__ = "job_material_allocations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False, index=True)
    job_id = Column(UUID(as_uuid=True), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    material_id = Column(UUID(as_uuid=True), nullable=False)
    planned_quantity = Column(Numeric(12, 3), nullable=False, default=0)


class ScheduleAssignment(Base):
    """
    Crew-to-job time slot.

    One Job can have many assignments (multiple crews, days, segments).
    start_minutes/end_minutes are offsets from the workday start.
    """
    __tablename__ = "schedule_assignments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False)
    job_id = Column(UUID(as_uuid=True), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    crew_id = Column(UUID(as_uuid=True), ForeignKey("crews.id"), nullable=True)
    date = Column(Date, nullable=False)
    start_minutes = Column(Integer, nullable=False)
    end_minutes = Column(Integer, nullable=False)
    assignment_type = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default='scheduled')
    start_at_hq = Column(Boolean, nullable=False, default=False)
    end_at_hq = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False, default=1)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint('start_minutes < end_minutes', name='chk_assignment_time_order'),
        CheckConstraint(
            status.in_(list(ASSIGNMENT_STATUSES)),
            name='chk_assignment_status'
        ),
        Index('idx_schedule_assignments_org_date', 'org_id', 'date'),
        Index('idx_schedule_assignments_crew_date', 'crew_id', 'date'),
        Index('idx_schedule_assignments_org_status', 'org_id', 'status'),
    )

    # Stale UPDATE/DELETE raises StaleDataError instead of silently winning.
    __mapper_args__ = {"version_id_col": version}

    job = relationship("Job")


class AuditEvent(Base):
    """Audit event model (before/after snapshot, one action per mutation)."""
    __tablename__ = "audit_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), index=True)
    action = Column(String(50), nullable=False, index=True)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(UUID(as_uuid=True), nullable=True)
    actor_type = Column(String(20), nullable=False, default='user')
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True)
    before = Column(JSONB, nullable=True)
    after = Column(JSONB, nullable=True)
    details = Column(JSONB, default={})
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(
            action.in_(['CREATE', 'UPDATE', 'DELETE', 'ASSIGN', 'RESCHEDULE']),
            name='chk_audit_action'
        ),
        Index('idx_audit_events_entity', 'entity_type', 'entity_id'),
    )


class JobActivityEvent(Base):
    """Job activity timeline entry."""
    __tablename__ = "job_activity_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False, index=True)
    job_id = Column(UUID(as_uuid=True), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(50), nullable=False)
    actor_crew_id = Column(UUID(as_uuid=True), nullable=True)
    payload = Column(JSONB, default={})
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(
            type.in_([
                'schedule_assignment_created',
                'schedule_assignment_updated',
                'schedule_assignment_deleted',
            ]),
            name='chk_job_activity_type'
        ),
    )


class AppEvent(Base):
    """Internal pub/sub event log consumed by integrations."""
    __tablename__ = "app_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False, index=True)
    event_type = Column(String(50), nullable=False, index=True)
    payload = Column(JSONB, default={})
    actor_user_id = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)


class CommEvent(Base):
    """
    Outbound communication trigger - ONE ROW PER LOGICAL NOTIFICATION.
    (org_id, event_key, entity_id) is the dedup identity; redelivery is a no-op.
    """
    __tablename__ = "comm_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False, index=True)
    event_key = Column(String(50), nullable=False)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(UUID(as_uuid=True), nullable=False)
    triggered_by_user_id = Column(UUID(as_uuid=True), nullable=True)
    actor_role_key = Column(String(50), nullable=True)
    payload = Column(JSONB, default={})

    status = Column(String(20), default='pending', index=True)  # pending/sent/failed/skipped
    attempts = Column(Integer, default=0)
    next_retry_at = Column(DateTime(timezone=True), nullable=True, index=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            event_key.in_(['job_scheduled', 'job_assigned', 'job_rescheduled', 'job_cancelled']),
            name='chk_comm_event_key'
        ),
        CheckConstraint(
            status.in_(['pending', 'sent', 'failed', 'skipped']),
            name='chk_comm_event_status'
        ),
        UniqueConstraint('org_id', 'event_key', 'entity_id', name='uq_comm_event_identity'),
        Index('idx_comm_events_pending_retry', 'status', 'next_retry_at',
              postgresql_where=(status == 'pending')),
    )
