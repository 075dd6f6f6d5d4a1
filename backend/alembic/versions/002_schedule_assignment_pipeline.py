"""schedule assignment version column and comm event dedup identity

Revision ID: 002
Revises: 001
Create Date: 2026-10-12
"""

from alembic import op


# revision identifiers, used by Alembic.
revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Optimistic concurrency token; existing rows start at version 1.
    op.execute("ALTER TABLE schedule_assignments ADD COLUMN IF NOT EXISTS version INTEGER NOT NULL DEFAULT 1")
    op.execute("ALTER TABLE schedule_assignments ADD COLUMN IF NOT EXISTS start_at_hq BOOLEAN NOT NULL DEFAULT FALSE")
    op.execute("ALTER TABLE schedule_assignments ADD COLUMN IF NOT EXISTS end_at_hq BOOLEAN NOT NULL DEFAULT FALSE")

    op.execute("ALTER TABLE schedule_assignments DROP CONSTRAINT IF EXISTS chk_assignment_status")
    op.execute(
        """
        ALTER TABLE schedule_assignments
        ADD CONSTRAINT chk_assignment_status CHECK (
            status IN ('scheduled', 'in_progress', 'completed', 'cancelled')
        )
        """
    )
    op.execute("ALTER TABLE schedule_assignments DROP CONSTRAINT IF EXISTS chk_assignment_time_order")
    op.execute(
        """
        ALTER TABLE schedule_assignments
        ADD CONSTRAINT chk_assignment_time_order CHECK (start_minutes < end_minutes)
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_schedule_assignments_org_date "
        "ON schedule_assignments (org_id, date)"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_schedule_assignments_crew_date "
        "ON schedule_assignments (crew_id, date)"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_schedule_assignments_org_status "
        "ON schedule_assignments (org_id, status)"
    )

    # Comm events: keep the oldest row per logical notification, then enforce uniqueness.
    op.execute(
        """
        DELETE FROM comm_events a
        USING comm_events b
        WHERE a.org_id = b.org_id
          AND a.event_key = b.event_key
          AND a.entity_id = b.entity_id
          AND a.created_at > b.created_at
        """
    )
    op.execute(
        """
        DO $$
        BEGIN
          IF NOT EXISTS (
            SELECT 1 FROM pg_constraint
            WHERE conname = 'uq_comm_event_identity'
          ) THEN
            ALTER TABLE comm_events
              ADD CONSTRAINT uq_comm_event_identity UNIQUE (org_id, event_key, entity_id);
          END IF;
        END $$;
        """
    )
    op.execute("ALTER TABLE comm_events ADD COLUMN IF NOT EXISTS next_retry_at TIMESTAMPTZ")
    op.execute("ALTER TABLE comm_events ADD COLUMN IF NOT EXISTS last_error TEXT")
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_comm_events_pending_retry "
        "ON comm_events (status, next_retry_at) WHERE status = 'pending'"
    )

    # Audit actions used by schedule mutations.
    op.execute("ALTER TABLE audit_events DROP CONSTRAINT IF EXISTS chk_audit_action")
    op.execute(
        """
        ALTER TABLE audit_events
        ADD CONSTRAINT chk_audit_action CHECK (
            action IN ('CREATE', 'UPDATE', 'DELETE', 'ASSIGN', 'RESCHEDULE')
        )
        """
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS idx_comm_events_pending_retry")
    op.execute("ALTER TABLE comm_events DROP CONSTRAINT IF EXISTS uq_comm_event_identity")
    op.execute("DROP INDEX IF EXISTS idx_schedule_assignments_org_status")
    op.execute("DROP INDEX IF EXISTS idx_schedule_assignments_crew_date")
    op.execute("DROP INDEX IF EXISTS idx_schedule_assignments_org_date")
    op.execute("ALTER TABLE schedule_assignments DROP COLUMN IF EXISTS version")
