"""baseline marker for databases created via Base.metadata.create_all()

Revision ID: 001
Revises:
Create Date: 2026-10-05

"""
from alembic import op

revision = '001'
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    # Tables are created by Base.metadata.create_all() in seed_data.py.
    # This migration just marks the schema as initialized.
    pass

def downgrade() -> None:
    pass
