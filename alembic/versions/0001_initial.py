"""Create ingested_events and the ingestion_state checkpoint

Revision ID: 0001_initial
Revises:
Create Date: 2024-01-15 10:00:00
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "ingested_events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "payload",
            sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
            nullable=False,
        ),
        sa.Column(
            "ingested_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("idx_ingested_events_occurred_at", "ingested_events", ["occurred_at"])

    state = op.create_table(
        "ingestion_state",
        sa.Column("id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("cursor", sa.String(), nullable=True),
        sa.Column("total_ingested", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("id = 1", name="ck_ingestion_state_singleton"),
        sa.CheckConstraint("total_ingested >= 0", name="ck_ingestion_state_total_non_negative"),
    )

    op.bulk_insert(state, [{"id": 1, "cursor": None, "total_ingested": 0}])


def downgrade():
    op.drop_table("ingestion_state")
    op.drop_index("idx_ingested_events_occurred_at", table_name="ingested_events")
    op.drop_table("ingested_events")
