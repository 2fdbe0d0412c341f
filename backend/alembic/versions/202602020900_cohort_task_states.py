"""Cohort task completion rollups."""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "202602020900"
down_revision = "202601150900"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "programs",
        sa.Column("cohort_completion_threshold", sa.Integer(), nullable=False, server_default=sa.text("50")),
    )

    op.create_table(
        "cohort_task_states",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("cohort_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("instance_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("program_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("day_index", sa.Integer(), nullable=False),
        sa.Column("instance_task_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("date", sa.Date(), nullable=True),
        sa.Column("total_members", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("completed_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("completion_rate", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("threshold_met", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "member_states",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("cohort_id", "instance_task_id", "day_index", name="uq_cohort_task_states_cohort_task_day"),
    )
    op.create_index(
        "ix_cohort_task_states_cohort_day",
        "cohort_task_states",
        ["cohort_id", "day_index"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_cohort_task_states_cohort_day", table_name="cohort_task_states")
    op.drop_table("cohort_task_states")
    op.drop_column("programs", "cohort_completion_threshold")
