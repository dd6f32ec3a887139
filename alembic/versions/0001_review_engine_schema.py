"""Create review scheduling tables"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_review_engine_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "review_states",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("learner_id", sa.String(length=255), nullable=False),
        sa.Column("item_id", sa.String(length=255), nullable=False),
        sa.Column("ease_factor", sa.Float(), server_default=sa.text("2.5"), nullable=False),
        sa.Column("interval_days", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("repetition_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("lapse_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("phase", sa.String(length=20), server_default=sa.text("'new'"), nullable=False),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("tombstoned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("timezone('utc', now())"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("timezone('utc', now())"), nullable=True),
        sa.UniqueConstraint("learner_id", "item_id", name="uq_review_states_learner_item"),
    )
    op.create_index("ix_review_states_item_id", "review_states", ["item_id"], unique=False)
    op.create_index("ix_review_states_learner_due", "review_states", ["learner_id", "due_at"], unique=False)

    op.create_table(
        "review_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("learner_id", sa.String(length=255), nullable=False),
        sa.Column("item_id", sa.String(length=255), nullable=False),
        sa.Column("session_id", sa.String(length=64), nullable=True),
        sa.Column("grade", sa.Integer(), nullable=False),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("phase_before", sa.String(length=20), nullable=True),
        sa.Column("phase_after", sa.String(length=20), nullable=True),
        sa.Column("interval_before", sa.Integer(), nullable=True),
        sa.Column("interval_after", sa.Integer(), nullable=True),
        sa.Column("ease_factor_before", sa.Float(), nullable=True),
        sa.Column("ease_factor_after", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("timezone('utc', now())"), nullable=True),
    )
    op.create_index("ix_review_logs_learner_id", "review_logs", ["learner_id"], unique=False)
    op.create_index("ix_review_logs_reviewed_at", "review_logs", ["reviewed_at"], unique=False)

    op.create_table(
        "item_tombstones",
        sa.Column("item_id", sa.String(length=255), primary_key=True, nullable=False),
        sa.Column("tombstoned_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("item_tombstones")
    op.drop_index("ix_review_logs_reviewed_at", table_name="review_logs")
    op.drop_index("ix_review_logs_learner_id", table_name="review_logs")
    op.drop_table("review_logs")
    op.drop_index("ix_review_states_learner_due", table_name="review_states")
    op.drop_index("ix_review_states_item_id", table_name="review_states")
    op.drop_table("review_states")
