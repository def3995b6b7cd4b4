"""Initial Planify entitlement schema."""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tier", sa.String(length=32), nullable=False, server_default=sa.text("'free'")),
        sa.Column("subscription_status", sa.String(length=32), nullable=True),
        sa.Column("subscription_provider", sa.String(length=32), nullable=True),
        sa.Column("subscription_id", sa.Text(), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("daily_ai_calls", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("monthly_ai_calls", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("daily_ai_calls_reset_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("monthly_ai_calls_reset_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("frozen_pro_credits", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("bonus_ai_credits", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("timezone", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("daily_ai_calls >= 0", name="ck_users_daily_ai_calls_non_negative"),
        sa.CheckConstraint("monthly_ai_calls >= 0", name="ck_users_monthly_ai_calls_non_negative"),
        sa.CheckConstraint("bonus_ai_credits >= 0", name="ck_users_bonus_ai_credits_non_negative"),
    )
    op.create_index(
        "ix_users_subscription_status_period_end",
        "users",
        ["subscription_status", "current_period_end"],
        unique=False,
    )

    op.create_table(
        "audit_log",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("action_type", sa.Text(), nullable=False),
        sa.Column(
            "action_payload",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("actor", sa.Text(), nullable=False, server_default=sa.text("'system'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_audit_log_user_id", "audit_log", ["user_id"], unique=False)
    op.create_index("ix_audit_log_action_type", "audit_log", ["action_type"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_log_action_type", table_name="audit_log")
    op.drop_index("ix_audit_log_user_id", table_name="audit_log")
    op.drop_table("audit_log")
    op.drop_index("ix_users_subscription_status_period_end", table_name="users")
    op.drop_table("users")
