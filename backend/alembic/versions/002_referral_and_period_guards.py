"""Unique referred-side referral reward; track provider-confirmed billing periods

Revision ID: 002
Revises: 001_credit_ledger_schema
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = "002_referral_and_period_guards"
down_revision = "001_credit_ledger_schema"
branch_labels = None
depends_on = None


def upgrade():
    op.create_index(
        "uq_referral_rewards_referred_user",
        "referral_rewards",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("role = 'referred'"),
        sqlite_where=sa.text("role = 'referred'"),
    )

    op.add_column("subscriptions", sa.Column("period_confirmed_at", sa.DateTime(timezone=True), nullable=True))
    # Rows written before this revision keep renewing on the next period change.
    op.execute("UPDATE subscriptions SET period_confirmed_at = created_at")


def downgrade():
    op.drop_column("subscriptions", "period_confirmed_at")
    op.drop_index("uq_referral_rewards_referred_user", table_name="referral_rewards")
