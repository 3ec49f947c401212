"""Create the credit ledger schema.

Revision ID: 001_credit_ledger_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "001_credit_ledger_schema"
down_revision = None
branch_labels = None
depends_on = None


credit_source_type = sa.Enum("subscription", "purchase", "referral", name="credit_source_type")
credit_status = sa.Enum("active", "used", "expired", name="credit_status")
subscription_status = sa.Enum("active", "cancelled", "past_due", name="subscription_status")


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("slug", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_organizations_id", "organizations", ["id"], unique=False)
    op.create_index("ix_organizations_slug", "organizations", ["slug"], unique=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("first_name", sa.String(), nullable=True),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=True),
        sa.Column("referral_code", sa.String(), nullable=True),
        sa.Column("successful_referrals", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lifetime_referral_rewards_earned", sa.Float(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_users_id", "users", ["id"], unique=False)
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_organization_id", "users", ["organization_id"], unique=False)
    op.create_index("ix_users_referral_code", "users", ["referral_code"], unique=True)

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=True),
        sa.Column("plan_name", sa.String(), nullable=False),
        sa.Column("status", subscription_status, nullable=False),
        sa.Column("stripe_subscription_id", sa.String(), nullable=True),
        sa.Column("stripe_customer_id", sa.String(), nullable=True),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_subscriptions_id", "subscriptions", ["id"], unique=False)
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"], unique=False)
    op.create_index("ix_subscriptions_stripe_subscription_id", "subscriptions", ["stripe_subscription_id"], unique=False)

    op.create_table(
        "user_credits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("source_type", credit_source_type, nullable=False),
        sa.Column("source_id", sa.String(), nullable=True),
        sa.Column("source_description", sa.Text(), nullable=True),
        sa.Column("value_usd", sa.Float(), nullable=True),
        sa.Column("status", credit_status, nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("used_for_type", sa.String(), nullable=True),
        sa.Column("used_for_id", sa.String(), nullable=True),
        sa.Column("expiration_warning_sent_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_user_credits_id", "user_credits", ["id"], unique=False)
    op.create_index("ix_user_credits_user_id", "user_credits", ["user_id"], unique=False)
    op.create_index("ix_user_credits_expires_at", "user_credits", ["expires_at"], unique=False)
    op.create_index("ix_user_credits_user_status", "user_credits", ["user_id", "status"], unique=False)
    op.create_index("ix_user_credits_claim_order", "user_credits", ["user_id", "priority", "created_at"], unique=False)
    op.create_index("ix_user_credits_source", "user_credits", ["source_type", "source_id"], unique=False)

    op.create_table(
        "user_usage_tracking",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("feature_type", sa.String(), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("bonus_usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("bonus_source", sa.String(), nullable=True),
        sa.Column("limit_count", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "feature_type", "period_start", name="uq_usage_user_feature_period"),
    )
    op.create_index("ix_user_usage_tracking_id", "user_usage_tracking", ["id"], unique=False)
    op.create_index("ix_user_usage_tracking_user_id", "user_usage_tracking", ["user_id"], unique=False)

    op.create_table(
        "pay_per_use_charges",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("feature_type", sa.String(), nullable=False, server_default="blog_post"),
        sa.Column("unit_price", sa.Float(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("total_amount", sa.Float(), nullable=False),
        sa.Column("external_ref", sa.String(), nullable=True),
        sa.Column("charged_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index("ix_pay_per_use_charges_id", "pay_per_use_charges", ["id"], unique=False)
    op.create_index("ix_pay_per_use_charges_user_id", "pay_per_use_charges", ["user_id"], unique=False)
    op.create_index("ix_pay_per_use_charges_external_ref", "pay_per_use_charges", ["external_ref"], unique=False)

    op.create_table(
        "referral_rewards",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("counterpart_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("role", sa.String(), nullable=False, server_default="referrer"),
        sa.Column("reward_type", sa.String(), nullable=False, server_default="free_generation"),
        sa.Column("reward_value", sa.Float(), nullable=False),
        sa.Column("granted_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index("ix_referral_rewards_id", "referral_rewards", ["id"], unique=False)
    op.create_index("ix_referral_rewards_user_id", "referral_rewards", ["user_id"], unique=False)

    op.create_table(
        "processed_webhook_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("provider", sa.String(), nullable=False, server_default="stripe"),
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("outcome", sa.String(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index("ix_processed_webhook_events_id", "processed_webhook_events", ["id"], unique=False)
    op.create_index("ix_processed_webhook_events_event_id", "processed_webhook_events", ["event_id"], unique=True)


def downgrade() -> None:
    op.drop_table("processed_webhook_events")
    op.drop_table("referral_rewards")
    op.drop_table("pay_per_use_charges")
    op.drop_table("user_usage_tracking")
    op.drop_table("user_credits")
    op.drop_table("subscriptions")
    op.drop_table("users")
    op.drop_table("organizations")
    bind = op.get_bind()
    subscription_status.drop(bind, checkfirst=True)
    credit_status.drop(bind, checkfirst=True)
    credit_source_type.drop(bind, checkfirst=True)
