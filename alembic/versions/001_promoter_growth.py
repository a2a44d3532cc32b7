"""Initial schema - promoters, share links, referrals, trial invites.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Platform users (owned by the auth service; mirrored columns only)
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), unique=True),
        sa.Column("referral_code", sa.String(16), unique=True),
        sa.Column("is_admin", sa.Boolean, default=False),
        sa.Column("is_active", sa.Boolean, default=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Billing plans and subscriptions
    op.create_table(
        "plans",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("code", sa.String(50), nullable=False, unique=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("is_active", sa.Boolean, default=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("plan_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("plans.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="TRIAL"),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("trial_ends_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_subscriptions_user", "subscriptions", ["user_id"])

    # Promoters
    op.create_table(
        "promoters",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), unique=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("phone", sa.String(20)),
        sa.Column("email", sa.String(255)),
        sa.Column("line_id", sa.String(100)),
        sa.Column("referral_code", sa.String(16), nullable=False, unique=True),
        sa.Column("type", sa.String(20), nullable=False, server_default="EXTERNAL"),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("is_active", sa.Boolean, default=False),
        sa.Column("organization", sa.String(200)),
        sa.Column("region", sa.String(100)),
        sa.Column("address", sa.String(255)),
        sa.Column("category", sa.String(100)),
        sa.Column("social_links", postgresql.JSONB, default={}),
        sa.Column("avatar_url", sa.String(500)),
        sa.Column("joined_reason", sa.Text),
        sa.Column("notes", sa.Text),
        sa.Column("approved_at", sa.DateTime(timezone=True)),
        sa.Column("approved_by", postgresql.UUID(as_uuid=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_promoters_status", "promoters", ["status"])
    op.create_index("ix_promoters_email", "promoters", ["email"])
    op.create_index("ix_promoters_phone", "promoters", ["phone"])

    op.create_table(
        "promoter_reward_configs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("promoter_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("promoters.id"), nullable=False, unique=True),
        sa.Column("reward_type", sa.String(30), nullable=False, server_default="NONE"),
        sa.Column("fixed_amount", sa.Float),
        sa.Column("percentage", sa.Float),
        sa.Column("extension_months", sa.Integer),
        sa.Column("max_rewards_per_month", sa.Integer),
        sa.Column("valid_from", sa.DateTime(timezone=True)),
        sa.Column("valid_until", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "promoter_trial_configs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("promoter_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("promoters.id"), nullable=False, unique=True),
        sa.Column("can_issue_trial", sa.Boolean, default=True),
        sa.Column("min_trial_days", sa.Integer, default=7),
        sa.Column("max_trial_days", sa.Integer, default=30),
        sa.Column("default_trial_days", sa.Integer, default=14),
        sa.Column("trial_plan_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("plans.id")),
        sa.Column("monthly_issue_limit", sa.Integer),
        sa.Column("total_issue_limit", sa.Integer),
        sa.Column("issued_total", sa.Integer, nullable=False, server_default="0"),
        sa.Column("issued_month", sa.Integer, nullable=False, server_default="0"),
        sa.Column("issued_month_key", sa.String(7)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Share links and their click log
    op.create_table(
        "share_links",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("promoter_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("promoters.id"), nullable=False),
        sa.Column("code", sa.String(32), nullable=False, unique=True),
        sa.Column("channel", sa.String(20), nullable=False),
        sa.Column("target_url", sa.Text),
        sa.Column("is_active", sa.Boolean, default=True),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("click_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("ref_channel_key", sa.String(10)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("promoter_id", "ref_channel_key", name="uq_share_links_promoter_ref"),
    )
    op.create_index("ix_share_links_promoter", "share_links", ["promoter_id"])

    op.create_table(
        "share_link_clicks",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("share_link_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("share_links.id"), nullable=False),
        sa.Column("ip_address", sa.String(45)),
        sa.Column("user_agent", sa.String(500)),
        sa.Column("referer", sa.String(500)),
        sa.Column("clicked_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_share_link_clicks_link", "share_link_clicks", ["share_link_id"])

    # Referrals
    op.create_table(
        "promoter_referrals",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("promoter_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("promoters.id"), nullable=False),
        sa.Column("referred_user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False, unique=True),
        sa.Column("share_link_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("share_links.id")),
        sa.Column("channel", sa.String(20)),
        sa.Column("status", sa.String(20), nullable=False, server_default="CLICKED"),
        sa.Column("clicked_at", sa.DateTime(timezone=True)),
        sa.Column("registered_at", sa.DateTime(timezone=True)),
        sa.Column("subscribed_at", sa.DateTime(timezone=True)),
        sa.Column("renewed_at", sa.DateTime(timezone=True)),
        sa.Column("subscription_id", postgresql.UUID(as_uuid=True)),
        sa.Column("reward_amount", sa.Float),
        sa.Column("reward_granted_at", sa.DateTime(timezone=True)),
        sa.Column("reward_notes", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_promoter_referrals_promoter", "promoter_referrals", ["promoter_id"])
    op.create_index("ix_promoter_referrals_status", "promoter_referrals", ["status"])

    # Trial invites
    op.create_table(
        "trial_invites",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("code", sa.String(16), nullable=False, unique=True),
        sa.Column("promoter_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("promoters.id"), nullable=False),
        sa.Column("plan_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("plans.id")),
        sa.Column("trial_days", sa.Integer, nullable=False),
        sa.Column("invite_method", sa.String(10), nullable=False, server_default="CODE"),
        sa.Column("channel", sa.String(20)),
        sa.Column("invitee_name", sa.String(100)),
        sa.Column("invitee_phone", sa.String(20)),
        sa.Column("invitee_email", sa.String(255)),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("link_click_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_clicked_at", sa.DateTime(timezone=True)),
        sa.Column("activated_user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id")),
        sa.Column("activated_at", sa.DateTime(timezone=True)),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("subscription_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("subscriptions.id")),
        sa.Column("converted_at", sa.DateTime(timezone=True)),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_trial_invites_promoter_created", "trial_invites", ["promoter_id", "created_at"])
    op.create_index("ix_trial_invites_status_expires", "trial_invites", ["status", "expires_at"])
    op.create_index("ix_trial_invites_activated_user", "trial_invites", ["activated_user_id"])


def downgrade() -> None:
    op.drop_table("trial_invites")
    op.drop_table("promoter_referrals")
    op.drop_table("share_link_clicks")
    op.drop_table("share_links")
    op.drop_table("promoter_trial_configs")
    op.drop_table("promoter_reward_configs")
    op.drop_table("promoters")
    op.drop_table("subscriptions")
    op.drop_table("plans")
    op.drop_table("users")
