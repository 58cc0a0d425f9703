"""create concierge schema

Revision ID: 3b1f0c9d2e7a
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from __future__ import annotations

from typing import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql


revision: str = "3b1f0c9d2e7a"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def _id() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def _business_fk() -> sa.Column:
    return sa.Column(
        "business_id",
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
    )


def _jsonb(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        postgresql.JSONB(astext_type=sa.Text()),
        server_default=None if nullable else sa.text("'{}'::jsonb"),
        nullable=nullable,
    )


def upgrade() -> None:
    op.create_table(
        "businesses",
        _id(),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("business_type", sa.String(length=32), server_default=sa.text("'hotel'"), nullable=False),
        sa.Column("tier", sa.String(length=32), server_default=sa.text("'starter'"), nullable=False),
        sa.Column("primary_color", sa.String(length=16), server_default=sa.text("'#0891b2'"), nullable=False),
        sa.Column("logo_url", sa.String(length=1024), nullable=True),
        sa.Column("welcome_message", sa.Text(), nullable=True),
        _jsonb("business_info"),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_timestamps(),
    )
    op.create_index(op.f("ix_businesses_email"), "businesses", ["email"], unique=True)
    op.create_index(op.f("ix_businesses_slug"), "businesses", ["slug"], unique=True)

    op.create_table(
        "admin_users",
        _id(),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("role", sa.String(length=32), server_default=sa.text("'admin'"), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_timestamps(),
    )
    op.create_index(op.f("ix_admin_users_email"), "admin_users", ["email"], unique=True)

    op.create_table(
        "subscriptions",
        _id(),
        _business_fk(),
        sa.Column("tier", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=32), server_default=sa.text("'trial'"), nullable=False),
        sa.Column("billing_cycle", sa.String(length=16), server_default=sa.text("'monthly'"), nullable=False),
        sa.Column("payment_status", sa.String(length=32), nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cancel_at_period_end", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("grace_period_ends", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_payment_attempt", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_attempts", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("access_revoked_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("business_id", name="uq_subscriptions_business_id"),
    )

    op.create_table(
        "channel_configs",
        _id(),
        _business_fk(),
        sa.Column("channel", sa.String(length=32), nullable=False),
        sa.Column("routing_key", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        _jsonb("config"),
        *_timestamps(),
        sa.UniqueConstraint("business_id", "channel", name="uq_channel_configs_business_channel"),
    )
    op.create_index(op.f("ix_channel_configs_business_id"), "channel_configs", ["business_id"])
    op.create_index(
        "uq_channel_configs_active_routing_key",
        "channel_configs",
        ["channel", "routing_key"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )

    op.create_table(
        "guest_profiles",
        _id(),
        _business_fk(),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("language_preference", sa.String(length=16), server_default=sa.text("'en'"), nullable=False),
        sa.Column("last_visit", sa.DateTime(timezone=True), nullable=True),
        _jsonb("metadata"),
        *_timestamps(),
        sa.UniqueConstraint("business_id", "phone", name="uq_guest_profiles_business_phone"),
    )
    op.create_index(op.f("ix_guest_profiles_business_id"), "guest_profiles", ["business_id"])

    op.create_table(
        "conversations",
        _id(),
        _business_fk(),
        sa.Column("session_id", sa.String(length=255), nullable=True),
        sa.Column("channel", sa.String(length=32), server_default=sa.text("'web'"), nullable=False),
        sa.Column("external_contact", sa.String(length=64), nullable=True),
        sa.Column(
            "guest_profile_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("guest_profiles.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("user_language", sa.String(length=16), server_default=sa.text("'en'"), nullable=False),
        sa.Column("satisfaction", sa.Integer(), nullable=True),
        sa.Column("resolved", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "satisfaction IS NULL OR satisfaction BETWEEN 1 AND 5",
            name="ck_conversations_satisfaction_range",
        ),
    )
    op.create_index("ix_conversations_business_id_updated_at", "conversations", ["business_id", "updated_at"])
    op.create_index("ix_conversations_session_id", "conversations", ["session_id"])
    op.create_index(
        "ix_conversations_business_channel_contact",
        "conversations",
        ["business_id", "channel", "external_contact"],
    )

    op.create_table(
        "messages",
        _id(),
        sa.Column(
            "conversation_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        _jsonb("metadata", nullable=True),
        sa.Column("provider_message_id", sa.String(length=255), nullable=True),
        sa.Column("delivery_status", sa.String(length=32), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivery_error", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_messages_conversation_id_created_at", "messages", ["conversation_id", "created_at"])
    op.create_index(
        "uq_messages_provider_message_id",
        "messages",
        ["provider_message_id"],
        unique=True,
        postgresql_where=sa.text("provider_message_id IS NOT NULL"),
    )

    op.create_table(
        "knowledge_base_entries",
        _id(),
        _business_fk(),
        sa.Column("category", sa.String(length=128), nullable=False),
        sa.Column("question", sa.Text(), nullable=False),
        sa.Column("answer", sa.Text(), nullable=False),
        sa.Column("keywords", sa.Text(), server_default=sa.text("''"), nullable=False),
        sa.Column("priority", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("language", sa.String(length=16), server_default=sa.text("'en'"), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_timestamps(),
    )
    op.create_index(op.f("ix_knowledge_base_entries_business_id"), "knowledge_base_entries", ["business_id"])


def downgrade() -> None:
    op.drop_table("knowledge_base_entries")
    op.drop_index("uq_messages_provider_message_id", table_name="messages")
    op.drop_table("messages")
    op.drop_table("conversations")
    op.drop_table("guest_profiles")
    op.drop_index("uq_channel_configs_active_routing_key", table_name="channel_configs")
    op.drop_table("channel_configs")
    op.drop_table("subscriptions")
    op.drop_table("admin_users")
    op.drop_table("businesses")
