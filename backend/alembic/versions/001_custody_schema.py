"""custody handoff schema

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _uuid(name: str, **kwargs) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), **kwargs)


def _ts(name: str, **kwargs) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), **kwargs)


def upgrade() -> None:
    op.create_table(
        "medical_companies",
        _uuid("id", primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        _ts("created_at", server_default=sa.func.now()),
        _ts("updated_at", server_default=sa.func.now()),
    )
    op.create_index("ix_medical_companies_code", "medical_companies", ["code"], unique=True)

    op.create_table(
        "users",
        _uuid("id", primary_key=True),
        _uuid("company_id", sa.ForeignKey("medical_companies.id"), nullable=True),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("role", sa.String(50), nullable=False),
        sa.Column("phone_number", sa.String(32), nullable=True),
        sa.Column("telegram_chat_id", sa.String(50), nullable=True),
        sa.Column("token_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        _ts("created_at", server_default=sa.func.now()),
        _ts("updated_at", server_default=sa.func.now()),
        sa.CheckConstraint(
            "role IN ('admin', 'supervisor', 'driver', 'incinerator_operator')",
            name="chk_user_role",
        ),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_company_id", "users", ["company_id"])
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "waste_bins",
        _uuid("id", primary_key=True),
        _uuid("company_id", sa.ForeignKey("medical_companies.id"), nullable=True),
        sa.Column("bin_code", sa.String(100), nullable=False),
        sa.Column("waste_type", sa.String(50), nullable=True),
        sa.Column("fullness", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        _ts("created_at", server_default=sa.func.now()),
    )
    op.create_index("ix_waste_bins_bin_code", "waste_bins", ["bin_code"], unique=True)
    op.create_index("ix_waste_bins_company_id", "waste_bins", ["company_id"])

    op.create_table(
        "incineration_plants",
        _uuid("id", primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("operators", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        _ts("created_at", server_default=sa.func.now()),
    )

    op.create_table(
        "collection_sessions",
        _uuid("id", primary_key=True),
        sa.Column("session_code", sa.String(64), nullable=False),
        _uuid("driver_id", sa.ForeignKey("users.id"), nullable=True),
        _uuid("company_id", sa.ForeignKey("medical_companies.id"), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("handoff_chain_id", sa.String(40), nullable=True),
        sa.Column("handoff_stage", sa.String(30), nullable=False, server_default="none"),
        _ts("handoff_stage_updated_at", nullable=True),
        _ts("started_at", server_default=sa.func.now()),
        _ts("created_at", server_default=sa.func.now()),
        _ts("updated_at", server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('active', 'completed', 'cancelled')", name="chk_session_status"),
        sa.CheckConstraint(
            "handoff_stage IN ('none', 'facility_to_driver', 'driver_to_incinerator', 'completed')",
            name="chk_session_handoff_stage",
        ),
    )
    op.create_index("ix_collection_sessions_session_code", "collection_sessions", ["session_code"], unique=True)
    op.create_index("ix_collection_sessions_driver_id", "collection_sessions", ["driver_id"])
    op.create_index("ix_collection_sessions_company_id", "collection_sessions", ["company_id"])
    op.create_index("ix_collection_sessions_handoff_chain_id", "collection_sessions", ["handoff_chain_id"])
    op.create_index(
        "idx_sessions_driver_active",
        "collection_sessions",
        ["driver_id"],
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "handoffs",
        _uuid("id", primary_key=True),
        sa.Column("handoff_code", sa.String(32), nullable=False),
        sa.Column("chain_id", sa.String(40), nullable=True),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        _uuid("session_id", sa.ForeignKey("collection_sessions.id"), nullable=True),
        _uuid("company_id", sa.ForeignKey("medical_companies.id"), nullable=False),
        _uuid("facility_id", nullable=True),
        _uuid("incineration_plant_id", sa.ForeignKey("incineration_plants.id"), nullable=True),
        _uuid("sender_user_id", sa.ForeignKey("users.id"), nullable=True),
        sa.Column("sender_role", sa.String(50), nullable=True),
        sa.Column("sender_name", sa.String(255), nullable=True),
        sa.Column("sender_phone", sa.String(32), nullable=True),
        _ts("sender_confirmed_at", nullable=True),
        _uuid("receiver_user_id", sa.ForeignKey("users.id"), nullable=True),
        sa.Column("receiver_role", sa.String(50), nullable=True),
        sa.Column("receiver_name", sa.String(255), nullable=True),
        sa.Column("receiver_phone", sa.String(32), nullable=True),
        _ts("receiver_confirmed_at", nullable=True),
        sa.Column("total_containers", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_declared_weight", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_confirmed_weight", sa.Float(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(30), nullable=False, server_default="created"),
        sa.Column("confirmation_token_hash", sa.String(64), nullable=True, unique=True),
        _ts("token_expires_at", nullable=True),
        _uuid("dispute_raised_by_id", sa.ForeignKey("users.id"), nullable=True),
        sa.Column("dispute_role", sa.String(50), nullable=True),
        sa.Column("dispute_reason", sa.String(255), nullable=True),
        sa.Column("dispute_description", sa.Text(), nullable=True),
        sa.Column("dispute_evidence", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        _ts("dispute_raised_at", nullable=True),
        _uuid("dispute_resolved_by_id", sa.ForeignKey("users.id"), nullable=True),
        sa.Column("dispute_resolution", sa.Text(), nullable=True),
        _ts("dispute_resolved_at", nullable=True),
        _ts("completed_at", nullable=True),
        _ts("expires_at", nullable=True),
        _ts("expired_at", nullable=True),
        _ts("created_at", server_default=sa.func.now(), nullable=False),
        _ts("updated_at", server_default=sa.func.now()),
        sa.CheckConstraint("type IN ('facility_to_driver', 'driver_to_incinerator')", name="chk_handoff_type"),
        sa.CheckConstraint(
            "status IN ('created', 'pending', 'confirmed_by_sender', 'confirmed_by_receiver', "
            "'completed', 'disputed', 'resolving', 'resolved', 'expired')",
            name="chk_handoff_status",
        ),
        sa.CheckConstraint("sequence IN (1, 2)", name="chk_handoff_sequence"),
        sa.CheckConstraint("total_containers >= 0", name="chk_handoff_total_containers"),
    )
    op.create_index("ix_handoffs_handoff_code", "handoffs", ["handoff_code"], unique=True)
    op.create_index("ix_handoffs_chain_id", "handoffs", ["chain_id"])
    op.create_index("ix_handoffs_session_id", "handoffs", ["session_id"])
    op.create_index("ix_handoffs_company_id", "handoffs", ["company_id"])
    op.create_index("ix_handoffs_sender_user_id", "handoffs", ["sender_user_id"])
    op.create_index("ix_handoffs_receiver_user_id", "handoffs", ["receiver_user_id"])
    op.create_index("ix_handoffs_status", "handoffs", ["status"])
    op.create_index("ix_handoffs_created_at", "handoffs", ["created_at"])
    op.create_index("idx_handoffs_company_created", "handoffs", ["company_id", "created_at"])
    op.create_index("idx_handoffs_chain", "handoffs", ["chain_id", "sequence"])
    # One live handoff per session and step; expired ones may be re-issued.
    op.create_index(
        "uq_handoffs_session_type_active",
        "handoffs",
        ["session_id", "type"],
        unique=True,
        postgresql_where=sa.text("session_id IS NOT NULL AND status <> 'expired'"),
    )
    op.create_index(
        "idx_handoffs_expires_open",
        "handoffs",
        ["expires_at"],
        postgresql_where=sa.text(
            "expires_at IS NOT NULL AND status NOT IN ('completed', 'resolved', 'expired')"
        ),
    )

    op.create_table(
        "handoff_containers",
        _uuid("id", primary_key=True),
        _uuid("handoff_id", sa.ForeignKey("handoffs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        _uuid("container_id", sa.ForeignKey("waste_bins.id"), nullable=False),
        sa.Column("bin_code", sa.String(100), nullable=True),
        sa.Column("waste_type", sa.String(50), nullable=True),
        sa.Column("waste_class", sa.String(50), nullable=True),
        sa.Column("fill_level", sa.Integer(), nullable=True),
        sa.Column("declared_weight", sa.Float(), nullable=True),
        sa.Column("confirmed_weight", sa.Float(), nullable=True),
        sa.Column("bag_count", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.CheckConstraint("declared_weight IS NULL OR declared_weight >= 0", name="chk_handoff_container_declared"),
        sa.CheckConstraint("confirmed_weight IS NULL OR confirmed_weight >= 0", name="chk_handoff_container_confirmed"),
        sa.CheckConstraint("bag_count IS NULL OR bag_count >= 0", name="chk_handoff_container_bags"),
    )
    op.create_index("ix_handoff_containers_handoff_id", "handoff_containers", ["handoff_id"])
    op.create_index("ix_handoff_containers_container_id", "handoff_containers", ["container_id"])

    op.create_table(
        "notification_logs",
        _uuid("id", primary_key=True),
        _uuid("handoff_id", sa.ForeignKey("handoffs.id"), nullable=False),
        _uuid("recipient_user_id", sa.ForeignKey("users.id"), nullable=True),
        sa.Column("recipient_phone", sa.String(32), nullable=True),
        sa.Column("recipient_name", sa.String(255), nullable=True),
        sa.Column("channel", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("provider_message_id", sa.String(255), nullable=True),
        sa.Column("content", sa.Text(), nullable=True),
        _ts("sent_at", nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        _ts("created_at", server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("channel IN ('sms', 'whatsapp', 'telegram')", name="chk_notification_channel"),
        sa.CheckConstraint("status IN ('sent', 'failed')", name="chk_notification_status"),
    )
    op.create_index("ix_notification_logs_handoff_id", "notification_logs", ["handoff_id"])
    op.create_index("idx_notification_logs_handoff_created", "notification_logs", ["handoff_id", "created_at"])

    op.create_table(
        "audit_events",
        _uuid("id", primary_key=True),
        _uuid("company_id", sa.ForeignKey("medical_companies.id"), nullable=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(20), nullable=False),
        _uuid("entity_id", nullable=False),
        sa.Column("entity_name", sa.String(255), nullable=True),
        _uuid("user_id", sa.ForeignKey("users.id"), nullable=True),
        sa.Column("user_name", sa.String(255), nullable=True),
        sa.Column("details", postgresql.JSONB(), server_default=sa.text("'{}'::jsonb")),
        _ts("created_at", server_default=sa.func.now()),
        sa.CheckConstraint(
            "action IN ('handoff_created', 'handoff_confirmed', 'handoff_token_confirmed', "
            "'handoff_disputed', 'handoff_resolved', 'handoff_notification_resent', 'handoff_expired')",
            name="chk_audit_action",
        ),
        sa.CheckConstraint("entity_type IN ('handoff')", name="chk_audit_entity_type"),
    )
    op.create_index("ix_audit_events_company_id", "audit_events", ["company_id"])
    op.create_index("ix_audit_events_action", "audit_events", ["action"])
    op.create_index("ix_audit_events_user_id", "audit_events", ["user_id"])
    op.create_index("ix_audit_events_created_at", "audit_events", ["created_at"])
    op.create_index("idx_audit_events_entity", "audit_events", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_table("audit_events")
    op.drop_table("notification_logs")
    op.drop_table("handoff_containers")
    op.drop_table("handoffs")
    op.drop_table("collection_sessions")
    op.drop_table("incineration_plants")
    op.drop_table("waste_bins")
    op.drop_table("users")
    op.drop_table("medical_companies")
