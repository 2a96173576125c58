"""Initial marketplace schema.

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

_MATCH_ACTIVE = sa.text("status IN ('PENDING', 'ACCEPTED')")
_DISPUTE_ACTIVE = sa.text("status IN ('OPEN', 'UNDER_REVIEW')")
_HAS_REFERENCE = sa.text("external_reference IS NOT NULL")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def _money(name: str, *, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.Numeric(12, 2))
    return sa.Column(name, sa.Numeric(12, 2), nullable=False, server_default="0.00")


def upgrade() -> None:
    user_role_enum = sa.Enum("MEMBER", "ADMIN", name="userrole")
    experience_type_enum = sa.Enum("PAID", "EXCHANGE", "MIXED", name="experiencetype")
    policy_enum = sa.Enum(
        "FLEXIBLE", "MODERATE", "STRICT", "NON_REFUNDABLE", name="cancellationpolicy"
    )
    match_status_enum = sa.Enum(
        "PENDING", "ACCEPTED", "REJECTED", "CANCELLED", "COMPLETED", name="matchstatus"
    )
    participant_role_enum = sa.Enum("HOST", "REQUESTER", name="participantrole")
    transaction_type_enum = sa.Enum(
        "TOPUP", "PLATFORM_FEE", "REFUND", "PAYOUT", name="transactiontype"
    )
    transaction_status_enum = sa.Enum(
        "PENDING", "COMPLETED", "FAILED", name="transactionstatus"
    )
    dispute_reason_enum = sa.Enum(
        "NO_SHOW",
        "EXPERIENCE_MISMATCH",
        "SAFETY_CONCERN",
        "PAYMENT_ISSUE",
        "COMMUNICATION",
        "OTHER",
        name="disputereason",
    )
    dispute_status_enum = sa.Enum(
        "OPEN", "UNDER_REVIEW", "RESOLVED", "CLOSED", name="disputestatus"
    )
    dispute_resolution_enum = sa.Enum(
        "RESOLVED_REFUND",
        "RESOLVED_PARTIAL_REFUND",
        "RESOLVED_NO_REFUND",
        "CLOSED",
        name="disputeresolution",
    )
    admin_action_enum = sa.Enum(
        "NONE", "WARNING", "STRIKE", "BAN", "REMOVE_CONTENT", name="adminaction"
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=False),
        sa.Column("role", user_role_enum, nullable=False, server_default="MEMBER"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _money("wallet_balance"),
        sa.Column("wallet_frozen_at", sa.DateTime(timezone=True)),
        sa.Column("strikes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("banned_at", sa.DateTime(timezone=True)),
        sa.Column("ban_reason", sa.String(length=500)),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.CheckConstraint("wallet_balance >= 0", name="ck_users_wallet_non_negative"),
        sa.CheckConstraint("strikes >= 0", name="ck_users_strikes_non_negative"),
    )

    op.create_table(
        "experiences",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "host_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("experience_type", experience_type_enum, nullable=False),
        _money("price_per_person", nullable=True),
        sa.Column("capacity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "cancellation_policy",
            policy_enum,
            nullable=False,
            server_default="FLEXIBLE",
        ),
        sa.Column("published", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("capacity >= 1", name="ck_experiences_capacity_positive"),
    )
    op.create_index("ix_experiences_host_id", "experiences", ["host_id"])

    op.create_table(
        "matches",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "experience_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("experiences.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "host_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "requester_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", match_status_enum, nullable=False, server_default="PENDING"),
        sa.Column("participants", sa.Integer(), nullable=False, server_default="1"),
        _money("total_price", nullable=True),
        sa.Column("message", sa.Text()),
        sa.Column("start_date", sa.DateTime(timezone=True)),
        sa.Column("end_date", sa.DateTime(timezone=True)),
        sa.Column(
            "host_confirmed", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "requester_confirmed",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("rejection_reason", sa.String(length=500)),
        sa.Column("accepted_at", sa.DateTime(timezone=True)),
        sa.Column("closed_at", sa.DateTime(timezone=True)),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.CheckConstraint("host_id <> requester_id", name="ck_matches_distinct_parties"),
        sa.CheckConstraint("participants >= 1", name="ck_matches_participants_positive"),
    )
    op.create_index("ix_matches_experience_id", "matches", ["experience_id"])
    op.create_index("ix_matches_host_id", "matches", ["host_id"])
    op.create_index("ix_matches_requester_id", "matches", ["requester_id"])
    op.create_index("ix_matches_status_created", "matches", ["status", "created_at"])
    op.create_index(
        "uq_matches_active_request",
        "matches",
        ["experience_id", "requester_id"],
        unique=True,
        sqlite_where=_MATCH_ACTIVE,
        postgresql_where=_MATCH_ACTIVE,
    )

    op.create_table(
        "cancellations",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "match_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("matches.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column(
            "cancelled_by_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
        ),
        sa.Column("cancelled_by_role", participant_role_enum, nullable=False),
        sa.Column("previous_status", match_status_enum, nullable=False),
        sa.Column("reason", sa.String(length=500)),
        sa.Column("policy", policy_enum),
        sa.Column("refund_percentage", sa.Integer(), nullable=False, server_default="0"),
        _money("fee_amount"),
        _money("refund_amount"),
        _money("penalty_amount"),
        _money("host_refund_amount"),
        sa.Column("hours_until_start", sa.Integer()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )

    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", transaction_type_enum, nullable=False),
        sa.Column(
            "status", transaction_status_enum, nullable=False, server_default="COMPLETED"
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        _money("balance_after", nullable=True),
        sa.Column(
            "related_match_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("matches.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "counterparty_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
        ),
        sa.Column("description", sa.String(length=500)),
        sa.Column("external_reference", sa.String(length=255)),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint("amount <> 0", name="ck_wallet_transactions_amount_nonzero"),
    )
    op.create_index(
        "ix_wallet_transactions_user_created",
        "wallet_transactions",
        ["user_id", "created_at"],
    )
    op.create_index(
        "ix_wallet_transactions_related_match_id",
        "wallet_transactions",
        ["related_match_id"],
    )
    op.create_index(
        "uq_wallet_transactions_external_reference",
        "wallet_transactions",
        ["external_reference"],
        unique=True,
        sqlite_where=_HAS_REFERENCE,
        postgresql_where=_HAS_REFERENCE,
    )

    op.create_table(
        "disputes",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "match_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("matches.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "opener_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "respondent_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("reason", dispute_reason_enum, nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("evidence", sa.JSON()),
        sa.Column("status", dispute_status_enum, nullable=False, server_default="OPEN"),
        sa.Column("resolution", dispute_resolution_enum),
        sa.Column("resolution_notes", sa.Text()),
        sa.Column("refund_percentage", sa.Integer()),
        _money("refund_amount", nullable=True),
        sa.Column(
            "refund_transaction_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("wallet_transactions.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "admin_action", admin_action_enum, nullable=False, server_default="NONE"
        ),
        sa.Column(
            "penalized_user_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "reviewed_by_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
        ),
        sa.Column(
            "resolved_by_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
        ),
        sa.Column("resolved_at", sa.DateTime(timezone=True)),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
    )
    op.create_index("ix_disputes_match_id", "disputes", ["match_id"])
    op.create_index("ix_disputes_opener_id", "disputes", ["opener_id"])
    op.create_index("ix_disputes_respondent_id", "disputes", ["respondent_id"])
    op.create_index(
        "uq_disputes_active_match",
        "disputes",
        ["match_id"],
        unique=True,
        sqlite_where=_DISPUTE_ACTIVE,
        postgresql_where=_DISPUTE_ACTIVE,
    )

    op.create_table(
        "dispute_messages",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "dispute_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("disputes.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "author_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("attachments", sa.JSON()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_dispute_messages_dispute_id", "dispute_messages", ["dispute_id"]
    )

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
        ),
        sa.Column("event_type", sa.String(length=120), nullable=False),
        sa.Column("description", sa.String(length=1024)),
        sa.Column("payload", sa.JSON()),
        sa.Column("ip_address", sa.String(length=64)),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_audit_events_user_id", "audit_events", ["user_id"])
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"])


def downgrade() -> None:
    op.drop_index("ix_audit_events_event_type", table_name="audit_events")
    op.drop_index("ix_audit_events_user_id", table_name="audit_events")
    op.drop_table("audit_events")

    op.drop_index("ix_dispute_messages_dispute_id", table_name="dispute_messages")
    op.drop_table("dispute_messages")

    op.drop_index("uq_disputes_active_match", table_name="disputes")
    op.drop_index("ix_disputes_respondent_id", table_name="disputes")
    op.drop_index("ix_disputes_opener_id", table_name="disputes")
    op.drop_index("ix_disputes_match_id", table_name="disputes")
    op.drop_table("disputes")

    op.drop_index(
        "uq_wallet_transactions_external_reference", table_name="wallet_transactions"
    )
    op.drop_index(
        "ix_wallet_transactions_related_match_id", table_name="wallet_transactions"
    )
    op.drop_index("ix_wallet_transactions_user_created", table_name="wallet_transactions")
    op.drop_table("wallet_transactions")

    op.drop_table("cancellations")

    op.drop_index("uq_matches_active_request", table_name="matches")
    op.drop_index("ix_matches_status_created", table_name="matches")
    op.drop_index("ix_matches_requester_id", table_name="matches")
    op.drop_index("ix_matches_host_id", table_name="matches")
    op.drop_index("ix_matches_experience_id", table_name="matches")
    op.drop_table("matches")

    op.drop_index("ix_experiences_host_id", table_name="experiences")
    op.drop_table("experiences")

    op.drop_table("users")

    for enum_name in (
        "adminaction",
        "disputeresolution",
        "disputestatus",
        "disputereason",
        "transactionstatus",
        "transactiontype",
        "participantrole",
        "matchstatus",
        "cancellationpolicy",
        "experiencetype",
        "userrole",
    ):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=False)
