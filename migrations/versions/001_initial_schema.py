"""Initial schema: users, wallets, contracts, uploads, tickets, escrow log.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

CONTRACT_STATUSES = (
    "active", "in_revision", "disputed", "completed", "completed_late",
    "cancelled_client", "cancelled_client_late", "cancelled_artist",
    "cancelled_artist_late", "not_completed",
)

# Several tables share these, so they are created once up front.
ENUMS = {
    "transactiontype": ("credit", "debit"),
    "balancetarget": ("available", "escrowed"),
    "transactionsource": ("commission", "refund", "payment", "manual", "release"),
    "contractstatus": CONTRACT_STATUSES,
    "contractstatus_before_dispute": CONTRACT_STATUSES,
    "contractflow": ("standard", "milestone"),
    "cancellationfeekind": ("flat", "percent"),
    "milestonestatus": ("pending", "in_progress", "submitted", "accepted", "rejected"),
    "escrowtransactiontype": ("hold", "release", "refund", "revision_fee", "change_fee"),
    "partyrole": ("client", "artist"),
    "uploadkind": ("progress_standard", "progress_milestone", "revision", "final"),
    "uploadstatus": ("submitted", "accepted", "rejected", "forced_accepted"),
    "cancelticketstatus": ("open", "accepted", "rejected", "forced_accepted", "expired"),
    "revisionticketstatus": (
        "pending", "accepted", "awaiting_payment", "paid", "forced_accepted",
        "rejected", "completed", "expired",
    ),
    "changeticketstatus": (
        "pending_artist", "pending_client", "accepted_artist", "rejected_artist",
        "rejected_client", "forced_accepted_artist", "forced_accepted_client",
        "paid", "cancelled", "expired",
    ),
    "resolutiontargettype": (
        "cancel_ticket", "revision_ticket", "change_ticket", "final_upload",
        "progress_milestone_upload", "revision_upload",
    ),
    "resolutionstatus": ("open", "awaiting_review", "resolved", "cancelled"),
    "resolutiondecision": ("favor_client", "favor_artist"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _ts(name: str, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())


def _user_fk(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.Uuid(), sa.ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=nullable)


def _contract_fk(ondelete: str = "RESTRICT") -> sa.Column:
    return sa.Column("contract_id", sa.Uuid(), sa.ForeignKey("contracts.contract_id", ondelete=ondelete), nullable=False)


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("user_id", sa.Uuid(), primary_key=True),
        sa.Column("username", sa.String(64), unique=True, nullable=False),
        sa.Column("public_key", sa.String(128), unique=True, nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("created_at"),
    )

    op.create_table(
        "wallets",
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.user_id", ondelete="RESTRICT"), primary_key=True),
        sa.Column("available_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("escrowed_cents", sa.BigInteger(), nullable=False, server_default="0"),
        _ts("updated_at"),
        sa.CheckConstraint("available_cents >= 0", name="ck_wallets_available_non_negative"),
        sa.CheckConstraint("escrowed_cents >= 0", name="ck_wallets_escrowed_non_negative"),
    )

    op.create_table(
        "wallet_transactions",
        sa.Column("wallet_txn_id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("wallets.user_id", ondelete="RESTRICT"), nullable=False),
        sa.Column("type", _enum("transactiontype"), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("target", _enum("balancetarget"), nullable=False),
        sa.Column("source", _enum("transactionsource"), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("contract_id", sa.Uuid(), nullable=True),
        _ts("created_at"),
        sa.CheckConstraint("amount_cents > 0", name="ck_wallet_transactions_amount_positive"),
    )
    op.create_index("ix_wallet_transactions_user_id", "wallet_transactions", ["user_id"])

    op.create_table(
        "contracts",
        sa.Column("contract_id", sa.Uuid(), primary_key=True),
        _user_fk("artist_id"),
        _user_fk("client_id"),
        sa.Column("proposal_id", sa.Uuid(), unique=True, nullable=False),
        sa.Column("proposal_snapshot", postgresql.JSONB(), nullable=False),
        sa.Column("flow", _enum("contractflow"), nullable=False),
        sa.Column("status", _enum("contractstatus"), nullable=False, server_default="active"),
        sa.Column("status_before_dispute", _enum("contractstatus_before_dispute"), nullable=True),
        sa.Column("total_cents", sa.BigInteger(), nullable=False),
        sa.Column("runtime_fees_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("escrowed_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("owed_artist_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("owed_client_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("claimed_artist_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("claimed_client_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("late_penalty_percent", sa.Integer(), nullable=False),
        sa.Column("cancellation_fee_kind", _enum("cancellationfeekind"), nullable=False, server_default="flat"),
        sa.Column("cancellation_fee_amount", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("work_percentage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_milestone_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("contract_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("terms_history", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("deadline_extensions", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("settlement", postgresql.JSONB(), nullable=True),
        sa.Column("deadline_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("grace_ends_at", sa.DateTime(timezone=True), nullable=False),
        _ts("settled_at", nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        sa.CheckConstraint("escrowed_cents >= 0", name="ck_contracts_escrowed_non_negative"),
        sa.CheckConstraint("claimed_artist_cents <= owed_artist_cents", name="ck_contracts_artist_claim_within_owed"),
        sa.CheckConstraint("claimed_client_cents <= owed_client_cents", name="ck_contracts_client_claim_within_owed"),
    )
    op.create_index("ix_contracts_artist_id", "contracts", ["artist_id"])
    op.create_index("ix_contracts_client_id", "contracts", ["client_id"])

    op.create_table(
        "contract_milestones",
        sa.Column("milestone_id", sa.Uuid(), primary_key=True),
        _contract_fk(ondelete="CASCADE"),
        sa.Column("milestone_idx", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(256), nullable=False),
        sa.Column("percent", sa.Integer(), nullable=False),
        sa.Column("status", _enum("milestonestatus"), nullable=False, server_default="pending"),
        sa.Column("revision_policy", postgresql.JSONB(), nullable=True),
        sa.Column("accepted_upload_id", sa.Uuid(), nullable=True),
        sa.CheckConstraint("percent > 0 AND percent <= 100", name="ck_contract_milestones_percent"),
    )
    op.create_index(
        "ux_contract_milestones_contract_idx", "contract_milestones",
        ["contract_id", "milestone_idx"], unique=True,
    )

    op.create_table(
        "escrow_transactions",
        sa.Column("escrow_txn_id", sa.Uuid(), primary_key=True),
        _contract_fk(),
        sa.Column("type", _enum("escrowtransactiontype"), nullable=False),
        _user_fk("from_user_id", nullable=True),
        _user_fk("to_user_id", nullable=True),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_escrow_transactions_contract_id", "escrow_transactions", ["contract_id"])

    op.create_table(
        "cancel_tickets",
        sa.Column("ticket_id", sa.Uuid(), primary_key=True),
        _contract_fk(),
        sa.Column("submitted_by", _enum("partyrole"), nullable=False),
        _user_fk("submitted_by_id"),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("status", _enum("cancelticketstatus"), nullable=False, server_default="open"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _ts("responded_at", nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_cancel_tickets_contract_id", "cancel_tickets", ["contract_id"])

    op.create_table(
        "revision_tickets",
        sa.Column("ticket_id", sa.Uuid(), primary_key=True),
        _contract_fk(),
        sa.Column("submitted_by", _enum("partyrole"), nullable=False),
        _user_fk("submitted_by_id"),
        sa.Column("target_upload_id", sa.Uuid(), nullable=True),
        sa.Column("milestone_idx", sa.Integer(), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("reference_images", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("fee_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("paid_fee_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("status", _enum("revisionticketstatus"), nullable=False, server_default="pending"),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _ts("responded_at", nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_revision_tickets_contract_id", "revision_tickets", ["contract_id"])

    op.create_table(
        "change_tickets",
        sa.Column("ticket_id", sa.Uuid(), primary_key=True),
        _contract_fk(),
        sa.Column("submitted_by", _enum("partyrole"), nullable=False),
        _user_fk("submitted_by_id"),
        sa.Column("change_set", postgresql.JSONB(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("fee_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("paid_fee_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("status", _enum("changeticketstatus"), nullable=False, server_default="pending_artist"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _ts("responded_at", nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_change_tickets_contract_id", "change_tickets", ["contract_id"])

    op.create_table(
        "uploads",
        sa.Column("upload_id", sa.Uuid(), primary_key=True),
        _contract_fk(),
        sa.Column("kind", _enum("uploadkind"), nullable=False),
        sa.Column("images", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", _enum("uploadstatus"), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("milestone_idx", sa.Integer(), nullable=True),
        sa.Column("is_final", sa.Boolean(), nullable=True),
        sa.Column(
            "revision_ticket_id", sa.Uuid(),
            sa.ForeignKey("revision_tickets.ticket_id", ondelete="RESTRICT"), nullable=True,
        ),
        sa.Column("work_progress", sa.Integer(), nullable=True),
        sa.Column(
            "cancel_ticket_id", sa.Uuid(),
            sa.ForeignKey("cancel_tickets.ticket_id", ondelete="RESTRICT"), nullable=True,
        ),
        _ts("reviewed_at", nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_uploads_contract_id", "uploads", ["contract_id"])
    op.create_index("ix_uploads_status_expires_at", "uploads", ["status", "expires_at"])

    op.create_table(
        "resolution_tickets",
        sa.Column("ticket_id", sa.Uuid(), primary_key=True),
        _contract_fk(),
        sa.Column("target_type", _enum("resolutiontargettype"), nullable=False),
        sa.Column("target_id", sa.Uuid(), nullable=False),
        sa.Column("submitted_by", _enum("partyrole"), nullable=False),
        _user_fk("submitted_by_id"),
        sa.Column("counterparty", _enum("partyrole"), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("proof_images", postgresql.JSONB(), nullable=False),
        sa.Column("counter_description", sa.Text(), nullable=True),
        sa.Column("counter_proof_images", postgresql.JSONB(), nullable=False, server_default="[]"),
        _ts("counter_submitted_at", nullable=True),
        sa.Column("counter_expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", _enum("resolutionstatus"), nullable=False, server_default="open"),
        sa.Column("decision", _enum("resolutiondecision"), nullable=True),
        sa.Column("resolution_note", sa.Text(), nullable=True),
        _user_fk("resolved_by", nullable=True),
        _ts("resolved_at", nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_resolution_tickets_contract_id", "resolution_tickets", ["contract_id"])
    op.create_index(
        "ix_resolution_tickets_status_counter", "resolution_tickets", ["status", "counter_expires_at"]
    )


def downgrade() -> None:
    op.drop_table("resolution_tickets")
    op.drop_table("uploads")
    op.drop_table("change_tickets")
    op.drop_table("revision_tickets")
    op.drop_table("cancel_tickets")
    op.drop_table("escrow_transactions")
    op.drop_table("contract_milestones")
    op.drop_table("contracts")
    op.drop_table("wallet_transactions")
    op.drop_table("wallets")
    op.drop_table("users")
    for name in reversed(list(ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
