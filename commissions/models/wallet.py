"""Wallet balance and wallet transaction log models."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import BigInteger, CheckConstraint, Enum, ForeignKey, Index, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from commissions.database import Base, UTCDateTime


class TransactionType(enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class BalanceTarget(enum.Enum):
    AVAILABLE = "available"
    ESCROWED = "escrowed"


class TransactionSource(enum.Enum):
    COMMISSION = "commission"
    REFUND = "refund"
    PAYMENT = "payment"
    MANUAL = "manual"
    RELEASE = "release"


class Wallet(Base):
    """One row per user. Mutated only through services.ledger."""
    __tablename__ = "wallets"
    __table_args__ = (
        CheckConstraint("available_cents >= 0", name="ck_wallets_available_non_negative"),
        CheckConstraint("escrowed_cents >= 0", name="ck_wallets_escrowed_non_negative"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="RESTRICT"), primary_key=True
    )
    available_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    escrowed_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


class WalletTransaction(Base):
    """Append-only. Never update or delete rows."""
    __tablename__ = "wallet_transactions"
    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_wallet_transactions_amount_positive"),
        Index("ix_wallet_transactions_user_id", "user_id"),
    )

    wallet_txn_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("wallets.user_id", ondelete="RESTRICT"), nullable=False
    )
    type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    target: Mapped[BalanceTarget] = mapped_column(
        Enum(BalanceTarget, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    source: Mapped[TransactionSource] = mapped_column(
        Enum(TransactionSource, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    contract_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(UTC)
    )
