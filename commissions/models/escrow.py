"""Contract-level escrow transaction log."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import BigInteger, Enum, ForeignKey, Index, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from commissions.database import Base, JSONType, UTCDateTime


class EscrowTransactionType(enum.Enum):
    HOLD = "hold"
    RELEASE = "release"
    REFUND = "refund"
    REVISION_FEE = "revision_fee"
    CHANGE_FEE = "change_fee"


class EscrowTransaction(Base):
    """Append-only audit of money entering or leaving a contract's escrow."""
    __tablename__ = "escrow_transactions"
    __table_args__ = (Index("ix_escrow_transactions_contract_id", "contract_id"),)

    escrow_txn_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contracts.contract_id", ondelete="RESTRICT"), nullable=False
    )
    type: Mapped[EscrowTransactionType] = mapped_column(
        Enum(EscrowTransactionType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    from_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=True
    )
    to_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=True
    )
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(UTC)
    )
