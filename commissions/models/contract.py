"""Contract SQLAlchemy model: the central lifecycle entity."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from commissions.database import Base, JSONType, UTCDateTime


class ContractStatus(enum.Enum):
    ACTIVE = "active"
    IN_REVISION = "in_revision"
    DISPUTED = "disputed"
    COMPLETED = "completed"
    COMPLETED_LATE = "completed_late"
    CANCELLED_CLIENT = "cancelled_client"
    CANCELLED_CLIENT_LATE = "cancelled_client_late"
    CANCELLED_ARTIST = "cancelled_artist"
    CANCELLED_ARTIST_LATE = "cancelled_artist_late"
    NOT_COMPLETED = "not_completed"


class ContractFlow(enum.Enum):
    STANDARD = "standard"
    MILESTONE = "milestone"


class CancellationFeeKind(enum.Enum):
    FLAT = "flat"
    PERCENT = "percent"


class MilestoneStatus(enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


SETTLED_STATUSES: set[ContractStatus] = {
    ContractStatus.COMPLETED,
    ContractStatus.COMPLETED_LATE,
    ContractStatus.CANCELLED_CLIENT,
    ContractStatus.CANCELLED_CLIENT_LATE,
    ContractStatus.CANCELLED_ARTIST,
    ContractStatus.CANCELLED_ARTIST_LATE,
    ContractStatus.NOT_COMPLETED,
}

# Statuses in which work, uploads and new tickets are allowed.
WORKING_STATUSES: set[ContractStatus] = {ContractStatus.ACTIVE, ContractStatus.IN_REVISION}

# Valid state transitions. A contract in revision settles by resuming to
# active first; a dispute that does not settle the contract resumes it.
VALID_TRANSITIONS: dict[ContractStatus, set[ContractStatus]] = {
    ContractStatus.ACTIVE: {
        ContractStatus.IN_REVISION,
        ContractStatus.DISPUTED,
        *SETTLED_STATUSES,
    },
    ContractStatus.IN_REVISION: {ContractStatus.ACTIVE, ContractStatus.DISPUTED},
    ContractStatus.DISPUTED: {
        ContractStatus.ACTIVE,
        ContractStatus.IN_REVISION,
        *SETTLED_STATUSES,
    },
    **{status: set() for status in SETTLED_STATUSES},
}


class Contract(Base):
    __tablename__ = "contracts"
    __table_args__ = (
        CheckConstraint("escrowed_cents >= 0", name="ck_contracts_escrowed_non_negative"),
        CheckConstraint(
            "claimed_artist_cents <= owed_artist_cents",
            name="ck_contracts_artist_claim_within_owed",
        ),
        CheckConstraint(
            "claimed_client_cents <= owed_client_cents",
            name="ck_contracts_client_claim_within_owed",
        ),
        Index("ix_contracts_artist_id", "artist_id"),
        Index("ix_contracts_client_id", "client_id"),
    )

    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    artist_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False
    )
    proposal_id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, nullable=False)
    proposal_snapshot: Mapped[dict] = mapped_column(JSONType, nullable=False)
    flow: Mapped[ContractFlow] = mapped_column(
        Enum(ContractFlow, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    status: Mapped[ContractStatus] = mapped_column(
        Enum(ContractStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=ContractStatus.ACTIVE,
    )
    status_before_dispute: Mapped[ContractStatus | None] = mapped_column(
        Enum(
            ContractStatus,
            values_callable=lambda x: [e.value for e in x],
            name="contractstatus_before_dispute",
        ),
        nullable=True,
    )

    # --- Finance (integer cents) ---
    total_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    runtime_fees_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    escrowed_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    owed_artist_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    owed_client_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    claimed_artist_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    claimed_client_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    late_penalty_percent: Mapped[int] = mapped_column(Integer, nullable=False)
    cancellation_fee_kind: Mapped[CancellationFeeKind] = mapped_column(
        Enum(CancellationFeeKind, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=CancellationFeeKind.FLAT,
    )
    cancellation_fee_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    work_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_milestone_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    contract_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    terms_history: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    deadline_extensions: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    settlement: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    deadline_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    grace_ends_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    settled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    @property
    def is_settled(self) -> bool:
        return self.status in SETTLED_STATUSES

    @property
    def total_pool_cents(self) -> int:
        """Everything ever paid into escrow for this contract."""
        return self.total_cents + self.runtime_fees_cents


class ContractMilestone(Base):
    __tablename__ = "contract_milestones"
    __table_args__ = (
        CheckConstraint("percent > 0 AND percent <= 100", name="ck_contract_milestones_percent"),
        Index("ux_contract_milestones_contract_idx", "contract_id", "milestone_idx", unique=True),
    )

    milestone_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contracts.contract_id", ondelete="CASCADE"), nullable=False
    )
    milestone_idx: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    percent: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[MilestoneStatus] = mapped_column(
        Enum(MilestoneStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=MilestoneStatus.PENDING,
    )
    revision_policy: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    accepted_upload_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
