"""Contract ticket models: cancel, revision, change and resolution."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import BigInteger, Enum, ForeignKey, Index, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from commissions.database import Base, JSONType, UTCDateTime


class PartyRole(enum.Enum):
    CLIENT = "client"
    ARTIST = "artist"

    @property
    def other(self) -> "PartyRole":
        return PartyRole.ARTIST if self is PartyRole.CLIENT else PartyRole.CLIENT


class CancelTicketStatus(enum.Enum):
    OPEN = "open"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    FORCED_ACCEPTED = "forced_accepted"
    EXPIRED = "expired"


class RevisionTicketStatus(enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    AWAITING_PAYMENT = "awaiting_payment"
    PAID = "paid"
    FORCED_ACCEPTED = "forced_accepted"
    REJECTED = "rejected"
    COMPLETED = "completed"
    EXPIRED = "expired"


class ChangeTicketStatus(enum.Enum):
    PENDING_ARTIST = "pending_artist"
    PENDING_CLIENT = "pending_client"
    ACCEPTED_ARTIST = "accepted_artist"
    REJECTED_ARTIST = "rejected_artist"
    REJECTED_CLIENT = "rejected_client"
    FORCED_ACCEPTED_ARTIST = "forced_accepted_artist"
    FORCED_ACCEPTED_CLIENT = "forced_accepted_client"
    PAID = "paid"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class ResolutionTargetType(enum.Enum):
    CANCEL_TICKET = "cancel_ticket"
    REVISION_TICKET = "revision_ticket"
    CHANGE_TICKET = "change_ticket"
    FINAL_UPLOAD = "final_upload"
    PROGRESS_MILESTONE_UPLOAD = "progress_milestone_upload"
    REVISION_UPLOAD = "revision_upload"


class ResolutionStatus(enum.Enum):
    OPEN = "open"
    AWAITING_REVIEW = "awaiting_review"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


class ResolutionDecision(enum.Enum):
    FAVOR_CLIENT = "favor_client"
    FAVOR_ARTIST = "favor_artist"

    @classmethod
    def favoring(cls, role: PartyRole) -> "ResolutionDecision":
        return cls.FAVOR_CLIENT if role is PartyRole.CLIENT else cls.FAVOR_ARTIST

    @property
    def favored_role(self) -> PartyRole:
        return PartyRole.CLIENT if self is ResolutionDecision.FAVOR_CLIENT else PartyRole.ARTIST


# Revision tickets the artist still owes work on.
UNFINISHED_REVISION_STATUSES: set[RevisionTicketStatus] = {
    RevisionTicketStatus.ACCEPTED,
    RevisionTicketStatus.PAID,
    RevisionTicketStatus.FORCED_ACCEPTED,
}

PENDING_CHANGE_STATUSES: set[ChangeTicketStatus] = {
    ChangeTicketStatus.PENDING_ARTIST,
    ChangeTicketStatus.PENDING_CLIENT,
}

UNRESOLVED_RESOLUTION_STATUSES: set[ResolutionStatus] = {
    ResolutionStatus.OPEN,
    ResolutionStatus.AWAITING_REVIEW,
}


def _role_enum() -> Enum:
    return Enum(PartyRole, values_callable=lambda x: [e.value for e in x])


class CancelTicket(Base):
    __tablename__ = "cancel_tickets"
    __table_args__ = (Index("ix_cancel_tickets_contract_id", "contract_id"),)

    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contracts.contract_id", ondelete="RESTRICT"), nullable=False
    )
    submitted_by: Mapped[PartyRole] = mapped_column(_role_enum(), nullable=False)
    submitted_by_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[CancelTicketStatus] = mapped_column(
        Enum(CancelTicketStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=CancelTicketStatus.OPEN,
    )
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    responded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(UTC)
    )


class RevisionTicket(Base):
    __tablename__ = "revision_tickets"
    __table_args__ = (Index("ix_revision_tickets_contract_id", "contract_id"),)

    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contracts.contract_id", ondelete="RESTRICT"), nullable=False
    )
    submitted_by: Mapped[PartyRole] = mapped_column(_role_enum(), nullable=False)
    submitted_by_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False
    )
    target_upload_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    milestone_idx: Mapped[int | None] = mapped_column(Integer, nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    reference_images: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    fee_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    paid_fee_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    status: Mapped[RevisionTicketStatus] = mapped_column(
        Enum(RevisionTicketStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=RevisionTicketStatus.PENDING,
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    responded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(UTC)
    )


class ChangeTicket(Base):
    __tablename__ = "change_tickets"
    __table_args__ = (Index("ix_change_tickets_contract_id", "contract_id"),)

    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contracts.contract_id", ondelete="RESTRICT"), nullable=False
    )
    submitted_by: Mapped[PartyRole] = mapped_column(_role_enum(), nullable=False)
    submitted_by_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False
    )
    change_set: Mapped[dict] = mapped_column(JSONType, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    fee_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    paid_fee_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    status: Mapped[ChangeTicketStatus] = mapped_column(
        Enum(ChangeTicketStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=ChangeTicketStatus.PENDING_ARTIST,
    )
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    responded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(UTC)
    )


class ResolutionTicket(Base):
    __tablename__ = "resolution_tickets"
    __table_args__ = (
        Index("ix_resolution_tickets_contract_id", "contract_id"),
        Index("ix_resolution_tickets_status_counter", "status", "counter_expires_at"),
    )

    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contracts.contract_id", ondelete="RESTRICT"), nullable=False
    )
    target_type: Mapped[ResolutionTargetType] = mapped_column(
        Enum(ResolutionTargetType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    target_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    submitted_by: Mapped[PartyRole] = mapped_column(_role_enum(), nullable=False)
    submitted_by_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False
    )
    counterparty: Mapped[PartyRole] = mapped_column(_role_enum(), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    proof_images: Mapped[list[str]] = mapped_column(JSONType, nullable=False)
    counter_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    counter_proof_images: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    counter_submitted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    counter_expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    status: Mapped[ResolutionStatus] = mapped_column(
        Enum(ResolutionStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=ResolutionStatus.OPEN,
    )
    decision: Mapped[ResolutionDecision | None] = mapped_column(
        Enum(ResolutionDecision, values_callable=lambda x: [e.value for e in x]),
        nullable=True,
    )
    resolution_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=True
    )
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(UTC)
    )
