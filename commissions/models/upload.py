"""Artist upload model. One table, four kinds."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, Enum, ForeignKey, Index, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from commissions.database import Base, JSONType, UTCDateTime


class UploadKind(enum.Enum):
    PROGRESS_STANDARD = "progress_standard"
    PROGRESS_MILESTONE = "progress_milestone"
    REVISION = "revision"
    FINAL = "final"


class UploadStatus(enum.Enum):
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    FORCED_ACCEPTED = "forced_accepted"


# Progress uploads on the standard flow are informational only.
REVIEWABLE_KINDS: set[UploadKind] = {
    UploadKind.PROGRESS_MILESTONE,
    UploadKind.REVISION,
    UploadKind.FINAL,
}

ACCEPTED_STATUSES: set[UploadStatus] = {UploadStatus.ACCEPTED, UploadStatus.FORCED_ACCEPTED}


class Upload(Base):
    __tablename__ = "uploads"
    __table_args__ = (
        Index("ix_uploads_contract_id", "contract_id"),
        Index("ix_uploads_status_expires_at", "status", "expires_at"),
    )

    upload_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("contracts.contract_id", ondelete="RESTRICT"), nullable=False
    )
    kind: Mapped[UploadKind] = mapped_column(
        Enum(UploadKind, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    images: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[UploadStatus | None] = mapped_column(
        Enum(UploadStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=True,
    )
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # progress_milestone only
    milestone_idx: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_final: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    # revision only
    revision_ticket_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("revision_tickets.ticket_id", ondelete="RESTRICT"), nullable=True
    )
    # final only: 100 delivers the work, anything less is a cancellation proof
    work_progress: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cancel_ticket_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("cancel_tickets.ticket_id", ondelete="RESTRICT"), nullable=True
    )

    reviewed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(UTC)
    )

    @property
    def is_cancellation_proof(self) -> bool:
        return self.kind == UploadKind.FINAL and (self.work_progress or 0) < 100
