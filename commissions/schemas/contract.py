"""Pydantic v2 schemas for contract endpoints and the proposal snapshot."""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class RevisionPolicy(BaseModel):
    """How many revisions a client may request, and what extra ones cost.

    kind="none" disables revision tickets entirely. Past the free count a
    fee of fee_cents applies per revision when extra_allowed is set, up to
    limit revisions in total (no cap when limit is None).
    """
    kind: Literal["none", "standard"] = "standard"
    free: int = Field(0, ge=0, le=100)
    limit: int | None = Field(None, ge=0, le=100)
    extra_allowed: bool = False
    fee_cents: int = Field(0, ge=0)


class CancellationFee(BaseModel):
    kind: Literal["flat", "percent"] = "flat"
    amount: int = Field(0, ge=0)

    @model_validator(mode="after")
    def percent_in_range(self) -> "CancellationFee":
        if self.kind == "percent" and self.amount > 100:
            raise ValueError("Percent cancellation fee cannot exceed 100")
        return self


class MilestoneSpec(BaseModel):
    title: str = Field(..., min_length=1, max_length=256)
    percent: int = Field(..., gt=0, le=100)
    revision_policy: RevisionPolicy | None = None


ChangeableField = Literal["deadline_at", "description", "reference_images"]


class ProposalSnapshot(BaseModel):
    """Accepted proposal, frozen into the contract at creation."""
    proposal_id: uuid.UUID
    artist_id: uuid.UUID
    client_id: uuid.UUID
    flow: Literal["standard", "milestone"] = "standard"
    total_cents: int = Field(..., gt=0, le=100_000_000)
    deadline_at: datetime
    grace_days: int | None = Field(None, ge=0, le=365)
    late_penalty_percent: int | None = Field(None, ge=0, le=100)
    cancellation_fee: CancellationFee = CancellationFee()
    revision_policy: RevisionPolicy | None = None
    milestones: list[MilestoneSpec] = []
    allow_contract_change: bool = False
    changeable_fields: list[ChangeableField] = []
    description: str | None = Field(None, max_length=10_000)
    reference_images: list[str] = []

    @field_validator("deadline_at")
    @classmethod
    def require_timezone(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            raise ValueError("deadline_at must include a timezone")
        return v

    @model_validator(mode="after")
    def check_flow(self) -> "ProposalSnapshot":
        if self.artist_id == self.client_id:
            raise ValueError("Artist and client must be different users")
        if self.flow == "milestone":
            if not self.milestones:
                raise ValueError("Milestone flow requires at least one milestone")
            if sum(m.percent for m in self.milestones) != 100:
                raise ValueError("Milestone percents must sum to 100")
        elif self.milestones:
            raise ValueError("Standard flow cannot define milestones")
        return self


class CreateContract(BaseModel):
    proposal: ProposalSnapshot
    payment_amount_cents: int = Field(..., gt=0)


class ExtendDeadline(BaseModel):
    new_deadline: datetime

    @field_validator("new_deadline")
    @classmethod
    def require_timezone(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            raise ValueError("new_deadline must include a timezone")
        return v


class MilestoneResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    milestone_id: uuid.UUID
    milestone_idx: int
    title: str
    percent: int
    status: str
    revision_policy: dict | None
    accepted_upload_id: uuid.UUID | None

    @field_validator("status", mode="before")
    @classmethod
    def serialize_status(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)


class ContractResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    contract_id: uuid.UUID
    artist_id: uuid.UUID
    client_id: uuid.UUID
    proposal_id: uuid.UUID
    flow: str
    status: str
    total_cents: int
    runtime_fees_cents: int
    escrowed_cents: int
    owed_artist_cents: int
    owed_client_cents: int
    claimed_artist_cents: int
    claimed_client_cents: int
    late_penalty_percent: int
    work_percentage: int
    current_milestone_index: int
    contract_version: int
    deadline_at: datetime
    grace_ends_at: datetime
    deadline_extensions: list
    settlement: dict | None
    settled_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @field_validator("status", "flow", mode="before")
    @classmethod
    def serialize_enum(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)


class ClaimResponse(BaseModel):
    contract: ContractResponse
    claimed_cents: int


class ExpirationSummaryResponse(BaseModel):
    contracts_processed: int = 0
    uploads_auto_accepted: int = 0
    tickets_expired: int = 0
    resolutions_auto_resolved: int = 0
    resolutions_escalated: int = 0
    contracts_not_completed: int = 0
    errors: list[dict] = []
