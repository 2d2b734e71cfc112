"""Pydantic v2 schemas for cancel, revision and change tickets."""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _enum_value(v: object) -> str:
    if hasattr(v, "value"):
        return v.value
    return str(v)


class SplitPayment(BaseModel):
    """Fee payment split between wallet balance and an external method."""
    wallet_cents: int = Field(0, ge=0)
    external_cents: int = Field(0, ge=0)
    external_reference: str | None = Field(None, max_length=256)


# --- Cancel tickets ---


class CancelTicketCreate(BaseModel):
    reason: str = Field(..., min_length=1, max_length=4000)


class TicketDecision(BaseModel):
    accept: bool


class CancelTicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ticket_id: uuid.UUID
    contract_id: uuid.UUID
    submitted_by: str
    submitted_by_id: uuid.UUID
    reason: str
    status: str
    expires_at: datetime
    responded_at: datetime | None
    created_at: datetime

    @field_validator("status", "submitted_by", mode="before")
    @classmethod
    def serialize_enum(cls, v: object) -> str:
        return _enum_value(v)


# --- Revision tickets ---


class RevisionTicketCreate(BaseModel):
    description: str = Field(..., min_length=1, max_length=10_000)
    reference_images: list[str] = Field(default_factory=list, max_length=20)
    target_upload_id: uuid.UUID | None = None
    milestone_idx: int | None = Field(None, ge=0)


class RevisionTicketRespond(BaseModel):
    accept: bool
    rejection_reason: str | None = Field(None, max_length=4000)

    @model_validator(mode="after")
    def reason_on_reject(self) -> "RevisionTicketRespond":
        if not self.accept and not (self.rejection_reason and self.rejection_reason.strip()):
            raise ValueError("rejection_reason is required when rejecting a revision")
        return self


class RevisionTicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ticket_id: uuid.UUID
    contract_id: uuid.UUID
    submitted_by_id: uuid.UUID
    target_upload_id: uuid.UUID | None
    milestone_idx: int | None
    description: str
    reference_images: list[str]
    fee_cents: int
    paid_fee_cents: int
    status: str
    rejection_reason: str | None
    expires_at: datetime
    responded_at: datetime | None
    created_at: datetime

    @field_validator("status", mode="before")
    @classmethod
    def serialize_status(cls, v: object) -> str:
        return _enum_value(v)


# --- Change tickets ---


class ChangeSet(BaseModel):
    deadline_at: datetime | None = None
    description: str | None = Field(None, max_length=10_000)
    reference_images: list[str] | None = None

    @field_validator("deadline_at")
    @classmethod
    def require_timezone(cls, v: datetime | None) -> datetime | None:
        if v is not None and v.tzinfo is None:
            raise ValueError("deadline_at must include a timezone")
        return v

    def fields(self) -> set[str]:
        return set(self.model_dump(exclude_none=True))


class ChangeTicketCreate(BaseModel):
    change_set: ChangeSet
    reason: str | None = Field(None, max_length=4000)


class ChangeTicketArtistRespond(BaseModel):
    action: Literal["accept", "reject", "propose_fee"]
    fee_cents: int | None = Field(None, gt=0)

    @model_validator(mode="after")
    def fee_with_proposal(self) -> "ChangeTicketArtistRespond":
        if self.action == "propose_fee" and self.fee_cents is None:
            raise ValueError("fee_cents is required when proposing a fee")
        return self


class ChangeTicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ticket_id: uuid.UUID
    contract_id: uuid.UUID
    submitted_by_id: uuid.UUID
    change_set: dict
    reason: str | None
    fee_cents: int
    paid_fee_cents: int
    status: str
    expires_at: datetime
    responded_at: datetime | None
    created_at: datetime

    @field_validator("status", mode="before")
    @classmethod
    def serialize_status(cls, v: object) -> str:
        return _enum_value(v)
