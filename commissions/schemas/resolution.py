"""Pydantic v2 schemas for resolution tickets and admin decisions."""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from commissions.config import settings


class ResolutionCreate(BaseModel):
    target_type: Literal[
        "cancel_ticket",
        "revision_ticket",
        "change_ticket",
        "final_upload",
        "progress_milestone_upload",
        "revision_upload",
    ]
    target_id: uuid.UUID
    description: str = Field(..., max_length=10_000)
    proof_images: list[str] = Field(..., min_length=1)

    @field_validator("description")
    @classmethod
    def long_enough(cls, v: str) -> str:
        if len(v.strip()) < settings.resolution_min_description_length:
            raise ValueError(
                f"Description must be at least {settings.resolution_min_description_length} characters"
            )
        return v

    @field_validator("proof_images")
    @classmethod
    def not_too_many(cls, v: list[str]) -> list[str]:
        if len(v) > settings.resolution_max_proof_images:
            raise ValueError(f"At most {settings.resolution_max_proof_images} proof images")
        return v


class CounterproofCreate(BaseModel):
    description: str = Field(..., min_length=1, max_length=10_000)
    proof_images: list[str] = Field(default_factory=list, max_length=20)


class ResolveDispute(BaseModel):
    decision: Literal["favor_client", "favor_artist"]
    note: str | None = Field(None, max_length=10_000)


class ResolutionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ticket_id: uuid.UUID
    contract_id: uuid.UUID
    target_type: str
    target_id: uuid.UUID
    submitted_by: str
    submitted_by_id: uuid.UUID
    counterparty: str
    description: str
    proof_images: list[str]
    counter_description: str | None
    counter_proof_images: list[str]
    counter_submitted_at: datetime | None
    counter_expires_at: datetime
    status: str
    decision: str | None
    resolution_note: str | None
    resolved_by: uuid.UUID | None
    resolved_at: datetime | None
    created_at: datetime

    @field_validator("target_type", "submitted_by", "counterparty", "status", "decision", mode="before")
    @classmethod
    def serialize_enum(cls, v: object) -> str | None:
        if v is None:
            return None
        if hasattr(v, "value"):
            return v.value
        return str(v)
