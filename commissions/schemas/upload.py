"""Pydantic v2 schemas for artist uploads."""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

UploadKindName = Literal["progress_standard", "progress_milestone", "revision", "final"]


class UploadCreate(BaseModel):
    kind: UploadKindName
    images: list[str] = Field(..., min_length=1, max_length=20)
    description: str | None = Field(None, max_length=10_000)
    milestone_idx: int | None = Field(None, ge=0)
    is_final: bool | None = None
    revision_ticket_id: uuid.UUID | None = None
    work_progress: int | None = Field(None, ge=0, le=100)
    cancel_ticket_id: uuid.UUID | None = None

    @model_validator(mode="after")
    def fields_for_kind(self) -> "UploadCreate":
        if self.kind == "progress_milestone":
            if self.milestone_idx is None or self.is_final is None:
                raise ValueError("Milestone uploads need milestone_idx and is_final")
        elif self.kind == "revision":
            if self.revision_ticket_id is None:
                raise ValueError("Revision uploads need revision_ticket_id")
        elif self.kind == "final":
            if self.work_progress is None:
                self.work_progress = 100
            if self.work_progress < 100 and self.cancel_ticket_id is None:
                raise ValueError("A final upload under 100% must reference a cancel ticket")
        return self


class UploadReview(BaseModel):
    accept: bool


class UploadResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    upload_id: uuid.UUID
    contract_id: uuid.UUID
    kind: str
    images: list[str]
    description: str | None
    status: str | None
    expires_at: datetime | None
    milestone_idx: int | None
    is_final: bool | None
    revision_ticket_id: uuid.UUID | None
    work_progress: int | None
    cancel_ticket_id: uuid.UUID | None
    reviewed_at: datetime | None
    created_at: datetime

    @field_validator("kind", "status", mode="before")
    @classmethod
    def serialize_enum(cls, v: object) -> str | None:
        if v is None:
            return None
        if hasattr(v, "value"):
            return v.value
        return str(v)
