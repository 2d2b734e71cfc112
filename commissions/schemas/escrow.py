"""Pydantic v2 schemas for the contract escrow log."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EscrowTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    escrow_txn_id: uuid.UUID
    contract_id: uuid.UUID
    type: str
    from_user_id: uuid.UUID | None
    to_user_id: uuid.UUID | None
    amount_cents: int
    note: str | None
    metadata: dict | None = Field(None, validation_alias="metadata_")
    created_at: datetime

    @field_validator("type", mode="before")
    @classmethod
    def serialize_type(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)
