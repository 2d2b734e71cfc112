"""Pydantic v2 schemas for wallet endpoints."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class WalletResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: uuid.UUID
    available_cents: int
    escrowed_cents: int
    updated_at: datetime


class WalletTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    wallet_txn_id: uuid.UUID
    type: str
    amount_cents: int
    target: str
    source: str
    note: str | None
    contract_id: uuid.UUID | None
    created_at: datetime

    @field_validator("type", "target", "source", mode="before")
    @classmethod
    def serialize_enum(cls, v: object) -> str:
        return v.value if hasattr(v, "value") else str(v)


class LedgerCheckResponse(BaseModel):
    """Wallet row next to the balances implied by replaying its transaction log."""
    available_cents: int
    escrowed_cents: int
    ledger_available_cents: int
    ledger_escrowed_cents: int
    reconciles: bool


class TransferRequest(BaseModel):
    from_user_id: uuid.UUID
    to_user_id: uuid.UUID
    amount_cents: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=2000)
