"""Pydantic v2 schemas for user registration and profile endpoints."""

import re
import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from commissions.utils.crypto import is_valid_public_key

_USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_.-]+$")


class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=64)
    public_key: str = Field(..., max_length=128, description="Ed25519 public key (hex)")

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        if not _USERNAME_PATTERN.match(v):
            raise ValueError("Username may only contain letters, digits, '_', '.' and '-'")
        return v

    @field_validator("public_key")
    @classmethod
    def validate_public_key(cls, v: str) -> str:
        if not is_valid_public_key(v):
            raise ValueError("public_key must be a hex-encoded Ed25519 public key")
        return v.lower()


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: uuid.UUID
    username: str
    public_key: str
    is_admin: bool
    created_at: datetime


class DepositRequest(BaseModel):
    amount_cents: int = Field(..., gt=0, le=100_000_000)


class GrantAdmin(BaseModel):
    is_admin: bool = True
