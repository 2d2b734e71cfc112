"""Ed25519 signature verification dependency for FastAPI."""

import uuid

import redis.asyncio as aioredis
from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commissions.config import settings
from commissions.database import get_db
from commissions.errors import Unauthorized
from commissions.models.user import User
from commissions.redis import claim_once, get_redis, nonce_key
from commissions.utils.crypto import is_timestamp_valid, verify_signature

AUTH_SCHEME = "UserSig "


class AuthenticatedUser:
    """Container for the verified user context."""

    def __init__(self, user_id: uuid.UUID, user: User) -> None:
        self.user_id = user_id
        self.user = user


async def verify_request(
    request: Request,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> AuthenticatedUser:
    """Verify the Ed25519 signature on an incoming request."""
    auth_header = request.headers.get("Authorization")
    timestamp = request.headers.get("X-Timestamp")
    nonce = request.headers.get("X-Nonce")

    if not auth_header or not timestamp:
        raise Unauthorized("Missing authentication headers")

    # Authorization: UserSig <user_id>:<signature>
    if not auth_header.startswith(AUTH_SCHEME):
        raise Unauthorized("Invalid authorization scheme")

    try:
        credentials = auth_header[len(AUTH_SCHEME):]
        user_id_str, signature = credentials.split(":", 1)
        user_id = uuid.UUID(user_id_str)
    except (ValueError, IndexError):
        raise Unauthorized("Malformed authorization header")

    if not is_timestamp_valid(timestamp, settings.signature_max_age_seconds):
        raise Unauthorized("Request timestamp expired")

    result = await db.execute(select(User).where(User.user_id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise Unauthorized("User not found")

    body = await request.body()
    if not verify_signature(
        user.public_key, signature, timestamp, request.method, request.url.path, body, nonce
    ):
        raise Unauthorized("Invalid signature")

    # Replay protection, only once the signature is known good.
    if nonce and not await claim_once(redis, nonce_key(nonce), settings.nonce_ttl_seconds):
        raise Unauthorized("Nonce already used")

    return AuthenticatedUser(user_id=user_id, user=user)
