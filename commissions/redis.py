"""Redis connection and the short-lived markers this service keeps there.

Redis holds request nonces and sweep throttles only. Contract state lives
in Postgres; losing Redis costs one extra sweep and a minute of replay
protection.
"""

import uuid
from collections.abc import AsyncGenerator

import redis.asyncio as aioredis

from commissions.config import settings

redis_pool = aioredis.ConnectionPool.from_url(settings.redis_url)

SWEEP_KEY_PREFIX = "expiration_sweep:"
GLOBAL_SWEEP_KEY = f"{SWEEP_KEY_PREFIX}global"


def nonce_key(nonce: str) -> str:
    return f"nonce:{nonce}"


def user_sweep_key(user_id: uuid.UUID) -> str:
    return f"{SWEEP_KEY_PREFIX}{user_id}"


async def claim_once(redis: aioredis.Redis, key: str, ttl_seconds: int) -> bool:
    """SET NX EX: True only for the caller that created the key."""
    return bool(await redis.set(key, "1", nx=True, ex=max(1, ttl_seconds)))


async def get_redis() -> AsyncGenerator[aioredis.Redis, None]:
    client = aioredis.Redis(connection_pool=redis_pool)
    try:
        yield client
    finally:
        await client.aclose()
