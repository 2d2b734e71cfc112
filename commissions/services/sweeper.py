"""Optional background caller of the expiration sweep.

Off by default (settings.sweeper_enabled). It only adds another caller of
process_all_expirations; deadlines are still applied when a sweep runs,
not at the instant they pass. With several app instances, a Redis
SET NX EX key lets one of them sweep per interval.
"""

import asyncio
import logging

import redis.asyncio as aioredis

from commissions.config import settings
from commissions.database import async_session_factory
from commissions.redis import GLOBAL_SWEEP_KEY, claim_once, redis_pool
from commissions.services.reconciliation import ExpirationSummary, process_all_expirations

logger = logging.getLogger(__name__)


async def sweep_once(redis: aioredis.Redis) -> ExpirationSummary | None:
    """Run one global sweep unless another instance already did this interval."""
    if not await claim_once(redis, GLOBAL_SWEEP_KEY, settings.sweeper_interval_seconds):
        return None
    async with async_session_factory() as db:
        return await process_all_expirations(db)


async def run_sweeper() -> None:
    redis = aioredis.Redis(connection_pool=redis_pool)
    logger.info("Expiration sweeper started, interval %ss", settings.sweeper_interval_seconds)

    while True:
        try:
            await sweep_once(redis)
            await asyncio.sleep(settings.sweeper_interval_seconds)
        except asyncio.CancelledError:
            logger.info("Expiration sweeper shutting down")
            break
        except Exception:
            logger.exception("Expiration sweeper error, retrying in 5s")
            await asyncio.sleep(5)

    await redis.aclose()
