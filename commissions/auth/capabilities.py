"""Single admin capability check used by every privileged operation."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commissions.errors import Unauthorized
from commissions.models.user import User


async def is_admin(db: AsyncSession, user_id: uuid.UUID) -> bool:
    result = await db.execute(select(User.is_admin).where(User.user_id == user_id))
    return bool(result.scalar_one_or_none())


async def assert_admin(db: AsyncSession, user_id: uuid.UUID) -> None:
    """Raise Unauthorized unless user_id holds the admin capability."""
    if not await is_admin(db, user_id):
        raise Unauthorized("Admin capability required")
