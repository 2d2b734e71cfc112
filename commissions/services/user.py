"""User registration and the development deposit shortcut."""

import logging
import uuid

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from commissions.auth.capabilities import assert_admin
from commissions.errors import DuplicateAction, NotFound
from commissions.models.user import User
from commissions.models.wallet import BalanceTarget, TransactionSource, Wallet
from commissions.schemas.user import UserCreate
from commissions.services import ledger

logger = logging.getLogger(__name__)


async def register_user(db: AsyncSession, data: UserCreate) -> User:
    """Register a user and open an empty wallet for them."""
    result = await db.execute(
        select(User).where(
            or_(User.public_key == data.public_key, User.username == data.username)
        )
    )
    existing = result.scalars().first()
    if existing is not None:
        if existing.public_key == data.public_key:
            raise DuplicateAction("Public key already registered")
        raise DuplicateAction("Username already taken")

    user = User(
        user_id=uuid.uuid4(),
        username=data.username,
        public_key=data.public_key,
        is_admin=False,
    )
    db.add(user)
    await db.flush()
    await ledger.ensure_wallet(db, user.user_id)
    await db.commit()
    await db.refresh(user)
    logger.info("Registered user %s (%s)", user.user_id, user.username)
    return user


async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


async def deposit(db: AsyncSession, user_id: uuid.UUID, amount_cents: int) -> Wallet:
    """Credit available funds directly. Development and test environments only."""
    await ledger.ensure_wallet(db, user_id)
    await ledger.credit(
        db, user_id, amount_cents, BalanceTarget.AVAILABLE, TransactionSource.MANUAL,
        "Development deposit",
    )
    await db.commit()
    return await ledger.get_wallet(db, user_id)


async def set_admin(
    db: AsyncSession, acting_admin_id: uuid.UUID, user_id: uuid.UUID, is_admin: bool
) -> User:
    await assert_admin(db, acting_admin_id)
    user = await get_user(db, user_id)
    user.is_admin = is_admin
    await db.commit()
    await db.refresh(user)
    logger.info("Admin %s set is_admin=%s on user %s", acting_admin_id, is_admin, user_id)
    return user
