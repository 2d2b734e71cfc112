"""Wallet ledger: the only code that writes wallet balances.

Every balance change is a single conditional UPDATE (debits are gated on
the balance covering the amount) plus one append-only WalletTransaction
row. The primitives never commit: callers own the unit of work so a ledger
move and the contract change it pays for land together or not at all.
"""

import logging
import uuid

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from commissions.auth.capabilities import assert_admin
from commissions.errors import InsufficientFunds, InvalidState, NotFound
from commissions.models.wallet import (
    BalanceTarget,
    TransactionSource,
    TransactionType,
    Wallet,
    WalletTransaction,
)

logger = logging.getLogger(__name__)


def _column(target: BalanceTarget):  # type: ignore[no-untyped-def]
    if target == BalanceTarget.AVAILABLE:
        return Wallet.available_cents
    return Wallet.escrowed_cents


def _check_amount(amount_cents: int) -> None:
    if amount_cents <= 0:
        raise ValueError(f"Ledger amounts must be positive, got {amount_cents}")


async def _record(
    db: AsyncSession,
    user_id: uuid.UUID,
    txn_type: TransactionType,
    amount_cents: int,
    target: BalanceTarget,
    source: TransactionSource,
    note: str | None,
    contract_id: uuid.UUID | None,
) -> WalletTransaction:
    """Append to the wallet transaction log."""
    txn = WalletTransaction(
        wallet_txn_id=uuid.uuid4(),
        user_id=user_id,
        type=txn_type,
        amount_cents=amount_cents,
        target=target,
        source=source,
        note=note,
        contract_id=contract_id,
    )
    db.add(txn)
    return txn


async def ensure_wallet(db: AsyncSession, user_id: uuid.UUID) -> Wallet:
    """Return the user's wallet, creating an empty one on first use."""
    wallet = await db.get(Wallet, user_id)
    if wallet is None:
        wallet = Wallet(user_id=user_id, available_cents=0, escrowed_cents=0)
        db.add(wallet)
        await db.flush()
    return wallet


async def get_wallet(db: AsyncSession, user_id: uuid.UUID) -> Wallet:
    wallet = await db.get(Wallet, user_id, populate_existing=True)
    if wallet is None:
        raise NotFound("Wallet not found")
    return wallet


async def credit(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount_cents: int,
    target: BalanceTarget,
    source: TransactionSource,
    note: str | None = None,
    contract_id: uuid.UUID | None = None,
) -> WalletTransaction:
    """Atomically add to one balance of a wallet."""
    _check_amount(amount_cents)
    column = _column(target)
    result = await db.execute(
        update(Wallet)
        .where(Wallet.user_id == user_id)
        .values({column: column + amount_cents})
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFound(f"Wallet for user {user_id} not found")
    return await _record(
        db, user_id, TransactionType.CREDIT, amount_cents, target, source, note, contract_id
    )


async def debit(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount_cents: int,
    target: BalanceTarget,
    source: TransactionSource,
    note: str | None = None,
    contract_id: uuid.UUID | None = None,
) -> WalletTransaction:
    """Atomically subtract from one balance. Never lets it go negative."""
    _check_amount(amount_cents)
    column = _column(target)
    result = await db.execute(
        update(Wallet)
        .where(Wallet.user_id == user_id, column >= amount_cents)
        .values({column: column - amount_cents})
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        exists = await db.execute(select(Wallet.user_id).where(Wallet.user_id == user_id))
        if exists.scalar_one_or_none() is None:
            raise NotFound(f"Wallet for user {user_id} not found")
        raise InsufficientFunds(
            f"Insufficient {target.value} balance for a debit of {amount_cents} cents"
        )
    return await _record(
        db, user_id, TransactionType.DEBIT, amount_cents, target, source, note, contract_id
    )


async def transfer_between_users(
    db: AsyncSession,
    from_user_id: uuid.UUID,
    to_user_id: uuid.UUID,
    amount_cents: int,
    acting_admin_id: uuid.UUID,
    reason: str,
) -> None:
    """Admin tooling: move available funds from one wallet to another."""
    await assert_admin(db, acting_admin_id)
    if from_user_id == to_user_id:
        raise InvalidState("Cannot transfer to the same wallet")
    note = f"Admin transfer by {acting_admin_id}: {reason}"
    await debit(db, from_user_id, amount_cents, BalanceTarget.AVAILABLE, TransactionSource.MANUAL, note)
    await credit(db, to_user_id, amount_cents, BalanceTarget.AVAILABLE, TransactionSource.MANUAL, note)
    await db.commit()
    logger.info(
        "Admin %s transferred %d cents from %s to %s", acting_admin_id, amount_cents,
        from_user_id, to_user_id,
    )


async def escrow_funds(
    db: AsyncSession, contract_id: uuid.UUID, client_id: uuid.UUID, amount_cents: int
) -> None:
    """Move a client's available funds into their escrowed balance."""
    note = f"Escrow for contract {contract_id}"
    await debit(
        db, client_id, amount_cents, BalanceTarget.AVAILABLE,
        TransactionSource.COMMISSION, note, contract_id,
    )
    await credit(
        db, client_id, amount_cents, BalanceTarget.ESCROWED,
        TransactionSource.COMMISSION, note, contract_id,
    )


async def hold_external_payment(
    db: AsyncSession,
    contract_id: uuid.UUID,
    client_id: uuid.UUID,
    amount_cents: int,
    reference: str | None,
) -> None:
    """Credit escrow with funds captured outside the wallet (card, gateway)."""
    await credit(
        db, client_id, amount_cents, BalanceTarget.ESCROWED, TransactionSource.PAYMENT,
        f"External payment {reference or 'unreferenced'} for contract {contract_id}",
        contract_id,
    )


async def release_escrow(
    db: AsyncSession,
    contract_id: uuid.UUID,
    holder_id: uuid.UUID,
    to_user_id: uuid.UUID,
    amount_cents: int,
    source: TransactionSource = TransactionSource.RELEASE,
) -> None:
    """Debit the escrow holder's escrowed balance, credit the payee's available."""
    note = f"Escrow release for contract {contract_id}"
    await debit(db, holder_id, amount_cents, BalanceTarget.ESCROWED, source, note, contract_id)
    await credit(db, to_user_id, amount_cents, BalanceTarget.AVAILABLE, source, note, contract_id)


async def list_transactions(
    db: AsyncSession, user_id: uuid.UUID, limit: int = 100, offset: int = 0
) -> list[WalletTransaction]:
    result = await db.execute(
        select(WalletTransaction)
        .where(WalletTransaction.user_id == user_id)
        .order_by(WalletTransaction.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def ledger_totals(db: AsyncSession, user_id: uuid.UUID) -> tuple[int, int]:
    """Replay the transaction log. Returns (available_cents, escrowed_cents).

    Should always equal the wallet row; a mismatch means a balance was written
    outside this module.
    """
    signed = case(
        (WalletTransaction.type == TransactionType.CREDIT, WalletTransaction.amount_cents),
        else_=-WalletTransaction.amount_cents,
    )
    result = await db.execute(
        select(WalletTransaction.target, func.coalesce(func.sum(signed), 0))
        .where(WalletTransaction.user_id == user_id)
        .group_by(WalletTransaction.target)
    )
    totals = {target: int(total) for target, total in result.all()}
    return totals.get(BalanceTarget.AVAILABLE, 0), totals.get(BalanceTarget.ESCROWED, 0)
