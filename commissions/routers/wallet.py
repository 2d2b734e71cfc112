"""Wallet endpoints: balances, transaction history, ledger check."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from commissions.auth.middleware import AuthenticatedUser, verify_request
from commissions.database import get_db
from commissions.schemas.wallet import (
    LedgerCheckResponse,
    WalletResponse,
    WalletTransactionResponse,
)
from commissions.services import ledger

router = APIRouter(prefix="/wallet", tags=["wallet"])


@router.get("", response_model=WalletResponse)
async def get_wallet(
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> WalletResponse:
    wallet = await ledger.get_wallet(db, auth.user_id)
    return WalletResponse.model_validate(wallet)


@router.get("/transactions", response_model=list[WalletTransactionResponse])
async def list_transactions(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[WalletTransactionResponse]:
    txns = await ledger.list_transactions(db, auth.user_id, limit=limit, offset=offset)
    return [WalletTransactionResponse.model_validate(t) for t in txns]


@router.get("/ledger-check", response_model=LedgerCheckResponse)
async def ledger_check(
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> LedgerCheckResponse:
    """Compare the wallet row with the balances its transaction log implies."""
    wallet = await ledger.get_wallet(db, auth.user_id)
    available, escrowed = await ledger.ledger_totals(db, auth.user_id)
    return LedgerCheckResponse(
        available_cents=wallet.available_cents,
        escrowed_cents=wallet.escrowed_cents,
        ledger_available_cents=available,
        ledger_escrowed_cents=escrowed,
        reconciles=(available, escrowed) == (wallet.available_cents, wallet.escrowed_cents),
    )
