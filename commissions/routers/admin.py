"""Admin endpoints: contract oversight, dispute decisions, fund transfers, global sweep."""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from commissions.auth.capabilities import assert_admin
from commissions.auth.middleware import AuthenticatedUser, verify_request
from commissions.database import get_db
from commissions.models.contract import ContractStatus
from commissions.models.ticket import ResolutionDecision
from commissions.schemas.contract import ContractResponse, ExpirationSummaryResponse
from commissions.schemas.resolution import ResolutionResponse, ResolveDispute
from commissions.schemas.user import GrantAdmin, UserResponse
from commissions.schemas.wallet import TransferRequest, WalletResponse
from commissions.services import contract as contract_service
from commissions.services import ledger, reconciliation
from commissions.services import resolution as resolution_service
from commissions.services import user as user_service

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/contracts", response_model=list[ContractResponse])
async def list_contracts(
    status: list[ContractStatus] | None = Query(None),
    client_id: uuid.UUID | None = Query(None),
    artist_id: uuid.UUID | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[ContractResponse]:
    contracts = await contract_service.list_all_contracts(
        db, auth.user_id, status, client_id, artist_id, limit, offset
    )
    return [ContractResponse.model_validate(c) for c in contracts]


@router.get("/resolutions", response_model=list[ResolutionResponse])
async def list_awaiting_review(
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[ResolutionResponse]:
    tickets = await resolution_service.list_awaiting_review(db, auth.user_id)
    return [ResolutionResponse.model_validate(t) for t in tickets]


@router.post("/resolutions/{ticket_id}/resolve", response_model=ResolutionResponse)
async def resolve_dispute(
    ticket_id: uuid.UUID,
    data: ResolveDispute,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ResolutionResponse:
    ticket = await resolution_service.resolve_dispute(
        db, ticket_id, auth.user_id, ResolutionDecision(data.decision), data.note
    )
    return ResolutionResponse.model_validate(ticket)


@router.post("/transfers", response_model=WalletResponse)
async def transfer_between_users(
    data: TransferRequest,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> WalletResponse:
    """Move available funds between two wallets. Returns the payee's wallet."""
    await ledger.transfer_between_users(
        db, data.from_user_id, data.to_user_id, data.amount_cents, auth.user_id, data.reason
    )
    wallet = await ledger.get_wallet(db, data.to_user_id)
    return WalletResponse.model_validate(wallet)


@router.put("/users/{user_id}/admin", response_model=UserResponse)
async def set_admin(
    user_id: uuid.UUID,
    data: GrantAdmin,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    user = await user_service.set_admin(db, auth.user_id, user_id, data.is_admin)
    return UserResponse.model_validate(user)


@router.post("/sweep", response_model=ExpirationSummaryResponse)
async def sweep_all(
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ExpirationSummaryResponse:
    """Reconcile every unsettled contract now."""
    await assert_admin(db, auth.user_id)
    summary = await reconciliation.process_all_expirations(db)
    return ExpirationSummaryResponse(**summary.to_dict())
