"""Contract lifecycle endpoints."""

import uuid

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from commissions.auth.middleware import AuthenticatedUser, verify_request
from commissions.database import get_db
from commissions.models.contract import ContractStatus
from commissions.models.ticket import PartyRole
from commissions.redis import get_redis
from commissions.schemas.contract import (
    ClaimResponse,
    ContractResponse,
    CreateContract,
    ExpirationSummaryResponse,
    ExtendDeadline,
    MilestoneResponse,
)
from commissions.schemas.escrow import EscrowTransactionResponse
from commissions.services import contract as contract_service
from commissions.services import reconciliation

router = APIRouter(prefix="/contracts", tags=["contracts"])


@router.post("", response_model=ContractResponse, status_code=201)
async def create_contract(
    data: CreateContract,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ContractResponse:
    """Client finalizes an accepted proposal and pays its total into escrow."""
    contract = await contract_service.create_from_proposal(
        db, auth.user_id, data.proposal, data.payment_amount_cents
    )
    return ContractResponse.model_validate(contract)


@router.get("", response_model=list[ContractResponse])
async def list_contracts(
    role: PartyRole | None = Query(None),
    status: ContractStatus | None = Query(None),
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> list[ContractResponse]:
    """List the caller's contracts.

    Also reconciles the caller's overdue items, at most once per sweep
    interval.
    """
    if await reconciliation.should_run_user_sweep(redis, auth.user_id):
        await reconciliation.process_all_user_expirations(db, auth.user_id)
    contracts = await contract_service.list_contracts_for_user(
        db, auth.user_id, role=role, status=status
    )
    return [ContractResponse.model_validate(c) for c in contracts]


@router.get("/{contract_id}", response_model=ContractResponse)
async def get_contract(
    contract_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ContractResponse:
    contract = await contract_service.get_contract(db, contract_id, auth.user_id)
    return ContractResponse.model_validate(contract)


@router.get("/{contract_id}/milestones", response_model=list[MilestoneResponse])
async def list_milestones(
    contract_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[MilestoneResponse]:
    milestones = await contract_service.list_milestones(db, contract_id, auth.user_id)
    return [MilestoneResponse.model_validate(m) for m in milestones]


@router.get("/{contract_id}/escrow", response_model=list[EscrowTransactionResponse])
async def list_escrow_transactions(
    contract_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[EscrowTransactionResponse]:
    txns = await contract_service.list_escrow_transactions(db, contract_id, auth.user_id)
    return [EscrowTransactionResponse.model_validate(t) for t in txns]


@router.post("/{contract_id}/extend-deadline", response_model=ContractResponse)
async def extend_deadline(
    contract_id: uuid.UUID,
    data: ExtendDeadline,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ContractResponse:
    """Client moves the deadline later. The grace window moves with it."""
    contract = await contract_service.extend_contract_deadline(
        db, contract_id, auth.user_id, data.new_deadline
    )
    return ContractResponse.model_validate(contract)


@router.post("/{contract_id}/claim", response_model=ClaimResponse)
async def claim_funds(
    contract_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ClaimResponse:
    """Release what the caller is owed from a settled contract."""
    contract, amount = await contract_service.claim_funds(db, contract_id, auth.user_id)
    return ClaimResponse(contract=ContractResponse.model_validate(contract), claimed_cents=amount)


@router.post("/{contract_id}/reconcile", response_model=ExpirationSummaryResponse)
async def reconcile_contract(
    contract_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ExpirationSummaryResponse:
    """Apply any overdue transitions on this contract now. Never throttled."""
    summary = await reconciliation.process_contract_expirations(db, contract_id, auth.user_id)
    return ExpirationSummaryResponse(**summary.to_dict())
