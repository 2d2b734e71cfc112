"""Resolution ticket endpoints for contract parties."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from commissions.auth.middleware import AuthenticatedUser, verify_request
from commissions.database import get_db
from commissions.schemas.resolution import CounterproofCreate, ResolutionCreate, ResolutionResponse
from commissions.services import resolution as resolution_service

router = APIRouter(tags=["resolutions"])


@router.post(
    "/contracts/{contract_id}/resolutions", response_model=ResolutionResponse, status_code=201
)
async def create_resolution(
    contract_id: uuid.UUID,
    data: ResolutionCreate,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ResolutionResponse:
    """Dispute a ticket or upload. The contract is frozen until it is resolved."""
    ticket = await resolution_service.create_resolution(db, contract_id, auth.user_id, data)
    return ResolutionResponse.model_validate(ticket)


@router.get("/contracts/{contract_id}/resolutions", response_model=list[ResolutionResponse])
async def list_resolutions(
    contract_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[ResolutionResponse]:
    tickets = await resolution_service.list_resolutions(db, contract_id, auth.user_id)
    return [ResolutionResponse.model_validate(t) for t in tickets]


@router.get("/resolutions/{ticket_id}", response_model=ResolutionResponse)
async def get_resolution(
    ticket_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ResolutionResponse:
    ticket = await resolution_service.get_resolution(db, ticket_id, auth.user_id)
    return ResolutionResponse.model_validate(ticket)


@router.post("/resolutions/{ticket_id}/counterproof", response_model=ResolutionResponse)
async def submit_counterproof(
    ticket_id: uuid.UUID,
    data: CounterproofCreate,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ResolutionResponse:
    ticket = await resolution_service.submit_counterproof(db, ticket_id, auth.user_id, data)
    return ResolutionResponse.model_validate(ticket)


@router.post("/resolutions/{ticket_id}/cancel", response_model=ResolutionResponse)
async def cancel_resolution(
    ticket_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ResolutionResponse:
    ticket = await resolution_service.cancel_resolution(db, ticket_id, auth.user_id)
    return ResolutionResponse.model_validate(ticket)
