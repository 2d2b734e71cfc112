"""Cancel, revision and change ticket endpoints."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from commissions.auth.middleware import AuthenticatedUser, verify_request
from commissions.database import get_db
from commissions.schemas.ticket import (
    CancelTicketCreate,
    CancelTicketResponse,
    ChangeTicketArtistRespond,
    ChangeTicketCreate,
    ChangeTicketResponse,
    RevisionTicketCreate,
    RevisionTicketRespond,
    RevisionTicketResponse,
    SplitPayment,
    TicketDecision,
)
from commissions.services import cancel_ticket as cancel_service
from commissions.services import change_ticket as change_service
from commissions.services import revision_ticket as revision_service

router = APIRouter(tags=["tickets"])


# --- Cancel ---


@router.post("/contracts/{contract_id}/tickets/cancel", response_model=CancelTicketResponse, status_code=201)
async def create_cancel_ticket(
    contract_id: uuid.UUID,
    data: CancelTicketCreate,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> CancelTicketResponse:
    """Either party asks to end the contract early."""
    ticket = await cancel_service.create_cancel_ticket(db, contract_id, auth.user_id, data.reason)
    return CancelTicketResponse.model_validate(ticket)


@router.get("/contracts/{contract_id}/tickets/cancel", response_model=list[CancelTicketResponse])
async def list_cancel_tickets(
    contract_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[CancelTicketResponse]:
    tickets = await cancel_service.list_cancel_tickets(db, contract_id, auth.user_id)
    return [CancelTicketResponse.model_validate(t) for t in tickets]


@router.post("/tickets/cancel/{ticket_id}/respond", response_model=CancelTicketResponse)
async def respond_to_cancel_ticket(
    ticket_id: uuid.UUID,
    data: TicketDecision,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> CancelTicketResponse:
    ticket = await cancel_service.respond_to_cancel_ticket(db, ticket_id, auth.user_id, data.accept)
    return CancelTicketResponse.model_validate(ticket)


# --- Revision ---


@router.post("/contracts/{contract_id}/tickets/revision", response_model=RevisionTicketResponse, status_code=201)
async def create_revision_ticket(
    contract_id: uuid.UUID,
    data: RevisionTicketCreate,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> RevisionTicketResponse:
    """Client requests a revision. The fee, if any, follows the revision policy."""
    ticket = await revision_service.create_revision_ticket(db, contract_id, auth.user_id, data)
    return RevisionTicketResponse.model_validate(ticket)


@router.get("/contracts/{contract_id}/tickets/revision", response_model=list[RevisionTicketResponse])
async def list_revision_tickets(
    contract_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[RevisionTicketResponse]:
    tickets = await revision_service.list_revision_tickets(db, contract_id, auth.user_id)
    return [RevisionTicketResponse.model_validate(t) for t in tickets]


@router.post("/tickets/revision/{ticket_id}/respond", response_model=RevisionTicketResponse)
async def respond_to_revision_ticket(
    ticket_id: uuid.UUID,
    data: RevisionTicketRespond,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> RevisionTicketResponse:
    ticket = await revision_service.respond_to_revision_ticket(
        db, ticket_id, auth.user_id, data.accept, data.rejection_reason
    )
    return RevisionTicketResponse.model_validate(ticket)


@router.post("/tickets/revision/{ticket_id}/pay", response_model=RevisionTicketResponse)
async def pay_revision_fee(
    ticket_id: uuid.UUID,
    data: SplitPayment,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> RevisionTicketResponse:
    ticket = await revision_service.pay_revision_fee(db, ticket_id, auth.user_id, data)
    return RevisionTicketResponse.model_validate(ticket)


# --- Change ---


@router.post("/contracts/{contract_id}/tickets/change", response_model=ChangeTicketResponse, status_code=201)
async def create_change_ticket(
    contract_id: uuid.UUID,
    data: ChangeTicketCreate,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ChangeTicketResponse:
    ticket = await change_service.create_change_ticket(
        db, contract_id, auth.user_id, data.change_set, data.reason
    )
    return ChangeTicketResponse.model_validate(ticket)


@router.get("/contracts/{contract_id}/tickets/change", response_model=list[ChangeTicketResponse])
async def list_change_tickets(
    contract_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[ChangeTicketResponse]:
    tickets = await change_service.list_change_tickets(db, contract_id, auth.user_id)
    return [ChangeTicketResponse.model_validate(t) for t in tickets]


@router.post("/tickets/change/{ticket_id}/respond", response_model=ChangeTicketResponse)
async def respond_to_change_ticket(
    ticket_id: uuid.UUID,
    data: ChangeTicketArtistRespond,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ChangeTicketResponse:
    """Artist accepts, rejects, or asks a fee for the change."""
    ticket = await change_service.respond_as_artist(
        db, ticket_id, auth.user_id, data.action, data.fee_cents
    )
    return ChangeTicketResponse.model_validate(ticket)


@router.post("/tickets/change/{ticket_id}/pay", response_model=ChangeTicketResponse)
async def pay_change_fee(
    ticket_id: uuid.UUID,
    data: SplitPayment,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ChangeTicketResponse:
    ticket = await change_service.pay_change_fee(db, ticket_id, auth.user_id, data)
    return ChangeTicketResponse.model_validate(ticket)


@router.post("/tickets/change/{ticket_id}/reject-fee", response_model=ChangeTicketResponse)
async def reject_change_fee(
    ticket_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ChangeTicketResponse:
    ticket = await change_service.reject_change_fee(db, ticket_id, auth.user_id)
    return ChangeTicketResponse.model_validate(ticket)


@router.post("/tickets/change/{ticket_id}/cancel", response_model=ChangeTicketResponse)
async def cancel_change_ticket(
    ticket_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ChangeTicketResponse:
    ticket = await change_service.cancel_change_ticket(db, ticket_id, auth.user_id)
    return ChangeTicketResponse.model_validate(ticket)
