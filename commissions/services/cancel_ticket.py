"""Cancel tickets: either party asks to end the contract early."""

import logging
import uuid
from datetime import UTC, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commissions.auth.capabilities import is_admin
from commissions.config import settings
from commissions.errors import DuplicateAction, NotFound, TooLate, Unauthorized
from commissions.models.contract import Contract
from commissions.models.ticket import CancelTicket, CancelTicketStatus
from commissions.services import contract as contract_service
from commissions.services.gates import set_status_if

logger = logging.getLogger(__name__)


async def get_ticket(db: AsyncSession, ticket_id: uuid.UUID) -> CancelTicket:
    result = await db.execute(
        select(CancelTicket)
        .where(CancelTicket.ticket_id == ticket_id)
        .execution_options(populate_existing=True)
    )
    ticket = result.scalar_one_or_none()
    if ticket is None:
        raise NotFound("Cancel ticket not found")
    return ticket


async def find_open_ticket(db: AsyncSession, contract_id: uuid.UUID) -> CancelTicket | None:
    result = await db.execute(
        select(CancelTicket).where(
            CancelTicket.contract_id == contract_id,
            CancelTicket.status == CancelTicketStatus.OPEN,
        )
    )
    return result.scalars().first()


async def create_cancel_ticket(
    db: AsyncSession, contract_id: uuid.UUID, actor_id: uuid.UUID, reason: str
) -> CancelTicket:
    """Open a cancellation request. Only one may be open per contract."""
    contract = await contract_service.load_contract(db, contract_id, for_update=True)
    role = contract_service.assert_party(contract, actor_id)
    contract_service.assert_working(contract)
    if await find_open_ticket(db, contract_id) is not None:
        raise DuplicateAction("An open cancel ticket already exists for this contract")

    now = datetime.now(UTC)
    ticket = CancelTicket(
        ticket_id=uuid.uuid4(),
        contract_id=contract_id,
        submitted_by=role,
        submitted_by_id=actor_id,
        reason=reason,
        status=CancelTicketStatus.OPEN,
        expires_at=now + timedelta(hours=settings.ticket_response_hours),
    )
    db.add(ticket)
    await db.commit()
    await db.refresh(ticket)
    logger.info("Cancel ticket %s opened on contract %s by %s", ticket.ticket_id, contract_id, role.value)
    return ticket


async def accept_and_cancel(
    db: AsyncSession,
    contract: Contract,
    ticket: CancelTicket,
    status: CancelTicketStatus,
    work_percentage: int,
    now: datetime,
) -> None:
    """Close the ticket as accepted and settle the contract as cancelled by its submitter."""
    await set_status_if(db, ticket, status, responded_at=now)
    await contract_service.settle_cancellation(
        db, contract, ticket.submitted_by, work_percentage, now
    )


async def respond_to_cancel_ticket(
    db: AsyncSession, ticket_id: uuid.UUID, actor_id: uuid.UUID, accept: bool
) -> CancelTicket:
    """Counterpart accepts (contract is cancelled) or rejects (nothing changes)."""
    ticket = await get_ticket(db, ticket_id)
    contract = await contract_service.load_contract(db, ticket.contract_id, for_update=True)
    role = contract_service.assert_party(contract, actor_id)
    if role == ticket.submitted_by:
        raise Unauthorized("Only the counterpart can respond to this ticket")

    now = datetime.now(UTC)
    if ticket.status == CancelTicketStatus.EXPIRED:
        raise TooLate("Cancel ticket has expired")
    if ticket.status != CancelTicketStatus.OPEN:
        raise DuplicateAction("Cancel ticket has already been responded to")
    if now > ticket.expires_at:
        raise TooLate("Response window for this cancel ticket has passed")
    contract_service.assert_working(contract)

    if accept:
        await accept_and_cancel(
            db, contract, ticket, CancelTicketStatus.ACCEPTED, contract.work_percentage, now
        )
    else:
        await set_status_if(db, ticket, CancelTicketStatus.REJECTED, responded_at=now)

    await db.commit()
    await db.refresh(ticket)
    logger.info(
        "Cancel ticket %s %s by %s", ticket_id, "accepted" if accept else "rejected", role.value
    )
    return ticket


async def expire_ticket(db: AsyncSession, ticket_id: uuid.UUID, now: datetime) -> bool:
    """Expire an open ticket whose window has passed. Does not commit."""
    ticket = await get_ticket(db, ticket_id)
    if ticket.status != CancelTicketStatus.OPEN or now <= ticket.expires_at:
        return False
    await set_status_if(db, ticket, CancelTicketStatus.EXPIRED)
    logger.info("Cancel ticket %s expired", ticket_id)
    return True


async def get_cancel_ticket(
    db: AsyncSession, ticket_id: uuid.UUID, user_id: uuid.UUID
) -> CancelTicket:
    ticket = await get_ticket(db, ticket_id)
    contract = await contract_service.load_contract(db, ticket.contract_id)
    if contract_service.party_role(contract, user_id) is None and not await is_admin(db, user_id):
        raise Unauthorized("Not a party to this contract")
    return ticket


async def list_cancel_tickets(
    db: AsyncSession, contract_id: uuid.UUID, user_id: uuid.UUID
) -> list[CancelTicket]:
    await contract_service.get_contract(db, contract_id, user_id)
    result = await db.execute(
        select(CancelTicket)
        .where(CancelTicket.contract_id == contract_id)
        .order_by(CancelTicket.created_at.desc())
    )
    return list(result.scalars().all())
