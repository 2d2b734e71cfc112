"""Change tickets: the client proposes new terms; the artist accepts, prices or refuses them."""

import logging
import uuid
from datetime import UTC, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commissions.config import settings
from commissions.errors import DuplicateAction, InvalidState, NotFound, TooLate
from commissions.models.contract import Contract
from commissions.models.escrow import EscrowTransactionType
from commissions.models.ticket import (
    PENDING_CHANGE_STATUSES,
    ChangeTicket,
    ChangeTicketStatus,
    PartyRole,
)
from commissions.schemas.ticket import ChangeSet, SplitPayment
from commissions.services import contract as contract_service
from commissions.services import payments
from commissions.services.gates import set_status_if

logger = logging.getLogger(__name__)

_FINISHED_STATUSES = {
    ChangeTicketStatus.ACCEPTED_ARTIST,
    ChangeTicketStatus.REJECTED_ARTIST,
    ChangeTicketStatus.REJECTED_CLIENT,
    ChangeTicketStatus.FORCED_ACCEPTED_CLIENT,
    ChangeTicketStatus.PAID,
    ChangeTicketStatus.CANCELLED,
}


async def get_ticket(db: AsyncSession, ticket_id: uuid.UUID) -> ChangeTicket:
    result = await db.execute(
        select(ChangeTicket)
        .where(ChangeTicket.ticket_id == ticket_id)
        .execution_options(populate_existing=True)
    )
    ticket = result.scalar_one_or_none()
    if ticket is None:
        raise NotFound("Change ticket not found")
    return ticket


def _check_open(ticket: ChangeTicket, expected: set[ChangeTicketStatus], now: datetime) -> None:
    if ticket.status == ChangeTicketStatus.EXPIRED:
        raise TooLate("Change ticket has expired")
    if ticket.status in _FINISHED_STATUSES:
        raise DuplicateAction("Change ticket has already been responded to")
    if ticket.status not in expected:
        raise InvalidState(f"Change ticket is {ticket.status.value}")
    if now > ticket.expires_at:
        raise TooLate("Response window for this change ticket has passed")


async def create_change_ticket(
    db: AsyncSession,
    contract_id: uuid.UUID,
    actor_id: uuid.UUID,
    change_set: ChangeSet,
    reason: str | None = None,
) -> ChangeTicket:
    contract = await contract_service.load_contract(db, contract_id, for_update=True)
    contract_service.assert_party(contract, actor_id, allowed="client")
    contract_service.assert_working(contract)

    snapshot = contract.proposal_snapshot or {}
    if not snapshot.get("allow_contract_change"):
        raise InvalidState("This contract does not allow changes")
    fields = change_set.fields()
    if not fields:
        raise InvalidState("Change set is empty")
    not_allowed = fields - set(snapshot.get("changeable_fields") or [])
    if not_allowed:
        raise InvalidState(f"Fields not changeable on this contract: {', '.join(sorted(not_allowed))}")

    now = datetime.now(UTC)
    if change_set.deadline_at is not None and change_set.deadline_at <= now:
        raise InvalidState("Proposed deadline is in the past")

    pending = await db.execute(
        select(ChangeTicket.ticket_id).where(
            ChangeTicket.contract_id == contract_id,
            ChangeTicket.status.in_(PENDING_CHANGE_STATUSES),
        )
    )
    if pending.first() is not None:
        raise DuplicateAction("A change ticket is already pending on this contract")

    ticket = ChangeTicket(
        ticket_id=uuid.uuid4(),
        contract_id=contract_id,
        submitted_by=PartyRole.CLIENT,
        submitted_by_id=actor_id,
        change_set=change_set.model_dump(mode="json", exclude_none=True),
        reason=reason,
        status=ChangeTicketStatus.PENDING_ARTIST,
        expires_at=now + timedelta(hours=settings.ticket_response_hours),
    )
    db.add(ticket)
    await db.commit()
    await db.refresh(ticket)
    logger.info(
        "Change ticket %s opened on contract %s for %s",
        ticket.ticket_id, contract_id, ", ".join(sorted(fields)),
    )
    return ticket


async def respond_as_artist(
    db: AsyncSession,
    ticket_id: uuid.UUID,
    actor_id: uuid.UUID,
    action: str,
    fee_cents: int | None = None,
) -> ChangeTicket:
    """action is one of 'accept', 'reject' or 'propose_fee'."""
    ticket = await get_ticket(db, ticket_id)
    contract = await contract_service.load_contract(db, ticket.contract_id, for_update=True)
    contract_service.assert_party(contract, actor_id, allowed="artist")
    now = datetime.now(UTC)
    _check_open(ticket, {ChangeTicketStatus.PENDING_ARTIST}, now)
    contract_service.assert_working(contract)

    if action == "accept":
        await set_status_if(db, ticket, ChangeTicketStatus.ACCEPTED_ARTIST, responded_at=now)
        await contract_service.apply_change_set(db, contract, ticket.change_set, ticket.ticket_id)
    elif action == "propose_fee":
        if not fee_cents or fee_cents <= 0:
            raise InvalidState("A positive fee is required when proposing a fee")
        await set_status_if(
            db, ticket, ChangeTicketStatus.PENDING_CLIENT,
            fee_cents=fee_cents,
            responded_at=now,
            expires_at=now + timedelta(hours=settings.ticket_response_hours),
        )
    elif action == "reject":
        await set_status_if(db, ticket, ChangeTicketStatus.REJECTED_ARTIST, responded_at=now)
    else:
        raise InvalidState(f"Unknown response {action!r}")

    await db.commit()
    await db.refresh(ticket)
    logger.info("Change ticket %s -> %s", ticket_id, ticket.status.value)
    return ticket


async def pay_change_fee(
    db: AsyncSession, ticket_id: uuid.UUID, actor_id: uuid.UUID, payment: SplitPayment
) -> ChangeTicket:
    ticket = await get_ticket(db, ticket_id)
    contract = await contract_service.load_contract(db, ticket.contract_id, for_update=True)
    contract_service.assert_party(contract, actor_id, allowed="client")
    now = datetime.now(UTC)
    if ticket.status == ChangeTicketStatus.PAID:
        raise DuplicateAction("Change fee has already been paid")
    if ticket.status == ChangeTicketStatus.FORCED_ACCEPTED_ARTIST:
        if now > ticket.expires_at:
            raise TooLate("Payment window for this change has passed")
    else:
        _check_open(ticket, {ChangeTicketStatus.PENDING_CLIENT}, now)
    contract_service.assert_working(contract)

    await payments.collect_fee(
        db, contract, payment, ticket.fee_cents, EscrowTransactionType.CHANGE_FEE,
        f"Change fee for ticket {ticket.ticket_id}",
    )
    await set_status_if(
        db, ticket, ChangeTicketStatus.PAID, paid_fee_cents=ticket.fee_cents, responded_at=now
    )
    await contract_service.apply_change_set(db, contract, ticket.change_set, ticket.ticket_id)

    await db.commit()
    await db.refresh(ticket)
    return ticket


async def reject_change_fee(
    db: AsyncSession, ticket_id: uuid.UUID, actor_id: uuid.UUID
) -> ChangeTicket:
    ticket = await get_ticket(db, ticket_id)
    contract = await contract_service.load_contract(db, ticket.contract_id)
    contract_service.assert_party(contract, actor_id, allowed="client")
    now = datetime.now(UTC)
    _check_open(ticket, {ChangeTicketStatus.PENDING_CLIENT}, now)
    await set_status_if(db, ticket, ChangeTicketStatus.REJECTED_CLIENT, responded_at=now)
    await db.commit()
    await db.refresh(ticket)
    return ticket


async def cancel_change_ticket(
    db: AsyncSession, ticket_id: uuid.UUID, actor_id: uuid.UUID
) -> ChangeTicket:
    """Client withdraws a change request the artist has not answered yet."""
    ticket = await get_ticket(db, ticket_id)
    contract = await contract_service.load_contract(db, ticket.contract_id)
    contract_service.assert_party(contract, actor_id, allowed="client")
    if ticket.status != ChangeTicketStatus.PENDING_ARTIST:
        raise InvalidState("Only change tickets awaiting the artist can be cancelled")
    await set_status_if(db, ticket, ChangeTicketStatus.CANCELLED)
    await db.commit()
    await db.refresh(ticket)
    return ticket


async def force_outcome(
    db: AsyncSession, contract: Contract, ticket: ChangeTicket, favored: PartyRole, now: datetime
) -> None:
    """Apply an admin decision on a disputed change ticket. Does not commit.

    Favoring the client forces the change through without a fee. Favoring
    the artist refuses the change, or upholds the proposed fee so the
    change only applies once the client pays it.
    """
    if favored == PartyRole.CLIENT:
        await set_status_if(db, ticket, ChangeTicketStatus.FORCED_ACCEPTED_CLIENT, responded_at=now)
        await contract_service.apply_change_set(db, contract, ticket.change_set, ticket.ticket_id)
    elif ticket.fee_cents > 0 and ticket.status != ChangeTicketStatus.PAID:
        await set_status_if(
            db, ticket, ChangeTicketStatus.FORCED_ACCEPTED_ARTIST,
            responded_at=now,
            expires_at=now + timedelta(hours=settings.ticket_response_hours),
        )
    else:
        await set_status_if(db, ticket, ChangeTicketStatus.REJECTED_ARTIST, responded_at=now)


async def expire_ticket(db: AsyncSession, ticket_id: uuid.UUID, now: datetime) -> bool:
    """Expire a change ticket nobody acted on in time. Does not commit."""
    ticket = await get_ticket(db, ticket_id)
    if ticket.status not in PENDING_CHANGE_STATUSES | {ChangeTicketStatus.FORCED_ACCEPTED_ARTIST}:
        return False
    if now <= ticket.expires_at:
        return False
    await set_status_if(db, ticket, ChangeTicketStatus.EXPIRED)
    logger.info("Change ticket %s expired", ticket_id)
    return True


async def list_change_tickets(
    db: AsyncSession, contract_id: uuid.UUID, user_id: uuid.UUID
) -> list[ChangeTicket]:
    await contract_service.get_contract(db, contract_id, user_id)
    result = await db.execute(
        select(ChangeTicket)
        .where(ChangeTicket.contract_id == contract_id)
        .order_by(ChangeTicket.created_at.desc())
    )
    return list(result.scalars().all())
