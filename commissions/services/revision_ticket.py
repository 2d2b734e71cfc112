"""Revision tickets: the client asks for rework, free or paid per the revision policy."""

import logging
import uuid
from datetime import UTC, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from commissions.config import settings
from commissions.errors import DuplicateAction, InvalidState, NotFound, TooLate
from commissions.models.contract import Contract, ContractFlow, ContractStatus
from commissions.models.escrow import EscrowTransactionType
from commissions.models.ticket import (
    UNFINISHED_REVISION_STATUSES,
    PartyRole,
    RevisionTicket,
    RevisionTicketStatus,
)
from commissions.models.upload import Upload
from commissions.schemas.contract import RevisionPolicy
from commissions.schemas.ticket import RevisionTicketCreate, SplitPayment
from commissions.services import contract as contract_service
from commissions.services import payments
from commissions.services.gates import set_status_if

logger = logging.getLogger(__name__)

# Tickets that never turned into work do not use up the allowance.
_UNCOUNTED_STATUSES = {RevisionTicketStatus.REJECTED, RevisionTicketStatus.EXPIRED}


async def get_ticket(db: AsyncSession, ticket_id: uuid.UUID) -> RevisionTicket:
    result = await db.execute(
        select(RevisionTicket)
        .where(RevisionTicket.ticket_id == ticket_id)
        .execution_options(populate_existing=True)
    )
    ticket = result.scalar_one_or_none()
    if ticket is None:
        raise NotFound("Revision ticket not found")
    return ticket


async def policy_for(
    db: AsyncSession, contract: Contract, milestone_idx: int | None
) -> RevisionPolicy:
    """The milestone's own policy if it has one, else the contract-wide policy.

    A proposal that never stated a policy allows no revisions.
    """
    raw = (contract.proposal_snapshot or {}).get("revision_policy")
    if milestone_idx is not None:
        milestones = await contract_service.get_milestones(db, contract.contract_id)
        if milestones[milestone_idx].revision_policy is not None:
            raw = milestones[milestone_idx].revision_policy
    if raw is None:
        return RevisionPolicy(kind="none")
    return RevisionPolicy.model_validate(raw)


async def count_used(
    db: AsyncSession, contract_id: uuid.UUID, milestone_idx: int | None
) -> int:
    stmt = select(func.count()).select_from(RevisionTicket).where(
        RevisionTicket.contract_id == contract_id,
        RevisionTicket.status.not_in(_UNCOUNTED_STATUSES),
    )
    if milestone_idx is None:
        stmt = stmt.where(RevisionTicket.milestone_idx.is_(None))
    else:
        stmt = stmt.where(RevisionTicket.milestone_idx == milestone_idx)
    return (await db.execute(stmt)).scalar_one()


def fee_for_next(policy: RevisionPolicy, used: int) -> int:
    """Fee for the next revision given how many are already in use."""
    if policy.kind == "none":
        raise InvalidState("Revisions are not allowed on this contract")
    if policy.limit is not None and used >= policy.limit:
        raise InvalidState(f"Revision limit of {policy.limit} reached")
    if used < policy.free:
        return 0
    if not policy.extra_allowed:
        raise InvalidState("No free revisions left and paid revisions are not allowed")
    return policy.fee_cents


async def has_unfinished(db: AsyncSession, contract_id: uuid.UUID) -> bool:
    result = await db.execute(
        select(func.count()).select_from(RevisionTicket).where(
            RevisionTicket.contract_id == contract_id,
            RevisionTicket.status.in_(UNFINISHED_REVISION_STATUSES),
        )
    )
    return result.scalar_one() > 0


async def create_revision_ticket(
    db: AsyncSession, contract_id: uuid.UUID, actor_id: uuid.UUID, data: RevisionTicketCreate
) -> RevisionTicket:
    contract = await contract_service.load_contract(db, contract_id, for_update=True)
    contract_service.assert_party(contract, actor_id, allowed="client")
    contract_service.assert_working(contract)

    milestone_idx: int | None = None
    if contract.flow == ContractFlow.MILESTONE:
        milestone_idx = (
            data.milestone_idx if data.milestone_idx is not None else contract.current_milestone_index
        )
        milestones = await contract_service.get_milestones(db, contract_id)
        if milestone_idx >= len(milestones):
            raise InvalidState(f"Contract has no milestone {milestone_idx}")
    elif data.milestone_idx is not None:
        raise InvalidState("Standard-flow contracts have no milestones")

    if data.target_upload_id is not None:
        upload = await db.get(Upload, data.target_upload_id)
        if upload is None or upload.contract_id != contract_id:
            raise NotFound("Target upload not found on this contract")

    policy = await policy_for(db, contract, milestone_idx)
    used = await count_used(db, contract_id, milestone_idx)
    fee_cents = fee_for_next(policy, used)

    now = datetime.now(UTC)
    ticket = RevisionTicket(
        ticket_id=uuid.uuid4(),
        contract_id=contract_id,
        submitted_by=PartyRole.CLIENT,
        submitted_by_id=actor_id,
        target_upload_id=data.target_upload_id,
        milestone_idx=milestone_idx,
        description=data.description,
        reference_images=data.reference_images,
        fee_cents=fee_cents,
        status=RevisionTicketStatus.PENDING,
        expires_at=now + timedelta(hours=settings.ticket_response_hours),
    )
    db.add(ticket)
    await db.commit()
    await db.refresh(ticket)
    logger.info(
        "Revision ticket %s opened on contract %s (revision %d, fee %d cents)",
        ticket.ticket_id, contract_id, used + 1, fee_cents,
    )
    return ticket


async def respond_to_revision_ticket(
    db: AsyncSession,
    ticket_id: uuid.UUID,
    actor_id: uuid.UUID,
    accept: bool,
    rejection_reason: str | None = None,
) -> RevisionTicket:
    """Artist accepts (free: work starts, paid: client must pay) or rejects with a reason."""
    ticket = await get_ticket(db, ticket_id)
    contract = await contract_service.load_contract(db, ticket.contract_id, for_update=True)
    contract_service.assert_party(contract, actor_id, allowed="artist")

    now = datetime.now(UTC)
    if ticket.status == RevisionTicketStatus.EXPIRED:
        raise TooLate("Revision ticket has expired")
    if ticket.status != RevisionTicketStatus.PENDING:
        raise DuplicateAction("Revision ticket has already been responded to")
    if now > ticket.expires_at:
        raise TooLate("Response window for this revision ticket has passed")
    contract_service.assert_working(contract)

    if not accept:
        if not (rejection_reason and rejection_reason.strip()):
            raise InvalidState("A rejection reason is required")
        await set_status_if(
            db, ticket, RevisionTicketStatus.REJECTED,
            rejection_reason=rejection_reason, responded_at=now,
        )
    elif ticket.fee_cents > 0:
        # Payment window starts now.
        await set_status_if(
            db, ticket, RevisionTicketStatus.AWAITING_PAYMENT,
            responded_at=now,
            expires_at=now + timedelta(hours=settings.ticket_response_hours),
        )
    else:
        await set_status_if(db, ticket, RevisionTicketStatus.ACCEPTED, responded_at=now)
        await contract_service.enter_revision(db, contract)

    await db.commit()
    await db.refresh(ticket)
    logger.info("Revision ticket %s -> %s", ticket_id, ticket.status.value)
    return ticket


async def pay_revision_fee(
    db: AsyncSession, ticket_id: uuid.UUID, actor_id: uuid.UUID, payment: SplitPayment
) -> RevisionTicket:
    ticket = await get_ticket(db, ticket_id)
    contract = await contract_service.load_contract(db, ticket.contract_id, for_update=True)
    contract_service.assert_party(contract, actor_id, allowed="client")

    now = datetime.now(UTC)
    if ticket.status == RevisionTicketStatus.PAID:
        raise DuplicateAction("Revision fee has already been paid")
    if ticket.status == RevisionTicketStatus.EXPIRED:
        raise TooLate("Revision ticket has expired")
    if ticket.status != RevisionTicketStatus.AWAITING_PAYMENT:
        raise InvalidState(f"Revision ticket is not awaiting payment, currently {ticket.status.value}")
    if now > ticket.expires_at:
        raise TooLate("Payment window for this revision has passed")
    contract_service.assert_working(contract)

    await payments.collect_fee(
        db, contract, payment, ticket.fee_cents, EscrowTransactionType.REVISION_FEE,
        f"Revision fee for ticket {ticket.ticket_id}",
    )
    await set_status_if(db, ticket, RevisionTicketStatus.PAID, paid_fee_cents=ticket.fee_cents)
    await contract_service.enter_revision(db, contract)

    await db.commit()
    await db.refresh(ticket)
    return ticket


async def complete_ticket(db: AsyncSession, contract: Contract, ticket_id: uuid.UUID) -> None:
    """Revision delivered. The contract leaves revision once nothing is left to rework."""
    ticket = await get_ticket(db, ticket_id)
    if ticket.status not in UNFINISHED_REVISION_STATUSES:
        raise InvalidState(f"Revision ticket is not in progress, currently {ticket.status.value}")
    await set_status_if(db, ticket, RevisionTicketStatus.COMPLETED)
    if contract.status == ContractStatus.IN_REVISION and not await has_unfinished(
        db, contract.contract_id
    ):
        await contract_service.resume_from_revision(db, contract)


async def expire_ticket(db: AsyncSession, ticket_id: uuid.UUID, now: datetime) -> bool:
    """Expire a ticket left pending or unpaid past its window. Does not commit."""
    ticket = await get_ticket(db, ticket_id)
    if ticket.status not in (RevisionTicketStatus.PENDING, RevisionTicketStatus.AWAITING_PAYMENT):
        return False
    if now <= ticket.expires_at:
        return False
    await set_status_if(db, ticket, RevisionTicketStatus.EXPIRED)
    logger.info("Revision ticket %s expired", ticket_id)
    return True


async def list_revision_tickets(
    db: AsyncSession, contract_id: uuid.UUID, user_id: uuid.UUID
) -> list[RevisionTicket]:
    await contract_service.get_contract(db, contract_id, user_id)
    result = await db.execute(
        select(RevisionTicket)
        .where(RevisionTicket.contract_id == contract_id)
        .order_by(RevisionTicket.created_at.desc())
    )
    return list(result.scalars().all())
