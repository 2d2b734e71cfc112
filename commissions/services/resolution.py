"""Resolution tickets: two-party disputes over a ticket or upload, decided by an admin.

Opening a resolution freezes the contract in 'disputed'. The counterparty
gets one chance to answer inside the counterproof window; after that an
admin decides, or reconciliation applies the lapse policy. The decision
is applied to the disputed ticket or upload exactly once, and the contract
resumes unless the decision settled it.
"""

import logging
import uuid
from datetime import UTC, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commissions.auth.capabilities import assert_admin, is_admin
from commissions.config import settings
from commissions.errors import DuplicateAction, InvalidState, NotFound, TooLate, Unauthorized
from commissions.models.contract import WORKING_STATUSES, Contract, ContractStatus
from commissions.models.ticket import (
    UNRESOLVED_RESOLUTION_STATUSES,
    CancelTicket,
    CancelTicketStatus,
    ChangeTicket,
    ChangeTicketStatus,
    PartyRole,
    ResolutionDecision,
    ResolutionStatus,
    ResolutionTargetType,
    ResolutionTicket,
    RevisionTicket,
    RevisionTicketStatus,
)
from commissions.models.upload import Upload, UploadKind, UploadStatus
from commissions.schemas.resolution import CounterproofCreate, ResolutionCreate
from commissions.services import cancel_ticket as cancel_service
from commissions.services import change_ticket as change_service
from commissions.services import contract as contract_service
from commissions.services import policy
from commissions.services import revision_ticket as revision_service
from commissions.services import upload as upload_service
from commissions.services.gates import set_status_if

logger = logging.getLogger(__name__)

_UPLOAD_TARGETS: dict[ResolutionTargetType, UploadKind] = {
    ResolutionTargetType.FINAL_UPLOAD: UploadKind.FINAL,
    ResolutionTargetType.PROGRESS_MILESTONE_UPLOAD: UploadKind.PROGRESS_MILESTONE,
    ResolutionTargetType.REVISION_UPLOAD: UploadKind.REVISION,
}

# Target states that can still be argued over.
_DISPUTABLE: dict[type, set] = {
    CancelTicket: {CancelTicketStatus.OPEN, CancelTicketStatus.REJECTED},
    RevisionTicket: {
        RevisionTicketStatus.PENDING,
        RevisionTicketStatus.AWAITING_PAYMENT,
        RevisionTicketStatus.REJECTED,
    },
    ChangeTicket: {
        ChangeTicketStatus.PENDING_ARTIST,
        ChangeTicketStatus.PENDING_CLIENT,
        ChangeTicketStatus.REJECTED_ARTIST,
        ChangeTicketStatus.REJECTED_CLIENT,
    },
    Upload: {UploadStatus.SUBMITTED, UploadStatus.REJECTED},
}


async def get_ticket(db: AsyncSession, ticket_id: uuid.UUID) -> ResolutionTicket:
    result = await db.execute(
        select(ResolutionTicket)
        .where(ResolutionTicket.ticket_id == ticket_id)
        .execution_options(populate_existing=True)
    )
    ticket = result.scalar_one_or_none()
    if ticket is None:
        raise NotFound("Resolution ticket not found")
    return ticket


async def _unresolved(
    db: AsyncSession, contract_id: uuid.UUID, exclude: uuid.UUID | None = None
) -> list[ResolutionTicket]:
    stmt = select(ResolutionTicket).where(
        ResolutionTicket.contract_id == contract_id,
        ResolutionTicket.status.in_(UNRESOLVED_RESOLUTION_STATUSES),
    )
    if exclude is not None:
        stmt = stmt.where(ResolutionTicket.ticket_id != exclude)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def _load_target(
    db: AsyncSession, contract: Contract, target_type: ResolutionTargetType, target_id: uuid.UUID
) -> CancelTicket | RevisionTicket | ChangeTicket | Upload:
    if target_type == ResolutionTargetType.CANCEL_TICKET:
        target = await cancel_service.get_ticket(db, target_id)
    elif target_type == ResolutionTargetType.REVISION_TICKET:
        target = await revision_service.get_ticket(db, target_id)
    elif target_type == ResolutionTargetType.CHANGE_TICKET:
        target = await change_service.get_ticket(db, target_id)
    else:
        target = await upload_service.load_upload(db, target_id)
        if target.kind != _UPLOAD_TARGETS[target_type]:
            raise NotFound(f"No {target_type.value.replace('_', ' ')} with that id")
    if target.contract_id != contract.contract_id:
        raise NotFound("Disputed item does not belong to this contract")
    return target


async def create_resolution(
    db: AsyncSession, contract_id: uuid.UUID, actor_id: uuid.UUID, data: ResolutionCreate
) -> ResolutionTicket:
    contract = await contract_service.load_contract(db, contract_id, for_update=True)
    role = contract_service.assert_party(contract, actor_id)
    target_type = ResolutionTargetType(data.target_type)

    unresolved = await _unresolved(db, contract_id)
    if unresolved and not policy.allows_concurrent_resolutions():
        raise DuplicateAction("This contract already has an unresolved resolution ticket")
    if any(t.target_id == data.target_id for t in unresolved):
        raise DuplicateAction("This item is already under dispute")
    if contract.status not in WORKING_STATUSES and not (
        contract.status == ContractStatus.DISPUTED and policy.allows_concurrent_resolutions()
    ):
        raise InvalidState(f"Cannot open a dispute on a {contract.status.value} contract")

    target = await _load_target(db, contract, target_type, data.target_id)
    if target.status not in _DISPUTABLE[type(target)]:
        raise InvalidState(f"Cannot dispute an item that is {target.status.value}")

    now = datetime.now(UTC)
    ticket = ResolutionTicket(
        ticket_id=uuid.uuid4(),
        contract_id=contract_id,
        target_type=target_type,
        target_id=data.target_id,
        submitted_by=role,
        submitted_by_id=actor_id,
        counterparty=role.other,
        description=data.description,
        proof_images=data.proof_images,
        counter_proof_images=[],
        counter_expires_at=now + timedelta(hours=settings.counterproof_window_hours),
        status=ResolutionStatus.OPEN,
    )
    db.add(ticket)
    await db.flush()
    await contract_service.enter_dispute(db, contract)

    await db.commit()
    await db.refresh(ticket)
    logger.info(
        "Resolution %s opened by %s on contract %s against %s %s",
        ticket.ticket_id, role.value, contract_id, target_type.value, data.target_id,
    )
    return ticket


async def submit_counterproof(
    db: AsyncSession, ticket_id: uuid.UUID, actor_id: uuid.UUID, data: CounterproofCreate
) -> ResolutionTicket:
    """The counterparty's one answer, inside the counterproof window."""
    ticket = await get_ticket(db, ticket_id)
    contract = await contract_service.load_contract(db, ticket.contract_id)
    role = contract_service.assert_party(contract, actor_id)
    if role != ticket.counterparty:
        raise Unauthorized("Only the counterparty can submit counterproof")
    if ticket.counter_submitted_at is not None:
        raise DuplicateAction("Counterproof has already been submitted")
    if ticket.status != ResolutionStatus.OPEN:
        raise InvalidState(f"Resolution ticket is {ticket.status.value}")
    now = datetime.now(UTC)
    if now > ticket.counter_expires_at:
        raise TooLate("Counterproof window has closed")

    await set_status_if(
        db, ticket, ResolutionStatus.AWAITING_REVIEW,
        counter_description=data.description,
        counter_proof_images=data.proof_images,
        counter_submitted_at=now,
    )
    await db.commit()
    await db.refresh(ticket)
    logger.info("Counterproof submitted on resolution %s", ticket_id)
    return ticket


async def _release_contract(
    db: AsyncSession,
    contract: Contract,
    ticket_id: uuid.UUID,
    resume_to: ContractStatus | None,
) -> None:
    """Let the contract out of dispute once no other resolution holds it."""
    if contract.status != ContractStatus.DISPUTED:
        return
    if await _unresolved(db, contract.contract_id, exclude=ticket_id):
        if resume_to is not None:
            contract.status_before_dispute = resume_to
            await db.flush()
        return
    await contract_service.leave_dispute(db, contract, resume_to)


async def cancel_resolution(
    db: AsyncSession, ticket_id: uuid.UUID, actor_id: uuid.UUID
) -> ResolutionTicket:
    """Submitter withdraws the dispute before any counterproof."""
    ticket = await get_ticket(db, ticket_id)
    contract = await contract_service.load_contract(db, ticket.contract_id, for_update=True)
    role = contract_service.assert_party(contract, actor_id)
    if role != ticket.submitted_by:
        raise Unauthorized("Only the submitter can cancel a resolution ticket")
    if ticket.status != ResolutionStatus.OPEN:
        raise InvalidState(f"Resolution ticket is {ticket.status.value}")

    await set_status_if(db, ticket, ResolutionStatus.CANCELLED)
    await _release_contract(db, contract, ticket.ticket_id, None)
    await db.commit()
    await db.refresh(ticket)
    logger.info("Resolution %s cancelled by submitter", ticket_id)
    return ticket


async def _apply_to_cancel_ticket(
    db: AsyncSession, contract: Contract, target: CancelTicket, favored: PartyRole, now: datetime
) -> ContractStatus | None:
    if favored == target.submitted_by:
        await cancel_service.accept_and_cancel(
            db, contract, target, CancelTicketStatus.FORCED_ACCEPTED, contract.work_percentage, now
        )
    elif target.status != CancelTicketStatus.REJECTED:
        await set_status_if(db, target, CancelTicketStatus.REJECTED, responded_at=now)
    return None


async def _apply_to_revision_ticket(
    db: AsyncSession, target: RevisionTicket, favored: PartyRole, now: datetime
) -> ContractStatus | None:
    if favored == PartyRole.CLIENT:
        await set_status_if(db, target, RevisionTicketStatus.FORCED_ACCEPTED, responded_at=now)
        return ContractStatus.IN_REVISION
    if target.status != RevisionTicketStatus.REJECTED:
        await set_status_if(
            db, target, RevisionTicketStatus.REJECTED,
            rejection_reason="Rejected by dispute resolution", responded_at=now,
        )
    return None


async def _apply_to_upload(
    db: AsyncSession, contract: Contract, target: Upload, favored: PartyRole, now: datetime
) -> ContractStatus | None:
    if favored == PartyRole.ARTIST:
        await upload_service.apply_accept(db, contract, target, now, UploadStatus.FORCED_ACCEPTED)
        if target.kind == UploadKind.REVISION:
            if await revision_service.has_unfinished(db, contract.contract_id):
                return ContractStatus.IN_REVISION
            return ContractStatus.ACTIVE
        return None
    if target.status != UploadStatus.REJECTED:
        await upload_service.apply_reject(db, contract, target, now)
    if target.kind == UploadKind.PROGRESS_MILESTONE or target.is_cancellation_proof:
        return None
    return ContractStatus.IN_REVISION


async def _apply_decision(
    db: AsyncSession,
    contract: Contract,
    ticket: ResolutionTicket,
    decision: ResolutionDecision,
    now: datetime,
) -> ContractStatus | None:
    """Apply the decision to the disputed item. Returns the status the contract should resume to."""
    target = await _load_target(db, contract, ticket.target_type, ticket.target_id)
    favored = decision.favored_role
    if isinstance(target, CancelTicket):
        return await _apply_to_cancel_ticket(db, contract, target, favored, now)
    if isinstance(target, RevisionTicket):
        return await _apply_to_revision_ticket(db, target, favored, now)
    if isinstance(target, ChangeTicket):
        await change_service.force_outcome(db, contract, target, favored, now)
        return None
    return await _apply_to_upload(db, contract, target, favored, now)


async def _close(
    db: AsyncSession,
    contract: Contract,
    ticket: ResolutionTicket,
    decision: ResolutionDecision,
    now: datetime,
    resolved_by: uuid.UUID | None,
    note: str | None,
) -> None:
    # Gate first: only one caller gets to apply the decision.
    await set_status_if(
        db, ticket, ResolutionStatus.RESOLVED,
        decision=decision,
        resolution_note=note,
        resolved_by=resolved_by,
        resolved_at=now,
    )
    resume_to = None
    if contract.is_settled:
        logger.info(
            "Resolution %s decided after contract %s settled; no effect applied",
            ticket.ticket_id, contract.contract_id,
        )
    else:
        resume_to = await _apply_decision(db, contract, ticket, decision, now)
    await _release_contract(db, contract, ticket.ticket_id, resume_to)
    logger.info("Resolution %s resolved: %s", ticket.ticket_id, decision.value)


async def resolve_dispute(
    db: AsyncSession,
    ticket_id: uuid.UUID,
    admin_id: uuid.UUID,
    decision: ResolutionDecision,
    note: str | None = None,
) -> ResolutionTicket:
    """Admin decision on a ticket awaiting review."""
    await assert_admin(db, admin_id)
    ticket = await get_ticket(db, ticket_id)
    if ticket.status == ResolutionStatus.RESOLVED:
        raise DuplicateAction("Resolution ticket has already been resolved")
    if ticket.status != ResolutionStatus.AWAITING_REVIEW:
        raise InvalidState(f"Resolution ticket is {ticket.status.value}, not awaiting review")
    contract = await contract_service.load_contract(db, ticket.contract_id, for_update=True)

    await _close(db, contract, ticket, decision, datetime.now(UTC), admin_id, note)
    await db.commit()
    await db.refresh(ticket)
    return ticket


async def process_lapsed_counterproof(
    db: AsyncSession, ticket_id: uuid.UUID, now: datetime | None = None
) -> ResolutionStatus | None:
    """Apply the lapse policy to an open ticket whose counterproof window closed.

    Returns the ticket's new status, or None if nothing was due. Does not commit.
    """
    now = now or datetime.now(UTC)
    ticket = await get_ticket(db, ticket_id)
    if ticket.status != ResolutionStatus.OPEN or now <= ticket.counter_expires_at:
        return None
    decision = policy.counterproof_lapse_decision(ticket)
    if decision is None:
        await set_status_if(db, ticket, ResolutionStatus.AWAITING_REVIEW)
        logger.info("Resolution %s escalated to admin review after counterproof lapsed", ticket_id)
        return ResolutionStatus.AWAITING_REVIEW
    contract = await contract_service.load_contract(db, ticket.contract_id, for_update=True)
    await _close(db, contract, ticket, decision, now, None, "Counterproof window lapsed")
    return ResolutionStatus.RESOLVED


async def get_resolution(
    db: AsyncSession, ticket_id: uuid.UUID, user_id: uuid.UUID
) -> ResolutionTicket:
    ticket = await get_ticket(db, ticket_id)
    contract = await contract_service.load_contract(db, ticket.contract_id)
    if contract_service.party_role(contract, user_id) is None and not await is_admin(db, user_id):
        raise Unauthorized("Not a party to this contract")
    return ticket


async def list_resolutions(
    db: AsyncSession, contract_id: uuid.UUID, user_id: uuid.UUID
) -> list[ResolutionTicket]:
    await contract_service.get_contract(db, contract_id, user_id)
    result = await db.execute(
        select(ResolutionTicket)
        .where(ResolutionTicket.contract_id == contract_id)
        .order_by(ResolutionTicket.created_at.desc())
    )
    return list(result.scalars().all())


async def list_awaiting_review(db: AsyncSession, admin_id: uuid.UUID) -> list[ResolutionTicket]:
    await assert_admin(db, admin_id)
    result = await db.execute(
        select(ResolutionTicket)
        .where(ResolutionTicket.status == ResolutionStatus.AWAITING_REVIEW)
        .order_by(ResolutionTicket.created_at)
    )
    return list(result.scalars().all())
