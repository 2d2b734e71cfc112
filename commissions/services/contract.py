"""Contract state machine: creation, transitions, settlement and claims.

Status writes go through set_status, a conditional UPDATE gated on the
status the caller read. Two requests racing to settle the same contract
cannot both win; the loser gets InvalidState and its unit of work rolls
back. Helpers here only flush. The public operations commit.
"""

import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from commissions.auth.capabilities import assert_admin, is_admin
from commissions.config import settings
from commissions.errors import (
    DuplicateAction,
    InvalidState,
    NotFound,
    NothingToClaim,
    PaymentMismatch,
    Unauthorized,
)
from commissions.models.contract import (
    VALID_TRANSITIONS,
    WORKING_STATUSES,
    CancellationFeeKind,
    Contract,
    ContractFlow,
    ContractMilestone,
    ContractStatus,
    MilestoneStatus,
)
from commissions.models.escrow import EscrowTransaction, EscrowTransactionType
from commissions.models.ticket import PartyRole
from commissions.models.user import User
from commissions.models.wallet import TransactionSource
from commissions.schemas.contract import ProposalSnapshot
from commissions.services import ledger
from commissions.services.payouts import Payout, calculate_payout, is_late

logger = logging.getLogger(__name__)


def _assert_transition(current: ContractStatus, target: ContractStatus) -> None:
    """Raise InvalidState if the state transition is not valid."""
    if target not in VALID_TRANSITIONS.get(current, set()):
        raise InvalidState(f"Cannot transition contract from {current.value} to {target.value}")


def party_role(contract: Contract, user_id: uuid.UUID) -> PartyRole | None:
    if contract.client_id == user_id:
        return PartyRole.CLIENT
    if contract.artist_id == user_id:
        return PartyRole.ARTIST
    return None


def assert_party(contract: Contract, user_id: uuid.UUID, allowed: str = "both") -> PartyRole:
    """Ensure user is a party to the contract. allowed: 'client', 'artist', 'both'."""
    role = party_role(contract, user_id)
    if allowed == "client" and role != PartyRole.CLIENT:
        raise Unauthorized("Only the client can perform this action")
    if allowed == "artist" and role != PartyRole.ARTIST:
        raise Unauthorized("Only the artist can perform this action")
    if role is None:
        raise Unauthorized("Not a party to this contract")
    return role


def assert_working(contract: Contract) -> None:
    if contract.status not in WORKING_STATUSES:
        raise InvalidState(
            f"Contract must be active or in revision, currently {contract.status.value}"
        )


def party_id(contract: Contract, role: PartyRole) -> uuid.UUID:
    return contract.client_id if role == PartyRole.CLIENT else contract.artist_id


async def load_contract(
    db: AsyncSession, contract_id: uuid.UUID, for_update: bool = False
) -> Contract:
    stmt = select(Contract).where(Contract.contract_id == contract_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt.execution_options(populate_existing=True))
    contract = result.scalar_one_or_none()
    if contract is None:
        raise NotFound("Contract not found")
    return contract


async def get_milestones(db: AsyncSession, contract_id: uuid.UUID) -> list[ContractMilestone]:
    result = await db.execute(
        select(ContractMilestone)
        .where(ContractMilestone.contract_id == contract_id)
        .order_by(ContractMilestone.milestone_idx)
    )
    return list(result.scalars().all())


async def record_escrow(
    db: AsyncSession,
    contract: Contract,
    txn_type: EscrowTransactionType,
    amount_cents: int,
    from_user_id: uuid.UUID | None = None,
    to_user_id: uuid.UUID | None = None,
    note: str | None = None,
    metadata: dict | None = None,
) -> None:
    """Append to the contract's escrow transaction log."""
    db.add(EscrowTransaction(
        escrow_txn_id=uuid.uuid4(),
        contract_id=contract.contract_id,
        type=txn_type,
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        amount_cents=amount_cents,
        note=note,
        metadata_=metadata,
    ))


async def set_status(
    db: AsyncSession, contract: Contract, target: ContractStatus, **values: Any
) -> None:
    """Move the contract to target only if nobody moved it since we read it."""
    current = contract.status
    _assert_transition(current, target)
    result = await db.execute(
        update(Contract)
        .where(Contract.contract_id == contract.contract_id, Contract.status == current)
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidState(f"Contract {contract.contract_id} changed state concurrently")
    await db.refresh(contract)
    logger.info("Contract %s: %s -> %s", contract.contract_id, current.value, target.value)


async def enter_revision(db: AsyncSession, contract: Contract) -> None:
    if contract.status == ContractStatus.IN_REVISION:
        return
    await set_status(db, contract, ContractStatus.IN_REVISION)


async def resume_from_revision(db: AsyncSession, contract: Contract) -> None:
    if contract.status == ContractStatus.IN_REVISION:
        await set_status(db, contract, ContractStatus.ACTIVE)


async def enter_dispute(db: AsyncSession, contract: Contract) -> None:
    """Freeze the contract while a resolution ticket is unresolved."""
    if contract.status == ContractStatus.DISPUTED:
        return
    await set_status(
        db, contract, ContractStatus.DISPUTED, status_before_dispute=contract.status
    )


async def leave_dispute(
    db: AsyncSession, contract: Contract, resume_to: ContractStatus | None = None
) -> None:
    """Return a disputed contract to where it was before the dispute."""
    if contract.status != ContractStatus.DISPUTED:
        return
    target = resume_to or contract.status_before_dispute or ContractStatus.ACTIVE
    await set_status(db, contract, target, status_before_dispute=None)


async def _release_owed(db: AsyncSession, contract: Contract, role: PartyRole) -> int:
    """Pay out whatever the role is owed but has not yet claimed. Returns cents moved."""
    if role == PartyRole.ARTIST:
        owed, claimed = contract.owed_artist_cents, contract.claimed_artist_cents
        claimed_col = Contract.claimed_artist_cents
        payee, source, txn_type = contract.artist_id, TransactionSource.RELEASE, EscrowTransactionType.RELEASE
    else:
        owed, claimed = contract.owed_client_cents, contract.claimed_client_cents
        claimed_col = Contract.claimed_client_cents
        payee, source, txn_type = contract.client_id, TransactionSource.REFUND, EscrowTransactionType.REFUND

    amount = owed - claimed
    if amount <= 0:
        return 0
    result = await db.execute(
        update(Contract)
        .where(Contract.contract_id == contract.contract_id, claimed_col == claimed)
        .values({claimed_col: owed, Contract.escrowed_cents: Contract.escrowed_cents - amount})
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return 0
    await ledger.release_escrow(
        db, contract.contract_id, contract.client_id, payee, amount, source
    )
    await record_escrow(
        db, contract, txn_type, amount, contract.client_id, payee,
        f"{contract.status.value} payout to {role.value}",
    )
    await db.refresh(contract)
    logger.info(
        "Released %d cents from contract %s escrow to %s %s",
        amount, contract.contract_id, role.value, payee,
    )
    return amount


async def settle(
    db: AsyncSession,
    contract: Contract,
    status: ContractStatus,
    work_percentage: int,
    now: datetime | None = None,
    reason: str | None = None,
) -> Payout:
    """Move the contract to a terminal status and fix who is owed what.

    A contract never-completed past grace refunds the client immediately;
    every other settlement leaves the money in escrow until claimed.
    """
    now = now or datetime.now(UTC)
    if contract.status == ContractStatus.IN_REVISION:
        await set_status(db, contract, ContractStatus.ACTIVE)
    _assert_transition(contract.status, status)

    payout = calculate_payout(contract, status, work_percentage)
    settlement = {
        "status": status.value,
        "work_percentage": work_percentage,
        "is_late": is_late(contract, now),
        "reason": reason,
        **payout.to_dict(),
        "settled_at": now.isoformat(),
    }
    await set_status(
        db, contract, status,
        work_percentage=work_percentage,
        owed_artist_cents=payout.artist_cents,
        owed_client_cents=payout.client_cents,
        settlement=settlement,
        settled_at=now,
        status_before_dispute=None,
    )
    if status == ContractStatus.NOT_COMPLETED:
        await _release_owed(db, contract, PartyRole.CLIENT)
    return payout


async def settle_completion(
    db: AsyncSession, contract: Contract, now: datetime | None = None
) -> Payout:
    now = now or datetime.now(UTC)
    status = ContractStatus.COMPLETED_LATE if is_late(contract, now) else ContractStatus.COMPLETED
    return await settle(db, contract, status, 100, now, reason="delivery accepted")


async def settle_cancellation(
    db: AsyncSession,
    contract: Contract,
    by: PartyRole,
    work_percentage: int,
    now: datetime | None = None,
) -> Payout:
    now = now or datetime.now(UTC)
    late = is_late(contract, now)
    if by == PartyRole.CLIENT:
        status = ContractStatus.CANCELLED_CLIENT_LATE if late else ContractStatus.CANCELLED_CLIENT
    else:
        status = ContractStatus.CANCELLED_ARTIST_LATE if late else ContractStatus.CANCELLED_ARTIST
    return await settle(db, contract, status, work_percentage, now, reason=f"cancelled by {by.value}")


async def mark_milestone_submitted(
    db: AsyncSession, contract: Contract, milestone_idx: int
) -> None:
    milestones = await get_milestones(db, contract.contract_id)
    milestone = milestones[milestone_idx]
    if milestone.status != MilestoneStatus.ACCEPTED:
        milestone.status = MilestoneStatus.SUBMITTED
        await db.flush()


async def reject_milestone(db: AsyncSession, contract: Contract, milestone_idx: int) -> None:
    """A rejected milestone goes back to work."""
    milestones = await get_milestones(db, contract.contract_id)
    milestone = milestones[milestone_idx]
    if milestone.status != MilestoneStatus.ACCEPTED:
        milestone.status = MilestoneStatus.IN_PROGRESS
        await db.flush()


async def accept_milestone(
    db: AsyncSession,
    contract: Contract,
    milestone_idx: int,
    upload_id: uuid.UUID,
    now: datetime | None = None,
) -> None:
    """Accept a milestone: advance the index and release its slice of escrow.

    Accepting the last milestone completes the contract instead of releasing
    a slice; settlement then accounts for everything already released.
    """
    milestones = await get_milestones(db, contract.contract_id)
    if milestone_idx >= len(milestones):
        raise InvalidState(f"Contract has no milestone {milestone_idx}")
    milestone = milestones[milestone_idx]
    if milestone.status == MilestoneStatus.ACCEPTED:
        return

    milestone.status = MilestoneStatus.ACCEPTED
    milestone.accepted_upload_id = upload_id
    work_percentage = sum(m.percent for m in milestones if m.status == MilestoneStatus.ACCEPTED)
    is_last = milestone_idx == len(milestones) - 1
    if not is_last and milestones[milestone_idx + 1].status == MilestoneStatus.PENDING:
        milestones[milestone_idx + 1].status = MilestoneStatus.IN_PROGRESS

    contract.work_percentage = work_percentage
    contract.current_milestone_index = min(milestone_idx + 1, len(milestones) - 1)
    await db.flush()

    if is_last:
        await settle_completion(db, contract, now)
        return

    slice_cents = contract.total_cents * milestone.percent // 100
    if slice_cents <= 0:
        return
    result = await db.execute(
        update(Contract)
        .where(Contract.contract_id == contract.contract_id, Contract.status == contract.status)
        .values(
            owed_artist_cents=Contract.owed_artist_cents + slice_cents,
            claimed_artist_cents=Contract.claimed_artist_cents + slice_cents,
            escrowed_cents=Contract.escrowed_cents - slice_cents,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidState(f"Contract {contract.contract_id} changed state concurrently")
    await ledger.release_escrow(
        db, contract.contract_id, contract.client_id, contract.artist_id, slice_cents
    )
    await record_escrow(
        db, contract, EscrowTransactionType.RELEASE, slice_cents,
        contract.client_id, contract.artist_id,
        f"Milestone {milestone_idx} ({milestone.title}) accepted",
        {"milestone_idx": milestone_idx, "percent": milestone.percent},
    )
    await db.refresh(contract)
    logger.info(
        "Contract %s milestone %d accepted, released %d cents",
        contract.contract_id, milestone_idx, slice_cents,
    )


async def add_runtime_fee(
    db: AsyncSession,
    contract: Contract,
    amount_cents: int,
    txn_type: EscrowTransactionType,
    note: str,
    metadata: dict | None = None,
) -> None:
    """Grow the contract's escrow pool by a paid revision or change fee."""
    result = await db.execute(
        update(Contract)
        .where(Contract.contract_id == contract.contract_id, Contract.status == contract.status)
        .values(
            runtime_fees_cents=Contract.runtime_fees_cents + amount_cents,
            escrowed_cents=Contract.escrowed_cents + amount_cents,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidState(f"Contract {contract.contract_id} changed state concurrently")
    await record_escrow(
        db, contract, txn_type, amount_cents, contract.client_id, None, note, metadata
    )
    await db.refresh(contract)


async def apply_change_set(
    db: AsyncSession, contract: Contract, change_set: dict, ticket_id: uuid.UUID
) -> None:
    """Apply an agreed change to the contract terms and bump the version."""
    now = datetime.now(UTC)
    if "deadline_at" in change_set:
        new_deadline = datetime.fromisoformat(change_set["deadline_at"])
        grace = contract.grace_ends_at - contract.deadline_at
        contract.deadline_at = new_deadline
        contract.grace_ends_at = new_deadline + grace
    contract.contract_version = contract.contract_version + 1
    contract.terms_history = [
        *(contract.terms_history or []),
        {
            "contract_version": contract.contract_version,
            "change_ticket_id": str(ticket_id),
            "changes": change_set,
            "applied_at": now.isoformat(),
        },
    ]
    await db.flush()
    logger.info("Contract %s terms now at version %d", contract.contract_id, contract.contract_version)


# ---------------------------------------------------------------------------
# Public operations
# ---------------------------------------------------------------------------


async def create_from_proposal(
    db: AsyncSession,
    client_id: uuid.UUID,
    proposal: ProposalSnapshot,
    payment_amount_cents: int,
) -> Contract:
    """Finalize an accepted proposal into a funded, active contract."""
    if client_id != proposal.client_id:
        raise Unauthorized("Only the proposal's client can finalize it into a contract")
    if payment_amount_cents != proposal.total_cents:
        raise PaymentMismatch(
            f"Payment of {payment_amount_cents} cents does not match the proposal total "
            f"of {proposal.total_cents} cents"
        )
    now = datetime.now(UTC)
    if proposal.deadline_at <= now:
        raise InvalidState("Proposal deadline has already passed")

    for uid in (proposal.client_id, proposal.artist_id):
        if await db.get(User, uid) is None:
            raise NotFound(f"User {uid} not found")

    existing = await db.execute(
        select(Contract.contract_id).where(Contract.proposal_id == proposal.proposal_id)
    )
    if existing.scalar_one_or_none() is not None:
        raise DuplicateAction("A contract already exists for this proposal")

    grace_days = proposal.grace_days if proposal.grace_days is not None else settings.default_grace_days
    late_penalty = (
        proposal.late_penalty_percent
        if proposal.late_penalty_percent is not None
        else settings.default_late_penalty_percent
    )
    deadline_at = proposal.deadline_at.astimezone(UTC)
    contract = Contract(
        contract_id=uuid.uuid4(),
        artist_id=proposal.artist_id,
        client_id=proposal.client_id,
        proposal_id=proposal.proposal_id,
        proposal_snapshot=proposal.model_dump(mode="json"),
        flow=ContractFlow(proposal.flow),
        status=ContractStatus.ACTIVE,
        total_cents=proposal.total_cents,
        runtime_fees_cents=0,
        escrowed_cents=payment_amount_cents,
        late_penalty_percent=late_penalty,
        cancellation_fee_kind=CancellationFeeKind(proposal.cancellation_fee.kind),
        cancellation_fee_amount=proposal.cancellation_fee.amount,
        work_percentage=0,
        current_milestone_index=0,
        contract_version=1,
        terms_history=[{
            "contract_version": 1,
            "description": proposal.description,
            "reference_images": proposal.reference_images,
            "applied_at": now.isoformat(),
        }],
        deadline_extensions=[],
        deadline_at=deadline_at,
        grace_ends_at=deadline_at + timedelta(days=grace_days),
    )
    db.add(contract)
    await db.flush()

    for idx, item in enumerate(proposal.milestones):
        db.add(ContractMilestone(
            milestone_id=uuid.uuid4(),
            contract_id=contract.contract_id,
            milestone_idx=idx,
            title=item.title,
            percent=item.percent,
            status=MilestoneStatus.IN_PROGRESS if idx == 0 else MilestoneStatus.PENDING,
            revision_policy=item.revision_policy.model_dump() if item.revision_policy else None,
        ))

    await ledger.ensure_wallet(db, proposal.artist_id)
    await ledger.ensure_wallet(db, client_id)
    await ledger.escrow_funds(db, contract.contract_id, client_id, payment_amount_cents)
    await record_escrow(
        db, contract, EscrowTransactionType.HOLD, payment_amount_cents, client_id, None,
        "Initial contract payment",
    )

    await db.commit()
    await db.refresh(contract)
    logger.info(
        "Contract %s created from proposal %s (%d cents escrowed)",
        contract.contract_id, proposal.proposal_id, payment_amount_cents,
    )
    return contract


async def get_contract(db: AsyncSession, contract_id: uuid.UUID, user_id: uuid.UUID) -> Contract:
    """Get a contract. Only its parties and admins can view it."""
    contract = await load_contract(db, contract_id)
    if party_role(contract, user_id) is None and not await is_admin(db, user_id):
        raise Unauthorized("Not a party to this contract")
    return contract


async def list_contracts_for_user(
    db: AsyncSession,
    user_id: uuid.UUID,
    role: PartyRole | None = None,
    status: ContractStatus | None = None,
) -> list[Contract]:
    if role == PartyRole.CLIENT:
        stmt = select(Contract).where(Contract.client_id == user_id)
    elif role == PartyRole.ARTIST:
        stmt = select(Contract).where(Contract.artist_id == user_id)
    else:
        stmt = select(Contract).where(
            or_(Contract.client_id == user_id, Contract.artist_id == user_id)
        )
    if status is not None:
        stmt = stmt.where(Contract.status == status)
    result = await db.execute(stmt.order_by(Contract.created_at.desc()))
    return list(result.scalars().all())


async def list_all_contracts(
    db: AsyncSession,
    admin_id: uuid.UUID,
    statuses: list[ContractStatus] | None = None,
    client_id: uuid.UUID | None = None,
    artist_id: uuid.UUID | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Contract]:
    """Every contract on the platform, newest first. Admin only."""
    await assert_admin(db, admin_id)
    stmt = select(Contract)
    if statuses:
        stmt = stmt.where(Contract.status.in_(statuses))
    if client_id is not None:
        stmt = stmt.where(Contract.client_id == client_id)
    if artist_id is not None:
        stmt = stmt.where(Contract.artist_id == artist_id)
    result = await db.execute(
        stmt.order_by(Contract.created_at.desc()).limit(limit).offset(offset)
    )
    return list(result.scalars().all())


async def extend_contract_deadline(
    db: AsyncSession,
    contract_id: uuid.UUID,
    client_id: uuid.UUID,
    new_deadline: datetime,
) -> Contract:
    """Client pushes the deadline out. The grace window moves with it."""
    contract = await load_contract(db, contract_id, for_update=True)
    assert_party(contract, client_id, allowed="client")
    assert_working(contract)
    new_deadline = new_deadline.astimezone(UTC)
    if new_deadline <= contract.deadline_at:
        raise InvalidState("New deadline must be later than the current deadline")

    old_deadline = contract.deadline_at
    grace = contract.grace_ends_at - contract.deadline_at
    result = await db.execute(
        update(Contract)
        .where(
            Contract.contract_id == contract.contract_id,
            Contract.status == contract.status,
            Contract.deadline_at == old_deadline,
        )
        .values(
            deadline_at=new_deadline,
            grace_ends_at=new_deadline + grace,
            deadline_extensions=[
                *(contract.deadline_extensions or []),
                {
                    "from": old_deadline.isoformat(),
                    "to": new_deadline.isoformat(),
                    "by": str(client_id),
                    "at": datetime.now(UTC).isoformat(),
                },
            ],
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidState(f"Contract {contract.contract_id} changed state concurrently")
    await db.commit()
    await db.refresh(contract)
    logger.info("Contract %s deadline extended %s -> %s", contract_id, old_deadline, new_deadline)
    return contract


async def claim_funds(
    db: AsyncSession, contract_id: uuid.UUID, user_id: uuid.UUID
) -> tuple[Contract, int]:
    """Release what a party is owed from a settled contract's escrow."""
    contract = await load_contract(db, contract_id, for_update=True)
    role = assert_party(contract, user_id)
    if not contract.is_settled:
        raise InvalidState("Contract must be completed or cancelled to claim funds")
    amount = await _release_owed(db, contract, role)
    if amount <= 0:
        raise NothingToClaim("No funds to claim")
    await db.commit()
    await db.refresh(contract)
    return contract, amount


async def process_grace_period(
    db: AsyncSession, contract_id: uuid.UUID, now: datetime | None = None
) -> bool:
    """Mark a contract not-completed once its grace window has passed.

    Returns True if this call made the transition. Does not commit.
    """
    now = now or datetime.now(UTC)
    contract = await load_contract(db, contract_id, for_update=True)
    if contract.status not in WORKING_STATUSES:
        return False
    if now <= contract.grace_ends_at:
        return False
    await settle(
        db, contract, ContractStatus.NOT_COMPLETED, contract.work_percentage, now,
        reason="grace period elapsed",
    )
    return True


async def list_escrow_transactions(
    db: AsyncSession, contract_id: uuid.UUID, user_id: uuid.UUID
) -> list[EscrowTransaction]:
    await get_contract(db, contract_id, user_id)
    result = await db.execute(
        select(EscrowTransaction)
        .where(EscrowTransaction.contract_id == contract_id)
        .order_by(EscrowTransaction.created_at)
    )
    return list(result.scalars().all())


async def list_milestones(
    db: AsyncSession, contract_id: uuid.UUID, user_id: uuid.UUID
) -> list[ContractMilestone]:
    await get_contract(db, contract_id, user_id)
    return await get_milestones(db, contract_id)
