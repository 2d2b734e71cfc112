"""Expiration reconciliation: apply every overdue default transition exactly once.

Nothing in this system fires on a timer by itself. An upload whose review
window passed stays 'submitted' until some caller reconciles its contract:
a party hitting the reconcile endpoint, the throttled sweep on listing
contracts, or the optional background sweeper. Every step below is gated
on the item still being in its pre-expiry state, so redundant or
concurrent sweeps do nothing the second time.

Each item is its own unit of work. One failing item is logged and recorded
in the summary; the rest of the sweep carries on.
"""

import functools
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TypeVar

import redis.asyncio as aioredis
from fastapi import HTTPException
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from commissions.config import settings
from commissions.models.contract import SETTLED_STATUSES, Contract, ContractStatus
from commissions.models.ticket import (
    PENDING_CHANGE_STATUSES,
    CancelTicket,
    CancelTicketStatus,
    ChangeTicket,
    ChangeTicketStatus,
    ResolutionStatus,
    ResolutionTicket,
    RevisionTicket,
    RevisionTicketStatus,
)
from commissions.models.upload import Upload, UploadStatus
from commissions.redis import claim_once, user_sweep_key
from commissions.services import cancel_ticket as cancel_service
from commissions.services import change_ticket as change_service
from commissions.services import contract as contract_service
from commissions.services import resolution as resolution_service
from commissions.services import revision_ticket as revision_service
from commissions.services import upload as upload_service

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ExpirationSummary:
    contracts_processed: int = 0
    uploads_auto_accepted: int = 0
    tickets_expired: int = 0
    resolutions_auto_resolved: int = 0
    resolutions_escalated: int = 0
    contracts_not_completed: int = 0
    errors: list[dict] = field(default_factory=list)

    def merge(self, other: "ExpirationSummary") -> None:
        self.contracts_processed += other.contracts_processed
        self.uploads_auto_accepted += other.uploads_auto_accepted
        self.tickets_expired += other.tickets_expired
        self.resolutions_auto_resolved += other.resolutions_auto_resolved
        self.resolutions_escalated += other.resolutions_escalated
        self.contracts_not_completed += other.contracts_not_completed
        self.errors.extend(other.errors)

    @property
    def changed_anything(self) -> bool:
        return any((
            self.uploads_auto_accepted,
            self.tickets_expired,
            self.resolutions_auto_resolved,
            self.resolutions_escalated,
            self.contracts_not_completed,
        ))

    def to_dict(self) -> dict:
        return asdict(self)


def _error_detail(exc: Exception) -> str:
    if isinstance(exc, HTTPException):
        return str(exc.detail)
    return f"{type(exc).__name__}: {exc}"


async def _attempt(
    db: AsyncSession,
    summary: ExpirationSummary,
    item_type: str,
    item_id: uuid.UUID,
    step: Callable[[], Awaitable[T]],
) -> T | None:
    """Run one item in its own transaction. Failures are recorded, never raised."""
    try:
        result = await step()
        await db.commit()
        return result
    except Exception as exc:
        await db.rollback()
        logger.exception("Reconciliation failed for %s %s", item_type, item_id)
        summary.errors.append({
            "item_type": item_type,
            "item_id": str(item_id),
            "detail": _error_detail(exc),
        })
        return None


async def _ids(db: AsyncSession, stmt) -> list[uuid.UUID]:  # type: ignore[no-untyped-def]
    result = await db.execute(stmt)
    return [row[0] for row in result.all()]


async def _contract_status(db: AsyncSession, contract_id: uuid.UUID) -> ContractStatus:
    result = await db.execute(select(Contract.status).where(Contract.contract_id == contract_id))
    return result.scalar_one()


async def _expire_uploads(
    db: AsyncSession, contract_id: uuid.UUID, now: datetime, summary: ExpirationSummary
) -> None:
    upload_ids = await _ids(db, select(Upload.upload_id).where(
        Upload.contract_id == contract_id,
        Upload.status == UploadStatus.SUBMITTED,
        Upload.expires_at < now,
    ).order_by(Upload.created_at))
    for upload_id in upload_ids:
        accepted = await _attempt(
            db, summary, "upload", upload_id,
            functools.partial(upload_service.auto_accept_expired, db, upload_id, now),
        )
        if accepted:
            summary.uploads_auto_accepted += 1


async def _expire_tickets(
    db: AsyncSession, contract_id: uuid.UUID, now: datetime, summary: ExpirationSummary
) -> None:
    # Items under dispute wait for the decision.
    if await _contract_status(db, contract_id) == ContractStatus.DISPUTED:
        return

    due = [
        ("cancel_ticket", cancel_service.expire_ticket, select(CancelTicket.ticket_id).where(
            CancelTicket.contract_id == contract_id,
            CancelTicket.status == CancelTicketStatus.OPEN,
            CancelTicket.expires_at < now,
        )),
        ("revision_ticket", revision_service.expire_ticket, select(RevisionTicket.ticket_id).where(
            RevisionTicket.contract_id == contract_id,
            RevisionTicket.status.in_([
                RevisionTicketStatus.PENDING, RevisionTicketStatus.AWAITING_PAYMENT,
            ]),
            RevisionTicket.expires_at < now,
        )),
        ("change_ticket", change_service.expire_ticket, select(ChangeTicket.ticket_id).where(
            ChangeTicket.contract_id == contract_id,
            ChangeTicket.status.in_(
                PENDING_CHANGE_STATUSES | {ChangeTicketStatus.FORCED_ACCEPTED_ARTIST}
            ),
            ChangeTicket.expires_at < now,
        )),
    ]
    for item_type, expire, stmt in due:
        for ticket_id in await _ids(db, stmt):
            expired = await _attempt(
                db, summary, item_type, ticket_id, functools.partial(expire, db, ticket_id, now)
            )
            if expired:
                summary.tickets_expired += 1


async def _lapse_resolutions(
    db: AsyncSession, contract_id: uuid.UUID, now: datetime, summary: ExpirationSummary
) -> None:
    ticket_ids = await _ids(db, select(ResolutionTicket.ticket_id).where(
        ResolutionTicket.contract_id == contract_id,
        ResolutionTicket.status == ResolutionStatus.OPEN,
        ResolutionTicket.counter_expires_at < now,
    ).order_by(ResolutionTicket.created_at))
    for ticket_id in ticket_ids:
        outcome = await _attempt(
            db, summary, "resolution_ticket", ticket_id,
            functools.partial(resolution_service.process_lapsed_counterproof, db, ticket_id, now),
        )
        if outcome == ResolutionStatus.RESOLVED:
            summary.resolutions_auto_resolved += 1
        elif outcome == ResolutionStatus.AWAITING_REVIEW:
            summary.resolutions_escalated += 1


async def _reconcile_contract(
    db: AsyncSession, contract_id: uuid.UUID, now: datetime
) -> ExpirationSummary:
    summary = ExpirationSummary(contracts_processed=1)
    await _expire_uploads(db, contract_id, now, summary)
    await _expire_tickets(db, contract_id, now, summary)
    await _lapse_resolutions(db, contract_id, now, summary)
    marked = await _attempt(
        db, summary, "contract", contract_id,
        functools.partial(contract_service.process_grace_period, db, contract_id, now),
    )
    if marked:
        summary.contracts_not_completed += 1
    return summary


async def process_contract_expirations(
    db: AsyncSession,
    contract_id: uuid.UUID,
    user_id: uuid.UUID,
    now: datetime | None = None,
) -> ExpirationSummary:
    """Reconcile one contract the user is a party to."""
    await contract_service.get_contract(db, contract_id, user_id)
    summary = await _reconcile_contract(db, contract_id, now or datetime.now(UTC))
    if summary.changed_anything or summary.errors:
        logger.info("Reconciled contract %s: %s", contract_id, summary.to_dict())
    return summary


async def _open_contract_ids(db: AsyncSession, user_id: uuid.UUID | None = None) -> list[uuid.UUID]:
    stmt = select(Contract.contract_id).where(Contract.status.not_in(SETTLED_STATUSES))
    if user_id is not None:
        stmt = stmt.where(or_(Contract.client_id == user_id, Contract.artist_id == user_id))
    return await _ids(db, stmt.order_by(Contract.created_at))


async def process_all_user_expirations(
    db: AsyncSession, user_id: uuid.UUID, now: datetime | None = None
) -> ExpirationSummary:
    """Reconcile every unsettled contract the user is a party to."""
    now = now or datetime.now(UTC)
    total = ExpirationSummary()
    for contract_id in await _open_contract_ids(db, user_id):
        total.merge(await _reconcile_contract(db, contract_id, now))
    if total.changed_anything or total.errors:
        logger.info("Reconciled %d contracts for user %s: %s", total.contracts_processed, user_id, total.to_dict())
    return total


async def process_all_expirations(db: AsyncSession, now: datetime | None = None) -> ExpirationSummary:
    """Reconcile every unsettled contract. Used by admins and the background sweeper."""
    now = now or datetime.now(UTC)
    total = ExpirationSummary()
    for contract_id in await _open_contract_ids(db):
        total.merge(await _reconcile_contract(db, contract_id, now))
    if total.changed_anything or total.errors:
        logger.info("Global reconciliation over %d contracts: %s", total.contracts_processed, total.to_dict())
    return total


async def should_run_user_sweep(redis: aioredis.Redis, user_id: uuid.UUID) -> bool:
    """True at most once per sweep interval per user (SET NX EX)."""
    return await claim_once(
        redis, user_sweep_key(user_id), settings.expiration_sweep_interval_seconds
    )
