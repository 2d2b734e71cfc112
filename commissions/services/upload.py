"""Upload lifecycle: artist submissions, client review, auto-accept on expiry.

Progress uploads on the standard flow are informational. Milestone,
revision and final uploads are submitted for review and carry a deadline;
a client who does not review in time has accepted.
"""

import logging
import uuid
from datetime import UTC, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from commissions.auth.capabilities import is_admin
from commissions.config import settings
from commissions.errors import DuplicateAction, InvalidState, NotFound, TooLate, Unauthorized
from commissions.models.contract import WORKING_STATUSES, Contract, ContractFlow
from commissions.models.ticket import (
    UNFINISHED_REVISION_STATUSES,
    CancelTicketStatus,
    RevisionTicket,
)
from commissions.models.upload import REVIEWABLE_KINDS, Upload, UploadKind, UploadStatus
from commissions.schemas.upload import UploadCreate
from commissions.services import cancel_ticket as cancel_service
from commissions.services import contract as contract_service
from commissions.services import revision_ticket as revision_service
from commissions.services.gates import set_status_if

logger = logging.getLogger(__name__)


async def load_upload(db: AsyncSession, upload_id: uuid.UUID) -> Upload:
    result = await db.execute(
        select(Upload)
        .where(Upload.upload_id == upload_id)
        .execution_options(populate_existing=True)
    )
    upload = result.scalar_one_or_none()
    if upload is None:
        raise NotFound("Upload not found")
    return upload


async def _has_submitted(db: AsyncSession, contract_id: uuid.UUID, *conditions) -> bool:  # type: ignore[no-untyped-def]
    result = await db.execute(
        select(Upload.upload_id).where(
            Upload.contract_id == contract_id,
            Upload.status == UploadStatus.SUBMITTED,
            *conditions,
        )
    )
    return result.first() is not None


async def _validate_milestone(db: AsyncSession, contract: Contract, data: UploadCreate) -> int:
    """Returns the review window in hours."""
    if contract.flow != ContractFlow.MILESTONE:
        raise InvalidState("Milestone uploads are only valid on milestone contracts")
    milestones = await contract_service.get_milestones(db, contract.contract_id)
    if data.milestone_idx != contract.current_milestone_index:
        raise InvalidState(
            f"Uploads must target the current milestone ({contract.current_milestone_index})"
        )
    is_last = data.milestone_idx == len(milestones) - 1
    if data.is_final != is_last:
        raise InvalidState("is_final must be set exactly when uploading the last milestone")
    if await _has_submitted(
        db, contract.contract_id,
        Upload.kind == UploadKind.PROGRESS_MILESTONE,
        Upload.milestone_idx == data.milestone_idx,
    ):
        raise DuplicateAction("This milestone already has an upload awaiting review")
    if is_last:
        return settings.upload_review_hours
    return settings.milestone_interim_review_hours


async def _validate_revision(db: AsyncSession, contract: Contract, data: UploadCreate) -> None:
    ticket = await db.get(RevisionTicket, data.revision_ticket_id)
    if ticket is None or ticket.contract_id != contract.contract_id:
        raise NotFound("Revision ticket not found on this contract")
    if ticket.status not in UNFINISHED_REVISION_STATUSES:
        raise InvalidState(f"Revision ticket is not open for work, currently {ticket.status.value}")
    if await _has_submitted(
        db, contract.contract_id, Upload.revision_ticket_id == data.revision_ticket_id
    ):
        raise DuplicateAction("This revision already has an upload awaiting review")


async def _validate_final(db: AsyncSession, contract: Contract, data: UploadCreate) -> None:
    if contract.flow != ContractFlow.STANDARD:
        raise InvalidState("Final uploads are only valid on standard contracts")
    if await _has_submitted(db, contract.contract_id, Upload.kind == UploadKind.FINAL):
        raise DuplicateAction("A final upload is already awaiting review")
    if data.work_progress == 100:
        if await revision_service.has_unfinished(db, contract.contract_id):
            raise InvalidState("Finish open revisions before delivering the final upload")
        return
    ticket = await cancel_service.get_ticket(db, data.cancel_ticket_id)
    if ticket.contract_id != contract.contract_id:
        raise NotFound("Cancel ticket not found on this contract")
    if ticket.status != CancelTicketStatus.OPEN:
        raise InvalidState("Cancellation proof must reference an open cancel ticket")


async def create_upload(
    db: AsyncSession, contract_id: uuid.UUID, actor_id: uuid.UUID, data: UploadCreate
) -> Upload:
    contract = await contract_service.load_contract(db, contract_id, for_update=True)
    contract_service.assert_party(contract, actor_id, allowed="artist")
    contract_service.assert_working(contract)

    kind = UploadKind(data.kind)
    window_hours = settings.upload_review_hours
    if kind == UploadKind.PROGRESS_STANDARD:
        if contract.flow != ContractFlow.STANDARD:
            raise InvalidState("Use milestone uploads on milestone contracts")
    elif kind == UploadKind.PROGRESS_MILESTONE:
        window_hours = await _validate_milestone(db, contract, data)
    elif kind == UploadKind.REVISION:
        await _validate_revision(db, contract, data)
    else:
        await _validate_final(db, contract, data)

    now = datetime.now(UTC)
    reviewable = kind in REVIEWABLE_KINDS
    upload = Upload(
        upload_id=uuid.uuid4(),
        contract_id=contract_id,
        kind=kind,
        images=data.images,
        description=data.description,
        status=UploadStatus.SUBMITTED if reviewable else None,
        expires_at=now + timedelta(hours=window_hours) if reviewable else None,
        milestone_idx=data.milestone_idx if kind == UploadKind.PROGRESS_MILESTONE else None,
        is_final=data.is_final if kind == UploadKind.PROGRESS_MILESTONE else None,
        revision_ticket_id=data.revision_ticket_id if kind == UploadKind.REVISION else None,
        work_progress=data.work_progress if kind == UploadKind.FINAL else None,
        cancel_ticket_id=data.cancel_ticket_id if kind == UploadKind.FINAL else None,
    )
    db.add(upload)
    await db.flush()
    if kind == UploadKind.PROGRESS_MILESTONE:
        await contract_service.mark_milestone_submitted(db, contract, data.milestone_idx)

    await db.commit()
    await db.refresh(upload)
    logger.info("Upload %s (%s) submitted on contract %s", upload.upload_id, kind.value, contract_id)
    return upload


async def apply_accept(
    db: AsyncSession,
    contract: Contract,
    upload: Upload,
    now: datetime,
    status: UploadStatus = UploadStatus.ACCEPTED,
) -> None:
    """Mark the upload accepted and apply its effect on the contract. Does not commit."""
    await set_status_if(db, upload, status, reviewed_at=now)

    if upload.kind == UploadKind.PROGRESS_MILESTONE:
        await contract_service.accept_milestone(
            db, contract, upload.milestone_idx, upload.upload_id, now
        )
    elif upload.kind == UploadKind.REVISION:
        await revision_service.complete_ticket(db, contract, upload.revision_ticket_id)
    elif upload.is_cancellation_proof:
        ticket = await cancel_service.get_ticket(db, upload.cancel_ticket_id)
        if ticket.status == CancelTicketStatus.OPEN:
            await cancel_service.accept_and_cancel(
                db, contract, ticket, CancelTicketStatus.ACCEPTED, upload.work_progress, now
            )
        else:
            logger.info(
                "Cancellation proof %s accepted after cancel ticket %s closed (%s)",
                upload.upload_id, ticket.ticket_id, ticket.status.value,
            )
    else:
        await contract_service.settle_completion(db, contract, now)


async def apply_reject(db: AsyncSession, contract: Contract, upload: Upload, now: datetime) -> None:
    """Mark the upload rejected. Rejected deliveries send the contract into revision."""
    await set_status_if(db, upload, UploadStatus.REJECTED, reviewed_at=now)

    if upload.kind == UploadKind.PROGRESS_MILESTONE:
        await contract_service.reject_milestone(db, contract, upload.milestone_idx)
    elif upload.is_cancellation_proof:
        return
    elif contract.status in WORKING_STATUSES:
        await contract_service.enter_revision(db, contract)


async def review_upload(
    db: AsyncSession, upload_id: uuid.UUID, actor_id: uuid.UUID, accept: bool
) -> Upload:
    """Client accepts or rejects a submitted upload before it expires."""
    upload = await load_upload(db, upload_id)
    contract = await contract_service.load_contract(db, upload.contract_id, for_update=True)
    contract_service.assert_party(contract, actor_id, allowed="client")
    if upload.kind not in REVIEWABLE_KINDS:
        raise InvalidState("Progress uploads on standard contracts are not reviewed")
    if upload.status != UploadStatus.SUBMITTED:
        raise InvalidState(f"Upload has already been reviewed ({upload.status.value})")
    contract_service.assert_working(contract)
    now = datetime.now(UTC)
    if upload.expires_at is not None and now > upload.expires_at:
        raise TooLate("Review window for this upload has passed")

    if accept:
        await apply_accept(db, contract, upload, now)
    else:
        await apply_reject(db, contract, upload, now)

    await db.commit()
    await db.refresh(upload)
    logger.info("Upload %s %s by client", upload_id, upload.status.value)
    return upload


async def auto_accept_expired(
    db: AsyncSession, upload_id: uuid.UUID, now: datetime | None = None
) -> bool:
    """Accept an upload the client let expire. Same effect as a client accept.

    Returns False when there is nothing to do: already reviewed, not yet
    expired, or the contract is disputed or settled. Does not commit.
    """
    now = now or datetime.now(UTC)
    upload = await load_upload(db, upload_id)
    if upload.status != UploadStatus.SUBMITTED or upload.expires_at is None:
        return False
    if now <= upload.expires_at:
        return False
    contract = await contract_service.load_contract(db, upload.contract_id, for_update=True)
    if contract.status not in WORKING_STATUSES:
        return False
    await apply_accept(db, contract, upload, now)
    logger.info("Upload %s auto-accepted after review window expired", upload_id)
    return True


async def get_upload(db: AsyncSession, upload_id: uuid.UUID, user_id: uuid.UUID) -> Upload:
    upload = await load_upload(db, upload_id)
    contract = await contract_service.load_contract(db, upload.contract_id)
    if contract_service.party_role(contract, user_id) is None and not await is_admin(db, user_id):
        raise Unauthorized("Not a party to this contract")
    return upload


async def list_uploads(
    db: AsyncSession,
    contract_id: uuid.UUID,
    user_id: uuid.UUID,
    kind: UploadKind | None = None,
    milestone_idx: int | None = None,
) -> list[Upload]:
    await contract_service.get_contract(db, contract_id, user_id)
    stmt = select(Upload).where(Upload.contract_id == contract_id)
    if kind is not None:
        stmt = stmt.where(Upload.kind == kind)
    if milestone_idx is not None:
        stmt = stmt.where(Upload.milestone_idx == milestone_idx)
    result = await db.execute(stmt.order_by(Upload.created_at))
    return list(result.scalars().all())
