"""Tests for resolution tickets: disputes, counterproof, admin decisions, lapse policy."""

from datetime import UTC, datetime, timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from commissions.config import settings
from commissions.errors import DuplicateAction, InvalidState, TooLate, Unauthorized
from commissions.models.contract import Contract, ContractStatus
from commissions.models.ticket import (
    CancelTicketStatus,
    ResolutionDecision,
    ResolutionStatus,
    RevisionTicketStatus,
)
from commissions.models.upload import UploadStatus
from commissions.schemas.resolution import CounterproofCreate, ResolutionCreate
from commissions.schemas.ticket import RevisionTicketCreate
from commissions.schemas.upload import UploadCreate
from commissions.services import cancel_ticket as cancel_service
from commissions.services import contract as contract_service
from commissions.services import reconciliation
from commissions.services import resolution as resolution_service
from commissions.services import revision_ticket as revision_service
from commissions.services import upload as upload_service
from tests.conftest import TestUser, make_contract, make_user, send

PROOF = ["https://cdn.example.com/proof.png"]


def _dispute(target_type: str, target_id, text: str = "The request is within the agreed scope") -> ResolutionCreate:  # type: ignore[no-untyped-def]
    return ResolutionCreate(
        target_type=target_type, target_id=target_id, description=text, proof_images=PROOF
    )


async def _rejected_revision(
    db: AsyncSession, client_user: TestUser, artist_user: TestUser
) -> tuple[Contract, object]:
    contract = await make_contract(db, client_user, artist_user)
    ticket = await revision_service.create_revision_ticket(
        db, contract.contract_id, client_user.user_id,
        RevisionTicketCreate(description="Fix the hands"),
    )
    ticket = await revision_service.respond_to_revision_ticket(
        db, ticket.ticket_id, artist_user.user_id, False, "Hands match the sketch you approved"
    )
    return contract, ticket


@pytest.mark.asyncio
async def test_disputed_revision_decided_for_client(
    db_session: AsyncSession, parties: tuple[TestUser, TestUser]
) -> None:
    client_user, artist_user = parties
    admin = await make_user(db_session, is_admin=True)
    contract, revision = await _rejected_revision(db_session, client_user, artist_user)

    resolution = await resolution_service.create_resolution(
        db_session, contract.contract_id, client_user.user_id,
        _dispute("revision_ticket", revision.ticket_id),
    )
    assert resolution.status == ResolutionStatus.OPEN
    contract = await contract_service.load_contract(db_session, contract.contract_id)
    assert contract.status == ContractStatus.DISPUTED
    assert contract.status_before_dispute == ContractStatus.ACTIVE

    # Not awaiting review yet.
    with pytest.raises(InvalidState):
        await resolution_service.resolve_dispute(
            db_session, resolution.ticket_id, admin.user_id, ResolutionDecision.FAVOR_CLIENT
        )

    with pytest.raises(Unauthorized):
        await resolution_service.submit_counterproof(
            db_session, resolution.ticket_id, client_user.user_id,
            CounterproofCreate(description="me again"),
        )
    resolution = await resolution_service.submit_counterproof(
        db_session, resolution.ticket_id, artist_user.user_id,
        CounterproofCreate(description="See the approved sketch", proof_images=PROOF),
    )
    assert resolution.status == ResolutionStatus.AWAITING_REVIEW
    with pytest.raises(DuplicateAction):
        await resolution_service.submit_counterproof(
            db_session, resolution.ticket_id, artist_user.user_id,
            CounterproofCreate(description="one more thing"),
        )

    with pytest.raises(Unauthorized):
        await resolution_service.resolve_dispute(
            db_session, resolution.ticket_id, client_user.user_id, ResolutionDecision.FAVOR_CLIENT
        )
    resolution = await resolution_service.resolve_dispute(
        db_session, resolution.ticket_id, admin.user_id, ResolutionDecision.FAVOR_CLIENT, "Hands are off-model"
    )
    assert resolution.status == ResolutionStatus.RESOLVED
    assert resolution.decision == ResolutionDecision.FAVOR_CLIENT
    assert resolution.resolved_by == admin.user_id

    revision = await revision_service.get_ticket(db_session, revision.ticket_id)
    contract = await contract_service.load_contract(db_session, contract.contract_id)
    assert revision.status == RevisionTicketStatus.FORCED_ACCEPTED
    assert contract.status == ContractStatus.IN_REVISION
    assert contract.status_before_dispute is None

    with pytest.raises(DuplicateAction):
        await resolution_service.resolve_dispute(
            db_session, resolution.ticket_id, admin.user_id, ResolutionDecision.FAVOR_ARTIST
        )


@pytest.mark.asyncio
async def test_disputed_revision_decided_for_artist(
    db_session: AsyncSession, parties: tuple[TestUser, TestUser]
) -> None:
    client_user, artist_user = parties
    admin = await make_user(db_session, is_admin=True)
    contract, revision = await _rejected_revision(db_session, client_user, artist_user)
    resolution = await resolution_service.create_resolution(
        db_session, contract.contract_id, client_user.user_id,
        _dispute("revision_ticket", revision.ticket_id),
    )
    await resolution_service.submit_counterproof(
        db_session, resolution.ticket_id, artist_user.user_id,
        CounterproofCreate(description="Out of scope"),
    )
    await resolution_service.resolve_dispute(
        db_session, resolution.ticket_id, admin.user_id, ResolutionDecision.FAVOR_ARTIST
    )

    revision = await revision_service.get_ticket(db_session, revision.ticket_id)
    contract = await contract_service.load_contract(db_session, contract.contract_id)
    assert revision.status == RevisionTicketStatus.REJECTED
    assert contract.status == ContractStatus.ACTIVE


@pytest.mark.asyncio
async def test_rejected_final_upload_forced_through(
    db_session: AsyncSession, parties: tuple[TestUser, TestUser]
) -> None:
    client_user, artist_user = parties
    admin = await make_user(db_session, is_admin=True)
    contract = await make_contract(db_session, client_user, artist_user, 10_000)
    upload = await upload_service.create_upload(
        db_session, contract.contract_id, artist_user.user_id,
        UploadCreate(kind="final", images=["https://cdn.example.com/final.png"]),
    )
    await upload_service.review_upload(db_session, upload.upload_id, client_user.user_id, False)

    resolution = await resolution_service.create_resolution(
        db_session, contract.contract_id, artist_user.user_id,
        _dispute("final_upload", upload.upload_id, "Delivered exactly what was agreed"),
    )
    contract = await contract_service.load_contract(db_session, contract.contract_id)
    assert contract.status_before_dispute == ContractStatus.IN_REVISION

    await resolution_service.submit_counterproof(
        db_session, resolution.ticket_id, client_user.user_id,
        CounterproofCreate(description="Colours are wrong"),
    )
    await resolution_service.resolve_dispute(
        db_session, resolution.ticket_id, admin.user_id, ResolutionDecision.FAVOR_ARTIST
    )

    upload = await upload_service.load_upload(db_session, upload.upload_id)
    contract = await contract_service.load_contract(db_session, contract.contract_id)
    assert upload.status == UploadStatus.FORCED_ACCEPTED
    assert contract.status == ContractStatus.COMPLETED
    assert contract.owed_artist_cents == 10_000


@pytest.mark.asyncio
async def test_one_unresolved_resolution_per_contract(
    db_session: AsyncSession, parties: tuple[TestUser, TestUser]
) -> None:
    client_user, artist_user = parties
    contract, revision = await _rejected_revision(db_session, client_user, artist_user)
    await resolution_service.create_resolution(
        db_session, contract.contract_id, client_user.user_id,
        _dispute("revision_ticket", revision.ticket_id),
    )
    with pytest.raises(DuplicateAction):
        await resolution_service.create_resolution(
            db_session, contract.contract_id, client_user.user_id,
            _dispute("revision_ticket", revision.ticket_id),
        )


@pytest.mark.asyncio
async def test_concurrent_resolutions_when_allowed(
    db_session: AsyncSession, parties: tuple[TestUser, TestUser]
) -> None:
    client_user, artist_user = parties
    object.__setattr__(settings, "allow_multiple_unresolved_resolutions", True)
    contract, revision = await _rejected_revision(db_session, client_user, artist_user)
    cancel = await cancel_service.create_cancel_ticket(
        db_session, contract.contract_id, artist_user.user_id, "Client keeps moving the goalposts"
    )

    first = await resolution_service.create_resolution(
        db_session, contract.contract_id, client_user.user_id,
        _dispute("revision_ticket", revision.ticket_id),
    )
    second = await resolution_service.create_resolution(
        db_session, contract.contract_id, artist_user.user_id,
        _dispute("cancel_ticket", cancel.ticket_id, "Please release me from this contract"),
    )
    with pytest.raises(DuplicateAction):
        await resolution_service.create_resolution(
            db_session, contract.contract_id, client_user.user_id,
            _dispute("revision_ticket", revision.ticket_id),
        )

    # The contract stays disputed until the last resolution closes.
    await resolution_service.cancel_resolution(db_session, first.ticket_id, client_user.user_id)
    contract = await contract_service.load_contract(db_session, contract.contract_id)
    assert contract.status == ContractStatus.DISPUTED

    await resolution_service.cancel_resolution(db_session, second.ticket_id, artist_user.user_id)
    contract = await contract_service.load_contract(db_session, contract.contract_id)
    assert contract.status == ContractStatus.ACTIVE


@pytest.mark.asyncio
async def test_submitter_cancels_resolution(
    db_session: AsyncSession, parties: tuple[TestUser, TestUser]
) -> None:
    client_user, artist_user = parties
    contract, revision = await _rejected_revision(db_session, client_user, artist_user)
    resolution = await resolution_service.create_resolution(
        db_session, contract.contract_id, client_user.user_id,
        _dispute("revision_ticket", revision.ticket_id),
    )
    with pytest.raises(Unauthorized):
        await resolution_service.cancel_resolution(db_session, resolution.ticket_id, artist_user.user_id)

    resolution = await resolution_service.cancel_resolution(
        db_session, resolution.ticket_id, client_user.user_id
    )
    assert resolution.status == ResolutionStatus.CANCELLED
    contract = await contract_service.load_contract(db_session, contract.contract_id)
    assert contract.status == ContractStatus.ACTIVE

    with pytest.raises(InvalidState):
        await resolution_service.cancel_resolution(db_session, resolution.ticket_id, client_user.user_id)


@pytest.mark.asyncio
async def test_counterproof_after_window(
    db_session: AsyncSession, parties: tuple[TestUser, TestUser]
) -> None:
    from sqlalchemy import update

    from commissions.models.ticket import ResolutionTicket

    client_user, artist_user = parties
    contract, revision = await _rejected_revision(db_session, client_user, artist_user)
    resolution = await resolution_service.create_resolution(
        db_session, contract.contract_id, client_user.user_id,
        _dispute("revision_ticket", revision.ticket_id),
    )
    await db_session.execute(
        update(ResolutionTicket)
        .where(ResolutionTicket.ticket_id == resolution.ticket_id)
        .values(counter_expires_at=resolution.created_at - timedelta(minutes=1))
        .execution_options(synchronize_session=False)
    )
    await db_session.commit()
    with pytest.raises(TooLate):
        await resolution_service.submit_counterproof(
            db_session, resolution.ticket_id, artist_user.user_id,
            CounterproofCreate(description="too slow"),
        )


@pytest.mark.asyncio
async def test_counterproof_just_inside_window(
    db_session: AsyncSession, parties: tuple[TestUser, TestUser]
) -> None:
    from sqlalchemy import update

    from commissions.models.ticket import ResolutionTicket

    client_user, artist_user = parties
    contract, revision = await _rejected_revision(db_session, client_user, artist_user)
    resolution = await resolution_service.create_resolution(
        db_session, contract.contract_id, client_user.user_id,
        _dispute("revision_ticket", revision.ticket_id),
    )
    await db_session.execute(
        update(ResolutionTicket)
        .where(ResolutionTicket.ticket_id == resolution.ticket_id)
        .values(counter_expires_at=datetime.now(UTC) + timedelta(seconds=5))
        .execution_options(synchronize_session=False)
    )
    await db_session.commit()

    resolution = await resolution_service.submit_counterproof(
        db_session, resolution.ticket_id, artist_user.user_id,
        CounterproofCreate(description="The hands follow the approved sketch"),
    )
    assert resolution.status == ResolutionStatus.AWAITING_REVIEW
    assert resolution.counter_submitted_at <= resolution.counter_expires_at


@pytest.mark.asyncio
async def test_lapsed_counterproof_favors_submitter(
    db_session: AsyncSession, parties: tuple[TestUser, TestUser]
) -> None:
    client_user, artist_user = parties
    contract = await make_contract(db_session, client_user, artist_user, 10_000)
    cancel = await cancel_service.create_cancel_ticket(
        db_session, contract.contract_id, artist_user.user_id, "Cannot continue"
    )
    await cancel_service.respond_to_cancel_ticket(db_session, cancel.ticket_id, client_user.user_id, False)
    resolution = await resolution_service.create_resolution(
        db_session, contract.contract_id, artist_user.user_id,
        _dispute("cancel_ticket", cancel.ticket_id, "I am unable to finish this work"),
    )

    later = resolution.counter_expires_at + timedelta(minutes=1)
    summary = await reconciliation.process_contract_expirations(
        db_session, contract.contract_id, client_user.user_id, later
    )
    assert summary.resolutions_auto_resolved == 1
    assert summary.errors == []

    resolution = await resolution_service.get_ticket(db_session, resolution.ticket_id)
    cancel = await cancel_service.get_ticket(db_session, cancel.ticket_id)
    contract = await contract_service.load_contract(db_session, contract.contract_id)
    assert resolution.status == ResolutionStatus.RESOLVED
    assert resolution.decision == ResolutionDecision.FAVOR_ARTIST
    assert resolution.resolved_by is None
    assert cancel.status == CancelTicketStatus.FORCED_ACCEPTED
    assert contract.status == ContractStatus.CANCELLED_ARTIST
    assert contract.owed_client_cents == 10_000

    again = await reconciliation.process_contract_expirations(
        db_session, contract.contract_id, client_user.user_id, later
    )
    assert again.resolutions_auto_resolved == 0


@pytest.mark.asyncio
async def test_lapsed_counterproof_escalates(
    db_session: AsyncSession, parties: tuple[TestUser, TestUser]
) -> None:
    client_user, artist_user = parties
    object.__setattr__(settings, "counterproof_lapse_policy", "escalate")
    contract, revision = await _rejected_revision(db_session, client_user, artist_user)
    resolution = await resolution_service.create_resolution(
        db_session, contract.contract_id, client_user.user_id,
        _dispute("revision_ticket", revision.ticket_id),
    )

    later = resolution.counter_expires_at + timedelta(minutes=1)
    summary = await reconciliation.process_contract_expirations(
        db_session, contract.contract_id, client_user.user_id, later
    )
    assert summary.resolutions_escalated == 1

    resolution = await resolution_service.get_ticket(db_session, resolution.ticket_id)
    contract = await contract_service.load_contract(db_session, contract.contract_id)
    assert resolution.status == ResolutionStatus.AWAITING_REVIEW
    assert contract.status == ContractStatus.DISPUTED


@pytest.mark.asyncio
async def test_cannot_dispute_closed_item(
    db_session: AsyncSession, parties: tuple[TestUser, TestUser]
) -> None:
    client_user, artist_user = parties
    contract = await make_contract(db_session, client_user, artist_user)
    ticket = await revision_service.create_revision_ticket(
        db_session, contract.contract_id, client_user.user_id,
        RevisionTicketCreate(description="Softer shading"),
    )
    await revision_service.respond_to_revision_ticket(db_session, ticket.ticket_id, artist_user.user_id, True)
    with pytest.raises(InvalidState):
        await resolution_service.create_resolution(
            db_session, contract.contract_id, client_user.user_id,
            _dispute("revision_ticket", ticket.ticket_id),
        )


@pytest.mark.asyncio
async def test_resolution_api(client: AsyncClient, db_session: AsyncSession) -> None:
    client_user = await make_user(db_session)
    artist_user = await make_user(db_session)
    admin = await make_user(db_session, is_admin=True)
    contract, revision = await _rejected_revision(db_session, client_user, artist_user)
    path = f"/contracts/{contract.contract_id}/resolutions"

    resp = await send(client, client_user, "POST", path, {
        "target_type": "revision_ticket",
        "target_id": str(revision.ticket_id),
        "description": "short",
        "proof_images": PROOF,
    })
    assert resp.status_code == 422

    resp = await send(client, client_user, "POST", path, {
        "target_type": "revision_ticket",
        "target_id": str(revision.ticket_id),
        "description": "The request is within the agreed scope",
        "proof_images": PROOF,
    })
    assert resp.status_code == 201
    ticket_id = resp.json()["ticket_id"]
    assert resp.json()["counterparty"] == "artist"

    resp = await send(client, artist_user, "POST", f"/resolutions/{ticket_id}/counterproof", {
        "description": "Out of scope", "proof_images": PROOF,
    })
    assert resp.status_code == 200
    assert resp.json()["status"] == "awaiting_review"

    resp = await send(client, client_user, "GET", "/admin/resolutions")
    assert resp.status_code == 403

    resp = await send(client, admin, "GET", "/admin/resolutions")
    assert resp.status_code == 200
    assert [t["ticket_id"] for t in resp.json()] == [ticket_id]

    resp = await send(client, admin, "POST", f"/admin/resolutions/{ticket_id}/resolve", {
        "decision": "favor_client", "note": "Agreed with client",
    })
    assert resp.status_code == 200
    assert resp.json()["decision"] == "favor_client"

    resp = await send(client, admin, "POST", f"/admin/resolutions/{ticket_id}/resolve", {
        "decision": "favor_client",
    })
    assert resp.status_code == 409
    assert resp.headers["X-Error-Kind"] == "duplicate_action"

    resp = await send(client, client_user, "GET", path)
    assert resp.status_code == 200
    assert resp.json()[0]["status"] == "resolved"
