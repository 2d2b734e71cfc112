"""Tests for revision tickets: policy counting, fees, split payments, delivery."""

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from commissions.errors import DuplicateAction, InvalidState, PaymentMismatch, Unauthorized
from commissions.models.contract import ContractStatus
from commissions.models.ticket import RevisionTicketStatus
from commissions.schemas.contract import RevisionPolicy
from commissions.schemas.ticket import RevisionTicketCreate, SplitPayment
from commissions.schemas.upload import UploadCreate
from commissions.services import contract as contract_service
from commissions.services import ledger
from commissions.services import revision_ticket as revision_service
from commissions.services import upload as upload_service
from commissions.services import user as user_service
from tests.conftest import MILESTONES_30_30_40, TestUser, make_contract, make_user, send


def _request(text: str = "Make the sky warmer") -> RevisionTicketCreate:
    return RevisionTicketCreate(description=text)


def test_fee_for_next() -> None:
    policy = RevisionPolicy(free=1, limit=3, extra_allowed=True, fee_cents=1_500)
    assert revision_service.fee_for_next(policy, 0) == 0
    assert revision_service.fee_for_next(policy, 1) == 1_500
    assert revision_service.fee_for_next(policy, 2) == 1_500
    with pytest.raises(InvalidState):
        revision_service.fee_for_next(policy, 3)


def test_fee_for_next_without_paid_extras() -> None:
    policy = RevisionPolicy(free=2, extra_allowed=False)
    assert revision_service.fee_for_next(policy, 1) == 0
    with pytest.raises(InvalidState):
        revision_service.fee_for_next(policy, 2)
    with pytest.raises(InvalidState):
        revision_service.fee_for_next(RevisionPolicy(kind="none"), 0)


@pytest.mark.asyncio
async def test_free_revision_cycle(
    db_session: AsyncSession, parties: tuple[TestUser, TestUser]
) -> None:
    client_user, artist_user = parties
    contract = await make_contract(db_session, client_user, artist_user)

    ticket = await revision_service.create_revision_ticket(
        db_session, contract.contract_id, client_user.user_id, _request()
    )
    assert ticket.fee_cents == 0
    assert ticket.status == RevisionTicketStatus.PENDING

    ticket = await revision_service.respond_to_revision_ticket(
        db_session, ticket.ticket_id, artist_user.user_id, True
    )
    assert ticket.status == RevisionTicketStatus.ACCEPTED
    contract = await contract_service.load_contract(db_session, contract.contract_id)
    assert contract.status == ContractStatus.IN_REVISION

    # Final delivery waits until the revision is delivered.
    with pytest.raises(InvalidState):
        await upload_service.create_upload(
            db_session, contract.contract_id, artist_user.user_id,
            UploadCreate(kind="final", images=["https://cdn.example.com/final.png"]),
        )

    upload = await upload_service.create_upload(
        db_session, contract.contract_id, artist_user.user_id,
        UploadCreate(
            kind="revision",
            images=["https://cdn.example.com/rev1.png"],
            revision_ticket_id=ticket.ticket_id,
        ),
    )
    await upload_service.review_upload(db_session, upload.upload_id, client_user.user_id, True)

    ticket = await revision_service.get_ticket(db_session, ticket.ticket_id)
    contract = await contract_service.load_contract(db_session, contract.contract_id)
    assert ticket.status == RevisionTicketStatus.COMPLETED
    assert contract.status == ContractStatus.ACTIVE


@pytest.mark.asyncio
async def test_paid_revision_requires_exact_split(
    db_session: AsyncSession, parties: tuple[TestUser, TestUser]
) -> None:
    client_user, artist_user = parties
    contract = await make_contract(db_session, client_user, artist_user, 10_000)
    await user_service.deposit(db_session, client_user.user_id, 1_000)

    first = await revision_service.create_revision_ticket(
        db_session, contract.contract_id, client_user.user_id, _request("first")
    )
    await revision_service.respond_to_revision_ticket(db_session, first.ticket_id, artist_user.user_id, True)

    second = await revision_service.create_revision_ticket(
        db_session, contract.contract_id, client_user.user_id, _request("second")
    )
    assert second.fee_cents == 1_500
    second = await revision_service.respond_to_revision_ticket(
        db_session, second.ticket_id, artist_user.user_id, True
    )
    assert second.status == RevisionTicketStatus.AWAITING_PAYMENT
    # Rollback expires every loaded object; keep plain ids.
    ticket_id, contract_id = second.ticket_id, contract.contract_id

    with pytest.raises(PaymentMismatch):
        await revision_service.pay_revision_fee(
            db_session, ticket_id, client_user.user_id, SplitPayment(wallet_cents=1_000)
        )
    await db_session.rollback()

    second = await revision_service.get_ticket(db_session, ticket_id)
    contract = await contract_service.load_contract(db_session, contract_id)
    assert second.status == RevisionTicketStatus.AWAITING_PAYMENT
    assert contract.runtime_fees_cents == 0
    assert (await ledger.get_wallet(db_session, client_user.user_id)).available_cents == 1_000

    second = await revision_service.pay_revision_fee(
        db_session, second.ticket_id, client_user.user_id,
        SplitPayment(wallet_cents=1_000, external_cents=500, external_reference="card-7"),
    )
    assert second.status == RevisionTicketStatus.PAID
    assert second.paid_fee_cents == 1_500

    contract = await contract_service.load_contract(db_session, contract.contract_id)
    assert contract.status == ContractStatus.IN_REVISION
    assert contract.runtime_fees_cents == 1_500
    assert contract.escrowed_cents == 11_500

    with pytest.raises(DuplicateAction):
        await revision_service.pay_revision_fee(
            db_session, second.ticket_id, client_user.user_id,
            SplitPayment(wallet_cents=0, external_cents=1_500),
        )


@pytest.mark.asyncio
async def test_rejected_revisions_do_not_count(
    db_session: AsyncSession, parties: tuple[TestUser, TestUser]
) -> None:
    client_user, artist_user = parties
    contract = await make_contract(db_session, client_user, artist_user)

    ticket = await revision_service.create_revision_ticket(
        db_session, contract.contract_id, client_user.user_id, _request()
    )
    with pytest.raises(InvalidState):
        await revision_service.respond_to_revision_ticket(
            db_session, ticket.ticket_id, artist_user.user_id, False, "  "
        )
    ticket = await revision_service.respond_to_revision_ticket(
        db_session, ticket.ticket_id, artist_user.user_id, False, "Out of scope"
    )
    assert ticket.status == RevisionTicketStatus.REJECTED
    assert ticket.rejection_reason == "Out of scope"

    again = await revision_service.create_revision_ticket(
        db_session, contract.contract_id, client_user.user_id, _request()
    )
    assert again.fee_cents == 0


@pytest.mark.asyncio
async def test_revision_limit(db_session: AsyncSession, parties: tuple[TestUser, TestUser]) -> None:
    client_user, artist_user = parties
    contract = await make_contract(
        db_session, client_user, artist_user,
        revision_policy={"kind": "standard", "free": 1, "limit": 1},
    )
    await revision_service.create_revision_ticket(
        db_session, contract.contract_id, client_user.user_id, _request()
    )
    with pytest.raises(InvalidState):
        await revision_service.create_revision_ticket(
            db_session, contract.contract_id, client_user.user_id, _request()
        )


@pytest.mark.asyncio
async def test_no_policy_means_no_revisions(
    db_session: AsyncSession, parties: tuple[TestUser, TestUser]
) -> None:
    client_user, artist_user = parties
    contract = await make_contract(db_session, client_user, artist_user, revision_policy=None)
    with pytest.raises(InvalidState):
        await revision_service.create_revision_ticket(
            db_session, contract.contract_id, client_user.user_id, _request()
        )


@pytest.mark.asyncio
async def test_milestone_policy_overrides_contract(
    db_session: AsyncSession, parties: tuple[TestUser, TestUser]
) -> None:
    client_user, artist_user = parties
    milestones = [dict(m) for m in MILESTONES_30_30_40]
    milestones[0]["revision_policy"] = {"kind": "standard", "free": 0, "extra_allowed": True, "fee_cents": 700}
    contract = await make_contract(
        db_session, client_user, artist_user, flow="milestone", milestones=milestones,
    )

    ticket = await revision_service.create_revision_ticket(
        db_session, contract.contract_id, client_user.user_id, _request()
    )
    assert ticket.milestone_idx == 0
    assert ticket.fee_cents == 700

    # Milestone 1 falls back to the contract-wide policy and its free revision.
    other = await revision_service.create_revision_ticket(
        db_session, contract.contract_id, client_user.user_id,
        RevisionTicketCreate(description="Adjust pose", milestone_idx=1),
    )
    assert other.fee_cents == 0


@pytest.mark.asyncio
async def test_only_client_requests_and_only_artist_answers(
    db_session: AsyncSession, parties: tuple[TestUser, TestUser]
) -> None:
    client_user, artist_user = parties
    contract = await make_contract(db_session, client_user, artist_user)
    with pytest.raises(Unauthorized):
        await revision_service.create_revision_ticket(
            db_session, contract.contract_id, artist_user.user_id, _request()
        )
    ticket = await revision_service.create_revision_ticket(
        db_session, contract.contract_id, client_user.user_id, _request()
    )
    with pytest.raises(Unauthorized):
        await revision_service.respond_to_revision_ticket(
            db_session, ticket.ticket_id, client_user.user_id, True
        )


@pytest.mark.asyncio
async def test_revision_api(client: AsyncClient, db_session: AsyncSession) -> None:
    client_user = await make_user(db_session)
    artist_user = await make_user(db_session)
    contract = await make_contract(db_session, client_user, artist_user)

    resp = await send(
        client, client_user, "POST", f"/contracts/{contract.contract_id}/tickets/revision",
        {"description": "Brighter colours please"},
    )
    assert resp.status_code == 201
    ticket_id = resp.json()["ticket_id"]

    resp = await send(
        client, artist_user, "POST", f"/tickets/revision/{ticket_id}/respond", {"accept": False},
    )
    assert resp.status_code == 422

    resp = await send(
        client, artist_user, "POST", f"/tickets/revision/{ticket_id}/respond", {"accept": True},
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "accepted"

    resp = await send(client, client_user, "GET", f"/contracts/{contract.contract_id}")
    assert resp.json()["status"] == "in_revision"
