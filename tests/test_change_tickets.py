"""Tests for change tickets: artist accept, fee proposal and payment, withdrawal."""

from datetime import UTC, datetime, timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from commissions.errors import DuplicateAction, InvalidState
from commissions.models.contract import Contract
from commissions.models.ticket import ChangeTicketStatus
from commissions.schemas.ticket import ChangeSet, SplitPayment
from commissions.services import change_ticket as change_service
from commissions.services import contract as contract_service
from commissions.services import user as user_service
from tests.conftest import TestUser, make_contract, make_user, send


async def _changeable(db: AsyncSession, client_user: TestUser, artist_user: TestUser) -> Contract:
    return await make_contract(
        db, client_user, artist_user,
        allow_contract_change=True,
        changeable_fields=["deadline_at", "description"],
    )


@pytest.mark.asyncio
async def test_artist_accepts_change(
    db_session: AsyncSession, parties: tuple[TestUser, TestUser]
) -> None:
    client_user, artist_user = parties
    contract = await _changeable(db_session, client_user, artist_user)
    grace = contract.grace_ends_at - contract.deadline_at
    new_deadline = (datetime.now(UTC) + timedelta(days=30)).replace(microsecond=0)

    ticket = await change_service.create_change_ticket(
        db_session, contract.contract_id, client_user.user_id,
        ChangeSet(deadline_at=new_deadline, description="Add a second character"),
        reason="Scope grew",
    )
    assert ticket.status == ChangeTicketStatus.PENDING_ARTIST
    assert ticket.change_set["description"] == "Add a second character"

    ticket = await change_service.respond_as_artist(
        db_session, ticket.ticket_id, artist_user.user_id, "accept"
    )
    assert ticket.status == ChangeTicketStatus.ACCEPTED_ARTIST

    contract = await contract_service.load_contract(db_session, contract.contract_id)
    assert contract.contract_version == 2
    assert contract.deadline_at == new_deadline
    assert contract.grace_ends_at - contract.deadline_at == grace
    assert contract.terms_history[-1]["change_ticket_id"] == str(ticket.ticket_id)

    with pytest.raises(DuplicateAction):
        await change_service.respond_as_artist(
            db_session, ticket.ticket_id, artist_user.user_id, "reject"
        )


@pytest.mark.asyncio
async def test_fee_proposal_then_payment(
    db_session: AsyncSession, parties: tuple[TestUser, TestUser]
) -> None:
    client_user, artist_user = parties
    contract = await _changeable(db_session, client_user, artist_user)
    await user_service.deposit(db_session, client_user.user_id, 2_000)

    ticket = await change_service.create_change_ticket(
        db_session, contract.contract_id, client_user.user_id,
        ChangeSet(description="Switch to a night scene"),
    )
    ticket = await change_service.respond_as_artist(
        db_session, ticket.ticket_id, artist_user.user_id, "propose_fee", 2_000
    )
    assert ticket.status == ChangeTicketStatus.PENDING_CLIENT
    assert ticket.fee_cents == 2_000

    ticket = await change_service.pay_change_fee(
        db_session, ticket.ticket_id, client_user.user_id, SplitPayment(wallet_cents=2_000)
    )
    assert ticket.status == ChangeTicketStatus.PAID
    assert ticket.paid_fee_cents == 2_000

    contract = await contract_service.load_contract(db_session, contract.contract_id)
    assert contract.contract_version == 2
    assert contract.runtime_fees_cents == 2_000


@pytest.mark.asyncio
async def test_client_rejects_fee(
    db_session: AsyncSession, parties: tuple[TestUser, TestUser]
) -> None:
    client_user, artist_user = parties
    contract = await _changeable(db_session, client_user, artist_user)
    ticket = await change_service.create_change_ticket(
        db_session, contract.contract_id, client_user.user_id, ChangeSet(description="More detail")
    )
    await change_service.respond_as_artist(
        db_session, ticket.ticket_id, artist_user.user_id, "propose_fee", 900
    )
    ticket = await change_service.reject_change_fee(db_session, ticket.ticket_id, client_user.user_id)
    assert ticket.status == ChangeTicketStatus.REJECTED_CLIENT

    contract = await contract_service.load_contract(db_session, contract.contract_id)
    assert contract.contract_version == 1

    # A new change can be proposed once the old one is closed.
    await change_service.create_change_ticket(
        db_session, contract.contract_id, client_user.user_id, ChangeSet(description="Less detail")
    )


@pytest.mark.asyncio
async def test_artist_rejects_change(
    db_session: AsyncSession, parties: tuple[TestUser, TestUser]
) -> None:
    client_user, artist_user = parties
    contract = await _changeable(db_session, client_user, artist_user)
    ticket = await change_service.create_change_ticket(
        db_session, contract.contract_id, client_user.user_id, ChangeSet(description="Different style")
    )
    ticket = await change_service.respond_as_artist(
        db_session, ticket.ticket_id, artist_user.user_id, "reject"
    )
    assert ticket.status == ChangeTicketStatus.REJECTED_ARTIST


@pytest.mark.asyncio
async def test_one_pending_change_per_contract(
    db_session: AsyncSession, parties: tuple[TestUser, TestUser]
) -> None:
    client_user, artist_user = parties
    contract = await _changeable(db_session, client_user, artist_user)
    await change_service.create_change_ticket(
        db_session, contract.contract_id, client_user.user_id, ChangeSet(description="one")
    )
    with pytest.raises(DuplicateAction):
        await change_service.create_change_ticket(
            db_session, contract.contract_id, client_user.user_id, ChangeSet(description="two")
        )


@pytest.mark.asyncio
async def test_client_withdraws_change(
    db_session: AsyncSession, parties: tuple[TestUser, TestUser]
) -> None:
    client_user, artist_user = parties
    contract = await _changeable(db_session, client_user, artist_user)
    ticket = await change_service.create_change_ticket(
        db_session, contract.contract_id, client_user.user_id, ChangeSet(description="oops")
    )
    ticket = await change_service.cancel_change_ticket(db_session, ticket.ticket_id, client_user.user_id)
    assert ticket.status == ChangeTicketStatus.CANCELLED
    with pytest.raises(InvalidState):
        await change_service.cancel_change_ticket(db_session, ticket.ticket_id, client_user.user_id)


@pytest.mark.asyncio
async def test_change_rules(db_session: AsyncSession, parties: tuple[TestUser, TestUser]) -> None:
    client_user, artist_user = parties
    locked = await make_contract(db_session, client_user, artist_user)
    with pytest.raises(InvalidState):
        await change_service.create_change_ticket(
            db_session, locked.contract_id, client_user.user_id, ChangeSet(description="x")
        )

    contract = await _changeable(db_session, client_user, artist_user)
    with pytest.raises(InvalidState):
        await change_service.create_change_ticket(
            db_session, contract.contract_id, client_user.user_id,
            ChangeSet(reference_images=["https://cdn.example.com/ref.png"]),
        )
    with pytest.raises(InvalidState):
        await change_service.create_change_ticket(
            db_session, contract.contract_id, client_user.user_id,
            ChangeSet(deadline_at=datetime.now(UTC) - timedelta(days=1)),
        )
    with pytest.raises(InvalidState):
        await change_service.create_change_ticket(
            db_session, contract.contract_id, client_user.user_id, ChangeSet()
        )


@pytest.mark.asyncio
async def test_expired_change_ticket(
    db_session: AsyncSession, parties: tuple[TestUser, TestUser]
) -> None:
    client_user, artist_user = parties
    contract = await _changeable(db_session, client_user, artist_user)
    ticket = await change_service.create_change_ticket(
        db_session, contract.contract_id, client_user.user_id, ChangeSet(description="late")
    )
    later = ticket.expires_at + timedelta(seconds=1)
    assert await change_service.expire_ticket(db_session, ticket.ticket_id, later) is True
    await db_session.commit()
    assert await change_service.expire_ticket(db_session, ticket.ticket_id, later) is False


@pytest.mark.asyncio
async def test_change_api(client: AsyncClient, db_session: AsyncSession) -> None:
    client_user = await make_user(db_session)
    artist_user = await make_user(db_session)
    contract = await _changeable(db_session, client_user, artist_user)
    path = f"/contracts/{contract.contract_id}/tickets/change"

    resp = await send(client, client_user, "POST", path, {"change_set": {"description": "Bigger"}})
    assert resp.status_code == 201
    ticket_id = resp.json()["ticket_id"]

    resp = await send(
        client, artist_user, "POST", f"/tickets/change/{ticket_id}/respond", {"action": "propose_fee"}
    )
    assert resp.status_code == 422

    resp = await send(
        client, artist_user, "POST", f"/tickets/change/{ticket_id}/respond",
        {"action": "propose_fee", "fee_cents": 800},
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "pending_client"

    resp = await send(client, client_user, "POST", f"/tickets/change/{ticket_id}/reject-fee")
    assert resp.status_code == 200
    assert resp.json()["status"] == "rejected_client"
