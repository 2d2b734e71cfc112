"""Test configuration and fixtures.

Each test gets a fresh in-memory SQLite database (aiosqlite), so tests are
independent and safe under pytest-xdist (pytest -n auto). Redis is replaced
by an AsyncMock that honours SET NX, which is all the app uses it for.
"""

import json
import uuid
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient, Response
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from commissions.config import settings
from commissions.database import Base, get_db
from commissions.main import app
from commissions.models.contract import Contract
from commissions.models.user import User
from commissions.redis import get_redis
from commissions.schemas.contract import ProposalSnapshot
from commissions.schemas.user import UserCreate
from commissions.services import contract as contract_service
from commissions.services import user as user_service
from commissions.utils.crypto import generate_keypair, generate_nonce, sign_request


# ---------------------------------------------------------------------------
# Database and Redis
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_settings() -> None:
    """Snapshot settings before each test and restore after to prevent mutation bleed."""
    original = settings.model_dump()
    object.__setattr__(settings, "dev_deposit_enabled", True)
    yield  # type: ignore[misc]
    for key, value in original.items():
        object.__setattr__(settings, key, value)


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        settings.test_database_url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_redis() -> AsyncMock:
    """AsyncMock standing in for redis.asyncio.Redis; SET NX fails on a live key."""
    keys: dict[str, Any] = {}

    def _set(key: str, value: Any, nx: bool = False, ex: int | None = None) -> bool | None:
        if nx and key in keys:
            return None
        keys[key] = value
        return True

    redis = AsyncMock()
    redis.set.side_effect = _set
    redis.keys_store = keys
    return redis


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession, fake_redis: AsyncMock
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP test client with overridden DB and Redis dependencies."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    async def override_get_redis() -> AsyncGenerator[AsyncMock, None]:
        yield fake_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@dataclass
class TestUser:
    __test__ = False

    user_id: uuid.UUID
    private_key: str
    username: str


async def make_user(
    db: AsyncSession,
    username: str | None = None,
    balance_cents: int = 0,
    is_admin: bool = False,
) -> TestUser:
    """Register a user with a fresh keypair, optionally funded or made admin."""
    priv, pub = generate_keypair()
    username = username or f"user_{uuid.uuid4().hex[:10]}"
    user = await user_service.register_user(db, UserCreate(username=username, public_key=pub))
    if balance_cents:
        await user_service.deposit(db, user.user_id, balance_cents)
    if is_admin:
        row = await db.get(User, user.user_id)
        row.is_admin = True
        await db.commit()
    return TestUser(user_id=user.user_id, private_key=priv, username=username)


def encode_body(body: bytes | dict | list | None) -> bytes:
    if body is None:
        return b""
    if isinstance(body, bytes):
        return body
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode()


def make_auth_headers(
    user_id: uuid.UUID | str,
    private_key_hex: str,
    method: str,
    path: str,
    body: bytes | dict | list | None = None,
    nonce: str | None = None,
    timestamp: str | None = None,
) -> dict[str, str]:
    """Build signed auth headers for a request."""
    timestamp = timestamp or datetime.now(UTC).isoformat()
    nonce = nonce or generate_nonce()
    signature = sign_request(private_key_hex, timestamp, method, path, encode_body(body), nonce)
    return {
        "Authorization": f"UserSig {user_id}:{signature}",
        "X-Timestamp": timestamp,
        "X-Nonce": nonce,
    }


async def send(
    client: AsyncClient,
    user: TestUser,
    method: str,
    path: str,
    body: dict | list | None = None,
    params: dict | None = None,
) -> Response:
    """Signed request as user. The body is sent as the exact bytes that were signed."""
    content = encode_body(body)
    headers = make_auth_headers(user.user_id, user.private_key, method, path, content)
    if body is not None:
        headers["Content-Type"] = "application/json"
    return await client.request(method, path, content=content, headers=headers, params=params)


def make_proposal(
    client_user: TestUser,
    artist_user: TestUser,
    total_cents: int = 10_000,
    **overrides: Any,
) -> ProposalSnapshot:
    data: dict[str, Any] = {
        "proposal_id": uuid.uuid4(),
        "artist_id": artist_user.user_id,
        "client_id": client_user.user_id,
        "flow": "standard",
        "total_cents": total_cents,
        "deadline_at": datetime.now(UTC) + timedelta(days=10),
        "grace_days": 7,
        "late_penalty_percent": 10,
        "cancellation_fee": {"kind": "flat", "amount": 500},
        "revision_policy": {"kind": "standard", "free": 1, "limit": 3, "extra_allowed": True, "fee_cents": 1_500},
        "description": "Full-body character illustration",
    }
    data.update(overrides)
    return ProposalSnapshot.model_validate(data)


async def make_contract(
    db: AsyncSession,
    client_user: TestUser,
    artist_user: TestUser,
    total_cents: int = 10_000,
    **overrides: Any,
) -> Contract:
    """Fund the client and finalize a proposal into an active contract."""
    await user_service.deposit(db, client_user.user_id, total_cents)
    proposal = make_proposal(client_user, artist_user, total_cents, **overrides)
    return await contract_service.create_from_proposal(db, client_user.user_id, proposal, total_cents)


MILESTONES_30_30_40 = [
    {"title": "Sketch", "percent": 30},
    {"title": "Line art", "percent": 30},
    {"title": "Colour", "percent": 40},
]


@pytest_asyncio.fixture
async def parties(db_session: AsyncSession) -> tuple[TestUser, TestUser]:
    """(client, artist)"""
    client_user = await make_user(db_session, "client_one")
    artist_user = await make_user(db_session, "artist_one")
    return client_user, artist_user
