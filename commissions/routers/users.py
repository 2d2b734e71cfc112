"""User registration, profile and development deposit endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from commissions.auth.middleware import AuthenticatedUser, verify_request
from commissions.config import settings
from commissions.database import get_db
from commissions.errors import Unauthorized
from commissions.schemas.user import DepositRequest, UserCreate, UserResponse
from commissions.schemas.wallet import WalletResponse
from commissions.services import user as user_service

router = APIRouter(prefix="/users", tags=["users"])


@router.post("", response_model=UserResponse, status_code=201)
async def register_user(
    data: UserCreate,
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    """Register a user with their Ed25519 public key."""
    user = await user_service.register_user(db, data)
    return UserResponse.model_validate(user)


@router.get("/me", response_model=UserResponse)
async def get_me(auth: AuthenticatedUser = Depends(verify_request)) -> UserResponse:
    return UserResponse.model_validate(auth.user)


@router.post("/me/deposit", response_model=WalletResponse)
async def deposit(
    data: DepositRequest,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> WalletResponse:
    """Add funds to one's own wallet (development/test only).

    Real funding arrives through the payment provider, which is outside
    this service.
    """
    if not settings.dev_deposit_enabled:
        raise Unauthorized("Direct deposits are disabled")
    wallet = await user_service.deposit(db, auth.user_id, data.amount_cents)
    return WalletResponse.model_validate(wallet)
