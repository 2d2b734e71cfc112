"""Explicit reconciliation of the caller's overdue items."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from commissions.auth.middleware import AuthenticatedUser, verify_request
from commissions.database import get_db
from commissions.schemas.contract import ExpirationSummaryResponse
from commissions.services import reconciliation

router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])


@router.post("/sweep", response_model=ExpirationSummaryResponse)
async def sweep_my_contracts(
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> ExpirationSummaryResponse:
    """Reconcile all of the caller's unsettled contracts. Never throttled."""
    summary = await reconciliation.process_all_user_expirations(db, auth.user_id)
    return ExpirationSummaryResponse(**summary.to_dict())
