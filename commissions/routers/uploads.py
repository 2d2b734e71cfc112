"""Upload endpoints: artist submissions and client review."""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from commissions.auth.middleware import AuthenticatedUser, verify_request
from commissions.database import get_db
from commissions.models.upload import UploadKind
from commissions.schemas.upload import UploadCreate, UploadResponse, UploadReview
from commissions.services import upload as upload_service

router = APIRouter(tags=["uploads"])


@router.post("/contracts/{contract_id}/uploads", response_model=UploadResponse, status_code=201)
async def create_upload(
    contract_id: uuid.UUID,
    data: UploadCreate,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> UploadResponse:
    """Artist submits progress, a milestone, a revision or the final delivery."""
    upload = await upload_service.create_upload(db, contract_id, auth.user_id, data)
    return UploadResponse.model_validate(upload)


@router.get("/contracts/{contract_id}/uploads", response_model=list[UploadResponse])
async def list_uploads(
    contract_id: uuid.UUID,
    kind: UploadKind | None = Query(None),
    milestone_idx: int | None = Query(None, ge=0),
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> list[UploadResponse]:
    uploads = await upload_service.list_uploads(
        db, contract_id, auth.user_id, kind=kind, milestone_idx=milestone_idx
    )
    return [UploadResponse.model_validate(u) for u in uploads]


@router.get("/uploads/{upload_id}", response_model=UploadResponse)
async def get_upload(
    upload_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> UploadResponse:
    upload = await upload_service.get_upload(db, upload_id, auth.user_id)
    return UploadResponse.model_validate(upload)


@router.post("/uploads/{upload_id}/review", response_model=UploadResponse)
async def review_upload(
    upload_id: uuid.UUID,
    data: UploadReview,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> UploadResponse:
    """Client accepts or rejects a submitted upload."""
    upload = await upload_service.review_upload(db, upload_id, auth.user_id, data.accept)
    return UploadResponse.model_validate(upload)
