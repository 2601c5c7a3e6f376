"""
Upload endpoints — the two-phase upload flow, deletion and listing.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from docintake.api.deps import (
    get_current_owner,
    get_db,
    get_upload_finalizer,
    get_upload_lifecycle,
)
from docintake.api.schemas.uploads import (
    DeleteUploadResponse,
    FinalizeUploadRequest,
    FinalizeUploadResponse,
    InitUploadRequest,
    InitUploadResponse,
    UploadItem,
    UploadListResponse,
)
from docintake.core.constants import OutboxStatus
from docintake.repositories import outbox as outbox_repository
from docintake.repositories import uploads as upload_repository
from docintake.uploads import UploadFinalizer, UploadLifecycle

router = APIRouter(prefix="/uploads", tags=["Uploads"])


# ─── Init ─────────────────────────────────────────────────
@router.post("/init", response_model=InitUploadResponse, status_code=status.HTTP_201_CREATED)
async def init_upload(
    payload: InitUploadRequest,
    owner_id: str = Depends(get_current_owner),
    lifecycle: UploadLifecycle = Depends(get_upload_lifecycle),
) -> InitUploadResponse:
    """Reserve an object key and create the pending upload record."""
    result = await lifecycle.init_upload(
        owner_id=owner_id,
        filename=payload.filename,
        content_type=payload.content_type,
    )
    return InitUploadResponse(
        external_id=result.external_id,
        object_key=result.object_key,
        process_id=result.process_id,
    )


# ─── Finalize ─────────────────────────────────────────────
@router.post("/finalize", response_model=FinalizeUploadResponse)
async def finalize_upload(
    payload: FinalizeUploadRequest,
    owner_id: str = Depends(get_current_owner),
    finalizer: UploadFinalizer = Depends(get_upload_finalizer),
) -> FinalizeUploadResponse:
    """
    Complete an upload once the bytes are stored.

    Returns `deduplicated` with `existing_file_id` when the owner already has
    the same content, `rejected` when the file is too large, otherwise
    `uploaded` with processing queued under `process_id`.
    """
    result = await finalizer.finalize(
        external_id=payload.external_id,
        process_id=payload.process_id,
        size=payload.size,
        content_hash=payload.content_hash,
        extracted_text=payload.extracted_text,
        owner_id=owner_id,
    )
    return FinalizeUploadResponse(
        external_id=result.external_id,
        process_id=result.process_id,
        status=result.status,
        existing_file_id=result.existing_file_id,
    )


# ─── Delete ───────────────────────────────────────────────
@router.delete("/{external_id}", response_model=DeleteUploadResponse)
async def delete_upload(
    external_id: UUID,
    owner_id: str = Depends(get_current_owner),
    lifecycle: UploadLifecycle = Depends(get_upload_lifecycle),
) -> DeleteUploadResponse:
    await lifecycle.delete_upload(external_id=external_id, owner_id=owner_id)
    return DeleteUploadResponse(external_id=external_id)


# ─── List ─────────────────────────────────────────────────
@router.get("", response_model=UploadListResponse)
async def list_uploads(
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    owner_id: str = Depends(get_current_owner),
    db: AsyncSession = Depends(get_db),
) -> UploadListResponse:
    """The owner's visible uploads, newest first, with their processing status."""
    uploads = await upload_repository.list_visible_uploads(db, owner_id, offset=offset, limit=limit)
    total = await upload_repository.count_visible_uploads(db, owner_id)
    parse_statuses = await outbox_repository.latest_status_by_upload(db, [u.id for u in uploads])

    return UploadListResponse(
        uploads=[
            UploadItem(
                external_id=u.external_id,
                filename=u.filename,
                content_type=u.content_type,
                status=u.status,
                size=u.size,
                parse_status=parse_statuses.get(u.id, OutboxStatus.PENDING),
                created_at=u.created_at,
                updated_at=u.updated_at,
            )
            for u in uploads
        ],
        total=total,
        limit=limit,
        offset=offset,
    )
