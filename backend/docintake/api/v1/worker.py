"""
Worker-facing endpoints — called by the extraction worker with the shared
worker token, never by end users.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from docintake.api.deps import get_db, get_status_reporter, require_worker
from docintake.api.schemas.uploads import RawTextResponse, ReportOutcomeRequest, ReportOutcomeResponse
from docintake.core.errors import NotFound
from docintake.repositories import uploads as upload_repository
from docintake.uploads import Completed, Failed, NotACV, OutboxStatusReporter

router = APIRouter(tags=["Worker"], dependencies=[Depends(require_worker)])


@router.get("/worker/uploads/{upload_id}/raw-text", response_model=RawTextResponse)
async def get_raw_text(upload_id: UUID, db: AsyncSession = Depends(get_db)) -> RawTextResponse:
    """Text extracted from the file at finalize time."""
    upload = await upload_repository.get_upload_by_id(db, upload_id)
    if upload is None or upload.raw_text is None:
        raise NotFound("Raw text not found", details={"upload_id": str(upload_id)})
    return RawTextResponse(raw_text=upload.raw_text)


@router.post("/outbox/{process_id}/status", response_model=ReportOutcomeResponse)
async def report_outcome(
    process_id: UUID,
    payload: ReportOutcomeRequest,
    reporter: OutboxStatusReporter = Depends(get_status_reporter),
) -> ReportOutcomeResponse:
    """Record the terminal outcome of a processing attempt."""
    if payload.status == "completed":
        outcome = Completed(data=payload.data)
    elif payload.status == "failed":
        outcome = Failed(message=payload.error or "Processing failed")
    else:
        outcome = NotACV()

    result = await reporter.report_outcome(process_id, outcome)
    return ReportOutcomeResponse(process_id=process_id, status=result.status, duplicate=result.duplicate)
