"""Upload lifecycle request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from docintake.core.constants import ContentType, OutboxStatus, UploadStatus


class InitUploadRequest(BaseModel):
    """Request payload for reserving an upload slot."""

    filename: str = Field(..., min_length=1, max_length=500)
    content_type: ContentType


class InitUploadResponse(BaseModel):
    external_id: UUID
    object_key: str
    process_id: UUID


class FinalizeUploadRequest(BaseModel):
    """Sent once the bytes are stored at `object_key`."""

    external_id: UUID
    process_id: UUID
    size: int = Field(..., gt=0)
    content_hash: str = Field(..., min_length=1, max_length=128)
    extracted_text: str = Field(..., min_length=1)


class FinalizeUploadResponse(BaseModel):
    external_id: UUID
    process_id: UUID
    status: UploadStatus
    existing_file_id: UUID | None = None


class DeleteUploadResponse(BaseModel):
    external_id: UUID
    status: Literal["deleted-by-user"] = UploadStatus.DELETED_BY_USER.value


class UploadItem(BaseModel):
    """One entry of the owner's upload list."""

    external_id: UUID
    filename: str
    content_type: ContentType
    status: UploadStatus
    size: int | None
    parse_status: OutboxStatus
    created_at: datetime
    updated_at: datetime


class UploadListResponse(BaseModel):
    uploads: list[UploadItem]
    total: int
    limit: int
    offset: int


class RawTextResponse(BaseModel):
    raw_text: str


class ReportOutcomeRequest(BaseModel):
    """Worker callback payload."""

    status: Literal["completed", "failed", "not-a-cv"]
    data: dict[str, Any] | None = None
    error: str | None = None

    @model_validator(mode="after")
    def require_data_when_completed(self) -> "ReportOutcomeRequest":
        if self.status == "completed" and not self.data:
            raise ValueError("data is required when status is completed")
        return self


class ReportOutcomeResponse(BaseModel):
    process_id: UUID
    status: OutboxStatus
    duplicate: bool = False
