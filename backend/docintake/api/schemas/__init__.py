"""API schema package."""

from docintake.api.schemas.uploads import (
    DeleteUploadResponse,
    FinalizeUploadRequest,
    FinalizeUploadResponse,
    InitUploadRequest,
    InitUploadResponse,
    RawTextResponse,
    ReportOutcomeRequest,
    ReportOutcomeResponse,
    UploadItem,
    UploadListResponse,
)

__all__ = [
    "InitUploadRequest",
    "InitUploadResponse",
    "FinalizeUploadRequest",
    "FinalizeUploadResponse",
    "DeleteUploadResponse",
    "UploadItem",
    "UploadListResponse",
    "RawTextResponse",
    "ReportOutcomeRequest",
    "ReportOutcomeResponse",
]
