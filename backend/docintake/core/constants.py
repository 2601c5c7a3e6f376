"""Shared constants and enums used across the application."""

from enum import StrEnum


class UploadStatus(StrEnum):
    """Lifecycle status of an uploaded file."""

    PENDING = "pending"
    UPLOADED = "uploaded"
    DEDUPLICATED = "deduplicated"
    FAILED = "failed"
    REJECTED = "rejected"
    DELETED_BY_USER = "deleted-by-user"


class OutboxStatus(StrEnum):
    """Status of one row in the append-only processing log."""

    PENDING = "pending"
    SENDING = "sending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    NOT_A_CV = "not-a-cv"


class ContentType(StrEnum):
    """Accepted upload formats."""

    PDF = "PDF"
    DOCX = "DOCX"


# ─── Upload state machine ─────────────────────
ALLOWED_UPLOAD_TRANSITIONS: dict[UploadStatus, frozenset[UploadStatus]] = {
    UploadStatus.PENDING: frozenset({
        UploadStatus.UPLOADED,
        UploadStatus.DEDUPLICATED,
        UploadStatus.FAILED,
        UploadStatus.REJECTED,
        UploadStatus.DELETED_BY_USER,
    }),
    UploadStatus.UPLOADED: frozenset({UploadStatus.DELETED_BY_USER}),
    UploadStatus.DEDUPLICATED: frozenset({UploadStatus.DELETED_BY_USER}),
    UploadStatus.FAILED: frozenset({UploadStatus.DELETED_BY_USER}),
    UploadStatus.REJECTED: frozenset({UploadStatus.DELETED_BY_USER}),
    UploadStatus.DELETED_BY_USER: frozenset(),
}

# Statuses an owner still sees in their upload list
VISIBLE_UPLOAD_STATUSES = (
    UploadStatus.PENDING,
    UploadStatus.UPLOADED,
    UploadStatus.DEDUPLICATED,
)


# ─── Outbox state machine ─────────────────────
OUTBOX_TERMINAL_STATUSES = frozenset({
    OutboxStatus.COMPLETED,
    OutboxStatus.FAILED,
    OutboxStatus.NOT_A_CV,
})

ALLOWED_OUTBOX_TRANSITIONS: dict[OutboxStatus, frozenset[OutboxStatus]] = {
    OutboxStatus.PENDING: frozenset({OutboxStatus.SENDING, OutboxStatus.PROCESSING}) | OUTBOX_TERMINAL_STATUSES,
    OutboxStatus.SENDING: frozenset({OutboxStatus.PROCESSING}) | OUTBOX_TERMINAL_STATUSES,
    OutboxStatus.PROCESSING: OUTBOX_TERMINAL_STATUSES,
    OutboxStatus.COMPLETED: frozenset(),
    OutboxStatus.FAILED: frozenset(),
    OutboxStatus.NOT_A_CV: frozenset(),
}
