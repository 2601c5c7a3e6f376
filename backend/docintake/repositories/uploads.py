"""
Upload repository — data access and state machine for the file_uploads table.

Repository rules:
- Every function receives AsyncSession explicitly
- Functions flush, but never commit
- Every status change goes through `_transition`, which enforces
  ALLOWED_UPLOAD_TRANSITIONS; a concurrent writer that committed first
  is detected by the row version and reported as InvalidStateTransition
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from docintake.core.constants import ALLOWED_UPLOAD_TRANSITIONS, VISIBLE_UPLOAD_STATUSES, UploadStatus
from docintake.core.errors import InvalidStateTransition, InvariantViolation
from docintake.core.logging import get_logger
from docintake.db.models.file_upload import FileUpload
from docintake.db.models.outbox_entry import OutboxEntry
from docintake.repositories import outbox as outbox_repository

logger = get_logger(__name__)


def _transition(upload: FileUpload, target: UploadStatus) -> None:
    current = UploadStatus(upload.status)
    if target not in ALLOWED_UPLOAD_TRANSITIONS[current]:
        raise InvalidStateTransition(
            f"Cannot move upload from {current} to {target}",
            external_id=str(upload.external_id),
            current=current.value,
            attempted=target.value,
        )
    upload.status = target.value


async def _flush(db: AsyncSession, upload: FileUpload, attempted: UploadStatus) -> None:
    # Read before flushing: a failed flush rolls back and expires `upload`
    external_id = str(upload.external_id)
    try:
        await db.flush()
    except StaleDataError as exc:
        raise InvalidStateTransition(
            "Upload was modified by a concurrent request",
            external_id=external_id,
            attempted=attempted.value,
        ) from exc


# ─── Reads ────────────────────────────────────


async def get_upload_by_id(db: AsyncSession, upload_id: uuid.UUID) -> FileUpload | None:
    """Fetch an upload by primary key."""
    return await db.get(FileUpload, upload_id)


async def get_upload_by_external_id(
    db: AsyncSession,
    external_id: uuid.UUID,
    *,
    owner_id: str | None = None,
) -> FileUpload | None:
    """Fetch an upload by its client-facing id, optionally scoped to an owner."""
    stmt = select(FileUpload).where(FileUpload.external_id == external_id)
    if owner_id is not None:
        stmt = stmt.where(FileUpload.owner_id == owner_id)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_pending_upload(
    db: AsyncSession,
    external_id: uuid.UUID,
    *,
    owner_id: str | None = None,
) -> FileUpload | None:
    """Fetch and row-lock a `pending` upload; None if absent or already finalized."""
    stmt = (
        select(FileUpload)
        .where(
            FileUpload.external_id == external_id,
            FileUpload.status == UploadStatus.PENDING.value,
        )
        .with_for_update()
    )
    if owner_id is not None:
        stmt = stmt.where(FileUpload.owner_id == owner_id)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def find_canonical_upload(
    db: AsyncSession,
    *,
    owner_id: str,
    content_hash: str,
) -> FileUpload | None:
    """Fetch and row-lock the canonical upload for (owner_id, content_hash), if any."""
    stmt = (
        select(FileUpload)
        .where(
            FileUpload.owner_id == owner_id,
            FileUpload.content_hash == content_hash,
            FileUpload.is_canonical.is_(True),
        )
        .with_for_update()
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def list_visible_uploads(
    db: AsyncSession,
    owner_id: str,
    *,
    offset: int = 0,
    limit: int = 10,
) -> list[FileUpload]:
    """Owner's pending/uploaded/deduplicated uploads, newest first."""
    stmt = (
        select(FileUpload)
        .where(
            FileUpload.owner_id == owner_id,
            FileUpload.status.in_([s.value for s in VISIBLE_UPLOAD_STATUSES]),
        )
        .order_by(FileUpload.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def count_visible_uploads(db: AsyncSession, owner_id: str) -> int:
    stmt = select(func.count()).select_from(FileUpload).where(
        FileUpload.owner_id == owner_id,
        FileUpload.status.in_([s.value for s in VISIBLE_UPLOAD_STATUSES]),
    )
    result = await db.execute(stmt)
    return int(result.scalar_one())


async def find_stale_pending_uploads(
    db: AsyncSession,
    cutoff: datetime,
    limit: int,
) -> list[FileUpload]:
    """Pending uploads created before `cutoff`, oldest first."""
    stmt = (
        select(FileUpload)
        .where(
            FileUpload.status == UploadStatus.PENDING.value,
            FileUpload.created_at < cutoff,
        )
        .order_by(FileUpload.created_at.asc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


# ─── Writes ───────────────────────────────────


async def create_pending_upload(
    db: AsyncSession,
    *,
    owner_id: str,
    filename: str,
    content_type: str,
    object_key: str,
    bucket: str,
    external_id: uuid.UUID | None = None,
) -> FileUpload:
    """Create the `pending` record for a requested upload slot."""
    upload = FileUpload(
        external_id=external_id or uuid.uuid4(),
        object_key=object_key,
        bucket=bucket,
        filename=filename.strip(),
        content_type=content_type,
        owner_id=owner_id,
        status=UploadStatus.PENDING.value,
        is_canonical=False,
    )
    db.add(upload)
    await db.flush()
    return upload


async def mark_uploaded(
    db: AsyncSession,
    upload: FileUpload,
    *,
    process_id: uuid.UUID,
    object_key: str,
    content_hash: str,
    size: int,
    raw_text: str | None = None,
    is_canonical: bool = True,
) -> OutboxEntry:
    """
    pending → uploaded, plus the first `pending` outbox row for `process_id`.

    Both writes share the caller's transaction: an upload is never
    `uploaded` without an associated processing request.
    """
    _transition(upload, UploadStatus.UPLOADED)
    upload.object_key = object_key
    upload.content_hash = content_hash
    upload.size = size
    upload.is_canonical = is_canonical
    _set_raw_text(upload, raw_text)
    await _flush(db, upload, UploadStatus.UPLOADED)

    entry = await outbox_repository.create_outbox(db, upload=upload, process_id=process_id)
    logger.info(
        "Upload marked uploaded",
        external_id=str(upload.external_id),
        process_id=str(process_id),
        is_canonical=is_canonical,
    )
    return entry


async def mark_deduplicated(
    db: AsyncSession,
    upload: FileUpload,
    *,
    canonical: FileUpload,
    content_hash: str,
    size: int,
    raw_text: str | None = None,
) -> FileUpload:
    """pending → deduplicated, pointing at `canonical` (which must hold the flag)."""
    if not canonical.is_canonical:
        raise InvariantViolation(
            "Deduplication target is not canonical",
            external_id=str(upload.external_id),
            details={"canonical_external_id": str(canonical.external_id)},
        )
    if canonical.id == upload.id:
        raise InvariantViolation(
            "Upload cannot be deduplicated against itself",
            external_id=str(upload.external_id),
        )
    _transition(upload, UploadStatus.DEDUPLICATED)
    upload.canonical_reference = canonical.id
    upload.content_hash = content_hash
    upload.size = size
    upload.is_canonical = False
    _set_raw_text(upload, raw_text)
    await _flush(db, upload, UploadStatus.DEDUPLICATED)
    logger.info(
        "Upload marked deduplicated",
        external_id=str(upload.external_id),
        canonical_external_id=str(canonical.external_id),
    )
    return upload


async def mark_failed(db: AsyncSession, upload: FileUpload) -> FileUpload:
    """pending → failed.  A no-op on any record already past `pending`."""
    if upload.is_terminal():
        logger.info(
            "Upload already terminal, not marking failed",
            external_id=str(upload.external_id),
            status=upload.status,
        )
        return upload
    _transition(upload, UploadStatus.FAILED)
    await _flush(db, upload, UploadStatus.FAILED)
    logger.info("Upload marked failed", external_id=str(upload.external_id))
    return upload


async def mark_rejected(
    db: AsyncSession,
    upload: FileUpload,
    *,
    reason: str,
    size: int | None = None,
) -> FileUpload:
    """pending → rejected, recording why."""
    _transition(upload, UploadStatus.REJECTED)
    upload.rejection_reason = reason
    if size is not None:
        upload.size = size
    await _flush(db, upload, UploadStatus.REJECTED)
    logger.info("Upload rejected", external_id=str(upload.external_id), reason=reason)
    return upload


async def mark_deleted_by_user(db: AsyncSession, upload: FileUpload) -> FileUpload:
    """Any non-deleted status → deleted-by-user (terminal)."""
    _transition(upload, UploadStatus.DELETED_BY_USER)
    await _flush(db, upload, UploadStatus.DELETED_BY_USER)
    logger.info("Upload deleted by user", external_id=str(upload.external_id))
    return upload


async def revoke_canonical(db: AsyncSession, upload: FileUpload) -> FileUpload:
    """Clear `is_canonical` on a record being replaced.  Status is untouched."""
    upload.is_canonical = False
    await _flush(db, upload, UploadStatus(upload.status))
    logger.info(
        "Canonical flag revoked",
        external_id=str(upload.external_id),
        status=upload.status,
    )
    return upload


async def repoint_duplicates(
    db: AsyncSession,
    *,
    previous: FileUpload,
    canonical: FileUpload,
) -> int:
    """Move `deduplicated` records referencing `previous` over to `canonical`.  Returns how many."""
    if not canonical.is_canonical:
        raise InvariantViolation(
            "Duplicates can only reference a canonical upload",
            external_id=str(canonical.external_id),
        )
    stmt = select(FileUpload).where(
        FileUpload.canonical_reference == previous.id,
        FileUpload.status == UploadStatus.DEDUPLICATED.value,
    )
    duplicates = list((await db.execute(stmt)).scalars().all())
    for duplicate in duplicates:
        duplicate.canonical_reference = canonical.id
    if duplicates:
        await _flush(db, canonical, UploadStatus.UPLOADED)
        logger.info(
            "Duplicates moved to new canonical",
            previous_external_id=str(previous.external_id),
            canonical_external_id=str(canonical.external_id),
            count=len(duplicates),
        )
    return len(duplicates)


def _set_raw_text(upload: FileUpload, raw_text: str | None) -> None:
    if raw_text is None:
        return
    upload.raw_text = raw_text
    upload.raw_text_size = len(raw_text.encode("utf-8"))
