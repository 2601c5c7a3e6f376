"""
Outbox repository — append-only processing log (outbox_entries table).

The only write operations are `create_outbox` (first `pending` row) and
`append_transition` (one new row per status change).  There is no update
or delete; the ORM guards and the database reject them.

Repository rules:
- Every function receives AsyncSession explicitly
- Functions flush, but never commit
- A duplicate transition, or a second terminal row, surfaces as sqlalchemy
  IntegrityError; callers decide how to treat it (`is_transition_conflict`)
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from docintake.core.constants import ALLOWED_OUTBOX_TRANSITIONS, OutboxStatus
from docintake.core.errors import InvalidStateTransition
from docintake.db.models.file_upload import FileUpload
from docintake.db.models.outbox_entry import OUTBOX_TERMINAL_INDEX, OUTBOX_TRANSITION_CONSTRAINT, OutboxEntry


def is_transition_conflict(exc: IntegrityError) -> bool:
    """
    True when `exc` came from a concurrent writer advancing the same
    process: the (process_id, sequence_status) constraint or the
    one-terminal-row index.
    """
    message = str(exc.orig)
    return (
        OUTBOX_TRANSITION_CONSTRAINT in message
        or OUTBOX_TERMINAL_INDEX in message
        or "outbox_entries.process_id" in message
    )


# ─── Writes ───────────────────────────────────


async def create_outbox(
    db: AsyncSession,
    *,
    upload: FileUpload,
    process_id: uuid.UUID,
) -> OutboxEntry:
    """Insert the initial `pending` row of a processing attempt."""
    entry = OutboxEntry(
        process_id=process_id,
        sequence_status=OutboxStatus.PENDING.value,
        upload_id=upload.id,
        external_id=upload.external_id,
        owner_id=upload.owner_id,
        content_type=upload.content_type,
    )
    db.add(entry)
    await db.flush()
    return entry


async def append_transition(
    db: AsyncSession,
    current: OutboxEntry,
    status: OutboxStatus,
    *,
    error_message: str | None = None,
) -> OutboxEntry:
    """
    Append the row for `current.process_id` moving to `status`.

    `current` must be the newest row of the process; the transition is
    checked against ALLOWED_OUTBOX_TRANSITIONS.
    """
    previous = OutboxStatus(current.sequence_status)
    if status not in ALLOWED_OUTBOX_TRANSITIONS[previous]:
        raise InvalidStateTransition(
            f"Cannot move process from {previous} to {status}",
            process_id=str(current.process_id),
            current=previous.value,
            attempted=status.value,
        )

    entry = OutboxEntry(
        process_id=current.process_id,
        sequence_status=status.value,
        upload_id=current.upload_id,
        external_id=current.external_id,
        owner_id=current.owner_id,
        content_type=current.content_type,
        error_message=error_message if status == OutboxStatus.FAILED else None,
    )
    db.add(entry)
    await db.flush()
    return entry


# ─── Reads ────────────────────────────────────


async def get_current_entry(db: AsyncSession, process_id: uuid.UUID) -> OutboxEntry | None:
    """Newest row of the process, i.e. its current status."""
    stmt = (
        select(OutboxEntry)
        .where(OutboxEntry.process_id == process_id)
        .order_by(OutboxEntry.created_at.desc(), OutboxEntry.id.desc())
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def entries_for_process(db: AsyncSession, process_id: uuid.UUID) -> list[OutboxEntry]:
    """Every row of the process in creation order."""
    stmt = (
        select(OutboxEntry)
        .where(OutboxEntry.process_id == process_id)
        .order_by(OutboxEntry.created_at.asc(), OutboxEntry.id.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def find_pending_logs(db: AsyncSession, limit: int) -> list[OutboxEntry]:
    """
    Oldest-first `pending` rows whose process has not moved on.

    `pending` is always a process's first row, so "newest row is pending"
    is the same as "no other row exists for the process".
    """
    later = aliased(OutboxEntry)
    moved_on = exists().where(
        later.process_id == OutboxEntry.process_id,
        later.sequence_status != OutboxStatus.PENDING.value,
    )
    stmt = (
        select(OutboxEntry)
        .where(
            OutboxEntry.sequence_status == OutboxStatus.PENDING.value,
            ~moved_on,
        )
        .order_by(OutboxEntry.created_at.asc(), OutboxEntry.id.asc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def latest_status_by_upload(
    db: AsyncSession,
    upload_ids: Iterable[uuid.UUID],
) -> dict[uuid.UUID, str]:
    """Map upload id → status of its newest outbox row (uploads without rows are absent)."""
    ids = list(upload_ids)
    if not ids:
        return {}
    stmt = (
        select(OutboxEntry.upload_id, OutboxEntry.sequence_status)
        .where(OutboxEntry.upload_id.in_(ids))
        .order_by(OutboxEntry.created_at.desc(), OutboxEntry.id.desc())
    )
    result = await db.execute(stmt)
    statuses: dict[uuid.UUID, str] = {}
    for upload_id, status in result.all():
        statuses.setdefault(upload_id, status)
    return statuses
