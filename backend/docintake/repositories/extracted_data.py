"""
Extracted-data repository — structured extraction results per upload.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from docintake.db.models.extracted_data import ExtractedData
from docintake.db.models.outbox_entry import OutboxEntry


async def save_extracted_data(
    db: AsyncSession,
    *,
    entry: OutboxEntry,
    data: dict[str, Any],
) -> ExtractedData:
    """Persist the worker's result for the process that `entry` belongs to."""
    record = ExtractedData(
        upload_id=entry.upload_id,
        process_id=entry.process_id,
        owner_id=entry.owner_id,
        data=data,
    )
    db.add(record)
    await db.flush()
    return record


async def get_extracted_data_for_upload(db: AsyncSession, upload_id: uuid.UUID) -> ExtractedData | None:
    """Most recent extraction result for an upload."""
    stmt = (
        select(ExtractedData)
        .where(ExtractedData.upload_id == upload_id)
        .order_by(ExtractedData.created_at.desc())
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()
