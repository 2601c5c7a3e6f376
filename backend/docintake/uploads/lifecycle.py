"""
Upload lifecycle use cases outside finalize: requesting an upload slot,
user deletion, and expiring abandoned pending uploads.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docintake.core.config import settings
from docintake.core.constants import ContentType, UploadStatus
from docintake.core.errors import InvalidStateTransition, NotFound
from docintake.core.logging import get_logger
from docintake.repositories import uploads as upload_repository

logger = get_logger(__name__)


class SelectedUploadPreferences(Protocol):
    """External store of the owner's "selected upload" preference."""

    async def clear_selected_upload(self, db: AsyncSession, *, owner_id: str, upload_id: uuid.UUID) -> None: ...


class NoopSelectedUploadPreferences:
    """Used when no preference store is wired in."""

    async def clear_selected_upload(self, db: AsyncSession, *, owner_id: str, upload_id: uuid.UUID) -> None:
        logger.debug("No preference store configured", owner_id=owner_id, upload_id=str(upload_id))


@dataclass(frozen=True)
class InitUploadResult:
    external_id: uuid.UUID
    object_key: str
    process_id: uuid.UUID


class UploadLifecycle:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        preferences: SelectedUploadPreferences | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.preferences = preferences or NoopSelectedUploadPreferences()

    async def init_upload(
        self,
        *,
        owner_id: str,
        filename: str,
        content_type: ContentType,
    ) -> InitUploadResult:
        """Create the `pending` record and hand out the ids for the upload."""
        external_id = uuid.uuid4()
        process_id = uuid.uuid4()
        object_key = f"{settings.UPLOAD_DIRECTORY}/{external_id}"

        async with self.session_factory() as session, session.begin():
            await upload_repository.create_pending_upload(
                session,
                owner_id=owner_id,
                filename=filename,
                content_type=ContentType(content_type).value,
                object_key=object_key,
                bucket=settings.STORAGE_BUCKET_NAME,
                external_id=external_id,
            )

        logger.info(
            "Pending upload record created",
            external_id=str(external_id),
            process_id=str(process_id),
            object_key=object_key,
            owner_id=owner_id,
        )
        return InitUploadResult(external_id=external_id, object_key=object_key, process_id=process_id)

    async def delete_upload(self, *, external_id: uuid.UUID, owner_id: str) -> UploadStatus:
        """
        Mark the owner's upload `deleted-by-user` and clear any preference
        pointing at it.  NotFound if absent, not owned, or already deleted.
        """
        async with self.session_factory() as session, session.begin():
            upload = await upload_repository.get_upload_by_external_id(session, external_id, owner_id=owner_id)
            if upload is None:
                raise NotFound("Upload not found", external_id=str(external_id))
            try:
                await upload_repository.mark_deleted_by_user(session, upload)
            except InvalidStateTransition as exc:
                raise NotFound("Upload not found", external_id=str(external_id)) from exc
            await self.preferences.clear_selected_upload(session, owner_id=owner_id, upload_id=upload.id)

        return UploadStatus.DELETED_BY_USER

    async def expire_stale_pending_uploads(self, *, limit: int | None = None, now: datetime | None = None) -> int:
        """Mark pending uploads older than the upload timeout as failed.  Returns how many."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=settings.UPLOAD_TIMEOUT_SECONDS)
        limit = limit or settings.PENDING_UPLOAD_BATCH_LIMIT

        async with self.session_factory() as session:
            stale = await upload_repository.find_stale_pending_uploads(session, cutoff, limit)

        if not stale:
            logger.debug("No stale pending uploads found", cutoff=cutoff.isoformat())
            return 0

        logger.info("Processing stale pending uploads", count=len(stale))
        expired = 0
        for candidate in stale:
            try:
                async with self.session_factory() as session, session.begin():
                    upload = await upload_repository.get_upload_by_id(session, candidate.id)
                    if upload is None:
                        continue
                    was_pending = not upload.is_terminal()
                    await upload_repository.mark_failed(session, upload)
                    if was_pending:
                        expired += 1
            except InvalidStateTransition as exc:
                # A finalize committed first
                logger.info("Stale upload finalized concurrently", **exc.context())
        return expired
