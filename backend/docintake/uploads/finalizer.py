"""
UploadFinalizer — phase 2 of the two-phase upload flow.

    1. Load the `pending` record (NotFound if absent or already finalized)
    2. Validate the declared size (over the limit → `rejected`)
    3. Resolve canonical status
         Deduplicate      → mark `deduplicated`, no outbox row
         BecomeCanonical  → revoke the replaced flag, mark `uploaded`,
                            insert OutboxEntry(pending)
    4. After commit: best-effort queue handoff keyed by process_id

Steps 1-3 are one transaction (re-run once on a canonical claim
conflict).  Any exception there leaves the record `pending`, so the client
may retry.  Step 4 never raises.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docintake.core.config import settings
from docintake.core.constants import UploadStatus
from docintake.core.errors import NotFound
from docintake.core.logging import get_logger
from docintake.db.models.outbox_entry import OutboxEntry
from docintake.repositories import uploads as upload_repository
from docintake.uploads.canonical import CanonicalResolver
from docintake.uploads.delivery import OutboxDispatcher

logger = get_logger(__name__)


@dataclass(frozen=True)
class FinalizeResult:
    external_id: uuid.UUID
    process_id: uuid.UUID
    status: UploadStatus
    existing_file_id: uuid.UUID | None = None


class UploadFinalizer:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: OutboxDispatcher,
        *,
        resolver: CanonicalResolver | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.resolver = resolver or CanonicalResolver()

    async def finalize(
        self,
        *,
        external_id: uuid.UUID,
        process_id: uuid.UUID,
        size: int,
        content_hash: str,
        extracted_text: str,
        owner_id: str | None = None,
    ) -> FinalizeResult:
        logger.info(
            "Finalizing upload",
            external_id=str(external_id),
            process_id=str(process_id),
            size=size,
            raw_text_length=len(extracted_text),
        )

        async def _attempt() -> tuple[FinalizeResult, OutboxEntry | None]:
            return await self._commit(
                external_id=external_id,
                process_id=process_id,
                size=size,
                content_hash=content_hash,
                extracted_text=extracted_text,
                owner_id=owner_id,
            )

        result, entry = await self.resolver.run_with_conflict_retry(_attempt, external_id=str(external_id))

        if entry is not None:
            await self.dispatcher.deliver_after_commit(entry)
        return result

    async def _commit(
        self,
        *,
        external_id: uuid.UUID,
        process_id: uuid.UUID,
        size: int,
        content_hash: str,
        extracted_text: str,
        owner_id: str | None,
    ) -> tuple[FinalizeResult, OutboxEntry | None]:
        async with self.session_factory() as session, session.begin():
            upload = await upload_repository.get_pending_upload(session, external_id, owner_id=owner_id)
            if upload is None:
                logger.warning("Pending upload not found", external_id=str(external_id))
                raise NotFound("Pending upload not found", external_id=str(external_id))

            if size > settings.MAX_UPLOAD_SIZE_BYTES:
                await upload_repository.mark_rejected(
                    session,
                    upload,
                    reason=f"File size ({size} bytes) exceeds maximum allowed size ({settings.MAX_UPLOAD_SIZE_BYTES} bytes)",
                    size=size,
                )
                return FinalizeResult(external_id, process_id, UploadStatus.REJECTED), None

            if not settings.dedup_active:
                entry = await upload_repository.mark_uploaded(
                    session,
                    upload,
                    process_id=process_id,
                    object_key=upload.object_key,
                    content_hash=content_hash,
                    size=size,
                    raw_text=extracted_text,
                    is_canonical=False,
                )
                return FinalizeResult(external_id, process_id, UploadStatus.UPLOADED), entry

            resolution = await self.resolver.resolve(session, upload, content_hash)

            if resolution.is_deduplicate:
                canonical = resolution.other
                await upload_repository.mark_deduplicated(
                    session,
                    upload,
                    canonical=canonical,
                    content_hash=content_hash,
                    size=size,
                    raw_text=extracted_text,
                )
                logger.info(
                    "File deduplicated",
                    external_id=str(external_id),
                    existing_file_id=str(canonical.external_id),
                )
                return (
                    FinalizeResult(
                        external_id,
                        process_id,
                        UploadStatus.DEDUPLICATED,
                        existing_file_id=canonical.external_id,
                    ),
                    None,
                )

            await self.resolver.release_previous(session, resolution)
            entry = await upload_repository.mark_uploaded(
                session,
                upload,
                process_id=process_id,
                object_key=upload.object_key,
                content_hash=content_hash,
                size=size,
                raw_text=extracted_text,
                is_canonical=True,
            )
            await self.resolver.adopt_duplicates(session, resolution, upload)

        logger.info("Upload finalized, triggering queue", external_id=str(external_id), process_id=str(process_id))
        return FinalizeResult(external_id, process_id, UploadStatus.UPLOADED), entry
