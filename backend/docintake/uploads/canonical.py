"""
CanonicalResolver — decides, per (owner_id, content_hash), whether a
finalized upload becomes canonical or is deduplicated.

Resolution rules for an existing canonical record:
    pending, uploaded                      → BLOCKING     (deduplicate)
    failed, rejected, deleted-by-user      → REPLACEABLE  (take over the flag)
    deduplicated                           → IGNORED      (never consulted)

"Currently canonical" is not held in memory: it is the `is_canonical` flag
guarded by the partial unique index, read and written inside the caller's
transaction.  A unique-index violation while claiming is reported as
TransientConflict; `run_with_conflict_retry` re-runs the whole
transaction once before letting it surface.  A process id that already
has outbox rows is the caller's fault and is not retried.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from docintake.core.constants import UploadStatus
from docintake.core.errors import InvalidStateTransition, InvariantViolation, TransientConflict
from docintake.core.logging import get_logger
from docintake.db.models.file_upload import CANONICAL_INDEX_NAME, FileUpload
from docintake.repositories import outbox as outbox_repository
from docintake.repositories import uploads as upload_repository

logger = get_logger(__name__)

T = TypeVar("T")

CLAIM_ATTEMPTS = 2


class CanonicalPolicy(StrEnum):
    BLOCKING = "blocking"
    REPLACEABLE = "replaceable"
    IGNORED = "ignored"


def classify_canonical_status(status: UploadStatus | str) -> CanonicalPolicy:
    """Dedup behavior of an existing canonical record in `status`."""
    match UploadStatus(status):
        case UploadStatus.PENDING | UploadStatus.UPLOADED:
            return CanonicalPolicy.BLOCKING
        case UploadStatus.FAILED | UploadStatus.REJECTED | UploadStatus.DELETED_BY_USER:
            return CanonicalPolicy.REPLACEABLE
        case UploadStatus.DEDUPLICATED:
            return CanonicalPolicy.IGNORED
    raise InvariantViolation(f"No canonical policy for upload status {status!r}")


class ResolutionKind(StrEnum):
    BECOME_CANONICAL = "become_canonical"
    DEDUPLICATE = "deduplicate"


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving one upload against its owner's existing content."""

    kind: ResolutionKind
    # DEDUPLICATE: the authoritative record.  BECOME_CANONICAL: the record
    # whose flag must be revoked first, or None.
    other: FileUpload | None = None

    @classmethod
    def become_canonical(cls, previous: FileUpload | None = None) -> "Resolution":
        return cls(ResolutionKind.BECOME_CANONICAL, previous)

    @classmethod
    def deduplicate(cls, canonical: FileUpload) -> "Resolution":
        return cls(ResolutionKind.DEDUPLICATE, canonical)

    @property
    def is_deduplicate(self) -> bool:
        return self.kind == ResolutionKind.DEDUPLICATE


def is_canonical_conflict(exc: IntegrityError) -> bool:
    """True when `exc` came from the partial unique index on canonical uploads."""
    message = str(exc.orig)
    return CANONICAL_INDEX_NAME in message or (
        "file_uploads.owner_id" in message and "file_uploads.content_hash" in message
    )


class CanonicalResolver:
    """Resolves and claims canonical status inside the caller's transaction."""

    async def resolve(
        self,
        db: AsyncSession,
        upload: FileUpload,
        content_hash: str,
    ) -> Resolution:
        existing = await upload_repository.find_canonical_upload(
            db,
            owner_id=upload.owner_id,
            content_hash=content_hash,
        )

        if existing is None or existing.id == upload.id:
            resolution = Resolution.become_canonical()
        else:
            policy = classify_canonical_status(existing.status)
            if policy is CanonicalPolicy.BLOCKING:
                resolution = Resolution.deduplicate(existing)
            elif policy is CanonicalPolicy.REPLACEABLE:
                resolution = Resolution.become_canonical(previous=existing)
            else:
                # The constraints make this unreachable; ignore it rather than
                # deduplicate against a non-authoritative record.
                logger.warning(
                    "Deduplicated record holds canonical flag, ignoring",
                    canonical_external_id=str(existing.external_id),
                )
                resolution = Resolution.become_canonical()

        logger.info(
            "Canonical resolved",
            external_id=str(upload.external_id),
            owner_id=upload.owner_id,
            resolution=resolution.kind.value,
            other_external_id=str(resolution.other.external_id) if resolution.other else None,
        )
        return resolution

    async def release_previous(self, db: AsyncSession, resolution: Resolution) -> None:
        """Revoke the replaced record's flag before the new one is granted."""
        if resolution.kind == ResolutionKind.BECOME_CANONICAL and resolution.other is not None:
            await upload_repository.revoke_canonical(db, resolution.other)

    async def adopt_duplicates(self, db: AsyncSession, resolution: Resolution, canonical: FileUpload) -> None:
        """Point the replaced record's duplicates at the newly flagged canonical."""
        if resolution.kind == ResolutionKind.BECOME_CANONICAL and resolution.other is not None:
            await upload_repository.repoint_duplicates(db, previous=resolution.other, canonical=canonical)

    async def run_with_conflict_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        external_id: str | None = None,
    ) -> T:
        """
        Run `operation` (one full transaction), converting a canonical
        unique-index violation into TransientConflict and retrying once.
        """
        for attempt in range(1, CLAIM_ATTEMPTS + 1):
            try:
                return await operation()
            except IntegrityError as exc:
                if outbox_repository.is_transition_conflict(exc):
                    raise InvalidStateTransition(
                        "Process id is already in use",
                        external_id=external_id,
                        attempted=UploadStatus.UPLOADED.value,
                    ) from exc
                if not is_canonical_conflict(exc):
                    raise InvariantViolation(
                        "Write rejected by database constraint",
                        external_id=external_id,
                        details={"constraint_error": str(exc.orig)},
                    ) from exc
                conflict = TransientConflict(
                    "Concurrent canonical claim for the same content",
                    external_id=external_id,
                    details={"attempt": attempt},
                )
                if attempt == CLAIM_ATTEMPTS:
                    logger.error("Canonical claim conflict persisted", **conflict.context())
                    raise conflict from exc
                logger.warning("Canonical claim conflict, retrying", **conflict.context())
        raise AssertionError("unreachable")
