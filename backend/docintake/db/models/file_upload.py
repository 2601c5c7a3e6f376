"""
FileUpload — one row per user-uploaded file and its lifecycle state.

Created `pending` when an upload slot is requested (before bytes exist),
then finalized to `uploaded`, `deduplicated`, `rejected` or `failed`.
`deleted-by-user` is terminal.

Canonical bookkeeping:
    - `is_canonical` marks the record authoritative for (owner_id, content_hash);
      the partial unique index allows at most one per pair.
    - `canonical_reference` points a deduplicated record at its canonical.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from docintake.core.constants import UploadStatus
from docintake.core.errors import InvariantViolation
from docintake.db.models.base import Base, generate_uuid, utcnow

CANONICAL_INDEX_NAME = "uq_file_uploads_canonical_owner_hash"


class FileUpload(Base):
    __tablename__ = "file_uploads"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=generate_uuid)
    external_id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, nullable=False)
    object_key: Mapped[str] = mapped_column(String(1000), unique=True, nullable=False)
    bucket: Mapped[str] = mapped_column(String(255), nullable=False)
    filename: Mapped[str] = mapped_column(String(500), nullable=False)
    content_type: Mapped[str] = mapped_column(String(20), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # ── Lifecycle ─────────────────────────────
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=UploadStatus.PENDING.value)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # ── Content (set at finalize) ─────────────
    content_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    raw_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    raw_text_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # ── Canonical / dedup ─────────────────────
    is_canonical: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    canonical_reference: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("file_uploads.id"), nullable=True, index=True
    )

    # ── Optimistic concurrency ────────────────
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # ── Timestamps ────────────────────────────
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_file_uploads_owner_status", "owner_id", "status"),
        Index(
            CANONICAL_INDEX_NAME,
            "owner_id",
            "content_hash",
            unique=True,
            postgresql_where=text("is_canonical"),
            sqlite_where=text("is_canonical"),
        ),
        CheckConstraint(
            "NOT (is_canonical AND status = 'deduplicated')",
            name="ck_file_uploads_dedup_not_canonical",
        ),
        CheckConstraint(
            "status <> 'deduplicated' OR canonical_reference IS NOT NULL",
            name="ck_file_uploads_dedup_has_reference",
        ),
        CheckConstraint(
            "canonical_reference IS NULL OR status IN ('deduplicated', 'deleted-by-user')",
            name="ck_file_uploads_reference_only_when_dedup",
        ),
    )

    def is_terminal(self) -> bool:
        """Anything past `pending` is locked for finalize purposes."""
        return self.status != UploadStatus.PENDING

    def check_invariants(self) -> None:
        """Standing constraints, evaluated before every flush."""
        if self.is_canonical and self.status == UploadStatus.DEDUPLICATED:
            raise InvariantViolation(
                "Deduplicated upload cannot be canonical",
                external_id=str(self.external_id),
            )
        if self.status == UploadStatus.DEDUPLICATED and self.canonical_reference is None:
            raise InvariantViolation(
                "Deduplicated upload requires a canonical reference",
                external_id=str(self.external_id),
            )
        if self.canonical_reference is not None and self.status not in (
            UploadStatus.DEDUPLICATED,
            UploadStatus.DELETED_BY_USER,
        ):
            raise InvariantViolation(
                f"Canonical reference not allowed in status {self.status}",
                external_id=str(self.external_id),
            )
        if self.is_canonical and self.content_hash is None:
            raise InvariantViolation(
                "Canonical upload requires a content hash",
                external_id=str(self.external_id),
            )

    def __repr__(self) -> str:
        return f"<FileUpload {self.external_id} owner={self.owner_id} status={self.status} canonical={self.is_canonical}>"
