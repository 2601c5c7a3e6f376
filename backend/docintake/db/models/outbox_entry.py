"""
OutboxEntry — append-only processing log, one row per status transition.

Rows are never updated or deleted.  All rows of one processing attempt
share a `process_id`; the newest row (by created_at, then id) is the
process's current status.  The unique (process_id, sequence_status)
constraint rejects duplicate transitions; a partial unique index allows
only one terminal row per process.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from docintake.db.models.base import Base, BigIntPK, utcnow

OUTBOX_TRANSITION_CONSTRAINT = "uq_outbox_entries_process_status"
OUTBOX_TERMINAL_INDEX = "uq_outbox_entries_one_terminal"

_TERMINAL_PREDICATE = text("sequence_status IN ('completed', 'failed', 'not-a-cv')")


class OutboxEntry(Base):
    __tablename__ = "outbox_entries"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    process_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    sequence_status: Mapped[str] = mapped_column(String(20), nullable=False)

    # ── Payload (copied onto every row) ───────
    upload_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("file_uploads.id", ondelete="CASCADE"), nullable=False, index=True
    )
    external_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(20), nullable=False)

    # Only on `failed` rows
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("process_id", "sequence_status", name=OUTBOX_TRANSITION_CONSTRAINT),
        # At most one terminal row per process
        Index(
            OUTBOX_TERMINAL_INDEX,
            "process_id",
            unique=True,
            postgresql_where=_TERMINAL_PREDICATE,
            sqlite_where=_TERMINAL_PREDICATE,
        ),
        Index("ix_outbox_entries_process_created", "process_id", "created_at"),
        Index("ix_outbox_entries_status_created", "sequence_status", "created_at"),
    )

    def queue_message(self) -> dict[str, str]:
        """Payload handed to the extraction queue for this process."""
        return {
            "upload_id": str(self.upload_id),
            "external_id": str(self.external_id),
            "process_id": str(self.process_id),
            "owner_id": self.owner_id,
            "content_type": self.content_type,
        }

    def __repr__(self) -> str:
        return f"<OutboxEntry process={self.process_id} status={self.sequence_status}>"
