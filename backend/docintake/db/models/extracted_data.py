"""
ExtractedData — structured extraction output reported by the worker.

Generic JSON `data` field holds whatever the worker produced.  One row
per processing attempt (unique process_id), linked to the upload.
Written in the same transaction as the `completed` outbox row.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from docintake.db.models.base import Base, JSONType, generate_uuid, utcnow


class ExtractedData(Base):
    __tablename__ = "extracted_data"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=generate_uuid)
    upload_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("file_uploads.id", ondelete="CASCADE"), nullable=False, index=True
    )
    process_id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, nullable=False)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    data: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<ExtractedData upload={self.upload_id} process={self.process_id}>"
