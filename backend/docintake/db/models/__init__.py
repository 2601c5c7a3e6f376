"""
Models package — re-exports Base and all models.

Import models here so Alembic's `target_metadata = Base.metadata`
picks up every table automatically.

When adding a new model:
    1. Create `docintake/db/models/<table_name>.py`
    2. Import it here
"""

from docintake.db.models.base import Base
from docintake.db.models.file_upload import FileUpload
from docintake.db.models.outbox_entry import OutboxEntry
from docintake.db.models.extracted_data import ExtractedData

# Registers flush/execute listeners for the models above
from docintake.db import guards  # noqa: E402,F401

__all__ = [
    "Base",
    "FileUpload",
    "OutboxEntry",
    "ExtractedData",
]
