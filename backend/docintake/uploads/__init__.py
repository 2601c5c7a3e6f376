"""
Upload lifecycle services.

Each service owns its transaction boundaries and is constructed with an
`async_sessionmaker`; the API layer wires them in `docintake.api.deps`,
Celery tasks build them with a fresh engine per run.
"""

from docintake.uploads.canonical import CanonicalResolver, classify_canonical_status
from docintake.uploads.delivery import OutboxDispatcher, ParseQueue
from docintake.uploads.finalizer import FinalizeResult, UploadFinalizer
from docintake.uploads.lifecycle import UploadLifecycle
from docintake.uploads.outbox_log import OutboxLog
from docintake.uploads.reporter import Completed, Failed, NotACV, OutboxStatusReporter, ReportResult

__all__ = [
    "CanonicalResolver",
    "classify_canonical_status",
    "OutboxDispatcher",
    "ParseQueue",
    "FinalizeResult",
    "UploadFinalizer",
    "UploadLifecycle",
    "OutboxLog",
    "Completed",
    "Failed",
    "NotACV",
    "OutboxStatusReporter",
    "ReportResult",
]
