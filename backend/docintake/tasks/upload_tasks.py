"""
Celery tasks — pending-upload monitor.
"""

import asyncio

import structlog

from docintake.core.config import settings
from docintake.db.session import make_session_factory
from docintake.tasks import celery_app
from docintake.uploads.lifecycle import UploadLifecycle

logger = structlog.get_logger("tasks.uploads")


async def _expire_stale(limit: int) -> int:
    factory, engine = make_session_factory()
    try:
        return await UploadLifecycle(factory).expire_stale_pending_uploads(limit=limit)
    finally:
        await engine.dispose()


@celery_app.task(bind=True, name="docintake.tasks.upload_tasks.expire_stale_pending_uploads")
def expire_stale_pending_uploads(self, limit: int | None = None):
    """
    Fail uploads that stayed `pending` past the signed-URL lifetime plus the
    grace period.  A finalize that wins the race keeps its outcome.
    """
    expired = asyncio.run(_expire_stale(limit or settings.PENDING_UPLOAD_BATCH_LIMIT))
    if expired:
        logger.info("Expired stale pending uploads", task_id=self.request.id, count=expired)
    return {"expired": expired}
