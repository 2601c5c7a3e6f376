"""
Celery tasks — outbox dispatcher.

Re-delivers processing requests that are still `pending` (the finalizer's
best-effort handoff did not go through).  Runs on the beat schedule.
"""

import asyncio

import structlog

from docintake.core.config import settings
from docintake.db.session import make_session_factory
from docintake.tasks import celery_app
from docintake.uploads.delivery import OutboxDispatcher, ParseQueue
from docintake.uploads.outbox_log import OutboxLog

logger = structlog.get_logger("tasks.outbox")


async def _dispatch_pending(limit: int) -> dict[str, int]:
    # Fresh engine per run: each asyncio.run() owns its own event loop
    factory, engine = make_session_factory()
    try:
        dispatcher = OutboxDispatcher(OutboxLog(factory), ParseQueue(celery_app))
        return await dispatcher.dispatch_pending(limit)
    finally:
        await engine.dispose()


@celery_app.task(bind=True, name="docintake.tasks.outbox_tasks.dispatch_pending_outbox")
def dispatch_pending_outbox(self, limit: int | None = None):
    """Claim, publish and record every pending process, oldest first."""
    task_log = logger.bind(task_id=self.request.id)
    stats = asyncio.run(_dispatch_pending(limit or settings.OUTBOX_BATCH_LIMIT))
    if stats["found"]:
        task_log.info("Outbox dispatch finished", **stats)
    return stats
