"""
Queue handoff — delivers processing requests to the extraction worker.

Durability and delivery are decoupled: the outbox row is committed
first, then the message is published with `process_id` as the idempotency
key (the Celery task id).  Delivery is at-least-once; duplicate suppression
belongs to the queue/worker.

Two paths:
    - `deliver_after_commit`  — finalizer's best effort.  Publishes first,
      then records `sending`/`processing` if the process is still pending.
      Any failure is logged and swallowed; the entry stays `pending`.
    - `dispatch_pending`      — periodic dispatcher.  Claims each pending
      process with `mark_as_sending`, publishes, then records `processing`.
      A publish failure marks the process `failed`.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

from docintake.core.config import settings
from docintake.core.errors import DeliveryFailure
from docintake.core.logging import get_logger
from docintake.db.models.outbox_entry import OutboxEntry
from docintake.uploads.outbox_log import OutboxLog

logger = get_logger(__name__)


class QueuePublisher(Protocol):
    async def publish(self, message: dict[str, Any], *, idempotency_key: str) -> None: ...


class ParseQueue:
    """Publishes extraction requests as Celery tasks consumed by the external worker."""

    def __init__(self, celery_app=None, *, task_name: str | None = None, queue: str | None = None) -> None:
        self._celery_app = celery_app
        self.task_name = task_name or settings.EXTRACTION_TASK_NAME
        self.queue = queue or settings.EXTRACTION_QUEUE

    @property
    def celery_app(self):
        if self._celery_app is None:
            from docintake.tasks import celery_app

            self._celery_app = celery_app
        return self._celery_app

    async def publish(self, message: dict[str, Any], *, idempotency_key: str) -> None:
        try:
            # send_task blocks on the broker connection
            await asyncio.to_thread(
                self.celery_app.send_task,
                self.task_name,
                kwargs=message,
                task_id=idempotency_key,
                queue=self.queue,
            )
        except Exception as exc:
            raise DeliveryFailure(
                f"Failed to publish to {self.queue}: {exc}",
                process_id=idempotency_key,
                details={"task_name": self.task_name},
            ) from exc


class OutboxDispatcher:
    def __init__(self, outbox_log: OutboxLog, queue: QueuePublisher) -> None:
        self.outbox_log = outbox_log
        self.queue = queue

    async def deliver_after_commit(self, entry: OutboxEntry) -> bool:
        """Best-effort delivery of a freshly committed `pending` entry.  Never raises."""
        process_id = str(entry.process_id)
        try:
            await self.queue.publish(entry.queue_message(), idempotency_key=process_id)
        except DeliveryFailure as exc:
            logger.error("Delivery failed, leaving for outbox dispatcher", **exc.context())
            return False
        except Exception as exc:
            logger.exception("Unexpected delivery error, leaving for outbox dispatcher", process_id=process_id, error=str(exc))
            return False

        try:
            await self.outbox_log.mark_delivered(entry.process_id)
        except Exception as exc:
            # Already published; the dispatcher may redeliver under the same key
            logger.exception("Failed to record delivery", process_id=process_id, error=str(exc))
        logger.info("Processing request delivered", process_id=process_id, external_id=str(entry.external_id))
        return True

    async def dispatch_pending(self, limit: int) -> dict[str, int]:
        """One dispatcher pass over pending processes.  Returns per-outcome counts."""
        stats = {"found": 0, "delivered": 0, "skipped": 0, "failed": 0}
        entries = await self.outbox_log.find_pending_logs(limit)
        stats["found"] = len(entries)
        if entries:
            logger.info("Processing pending outbox entries", count=len(entries))
        else:
            logger.debug("No pending outbox entries found")

        for entry in entries:
            outcome = await self._dispatch_one(entry)
            stats[outcome] += 1
        return stats

    async def _dispatch_one(self, entry: OutboxEntry) -> str:
        process_id = str(entry.process_id)
        claimed = await self.outbox_log.mark_as_sending(entry.process_id)
        if claimed is None:
            logger.debug("Outbox entry already being processed, skipping", process_id=process_id)
            return "skipped"

        try:
            await self.queue.publish(entry.queue_message(), idempotency_key=process_id)
        except DeliveryFailure as exc:
            logger.error("Failed to process outbox entry", **exc.context())
            await self.outbox_log.mark_as_failed(entry.process_id, exc.message)
            return "failed"

        await self.outbox_log.mark_as_processing(entry.process_id)
        logger.info(
            "Successfully sent file to parse queue",
            process_id=process_id,
            external_id=str(entry.external_id),
        )
        return "delivered"
