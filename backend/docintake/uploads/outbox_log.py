"""
OutboxLog — transaction-owning operations on the append-only processing log.

These are the hand-off primitives used by the outbox dispatcher and the
finalizer's best-effort delivery.  Each call runs in its own short
transaction; losing a race on the outbox uniqueness constraints is
reported as "nothing claimed" rather than an error.
"""

from __future__ import annotations

import uuid

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docintake.core.constants import OutboxStatus
from docintake.core.logging import get_logger
from docintake.db.models.outbox_entry import OutboxEntry
from docintake.repositories import outbox as outbox_repository

logger = get_logger(__name__)


class OutboxLog:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def find_pending_logs(self, limit: int) -> list[OutboxEntry]:
        """Oldest-first processes whose newest entry is still `pending`."""
        async with self.session_factory() as session:
            return await outbox_repository.find_pending_logs(session, limit)

    async def current_status(self, process_id: uuid.UUID) -> OutboxStatus | None:
        async with self.session_factory() as session:
            entry = await outbox_repository.get_current_entry(session, process_id)
        return OutboxStatus(entry.sequence_status) if entry else None

    async def entries_for_process(self, process_id: uuid.UUID) -> list[OutboxEntry]:
        async with self.session_factory() as session:
            return await outbox_repository.entries_for_process(session, process_id)

    async def mark_as_sending(self, process_id: uuid.UUID) -> OutboxEntry | None:
        """
        Claim a process for delivery: append `sending` iff `pending` is
        still the newest entry.  Returns the new row, or None when another
        actor already advanced the process.
        """
        return await self._advance(process_id, expected=OutboxStatus.PENDING, path=(OutboxStatus.SENDING,))

    async def mark_as_processing(self, process_id: uuid.UUID) -> OutboxEntry | None:
        """Record that the queue accepted the message of a claimed (`sending`) process."""
        return await self._advance(process_id, expected=OutboxStatus.SENDING, path=(OutboxStatus.PROCESSING,))

    async def mark_delivered(self, process_id: uuid.UUID) -> OutboxEntry | None:
        """Record `sending` and `processing` together for a message already handed to the queue."""
        return await self._advance(
            process_id,
            expected=OutboxStatus.PENDING,
            path=(OutboxStatus.SENDING, OutboxStatus.PROCESSING),
        )

    async def mark_as_failed(self, process_id: uuid.UUID, error_message: str) -> OutboxEntry | None:
        """Fail a claimed process whose delivery could not be completed."""
        return await self._advance(
            process_id,
            expected=OutboxStatus.SENDING,
            path=(OutboxStatus.FAILED,),
            error_message=error_message,
        )

    async def _advance(
        self,
        process_id: uuid.UUID,
        *,
        expected: OutboxStatus,
        path: tuple[OutboxStatus, ...],
        error_message: str | None = None,
    ) -> OutboxEntry | None:
        try:
            async with self.session_factory() as session, session.begin():
                current = await outbox_repository.get_current_entry(session, process_id)
                if current is None or current.sequence_status != expected:
                    logger.debug(
                        "Process not in expected state, skipping",
                        process_id=str(process_id),
                        expected=expected.value,
                        current=current.sequence_status if current else None,
                    )
                    return None
                for status in path:
                    current = await outbox_repository.append_transition(
                        session,
                        current,
                        status,
                        error_message=error_message,
                    )
        except IntegrityError as exc:
            if not outbox_repository.is_transition_conflict(exc):
                raise
            logger.debug(
                "Process advanced concurrently, skipping",
                process_id=str(process_id),
                attempted=path[0].value,
            )
            return None

        logger.info(
            "Outbox advanced",
            process_id=str(process_id),
            statuses=[s.value for s in path],
        )
        return current
