"""
OutboxStatusReporter — worker-facing callback recording a processing outcome.

    Completed(data)   → OutboxEntry(completed) + extracted data, one transaction
    Failed(message)   → OutboxEntry(failed, message)
    NotACV()          → OutboxEntry(not-a-cv)

The process does not have to be `processing`: any non-terminal current
status accepts a terminal outcome, so reports that overtake the delivery
bookkeeping are still recorded.  Once the process is terminal, any further
report (same or different outcome) is a redelivery: nothing is written and
the existing terminal status is returned flagged as a duplicate.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docintake.core.constants import OUTBOX_TERMINAL_STATUSES, OutboxStatus
from docintake.core.errors import NotFound
from docintake.core.logging import get_logger
from docintake.db.models.outbox_entry import OutboxEntry
from docintake.repositories import extracted_data as extracted_data_repository
from docintake.repositories import outbox as outbox_repository

logger = get_logger(__name__)


@dataclass(frozen=True)
class Completed:
    data: dict[str, Any] = field(default_factory=dict)
    status = OutboxStatus.COMPLETED


@dataclass(frozen=True)
class Failed:
    message: str = "Processing failed"
    status = OutboxStatus.FAILED


@dataclass(frozen=True)
class NotACV:
    status = OutboxStatus.NOT_A_CV


Outcome = Union[Completed, Failed, NotACV]


@dataclass(frozen=True)
class ReportResult:
    status: OutboxStatus
    duplicate: bool = False


class ExtractedDataStore(Protocol):
    async def save(self, db: AsyncSession, *, entry: OutboxEntry, data: dict[str, Any]) -> None: ...


class SqlExtractedDataStore:
    """Writes extraction results to the extracted_data table in the caller's transaction."""

    async def save(self, db: AsyncSession, *, entry: OutboxEntry, data: dict[str, Any]) -> None:
        await extracted_data_repository.save_extracted_data(db, entry=entry, data=data)


class OutboxStatusReporter:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        data_store: ExtractedDataStore | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.data_store = data_store or SqlExtractedDataStore()

    async def report_outcome(self, process_id: uuid.UUID, outcome: Outcome) -> ReportResult:
        """Record `outcome` for `process_id`.  Returns the process's resulting status."""
        target = outcome.status
        log = logger.bind(process_id=str(process_id), status=target.value)
        log.info("Updating outbox status")

        try:
            async with self.session_factory() as session, session.begin():
                current = await outbox_repository.get_current_entry(session, process_id)
                if current is None:
                    raise NotFound(f"Outbox entry not found: {process_id}", process_id=str(process_id))

                if current.sequence_status in OUTBOX_TERMINAL_STATUSES:
                    return self._duplicate(log, OutboxStatus(current.sequence_status), target)

                entry = await outbox_repository.append_transition(
                    session,
                    current,
                    target,
                    error_message=outcome.message if isinstance(outcome, Failed) else None,
                )
                if isinstance(outcome, Completed):
                    await self.data_store.save(session, entry=entry, data=outcome.data)
        except IntegrityError as exc:
            if not outbox_repository.is_transition_conflict(exc):
                raise
            # A concurrent report committed first
            async with self.session_factory() as session:
                winner = await outbox_repository.get_current_entry(session, process_id)
            if winner is None or winner.sequence_status not in OUTBOX_TERMINAL_STATUSES:
                raise
            return self._duplicate(log, OutboxStatus(winner.sequence_status), target)

        if isinstance(outcome, Failed):
            log.error("Outbox entry marked as failed", error=outcome.message)
        else:
            log.info("Outbox entry updated")
        return ReportResult(target)

    @staticmethod
    def _duplicate(log, existing: OutboxStatus, target: OutboxStatus) -> ReportResult:
        if existing == target:
            log.info("Duplicate outcome report ignored")
        else:
            log.warning(
                "Outcome report after terminal status ignored, duplicate delivery detected",
                existing_status=existing.value,
            )
        return ReportResult(existing, duplicate=True)
