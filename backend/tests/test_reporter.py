import uuid

import pytest

from docintake.core.constants import OutboxStatus
from docintake.core.errors import NotFound
from docintake.repositories import extracted_data as extracted_data_repository
from docintake.uploads import Completed, Failed, NotACV, OutboxStatusReporter

pytestmark = pytest.mark.anyio


async def test_completed_persists_data_with_log_entry(flow):
    slot, _ = await flow.upload()

    result = await flow.reporter.report_outcome(slot.process_id, Completed(data={"name": "Jane Doe", "skills": ["sql"]}))

    assert result.status == OutboxStatus.COMPLETED
    assert result.duplicate is False
    assert await flow.outbox_log.current_status(slot.process_id) == OutboxStatus.COMPLETED
    row = await flow.get(slot.external_id)
    async with flow.factory() as session:
        stored = await extracted_data_repository.get_extracted_data_for_upload(session, row.id)
    assert stored.data == {"name": "Jane Doe", "skills": ["sql"]}
    assert stored.process_id == slot.process_id
    assert stored.owner_id == "owner-1"


async def test_failed_records_message(flow):
    slot, _ = await flow.upload()

    await flow.reporter.report_outcome(slot.process_id, Failed(message="unreadable PDF"))

    entries = await flow.outbox_log.entries_for_process(slot.process_id)
    assert entries[-1].sequence_status == OutboxStatus.FAILED
    assert entries[-1].error_message == "unreadable PDF"
    assert await flow.extracted_count(slot.process_id) == 0


async def test_not_a_cv_is_terminal(flow):
    slot, _ = await flow.upload()

    result = await flow.reporter.report_outcome(slot.process_id, NotACV())

    assert result.status == OutboxStatus.NOT_A_CV
    assert await flow.path(slot.process_id) == ["pending", "sending", "processing", "not-a-cv"]


async def test_duplicate_report_is_applied_once(flow):
    slot, _ = await flow.upload()
    outcome = Completed(data={"name": "Jane Doe"})

    first = await flow.reporter.report_outcome(slot.process_id, outcome)
    second = await flow.reporter.report_outcome(slot.process_id, outcome)

    assert (first.status, first.duplicate) == (OutboxStatus.COMPLETED, False)
    assert (second.status, second.duplicate) == (OutboxStatus.COMPLETED, True)

    assert await flow.extracted_count(slot.process_id) == 1
    assert (await flow.path(slot.process_id)).count("completed") == 1


async def test_different_report_after_terminal_keeps_existing_outcome(flow):
    slot, _ = await flow.upload()
    await flow.reporter.report_outcome(slot.process_id, NotACV())

    result = await flow.reporter.report_outcome(slot.process_id, Completed(data={"name": "Jane Doe"}))

    assert result.status == OutboxStatus.NOT_A_CV
    assert result.duplicate is True
    assert await flow.path(slot.process_id) == ["pending", "sending", "processing", "not-a-cv"]

    assert await flow.outbox_log.current_status(slot.process_id) == OutboxStatus.NOT_A_CV
    assert await flow.extracted_count(slot.process_id) == 0


async def test_report_before_delivery_is_recorded(flow, queue):
    queue.fail = True
    slot, _ = await flow.upload()

    await flow.reporter.report_outcome(slot.process_id, Completed(data={}))

    assert await flow.path(slot.process_id) == ["pending", "completed"]
    assert await flow.outbox_log.find_pending_logs(10) == []


async def test_unknown_process(flow):
    with pytest.raises(NotFound):
        await flow.reporter.report_outcome(uuid.uuid4(), Failed())


async def test_data_write_failure_rolls_back_log_entry(flow):
    slot, _ = await flow.upload()

    class BrokenStore:
        async def save(self, db, *, entry, data):
            raise RuntimeError("extraction store unavailable")

    reporter = OutboxStatusReporter(flow.factory, data_store=BrokenStore())
    with pytest.raises(RuntimeError):
        await reporter.report_outcome(slot.process_id, Completed(data={"name": "Jane Doe"}))

    assert await flow.outbox_log.current_status(slot.process_id) == OutboxStatus.PROCESSING
    assert await flow.extracted_count(slot.process_id) == 0

    # Redelivery of the same process succeeds once the store is back
    await flow.reporter.report_outcome(slot.process_id, Completed(data={"name": "Jane Doe"}))
    assert await flow.outbox_log.current_status(slot.process_id) == OutboxStatus.COMPLETED


async def test_duplicate_report_losing_insert_race_is_idempotent(flow, monkeypatch):
    from docintake.repositories import outbox as outbox_repository

    slot, _ = await flow.upload()
    await flow.reporter.report_outcome(slot.process_id, Failed(message="timeout"))

    real_current = outbox_repository.get_current_entry
    calls = []

    async def stale_current(db, process_id):
        # The first read predates the concurrent report's commit
        calls.append(process_id)
        entries = await outbox_repository.entries_for_process(db, process_id)
        if len(calls) == 1:
            return entries[-2]
        return await real_current(db, process_id)

    monkeypatch.setattr(outbox_repository, "get_current_entry", stale_current)

    result = await flow.reporter.report_outcome(slot.process_id, Failed(message="timeout"))

    assert result.status == OutboxStatus.FAILED
    assert result.duplicate is True
    assert (await flow.path(slot.process_id)).count("failed") == 1


async def test_different_report_losing_insert_race_returns_winner(flow, monkeypatch):
    from docintake.repositories import outbox as outbox_repository

    slot, _ = await flow.upload()
    await flow.reporter.report_outcome(slot.process_id, Completed(data={}))

    real_current = outbox_repository.get_current_entry
    calls = []

    async def stale_current(db, process_id):
        calls.append(process_id)
        entries = await outbox_repository.entries_for_process(db, process_id)
        if len(calls) == 1:
            return entries[-2]
        return await real_current(db, process_id)

    monkeypatch.setattr(outbox_repository, "get_current_entry", stale_current)

    result = await flow.reporter.report_outcome(slot.process_id, NotACV())

    assert result.status == OutboxStatus.COMPLETED
    assert result.duplicate is True
    assert await flow.path(slot.process_id) == ["pending", "sending", "processing", "completed"]
