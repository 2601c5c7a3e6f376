"""
ORM-level write guards.

Registered on the SQLAlchemy `Session` class, so they apply to every
session (including the sync session wrapped by AsyncSession):

    - FileUpload rows are checked against their standing invariants
      before every flush.
    - OutboxEntry rows are append-only: modifying or deleting a loaded
      row, or issuing a bulk UPDATE/DELETE against the table, raises
      InvariantViolation.

The database mirrors these with CHECK constraints, the partial unique
index, and (PostgreSQL) a trigger on the outbox table.
"""

from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.orm import Session

from docintake.core.errors import InvariantViolation
from docintake.db.models.file_upload import FileUpload
from docintake.db.models.outbox_entry import OutboxEntry


@event.listens_for(Session, "before_flush")
def _enforce_row_invariants(session, flush_context, instances) -> None:
    for obj in list(session.new) + list(session.dirty):
        if isinstance(obj, FileUpload):
            obj.check_invariants()

    for obj in session.dirty:
        if isinstance(obj, OutboxEntry) and session.is_modified(obj, include_collections=False):
            raise InvariantViolation(
                "Outbox entries are append-only",
                process_id=str(obj.process_id),
            )

    for obj in session.deleted:
        if isinstance(obj, OutboxEntry):
            raise InvariantViolation(
                "Outbox entries cannot be deleted",
                process_id=str(obj.process_id),
            )


@event.listens_for(Session, "do_orm_execute")
def _reject_bulk_outbox_writes(orm_execute_state) -> None:
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    mapper = orm_execute_state.bind_mapper
    if mapper is not None and mapper.class_ is OutboxEntry:
        raise InvariantViolation("Bulk UPDATE/DELETE is not allowed on outbox entries")
