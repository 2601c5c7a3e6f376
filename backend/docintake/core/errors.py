"""
Domain-specific exception hierarchy for the upload lifecycle.

All exceptions inherit from UploadError so callers can catch broadly or
narrowly as needed.  Each exception carries structured context (external
id, process id, etc.) for logging/debugging.

Propagation:
    NotFound, InvalidStateTransition   — client fault (404 / 409)
    InvariantViolation                 — server fault (500)
    TransientConflict                  — retryable server fault (503)
    DeliveryFailure                    — never surfaced; the outbox
                                         dispatcher retries delivery
"""

from __future__ import annotations


class UploadError(Exception):
    """Base exception for all upload/outbox errors."""

    def __init__(
        self,
        message: str,
        *,
        external_id: str | None = None,
        process_id: str | None = None,
        details: dict | None = None,
    ) -> None:
        self.message = message
        self.external_id = external_id
        self.process_id = process_id
        self.details = details or {}
        super().__init__(message)

    def context(self) -> dict:
        """Structured fields for log events."""
        ctx = {"error": self.message, **self.details}
        if self.external_id:
            ctx["external_id"] = self.external_id
        if self.process_id:
            ctx["process_id"] = self.process_id
        return ctx


class NotFound(UploadError):
    """Record absent, not owned by the caller, or no longer in the expected state."""
    pass


class InvalidStateTransition(UploadError):
    """The requested operation is illegal from the record's current state."""

    def __init__(
        self,
        message: str,
        *,
        current: str | None = None,
        attempted: str | None = None,
        **kwargs,
    ) -> None:
        self.current = current
        self.attempted = attempted
        super().__init__(message, **kwargs)


class InvariantViolation(UploadError):
    """A write would break a standing constraint; the transaction is aborted."""
    pass


class TransientConflict(UploadError):
    """Uniqueness race while claiming canonical status.  Safe to retry."""
    pass


class DeliveryFailure(UploadError):
    """Queue handoff failed after commit.  Recovered by the outbox dispatcher."""
    pass
