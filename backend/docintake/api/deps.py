"""Shared dependencies for API routes."""

from __future__ import annotations

import secrets
from typing import AsyncGenerator

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docintake.core.config import settings
from docintake.db.session import async_session
from docintake.db.session import get_db as _get_db
from docintake.uploads import (
    OutboxDispatcher,
    OutboxLog,
    OutboxStatusReporter,
    ParseQueue,
    UploadFinalizer,
    UploadLifecycle,
)
from docintake.uploads.delivery import QueuePublisher


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async DB session."""
    async for session in _get_db():
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Factory for services that own their transactions."""
    return async_session


def get_queue() -> QueuePublisher:
    return ParseQueue()


# ── Services ─────────────────────────────────


def get_upload_lifecycle(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> UploadLifecycle:
    return UploadLifecycle(factory)


def get_upload_finalizer(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    queue: QueuePublisher = Depends(get_queue),
) -> UploadFinalizer:
    return UploadFinalizer(factory, OutboxDispatcher(OutboxLog(factory), queue))


def get_status_reporter(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> OutboxStatusReporter:
    return OutboxStatusReporter(factory)


# ── Callers ──────────────────────────────────


async def get_current_owner(x_user_id: str | None = Header(default=None)) -> str:
    """Owner id forwarded by the upstream gateway."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing user identity",
        )
    return x_user_id.strip()


async def require_worker(x_worker_token: str | None = Header(default=None)) -> None:
    """Reject calls that do not carry the shared worker token."""
    if x_worker_token is None or not secrets.compare_digest(
        x_worker_token.encode(),
        settings.WORKER_API_TOKEN.encode(),
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid worker credentials",
        )
