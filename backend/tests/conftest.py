import httpx
import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from docintake.api.deps import get_db, get_queue, get_session_factory
from docintake.core.constants import ContentType
from docintake.core.errors import DeliveryFailure
from docintake.db.models import Base, ExtractedData, OutboxEntry
from docintake.main import app
from docintake.repositories import uploads as upload_repository
from docintake.uploads import (
    OutboxDispatcher,
    OutboxLog,
    OutboxStatusReporter,
    UploadFinalizer,
    UploadLifecycle,
)


@pytest.fixture
def anyio_backend():
    # asyncio only, no trio
    return "asyncio"


class FakeQueue:
    """In-memory stand-in for the extraction queue."""

    def __init__(self) -> None:
        self.published: list[tuple[str, dict]] = []
        self.fail = False

    async def publish(self, message, *, idempotency_key):
        if self.fail:
            raise DeliveryFailure("broker unavailable", process_id=idempotency_key)
        self.published.append((idempotency_key, message))


class UploadFlow:
    """Services wired against the test database, plus shortcuts for common steps."""

    def __init__(self, factory, queue: FakeQueue) -> None:
        self.factory = factory
        self.queue = queue
        self.outbox_log = OutboxLog(factory)
        self.dispatcher = OutboxDispatcher(self.outbox_log, queue)
        self.lifecycle = UploadLifecycle(factory)
        self.finalizer = UploadFinalizer(factory, self.dispatcher)
        self.reporter = OutboxStatusReporter(factory)

    async def init(self, owner_id="owner-1", filename="jane-doe.pdf", content_type=ContentType.PDF):
        return await self.lifecycle.init_upload(owner_id=owner_id, filename=filename, content_type=content_type)

    async def finalize(self, slot, *, content_hash="hash-a", size=2048, text="Jane Doe\nBackend engineer", owner_id=None):
        return await self.finalizer.finalize(
            external_id=slot.external_id,
            process_id=slot.process_id,
            size=size,
            content_hash=content_hash,
            extracted_text=text,
            owner_id=owner_id,
        )

    async def upload(self, owner_id="owner-1", content_hash="hash-a", **kwargs):
        slot = await self.init(owner_id=owner_id)
        result = await self.finalize(slot, content_hash=content_hash, **kwargs)
        return slot, result

    async def get(self, external_id):
        async with self.factory() as session:
            return await upload_repository.get_upload_by_external_id(session, external_id)

    async def path(self, process_id) -> list[str]:
        return [e.sequence_status for e in await self.outbox_log.entries_for_process(process_id)]

    async def outbox_count(self) -> int:
        async with self.factory() as session:
            return (await session.execute(select(func.count()).select_from(OutboxEntry))).scalar_one()

    async def pending_count(self) -> int:
        """Processing requests created, i.e. `pending` rows across all processes."""
        async with self.factory() as session:
            stmt = select(func.count()).select_from(OutboxEntry).where(OutboxEntry.sequence_status == "pending")
            return (await session.execute(stmt)).scalar_one()

    async def extracted_count(self, process_id) -> int:
        async with self.factory() as session:
            stmt = select(func.count()).select_from(ExtractedData).where(ExtractedData.process_id == process_id)
            return (await session.execute(stmt)).scalar_one()


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'docintake.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory
    await engine.dispose()


@pytest.fixture
def queue():
    return FakeQueue()


@pytest.fixture
def flow(session_factory, queue):
    return UploadFlow(session_factory, queue)


@pytest.fixture
async def client(session_factory, queue):
    async def _get_db():
        async with session_factory() as session:
            yield session
            await session.commit()

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_queue] = lambda: queue
    app.dependency_overrides[get_db] = _get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
