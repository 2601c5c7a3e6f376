import pytest

from docintake.core.constants import UploadStatus
from docintake.core.errors import TransientConflict
from docintake.repositories import uploads as upload_repository
from docintake.uploads.canonical import CanonicalPolicy, classify_canonical_status


@pytest.mark.parametrize(
    ("status", "policy"),
    [
        (UploadStatus.PENDING, CanonicalPolicy.BLOCKING),
        (UploadStatus.UPLOADED, CanonicalPolicy.BLOCKING),
        (UploadStatus.FAILED, CanonicalPolicy.REPLACEABLE),
        (UploadStatus.REJECTED, CanonicalPolicy.REPLACEABLE),
        (UploadStatus.DELETED_BY_USER, CanonicalPolicy.REPLACEABLE),
        (UploadStatus.DEDUPLICATED, CanonicalPolicy.IGNORED),
    ],
)
def test_classify_canonical_status(status, policy):
    assert classify_canonical_status(status) is policy


def test_every_upload_status_has_a_policy():
    for status in UploadStatus:
        assert isinstance(classify_canonical_status(status.value), CanonicalPolicy)


def test_unknown_status_is_rejected():
    with pytest.raises(ValueError):
        classify_canonical_status("archived")


async def _make_canonical_in(flow, status: UploadStatus, content_hash: str):
    """A canonical record for `content_hash` that ended up in `status` without being uploaded."""
    slot = await flow.init()
    async with flow.factory() as session, session.begin():
        upload = await upload_repository.get_upload_by_external_id(session, slot.external_id)
        upload.content_hash = content_hash
        upload.is_canonical = True
        if status == UploadStatus.FAILED:
            await upload_repository.mark_failed(session, upload)
        else:
            await upload_repository.mark_rejected(session, upload, reason="too large")
    return slot


@pytest.mark.anyio
async def test_fresh_hash_becomes_canonical(flow):
    slot, result = await flow.upload(content_hash="h1")

    upload = await flow.get(slot.external_id)
    assert result.status == UploadStatus.UPLOADED
    assert upload.status == UploadStatus.UPLOADED
    assert upload.is_canonical is True
    assert upload.canonical_reference is None
    assert await flow.pending_count() == 1


@pytest.mark.anyio
async def test_second_upload_of_same_content_is_deduplicated(flow):
    first, _ = await flow.upload(content_hash="h1")
    second, result = await flow.upload(content_hash="h1")

    first_row = await flow.get(first.external_id)
    second_row = await flow.get(second.external_id)
    assert result.status == UploadStatus.DEDUPLICATED
    assert result.existing_file_id == first.external_id
    assert second_row.canonical_reference == first_row.id
    assert second_row.is_canonical is False
    assert first_row.is_canonical is True
    # The canonical's processing is reused
    assert await flow.pending_count() == 1
    assert await flow.path(second.process_id) == []


@pytest.mark.anyio
async def test_dedup_is_scoped_to_owner(flow):
    await flow.upload(owner_id="owner-1", content_hash="h1")
    slot, result = await flow.upload(owner_id="owner-2", content_hash="h1")

    assert result.status == UploadStatus.UPLOADED
    assert (await flow.get(slot.external_id)).is_canonical is True


@pytest.mark.anyio
async def test_pending_canonical_blocks(flow):
    pending = await flow.init()
    async with flow.factory() as session, session.begin():
        upload = await upload_repository.get_upload_by_external_id(session, pending.external_id)
        upload.content_hash = "h1"
        upload.is_canonical = True

    _, result = await flow.upload(content_hash="h1")

    assert result.status == UploadStatus.DEDUPLICATED
    assert result.existing_file_id == pending.external_id


@pytest.mark.anyio
@pytest.mark.parametrize("status", [UploadStatus.FAILED, UploadStatus.REJECTED])
async def test_replaceable_canonical_is_taken_over(flow, status):
    old = await _make_canonical_in(flow, status, "h2")

    new, result = await flow.upload(content_hash="h2")

    old_row = await flow.get(old.external_id)
    new_row = await flow.get(new.external_id)
    assert result.status == UploadStatus.UPLOADED
    assert new_row.is_canonical is True
    assert old_row.is_canonical is False
    assert old_row.status == status


@pytest.mark.anyio
async def test_deleted_canonical_is_taken_over(flow):
    old, _ = await flow.upload(content_hash="h3")
    await flow.lifecycle.delete_upload(external_id=old.external_id, owner_id="owner-1")

    new, result = await flow.upload(content_hash="h3")

    assert result.status == UploadStatus.UPLOADED
    assert (await flow.get(new.external_id)).is_canonical is True
    old_row = await flow.get(old.external_id)
    assert old_row.is_canonical is False
    assert old_row.status == UploadStatus.DELETED_BY_USER


@pytest.mark.anyio
async def test_duplicates_follow_the_new_canonical(flow):
    old, _ = await flow.upload(content_hash="h4")
    dup, _ = await flow.upload(content_hash="h4")
    await flow.lifecycle.delete_upload(external_id=old.external_id, owner_id="owner-1")

    new, result = await flow.upload(content_hash="h4")

    assert result.status == UploadStatus.UPLOADED
    new_row = await flow.get(new.external_id)
    dup_row = await flow.get(dup.external_id)
    assert new_row.is_canonical is True
    assert (await flow.get(old.external_id)).is_canonical is False
    assert dup_row.status == UploadStatus.DEDUPLICATED
    assert dup_row.canonical_reference == new_row.id


@pytest.mark.anyio
async def test_duplicates_of_other_content_are_left_alone(flow):
    await flow.upload(content_hash="h5")
    other_dup, _ = await flow.upload(content_hash="h5")
    old, _ = await flow.upload(content_hash="h6")
    await flow.lifecycle.delete_upload(external_id=old.external_id, owner_id="owner-1")
    before = (await flow.get(other_dup.external_id)).canonical_reference

    await flow.upload(content_hash="h6")

    assert (await flow.get(other_dup.external_id)).canonical_reference == before


@pytest.mark.anyio
async def test_deduplicated_record_is_never_canonical(flow):
    await flow.upload(content_hash="h1")
    dup, _ = await flow.upload(content_hash="h1")
    dup2, result = await flow.upload(content_hash="h1")

    assert result.status == UploadStatus.DEDUPLICATED
    for slot in (dup, dup2):
        row = await flow.get(slot.external_id)
        assert row.status == UploadStatus.DEDUPLICATED
        assert row.is_canonical is False


@pytest.mark.anyio
async def test_canonical_claim_conflict_is_retried(flow, monkeypatch):
    first, _ = await flow.upload(content_hash="h1")
    second = await flow.init()

    real_lookup = upload_repository.find_canonical_upload
    calls = []

    async def stale_lookup(db, **kwargs):
        # First attempt misses the committed canonical, as a concurrent finalize would
        calls.append(kwargs)
        if len(calls) == 1:
            return None
        return await real_lookup(db, **kwargs)

    monkeypatch.setattr(upload_repository, "find_canonical_upload", stale_lookup)

    result = await flow.finalize(second, content_hash="h1")

    assert len(calls) == 2
    assert result.status == UploadStatus.DEDUPLICATED
    assert result.existing_file_id == first.external_id
    assert await flow.pending_count() == 1


@pytest.mark.anyio
async def test_persistent_claim_conflict_surfaces_and_keeps_pending(flow, monkeypatch):
    await flow.upload(content_hash="h1")
    second = await flow.init()

    async def always_stale(db, **kwargs):
        return None

    monkeypatch.setattr(upload_repository, "find_canonical_upload", always_stale)

    with pytest.raises(TransientConflict):
        await flow.finalize(second, content_hash="h1")

    row = await flow.get(second.external_id)
    assert row.status == UploadStatus.PENDING
    assert row.is_canonical is False
    assert await flow.pending_count() == 1
