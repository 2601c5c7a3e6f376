import uuid

import pytest

from docintake.core.config import settings

pytestmark = pytest.mark.anyio

OWNER = {"X-User-Id": "owner-1"}
WORKER = {"X-Worker-Token": settings.WORKER_API_TOKEN}


async def _init(client, headers=OWNER, filename="jane-doe.pdf"):
    response = await client.post(
        "/api/v1/uploads/init",
        json={"filename": filename, "content_type": "PDF"},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()


async def _finalize(client, slot, content_hash="hash-a", headers=OWNER, size=2048):
    return await client.post(
        "/api/v1/uploads/finalize",
        json={
            "external_id": slot["external_id"],
            "process_id": slot["process_id"],
            "size": size,
            "content_hash": content_hash,
            "extracted_text": "Jane Doe\nBackend engineer",
        },
        headers=headers,
    )


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


async def test_owner_header_is_required(client):
    response = await client.post("/api/v1/uploads/init", json={"filename": "cv.pdf", "content_type": "PDF"})

    assert response.status_code == 401


async def test_init_rejects_unknown_content_type(client):
    response = await client.post(
        "/api/v1/uploads/init",
        json={"filename": "cv.exe", "content_type": "EXE"},
        headers=OWNER,
    )

    assert response.status_code == 422


async def test_upload_and_dedup_flow(client, queue):
    first = await _init(client)
    assert first["object_key"] == f"{settings.UPLOAD_DIRECTORY}/{first['external_id']}"

    response = await _finalize(client, first)
    assert response.status_code == 200
    assert response.json() == {
        "external_id": first["external_id"],
        "process_id": first["process_id"],
        "status": "uploaded",
        "existing_file_id": None,
    }
    assert [key for key, _ in queue.published] == [first["process_id"]]

    second = await _init(client, filename="copy.pdf")
    response = await _finalize(client, second)
    assert response.status_code == 200
    assert response.json()["status"] == "deduplicated"
    assert response.json()["existing_file_id"] == first["external_id"]
    assert len(queue.published) == 1


async def test_finalize_twice_is_404(client):
    slot = await _init(client)
    await _finalize(client, slot)

    response = await _finalize(client, slot, content_hash="hash-b")

    assert response.status_code == 404
    assert response.json()["detail"] == "Pending upload not found"


async def test_finalize_with_process_id_already_in_use_is_409(client, queue):
    first = await _init(client)
    await _finalize(client, first)
    second = await _init(client, filename="other.pdf")
    second["process_id"] = first["process_id"]

    response = await _finalize(client, second, content_hash="hash-b")

    assert response.status_code == 409
    assert response.json()["detail"] == "Process id is already in use"
    assert len(queue.published) == 1
    listing = (await client.get("/api/v1/uploads", headers=OWNER)).json()
    assert {item["filename"]: item["status"] for item in listing["uploads"]}["other.pdf"] == "pending"


async def test_finalize_oversized_file(client):
    slot = await _init(client)

    response = await _finalize(client, slot, size=settings.MAX_UPLOAD_SIZE_BYTES + 1)

    assert response.status_code == 200
    assert response.json()["status"] == "rejected"


async def test_delete_and_list(client):
    kept = await _init(client, filename="kept.pdf")
    await _finalize(client, kept, content_hash="h1")
    dup = await _init(client, filename="dup.pdf")
    await _finalize(client, dup, content_hash="h1")
    removed = await _init(client, filename="removed.pdf")
    await _init(client, headers={"X-User-Id": "owner-2"})

    response = await client.delete(f"/api/v1/uploads/{removed['external_id']}", headers=OWNER)
    assert response.status_code == 200
    assert response.json() == {"external_id": removed["external_id"], "status": "deleted-by-user"}

    response = await client.get("/api/v1/uploads", headers=OWNER)
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 2
    by_name = {item["filename"]: item for item in body["uploads"]}
    assert set(by_name) == {"kept.pdf", "dup.pdf"}
    assert by_name["kept.pdf"]["status"] == "uploaded"
    assert by_name["kept.pdf"]["parse_status"] == "processing"
    assert by_name["dup.pdf"]["status"] == "deduplicated"
    assert by_name["dup.pdf"]["parse_status"] == "pending"


async def test_list_pagination(client):
    for i in range(3):
        await _init(client, filename=f"cv-{i}.pdf")

    response = await client.get("/api/v1/uploads", params={"limit": 2, "offset": 2}, headers=OWNER)

    body = response.json()
    assert body["total"] == 3
    assert body["limit"] == 2
    assert body["offset"] == 2
    assert len(body["uploads"]) == 1


async def test_delete_is_404_for_other_owner_and_repeat(client):
    slot = await _init(client)

    response = await client.delete(f"/api/v1/uploads/{slot['external_id']}", headers={"X-User-Id": "owner-2"})
    assert response.status_code == 404

    assert (await client.delete(f"/api/v1/uploads/{slot['external_id']}", headers=OWNER)).status_code == 200
    assert (await client.delete(f"/api/v1/uploads/{slot['external_id']}", headers=OWNER)).status_code == 404


# ─── Worker routes ───────────────────────────


async def test_worker_routes_require_token(client):
    slot = await _init(client)
    await _finalize(client, slot)

    response = await client.post(
        f"/api/v1/outbox/{slot['process_id']}/status",
        json={"status": "completed", "data": {"name": "Jane Doe"}},
        headers={"X-Worker-Token": "wrong"},
    )
    assert response.status_code == 401

    response = await client.post(f"/api/v1/outbox/{slot['process_id']}/status", json={"status": "not-a-cv"})
    assert response.status_code == 401


async def test_worker_reports_outcome(client):
    slot = await _init(client)
    await _finalize(client, slot)

    response = await client.post(
        f"/api/v1/outbox/{slot['process_id']}/status",
        json={"status": "completed", "data": {"name": "Jane Doe"}},
        headers=WORKER,
    )
    assert response.status_code == 200
    assert response.json() == {"process_id": slot["process_id"], "status": "completed", "duplicate": False}

    # Redelivered reports, same or different outcome, keep the recorded one
    again = await client.post(
        f"/api/v1/outbox/{slot['process_id']}/status",
        json={"status": "completed", "data": {"name": "Jane Doe"}},
        headers=WORKER,
    )
    assert again.status_code == 200
    assert again.json()["duplicate"] is True
    late = await client.post(
        f"/api/v1/outbox/{slot['process_id']}/status",
        json={"status": "failed", "error": "late failure"},
        headers=WORKER,
    )
    assert late.status_code == 200
    assert late.json() == {"process_id": slot["process_id"], "status": "completed", "duplicate": True}

    listing = (await client.get("/api/v1/uploads", headers=OWNER)).json()
    assert listing["uploads"][0]["parse_status"] == "completed"


async def test_completed_report_requires_data(client, flow):
    slot = await _init(client)
    await _finalize(client, slot)

    for payload in ({"status": "completed"}, {"status": "completed", "data": {}}):
        response = await client.post(f"/api/v1/outbox/{slot['process_id']}/status", json=payload, headers=WORKER)
        assert response.status_code == 422

    assert await flow.extracted_count(uuid.UUID(slot["process_id"])) == 0
    assert await flow.outbox_log.current_status(uuid.UUID(slot["process_id"])) == "processing"


async def test_worker_report_unknown_process(client):
    response = await client.post(
        f"/api/v1/outbox/{uuid.uuid4()}/status",
        json={"status": "not-a-cv"},
        headers=WORKER,
    )

    assert response.status_code == 404


async def test_worker_fetches_raw_text(client, queue):
    slot = await _init(client)
    await _finalize(client, slot)
    upload_id = queue.published[0][1]["upload_id"]

    response = await client.get(f"/api/v1/worker/uploads/{upload_id}/raw-text", headers=WORKER)
    assert response.status_code == 200
    assert response.json() == {"raw_text": "Jane Doe\nBackend engineer"}

    missing = await client.get(f"/api/v1/worker/uploads/{uuid.uuid4()}/raw-text", headers=WORKER)
    assert missing.status_code == 404
