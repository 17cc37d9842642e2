"""Tests for the in-memory and SQL document stores."""

import asyncio

import pytest

from finsight.errors import ConcurrencyConflict, NotFound
from finsight.infrastructure.storage.document_store import QueryCondition, SQLDocumentStore
from finsight.infrastructure.storage.memory import InMemoryBlobStore, InMemoryDocumentStore


@pytest.fixture(params=["memory", "sql"])
async def any_store(request, settings, tmp_path):
    """Each test runs against both implementations."""
    if request.param == "memory":
        store = InMemoryDocumentStore()
    else:
        sql_settings = settings.model_copy(
            update={"database_url": f"sqlite+aiosqlite:///{tmp_path / 'documents.db'}"}
        )
        store = SQLDocumentStore(sql_settings)
    await store.init()
    yield store
    await store.close()


# ==========================================
#  Create / get
# ==========================================


async def test_create_sets_managed_fields(any_store):
    document = await any_store.create("prompts", {"prompt": "x", "version": 99, "id": "ignored"})
    assert document["version"] == 1
    assert document["id"] != "ignored"
    assert document["createdAt"] == document["updatedAt"]

    loaded = await any_store.get("prompts", document["id"])
    assert loaded["prompt"] == "x"
    assert loaded["version"] == 1


async def test_create_with_existing_id_conflicts(any_store):
    await any_store.create("users", {"email": "a"}, doc_id="u1")
    with pytest.raises(ConcurrencyConflict):
        await any_store.create("users", {"email": "b"}, doc_id="u1")


async def test_get_missing_returns_none(any_store):
    assert await any_store.get("prompts", "nope") is None


async def test_collections_are_isolated(any_store):
    await any_store.create("users", {"email": "a"}, doc_id="same")
    assert await any_store.get("teams", "same") is None


# ==========================================
#  Versioned update
# ==========================================


async def test_update_with_matching_version(any_store):
    document = await any_store.create("prompts", {"status": "created", "settings": {"visualizationType": "bar"}})
    updated = await any_store.update("prompts", document["id"], {"status": "processing"}, expected_version=1)
    assert updated["version"] == 2
    assert updated["status"] == "processing"
    # Fields not named in the update are kept
    assert updated["settings"] == {"visualizationType": "bar"}


async def test_update_with_stale_version_conflicts(any_store):
    document = await any_store.create("prompts", {"status": "created"})
    await any_store.update("prompts", document["id"], {"status": "processing"}, expected_version=1)
    with pytest.raises(ConcurrencyConflict):
        await any_store.update("prompts", document["id"], {"status": "failed"}, expected_version=1)
    assert (await any_store.get("prompts", document["id"]))["status"] == "processing"


async def test_unconditional_update_bumps_version(any_store):
    document = await any_store.create("prompts", {"status": "created"})
    updated = await any_store.update("prompts", document["id"], {"note": "n"})
    assert updated["version"] == 2


async def test_update_missing_document(any_store):
    with pytest.raises(NotFound):
        await any_store.update("prompts", "nope", {"status": "x"})


async def test_delete(any_store):
    document = await any_store.create("prompts", {"status": "created"})
    assert await any_store.delete("prompts", document["id"]) is True
    assert await any_store.delete("prompts", document["id"]) is False


# ==========================================
#  Query
# ==========================================


async def test_query_filters_and_orders(any_store):
    for uid, n in (("u1", 1), ("u1", 2), ("u2", 3)):
        await any_store.create("prompts", {"userId": uid, "n": n})
        await asyncio.sleep(0.002)

    results = await any_store.query(
        "prompts",
        [QueryCondition("userId", "==", "u1")],
        order_by="createdAt",
        direction="desc",
    )
    assert [d["n"] for d in results] == [2, 1]


async def test_query_limit_and_offset(any_store):
    for n in range(5):
        await any_store.create("prompts", {"userId": "u1", "n": n})
    page = await any_store.query("prompts", order_by="n", limit=2, offset=2)
    assert [d["n"] for d in page] == [2, 3]


async def test_query_in_operator(any_store):
    for status in ("created", "failed", "completed"):
        await any_store.create("prompts", {"status": status})
    results = await any_store.query("prompts", [QueryCondition("status", "in", ["failed", "completed"])])
    assert sorted(d["status"] for d in results) == ["completed", "failed"]


# ==========================================
#  Blob store
# ==========================================


async def test_memory_blob_store_download_and_sign():
    blobs = InMemoryBlobStore({"datasets/ds1.csv": b"a,b\n1,2\n"})
    assert await blobs.download("datasets/ds1.csv") == b"a,b\n1,2\n"
    assert (await blobs.signed_url("datasets/ds1.csv", ttl_minutes=5)).startswith("memory://")
    with pytest.raises(NotFound):
        await blobs.download("missing.csv")
