"""Behaviour every ChunkStore implementation shares."""

from __future__ import annotations

import pytest

from bimcontext.exceptions import ProjectExistsError, StorageError
from bimcontext.models import ProjectManifest
from bimcontext.storage.memory import InMemoryChunkStore
from bimcontext.storage.sqlite_store import SqliteChunkStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_db):
    if request.param == "memory":
        return InMemoryChunkStore()
    return SqliteChunkStore(tmp_db)


# ------------------------------------------------------------------
# Projects
# ------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_and_list_projects(store):
    await store.create_project("p1", "Tower A")
    await store.create_project("p2")
    assert await store.project_exists("p1")
    assert not await store.project_exists("p3")
    assert sorted(await store.list_projects()) == [("p1", "Tower A"), ("p2", "")]


@pytest.mark.asyncio
async def test_create_existing_project_raises(store):
    await store.create_project("p1")
    with pytest.raises(ProjectExistsError):
        await store.create_project("p1")


@pytest.mark.asyncio
async def test_delete_project_removes_everything(store, make_chunk):
    await store.create_project("p1")
    await store.save_chunks("p1", [make_chunk("c1")])
    await store.save_manifest(ProjectManifest(project_id="p1", name="Tower"))
    await store.save_index("p1", "byType", {"element-type": ["c1"]})

    await store.delete_project("p1")

    assert not await store.project_exists("p1")
    assert await store.load_manifest("p1") is None
    assert await store.load_chunk("p1", "c1") is None
    assert await store.load_index("p1", "byType") == {}


@pytest.mark.asyncio
async def test_delete_missing_project_is_noop(store):
    await store.delete_project("ghost")


# ------------------------------------------------------------------
# Chunks
# ------------------------------------------------------------------

@pytest.mark.asyncio
async def test_chunk_roundtrip(store, make_chunk):
    chunk = make_chunk("c1", floor=2, zone="North", entity_types=["IFCWALL"], entity_count=1)
    await store.create_project("p1")
    await store.save_chunk(chunk)
    assert await store.load_chunk("p1", "c1") == chunk
    assert await store.chunk_exists("p1", "c1")


@pytest.mark.asyncio
async def test_load_chunks_keeps_request_order_and_skips_missing(store, make_chunk):
    await store.create_project("p1")
    await store.save_chunks("p1", [make_chunk(f"c{i}", content=f"text {i}") for i in range(3)])
    loaded = await store.load_chunks("p1", ["c2", "missing", "c0"])
    assert [c.id for c in loaded] == ["c2", "c0"]


@pytest.mark.asyncio
async def test_save_chunk_replaces_same_id(store, make_chunk):
    await store.create_project("p1")
    await store.save_chunk(make_chunk("c1", content="old"))
    await store.save_chunk(make_chunk("c1", content="new"))
    (chunk,) = await store.load_all_chunks("p1")
    assert chunk.content == "new"


@pytest.mark.asyncio
async def test_delete_chunks_counts_existing(store, make_chunk):
    await store.create_project("p1")
    await store.save_chunks("p1", [make_chunk("c1"), make_chunk("c2", content="other")])
    assert await store.delete_chunks("p1", ["c1", "nope"]) == 1
    assert [c.id for c in await store.load_all_chunks("p1")] == ["c2"]


@pytest.mark.asyncio
async def test_save_for_unknown_project_raises(store, make_chunk):
    with pytest.raises(StorageError):
        await store.save_chunks("p1", [make_chunk("c1")])
    with pytest.raises(StorageError):
        await store.save_manifest(ProjectManifest(project_id="p1"))
    with pytest.raises(StorageError):
        await store.save_index("p1", "byType", {})


@pytest.mark.asyncio
async def test_save_chunk_of_other_project_raises(store, make_chunk):
    await store.create_project("p1")
    with pytest.raises(StorageError):
        await store.save_chunks("p1", [make_chunk("c1", project_id="p2")])


# ------------------------------------------------------------------
# Manifests and indices
# ------------------------------------------------------------------

@pytest.mark.asyncio
async def test_manifest_last_write_wins(store):
    await store.create_project("p1")
    await store.save_manifest(ProjectManifest(project_id="p1", name="First", total_chunks=1))
    await store.save_manifest(ProjectManifest(project_id="p1", name="Second", total_chunks=2))
    manifest = await store.load_manifest("p1")
    assert (manifest.name, manifest.total_chunks) == ("Second", 2)


@pytest.mark.asyncio
async def test_missing_index_is_empty(store):
    await store.create_project("p1")
    assert await store.load_index("p1", "bySystem") == {}


@pytest.mark.asyncio
async def test_index_roundtrip(store):
    await store.create_project("p1")
    await store.save_index("p1", "byFloor", {"2": ["c1", "c2"]})
    assert await store.load_index("p1", "byFloor") == {"2": ["c1", "c2"]}


@pytest.mark.asyncio
async def test_project_size_grows(store, make_chunk):
    await store.create_project("p1")
    empty = await store.project_size("p1")
    await store.save_chunk(make_chunk("c1"))
    assert await store.project_size("p1") > empty
