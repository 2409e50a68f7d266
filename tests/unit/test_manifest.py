"""Tests for manifest building and the storage-backed manifest manager."""

from __future__ import annotations

import pytest

from bimcontext.exceptions import ProjectNotFoundError
from bimcontext.manifest import (
    ManifestManager,
    build_index,
    build_manifest,
    extract_keywords,
    term_frequency,
)
from bimcontext.models import BoundingBox
from bimcontext.storage.memory import InMemoryChunkStore
from bimcontext.storage.sqlite_store import SqliteChunkStore


@pytest.fixture
def store():
    return InMemoryChunkStore()


@pytest.fixture
def chunks(make_chunk):
    box = BoundingBox((0, 0, 0), (5, 5, 3))
    return [
        make_chunk("s1", kind="spatial", content="Level two walls", floor=2, zone="North",
                   bbox=box, entity_types=["IFCWALL", "IFCDOOR"], entity_count=7),
        make_chunk("h1", kind="system", content="Duct network", system="hvac",
                   entity_types=["IFCDUCTSEGMENT"], entity_count=4),
        make_chunk("e1", content="Walls listing", entity_types=["IFCWALL"], entity_count=3),
    ]


async def _stored(store, chunks, name="Tower"):
    await store.create_project("p1", name)
    await store.save_chunks("p1", chunks)
    manifest = build_manifest("p1", name, chunks, {"file_size": 10})
    await ManifestManager(store).save(manifest)
    return manifest


# ------------------------------------------------------------------
# Pure builders
# ------------------------------------------------------------------

def test_extract_keywords(make_chunk):
    chunk = make_chunk("c1", entity_types=["IFCWALL"], system="hvac", floor=2)
    assert extract_keywords(chunk) == ["ifcwall", "hvac", "floor2", "level2", "summary"]


def test_build_index(chunks):
    index = build_index(chunks)
    assert index.by_type == {"spatial": ["s1"], "system": ["h1"], "element-type": ["e1"]}
    assert index.by_entity_type["IFCWALL"] == ["s1", "e1"]
    assert index.by_floor == {2: ["s1"]}
    assert index.by_system == {"hvac": ["h1"]}
    (entry,) = index.spatial
    assert (entry.chunk_id, entry.zone) == ("s1", "North")


def test_build_manifest_totals(chunks):
    manifest = build_manifest("p1", "Tower", chunks, {"file_size": 10})
    assert manifest.total_chunks == 3
    assert manifest.total_entities == 14
    assert manifest.total_tokens == sum(c.token_count for c in chunks)
    assert manifest.chunk_ids() == ["s1", "h1", "e1"]
    assert manifest.metadata["file_size"] == 10
    assert manifest.metadata["file_name"] == "Tower"
    assert manifest.metadata["term_frequency"]["walls"] == 2


def test_build_manifest_keeps_given_created_at(chunks):
    assert build_manifest("p1", "Tower", chunks, created_at=123.0).created_at == 123.0


def test_term_frequency_counts_documents_not_occurrences(make_chunk):
    counts = term_frequency([make_chunk("a", content="wall wall wall"), make_chunk("b", content="wall slab")])
    assert counts == {"wall": 2, "slab": 1}


# ------------------------------------------------------------------
# Manager
# ------------------------------------------------------------------

@pytest.mark.asyncio
async def test_indices_saved_separately(store, chunks):
    await _stored(store, chunks)
    indices = await ManifestManager(store).load_index("p1", ["byFloor", "bySystem"])
    assert indices == {"byFloor": {2: ["s1"]}, "bySystem": {"hvac": ["h1"]}}


@pytest.mark.asyncio
async def test_validate_clean_project(store, chunks):
    await _stored(store, chunks)
    result = await ManifestManager(store).validate("p1")
    assert result.valid
    assert result.errors == []


@pytest.mark.asyncio
async def test_validate_missing_project(store):
    result = await ManifestManager(store).validate("ghost")
    assert not result.valid
    assert result.errors == ["Project not found: ghost"]


@pytest.mark.asyncio
async def test_validate_reports_every_problem(store, chunks):
    manifest = await _stored(store, chunks)
    await store.delete_chunks("p1", ["e1"])
    manifest.index.by_system["hvac"].append("ghost")
    manifest.total_tokens += 5
    await store.save_manifest(manifest)

    result = await ManifestManager(store).validate("p1")

    assert not result.valid
    assert "Chunk file missing: e1" in result.errors
    assert "Chunk ghost in index but not in manifest" in result.errors
    assert any(e.startswith("Total tokens mismatch") for e in result.errors)


@pytest.mark.asyncio
async def test_validate_keeps_checking_after_a_corrupt_chunk(tmp_db, chunks):
    store = SqliteChunkStore(tmp_db)
    manifest = await _stored(store, chunks)
    tmp_db.execute("UPDATE chunks SET payload = ? WHERE id = ?", ("{not json", "s1"))
    tmp_db.commit()
    manifest.chunks[1].token_count += 1
    await store.save_manifest(manifest)
    await store.delete_chunks("p1", ["e1"])

    result = await ManifestManager(store).validate("p1")

    assert not result.valid
    assert any(e.startswith("Cannot decode stored chunk s1") for e in result.errors)
    assert "Token count mismatch for chunk h1" in result.errors
    assert "Chunk file missing: e1" in result.errors


@pytest.mark.asyncio
async def test_validate_checks_separately_stored_indices(store, chunks):
    await _stored(store, chunks)
    await store.save_index("p1", "byEntityType", {"IFCDOOR": ["h1", "ghost"]})

    result = await ManifestManager(store).validate("p1")

    assert not result.valid
    assert "Chunk ghost in stored index byEntityType but not in manifest" in result.errors
    assert "Stored index byEntityType differs from manifest" in result.errors


@pytest.mark.asyncio
async def test_validate_reports_missing_stored_index(store, chunks):
    manifest = await _stored(store, chunks)
    await store.save_index("p1", "bySystem", {})

    result = await ManifestManager(store).validate("p1")

    assert manifest.index.by_system
    assert result.errors == ["Stored index bySystem differs from manifest"]


@pytest.mark.asyncio
async def test_rebuild_keeps_name_and_creation_time(store, chunks):
    original = await _stored(store, chunks)
    await store.delete_chunks("p1", ["h1"])

    rebuilt = await ManifestManager(store).rebuild("p1")

    assert rebuilt.name == "Tower"
    assert rebuilt.created_at == original.created_at
    assert rebuilt.chunk_ids() == ["s1", "e1"]
    assert rebuilt.index.by_system == {}
    assert rebuilt.metadata["file_size"] == 10
    assert (await ManifestManager(store).validate("p1")).valid


@pytest.mark.asyncio
async def test_rebuild_unknown_project(store):
    with pytest.raises(ProjectNotFoundError):
        await ManifestManager(store).rebuild("ghost")


@pytest.mark.asyncio
async def test_update_folds_in_new_chunks(store, chunks, make_chunk):
    await _stored(store, chunks[:2])
    updated = await ManifestManager(store).update("p1", [chunks[2]])

    assert updated.total_chunks == 3
    assert updated.index.by_entity_type["IFCWALL"] == ["s1", "e1"]
    assert (await store.load_manifest("p1")).total_chunks == 3
    assert await store.load_index("p1", "byType") == {
        "spatial": ["s1"], "system": ["h1"], "element-type": ["e1"]
    }


@pytest.mark.asyncio
async def test_update_unknown_project(store, make_chunk):
    with pytest.raises(ProjectNotFoundError):
        await ManifestManager(store).update("ghost", [make_chunk("c1")])


@pytest.mark.asyncio
async def test_stats(store, chunks):
    await _stored(store, chunks)
    stats = await ManifestManager(store).stats("p1")

    assert stats.total_chunks == 3
    assert stats.chunks_by_kind == {"spatial": 1, "system": 1, "element-type": 1}
    assert stats.index_sizes == {"byType": 3, "byEntityType": 3, "byFloor": 1, "bySystem": 1, "spatial": 1}
    assert stats.size_distribution == {"small": 3, "medium": 0, "large": 0}
    assert stats.avg_entities_per_chunk == pytest.approx(14 / 3)
    assert stats.storage_bytes > 0
