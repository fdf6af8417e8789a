from __future__ import annotations

import uuid

import pytest
from qdrant_client import QdrantClient

from conftest import FakeVectorStore
from ingestion.errors import UpsertBatchError
from ingestion.progress import IngestionStage, ProgressEvent
from ingestion.vector_store import QdrantVectorStore, VectorUpserter, point_id_for
from types_models import ChunkRecord, EmbeddedChunk, VectorPoint


def _embedded(source: str, count: int, dim: int = 4) -> list[EmbeddedChunk]:
    return [
        EmbeddedChunk(
            chunk=ChunkRecord(source_path=source, chunk_index=i, text=f"chunk {i}", total_chunks=count),
            vector=[float(i + 1)] + [0.5] * (dim - 1),
        )
        for i in range(count)
    ]


def test_point_ids_are_deterministic_uuids() -> None:
    first = point_id_for("/docs/a.pdf", 3)

    assert first == point_id_for("/docs/a.pdf", 3)
    assert first != point_id_for("/docs/a.pdf", 4)
    assert first != point_id_for("/docs/b.pdf", 3)
    assert uuid.UUID(first).version == 5


def test_upsert_chunks_batches_and_builds_payload() -> None:
    store = FakeVectorStore()
    events: list[ProgressEvent] = []
    upserter = VectorUpserter(store, batch_size=4, progress=events.append)

    written = upserter.upsert_chunks("/docs/a.pdf", _embedded("/docs/a.pdf", 10))

    assert written == 10
    assert store.upsert_calls == 3
    assert store.dimension == 4
    point = store.points[point_id_for("/docs/a.pdf", 7)]
    assert point.payload["source"] == "/docs/a.pdf"
    assert point.payload["chunk_index"] == 7
    assert point.payload["text"] == "chunk 7"
    assert point.payload["title"] == "a.pdf"
    assert [(e.stage, e.batch_index, e.chunks) for e in events] == [
        (IngestionStage.UPSERTING, 0, 4),
        (IngestionStage.UPSERTING, 1, 8),
        (IngestionStage.UPSERTING, 2, 10),
    ]


def test_reingest_overwrites_instead_of_duplicating() -> None:
    store = FakeVectorStore()
    upserter = VectorUpserter(store, batch_size=4)

    _ = upserter.upsert_chunks("/docs/a.pdf", _embedded("/docs/a.pdf", 6))
    _ = upserter.upsert_chunks("/docs/a.pdf", _embedded("/docs/a.pdf", 6))

    assert store.count() == 6


def test_failed_batch_reports_ids() -> None:
    store = FakeVectorStore(fail_on_upsert=2)
    upserter = VectorUpserter(store, batch_size=4)

    with pytest.raises(UpsertBatchError) as excinfo:
        _ = upserter.upsert_chunks("/docs/a.pdf", _embedded("/docs/a.pdf", 10))

    err = excinfo.value
    assert err.batch_index == 1
    assert err.total_batches == 3
    assert err.ids == [point_id_for("/docs/a.pdf", i) for i in range(4, 8)]
    assert "2/3" in str(err)
    assert store.count() == 4


def test_vector_point_requires_core_payload() -> None:
    with pytest.raises(ValueError):
        _ = VectorPoint(id="x", vector=[1.0], payload={"source": "/a"})


def test_qdrant_store_round_trip_in_memory() -> None:
    store = QdrantVectorStore("docs", client=QdrantClient(":memory:"), distance="cosine")
    assert store.collection_exists() is False

    written = VectorUpserter(store, batch_size=3).upsert_chunks("/docs/a.pdf", _embedded("/docs/a.pdf", 5))

    assert written == 5
    assert store.collection_exists() is True
    assert store.count() == 5
    page, _ = store.scroll(limit=10)
    assert {p.source for p in page} == {"/docs/a.pdf"}

    store.delete([point_id_for("/docs/a.pdf", 0)])
    assert store.count() == 4


def test_qdrant_store_rejects_dimension_mismatch() -> None:
    client = QdrantClient(":memory:")
    _ = VectorUpserter(QdrantVectorStore("docs", client=client), batch_size=8).upsert_chunks(
        "/docs/a.pdf", _embedded("/docs/a.pdf", 2, dim=4)
    )

    with pytest.raises(ValueError, match="dimension"):
        QdrantVectorStore("docs", client=client).ensure_collection(8)
