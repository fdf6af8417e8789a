from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Iterator, Sequence

import pytest

from ingestion.errors import ExtractionError
from ingestion.manifest_store import ManifestStore
from ingestion.models import IngestionContext
from types_models import IngestionSettings, StoredPoint, VectorPoint


class FakeExtractor:
    """Decodes bytes as UTF-8; fails for any path whose content starts with FAIL."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def extract(self, data: bytes, declared_type: str) -> str:
        with self._lock:
            self.calls.append(declared_type)
        text = data.decode("utf-8")
        if text.startswith("FAIL"):
            raise ExtractionError("corrupt document")
        return text


class FakeEmbedder:
    """Deterministic 4-dim vectors; optionally fails on the Nth call."""

    def __init__(self, *, fail_on_call: int | None = None, dimension: int = 4) -> None:
        self.fail_on_call = fail_on_call
        self.dimension = dimension
        self.batches: list[int] = []
        self._lock = threading.Lock()

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        with self._lock:
            self.batches.append(len(texts))
            call = len(self.batches)
        if self.fail_on_call is not None and call == self.fail_on_call:
            raise RuntimeError("quota exceeded")
        return [[float(len(text)), 1.0, 0.0, float(i)][: self.dimension] for i, text in enumerate(texts)]


class FakeVectorStore:
    """In-memory stand-in for a Qdrant collection, keyed by point id."""

    def __init__(self, *, collection_name: str = "test", fail_on_upsert: int | None = None) -> None:
        self._collection_name = collection_name
        self.fail_on_upsert = fail_on_upsert
        self.points: dict[str, VectorPoint | StoredPoint] = {}
        self.upsert_calls = 0
        self.dimension: int | None = None
        self.exists = False
        self._lock = threading.Lock()

    @property
    def collection_name(self) -> str:
        return self._collection_name

    def collection_exists(self) -> bool:
        return self.exists

    def ensure_collection(self, dimension: int) -> None:
        self.exists = True
        self.dimension = dimension

    def upsert(self, points: Sequence[VectorPoint]) -> None:
        with self._lock:
            self.upsert_calls += 1
            if self.fail_on_upsert is not None and self.upsert_calls == self.fail_on_upsert:
                raise ConnectionError("vector store unreachable")
            for point in points:
                self.points[point.id] = point

    def delete(self, ids: Sequence[str]) -> None:
        with self._lock:
            for point_id in ids:
                self.points.pop(point_id, None)

    def scroll(self, *, limit: int, offset: Any | None = None) -> tuple[list[StoredPoint], Any | None]:
        ordered = sorted(self.points)
        start = int(offset or 0)
        page = ordered[start : start + limit]
        next_offset = start + limit if start + limit < len(ordered) else None
        return [StoredPoint(id=pid, payload=self.points[pid].payload) for pid in page], next_offset

    def count(self) -> int:
        return len(self.points)

    def add_stored(self, point_id: str, source: str, **payload: Any) -> None:
        self.exists = True
        self.points[point_id] = StoredPoint(id=point_id, payload={"source": source, **payload})


@pytest.fixture
def store(tmp_path: Path) -> Iterator[ManifestStore]:
    manifest = ManifestStore(tmp_path / "manifest.db")
    yield manifest
    manifest.close()


@pytest.fixture
def settings(tmp_path: Path) -> IngestionSettings:
    return IngestionSettings(
        concurrency=2,
        embed_batch_size=4,
        upsert_batch_size=4,
        chunk_size=100,
        chunk_overlap=0,
        chunk_strategy="fixed",
        accepted_extensions={".txt", ".md", ".pdf"},
        manifest_path=tmp_path / "manifest.db",
        crash_log_path=tmp_path / "crash_log.txt",
        collection_name="test",
    )


@pytest.fixture
def make_context(store: ManifestStore, settings: IngestionSettings):
    def _make(
        *,
        embedder: FakeEmbedder | None = None,
        vector_store: FakeVectorStore | None = None,
        extractor: FakeExtractor | None = None,
    ) -> IngestionContext:
        return IngestionContext(
            settings=settings,
            store=store,
            extractor=extractor or FakeExtractor(),
            embedder=embedder or FakeEmbedder(),
            vector_store=vector_store or FakeVectorStore(),
        )

    return _make
