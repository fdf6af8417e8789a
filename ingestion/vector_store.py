"""Qdrant-backed vector store and the batched upsert adapter used by workers."""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from qdrant_client import QdrantClient, models

import config
from ingestion.errors import UpsertBatchError
from ingestion.models import VectorStoreProtocol
from ingestion.progress import (
    NULL_PROGRESS,
    IngestionStage,
    ProgressCallback,
    ProgressEvent,
)
from types_models import EmbeddedChunk, StoredPoint, VectorPoint

logger = logging.getLogger(__name__)

# Fixed namespace so ids are stable across machines and runs.
POINT_ID_NAMESPACE = uuid.UUID("6f2a9c1e-4b7d-5e3a-9f10-2c8d7e6b5a41")

_DISTANCES: dict[str, models.Distance] = {
    "cosine": models.Distance.COSINE,
    "dot": models.Distance.DOT,
    "euclid": models.Distance.EUCLID,
}


def point_id_for(source: str, chunk_index: int) -> str:
    """Deterministic point id for one chunk of one source.

    Re-ingesting a file overwrites its earlier points instead of duplicating
    them. Qdrant only accepts unsigned integers or UUIDs as ids.
    """
    return str(uuid.uuid5(POINT_ID_NAMESPACE, f"{source}|{chunk_index}"))


def _distance(metric: str) -> models.Distance:
    if metric not in _DISTANCES:
        raise ValueError(f"Unsupported Qdrant metric '{metric}'")
    return _DISTANCES[metric]


class QdrantVectorStore:
    """Thin wrapper over one Qdrant collection."""

    def __init__(
        self,
        collection_name: str | None = None,
        *,
        client: QdrantClient | None = None,
        url: str | None = None,
        api_key: str | None = None,
        distance: str | None = None,
        timeout: int | None = None,
    ) -> None:
        super().__init__()
        self._collection_name = collection_name or config.QDRANT_COLLECTION
        self._distance = _distance(distance or config.QDRANT_DISTANCE)
        self._client = client or QdrantClient(
            url=url or config.QDRANT_URL,
            api_key=api_key if api_key is not None else config.QDRANT_API_KEY,
            timeout=timeout or config.REQUEST_TIMEOUT,
        )
        self._ensure_lock = threading.Lock()
        self._ensured_dimension: int | None = None

    @property
    def collection_name(self) -> str:
        return self._collection_name

    def collection_exists(self) -> bool:
        return bool(self._client.collection_exists(collection_name=self._collection_name))

    def ensure_collection(self, dimension: int) -> None:
        """Create the collection on first use; refuse a mismatched existing one."""
        with self._ensure_lock:
            if self._ensured_dimension == dimension:
                return
            if not self._client.collection_exists(collection_name=self._collection_name):
                logger.info(
                    f"Creating Qdrant collection '{self._collection_name}' (dim={dimension})"
                )
                self._client.create_collection(
                    collection_name=self._collection_name,
                    vectors_config=models.VectorParams(size=dimension, distance=self._distance),
                )
            else:
                info = self._client.get_collection(collection_name=self._collection_name)
                vectors = info.config.params.vectors
                current_size = getattr(vectors, "size", None)
                if current_size is not None and current_size != dimension:
                    raise ValueError(
                        f"Existing collection '{self._collection_name}' has size={current_size}; "
                        + f"embeddings have dimension {dimension}"
                    )
            self._ensured_dimension = dimension

    def upsert(self, points: Sequence[VectorPoint]) -> None:
        if not points:
            return
        _ = self._client.upsert(
            collection_name=self._collection_name,
            points=[
                models.PointStruct(id=point.id, vector=point.vector, payload=point.payload)
                for point in points
            ],
            wait=True,
        )

    def delete(self, ids: Sequence[str]) -> None:
        if not ids:
            return
        _ = self._client.delete(
            collection_name=self._collection_name,
            points_selector=models.PointIdsList(points=list(ids)),
            wait=True,
        )

    def scroll(
        self, *, limit: int, offset: Any | None = None
    ) -> tuple[list[StoredPoint], Any | None]:
        records, next_offset = self._client.scroll(
            collection_name=self._collection_name,
            limit=limit,
            offset=offset,
            with_payload=True,
            with_vectors=False,
        )
        points = [StoredPoint(id=record.id, payload=record.payload or {}) for record in records]
        return points, next_offset

    def count(self) -> int:
        result = self._client.count(collection_name=self._collection_name, exact=True)
        return int(result.count)


class VectorUpserter:
    """Writes a document's embedded chunks to the vector store in batches."""

    def __init__(
        self,
        vector_store: VectorStoreProtocol,
        *,
        batch_size: int | None = None,
        progress: ProgressCallback = NULL_PROGRESS,
    ) -> None:
        super().__init__()
        self._vector_store = vector_store
        self.batch_size = batch_size or config.UPSERT_BATCH_SIZE
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        self._progress = progress

    @staticmethod
    def build_points(embedded_chunks: Sequence[EmbeddedChunk]) -> list[VectorPoint]:
        timestamp = datetime.now(timezone.utc).isoformat()
        points: list[VectorPoint] = []
        for item in embedded_chunks:
            chunk = item.chunk
            points.append(
                VectorPoint(
                    id=point_id_for(chunk.source_path, chunk.chunk_index),
                    vector=item.vector,
                    payload={
                        "source": chunk.source_path,
                        "title": Path(chunk.source_path).name,
                        "chunk_index": chunk.chunk_index,
                        "total_chunks": chunk.total_chunks,
                        "text": chunk.text,
                        "timestamp": timestamp,
                    },
                )
            )
        return points

    def upsert_chunks(self, source: str, embedded_chunks: Sequence[EmbeddedChunk]) -> int:
        """Upsert every chunk of *source*; returns the number of points written.

        Raises:
            UpsertBatchError: a batch write failed. Earlier batches stay written;
                re-ingesting overwrites them because ids are deterministic.
        """
        if not embedded_chunks:
            return 0

        self._vector_store.ensure_collection(len(embedded_chunks[0].vector))
        points = self.build_points(embedded_chunks)
        batches = [
            points[start : start + self.batch_size]
            for start in range(0, len(points), self.batch_size)
        ]
        written = 0
        for batch_index, batch in enumerate(batches):
            try:
                self._vector_store.upsert(batch)
            except Exception as exc:
                raise UpsertBatchError(
                    source,
                    batch_index,
                    len(batches),
                    [point.id for point in batch],
                    exc,
                ) from exc
            written += len(batch)
            self._progress(
                ProgressEvent(
                    stage=IngestionStage.UPSERTING,
                    source=source,
                    batch_index=batch_index,
                    total_batches=len(batches),
                    chunks=written,
                )
            )
        return written


__all__ = ["POINT_ID_NAMESPACE", "QdrantVectorStore", "VectorUpserter", "point_id_for"]
