"""Chunk a document's text and embed it in bounded batches."""

from __future__ import annotations

import logging
from typing import Sequence

import config
from ingestion.errors import EmbeddingBatchError, NoContentError
from ingestion.models import EmbeddingService
from ingestion.progress import (
    NULL_PROGRESS,
    IngestionStage,
    ProgressCallback,
    ProgressEvent,
)
from ingestion.text_processing import chunk_text
from types_models import ChunkRecord, EmbeddedChunk

logger = logging.getLogger(__name__)


def build_chunk_records(
    text: str,
    source_path: str,
    *,
    size: int | None = None,
    overlap: int | None = None,
    strategy: str | None = None,
) -> list[ChunkRecord]:
    """Split *text* and number the pieces 0..n-1 in document order."""
    pieces = chunk_text(text, size=size, overlap=overlap, strategy=strategy)
    total = len(pieces)
    return [
        ChunkRecord(source_path=source_path, chunk_index=index, text=piece, total_chunks=total)
        for index, piece in enumerate(pieces)
    ]


def _batched(items: Sequence[ChunkRecord], size: int) -> list[Sequence[ChunkRecord]]:
    return [items[start : start + size] for start in range(0, len(items), size)]


class ChunkEmbedder:
    """Turns document text into embedded chunks, one embedding call per batch."""

    def __init__(
        self,
        embedder: EmbeddingService,
        *,
        batch_size: int | None = None,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
        chunk_strategy: str | None = None,
        progress: ProgressCallback = NULL_PROGRESS,
    ) -> None:
        super().__init__()
        self._embedder = embedder
        self.batch_size = batch_size or config.EMBED_BATCH_SIZE
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        self._chunk_size = chunk_size
        self._chunk_overlap = chunk_overlap
        self._chunk_strategy = chunk_strategy
        self._progress = progress

    def embed_document(self, source_path: str, text: str) -> list[EmbeddedChunk]:
        """Chunk and embed one document.

        Raises:
            NoContentError: the text produced no chunks.
            EmbeddingBatchError: a batch failed or returned malformed vectors.
        """
        records = build_chunk_records(
            text,
            source_path,
            size=self._chunk_size,
            overlap=self._chunk_overlap,
            strategy=self._chunk_strategy,
        )
        if not records:
            raise NoContentError(source_path)

        batches = _batched(records, self.batch_size)
        total_batches = len(batches)
        embedded: list[EmbeddedChunk] = []
        dimension: int | None = None

        for batch_index, batch in enumerate(batches):
            try:
                vectors = self._embedder.embed([record.text for record in batch])
            except Exception as exc:
                raise EmbeddingBatchError(source_path, batch_index, total_batches, exc) from exc

            if len(vectors) != len(batch):
                raise EmbeddingBatchError(
                    source_path,
                    batch_index,
                    total_batches,
                    f"expected {len(batch)} vectors, got {len(vectors)}",
                )
            for record, vector in zip(batch, vectors):
                if dimension is None:
                    dimension = len(vector)
                if not vector or len(vector) != dimension:
                    raise EmbeddingBatchError(
                        source_path,
                        batch_index,
                        total_batches,
                        f"inconsistent vector dimension {len(vector)} (expected {dimension})"
                        + f" for chunk {record.chunk_index}",
                    )
                embedded.append(EmbeddedChunk(chunk=record, vector=list(vector)))

            self._progress(
                ProgressEvent(
                    stage=IngestionStage.EMBEDDING,
                    source=source_path,
                    batch_index=batch_index,
                    total_batches=total_batches,
                    chunks=len(embedded),
                )
            )

        logger.debug(
            f"Embedded {len(embedded)} chunks from {source_path} in {total_batches} batch(es)"
        )
        return embedded


__all__ = ["ChunkEmbedder", "build_chunk_records"]
