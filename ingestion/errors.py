"""Exception taxonomy for the ingestion pipeline.

Per-file errors (extraction, embedding, upsert) are caught at the worker
boundary and written to the manifest. ``ManifestStoreError`` and
``DiscoveryError`` on the input root are fatal for a run.
"""

from __future__ import annotations

from collections.abc import Sequence


class IngestionError(Exception):
    """Base class for all ingestion failures."""


class DiscoveryError(IngestionError):
    """The input root (or one of its entries) could not be read."""


class ExtractionError(IngestionError):
    """Unsupported or corrupt file content."""


class NoContentError(IngestionError):
    """Extraction succeeded but produced no text worth chunking.

    Not a failure: the worker records the file as completed with zero chunks.
    """

    def __init__(self, source: str) -> None:
        super().__init__(f"No extractable content in {source}")
        self.source = source


class EmbeddingServiceUnavailable(IngestionError):
    """The embedding backend is unreachable or missing the configured model."""


class EmbeddingBatchError(IngestionError):
    """An embedding call failed for one batch of a document's chunks."""

    def __init__(
        self,
        source: str,
        batch_index: int,
        total_batches: int,
        cause: BaseException | str,
    ) -> None:
        reason = cause if isinstance(cause, str) else f"{type(cause).__name__}: {cause}"
        super().__init__(
            f"Embedding batch {batch_index + 1}/{total_batches} failed for {source}: {reason}"
        )
        self.source = source
        self.batch_index = batch_index
        self.total_batches = total_batches


class UpsertBatchError(IngestionError):
    """A vector-store write failed for one batch of points."""

    def __init__(
        self,
        source: str,
        batch_index: int,
        total_batches: int,
        ids: Sequence[str],
        cause: BaseException,
    ) -> None:
        preview = ", ".join(list(ids)[:3])
        if len(ids) > 3:
            preview += f", … (+{len(ids) - 3} more)"
        super().__init__(
            f"Upsert batch {batch_index + 1}/{total_batches} failed for {source} "
            + f"(ids: {preview}): {type(cause).__name__}: {cause}"
        )
        self.source = source
        self.batch_index = batch_index
        self.total_batches = total_batches
        self.ids = list(ids)


class ManifestStoreError(IngestionError):
    """I/O or consistency failure in the manifest database itself."""


class DocumentNotFoundError(IngestionError):
    """No vector-store points matched the requested source."""


__all__ = [
    "DiscoveryError",
    "DocumentNotFoundError",
    "EmbeddingBatchError",
    "EmbeddingServiceUnavailable",
    "ExtractionError",
    "IngestionError",
    "ManifestStoreError",
    "NoContentError",
    "UpsertBatchError",
]
