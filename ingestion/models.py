from __future__ import annotations

from typing import Any, Protocol, Sequence, TypedDict, runtime_checkable

from pydantic import BaseModel, ConfigDict

from ingestion.manifest_store import ManifestStore
from types_models import IngestionSettings, ManifestSummary, StoredPoint, VectorPoint


@runtime_checkable
class TextExtractorProtocol(Protocol):
    """Structural type for document parsers.

    Turns raw bytes plus a declared type (the lower-case file extension without
    the dot, e.g. ``"pdf"``) into plain text. Implementations raise
    ``ExtractionError`` for unsupported or corrupt input.

    Design rationale: the worker pool only needs this one call, so a Protocol
    lets tests hand in a stub that fails for chosen files without touching
    PyMuPDF or python-docx.

    Implementation examples:
    - ingestion/text_processing.py: DocumentExtractor (PyMuPDF, python-docx, BeautifulSoup)
    - tests/conftest.py: FakeExtractor
    """

    def extract(self, data: bytes, declared_type: str) -> str: ...


@runtime_checkable
class EmbeddingService(Protocol):
    """Structural type for embedding backends.

    Converts a batch of texts into a batch of fixed-dimension vectors, one per
    input and in input order. Network-backed implementations are the main
    suspension point of a worker and may fail with quota or transport errors.

    Implementation examples:
    - ingestion/embedding_clients.py: OllamaEmbeddingClient (HTTP)
    - ingestion/embedding_clients.py: SentenceTransformerEmbeddingClient (local model)
    - tests/conftest.py: FakeEmbedder
    """

    def embed(self, texts: Sequence[str]) -> list[list[float]]: ...


@runtime_checkable
class VectorStoreProtocol(Protocol):
    """Structural type for the remote vector store.

    Writes are keyed by deterministic ids and must overwrite on a matching id,
    which is what makes re-ingesting a file idempotent.

    Implementation examples:
    - ingestion/vector_store.py: QdrantVectorStore
    - tests/conftest.py: FakeVectorStore
    """

    @property
    def collection_name(self) -> str: ...

    def collection_exists(self) -> bool: ...

    def ensure_collection(self, dimension: int) -> None: ...

    def upsert(self, points: Sequence[VectorPoint]) -> None: ...

    def delete(self, ids: Sequence[str]) -> None: ...

    def scroll(
        self, *, limit: int, offset: Any | None = None
    ) -> tuple[list[StoredPoint], Any | None]: ...

    def count(self) -> int: ...


class ScanResult(TypedDict):
    discovered: int
    newly_queued: int
    already_known: int
    unreadable_dirs: int


class FileOutcome(TypedDict):
    path: str
    status: str
    chunk_count: int
    error: str | None


class RunReport(TypedDict):
    completed: int
    errors: int
    no_content: int
    chunks: int
    elapsed: float
    stopped_early: bool
    summary: ManifestSummary


class IngestionContext(BaseModel):
    """Validated container for the collaborators shared by one ingestion run."""

    settings: IngestionSettings
    store: ManifestStore
    extractor: TextExtractorProtocol
    embedder: EmbeddingService
    vector_store: VectorStoreProtocol

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")


__all__ = [
    "EmbeddingService",
    "FileOutcome",
    "IngestionContext",
    "RunReport",
    "ScanResult",
    "TextExtractorProtocol",
    "VectorStoreProtocol",
]
