"""Process-wide setup for ingestion runs.

Logging is configured once here, and the run's collaborators (manifest,
extractor, embedding client, vector store) are assembled into an
``IngestionContext``. Network clients are constructed lazily so commands
that only read the manifest never open a connection.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

import config
from ingestion.embedding_clients import create_embedding_client
from ingestion.manifest_store import ManifestStore
from ingestion.models import (
    EmbeddingService,
    IngestionContext,
    TextExtractorProtocol,
    VectorStoreProtocol,
)
from ingestion.text_processing import DocumentExtractor
from ingestion.vector_store import QdrantVectorStore
from types_models import IngestionSettings

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "urllib3",
    "qdrant_client",
    "sentence_transformers",
    "torch",
)

logger = logging.getLogger(__name__)


def configure_logging(
    *,
    level: str | int | None = None,
    log_file: str | Path | None = None,
    verbose: bool = False,
) -> None:
    """Mirror logs to stderr and to the ingestion log file.

    Safe to call more than once; ``force=True`` replaces handlers from an
    earlier call so tests and repeated CLI invocations do not stack them.
    """
    resolved_level = logging.DEBUG if verbose else (level or config.LOG_LEVEL)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    path = Path(log_file or config.INGESTION_LOG_FILE)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))
    except OSError as exc:
        print(f"⚠️ Cannot open log file {path}: {exc}")

    logging.basicConfig(level=resolved_level, format=LOG_FORMAT, handlers=handlers, force=True)
    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


class EnvironmentManager:
    """Builds and caches the shared ingestion context for one process."""

    def __init__(
        self,
        settings: IngestionSettings | None = None,
        *,
        extractor_factory: Callable[[IngestionSettings], TextExtractorProtocol] | None = None,
        embedder_factory: Callable[[], EmbeddingService] | None = None,
        vector_store_factory: Callable[[IngestionSettings], VectorStoreProtocol] | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings or IngestionSettings()
        self._extractor_factory = extractor_factory or (
            lambda s: DocumentExtractor(remove_subtitle_timestamps=s.remove_subtitle_timestamps)
        )
        self._embedder_factory = embedder_factory or create_embedding_client
        self._vector_store_factory = vector_store_factory or (
            lambda s: QdrantVectorStore(s.collection_name)
        )
        self._store: ManifestStore | None = None
        self._vector_store: VectorStoreProtocol | None = None
        self._context: IngestionContext | None = None

    def open_store(self) -> ManifestStore:
        """Open (once) the manifest named by the settings."""
        if self._store is None:
            self._store = ManifestStore(self.settings.manifest_path)
            logger.debug(f"Opened manifest {self._store.path}")
        return self._store

    def vector_store(self) -> VectorStoreProtocol:
        if self._vector_store is None:
            self._vector_store = self._vector_store_factory(self.settings)
        return self._vector_store

    def initialize(self) -> IngestionContext:
        """Instantiate the shared ingestion context, caching the result."""
        if self._context is not None:
            return self._context

        self._context = IngestionContext(
            settings=self.settings,
            store=self.open_store(),
            extractor=self._extractor_factory(self.settings),
            embedder=self._embedder_factory(),
            vector_store=self.vector_store(),
        )
        return self._context

    def close(self) -> None:
        if self._store is not None:
            self._store.close()
            self._store = None
        self._context = None


__all__ = ["EnvironmentManager", "LOG_FORMAT", "NOISY_LOGGERS", "configure_logging"]
