"""
Type definitions and Pydantic models for the bulk ingestion pipeline.

This module provides strong, validated type definitions for the manifest
rows, the ephemeral chunk records flowing through a worker, and the run-time
settings snapshot used by the CLI.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

import config


class ManifestStatus(str, Enum):
    """Closed set of states a manifest entry can be in."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class ManifestEntry(BaseModel):
    """One discovered source file and its processing state."""

    path: str = Field(description="Absolute filesystem path (unique key)")
    status: ManifestStatus = Field(description="Current processing state")
    chunks_count: int = Field(default=0, ge=0, description="Chunks embedded and upserted")
    error: str | None = Field(default=None, description="Last failure reason")
    updated_at: str = Field(description="ISO-8601 timestamp of the last transition")

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_terminal_state(self) -> "ManifestEntry":
        if self.status is ManifestStatus.COMPLETED and self.error is not None:
            raise ValueError(f"completed entry {self.path} cannot carry an error")
        if self.status is ManifestStatus.ERROR and not self.error:
            raise ValueError(f"errored entry {self.path} must carry an error message")
        return self

    @property
    def filename(self) -> str:
        return Path(self.path).name


class ManifestSummary(BaseModel):
    """Aggregate counts per status plus total chunks."""

    queued: int = Field(default=0, ge=0)
    processing: int = Field(default=0, ge=0)
    completed: int = Field(default=0, ge=0)
    error: int = Field(default=0, ge=0)
    total_chunks: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)

    @property
    def total(self) -> int:
        return self.queued + self.processing + self.completed + self.error

    @property
    def pending(self) -> int:
        return self.queued + self.processing


class ChunkRecord(BaseModel):
    """Unit of work flowing from chunking to embedding to upsert."""

    source_path: str = Field(description="Absolute path of the source file")
    chunk_index: int = Field(ge=0, description="Position of the chunk within the source")
    text: str = Field(description="Chunk text")
    total_chunks: int = Field(ge=1, description="Number of chunks produced for the source")

    model_config = ConfigDict(frozen=True)


class EmbeddedChunk(BaseModel):
    """A chunk paired with its embedding vector."""

    chunk: ChunkRecord
    vector: list[float] = Field(min_length=1)

    model_config = ConfigDict(frozen=True)


class VectorPoint(BaseModel):
    """A single vector-store write: deterministic id, vector, payload."""

    id: str = Field(description="Deterministic point id derived from (source, chunk index)")
    vector: list[float] = Field(min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @field_validator("payload")
    @classmethod
    def _require_core_payload(cls, value: dict[str, Any]) -> dict[str, Any]:
        missing = {"source", "chunk_index", "text"} - value.keys()
        if missing:
            raise ValueError(f"payload missing required keys: {sorted(missing)}")
        return value


class StoredPoint(BaseModel):
    """A point read back from the vector store (vectors are not fetched)."""

    id: str
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> str:
        return str(value)

    @property
    def source(self) -> str | None:
        value = self.payload.get("source")
        return str(value) if value is not None else None


class SourceDocument(BaseModel):
    """One source as seen in the vector store."""

    source: str
    title: str
    chunks: int = Field(ge=0)
    last_updated: str | None = None


class DocumentListing(BaseModel):
    """Exhaustive listing of the sources stored in the collection."""

    documents: list[SourceDocument] = Field(default_factory=list)
    total_chunks: int = Field(default=0, ge=0)
    truncated: bool = Field(
        default=False, description="True when pagination was cut off by the safety limit"
    )


class CollectionStats(BaseModel):
    """Collection statistics. ``unique_sources`` may be a sampled estimate."""

    collection_name: str
    exists: bool
    total_vectors: int = Field(default=0, ge=0)
    unique_sources: int = Field(default=0, ge=0)
    unique_sources_estimated: bool = Field(
        default=False,
        description="True when unique_sources was extrapolated from a sample rather than counted",
    )
    sample_size: int = Field(default=0, ge=0)


class IngestionSettings(BaseModel):
    """Run-time settings snapshot, seeded from ``config`` and overridable by CLI flags."""

    concurrency: int = Field(default=config.CONCURRENCY, ge=1)
    embed_batch_size: int = Field(default=config.EMBED_BATCH_SIZE, ge=1)
    upsert_batch_size: int = Field(default=config.UPSERT_BATCH_SIZE, ge=1)
    chunk_size: int = Field(default=config.CHUNK_SIZE, ge=1)
    chunk_overlap: int = Field(default=config.CHUNK_OVERLAP, ge=0)
    chunk_strategy: config.ChunkStrategy = Field(default=config.CHUNK_STRATEGY)
    accepted_extensions: set[str] = Field(
        default_factory=lambda: set(config.ACCEPTED_EXTENSIONS)
    )
    skip_files: set[str] = Field(default_factory=lambda: set(config.SKIP_FILES))
    remove_subtitle_timestamps: bool = Field(default=config.REMOVE_SUBTITLE_TIMESTAMPS)
    manifest_path: Path = Field(default=Path(config.MANIFEST_DB))
    crash_log_path: Path = Field(default=Path(config.CRASH_LOG_FILE))
    collection_name: str = Field(default=config.QDRANT_COLLECTION, min_length=1)

    model_config = ConfigDict(validate_assignment=True)

    @field_validator("accepted_extensions", mode="before")
    @classmethod
    def _normalize_extensions(cls, value: Any) -> set[str]:
        if isinstance(value, str):
            value = value.split(",")
        normalized = {
            "." + str(ext).strip().lower().lstrip(".")
            for ext in value
            if str(ext).strip().lstrip(".")
        }
        if not normalized:
            raise ValueError("at least one file extension is required")
        return normalized

    @model_validator(mode="after")
    def _check_overlap(self) -> "IngestionSettings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be smaller than chunk_size ({self.chunk_size})"
            )
        return self


__all__ = [
    "ChunkRecord",
    "CollectionStats",
    "DocumentListing",
    "EmbeddedChunk",
    "IngestionSettings",
    "ManifestEntry",
    "ManifestStatus",
    "ManifestSummary",
    "SourceDocument",
    "StoredPoint",
    "VectorPoint",
]
