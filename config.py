# ======================================
# Config for the bulk ingestion pipeline
# Every value can be overridden through the environment variable named in
# the _env_* call next to it.
# ======================================

import os
from typing import Literal, Set

# Type definitions
ChunkStrategy = Literal["recursive", "fixed"]
EmbedBackend = Literal["ollama", "sentence-transformers"]


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_extensions(name: str, default: str) -> Set[str]:
    raw = _env_str(name, default)
    return {
        "." + part.strip().lower().lstrip(".")
        for part in raw.split(",")
        if part.strip()
    }


# Worker pool
CONCURRENCY: int = _env_int("BULK_CONCURRENCY", 6)

# Batching (embedding calls and vector-store writes are sized independently)
EMBED_BATCH_SIZE: int = _env_int("BULK_EMBED_BATCH", 128)
UPSERT_BATCH_SIZE: int = _env_int("BULK_UPSERT_BATCH", 256)

# Chunking (characters)
CHUNK_SIZE: int = _env_int("BULK_CHUNK_SIZE", 500)
CHUNK_OVERLAP: int = _env_int("BULK_CHUNK_OVERLAP", 200)
CHUNK_STRATEGY: ChunkStrategy = _env_str("BULK_CHUNK_STRATEGY", "recursive")  # type: ignore[assignment]

# Discovery
ACCEPTED_EXTENSIONS: Set[str] = _env_extensions(
    "BULK_EXTENSIONS", "pdf,docx,txt,md,csv,html,htm,vtt,srt"
)
# Files to skip during discovery (by filename)
SKIP_FILES: Set[str] = {"Thumbs.db", "thumbs.db", "desktop.ini", "Desktop.ini", ".DS_Store"}
REMOVE_SUBTITLE_TIMESTAMPS: bool = _env_bool("REMOVE_SUBTITLE_TIMESTAMPS", False)

# Manifest
MANIFEST_DB: str = _env_str("BULK_MANIFEST_DB", "bulk_manifest.db")

# Embedding service
EMBED_BACKEND: EmbedBackend = _env_str("EMBED_BACKEND", "ollama")  # type: ignore[assignment]
OLLAMA_BASE_URL: str = _env_str("OLLAMA_BASE_URL", "http://localhost:11434")
EMBED_MODEL: str = _env_str("EMBED_MODEL", "nomic-embed-text")
REQUEST_TIMEOUT: int = _env_int("REQUEST_TIMEOUT", 60)

# Vector store
QDRANT_URL: str = _env_str("QDRANT_URL", "http://localhost:6333")
QDRANT_API_KEY: str | None = os.getenv("QDRANT_API_KEY") or None
QDRANT_COLLECTION: str = _env_str("QDRANT_COLLECTION", "documents")
QDRANT_DISTANCE: str = _env_str("QDRANT_DISTANCE", "cosine")

# File paths and logging
INGESTION_LOG_FILE: str = _env_str("INGESTION_LOG_FILE", "ingestion.log")
CRASH_LOG_FILE: str = _env_str("CRASH_LOG_FILE", "crash_log.txt")
LOG_LEVEL: str = _env_str("LOG_LEVEL", "INFO").upper()


def validate_config() -> None:
    """Validate configuration values at startup."""
    # Integer configs that should be positive
    positive_int_configs = [
        ("CONCURRENCY", CONCURRENCY),
        ("EMBED_BATCH_SIZE", EMBED_BATCH_SIZE),
        ("UPSERT_BATCH_SIZE", UPSERT_BATCH_SIZE),
        ("CHUNK_SIZE", CHUNK_SIZE),
        ("REQUEST_TIMEOUT", REQUEST_TIMEOUT),
    ]

    for config_name, config_val in positive_int_configs:
        if not isinstance(config_val, int) or config_val <= 0:
            raise ValueError(
                f"{config_name} must be a positive integer, got: {config_val}"
            )

    if not isinstance(CHUNK_OVERLAP, int) or CHUNK_OVERLAP < 0:
        raise ValueError(
            f"CHUNK_OVERLAP must be a non-negative integer, got: {CHUNK_OVERLAP}"
        )
    if CHUNK_OVERLAP >= CHUNK_SIZE:
        raise ValueError(
            f"CHUNK_OVERLAP ({CHUNK_OVERLAP}) must be smaller than CHUNK_SIZE ({CHUNK_SIZE})"
        )

    # String configs
    string_configs = [
        ("MANIFEST_DB", MANIFEST_DB),
        ("OLLAMA_BASE_URL", OLLAMA_BASE_URL),
        ("EMBED_MODEL", EMBED_MODEL),
        ("QDRANT_URL", QDRANT_URL),
        ("QDRANT_COLLECTION", QDRANT_COLLECTION),
        ("INGESTION_LOG_FILE", INGESTION_LOG_FILE),
        ("CRASH_LOG_FILE", CRASH_LOG_FILE),
    ]

    for config_name, config_val in string_configs:
        if not isinstance(config_val, str) or not config_val.strip():
            raise ValueError(
                f"{config_name} must be a non-empty string, got: {config_val}"
            )

    valid_strategies = {"recursive", "fixed"}
    if CHUNK_STRATEGY not in valid_strategies:
        raise ValueError(
            f"CHUNK_STRATEGY must be one of {valid_strategies}, got: {CHUNK_STRATEGY}"
        )

    valid_backends = {"ollama", "sentence-transformers"}
    if EMBED_BACKEND not in valid_backends:
        raise ValueError(
            f"EMBED_BACKEND must be one of {valid_backends}, got: {EMBED_BACKEND}"
        )

    valid_distances = {"cosine", "dot", "euclid"}
    if QDRANT_DISTANCE not in valid_distances:
        raise ValueError(
            f"QDRANT_DISTANCE must be one of {valid_distances}, got: {QDRANT_DISTANCE}"
        )

    if not ACCEPTED_EXTENSIONS:
        raise ValueError("ACCEPTED_EXTENSIONS must contain at least one extension")

    # Skip files validation
    if not isinstance(SKIP_FILES, set):
        raise ValueError("SKIP_FILES must be a set")


# Validate on import
validate_config()
