"""
Ingestion subsystem helpers.

The bulk pipeline is composed from small, testable modules: discovery feeds
the manifest, the worker pool drains it through the extraction, embedding
and vector-store adapters, and the recovery and admin helpers back the CLI.
"""

from ingestion import (
    collection_admin,
    embedding,
    embedding_clients,
    environment,
    errors,
    file_filters,
    file_scanner,
    manifest_store,
    models,
    pipeline,
    progress,
    recovery,
    text_processing,
    vector_store,
)

__all__ = [
    "collection_admin",
    "embedding",
    "embedding_clients",
    "environment",
    "errors",
    "file_filters",
    "file_scanner",
    "manifest_store",
    "models",
    "pipeline",
    "progress",
    "recovery",
    "text_processing",
    "vector_store",
]
