"""Read and maintenance operations over the vector collection.

These walk the collection with paginated scrolls; none of them touch the
manifest.
"""

from __future__ import annotations

import logging
from typing import Any, Iterator
from urllib.parse import unquote

from ingestion.errors import DocumentNotFoundError
from ingestion.models import VectorStoreProtocol
from types_models import CollectionStats, DocumentListing, SourceDocument, StoredPoint

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1000
DEFAULT_SAMPLE_SIZE = 1000


def _normalize_source(source: str) -> str:
    return unquote(source).lower().rstrip("/\\")


def iter_points(
    store: VectorStoreProtocol,
    *,
    page_size: int = DEFAULT_PAGE_SIZE,
    expected_total: int | None = None,
) -> Iterator[list[StoredPoint]]:
    """Yield pages of points until the store reports no further offset.

    When *expected_total* is known, iteration stops once more than twice that
    many points have been read, so a store that keeps handing back offsets
    cannot loop forever.
    """
    offset: Any | None = None
    seen = 0
    while True:
        points, offset = store.scroll(limit=page_size, offset=offset)
        if not points:
            return
        seen += len(points)
        yield points
        if offset is None:
            return
        if expected_total is not None and seen > expected_total * 2:
            logger.warning(
                f"Safety limit reached: retrieved {seen} points but expected max {expected_total}"
            )
            return


def list_documents(
    store: VectorStoreProtocol, *, page_size: int = DEFAULT_PAGE_SIZE
) -> DocumentListing:
    """Exhaustively list the sources stored in the collection with chunk counts."""
    if not store.collection_exists():
        logger.info(f"Collection {store.collection_name} does not exist yet")
        return DocumentListing()

    total_vectors = store.count()
    if total_vectors == 0:
        return DocumentListing()

    documents: dict[str, SourceDocument] = {}
    read = 0
    truncated = False
    for page in iter_points(store, page_size=page_size, expected_total=total_vectors):
        read += len(page)
        for point in page:
            source = point.source or "Unknown"
            doc = documents.get(source)
            if doc is None:
                doc = SourceDocument(
                    source=source,
                    title=str(point.payload.get("title") or source),
                    chunks=0,
                    last_updated=point.payload.get("timestamp"),
                )
                documents[source] = doc
            doc.chunks += 1
        if read > total_vectors * 2:
            truncated = True

    logger.info(f"Found {len(documents)} unique documents with {read} total chunks")
    return DocumentListing(
        documents=sorted(documents.values(), key=lambda d: d.source),
        total_chunks=read,
        truncated=truncated,
    )


def collection_stats(
    store: VectorStoreProtocol, *, sample_size: int = DEFAULT_SAMPLE_SIZE
) -> CollectionStats:
    """Vector count plus a unique-source count.

    The source count is exact when the whole collection fits in one sample.
    Otherwise it is extrapolated from the first page and flagged as an
    estimate; sources are rarely spread uniformly, so treat it as rough.
    """
    if sample_size < 1:
        raise ValueError(f"sample_size must be >= 1, got {sample_size}")
    name = store.collection_name
    if not store.collection_exists():
        return CollectionStats(collection_name=name, exists=False)

    total_vectors = store.count()
    if total_vectors == 0:
        return CollectionStats(collection_name=name, exists=True)

    sample, _ = store.scroll(limit=min(sample_size, total_vectors))
    unique = {point.source for point in sample if point.source}
    estimated = total_vectors > len(sample) and len(sample) > 0
    unique_sources = (
        round(len(unique) * total_vectors / len(sample)) if estimated else len(unique)
    )
    logger.info(
        f"Collection stats: {total_vectors} vectors, "
        + f"{'~' if estimated else ''}{unique_sources} unique sources"
    )
    return CollectionStats(
        collection_name=name,
        exists=True,
        total_vectors=total_vectors,
        unique_sources=unique_sources,
        unique_sources_estimated=estimated,
        sample_size=len(sample),
    )


def delete_document(
    store: VectorStoreProtocol, source: str, *, page_size: int = DEFAULT_PAGE_SIZE
) -> int:
    """Delete every point whose source matches *source*; returns the count removed.

    Matching ignores case, URL escaping and a trailing slash.

    Raises:
        DocumentNotFoundError: nothing in the collection matched.
    """
    if not store.collection_exists():
        raise DocumentNotFoundError(f"Collection {store.collection_name} does not exist")

    total_vectors = store.count()
    wanted = _normalize_source(source)
    ids: list[str] = []
    available: set[str] = set()
    for page in iter_points(store, page_size=page_size, expected_total=total_vectors):
        for point in page:
            if point.source is None:
                continue
            if _normalize_source(point.source) == wanted:
                ids.append(point.id)
            elif len(available) < 5:
                available.add(point.source)

    if not ids:
        if available:
            logger.warning(f"Available sources: {', '.join(sorted(available))}...")
        raise DocumentNotFoundError(f"No documents found with source: {source}")

    store.delete(ids)
    logger.info(f"Deleted {len(ids)} chunks for source: {source}")
    return len(ids)


__all__ = ["collection_stats", "delete_document", "iter_points", "list_documents"]
