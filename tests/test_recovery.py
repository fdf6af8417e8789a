from __future__ import annotations

from ingestion.manifest_store import ManifestStore
from ingestion.recovery import render_status, reset_errors, reset_stuck, status_report


def test_reset_errors_is_noop_without_errors(store: ManifestStore) -> None:
    _ = store.upsert_many_if_absent(["/a", "/b"])
    store.mark_completed("/a", 3)

    assert reset_errors(store) == 0

    summary = store.summary()
    assert (summary.completed, summary.queued, summary.error) == (1, 1, 0)


def test_reset_errors_requeues_and_clears_messages(store: ManifestStore) -> None:
    _ = store.upsert_many_if_absent(["/a", "/b", "/c"])
    store.mark_error("/a", "bad")
    store.mark_error("/b", "worse")
    store.mark_completed("/c", 2)

    assert reset_errors(store) == 2

    for path in ("/a", "/b"):
        entry = store.get(path)
        assert entry is not None and entry.error is None
    assert store.summary().completed == 1


def test_reset_stuck_requeues_processing(store: ManifestStore) -> None:
    _ = store.upsert_many_if_absent(["/a", "/b", "/c"])
    _ = store.claim_next(2)

    assert reset_stuck(store) == 2
    assert store.summary().queued == 3


def test_status_report_lists_recent_errors_and_pending(store: ManifestStore) -> None:
    _ = store.upsert_many_if_absent(["/docs/a.pdf", "/docs/b.pdf", "/docs/c.pdf"])
    store.mark_error("/docs/a.pdf", "extract failed: ExtractionError: encrypted")
    store.mark_completed("/docs/b.pdf", 12)

    report = status_report(store, error_limit=5)
    text = render_status(report)

    assert report.summary.total == 3
    assert [e.path for e in report.recent_errors] == ["/docs/a.pdf"]
    assert [e.path for e in report.pending] == ["/docs/c.pdf"]
    assert "Total chunks: 12" in text
    assert "encrypted" in text
    assert "/docs/c.pdf" in text


def test_render_status_on_empty_manifest(store: ManifestStore) -> None:
    text = render_status(status_report(store))

    assert "Total files:  0" in text
    assert "Recent errors" not in text
