"""Operator recovery helpers over the manifest.

Requeueing only changes manifest state; vectors already written for a file
are overwritten in place when it is re-ingested, so the vector store is never
touched here.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, Field

from ingestion.manifest_store import ManifestStore
from types_models import ManifestEntry, ManifestStatus, ManifestSummary

logger = logging.getLogger(__name__)


class StatusReport(BaseModel):
    """Snapshot of the manifest for the ``status`` command."""

    summary: ManifestSummary
    recent_errors: list[ManifestEntry] = Field(default_factory=list)
    pending: list[ManifestEntry] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


def reset_errors(store: ManifestStore) -> int:
    """Requeue every errored file. Returns how many were requeued."""
    count = store.reset_errors_to_queued()
    if count:
        logger.info(f"🔄 Requeued {count} errored file(s)")
    else:
        logger.info("No errored files to requeue")
    return count


def reset_stuck(store: ManifestStore) -> int:
    """Requeue files an interrupted run left in processing.

    Only safe while no run is active against the same manifest.
    """
    count = store.reset_processing_to_queued()
    if count:
        logger.info(f"🔄 Requeued {count} stuck file(s)")
    return count


def status_report(store: ManifestStore, *, error_limit: int = 5, pending_limit: int = 10) -> StatusReport:
    summary = store.summary()
    pending: list[ManifestEntry] = []
    if summary.pending:
        pending = store.list_by_status(ManifestStatus.PROCESSING, limit=pending_limit)
        remaining = pending_limit - len(pending)
        if remaining > 0:
            pending += store.list_by_status(ManifestStatus.QUEUED, limit=remaining)
    return StatusReport(
        summary=summary,
        recent_errors=store.list_by_status(ManifestStatus.ERROR, limit=error_limit),
        pending=pending,
    )


def render_status(report: StatusReport) -> str:
    """Format a status report for the terminal."""
    summary = report.summary
    lines = [
        "📊 Manifest status",
        "-------------------------------------------------",
        f"Total files:  {summary.total}",
        f"  completed:  {summary.completed}",
        f"  error:      {summary.error}",
        f"  queued:     {summary.queued}",
        f"  processing: {summary.processing}",
        f"Pending:      {summary.pending}",
        f"Total chunks: {summary.total_chunks}",
    ]
    if summary.total:
        done = summary.completed + summary.error
        lines.append(f"Progress:     {done / summary.total * 100:.1f}%")

    if report.recent_errors:
        lines.append("")
        lines.append("⚠️  Recent errors:")
        for entry in report.recent_errors:
            lines.append(f"  • {entry.filename} ({entry.updated_at})")
            lines.append(f"      {entry.error}")

    if report.pending:
        lines.append("")
        lines.append("⏳ Pending files:")
        for entry in report.pending:
            lines.append(f"  • [{entry.status.value}] {entry.path}")
        if summary.pending > len(report.pending):
            lines.append(f"  • (+ {summary.pending - len(report.pending)} more...)")

    return "\n".join(lines)


__all__ = ["StatusReport", "render_status", "reset_errors", "reset_stuck", "status_report"]
