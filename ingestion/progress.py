"""Progress side channel for ingestion runs.

Workers and adapters emit ``ProgressEvent`` objects; ``ProgressReporter``
aggregates them into run-level counters, writes a log line per event and keeps
the optional console spinner current. Nothing in the correctness path reads
these values back.
"""

from __future__ import annotations

import logging
import sys
import threading
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class IngestionStage(str, Enum):
    """Enumeration of ingestion stages for progress reporting."""

    SCANNING = "scanning"
    DRAINING = "draining"
    FILE_STARTED = "file_started"
    EMBEDDING = "embedding"
    UPSERTING = "upserting"
    FILE_COMPLETED = "file_completed"
    FILE_EMPTY = "file_empty"
    FILE_FAILED = "file_failed"
    STOPPING = "stopping"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def default_message(self) -> str:
        """Fallback string for stages when no explicit message provided."""
        defaults: dict[IngestionStage, str] = {
            IngestionStage.SCANNING: "Scanning documents...",
            IngestionStage.DRAINING: "Draining queue...",
            IngestionStage.FILE_STARTED: "Processing document...",
            IngestionStage.EMBEDDING: "Embedding chunks...",
            IngestionStage.UPSERTING: "Writing vectors...",
            IngestionStage.FILE_COMPLETED: "Document completed.",
            IngestionStage.FILE_EMPTY: "Document had no content.",
            IngestionStage.FILE_FAILED: "Document failed.",
            IngestionStage.STOPPING: "Finishing in-flight documents...",
            IngestionStage.COMPLETED: "Ingestion complete.",
            IngestionStage.ERROR: "Error detected.",
        }
        return defaults.get(self, "Working...")


@dataclass(frozen=True)
class ProgressEvent:
    """One progress notification from a worker or adapter."""

    stage: IngestionStage
    source: str | None = None
    batch_index: int | None = None
    total_batches: int | None = None
    chunks: int = 0
    message: str | None = None


ProgressCallback = Callable[[ProgressEvent], None]


def _noop(_: ProgressEvent) -> None:
    return None


NULL_PROGRESS: ProgressCallback = _noop


@dataclass
class _ProgressSnapshot:
    """Mutable status snapshot rendered by the spinner."""

    stage: IngestionStage = IngestionStage.SCANNING
    message: str = "Preparing ingestion..."
    total_files: Optional[int] = None
    files_completed: int = 0
    files_failed: int = 0
    chunk_total: int = 0
    in_flight: int = 0


class ConsoleSpinnerProgress:
    """Renders a lightweight spinner with status updates during ingestion."""

    def __init__(self, *, enabled: Optional[bool] = None, interval: float = 0.12) -> None:
        super().__init__()
        self._enabled = sys.stdout.isatty() if enabled is None else enabled
        self._interval = max(interval, 0.05)
        self._frames = ["-", "\\", "|", "/"]
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._snapshot = _ProgressSnapshot()
        self._render_thread: threading.Thread | None = None
        self._last_line_length = 0

    def start(self, *, stage: IngestionStage | None = None, total_files: Optional[int] = None) -> None:
        """Begin rendering the spinner, updating initial state if provided."""
        if not self._enabled:
            return
        self.update(stage=stage, total_files=total_files)
        if self._render_thread is not None:
            return
        self._stop_event.clear()
        self._render_thread = threading.Thread(
            target=self._render_loop, daemon=True, name="ingestion-spinner"
        )
        self._render_thread.start()

    def update(
        self,
        *,
        stage: IngestionStage | None = None,
        message: str | None = None,
        total_files: Optional[int] = None,
        files_completed: Optional[int] = None,
        files_failed: Optional[int] = None,
        chunk_total: Optional[int] = None,
        in_flight: Optional[int] = None,
    ) -> None:
        """Update the current snapshot used by the spinner."""
        if not self._enabled:
            return

        with self._lock:
            snap = self._snapshot
            if stage is not None:
                snap.stage = stage
                snap.message = message or stage.default_message
            elif message is not None:
                snap.message = message
            if total_files is not None:
                snap.total_files = max(total_files, 0)
            if files_completed is not None:
                snap.files_completed = max(files_completed, 0)
            if files_failed is not None:
                snap.files_failed = max(files_failed, 0)
            if chunk_total is not None:
                snap.chunk_total = max(chunk_total, 0)
            if in_flight is not None:
                snap.in_flight = max(in_flight, 0)

    def stop(self, final_message: str | None = None) -> None:
        """Terminate the render loop and optionally print a final message."""
        if self._enabled and self._render_thread is not None:
            self._stop_event.set()
            self._render_thread.join()
            self._render_thread = None
            with self._lock:
                self._clear_line_locked()

        if final_message:
            print(final_message)
            _ = sys.stdout.flush()

    def _render_loop(self) -> None:
        frame_index = 0
        while not self._stop_event.is_set():
            with self._lock:
                snapshot = replace(self._snapshot)
            frame = self._frames[frame_index % len(self._frames)]
            frame_index += 1
            self._write_inline(self._build_line(frame, snapshot))
            if self._stop_event.wait(self._interval):
                break

    @staticmethod
    def _build_line(frame: str, snapshot: _ProgressSnapshot) -> str:
        parts: list[str] = [frame]
        done = snapshot.files_completed + snapshot.files_failed
        if snapshot.total_files:
            parts.append(f"[{min(done, snapshot.total_files)}/{snapshot.total_files}]")
        parts.append(snapshot.message.strip())

        extras: list[str] = []
        if snapshot.in_flight:
            extras.append(f"active={snapshot.in_flight}")
        if snapshot.chunk_total:
            extras.append(f"chunks={snapshot.chunk_total}")
        if snapshot.files_failed:
            extras.append(f"errors={snapshot.files_failed}")
        if extras:
            parts.append("(" + " | ".join(extras) + ")")
        return " ".join(parts)

    def _write_inline(self, line: str) -> None:
        with self._lock:
            _ = sys.stdout.write("\r" + line)
            pad = self._last_line_length - len(line)
            if pad > 0:
                _ = sys.stdout.write(" " * pad + "\r" + line)
            _ = sys.stdout.flush()
            self._last_line_length = len(line)

    def _clear_line_locked(self) -> None:
        if self._last_line_length <= 0:
            return
        _ = sys.stdout.write("\r" + " " * self._last_line_length + "\r")
        _ = sys.stdout.flush()
        self._last_line_length = 0


class ProgressReporter:
    """Thread-safe aggregator turning worker events into logs and spinner updates."""

    def __init__(
        self,
        spinner: ConsoleSpinnerProgress | None = None,
        *,
        verbose: bool = False,
    ) -> None:
        super().__init__()
        self._spinner = spinner
        self._verbose = verbose
        self._lock = threading.Lock()
        self.files_completed = 0
        self.files_failed = 0
        self.files_empty = 0
        self.chunk_total = 0
        self.in_flight = 0
        self.total_files: int | None = None

    def __call__(self, event: ProgressEvent) -> None:
        self.emit(event)

    def set_total(self, total_files: int) -> None:
        with self._lock:
            self.total_files = total_files
        if self._spinner:
            self._spinner.update(total_files=total_files)

    def emit(self, event: ProgressEvent) -> None:
        name = Path(event.source).name if event.source else ""
        with self._lock:
            if event.stage is IngestionStage.FILE_STARTED:
                self.in_flight += 1
            elif event.stage is IngestionStage.FILE_COMPLETED:
                self.in_flight = max(self.in_flight - 1, 0)
                self.files_completed += 1
                self.chunk_total += event.chunks
            elif event.stage is IngestionStage.FILE_EMPTY:
                self.in_flight = max(self.in_flight - 1, 0)
                self.files_completed += 1
                self.files_empty += 1
            elif event.stage is IngestionStage.FILE_FAILED:
                self.in_flight = max(self.in_flight - 1, 0)
                self.files_failed += 1
            counters = (self.files_completed, self.files_failed, self.chunk_total, self.in_flight)

        files_completed, files_failed, chunk_total, in_flight = counters
        line = self._format(event, name, chunk_total)
        level = logging.INFO
        if event.stage in (IngestionStage.FILE_FAILED, IngestionStage.ERROR):
            level = logging.ERROR
        elif event.stage is IngestionStage.FILE_EMPTY:
            level = logging.WARNING
        elif event.stage in (IngestionStage.EMBEDDING, IngestionStage.UPSERTING, IngestionStage.FILE_STARTED):
            level = logging.INFO if self._verbose else logging.DEBUG
        logger.log(level, line)

        if self._spinner:
            self._spinner.update(
                stage=event.stage,
                message=line,
                files_completed=files_completed,
                files_failed=files_failed,
                chunk_total=chunk_total,
                in_flight=in_flight,
            )

    @staticmethod
    def _format(event: ProgressEvent, name: str, chunk_total: int) -> str:
        if event.message:
            return event.message
        if event.stage in (IngestionStage.EMBEDDING, IngestionStage.UPSERTING):
            verb = "Embedded" if event.stage is IngestionStage.EMBEDDING else "Upserted"
            batch = (event.batch_index or 0) + 1
            return (
                f"{verb} batch {batch}/{event.total_batches} for {name} "
                + f"({event.chunks} chunks so far, run total {chunk_total})"
            )
        if event.stage is IngestionStage.FILE_STARTED:
            return f"Processing {name}"
        if event.stage is IngestionStage.FILE_COMPLETED:
            return f"✅ Completed {name} ({event.chunks} chunks, run total {chunk_total})"
        if event.stage is IngestionStage.FILE_EMPTY:
            return f"⚠️ No extractable content in {name}; recorded with 0 chunks"
        if event.stage is IngestionStage.FILE_FAILED:
            return f"⚠️ Failed: {name}"
        return event.stage.default_message


__all__ = [
    "ConsoleSpinnerProgress",
    "IngestionStage",
    "NULL_PROGRESS",
    "ProgressCallback",
    "ProgressEvent",
    "ProgressReporter",
]
