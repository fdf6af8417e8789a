"""Top-level orchestration for the ingestion pipeline.

A run is: scan the input root into the manifest, then drain the queue with a
bounded pool of worker threads. Each worker takes one claimed file through
read, extract, chunk, embed and upsert strictly in sequence, then records the
outcome in the manifest. Per-file failures never escape a worker; a failing
manifest does, and stops the run.
"""

from __future__ import annotations

import logging
import signal
import threading
import time
import traceback
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from contextlib import contextmanager
from pathlib import Path
from types import FrameType
from typing import Iterator

from ingestion.embedding import ChunkEmbedder
from ingestion.errors import ManifestStoreError, NoContentError
from ingestion.file_scanner import DirectoryScanner
from ingestion.models import FileOutcome, IngestionContext, RunReport, ScanResult
from ingestion.progress import (
    NULL_PROGRESS,
    ConsoleSpinnerProgress,
    IngestionStage,
    ProgressCallback,
    ProgressEvent,
    ProgressReporter,
)
from ingestion.text_processing import declared_type_for
from ingestion.vector_store import VectorUpserter
from types_models import ManifestEntry, ManifestStatus

logger = logging.getLogger(__name__)


def clear_crash_log(path: Path) -> None:
    """Remove the previous run's crash report so it cannot be mistaken for this one."""
    if path.exists():
        path.unlink()
        logger.info("🗑️  Cleared previous crash log")


class IngestionWorkerPool:
    """Drains queued manifest entries with at most ``concurrency`` files in flight."""

    def __init__(
        self,
        ctx: IngestionContext,
        *,
        concurrency: int | None = None,
        progress: ProgressCallback = NULL_PROGRESS,
    ) -> None:
        super().__init__()
        self._ctx = ctx
        self.concurrency = ctx.settings.concurrency if concurrency is None else concurrency
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {self.concurrency}")
        self._progress = progress
        self._stop = threading.Event()
        self._crash_lock = threading.Lock()
        settings = ctx.settings
        self._embedder = ChunkEmbedder(
            ctx.embedder,
            batch_size=settings.embed_batch_size,
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
            chunk_strategy=settings.chunk_strategy,
            progress=progress,
        )
        self._upserter = VectorUpserter(
            ctx.vector_store,
            batch_size=settings.upsert_batch_size,
            progress=progress,
        )

    def request_stop(self) -> None:
        """Stop claiming new files; files already in flight still finish."""
        if not self._stop.is_set():
            logger.warning("🛑 Stop requested; finishing in-flight files")
            self._progress(ProgressEvent(stage=IngestionStage.STOPPING))
        self._stop.set()

    def _write_crash_log(self, path: str, stage: str, exc: BaseException) -> None:
        crash_log = self._ctx.settings.crash_log_path
        block = "".join(
            [
                f"\n{'=' * 60}\n",
                f"CRASHED FILE: {path}\n",
                f"STAGE: {stage}\n",
                f"ERROR TYPE: {type(exc).__name__}\n",
                f"ERROR: {exc}\n",
                "TRACEBACK:\n",
                "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
                f"\n{'=' * 60}\n",
            ]
        )
        with self._crash_lock:
            try:
                with open(crash_log, "a", encoding="utf-8") as handle:
                    _ = handle.write(block)
            except OSError as log_exc:
                logger.error(f"⚠️ Cannot write crash log {crash_log}: {log_exc}")

    def process_entry(self, entry: ManifestEntry) -> FileOutcome:
        """Ingest one claimed file and record its terminal state.

        Raises:
            ManifestStoreError: the outcome could not be recorded.
        """
        path = entry.path
        self._progress(ProgressEvent(stage=IngestionStage.FILE_STARTED, source=path))
        stage = "read"
        try:
            data = Path(path).read_bytes()
            stage = "extract"
            text = self._ctx.extractor.extract(data, declared_type_for(path))
            stage = "embed"
            embedded = self._embedder.embed_document(path, text)
            stage = "upsert"
            written = self._upserter.upsert_chunks(path, embedded)
        except NoContentError:
            self._ctx.store.mark_completed(path, 0)
            self._progress(ProgressEvent(stage=IngestionStage.FILE_EMPTY, source=path))
            return {"path": path, "status": "no_content", "chunk_count": 0, "error": None}
        except Exception as exc:
            message = f"{stage} failed: {type(exc).__name__}: {exc}"
            self._write_crash_log(path, stage, exc)
            self._ctx.store.mark_error(path, message)
            self._progress(
                ProgressEvent(
                    stage=IngestionStage.FILE_FAILED,
                    source=path,
                    message=f"⚠️ Failed: {Path(path).name} - {message[:200]}",
                )
            )
            return {"path": path, "status": ManifestStatus.ERROR.value, "chunk_count": 0, "error": message}

        self._ctx.store.mark_completed(path, written)
        self._progress(
            ProgressEvent(stage=IngestionStage.FILE_COMPLETED, source=path, chunks=written)
        )
        return {
            "path": path,
            "status": ManifestStatus.COMPLETED.value,
            "chunk_count": written,
            "error": None,
        }

    def run(self) -> RunReport:
        """Drain the queue and return the run's tallies.

        Returns once no queued entries remain and nothing is in flight, or
        once a requested stop has let in-flight files finish.

        Raises:
            ManifestStoreError: after in-flight files have finished.
        """
        store = self._ctx.store
        started = time.perf_counter()
        completed = errors = no_content = chunks = 0
        fatal: ManifestStoreError | None = None
        in_flight: dict[Future[FileOutcome], ManifestEntry] = {}

        self._progress(ProgressEvent(stage=IngestionStage.DRAINING))
        with ThreadPoolExecutor(
            max_workers=self.concurrency, thread_name_prefix="ingest-worker"
        ) as executor:
            while True:
                if fatal is None and not self._stop.is_set():
                    free = self.concurrency - len(in_flight)
                    if free > 0:
                        try:
                            claimed = store.claim_next(free)
                        except ManifestStoreError as exc:
                            logger.error(f"❌ Manifest claim failed: {exc}")
                            fatal = exc
                            claimed = []
                        for entry in claimed:
                            in_flight[executor.submit(self.process_entry, entry)] = entry

                if not in_flight:
                    break

                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    entry = in_flight.pop(future)
                    try:
                        outcome = future.result()
                    except ManifestStoreError as exc:
                        logger.error(f"❌ Manifest update failed for {entry.path}: {exc}")
                        if fatal is None:
                            fatal = exc
                        continue
                    if outcome["status"] == "no_content":
                        no_content += 1
                    elif outcome["status"] == ManifestStatus.ERROR.value:
                        errors += 1
                    else:
                        completed += 1
                        chunks += outcome["chunk_count"]

        if fatal is not None:
            self._progress(ProgressEvent(stage=IngestionStage.ERROR, message=str(fatal)))
            raise fatal

        summary = store.summary()
        report: RunReport = {
            "completed": completed,
            "errors": errors,
            "no_content": no_content,
            "chunks": chunks,
            "elapsed": time.perf_counter() - started,
            "stopped_early": self._stop.is_set() and summary.queued > 0,
            "summary": summary,
        }
        self._progress(
            ProgressEvent(
                stage=IngestionStage.COMPLETED,
                message=f"Ingestion complete. Files: {completed + no_content}, errors: {errors}, chunks: {chunks}",
            )
        )
        return report


@contextmanager
def stop_on_sigint(pool: IngestionWorkerPool) -> Iterator[None]:
    """Route Ctrl+C to ``pool.request_stop`` for the duration of the block.

    A second Ctrl+C falls through to the default handler and aborts.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    previous = signal.getsignal(signal.SIGINT)

    def _handler(signum: int, frame: FrameType | None) -> None:
        pool.request_stop()
        _ = signal.signal(signal.SIGINT, signal.default_int_handler)

    _ = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        _ = signal.signal(signal.SIGINT, previous)


def print_summary(report: RunReport, scan: ScanResult | None = None) -> None:
    """Emit final processing statistics."""
    summary = report["summary"]
    print("-------------------------------------------------")
    if scan is not None:
        print(
            f"📂 Discovered: {scan['discovered']} | New: {scan['newly_queued']} "
            + f"| Already known: {scan['already_known']}"
        )
        if scan["unreadable_dirs"]:
            print(f"⚠️  Unreadable directories: {scan['unreadable_dirs']}")
    print(
        f"✅ Done. Files completed: {report['completed']} | Chunks: {report['chunks']} "
        + f"| Time: {report['elapsed']:.1f}s"
    )
    if report["no_content"]:
        print(f"📭 No extractable content: {report['no_content']}")
    print(f"⚠️  Errors this run: {report['errors']}")
    print(
        f"📋 Manifest: {summary.completed} completed, {summary.error} error, "
        + f"{summary.pending} pending, {summary.total_chunks} chunks total"
    )
    if report["stopped_early"]:
        print("🛑 Stopped before the queue was drained; run again to continue.")
    if summary.error:
        print("   (Use `reset` to requeue errored files.)")


def run_ingestion(
    root: str | Path,
    ctx: IngestionContext,
    *,
    recurse: bool = True,
    verbose: bool = False,
    handle_sigint: bool = True,
) -> tuple[ScanResult, RunReport]:
    """Scan *root* into the manifest, then drain the queue.

    Raises:
        DiscoveryError: the root cannot be read.
        ManifestStoreError: the manifest failed during the scan or the drain.
    """
    settings = ctx.settings
    clear_crash_log(Path(settings.crash_log_path))

    spinner = ConsoleSpinnerProgress(enabled=False if verbose else None)
    reporter = ProgressReporter(spinner, verbose=verbose)
    scanner = DirectoryScanner(ctx.store, skip_files=settings.skip_files, progress=reporter)
    pool = IngestionWorkerPool(ctx, progress=reporter)

    printable = ", ".join(sorted(ext.lstrip(".") for ext in settings.accepted_extensions))
    logger.info(f"📄 Processing file types: {printable}")
    logger.info(f"⚙️ Concurrency: {pool.concurrency} | Collection: {ctx.vector_store.collection_name}")

    spinner.start(stage=IngestionStage.SCANNING)
    try:
        scan = scanner.scan(root, settings.accepted_extensions, recurse=recurse)
        reporter.set_total(ctx.store.summary().pending)
        if handle_sigint:
            with stop_on_sigint(pool):
                report = pool.run()
        else:
            report = pool.run()
    finally:
        spinner.stop()

    return scan, report


__all__ = [
    "IngestionWorkerPool",
    "clear_crash_log",
    "print_summary",
    "run_ingestion",
    "stop_on_sigint",
]
