from __future__ import annotations

import logging

import pytest

from ingestion.progress import ConsoleSpinnerProgress, IngestionStage, ProgressEvent, ProgressReporter


def test_reporter_aggregates_file_events() -> None:
    reporter = ProgressReporter()

    reporter(ProgressEvent(stage=IngestionStage.FILE_STARTED, source="/d/a.txt"))
    reporter(ProgressEvent(stage=IngestionStage.FILE_STARTED, source="/d/b.txt"))
    reporter(ProgressEvent(stage=IngestionStage.FILE_COMPLETED, source="/d/a.txt", chunks=7))
    reporter(ProgressEvent(stage=IngestionStage.FILE_FAILED, source="/d/b.txt"))
    reporter(ProgressEvent(stage=IngestionStage.FILE_EMPTY, source="/d/c.txt"))

    assert reporter.files_completed == 2
    assert reporter.files_empty == 1
    assert reporter.files_failed == 1
    assert reporter.chunk_total == 7
    assert reporter.in_flight == 0


def test_batch_events_are_logged_with_context(caplog: pytest.LogCaptureFixture) -> None:
    reporter = ProgressReporter(verbose=True)

    with caplog.at_level(logging.INFO, logger="ingestion.progress"):
        reporter(
            ProgressEvent(
                stage=IngestionStage.EMBEDDING,
                source="/d/a.txt",
                batch_index=1,
                total_batches=3,
                chunks=8,
            )
        )

    assert "Embedded batch 2/3 for a.txt (8 chunks so far" in caplog.text


def test_spinner_line_shows_counts() -> None:
    spinner = ConsoleSpinnerProgress(enabled=True)
    spinner.update(
        stage=IngestionStage.EMBEDDING,
        total_files=10,
        files_completed=3,
        files_failed=1,
        chunk_total=42,
        in_flight=2,
    )

    line = spinner._build_line("|", spinner._snapshot)

    assert line.startswith("| [4/10]")
    assert "chunks=42" in line
    assert "errors=1" in line
    assert "active=2" in line
