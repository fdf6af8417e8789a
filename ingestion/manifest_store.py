"""SQLite-backed manifest of every discovered file and its ingestion state.

The manifest is the single shared mutable resource of a run: the scanner
registers files, workers claim and finish them, and the recovery commands
requeue failures. Every mutation is one SQL statement executed under the
store lock, so a status and its companion columns always change together.
The table layout (``bulk_files``: path, status, chunks_count, error,
updated_at) is shared with the operator tooling that reads it directly.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from types import TracebackType
from typing import Any, Sequence

import sqlite_utils
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ingestion.errors import ManifestStoreError
from types_models import ManifestEntry, ManifestStatus, ManifestSummary

logger = logging.getLogger(__name__)

TABLE_NAME = "bulk_files"


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _is_lock_contention(exc: BaseException) -> bool:
    """True for transient SQLite lock errors raised when another process holds the write lock."""
    return isinstance(exc, sqlite3.OperationalError) and (
        "locked" in str(exc).lower() or "busy" in str(exc).lower()
    )


def _row_to_entry(row: Mapping[str, Any]) -> ManifestEntry:
    try:
        return ManifestEntry(
            path=str(row["path"]),
            status=ManifestStatus(row["status"]),
            chunks_count=int(row["chunks_count"] or 0),
            error=row["error"],
            updated_at=str(row["updated_at"]),
        )
    except (KeyError, ValueError) as exc:
        raise ManifestStoreError(
            f"Corrupt manifest row for {row.get('path', '<unknown>')}: {exc}"
        ) from exc


class ManifestStore:
    """Durable, queryable record of discovered files and their processing state."""

    def __init__(self, db_path: str | Path, *, busy_timeout: float = 30.0) -> None:
        super().__init__()
        self._path = str(db_path)
        self._lock = threading.RLock()
        try:
            if self._path != ":memory:":
                Path(self._path).expanduser().resolve().parent.mkdir(
                    parents=True, exist_ok=True
                )
            conn = sqlite3.connect(
                self._path, timeout=busy_timeout, check_same_thread=False
            )
            self._db = sqlite_utils.Database(conn)
            if self._path != ":memory:":
                # WAL lets status readers run while a pool is writing.
                self._db.enable_wal()
            self._ensure_schema()
        except (sqlite3.Error, OSError) as exc:
            raise ManifestStoreError(
                f"Cannot open manifest database {self._path}: {exc}"
            ) from exc

    @property
    def path(self) -> str:
        return self._path

    def _ensure_schema(self) -> None:
        table = self._db.table(TABLE_NAME)
        with self._lock:
            table.create(
                {
                    "path": str,
                    "status": str,
                    "chunks_count": int,
                    "error": str,
                    "updated_at": str,
                },
                pk="path",
                not_null={"status", "chunks_count", "updated_at"},
                defaults={"status": ManifestStatus.QUEUED.value, "chunks_count": 0},
                if_not_exists=True,
            )
            # Claim scans by status; status reports sort by updated_at.
            table.create_index(["status"], if_not_exists=True)
            table.create_index(["updated_at"], if_not_exists=True)

    @contextmanager
    def _guard(self, action: str) -> Iterator[sqlite_utils.Database]:
        with self._lock:
            try:
                yield self._db
            except sqlite3.Error as exc:
                raise ManifestStoreError(f"Manifest {action} failed: {exc}") from exc

    @retry(
        retry=retry_if_exception(_is_lock_contention),
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def _write(self, sql: str, params: Sequence[Any] = ()) -> tuple[int, list[tuple[Any, ...]]]:
        """Run one mutating statement in its own transaction.

        Rows from a ``RETURNING`` clause are fetched before commit; sqlite3
        discards them otherwise.
        """
        with self._lock, self._db.conn:
            cursor = self._db.execute(sql, params)
            rows = cursor.fetchall()
            return cursor.rowcount, rows

    def _write_guarded(
        self, action: str, sql: str, params: Sequence[Any] = ()
    ) -> tuple[int, list[tuple[Any, ...]]]:
        try:
            return self._write(sql, params)
        except sqlite3.Error as exc:
            raise ManifestStoreError(f"Manifest {action} failed: {exc}") from exc

    def upsert_if_absent(self, path: str) -> bool:
        """Register *path* as queued. Returns False when it was already known."""
        changed, _ = self._write_guarded(
            "insert",
            f"INSERT OR IGNORE INTO {TABLE_NAME} (path, status, chunks_count, error, updated_at) "
            + "VALUES (?, ?, 0, NULL, ?)",
            (path, ManifestStatus.QUEUED.value, _utcnow()),
        )
        return changed > 0

    def upsert_many_if_absent(self, paths: Iterable[str]) -> int:
        """Bulk variant of :meth:`upsert_if_absent`; returns how many were new."""
        now = _utcnow()
        records = [
            {
                "path": path,
                "status": ManifestStatus.QUEUED.value,
                "chunks_count": 0,
                "error": None,
                "updated_at": now,
            }
            for path in paths
        ]
        if not records:
            return 0

        with self._guard("bulk insert") as db:
            before = db.conn.total_changes
            # INSERT OR IGNORE keeps status/error/chunks_count of known paths untouched.
            db.table(TABLE_NAME).insert_all(records, ignore=True, batch_size=500)
            return db.conn.total_changes - before

    def claim_next(self, limit: int) -> list[ManifestEntry]:
        """Atomically move up to *limit* queued entries to processing and return them."""
        if limit <= 0:
            return []
        _, rows = self._write_guarded(
            "claim",
            f"UPDATE {TABLE_NAME} SET status = ?, updated_at = ? "
            + f"WHERE rowid IN (SELECT rowid FROM {TABLE_NAME} WHERE status = ? ORDER BY rowid LIMIT ?) "
            + "RETURNING rowid, path, status, chunks_count, error, updated_at",
            (
                ManifestStatus.PROCESSING.value,
                _utcnow(),
                ManifestStatus.QUEUED.value,
                limit,
            ),
        )
        # RETURNING order is unspecified; restore insertion order.
        rows.sort(key=lambda row: row[0])
        return [
            _row_to_entry(
                {
                    "path": row[1],
                    "status": row[2],
                    "chunks_count": row[3],
                    "error": row[4],
                    "updated_at": row[5],
                }
            )
            for row in rows
        ]

    def mark_completed(self, path: str, chunks_count: int) -> None:
        """Record a successful ingestion; clears any previous error."""
        if chunks_count < 0:
            raise ValueError(f"chunks_count must be >= 0, got {chunks_count}")
        changed, _ = self._write_guarded(
            "mark completed",
            f"UPDATE {TABLE_NAME} SET status = ?, chunks_count = ?, error = NULL, updated_at = ? "
            + "WHERE path = ?",
            (ManifestStatus.COMPLETED.value, chunks_count, _utcnow(), path),
        )
        if changed == 0:
            raise ManifestStoreError(f"Cannot mark unknown path as completed: {path}")

    def mark_error(self, path: str, message: str) -> None:
        """Record a failed ingestion with its reason."""
        if not message or not message.strip():
            raise ValueError("error message must be non-empty")
        changed, _ = self._write_guarded(
            "mark error",
            f"UPDATE {TABLE_NAME} SET status = ?, error = ?, updated_at = ? WHERE path = ?",
            (ManifestStatus.ERROR.value, message, _utcnow(), path),
        )
        if changed == 0:
            raise ManifestStoreError(f"Cannot mark unknown path as errored: {path}")

    def reset_errors_to_queued(self) -> int:
        """Requeue every errored entry, clearing its error. Returns the count affected."""
        changed, _ = self._write_guarded(
            "reset errors",
            f"UPDATE {TABLE_NAME} SET status = ?, error = NULL, updated_at = ? WHERE status = ?",
            (ManifestStatus.QUEUED.value, _utcnow(), ManifestStatus.ERROR.value),
        )
        return changed

    def reset_processing_to_queued(self) -> int:
        """Requeue entries left in processing by an interrupted run."""
        changed, _ = self._write_guarded(
            "reset processing",
            f"UPDATE {TABLE_NAME} SET status = ?, updated_at = ? WHERE status = ?",
            (ManifestStatus.QUEUED.value, _utcnow(), ManifestStatus.PROCESSING.value),
        )
        return changed

    def summary(self) -> ManifestSummary:
        """Counts per status plus the total number of chunks recorded."""
        counts: dict[str, int] = {status.value: 0 for status in ManifestStatus}
        total_chunks = 0
        with self._guard("summary") as db:
            rows = db.execute(
                "SELECT status, COUNT(*), COALESCE(SUM(chunks_count), 0) "
                + f"FROM {TABLE_NAME} GROUP BY status"
            ).fetchall()
        for status, count, chunks in rows:
            if status not in counts:
                raise ManifestStoreError(f"Unknown status value in manifest: {status!r}")
            counts[status] = int(count)
            total_chunks += int(chunks)
        return ManifestSummary(
            queued=counts[ManifestStatus.QUEUED.value],
            processing=counts[ManifestStatus.PROCESSING.value],
            completed=counts[ManifestStatus.COMPLETED.value],
            error=counts[ManifestStatus.ERROR.value],
            total_chunks=total_chunks,
        )

    def get(self, path: str) -> ManifestEntry | None:
        with self._guard("lookup") as db:
            rows = list(
                db.query(f"SELECT * FROM {TABLE_NAME} WHERE path = ?", [path])
            )
        return _row_to_entry(rows[0]) if rows else None

    def list_by_status(
        self, status: ManifestStatus, *, limit: int | None = None
    ) -> list[ManifestEntry]:
        """Entries in *status*, most recently updated first."""
        sql = f"SELECT * FROM {TABLE_NAME} WHERE status = ? ORDER BY updated_at DESC"
        params: list[Any] = [status.value]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._guard("list") as db:
            return [_row_to_entry(row) for row in db.query(sql, params)]

    def close(self) -> None:
        with self._lock:
            self._db.close()

    def __enter__(self) -> "ManifestStore":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


__all__ = ["ManifestStore", "TABLE_NAME"]
