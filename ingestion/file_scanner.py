"""Directory discovery feeding the manifest.

Scanning only registers files; it never reads their contents. Re-scanning a
tree is idempotent because the manifest ignores paths it already knows, which
keeps the status of completed and errored files untouched.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable

import config
from ingestion.errors import DiscoveryError
from ingestion.file_filters import is_excluded_dir, should_skip_file
from ingestion.manifest_store import ManifestStore
from ingestion.models import ScanResult
from ingestion.progress import NULL_PROGRESS, IngestionStage, ProgressCallback, ProgressEvent

logger = logging.getLogger(__name__)


class DirectoryScanner:
    """Walks an input root and registers every matching file as queued."""

    def __init__(
        self,
        store: ManifestStore,
        *,
        skip_files: Iterable[str] | None = None,
        progress: ProgressCallback = NULL_PROGRESS,
    ) -> None:
        super().__init__()
        self._store = store
        self._skip_files = set(config.SKIP_FILES if skip_files is None else skip_files)
        self._progress = progress

    @staticmethod
    def _normalize_extensions(extensions: Iterable[str]) -> set[str]:
        normalized = {
            "." + ext.strip().lower().lstrip(".") for ext in extensions if ext.strip().lstrip(".")
        }
        if not normalized:
            raise ValueError("at least one file extension is required")
        return normalized

    def _collect_candidate_files(
        self,
        root_path: Path,
        accepted: set[str],
        *,
        recurse: bool,
    ) -> tuple[list[str], int]:
        """Return matching absolute paths plus the number of unreadable subdirectories."""
        candidates: list[str] = []
        unreadable: list[OSError] = []

        def _on_walk_error(exc: OSError) -> None:
            # The root itself was validated up front; anything here is a subdirectory.
            logger.warning(f"⚠️ Cannot read directory {exc.filename}: {exc.strerror or exc}")
            unreadable.append(exc)

        if recurse:
            for dirpath, subdirs, filenames in os.walk(root_path, onerror=_on_walk_error):
                subdirs[:] = sorted(d for d in subdirs if not is_excluded_dir(d))
                for fname in filenames:
                    skip, reason = should_skip_file(fname, accepted, self._skip_files)
                    if skip:
                        logger.debug(f"Skipping {fname}: {reason}")
                        continue
                    candidates.append(os.path.join(dirpath, fname))
        else:
            with os.scandir(root_path) as entries:
                for entry in entries:
                    if not entry.is_file():
                        continue
                    skip, reason = should_skip_file(entry.name, accepted, self._skip_files)
                    if skip:
                        logger.debug(f"Skipping {entry.name}: {reason}")
                        continue
                    candidates.append(entry.path)

        resolved = sorted({str(Path(path).resolve()) for path in candidates})
        return resolved, len(unreadable)

    def scan(
        self,
        root: str | Path,
        extensions: Iterable[str] | None = None,
        *,
        recurse: bool = True,
    ) -> ScanResult:
        """Register every accepted file under *root*.

        Raises:
            DiscoveryError: *root* is missing, not a directory, or unreadable.
        """
        root_path = Path(root).expanduser()
        if not root_path.exists():
            raise DiscoveryError(f"Input root does not exist: {root_path}")
        if not root_path.is_dir():
            raise DiscoveryError(f"Input root is not a directory: {root_path}")
        if not os.access(root_path, os.R_OK | os.X_OK):
            raise DiscoveryError(f"Input root is not readable: {root_path}")

        accepted = self._normalize_extensions(
            config.ACCEPTED_EXTENSIONS if extensions is None else extensions
        )
        self._progress(
            ProgressEvent(stage=IngestionStage.SCANNING, message=f"Scanning {root_path}...")
        )

        try:
            paths, unreadable_dirs = self._collect_candidate_files(
                root_path.resolve(), accepted, recurse=recurse
            )
        except OSError as exc:
            raise DiscoveryError(f"Cannot read input root {root_path}: {exc}") from exc

        newly_queued = self._store.upsert_many_if_absent(paths)
        result: ScanResult = {
            "discovered": len(paths),
            "newly_queued": newly_queued,
            "already_known": len(paths) - newly_queued,
            "unreadable_dirs": unreadable_dirs,
        }
        logger.info(
            f"📂 Discovered {result['discovered']} files under {root_path} "
            + f"({result['newly_queued']} new, {result['already_known']} already known"
            + (f", {unreadable_dirs} unreadable directories" if unreadable_dirs else "")
            + ")"
        )
        return result


__all__ = ["DirectoryScanner"]
