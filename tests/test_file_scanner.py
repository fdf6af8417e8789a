from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Iterator

import pytest

from ingestion.errors import DiscoveryError
from ingestion.file_filters import should_skip_file
from ingestion.file_scanner import DirectoryScanner
from ingestion.manifest_store import ManifestStore
from types_models import ManifestStatus


class _TrackedScandir:
    def __init__(self, inner: Any) -> None:
        self._inner = inner
        self.closed = False

    def __enter__(self) -> _TrackedScandir:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._inner.close()
        self.closed = True

    def __iter__(self) -> Iterator[os.DirEntry[str]]:
        return iter(self._inner)


def _touch(path: Path, text: str = "content") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    _ = path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def corpus(tmp_path: Path) -> Path:
    root = tmp_path / "corpus"
    _touch(root / "a.pdf")
    _touch(root / "b.TXT")
    _touch(root / "notes.md")
    _touch(root / "image.png")
    _touch(root / "Thumbs.db")
    _touch(root / "~$draft.docx")
    _touch(root / "nested" / "deep" / "c.txt")
    _touch(root / ".git" / "objects.txt")
    _touch(root / "node_modules" / "pkg" / "readme.md")
    return root


def test_scan_registers_matching_files(store: ManifestStore, corpus: Path) -> None:
    scanner = DirectoryScanner(store)

    result = scanner.scan(corpus, {"pdf", "txt"})

    assert result["discovered"] == 3
    assert result["newly_queued"] == 3
    assert result["already_known"] == 0
    queued = {entry.path for entry in store.list_by_status(ManifestStatus.QUEUED)}
    assert queued == {
        str((corpus / "a.pdf").resolve()),
        str((corpus / "b.TXT").resolve()),
        str((corpus / "nested" / "deep" / "c.txt").resolve()),
    }


def test_rescan_is_idempotent_and_preserves_state(store: ManifestStore, corpus: Path) -> None:
    scanner = DirectoryScanner(store)
    _ = scanner.scan(corpus, {".pdf", ".txt"})
    pdf = str((corpus / "a.pdf").resolve())
    store.mark_error(pdf, "corrupt")

    result = scanner.scan(corpus, {".pdf", ".txt"})

    assert result["newly_queued"] == 0
    assert result["already_known"] == 3
    entry = store.get(pdf)
    assert entry is not None
    assert entry.status is ManifestStatus.ERROR
    assert entry.error == "corrupt"


def test_no_recurse_only_scans_root(store: ManifestStore, corpus: Path) -> None:
    result = DirectoryScanner(store).scan(corpus, {"txt"}, recurse=False)

    assert result["discovered"] == 1


def test_skips_excluded_directories(store: ManifestStore, corpus: Path) -> None:
    result = DirectoryScanner(store).scan(corpus, {"md", "txt"})

    paths = {entry.path for entry in store.list_by_status(ManifestStatus.QUEUED)}
    assert result["discovered"] == 3
    assert not any(".git" in p or "node_modules" in p for p in paths)


def test_missing_root_raises(store: ManifestStore, tmp_path: Path) -> None:
    with pytest.raises(DiscoveryError):
        _ = DirectoryScanner(store).scan(tmp_path / "nope", {"txt"})


def test_file_root_raises(store: ManifestStore, tmp_path: Path) -> None:
    file_path = _touch(tmp_path / "single.txt")
    with pytest.raises(DiscoveryError):
        _ = DirectoryScanner(store).scan(file_path, {"txt"})


def test_unreadable_subdirectory_is_counted(
    store: ManifestStore, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    root = tmp_path / "root"
    _touch(root / "ok.txt")
    locked = root / "locked"
    _touch(locked / "hidden.txt")
    real_scandir = os.scandir

    def _scandir(path: Any = ".") -> Any:
        if Path(path).name == "locked":
            raise PermissionError(13, "Permission denied", str(path))
        return real_scandir(path)

    monkeypatch.setattr(os, "scandir", _scandir)

    result = DirectoryScanner(store).scan(root, {"txt"})

    assert result["discovered"] == 1
    assert result["unreadable_dirs"] == 1
    assert store.get(str((locked / "hidden.txt").resolve())) is None


def test_no_recurse_closes_directory_iterator(
    store: ManifestStore, corpus: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    real_scandir = os.scandir
    opened: list[_TrackedScandir] = []

    def _scandir(path: Any = ".") -> _TrackedScandir:
        tracked = _TrackedScandir(real_scandir(path))
        opened.append(tracked)
        return tracked

    monkeypatch.setattr(os, "scandir", _scandir)

    result = DirectoryScanner(store).scan(corpus, {"txt"}, recurse=False)

    assert result["discovered"] == 1
    assert opened and all(tracked.closed for tracked in opened)


def test_should_skip_file_rules() -> None:
    accepted = {".pdf", ".txt"}
    skip = {"Thumbs.db"}

    assert should_skip_file("report.PDF", accepted, skip) == (False, "")
    assert should_skip_file("Thumbs.db", accepted, skip)[0] is True
    assert should_skip_file("~$report.pdf", accepted, skip)[0] is True
    assert should_skip_file("photo.png", accepted, skip)[0] is True
