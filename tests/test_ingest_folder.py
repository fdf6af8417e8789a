from __future__ import annotations

import sys

import pytest

import ingest_folder


def test_invalid_environment_exits_with_config_code(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("BULK_CONCURRENCY", "0")
    # Force config and the CLI to be imported again under the bad environment.
    monkeypatch.delitem(sys.modules, "config", raising=False)
    monkeypatch.delitem(sys.modules, "ingestion.cli", raising=False)

    with pytest.raises(SystemExit) as excinfo:
        ingest_folder.main()

    assert excinfo.value.code == ingest_folder.EXIT_INVALID_CONFIG
    assert "Invalid configuration" in capsys.readouterr().out
