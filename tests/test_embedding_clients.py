from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pytest
import requests

import ingestion.embedding_clients as embedding_clients
from ingestion.embedding_clients import OllamaEmbeddingClient, create_embedding_client, l2_normalize


@dataclass
class _Response:
    status_code: int
    payload: dict[str, Any] = field(default_factory=dict)

    def json(self) -> dict[str, Any]:
        return self.payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


class _Session:
    def __init__(self, *responses: _Response) -> None:
        self._responses = list(responses)
        self.requests: list[tuple[str, dict[str, Any]]] = []

    def post(self, url: str, json: dict[str, Any], timeout: int) -> _Response:
        self.requests.append((url, json))
        return self._responses.pop(0)


def _client(session: _Session) -> OllamaEmbeddingClient:
    return OllamaEmbeddingClient(
        "http://ollama:11434/", "nomic-embed-text", timeout=5, session=session  # type: ignore[arg-type]
    )


def test_l2_normalize_rows() -> None:
    normalized = l2_normalize(np.array([[3.0, 4.0], [0.0, 2.0]], dtype=np.float32))
    assert np.allclose(np.linalg.norm(normalized, axis=1), 1.0)


def test_embed_posts_batch_and_normalizes() -> None:
    session = _Session(_Response(200, {"embeddings": [[3.0, 4.0], [1.0, 0.0]]}))

    vectors = _client(session).embed(["first", "second"])

    url, body = session.requests[0]
    assert url == "http://ollama:11434/api/embed"
    assert body["input"] == ["first", "second"]
    assert body["model"] == "nomic-embed-text"
    assert vectors[0] == pytest.approx([0.6, 0.8])
    assert vectors[1] == pytest.approx([1.0, 0.0])


def test_empty_batch_skips_request() -> None:
    session = _Session()
    assert _client(session).embed([]) == []
    assert session.requests == []


def test_missing_model_is_reported() -> None:
    session = _Session(_Response(404))
    with pytest.raises(RuntimeError, match="ollama pull nomic-embed-text"):
        _ = _client(session).embed(["x"])


def test_wrong_vector_count_raises() -> None:
    session = _Session(_Response(200, {"embeddings": [[1.0, 0.0]]}))
    with pytest.raises(ValueError, match="expected"):
        _ = _client(session).embed(["x", "y"])


def test_transient_status_is_retried() -> None:
    session = _Session(
        _Response(503),
        _Response(200, {"embeddings": [[0.0, 2.0]]}),
    )

    vectors = _client(session).embed(["x"])

    assert len(session.requests) == 2
    assert vectors == [pytest.approx([0.0, 1.0])]


def test_unknown_backend_rejected() -> None:
    with pytest.raises(ValueError):
        _ = create_embedding_client("word2vec")


def test_each_worker_thread_gets_its_own_session(monkeypatch: pytest.MonkeyPatch) -> None:
    created: list[_Session] = []

    def _new_session() -> _Session:
        session = _Session(*[_Response(200, {"embeddings": [[1.0, 0.0]]}) for _ in range(2)])
        created.append(session)
        return session

    monkeypatch.setattr(embedding_clients.requests, "Session", _new_session)
    client = OllamaEmbeddingClient("http://ollama:11434", "nomic-embed-text", timeout=5)

    def _work() -> None:
        _ = client.embed(["x"])
        _ = client.embed(["y"])

    threads = [threading.Thread(target=_work) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(created) == 2
    assert [len(session.requests) for session in created] == [2, 2]
