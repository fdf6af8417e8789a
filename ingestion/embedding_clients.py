"""Embedding service clients.

Both clients satisfy ``EmbeddingService``: a batch of texts in, one
L2-normalised float vector per text out, in input order. The HTTP client is
the rate-limited, network-bound collaborator the worker pool is sized for;
the local sentence-transformers client exists for air-gapped runs.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any, Sequence

import numpy as np
import numpy.typing as npt
import requests
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

import config

if TYPE_CHECKING:
    from sentence_transformers import SentenceTransformer

logger = logging.getLogger(__name__)

FloatArray = npt.NDArray[np.float32]


class _RetryableEmbeddingError(RuntimeError):
    """Raised when the embedding service responds with a retryable status code."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


def l2_normalize(mat: FloatArray) -> FloatArray:
    """Normalize embeddings row-wise using the L2 norm."""
    norms = np.linalg.norm(mat, axis=1, keepdims=True) + 1e-12
    return mat / norms


def _to_vectors(raw: Any, expected: int) -> list[list[float]]:
    matrix = np.asarray(raw, dtype=np.float32)
    if matrix.ndim != 2 or matrix.shape[0] != expected:
        raise ValueError(
            f"Embedding service returned shape {matrix.shape}, expected ({expected}, dim)"
        )
    return l2_normalize(matrix).tolist()


class OllamaEmbeddingClient:
    """Batch embeddings over the Ollama HTTP API (``POST /api/embed``)."""

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        *,
        timeout: int | None = None,
        keep_alive: str = "1h",
        session: requests.Session | None = None,
    ) -> None:
        super().__init__()
        self.base_url = (base_url or config.OLLAMA_BASE_URL).rstrip("/")
        self.model = model or config.EMBED_MODEL
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self.keep_alive = keep_alive
        self._shared_session = session
        self._local = threading.local()

    def _session(self) -> requests.Session:
        """Return the injected session, or one owned by the calling thread."""
        if self._shared_session is not None:
            return self._shared_session
        session: requests.Session | None = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            self._local.session = session
        return session

    @retry(
        retry=retry_if_exception_type(
            (
                requests.exceptions.ConnectionError,
                requests.exceptions.Timeout,
                _RetryableEmbeddingError,
            )
        ),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def _post_with_retry(self, payload: dict[str, Any]) -> requests.Response:
        """Issue the embed request, retrying on transient failures."""
        response = self._session().post(
            f"{self.base_url}/api/embed", json=payload, timeout=self.timeout
        )
        if response.status_code in {429, 500, 502, 503, 504}:
            raise _RetryableEmbeddingError(
                response.status_code,
                f"Embedding service responded with HTTP {response.status_code}.",
            )
        return response

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        payload: dict[str, Any] = {
            "model": self.model,
            "input": list(texts),
            "keep_alive": self.keep_alive,
        }
        response = self._post_with_retry(payload)
        if response.status_code == 404:
            raise RuntimeError(
                f"Embedding model '{self.model}' not found. Install it with `ollama pull {self.model}`."
            )
        response.raise_for_status()

        embeddings = response.json().get("embeddings")
        if not isinstance(embeddings, list):
            raise RuntimeError("Unexpected /api/embed response structure")
        return _to_vectors(embeddings, len(texts))


class SentenceTransformerEmbeddingClient:
    """Local embeddings via sentence-transformers; the model is loaded on first use."""

    def __init__(self, model_name: str | None = None, *, device: str | None = None) -> None:
        super().__init__()
        self.model_name = model_name or config.EMBED_MODEL
        self.device = device
        self._model: SentenceTransformer | None = None

    def _load(self) -> "SentenceTransformer":
        if self._model is None:
            # Import lazily so Ollama-only runs never pay the torch import cost.
            from sentence_transformers import SentenceTransformer

            logger.info("Loading sentence-transformers model %s", self.model_name)
            self._model = SentenceTransformer(self.model_name, device=self.device)
        return self._model

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        model = self._load()
        raw = model.encode(
            list(texts),
            batch_size=len(texts),
            convert_to_numpy=True,
            normalize_embeddings=False,
        )
        return _to_vectors(raw, len(texts))


def create_embedding_client(backend: str | None = None) -> OllamaEmbeddingClient | SentenceTransformerEmbeddingClient:
    """Build the embedding client selected by ``EMBED_BACKEND``."""
    backend = backend or config.EMBED_BACKEND
    if backend == "ollama":
        return OllamaEmbeddingClient()
    if backend == "sentence-transformers":
        return SentenceTransformerEmbeddingClient()
    raise ValueError(f"Unknown embedding backend: {backend}")


__all__ = [
    "OllamaEmbeddingClient",
    "SentenceTransformerEmbeddingClient",
    "create_embedding_client",
    "l2_normalize",
]
