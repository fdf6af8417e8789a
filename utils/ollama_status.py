"""Preflight check that the Ollama embedding model is available before a run."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping

import requests

from ingestion.errors import EmbeddingServiceUnavailable


@dataclass(frozen=True)
class OllamaStatus:
    """Simple container for Ollama model availability."""

    base_url: str
    available_models: frozenset[str]


def _normalize_base_url(base_url: str) -> str:
    return base_url.rstrip("/")


def _model_installed(model: str, installed: frozenset[str]) -> bool:
    # `ollama pull name` registers the model as `name:latest`.
    return model in installed or (":" not in model and f"{model}:latest" in installed)


def _fetch_available_models(base_url: str, timeout: float) -> Iterable[str]:
    response = requests.get(f"{base_url}/api/tags", timeout=timeout)
    if response.status_code != 200:
        raise EmbeddingServiceUnavailable(
            f"Ollama at {base_url} responded with HTTP {response.status_code} when fetching model list."
        )

    try:
        payload = response.json()
    except ValueError as exc:
        raise EmbeddingServiceUnavailable(
            "Failed to parse Ollama /api/tags response as JSON."
        ) from exc

    models: Iterable[Mapping[str, str]] = payload.get("models", [])
    return (entry.get("name", "") for entry in models)


def ensure_embedding_model_available(
    base_url: str, model: str, timeout: float = 5.0
) -> OllamaStatus:
    """Verify Ollama is reachable and the embedding model is installed.

    Raises:
        EmbeddingServiceUnavailable: Ollama is down or the model is missing.
    """
    normalized_url = _normalize_base_url(base_url)
    try:
        model_names = frozenset(
            name for name in _fetch_available_models(normalized_url, timeout) if name
        )
    except requests.exceptions.ConnectionError as exc:
        raise EmbeddingServiceUnavailable(
            f"Ollama is not reachable at {normalized_url}. Start it with `ollama serve`."
        ) from exc
    except requests.exceptions.Timeout as exc:
        raise EmbeddingServiceUnavailable(
            f"Ollama did not respond within {timeout} seconds. Ensure it is running and reachable."
        ) from exc
    except requests.exceptions.RequestException as exc:
        raise EmbeddingServiceUnavailable(f"Ollama request failed: {exc}") from exc

    if not _model_installed(model, model_names):
        raise EmbeddingServiceUnavailable(
            f"Embedding model '{model}' is not installed. Install it with `ollama pull {model}` or "
            + "set EMBED_MODEL."
        )

    return OllamaStatus(base_url=normalized_url, available_models=model_names)


__all__ = ["OllamaStatus", "ensure_embedding_model_available"]
