"""
Utility modules for the bulk ingestion pipeline.

This package contains:
- ollama_status: preflight check for the embedding model
"""

from utils.ollama_status import OllamaStatus, ensure_embedding_model_available

__all__ = ["OllamaStatus", "ensure_embedding_model_available"]
