"""Embedding backends and chunk stores."""

from .service import EmbeddingBackend, EmbeddingConfig, HashEmbeddingBackend, LangChainEmbeddingBackend, Vector
from .store import ChromaChunkStore, ChunkStore

__all__ = [
    "ChunkStore",
    "ChromaChunkStore",
    "EmbeddingBackend",
    "EmbeddingConfig",
    "HashEmbeddingBackend",
    "LangChainEmbeddingBackend",
    "Vector",
]
