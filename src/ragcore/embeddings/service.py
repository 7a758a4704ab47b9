"""Embedding backends for query and passage text."""

from __future__ import annotations

import hashlib
import logging
import math
from dataclasses import dataclass
from typing import Protocol, Sequence, Tuple

from langchain_community.embeddings import HuggingFaceEmbeddings
from langchain_core.embeddings import Embeddings as LangChainEmbeddings

LOGGER = logging.getLogger(__name__)

Vector = Tuple[float, ...]


@dataclass(frozen=True)
class EmbeddingConfig:
    """Configuration for embedding backends."""

    model: str = "BAAI/bge-small-en-v1.5"
    dim: int = 1536
    use_model: bool = False
    device: str | None = None
    normalize: bool = True
    cache_folder: str | None = None


class EmbeddingBackend(Protocol):
    """Protocol describing embedding behaviour."""

    def embed_query(self, text: str) -> Vector:
        """Return the embedding vector for a query string."""

    def embed_documents(self, texts: Sequence[str]) -> Sequence[Vector]:
        """Return embedding vectors for passage texts, aligned with the input."""


def _normalize(vector: Sequence[float]) -> Vector:
    norm = math.sqrt(sum(value * value for value in vector)) or 1.0
    return tuple(value / norm for value in vector)


class HashEmbeddingBackend:
    """Deterministic lightweight embeddings used for tests and offline runs."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()

    @property
    def dim(self) -> int:
        return self._config.dim

    def _hash_to_vector(self, text: str) -> Vector:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        repeat = (self._config.dim + len(digest) - 1) // len(digest)
        raw = (digest * repeat)[: self._config.dim]
        # Centre bytes on zero so unrelated texts land near orthogonal.
        vector = [(byte - 127.5) / 127.5 for byte in raw]
        if self._config.normalize:
            return _normalize(vector)
        return tuple(vector)

    def embed_query(self, text: str) -> Vector:
        return self._hash_to_vector(text)

    def embed_documents(self, texts: Sequence[str]) -> Sequence[Vector]:
        return [self._hash_to_vector(text) for text in texts]


class LangChainEmbeddingBackend:
    """Embedding backend delegating to a LangChain ``Embeddings`` client.

    Pass ``client`` to wrap any LangChain embeddings (OpenAI, HuggingFace, ...).
    Without one, a HuggingFace sentence-embedding model is loaded when
    ``config.use_model`` is set; otherwise hash embeddings are used.
    """

    def __init__(
        self,
        config: EmbeddingConfig | None = None,
        *,
        client: LangChainEmbeddings | None = None,
    ) -> None:
        self._config = config or EmbeddingConfig()
        self._delegate = HashEmbeddingBackend(self._config)
        self._client: LangChainEmbeddings | None = client
        if self._client is not None:
            return
        if not self._config.use_model:
            LOGGER.info("LangChainEmbeddingBackend running in hash-only mode.")
            return
        try:
            model_kwargs = {"device": self._config.device} if self._config.device else {}
            self._client = HuggingFaceEmbeddings(
                model_name=self._config.model,
                model_kwargs=model_kwargs,
                encode_kwargs={"normalize_embeddings": self._config.normalize},
                cache_folder=self._config.cache_folder,
            )
            LOGGER.info("Loaded embedding model %s", self._config.model)
        except Exception as exc:  # pragma: no cover - defensive import/runtime guard
            LOGGER.warning("Falling back to hash embeddings: %s", exc)
            self._client = None

    @property
    def uses_model(self) -> bool:
        return self._client is not None

    def embed_query(self, text: str) -> Vector:
        if self._client is None:
            return self._delegate.embed_query(text)
        vector = self._client.embed_query(text)
        self._check_dim(len(vector))
        return self._finish(vector)

    def embed_documents(self, texts: Sequence[str]) -> Sequence[Vector]:
        if not texts:
            return []
        if self._client is None:
            return self._delegate.embed_documents(texts)
        vectors = self._client.embed_documents(list(texts))
        if len(vectors) != len(texts):
            LOGGER.error("Embedding backend returned %d vectors for %d texts", len(vectors), len(texts))
            raise ValueError("Mismatch between number of texts and embedding vectors")
        if vectors:
            self._check_dim(len(vectors[0]))
        return [self._finish(vector) for vector in vectors]

    def _finish(self, vector: Sequence[float]) -> Vector:
        if not self._config.normalize:
            return tuple(vector)
        return _normalize(vector)

    def _check_dim(self, actual: int) -> None:
        if actual != self._config.dim:
            LOGGER.warning("Embedding dim mismatch: configured=%d, actual=%d", self._config.dim, actual)
