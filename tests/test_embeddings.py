"""Tests for the hash and LangChain embedding backends."""

from __future__ import annotations

import math

from langchain_core.embeddings import DeterministicFakeEmbedding

from ragcore.embeddings.service import EmbeddingConfig, HashEmbeddingBackend, LangChainEmbeddingBackend


def test_hash_embedding_dim_matches_config():
    backend = HashEmbeddingBackend(EmbeddingConfig(dim=1536))
    vec = backend.embed_query("hello world")
    assert isinstance(vec, tuple)
    assert len(vec) == 1536
    assert math.isclose(sum(v * v for v in vec), 1.0, rel_tol=1e-9)


def test_hash_embedding_is_deterministic():
    backend = HashEmbeddingBackend(EmbeddingConfig(dim=32))
    assert backend.embed_query("premium holiday") == backend.embed_query("premium holiday")
    assert backend.embed_query("premium holiday") != backend.embed_query("premium holidays")


def test_langchain_backend_without_model_uses_hash_vectors():
    config = EmbeddingConfig(dim=16)
    backend = LangChainEmbeddingBackend(config)
    assert not backend.uses_model
    assert backend.embed_query("alpha") == HashEmbeddingBackend(config).embed_query("alpha")


def test_langchain_backend_wraps_client_and_normalizes():
    backend = LangChainEmbeddingBackend(EmbeddingConfig(dim=8), client=DeterministicFakeEmbedding(size=8))
    vectors = backend.embed_documents(["alpha", "beta"])
    assert backend.uses_model
    assert len(vectors) == 2
    assert all(len(vector) == 8 for vector in vectors)
    assert math.isclose(sum(v * v for v in backend.embed_query("alpha")), 1.0, rel_tol=1e-9)
    assert backend.embed_query("alpha") == vectors[0]
