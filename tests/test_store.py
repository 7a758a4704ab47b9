"""Tests for the Chroma chunk store."""

from __future__ import annotations

from uuid import uuid4

import chromadb

from ragcore.embeddings.service import EmbeddingConfig, HashEmbeddingBackend
from ragcore.embeddings.store import ChromaChunkStore
from ragcore.models import RetrievedChunk


def _chunk(doc: str, page: int, text: str) -> RetrievedChunk:
    return RetrievedChunk(document_id=doc, filename=f"{doc}.pdf", page_number=page, text=text)


def _store() -> tuple[ChromaChunkStore, HashEmbeddingBackend]:
    backend = HashEmbeddingBackend(EmbeddingConfig(dim=16))
    store = ChromaChunkStore(backend, collection_name=f"test-{uuid4().hex}", client=chromadb.EphemeralClient())
    store.upsert(
        [
            _chunk("doc-1", 12, "Tier 1 premium"),
            _chunk("doc-1", 12, "Tier 2 premium"),
            _chunk("doc-1", 12, "Tier 3 premium"),
            _chunk("doc-1", 13, "Premium holiday rules"),
            _chunk("doc-2", 12, "Fee schedule"),
        ]
    )
    store.upsert([_chunk("doc-3", 1, "Draft appendix")], status="processing")
    return store, backend


def test_similarity_search_returns_exact_match_first():
    store, backend = _store()

    results = store.similarity_search(backend.embed_query("Tier 2 premium"), match_threshold=0.9, match_count=3)

    assert results
    assert results[0].text == "Tier 2 premium"
    assert results[0].page_number == 12
    assert results[0].similarity > 0.99
    assert all(chunk.similarity > 0.9 for chunk in results)


def test_similarity_search_skips_unready_documents():
    store, backend = _store()

    results = store.similarity_search(backend.embed_query("Draft appendix"), match_threshold=0.9, match_count=3)

    assert all(chunk.document_id != "doc-3" for chunk in results)


def test_similarity_search_honours_document_filter():
    store, backend = _store()

    results = store.similarity_search(
        backend.embed_query("Tier 2 premium"), match_threshold=-1.0, match_count=10, document_ids={"doc-2"}
    )

    assert [chunk.document_id for chunk in results] == ["doc-2"]


def test_fetch_chunks_by_pages_returns_page_in_order():
    store, _ = _store()

    chunks = store.fetch_chunks_by_pages({"doc-1"}, {12})

    assert [chunk.text for chunk in chunks] == ["Tier 1 premium", "Tier 2 premium", "Tier 3 premium"]
    assert all(chunk.similarity == 0.0 for chunk in chunks)


def test_fetch_chunks_by_pages_uses_cross_product():
    store, _ = _store()

    chunks = store.fetch_chunks_by_pages({"doc-1", "doc-2"}, {12, 13})

    assert len(chunks) == 5
    assert store.count() == 6


def test_reset_by_document():
    store, _ = _store()
    store.reset(document_id="doc-1")
    assert store.count() == 2
    store.reset()
    assert store.count() == 0


def test_upsert_appends_to_an_existing_page():
    backend = HashEmbeddingBackend(EmbeddingConfig(dim=16))
    store = ChromaChunkStore(backend, collection_name=f"test-{uuid4().hex}", client=chromadb.EphemeralClient())

    store.upsert([_chunk("d", 12, "part one")])
    store.upsert([_chunk("d", 12, "part two")])

    assert [chunk.text for chunk in store.fetch_chunks_by_pages({"d"}, {12})] == ["part one", "part two"]
    assert store.count() == 2
