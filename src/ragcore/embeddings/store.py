"""Chunk store implementations backing similarity search and page fetches."""

from __future__ import annotations

from collections.abc import Collection
from pathlib import Path
from typing import Any, Iterable, Mapping, MutableMapping, Protocol, Sequence
from uuid import NAMESPACE_URL, uuid5

import chromadb
from chromadb.api import ClientAPI
from chromadb.api.types import Documents, Embeddings as ChromaEmbeddings, IDs, Metadatas

from ragcore.embeddings.service import EmbeddingBackend
from ragcore.models import RetrievedChunk

READY_STATUS = "ready"


class ChunkStore(Protocol):
    """Read side of the document-chunk store."""

    def similarity_search(
        self,
        embedding: Sequence[float],
        *,
        match_threshold: float,
        match_count: int,
        document_ids: Collection[str] | None = None,
    ) -> Sequence[RetrievedChunk | Mapping[str, Any]]:
        """Return ready chunks with similarity above ``match_threshold``, best first."""

    def fetch_chunks_by_pages(
        self,
        document_ids: Collection[str],
        page_numbers: Collection[int],
    ) -> Sequence[RetrievedChunk | Mapping[str, Any]]:
        """Return every stored chunk on any (document, page) in the cross product."""


class ChromaChunkStore:
    """Chroma-backed chunk store using cosine distance."""

    def __init__(
        self,
        embedding_backend: EmbeddingBackend,
        collection_name: str = "ragcore-chunks",
        *,
        client: ClientAPI | None = None,
        persist_directory: str | Path | None = None,
    ) -> None:
        if client is not None:
            self._client = client
        elif persist_directory is not None:
            self._client = chromadb.PersistentClient(path=str(persist_directory))
        else:
            self._client = chromadb.EphemeralClient()
        self._collection = self._client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
        )
        self._backend = embedding_backend

    def upsert(self, chunks: Sequence[RetrievedChunk], *, status: str = READY_STATUS) -> Sequence[str]:
        """Store passages with their embeddings; order within a page is preserved.

        Chunks for a page that already holds passages are appended after them.
        """

        if not chunks:
            return []
        vectors = self._backend.embed_documents([chunk.text for chunk in chunks])
        ids: IDs = []
        metadatas: Metadatas = []
        page_positions: dict[tuple[str, int], int] = {}
        for chunk in chunks:
            page_key = (chunk.document_id, chunk.page_number)
            if page_key not in page_positions:
                page_positions[page_key] = self._next_position(*page_key)
            position = page_positions[page_key]
            page_positions[page_key] = position + 1
            ids.append(uuid5(NAMESPACE_URL, f"{chunk.document_id}:{chunk.page_number}:{position}").hex)
            metadatas.append(self._serialize_chunk(chunk, position=position, status=status))
        documents: Documents = [chunk.text for chunk in chunks]
        embeddings: ChromaEmbeddings = [list(vector) for vector in vectors]
        self._collection.upsert(ids=ids, documents=documents, embeddings=embeddings, metadatas=metadatas)
        return list(ids)

    def similarity_search(
        self,
        embedding: Sequence[float],
        *,
        match_threshold: float,
        match_count: int,
        document_ids: Collection[str] | None = None,
    ) -> Sequence[RetrievedChunk]:
        if match_count <= 0:
            return []
        conditions: list[dict[str, Any]] = [{"status": READY_STATUS}]
        if document_ids:
            conditions.append({"document_id": {"$in": sorted(document_ids)}})
        results = self._collection.query(
            query_embeddings=[list(embedding)],
            n_results=match_count,
            where=self._where(conditions),
            include=["documents", "metadatas", "distances"],
        )
        documents = self._first(results.get("documents"))
        metadatas = self._first(results.get("metadatas"))
        distances = self._first(results.get("distances"))
        matches: list[RetrievedChunk] = []
        for document, metadata, distance in zip(documents, metadatas, distances, strict=False):
            similarity = 1.0 - float(distance)
            if similarity <= match_threshold:
                continue
            matches.append(self._deserialize_chunk(document, metadata, similarity))
        matches.sort(key=lambda chunk: chunk.similarity, reverse=True)
        return matches

    def fetch_chunks_by_pages(
        self,
        document_ids: Collection[str],
        page_numbers: Collection[int],
    ) -> Sequence[RetrievedChunk]:
        if not document_ids or not page_numbers:
            return []
        batch = self._collection.get(
            where=self._where(
                [
                    {"status": READY_STATUS},
                    {"document_id": {"$in": sorted(document_ids)}},
                    {"page_number": {"$in": sorted(int(page) for page in page_numbers)}},
                ]
            ),
            include=["documents", "metadatas"],
        )
        rows = list(zip(batch.get("documents") or [], batch.get("metadatas") or [], strict=False))
        rows.sort(
            key=lambda row: (
                str(row[1].get("document_id", "")),
                int(row[1].get("page_number", 0)),
                int(row[1].get("chunk_index", 0)),
            )
        )
        return [self._deserialize_chunk(document, metadata, 0.0) for document, metadata in rows]

    def reset(self, *, document_id: str | None = None) -> None:
        existing = self._collection.get(where={"document_id": document_id} if document_id else None)
        ids = existing.get("ids") or []
        if ids:
            self._collection.delete(ids=ids)

    def count(self) -> int:
        return int(self._collection.count())

    def _next_position(self, document_id: str, page_number: int) -> int:
        existing = self._collection.get(
            where=self._where([{"document_id": document_id}, {"page_number": int(page_number)}]),
            include=["metadatas"],
        )
        positions = [int(metadata.get("chunk_index", 0)) for metadata in existing.get("metadatas") or []]
        return max(positions) + 1 if positions else 0

    @staticmethod
    def _where(conditions: list[dict[str, Any]]) -> dict[str, Any]:
        if len(conditions) == 1:
            return conditions[0]
        return {"$and": conditions}

    @staticmethod
    def _serialize_chunk(chunk: RetrievedChunk, *, position: int, status: str) -> MutableMapping[str, object]:
        return {
            "document_id": chunk.document_id,
            "filename": chunk.filename,
            "page_number": chunk.page_number,
            "chunk_index": position,
            "status": status,
        }

    @staticmethod
    def _deserialize_chunk(document: str | None, metadata: Mapping[str, object], similarity: float) -> RetrievedChunk:
        return RetrievedChunk(
            document_id=str(metadata.get("document_id", "")),
            filename=str(metadata.get("filename", "")),
            page_number=int(metadata.get("page_number", 0)),
            text=document or "",
            similarity=similarity,
        )

    @staticmethod
    def _first(value: object) -> Iterable:
        if isinstance(value, list):
            return value[0] if value else []
        return []
