"""Retrieval orchestration: rewrite, retrieve, assemble."""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import chromadb

from ragcore.cache import ClassificationCache, EmbeddingCache
from ragcore.config import RagConfig, get_config
from ragcore.deadline import CapabilityRunner
from ragcore.embeddings import (
    ChromaChunkStore,
    ChunkStore,
    EmbeddingBackend,
    EmbeddingConfig,
    LangChainEmbeddingBackend,
)
from ragcore.metrics.observability import (
    PipelineMetrics,
    TimedSection,
    bind_correlation_id,
    clear_correlation_id,
    get_logger,
)
from ragcore.models import ChatMessage, DomainClassification, RetrievalResult, normalize_history
from ragcore.retrieval.context import ContextAssembler, ContextBudget
from ragcore.retrieval.service import RetrievalConfig, RetrievalTrace, VectorRetriever
from ragcore.services.classifier import DomainClassifier
from ragcore.services.completion import CompletionBackend, CompletionConfig, QwenCompletionBackend
from ragcore.services.rewriter import QueryRewriter


class RetrievalService:
    """Single entry point callers use to classify queries and fetch context."""

    def __init__(
        self,
        classifier: DomainClassifier,
        rewriter: QueryRewriter,
        retriever: VectorRetriever,
        assembler: ContextAssembler | None = None,
    ) -> None:
        self._classifier = classifier
        self._rewriter = rewriter
        self._retriever = retriever
        self._assembler = assembler or ContextAssembler()
        self._logger = get_logger("query")

    def classify(
        self,
        query: str,
        history: Iterable[ChatMessage | Mapping[str, Any]] | None = None,
        *,
        timeout: float | None = None,
    ) -> DomainClassification:
        return self._classifier.classify(query, history, timeout=timeout)

    def retrieve_context(
        self,
        query: str,
        history: Iterable[ChatMessage | Mapping[str, Any]] | None = None,
        *,
        document_ids: Collection[str] | None = None,
        timeout: float | None = None,
        log_label: str = "chat",
        correlation_id: str | None = None,
    ) -> RetrievalResult:
        """Rewrite ``query``, retrieve chunks and assemble the prompt context.

        An empty ``context`` means nothing qualified; callers use it to pick a
        general-knowledge answer. Only ``RetrievalError`` is raised. When
        ``correlation_id`` is given it is bound to every log event of the call.
        """

        if correlation_id:
            bind_correlation_id(correlation_id)
        try:
            return self._retrieve_context(query, history, document_ids, timeout, log_label)
        finally:
            if correlation_id:
                clear_correlation_id()

    def _retrieve_context(
        self,
        query: str,
        history: Iterable[ChatMessage | Mapping[str, Any]] | None,
        document_ids: Collection[str] | None,
        timeout: float | None,
        log_label: str,
    ) -> RetrievalResult:
        turns = normalize_history(history)
        with TimedSection() as rewrite_timer:
            rewritten = self._rewriter.rewrite(query, turns, timeout=timeout)

        trace = RetrievalTrace()
        chunks = self._retriever.retrieve(rewritten, document_ids=document_ids, timeout=timeout, trace=trace)

        with TimedSection() as assembly_timer:
            context = self._assembler.build_context(chunks)
            sources = self._assembler.build_sources(chunks)
        PipelineMetrics.observe_context(len(context))

        timings = {"rewrite_ms": rewrite_timer.elapsed_ms, **trace.timings, "assembly_ms": assembly_timer.elapsed_ms}
        self._logger.info(
            "retrieval.complete",
            label=log_label,
            query=query,
            rewritten=rewritten,
            chunk_count=len(chunks),
            expanded_count=trace.expanded_count,
            source_count=len(sources),
            context_chars=len(context),
            top=[f"{c.filename}:p{c.page_number}@{c.similarity:.3f}" for c in chunks[: trace.match_count]],
            **timings,
        )
        return RetrievalResult(
            rewritten_query=rewritten,
            chunks=chunks,
            context=context,
            sources=sources,
            timings=timings,
        )


def build_retrieval_service(
    embedder: EmbeddingBackend,
    completer: CompletionBackend,
    store: ChunkStore,
    config: RagConfig | None = None,
) -> RetrievalService:
    """Wire a service with fresh caches and a shared capability runner."""

    config = config or get_config()
    runner = CapabilityRunner(default_timeout=config.capability_timeout)
    classifier = DomainClassifier(
        completer,
        cache=ClassificationCache(
            config.classification_cache_ttl_seconds,
            max_entries=config.classification_cache_max_entries,
        ),
        runner=runner,
        max_history_turns=config.classifier_max_history_turns,
        max_tokens=config.classification_max_tokens,
    )
    rewriter = QueryRewriter(
        completer,
        runner=runner,
        history_messages=config.rewrite_history_messages,
        min_words=config.rewrite_min_words,
        max_chars=config.rewrite_max_chars,
        max_tokens=config.rewrite_max_tokens,
    )
    retriever = VectorRetriever(
        embedder,
        store,
        RetrievalConfig(
            match_threshold=config.match_threshold,
            match_count=config.match_count,
            strong_match_similarity=config.strong_match_similarity,
            max_vector_matches_for_expansion=config.max_vector_matches_for_expansion,
            max_pages_for_expansion=config.max_pages_for_expansion,
        ),
        embedding_cache=EmbeddingCache(config.embedding_cache_size),
        runner=runner,
    )
    assembler = ContextAssembler(
        ContextBudget(
            max_context_chunks=config.max_context_chunks,
            max_context_chars=config.max_context_chars,
            min_source_similarity=config.min_source_similarity,
        )
    )
    return RetrievalService(classifier, rewriter, retriever, assembler)


@dataclass(frozen=True)
class Backends:
    embedder: EmbeddingBackend
    completer: CompletionBackend
    store: ChunkStore


def build_backends(config: RagConfig | None = None) -> Backends:
    """Build the embedding, completion and store capabilities named by ``config``.

    A configured ``chroma_host`` selects an HTTP client; test environments use
    an in-memory client; otherwise chunks persist under ``chroma_persist_dir``.
    """

    config = config or get_config()
    embedder = LangChainEmbeddingBackend(
        EmbeddingConfig(
            model=config.embedding_model,
            dim=config.embedding_dim,
            use_model=config.use_model_embeddings,
            normalize=True,
        )
    )
    completer = QwenCompletionBackend(
        CompletionConfig(model=config.completion_model, use_model=config.use_model_completion)
    )
    chroma_client = None
    if config.chroma_host:
        chroma_client = chromadb.HttpClient(host=config.chroma_host, port=config.chroma_port or 8000)
    elif config.is_test:
        chroma_client = chromadb.EphemeralClient()
    store = ChromaChunkStore(
        embedder,
        collection_name=config.chroma_collection,
        client=chroma_client,
        persist_directory=None if chroma_client else config.chroma_persist_dir,
    )
    return Backends(embedder=embedder, completer=completer, store=store)


def build_retrieval_service_from_config(config: RagConfig | None = None) -> RetrievalService:
    config = config or get_config()
    backends = build_backends(config)
    return build_retrieval_service(backends.embedder, backends.completer, backends.store, config)
