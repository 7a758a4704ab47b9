"""Retrieval components."""

from .citations import extract_cited_pages, is_low_relevance, max_vector_similarity, resolve_sources_for_citations
from .context import CONTEXT_SEPARATOR, ContextAssembler, ContextBudget
from .service import RetrievalConfig, RetrievalError, RetrievalTrace, VectorRetriever

__all__ = [
    "CONTEXT_SEPARATOR",
    "ContextAssembler",
    "ContextBudget",
    "RetrievalConfig",
    "RetrievalError",
    "RetrievalTrace",
    "VectorRetriever",
    "extract_cited_pages",
    "is_low_relevance",
    "max_vector_similarity",
    "resolve_sources_for_citations",
]
