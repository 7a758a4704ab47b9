"""Service layer orchestrations for ragcore."""

from .classifier import ClassificationParse, DomainClassifier, parse_classification
from .completion import (
    CompletionBackend,
    CompletionConfig,
    CompletionUnavailableError,
    LangChainChatBackend,
    QwenCompletionBackend,
)
from .query import Backends, RetrievalService, build_backends, build_retrieval_service, build_retrieval_service_from_config
from .rewriter import QueryRewriter

__all__ = [
    "Backends",
    "ClassificationParse",
    "CompletionBackend",
    "CompletionConfig",
    "CompletionUnavailableError",
    "DomainClassifier",
    "LangChainChatBackend",
    "QueryRewriter",
    "QwenCompletionBackend",
    "RetrievalService",
    "build_backends",
    "build_retrieval_service",
    "build_retrieval_service_from_config",
    "parse_classification",
]
