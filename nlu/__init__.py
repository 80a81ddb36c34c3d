"""
NLU (Natural Language Understanding) module for query analysis.

This module provides:
- Multi-category entity extraction from natural language queries
- Temporal expression resolution
- Intent classification
- Text embeddings and semantic schema matching
- Table and column recommendations
"""

from .concurrency import Deadline, ParallelOutcome, run_parallel
from .entity_extractor import (
    EntityExtractor,
    EntityCategory,
    EntityMention,
    EntityExtractionResult,
)
from .extraction_patterns import DEFAULT_PATTERNS, ExtractionPatterns, PatternRule
from .temporal_resolver import (
    TemporalResolver,
    TemporalExpression,
    TemporalContext,
    TemporalKind,
    Granularity,
    ALWAYS_TRUE_PREDICATE,
)
from .intent_classifier import IntentClassifier, IntentAnalysis, IntentType
from .embedding_service import (
    EmbeddingService,
    EmbeddingProvider,
    EmbeddingVector,
    EmbeddingCache,
    EmbeddingUnavailable,
    DimensionMismatchError,
    HashEmbeddingProvider,
    OpenAIEmbeddingProvider,
    HttpEmbeddingProvider,
    cosine_similarity,
    create_embedding_service,
)
from .semantic_matcher import (
    SemanticMatcher,
    SchemaItem,
    SchemaItemKind,
    SchemaIndex,
    SchemaIndexNotReady,
    SimilarityMatch,
)
from .table_recommender import (
    SchemaRelevanceRecommender,
    RecommenderConfig,
    Recommendation,
    EntityMatch,
)

__all__ = [
    "Deadline",
    "ParallelOutcome",
    "run_parallel",
    "EntityExtractor",
    "EntityCategory",
    "EntityMention",
    "EntityExtractionResult",
    "DEFAULT_PATTERNS",
    "ExtractionPatterns",
    "PatternRule",
    "TemporalResolver",
    "TemporalExpression",
    "TemporalContext",
    "TemporalKind",
    "Granularity",
    "ALWAYS_TRUE_PREDICATE",
    "IntentClassifier",
    "IntentAnalysis",
    "IntentType",
    "EmbeddingService",
    "EmbeddingProvider",
    "EmbeddingVector",
    "EmbeddingCache",
    "EmbeddingUnavailable",
    "DimensionMismatchError",
    "HashEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "HttpEmbeddingProvider",
    "cosine_similarity",
    "create_embedding_service",
    "SemanticMatcher",
    "SchemaItem",
    "SchemaItemKind",
    "SchemaIndex",
    "SchemaIndexNotReady",
    "SimilarityMatch",
    "SchemaRelevanceRecommender",
    "RecommenderConfig",
    "Recommendation",
    "EntityMatch",
]
