"""
Query understanding pipeline for gaming analytics questions.

Wires the NLU components together and turns one natural language question
into a structured understanding of it:
- Entities (domain terms, dates, amounts, players, games, metrics)
- Temporal context with resolved boundaries and a filter predicate
- Intent (aggregate, select, top-N, trend, comparison)
- Recommended tables and columns, plus the joins between them
- Business rule checks and matching query patterns

Architecture:
    QueryPipeline (this file)
        ├── EntityExtractor      ┐
        ├── IntentClassifier     ├ run in parallel
        ├── TemporalResolver     ┘
        ├── SchemaRelevanceRecommender (one similarity query per request)
        ├── JoinResolver
        └── DomainKnowledgeBase (business rules, query patterns)

Usage:
    from query_pipeline import get_query_pipeline

    pipeline = get_query_pipeline()
    result = pipeline.process("What was the total GGR for VIP players last month?")
    result.recommendations[0].table_name  # "tbl_Daily_actions"
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from config import SchemaConfigManager, load_config
from joins.join_resolver import JoinResolver
from knowledge.domain_knowledge import (
    BusinessRuleValidation,
    DomainGlossary,
    DomainKnowledgeBase,
    JoinRequirement,
    QueryPattern,
)
from nlu.concurrency import Deadline, run_parallel
from nlu.embedding_service import EmbeddingService, create_embedding_service
from nlu.entity_extractor import EntityExtractionResult, EntityExtractor
from nlu.intent_classifier import IntentAnalysis, IntentClassifier
from nlu.semantic_matcher import SchemaIndex, SchemaIndexNotReady, SemanticMatcher
from nlu.table_recommender import Recommendation, RecommenderConfig, SchemaRelevanceRecommender
from nlu.temporal_resolver import TemporalContext, TemporalResolver

logger = logging.getLogger(__name__)


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class PipelineResult:
    """Everything the pipeline learned about one query."""
    query: str
    entities: EntityExtractionResult
    temporal_context: TemporalContext
    intent: IntentAnalysis
    recommendations: List[Recommendation] = field(default_factory=list)
    join_requirements: List[JoinRequirement] = field(default_factory=list)
    business_rules: BusinessRuleValidation = field(default_factory=BusinessRuleValidation)
    matched_patterns: List[QueryPattern] = field(default_factory=list)
    overall_confidence: float = 0.0
    steps_completed: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    partial: bool = False

    @property
    def top_recommendation(self) -> Optional[Recommendation]:
        return self.recommendations[0] if self.recommendations else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "entities": self.entities.to_dict(),
            "temporal_context": self.temporal_context.to_dict(),
            "intent": self.intent.to_dict(),
            "recommendations": [r.to_dict() for r in self.recommendations],
            "join_requirements": [j.to_dict() for j in self.join_requirements],
            "business_rules": self.business_rules.to_dict(),
            "matched_patterns": [p.to_dict() for p in self.matched_patterns],
            "overall_confidence": self.overall_confidence,
            "steps_completed": list(self.steps_completed),
            "errors": list(self.errors),
            "partial": self.partial,
        }


# =============================================================================
# Pipeline
# =============================================================================

class QueryPipeline:
    """
    Query understanding pipeline.

    The schema index must be built with `initialize()` before `process()`;
    `refresh()` reloads the metadata store and swaps in a new index while
    queries keep running against the old one.
    """

    def __init__(
        self,
        metadata_store: SchemaConfigManager,
        knowledge_base: DomainKnowledgeBase,
        embedding_service: EmbeddingService,
        glossary: Optional[DomainGlossary] = None,
        recommender_config: Optional[RecommenderConfig] = None,
        max_workers: int = 8,
        default_timeout_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = datetime.now,
        sql_dialect: str = "tsql",
        date_column: str = "Date",
    ):
        """
        Initialize the pipeline.

        Args:
            metadata_store: Source of table and column metadata
            knowledge_base: Domain knowledge for business rules and query patterns
            embedding_service: Embeddings for the schema index and queries
            glossary: Glossary for entity enrichment and joins
                      (default: the knowledge base)
            recommender_config: Recommendation tuning
            max_workers: Thread pool bound for the parallel analysis steps
            default_timeout_seconds: Deadline applied when process() gets none
            clock: Current time source for temporal resolution
            sql_dialect: sqlglot dialect for temporal predicates
            date_column: Column temporal predicates filter on
        """
        self.metadata_store = metadata_store
        self.knowledge_base = knowledge_base
        self.glossary = glossary or knowledge_base
        self.max_workers = max_workers
        self.default_timeout_seconds = default_timeout_seconds

        self.temporal_resolver = TemporalResolver(
            clock=clock, dialect=sql_dialect, date_column=date_column
        )
        self.entity_extractor = EntityExtractor(
            glossary=self.glossary, resolver=self.temporal_resolver, max_workers=max_workers
        )
        self.intent_classifier = IntentClassifier()
        self.matcher = SemanticMatcher(embedding_service)
        self.join_resolver = JoinResolver(self.glossary)
        self.recommender = SchemaRelevanceRecommender(
            self.matcher, self.join_resolver, recommender_config
        )

    # =========================================================================
    # Schema Index
    # =========================================================================

    @property
    def is_ready(self) -> bool:
        return self.matcher.is_ready

    def initialize(self) -> SchemaIndex:
        """Build the schema index from the metadata store."""
        tables = self.metadata_store.load_tables()
        columns = []
        for table in tables:
            columns.extend(self.metadata_store.load_columns(table.name))
        return self.matcher.build_schema_index(tables, columns)

    def refresh(self) -> SchemaIndex:
        """Reload the metadata store and rebuild the schema index."""
        self.metadata_store.reload()
        index = self.initialize()
        logger.info(f"Schema index refreshed: {len(index.tables)} tables")
        return index

    # =========================================================================
    # Processing
    # =========================================================================

    def process(self, query: str, deadline: Optional[Deadline] = None) -> PipelineResult:
        """
        Process a query through the full pipeline.

        Entity extraction, intent classification and temporal resolution run
        in parallel; recommendations, joins, business rules and query
        patterns follow. A failing step is recorded in `errors` and the
        remaining steps still run.

        Args:
            query: Natural language question
            deadline: Optional deadline (default: the configured timeout)

        Returns:
            PipelineResult

        Raises:
            SchemaIndexNotReady: If initialize() has not been called
        """
        query = query or ""
        if not self.matcher.is_ready:
            raise SchemaIndexNotReady("Schema index has not been built; call initialize() first")
        if deadline is None and self.default_timeout_seconds is not None:
            deadline = Deadline.after(self.default_timeout_seconds)

        result = PipelineResult(
            query=query,
            entities=EntityExtractionResult(query=query),
            temporal_context=TemporalContext(),
            intent=self.intent_classifier.default_analysis(),
        )

        try:
            # Step 1: Analyze
            self._analyze(query, deadline, result)

            # Step 2: Recommend tables
            if deadline is not None and deadline.expired:
                logger.warning(f"Deadline reached before recommendations for {query!r}")
                result.partial = True
            else:
                result.recommendations = list(
                    self.recommender.recommend(query, result.entities, deadline)
                )
                result.steps_completed.append("recommend")

            # Step 3: Resolve joins
            table_names = [r.table_name for r in result.recommendations]
            result.join_requirements = self.recommender.find_join_requirements(table_names)
            result.steps_completed.append("resolve_joins")

            # Step 4: Business rules
            result.business_rules = self.knowledge_base.validate_business_rules(
                query, result.entities
            )
            result.steps_completed.append("validate_business_rules")

            # Step 5: Query patterns
            result.matched_patterns = self.knowledge_base.match_query_patterns(query)
            result.steps_completed.append("match_patterns")

        except SchemaIndexNotReady:
            raise
        except Exception as e:
            result.errors.append(str(e))
            logger.exception(f"Query processing failed: {e}")

        result.overall_confidence = self._overall_confidence(result)
        if deadline is not None and deadline.expired:
            result.partial = True

        logger.info(
            f"Processed {query!r}: intent={result.intent.primary_intent.value}, "
            f"{result.entities.total_count} entities, "
            f"{len(result.recommendations)} recommendations, "
            f"confidence={result.overall_confidence:.2f}"
        )
        return result

    def _analyze(self, query: str, deadline: Optional[Deadline], result: PipelineResult) -> None:
        tasks = {
            "extract_entities": lambda: self.entity_extractor.extract(query, deadline),
            "classify_intent": lambda: self.intent_classifier.classify(query),
            "resolve_temporal": lambda: self.temporal_resolver.extract(query),
        }
        outcome = run_parallel(tasks, deadline=deadline, max_workers=self.max_workers)

        for name, error in outcome.errors.items():
            logger.warning(f"Pipeline step {name} failed for query {query!r}: {error}")
            result.errors.append(f"{name}: {error}")
        if outcome.timed_out:
            logger.warning(f"Pipeline steps timed out for query {query!r}: {outcome.timed_out}")
            result.partial = True

        if "extract_entities" in outcome.results:
            result.entities = outcome.results["extract_entities"]
            result.partial = result.partial or result.entities.partial
        if "classify_intent" in outcome.results:
            result.intent = outcome.results["classify_intent"]
        if "resolve_temporal" in outcome.results:
            result.temporal_context = outcome.results["resolve_temporal"]

        result.steps_completed.extend(name for name in tasks if name in outcome.results)

    @staticmethod
    def _overall_confidence(result: PipelineResult) -> float:
        parts = [result.entities.overall_confidence, result.intent.confidence]
        if result.recommendations:
            parts.append(
                sum(r.overall_score for r in result.recommendations) / len(result.recommendations)
            )
        return max(0.0, min(1.0, sum(parts) / len(parts)))


# =============================================================================
# Singleton Instance
# =============================================================================

_pipeline_instance: Optional[QueryPipeline] = None


def get_query_pipeline() -> QueryPipeline:
    """Get the global QueryPipeline instance, built from the environment configuration."""
    global _pipeline_instance
    if _pipeline_instance is None:
        config = load_config()
        embedding = config.embedding
        pipeline = QueryPipeline(
            metadata_store=SchemaConfigManager(config.pipeline.schema_config_path),
            knowledge_base=DomainKnowledgeBase.from_file(config.pipeline.domain_knowledge_path),
            embedding_service=create_embedding_service(
                provider=embedding.provider.value,
                dimension=embedding.dimension,
                model=embedding.model,
                api_endpoint=embedding.api_endpoint,
                api_key=embedding.api_key,
                timeout_seconds=embedding.timeout_seconds,
                cache_ttl_seconds=embedding.cache_ttl_seconds,
                cache_max_entries=embedding.cache_max_entries,
            ),
            recommender_config=config.recommender,
            max_workers=config.pipeline.max_workers,
            default_timeout_seconds=config.pipeline.default_timeout_seconds,
            sql_dialect=config.pipeline.sql_dialect,
            date_column=config.pipeline.date_column,
        )
        pipeline.initialize()
        _pipeline_instance = pipeline
    return _pipeline_instance


def reset_query_pipeline():
    """Reset the global QueryPipeline instance."""
    global _pipeline_instance
    _pipeline_instance = None
