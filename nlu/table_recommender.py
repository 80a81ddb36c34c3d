"""
Schema relevance recommendations.

Combines query-to-schema similarity with the extracted entities to rank
candidate tables, the columns worth selecting from them, and the joins
needed between them:
1. Rank tables by similarity to the query embedding
2. Keep each table's columns that clear the similarity threshold
3. Pair entities with those columns (glossary columns first)
4. Boost the table score by the average entity-match score
"""
import logging
from dataclasses import dataclass, field, asdict
from typing import Dict, Iterator, List, Optional, Sequence

from rapidfuzz import fuzz

from joins.join_resolver import JoinResolver
from joins.normalizer import ColumnNormalizer
from knowledge.domain_knowledge import JoinRequirement

from .concurrency import Deadline
from .entity_extractor import EntityExtractionResult, EntityMention
from .semantic_matcher import SchemaItem, SemanticMatcher, SimilarityMatch

logger = logging.getLogger(__name__)


@dataclass
class RecommenderConfig:
    """Tuning for table recommendations."""
    top_k_tables: int = 10
    column_threshold: float = 0.3
    max_columns_per_table: int = 5
    entity_weight: float = 0.2
    max_recommendations: int = 5
    max_overall_score: float = 1.0
    fuzzy_containment_min: int = 90


@dataclass
class EntityMatch:
    """An extracted entity paired with a recommended column."""
    entity_text: str
    category: str
    table_name: str
    column_name: str
    match_score: float
    match_type: str  # exact, semantic

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class Recommendation:
    """A recommended table with the columns to use from it."""
    table_name: str
    recommended_columns: List[str]
    overall_score: float
    reasoning: str
    table_score: float = 0.0
    entity_matches: List[EntityMatch] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "table_name": self.table_name,
            "recommended_columns": list(self.recommended_columns),
            "overall_score": self.overall_score,
            "table_score": self.table_score,
            "reasoning": self.reasoning,
            "entity_matches": [m.to_dict() for m in self.entity_matches],
        }


class SchemaRelevanceRecommender:
    """
    Recommend tables and columns for a query.

    Usage:
        recommender = SchemaRelevanceRecommender(matcher, JoinResolver(kb))
        recommendations = list(recommender.recommend(query, entities))
        joins = recommender.find_join_requirements([r.table_name for r in recommendations])
    """

    def __init__(
        self,
        matcher: SemanticMatcher,
        join_resolver: Optional[JoinResolver] = None,
        config: Optional[RecommenderConfig] = None,
    ):
        self.matcher = matcher
        self.join_resolver = join_resolver
        self.config = config or RecommenderConfig()

    def recommend(
        self,
        query: str,
        entities: Optional[EntityExtractionResult] = None,
        deadline: Optional[Deadline] = None,
    ) -> Iterator[Recommendation]:
        """
        Rank candidate tables for a query.

        The query is embedded once; if the embedding is unavailable every
        similarity is 0 and only tables with no columns are dropped.

        Args:
            query: Raw query text
            entities: Extracted entities used for column pairing
            deadline: Optional deadline; tables not yet scored are skipped

        Returns:
            Iterator over at most `max_recommendations` recommendations,
            by overall score descending

        Raises:
            SchemaIndexNotReady: If the schema index has not been built
        """
        cfg = self.config
        index = self.matcher.index
        query = query or ""
        query_vector = self.matcher.embed_query(query)
        mentions = entities.all_mentions() if entities is not None else []

        table_matches = self.matcher.find_similar_tables(
            query, top_k=cfg.top_k_tables, query_vector=query_vector, index=index
        )

        recommendations: List[Recommendation] = []
        for table_match in table_matches:
            if deadline is not None and deadline.expired:
                logger.warning(f"Deadline reached after scoring {len(recommendations)} table(s)")
                break

            table = table_match.item
            columns = self.matcher.find_similar_columns(
                query, table.name,
                threshold=cfg.column_threshold,
                limit=cfg.max_columns_per_table,
                query_vector=query_vector,
                index=index,
            )
            if not columns:
                continue

            entity_matches = self._match_entities(mentions, table, columns)
            entity_score = (
                sum(m.match_score for m in entity_matches) / len(entity_matches)
                if entity_matches else 0.0
            )
            overall = table_match.score + entity_score * cfg.entity_weight
            overall = max(-1.0, min(cfg.max_overall_score, overall))

            recommendations.append(Recommendation(
                table_name=table.name,
                recommended_columns=[c.item.name for c in columns],
                overall_score=overall,
                reasoning=self._reasoning(table_match, entity_matches),
                table_score=table_match.score,
                entity_matches=entity_matches,
            ))

        recommendations.sort(key=lambda r: -r.overall_score)
        logger.debug(f"Recommended {min(len(recommendations), cfg.max_recommendations)} table(s) for {query!r}")
        return iter(recommendations[:cfg.max_recommendations])

    def find_join_requirements(self, table_names: Sequence[str]) -> List[JoinRequirement]:
        """Known joins between the given tables; unknown pairs are skipped."""
        if self.join_resolver is None:
            return []
        return self.join_resolver.find_requirements(table_names)

    # -------------------------------------------------------------------------
    # Entity pairing
    # -------------------------------------------------------------------------

    def _match_entities(
        self,
        mentions: Sequence[EntityMention],
        table: SchemaItem,
        columns: Sequence[SimilarityMatch[SchemaItem]],
    ) -> List[EntityMatch]:
        matches: List[EntityMatch] = []
        for mention in mentions:
            related = mention.enrichment.get("related_columns") or []
            exact = [
                c for c in columns
                if any(ColumnNormalizer.columns_match(c.item.name, r) for r in related)
            ]
            if exact:
                best, match_type = max(exact, key=lambda c: c.score), "exact"
            else:
                semantic = [c for c in columns if self._describes(mention.text, c.item)]
                if not semantic:
                    continue
                best, match_type = max(semantic, key=lambda c: c.score), "semantic"

            matches.append(EntityMatch(
                entity_text=mention.text,
                category=mention.category.value,
                table_name=table.name,
                column_name=best.item.name,
                match_score=best.score,
                match_type=match_type,
            ))
        return matches

    def _describes(self, entity_text: str, column: SchemaItem) -> bool:
        """Whether a column's meaning or synonyms contain the entity text."""
        text = entity_text.lower().strip()
        if not text:
            return False
        descriptions = [column.purpose.lower()] + [s.lower() for s in column.synonyms]
        if any(text in d for d in descriptions if d):
            return True
        if len(text) < 4:
            return False
        return any(
            fuzz.partial_ratio(text, d) >= self.config.fuzzy_containment_min
            for d in descriptions if d
        )

    @staticmethod
    def _reasoning(table_match: SimilarityMatch[SchemaItem], entity_matches: List[EntityMatch]) -> str:
        reasoning = f"Table matched with similarity {table_match.score:.3f}: {table_match.match_reason}"
        if entity_matches:
            pairs = ", ".join(
                f"{m.entity_text} -> {m.column_name} ({m.match_type})" for m in entity_matches
            )
            reasoning += f"; entity matches: {pairs}"
        return reasoning
