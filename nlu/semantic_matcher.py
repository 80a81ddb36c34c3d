"""
Semantic schema matching for natural language queries.

This module embeds every table and column description once into a schema
index and ranks them against a query embedding by cosine similarity. The
index is rebuilt wholesale and published by swapping a single reference,
so concurrent queries always see one complete index.
"""
import logging
import re
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Generic, List, Mapping, Optional, Sequence, Tuple, TypeVar

from rapidfuzz import fuzz

from joins.normalizer import ColumnNormalizer

from .embedding_service import EmbeddingService, EmbeddingUnavailable, EmbeddingVector, cosine_similarity

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SchemaIndexNotReady(RuntimeError):
    """Raised when matching is attempted before the schema index is built."""
    pass


class SchemaItemKind(Enum):
    TABLE = "table"
    COLUMN = "column"


@dataclass(frozen=True)
class SchemaItem:
    """A table or column with its business metadata."""
    kind: SchemaItemKind
    name: str
    table_name: Optional[str] = None    # Owning table, columns only
    purpose: str = ""                   # Business purpose (tables) or meaning (columns)
    keywords: frozenset = frozenset()
    synonyms: frozenset = frozenset()
    importance: float = 0.5
    domain: str = ""
    data_type: str = ""
    embedding: Optional[EmbeddingVector] = field(default=None, compare=False, repr=False)

    @property
    def item_id(self) -> str:
        if self.kind == SchemaItemKind.COLUMN and self.table_name:
            return f"{self.table_name}.{self.name}"
        return self.name

    def embedding_text(self) -> str:
        """Text embedded for this item: name, purpose/meaning, synonyms, keywords."""
        parts = [self.name, ColumnNormalizer.to_words(self.name), self.purpose]
        if self.kind == SchemaItemKind.COLUMN:
            parts.extend(sorted(self.synonyms))
        parts.extend(sorted(self.keywords))
        return " ".join(p for p in parts if p)

    def with_embedding(self, embedding: Optional[EmbeddingVector]) -> "SchemaItem":
        return replace(self, embedding=embedding)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "name": self.name,
            "table_name": self.table_name,
            "purpose": self.purpose,
            "keywords": sorted(self.keywords),
            "synonyms": sorted(self.synonyms),
            "importance": self.importance,
            "domain": self.domain,
            "data_type": self.data_type,
        }


@dataclass
class SimilarityMatch(Generic[T]):
    """An item scored against a query."""
    item: T
    score: float
    match_reason: str
    matched_terms: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        item = self.item.to_dict() if hasattr(self.item, "to_dict") else self.item
        return {
            "item": item,
            "score": self.score,
            "match_reason": self.match_reason,
            "matched_terms": list(self.matched_terms),
        }


@dataclass(frozen=True)
class SchemaIndex:
    """An immutable snapshot of embedded schema items."""
    tables: Tuple[SchemaItem, ...]
    columns_by_table: Mapping[str, Tuple[SchemaItem, ...]]
    built_at: datetime

    def columns_for(self, table_name: str) -> Tuple[SchemaItem, ...]:
        return self.columns_by_table.get(table_name.lower(), ())

    @property
    def column_count(self) -> int:
        return sum(len(c) for c in self.columns_by_table.values())


def _mentions(text_lower: str, term: str) -> bool:
    """True when `term` occurs in the text starting at a word boundary."""
    term = term.lower().strip()
    return bool(term) and re.search(rf"\b{re.escape(term)}", text_lower) is not None


class SemanticMatcher:
    """
    Embedding-based table and column matcher.

    Usage:
        matcher = SemanticMatcher(embedding_service)
        matcher.build_schema_index(tables, columns)
        matcher.find_similar_tables("total GGR for VIP players", top_k=10)
    """

    NAME_SIMILARITY_MIN = 90

    def __init__(self, embedding_service: EmbeddingService):
        self.embedding_service = embedding_service
        self._index: Optional[SchemaIndex] = None
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Index
    # -------------------------------------------------------------------------

    def build_schema_index(self, tables: Sequence[SchemaItem], columns: Sequence[SchemaItem]) -> SchemaIndex:
        """
        Embed every schema item once and publish a new index.

        Items whose embedding fails are kept without a vector and score 0.
        """
        indexed_tables = tuple(self._embed_item(t) for t in tables)

        grouped = {}
        for column in columns:
            grouped.setdefault((column.table_name or "").lower(), []).append(self._embed_item(column))

        index = SchemaIndex(
            tables=indexed_tables,
            columns_by_table=MappingProxyType({k: tuple(v) for k, v in grouped.items()}),
            built_at=datetime.now(),
        )
        with self._lock:
            self._index = index

        logger.info(f"Built schema index: {len(index.tables)} tables, {index.column_count} columns")
        return index

    def _embed_item(self, item: SchemaItem) -> SchemaItem:
        try:
            vector = self.embedding_service.embed(item.embedding_text(), source_id=item.item_id)
        except EmbeddingUnavailable as e:
            logger.warning(f"Could not embed {item.kind.value} {item.item_id}: {e}")
            vector = None
        return item.with_embedding(vector)

    @property
    def is_ready(self) -> bool:
        with self._lock:
            return self._index is not None

    @property
    def index(self) -> SchemaIndex:
        """Current index snapshot."""
        with self._lock:
            index = self._index
        if index is None:
            raise SchemaIndexNotReady("Schema index has not been built")
        return index

    # -------------------------------------------------------------------------
    # Matching
    # -------------------------------------------------------------------------

    def embed_query(self, query: str) -> Optional[EmbeddingVector]:
        """Embed a query, or None when the provider is unavailable."""
        try:
            return self.embedding_service.embed(query)
        except EmbeddingUnavailable as e:
            logger.warning(f"Query embedding unavailable, using zero similarity: {e}")
            return None

    def score(self, query_vector: Optional[EmbeddingVector], item: SchemaItem) -> float:
        if query_vector is None or item.embedding is None:
            return 0.0
        return cosine_similarity(query_vector, item.embedding)

    def find_similar_tables(
        self,
        query: str,
        top_k: int = 10,
        query_vector: Optional[EmbeddingVector] = None,
        index: Optional[SchemaIndex] = None,
    ) -> List[SimilarityMatch[SchemaItem]]:
        """
        Rank indexed tables against a query.

        Args:
            query: Query text, used for match reasons (and embedding when
                   no query_vector is given)
            top_k: Number of tables to return
            query_vector: Precomputed query embedding
            index: Index snapshot to use (default: current)

        Returns:
            Matches by score descending, ties broken by table importance
        """
        index = index or self.index
        if query_vector is None:
            query_vector = self.embed_query(query)

        matches = [self._match(query, query_vector, table) for table in index.tables]
        matches.sort(key=lambda m: (-m.score, -m.item.importance))
        return matches[:top_k]

    def find_similar_columns(
        self,
        query: str,
        table_name: str,
        threshold: Optional[float] = None,
        limit: Optional[int] = None,
        query_vector: Optional[EmbeddingVector] = None,
        index: Optional[SchemaIndex] = None,
    ) -> List[SimilarityMatch[SchemaItem]]:
        """
        Rank a table's columns against a query.

        Args:
            query: Query text
            table_name: Table whose columns are scored
            threshold: Keep only columns scoring strictly above this
            limit: Maximum number of columns returned

        Returns:
            Matches by score descending
        """
        index = index or self.index
        if query_vector is None:
            query_vector = self.embed_query(query)

        matches = [self._match(query, query_vector, column) for column in index.columns_for(table_name)]
        if threshold is not None:
            matches = [m for m in matches if m.score > threshold]
        matches.sort(key=lambda m: -m.score)
        if limit is not None:
            matches = matches[:limit]
        return matches

    def _match(self, query: str, query_vector: Optional[EmbeddingVector], item: SchemaItem) -> SimilarityMatch[SchemaItem]:
        reason, terms = self.explain(query, item)
        return SimilarityMatch(item=item, score=self.score(query_vector, item), match_reason=reason, matched_terms=terms)

    def explain(self, query: str, item: SchemaItem) -> Tuple[str, List[str]]:
        """
        Build a human-readable match reason and the matched terms.

        Returns:
            (reason, matched_terms), reasons joined with ", "
        """
        query_lower = (query or "").lower()
        reasons: List[str] = []
        kind = item.kind.value

        name_words = ColumnNormalizer.to_words(item.name)
        if _mentions(query_lower, item.name) or (name_words and _mentions(query_lower, name_words)):
            reasons.append(f"exact {kind} name match")
        elif len(name_words) > 3 and fuzz.partial_ratio(name_words, query_lower) >= self.NAME_SIMILARITY_MIN:
            reasons.append(f"similar {kind} name")

        purpose_words = [w for w in re.findall(r"[a-z]+", item.purpose.lower()) if len(w) > 3]
        if any(_mentions(query_lower, w) for w in purpose_words):
            label = "purpose" if item.kind == SchemaItemKind.TABLE else "meaning"
            reasons.append(f"business {label} alignment")

        matched_synonyms = sorted(s for s in item.synonyms if _mentions(query_lower, s))
        if matched_synonyms:
            reasons.append("synonym match")

        matched_keywords = sorted(k for k in item.keywords if _mentions(query_lower, k))
        if matched_keywords:
            reasons.append("keyword match")

        if item.domain and _mentions(query_lower, item.domain):
            reasons.append("domain match")

        if not reasons:
            reasons.append("semantic similarity")

        terms = matched_keywords + [s for s in matched_synonyms if s not in matched_keywords]
        return ", ".join(reasons), terms
