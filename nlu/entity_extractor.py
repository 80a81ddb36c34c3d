"""
Extract categorised entities from natural language queries.

Six independent extractors (domain terms, temporal, financial, subject,
object, metric) run concurrently over the same text. Each applies its
pattern table, scores every match with a category heuristic and enriches
it from the domain glossary before the results are merged.
"""
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence

from knowledge.domain_knowledge import DomainGlossary

from .concurrency import Deadline, run_parallel
from .extraction_patterns import DEFAULT_PATTERNS, ExtractionPatterns, PatternRule
from .temporal_resolver import Granularity, TemporalResolver

logger = logging.getLogger(__name__)


class EntityCategory(Enum):
    """Entity categories, one extractor each."""
    DOMAIN_TERM = "DomainTerm"
    TEMPORAL = "Temporal"
    FINANCIAL = "Financial"
    SUBJECT = "Subject"
    OBJECT = "Object"
    METRIC = "Metric"


@dataclass(frozen=True)
class EntityMention:
    """A span of the query recognised as an entity."""
    text: str
    category: EntityCategory
    start: int
    end: int
    confidence: float
    source: str = ""
    label: str = ""
    enrichment: Mapping[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"Mention end ({self.end}) precedes start ({self.start})")
        object.__setattr__(self, "confidence", min(1.0, max(0.0, float(self.confidence))))
        object.__setattr__(self, "enrichment", MappingProxyType(dict(self.enrichment)))

    def contains(self, other: "EntityMention") -> bool:
        return self.start <= other.start and other.end <= self.end

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "category": self.category.value,
            "start": self.start,
            "end": self.end,
            "confidence": self.confidence,
            "source": self.source,
            "label": self.label,
            "enrichment": dict(self.enrichment),
        }


CATEGORY_FIELDS = {
    EntityCategory.DOMAIN_TERM: "domain_terms",
    EntityCategory.TEMPORAL: "temporal",
    EntityCategory.FINANCIAL: "financial",
    EntityCategory.SUBJECT: "subjects",
    EntityCategory.OBJECT: "objects",
    EntityCategory.METRIC: "metrics",
}


@dataclass
class EntityExtractionResult:
    """Entities extracted from a query, grouped by category."""
    query: str
    domain_terms: List[EntityMention] = field(default_factory=list)
    temporal: List[EntityMention] = field(default_factory=list)
    financial: List[EntityMention] = field(default_factory=list)
    subjects: List[EntityMention] = field(default_factory=list)
    objects: List[EntityMention] = field(default_factory=list)
    metrics: List[EntityMention] = field(default_factory=list)
    overall_confidence: float = 0.0
    failed_categories: List[str] = field(default_factory=list)
    partial: bool = False

    def by_category(self, category: EntityCategory) -> List[EntityMention]:
        return getattr(self, CATEGORY_FIELDS[category])

    def all_mentions(self) -> List[EntityMention]:
        mentions: List[EntityMention] = []
        for attr in CATEGORY_FIELDS.values():
            mentions.extend(getattr(self, attr))
        return mentions

    @property
    def total_count(self) -> int:
        return len(self.all_mentions())

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"query": self.query}
        for attr in CATEGORY_FIELDS.values():
            result[attr] = [m.to_dict() for m in getattr(self, attr)]
        result["overall_confidence"] = self.overall_confidence
        result["failed_categories"] = list(self.failed_categories)
        result["partial"] = self.partial
        return result


def _suppress_contained(mentions: Sequence[EntityMention]) -> List[EntityMention]:
    """Drop mentions whose span lies inside an already kept mention."""
    ordered = sorted(mentions, key=lambda m: (m.start, -(m.end - m.start)))
    kept: List[EntityMention] = []
    for mention in ordered:
        if any(k.contains(mention) for k in kept):
            continue
        kept.append(mention)
    return kept


# =============================================================================
# Category extractors
# =============================================================================

class CategoryExtractor(ABC):
    """Pattern-driven extractor for one entity category."""

    category: EntityCategory

    def __init__(self, rules: Sequence[PatternRule], glossary: Optional[DomainGlossary] = None):
        self.rules = tuple(rules)
        self.glossary = glossary

    @property
    def name(self) -> str:
        return type(self).__name__

    def extract(self, query: str, deadline: Optional[Deadline] = None) -> List[EntityMention]:
        """
        Apply every pattern rule to the query.

        Stops between rules once the deadline has passed and returns the
        mentions found so far.
        """
        mentions: List[EntityMention] = []
        for rule in self.rules:
            if deadline is not None and deadline.expired:
                logger.debug(f"{self.name} stopped early at rule {rule.label}")
                break
            for match in rule.regex.finditer(query):
                if match.end() == match.start():
                    continue
                text = match.group(0)
                mentions.append(EntityMention(
                    text=text,
                    category=self.category,
                    start=match.start(),
                    end=match.end(),
                    confidence=self.confidence(text, rule.label),
                    source=self.name,
                    label=rule.label,
                    enrichment=self.enrich(text, rule.label),
                ))
        return _suppress_contained(mentions)

    @abstractmethod
    def confidence(self, text: str, label: str) -> float:
        """Heuristic confidence for a matched span."""

    def enrich(self, text: str, label: str) -> Dict[str, Any]:
        return self._glossary_enrichment(text)

    def _glossary_enrichment(self, text: str) -> Dict[str, Any]:
        """Glossary details for the full text, falling back to its head word."""
        if self.glossary is None:
            return {}
        definition = self.glossary.lookup_term(text)
        if definition is None:
            words = text.split()
            if len(words) > 1:
                definition = self.glossary.lookup_term(words[-1])
        if definition is None:
            return {}
        return {
            "standard_term": definition.term,
            "definition": definition.definition,
            "related_tables": list(definition.related_tables),
            "related_columns": list(definition.related_columns),
            "formula": definition.formula,
            "domain": definition.domain,
        }


class DomainTermExtractor(CategoryExtractor):
    category = EntityCategory.DOMAIN_TERM

    def confidence(self, text: str, label: str) -> float:
        if text.lower() == label.lower():
            return 0.95
        if len(text) <= 4 and text.isupper():
            return 0.9
        return 0.8


class TemporalExtractor(CategoryExtractor):
    """Temporal mentions, resolved to concrete boundaries."""

    category = EntityCategory.TEMPORAL

    LABEL_CONFIDENCE = {
        "Date": 0.95,
        "DateRange": 0.9,
        "Relative": 0.85,
        "Quarter": 0.85,
        "Period": 0.8,
    }

    PERIOD_GRANULARITY = {
        "daily": Granularity.DAY,
        "weekly": Granularity.WEEK,
        "monthly": Granularity.MONTH,
        "quarterly": Granularity.QUARTER,
        "yearly": Granularity.YEAR,
        "annual": Granularity.YEAR,
    }

    def __init__(self, rules: Sequence[PatternRule], resolver: TemporalResolver,
                 glossary: Optional[DomainGlossary] = None):
        super().__init__(rules, glossary)
        self.resolver = resolver

    def confidence(self, text: str, label: str) -> float:
        return self.LABEL_CONFIDENCE.get(label, 0.7)

    def enrich(self, text: str, label: str) -> Dict[str, Any]:
        expression = self.resolver.resolve(text)
        granularity = self.PERIOD_GRANULARITY.get(text.lower(), expression.granularity)
        return {
            "kind": expression.kind.value,
            "start": expression.start.isoformat() if expression.start else None,
            "end": expression.end.isoformat() if expression.end else None,
            "predicate": expression.predicate,
            "granularity": granularity.value,
        }


class FinancialExtractor(CategoryExtractor):
    category = EntityCategory.FINANCIAL

    CURRENCY_CODES = {
        "$": "USD", "£": "GBP", "€": "EUR",
        "usd": "USD", "dollar": "USD", "dollars": "USD",
        "gbp": "GBP", "pound": "GBP", "pounds": "GBP",
        "eur": "EUR", "euro": "EUR", "euros": "EUR",
    }

    AMOUNT_PATTERN = re.compile(r"(\d[\d,]*(?:\.\d{1,2})?)")
    CURRENCY_PATTERN = re.compile(r"[$£€]|\b(?:gbp|usd|eur|pounds?|dollars?|euros?)\b", re.IGNORECASE)

    def confidence(self, text: str, label: str) -> float:
        if re.search(r"\d", text):
            return 0.95
        return 0.8

    def enrich(self, text: str, label: str) -> Dict[str, Any]:
        enrichment = self._glossary_enrichment(text)
        amount = self.AMOUNT_PATTERN.search(text)
        if amount:
            enrichment["amount"] = float(amount.group(1).replace(",", ""))
        currency = self.CURRENCY_PATTERN.search(text)
        if currency:
            enrichment["currency"] = self.CURRENCY_CODES[currency.group(0).lower()]
        return enrichment


class SubjectExtractor(CategoryExtractor):
    """Players and player segments."""

    category = EntityCategory.SUBJECT

    PLAYER_TYPES = {
        "new": "New",
        "existing": "Active",
        "active": "Active",
        "inactive": "Inactive",
        "dormant": "Inactive",
        "churned": "Inactive",
    }

    def confidence(self, text: str, label: str) -> float:
        if re.search(r"\bid\b", text, re.IGNORECASE):
            return 0.95
        return 0.8

    def enrich(self, text: str, label: str) -> Dict[str, Any]:
        enrichment = self._glossary_enrichment(text)
        text_lower = text.lower()
        first_word = text_lower.split()[0] if text_lower.split() else ""

        if re.search(r"\b(vip|high\s*roller|whale)", text_lower):
            enrichment["segment"] = "VIP"
        elif label == "Segment":
            enrichment["segment"] = first_word.title()

        if first_word in self.PLAYER_TYPES:
            enrichment["player_type"] = self.PLAYER_TYPES[first_word]

        player_id = re.search(r"id\s*:?\s*(\d+)", text_lower)
        if player_id:
            enrichment["player_id"] = player_id.group(1)
        return enrichment


class ObjectExtractor(CategoryExtractor):
    """Games, game categories and providers."""

    category = EntityCategory.OBJECT

    GAME_CATEGORIES = (
        (re.compile(r"\bslots?\b"), "Slots"),
        (re.compile(r"\b(table|card|blackjack|poker|roulette|baccarat|craps)\b"), "Table Games"),
        (re.compile(r"\bsports?\b"), "Sports Betting"),
        (re.compile(r"\blive\b"), "Live Casino"),
    )

    def confidence(self, text: str, label: str) -> float:
        if re.search(r"\bid\b", text, re.IGNORECASE):
            return 0.95
        return 0.8

    def enrich(self, text: str, label: str) -> Dict[str, Any]:
        enrichment = self._glossary_enrichment(text)
        text_lower = text.lower()
        for pattern, category in self.GAME_CATEGORIES:
            if pattern.search(text_lower):
                enrichment["game_category"] = category
                break
        game_id = re.search(r"id\s*:?\s*(\d+)", text_lower)
        if game_id:
            enrichment["game_id"] = game_id.group(1)
        return enrichment


class MetricExtractor(CategoryExtractor):
    category = EntityCategory.METRIC

    AGGREGATIONS = {
        "Revenue": "SUM",
        "Volume": "SUM",
        "Count": "COUNT",
        "Average": "AVG",
    }

    def confidence(self, text: str, label: str) -> float:
        return 0.8

    def enrich(self, text: str, label: str) -> Dict[str, Any]:
        enrichment = self._glossary_enrichment(text)
        text_lower = text.lower()
        if re.search(r"\b(sum|total)\b", text_lower):
            enrichment["aggregation"] = "SUM"
        elif re.search(r"\b(max|maximum|highest)\b", text_lower):
            enrichment["aggregation"] = "MAX"
        elif re.search(r"\b(min|minimum|lowest)\b", text_lower):
            enrichment["aggregation"] = "MIN"
        elif label in self.AGGREGATIONS:
            enrichment["aggregation"] = self.AGGREGATIONS[label]
        return enrichment


# =============================================================================
# Orchestration
# =============================================================================

class EntityExtractor:
    """
    Run all category extractors concurrently and merge their mentions.

    A failing extractor is logged and contributes an empty list; the query
    is never rejected because one category broke.
    """

    def __init__(
        self,
        glossary: Optional[DomainGlossary] = None,
        resolver: Optional[TemporalResolver] = None,
        patterns: ExtractionPatterns = DEFAULT_PATTERNS,
        max_workers: int = 6,
    ):
        """
        Initialize the extractor.

        Args:
            glossary: Domain glossary used for enrichment
            resolver: Temporal resolver (default: one on the system clock)
            patterns: Pattern tables for all categories
            max_workers: Upper bound on concurrent extractors
        """
        self.glossary = glossary
        self.resolver = resolver or TemporalResolver()
        self.patterns = patterns
        self.max_workers = max_workers
        self.extractors: Dict[EntityCategory, CategoryExtractor] = {
            EntityCategory.DOMAIN_TERM: DomainTermExtractor(patterns.domain_terms, glossary),
            EntityCategory.TEMPORAL: TemporalExtractor(patterns.temporal, self.resolver, glossary),
            EntityCategory.FINANCIAL: FinancialExtractor(patterns.financial, glossary),
            EntityCategory.SUBJECT: SubjectExtractor(patterns.subjects, glossary),
            EntityCategory.OBJECT: ObjectExtractor(patterns.objects, glossary),
            EntityCategory.METRIC: MetricExtractor(patterns.metrics, glossary),
        }

    def extract(self, query: str, deadline: Optional[Deadline] = None) -> EntityExtractionResult:
        """
        Extract entities from a natural language query.

        Args:
            query: Raw query text
            deadline: Optional deadline; extractors return what they have
                      when it passes

        Returns:
            EntityExtractionResult with one mention list per category
        """
        query = query or ""
        result = EntityExtractionResult(query=query)

        tasks = {
            category.value: partial(extractor.extract, query, deadline)
            for category, extractor in self.extractors.items()
        }
        outcome = run_parallel(tasks, deadline=deadline, max_workers=self.max_workers)

        for category in self.extractors:
            name = category.value
            if name in outcome.errors:
                logger.warning(
                    f"Entity extractor {name} failed for query {query!r}: {outcome.errors[name]}"
                )
                result.failed_categories.append(name)
                continue
            setattr(result, CATEGORY_FIELDS[category], outcome.results.get(name, []))

        result.partial = bool(outcome.timed_out) or (deadline is not None and deadline.expired)

        mentions = result.all_mentions()
        if mentions:
            result.overall_confidence = sum(m.confidence for m in mentions) / len(mentions)

        logger.debug(
            f"Extracted {len(mentions)} entities from {query!r} "
            f"(confidence {result.overall_confidence:.2f})"
        )
        return result
