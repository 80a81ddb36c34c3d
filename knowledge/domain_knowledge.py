"""
Gaming domain knowledge for query understanding.

Provides a read-only lookup of:
- Glossary terms (GGR, NGR, RTP, player, deposit, ...) with their related
  tables, columns and calculation formulas
- Metric calculations and known query patterns
- Join patterns between commonly combined tables
- Business rule validation for extracted entities

The knowledge is loaded once from YAML and never mutated afterwards, so a
single instance can be shared by every request thread.
"""
import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import yaml

logger = logging.getLogger(__name__)

DEFAULT_KNOWLEDGE_PATH = os.path.join(os.path.dirname(__file__), "gaming_domain.yaml")


# =============================================================================
# Data Types
# =============================================================================

@dataclass(frozen=True)
class TermDefinition:
    """A glossary entry for a business term."""
    key: str
    term: str
    definition: str
    synonyms: Tuple[str, ...] = ()
    related_tables: Tuple[str, ...] = ()
    related_columns: Tuple[str, ...] = ()
    formula: str = ""
    domain: str = ""

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, key: str, data: Mapping[str, Any]) -> "TermDefinition":
        return cls(
            key=key.lower(),
            term=data.get("term", key),
            definition=data.get("definition", ""),
            synonyms=tuple(s.lower() for s in data.get("synonyms", [])),
            related_tables=tuple(data.get("related_tables", [])),
            related_columns=tuple(data.get("related_columns", [])),
            formula=data.get("formula") or "",
            domain=data.get("domain", ""),
        )


@dataclass(frozen=True)
class JoinCondition:
    """One equality between a left and a right column."""
    left_column: str
    right_column: str


@dataclass(frozen=True)
class JoinRequirement:
    """A known join between two tables."""
    left_table: str
    right_table: str
    join_type: str = "INNER"
    conditions: Tuple[JoinCondition, ...] = ()
    business_reason: str = ""
    confidence: float = 1.0
    is_required: bool = False

    def reversed(self) -> "JoinRequirement":
        """Return the same join with the sides swapped."""
        join_type = {"LEFT": "RIGHT", "RIGHT": "LEFT"}.get(self.join_type, self.join_type)
        return JoinRequirement(
            left_table=self.right_table,
            right_table=self.left_table,
            join_type=join_type,
            conditions=tuple(JoinCondition(c.right_column, c.left_column) for c in self.conditions),
            business_reason=self.business_reason,
            confidence=self.confidence,
            is_required=self.is_required,
        )

    def on_clause(self) -> str:
        """Render the join conditions as 'a.x = b.y AND ...'."""
        return " AND ".join(
            f"{self.left_table}.{c.left_column} = {self.right_table}.{c.right_column}"
            for c in self.conditions
        )

    def to_dict(self) -> Dict:
        result = asdict(self)
        result["on_clause"] = self.on_clause()
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "JoinRequirement":
        return cls(
            left_table=data["left_table"],
            right_table=data["right_table"],
            join_type=str(data.get("join_type", "INNER")).upper(),
            conditions=tuple(
                JoinCondition(c["left"], c["right"]) for c in data.get("conditions", [])
            ),
            business_reason=data.get("business_reason", ""),
            confidence=float(data.get("confidence", 1.0)),
            is_required=bool(data.get("required", False)),
        )


@dataclass(frozen=True)
class MetricCalculation:
    """How a business metric is computed."""
    key: str
    name: str
    formula: str
    required_tables: Tuple[str, ...] = ()
    required_columns: Tuple[str, ...] = ()
    sql_template: str = ""
    parameters: Tuple[Tuple[str, str], ...] = ()

    def to_dict(self) -> Dict:
        result = asdict(self)
        result["parameters"] = dict(self.parameters)
        return result


@dataclass(frozen=True)
class QueryPattern:
    """A known question shape with its SQL template."""
    name: str
    pattern: str
    sql_template: str = ""
    required_entities: Tuple[str, ...] = ()
    confidence: float = 0.0
    domain: str = ""

    def matches(self, query: str) -> bool:
        return re.search(self.pattern, query, re.IGNORECASE) is not None

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class TermColumnMapping:
    """A business term mapped to a concrete column."""
    term: str
    table_name: str
    column_name: str
    match_score: float
    match_type: str  # exact, fuzzy

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class BusinessRuleValidation:
    """Outcome of checking a query against business rules."""
    is_valid: bool = True
    warnings: List[str] = field(default_factory=list)
    violations: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return asdict(self)


# =============================================================================
# Glossary Interface
# =============================================================================

class DomainGlossary(ABC):
    """Lookup interface shared by every domain glossary backend."""

    @abstractmethod
    def lookup_term(self, text: str) -> Optional[TermDefinition]:
        """Find the definition for a term, its synonym, or its plural."""

    @abstractmethod
    def lookup_join_pattern(self, table_a: str, table_b: str) -> Optional[JoinRequirement]:
        """Find the join between two tables, oriented as (table_a, table_b)."""


def _term_candidates(text: str) -> List[str]:
    """Lowercased lookup keys for a term: as written, then singular."""
    key = " ".join(text.lower().split())
    if not key:
        return []
    candidates = [key]
    if len(key) > 3 and key.endswith("s") and not key.endswith("ss"):
        candidates.append(key[:-1])
    return candidates


# =============================================================================
# YAML Knowledge Base
# =============================================================================

class DomainKnowledgeBase(DomainGlossary):
    """
    Read-only gaming domain knowledge loaded from YAML.

    Usage:
        kb = DomainKnowledgeBase.from_file()
        kb.lookup_term("GGR").formula
        kb.lookup_join_pattern("Games", "tbl_Daily_actions_games")
    """

    def __init__(
        self,
        terms: Sequence[TermDefinition] = (),
        metrics: Sequence[MetricCalculation] = (),
        query_patterns: Sequence[QueryPattern] = (),
        join_patterns: Sequence[JoinRequirement] = (),
        fuzzy_mappings: Optional[Mapping[str, Tuple[str, str, float]]] = None,
        sensitive_terms: Sequence[str] = (),
    ):
        self._terms: Dict[str, TermDefinition] = {t.key: t for t in terms}
        self._synonyms: Dict[str, str] = {}
        for term in terms:
            for synonym in term.synonyms:
                self._synonyms.setdefault(synonym, term.key)

        self._metrics: Dict[str, MetricCalculation] = {m.key: m for m in metrics}
        self._query_patterns: Tuple[QueryPattern, ...] = tuple(
            sorted(query_patterns, key=lambda p: -p.confidence)
        )
        self._joins: Dict[frozenset, JoinRequirement] = {}
        for join in join_patterns:
            pair = frozenset((join.left_table.lower(), join.right_table.lower()))
            self._joins.setdefault(pair, join)
        self._fuzzy_mappings = dict(fuzzy_mappings or {})
        self._sensitive_terms = tuple(sensitive_terms)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DomainKnowledgeBase":
        terms = [
            TermDefinition.from_dict(key, value)
            for key, value in (data.get("terms") or {}).items()
        ]
        metrics = [
            MetricCalculation(
                key=key,
                name=value.get("name", key),
                formula=value.get("formula", ""),
                required_tables=tuple(value.get("required_tables", [])),
                required_columns=tuple(value.get("required_columns", [])),
                sql_template=value.get("sql_template", ""),
                parameters=tuple((value.get("parameters") or {}).items()),
            )
            for key, value in (data.get("metrics") or {}).items()
        ]
        patterns = [
            QueryPattern(
                name=p["name"],
                pattern=p["pattern"],
                sql_template=p.get("sql_template", ""),
                required_entities=tuple(p.get("required_entities", [])),
                confidence=float(p.get("confidence", 0.0)),
                domain=p.get("domain", ""),
            )
            for p in data.get("query_patterns") or []
        ]
        joins = [JoinRequirement.from_dict(j) for j in data.get("join_patterns") or []]
        fuzzy = {
            key: (value["table"], value["column"], float(value["score"]))
            for key, value in (data.get("fuzzy_mappings") or {}).items()
        }
        return cls(
            terms=terms,
            metrics=metrics,
            query_patterns=patterns,
            join_patterns=joins,
            fuzzy_mappings=fuzzy,
            sensitive_terms=data.get("sensitive_terms") or [],
        )

    @classmethod
    def from_file(cls, path: Optional[str] = None) -> "DomainKnowledgeBase":
        """Load the knowledge base from a YAML file."""
        path = path or DEFAULT_KNOWLEDGE_PATH
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        kb = cls.from_dict(data)
        logger.info(
            f"Loaded domain knowledge from {path}: {len(kb._terms)} terms, "
            f"{len(kb._joins)} join patterns"
        )
        return kb

    # -------------------------------------------------------------------------
    # Glossary lookups
    # -------------------------------------------------------------------------

    @property
    def terms(self) -> Dict[str, TermDefinition]:
        return dict(self._terms)

    def lookup_term(self, text: str) -> Optional[TermDefinition]:
        for candidate in _term_candidates(text):
            if candidate in self._terms:
                return self._terms[candidate]
            if candidate in self._synonyms:
                return self._terms[self._synonyms[candidate]]
        return None

    def lookup_join_pattern(self, table_a: str, table_b: str) -> Optional[JoinRequirement]:
        join = self._joins.get(frozenset((table_a.lower(), table_b.lower())))
        if join is None:
            return None
        if join.left_table.lower() == table_a.lower():
            return join
        return join.reversed()

    @property
    def join_patterns(self) -> List[JoinRequirement]:
        return list(self._joins.values())

    # -------------------------------------------------------------------------
    # Metrics and patterns
    # -------------------------------------------------------------------------

    @property
    def metric_calculations(self) -> Dict[str, MetricCalculation]:
        return dict(self._metrics)

    def get_metric_calculation(self, name: str) -> Optional[MetricCalculation]:
        for key, metric in self._metrics.items():
            if key.lower() == name.lower():
                return metric
        return None

    def match_query_patterns(self, query: str) -> List[QueryPattern]:
        """Known query patterns the text matches, most confident first."""
        return [p for p in self._query_patterns if p.matches(query)]

    def map_terms_to_columns(self, terms: Sequence[str]) -> List[TermColumnMapping]:
        """
        Map business terms to candidate columns.

        Glossary terms map to every related (table, column) pair with an
        exact score of 0.95. Anything else falls back to the fuzzy mapping
        table, matched by substring in either direction.
        """
        mappings: List[TermColumnMapping] = []
        for term in terms:
            definition = self.lookup_term(term)
            if definition:
                for table in definition.related_tables:
                    for column in definition.related_columns:
                        mappings.append(TermColumnMapping(term, table, column, 0.95, "exact"))
                continue

            term_lower = term.lower()
            for key, (table, column, score) in self._fuzzy_mappings.items():
                if key in term_lower or term_lower in key:
                    mappings.append(TermColumnMapping(term, table, column, score, "fuzzy"))
        return mappings

    # -------------------------------------------------------------------------
    # Business rules
    # -------------------------------------------------------------------------

    def validate_business_rules(self, query: str, entities: Any) -> BusinessRuleValidation:
        """
        Check a query and its extracted entities against business rules.

        Args:
            query: The raw query text
            entities: An entity extraction result exposing per-category
                      mention lists (domain_terms, financial, subjects, temporal)

        Returns:
            BusinessRuleValidation with warnings, violations and suggestions
        """
        validation = BusinessRuleValidation()
        query_lower = query.lower()
        domain_labels = {m.label for m in entities.domain_terms}
        financial_labels = {m.label for m in entities.financial}

        if "GGR" in domain_labels:
            has_bets = "Bet" in financial_labels or "bet" in query_lower
            has_wins = "Win" in financial_labels or "win" in query_lower
            if not has_bets or not has_wins:
                validation.warnings.append(
                    "GGR calculation typically requires both bet and win amounts"
                )
                validation.suggestions.append(
                    "Consider including both bet amounts and win amounts in your query"
                )

        if entities.subjects and not entities.temporal:
            validation.warnings.append(
                "Player analysis queries often benefit from specifying a time period"
            )
            validation.suggestions.append(
                "Consider adding a time period like 'last month' or 'this year'"
            )

        if domain_labels & {"GGR", "NGR"}:
            currencies = sorted({
                m.enrichment["currency"] for m in entities.financial
                if m.enrichment.get("currency")
            })
            if len(currencies) > 1:
                validation.warnings.append(f"Multiple currencies detected: {', '.join(currencies)}")
                validation.suggestions.append(
                    "Consider specifying a single currency or using currency conversion"
                )

        if any(term in query_lower for term in self._sensitive_terms):
            validation.is_valid = False
            validation.violations.append("Query may request sensitive personal information")
            validation.suggestions.append(
                "Ensure compliance with data protection regulations (GDPR, CCPA)"
            )

        return validation
