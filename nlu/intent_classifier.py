"""
Rule-based query intent classification.

Scores each intent by the weighted keyword groups found in the query and
picks the highest. Keywords match at a word start, so "compared" triggers
"compare" while "target" does not trigger "get".
"""
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class IntentType(Enum):
    """Query intents, in rule-table order."""
    AGGREGATE = "Aggregate"
    SELECT = "Select"
    TOP_N = "TopN"
    TREND = "Trend"
    COMPARISON = "Comparison"


@dataclass(frozen=True)
class KeywordGroup:
    """Keywords that add `weight` to an intent score when any of them occurs."""
    keywords: Tuple[str, ...]
    weight: float

    def matches(self, query_lower: str) -> bool:
        return any(re.search(rf"\b{re.escape(k)}", query_lower) for k in self.keywords)


@dataclass(frozen=True)
class IntentRule:
    """Scoring rule and static description for one intent."""
    intent: IntentType
    groups: Tuple[KeywordGroup, ...]
    description: str
    required_actions: Tuple[str, ...]

    def score(self, query_lower: str) -> float:
        return min(1.0, sum(g.weight for g in self.groups if g.matches(query_lower)))


DEFAULT_INTENT_RULES: Tuple[IntentRule, ...] = (
    IntentRule(
        IntentType.AGGREGATE,
        (
            KeywordGroup(("sum", "total"), 0.3),
            KeywordGroup(("count",), 0.3),
            KeywordGroup(("average", "avg"), 0.3),
            KeywordGroup(("calculate",), 0.2),
        ),
        "Query requires aggregation of data",
        ("Identify aggregation function (SUM, COUNT, AVG, etc.)", "Determine grouping criteria"),
    ),
    IntentRule(
        IntentType.SELECT,
        (
            KeywordGroup(("show", "display"), 0.3),
            KeywordGroup(("list", "get"), 0.2),
            KeywordGroup(("what", "which"), 0.3),
        ),
        "Query requests specific data records",
        ("Identify columns to retrieve",),
    ),
    IntentRule(
        IntentType.TOP_N,
        (
            KeywordGroup(("top",), 0.4),
            KeywordGroup(("best", "highest"), 0.3),
            KeywordGroup(("most",), 0.2),
        ),
        "Query requests top N results",
        ("Extract ranking criteria", "Determine number of results (N)", "Add ORDER BY clause"),
    ),
    IntentRule(
        IntentType.TREND,
        (
            KeywordGroup(("trend",), 0.4),
            KeywordGroup(("over time",), 0.4),
            KeywordGroup(("daily", "weekly", "monthly", "yearly"), 0.3),
        ),
        "Query analyzes trends over time",
        ("Identify time dimension", "Determine time granularity", "Add temporal filtering"),
    ),
    IntentRule(
        IntentType.COMPARISON,
        (
            KeywordGroup(("compare",), 0.4),
            KeywordGroup(("vs", "versus"), 0.4),
            KeywordGroup(("between",), 0.3),
        ),
        "Query compares different entities or time periods",
        ("Identify entities to compare", "Determine comparison criteria"),
    ),
)

SECONDARY_THRESHOLD = 0.3
DEFAULT_CONFIDENCE = 0.5


@dataclass
class IntentAnalysis:
    """Classified intent of a query."""
    primary_intent: IntentType
    confidence: float
    description: str
    secondary_intents: List[IntentType] = field(default_factory=list)
    required_actions: List[str] = field(default_factory=list)
    scores: Dict[str, float] = field(default_factory=dict)
    limit: Optional[int] = None

    def to_dict(self) -> Dict:
        return {
            "primary_intent": self.primary_intent.value,
            "confidence": self.confidence,
            "description": self.description,
            "secondary_intents": [i.value for i in self.secondary_intents],
            "required_actions": list(self.required_actions),
            "scores": dict(self.scores),
            "limit": self.limit,
        }


class IntentClassifier:
    """
    Classify query intent from an injectable rule table.

    Usage:
        analysis = IntentClassifier().classify("Show me the top 10 slot games")
        analysis.primary_intent  # IntentType.TOP_N
        analysis.limit           # 10
    """

    LIMIT_PATTERN = re.compile(r"\b(?:top|first|best|bottom)\s+(\d+)\b", re.IGNORECASE)

    def __init__(self, rules: Tuple[IntentRule, ...] = DEFAULT_INTENT_RULES):
        self.rules = rules
        self._by_intent = {rule.intent: rule for rule in rules}

    def classify(self, query: str) -> IntentAnalysis:
        query_lower = (query or "").lower()
        scored = [(rule, rule.score(query_lower)) for rule in self.rules]
        scores = {rule.intent.value: score for rule, score in scored}

        # Stable sort keeps rule-table order on ties
        ranked = sorted((s for s in scored if s[1] > 0), key=lambda s: -s[1])

        if ranked:
            primary, confidence = ranked[0]
            secondary = [rule.intent for rule, score in ranked[1:] if score > SECONDARY_THRESHOLD]
        else:
            primary = self._by_intent.get(IntentType.SELECT, self.rules[0])
            confidence = DEFAULT_CONFIDENCE
            secondary = []

        limit = None
        if primary.intent == IntentType.TOP_N:
            match = self.LIMIT_PATTERN.search(query or "")
            if match:
                limit = int(match.group(1))

        logger.debug(f"Classified {query!r} as {primary.intent.value} ({confidence:.2f})")
        return IntentAnalysis(
            primary_intent=primary.intent,
            confidence=confidence,
            description=primary.description,
            secondary_intents=secondary,
            required_actions=list(primary.required_actions),
            scores=scores,
            limit=limit,
        )

    def default_analysis(self) -> IntentAnalysis:
        """The analysis given to a query no rule matches."""
        rule = self._by_intent.get(IntentType.SELECT, self.rules[0])
        return IntentAnalysis(
            primary_intent=rule.intent,
            confidence=DEFAULT_CONFIDENCE,
            description=rule.description,
            required_actions=list(rule.required_actions),
        )
