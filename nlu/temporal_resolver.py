"""
Temporal expression resolution for natural language queries.

Turns phrases like "last month", "past 7 days", "Q3 2024" or
"between 2024-01-01 and 2024-01-31" into concrete half-open
[start, end) boundaries plus an equivalent SQL filter predicate.

Resolution never raises on unrecognised text: anything that does not
match degrades to an unbounded range with an always-true predicate.
"""
import calendar
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional, Pattern, Tuple

from sqlglot import exp

logger = logging.getLogger(__name__)


class TemporalKind(Enum):
    """How a temporal expression is anchored."""
    ABSOLUTE = "Absolute"
    RELATIVE = "Relative"
    RANGE = "Range"


class Granularity(Enum):
    """Time granularity, finest first."""
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"

    @property
    def rank(self) -> int:
        return list(Granularity).index(self)


ALWAYS_TRUE_PREDICATE = exp.EQ(
    this=exp.Literal.number(1), expression=exp.Literal.number(1)
).sql()

_DATE = r"\d{4}-\d{2}-\d{2}|\d{1,2}/\d{1,2}/\d{4}"


@dataclass(frozen=True)
class TemporalExpression:
    """A resolved time expression with [start, end) boundaries."""
    text: str
    kind: TemporalKind
    start: Optional[datetime]
    end: Optional[datetime]
    predicate: str
    granularity: Granularity
    matched_text: str = ""
    position: Optional[Tuple[int, int]] = None
    label: str = ""

    @property
    def is_resolved(self) -> bool:
        return self.start is not None or self.end is not None

    def to_dict(self) -> Dict:
        return {
            "text": self.text,
            "matched_text": self.matched_text,
            "kind": self.kind.value,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "predicate": self.predicate,
            "granularity": self.granularity.value,
            "label": self.label,
        }


@dataclass
class TemporalContext:
    """All temporal expressions found in one query."""
    expressions: List[TemporalExpression] = field(default_factory=list)

    @property
    def has_temporal_elements(self) -> bool:
        return bool(self.expressions)

    @property
    def granularity(self) -> Optional[Granularity]:
        """Finest granularity among the expressions."""
        if not self.expressions:
            return None
        return min((e.granularity for e in self.expressions), key=lambda g: g.rank)

    @property
    def start(self) -> Optional[datetime]:
        starts = [e.start for e in self.expressions if e.start is not None]
        return min(starts) if starts else None

    @property
    def end(self) -> Optional[datetime]:
        ends = [e.end for e in self.expressions if e.end is not None]
        return max(ends) if ends else None

    def to_dict(self) -> Dict:
        return {
            "expressions": [e.to_dict() for e in self.expressions],
            "granularity": self.granularity.value if self.granularity else None,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "has_temporal_elements": self.has_temporal_elements,
        }


@dataclass(frozen=True)
class TemporalRule:
    """One row of the resolver's rule table."""
    name: str
    label: str
    pattern: Pattern
    kind: TemporalKind


# =============================================================================
# Calendar helpers
# =============================================================================

def _midnight(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _add_months(moment: datetime, months: int) -> datetime:
    """Shift by whole months, clamping the day to the target month's length."""
    years, month_index = divmod(moment.month - 1 + months, 12)
    year = moment.year + years
    month = month_index + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def _period_start(moment: datetime, unit: str) -> datetime:
    day = _midnight(moment)
    if unit == "week":
        return day - timedelta(days=day.weekday())
    if unit == "month":
        return day.replace(day=1)
    if unit == "quarter":
        return day.replace(month=3 * ((day.month - 1) // 3) + 1, day=1)
    return day.replace(month=1, day=1)


def _shift_period(start: datetime, unit: str, count: int) -> datetime:
    if unit == "week":
        return start + timedelta(weeks=count)
    if unit == "month":
        return _add_months(start, count)
    if unit == "quarter":
        return _add_months(start, 3 * count)
    return _add_months(start, 12 * count)


def _parse_date(text: str) -> datetime:
    """Parse ISO yyyy-mm-dd or dd/mm/yyyy; raises ValueError when invalid."""
    if "-" in text:
        return datetime.strptime(text, "%Y-%m-%d")
    return datetime.strptime(text, "%d/%m/%Y")


def _format_literal(moment: datetime) -> str:
    if moment == _midnight(moment):
        return moment.strftime("%Y-%m-%d")
    return moment.strftime("%Y-%m-%d %H:%M:%S")


# =============================================================================
# Resolver
# =============================================================================

class TemporalResolver:
    """
    Resolve temporal expressions against an injectable clock.

    When several rules match the same text the longest matched span wins,
    ties going to the earlier rule in RULES. Weeks start on Monday.
    """

    RULES: Tuple[TemporalRule, ...] = (
        TemporalRule("date_range", "DateRange", re.compile(
            rf"\b(?:between|from)\s+({_DATE})\s+(?:and|to)\s+({_DATE})\b", re.IGNORECASE),
            TemporalKind.RANGE),
        TemporalRule("iso_date", "Date", re.compile(r"\b(\d{4}-\d{2}-\d{2})\b"),
                     TemporalKind.ABSOLUTE),
        TemporalRule("dmy_date", "Date", re.compile(r"\b(\d{1,2}/\d{1,2}/\d{4})\b"),
                     TemporalKind.ABSOLUTE),
        TemporalRule("day_word", "Relative", re.compile(
            r"\b(today|yesterday|tomorrow)\b", re.IGNORECASE),
            TemporalKind.RELATIVE),
        TemporalRule("last_n_units", "Relative", re.compile(
            r"\b(?:last|past|previous)\s+(\d+)\s+(hour|day|week|month|year)s?\b", re.IGNORECASE),
            TemporalKind.RANGE),
        TemporalRule("this_period", "Relative", re.compile(
            r"\b(?:this|current)\s+(week|month|quarter|year)\b", re.IGNORECASE),
            TemporalKind.RANGE),
        TemporalRule("last_period", "Relative", re.compile(
            r"\b(?:last|previous)\s+(week|month|quarter|year)\b", re.IGNORECASE),
            TemporalKind.RANGE),
        TemporalRule("next_period", "Relative", re.compile(
            r"\bnext\s+(week|month|quarter|year)\b", re.IGNORECASE),
            TemporalKind.RANGE),
        TemporalRule("quarter", "Quarter", re.compile(
            r"\bq([1-4])(?:\s+(\d{4}))?\b", re.IGNORECASE),
            TemporalKind.RANGE),
    )

    DAY_OFFSETS = {"yesterday": -1, "today": 0, "tomorrow": 1}

    def __init__(
        self,
        clock: Callable[[], datetime] = datetime.now,
        dialect: str = "tsql",
        date_column: str = "Date",
        rules: Optional[Tuple[TemporalRule, ...]] = None,
    ):
        """
        Initialize the resolver.

        Args:
            clock: Returns the current time; read on every call
            dialect: sqlglot dialect used to render predicates
            date_column: Column the predicates filter on
            rules: Replacement rule table (default: RULES)
        """
        self.clock = clock
        self.dialect = dialect
        self.date_column = date_column
        self.rules = rules if rules is not None else self.RULES

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def resolve(self, text: str) -> TemporalExpression:
        """
        Resolve the best temporal expression in `text`.

        Returns:
            The longest matching expression, or an unbounded Range with an
            always-true predicate when nothing matches
        """
        text = text or ""
        now = self.clock()
        for rule_index, match in self._candidates(text):
            expression = self._build(rule_index, match, text, now)
            if expression is not None:
                return expression
        return self.unresolved(text)

    def extract(self, query: str) -> TemporalContext:
        """
        Find every non-overlapping temporal expression in a query.

        Longer matches are taken first; the result is in text order.
        """
        query = query or ""
        now = self.clock()
        taken: List[TemporalExpression] = []
        for rule_index, match in self._candidates(query):
            if any(match.start() < e.position[1] and e.position[0] < match.end() for e in taken):
                continue
            expression = self._build(rule_index, match, query, now)
            if expression is not None:
                taken.append(expression)
        taken.sort(key=lambda e: e.position[0])
        logger.debug(f"Resolved {len(taken)} temporal expression(s) in {query!r}")
        return TemporalContext(expressions=taken)

    def unresolved(self, text: str) -> TemporalExpression:
        return TemporalExpression(
            text=text,
            kind=TemporalKind.RANGE,
            start=None,
            end=None,
            predicate=ALWAYS_TRUE_PREDICATE,
            granularity=Granularity.DAY,
        )

    def build_predicate(self, start: Optional[datetime], end: Optional[datetime]) -> str:
        """Render `start <= column < end` in the configured dialect."""
        conditions = []
        if start is not None:
            conditions.append(exp.GTE(
                this=exp.column(self.date_column),
                expression=exp.Literal.string(_format_literal(start)),
            ))
        if end is not None:
            conditions.append(exp.LT(
                this=exp.column(self.date_column),
                expression=exp.Literal.string(_format_literal(end)),
            ))
        if not conditions:
            return ALWAYS_TRUE_PREDICATE
        condition = conditions[0] if len(conditions) == 1 else exp.and_(*conditions)
        return condition.sql(dialect=self.dialect)

    # -------------------------------------------------------------------------
    # Matching
    # -------------------------------------------------------------------------

    def _candidates(self, text: str) -> List[Tuple[int, "re.Match"]]:
        matches = [
            (rule_index, match)
            for rule_index, rule in enumerate(self.rules)
            for match in rule.pattern.finditer(text)
        ]
        matches.sort(key=lambda m: (-(m[1].end() - m[1].start()), m[0], m[1].start()))
        return matches

    def _build(self, rule_index: int, match: "re.Match", text: str, now: datetime) -> Optional[TemporalExpression]:
        rule = self.rules[rule_index]
        try:
            bounds = self._bounds(rule.name, match, now)
        except (ValueError, OverflowError) as e:
            # Out-of-range dates such as "last 1000000 days" degrade like bad text
            logger.debug(f"Ignoring unparseable temporal match {match.group(0)!r}: {e}")
            return None
        if bounds is None:
            return None

        start, end, granularity, open_ended = bounds
        return TemporalExpression(
            text=text,
            kind=rule.kind,
            start=start,
            end=end,
            predicate=self.build_predicate(start, None if open_ended else end),
            granularity=granularity,
            matched_text=match.group(0),
            position=(match.start(), match.end()),
            label=rule.label,
        )

    def _bounds(self, name: str, match: "re.Match", now: datetime):
        """(start, end, granularity, open_ended) for a rule match."""
        if name == "date_range":
            first, second = sorted((_parse_date(match.group(1)), _parse_date(match.group(2))))
            return first, second + timedelta(days=1), Granularity.DAY, False

        if name in ("iso_date", "dmy_date"):
            day = _parse_date(match.group(1))
            return day, day + timedelta(days=1), Granularity.DAY, False

        if name == "day_word":
            day = _midnight(now) + timedelta(days=self.DAY_OFFSETS[match.group(1).lower()])
            return day, day + timedelta(days=1), Granularity.DAY, False

        if name == "last_n_units":
            count = int(match.group(1))
            unit = match.group(2).lower()
            if unit == "hour":
                start = now - timedelta(hours=count)
            elif unit == "day":
                start = now - timedelta(days=count)
            elif unit == "week":
                start = now - timedelta(weeks=count)
            elif unit == "month":
                start = _add_months(now, -count)
            else:
                start = _add_months(now, -12 * count)
            return start, now, Granularity(unit), True

        if name in ("this_period", "last_period", "next_period"):
            unit = match.group(1).lower()
            current = _period_start(now, unit)
            if name == "this_period":
                return current, now, Granularity(unit), True
            if name == "last_period":
                return _shift_period(current, unit, -1), current, Granularity(unit), False
            start = _shift_period(current, unit, 1)
            return start, _shift_period(start, unit, 1), Granularity(unit), False

        if name == "quarter":
            quarter = int(match.group(1))
            year = int(match.group(2)) if match.group(2) else now.year
            start = datetime(year, 3 * (quarter - 1) + 1, 1)
            return start, _add_months(start, 3), Granularity.QUARTER, False

        return None
