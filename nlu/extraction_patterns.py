"""
Default pattern tables for entity extraction.

Each category extractor is configured with an immutable tuple of labelled
regular expressions. Alternative pattern sets (another domain, another
language) are built the same way and passed to EntityExtractor.
"""
import re
from dataclasses import dataclass, field
from typing import Pattern, Tuple

_DATE = r"\d{4}-\d{2}-\d{2}|\d{1,2}[/-]\d{1,2}[/-]\d{2,4}"


@dataclass(frozen=True)
class PatternRule:
    """A labelled, compiled extraction pattern."""
    label: str
    pattern: str
    flags: int = re.IGNORECASE
    regex: Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "regex", re.compile(self.pattern, self.flags))


@dataclass(frozen=True)
class ExtractionPatterns:
    """Pattern tables for all six entity categories."""
    domain_terms: Tuple[PatternRule, ...]
    temporal: Tuple[PatternRule, ...]
    financial: Tuple[PatternRule, ...]
    subjects: Tuple[PatternRule, ...]
    objects: Tuple[PatternRule, ...]
    metrics: Tuple[PatternRule, ...]


DEFAULT_PATTERNS = ExtractionPatterns(
    domain_terms=(
        PatternRule("GGR", r"\b(ggr|gross\s+gaming\s+revenue)\b"),
        PatternRule("NGR", r"\b(ngr|net\s+gaming\s+revenue)\b"),
        PatternRule("RTP", r"\b(rtp|return\s+to\s+player)\b"),
        PatternRule("HoldPercentage", r"\b(hold\s+percentage|hold\s+%|house\s+advantage)"),
        PatternRule("HouseEdge", r"\b(house\s+edge|casino\s+advantage)\b"),
        PatternRule("Bonus", r"\b(bonus|bonuses|promotional\s+funds)\b"),
        PatternRule("Cashback", r"\b(cashback|cash\s+back|rebate)\b"),
        PatternRule("Commission", r"\b(commission|rake|fee)\b"),
    ),
    temporal=(
        PatternRule("DateRange", rf"\b(?:between|from)\s+(?:{_DATE})\s+(?:and|to)\s+(?:{_DATE})\b"),
        PatternRule("Date", rf"\b(?:{_DATE})\b"),
        PatternRule(
            "Relative",
            r"\b(?:yesterday|today|tomorrow"
            r"|(?:last|past|previous)\s+\d+\s+(?:hour|day|week|month|year)s?"
            r"|(?:last|previous|this|current|next)\s+(?:week|month|quarter|year))\b",
        ),
        PatternRule("Quarter", r"\bq[1-4](?:\s+\d{4})?\b"),
        PatternRule("Period", r"\b(?:daily|weekly|monthly|quarterly|yearly|annual)\b"),
    ),
    financial=(
        PatternRule(
            "Amount",
            r"(?:[$£€]\s?\d[\d,]*(?:\.\d{1,2})?"
            r"|\b\d[\d,]*(?:\.\d{1,2})?\s*(?:gbp|usd|eur|pounds?|dollars?|euros?)\b)",
        ),
        PatternRule("Currency", r"\b(gbp|usd|eur|pounds?|dollars?|euros?|currency)\b"),
        PatternRule("Deposit", r"\b(deposit|deposits|deposited|funding)\b"),
        PatternRule("Withdrawal", r"\b(withdrawal|withdrawals|withdraw|cashout)\b"),
        PatternRule("Bet", r"\b(bet|bets|betting|wager|wagers|stake|stakes)\b"),
        PatternRule("Win", r"\b(win|wins|winnings|payout|payouts)\b"),
        PatternRule("Bonus", r"\b(bonus|bonuses|promotion|promotional)\b"),
        PatternRule("Fee", r"\b(fee|fees|charge|charges|commission)\b"),
    ),
    subjects=(
        PatternRule("Individual", r"\b(?:player|customer)\s+id\s*:?\s*\d+\b"),
        PatternRule(
            "Segment",
            r"\b(vip|high\s*roller|whale|premium|bronze|silver|gold|platinum)\s*(player|customer|member)s?\b",
        ),
        PatternRule(
            "Type",
            r"\b(new|existing|active|inactive|dormant|churned)\s*(player|customer|member)s?\b",
        ),
        PatternRule(
            "Status",
            r"\b(registered|verified|suspended|blocked|self\s*excluded)\s*(player|customer|member)s?\b",
        ),
        PatternRule("Attribute", r"\b(player|customer|member)s?\b"),
    ),
    objects=(
        PatternRule("Category", r"\b(casino|table|card|slot|sports?|live)\s*games?\b"),
        PatternRule("Type", r"\b(slot|slots|blackjack|poker|roulette|baccarat|craps|keno|lottery)\b"),
        PatternRule("Specific", r"\bgame\s+id\s*:?\s*\d+\b"),
        PatternRule("Provider", r"\b(netent|microgaming|playtech|evolution|pragmatic)\b"),
        PatternRule("Platform", r"\b(mobile|desktop|tablet|web|app)\s*games?\b"),
    ),
    metrics=(
        PatternRule("Revenue", r"\b(revenue|income|earnings|profit|loss)\b"),
        PatternRule("Volume", r"\b(volume|turnover|activity|transactions?)\b"),
        PatternRule("Count", r"\b(?:count|number|total|sum)\s+of\b|\bhow\s+many\b"),
        PatternRule("Average", r"\b(average|avg|mean)\b"),
        PatternRule("Percentage", r"\b(percentage|percent|rate)\b|%"),
        PatternRule("Ratio", r"\b(ratio|proportion|per)\b"),
    ),
)
