"""
Domain knowledge module for the gaming data warehouse.

This module provides:
- A read-only glossary of business terms, metrics and query patterns
- Join patterns between commonly combined tables
- Business rule validation
- A SQLite-backed glossary store
"""

from .domain_knowledge import (
    DomainGlossary,
    DomainKnowledgeBase,
    TermDefinition,
    JoinCondition,
    JoinRequirement,
    MetricCalculation,
    QueryPattern,
    TermColumnMapping,
    BusinessRuleValidation,
)
from .glossary_store import SqliteGlossary

__all__ = [
    "DomainGlossary",
    "DomainKnowledgeBase",
    "TermDefinition",
    "JoinCondition",
    "JoinRequirement",
    "MetricCalculation",
    "QueryPattern",
    "TermColumnMapping",
    "BusinessRuleValidation",
    "SqliteGlossary",
]
