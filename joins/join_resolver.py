"""
Join requirement lookup for recommended tables.

Every unordered pair of tables is checked against the domain glossary's
join patterns. Only configured pairs produce a requirement; there is no
search over multi-hop join paths.
"""
import logging
from typing import List, Optional, Sequence, Set

from knowledge.domain_knowledge import DomainGlossary, JoinRequirement

logger = logging.getLogger(__name__)


class JoinResolver:
    """
    Resolve join requirements between a set of tables.

    Usage:
        resolver = JoinResolver(DomainKnowledgeBase.from_file())
        resolver.find_requirements(["tbl_Daily_actions", "tbl_Daily_actions_players"])
    """

    def __init__(self, glossary: DomainGlossary):
        self.glossary = glossary

    def find_requirements(self, table_names: Sequence[str]) -> List[JoinRequirement]:
        """
        Look up the join for each unordered pair of tables.

        Args:
            table_names: Tables in ranking order. Each requirement is
                         oriented so its left table comes first in this list.

        Returns:
            Required joins first, then by confidence
        """
        tables = self._unique(table_names)
        requirements: List[JoinRequirement] = []

        # Check all pairs
        for i, left in enumerate(tables):
            for right in tables[i + 1:]:
                join = self.get_join(left, right)
                if join is None:
                    logger.debug(f"No join pattern between {left} and {right}")
                    continue
                requirements.append(join)

        return sorted(requirements, key=lambda j: (not j.is_required, -j.confidence))

    def get_join(self, left: str, right: str) -> Optional[JoinRequirement]:
        """Get the join between two tables oriented as (left, right)."""
        return self.glossary.lookup_join_pattern(left, right)

    @staticmethod
    def _unique(table_names: Sequence[str]) -> List[str]:
        seen: Set[str] = set()
        unique: List[str] = []
        for name in table_names:
            if name.lower() not in seen:
                seen.add(name.lower())
                unique.append(name)
        return unique
