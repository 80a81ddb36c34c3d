"""
Identifier normalization for warehouse table and column names.

Warehouse names mix conventions freely (BetsCasino, PlayerID,
tbl_Daily_actionsGBP_transactions, top-up). Splitting them into plain
lowercase words lets names be embedded as text and compared regardless
of convention.
"""
import re
from typing import List

# "gameId" -> "game Id", "actionsGBP" -> "actions GBP"
_LOWER_TO_UPPER = re.compile(r"([a-z0-9])([A-Z])")
# "RTPValue" -> "RTP Value"
_ACRONYM_TO_WORD = re.compile(r"([A-Z]+)([A-Z][a-z])")
_SEPARATORS = re.compile(r"[\s_\-]+")


class ColumnNormalizer:
    """
    Split and compare schema identifiers.

    Usage:
        ColumnNormalizer.to_parts("BetsCasino")           # ["bets", "casino"]
        ColumnNormalizer.columns_match("PlayerID", "player_id")  # True
    """

    @staticmethod
    def to_parts(name: str) -> List[str]:
        """
        Lowercase words of an identifier.

        Examples:
            "PlayerID" -> ["player", "id"]
            "tbl_Daily_actionsGBP_transactions" -> ["tbl", "daily", "actions", "gbp", "transactions"]
        """
        if not name:
            return []
        spaced = _LOWER_TO_UPPER.sub(r"\1 \2", name)
        spaced = _ACRONYM_TO_WORD.sub(r"\1 \2", spaced)
        return [part.lower() for part in _SEPARATORS.split(spaced) if part]

    @staticmethod
    def to_words(name: str) -> str:
        """Identifier as space separated words."""
        return " ".join(ColumnNormalizer.to_parts(name))

    @staticmethod
    def columns_match(first: str, second: str) -> bool:
        """True when two names have the same words, ignoring case and separators."""
        return "".join(ColumnNormalizer.to_parts(first)) == "".join(ColumnNormalizer.to_parts(second))
