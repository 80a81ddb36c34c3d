"""
Join reasoning module for recommended tables.

This module provides:
- Identifier normalization across naming conventions
- Join requirement lookup between table pairs
"""

from .normalizer import ColumnNormalizer
from .join_resolver import JoinResolver

__all__ = [
    "ColumnNormalizer",
    "JoinResolver",
]
