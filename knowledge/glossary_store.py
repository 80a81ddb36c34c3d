"""
Persistent domain glossary backed by SQLite.

Stores:
- Glossary terms (definition, related tables/columns, formula)
- Term synonyms for lookup
- Join patterns between tables

Implements the same DomainGlossary interface as the YAML knowledge base so
either can be injected into the entity extractor and join resolver.
"""
import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .domain_knowledge import (
    DomainGlossary,
    DomainKnowledgeBase,
    JoinCondition,
    JoinRequirement,
    TermDefinition,
    _term_candidates,
)

logger = logging.getLogger(__name__)


class SqliteGlossary(DomainGlossary):
    """
    Glossary store for business terms and join patterns.

    Uses SQLite for storage with JSON serialization for list fields.
    A new connection is opened per call so one instance can be shared
    across threads.
    """

    def __init__(self, storage_path: Optional[str] = None):
        """
        Initialize the glossary store.

        Args:
            storage_path: Path to the glossary database. Defaults to
                         ~/.nlq-pipeline/glossary.db
        """
        if storage_path is None:
            storage_dir = Path.home() / ".nlq-pipeline"
            storage_dir.mkdir(parents=True, exist_ok=True)
            storage_path = str(storage_dir / "glossary.db")

        self.storage_path = storage_path
        self._init_db()

    def _init_db(self):
        """Initialize the SQLite database schema."""
        conn = sqlite3.connect(self.storage_path)
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS glossary_terms (
                term_key TEXT PRIMARY KEY,
                term_json TEXT NOT NULL,
                last_updated TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS term_synonyms (
                synonym TEXT PRIMARY KEY,
                term_key TEXT NOT NULL,
                FOREIGN KEY (term_key) REFERENCES glossary_terms(term_key)
            )
        """)

        # Pairs are stored with left_table <= right_table (lowercased)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS join_patterns (
                pair_left TEXT NOT NULL,
                pair_right TEXT NOT NULL,
                left_table TEXT NOT NULL,
                right_table TEXT NOT NULL,
                join_type TEXT,
                conditions_json TEXT,
                business_reason TEXT,
                confidence REAL,
                is_required INTEGER DEFAULT 0,
                last_updated TEXT,
                UNIQUE(pair_left, pair_right)
            )
        """)

        conn.commit()
        conn.close()

    # -------------------------------------------------------------------------
    # Terms
    # -------------------------------------------------------------------------

    def save_term(self, definition: TermDefinition) -> None:
        """Save or replace a glossary term and its synonyms."""
        conn = sqlite3.connect(self.storage_path)
        cursor = conn.cursor()

        cursor.execute("""
            INSERT OR REPLACE INTO glossary_terms (term_key, term_json, last_updated)
            VALUES (?, ?, ?)
        """, (definition.key, json.dumps(definition.to_dict()), datetime.now().isoformat()))

        cursor.execute("DELETE FROM term_synonyms WHERE term_key = ?", (definition.key,))
        for synonym in definition.synonyms:
            cursor.execute("""
                INSERT OR IGNORE INTO term_synonyms (synonym, term_key)
                VALUES (?, ?)
            """, (synonym.lower(), definition.key))

        conn.commit()
        conn.close()

    def lookup_term(self, text: str) -> Optional[TermDefinition]:
        conn = sqlite3.connect(self.storage_path)
        cursor = conn.cursor()

        row = None
        for candidate in _term_candidates(text):
            cursor.execute(
                "SELECT term_json FROM glossary_terms WHERE term_key = ?",
                (candidate,)
            )
            row = cursor.fetchone()
            if row:
                break
            cursor.execute("""
                SELECT t.term_json FROM term_synonyms s
                JOIN glossary_terms t ON t.term_key = s.term_key
                WHERE s.synonym = ?
            """, (candidate,))
            row = cursor.fetchone()
            if row:
                break
        conn.close()

        if row:
            return self._term_from_json(row[0])
        return None

    def get_all_terms(self) -> List[TermDefinition]:
        """Get every stored glossary term."""
        conn = sqlite3.connect(self.storage_path)
        cursor = conn.cursor()

        cursor.execute("SELECT term_json FROM glossary_terms ORDER BY term_key")
        rows = cursor.fetchall()
        conn.close()

        return [self._term_from_json(row[0]) for row in rows]

    @staticmethod
    def _term_from_json(raw: str) -> TermDefinition:
        data = json.loads(raw)
        for key in ("synonyms", "related_tables", "related_columns"):
            data[key] = tuple(data.get(key, []))
        return TermDefinition(**data)

    # -------------------------------------------------------------------------
    # Join patterns
    # -------------------------------------------------------------------------

    def save_join_pattern(self, join: JoinRequirement) -> None:
        """Save or replace the join pattern for a table pair."""
        pair = sorted((join.left_table.lower(), join.right_table.lower()))
        conditions = [[c.left_column, c.right_column] for c in join.conditions]

        conn = sqlite3.connect(self.storage_path)
        cursor = conn.cursor()

        cursor.execute("""
            INSERT OR REPLACE INTO join_patterns
            (pair_left, pair_right, left_table, right_table, join_type,
             conditions_json, business_reason, confidence, is_required, last_updated)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            pair[0], pair[1],
            join.left_table, join.right_table,
            join.join_type, json.dumps(conditions),
            join.business_reason, join.confidence,
            int(join.is_required), datetime.now().isoformat()
        ))

        conn.commit()
        conn.close()

    def lookup_join_pattern(self, table_a: str, table_b: str) -> Optional[JoinRequirement]:
        pair = sorted((table_a.lower(), table_b.lower()))

        conn = sqlite3.connect(self.storage_path)
        cursor = conn.cursor()

        cursor.execute("""
            SELECT left_table, right_table, join_type, conditions_json,
                   business_reason, confidence, is_required
            FROM join_patterns
            WHERE pair_left = ? AND pair_right = ?
        """, (pair[0], pair[1]))
        row = cursor.fetchone()
        conn.close()

        if not row:
            return None

        join = JoinRequirement(
            left_table=row[0],
            right_table=row[1],
            join_type=row[2] or "INNER",
            conditions=tuple(JoinCondition(left, right) for left, right in json.loads(row[3] or "[]")),
            business_reason=row[4] or "",
            confidence=row[5] if row[5] is not None else 1.0,
            is_required=bool(row[6]),
        )
        if join.left_table.lower() == table_a.lower():
            return join
        return join.reversed()

    # -------------------------------------------------------------------------
    # Import
    # -------------------------------------------------------------------------

    def import_from(self, knowledge_base: DomainKnowledgeBase) -> int:
        """
        Copy every term and join pattern from a knowledge base.

        Returns:
            Number of records written
        """
        count = 0
        for definition in knowledge_base.terms.values():
            self.save_term(definition)
            count += 1
        for join in knowledge_base.join_patterns:
            self.save_join_pattern(join)
            count += 1
        logger.info(f"Imported {count} glossary records into {self.storage_path}")
        return count
