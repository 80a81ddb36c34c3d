"""
Schema metadata store.

Business metadata for every warehouse table and column lives in one JSON
document (format v2.0). The query pipeline reads it to build the schema
index, and operators extend it with new tables and shared synonyms.
"""
import json
import logging
import os
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from nlu.semantic_matcher import SchemaItem, SchemaItemKind

logger = logging.getLogger(__name__)

SCHEMA_FORMAT_VERSION = "2.0"


def _empty_document() -> Dict[str, Any]:
    return {
        "version": SCHEMA_FORMAT_VERSION,
        "last_updated": None,
        "schemas": {},
        "synonyms": {},
    }


class SchemaConfigManager:
    """
    Reads and updates the schema metadata document.

    Document layout:
    - schemas.<schema>.tables.<table>: purpose, domain, importance,
      keywords, aliases and columns
    - columns.<column>: type, meaning, synonyms, keywords, importance
    - synonyms: term -> synonyms shared across tables

    A missing file is created empty. An unreadable file is treated as
    empty until the next reload.
    """

    DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "schema_config.json")

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or self.DEFAULT_CONFIG_PATH
        self._document: Dict[str, Any] = _empty_document()
        self.reload()

    def reload(self) -> None:
        """Re-read the document from disk."""
        if not os.path.exists(self.config_path):
            logger.info(f"Schema config {self.config_path} not found, creating an empty one")
            self._document = _empty_document()
            self._persist()
            return

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                self._document = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid schema config {self.config_path}, using empty config: {e}")
            self._document = _empty_document()

    def _persist(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.config_path))
        os.makedirs(directory, exist_ok=True)
        self._document["last_updated"] = datetime.now().isoformat()
        with open(self.config_path, "w", encoding="utf-8") as f:
            json.dump(self._document, f, indent=2, default=str)

    @property
    def schemas(self) -> Dict[str, Dict]:
        return self._document.get("schemas") or {}

    @property
    def synonyms(self) -> Dict[str, List[str]]:
        return self._document.get("synonyms") or {}

    @property
    def last_updated(self) -> Optional[str]:
        return self._document.get("last_updated")

    def _table_entries(self) -> Iterator[Tuple[str, str, Dict]]:
        """(schema, table, metadata) for every configured table."""
        for schema_name, schema in self.schemas.items():
            for table_name, table in (schema.get("tables") or {}).items():
                yield schema_name, table_name, table

    def find_table(self, table_name: str) -> Optional[Tuple[str, Dict]]:
        """Configured name and metadata of a table, matched case-insensitively."""
        wanted = table_name.lower()
        for _, name, table in self._table_entries():
            if name.lower() == wanted:
                return name, table
        return None

    # -------------------------------------------------------------------------
    # Metadata store
    # -------------------------------------------------------------------------

    def load_tables(self) -> List[SchemaItem]:
        """All tables as schema items."""
        tables = []
        for schema_name, table_name, table in self._table_entries():
            synonyms = {alias.lower() for alias in table.get("aliases", [])}
            synonyms.update(self.get_synonyms_for(table_name))
            tables.append(SchemaItem(
                kind=SchemaItemKind.TABLE,
                name=table_name,
                purpose=table.get("purpose", table.get("description", "")),
                keywords=frozenset(k.lower() for k in table.get("keywords", [])),
                synonyms=frozenset(synonyms),
                importance=float(table.get("importance", 0.5)),
                domain=table.get("domain", schema_name),
            ))
        return tables

    def load_columns(self, table_id: str) -> List[SchemaItem]:
        """Columns of one table as schema items; empty for unknown tables."""
        found = self.find_table(table_id)
        if found is None:
            return []

        table_name, table = found
        columns = []
        for column_name, info in (table.get("columns") or {}).items():
            # Bare "Column": "TYPE" entries are accepted
            if not isinstance(info, dict):
                info = {"type": str(info)}
            columns.append(SchemaItem(
                kind=SchemaItemKind.COLUMN,
                name=column_name,
                table_name=table_name,
                purpose=info.get("meaning", ""),
                keywords=frozenset(k.lower() for k in info.get("keywords", [])),
                synonyms=frozenset(s.lower() for s in info.get("synonyms", [])),
                importance=float(info.get("importance", 0.5)),
                domain=table.get("domain", ""),
                data_type=info.get("type", ""),
            ))
        return columns

    def load_all_columns(self) -> List[SchemaItem]:
        """Columns of every table."""
        columns: List[SchemaItem] = []
        for _, table_name, _ in self._table_entries():
            columns.extend(self.load_columns(table_name))
        return columns

    # -------------------------------------------------------------------------
    # Updates
    # -------------------------------------------------------------------------

    def add_table(self, schema: str, table_name: str, table_config: Dict[str, Any]) -> None:
        """Add or replace a table's metadata and write the document."""
        schemas = self._document.setdefault("schemas", {})
        tables = schemas.setdefault(schema, {"description": "", "tables": {}}).setdefault("tables", {})
        tables[table_name] = table_config
        self._persist()
        logger.info(f"Added table {schema}.{table_name} to schema config")

    def add_synonym(self, term: str, synonyms: List[str]) -> None:
        """Merge synonyms into a shared term and write the document."""
        key = term.lower()
        shared = self._document.setdefault("synonyms", {})
        merged = set(shared.get(key, []))
        merged.update(s.lower() for s in synonyms)
        shared[key] = sorted(merged)
        self._persist()

    def get_synonyms_for(self, term: str) -> List[str]:
        """
        Synonyms of a term in either direction.

        A term listed as a synonym of another key gets that key and its
        sibling synonyms too.
        """
        key = term.lower()
        related = set(self.synonyms.get(key, []))
        for other, values in self.synonyms.items():
            if key in values:
                related.add(other)
                related.update(values)
        related.discard(key)
        return sorted(related)
