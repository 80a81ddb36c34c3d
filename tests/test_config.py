"""
Tests for environment configuration and the schema metadata store.

Run with: pytest tests/test_config.py -v
"""
import json
import logging
import os
import sys

import pytest

# Add parent directory to path for imports
PARENT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PARENT_DIR not in sys.path:
    sys.path.insert(0, PARENT_DIR)


ENV_VARS = (
    "EMBEDDING_PROVIDER", "EMBEDDING_DIMENSION", "EMBEDDING_MODEL",
    "EMBEDDING_API_ENDPOINT", "EMBEDDING_API_KEY", "OPENAI_API_KEY",
    "EMBEDDING_TIMEOUT_SECONDS", "EMBEDDING_CACHE_TTL_SECONDS",
    "EMBEDDING_CACHE_MAX_ENTRIES", "RECOMMENDER_TOP_K_TABLES",
    "RECOMMENDER_COLUMN_THRESHOLD", "RECOMMENDER_MAX_COLUMNS",
    "RECOMMENDER_ENTITY_WEIGHT", "RECOMMENDER_MAX_RESULTS", "RECOMMENDER_MAX_SCORE",
    "PIPELINE_MAX_WORKERS", "PIPELINE_TIMEOUT_SECONDS", "SCHEMA_CONFIG_PATH",
    "DOMAIN_KNOWLEDGE_PATH", "SQL_DIALECT", "DATE_COLUMN",
)


@pytest.fixture
def clean_env(monkeypatch):
    """Unset every pipeline variable and clear the cached config."""
    from config.app_config import load_config

    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    load_config.cache_clear()
    yield monkeypatch
    load_config.cache_clear()


class TestLoadConfig:
    """Environment driven settings."""

    def test_defaults(self, clean_env):
        from config.app_config import EmbeddingProviderKind, load_config

        config = load_config()

        assert config.embedding.provider == EmbeddingProviderKind.HASH
        assert config.embedding.dimension == 384
        assert config.recommender.top_k_tables == 10
        assert config.recommender.entity_weight == 0.2
        assert config.pipeline.max_workers == 8
        assert config.pipeline.default_timeout_seconds == 30.0
        assert config.pipeline.sql_dialect == "tsql"
        assert os.path.exists(config.pipeline.schema_config_path)
        assert os.path.exists(config.pipeline.domain_knowledge_path)

    def test_overrides(self, clean_env):
        from config.app_config import EmbeddingProviderKind, load_config

        clean_env.setenv("EMBEDDING_PROVIDER", "HTTP")
        clean_env.setenv("EMBEDDING_API_ENDPOINT", "https://e.example.com/v1/embeddings")
        clean_env.setenv("EMBEDDING_API_KEY", "secret")
        clean_env.setenv("RECOMMENDER_MAX_RESULTS", "3")
        clean_env.setenv("PIPELINE_TIMEOUT_SECONDS", "2.5")
        clean_env.setenv("DATE_COLUMN", "activity_date")

        config = load_config()

        assert config.embedding.provider == EmbeddingProviderKind.HTTP
        assert config.embedding.api_key == "secret"
        assert config.recommender.max_recommendations == 3
        assert config.pipeline.default_timeout_seconds == 2.5
        assert config.pipeline.date_column == "activity_date"

    def test_config_is_cached(self, clean_env):
        from config.app_config import get_pipeline_config, load_config

        assert load_config() is load_config()
        assert get_pipeline_config() is load_config().pipeline

    def test_unknown_provider(self, clean_env):
        from config.app_config import ConfigurationError, load_config

        clean_env.setenv("EMBEDDING_PROVIDER", "word2vec")

        with pytest.raises(ConfigurationError, match="word2vec"):
            load_config()

    def test_openai_requires_key(self, clean_env):
        from config.app_config import ConfigurationError, load_config

        clean_env.setenv("EMBEDDING_PROVIDER", "openai")

        with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
            load_config()

    def test_http_requires_endpoint(self, clean_env):
        from config.app_config import ConfigurationError, load_config

        clean_env.setenv("EMBEDDING_PROVIDER", "http")

        with pytest.raises(ConfigurationError, match="EMBEDDING_API_ENDPOINT"):
            load_config()

    def test_invalid_numbers(self, clean_env):
        from config.app_config import ConfigurationError, load_config

        clean_env.setenv("PIPELINE_MAX_WORKERS", "eight")
        with pytest.raises(ConfigurationError, match="PIPELINE_MAX_WORKERS"):
            load_config()

        clean_env.setenv("PIPELINE_MAX_WORKERS", "8")
        clean_env.setenv("EMBEDDING_DIMENSION", "0")
        with pytest.raises(ConfigurationError, match="EMBEDDING_DIMENSION"):
            load_config()


class TestSchemaConfigManager:
    """JSON schema metadata store."""

    def test_load_tables(self, schema_config_file):
        from config.schema_config_manager import SchemaConfigManager
        from nlu.semantic_matcher import SchemaItemKind

        tables = SchemaConfigManager(schema_config_file).load_tables()
        games = [t for t in tables if t.name == "Games"][0]

        assert [t.name for t in tables] == [
            "tbl_Daily_actions", "tbl_Daily_actions_players", "Games", "tbl_Countries",
        ]
        assert games.kind == SchemaItemKind.TABLE
        assert games.importance == 0.7
        assert games.keywords == frozenset({"casino", "slots"})
        assert games.synonyms == frozenset({"game catalogue", "titles"})

    def test_load_columns(self, schema_config_file):
        from config.schema_config_manager import SchemaConfigManager

        columns = SchemaConfigManager(schema_config_file).load_columns("TBL_DAILY_ACTIONS")

        assert [c.name for c in columns] == ["Date", "PlayerID", "BetsCasino", "WinsCasino"]
        assert columns[1].table_name == "tbl_Daily_actions"
        assert columns[1].synonyms == frozenset({"customer id"})
        assert columns[2].data_type == "MONEY"

    def test_unknown_table(self, schema_config_file):
        from config.schema_config_manager import SchemaConfigManager

        manager = SchemaConfigManager(schema_config_file)

        assert manager.load_columns("tbl_Unknown") == []
        assert manager.find_table("tbl_Unknown") is None
        assert manager.find_table("games")[0] == "Games"

    def test_synonyms_are_persisted(self, schema_config_file):
        from config.schema_config_manager import SchemaConfigManager

        SchemaConfigManager(schema_config_file).add_synonym("GGR", ["Gross Win", "gross win"])
        manager = SchemaConfigManager(schema_config_file)

        assert manager.get_synonyms_for("ggr") == ["gross win"]
        assert manager.get_synonyms_for("gross win") == ["ggr"]
        assert manager.last_updated is not None

    def test_invalid_json_falls_back_to_empty(self, tmp_path, caplog):
        from config.schema_config_manager import SchemaConfigManager

        path = tmp_path / "broken.json"
        path.write_text("{not json")

        with caplog.at_level(logging.WARNING):
            manager = SchemaConfigManager(str(path))

        assert manager.load_tables() == []
        assert "Invalid schema config" in caplog.text

    def test_missing_file_created(self, tmp_path):
        from config.schema_config_manager import SchemaConfigManager

        path = tmp_path / "nested" / "schema.json"
        SchemaConfigManager(str(path))

        with open(path) as f:
            data = json.load(f)
        assert data["version"] == "2.0"
        assert data["schemas"] == {}
