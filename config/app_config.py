"""
Centralized configuration for the query understanding pipeline.
All settings and secrets are read from environment variables (or a .env file).
"""
import os
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

from nlu.table_recommender import RecommenderConfig

load_dotenv()

_CONFIG_DIR = os.path.dirname(__file__)
_ROOT_DIR = os.path.dirname(_CONFIG_DIR)


class EmbeddingProviderKind(Enum):
    """Supported embedding providers."""
    HASH = "hash"
    OPENAI = "openai"
    HTTP = "http"


@dataclass
class EmbeddingConfig:
    """Embedding provider configuration."""
    provider: EmbeddingProviderKind = EmbeddingProviderKind.HASH
    dimension: int = 384
    model: Optional[str] = None
    api_endpoint: Optional[str] = None
    api_key: Optional[str] = None
    timeout_seconds: float = 10.0
    cache_ttl_seconds: float = 86400.0
    cache_max_entries: int = 10000


@dataclass
class PipelineConfig:
    """Query pipeline configuration."""
    max_workers: int = 8
    default_timeout_seconds: Optional[float] = 30.0
    schema_config_path: str = os.path.join(_CONFIG_DIR, "schema_config.json")
    domain_knowledge_path: str = os.path.join(_ROOT_DIR, "knowledge", "gaming_domain.yaml")
    sql_dialect: str = "tsql"
    date_column: str = "Date"


@dataclass
class AppConfig:
    """Main application configuration."""
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    recommender: RecommenderConfig = field(default_factory=RecommenderConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)


class ConfigurationError(Exception):
    """Raised when configuration is missing or invalid."""
    pass


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


@lru_cache(maxsize=1)
def load_config() -> AppConfig:
    """
    Load configuration from environment variables.

    Embedding environment variables:
    - EMBEDDING_PROVIDER: hash, openai or http (default: "hash")
    - EMBEDDING_DIMENSION: Vector dimension (default: "384")
    - EMBEDDING_MODEL: Model name for remote providers
    - EMBEDDING_API_ENDPOINT: URL of the http provider (required for http)
    - EMBEDDING_API_KEY: Bearer key for the http provider
    - OPENAI_API_KEY: OpenAI key (required for openai)
    - EMBEDDING_TIMEOUT_SECONDS: Request timeout (default: "10")
    - EMBEDDING_CACHE_TTL_SECONDS: Cache entry lifetime (default: "86400")
    - EMBEDDING_CACHE_MAX_ENTRIES: Cache size bound (default: "10000")

    Recommender environment variables:
    - RECOMMENDER_TOP_K_TABLES (default: "10")
    - RECOMMENDER_COLUMN_THRESHOLD (default: "0.3")
    - RECOMMENDER_MAX_COLUMNS (default: "5")
    - RECOMMENDER_ENTITY_WEIGHT (default: "0.2")
    - RECOMMENDER_MAX_RESULTS (default: "5")
    - RECOMMENDER_MAX_SCORE (default: "1.0")

    Pipeline environment variables:
    - PIPELINE_MAX_WORKERS (default: "8")
    - PIPELINE_TIMEOUT_SECONDS: Default per-query deadline (default: "30")
    - SCHEMA_CONFIG_PATH: Schema metadata JSON
    - DOMAIN_KNOWLEDGE_PATH: Domain knowledge YAML
    - SQL_DIALECT: Dialect for temporal predicates (default: "tsql")
    - DATE_COLUMN: Column used in temporal predicates (default: "Date")

    Raises:
        ConfigurationError: If values are invalid or required ones are missing
    """
    provider_str = os.environ.get("EMBEDDING_PROVIDER", "hash").strip().lower()
    try:
        provider = EmbeddingProviderKind(provider_str)
    except ValueError:
        raise ConfigurationError(
            f"Unknown EMBEDDING_PROVIDER {provider_str!r}. "
            f"Expected one of: {', '.join(p.value for p in EmbeddingProviderKind)}"
        )

    api_endpoint = os.environ.get("EMBEDDING_API_ENDPOINT") or None
    if provider == EmbeddingProviderKind.OPENAI:
        api_key = os.environ.get("OPENAI_API_KEY") or None
        if not api_key:
            raise ConfigurationError(
                "Missing required environment variable: OPENAI_API_KEY. "
                "Please set it in your environment or .env file."
            )
    else:
        api_key = os.environ.get("EMBEDDING_API_KEY") or None
    if provider == EmbeddingProviderKind.HTTP and not api_endpoint:
        raise ConfigurationError(
            "Missing required environment variable: EMBEDDING_API_ENDPOINT. "
            "Please set it in your environment or .env file."
        )

    dimension = _env_int("EMBEDDING_DIMENSION", 384)
    if dimension <= 0:
        raise ConfigurationError(f"EMBEDDING_DIMENSION must be positive, got {dimension}")

    defaults = PipelineConfig()

    return AppConfig(
        embedding=EmbeddingConfig(
            provider=provider,
            dimension=dimension,
            model=os.environ.get("EMBEDDING_MODEL") or None,
            api_endpoint=api_endpoint,
            api_key=api_key,
            timeout_seconds=_env_float("EMBEDDING_TIMEOUT_SECONDS", 10.0),
            cache_ttl_seconds=_env_float("EMBEDDING_CACHE_TTL_SECONDS", 86400.0),
            cache_max_entries=_env_int("EMBEDDING_CACHE_MAX_ENTRIES", 10000),
        ),
        recommender=RecommenderConfig(
            top_k_tables=_env_int("RECOMMENDER_TOP_K_TABLES", 10),
            column_threshold=_env_float("RECOMMENDER_COLUMN_THRESHOLD", 0.3),
            max_columns_per_table=_env_int("RECOMMENDER_MAX_COLUMNS", 5),
            entity_weight=_env_float("RECOMMENDER_ENTITY_WEIGHT", 0.2),
            max_recommendations=_env_int("RECOMMENDER_MAX_RESULTS", 5),
            max_overall_score=_env_float("RECOMMENDER_MAX_SCORE", 1.0),
        ),
        pipeline=PipelineConfig(
            max_workers=_env_int("PIPELINE_MAX_WORKERS", 8),
            default_timeout_seconds=_env_float("PIPELINE_TIMEOUT_SECONDS", 30.0),
            schema_config_path=os.environ.get("SCHEMA_CONFIG_PATH", defaults.schema_config_path),
            domain_knowledge_path=os.environ.get("DOMAIN_KNOWLEDGE_PATH", defaults.domain_knowledge_path),
            sql_dialect=os.environ.get("SQL_DIALECT", "tsql"),
            date_column=os.environ.get("DATE_COLUMN", "Date"),
        ),
    )


def get_embedding_config() -> EmbeddingConfig:
    """Get embedding configuration."""
    return load_config().embedding


def get_recommender_config() -> RecommenderConfig:
    """Get recommender configuration."""
    return load_config().recommender


def get_pipeline_config() -> PipelineConfig:
    """Get pipeline configuration."""
    return load_config().pipeline
