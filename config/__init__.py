"""
Configuration module for the query understanding pipeline.
"""

from .app_config import (
    load_config,
    ConfigurationError,
    EmbeddingProviderKind,
    EmbeddingConfig,
    PipelineConfig,
    AppConfig,
    get_embedding_config,
    get_recommender_config,
    get_pipeline_config,
)
from .schema_config_manager import SchemaConfigManager

__all__ = [
    # Schema metadata
    "SchemaConfigManager",
    # App config
    "load_config",
    "ConfigurationError",
    "EmbeddingProviderKind",
    "EmbeddingConfig",
    "PipelineConfig",
    "AppConfig",
    "get_embedding_config",
    "get_recommender_config",
    "get_pipeline_config",
]
