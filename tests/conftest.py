"""
Shared fixtures for the query understanding tests.

Provides:
- A compact gaming schema written to a temporary JSON config
- A fixed clock (Saturday 2024-06-15 12:00)
- A deterministic keyword-concept embedding provider, so ranking
  assertions do not depend on hash noise
- The bundled domain knowledge base and a ready pipeline
"""
import json
import os
import re
import sys
from datetime import datetime

import numpy as np
import pytest

# Add parent directory to path for imports
PARENT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PARENT_DIR not in sys.path:
    sys.path.insert(0, PARENT_DIR)

from nlu.embedding_service import EmbeddingProvider, EmbeddingService


FIXED_NOW = datetime(2024, 6, 15, 12, 0)


class ConceptEmbeddingProvider(EmbeddingProvider):
    """
    Counts concept words per text; one dimension per concept.

    Cosine similarities are easy to work out by hand, which keeps the
    ranking tests readable.
    """

    name = "concept"

    CONCEPTS = (
        ("revenue", {"ggr", "ngr", "revenue"}),
        ("player", {"player", "vip", "customer"}),
        ("game", {"game", "slot", "casino", "poker"}),
        ("bet", {"bet", "betting", "wager", "stake"}),
        ("win", {"win", "winning", "payout"}),
        ("deposit", {"deposit"}),
        ("country", {"country"}),
    )

    def __init__(self):
        self.dimension = len(self.CONCEPTS)
        self.calls = 0

    @staticmethod
    def tokenize(text):
        words = []
        for word in re.findall(r"[a-z]+", (text or "").lower()):
            if len(word) > 3 and word.endswith("s") and not word.endswith("ss"):
                word = word[:-1]
            words.append(word)
        return words

    def embed(self, text):
        self.calls += 1
        vector = np.zeros(self.dimension)
        for word in self.tokenize(text):
            for i, (_, words) in enumerate(self.CONCEPTS):
                if word in words:
                    vector[i] += 1
        return vector


@pytest.fixture
def gaming_schema():
    """A compact gaming schema in the v2.0 config layout."""
    return {
        "version": "2.0",
        "last_updated": None,
        "schemas": {
            "dbo": {
                "description": "Gaming warehouse",
                "tables": {
                    "tbl_Daily_actions": {
                        "purpose": "Daily betting and winning totals per player used for GGR",
                        "domain": "Financial Operations",
                        "importance": 0.9,
                        "keywords": ["ggr", "revenue", "vip"],
                        "aliases": ["daily actions"],
                        "columns": {
                            "Date": {"type": "DATE", "meaning": "Activity date"},
                            "PlayerID": {
                                "type": "INT",
                                "meaning": "Player identifier",
                                "synonyms": ["customer id"],
                                "keywords": ["player"],
                            },
                            "BetsCasino": {
                                "type": "MONEY",
                                "meaning": "Casino bets placed by the player",
                                "synonyms": ["casino bets"],
                                "keywords": ["ggr", "player"],
                            },
                            "WinsCasino": {
                                "type": "MONEY",
                                "meaning": "Casino winnings paid to the player",
                                "synonyms": ["casino wins"],
                                "keywords": ["ggr", "player"],
                            },
                        },
                    },
                    "tbl_Daily_actions_players": {
                        "purpose": "Player profile with country and registration details",
                        "domain": "Player Management",
                        "importance": 0.8,
                        "keywords": ["country", "deposit", "registration"],
                        "aliases": ["players"],
                        "columns": {
                            "PlayerID": {
                                "type": "INT",
                                "meaning": "Player identifier",
                                "synonyms": ["customer id"],
                                "keywords": ["player"],
                            },
                            "Segment": {
                                "type": "VARCHAR",
                                "meaning": "VIP segment",
                                "synonyms": ["vip level"],
                                "keywords": ["vip"],
                            },
                            "CountryID": {"type": "INT", "meaning": "Country identifier"},
                        },
                    },
                    "Games": {
                        "purpose": "Game catalogue with slot and poker titles",
                        "domain": "Gaming Activity",
                        "importance": 0.7,
                        "keywords": ["casino", "slots"],
                        "aliases": ["game catalogue"],
                        "columns": {
                            "Id": {"type": "INT", "meaning": "Game identifier", "keywords": ["game"]},
                            "GameName": {
                                "type": "VARCHAR",
                                "meaning": "Game title",
                                "synonyms": ["game title"],
                                "keywords": ["game"],
                            },
                            "GameCategory": {
                                "type": "VARCHAR",
                                "meaning": "Slot, table or live category",
                                "synonyms": ["game type"],
                                "keywords": ["slots"],
                            },
                        },
                    },
                    "tbl_Countries": {
                        "purpose": "Country reference data",
                        "domain": "Reference Data",
                        "importance": 0.5,
                        "keywords": ["country", "market"],
                        "columns": {
                            "Id": {"type": "INT", "meaning": "Country identifier"},
                            "CountryName": {"type": "VARCHAR", "meaning": "Country name"},
                        },
                    },
                },
            }
        },
        "synonyms": {
            "games": ["titles"],
        },
    }


@pytest.fixture
def schema_config_file(gaming_schema, tmp_path):
    """Write the gaming schema to a temporary config file."""
    config_path = tmp_path / "schema_config.json"
    with open(config_path, "w") as f:
        json.dump(gaming_schema, f)
    return str(config_path)


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def concept_provider():
    return ConceptEmbeddingProvider()


@pytest.fixture
def concept_service(concept_provider):
    return EmbeddingService(concept_provider)


@pytest.fixture
def knowledge_base():
    """The bundled gaming domain knowledge."""
    from knowledge.domain_knowledge import DomainKnowledgeBase
    return DomainKnowledgeBase.from_file()


@pytest.fixture
def metadata_store(schema_config_file):
    from config.schema_config_manager import SchemaConfigManager
    return SchemaConfigManager(schema_config_file)


@pytest.fixture
def matcher(concept_service, metadata_store):
    """A semantic matcher with the gaming schema indexed."""
    from nlu.semantic_matcher import SemanticMatcher

    matcher = SemanticMatcher(concept_service)
    matcher.build_schema_index(metadata_store.load_tables(), metadata_store.load_all_columns())
    return matcher


@pytest.fixture
def pipeline(metadata_store, knowledge_base, concept_service, fixed_clock):
    """An initialized pipeline over the gaming schema."""
    from query_pipeline import QueryPipeline

    pipeline = QueryPipeline(
        metadata_store=metadata_store,
        knowledge_base=knowledge_base,
        embedding_service=concept_service,
        max_workers=4,
        clock=fixed_clock,
    )
    pipeline.initialize()
    return pipeline
