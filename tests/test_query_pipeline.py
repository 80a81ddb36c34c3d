"""
End-to-end tests for the QueryPipeline.

Tests cover:
- The GGR for VIP players scenario
- The top slot games scenario
- Nonsense input
- Schema index lifecycle (not ready, refresh)
- Step failures and deadlines
- The global pipeline instance

Run with: pytest tests/test_query_pipeline.py -v
"""
import os
import sys
from datetime import datetime
from unittest.mock import patch

import pytest

# Add parent directory to path for imports
PARENT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PARENT_DIR not in sys.path:
    sys.path.insert(0, PARENT_DIR)


GGR_QUERY = "What was the total GGR for VIP players last month?"
TOP_GAMES_QUERY = "Show me the top 10 slot games by revenue this year"


# =============================================================================
# Scenarios
# =============================================================================

class TestGgrForVipPlayers:
    """'What was the total GGR for VIP players last month?'"""

    def test_ggr_domain_term_carries_formula(self, pipeline):
        result = pipeline.process(GGR_QUERY)

        ggr = [m for m in result.entities.domain_terms if m.label == "GGR"]
        assert len(ggr) == 1
        assert ggr[0].text == "GGR"
        assert "BetsCasino" in ggr[0].enrichment["formula"]

    def test_vip_players_subject(self, pipeline):
        result = pipeline.process(GGR_QUERY)

        subjects = result.entities.subjects
        assert [m.text for m in subjects] == ["VIP players"]
        assert subjects[0].enrichment["segment"] == "VIP"
        assert "PlayerID" in subjects[0].enrichment["related_columns"]

    def test_last_month_resolves_to_previous_full_month(self, pipeline):
        result = pipeline.process(GGR_QUERY)

        context = result.temporal_context
        assert context.has_temporal_elements
        expression = context.expressions[0]
        assert expression.matched_text == "last month"
        assert expression.start == datetime(2024, 5, 1)
        assert expression.end == datetime(2024, 6, 1)
        assert "2024-05-01" in expression.predicate
        assert "2024-06-01" in expression.predicate

    def test_primary_intent_is_aggregate(self, pipeline):
        from nlu.intent_classifier import IntentType

        result = pipeline.process(GGR_QUERY)

        assert result.intent.primary_intent == IntentType.AGGREGATE
        assert result.intent.secondary_intents == []

    def test_top_recommendation_is_daily_actions(self, pipeline):
        result = pipeline.process(GGR_QUERY)

        assert result.top_recommendation.table_name == "tbl_Daily_actions"
        assert result.top_recommendation.overall_score == pytest.approx(0.944, abs=0.01)
        assert "PlayerID" in result.top_recommendation.recommended_columns

    def test_joins_between_recommended_tables(self, pipeline):
        result = pipeline.process(GGR_QUERY)

        names = [r.table_name for r in result.recommendations]
        assert names == ["tbl_Daily_actions", "tbl_Daily_actions_players"]
        assert len(result.join_requirements) == 1
        join = result.join_requirements[0]
        assert join.left_table == "tbl_Daily_actions"
        assert join.right_table == "tbl_Daily_actions_players"
        assert join.is_required is True

    def test_business_rules_and_patterns(self, pipeline):
        result = pipeline.process(GGR_QUERY)

        assert result.business_rules.is_valid is True
        assert any("bet and win" in w for w in result.business_rules.warnings)
        assert [p.name for p in result.matched_patterns] == ["GGR Calculation"]

    def test_all_steps_complete(self, pipeline):
        result = pipeline.process(GGR_QUERY)

        assert result.errors == []
        assert result.partial is False
        assert result.steps_completed == [
            "extract_entities", "classify_intent", "resolve_temporal",
            "recommend", "resolve_joins", "validate_business_rules", "match_patterns",
        ]

    def test_overall_confidence_is_mean_of_parts(self, pipeline):
        result = pipeline.process(GGR_QUERY)

        rec_avg = sum(r.overall_score for r in result.recommendations) / len(result.recommendations)
        expected = (result.entities.overall_confidence + result.intent.confidence + rec_avg) / 3
        assert result.overall_confidence == pytest.approx(expected)
        assert 0.0 <= result.overall_confidence <= 1.0


class TestTopSlotGames:
    """'Show me the top 10 slot games by revenue this year'"""

    def test_top_n_with_limit(self, pipeline):
        from nlu.intent_classifier import IntentType

        result = pipeline.process(TOP_GAMES_QUERY)

        assert result.intent.primary_intent == IntentType.TOP_N
        assert result.intent.limit == 10

    def test_slot_games_object(self, pipeline):
        result = pipeline.process(TOP_GAMES_QUERY)

        objects = result.entities.objects
        assert [m.text for m in objects] == ["slot games"]
        assert objects[0].enrichment["game_category"] == "Slots"

    def test_this_year_runs_to_now(self, pipeline):
        result = pipeline.process(TOP_GAMES_QUERY)

        expression = result.temporal_context.expressions[0]
        assert expression.matched_text == "this year"
        assert expression.start == datetime(2024, 1, 1)
        assert expression.end == datetime(2024, 6, 15, 12, 0)

    def test_games_table_ranks_first(self, pipeline):
        result = pipeline.process(TOP_GAMES_QUERY)

        assert result.top_recommendation.table_name == "Games"
        assert result.top_recommendation.overall_score == pytest.approx(1.0)


class TestNonsenseQuery:
    """Queries with nothing recognisable."""

    def test_no_entities_and_default_intent(self, pipeline):
        from nlu.intent_classifier import IntentType

        result = pipeline.process("asdkjaslkdj")

        assert result.entities.total_count == 0
        assert result.entities.overall_confidence == 0.0
        assert result.intent.primary_intent == IntentType.SELECT
        assert result.intent.confidence == 0.5
        assert result.recommendations == []
        assert result.join_requirements == []
        assert result.errors == []

    def test_out_of_range_period_degrades(self, pipeline):
        result = pipeline.process("total GGR for the last 1000000 days")

        assert result.errors == []
        assert "Temporal" not in result.entities.failed_categories
        assert not result.temporal_context.has_temporal_elements
        assert "resolve_temporal" in result.steps_completed

    def test_empty_query(self, pipeline):
        result = pipeline.process("")

        assert result.query == ""
        assert result.entities.total_count == 0
        assert not result.temporal_context.has_temporal_elements

    def test_to_dict_is_plain_data(self, pipeline):
        import json

        result = pipeline.process(GGR_QUERY)
        data = result.to_dict()

        assert data["intent"]["primary_intent"] == "Aggregate"
        assert data["recommendations"][0]["table_name"] == "tbl_Daily_actions"
        json.dumps(data)


# =============================================================================
# Lifecycle and failures
# =============================================================================

class TestSchemaIndexLifecycle:
    """Index readiness and refresh."""

    def test_process_before_initialize_raises(self, metadata_store, knowledge_base, concept_service):
        from query_pipeline import QueryPipeline
        from nlu.semantic_matcher import SchemaIndexNotReady

        pipeline = QueryPipeline(metadata_store, knowledge_base, concept_service)

        assert pipeline.is_ready is False
        with pytest.raises(SchemaIndexNotReady):
            pipeline.process(GGR_QUERY)

    def test_refresh_picks_up_new_tables(self, pipeline, metadata_store):
        metadata_store.add_table("dbo", "tbl_Bonuses", {
            "purpose": "Bonus grants per player",
            "importance": 0.6,
            "columns": {"PlayerID": {"type": "INT", "meaning": "Player identifier"}},
        })

        index = pipeline.refresh()

        assert "tbl_Bonuses" in [t.name for t in index.tables]
        assert pipeline.matcher.index is index


class TestStepFailures:
    """Failures inside a step are recorded, not raised."""

    def test_intent_failure_falls_back_to_default(self, pipeline):
        from nlu.intent_classifier import IntentType

        with patch.object(pipeline.intent_classifier, "classify", side_effect=RuntimeError("boom")):
            result = pipeline.process(GGR_QUERY)

        assert result.intent.primary_intent == IntentType.SELECT
        assert any("classify_intent" in e for e in result.errors)
        assert "classify_intent" not in result.steps_completed
        assert result.top_recommendation.table_name == "tbl_Daily_actions"

    def test_recommendation_failure_is_recorded(self, pipeline):
        with patch.object(pipeline.recommender, "recommend", side_effect=ValueError("bad index")):
            result = pipeline.process(GGR_QUERY)

        assert result.recommendations == []
        assert "bad index" in result.errors
        assert "recommend" not in result.steps_completed

    def test_expired_deadline_marks_partial(self, pipeline):
        from nlu.concurrency import Deadline

        deadline = Deadline.after(10)
        deadline.cancel()
        result = pipeline.process(GGR_QUERY, deadline=deadline)

        assert result.partial is True
        assert result.recommendations == []


class TestGlobalPipeline:
    """The process-wide pipeline instance."""

    def test_get_query_pipeline_is_cached(self, monkeypatch, schema_config_file):
        from config.app_config import load_config
        from query_pipeline import get_query_pipeline, reset_query_pipeline

        monkeypatch.setenv("EMBEDDING_PROVIDER", "hash")
        monkeypatch.setenv("SCHEMA_CONFIG_PATH", schema_config_file)
        load_config.cache_clear()
        reset_query_pipeline()
        try:
            first = get_query_pipeline()
            assert first is get_query_pipeline()
            assert first.is_ready
            result = first.process(GGR_QUERY)
            scores = [r.overall_score for r in result.recommendations]
            assert scores == sorted(scores, reverse=True)
        finally:
            reset_query_pipeline()
            load_config.cache_clear()
