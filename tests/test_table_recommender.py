"""
Tests for table and column recommendations.

Run with: pytest tests/test_table_recommender.py -v
"""
import os
import sys

import pytest

# Add parent directory to path for imports
PARENT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PARENT_DIR not in sys.path:
    sys.path.insert(0, PARENT_DIR)


GGR_QUERY = "What was the total GGR for VIP players last month?"


@pytest.fixture
def entities(knowledge_base, fixed_clock):
    from nlu.entity_extractor import EntityExtractor
    from nlu.temporal_resolver import TemporalResolver

    extractor = EntityExtractor(glossary=knowledge_base, resolver=TemporalResolver(clock=fixed_clock))
    return extractor.extract(GGR_QUERY)


@pytest.fixture
def recommender(matcher, knowledge_base):
    from joins.join_resolver import JoinResolver
    from nlu.table_recommender import SchemaRelevanceRecommender

    return SchemaRelevanceRecommender(matcher, JoinResolver(knowledge_base))


class TestRecommend:
    """Ranking, column filtering and entity pairing."""

    def test_not_ready_raises_immediately(self, concept_service):
        from nlu.semantic_matcher import SchemaIndexNotReady, SemanticMatcher
        from nlu.table_recommender import SchemaRelevanceRecommender

        recommender = SchemaRelevanceRecommender(SemanticMatcher(concept_service))

        with pytest.raises(SchemaIndexNotReady):
            recommender.recommend(GGR_QUERY)

    def test_tables_without_columns_are_dropped(self, recommender, entities):
        recommendations = list(recommender.recommend(GGR_QUERY, entities))

        assert [r.table_name for r in recommendations] == [
            "tbl_Daily_actions", "tbl_Daily_actions_players",
        ]
        for recommendation in recommendations:
            assert recommendation.recommended_columns

    def test_entity_boost(self, recommender, entities):
        top = next(recommender.recommend(GGR_QUERY, entities))

        column_avg = (2 / 5 ** 0.5 + 5 / 115 ** 0.5) / 2
        assert top.table_score == pytest.approx(7 / 75 ** 0.5)
        assert top.overall_score == pytest.approx(7 / 75 ** 0.5 + 0.2 * column_avg)

    def test_exact_entity_matches(self, recommender, entities):
        top = next(recommender.recommend(GGR_QUERY, entities))

        pairs = {(m.entity_text, m.column_name, m.match_type) for m in top.entity_matches}
        assert pairs == {("GGR", "BetsCasino", "exact"), ("VIP players", "PlayerID", "exact")}
        assert "VIP players -> PlayerID (exact)" in top.reasoning
        assert top.reasoning.startswith("Table matched with similarity 0.808")

    def test_without_entities(self, recommender):
        recommendations = list(recommender.recommend(GGR_QUERY))

        assert recommendations[0].overall_score == pytest.approx(7 / 75 ** 0.5)
        assert recommendations[0].entity_matches == []

    def test_semantic_entity_match(self, recommender):
        from nlu.entity_extractor import EntityCategory, EntityExtractionResult, EntityMention

        entities = EntityExtractionResult(
            query=GGR_QUERY,
            financial=[EntityMention("casino bets", EntityCategory.FINANCIAL, 0, 11, 0.8, label="Bet")],
        )
        top = next(recommender.recommend(GGR_QUERY, entities))

        assert [(m.column_name, m.match_type) for m in top.entity_matches] == [("BetsCasino", "semantic")]

    def test_scores_sorted_and_clamped(self, matcher, entities):
        from nlu.table_recommender import RecommenderConfig, SchemaRelevanceRecommender

        recommender = SchemaRelevanceRecommender(matcher, config=RecommenderConfig(entity_weight=5.0))
        recommendations = list(recommender.recommend(GGR_QUERY, entities))
        scores = [r.overall_score for r in recommendations]

        assert scores == sorted(scores, reverse=True)
        assert max(scores) == 1.0

    def test_result_and_column_limits(self, matcher):
        from nlu.table_recommender import RecommenderConfig, SchemaRelevanceRecommender

        config = RecommenderConfig(max_recommendations=1, max_columns_per_table=2)
        recommendations = list(SchemaRelevanceRecommender(matcher, config=config).recommend(GGR_QUERY))

        assert len(recommendations) == 1
        assert recommendations[0].recommended_columns == ["PlayerID", "BetsCasino"]

    def test_expired_deadline_stops_scoring(self, recommender):
        from nlu.concurrency import Deadline

        deadline = Deadline()
        deadline.cancel()

        assert list(recommender.recommend(GGR_QUERY, deadline=deadline)) == []

    def test_nonsense_query(self, recommender):
        assert list(recommender.recommend("asdkjaslkdj")) == []

    def test_to_dict(self, recommender, entities):
        data = next(recommender.recommend(GGR_QUERY, entities)).to_dict()

        assert data["table_name"] == "tbl_Daily_actions"
        assert {m["match_type"] for m in data["entity_matches"]} == {"exact"}


class TestJoinRequirements:
    """Joins between recommended tables."""

    def test_required_join_found(self, recommender):
        joins = recommender.find_join_requirements(["tbl_Daily_actions", "tbl_Daily_actions_players"])

        assert len(joins) == 1
        assert joins[0].join_type == "INNER"
        assert [(c.left_column, c.right_column) for c in joins[0].conditions] == [
            ("PlayerID", "PlayerID"), ("Date", "Date"),
        ]

    def test_no_resolver(self, matcher):
        from nlu.table_recommender import SchemaRelevanceRecommender

        assert SchemaRelevanceRecommender(matcher).find_join_requirements(["Games", "tbl_Daily_actions_games"]) == []
