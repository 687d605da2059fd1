"""
Tests for the scoring engine.
"""

from ideaforge.core.generation.scoring import (
    complexity_scores,
    criterion_key,
    weighted_score,
    weights_from_criteria,
)


class TestWeightedScore:
    """Tests for the weighted 0-100 score."""

    def test_weighted_average(self):
        scores = {"problemSeverity": 8, "marketSize": 6}
        weights = {"problemSeverity": 2, "marketSize": 1}

        # (16 + 6) / 30 = 73.3
        assert weighted_score(scores, weights) == 73

    def test_all_tens_is_hundred(self):
        weights = {"a": 1.5, "b": 0.5, "c": 3}
        assert weighted_score({"a": 10, "b": 10, "c": 10}, weights) == 100

    def test_all_ones_is_ten(self):
        assert weighted_score({"a": 1, "b": 1}, {"a": 5, "b": 5}) == 10

    def test_rounds_half_up(self):
        assert weighted_score({"a": 1, "b": 10}, {"a": 1, "b": 1}) == 55
        assert weighted_score({"a": 3, "b": 4}, {"a": 1, "b": 3}) == 38  # 37.5 -> 38

    def test_ignores_criteria_missing_from_either_side(self):
        scores = {"a": 10, "unweighted": 1}
        weights = {"a": 1, "unscored": 5}

        assert weighted_score(scores, weights) == 100

    def test_no_shared_criteria_scores_zero(self):
        assert weighted_score({"a": 9}, {"b": 1}) == 0
        assert weighted_score({}, {}) == 0

    def test_zero_weights_are_skipped(self):
        assert weighted_score({"a": 10, "b": 1}, {"a": 1, "b": 0}) == 100

    def test_result_is_clamped(self):
        assert weighted_score({"a": 25}, {"a": 1}) == 100

    def test_independent_of_key_order(self):
        scores = {"a": 7, "b": 3, "c": 9}
        forward = {"a": 0.1, "b": 0.2, "c": 0.3}
        backward = dict(reversed(list(forward.items())))

        assert weighted_score(scores, forward) == weighted_score(scores, backward)


class TestComplexity:
    """Tests for derived execution complexity."""

    def test_derived_from_scores(self):
        scores = {"technicalFeasibility": 9, "marketSize": 6, "monetizationClarity": 7, "timeToMarket": 5}
        details = {"timeToMarket": {"reasoning": "Simple MVP in a few weeks"}}

        result = complexity_scores(scores, details)

        assert result.technical == 2
        assert result.sales == 4.5
        assert result.regulatory == 3
        assert result.total == 9.5

    def test_regulatory_from_time_to_market_reasoning(self):
        scores = {"timeToMarket": 3}
        details = {"timeToMarket": {"reasoning": "HIPAA compliance review takes months"}}

        assert complexity_scores(scores, details).regulatory == 8

    def test_supplied_regulatory_wins(self):
        scores = {"timeToMarket": 3}
        details = {"timeToMarket": {"reasoning": "Needs a licensing approval"}}

        assert complexity_scores(scores, details, regulatory=6).regulatory == 6

    def test_missing_scores_are_neutral(self):
        result = complexity_scores({})

        assert result.technical == 6
        assert result.sales == 6
        assert result.total == 15

    def test_to_dict(self):
        assert set(complexity_scores({}).to_dict()) == {"technical", "regulatory", "sales", "total"}


class TestCriteria:
    """Tests for criterion naming and weights."""

    def test_criterion_key(self):
        assert criterion_key("Problem Severity") == "problemSeverity"
        assert criterion_key("Time To Market") == "timeToMarket"
        assert criterion_key("  Unfair   Advantage ") == "unfairAdvantage"
        assert criterion_key("") == ""

    def test_weights_from_criteria(self):
        criteria = [
            {"name": "Problem Severity", "weight": 1.5},
            {"key": "custom", "name": "Ignored Name", "weight": 2},
            {"name": "No Weight"},
        ]

        assert weights_from_criteria(criteria) == {"problemSeverity": 1.5, "custom": 2.0}
