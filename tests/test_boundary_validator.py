"""Tests for the season-stat boundary validator."""

import pytest

from src.models.profiles import ConfidenceLevel, TeamEfficiencyProfile
from src.predictions.boundary_validator import (
    BoundaryValidator,
    HistoricalPattern,
    PredictionCheck,
    historical_patterns,
    overall_confidence_reduction,
)


def _profile(level=ConfidenceLevel.HIGH, convergence=0.9, points=28.0, **values):
    return TeamEfficiencyProfile(
        team_id=1,
        season=2024,
        games_played=10,
        confidence_level=level,
        convergence_score=convergence,
        averages_produced={"points": points, "total_yards": 400.0},
        averages_allowed={"sacks": 2.0},
        **values,
    )


class TestValidateScore:
    def test_normal_score_untouched(self):
        check = BoundaryValidator().validate_score(30.4, _profile())
        assert not check.is_adjusted
        assert check.adjusted_value == 30.0

    def test_low_score_raised_to_floor(self):
        check = BoundaryValidator().validate_score(0.2, _profile(level=ConfidenceLevel.LOW))
        assert check.is_adjusted
        assert check.adjusted_value == 1.0
        assert check.confidence_reduction == pytest.approx(0.3)

    def test_extreme_circumstances_regress_gently(self):
        check = BoundaryValidator().validate_score(0.1, _profile(level=ConfidenceLevel.LOW, scoring_offense=-5.0))
        assert check.reason == "Extreme circumstances detected, applied regression to mean"
        assert check.adjusted_value == 0.0
        assert check.confidence_reduction == pytest.approx(0.5)

    def test_negative_score_floored(self):
        check = BoundaryValidator().validate_score(-5.0, _profile())
        assert check.adjusted_value == 3.0
        assert check.is_adjusted

    def test_very_high_score_regressed(self):
        check = BoundaryValidator().validate_score(400.0, _profile(points=30.0))
        assert check.is_adjusted
        assert check.adjusted_value < 400.0
        assert check.confidence_reduction == pytest.approx(0.2)


class TestValidateStatistic:
    def test_excessive_team_deviation(self):
        check = BoundaryValidator().validate_statistic(900.0, 300.0, "total_yards")
        assert check.is_adjusted
        assert check.adjusted_value == pytest.approx(897.0)
        assert "Excessive deviation" in check.reason

    def test_historical_outlier(self):
        patterns = {"total_yards": HistoricalPattern("total_yards", 200, 600, 380.0, 30.0, 500)}
        check = BoundaryValidator(patterns).validate_statistic(600.0, 450.0, "total_yards")
        assert check.is_adjusted
        assert check.reason.startswith("Implausible vs historical patterns")
        assert check.confidence_reduction == pytest.approx(0.4)

    def test_zero_team_average_skips_ratio(self):
        assert not BoundaryValidator().validate_statistic(2.0, 0.0, "turnovers").is_adjusted


class TestGamePrediction:
    def test_flags_and_reduction(self):
        validator = BoundaryValidator()
        result = validator.validate_game_prediction(
            home_score=27.0,
            away_score=-4.0,
            home_stats={"total_yards": 410.0},
            away_stats={"total_yards": 1200.0},
            home_profile=_profile(),
            away_profile=_profile(),
        )
        assert result.away_score.adjusted_value == 3.0
        assert any(f.startswith("Away team scoring") for f in result.validation_flags)
        assert any(f.startswith("away team total_yards") for f in result.validation_flags)
        assert 0 < result.overall_confidence_reduction <= 0.8

    def test_reduction_formula(self):
        checks = [PredictionCheck(1, 1, confidence_reduction=0.3)] + [PredictionCheck(1, 1)] * 3
        assert overall_confidence_reduction(checks) == pytest.approx(0.3 * 0.7 + 0.075 * 0.3)
        assert overall_confidence_reduction([]) == 0.0


class TestHistoricalPatterns:
    def test_from_league(self, league):
        patterns = historical_patterns([league])
        assert patterns["scoring"].sample_size == 2 * len(league.games)
        assert patterns["total_yards"].sample_size == len(league.box_scores)
        assert patterns["total_yards"].min_value <= patterns["total_yards"].average_value

    def test_empty(self):
        assert historical_patterns([]) == {}
