"""Tests for the regression weight calibrator."""

import logging

import numpy as np
import pytest

from src.data.records import GameRecord, InMemorySeasonSource
from src.data.validators import InsufficientDataError
from src.models.profiles import StaticProfileProvider, TeamEfficiencyProfile
from src.models.weight_calibrator import (
    GamePredictionCheck,
    StatisticalImpactAnalyzer,
    calculate_metric_weight,
    recommended_weights,
    sample_confidence_level,
)
from src.models.weights import WeightManager

SEASON = 2024


def _profiles(league, seed=3):
    """Scoring and rushing track team strength; passing and field goals are noise.

    Turnovers and sacks are flat, so they have nothing to regress on.
    """
    rng = np.random.default_rng(seed)
    ids = sorted(league.team_ids())
    strength = np.linspace(-10.0, 10.0, len(ids))
    profiles = {}
    for tid, s in zip(ids, strength):
        profiles[tid] = TeamEfficiencyProfile(
            team_id=tid,
            season=league.season,
            games_played=22,
            scoring_offense=float(s),
            scoring_defense=float(s),
            rushing_offense=float(s) / 2,
            rushing_defense=float(s) / 2,
            passing_offense=float(rng.normal(0, 5)),
            passing_defense=float(rng.normal(0, 5)),
            field_goal=float(rng.normal(0, 1)),
        )
    return profiles


@pytest.fixture
def analyzer(league, league_source, settings):
    provider = StaticProfileProvider({league.season: _profiles(league)})
    return StatisticalImpactAnalyzer(provider, league_source, settings, WeightManager(settings))


class TestMetricWeight:
    def test_not_significant_gets_floor(self):
        assert calculate_metric_weight(0.9, 0.001, False) == pytest.approx(0.05)

    def test_significance_boosts(self):
        assert calculate_metric_weight(0.4, 0.005, True) == pytest.approx(0.4 * 0.5 * 1.3)
        assert calculate_metric_weight(0.4, 0.03, True) == pytest.approx(0.4 * 0.5 * 1.1)
        assert calculate_metric_weight(0.4, 0.08, True) == pytest.approx(0.2)

    def test_clamped(self):
        assert calculate_metric_weight(0.95, 0.0001, True) == pytest.approx(0.5)

    @pytest.mark.parametrize("n,level", [(200, 0.95), (80, 0.90), (30, 0.80), (20, 0.70), (5, 0.60)])
    def test_sample_confidence(self, n, level):
        assert sample_confidence_level(n) == level


class TestImpactAnalysis:
    def test_strength_metric_correlates(self, analyzer):
        impact = analyzer.analyze_metric_impact("scoring", SEASON)
        assert impact.sample_size == 132
        assert impact.correlation_with_point_differential > 0.5
        assert impact.correlation_with_wins > 0.3
        assert impact.confidence_level == 0.90

    def test_flat_metric_has_no_correlation(self, analyzer):
        assert analyzer.analyze_metric_impact("turnovers", SEASON).predictive_power == 0.0

    def test_unknown_metric(self, analyzer):
        with pytest.raises(ValueError, match="Unknown metric: punting"):
            analyzer.analyze_metric_impact("punting", SEASON)

    def test_empty_season(self, settings):
        analyzer = StatisticalImpactAnalyzer(StaticProfileProvider(), InMemorySeasonSource(), settings)
        with pytest.raises(InsufficientDataError, match="Insufficient data for analysis: 0 games found"):
            analyzer.analyze_metric_impact("scoring", SEASON)

    def test_games_without_profiles_skipped(self, league, league_source, settings):
        profiles = _profiles(league)
        del profiles[100]
        analyzer = StatisticalImpactAnalyzer(StaticProfileProvider({SEASON: profiles}), league_source, settings)
        assert len(analyzer.game_frame(SEASON)) == 110


class TestRegressionAnalysis:
    """Per-metric fits and the overall model."""

    def test_significance_matches_thresholds(self, analyzer, settings):
        analysis = analyzer.perform_regression_analysis(SEASON)
        for r in analysis.regression_results:
            expected = r.r_squared >= settings.r_squared_threshold and r.p_value <= settings.p_value_threshold
            assert r.is_statistically_significant == expected
            lo, hi = r.confidence_interval
            assert lo <= r.coefficient <= hi

    def test_strength_metric_significant(self, analyzer):
        analysis = analyzer.perform_regression_analysis(SEASON)
        scoring = analysis.result_for("scoring")
        assert scoring.is_statistically_significant
        assert scoring.coefficient > 0
        assert "scoring" in analysis.model_predictors
        assert analysis.overall_model_r_squared > 0.3
        assert analysis.predictive_accuracy > 0.6

    def test_flat_metrics_skipped(self, analyzer, caplog):
        with caplog.at_level(logging.WARNING):
            analysis = analyzer.perform_regression_analysis(SEASON)
        assert analysis.result_for("turnovers") is None
        assert analysis.result_for("sacks") is None
        assert "Skipping turnovers regression" in caplog.text

    def test_recommended_weights_sum_to_one(self, analyzer):
        analysis = analyzer.perform_regression_analysis(SEASON)
        assert sum(analysis.recommended_weights.values()) == pytest.approx(1.0, abs=1e-6)

    def test_minimum_sample(self, league_factory, settings):
        small = league_factory(n_teams=4)
        analyzer = StatisticalImpactAnalyzer(
            StaticProfileProvider({SEASON: _profiles(small)}),
            InMemorySeasonSource({SEASON: small}),
            settings,
        )
        with pytest.raises(InsufficientDataError, match="Insufficient data for regression analysis: 12 games"):
            analyzer.perform_regression_analysis(SEASON)

    def test_collinear_predictors_flagged(self, analyzer):
        analysis = analyzer.perform_regression_analysis(SEASON)
        check = analyzer.validate_regression_model(analysis)
        assert analysis.predictor_correlations[("scoring", "rushing_yards")] == pytest.approx(1.0)
        assert any("multicollinearity" in w and "scoring and rushing_yards" in w for w in check.warnings)

    def test_recommended_weights_without_results(self):
        weights = recommended_weights([])
        assert weights == pytest.approx({k: 0.2 for k in weights})


class TestWeightUpdates:
    def test_optimal_weights_sum_to_one(self, analyzer):
        weights = analyzer.calculate_optimal_weights(SEASON)
        assert weights.total == pytest.approx(1.0, abs=1e-6)
        assert weights.get("scoring_efficiency") > weights.get("turnover_margin")

    def test_update_from_regression_stored(self, analyzer):
        entry = analyzer.update_weights_from_regression(SEASON)
        current = analyzer.get_current_weights(SEASON)
        assert current.source == "regression"
        assert current.weights == entry.new_weights
        assert "scoring" in entry.regression_metrics["significant_metrics"]


class TestPredictionChecks:
    def test_interval_without_significant_predictors(self, analyzer):
        analysis = analyzer.perform_regression_analysis(SEASON)
        analysis.regression_results = [
            r for r in analysis.regression_results if not r.is_statistically_significant
        ]
        assert analyzer.prediction_confidence_interval(20.0, analysis) == pytest.approx((14.0, 26.0))

    def test_interval_floored_at_zero(self, analyzer):
        analysis = analyzer.perform_regression_analysis(SEASON)
        lo, hi = analyzer.prediction_confidence_interval(3.0, analysis)
        assert lo == 0.0
        assert hi > 3.0

    def test_prediction_accuracy(self):
        games = [
            GameRecord(1, SEASON, 1, 10, 20, 28.0, 14.0),
            GameRecord(2, SEASON, 1, 30, 40, 10.0, 20.0),
        ]
        predictions = [
            GamePredictionCheck(1, predicted_winner=10, confidence=0.5, expected_home=30.0, expected_away=14.0),
            GamePredictionCheck(2, predicted_winner=30, confidence=0.5, expected_home=20.0, expected_away=20.0),
            GamePredictionCheck(3, predicted_winner=50, confidence=0.9, expected_home=1.0, expected_away=1.0),
        ]
        metrics = StatisticalImpactAnalyzer.validate_prediction_accuracy(predictions, games)
        assert metrics.total_predictions == 2
        assert metrics.correct_predictions == 1
        assert metrics.accuracy == pytest.approx(0.5)
        assert metrics.mean_absolute_error == pytest.approx(3.0)

    def test_prediction_accuracy_without_matches(self):
        with pytest.raises(InsufficientDataError, match="No valid predictions"):
            StatisticalImpactAnalyzer.validate_prediction_accuracy([], [])
