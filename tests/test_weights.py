"""Tests for weight sets and the weight manager."""

import logging

import pytest

from config.categories import FALLBACK_WEIGHTS
from config.settings import Settings
from src.models.weight_calibrator import EnhancedStatisticalAnalysis, ModelValidation, RegressionAnalysisResult
from src.models.weights import WeightManager, WeightSet


def _result(metric, r_squared, p_value, weight=0.1):
    return RegressionAnalysisResult(
        metric=metric, coefficient=1.0, r_squared=r_squared, p_value=p_value,
        confidence_interval=(0.5, 1.5), weight=weight,
    )


def _analysis(results, recommended=None):
    recommended = recommended or {
        "scoring": 0.3, "passing_yards": 0.2, "rushing_yards": 0.2,
        "turnovers": 0.2, "special_teams": 0.1,
    }
    return EnhancedStatisticalAnalysis(
        season=2024,
        regression_results=results,
        overall_model_r_squared=0.55,
        predictive_accuracy=0.7,
        recommended_weights=recommended,
        sample_size=120,
        model_validation=ModelValidation(9.0, 40.0, 0.0001, 0.5),
    )


class TestWeightSet:
    def test_fallback(self):
        ws = WeightSet.fallback(2024)
        assert ws.weights == FALLBACK_WEIGHTS
        assert ws.source == "fallback"

    def test_normalized(self):
        ws = WeightSet({"a": 1.0, "b": 3.0}).normalized(2.0)
        assert ws.get("a") == pytest.approx(0.5)
        assert ws.total == pytest.approx(2.0)

    def test_normalize_zero(self):
        with pytest.raises(ValueError, match="total weight sum is zero"):
            WeightSet({"a": 0.0}).normalized()


class TestValidateWeights:
    """Rules every candidate weight mapping goes through."""

    def test_negative_rejected(self):
        result = WeightManager(Settings()).validate_weights({"a": -0.1, "b": 1.0})
        assert not result.is_valid
        assert "Negative weight not allowed: a = -0.1" in result.errors

    def test_nan_rejected(self):
        result = WeightManager(Settings()).validate_weights({"a": float("nan")})
        assert not result.is_valid

    @pytest.mark.parametrize("value", [float("inf"), float("-inf")])
    def test_infinite_rejected(self, value):
        result = WeightManager(Settings()).validate_weights({"a": value, "b": 0.5})
        assert not result.is_valid
        assert result.errors == [f"Invalid a: must be a finite number, got {value}"]

    def test_zero_sum_rejected(self):
        result = WeightManager(Settings()).validate_weights({"a": 0.0, "b": 0.0})
        assert result.errors == ["Total weight sum cannot be zero"]

    def test_high_weight_warns(self, caplog):
        with caplog.at_level(logging.WARNING):
            result = WeightManager(Settings()).validate_weights({"a": 2.5})
        assert result.is_valid
        assert "Unusually high weight: a = 2.5" in result.warnings
        assert "Unusually high weight" in caplog.text

    def test_sum_out_of_range_rescaled(self):
        result = WeightManager(Settings()).validate_weights({"a": 0.1, "b": 0.1})
        assert result.is_valid
        assert sum(result.normalized.values()) == pytest.approx(1.5)
        assert result.normalized["a"] == pytest.approx(0.75)

    def test_sum_in_range_untouched(self):
        assert WeightManager(Settings()).validate_weights(dict(FALLBACK_WEIGHTS)).normalized is None


class TestWeightManager:
    def test_defaults_to_fallback(self):
        assert WeightManager().get_current_weights(2030).source == "fallback"

    def test_manual_update_merges_and_logs(self):
        manager = WeightManager(Settings())
        entry = manager.update_weights_manually(2024, {"special_teams": 0.4}, "kickers matter", "analyst")

        current = manager.get_current_weights(2024)
        assert current.get("special_teams") == pytest.approx(0.4)
        assert current.get("passing_offense") == pytest.approx(0.25)
        assert current.source == "manual"
        assert entry.reason == "manual_override: kickers matter"
        assert entry.previous_weights["special_teams"] == pytest.approx(0.15)
        assert entry.changed_by == "analyst"

    def test_invalid_manual_update_leaves_weights(self):
        manager = WeightManager(Settings())
        with pytest.raises(ValueError, match="Invalid weights: Negative weight"):
            manager.update_weights_manually(2024, {"special_teams": -1.0}, "bad")
        assert manager.get_current_weights(2024).source == "fallback"
        assert manager.get_weight_history() == []

    def test_infinite_manual_update_leaves_weights(self):
        manager = WeightManager(Settings())
        with pytest.raises(ValueError, match="must be a finite number"):
            manager.update_weights_manually(2024, {"scoring_efficiency": float("inf")}, "bad")
        assert manager.get_current_weights(2024).weights == FALLBACK_WEIGHTS
        assert manager.get_weight_history() == []

    def test_history_newest_first(self):
        manager = WeightManager(Settings())
        manager.update_weights_manually(2024, {"special_teams": 0.2}, "first")
        manager.update_weights_manually(2023, {"special_teams": 0.3}, "other season")
        manager.reset_to_fallback_weights(2024, "second")

        history = manager.get_weight_history(2024)
        assert [e.reason for e in history] == ["fallback_reset: second", "manual_override: first"]
        assert len(manager.get_weight_history(limit=1)) == 1
        assert manager.get_current_weights(2024).weights == FALLBACK_WEIGHTS


class TestRegressionWeights:
    """Mapping a regression analysis onto weight categories."""

    def test_strong_metric_boosted_weak_metric_halved(self):
        analysis = _analysis([
            _result("scoring", 0.7, 0.001),
            _result("passing_yards", 0.05, 0.6),
            _result("rushing_yards", 0.3, 0.01),
        ])
        weights = WeightManager(Settings()).weights_from_regression(analysis)
        assert weights["scoring_efficiency"] == pytest.approx(0.3 * 1.3)
        assert weights["passing_offense"] == pytest.approx(0.2 * 0.5)
        assert weights["passing_defense"] == pytest.approx(0.2 * 0.8 * 0.5)
        assert weights["rushing_offense"] == pytest.approx(0.2)
        assert weights["home_field_advantage"] == pytest.approx(0.10)

    def test_update_records_metrics(self):
        manager = WeightManager(Settings())
        entry = manager.update_weights_from_regression(2024, _analysis([_result("scoring", 0.7, 0.001)]))
        assert manager.get_current_weights(2024).source == "regression"
        assert entry.regression_metrics["significant_metrics"] == ["scoring"]
        assert entry.reason.startswith("regression_update: R²=0.550, n=120")
