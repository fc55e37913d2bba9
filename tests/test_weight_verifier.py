"""Tests for the weight calculation verifier."""

import pytest

from config.categories import FALLBACK_WEIGHTS
from src.models.weight_calibrator import EnhancedStatisticalAnalysis, ModelValidation, RegressionAnalysisResult
from src.models.weights import WeightManager, WeightSet
from src.predictions.matchup_composer import OpponentRelativeComposer
from src.validation.core import AuditLog, AuditStatus, Severity
from src.validation.weight_verifier import WeightVerifier, weights_match

SEASON = 2024


def _result(metric, r_squared, p_value):
    return RegressionAnalysisResult(
        metric=metric, coefficient=1.0, r_squared=r_squared, p_value=p_value,
        confidence_interval=(0.5, 1.5), weight=0.1,
    )


def _analysis(scoring_weight=0.3, overall_r_squared=0.55):
    return EnhancedStatisticalAnalysis(
        season=SEASON,
        regression_results=[_result("scoring", 0.7, 0.001), _result("passing_yards", 0.05, 0.5)],
        overall_model_r_squared=overall_r_squared,
        predictive_accuracy=0.7,
        recommended_weights={
            "scoring": scoring_weight, "passing_yards": 0.2, "rushing_yards": 0.2,
            "turnovers": 0.2, "special_teams": 0.1,
        },
        sample_size=120,
        model_validation=ModelValidation(9.0, 40.0, 0.0001, 0.5),
    )


class ZeroWeightComposer(OpponentRelativeComposer):
    """Composer that drops every weight."""

    @staticmethod
    def category_weight(weights, category):
        return 0.0


@pytest.fixture
def manager(settings):
    return WeightManager(settings)


class TestFallbackWeights:
    def test_untouched_season(self, manager, settings):
        report = WeightVerifier(manager, settings).validate(SEASON)

        assert report.is_valid
        assert report.errors == []
        assert [w.code for w in report.warnings] == ["WEIGHT_HISTORY_INCOMPLETE"]
        assert report.score == 98.0
        assert report.derivation.derivation_method == "fallback"
        assert report.bounds.total == pytest.approx(sum(FALLBACK_WEIGHTS.values()))
        assert report.application.correctly_applied
        assert report.fallback_working
        assert any("regression analysis" in r for r in report.recommendations)

    def test_fallback_check_leaves_audited_manager_alone(self, manager, settings):
        WeightVerifier(manager, settings).validate(SEASON)
        assert manager.get_weight_history() == []


class TestRegressionWeights:
    """Weights stored by a regression update."""

    def test_derivation_reproduced(self, manager, settings):
        analysis = _analysis()
        manager.update_weights_from_regression(SEASON, analysis)
        report = WeightVerifier(manager, settings).validate(SEASON, analysis)

        assert report.errors == []
        assert report.derivation.is_correct
        assert report.derivation.significance_considered
        assert report.derivation.expected_weights["scoring_efficiency"] == pytest.approx(0.3 * 1.3)
        assert report.history.change_count == 1
        assert report.history.reason_counts == {"regression_update": 1}
        assert report.history.audit_trail_complete

    def test_derivation_mismatch(self, manager, settings):
        manager.update_weights_from_regression(SEASON, _analysis())
        report = WeightVerifier(manager, settings).validate(SEASON, _analysis(scoring_weight=0.1))

        error = next(e for e in report.errors if e.code == "WEIGHT_DERIVATION_INVALID")
        assert error.severity == Severity.HIGH
        assert report.derivation.mismatched_categories == ["scoring_efficiency"]
        assert any("Re-run the regression update" in r for r in report.recommendations)

    def test_regression_weights_without_analysis(self, manager, settings):
        manager.update_weights_from_regression(SEASON, _analysis())
        report = WeightVerifier(manager, settings).validate(SEASON)
        assert "WEIGHT_DERIVATION_INVALID" in [e.code for e in report.errors]

    def test_weak_regression_warns(self, manager, settings):
        analysis = _analysis(overall_r_squared=0.1)
        manager.update_weights_from_regression(SEASON, analysis)
        report = WeightVerifier(manager, settings).validate(SEASON, analysis)
        assert "LOW_QUALITY_REGRESSION_WEIGHTS" in [w.code for w in report.warnings]


class TestBoundsAndApplication:
    def test_out_of_bounds_weights(self, manager, settings):
        bounds = WeightVerifier(manager, settings).validate_bounds(
            WeightSet({"scoring_efficiency": 2.5, "special_teams": -0.1})
        )
        assert not bounds.all_within_bounds
        assert set(bounds.out_of_bounds) == {"scoring_efficiency", "special_teams"}
        assert bounds.dominant == ["scoring_efficiency"]

    def test_sum_out_of_range(self, manager, settings):
        bounds = WeightVerifier(manager, settings).validate_bounds(WeightSet({"a": 0.1, "b": 0.1}))
        assert not bounds.sum_valid
        assert not bounds.all_within_bounds

    def test_dominant_manual_weight_warns(self, manager, settings):
        manager.update_weights_manually(SEASON, {"scoring_efficiency": 2.5}, "testing a heavy scoring weight")
        report = WeightVerifier(manager, settings).validate(SEASON)

        assert report.derivation.derivation_method == "manual"
        assert "DOMINANT_WEIGHT" in [w.code for w in report.warnings]
        assert report.bounds.sum_valid

    def test_application_mismatch(self, manager, settings):
        report = WeightVerifier(manager, settings, composer=ZeroWeightComposer(settings)).validate(SEASON)

        assert not report.application.correctly_applied
        assert "WEIGHT_APPLICATION_INVALID" in [e.code for e in report.errors]
        scoring = next(u for u in report.application.usage if u.category == "scoring")
        assert scoring.expected_weight == pytest.approx(FALLBACK_WEIGHTS["scoring_efficiency"])
        assert not scoring.is_correct


class TestHistory:
    def test_chained_changes(self, manager, settings):
        manager.update_weights_manually(SEASON, {"special_teams": 0.2}, "first")
        manager.update_weights_manually(SEASON, {"special_teams": 0.3}, "second")
        manager.reset_to_fallback_weights(SEASON, "third")
        history = WeightVerifier(manager, settings).validate_history(
            SEASON, manager.get_current_weights(SEASON)
        )
        assert history.audit_trail_complete
        assert history.change_count == 3
        assert history.reason_counts == {"manual_override": 2, "fallback_reset": 1}

    def test_sequence_break_detected(self, manager, settings):
        manager.update_weights_manually(SEASON, {"special_teams": 0.2}, "first")
        manager.update_weights_manually(SEASON, {"special_teams": 0.3}, "second")
        oldest = manager.get_weight_history(SEASON)[-1]
        oldest.new_weights["special_teams"] = 0.9

        report = WeightVerifier(manager, settings).validate(SEASON)

        assert not report.history.audit_trail_complete
        assert any(issue.startswith("Sequence break") for issue in report.history.issues)
        assert "WEIGHT_HISTORY_BROKEN" in [e.code for e in report.errors]


class TestRun:
    def test_run_records_result(self, manager, settings):
        log = AuditLog()
        run = WeightVerifier(manager, settings, log).run(SEASON, _analysis())

        assert run.status == AuditStatus.COMPLETED
        assert run.result.metadata == {"component": "weight_calculation", "season": SEASON, "source": "fallback"}
        assert log.latest("weight_calculation") is run.result

    def test_weights_match(self):
        assert weights_match({"a": 0.5}, {"a": 0.505})
        assert not weights_match({"a": 0.5}, {"a": 0.52})
        assert not weights_match({"a": 0.5}, {"b": 0.5})
