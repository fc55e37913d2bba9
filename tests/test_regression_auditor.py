"""Tests for the regression analysis auditor."""

import numpy as np
import pytest

from src.data.records import InMemorySeasonSource
from src.models.profiles import StaticProfileProvider, TeamEfficiencyProfile
from src.models.weight_calibrator import (
    EnhancedStatisticalAnalysis,
    ModelValidation,
    RegressionAnalysisResult,
    StatisticalImpactAnalyzer,
)
from src.validation.core import AuditLog, AuditStatus, Severity
from src.validation.regression_auditor import RegressionAuditor, estimate_vif, overfitting_risk


def _strength_profiles(league):
    ids = sorted(league.team_ids())
    profiles = {}
    for tid, s in zip(ids, np.linspace(-10.0, 10.0, len(ids))):
        profiles[tid] = TeamEfficiencyProfile(
            team_id=tid, season=league.season, games_played=22,
            scoring_offense=float(s), scoring_defense=float(s),
            rushing_offense=float(s) / 2, rushing_defense=float(s) / 2,
        )
    return profiles


def _result(metric="scoring", coefficient=1.0, r_squared=0.5, p_value=0.001, ci=(0.8, 1.2), **kwargs):
    return RegressionAnalysisResult(
        metric=metric, coefficient=coefficient, r_squared=r_squared, p_value=p_value,
        confidence_interval=ci, weight=0.25, std_error=0.1, sample_size=120, **kwargs,
    )


def _analysis(results):
    return EnhancedStatisticalAnalysis(
        season=2024,
        regression_results=results,
        overall_model_r_squared=0.5,
        predictive_accuracy=0.75,
        recommended_weights={},
        sample_size=120,
        model_validation=ModelValidation(10.0, 50.0, 0.0001, 0.49),
        model_predictors=[r.metric for r in results if r.is_statistically_significant],
    )


class FixedAnalyzer:
    """Stands in for the calibrator with a prepared analysis."""

    def __init__(self, analysis):
        self.analysis = analysis

    def perform_regression_analysis(self, season):
        return self.analysis


class TestConsistencyChecks:
    def test_clean_analysis(self, settings):
        report = RegressionAuditor(FixedAnalyzer(_analysis([_result()])), settings).validate(2024)
        assert report.errors == []
        assert report.statistical_significance.significant_predictors == ["scoring"]

    def test_flag_mismatch(self, settings):
        """A result judged against a stricter threshold disagrees with the audit's thresholds."""
        stale = _result(r_squared=0.3, p_value=0.01, r_squared_threshold=0.5)
        report = RegressionAuditor(FixedAnalyzer(_analysis([stale])), settings).validate(2024)
        codes = [e.code for e in report.errors]
        assert "SIGNIFICANCE_FLAG_MISMATCH" in codes
        assert not report.is_valid

    def test_coefficient_outside_interval(self, settings):
        bad = _result(coefficient=2.0, ci=(0.5, 1.5))
        report = RegressionAuditor(FixedAnalyzer(_analysis([bad])), settings).validate(2024)
        error = next(e for e in report.errors if e.code == "COEFFICIENT_OUTSIDE_INTERVAL")
        assert error.severity == Severity.HIGH

    def test_interval_contradicts_p_value(self, settings):
        bad = _result(coefficient=0.2, ci=(-0.1, 0.5), p_value=0.01)
        report = RegressionAuditor(FixedAnalyzer(_analysis([bad])), settings).validate(2024)
        assert "INTERVAL_P_VALUE_INCONSISTENT" in [e.code for e in report.errors]

    def test_degenerate_p_value_warns(self, settings):
        report = RegressionAuditor(FixedAnalyzer(_analysis([_result(p_value=0.0)])), settings).validate(2024)
        assert "SUSPICIOUS_P_VALUE" in [w.code for w in report.warnings]
        assert report.errors == []

    def test_degrees_of_freedom_count_model_predictors(self, settings):
        """Only metrics inside the multiple fit use up degrees of freedom."""
        results = [
            _result(),
            _result(metric="passing_yards", r_squared=0.05, p_value=0.4, ci=(-0.5, 2.5)),
            _result(metric="sacks", r_squared=0.01, p_value=0.8, ci=(-1.0, 3.0)),
        ]
        report = RegressionAuditor(FixedAnalyzer(_analysis(results)), settings).validate(2024)
        assert report.model_fit.degrees_of_freedom == 120 - 1 - 1


class TestAuditOnLeague:
    """Audit of a real regression on the synthetic league."""

    def test_full_audit(self, league, league_source, settings):
        analyzer = StatisticalImpactAnalyzer(
            StaticProfileProvider({league.season: _strength_profiles(league)}), league_source, settings
        )
        log = AuditLog()
        run = RegressionAuditor(analyzer, settings, log).run(league.season)
        report = run.result

        assert run.status == AuditStatus.COMPLETED
        assert report.model_fit.meets_thresholds
        assert "scoring" in report.statistical_significance.significant_predictors
        assert not [e for e in report.errors if e.code == "SIGNIFICANCE_FLAG_MISMATCH"]
        assert "CORRELATED_PREDICTORS" in [w.code for w in report.warnings]
        assert report.assumptions.sample_size_adequacy.adequate
        assert 0 <= report.score <= 100
        assert log.latest("regression_analysis") is report

    def test_analysis_failure_is_critical(self, league_factory, settings):
        small = league_factory(n_teams=4)
        analyzer = StatisticalImpactAnalyzer(
            StaticProfileProvider({small.season: _strength_profiles(small)}),
            InMemorySeasonSource({small.season: small}),
            settings,
        )
        log = AuditLog()
        run = RegressionAuditor(analyzer, settings, log).run(small.season)

        assert run.status == AuditStatus.FAILED
        report = run.result
        assert not report.is_valid
        assert report.errors[0].code == "REGRESSION_VALIDATION_FAILED"
        assert "Insufficient data for regression analysis" in report.errors[0].message
        assert report.score == 50.0
        assert log.latest("regression_analysis") is report


class TestHelpers:
    def test_vif_estimate(self):
        assert estimate_vif(_result(r_squared=0.5)) == pytest.approx(2.0)
        assert estimate_vif(_result(r_squared=0.999)) == pytest.approx(50.0)
        # Unstable interval inflates the estimate
        assert estimate_vif(_result(r_squared=0.5, ci=(-1.0, 3.0))) == pytest.approx(3.0)

    @pytest.mark.parametrize("r2,adj,risk", [(0.5, 0.48, "low"), (0.5, 0.4, "medium"), (0.5, 0.2, "high")])
    def test_overfitting_risk(self, r2, adj, risk):
        assert overfitting_risk(r2, adj) == risk
