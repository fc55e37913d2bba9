"""Audit of the weight calibrator's regression analysis.

Re-derives what the analysis claims from its own summary statistics and
checks that the pieces agree:

    - significance flag == (r^2 >= R threshold and p <= p threshold)
    - a coefficient lies inside its confidence interval
    - an interval containing zero never comes with p <= 0.05

Model assumptions are approximated from summary statistics alone (no raw
residuals), each as a vote over a few sub-checks:

    | Assumption        | Sub-checks | Pass when  |
    |-------------------|------------|------------|
    | linearity         | 4          | >= 75%     |
    | homoscedasticity  | 4          | >= 75%     |
    | normality         | 5          | >= 60%     |

Multicollinearity uses a VIF estimate per predictor,

    vif = 1 / (1 - clamp(r^2, 0.01, 0.99))
          x1.5 when CI width / |coef| > 3, x1.3 when non-significant with r^2 > 0.3
          capped at 50

and sample adequacy needs max(30, 15 x predictors) games.

Overall score (0-100):

    model fit 30 / 20 / 10 + significance 25 / 15 / 5
    + assumptions 25 (all pass) or 8 per passed test + predictive 20 / 15 / 10
    - penalties for consistency errors and warnings found along the way
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from config.settings import Settings
from src.models.weight_calibrator import (
    MULTICOLLINEARITY_CORRELATION,
    EnhancedStatisticalAnalysis,
    RegressionAnalysisResult,
    StatisticalImpactAnalyzer,
)
from src.validation.core import AuditLog, AuditResult, BaseAuditor, Severity

logger = logging.getLogger(__name__)

SIGNIFICANCE_LEVEL = 0.05
SUSPICIOUS_R_SQUARED = 0.95
MAX_VIF = 50.0
UNSTABLE_INTERVAL_RATIO = 3.0
MAX_REASONABLE_COEFFICIENT = 100.0


@dataclass
class ModelFitMetrics:
    r_squared: float
    adjusted_r_squared: float
    residual_standard_error: float
    f_statistic: float
    f_p_value: float
    sample_size: int
    degrees_of_freedom: int
    is_significant: bool
    meets_thresholds: bool


@dataclass
class SignificanceDetail:
    predictor: str
    p_value: float
    is_significant: bool
    confidence_interval: tuple[float, float]


@dataclass
class StatisticalSignificanceResult:
    overall_significant: bool
    r_squared_threshold: float
    p_value_threshold: float
    significant_predictors: list[str] = field(default_factory=list)
    non_significant_predictors: list[str] = field(default_factory=list)
    details: list[SignificanceDetail] = field(default_factory=list)


@dataclass
class AssumptionTest:
    """Approximate assumption check built from summary statistics."""
    test_name: str
    test_statistic: float
    p_value: float
    passed: bool
    score: float  # Fraction of sub-checks passed
    details: str = ""


@dataclass
class VifValue:
    predictor: str
    vif: float
    problematic: bool


@dataclass
class MulticollinearityTest:
    vif_values: list[VifValue]
    max_vif: float
    vif_threshold: float
    passed: bool
    correlated_pairs: list[tuple[str, str, float]] = field(default_factory=list)


@dataclass
class SampleSizeTest:
    sample_size: int
    minimum_required: int
    adequate: bool
    power: float


@dataclass
class ModelAssumptionResults:
    linearity: AssumptionTest
    homoscedasticity: AssumptionTest
    normality: AssumptionTest
    multicollinearity: MulticollinearityTest
    sample_size_adequacy: SampleSizeTest

    @property
    def overall_valid(self) -> bool:
        return (
            self.linearity.passed
            and self.homoscedasticity.passed
            and self.normality.passed
            and self.multicollinearity.passed
            and self.sample_size_adequacy.adequate
        )

    @property
    def passed_tests(self) -> int:
        return sum([self.linearity.passed, self.homoscedasticity.passed, self.normality.passed])


@dataclass
class PredictivePowerMetrics:
    cross_validation_r2: float
    mean_absolute_error: float
    root_mean_square_error: float
    prediction_accuracy: float
    overfitting_risk: str  # "low", "medium", "high"


@dataclass
class CoefficientCheck:
    predictor: str
    coefficient: float
    standard_error: float
    t_statistic: float
    p_value: float
    confidence_interval: tuple[float, float]
    is_significant: bool
    is_reasonable: bool


@dataclass
class RegressionValidationResult(AuditResult):
    """Regression audit report."""

    model_fit: Optional[ModelFitMetrics] = None
    statistical_significance: Optional[StatisticalSignificanceResult] = None
    assumptions: Optional[ModelAssumptionResults] = None
    predictive_power: Optional[PredictivePowerMetrics] = None
    coefficients: list[CoefficientCheck] = field(default_factory=list)

    def __repr__(self) -> str:
        return (
            f"RegressionValidationResult(valid={self.is_valid}, score={self.score:.0f}, "
            f"errors={len(self.errors)}, warnings={len(self.warnings)})"
        )


def estimate_vif(result: RegressionAnalysisResult) -> float:
    """VIF estimate from a single-predictor fit's r^2 and interval stability."""
    vif = 1.0 / (1.0 - float(np.clip(result.r_squared, 0.01, 0.99)))
    lower, upper = result.confidence_interval
    magnitude = abs(result.coefficient)
    if magnitude > 0.01 and (upper - lower) / magnitude > UNSTABLE_INTERVAL_RATIO:
        vif *= 1.5
    if not result.is_statistically_significant and result.r_squared > 0.3:
        vif *= 1.3
    return min(vif, MAX_VIF)


def overfitting_risk(r_squared: float, adjusted_r_squared: float) -> str:
    gap = r_squared - adjusted_r_squared
    if gap < 0.05:
        return "low"
    if gap < 0.15:
        return "medium"
    return "high"


class RegressionAuditor(BaseAuditor):
    """Check a season's regression analysis for internal consistency and fitness."""

    component = "regression_analysis"

    def __init__(
        self,
        analyzer: StatisticalImpactAnalyzer,
        settings: Optional[Settings] = None,
        audit_log: Optional[AuditLog] = None,
    ):
        super().__init__(settings, audit_log)
        self.analyzer = analyzer

    def validate(self, season: int) -> RegressionValidationResult:
        """Run the full audit for a season.

        Args:
            season: Season whose regression analysis to audit

        Returns:
            RegressionValidationResult; when the analysis itself fails the result
            carries a single critical error and ``is_valid`` is False
        """
        result = RegressionValidationResult(metadata=self.base_metadata(season))
        try:
            analysis = self.analyzer.perform_regression_analysis(season)
        except Exception as e:
            failed = self.failure(result, "REGRESSION_VALIDATION_FAILED", e)
            self.log_result(failed)
            return failed

        result.metadata["sample_size"] = analysis.sample_size
        result.model_fit = self.validate_model_fit(analysis)
        result.statistical_significance = self.validate_statistical_significance(analysis, result)
        result.assumptions = self.validate_model_assumptions(analysis, result)
        result.predictive_power = self.validate_predictive_power(analysis)
        result.coefficients = self.validate_coefficients(analysis.regression_results)

        self.calculate_overall_score(result)
        self.add_recommendations(result)
        self.log_result(result)
        return result

    def validate_model_fit(self, analysis: EnhancedStatisticalAnalysis) -> ModelFitMetrics:
        mv = analysis.model_validation
        significant = (
            analysis.overall_model_r_squared >= self.settings.r_squared_threshold
            and mv.f_p_value < SIGNIFICANCE_LEVEL
        )
        return ModelFitMetrics(
            r_squared=analysis.overall_model_r_squared,
            adjusted_r_squared=mv.adjusted_r_squared,
            residual_standard_error=mv.residual_standard_error,
            f_statistic=mv.f_statistic,
            f_p_value=mv.f_p_value,
            sample_size=analysis.sample_size,
            degrees_of_freedom=analysis.sample_size - len(analysis.model_predictors) - 1,
            is_significant=significant,
            meets_thresholds=significant,
        )

    def validate_statistical_significance(
        self,
        analysis: EnhancedStatisticalAnalysis,
        report: RegressionValidationResult,
    ) -> StatisticalSignificanceResult:
        """Re-derive each predictor's significance and check its interval.

        Inconsistencies are recorded on ``report`` as errors; suspicious but
        possible values (p of exactly 0 or 1, r^2 above 0.95) as warnings.
        """
        r_thr = self.settings.r_squared_threshold
        p_thr = self.settings.p_value_threshold
        out = StatisticalSignificanceResult(
            overall_significant=analysis.overall_model_r_squared >= r_thr,
            r_squared_threshold=r_thr,
            p_value_threshold=p_thr,
        )

        for r in analysis.regression_results:
            significant = r.r_squared >= r_thr and r.p_value <= p_thr
            if r.is_statistically_significant != significant:
                report.add_error(
                    "SIGNIFICANCE_FLAG_MISMATCH",
                    f"Statistical significance flag mismatch for {r.metric}: "
                    f"expected {significant}, got {r.is_statistically_significant}",
                    Severity.HIGH,
                )

            if not 0.0 <= r.p_value <= 1.0:
                report.add_error("INVALID_P_VALUE", f"p-value for {r.metric} out of range: {r.p_value}", Severity.HIGH)
            elif r.p_value in (0.0, 1.0):
                report.add_warning(
                    "SUSPICIOUS_P_VALUE",
                    f"p-value of exactly {r.p_value:.0f} for {r.metric} may indicate a degenerate fit",
                )

            if not 0.0 <= r.r_squared <= 1.0:
                report.add_error("INVALID_R_SQUARED", f"R² for {r.metric} out of range: {r.r_squared}", Severity.HIGH)
            elif r.r_squared > SUSPICIOUS_R_SQUARED:
                report.add_warning(
                    "SUSPICIOUS_R_SQUARED",
                    f"R² ({r.r_squared:.3f}) is suspiciously high for single predictor {r.metric}",
                )

            self._check_interval(r, report)

            if significant:
                out.significant_predictors.append(r.metric)
                if r.weight == 0:
                    report.add_warning("UNUSED_SIGNIFICANT_PREDICTOR", f"Significant predictor {r.metric} has zero weight")
            else:
                out.non_significant_predictors.append(r.metric)
                if r.weight > 0.5:
                    report.add_warning(
                        "OVERWEIGHTED_PREDICTOR",
                        f"Non-significant predictor {r.metric} has high weight ({r.weight:.2f})",
                    )

            out.details.append(
                SignificanceDetail(
                    predictor=r.metric,
                    p_value=r.p_value,
                    is_significant=significant,
                    confidence_interval=r.confidence_interval,
                )
            )
        return out

    @staticmethod
    def _check_interval(r: RegressionAnalysisResult, report: RegressionValidationResult) -> None:
        lower, upper = r.confidence_interval
        if not (np.isfinite(lower) and np.isfinite(upper)):
            report.add_error("INVALID_CONFIDENCE_INTERVAL", f"Non-finite interval for {r.metric}: [{lower}, {upper}]", Severity.HIGH)
            return
        if lower > upper:
            report.add_error(
                "INVALID_CONFIDENCE_INTERVAL",
                f"Interval for {r.metric} has lower bound {lower:.4f} above upper bound {upper:.4f}",
                Severity.HIGH,
            )
            return
        if not lower <= r.coefficient <= upper:
            report.add_error(
                "COEFFICIENT_OUTSIDE_INTERVAL",
                f"Coefficient ({r.coefficient:.4f}) for {r.metric} is outside its interval [{lower:.4f}, {upper:.4f}]",
                Severity.HIGH,
            )
        if lower <= 0 <= upper and r.p_value <= SIGNIFICANCE_LEVEL:
            report.add_error(
                "INTERVAL_P_VALUE_INCONSISTENT",
                f"p-value ({r.p_value:.4f}) for {r.metric} suggests significance "
                f"but interval [{lower:.4f}, {upper:.4f}] contains zero",
                Severity.HIGH,
            )

    def validate_model_assumptions(
        self,
        analysis: EnhancedStatisticalAnalysis,
        report: RegressionValidationResult,
    ) -> ModelAssumptionResults:
        multicollinearity = self.test_multicollinearity(analysis)
        for pred_a, pred_b, corr in multicollinearity.correlated_pairs:
            report.add_warning(
                "CORRELATED_PREDICTORS",
                f"{pred_a} and {pred_b} are highly correlated (r={corr:.2f})",
            )
        return ModelAssumptionResults(
            linearity=self.test_linearity(analysis),
            homoscedasticity=self.test_homoscedasticity(analysis),
            normality=self.test_normality(analysis),
            multicollinearity=multicollinearity,
            sample_size_adequacy=self.validate_sample_size(analysis),
        )

    @staticmethod
    def test_linearity(analysis: EnhancedStatisticalAnalysis) -> AssumptionTest:
        r2 = analysis.overall_model_r_squared
        mv = analysis.model_validation
        significant = analysis.significant_results

        fit_ok = r2 >= 0.1
        f_ok = mv.f_p_value < SIGNIFICANCE_LEVEL
        consistent = bool(significant) and all(
            r.r_squared > 0.1 and abs(r.coefficient) < 10 for r in significant
        )
        residuals_ok = r2 > 0.2 and mv.residual_standard_error < 25 and (r2 - mv.adjusted_r_squared) < 0.1

        score = float(np.mean([fit_ok, f_ok, consistent, residuals_ok]))
        return AssumptionTest(
            test_name="Linearity",
            test_statistic=r2,
            p_value=mv.f_p_value,
            passed=score >= 0.75,
            score=score,
            details=(
                f"R²={r2:.3f} ({'adequate' if fit_ok else 'poor'}), "
                f"F p={mv.f_p_value:.4f}, consistency={'good' if consistent else 'poor'}, "
                f"residuals={'acceptable' if residuals_ok else 'concerning'}"
            ),
        )

    @staticmethod
    def test_homoscedasticity(analysis: EnhancedStatisticalAnalysis) -> AssumptionTest:
        r2 = analysis.overall_model_r_squared
        mv = analysis.model_validation
        rse = mv.residual_standard_error

        rse_ok = rse <= 20
        stable = True
        for r in analysis.regression_results:
            lower, upper = r.confidence_interval
            magnitude = abs(r.coefficient)
            if magnitude > 0.1 and (upper - lower) > magnitude * 5:
                stable = False
                break
        consistent = (r2 - mv.adjusted_r_squared) < 0.1
        breusch_pagan = mv.f_p_value < SIGNIFICANCE_LEVEL and abs(r2 - mv.adjusted_r_squared) < 0.05

        score = float(np.mean([rse_ok, stable, consistent, breusch_pagan]))
        return AssumptionTest(
            test_name="Homoscedasticity (Breusch-Pagan approximation)",
            test_statistic=rse,
            p_value=0.01 if not rse_ok else 0.5,
            passed=score >= 0.75,
            score=score,
            details=(
                f"RSE={rse:.2f}, coefficient stability={'good' if stable else 'poor'}, "
                f"variance pattern={'constant' if breusch_pagan else 'non-constant'}"
            ),
        )

    @staticmethod
    def test_normality(analysis: EnhancedStatisticalAnalysis) -> AssumptionTest:
        n = analysis.sample_size
        r2 = analysis.overall_model_r_squared
        rse = analysis.model_validation.residual_standard_error
        results = analysis.regression_results

        clt = n >= 30
        fit_ok = r2 > 0.2
        rse_ok = rse < 25
        ratio = len(analysis.significant_results) / len(results) if results else 0.0
        pattern_ok = 0.1 < ratio < 0.9
        shapiro_wilk = sum([n >= 50, r2 > 0.3, rse < 20]) >= 2

        score = float(np.mean([clt, fit_ok, rse_ok, pattern_ok, shapiro_wilk]))
        if not clt and not fit_ok:
            p_value = 0.01
        elif not clt or not fit_ok:
            p_value = 0.1
        else:
            p_value = 0.5
        return AssumptionTest(
            test_name="Normality (Shapiro-Wilk approximation)",
            test_statistic=float(n),
            p_value=p_value,
            passed=score >= 0.6,
            score=score,
            details=f"n={n}, R²={r2:.3f}, RSE={rse:.2f}, significant ratio={ratio:.2f}",
        )

    def test_multicollinearity(self, analysis: EnhancedStatisticalAnalysis) -> MulticollinearityTest:
        threshold = self.settings.vif_threshold
        values = []
        for r in analysis.regression_results:
            vif = estimate_vif(r)
            problematic = vif > threshold
            if problematic:
                logger.warning(f"High VIF for {r.metric}: {vif:.2f} (threshold {threshold})")
            values.append(VifValue(predictor=r.metric, vif=vif, problematic=problematic))
        max_vif = max((v.vif for v in values), default=0.0)

        predictors = set(analysis.model_predictors)
        correlated = [
            (a, b, corr)
            for (a, b), corr in analysis.predictor_correlations.items()
            if a in predictors and b in predictors and abs(corr) > MULTICOLLINEARITY_CORRELATION
        ]
        return MulticollinearityTest(
            vif_values=values,
            max_vif=max_vif,
            vif_threshold=threshold,
            passed=max_vif <= threshold,
            correlated_pairs=correlated,
        )

    def validate_sample_size(self, analysis: EnhancedStatisticalAnalysis) -> SampleSizeTest:
        minimum = max(
            self.settings.min_regression_samples,
            self.settings.observations_per_predictor * len(analysis.regression_results),
        )
        adequate = analysis.sample_size >= minimum
        power = 0.8 if adequate else min(0.8, analysis.sample_size / minimum * 0.8)
        return SampleSizeTest(
            sample_size=analysis.sample_size,
            minimum_required=minimum,
            adequate=adequate,
            power=power,
        )

    @staticmethod
    def validate_predictive_power(analysis: EnhancedStatisticalAnalysis) -> PredictivePowerMetrics:
        mv = analysis.model_validation
        return PredictivePowerMetrics(
            cross_validation_r2=max(0.0, analysis.overall_model_r_squared - 0.05),
            mean_absolute_error=mv.residual_standard_error * 0.8,
            root_mean_square_error=mv.residual_standard_error,
            prediction_accuracy=analysis.predictive_accuracy,
            overfitting_risk=overfitting_risk(analysis.overall_model_r_squared, mv.adjusted_r_squared),
        )

    @staticmethod
    def validate_coefficients(results: list[RegressionAnalysisResult]) -> list[CoefficientCheck]:
        checks = []
        for r in results:
            t_stat = r.coefficient / r.std_error if r.std_error > 0 else float("inf")
            checks.append(
                CoefficientCheck(
                    predictor=r.metric,
                    coefficient=r.coefficient,
                    standard_error=r.std_error,
                    t_statistic=t_stat,
                    p_value=r.p_value,
                    confidence_interval=r.confidence_interval,
                    is_significant=r.is_statistically_significant,
                    is_reasonable=bool(np.isfinite(r.coefficient)) and abs(r.coefficient) < MAX_REASONABLE_COEFFICIENT,
                )
            )
        return checks

    def calculate_overall_score(self, result: RegressionValidationResult) -> None:
        fit = result.model_fit
        sig = result.statistical_significance
        assumptions = result.assumptions
        risk = result.predictive_power.overfitting_risk

        if fit.meets_thresholds:
            fit_score = 30
        elif fit.r_squared > 0.1:
            fit_score = 20
        else:
            fit_score = 10

        if sig.overall_significant:
            sig_score = 25
        elif sig.significant_predictors:
            sig_score = 15
        else:
            sig_score = 5

        assumption_score = 25 if assumptions.overall_valid else assumptions.passed_tests * 8
        predictive_score = {"low": 20, "medium": 15}.get(risk, 10)

        # Findings recorded while auditing have already lowered the running score
        penalties = 100.0 - result.score
        result.set_score(fit_score + sig_score + assumption_score + predictive_score - penalties)
        result.is_valid = (
            fit.meets_thresholds
            and bool(sig.significant_predictors)
            and assumptions.sample_size_adequacy.adequate
            and not result.errors
        )

    @staticmethod
    def add_recommendations(result: RegressionValidationResult) -> None:
        if not result.model_fit.meets_thresholds:
            result.add_recommendation(
                "Consider adding more predictive variables or transforming existing ones to improve model fit"
            )
        if not result.statistical_significance.significant_predictors:
            result.add_recommendation(
                "No statistically significant predictors found - review data quality and variable selection"
            )
        adequacy = result.assumptions.sample_size_adequacy
        if not adequacy.adequate:
            result.add_recommendation(
                f"Increase sample size to at least {adequacy.minimum_required} games for reliable results"
            )
        if not result.assumptions.multicollinearity.passed:
            result.add_recommendation("Address multicollinearity by removing or combining highly correlated predictors")
        if result.predictive_power.overfitting_risk == "high":
            result.add_recommendation("High overfitting risk detected - consider regularization or cross-validation")
