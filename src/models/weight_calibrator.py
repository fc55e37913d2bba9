"""Regression-based weight calibration.

Measures how strongly each efficiency metric explains real game outcomes and
turns that evidence into category weights.

Per-game predictor for a metric (home perspective):

    (home offense + home defense) - (away offense + away defense)

with the defense term treated as 0 for metrics that have no defensive side
(field goals). The response is the actual home point differential.

Significance is never stored on its own: RegressionAnalysisResult carries the
thresholds it was judged against and derives the flag from them, so the flag
can always be recomputed from (r^2, p) and cannot drift.

Metric weight from a single fit:

    | Condition            | Weight                                        |
    |----------------------|-----------------------------------------------|
    | not significant      | 0.05                                          |
    | significant          | r^2 * 0.5, x1.3 if p < .01, x1.1 if p < .05   |
    |                      | clamped to [0.05, 0.5]                        |
"""

import logging
from dataclasses import dataclass, field
from itertools import combinations
from typing import Optional

import numpy as np
import pandas as pd
from scipy import stats

from config.categories import (
    DEFAULT_REGRESSION_WEIGHTS,
    PROFILE_CATEGORIES,
    RECOMMENDED_WEIGHT_SOURCES,
    REGRESSION_METRICS,
)
from config.settings import Settings
from src.data.records import GameRecord, SeasonDataSource
from src.data.validators import InsufficientDataError
from src.models.profiles import ProfileProvider, TeamEfficiencyProfile
from src.models.regression import fit_multiple, fit_single
from src.models.weights import HOME_FIELD_WEIGHT, WeightChangeLog, WeightManager, WeightSet

logger = logging.getLogger(__name__)

MIN_METRIC_WEIGHT = 0.05
MAX_METRIC_WEIGHT = 0.5
MULTICOLLINEARITY_CORRELATION = 0.8
MAX_RESIDUAL_STD_ERROR = 20.0
MIN_MODEL_R_SQUARED = 0.3

# WeightSet category -> profile category whose predictive power sets it
OPTIMAL_WEIGHT_SOURCES: dict[str, str] = {
    "passing_offense": "passing_offense",
    "rushing_offense": "rushing_offense",
    "scoring_efficiency": "scoring_offense",
    "passing_defense": "passing_defense",
    "rushing_defense": "rushing_defense",
    "turnover_margin": "turnover_defense",
    "special_teams": "field_goal",
}
DEFAULT_OPTIMAL_WEIGHT = 0.1


@dataclass
class MetricCorrelationAnalysis:
    """How one metric's home-away differential tracks wins and margins."""

    metric: str
    correlation_with_wins: float
    correlation_with_point_differential: float
    predictive_power: float
    sample_size: int
    confidence_level: float


@dataclass
class RegressionAnalysisResult:
    """Single-predictor regression of home margin on one metric differential."""

    metric: str
    coefficient: float
    r_squared: float
    p_value: float
    confidence_interval: tuple[float, float]
    weight: float
    r_squared_threshold: float = 0.2
    p_value_threshold: float = 0.1
    intercept: float = 0.0
    std_error: float = 0.0
    sample_size: int = 0

    @property
    def is_statistically_significant(self) -> bool:
        return self.r_squared >= self.r_squared_threshold and self.p_value <= self.p_value_threshold

    def to_dict(self) -> dict:
        return {
            "metric": self.metric,
            "coefficient": self.coefficient,
            "r_squared": self.r_squared,
            "p_value": self.p_value,
            "confidence_interval": list(self.confidence_interval),
            "weight": self.weight,
            "is_statistically_significant": self.is_statistically_significant,
        }

    def __repr__(self) -> str:
        sig = "*" if self.is_statistically_significant else ""
        return (
            f"RegressionAnalysisResult({self.metric}{sig}, coef={self.coefficient:.3f}, "
            f"r2={self.r_squared:.3f}, p={self.p_value:.4f}, w={self.weight:.3f})"
        )


@dataclass
class ModelValidation:
    """Overall model diagnostics."""

    residual_standard_error: float
    f_statistic: float
    f_p_value: float
    adjusted_r_squared: float


@dataclass
class EnhancedStatisticalAnalysis:
    """Full regression analysis for one season."""

    season: int
    regression_results: list[RegressionAnalysisResult]
    overall_model_r_squared: float
    predictive_accuracy: float
    recommended_weights: dict[str, float]
    sample_size: int
    model_validation: ModelValidation
    model_predictors: list[str] = field(default_factory=list)
    predictor_correlations: dict[tuple[str, str], float] = field(default_factory=dict)

    @property
    def significant_results(self) -> list[RegressionAnalysisResult]:
        return [r for r in self.regression_results if r.is_statistically_significant]

    def result_for(self, metric: str) -> Optional[RegressionAnalysisResult]:
        for r in self.regression_results:
            if r.metric == metric:
                return r
        return None

    def __repr__(self) -> str:
        return (
            f"EnhancedStatisticalAnalysis(season={self.season}, n={self.sample_size}, "
            f"R2={self.overall_model_r_squared:.3f}, "
            f"significant={len(self.significant_results)}/{len(self.regression_results)})"
        )


@dataclass
class RegressionModelCheck:
    """Outcome of validate_regression_model."""

    is_valid: bool
    warnings: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


@dataclass
class GamePredictionCheck:
    """A stored prediction to score against the actual result."""

    game_id: int
    predicted_winner: int
    confidence: float  # 0-1
    expected_home: float
    expected_away: float


@dataclass
class PredictionAccuracyMetrics:
    """Accuracy of stored predictions against final scores."""

    total_predictions: int
    correct_predictions: int
    accuracy: float
    average_confidence_error: float
    calibration_score: float
    mean_absolute_error: float
    root_mean_square_error: float


def sample_confidence_level(sample_size: int) -> float:
    """Confidence in an analysis as a step function of its sample size."""
    if sample_size >= 150:
        return 0.95
    if sample_size >= 75:
        return 0.90
    if sample_size >= 30:
        return 0.80
    if sample_size >= 15:
        return 0.70
    return 0.60


def pearson(x, y) -> float:
    """Pearson r, 0.0 when either side is constant or too short."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if len(x) < 2 or np.std(x) == 0 or np.std(y) == 0:
        return 0.0
    return float(stats.pearsonr(x, y)[0])


def calculate_metric_weight(r_squared: float, p_value: float, is_significant: bool) -> float:
    if not is_significant:
        return MIN_METRIC_WEIGHT
    weight = r_squared * 0.5
    if p_value < 0.01:
        weight *= 1.3
    elif p_value < 0.05:
        weight *= 1.1
    return float(np.clip(weight, MIN_METRIC_WEIGHT, MAX_METRIC_WEIGHT))


def recommended_weights(results: list[RegressionAnalysisResult]) -> dict[str, float]:
    """Adjust the default weight mix by each metric's evidence, then normalize."""
    weights = dict(DEFAULT_REGRESSION_WEIGHTS)
    by_metric = {r.metric: r for r in results}

    for key, metric in RECOMMENDED_WEIGHT_SOURCES.items():
        result = by_metric.get(metric)
        if result is None:
            continue
        if result.is_statistically_significant:
            if result.r_squared > 0.6:
                weights[key] = min(0.5, result.weight * 1.5)
            elif result.r_squared > 0.5:
                weights[key] = min(0.4, result.weight * 1.2)
            else:
                weights[key] = result.weight
        else:
            weights[key] = max(MIN_METRIC_WEIGHT, result.weight * 0.5)

    total = sum(weights.values())
    return {k: v / total for k, v in weights.items()}


def metric_differential(
    home: TeamEfficiencyProfile,
    away: TeamEfficiencyProfile,
    metric: str,
) -> float:
    """Home-minus-away differential for a regression metric or a profile category."""
    if metric in REGRESSION_METRICS:
        off_cat, def_cat = REGRESSION_METRICS[metric]
        home_total = home.get(off_cat) + (home.get(def_cat) if def_cat else 0.0)
        away_total = away.get(off_cat) + (away.get(def_cat) if def_cat else 0.0)
        return home_total - away_total
    if metric in PROFILE_CATEGORIES:
        return home.get(metric) - away.get(metric)
    raise ValueError(f"Unknown metric: {metric}")


class StatisticalImpactAnalyzer:
    """Fit metric-vs-outcome regressions and derive category weights."""

    def __init__(
        self,
        profile_provider: ProfileProvider,
        data_source: SeasonDataSource,
        settings: Optional[Settings] = None,
        weight_manager: Optional[WeightManager] = None,
    ):
        """Initialize the analyzer.

        Args:
            profile_provider: Source of season profiles (engine or static provider)
            data_source: Source of games with final scores
            settings: Pipeline settings
            weight_manager: Where regression-derived weights get stored
        """
        self.profile_provider = profile_provider
        self.data_source = data_source
        self.settings = settings or Settings()
        self.weight_manager = weight_manager or WeightManager(self.settings)
        self._frames: dict[int, pd.DataFrame] = {}

    def game_frame(self, season: int) -> pd.DataFrame:
        """Completed games of a season with every metric differential, one row per game.

        Games where either team has no profile are left out.
        """
        if season in self._frames:
            return self._frames[season]

        data = self.data_source.load_season(season)
        profiles = self.profile_provider.calculate_season_efficiencies(season)
        rows = []
        for g in data.completed_games:
            home = profiles.get(g.home_team_id)
            away = profiles.get(g.away_team_id)
            if home is None or away is None:
                continue
            row = {
                "game_id": g.game_id,
                "home_team_id": g.home_team_id,
                "away_team_id": g.away_team_id,
                "home_margin": g.home_margin,
                "home_win": 1.0 if g.home_margin > 0 else 0.0,
            }
            for metric in list(REGRESSION_METRICS) + list(PROFILE_CATEGORIES):
                row[metric] = metric_differential(home, away, metric)
            rows.append(row)

        columns = (
            ["game_id", "home_team_id", "away_team_id", "home_margin", "home_win"]
            + list(REGRESSION_METRICS) + list(PROFILE_CATEGORIES)
        )
        df = pd.DataFrame(rows, columns=columns)
        self._frames[season] = df
        logger.debug(f"Regression frame {season}: {len(df)} games with both profiles")
        return df

    def analyze_metric_impact(self, metric: str, season: int) -> MetricCorrelationAnalysis:
        """Correlate one metric's differential with wins and with point differential.

        Raises:
            InsufficientDataError: Fewer than the minimum number of games
            ValueError: Unknown metric
        """
        if metric not in REGRESSION_METRICS and metric not in PROFILE_CATEGORIES:
            raise ValueError(f"Unknown metric: {metric}")

        df = self.game_frame(season)
        if len(df) < self.settings.min_impact_games:
            raise InsufficientDataError(f"Insufficient data for analysis: {len(df)} games found")

        r_wins = pearson(df[metric], df["home_win"])
        r_points = pearson(df[metric], df["home_margin"])
        return MetricCorrelationAnalysis(
            metric=metric,
            correlation_with_wins=r_wins,
            correlation_with_point_differential=r_points,
            predictive_power=float(np.sqrt((r_wins ** 2 + r_points ** 2) / 2)),
            sample_size=len(df),
            confidence_level=sample_confidence_level(len(df)),
        )

    def regress_metric(self, metric: str, x, y) -> RegressionAnalysisResult:
        """Single-predictor regression for one metric.

        Raises:
            ValueError: Zero-variance predictor ("cannot regress: no variance")
        """
        fit = fit_single(x, y)
        r_thr = self.settings.r_squared_threshold
        p_thr = self.settings.p_value_threshold
        significant = fit.r_squared >= r_thr and fit.p_value <= p_thr
        return RegressionAnalysisResult(
            metric=metric,
            coefficient=fit.slope,
            r_squared=fit.r_squared,
            p_value=fit.p_value,
            confidence_interval=fit.confidence_interval,
            weight=calculate_metric_weight(fit.r_squared, fit.p_value, significant),
            r_squared_threshold=r_thr,
            p_value_threshold=p_thr,
            intercept=fit.intercept,
            std_error=fit.std_error,
            sample_size=fit.n,
        )

    def perform_regression_analysis(self, season: int) -> EnhancedStatisticalAnalysis:
        """Regress home margin on every metric and fit the overall model.

        Args:
            season: Season year

        Returns:
            EnhancedStatisticalAnalysis with per-metric results and diagnostics

        Raises:
            InsufficientDataError: Fewer than the minimum regression sample
            ValueError: No metric had any variance to regress on
        """
        df = self.game_frame(season)
        n = len(df)
        minimum = self.settings.min_regression_samples
        if n < minimum:
            raise InsufficientDataError(
                f"Insufficient data for regression analysis: {n} games found "
                f"(minimum {minimum} required)"
            )

        y = df["home_margin"].to_numpy()
        results = []
        for metric in REGRESSION_METRICS:
            try:
                results.append(self.regress_metric(metric, df[metric].to_numpy(), y))
            except ValueError as e:
                logger.warning(f"Skipping {metric} regression for {season}: {e}")
        if not results:
            raise ValueError(f"cannot regress: no variance in any metric for {season}")

        significant = [r.metric for r in results if r.is_statistically_significant]
        if significant:
            overall = fit_multiple(df[significant].to_numpy(), y)
            r_squared = overall.r_squared
            validation = ModelValidation(
                residual_standard_error=overall.residual_std_error,
                f_statistic=overall.f_statistic,
                f_p_value=overall.f_p_value,
                adjusted_r_squared=overall.adjusted_r_squared,
            )
            fitted = overall.intercept + df[significant].to_numpy() @ overall.coefficients
        else:
            r_squared = 0.0
            validation = ModelValidation(
                residual_standard_error=float(np.std(y, ddof=1)),
                f_statistic=0.0,
                f_p_value=1.0,
                adjusted_r_squared=0.0,
            )
            fitted = np.full(n, y.mean())

        decided = y != 0
        accuracy = (
            float(np.mean(np.sign(fitted[decided]) == np.sign(y[decided])))
            if decided.any() else 0.0
        )

        fitted_metrics = [r.metric for r in results]
        corr = df[fitted_metrics].corr()
        correlations = {}
        for a, b in combinations(fitted_metrics, 2):
            value = corr.loc[a, b]
            if pd.notna(value):
                correlations[(a, b)] = float(value)

        analysis = EnhancedStatisticalAnalysis(
            season=season,
            regression_results=results,
            overall_model_r_squared=r_squared,
            predictive_accuracy=accuracy,
            recommended_weights=recommended_weights(results),
            sample_size=n,
            model_validation=validation,
            model_predictors=significant,
            predictor_correlations=correlations,
        )
        logger.info(f"Regression analysis {season}: {analysis!r}")
        return analysis

    def calculate_optimal_weights(self, season: int) -> WeightSet:
        """Weights proportional to each category's predictive power, summing to 1.0.

        Raises:
            InsufficientDataError: Too few games for impact analysis
        """
        powers = {
            key: self.analyze_metric_impact(category, season).predictive_power
            for key, category in OPTIMAL_WEIGHT_SOURCES.items()
        }
        total = sum(powers.values())
        weights = {
            key: (power / total if total > 0 else DEFAULT_OPTIMAL_WEIGHT)
            for key, power in powers.items()
        }
        weights["home_field_advantage"] = HOME_FIELD_WEIGHT
        result = WeightSet(weights=weights, season=season, source="optimal").normalized(1.0)
        logger.info(f"Optimal weights for {season}: {result!r}")
        return result

    def update_weights_from_regression(
        self,
        season: int,
        analysis: Optional[EnhancedStatisticalAnalysis] = None,
        changed_by: str = "system",
    ) -> WeightChangeLog:
        analysis = analysis or self.perform_regression_analysis(season)
        return self.weight_manager.update_weights_from_regression(season, analysis, changed_by)

    def get_current_weights(self, season: int) -> WeightSet:
        return self.weight_manager.get_current_weights(season)

    def validate_regression_model(self, analysis: EnhancedStatisticalAnalysis) -> RegressionModelCheck:
        """Rule-of-thumb checks on a finished analysis."""
        warnings = []
        recommendations = []
        is_valid = True

        if analysis.sample_size < self.settings.min_regression_samples:
            warnings.append(
                f"Small sample size ({analysis.sample_size}). Minimum "
                f"{self.settings.min_regression_samples} observations recommended for reliable regression."
            )
            is_valid = False

        if analysis.overall_model_r_squared < MIN_MODEL_R_SQUARED:
            warnings.append(
                f"Low overall model R² ({analysis.overall_model_r_squared:.3f}). "
                f"Model explains less than 30% of variance."
            )
            recommendations.append("Consider adding more predictive variables or transforming existing ones.")

        significant = analysis.significant_results
        if not significant:
            warnings.append("No statistically significant predictors found.")
            recommendations.append("Review data quality and consider different metrics or transformations.")
            is_valid = False

        sig_names = {r.metric for r in significant}
        pairs = [
            f"{a} and {b}"
            for (a, b), r in analysis.predictor_correlations.items()
            if a in sig_names and b in sig_names and abs(r) > MULTICOLLINEARITY_CORRELATION
        ]
        if pairs:
            warnings.append(f"Potential multicollinearity detected between: {', '.join(pairs)}")
            recommendations.append("Consider removing or combining highly correlated predictors.")

        rse = analysis.model_validation.residual_standard_error
        if rse > MAX_RESIDUAL_STD_ERROR:
            warnings.append(f"High residual standard error ({rse:.2f}). Predictions may be imprecise.")
            recommendations.append("Investigate outliers and consider robust regression methods.")

        f_p = analysis.model_validation.f_p_value
        if f_p > 0.05:
            warnings.append(f"Overall model not statistically significant (F p-value: {f_p:.3f})")
            is_valid = False

        for w in warnings:
            logger.warning(w)
        return RegressionModelCheck(is_valid=is_valid, warnings=warnings, recommendations=recommendations)

    @staticmethod
    def prediction_confidence_interval(
        predicted: float,
        analysis: EnhancedStatisticalAnalysis,
        confidence: float = 0.95,
    ) -> tuple[float, float]:
        """Interval around a predicted score from the model's residual error.

        Without any significant predictor the interval is a flat +/-30%.
        """
        if not analysis.significant_results:
            margin = abs(predicted) * 0.3
            return (predicted - margin, predicted + margin)
        z = float(stats.norm.ppf(0.5 + confidence / 2))
        margin = z * analysis.model_validation.residual_standard_error
        return (max(0.0, predicted - margin), predicted + margin)

    @staticmethod
    def validate_prediction_accuracy(
        predictions: list[GamePredictionCheck],
        games: list[GameRecord],
    ) -> PredictionAccuracyMetrics:
        """Score stored predictions against final results.

        Raises:
            InsufficientDataError: No prediction matches a completed game
        """
        finals = {g.game_id: g for g in games if g.is_complete}

        correct = 0
        confidence_errors = []
        score_errors = []
        for p in predictions:
            game = finals.get(p.game_id)
            if game is None:
                continue
            home, away = float(game.home_score), float(game.away_score)
            winner = game.home_team_id if home > away else game.away_team_id
            if p.predicted_winner == winner:
                correct += 1
            top = max(home, away)
            actual_confidence = abs(home - away) / top if top > 0 else 0.0
            confidence_errors.append(abs(p.confidence - actual_confidence))
            score_errors.append((abs(p.expected_home - home) + abs(p.expected_away - away)) / 2)

        if not score_errors:
            raise InsufficientDataError("No valid predictions found for accuracy analysis")

        n = len(score_errors)
        errors = np.array(score_errors)
        avg_conf_error = float(np.mean(confidence_errors))
        return PredictionAccuracyMetrics(
            total_predictions=n,
            correct_predictions=correct,
            accuracy=correct / n,
            average_confidence_error=avg_conf_error,
            calibration_score=max(0.0, 1.0 - avg_conf_error),
            mean_absolute_error=float(errors.mean()),
            root_mean_square_error=float(np.sqrt(np.mean(errors ** 2))),
        )
