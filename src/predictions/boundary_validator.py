"""Season-stat sanity layer for composed predictions.

The composer's per-category bounds keep each prediction near its opponent
baseline. This layer looks at the result from the team's own side: how the
predicted score and stat line compare with what the team has actually done
this season, and with multi-season historical patterns when available.

Bounds are deliberately permissive so opponent-relative separation survives;
the main output is a confidence reduction the prediction service subtracts
from its overall confidence, plus human-readable flags.

    overall_reduction = min(max_reduction * 0.7 + mean_reduction * 0.3, 0.8)
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import pandas as pd

from config.categories import PREDICTION_CATEGORIES
from src.data.records import SeasonData
from src.models.profiles import ConfidenceLevel, TeamEfficiencyProfile

logger = logging.getLogger(__name__)

SCORING_FLOOR_PCT = 0.05
SCORING_CEILING_PCT = 6.0
EXTREME_CIRCUMSTANCE_THRESHOLD = 0.8
REGRESSION_FACTOR = 0.01
HISTORICAL_SD_THRESHOLD = 3.0
TEAM_DEVIATION_RATIO = 1.5
NEGATIVE_SCORE_FLOOR = 3.0
MAX_CONFIDENCE_REDUCTION = 0.8

STAT_CATEGORIES = ("total_yards", "passing_yards", "rushing_yards", "turnovers", "sacks", "field_goals")

DEFAULT_POINTS_AVERAGE = 28.0


@dataclass
class PredictionCheck:
    """Result of checking one predicted value."""

    original_value: float
    adjusted_value: float
    is_adjusted: bool = False
    reason: Optional[str] = None
    confidence_reduction: float = 0.0


@dataclass
class HistoricalPattern:
    """Distribution of one stat over past seasons."""

    category: str
    min_value: float
    max_value: float
    average_value: float
    standard_deviation: float
    sample_size: int


@dataclass
class BoundaryValidationResult:
    home_score: PredictionCheck
    away_score: PredictionCheck
    home_stats: dict[str, PredictionCheck]
    away_stats: dict[str, PredictionCheck]
    overall_confidence_reduction: float
    validation_flags: list[str] = field(default_factory=list)

    def all_checks(self) -> list[PredictionCheck]:
        return [self.home_score, self.away_score, *self.home_stats.values(), *self.away_stats.values()]


def historical_patterns(seasons: list[SeasonData]) -> dict[str, HistoricalPattern]:
    """Per-stat distributions over the given (usually prior) seasons.

    Scoring uses both teams' final scores; stat categories use every box score line.
    """
    scores = [s for data in seasons for g in data.completed_games for s in (g.home_score, g.away_score)]
    lines = pd.DataFrame(
        [
            {
                "total_yards": b.total_yards,
                "passing_yards": b.passing_yards,
                "rushing_yards": b.rushing_yards,
                "turnovers": b.turnovers,
                "sacks": b.sacks,
                "field_goals": b.field_goals_made,
            }
            for data in seasons
            for b in data.box_scores
        ],
        columns=list(STAT_CATEGORIES),
    )

    patterns = {}
    if scores:
        patterns["scoring"] = _pattern("scoring", pd.Series(scores, dtype=float))
    if not lines.empty:
        for col in STAT_CATEGORIES:
            patterns[col] = _pattern(col, lines[col].astype(float))
    return patterns


def _pattern(category: str, values: pd.Series) -> HistoricalPattern:
    return HistoricalPattern(
        category=category,
        min_value=float(values.min()),
        max_value=float(values.max()),
        average_value=float(values.mean()),
        standard_deviation=float(values.std(ddof=0)),
        sample_size=int(len(values)),
    )


def overall_confidence_reduction(checks: list[PredictionCheck]) -> float:
    if not checks:
        return 0.0
    reductions = np.array([c.confidence_reduction for c in checks])
    return float(min(reductions.max() * 0.7 + reductions.mean() * 0.3, MAX_CONFIDENCE_REDUCTION))


class BoundaryValidator:
    """Check composed predictions against each team's season and history."""

    def __init__(self, patterns: Optional[dict[str, HistoricalPattern]] = None):
        self.patterns = patterns or {}

    @staticmethod
    def team_average(profile: TeamEfficiencyProfile, category: str) -> float:
        if category == "scoring":
            return float(profile.averages_produced.get("points", DEFAULT_POINTS_AVERAGE))
        definition = PREDICTION_CATEGORIES[category]
        if category == "sacks":
            # Predicted sacks are sacks allowed, so compare with the team's allowed line
            return float(profile.averages_allowed.get(definition.stat, definition.fallback_baseline))
        return float(profile.averages_produced.get(definition.stat, definition.fallback_baseline))

    @staticmethod
    def has_extreme_circumstances(profile: TeamEfficiencyProfile) -> bool:
        """Extreme unit weakness or very shaky data justify unusually low scores."""
        threshold = -EXTREME_CIRCUMSTANCE_THRESHOLD
        units = [
            profile.total_offense, profile.passing_offense, profile.rushing_offense, profile.scoring_offense,
            profile.total_defense, profile.passing_defense, profile.rushing_defense, profile.scoring_defense,
        ]
        weak = any(v < threshold for v in units)
        shaky = profile.confidence_level == ConfidenceLevel.LOW and profile.convergence_score < 0.5
        return weak or shaky

    def validate_score(self, predicted: float, profile: TeamEfficiencyProfile) -> PredictionCheck:
        season_average = self.team_average(profile, "scoring")
        confident = profile.confidence_level in (ConfidenceLevel.HIGH, ConfidenceLevel.MEDIUM)
        floor_mult = SCORING_FLOOR_PCT * (0.2 if confident else 0.5)
        ceiling_mult = SCORING_CEILING_PCT * (2.0 if confident else 1.5)
        min_allowed = season_average * floor_mult
        max_allowed = season_average * ceiling_mult

        check = PredictionCheck(original_value=predicted, adjusted_value=predicted)
        if predicted < min_allowed:
            check.is_adjusted = True
            if not self.has_extreme_circumstances(profile):
                check.adjusted_value = min_allowed
                check.reason = (
                    f"Score below {SCORING_FLOOR_PCT:.0%} of season average ({season_average:.1f})"
                )
                check.confidence_reduction = 0.3
            else:
                target = (min_allowed + predicted) / 2
                check.adjusted_value = predicted + (target - predicted) * REGRESSION_FACTOR
                check.reason = "Extreme circumstances detected, applied regression to mean"
                check.confidence_reduction = 0.5
        elif predicted > max_allowed:
            target = (max_allowed + season_average) / 2
            check.adjusted_value = predicted - (predicted - target) * REGRESSION_FACTOR
            check.is_adjusted = True
            check.reason = f"Score above {SCORING_CEILING_PCT:.0%} of season average, applied regression"
            check.confidence_reduction = 0.2

        if predicted < 0:
            check.adjusted_value = max(check.adjusted_value, NEGATIVE_SCORE_FLOOR)
            check.is_adjusted = True
            check.reason = check.reason or "Negative score not allowed"
            check.confidence_reduction = max(check.confidence_reduction, 0.2)

        check.adjusted_value = float(round(check.adjusted_value))
        return check

    def validate_statistic(self, predicted: float, team_average: float, category: str) -> PredictionCheck:
        check = PredictionCheck(original_value=predicted, adjusted_value=predicted)

        if team_average > 0:
            ratio = abs(predicted - team_average) / team_average
            if ratio > TEAM_DEVIATION_RATIO:
                target = (predicted + team_average) / 2
                check.adjusted_value = predicted + (target - predicted) * REGRESSION_FACTOR
                check.is_adjusted = True
                check.reason = f"Excessive deviation from team average ({ratio:.2f}x)"
                check.confidence_reduction = 0.3

        pattern = self.patterns.get(category)
        if pattern is not None and pattern.standard_deviation > 0:
            n_sd = abs(predicted - pattern.average_value) / pattern.standard_deviation
            if n_sd > HISTORICAL_SD_THRESHOLD:
                direction = 1.0 if predicted > pattern.average_value else -1.0
                target = pattern.average_value + direction * pattern.standard_deviation * 2.5
                check.adjusted_value = predicted + (target - predicted) * REGRESSION_FACTOR
                check.is_adjusted = True
                check.reason = check.reason or f"Implausible vs historical patterns ({n_sd:.1f} std devs)"
                check.confidence_reduction = max(check.confidence_reduction, 0.4)

        check.adjusted_value = round(check.adjusted_value, 1)
        return check

    def validate_game_prediction(
        self,
        home_score: float,
        away_score: float,
        home_stats: dict[str, float],
        away_stats: dict[str, float],
        home_profile: TeamEfficiencyProfile,
        away_profile: TeamEfficiencyProfile,
    ) -> BoundaryValidationResult:
        """Validate a composed game prediction.

        Args:
            home_score: Predicted home score
            away_score: Predicted away score
            home_stats: Predicted home stat line keyed by prediction category
            away_stats: Predicted away stat line keyed by prediction category
            home_profile: Home team profile (season averages, confidence)
            away_profile: Away team profile

        Returns:
            BoundaryValidationResult with per-value checks and overall reduction
        """
        flags = []
        home_check = self.validate_score(home_score, home_profile)
        away_check = self.validate_score(away_score, away_profile)
        if home_check.is_adjusted:
            flags.append(f"Home team scoring: {home_check.reason}")
        if away_check.is_adjusted:
            flags.append(f"Away team scoring: {away_check.reason}")

        team_checks = {}
        for side, stats, profile in (("home", home_stats, home_profile), ("away", away_stats, away_profile)):
            checks = {
                cat: self.validate_statistic(stats[cat], self.team_average(profile, cat), cat)
                for cat in STAT_CATEGORIES
                if cat in stats
            }
            for cat, c in checks.items():
                if c.is_adjusted:
                    flags.append(f"{side} team {cat}: {c.reason}")
            team_checks[side] = checks

        result = BoundaryValidationResult(
            home_score=home_check,
            away_score=away_check,
            home_stats=team_checks["home"],
            away_stats=team_checks["away"],
            overall_confidence_reduction=0.0,
            validation_flags=flags,
        )
        result.overall_confidence_reduction = overall_confidence_reduction(result.all_checks())
        if flags:
            logger.debug(f"Boundary validation flags: {flags}")
        return result
