"""Opponent-relative matchup composition.

For every predicted category a team's expected value starts from what its
specific opponent typically allows (or produces), never a league-wide constant:

    predicted = opponent_baseline + direction * (team_efficiency - opponent_efficiency)

direction is +1 where more is better for the team (yards, points, field goals)
and -1 where more is worse (turnovers committed, sacks allowed).

Every category prediction passes bounds validation before it feeds the score:

    | Category kind | Max deviation from opponent baseline |
    |---------------|--------------------------------------|
    | scoring       | 35 points                            |
    | everything    | 200 (yards / counts)                 |

Violations are clamped to baseline +/- cap and flagged ``is_valid=False`` with a
reason; non-negative categories are floored at 0. Re-validating a clamped value
returns it unchanged.

Final score (fixed blend, configurable in Settings):

    score = scoring * 0.95 + turnovers * (-2) * 0.03 + field_goals * 3 * 0.02
            (+ home field advantage for the home team), floored at 0
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from config.categories import PREDICTION_CATEGORIES, PredictionCategory
from config.settings import Settings
from src.models.profiles import ConfidenceLevel, TeamEfficiencyProfile
from src.models.weights import WeightSet

logger = logging.getLogger(__name__)

CATEGORY_INTERVAL_FACTOR = 0.2
SCORE_INTERVAL_FACTOR = 0.15
BOUNDS_TOLERANCE = 1e-9
SACK_WEIGHT = 0.1

CONFIDENCE_SCORES = {
    ConfidenceLevel.HIGH: 1.0,
    ConfidenceLevel.MEDIUM: 0.7,
    ConfidenceLevel.LOW: 0.4,
}

# Prediction category -> weight keys summed for the weight it carries
CATEGORY_WEIGHT_KEYS: dict[str, tuple[str, ...]] = {
    "total_yards": ("passing_offense", "rushing_offense"),
    "passing_yards": ("passing_offense",),
    "rushing_yards": ("rushing_offense",),
    "scoring": ("scoring_efficiency",),
    "turnovers": ("turnover_margin",),
    "sacks": (),
    "field_goals": ("special_teams",),
}


@dataclass
class BoundsValidation:
    """Outcome of checking one predicted value against its opponent baseline."""

    is_valid: bool
    adjusted_value: float
    reason: Optional[str] = None


@dataclass
class CategoryPrediction:
    """One team's prediction in one category."""

    category: str
    opponent_baseline: float
    team_offensive_efficiency: float
    opponent_defensive_efficiency: float
    raw_value: float
    predicted_value: float
    weight_applied: float
    confidence_interval: tuple[float, float]
    bounds: BoundsValidation

    @property
    def was_adjusted(self) -> bool:
        return not self.bounds.is_valid


@dataclass
class FinalScorePrediction:
    home_score: float
    away_score: float
    home_interval: tuple[float, float]
    away_interval: tuple[float, float]


@dataclass
class OpponentRelativeMatchupAnalysis:
    """Full composed matchup."""

    home_team_id: int
    away_team_id: int
    season: int
    home_predictions: dict[str, CategoryPrediction]
    away_predictions: dict[str, CategoryPrediction]
    final_predictions: FinalScorePrediction
    weights_used: WeightSet
    model_r_squared: float
    statistically_significant: bool
    confidence_level: ConfidenceLevel
    bounds_violations: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.bounds_violations

    def __repr__(self) -> str:
        f = self.final_predictions
        return (
            f"OpponentRelativeMatchupAnalysis({self.home_team_id} vs {self.away_team_id}, "
            f"{f.home_score:.1f}-{f.away_score:.1f}, conf={self.confidence_level.value}, "
            f"violations={len(self.bounds_violations)})"
        )


def validate_prediction_bounds(
    value: float,
    baseline: float,
    category: str,
    settings: Optional[Settings] = None,
) -> BoundsValidation:
    """Clamp a predicted value to a sane distance from its opponent baseline.

    Args:
        value: Predicted value
        baseline: Opponent baseline the prediction was built on
        category: Prediction category name (see config.categories.PREDICTION_CATEGORIES)
        settings: Supplies the deviation caps

    Returns:
        BoundsValidation; ``is_valid`` is False when anything was adjusted
    """
    settings = settings or Settings()
    definition = PREDICTION_CATEGORIES.get(category)
    if definition is None:
        raise ValueError(f"Unknown prediction category: {category}")

    cap = settings.scoring_deviation_cap if definition.cap_kind == "scoring" else settings.yardage_deviation_cap
    adjusted = value
    reasons = []

    if abs(value - baseline) > cap + BOUNDS_TOLERANCE:
        adjusted = baseline + cap if value > baseline else baseline - cap
        reasons.append(
            f"Prediction exceeded reasonable bounds relative to opponent "
            f"({value:.1f} vs baseline {baseline:.1f}, max deviation {cap:.0f}); "
            f"clamped to {adjusted:.1f}"
        )

    if definition.non_negative and adjusted < 0:
        adjusted = 0.0
        reasons.append(f"Negative {category} prediction floored at 0")

    if reasons:
        return BoundsValidation(is_valid=False, adjusted_value=adjusted, reason="; ".join(reasons))
    return BoundsValidation(is_valid=True, adjusted_value=value)


def matchup_confidence(home: TeamEfficiencyProfile, away: TeamEfficiencyProfile) -> ConfidenceLevel:
    """Lower team confidence averaged with mean convergence, bucketed at 0.8 / 0.6."""
    lowest = min(CONFIDENCE_SCORES[home.confidence_level], CONFIDENCE_SCORES[away.confidence_level])
    convergence = (home.convergence_score + away.convergence_score) / 2
    overall = (lowest + convergence) / 2
    if overall >= 0.8:
        return ConfidenceLevel.HIGH
    if overall >= 0.6:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


class OpponentRelativeComposer:
    """Compose two team profiles into per-category and final score predictions."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()

    @staticmethod
    def opponent_baseline(opponent: TeamEfficiencyProfile, definition: PredictionCategory) -> float:
        """What this opponent typically allows/produces in a category, with a fallback."""
        source = opponent.averages_allowed if definition.baseline_source == "allowed" else opponent.averages_produced
        value = source.get(definition.stat)
        return float(value) if value is not None else definition.fallback_baseline

    @staticmethod
    def category_weight(weights: WeightSet, category: str) -> float:
        keys = CATEGORY_WEIGHT_KEYS[category]
        if not keys:
            return SACK_WEIGHT
        return sum(weights.get(k) for k in keys)

    def predict_category(
        self,
        team: TeamEfficiencyProfile,
        opponent: TeamEfficiencyProfile,
        category: str,
        weights: WeightSet,
    ) -> CategoryPrediction:
        definition = PREDICTION_CATEGORIES[category]
        baseline = self.opponent_baseline(opponent, definition)
        team_eff = team.get(definition.team_category)
        opp_eff = opponent.get(definition.opponent_category) if definition.opponent_category else 0.0

        direction = 1.0 if definition.more_is_better else -1.0
        raw = baseline + direction * (team_eff - opp_eff)
        bounds = validate_prediction_bounds(raw, baseline, category, self.settings)
        value = bounds.adjusted_value

        spread = abs(team_eff + opp_eff) * CATEGORY_INTERVAL_FACTOR
        return CategoryPrediction(
            category=category,
            opponent_baseline=baseline,
            team_offensive_efficiency=team_eff,
            opponent_defensive_efficiency=opp_eff,
            raw_value=raw,
            predicted_value=value,
            weight_applied=self.category_weight(weights, category),
            confidence_interval=(value - spread, value + spread),
            bounds=bounds,
        )

    def predict_team(
        self,
        team: TeamEfficiencyProfile,
        opponent: TeamEfficiencyProfile,
        weights: WeightSet,
    ) -> dict[str, CategoryPrediction]:
        return {c: self.predict_category(team, opponent, c, weights) for c in PREDICTION_CATEGORIES}

    def compose_score(self, predictions: dict[str, CategoryPrediction], is_home: bool) -> float:
        s = self.settings
        score = (
            predictions["scoring"].predicted_value * s.scoring_blend_weight
            + predictions["turnovers"].predicted_value * (-s.turnover_point_value) * s.turnover_blend_weight
            + predictions["field_goals"].predicted_value * s.field_goal_point_value * s.field_goal_blend_weight
        )
        if is_home:
            score += s.home_field_advantage
        return score

    @staticmethod
    def score_interval(score: float) -> tuple[float, float]:
        spread = abs(score * SCORE_INTERVAL_FACTOR)
        return (max(0.0, score - spread), score + spread)

    def calculate_matchup_analysis(
        self,
        home: TeamEfficiencyProfile,
        away: TeamEfficiencyProfile,
        weights: Optional[WeightSet] = None,
        model_r_squared: float = 0.0,
        statistically_significant: bool = False,
    ) -> OpponentRelativeMatchupAnalysis:
        """Compose a full matchup.

        Args:
            home: Home team profile
            away: Away team profile
            weights: Category weights (fallback weights when None)
            model_r_squared: Overall regression R^2 backing the weights
            statistically_significant: Whether the regression model was significant

        Returns:
            OpponentRelativeMatchupAnalysis
        """
        if home.team_id == away.team_id:
            raise ValueError(f"Team {home.team_id} cannot play itself")
        weights = weights or WeightSet.fallback(home.season)

        home_preds = self.predict_team(home, away, weights)
        away_preds = self.predict_team(away, home, weights)

        violations = []
        for side, preds in (("home", home_preds), ("away", away_preds)):
            for name, p in preds.items():
                if p.was_adjusted:
                    violations.append(f"{side} {name}: {p.bounds.reason}")
        if violations:
            logger.debug(f"{home.team_id} vs {away.team_id}: {len(violations)} bounds adjustments")

        home_score = self.compose_score(home_preds, is_home=True)
        away_score = self.compose_score(away_preds, is_home=False)
        final = FinalScorePrediction(
            home_score=max(0.0, home_score),
            away_score=max(0.0, away_score),
            home_interval=self.score_interval(home_score),
            away_interval=self.score_interval(away_score),
        )

        return OpponentRelativeMatchupAnalysis(
            home_team_id=home.team_id,
            away_team_id=away.team_id,
            season=home.season,
            home_predictions=home_preds,
            away_predictions=away_preds,
            final_predictions=final,
            weights_used=weights,
            model_r_squared=model_r_squared,
            statistically_significant=statistically_significant,
            confidence_level=matchup_confidence(home, away),
            bounds_violations=violations,
        )
