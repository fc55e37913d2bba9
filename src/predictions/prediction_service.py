"""Game predictions from season efficiency profiles.

Pipeline for one game:

    1. Look up both teams' (shrunk) efficiency profiles for the season
    2. Compose the opponent-relative matchup with the current weight set
    3. Run the boundary validator over the composed scores and stat lines
    4. Derive win probability, spread, total and an overall confidence

Win probability (home team, percent):

    wp = 50 + (home - away) * 3.5 * confidence_multiplier * r2_multiplier
    confidence_multiplier: High 1.0, Medium 0.85, Low 0.7
    r2_multiplier = clamp(model_r_squared + 0.3, 0.5, 1.0)
    clamped to [5, 95]
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

import numpy as np

from config.settings import Settings
from src.models.profiles import ConfidenceLevel, ProfileProvider, TeamEfficiencyProfile
from src.models.weight_calibrator import EnhancedStatisticalAnalysis
from src.models.weights import WeightManager, WeightSet
from src.predictions.boundary_validator import STAT_CATEGORIES, BoundaryValidationResult, BoundaryValidator
from src.predictions.matchup_composer import OpponentRelativeComposer, OpponentRelativeMatchupAnalysis

logger = logging.getLogger(__name__)

POINTS_PER_PROBABILITY = 3.5
WIN_PROBABILITY_BOUNDS = (5.0, 95.0)
CONFIDENCE_BOUNDS = (20.0, 95.0)

CONFIDENCE_MULTIPLIERS = {
    ConfidenceLevel.HIGH: 1.0,
    ConfidenceLevel.MEDIUM: 0.85,
    ConfidenceLevel.LOW: 0.7,
}

BASE_CONFIDENCE = {
    ConfidenceLevel.HIGH: 85.0,
    ConfidenceLevel.MEDIUM: 70.0,
    ConfidenceLevel.LOW: 50.0,
}

ADEQUATE_COMBINED_GAMES = 8
RECENT_WEIGHT_UPDATE = timedelta(days=7)
RECENT_UPDATE_MIN_R_SQUARED = 0.6
RECENT_UPDATE_BOOST = 10.0

# (label, prediction category, weight key) used for key matchups
MATCHUP_CATEGORIES = (
    ("Passing Game", "passing_yards", "passing_offense"),
    ("Rushing Attack", "rushing_yards", "rushing_offense"),
    ("Scoring Efficiency", "scoring", "scoring_efficiency"),
    ("Turnover Battle", "turnovers", "turnover_margin"),
)
MIN_MATCHUP_ADVANTAGE = 2.0
MIN_WEIGHTED_ADVANTAGE = 0.5

# Categories reported in the calculation breakdown, keyed by weight category
BREAKDOWN_CATEGORIES = {
    "scoring": "scoring_efficiency",
    "passing_yards": "passing_offense",
    "rushing_yards": "rushing_offense",
    "turnovers": "turnover_margin",
}


@dataclass
class PredictionResult:
    """A single game prediction with its full derivation."""

    home_team_id: int
    away_team_id: int
    season: int
    expected_home_score: float
    expected_away_score: float
    spread: float  # Positive means home team favored
    total: float
    win_probability: float  # Home team, 0-100
    confidence: float  # 0-100
    home_interval: tuple[float, float]
    away_interval: tuple[float, float]
    model_r_squared: float
    sample_size_adequate: bool
    key_matchups: list[str]
    calculation_breakdown: dict
    analysis: OpponentRelativeMatchupAnalysis
    boundary_validation: BoundaryValidationResult
    weights_used: WeightSet
    game_id: Optional[int] = None
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def predicted_winner(self) -> int:
        return self.home_team_id if self.expected_home_score >= self.expected_away_score else self.away_team_id

    @property
    def reliability(self) -> ConfidenceLevel:
        return self.analysis.confidence_level

    def to_dict(self) -> dict:
        return {
            "game_id": self.game_id,
            "season": self.season,
            "home_team_id": self.home_team_id,
            "away_team_id": self.away_team_id,
            "expected_home_score": self.expected_home_score,
            "expected_away_score": self.expected_away_score,
            "spread": self.spread,
            "total": self.total,
            "win_probability": self.win_probability,
            "confidence": self.confidence,
            "home_interval": list(self.home_interval),
            "away_interval": list(self.away_interval),
            "model_r_squared": self.model_r_squared,
            "reliability": self.reliability.value,
            "sample_size_adequate": self.sample_size_adequate,
            "key_matchups": list(self.key_matchups),
            "calculation_breakdown": self.calculation_breakdown,
            "validation_flags": list(self.boundary_validation.validation_flags),
            "weights_used": self.weights_used.to_dict(),
        }

    def __repr__(self) -> str:
        return (
            f"PredictionResult({self.home_team_id} vs {self.away_team_id}: "
            f"{self.expected_home_score:.0f}-{self.expected_away_score:.0f}, "
            f"wp={self.win_probability:.0f}%, conf={self.confidence:.0f})"
        )


def calculate_win_probability(
    score_difference: float,
    confidence_level: ConfidenceLevel,
    model_r_squared: float,
) -> float:
    """Home win probability in percent from the predicted score difference."""
    r2_multiplier = float(np.clip(model_r_squared + 0.3, 0.5, 1.0))
    shift = score_difference * POINTS_PER_PROBABILITY * CONFIDENCE_MULTIPLIERS[confidence_level] * r2_multiplier
    return float(np.clip(50.0 + shift, *WIN_PROBABILITY_BOUNDS))


def calculate_prediction_confidence(
    confidence_level: ConfidenceLevel,
    model_r_squared: float,
    confidence_reduction: float,
    home: TeamEfficiencyProfile,
    away: TeamEfficiencyProfile,
    recently_updated: bool = False,
) -> float:
    """Overall prediction confidence on a 0-100 scale, clamped to [20, 95].

    Args:
        confidence_level: Matchup confidence level from the composer
        model_r_squared: Regression R^2 backing the weights (adds up to 20)
        confidence_reduction: Boundary validator's overall reduction (0-0.8)
        home: Home team profile
        away: Away team profile
        recently_updated: Weights came from a regression update in the last week

    Returns:
        Confidence score
    """
    confidence = BASE_CONFIDENCE[confidence_level]
    confidence += model_r_squared * 20
    confidence -= confidence_reduction * 30

    combined = home.games_played + away.games_played
    average = combined / 2
    if combined < ADEQUATE_COMBINED_GAMES:
        confidence -= 20
    elif average < 4:
        confidence -= 15
    elif average < 6:
        confidence -= 8

    convergence = (home.convergence_score + away.convergence_score) / 2
    confidence += (convergence - 0.5) * 20

    if recently_updated and model_r_squared > RECENT_UPDATE_MIN_R_SQUARED:
        confidence += RECENT_UPDATE_BOOST

    return float(np.clip(confidence, *CONFIDENCE_BOUNDS))


def key_matchups(
    analysis: OpponentRelativeMatchupAnalysis,
    home_name: str,
    away_name: str,
) -> list[str]:
    """Top three weighted category advantages as readable strings.

    Advantages below 2 points, or whose weighted impact is below 0.5, are left
    out. A closing line describes the backing model.
    """
    weights = analysis.weights_used
    candidates = []
    for label, category, weight_key in MATCHUP_CATEGORIES:
        advantage = (
            analysis.home_predictions[category].team_offensive_efficiency
            - analysis.away_predictions[category].team_offensive_efficiency
        )
        candidates.append((label, advantage, weights.get(weight_key)))
    candidates.sort(key=lambda c: abs(c[1] * c[2]), reverse=True)

    matchups = []
    for label, advantage, weight in candidates[:3]:
        size = abs(advantage)
        if size <= MIN_MATCHUP_ADVANTAGE or size * weight <= MIN_WEIGHTED_ADVANTAGE:
            continue
        favored = home_name if advantage > 0 else away_name
        level = "significant" if size > 10 else "moderate" if size > 5 else "slight"
        matchups.append(f"{label}: {favored} averages {size:.1f} points better ({level} advantage)")

    if analysis.statistically_significant:
        matchups.append(
            f"Predictions based on statistically significant model (R² = {analysis.model_r_squared:.2f})"
        )
    else:
        matchups.append("Model has limited statistical significance - predictions should be interpreted cautiously")

    if len(matchups) <= 1:
        matchups.append(
            f"Even matchup with {analysis.confidence_level.value.lower()} confidence in the predictions"
        )
    return matchups


def calculation_breakdown(analysis: OpponentRelativeMatchupAnalysis) -> dict:
    """Opponent baselines, weighted efficiency contributions and weights for both teams."""
    weights = analysis.weights_used

    def side(predictions) -> dict:
        used = {cat: weights.get(key) for cat, key in BREAKDOWN_CATEGORIES.items()}
        return {
            "opponent_baseline": predictions["scoring"].opponent_baseline,
            "efficiency_contributions": {
                cat: predictions[cat].team_offensive_efficiency * used[cat] for cat in BREAKDOWN_CATEGORIES
            },
            "weights_used": used,
        }

    return {"home": side(analysis.home_predictions), "away": side(analysis.away_predictions)}


class PredictionService:
    """Generate game predictions from season profiles.

    Profiles are loaded once per season through the injected provider and
    cached; the regression analysis for a season (when supplied) provides the
    model R^2 and significance flag.
    """

    def __init__(
        self,
        profile_provider: ProfileProvider,
        settings: Optional[Settings] = None,
        composer: Optional[OpponentRelativeComposer] = None,
        boundary_validator: Optional[BoundaryValidator] = None,
        weight_manager: Optional[WeightManager] = None,
        analysis: Optional[EnhancedStatisticalAnalysis] = None,
        team_names: Optional[dict[int, str]] = None,
    ):
        self.profile_provider = profile_provider
        self.settings = settings or Settings()
        self.composer = composer or OpponentRelativeComposer(self.settings)
        self.boundary_validator = boundary_validator or BoundaryValidator()
        self.weight_manager = weight_manager or WeightManager(self.settings)
        self.team_names = team_names or {}
        self._analyses: dict[int, EnhancedStatisticalAnalysis] = {}
        self._profiles: dict[int, dict[int, TeamEfficiencyProfile]] = {}
        if analysis is not None:
            self.set_analysis(analysis)

    def set_analysis(self, analysis: EnhancedStatisticalAnalysis) -> None:
        self._analyses[analysis.season] = analysis

    def season_profiles(self, season: int) -> dict[int, TeamEfficiencyProfile]:
        if season not in self._profiles:
            self._profiles[season] = self.profile_provider.calculate_season_efficiencies(season)
            logger.debug(f"Loaded {len(self._profiles[season])} profiles for {season}")
        return self._profiles[season]

    def clear_cache(self) -> None:
        self._profiles.clear()

    def team_profile(self, team_id: int, season: int) -> TeamEfficiencyProfile:
        profiles = self.season_profiles(season)
        if team_id not in profiles:
            raise ValueError(f"No efficiency profile for team {team_id} in {season}")
        return profiles[team_id]

    def team_name(self, team_id: int) -> str:
        return self.team_names.get(team_id, f"Team {team_id}")

    def _model_state(self, season: int) -> tuple[float, bool]:
        analysis = self._analyses.get(season)
        if analysis is None:
            return 0.0, False
        return analysis.overall_model_r_squared, bool(analysis.significant_results)

    def _recently_updated(self, season: int) -> bool:
        history = self.weight_manager.get_weight_history(season, limit=1)
        if not history or history[0].regression_metrics is None:
            return False
        return datetime.now() - history[0].timestamp < RECENT_WEIGHT_UPDATE

    def predict_game(
        self,
        home_id: int,
        away_id: int,
        season: int,
        game_id: Optional[int] = None,
    ) -> PredictionResult:
        """Predict one game.

        Args:
            home_id: Home team ID
            away_id: Away team ID
            season: Season whose profiles and weights to use
            game_id: Optional game ID carried through to the result

        Returns:
            PredictionResult

        Raises:
            ValueError: If either team has no profile for the season, or home_id == away_id
        """
        home = self.team_profile(home_id, season)
        away = self.team_profile(away_id, season)
        weights = self.weight_manager.get_current_weights(season)
        r_squared, significant = self._model_state(season)

        analysis = self.composer.calculate_matchup_analysis(
            home,
            away,
            weights=weights,
            model_r_squared=r_squared,
            statistically_significant=significant,
        )

        home_stats = {c: analysis.home_predictions[c].predicted_value for c in STAT_CATEGORIES}
        away_stats = {c: analysis.away_predictions[c].predicted_value for c in STAT_CATEGORIES}
        validation = self.boundary_validator.validate_game_prediction(
            analysis.final_predictions.home_score,
            analysis.final_predictions.away_score,
            home_stats,
            away_stats,
            home,
            away,
        )

        home_score = validation.home_score.adjusted_value
        away_score = validation.away_score.adjusted_value
        win_probability = calculate_win_probability(home_score - away_score, analysis.confidence_level, r_squared)
        confidence = calculate_prediction_confidence(
            analysis.confidence_level,
            r_squared,
            validation.overall_confidence_reduction,
            home,
            away,
            recently_updated=self._recently_updated(season),
        )

        result = PredictionResult(
            home_team_id=home_id,
            away_team_id=away_id,
            season=season,
            expected_home_score=home_score,
            expected_away_score=away_score,
            spread=home_score - away_score,
            total=home_score + away_score,
            win_probability=round(win_probability, 1),
            confidence=round(confidence, 1),
            home_interval=analysis.final_predictions.home_interval,
            away_interval=analysis.final_predictions.away_interval,
            model_r_squared=r_squared,
            sample_size_adequate=home.games_played + away.games_played >= ADEQUATE_COMBINED_GAMES,
            key_matchups=key_matchups(analysis, self.team_name(home_id), self.team_name(away_id)),
            calculation_breakdown=calculation_breakdown(analysis),
            analysis=analysis,
            boundary_validation=validation,
            weights_used=weights,
            game_id=game_id,
        )
        logger.debug(f"Predicted {result}")
        return result

    def predict_games(self, matchups: list[tuple[int, int]], season: int) -> list[PredictionResult]:
        """Predict a list of (home_id, away_id) pairs for one season."""
        return [self.predict_game(home_id, away_id, season) for home_id, away_id in matchups]
