"""Category weight sets and their change history.

A WeightSet maps prediction categories to non-negative weights. The manager
keeps one current set per season plus an append-only log of every change
(who, why, before/after), so a prediction can always be traced back to the
weights it used.

Validation rules for any update:
    - NaN or infinite component   -> rejected
    - negative component          -> rejected
    - all components zero         -> rejected
    - component above 2.0         -> accepted with a warning
    - sum outside [0.5, 3.0]      -> rescaled to sum 1.5, with a warning
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from config.categories import FALLBACK_WEIGHTS
from config.settings import Settings

logger = logging.getLogger(__name__)

WEIGHT_SUM_RANGE = (0.5, 3.0)
NORMALIZED_WEIGHT_SUM = 1.5
DEFENSE_WEIGHT_RATIO = 0.8  # Defensive weights run slightly below offensive
HOME_FIELD_WEIGHT = 0.10

# Regression metric -> (weight categories it drives, boost when r^2 > 0.6)
REGRESSION_WEIGHT_TARGETS: dict[str, tuple[tuple[str, ...], float]] = {
    "scoring": (("scoring_efficiency",), 1.3),
    "passing_yards": (("passing_offense", "passing_defense"), 1.2),
    "rushing_yards": (("rushing_offense", "rushing_defense"), 1.2),
    "turnovers": (("turnover_margin",), 1.3),
}


@dataclass
class WeightSet:
    """Category -> weight mapping for one season."""

    weights: dict[str, float]
    season: Optional[int] = None
    source: str = "fallback"  # "fallback", "regression", "manual", "optimal"

    def get(self, category: str, default: float = 0.0) -> float:
        return self.weights.get(category, default)

    @property
    def total(self) -> float:
        return float(sum(self.weights.values()))

    def normalized(self, target: float = 1.0) -> "WeightSet":
        total = self.total
        if total == 0:
            raise ValueError("Cannot normalize weights: total weight sum is zero")
        return WeightSet(
            weights={k: v / total * target for k, v in self.weights.items()},
            season=self.season,
            source=self.source,
        )

    def to_dict(self) -> dict[str, float]:
        return dict(self.weights)

    @classmethod
    def fallback(cls, season: Optional[int] = None) -> "WeightSet":
        return cls(weights=dict(FALLBACK_WEIGHTS), season=season, source="fallback")

    def __repr__(self) -> str:
        parts = ", ".join(f"{k}={v:.3f}" for k, v in self.weights.items())
        return f"WeightSet(season={self.season}, source={self.source}, {parts})"


@dataclass
class WeightChangeLog:
    """One entry of the weight audit trail."""

    season: int
    timestamp: datetime
    previous_weights: dict[str, float]
    new_weights: dict[str, float]
    reason: str
    regression_metrics: Optional[dict] = None
    changed_by: Optional[str] = None


@dataclass
class WeightValidation:
    """Result of validating a candidate weight mapping."""

    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    normalized: Optional[dict[str, float]] = None


class WeightManager:
    """Owns the current weight set per season and the change history."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self._current: dict[int, WeightSet] = {}
        self._history: list[WeightChangeLog] = []

    def get_current_weights(self, season: int) -> WeightSet:
        """Current weights for a season (fallback weights when none were set)."""
        if season not in self._current:
            return WeightSet.fallback(season)
        return self._current[season]

    def get_weight_history(self, season: Optional[int] = None, limit: int = 50) -> list[WeightChangeLog]:
        """Weight changes, newest first."""
        entries = [e for e in self._history if season is None or e.season == season]
        return list(reversed(entries))[:limit]

    def validate_weights(self, weights: dict[str, float]) -> WeightValidation:
        """Check a candidate mapping against the weight rules.

        Args:
            weights: Category -> weight

        Returns:
            WeightValidation; ``normalized`` is set when the sum had to be rescaled
        """
        errors = []
        warnings = []

        for key, value in weights.items():
            if value is None or not math.isfinite(value):
                errors.append(f"Invalid {key}: must be a finite number, got {value}")
            elif value < 0:
                errors.append(f"Negative weight not allowed: {key} = {value}")
        if errors:
            return WeightValidation(is_valid=False, errors=errors)

        ceiling = self.settings.weight_warning_ceiling
        for key, value in weights.items():
            if value > ceiling:
                warnings.append(f"Unusually high weight: {key} = {value}")

        total = sum(weights.values())
        if total == 0:
            errors.append("Total weight sum cannot be zero")
            return WeightValidation(is_valid=False, errors=errors, warnings=warnings)

        normalized = None
        low, high = WEIGHT_SUM_RANGE
        if total < low or total > high:
            warnings.append(f"Total weight sum ({total:.3f}) is outside normal range, normalizing")
            normalized = {k: v / total * NORMALIZED_WEIGHT_SUM for k, v in weights.items()}

        for w in warnings:
            logger.warning(w)
        return WeightValidation(is_valid=True, errors=errors, warnings=warnings, normalized=normalized)

    def _apply(
        self,
        season: int,
        weights: dict[str, float],
        reason: str,
        source: str,
        changed_by: Optional[str],
        regression_metrics: Optional[dict] = None,
    ) -> WeightChangeLog:
        validation = self.validate_weights(weights)
        if not validation.is_valid:
            raise ValueError(f"Invalid weights: {', '.join(validation.errors)}")
        final = validation.normalized or dict(weights)

        previous = self.get_current_weights(season).to_dict()
        entry = WeightChangeLog(
            season=season,
            timestamp=datetime.now(),
            previous_weights=previous,
            new_weights=final,
            reason=reason,
            regression_metrics=regression_metrics,
            changed_by=changed_by,
        )
        self._history.append(entry)
        self._current[season] = WeightSet(weights=final, season=season, source=source)
        logger.info(f"Weights updated for {season}: {reason}")
        return entry

    def update_weights_manually(
        self,
        season: int,
        weights: dict[str, float],
        reason: str,
        changed_by: Optional[str] = None,
    ) -> WeightChangeLog:
        """Override some or all weights by hand.

        Categories not named keep their current value.

        Raises:
            ValueError: If the resulting weights fail validation
        """
        merged = self.get_current_weights(season).to_dict()
        merged.update(weights)
        return self._apply(season, merged, f"manual_override: {reason}", "manual", changed_by)

    def weights_from_regression(self, analysis) -> dict[str, float]:
        """Map an EnhancedStatisticalAnalysis onto weight categories."""
        rec = analysis.recommended_weights
        weights = dict(FALLBACK_WEIGHTS)
        weights["passing_offense"] = rec["passing_yards"]
        weights["rushing_offense"] = rec["rushing_yards"]
        weights["scoring_efficiency"] = rec["scoring"]
        weights["passing_defense"] = rec["passing_yards"] * DEFENSE_WEIGHT_RATIO
        weights["rushing_defense"] = rec["rushing_yards"] * DEFENSE_WEIGHT_RATIO
        weights["turnover_margin"] = rec["turnovers"]
        weights["special_teams"] = rec["special_teams"]
        weights["home_field_advantage"] = HOME_FIELD_WEIGHT

        for result in analysis.regression_results:
            if result.metric not in REGRESSION_WEIGHT_TARGETS:
                continue
            targets, boost = REGRESSION_WEIGHT_TARGETS[result.metric]
            if not result.is_statistically_significant:
                factor = 0.5
            elif result.r_squared > 0.6:
                factor = boost
            else:
                continue
            for key in targets:
                weights[key] *= factor
        return weights

    def update_weights_from_regression(
        self,
        season: int,
        analysis,
        changed_by: str = "system",
    ) -> WeightChangeLog:
        """Derive and store weights from a regression analysis.

        Raises:
            ValueError: If the derived weights fail validation
        """
        weights = self.weights_from_regression(analysis)
        significant = [r.metric for r in analysis.regression_results if r.is_statistically_significant]
        metrics = {
            "overall_r_squared": analysis.overall_model_r_squared,
            "sample_size": analysis.sample_size,
            "significant_metrics": significant,
        }
        reason = (
            f"regression_update: R²={analysis.overall_model_r_squared:.3f}, "
            f"n={analysis.sample_size}, {len(significant)} significant metrics"
        )
        return self._apply(season, weights, reason, "regression", changed_by, metrics)

    def reset_to_fallback_weights(
        self,
        season: int,
        reason: str,
        changed_by: Optional[str] = None,
    ) -> WeightChangeLog:
        logger.info(f"Resetting weights to fallback for {season}: {reason}")
        return self._apply(season, dict(FALLBACK_WEIGHTS), f"fallback_reset: {reason}", "fallback", changed_by)
