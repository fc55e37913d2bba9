"""Audit of the category weights the prediction service runs on.

Five checks per season:

    - derivation: regression-sourced weights equal what the weight manager
      derives from the season's analysis (after any sum rescaling)
    - bounds: every component finite and within [0, 2.0], sum within [0.5, 3.0]
    - application: a reference matchup through the composer carries each
      category's weight and breakdown contributions equal efficiency x weight
    - history: every change has a reason, a timestamp not in the future and a
      previous snapshot, and the entries chain (each previous_weights equals
      the prior entry's new_weights, the first starts from the fallback set,
      the last equals the current set)
    - fallback: a fresh manager resets a season to the fallback set and logs it

    | Finding                        | Severity |
    |--------------------------------|----------|
    | derivation mismatch            | high     |
    | application mismatch           | high     |
    | fallback reset broken          | high     |
    | weight out of bounds / bad sum | medium   |
    | broken history chain           | medium   |
    | no history / dominant weight   | warning  |
"""

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from config.categories import FALLBACK_WEIGHTS
from config.settings import Settings
from src.models.profiles import ConfidenceLevel, TeamEfficiencyProfile
from src.models.weight_calibrator import EnhancedStatisticalAnalysis
from src.models.weights import WEIGHT_SUM_RANGE, WeightChangeLog, WeightManager, WeightSet
from src.predictions.matchup_composer import CATEGORY_WEIGHT_KEYS, SACK_WEIGHT, OpponentRelativeComposer
from src.predictions.prediction_service import BREAKDOWN_CATEGORIES, calculation_breakdown
from src.validation.core import AuditLog, AuditResult, BaseAuditor, Severity

logger = logging.getLogger(__name__)

WEIGHT_TOLERANCE = 0.01
CONTRIBUTION_TOLERANCE = 1e-3
DOMINANT_WEIGHT = 0.5
REASON_PREFIXES = ("regression_update", "manual_override", "fallback_reset")
MAX_HISTORY_CHECKED = 10_000
REFERENCE_TEAM_IDS = (-1, -2)

# Reference matchup efficiencies for the application check
REFERENCE_HOME = {
    "passing_offense": 5.2,
    "rushing_offense": 3.8,
    "scoring_offense": 7.1,
    "passing_defense": -2.3,
    "rushing_defense": -1.8,
    "turnover_offense": 4.2,
    "field_goal": 1.5,
}
REFERENCE_AWAY = {
    "passing_offense": 2.8,
    "rushing_offense": 4.1,
    "scoring_offense": 3.9,
    "passing_defense": -4.1,
    "rushing_defense": -3.2,
    "turnover_offense": -1.8,
    "field_goal": -0.8,
}


def weights_match(a: dict[str, float], b: dict[str, float], tolerance: float = WEIGHT_TOLERANCE) -> bool:
    """Same categories, every component within tolerance."""
    if set(a) != set(b):
        return False
    return all(abs(a[k] - b[k]) <= tolerance for k in a)


@dataclass
class WeightDerivationResult:
    is_correct: bool
    derivation_method: str
    expected_weights: dict[str, float] = field(default_factory=dict)
    current_weights: dict[str, float] = field(default_factory=dict)
    mismatched_categories: list[str] = field(default_factory=list)
    significance_considered: bool = False


@dataclass
class WeightBoundsResult:
    all_within_bounds: bool
    bounds: tuple[float, float]
    out_of_bounds: dict[str, float] = field(default_factory=dict)
    total: float = 0.0
    sum_valid: bool = True
    dominant: list[str] = field(default_factory=list)


@dataclass
class WeightUsage:
    category: str
    weight: float
    expected_weight: float
    is_correct: bool


@dataclass
class WeightApplicationResult:
    correctly_applied: bool
    usage: list[WeightUsage] = field(default_factory=list)
    calculation_steps: list[str] = field(default_factory=list)


@dataclass
class WeightHistoryResult:
    has_complete_history: bool
    change_count: int = 0
    last_change: Optional[datetime] = None
    audit_trail_complete: bool = True
    issues: list[str] = field(default_factory=list)
    reason_counts: dict[str, int] = field(default_factory=dict)


@dataclass
class WeightVerificationResult(AuditResult):
    """Weight audit report."""

    derivation: Optional[WeightDerivationResult] = None
    bounds: Optional[WeightBoundsResult] = None
    application: Optional[WeightApplicationResult] = None
    history: Optional[WeightHistoryResult] = None
    fallback_working: bool = True

    def __repr__(self) -> str:
        return (
            f"WeightVerificationResult(valid={self.is_valid}, score={self.score:.0f}, "
            f"errors={len(self.errors)}, warnings={len(self.warnings)})"
        )


class WeightVerifier(BaseAuditor):
    """Check that a season's weights were derived, bounded, applied and logged correctly."""

    component = "weight_calculation"

    def __init__(
        self,
        weight_manager: WeightManager,
        settings: Optional[Settings] = None,
        audit_log: Optional[AuditLog] = None,
        composer: Optional[OpponentRelativeComposer] = None,
    ):
        super().__init__(settings, audit_log)
        self.weight_manager = weight_manager
        self.composer = composer or OpponentRelativeComposer(self.settings)

    def validate(
        self,
        season: int,
        analysis: Optional[EnhancedStatisticalAnalysis] = None,
    ) -> WeightVerificationResult:
        """Run every weight check for a season.

        Args:
            season: Season whose current weights to audit
            analysis: Regression analysis the weights were derived from, if any

        Returns:
            WeightVerificationResult
        """
        result = WeightVerificationResult(metadata=self.base_metadata(season))
        current = self.weight_manager.get_current_weights(season)
        result.metadata["source"] = current.source

        result.derivation = self.validate_derivation(current, analysis)
        if not result.derivation.is_correct:
            result.add_error(
                "WEIGHT_DERIVATION_INVALID",
                f"Weights do not match their regression derivation: {result.derivation.mismatched_categories}",
                Severity.HIGH,
            )

        result.bounds = self.validate_bounds(current)
        if not result.bounds.all_within_bounds:
            result.add_error(
                "WEIGHT_BOUNDS_INVALID",
                f"Weights outside [0, {self.settings.weight_warning_ceiling}] or sum "
                f"{result.bounds.total:.3f} outside {WEIGHT_SUM_RANGE}",
                Severity.MEDIUM,
                {"out_of_bounds": result.bounds.out_of_bounds},
            )
        for category in result.bounds.dominant:
            result.add_warning(
                "DOMINANT_WEIGHT",
                f"Weight for {category} ({current.get(category):.3f}) may dominate predictions",
            )

        result.application = self.validate_application(current, season)
        if not result.application.correctly_applied:
            result.add_error(
                "WEIGHT_APPLICATION_INVALID",
                "Weights are not applied correctly in the prediction composer",
                Severity.HIGH,
            )

        result.history = self.validate_history(season, current)
        if not result.history.has_complete_history:
            result.add_warning("WEIGHT_HISTORY_INCOMPLETE", f"No weight changes logged for {season}")
        elif not result.history.audit_trail_complete:
            result.add_error(
                "WEIGHT_HISTORY_BROKEN",
                f"Weight change log is inconsistent: {'; '.join(result.history.issues)}",
                Severity.MEDIUM,
            )

        latest = self.weight_manager.get_weight_history(season, limit=1)
        if latest and latest[0].regression_metrics:
            r2 = latest[0].regression_metrics.get("overall_r_squared", 0.0)
            if r2 < self.settings.r_squared_threshold:
                result.add_warning(
                    "LOW_QUALITY_REGRESSION_WEIGHTS",
                    f"Current weights come from a regression with R²={r2:.3f}",
                )

        result.fallback_working = self.validate_fallback(season)
        if not result.fallback_working:
            result.add_error(
                "WEIGHT_FALLBACK_INVALID",
                "Reset to fallback weights does not restore the fallback set",
                Severity.HIGH,
            )

        self.add_recommendations(result)
        self.log_result(result)
        return result

    def validate_derivation(
        self,
        current: WeightSet,
        analysis: Optional[EnhancedStatisticalAnalysis],
    ) -> WeightDerivationResult:
        """Re-derive regression weights and compare with the stored set."""
        if current.source == "fallback":
            return WeightDerivationResult(
                is_correct=weights_match(current.weights, FALLBACK_WEIGHTS),
                derivation_method="fallback",
                expected_weights=dict(FALLBACK_WEIGHTS),
                current_weights=current.to_dict(),
                mismatched_categories=[
                    k for k in FALLBACK_WEIGHTS if abs(current.get(k) - FALLBACK_WEIGHTS[k]) > WEIGHT_TOLERANCE
                ],
            )
        if current.source != "regression":
            # Manual overrides have nothing to re-derive
            return WeightDerivationResult(
                is_correct=True, derivation_method=current.source, current_weights=current.to_dict()
            )
        if analysis is None:
            return WeightDerivationResult(
                is_correct=False,
                derivation_method="regression",
                current_weights=current.to_dict(),
                mismatched_categories=["<no analysis supplied>"],
            )

        derived = self.weight_manager.weights_from_regression(analysis)
        check = self.weight_manager.validate_weights(derived)
        expected = check.normalized or derived
        mismatched = sorted(
            k for k in set(expected) | set(current.weights)
            if abs(expected.get(k, 0.0) - current.get(k)) > WEIGHT_TOLERANCE
        )
        return WeightDerivationResult(
            is_correct=not mismatched,
            derivation_method="regression",
            expected_weights=expected,
            current_weights=current.to_dict(),
            mismatched_categories=mismatched,
            significance_considered=any(r.is_statistically_significant for r in analysis.regression_results),
        )

    def validate_bounds(self, current: WeightSet) -> WeightBoundsResult:
        ceiling = self.settings.weight_warning_ceiling
        out_of_bounds = {
            k: v for k, v in current.weights.items()
            if not math.isfinite(v) or v < 0 or v > ceiling
        }
        total = current.total
        low, high = WEIGHT_SUM_RANGE
        sum_valid = math.isfinite(total) and low <= total <= high
        return WeightBoundsResult(
            all_within_bounds=not out_of_bounds and sum_valid,
            bounds=(0.0, ceiling),
            out_of_bounds=out_of_bounds,
            total=total,
            sum_valid=sum_valid,
            dominant=sorted(k for k, v in current.weights.items() if math.isfinite(v) and v > DOMINANT_WEIGHT),
        )

    def validate_application(self, current: WeightSet, season: int) -> WeightApplicationResult:
        """Push a reference matchup through the composer and check the weights it carries."""
        home_id, away_id = REFERENCE_TEAM_IDS
        home = TeamEfficiencyProfile(
            team_id=home_id, season=season, games_played=10,
            confidence_level=ConfidenceLevel.HIGH, **REFERENCE_HOME,
        )
        away = TeamEfficiencyProfile(
            team_id=away_id, season=season, games_played=10,
            confidence_level=ConfidenceLevel.HIGH, **REFERENCE_AWAY,
        )
        analysis = self.composer.calculate_matchup_analysis(home, away, weights=current)
        result = WeightApplicationResult(correctly_applied=analysis.weights_used is current)

        for category, keys in CATEGORY_WEIGHT_KEYS.items():
            expected = sum(current.get(k) for k in keys) if keys else SACK_WEIGHT
            applied = analysis.home_predictions[category].weight_applied
            ok = math.isfinite(applied) and abs(applied - expected) <= CONTRIBUTION_TOLERANCE
            result.usage.append(WeightUsage(category, applied, expected, ok))
            result.calculation_steps.append(
                f"{category}: applied {applied:.3f}, expected {expected:.3f} [{'VALID' if ok else 'INVALID'}]"
            )
            if not ok:
                result.correctly_applied = False

        breakdown = calculation_breakdown(analysis)
        for side, predictions in (("home", analysis.home_predictions), ("away", analysis.away_predictions)):
            contributions = breakdown[side]["efficiency_contributions"]
            for category, key in BREAKDOWN_CATEGORIES.items():
                expected = predictions[category].team_offensive_efficiency * current.get(key)
                value = contributions[category]
                if not math.isfinite(value) or abs(value - expected) > CONTRIBUTION_TOLERANCE:
                    result.correctly_applied = False
                    result.calculation_steps.append(
                        f"{side} {category}: contribution {value:.3f} != {expected:.3f}"
                    )
        return result

    def validate_history(self, season: int, current: WeightSet) -> WeightHistoryResult:
        """Check every log entry and the chain between consecutive entries."""
        newest_first = self.weight_manager.get_weight_history(season, limit=MAX_HISTORY_CHECKED)
        entries: list[WeightChangeLog] = list(reversed(newest_first))
        if not entries:
            return WeightHistoryResult(has_complete_history=False)

        issues = []
        now = datetime.now()
        for entry in entries:
            prefix = entry.reason.split(":", 1)[0].strip() if entry.reason else ""
            if prefix not in REASON_PREFIXES:
                issues.append(f"Unrecognized change reason: {entry.reason!r}")
            if entry.timestamp > now:
                issues.append(f"Change dated in the future: {entry.timestamp.isoformat()}")
            if not entry.previous_weights:
                issues.append(f"Missing previous weights for change at {entry.timestamp.isoformat()}")
            bad = [k for k, v in entry.new_weights.items() if not math.isfinite(v) or v < 0]
            if bad:
                issues.append(f"Invalid weight values logged: {bad}")
            if prefix == "regression_update" and not entry.regression_metrics:
                issues.append("Regression update logged without regression metrics")

        if entries[0].previous_weights and not weights_match(entries[0].previous_weights, FALLBACK_WEIGHTS):
            issues.append("First logged change does not start from the fallback weights")
        for earlier, later in zip(entries, entries[1:]):
            if not weights_match(later.previous_weights, earlier.new_weights):
                issues.append(
                    f"Sequence break between {earlier.timestamp.isoformat()} and {later.timestamp.isoformat()}"
                )
        if not weights_match(entries[-1].new_weights, current.weights):
            issues.append("Current weights differ from the last logged change")

        reasons = Counter(e.reason.split(":", 1)[0].strip() for e in entries if e.reason)
        return WeightHistoryResult(
            has_complete_history=True,
            change_count=len(entries),
            last_change=entries[-1].timestamp,
            audit_trail_complete=not issues,
            issues=issues,
            reason_counts=dict(reasons),
        )

    def validate_fallback(self, season: int) -> bool:
        """A scratch manager must reset to, and log, the fallback set."""
        scratch = WeightManager(self.settings)
        if not weights_match(scratch.get_current_weights(season).weights, FALLBACK_WEIGHTS):
            return False
        if not scratch.validate_weights(dict(FALLBACK_WEIGHTS)).is_valid:
            return False
        entry = scratch.reset_to_fallback_weights(season, "verification")
        restored = scratch.get_current_weights(season)
        return (
            restored.source == "fallback"
            and weights_match(restored.weights, FALLBACK_WEIGHTS)
            and entry.reason.startswith("fallback_reset")
        )

    @staticmethod
    def add_recommendations(result: WeightVerificationResult) -> None:
        if result.derivation and not result.derivation.is_correct:
            result.add_recommendation("Re-run the regression update so stored weights match their derivation")
        if result.bounds and not result.bounds.all_within_bounds:
            result.add_recommendation("Adjust weights to lie within [0, 2.0] with a sum in the normal range")
        if result.application and not result.application.correctly_applied:
            result.add_recommendation("Verify the composer's category weight mapping")
        if result.history and not result.history.has_complete_history:
            result.add_recommendation("Consider running regression analysis to update weights from recent data")
        if result.history and not result.history.audit_trail_complete:
            result.add_recommendation("Record every weight change through the weight manager")
