"""Prediction accuracy testing against completed games.

Samples a stratified set of a season's completed games, regenerates each
prediction through the live PredictionService, and scores the predictions:

    - win probability: Brier score, log-loss, accuracy, precision/recall/F1, ROC-AUC
    - scores: MAE, RMSE, median absolute error, mean percentage error, per-side bias
    - calibration: 10 equal-width probability bins, ECE / MCE
    - biases: home team, score range, game type, strong favorites
    - reliability: accuracy by confidence bucket and by game type

Overall score (0-100):

    50 + (accuracy - 50) * 0.4 + (0.25 - brier) * 100 + (auc - 0.5) * 40
       + max(-20, (14 - avg_side_mae) * 2) + (calibration - 50) * 0.2
       - 5 per significant bias
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import pandas as pd
from sklearn.metrics import (
    brier_score_loss,
    f1_score,
    log_loss,
    precision_score,
    recall_score,
    roc_auc_score,
)

from config.settings import Settings
from src.data.records import GameRecord, SeasonDataSource
from src.data.validators import InsufficientDataError
from src.predictions.prediction_service import PredictionService
from src.validation.core import AuditLog, AuditResult, BaseAuditor

logger = logging.getLogger(__name__)

MAX_VALID_SCORE = 200
MIN_STRATUM_SHARE = 0.1
PROBABILITY_CLIP = 0.001
CALIBRATION_BINS = 10
SIGNIFICANT_BIAS_LEVEL = 0.05
FAVORITE_MIN_SAMPLE = 5
LOW_SUCCESS_RATE = 0.5

# Game strata for sampling; a game can belong to several
STRATA = {
    "close": lambda df: df["abs_margin"] <= 7,
    "moderate": lambda df: (df["abs_margin"] > 7) & (df["abs_margin"] <= 21),
    "blowout": lambda df: df["abs_margin"] > 21,
    "high_scoring": lambda df: df["total"] > 60,
    "low_scoring": lambda df: df["total"] < 35,
    "home_wins": lambda df: df["home_score"] > df["away_score"],
    "away_wins": lambda df: df["away_score"] > df["home_score"],
}

SCORE_RANGES = (("Low Scoring", 0, 35), ("Medium Scoring", 36, 60), ("High Scoring", 61, MAX_VALID_SCORE * 2))

CONFIDENCE_BUCKETS = ((0, 60), (60, 75), (75, 85), (85, 100))


@dataclass
class WinAccuracyMetrics:
    brier_score: float
    log_loss: float
    accuracy: float  # percent
    precision: float
    recall: float
    f1_score: float
    roc_auc: float


@dataclass
class SideAccuracy:
    mae: float
    rmse: float
    bias: float  # mean(predicted - actual)


@dataclass
class ScoreAccuracyMetrics:
    mean_absolute_error: float  # per game, home and away errors summed
    root_mean_square_error: float
    median_absolute_error: float
    mean_percentage_error: float
    home: SideAccuracy
    away: SideAccuracy

    @property
    def average_side_mae(self) -> float:
        return (self.home.mae + self.away.mae) / 2


@dataclass
class CalibrationBin:
    predicted_probability: float
    actual_probability: float
    sample_size: int


@dataclass
class CalibrationMetrics:
    calibration_score: float
    overconfidence_rate: float
    underconfidence_rate: float
    expected_calibration_error: float
    maximum_calibration_error: float
    curve: list[CalibrationBin] = field(default_factory=list)
    bins: int = CALIBRATION_BINS


@dataclass
class BiasAnalysis:
    """A systematic error pattern found in the test predictions."""

    bias_type: str  # "home_team", "score_range", "game_type", "team_strength"
    description: str
    magnitude: float
    significance: float  # Approximate p-value
    affected_games: int
    examples: list[dict] = field(default_factory=list)

    @property
    def is_significant(self) -> bool:
        return self.significance <= SIGNIFICANT_BIAS_LEVEL


@dataclass
class ReliabilityBucket:
    label: str
    accuracy: float  # percent
    sample_size: int
    reliability: str  # "high", "medium", "low"


@dataclass
class ReliabilityAnalysis:
    overall_reliability: str
    by_confidence: list[ReliabilityBucket] = field(default_factory=list)
    by_game_type: list[ReliabilityBucket] = field(default_factory=list)


@dataclass
class AccuracyTestResult(AuditResult):
    """Accuracy test report."""

    season: Optional[int] = None
    sample_size: int = 0
    failed_predictions: int = 0
    win_accuracy: Optional[WinAccuracyMetrics] = None
    score_accuracy: Optional[ScoreAccuracyMetrics] = None
    calibration: Optional[CalibrationMetrics] = None
    biases: list[BiasAnalysis] = field(default_factory=list)
    reliability: Optional[ReliabilityAnalysis] = None

    @property
    def significant_biases(self) -> list[BiasAnalysis]:
        return [b for b in self.biases if b.is_significant]

    def __repr__(self) -> str:
        acc = f"{self.win_accuracy.accuracy:.1f}%" if self.win_accuracy else "-"
        return (
            f"AccuracyTestResult(season={self.season}, n={self.sample_size}, "
            f"accuracy={acc}, score={self.score:.0f}, valid={self.is_valid})"
        )


def reliability_label(accuracy_pct: float) -> str:
    if accuracy_pct >= 75:
        return "high"
    if accuracy_pct >= 60:
        return "medium"
    return "low"


def games_frame(games: list[GameRecord]) -> pd.DataFrame:
    """Completed games with plausible scores, one row per game."""
    df = pd.DataFrame(
        [
            {
                "game_id": g.game_id,
                "week": g.week,
                "home_team_id": g.home_team_id,
                "away_team_id": g.away_team_id,
                "home_score": float(g.home_score),
                "away_score": float(g.away_score),
            }
            for g in games
            if g.is_complete
        ],
        columns=["game_id", "week", "home_team_id", "away_team_id", "home_score", "away_score"],
    )
    if df.empty:
        return df.assign(abs_margin=pd.Series(dtype=float), total=pd.Series(dtype=float))
    valid = df["home_score"].between(0, MAX_VALID_SCORE) & df["away_score"].between(0, MAX_VALID_SCORE)
    df = df[valid].reset_index(drop=True)
    df["abs_margin"] = (df["home_score"] - df["away_score"]).abs()
    df["total"] = df["home_score"] + df["away_score"]
    return df


def select_diverse_sample(df: pd.DataFrame, target_size: int, rng: np.random.Generator) -> pd.DataFrame:
    """Stratified sample with at least 10% of the target from each stratum where available.

    Args:
        df: Output of games_frame
        target_size: Number of games wanted
        rng: Seeded generator so samples are reproducible

    Returns:
        Sampled rows (all rows when df is no larger than target_size)
    """
    if len(df) <= target_size:
        return df

    per_stratum = max(1, int(target_size * MIN_STRATUM_SHARE))
    chosen: list[int] = []
    taken: set[int] = set()
    for mask_fn in STRATA.values():
        candidates = [i for i in df.index[mask_fn(df).to_numpy()] if i not in taken]
        for i in rng.permutation(candidates)[:per_stratum]:
            chosen.append(int(i))
            taken.add(int(i))

    remaining = [i for i in df.index if i not in taken]
    slots = max(0, target_size - len(chosen))
    chosen.extend(int(i) for i in rng.permutation(remaining)[:slots])
    return df.loc[chosen[:target_size]].reset_index(drop=True)


def win_probability_accuracy(preds: pd.DataFrame) -> WinAccuracyMetrics:
    y_true = preds["home_won"].astype(int).to_numpy()
    prob = (preds["win_probability"] / 100.0).to_numpy()
    clipped = np.clip(prob, PROBABILITY_CLIP, 1 - PROBABILITY_CLIP)
    y_pred = (prob > 0.5).astype(int)

    # ROC-AUC is undefined with a single outcome class
    auc = float(roc_auc_score(y_true, prob)) if len(np.unique(y_true)) > 1 else 0.5
    return WinAccuracyMetrics(
        brier_score=float(brier_score_loss(y_true, prob, pos_label=1)),
        log_loss=float(log_loss(y_true, clipped, labels=[0, 1])),
        accuracy=float((y_pred == y_true).mean() * 100),
        precision=float(precision_score(y_true, y_pred, zero_division=0)),
        recall=float(recall_score(y_true, y_pred, zero_division=0)),
        f1_score=float(f1_score(y_true, y_pred, zero_division=0)),
        roc_auc=auc,
    )


def score_accuracy(preds: pd.DataFrame) -> ScoreAccuracyMetrics:
    home_err = preds["pred_home"] - preds["home_score"]
    away_err = preds["pred_away"] - preds["away_score"]
    total_abs = home_err.abs() + away_err.abs()
    with_points = preds["total"] > 0
    pct = (total_abs[with_points] / preds.loc[with_points, "total"] * 100)

    def side(err: pd.Series) -> SideAccuracy:
        return SideAccuracy(
            mae=float(err.abs().mean()),
            rmse=float(np.sqrt((err ** 2).mean())),
            bias=float(err.mean()),
        )

    squared = np.concatenate([(home_err ** 2).to_numpy(), (away_err ** 2).to_numpy()])
    return ScoreAccuracyMetrics(
        mean_absolute_error=float(total_abs.mean()),
        root_mean_square_error=float(np.sqrt(squared.mean())),
        median_absolute_error=float(total_abs.median()),
        mean_percentage_error=float(pct.mean()) if len(pct) else 0.0,
        home=side(home_err),
        away=side(away_err),
    )


def confidence_calibration(preds: pd.DataFrame, bins: int = CALIBRATION_BINS) -> CalibrationMetrics:
    prob = preds["win_probability"] / 100.0
    outcome = preds["home_won"].astype(float)
    bin_index = np.minimum(bins - 1, np.floor(prob * bins).astype(int))
    grouped = pd.DataFrame({"bin": bin_index, "prob": prob, "outcome": outcome}).groupby("bin")

    n = len(preds)
    total_error = 0.0
    max_error = 0.0
    over = under = 0
    curve = []
    for _, group in grouped:
        predicted = float(group["prob"].mean())
        actual = float(group["outcome"].mean())
        size = len(group)
        error = abs(predicted - actual)
        total_error += error * size
        max_error = max(max_error, error)
        if predicted > actual:
            over += size
        elif predicted < actual:
            under += size
        curve.append(CalibrationBin(predicted, actual, size))

    ece = total_error / n
    return CalibrationMetrics(
        calibration_score=max(0.0, 100 - ece * 200),
        overconfidence_rate=over / n,
        underconfidence_rate=under / n,
        expected_calibration_error=ece,
        maximum_calibration_error=max_error,
        curve=curve,
        bins=bins,
    )


def _examples(rows: pd.DataFrame, limit: int = 3) -> list[dict]:
    cols = ["game_id", "pred_home", "pred_away", "home_score", "away_score", "win_probability"]
    return rows[cols].head(limit).to_dict("records")


def home_team_bias(preds: pd.DataFrame, min_sample: int) -> Optional[BiasAnalysis]:
    n = len(preds)
    if n < min_sample:
        return None
    score_bias = preds["pred_home"] - preds["home_score"]
    avg = float(score_bias.mean())
    win_rate_bias = float(preds["pred_home_win"].mean() - preds["home_won"].mean())

    std_error = float(np.sqrt(score_bias.var(ddof=0) / n))
    t_stat = abs(avg) / (std_error + 0.001)
    significance = 0.05 if t_stat > 2 else 0.1 if t_stat > 1.5 else 0.2

    if abs(avg) <= 2 and abs(win_rate_bias) <= 0.05:
        return None
    outliers = preds[score_bias.abs() > 10]
    return BiasAnalysis(
        bias_type="home_team",
        description=(
            f"Home team scoring bias: {'over' if avg > 0 else 'under'}-predicting by "
            f"{abs(avg):.1f} points on average"
        ),
        magnitude=abs(avg),
        significance=significance,
        affected_games=n,
        examples=_examples(outliers, limit=5),
    )


def score_range_bias(preds: pd.DataFrame, min_sample: int) -> Optional[BiasAnalysis]:
    bias = preds["pred_home"] + preds["pred_away"] - preds["total"]
    worst = None
    for name, low, high in SCORE_RANGES:
        in_range = preds["total"].between(low, high)
        if in_range.sum() < min_sample:
            continue
        avg = float(bias[in_range].mean())
        if worst is None or abs(avg) > abs(worst[1]):
            worst = (name, avg, in_range)

    if worst is None or abs(worst[1]) <= 3:
        return None
    name, avg, in_range = worst
    return BiasAnalysis(
        bias_type="score_range",
        description=(
            f"{name} games: {'over' if avg > 0 else 'under'}-predicting total score by "
            f"{abs(avg):.1f} points on average"
        ),
        magnitude=abs(avg),
        significance=0.05 if abs(avg) > 5 else 0.1,
        affected_games=int(in_range.sum()),
        examples=_examples(preds[in_range]),
    )


def game_type_bias(preds: pd.DataFrame, min_sample: int) -> Optional[BiasAnalysis]:
    margin = preds["abs_margin"]
    types = (
        ("Close Games", margin <= 7),
        ("Blowouts", margin > 21),
        ("Moderate Wins", (margin > 7) & (margin <= 21)),
    )
    worst = None
    for name, mask in types:
        if mask.sum() < min_sample:
            continue
        accuracy = float(preds.loc[mask, "correct"].mean())
        if worst is None or accuracy < worst[1]:
            worst = (name, accuracy, mask)

    if worst is None or worst[1] >= 0.6:
        return None
    name, accuracy, mask = worst
    return BiasAnalysis(
        bias_type="game_type",
        description=f"{name}: poor prediction accuracy ({accuracy * 100:.1f}%)",
        magnitude=1 - accuracy,
        significance=0.05 if accuracy < 0.5 else 0.1,
        affected_games=int(mask.sum()),
        examples=_examples(preds[mask]),
    )


def favorite_bias(preds: pd.DataFrame) -> Optional[BiasAnalysis]:
    strong = preds[(preds["win_probability"] > 75) | (preds["win_probability"] < 25)]
    if len(strong) < FAVORITE_MIN_SAMPLE:
        return None
    accuracy = float(strong["correct"].mean())
    if accuracy >= 0.7:
        return None
    return BiasAnalysis(
        bias_type="team_strength",
        description=f"Strong favorites: lower than expected accuracy ({accuracy * 100:.1f}%)",
        magnitude=0.8 - accuracy,
        significance=0.05 if accuracy < 0.6 else 0.1,
        affected_games=len(strong),
        examples=_examples(strong),
    )


def reliability_analysis(preds: pd.DataFrame) -> ReliabilityAnalysis:
    def bucket(label: str, mask: pd.Series) -> ReliabilityBucket:
        size = int(mask.sum())
        accuracy = float(preds.loc[mask, "correct"].mean() * 100) if size else 0.0
        return ReliabilityBucket(label, accuracy, size, reliability_label(accuracy))

    conf = preds["confidence"]
    by_confidence = [bucket(f"{lo}-{hi}", (conf >= lo) & (conf < hi)) for lo, hi in CONFIDENCE_BUCKETS]

    wp = preds["win_probability"]
    toss_up = wp.between(45, 55)
    clear = (wp > 70) | (wp < 30)
    by_game_type = [
        bucket("Close Games", ~toss_up & ~clear),
        bucket("Clear Favorites", clear),
        bucket("Toss-ups", toss_up),
    ]

    overall = float(preds["correct"].mean() * 100)
    return ReliabilityAnalysis(
        overall_reliability=reliability_label(overall),
        by_confidence=by_confidence,
        by_game_type=by_game_type,
    )


def overall_accuracy_score(
    win: WinAccuracyMetrics,
    scores: ScoreAccuracyMetrics,
    calibration: CalibrationMetrics,
    biases: list[BiasAnalysis],
) -> float:
    score = 50.0
    score += (win.accuracy - 50) * 0.4
    score += (0.25 - win.brier_score) * 100
    score += (win.roc_auc - 0.5) * 40
    score += max(-20.0, (14 - scores.average_side_mae) * 2)
    score += (calibration.calibration_score - 50) * 0.2
    score -= 5 * sum(1 for b in biases if b.is_significant)
    return float(np.clip(round(score), 0, 100))


class AccuracyTester(BaseAuditor):
    """Score live-pipeline predictions against a season's actual results."""

    component = "prediction_accuracy"

    def __init__(
        self,
        data_source: SeasonDataSource,
        prediction_service: PredictionService,
        settings: Optional[Settings] = None,
        audit_log: Optional[AuditLog] = None,
    ):
        super().__init__(settings, audit_log)
        self.data_source = data_source
        self.prediction_service = prediction_service

    def select_sample_games(self, season: int, sample_size: int) -> pd.DataFrame:
        """Stratified, reproducible sample of a season's completed games.

        Raises:
            InsufficientDataError: If the season has no completed games
        """
        df = games_frame(self.data_source.load_season(season).games)
        if df.empty:
            raise InsufficientDataError(f"No completed games found for season {season}")
        rng = np.random.default_rng(self.settings.random_seed)
        return select_diverse_sample(df, sample_size, rng)

    def generate_test_predictions(self, games: pd.DataFrame, season: int) -> tuple[pd.DataFrame, int]:
        """Predict every sampled game through the prediction service.

        Games that cannot be predicted are logged and skipped.

        Returns:
            (frame of games joined with predictions, number of failed games)

        Raises:
            InsufficientDataError: If no game could be predicted
        """
        rows = []
        failures = 0
        for game in games.itertuples(index=False):
            try:
                p = self.prediction_service.predict_game(
                    int(game.home_team_id), int(game.away_team_id), season, game_id=int(game.game_id)
                )
            except Exception as e:
                logger.error(f"Failed to predict game {game.game_id}: {e}")
                failures += 1
                continue
            rows.append(
                {
                    "game_id": int(game.game_id),
                    "pred_home": p.expected_home_score,
                    "pred_away": p.expected_away_score,
                    "win_probability": p.win_probability,
                    "confidence": p.confidence,
                }
            )

        if not rows:
            raise InsufficientDataError("No test predictions could be generated")
        if len(rows) < len(games) * LOW_SUCCESS_RATE:
            logger.warning(f"Low prediction success rate: {len(rows)}/{len(games)} games predicted")

        preds = games.merge(pd.DataFrame(rows), on="game_id", how="inner")
        preds["home_won"] = preds["home_score"] > preds["away_score"]
        preds["pred_home_win"] = preds["win_probability"] > 50
        preds["correct"] = preds["home_won"] == preds["pred_home_win"]
        return preds, failures

    def detect_systematic_biases(self, preds: pd.DataFrame) -> list[BiasAnalysis]:
        min_sample = self.settings.min_bias_sample
        found = [
            home_team_bias(preds, min_sample),
            score_range_bias(preds, min_sample),
            game_type_bias(preds, min_sample),
            favorite_bias(preds),
        ]
        return [b for b in found if b is not None]

    def validate(self, season: int, sample_size: Optional[int] = None) -> AccuracyTestResult:
        """Run the accuracy test for a season.

        Args:
            season: Season whose completed games to test against
            sample_size: Games to sample (settings.accuracy_sample_size when None)

        Returns:
            AccuracyTestResult; when sampling or prediction fails outright the
            result carries a single critical error and ``is_valid`` is False
        """
        result = AccuracyTestResult(season=season, metadata=self.base_metadata(season))
        target = sample_size or self.settings.accuracy_sample_size
        try:
            games = self.select_sample_games(season, target)
            preds, failures = self.generate_test_predictions(games, season)
        except Exception as e:
            failed = self.failure(result, "ACCURACY_TEST_FAILED", e)
            failed.set_score(0)
            self.log_result(failed)
            return failed

        result.sample_size = len(preds)
        result.failed_predictions = failures
        result.metadata["weeks"] = (int(preds["week"].min()), int(preds["week"].max()))
        result.win_accuracy = win_probability_accuracy(preds)
        result.score_accuracy = score_accuracy(preds)
        result.calibration = confidence_calibration(preds)
        result.biases = self.detect_systematic_biases(preds)
        result.reliability = reliability_analysis(preds)

        result.set_score(
            overall_accuracy_score(result.win_accuracy, result.score_accuracy, result.calibration, result.biases)
        )
        result.is_valid = result.score >= self.settings.minimum_accuracy_score
        self.add_recommendations(result)
        self.log_result(result)
        return result

    @staticmethod
    def add_recommendations(result: AccuracyTestResult) -> None:
        win = result.win_accuracy
        if win.accuracy < 60:
            result.add_recommendation(
                f"Win prediction accuracy ({win.accuracy:.1f}%) is below target - review prediction model"
            )
        if win.brier_score > 0.25:
            result.add_recommendation(f"Brier score ({win.brier_score:.3f}) indicates poor probability calibration")
        avg_mae = result.score_accuracy.average_side_mae
        if avg_mae > 14:
            result.add_recommendation(f"Score prediction error ({avg_mae:.1f} points MAE) is high - review scoring model")
        if result.calibration.calibration_score < 70:
            result.add_recommendation(
                f"Confidence calibration ({result.calibration.calibration_score:.1f}) needs improvement"
            )
        significant = result.significant_biases
        if significant:
            result.add_recommendation(f"{len(significant)} significant biases detected - review prediction methodology")

        if result.score >= 80:
            result.add_recommendation("Prediction accuracy is excellent - maintain current methodology")
        elif result.score >= 70:
            result.add_recommendation("Prediction accuracy is good - minor improvements possible")
        else:
            result.add_recommendation("Prediction accuracy needs significant improvement - review entire prediction pipeline")
