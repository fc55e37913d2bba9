"""Tests for the prediction accuracy tester."""

import numpy as np
import pandas as pd
import pytest

from src.data.records import GameRecord, InMemorySeasonSource
from src.models.efficiency_engine import RecursiveEfficiencyEngine
from src.models.profiles import StaticProfileProvider
from src.predictions.prediction_service import PredictionService
from src.validation.accuracy_tester import (
    AccuracyTester,
    confidence_calibration,
    favorite_bias,
    games_frame,
    home_team_bias,
    overall_accuracy_score,
    score_accuracy,
    select_diverse_sample,
    win_probability_accuracy,
)
from src.validation.core import AuditLog, AuditStatus


def _preds(rows):
    """Prediction frame in the shape generate_test_predictions produces."""
    df = pd.DataFrame(rows, columns=["game_id", "pred_home", "pred_away", "home_score", "away_score", "win_probability"])
    df["confidence"] = 70.0
    df["abs_margin"] = (df["home_score"] - df["away_score"]).abs()
    df["total"] = df["home_score"] + df["away_score"]
    df["home_won"] = df["home_score"] > df["away_score"]
    df["pred_home_win"] = df["win_probability"] > 50
    df["correct"] = df["home_won"] == df["pred_home_win"]
    return df


@pytest.fixture
def engine_profiles(league_source, settings):
    return RecursiveEfficiencyEngine(league_source, settings).calculate_season_efficiencies(2024)


@pytest.fixture
def tester(league_source, engine_profiles, settings):
    service = PredictionService(StaticProfileProvider({2024: engine_profiles}), settings)
    return AccuracyTester(league_source, service, settings, AuditLog())


class TestSampling:
    def test_games_frame_drops_implausible_and_unfinished(self):
        games = [
            GameRecord(1, 2024, 1, 1, 2, 24.0, 10.0),
            GameRecord(2, 2024, 1, 3, 4, 250.0, 0.0),
            GameRecord(3, 2024, 1, 5, 6, None, None, is_final=False),
        ]
        df = games_frame(games)
        assert df["game_id"].tolist() == [1]
        assert df.loc[0, "abs_margin"] == 14.0

    def test_small_pool_returned_whole(self, league):
        df = games_frame(league.games[:10])
        assert len(select_diverse_sample(df, 20, np.random.default_rng(0))) == 10

    def test_sample_is_reproducible_and_unique(self, league):
        df = games_frame(league.games)
        first = select_diverse_sample(df, 40, np.random.default_rng(42))
        second = select_diverse_sample(df, 40, np.random.default_rng(42))
        assert len(first) == 40
        assert first["game_id"].is_unique
        assert first["game_id"].tolist() == second["game_id"].tolist()

    def test_every_stratum_represented(self, league):
        df = games_frame(league.games)
        sample = select_diverse_sample(df, 50, np.random.default_rng(1))
        assert (sample["abs_margin"] <= 7).sum() >= 5
        assert (sample["away_score"] > sample["home_score"]).sum() >= 5


class TestMetrics:
    def test_perfect_win_probabilities(self):
        preds = _preds([
            (1, 30, 10, 28, 14, 90.0),
            (2, 10, 30, 7, 21, 10.0),
            (3, 24, 20, 27, 24, 70.0),
            (4, 17, 24, 13, 20, 30.0),
        ])
        win = win_probability_accuracy(preds)
        assert win.accuracy == pytest.approx(100.0)
        assert win.roc_auc == pytest.approx(1.0)
        assert win.brier_score == pytest.approx((0.01 + 0.01 + 0.09 + 0.09) / 4)

    def test_single_outcome_class(self):
        preds = _preds([(1, 30, 10, 28, 14, 80.0), (2, 30, 10, 35, 3, 60.0)])
        assert win_probability_accuracy(preds).roc_auc == 0.5

    def test_score_errors(self):
        preds = _preds([(1, 30, 10, 28, 14, 80.0), (2, 20, 20, 24, 17, 55.0)])
        scores = score_accuracy(preds)
        assert scores.mean_absolute_error == pytest.approx((6 + 7) / 2)
        assert scores.home.bias == pytest.approx((2 - 4) / 2)
        assert scores.away.mae == pytest.approx((4 + 3) / 2)

    def test_home_bias_detected(self):
        rows = [(i, 35, 20, 30, 20, 70.0) for i in range(8)]
        bias = home_team_bias(_preds(rows), min_sample=6)
        assert bias.bias_type == "home_team"
        assert bias.magnitude == pytest.approx(5.0)
        assert bias.is_significant

    def test_home_bias_needs_sample(self):
        assert home_team_bias(_preds([(1, 35, 20, 30, 20, 70.0)]), min_sample=6) is None

    def test_favorites_missing(self):
        rows = [(i, 35, 10, 10, 35, 90.0) for i in range(6)]
        bias = favorite_bias(_preds(rows))
        assert bias.bias_type == "team_strength"
        assert bias.significance == 0.05

    def test_score_clamped(self):
        preds = _preds([(1, 0, 80, 70, 0, 1.0), (2, 80, 0, 0, 70, 99.0)])
        score = overall_accuracy_score(
            win_probability_accuracy(preds), score_accuracy(preds), confidence_calibration(preds), []
        )
        assert score == 0.0


class TestAccuracyTester:
    """Full accuracy test through the live prediction service."""

    def test_validate(self, tester):
        result = tester.validate(2024, sample_size=40)
        assert result.sample_size == 40
        assert result.failed_predictions == 0
        assert result.win_accuracy.accuracy > 60
        assert sum(b.sample_size for b in result.calibration.curve) == 40
        assert result.reliability.overall_reliability in {"high", "medium", "low"}
        assert 0 <= result.score <= 100
        assert result.is_valid == (result.score >= 60)
        assert result.recommendations
        assert tester.audit_log.latest("prediction_accuracy") is result

    def test_run_completes(self, tester):
        run = tester.run(2024, 30)
        assert run.status == AuditStatus.COMPLETED
        assert run.result.metadata["season"] == 2024

    def test_unpredictable_games_counted(self, league_source, engine_profiles, settings):
        profiles = dict(engine_profiles)
        del profiles[100]
        service = PredictionService(StaticProfileProvider({2024: profiles}), settings)
        result = AccuracyTester(league_source, service, settings).validate(2024, sample_size=132)
        assert result.failed_predictions == 22
        assert result.sample_size == 110

    def test_empty_season_fails(self, settings):
        service = PredictionService(StaticProfileProvider(), settings)
        log = AuditLog()
        tester = AccuracyTester(InMemorySeasonSource(), service, settings, log)
        run = tester.run(2024)

        assert run.status == AuditStatus.FAILED
        assert run.result.score == 0
        assert not run.result.is_valid
        assert run.result.errors[0].code == "ACCURACY_TEST_FAILED"
        assert "No completed games found for season 2024" in run.result.errors[0].message
        assert log.latest("prediction_accuracy") is run.result
