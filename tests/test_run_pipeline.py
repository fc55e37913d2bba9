"""End-to-end tests for the batch pipeline runner."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from scripts.run_pipeline import main, parse_args, run_season
from src.data.records import BoxScoreStats, GameRecord, SeasonData
from src.data.season_cache import SeasonDataCache


@pytest.fixture
def seeded_cache(tmp_path, league, league_factory):
    cache = SeasonDataCache(cache_dir=str(tmp_path))
    cache.save_season(league_factory(season=2023, seed=3))
    cache.save_season(league)
    return cache, tmp_path


class TestArgs:
    def test_repeated_seasons(self):
        args = parse_args(["--season", "2023", "--season", "2024", "--workers", "2"])
        assert args.season == [2023, 2024]
        assert args.workers == 2
        assert args.cache_dir is None
        assert not args.verbose

    def test_season_required(self):
        with pytest.raises(SystemExit):
            parse_args([])


class TestRunSeason:
    def test_full_season(self, seeded_cache):
        cache, cache_dir = seeded_cache
        summary = run_season(2024, str(cache_dir))

        assert summary["season"] == 2024
        assert summary["teams"] == 12
        assert summary["converged"]
        assert summary["shrunk"] == 0
        assert summary["model_r2"] is not None
        assert summary["regression_status"] == "completed"
        assert summary["weight_status"] == "completed"
        assert summary["accuracy_status"] == "completed"
        assert cache.load_profiles(2024) is not None

    def test_missing_season(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="No complete cache for season 2019"):
            run_season(2019, str(tmp_path))

    def test_main_prints_summary(self, seeded_cache, capsys):
        _, cache_dir = seeded_cache
        assert main(["--season", "2024", "--season", "2023", "--cache-dir", str(cache_dir)]) == 0
        out = capsys.readouterr().out
        assert "PIPELINE SUMMARY" in out
        assert out.index("2023") < out.rindex("2024")


class TestRatingSet:
    """Teams below the game floor never reach predictions or the cache."""

    def test_one_game_team_dropped(self, tmp_path, league):
        extra_id = 999
        game = GameRecord(20249999, 2024, 23, extra_id, 100, 21.0, 24.0)
        boxes = [
            BoxScoreStats(game.game_id, team_id, 350.0, 200.0, 150.0, 1, 2, 1, 2)
            for team_id in (extra_id, 100)
        ]
        data = SeasonData(
            season=2024,
            games=league.games + [game],
            box_scores=league.box_scores + boxes,
        )
        cache = SeasonDataCache(cache_dir=str(tmp_path))
        cache.save_season(data)

        summary = run_season(2024, str(tmp_path))

        assert summary["dropped"] == 1
        assert summary["teams"] == 12
        stored = cache.load_profiles(2024)
        assert extra_id not in stored
        assert 100 in stored
