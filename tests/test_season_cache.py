"""Tests for the parquet season cache."""

import pytest

from src.data.season_cache import COMPLETE_MARKER, SeasonDataCache, profiles_from_frame, profiles_to_frame
from src.models.profiles import ConfidenceLevel, TeamEfficiencyProfile


def _profile(team_id=1, season=2024, **values):
    return TeamEfficiencyProfile(
        team_id=team_id,
        season=season,
        games_played=9,
        convergence_score=0.97,
        confidence_level=ConfidenceLevel.HIGH,
        averages_produced={"points": 31.5, "total_yards": 420.0, "red_zone_rate": 0.75},
        averages_allowed={"points": 17.25, "sacks": 1.5},
        **values,
    )


class TestSeasonBundles:
    """Games and box scores round trip through parquet."""

    def test_empty_cache(self, tmp_path):
        cache = SeasonDataCache(cache_dir=str(tmp_path))
        assert not cache.has_cached_season(2024)
        assert cache.load_frames(2024) is None
        with pytest.raises(FileNotFoundError, match="No complete cache for season 2024"):
            cache.load_season(2024)

    def test_save_and_load(self, tmp_path, league):
        cache = SeasonDataCache(cache_dir=str(tmp_path))
        cache.save_season(league)

        assert cache.has_cached_season(league.season)
        assert not cache.has_cached_season(league.season, use_cache=False)
        loaded = cache.load_season(league.season)
        assert loaded.games == league.games
        assert loaded.box_scores == league.box_scores

    def test_missing_marker_means_not_cached(self, tmp_path, league):
        """Files without the completion marker are treated as an interrupted write."""
        cache = SeasonDataCache(cache_dir=str(tmp_path))
        cache.save_season(league)
        (tmp_path / str(league.season) / COMPLETE_MARKER).unlink()
        assert not cache.has_cached_season(league.season)

    def test_missing_file_means_not_cached(self, tmp_path, league):
        cache = SeasonDataCache(cache_dir=str(tmp_path))
        cache.save_season(league)
        (tmp_path / str(league.season) / "box_scores.parquet").unlink()
        assert not cache.has_cached_season(league.season)

    def test_orphaned_tmp_is_cleaned(self, tmp_path):
        orphan = tmp_path / "2023" / ".tmp"
        orphan.mkdir(parents=True)
        (orphan / "games.parquet").write_bytes(b"partial")
        SeasonDataCache(cache_dir=str(tmp_path))
        assert not orphan.exists()

    def test_clear_one_season(self, tmp_path, league, league_factory):
        cache = SeasonDataCache(cache_dir=str(tmp_path))
        cache.save_season(league)
        cache.save_season(league_factory(season=2023, n_teams=4))
        cache.clear(2024)
        assert not cache.has_cached_season(2024)
        assert cache.has_cached_season(2023)
        assert set(cache.get_stats()["seasons"]) == {"2023"}


class TestProfiles:
    """Finalized profiles persist for next season's blend."""

    def test_frame_round_trip(self):
        profiles = {1: _profile(1, scoring_offense=4.5), 2: _profile(2, turnover_defense=-0.3)}
        restored = profiles_from_frame(profiles_to_frame(profiles))

        assert restored == profiles
        assert restored[1].averages_produced["red_zone_rate"] == pytest.approx(0.75)
        assert restored[2].averages_allowed == {"points": 17.25, "sacks": 1.5}
        assert restored[1].confidence_level is ConfidenceLevel.HIGH

    def test_save_and_load_profiles(self, tmp_path):
        cache = SeasonDataCache(cache_dir=str(tmp_path))
        assert cache.load_profiles(2024) is None

        cache.save_profiles(2024, {7: _profile(7, scoring_defense=2.0)})
        loaded = cache.load_profiles(2024)
        assert loaded[7].scoring_defense == pytest.approx(2.0)
        # Profiles alone do not make a season bundle
        assert not cache.has_cached_season(2024)
        assert cache.get_stats()["seasons"]["2024"]["has_profiles"]
