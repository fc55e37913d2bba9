"""Shared synthetic leagues for the pipeline tests."""

import numpy as np
import pytest

from config.settings import Settings
from src.data.records import BoxScoreStats, GameRecord, InMemorySeasonSource, SeasonData

SEASON = 2024
FIRST_TEAM_ID = 100


def build_league(
    season: int = SEASON,
    n_teams: int = 12,
    seed: int = 7,
    noise: float = 7.0,
) -> SeasonData:
    """Double round robin where every stat tracks a fixed team strength.

    Team FIRST_TEAM_ID is the weakest, the last team the strongest.
    """
    rng = np.random.default_rng(seed)
    strength = np.linspace(-10.0, 10.0, n_teams)
    team_ids = [FIRST_TEAM_ID + i for i in range(n_teams)]
    games_per_week = max(1, n_teams // 2)

    games = []
    box_scores = []
    game_id = season * 10000
    n = 0
    for i in range(n_teams):
        for j in range(n_teams):
            if i == j:
                continue
            game_id += 1
            week = n // games_per_week + 1
            n += 1
            edge = strength[i] - strength[j]
            home_score = max(0.0, float(round(27 + edge + 1.5 + rng.normal(0, noise))))
            away_score = max(0.0, float(round(27 - edge + rng.normal(0, noise))))
            games.append(
                GameRecord(
                    game_id=game_id,
                    season=season,
                    week=week,
                    home_team_id=team_ids[i],
                    away_team_id=team_ids[j],
                    home_score=home_score,
                    away_score=away_score,
                )
            )
            for team, d in ((team_ids[i], edge), (team_ids[j], -edge)):
                total = float(round(380 + 8 * d + rng.normal(0, 30)))
                passing = float(round(total * 0.6))
                box_scores.append(
                    BoxScoreStats(
                        game_id=game_id,
                        team_id=team,
                        total_yards=total,
                        passing_yards=passing,
                        rushing_yards=total - passing,
                        turnovers=int(rng.poisson(max(0.3, 1.4 - 0.05 * d))),
                        sacks=int(rng.poisson(max(0.5, 2.5 + 0.08 * d))),
                        field_goals_made=int(rng.poisson(1.6)),
                        field_goals_attempted=3,
                        third_down_conversions=5,
                        third_down_attempts=12,
                        red_zone_scores=3,
                        red_zone_attempts=4,
                    )
                )
    return SeasonData(season=season, games=games, box_scores=box_scores)


@pytest.fixture
def settings():
    return Settings(current_season=2025)


@pytest.fixture
def league():
    return build_league()


@pytest.fixture
def league_source(league):
    return InMemorySeasonSource({league.season: league})


@pytest.fixture
def league_factory():
    return build_league
