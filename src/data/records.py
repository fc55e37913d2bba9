"""Typed input records and per-season data sources.

The pipeline never talks to a database. Callers hand it already-fetched
games and box scores, either directly or through a SeasonDataSource that
is read once per season and reused for the whole run.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

import polars as pl

from config.dtypes import (
    BOX_SCORE_SCHEMA,
    GAMES_SCHEMA,
    OPTIONAL_BOX_SCORE_COLUMNS,
    coerce_frame,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GameRecord:
    """One scheduled or completed game."""

    game_id: int
    season: int
    week: int
    home_team_id: int
    away_team_id: int
    home_score: Optional[float]
    away_score: Optional[float]
    is_final: bool = True

    @property
    def is_complete(self) -> bool:
        return self.is_final and self.home_score is not None and self.away_score is not None

    @property
    def home_margin(self) -> float:
        """Home points minus away points (completed games only)."""
        if not self.is_complete:
            raise ValueError(f"Game {self.game_id} has no final score")
        return float(self.home_score) - float(self.away_score)


@dataclass(frozen=True)
class BoxScoreStats:
    """One team's box score line in one game."""

    game_id: int
    team_id: int
    total_yards: float
    passing_yards: float
    rushing_yards: float
    turnovers: int
    sacks: int  # Sacks made by this team's defense
    field_goals_made: int
    field_goals_attempted: int = 0
    third_down_conversions: int = 0
    third_down_attempts: int = 0
    red_zone_scores: int = 0
    red_zone_attempts: int = 0


@dataclass
class SeasonData:
    """Everything the pipeline reads for one season."""

    season: int
    games: list[GameRecord] = field(default_factory=list)
    box_scores: list[BoxScoreStats] = field(default_factory=list)

    @property
    def completed_games(self) -> list[GameRecord]:
        return [g for g in self.games if g.is_complete]

    def team_ids(self) -> set[int]:
        teams: set[int] = set()
        for g in self.games:
            teams.add(g.home_team_id)
            teams.add(g.away_team_id)
        return teams

    def __repr__(self) -> str:
        return (
            f"SeasonData(season={self.season}, games={len(self.games)}, "
            f"box_scores={len(self.box_scores)})"
        )


class SeasonDataSource(Protocol):
    """Anything that can hand over one season's games and box scores."""

    def load_season(self, season: int) -> SeasonData:
        ...


class InMemorySeasonSource:
    """Serve pre-fetched season bundles."""

    def __init__(self, seasons: Optional[dict[int, SeasonData]] = None):
        self._seasons: dict[int, SeasonData] = dict(seasons or {})

    def add(self, data: SeasonData) -> None:
        self._seasons[data.season] = data

    def load_season(self, season: int) -> SeasonData:
        # Unknown seasons are empty, not an error: the engine treats them as vacuous
        return self._seasons.get(season, SeasonData(season=season))


class CachedSeasonSource:
    """Memoize another source so each season is read exactly once per run."""

    def __init__(self, source: SeasonDataSource):
        self._source = source
        self._loaded: dict[int, SeasonData] = {}

    def load_season(self, season: int) -> SeasonData:
        if season not in self._loaded:
            data = self._source.load_season(season)
            logger.info(f"Loaded {data!r}")
            self._loaded[season] = data
        return self._loaded[season]

    def invalidate(self, season: Optional[int] = None) -> None:
        if season is None:
            self._loaded.clear()
        else:
            self._loaded.pop(season, None)


def records_from_frames(
    games_df: pl.DataFrame,
    box_df: pl.DataFrame,
) -> tuple[list[GameRecord], list[BoxScoreStats]]:
    """Convert raw polars frames into typed records.

    Frames are cast to the ingestion schemas first so string-encoded numbers
    become native numbers here and nowhere else.

    Args:
        games_df: One row per game (see config.dtypes.GAMES_SCHEMA)
        box_df: One row per team per game (see config.dtypes.BOX_SCORE_SCHEMA)

    Returns:
        Tuple of (games, box_scores)
    """
    games_df = coerce_frame(games_df, GAMES_SCHEMA)
    box_df = coerce_frame(box_df, BOX_SCORE_SCHEMA, OPTIONAL_BOX_SCORE_COLUMNS)

    games = [
        GameRecord(
            game_id=row["game_id"],
            season=row["season"],
            week=row["week"],
            home_team_id=row["home_team_id"],
            away_team_id=row["away_team_id"],
            home_score=row["home_score"],
            away_score=row["away_score"],
            is_final=bool(row["is_final"]),
        )
        for row in games_df.select(list(GAMES_SCHEMA)).iter_rows(named=True)
    ]
    box_scores = [
        BoxScoreStats(**row)
        for row in box_df.select(list(BOX_SCORE_SCHEMA)).iter_rows(named=True)
    ]
    return games, box_scores


def records_to_frames(data: SeasonData) -> tuple[pl.DataFrame, pl.DataFrame]:
    """Inverse of records_from_frames, used when writing the season cache."""
    games_df = pl.DataFrame(
        [
            {
                "game_id": g.game_id,
                "season": g.season,
                "week": g.week,
                "home_team_id": g.home_team_id,
                "away_team_id": g.away_team_id,
                "home_score": g.home_score,
                "away_score": g.away_score,
                "is_final": g.is_final,
            }
            for g in data.games
        ],
        schema=GAMES_SCHEMA,
    )
    box_df = pl.DataFrame(
        [{name: getattr(b, name) for name in BOX_SCORE_SCHEMA} for b in data.box_scores],
        schema=BOX_SCORE_SCHEMA,
    )
    return games_df, box_df
