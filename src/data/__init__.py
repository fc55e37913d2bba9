"""Data access package: typed records, ingestion validation, season cache."""

from .records import (
    BoxScoreStats,
    CachedSeasonSource,
    GameRecord,
    InMemorySeasonSource,
    SeasonData,
    SeasonDataSource,
    records_from_frames,
    records_to_frames,
)
from .season_cache import SeasonDataCache
from .validators import InsufficientDataError, ValidationResult, validate_box_scores, validate_games

__all__ = [
    "BoxScoreStats",
    "CachedSeasonSource",
    "GameRecord",
    "InMemorySeasonSource",
    "InsufficientDataError",
    "SeasonData",
    "SeasonDataCache",
    "SeasonDataSource",
    "ValidationResult",
    "records_from_frames",
    "records_to_frames",
    "validate_box_scores",
    "validate_games",
]
