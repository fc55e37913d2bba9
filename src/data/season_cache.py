"""Parquet cache for season bundles and finalized profiles.

Layout per season:

    <cache_dir>/<season>/games.parquet
    <cache_dir>/<season>/box_scores.parquet
    <cache_dir>/<season>/.complete
    <cache_dir>/<season>/profiles.parquet
    <cache_dir>/<season>/.profiles_complete

Cache Integrity:
    Uses atomic write pattern to prevent corruption from interrupted writes:
    1. Write all files to .tmp/ subdirectory
    2. On success, move files to parent directory
    3. Write the completion marker LAST
    4. has_cached_season() only returns True if the marker and every file exist

    If interrupted mid-write, orphaned .tmp/ directories are cleaned on next run.

Profiles are stored flat: one row per team, one column per category, and the
observed averages as ``produced__<stat>`` / ``allowed__<stat>`` columns.
"""

import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Optional

import polars as pl

from config.categories import PROFILE_CATEGORIES
from config.dtypes import PROFILE_SCHEMA
from src.data.records import SeasonData, records_from_frames, records_to_frames
from src.models.profiles import TeamEfficiencyProfile

logger = logging.getLogger(__name__)

# Completion markers - written LAST after all data files are saved
COMPLETE_MARKER = ".complete"
PROFILES_MARKER = ".profiles_complete"

REQUIRED_FILES = ["games.parquet", "box_scores.parquet"]
PROFILES_FILE = "profiles.parquet"

PRODUCED_PREFIX = "produced__"
ALLOWED_PREFIX = "allowed__"


def profiles_to_frame(profiles: dict[int, TeamEfficiencyProfile]) -> pl.DataFrame:
    """Flatten a profile map into one row per team."""
    rows = []
    for profile in profiles.values():
        row = {
            "team_id": profile.team_id,
            "season": profile.season,
            "games_played": profile.games_played,
            "convergence_score": profile.convergence_score,
            "confidence_level": profile.confidence_level.value,
            "is_blended": profile.is_blended,
        }
        row.update(profile.category_values())
        row.update({f"{PRODUCED_PREFIX}{k}": float(v) for k, v in profile.averages_produced.items()})
        row.update({f"{ALLOWED_PREFIX}{k}": float(v) for k, v in profile.averages_allowed.items()})
        rows.append(row)

    schema = dict(PROFILE_SCHEMA)
    schema.update({c: pl.Float64 for c in PROFILE_CATEGORIES})
    if not rows:
        return pl.DataFrame(schema=schema)

    # Averages columns vary by team; include every key seen
    extra = sorted({k for r in rows for k in r} - set(schema))
    schema.update({c: pl.Float64 for c in extra})
    return pl.DataFrame(rows, schema=schema)


def profiles_from_frame(df: pl.DataFrame) -> dict[int, TeamEfficiencyProfile]:
    """Inverse of profiles_to_frame."""
    profiles = {}
    for row in df.iter_rows(named=True):
        produced = {
            k[len(PRODUCED_PREFIX):]: v for k, v in row.items()
            if k.startswith(PRODUCED_PREFIX) and v is not None
        }
        allowed = {
            k[len(ALLOWED_PREFIX):]: v for k, v in row.items()
            if k.startswith(ALLOWED_PREFIX) and v is not None
        }
        d = {k: row[k] for k in PROFILE_SCHEMA}
        d.update({c: float(row[c]) for c in PROFILE_CATEGORIES})
        d["team_id"] = int(d["team_id"])
        d["season"] = int(d["season"])
        d["games_played"] = int(d["games_played"])
        d["averages_produced"] = produced
        d["averages_allowed"] = allowed
        profile = TeamEfficiencyProfile.from_dict(d)
        profiles[profile.team_id] = profile
    return profiles


class SeasonDataCache:
    """Cache for season bundles and profiles with atomic write guarantees.

    Also acts as a SeasonDataSource through load_season().
    """

    def __init__(self, cache_dir: str = ".cache/seasons"):
        """Initialize season data cache.

        Args:
            cache_dir: Directory to store cached season files
        """
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

        # Clean up any orphaned .tmp directories from interrupted writes
        self._cleanup_orphaned_tmp()

        logger.debug(f"Initialized SeasonDataCache at {self.cache_dir.absolute()}")

    def _cleanup_orphaned_tmp(self):
        for season_dir in self.cache_dir.glob("*"):
            if not season_dir.is_dir():
                continue
            tmp_dir = season_dir / ".tmp"
            if tmp_dir.exists():
                logger.warning(f"Cleaning orphaned temp directory: {tmp_dir}")
                shutil.rmtree(tmp_dir)

    def _season_dir(self, season: int) -> Path:
        season_dir = self.cache_dir / str(season)
        season_dir.mkdir(parents=True, exist_ok=True)
        return season_dir

    def _atomic_write(self, season: int, frames: dict[str, pl.DataFrame], marker: str) -> None:
        """Write frames via .tmp/, move them into place, then write the marker."""
        season_dir = self._season_dir(season)
        tmp_dir = season_dir / ".tmp"

        if tmp_dir.exists():
            shutil.rmtree(tmp_dir)
        tmp_dir.mkdir(parents=True, exist_ok=True)

        # Invalidate first so a crash mid-move never leaves a stale marker behind
        marker_path = season_dir / marker
        if marker_path.exists():
            marker_path.unlink()

        try:
            for filename, df in frames.items():
                df.write_parquet(tmp_dir / filename)

            for filename in frames:
                dst = season_dir / filename
                if dst.exists():
                    dst.unlink()
                shutil.move(str(tmp_dir / filename), str(dst))

            shutil.rmtree(tmp_dir)

            rows = ", ".join(f"{name}: {len(df)}" for name, df in frames.items())
            marker_path.write_text(f"Cached: {datetime.now().isoformat()}\n{rows}\n")
        except (OSError, pl.exceptions.PolarsError) as e:
            if tmp_dir.exists():
                shutil.rmtree(tmp_dir)
            logger.warning(f"Failed to save {list(frames)} for {season} to cache: {e}")
            raise

    def has_cached_season(self, season: int, use_cache: bool = True) -> bool:
        """True only when the completion marker and every required file exist.

        Args:
            season: Season year
            use_cache: If False, always return False (forces refresh)
        """
        if not use_cache:
            return False
        season_dir = self.cache_dir / str(season)
        if not (season_dir / COMPLETE_MARKER).exists():
            return False
        return all((season_dir / f).exists() for f in REQUIRED_FILES)

    def has_cached_profiles(self, season: int) -> bool:
        season_dir = self.cache_dir / str(season)
        return (season_dir / PROFILES_MARKER).exists() and (season_dir / PROFILES_FILE).exists()

    def load_frames(self, season: int) -> Optional[tuple[pl.DataFrame, pl.DataFrame]]:
        """Load the cached (games_df, box_scores_df) for a season, or None."""
        if not self.has_cached_season(season):
            return None

        season_dir = self._season_dir(season)
        try:
            games_df = pl.read_parquet(season_dir / "games.parquet")
            box_df = pl.read_parquet(season_dir / "box_scores.parquet")
        except (OSError, pl.exceptions.PolarsError) as e:
            logger.warning(f"Failed to load cached season {season}: {e}")
            # Cache is corrupted - remove the completion marker
            marker = season_dir / COMPLETE_MARKER
            if marker.exists():
                marker.unlink()
                logger.warning(f"Removed invalid completion marker for {season}")
            return None

        logger.info(f"Cache HIT: Loaded {season} season ({len(games_df)} games, {len(box_df)} box scores)")
        return games_df, box_df

    def load_season(self, season: int) -> SeasonData:
        """SeasonDataSource entry point.

        Raises:
            FileNotFoundError: If the season is not (completely) cached
        """
        frames = self.load_frames(season)
        if frames is None:
            raise FileNotFoundError(f"No complete cache for season {season} in {self.cache_dir}")
        games, box_scores = records_from_frames(*frames)
        return SeasonData(season=season, games=games, box_scores=box_scores)

    def save_season(self, data: SeasonData) -> None:
        """Save a season bundle using the atomic write pattern."""
        games_df, box_df = records_to_frames(data)
        self._atomic_write(
            data.season,
            {"games.parquet": games_df, "box_scores.parquet": box_df},
            COMPLETE_MARKER,
        )
        logger.info(f"Cache SAVE: Stored {data.season} season ({len(games_df)} games, {len(box_df)} box scores)")

    def save_profiles(self, season: int, profiles: dict[int, TeamEfficiencyProfile]) -> None:
        """Store a season's finalized profiles for later blending."""
        self._atomic_write(season, {PROFILES_FILE: profiles_to_frame(profiles)}, PROFILES_MARKER)
        logger.info(f"Cache SAVE: Stored {len(profiles)} profiles for {season}")

    def load_profiles(self, season: int) -> Optional[dict[int, TeamEfficiencyProfile]]:
        """Finalized profiles for a season, or None when not cached."""
        if not self.has_cached_profiles(season):
            return None
        season_dir = self._season_dir(season)
        try:
            df = pl.read_parquet(season_dir / PROFILES_FILE)
        except (OSError, pl.exceptions.PolarsError) as e:
            logger.warning(f"Failed to load cached profiles for {season}: {e}")
            (season_dir / PROFILES_MARKER).unlink(missing_ok=True)
            return None
        return profiles_from_frame(df)

    def clear(self, season: Optional[int] = None):
        """Clear cached seasons.

        Args:
            season: If provided, clear only this season. Otherwise clear all.
        """
        if season is not None:
            season_dir = self.cache_dir / str(season)
            if season_dir.exists():
                shutil.rmtree(season_dir)
                logger.info(f"Cleared cache for {season} season")
        else:
            for season_dir in self.cache_dir.glob("*"):
                if season_dir.is_dir():
                    shutil.rmtree(season_dir)
            logger.info("Cleared all season caches")

    def get_stats(self) -> dict:
        """Cache info per season and total size."""
        stats = {
            "cache_dir": str(self.cache_dir.absolute()),
            "seasons": {},
            "total_size_mb": 0.0,
        }
        for season_dir in sorted(self.cache_dir.glob("*")):
            if not season_dir.is_dir():
                continue
            size_mb = sum(f.stat().st_size for f in season_dir.glob("*.parquet")) / (1024 * 1024)
            has_marker = (season_dir / COMPLETE_MARKER).exists()
            stats["seasons"][season_dir.name] = {
                "files": len(list(season_dir.glob("*.parquet"))),
                "size_mb": size_mb,
                "complete": has_marker and all((season_dir / f).exists() for f in REQUIRED_FILES),
                "has_profiles": (season_dir / PROFILES_MARKER).exists(),
            }
            stats["total_size_mb"] += size_mb
        return stats
