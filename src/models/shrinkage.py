"""Bayesian shrinkage of team efficiencies toward national averages.

A team's observed efficiency after n games is a noisy estimate. Shrinkage
treats the national average as a prior worth k pseudo-games:

    adjusted = (n * team_value + k * national_average) / (n + k)

k is a step function of games played relative to a season-dependent minimum
(5 games for a completed season, 4 for the season in progress):

    | Games played     | k  | For min=5 |
    |------------------|----|-----------|
    | >= 2.4 * min     | 0  | 12+       |
    | >= 1.6 * min     | 2  | 8-11      |
    | >= min           | 5  | 5-7       |
    | >= min - 2       | 10 | 3-4       |
    | otherwise        | 20 | 1-2       |

National averages come only from reliable teams (>= 1.5x the minimum), so
thin samples never contaminate the prior they are shrunk toward.

FCS-classified teams and teams with three or fewer games are pulled toward
zero (neutral) instead, with k at least ``fcs_shrinkage_k``, and are always
Low confidence. Post-shrinkage values are clamped to per-category bounds.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from config.categories import CATEGORY_DEFINITIONS, PROFILE_CATEGORIES
from config.settings import Settings
from src.models.profiles import (
    ConfidenceLevel,
    ProfileProvider,
    TeamEfficiencyProfile,
    cap_confidence,
)

logger = logging.getLogger(__name__)

FCS_MAX_GAMES = 3  # Teams at or below this are treated like FCS opponents


@dataclass
class NationalAverages:
    """Per-category national averages computed from reliable teams."""

    season: int
    values: dict[str, float]
    sample_size: int

    def get(self, category: str) -> float:
        return self.values.get(category, 0.0)

    @classmethod
    def zeros(cls, season: int) -> "NationalAverages":
        return cls(season=season, values={c: 0.0 for c in PROFILE_CATEGORIES}, sample_size=0)


@dataclass
class ShrinkageAdjustment:
    """Before/after record of one team's shrinkage."""

    team_id: int
    games_played: int
    k: float
    raw: dict[str, float]
    adjusted: dict[str, float]
    heavy_shrinkage: bool
    toward_zero: bool = False

    @property
    def magnitude(self) -> float:
        """Sum of absolute changes across categories."""
        return float(sum(abs(self.raw[c] - self.adjusted[c]) for c in self.raw))


@dataclass
class ShrinkageReport:
    """Result of a shrinkage pass over one season."""

    season: int
    profiles: dict[int, TeamEfficiencyProfile]
    adjustments: dict[int, ShrinkageAdjustment] = field(default_factory=dict)
    averages: Optional[NationalAverages] = None
    # Season rating set: profiles minus teams below the absolute game floor
    rated_profiles: dict[int, TeamEfficiencyProfile] = field(default_factory=dict)
    dropped_teams: list[int] = field(default_factory=list)

    @property
    def teams_adjusted(self) -> int:
        return len(self.adjustments)

    @property
    def average_adjustment(self) -> float:
        if not self.adjustments:
            return 0.0
        return float(np.mean([a.magnitude for a in self.adjustments.values()]))

    @property
    def teams_with_heavy_shrinkage(self) -> int:
        return sum(1 for a in self.adjustments.values() if a.heavy_shrinkage)

    def __repr__(self) -> str:
        return (
            f"ShrinkageReport(season={self.season}, adjusted={self.teams_adjusted}, "
            f"heavy={self.teams_with_heavy_shrinkage}, dropped={len(self.dropped_teams)}, "
            f"avg_adj={self.average_adjustment:.2f})"
        )


def shrink_value(team_value: float, games_played: int, prior: float, k: float) -> float:
    """(n * value + k * prior) / (n + k); k = 0 leaves the value alone."""
    if k == 0:
        return team_value
    return (games_played * team_value + k * prior) / (games_played + k)


def clamp_to_bounds(values: dict[str, float]) -> dict[str, float]:
    """Clamp category values to their +/- bounds."""
    clamped = {}
    for category, value in values.items():
        bound = CATEGORY_DEFINITIONS[category].bound
        clamped[category] = float(np.clip(value, -bound, bound))
    return clamped


class BayesianShrinkage:
    """Shrink low-sample team efficiencies toward reliable-team national averages."""

    def __init__(
        self,
        profile_provider: Optional[ProfileProvider] = None,
        settings: Optional[Settings] = None,
        classifications: Optional[dict[int, str]] = None,
    ):
        """Initialize shrinkage.

        Args:
            profile_provider: Source of season profiles for apply_shrinkage()
            settings: Pipeline settings
            classifications: Optional team_id -> classification ("fbs"/"fcs")
        """
        self.profile_provider = profile_provider
        self.settings = settings or Settings()
        self.classifications = classifications or {}

    def min_games_for(self, season: int) -> int:
        if season == self.settings.current_season:
            return self.settings.in_progress_season_min_games
        return self.settings.completed_season_min_games

    def shrinkage_k(self, games_played: int, min_games: int) -> float:
        if games_played >= min_games * 2.4:
            return 0.0
        if games_played >= min_games * 1.6:
            return 2.0
        if games_played >= min_games:
            return 5.0
        if games_played >= min_games - 2:
            return 10.0
        return 20.0

    def confidence_after_shrinkage(self, games_played: int, min_games: int) -> ConfidenceLevel:
        if games_played >= min_games * 2:
            return ConfidenceLevel.HIGH
        if games_played >= min_games:
            return ConfidenceLevel.MEDIUM
        return ConfidenceLevel.LOW

    def national_averages(
        self,
        profiles: dict[int, TeamEfficiencyProfile],
        season: int,
    ) -> NationalAverages:
        """Per-category means over reliable teams only.

        Returns all-zero averages when no team is reliable.
        """
        min_games = self.min_games_for(season)
        threshold = min_games * self.settings.reliable_team_multiplier
        reliable = [p for p in profiles.values() if p.games_played >= threshold]

        if len(reliable) < self.settings.min_reliable_teams:
            logger.warning(
                f"Only {len(reliable)} reliable teams (>= {threshold:.1f} games) "
                f"for {season} national averages"
            )
        if not reliable:
            return NationalAverages.zeros(season)

        matrix = np.array([[p.get(c) for c in PROFILE_CATEGORIES] for p in reliable])
        means = matrix.mean(axis=0)
        logger.debug(f"National averages for {season} from {len(reliable)} reliable teams")
        return NationalAverages(
            season=season,
            values={c: float(v) for c, v in zip(PROFILE_CATEGORIES, means)},
            sample_size=len(reliable),
        )

    def is_fcs(self, profile: TeamEfficiencyProfile) -> bool:
        classification = self.classifications.get(profile.team_id, "")
        return classification.lower() == "fcs" or profile.games_played <= FCS_MAX_GAMES

    def apply(
        self,
        profiles: dict[int, TeamEfficiencyProfile],
        season: int,
    ) -> ShrinkageReport:
        """Shrink every team in a season map.

        Args:
            profiles: Season profile map (not modified)
            season: Season year (selects the minimum-games threshold)

        Returns:
            ShrinkageReport with the new profile map, per-team adjustments and
            the rated set with sub-floor teams dropped
        """
        min_games = self.min_games_for(season)
        averages = self.national_averages(profiles, season)
        heavy_k = self.settings.heavy_shrinkage_k

        shrunk: dict[int, TeamEfficiencyProfile] = {}
        adjustments: dict[int, ShrinkageAdjustment] = {}

        for tid, profile in profiles.items():
            n = profile.games_played
            k = self.shrinkage_k(n, min_games)
            toward_zero = self.is_fcs(profile)

            if toward_zero:
                k = max(k, self.settings.fcs_shrinkage_k)
                confidence = ConfidenceLevel.LOW
            else:
                confidence = self.confidence_after_shrinkage(n, min_games)

            if k == 0:
                shrunk[tid] = profile
                continue

            raw = profile.category_values()
            adjusted = {
                c: shrink_value(v, n, 0.0 if toward_zero else averages.get(c), k)
                for c, v in raw.items()
            }
            adjusted = clamp_to_bounds(adjusted)

            if profile.is_blended:
                confidence = cap_confidence(confidence, ConfidenceLevel.MEDIUM)

            shrunk[tid] = profile.with_values(adjusted, confidence_level=confidence)
            adjustments[tid] = ShrinkageAdjustment(
                team_id=tid,
                games_played=n,
                k=k,
                raw=raw,
                adjusted=adjusted,
                heavy_shrinkage=k >= heavy_k,
                toward_zero=toward_zero,
            )
            logger.debug(f"Team {tid}: n={n}, k={k:.0f}, toward_zero={toward_zero}")

        rated = self.remove_insufficient_data_teams(shrunk, season)
        report = ShrinkageReport(
            season=season,
            profiles=shrunk,
            adjustments=adjustments,
            averages=averages,
            rated_profiles=rated,
            dropped_teams=sorted(set(shrunk) - set(rated)),
        )
        logger.info(
            f"Shrinkage {season}: {report.teams_adjusted} teams adjusted, "
            f"{report.teams_with_heavy_shrinkage} heavy, "
            f"average adjustment {report.average_adjustment:.2f}"
        )
        return report

    def apply_shrinkage(self, season: int) -> ShrinkageReport:
        """Load a season's profiles through the provider and shrink them."""
        if self.profile_provider is None:
            raise ValueError("No profile provider configured; call apply() with profiles")
        profiles = self.profile_provider.calculate_season_efficiencies(season)
        return self.apply(profiles, season)

    def remove_insufficient_data_teams(
        self,
        profiles: dict[int, TeamEfficiencyProfile],
        season: int,
    ) -> dict[int, TeamEfficiencyProfile]:
        """Drop teams below the absolute minimum game count for the season."""
        floor = max(1, self.min_games_for(season) - 2)
        kept = {tid: p for tid, p in profiles.items() if p.games_played >= floor}
        removed = len(profiles) - len(kept)
        if removed:
            logger.info(
                f"Removed {removed} teams with fewer than {floor} games from {season}; "
                f"{len(kept)} remaining"
            )
        return kept
