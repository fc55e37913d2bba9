"""Recursive (opponent-adjusted) efficiency engine.

Each team's efficiency in a category is its mean per-game differential against
what its specific opponents typically allow/produce. Those opponent baselines
carry a small quality correction driven by the opponents' own current ratings,
so every team's rating depends on its opponents', which depend on theirs. The
engine iterates that mapping to a fixed point.

Iteration state is an explicit snapshot: each iteration reads a
dict[team_id, TeamEfficiencyProfile] and returns a new one, never mutating the
previous map. Any snapshot can be inspected or re-fed on its own, and a caller
may stop after any completed iteration without corrupting anything.

Algorithm (per season):
    1. Seed every team with a neutral (all-zero, Low confidence) profile.
    2. Repeat up to max_iterations:
        a. Rebuild performance records with opponent baselines corrected by the
           previous snapshot (factor * opponent mirror efficiency).
        b. Per team, efficiency = mean(actual - opponent baseline). Additive on
           purpose: a ratio blows up on one extreme game, a differential cannot.
        c. Convergence: per-team max |change| across the four offensive
           categories. The season converges when
               (max_change < threshold AND >= 98% of teams individually converged)
               OR max_change < threshold / 10
    3. Not converging is a logged warning, never an error: the last snapshot is
       returned with converged=False.

Per-team work within one iteration is independent and can be spread over a
concurrent.futures executor; all futures are collected before the
convergence check, so iteration i+1 always sees all of iteration i.
"""

import logging
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from config.categories import OFFENSE_CATEGORIES, PROFILE_CATEGORIES
from config.settings import Settings
from src.models.performance import GamePerformanceRecord, PerformanceExtractor
from src.data.records import BoxScoreStats, GameRecord, SeasonDataSource
from src.models.profiles import TeamEfficiencyProfile, confidence_from_games

logger = logging.getLogger(__name__)

ProfileMap = dict[int, TeamEfficiencyProfile]


@dataclass
class IterationSnapshot:
    """Output of one engine iteration."""

    iteration: int
    profiles: ProfileMap
    max_change: float
    converged_team_ratio: float
    converged: bool

    def __repr__(self) -> str:
        return (
            f"IterationSnapshot(iter={self.iteration}, max_change={self.max_change:.6f}, "
            f"team_ratio={self.converged_team_ratio:.3f}, converged={self.converged})"
        )


@dataclass
class EfficiencyAnomaly:
    """A per-team efficiency beyond the anomaly threshold (logged, not clamped)."""

    team_id: int
    category: str
    value: float


@dataclass
class SeasonEfficiencyResult:
    """Final engine output for one season."""

    season: int
    profiles: ProfileMap
    converged: bool
    iterations_run: int
    history: list[IterationSnapshot] = field(default_factory=list)
    anomalies: list[EfficiencyAnomaly] = field(default_factory=list)

    @property
    def final_max_change(self) -> float:
        return self.history[-1].max_change if self.history else 0.0

    def __repr__(self) -> str:
        return (
            f"SeasonEfficiencyResult(season={self.season}, teams={len(self.profiles)}, "
            f"converged={self.converged}, iterations={self.iterations_run})"
        )


def team_max_change(previous: TeamEfficiencyProfile, current: TeamEfficiencyProfile) -> float:
    """Max absolute change across the four primary offensive efficiencies."""
    return max(abs(current.get(c) - previous.get(c)) for c in OFFENSE_CATEGORIES)


def convergence_stats(
    previous: ProfileMap,
    current: ProfileMap,
    threshold: float,
) -> tuple[float, float, dict[int, float]]:
    """Compare two snapshots.

    Returns:
        Tuple of (max_change, share of teams under threshold, per-team change).
        Empty maps give (0.0, 1.0, {}).
    """
    changes = {
        tid: team_max_change(previous[tid], profile)
        for tid, profile in current.items()
        if tid in previous
    }
    if not changes:
        return 0.0, 1.0, {}
    max_change = max(changes.values())
    ratio = sum(1 for c in changes.values() if c < threshold) / len(changes)
    return max_change, ratio, changes


def determine_convergence(previous: ProfileMap, current: ProfileMap, threshold: float = 0.001) -> bool:
    """Simple convergence check: max offensive change below threshold.

    Two empty maps are vacuously converged.
    """
    max_change, _, _ = convergence_stats(previous, current, threshold)
    return max_change < threshold


class RecursiveEfficiencyEngine:
    """Iterative fixed-point solver for opponent-adjusted team efficiencies."""

    def __init__(
        self,
        data_source: Optional[SeasonDataSource] = None,
        settings: Optional[Settings] = None,
        executor: Optional[Executor] = None,
    ):
        """Initialize the engine.

        Args:
            data_source: Where calculate_season_efficiencies reads a season from
            settings: Pipeline settings (defaults built from the environment)
            executor: Optional executor for per-team work inside one iteration
        """
        self.data_source = data_source
        self.settings = settings or Settings()
        self.executor = executor

    @property
    def max_iterations(self) -> int:
        return self.settings.max_iterations

    @property
    def threshold(self) -> float:
        return self.settings.convergence_threshold

    def calculate_season_efficiencies(self, season: int) -> ProfileMap:
        """Compute final profiles for a season read from the injected data source."""
        return self.run_season(season).profiles

    def run_season(self, season: int) -> SeasonEfficiencyResult:
        if self.data_source is None:
            raise ValueError("No data source configured; call run() with games and box scores")
        data = self.data_source.load_season(season)
        return self.run(season, data.games, data.box_scores)

    def run(
        self,
        season: int,
        games: list[GameRecord],
        box_scores: list[BoxScoreStats],
    ) -> SeasonEfficiencyResult:
        """Iterate to convergence for one season's data.

        Args:
            season: Season year
            games: Game records (incomplete games are ignored)
            box_scores: Box score lines

        Returns:
            SeasonEfficiencyResult with final profiles and iteration history
        """
        extractor = PerformanceExtractor([g for g in games if g.season == season], box_scores)

        # Every team that appears on the schedule gets a profile, even with zero
        # eligible games (it simply stays neutral / Low confidence).
        team_ids = sorted(
            {g.home_team_id for g in games if g.season == season}
            | {g.away_team_id for g in games if g.season == season}
        )
        current: ProfileMap = {tid: TeamEfficiencyProfile.neutral(tid, season) for tid in team_ids}

        logger.info(
            f"Efficiency engine {season}: {len(team_ids)} teams, "
            f"{len(extractor.lines) // 2} eligible games"
        )

        history: list[IterationSnapshot] = []
        converged = False
        for iteration in range(1, self.max_iterations + 1):
            snapshot = self.iterate(extractor, current, iteration)
            history.append(snapshot)
            current = snapshot.profiles
            logger.debug(f"{season} {snapshot!r}")
            if snapshot.converged:
                converged = True
                break

        if not converged:
            logger.warning(
                f"Efficiency engine did not converge for {season} after "
                f"{self.max_iterations} iterations (max change "
                f"{history[-1].max_change if history else 0.0:.6f}); using last iteration"
            )
        else:
            logger.info(f"Efficiency engine converged for {season} in {len(history)} iterations")

        anomalies = self._find_anomalies(current)
        return SeasonEfficiencyResult(
            season=season,
            profiles=current,
            converged=converged,
            iterations_run=len(history),
            history=history,
            anomalies=anomalies,
        )

    def iterate(
        self,
        extractor: PerformanceExtractor,
        previous: ProfileMap,
        iteration: int = 1,
    ) -> IterationSnapshot:
        """Run one iteration against a snapshot and return the next snapshot.

        The previous map is read-only here; a fresh map is returned.
        """
        team_ids = list(previous)

        if self.executor is not None and len(team_ids) > 1:
            futures = {
                self.executor.submit(self._compute_team, extractor, previous, tid): tid
                for tid in team_ids
            }
            # Join barrier: every team finishes before convergence is assessed
            computed = {futures[f]: f.result() for f in futures}
        else:
            computed = {tid: self._compute_team(extractor, previous, tid) for tid in team_ids}

        max_change, ratio, changes = convergence_stats(previous, computed, self.threshold)

        next_profiles: ProfileMap = {}
        for tid in team_ids:
            profile = computed[tid]
            if profile.games_played > 0:
                score = min(1.0, max(0.0, 1.0 - changes.get(tid, 0.0)))
                profile = profile.with_values({}, convergence_score=score)
            next_profiles[tid] = profile

        converged = (
            (max_change < self.threshold and ratio >= self.settings.team_convergence_ratio)
            or max_change < self.threshold * 0.1
        )
        return IterationSnapshot(
            iteration=iteration,
            profiles=next_profiles,
            max_change=max_change,
            converged_team_ratio=ratio,
            converged=converged,
        )

    def _compute_team(
        self,
        extractor: PerformanceExtractor,
        previous: ProfileMap,
        team_id: int,
    ) -> TeamEfficiencyProfile:
        prior = previous[team_id]
        records = extractor.records_for_team(team_id, previous, self.settings.opponent_quality_factor)
        if not records:
            return TeamEfficiencyProfile.neutral(team_id, prior.season)

        values = self.aggregate_efficiencies(records)
        produced, allowed = extractor.team_averages(team_id)
        return prior.with_values(
            values,
            games_played=len(records),
            confidence_level=confidence_from_games(len(records)),
            averages_produced=produced,
            averages_allowed=allowed,
        )

    @staticmethod
    def aggregate_efficiencies(records: list[GamePerformanceRecord]) -> dict[str, float]:
        """Mean per-game differential for every category."""
        matrix = np.array([[r.efficiency(c) for c in PROFILE_CATEGORIES] for r in records])
        means = matrix.mean(axis=0)
        return {c: float(v) for c, v in zip(PROFILE_CATEGORIES, means)}

    def _find_anomalies(self, profiles: ProfileMap) -> list[EfficiencyAnomaly]:
        limit = self.settings.anomaly_threshold
        anomalies = []
        for tid, profile in profiles.items():
            for category in PROFILE_CATEGORIES:
                value = profile.get(category)
                if abs(value) > limit:
                    anomalies.append(EfficiencyAnomaly(tid, category, value))
                    logger.warning(
                        f"Team {tid} {category} efficiency {value:+.1f} exceeds "
                        f"+/-{limit:.0f} per game (left unclamped)"
                    )
        return anomalies
