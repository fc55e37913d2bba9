"""Performance extraction: box scores -> opponent-relative game records.

Each completed game yields two team lines (one per side). For a team line the
"produced" stats are what the team did and the "allowed" stats are what its
opponent did against it.

Opponent baselines are excluded-self: when rating team T's game against O,
O's typical allowed/produced values come from O's games against everyone but
T (falling back to all of O's games when O only ever played T). Otherwise a
single blowout would count twice, once as T's result and once inside the
baseline it is measured against.

The quality correction makes the engine recursive. For a category on the
"for" side (team produced vs opponent typical allowed) the baseline is

    typical_allowed - sign * factor * opponent_mirror_efficiency

and on the "against" side

    typical_produced + sign * factor * opponent_mirror_efficiency

so a strong opposing unit lowers (or raises) the bar the team is measured
against by a small amount proportional to that unit's current rating.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import pandas as pd

from config.categories import CATEGORY_DEFINITIONS, GAME_STATS, PROFILE_CATEGORIES
from src.data.records import BoxScoreStats, GameRecord
from src.models.profiles import TeamEfficiencyProfile

logger = logging.getLogger(__name__)

FOR_COLS = [f"{s}_for" for s in GAME_STATS]
AGAINST_COLS = [f"{s}_against" for s in GAME_STATS]
SPLIT_COLS = [
    "third_down_conversions",
    "third_down_attempts",
    "red_zone_scores",
    "red_zone_attempts",
]


@dataclass(frozen=True)
class GamePerformanceRecord:
    """One team's observed performance in one game, against its opponent's baselines.

    Rebuilt every iteration because opponent baselines move with the
    opponent's current ratings.
    """

    game_id: int
    season: int
    week: int
    team_id: int
    opponent_id: int
    is_home: bool
    produced: dict = field(compare=False)  # stat -> value this team put up
    allowed: dict = field(compare=False)  # stat -> value the opponent put up
    opponent_baselines: dict = field(compare=False)  # category -> adjusted baseline
    quality_adjustments: dict = field(compare=False)  # category -> correction applied

    def efficiency(self, category: str) -> float:
        """Point/yard differential versus the opponent baseline for one category."""
        d = CATEGORY_DEFINITIONS[category]
        baseline = self.opponent_baselines[category]
        if d.side == "for":
            return d.sign * (self.produced[d.stat] - baseline)
        return d.sign * (baseline - self.allowed[d.stat])

    def efficiencies(self) -> dict[str, float]:
        return {c: self.efficiency(c) for c in PROFILE_CATEGORIES}


class PerformanceExtractor:
    """Turn one season of games and box scores into per-team performance records.

    Raw aggregates (per-team totals and per-pair totals) are computed once;
    only the quality-corrected baselines change between iterations.
    """

    def __init__(self, games: list[GameRecord], box_scores: list[BoxScoreStats]):
        self.lines = self._build_lines(games, box_scores)
        self._typical_cache: dict[tuple[int, int], tuple[dict, dict]] = {}

        if self.lines.empty:
            self._team_totals = pd.DataFrame(columns=FOR_COLS + AGAINST_COLS)
            self._team_counts = pd.Series(dtype=int)
            self._pair_totals = pd.DataFrame(columns=FOR_COLS + AGAINST_COLS)
            self._pair_counts = pd.Series(dtype=int)
            self._lines_by_team: dict[int, pd.DataFrame] = {}
            return

        stat_cols = FOR_COLS + AGAINST_COLS
        grouped = self.lines.groupby("team_id")
        self._team_totals = grouped[stat_cols].sum()
        self._team_counts = grouped.size()
        pair_grouped = self.lines.groupby(["team_id", "opponent_id"])
        self._pair_totals = pair_grouped[stat_cols].sum()
        self._pair_counts = pair_grouped.size()
        self._lines_by_team = {int(tid): df for tid, df in grouped}

        logger.debug(
            f"Extracted {len(self.lines)} team lines for {len(self._team_counts)} teams"
        )

    @staticmethod
    def _build_lines(games: list[GameRecord], box_scores: list[BoxScoreStats]) -> pd.DataFrame:
        by_key = {(b.game_id, b.team_id): b for b in box_scores}
        rows = []
        skipped = 0
        for g in games:
            if not g.is_complete:
                continue
            home_box = by_key.get((g.game_id, g.home_team_id))
            away_box = by_key.get((g.game_id, g.away_team_id))
            if home_box is None or away_box is None:
                skipped += 1
                continue
            for team_box, opp_box, team_pts, opp_pts, is_home in (
                (home_box, away_box, g.home_score, g.away_score, True),
                (away_box, home_box, g.away_score, g.home_score, False),
            ):
                row = {
                    "game_id": g.game_id,
                    "season": g.season,
                    "week": g.week,
                    "team_id": team_box.team_id,
                    "opponent_id": opp_box.team_id,
                    "is_home": is_home,
                }
                for stat in GAME_STATS:
                    row[f"{stat}_for"] = float(team_pts if stat == "points" else getattr(team_box, stat))
                    row[f"{stat}_against"] = float(opp_pts if stat == "points" else getattr(opp_box, stat))
                for col in SPLIT_COLS:
                    row[col] = float(getattr(team_box, col))
                rows.append(row)

        if skipped:
            logger.debug(f"Skipped {skipped} completed games without both box scores")

        columns = (
            ["game_id", "season", "week", "team_id", "opponent_id", "is_home"]
            + FOR_COLS + AGAINST_COLS + SPLIT_COLS
        )
        return pd.DataFrame(rows, columns=columns)

    @property
    def team_ids(self) -> list[int]:
        return sorted(int(t) for t in self._team_counts.index)

    def games_played(self, team_id: int) -> int:
        return int(self._team_counts.get(team_id, 0))

    def typical(self, opponent_id: int, exclude_team_id: int) -> tuple[dict, dict]:
        """Opponent's typical (allowed, produced) means, excluding games vs one team.

        Args:
            opponent_id: Team whose typical values are wanted
            exclude_team_id: Team whose head-to-head games are left out

        Returns:
            Tuple of (allowed, produced) dicts keyed by stat name
        """
        key = (opponent_id, exclude_team_id)
        if key in self._typical_cache:
            return self._typical_cache[key]

        n_total = int(self._team_counts.get(opponent_id, 0))
        if n_total == 0:
            raise ValueError(f"Team {opponent_id} has no completed games with box scores")

        totals = self._team_totals.loc[opponent_id]
        n_pair = int(self._pair_counts.get(key, 0))
        if n_total - n_pair > 0:
            if n_pair:
                totals = totals - self._pair_totals.loc[key]
            n = n_total - n_pair
        else:
            n = n_total

        means = totals / n
        allowed = {s: float(means[f"{s}_against"]) for s in GAME_STATS}
        produced = {s: float(means[f"{s}_for"]) for s in GAME_STATS}
        self._typical_cache[key] = (allowed, produced)
        return allowed, produced

    def team_averages(self, team_id: int) -> tuple[dict, dict]:
        """Observed per-game means for one team: (produced, allowed).

        Produced also carries third-down and red-zone conversion rates.
        """
        n = self.games_played(team_id)
        if n == 0:
            return {}, {}
        totals = self._team_totals.loc[team_id]
        produced = {s: float(totals[f"{s}_for"]) / n for s in GAME_STATS}
        allowed = {s: float(totals[f"{s}_against"]) / n for s in GAME_STATS}

        splits = self._lines_by_team[team_id][SPLIT_COLS].sum()
        produced["third_down_rate"] = (
            float(splits["third_down_conversions"] / splits["third_down_attempts"])
            if splits["third_down_attempts"] > 0 else 0.0
        )
        produced["red_zone_rate"] = (
            float(splits["red_zone_scores"] / splits["red_zone_attempts"])
            if splits["red_zone_attempts"] > 0 else 0.0
        )
        return produced, allowed

    def records_for_team(
        self,
        team_id: int,
        profiles: dict[int, TeamEfficiencyProfile],
        quality_factor: float,
    ) -> list[GamePerformanceRecord]:
        """Build one team's performance records against the current profile snapshot.

        Args:
            team_id: Team to build records for
            profiles: Current-iteration profiles (opponent quality source)
            quality_factor: Opponent quality correction factor

        Returns:
            Records in game order; empty if the team has no eligible games
        """
        team_lines = self._lines_by_team.get(team_id)
        if team_lines is None:
            return []

        records = []
        for row in team_lines.sort_values(["week", "game_id"]).itertuples(index=False):
            opponent_id = int(row.opponent_id)
            typical_allowed, typical_produced = self.typical(opponent_id, team_id)
            opponent = profiles.get(opponent_id)

            baselines = {}
            adjustments = {}
            for category in PROFILE_CATEGORIES:
                d = CATEGORY_DEFINITIONS[category]
                mirror_value = opponent.get(d.mirror) if (opponent is not None and d.mirror) else 0.0
                correction = d.sign * quality_factor * mirror_value
                if d.side == "for":
                    baselines[category] = typical_allowed[d.stat] - correction
                    adjustments[category] = -correction
                else:
                    baselines[category] = typical_produced[d.stat] + correction
                    adjustments[category] = correction

            records.append(
                GamePerformanceRecord(
                    game_id=int(row.game_id),
                    season=int(row.season),
                    week=int(row.week),
                    team_id=team_id,
                    opponent_id=opponent_id,
                    is_home=bool(row.is_home),
                    produced={s: getattr(row, f"{s}_for") for s in GAME_STATS},
                    allowed={s: getattr(row, f"{s}_against") for s in GAME_STATS},
                    opponent_baselines=baselines,
                    quality_adjustments=adjustments,
                )
            )
        return records

    def extract(
        self,
        profiles: dict[int, TeamEfficiencyProfile],
        quality_factor: float,
        team_ids: Optional[list[int]] = None,
    ) -> dict[int, list[GamePerformanceRecord]]:
        """Build performance records for every (or the given) team."""
        ids = team_ids if team_ids is not None else self.team_ids
        return {tid: self.records_for_team(tid, profiles, quality_factor) for tid in ids}
