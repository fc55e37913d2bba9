"""Efficiency category tables shared by the engine, shrinkage, calibrator and composer.

Sign Convention:
    Every profile category is expressed so that positive = good for the rated team.

    | Side      | Efficiency per game                                  |
    |-----------|------------------------------------------------------|
    | "for"     | sign * (team produced - opponent typical allowed)    |
    | "against" | sign * (opponent typical produced - team allowed)    |

    sign = -1 flips stats where more is worse for the producer (turnovers).
    The mirror is the opponent category that faces this one on the other side
    of the ball; its current-iteration value drives the opponent quality
    correction.
"""

from dataclasses import dataclass
from typing import Optional

# Raw per-game stats tracked for each team line (what a team did in a game)
GAME_STATS: tuple[str, ...] = (
    "total_yards",
    "passing_yards",
    "rushing_yards",
    "points",
    "turnovers",
    "sacks",
    "field_goals_made",
)


@dataclass(frozen=True)
class CategoryDefinition:
    """How one profile category is derived from game lines."""

    name: str
    stat: str
    side: str  # "for" or "against"
    sign: int
    mirror: Optional[str]
    bound: float  # Post-shrinkage clamp, +/- bound


_DEFINITIONS = [
    CategoryDefinition("total_offense", "total_yards", "for", 1, "total_defense", 80.0),
    CategoryDefinition("passing_offense", "passing_yards", "for", 1, "passing_defense", 40.0),
    CategoryDefinition("rushing_offense", "rushing_yards", "for", 1, "rushing_defense", 40.0),
    CategoryDefinition("scoring_offense", "points", "for", 1, "scoring_defense", 30.0),
    CategoryDefinition("total_defense", "total_yards", "against", 1, "total_offense", 80.0),
    CategoryDefinition("passing_defense", "passing_yards", "against", 1, "passing_offense", 40.0),
    CategoryDefinition("rushing_defense", "rushing_yards", "against", 1, "rushing_offense", 40.0),
    CategoryDefinition("scoring_defense", "points", "against", 1, "scoring_offense", 30.0),
    # Ball security: fewer giveaways than the opponent usually forces
    CategoryDefinition("turnover_offense", "turnovers", "for", -1, "turnover_defense", 10.0),
    # Takeaways: more giveaways forced than the opponent usually commits
    CategoryDefinition("turnover_defense", "turnovers", "against", -1, "turnover_offense", 10.0),
    # Protection: opponent's pass rush got home less often than usual
    CategoryDefinition("sack_offense", "sacks", "against", 1, "sack_defense", 10.0),
    # Pass rush: more sacks than the opponent usually allows
    CategoryDefinition("sack_defense", "sacks", "for", 1, "sack_offense", 10.0),
    CategoryDefinition("field_goal", "field_goals_made", "for", 1, None, 15.0),
]

CATEGORY_DEFINITIONS: dict[str, CategoryDefinition] = {d.name: d for d in _DEFINITIONS}

PROFILE_CATEGORIES: tuple[str, ...] = tuple(d.name for d in _DEFINITIONS)

# Categories whose change drives the convergence check
OFFENSE_CATEGORIES: tuple[str, ...] = (
    "total_offense",
    "passing_offense",
    "rushing_offense",
    "scoring_offense",
)

DEFENSE_CATEGORIES: tuple[str, ...] = (
    "total_defense",
    "passing_defense",
    "rushing_defense",
    "scoring_defense",
)

# Regression metric -> (offense-side category, defense-side category or None).
# Per-game predictor = (home off + home def) - (away off + away def).
REGRESSION_METRICS: dict[str, tuple[str, Optional[str]]] = {
    "scoring": ("scoring_offense", "scoring_defense"),
    "passing_yards": ("passing_offense", "passing_defense"),
    "rushing_yards": ("rushing_offense", "rushing_defense"),
    "total_yards": ("total_offense", "total_defense"),
    "turnovers": ("turnover_offense", "turnover_defense"),
    "sacks": ("sack_offense", "sack_defense"),
    "field_goals": ("field_goal", None),
}

# Starting point for recommended weights, and which metric feeds each key
DEFAULT_REGRESSION_WEIGHTS: dict[str, float] = {
    "scoring": 0.2,
    "passing_yards": 0.2,
    "rushing_yards": 0.2,
    "turnovers": 0.2,
    "special_teams": 0.2,
}

RECOMMENDED_WEIGHT_SOURCES: dict[str, str] = {
    "scoring": "scoring",
    "passing_yards": "passing_yards",
    "rushing_yards": "rushing_yards",
    "turnovers": "turnovers",
    "special_teams": "field_goals",
}

# Weight set used before any regression has run, or after a reset
FALLBACK_WEIGHTS: dict[str, float] = {
    "passing_offense": 0.25,
    "rushing_offense": 0.20,
    "scoring_efficiency": 0.30,
    "passing_defense": 0.25,
    "rushing_defense": 0.20,
    "turnover_margin": 0.35,
    "special_teams": 0.15,
    "home_field_advantage": 0.10,
}


@dataclass(frozen=True)
class PredictionCategory:
    """One category predicted per team by the matchup composer.

    predicted = baseline + direction * (team_efficiency - opponent_efficiency)
    where direction is +1 when more is better for the team, -1 otherwise.
    """

    name: str
    stat: str
    team_category: str
    opponent_category: Optional[str]
    baseline_source: str  # Opponent average to read: "allowed" or "produced"
    more_is_better: bool
    cap_kind: str  # "scoring" or "yardage"
    non_negative: bool
    fallback_baseline: float


PREDICTION_CATEGORIES: dict[str, PredictionCategory] = {
    c.name: c
    for c in [
        PredictionCategory("total_yards", "total_yards", "total_offense", "total_defense",
                           "allowed", True, "yardage", True, 400.0),
        PredictionCategory("passing_yards", "passing_yards", "passing_offense", "passing_defense",
                           "allowed", True, "yardage", True, 250.0),
        # Rushing totals can legitimately go negative (sack yardage counts against them)
        PredictionCategory("rushing_yards", "rushing_yards", "rushing_offense", "rushing_defense",
                           "allowed", True, "yardage", False, 150.0),
        PredictionCategory("scoring", "points", "scoring_offense", "scoring_defense",
                           "allowed", True, "scoring", True, 28.0),
        PredictionCategory("turnovers", "turnovers", "turnover_offense", "turnover_defense",
                           "allowed", False, "yardage", True, 1.2),
        PredictionCategory("sacks", "sacks", "sack_offense", "sack_defense",
                           "produced", False, "yardage", True, 2.5),
        PredictionCategory("field_goals", "field_goals_made", "field_goal", None,
                           "allowed", True, "yardage", True, 1.8),
    ]
}
