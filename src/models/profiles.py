"""Team efficiency profiles and the confidence scale attached to them."""

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Optional, Protocol

from config.categories import PROFILE_CATEGORIES


class ConfidenceLevel(str, Enum):
    """Sample-size confidence attached to a profile."""
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    @property
    def rank(self) -> int:
        return {"Low": 0, "Medium": 1, "High": 2}[self.value]


class DataQuality(str, Enum):
    """Display-oriented data quality label."""
    EXCELLENT = "Excellent"
    GOOD = "Good"
    LIMITED = "Limited"


def confidence_from_games(games_played: int) -> ConfidenceLevel:
    """Confidence as a step function of games played (>=8 High, >=5 Medium)."""
    if games_played >= 8:
        return ConfidenceLevel.HIGH
    if games_played >= 5:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def map_confidence_to_data_quality(level: ConfidenceLevel) -> DataQuality:
    return {
        ConfidenceLevel.HIGH: DataQuality.EXCELLENT,
        ConfidenceLevel.MEDIUM: DataQuality.GOOD,
        ConfidenceLevel.LOW: DataQuality.LIMITED,
    }[ConfidenceLevel(level)]


def cap_confidence(level: ConfidenceLevel, ceiling: ConfidenceLevel) -> ConfidenceLevel:
    return level if level.rank <= ceiling.rank else ceiling


@dataclass(frozen=True)
class TeamEfficiencyProfile:
    """Opponent-adjusted efficiency profile for one team in one season.

    Every category is a mean per-game differential against what the specific
    opponents typically allow/produce, positive = good for this team (see
    config.categories for the table).
    """

    team_id: int
    season: int

    total_offense: float = 0.0
    passing_offense: float = 0.0
    rushing_offense: float = 0.0
    scoring_offense: float = 0.0
    total_defense: float = 0.0
    passing_defense: float = 0.0
    rushing_defense: float = 0.0
    scoring_defense: float = 0.0
    turnover_offense: float = 0.0
    turnover_defense: float = 0.0
    sack_offense: float = 0.0
    sack_defense: float = 0.0
    field_goal: float = 0.0

    games_played: int = 0
    convergence_score: float = 0.0
    confidence_level: ConfidenceLevel = ConfidenceLevel.LOW
    is_blended: bool = False

    # Observed per-game means (raw, not opponent adjusted), keyed by stat name.
    # The composer reads an opponent's own averages from here.
    averages_produced: dict = field(default_factory=dict, compare=False)
    averages_allowed: dict = field(default_factory=dict, compare=False)

    def __repr__(self) -> str:
        return (
            f"TeamEfficiencyProfile(team={self.team_id}, season={self.season}, "
            f"off={self.scoring_offense:+.2f}, def={self.scoring_defense:+.2f}, "
            f"games={self.games_played}, conf={self.confidence_level.value}, "
            f"conv={self.convergence_score:.3f})"
        )

    @classmethod
    def neutral(cls, team_id: int, season: int) -> "TeamEfficiencyProfile":
        """All-zero starting profile used to seed the engine."""
        return cls(team_id=team_id, season=season)

    def get(self, category: str) -> float:
        if category not in PROFILE_CATEGORIES:
            raise ValueError(f"Unknown efficiency category: {category}")
        return getattr(self, category)

    def category_values(self) -> dict[str, float]:
        return {c: getattr(self, c) for c in PROFILE_CATEGORIES}

    def with_values(self, values: dict[str, float], **changes) -> "TeamEfficiencyProfile":
        """Copy with some category values (and any other fields) replaced."""
        unknown = set(values) - set(PROFILE_CATEGORIES)
        if unknown:
            raise ValueError(f"Unknown efficiency categories: {sorted(unknown)}")
        return replace(self, **values, **changes)

    @property
    def data_quality(self) -> DataQuality:
        return map_confidence_to_data_quality(self.confidence_level)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["confidence_level"] = self.confidence_level.value
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "TeamEfficiencyProfile":
        d = dict(d)
        d["confidence_level"] = ConfidenceLevel(d.get("confidence_level", "Low"))
        d.setdefault("averages_produced", {})
        d.setdefault("averages_allowed", {})
        return cls(**d)


def profile_or_neutral(
    profiles: dict[int, TeamEfficiencyProfile],
    team_id: int,
    season: Optional[int] = None,
) -> TeamEfficiencyProfile:
    """Look up a profile, falling back to a neutral one."""
    if team_id in profiles:
        return profiles[team_id]
    if season is None:
        raise ValueError(f"No profile for team {team_id} and no season to build one")
    return TeamEfficiencyProfile.neutral(team_id, season)


class ProfileProvider(Protocol):
    """Anything that can hand over a season's profile map (usually the engine)."""

    def calculate_season_efficiencies(self, season: int) -> dict[int, TeamEfficiencyProfile]:
        ...


class StaticProfileProvider:
    """Serve already-finalized profile maps (shrunk, blended or loaded from cache)."""

    def __init__(self, seasons: Optional[dict[int, dict[int, TeamEfficiencyProfile]]] = None):
        self._seasons = dict(seasons or {})

    def add(self, season: int, profiles: dict[int, TeamEfficiencyProfile]) -> None:
        self._seasons[season] = dict(profiles)

    def calculate_season_efficiencies(self, season: int) -> dict[int, TeamEfficiencyProfile]:
        return dict(self._seasons.get(season, {}))
