"""Prior-season blending for thin current-season samples.

Early in a season a handful of games says little about a team, so profiles
with fewer than ``blend_games_threshold`` games are blended with the team's
prior-season profile at a fixed current/prior weight. The blended profile keeps
its current-season games played and convergence score, but its confidence is
capped at Medium: a blend is never more trustworthy than a full sample.
"""

import logging
from typing import Optional

from config.categories import PROFILE_CATEGORIES
from config.settings import Settings
from src.models.profiles import (
    ConfidenceLevel,
    TeamEfficiencyProfile,
    cap_confidence,
)

logger = logging.getLogger(__name__)


class ProfileBlender:
    """Blend current-season profiles with prior-season profiles."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()

    @property
    def current_weight(self) -> float:
        return self.settings.blend_current_weight

    @property
    def prior_weight(self) -> float:
        return 1.0 - self.settings.blend_current_weight

    def needs_blend(self, profile: TeamEfficiencyProfile) -> bool:
        return profile.games_played < self.settings.blend_games_threshold

    def blend(
        self,
        current: TeamEfficiencyProfile,
        prior: Optional[TeamEfficiencyProfile] = None,
    ) -> TeamEfficiencyProfile:
        """Blend one team's current profile with its prior-season profile.

        Args:
            current: Current-season profile
            prior: Same team's prior-season profile, if one exists

        Returns:
            Blended profile, or ``current`` unchanged when no blend applies
        """
        if prior is None or not self.needs_blend(current):
            return current
        if prior.team_id != current.team_id:
            raise ValueError(
                f"Cannot blend team {current.team_id} with prior profile of team {prior.team_id}"
            )

        w_cur = self.current_weight
        w_prior = self.prior_weight
        values = {
            c: w_cur * current.get(c) + w_prior * prior.get(c)
            for c in PROFILE_CATEGORIES
        }
        return current.with_values(
            values,
            confidence_level=cap_confidence(current.confidence_level, ConfidenceLevel.MEDIUM),
            is_blended=True,
        )

    def blend_season(
        self,
        current: dict[int, TeamEfficiencyProfile],
        prior: Optional[dict[int, TeamEfficiencyProfile]] = None,
    ) -> dict[int, TeamEfficiencyProfile]:
        """Blend every team in a season map with the prior season where needed."""
        prior = prior or {}
        blended = {tid: self.blend(p, prior.get(tid)) for tid, p in current.items()}

        n_blended = sum(1 for p in blended.values() if p.is_blended)
        if n_blended:
            logger.info(
                f"Blended {n_blended}/{len(blended)} teams with prior season "
                f"({self.current_weight:.0%} current / {self.prior_weight:.0%} prior)"
            )
        return blended
