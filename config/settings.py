"""Application settings and configuration."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class Settings:
    """Pipeline configuration settings.

    One instance is built per season run and handed to every component that
    needs it. Fields backed by ``os.getenv`` can be overridden from the
    environment or a ``.env`` file.
    """

    # Season Configuration
    current_season: int = field(
        default_factory=lambda: int(os.getenv("CURRENT_SEASON", "2025"))
    )

    # Recursive Efficiency Engine
    max_iterations: int = field(
        default_factory=lambda: int(os.getenv("MAX_ITERATIONS", "50"))
    )
    convergence_threshold: float = field(
        default_factory=lambda: float(os.getenv("CONVERGENCE_THRESHOLD", "0.001"))
    )
    team_convergence_ratio: float = 0.98  # Share of teams that must individually converge
    # Quality correction applied to opponent baselines each iteration:
    #   baseline_adj = baseline -/+ factor * opponent_mirror_efficiency
    opponent_quality_factor: float = field(
        default_factory=lambda: float(os.getenv("OPPONENT_QUALITY_FACTOR", "0.1"))
    )
    anomaly_threshold: float = 35.0  # |efficiency| per game that gets logged, not clamped
    engine_workers: int = field(
        default_factory=lambda: int(os.getenv("ENGINE_WORKERS", "1"))
    )

    # Prior-Season Blending
    blend_games_threshold: int = 4  # Blend when games_played < threshold
    blend_current_weight: float = 0.85  # Prior season gets the remainder (0.15)

    # Bayesian Shrinkage
    completed_season_min_games: int = 5
    in_progress_season_min_games: int = 4
    reliable_team_multiplier: float = 1.5  # Reliable = games >= 1.5x minimum
    min_reliable_teams: int = 20  # Warn (not fail) below this
    fcs_shrinkage_k: float = 20.0  # k floor for FCS / near-zero-sample teams
    heavy_shrinkage_k: float = 10.0  # k at or above this counts as heavy

    # Regression Calibration
    r_squared_threshold: float = field(
        default_factory=lambda: float(os.getenv("R_SQUARED_THRESHOLD", "0.2"))
    )
    p_value_threshold: float = field(
        default_factory=lambda: float(os.getenv("P_VALUE_THRESHOLD", "0.1"))
    )
    min_regression_samples: int = 30
    min_impact_games: int = 10
    weight_warning_ceiling: float = 2.0

    # Final Score Composition (fixed blend, independent of calibrated weights)
    scoring_blend_weight: float = 0.95
    turnover_blend_weight: float = 0.03
    field_goal_blend_weight: float = 0.02
    turnover_point_value: float = 2.0  # Points lost per predicted turnover
    field_goal_point_value: float = 3.0
    home_field_advantage: float = field(
        default_factory=lambda: float(os.getenv("HOME_FIELD_ADVANTAGE", "2.0"))
    )

    # Bounds Validation (max deviation from opponent baseline)
    scoring_deviation_cap: float = 35.0
    yardage_deviation_cap: float = 200.0

    # Audit Framework
    vif_threshold: float = 5.0
    observations_per_predictor: int = 15
    minimum_accuracy_score: float = 60.0
    accuracy_sample_size: int = 100
    min_bias_sample: int = 6
    random_seed: int = 42

    # Paths
    season_cache_dir: str = field(
        default_factory=lambda: os.getenv("SEASON_CACHE_DIR", ".cache/seasons")
    )

    @property
    def project_root(self) -> Path:
        return Path(__file__).parent.parent

    @property
    def cache_path(self) -> Path:
        path = Path(self.season_cache_dir)
        return path if path.is_absolute() else self.project_root / path

    def validate(self) -> list[str]:
        """Validate settings. Returns list of errors."""
        errors = []
        if self.max_iterations < 1:
            errors.append(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.convergence_threshold <= 0:
            errors.append(
                f"convergence_threshold must be positive, got {self.convergence_threshold}"
            )
        if not 0 < self.blend_current_weight <= 1:
            errors.append(
                f"blend_current_weight must be in (0, 1], got {self.blend_current_weight}"
            )
        if not 0 <= self.r_squared_threshold <= 1:
            errors.append(
                f"r_squared_threshold must be in [0, 1], got {self.r_squared_threshold}"
            )
        if not 0 <= self.p_value_threshold <= 1:
            errors.append(
                f"p_value_threshold must be in [0, 1], got {self.p_value_threshold}"
            )
        blend_total = (
            self.scoring_blend_weight + self.turnover_blend_weight + self.field_goal_blend_weight
        )
        if abs(blend_total - 1.0) > 1e-6:
            errors.append(f"Score blend weights must sum to 1.0, got {blend_total:.4f}")
        if self.engine_workers < 1:
            errors.append(f"engine_workers must be >= 1, got {self.engine_workers}")
        return errors
