"""Configuration package for the team efficiency pipeline."""

from .categories import (
    CATEGORY_DEFINITIONS,
    FALLBACK_WEIGHTS,
    OFFENSE_CATEGORIES,
    PREDICTION_CATEGORIES,
    PROFILE_CATEGORIES,
    REGRESSION_METRICS,
)
from .settings import Settings

__all__ = [
    "Settings",
    "CATEGORY_DEFINITIONS",
    "FALLBACK_WEIGHTS",
    "OFFENSE_CATEGORIES",
    "PREDICTION_CATEGORIES",
    "PROFILE_CATEGORIES",
    "REGRESSION_METRICS",
]
