"""Predictions package."""

from .boundary_validator import BoundaryValidationResult, BoundaryValidator
from .matchup_composer import OpponentRelativeComposer, OpponentRelativeMatchupAnalysis
from .prediction_service import PredictionResult, PredictionService

__all__ = [
    "BoundaryValidationResult",
    "BoundaryValidator",
    "OpponentRelativeComposer",
    "OpponentRelativeMatchupAnalysis",
    "PredictionResult",
    "PredictionService",
]
