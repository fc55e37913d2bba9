"""Model components package.

- RecursiveEfficiencyEngine: opponent-adjusted team efficiencies, iterated to a fixed point
- PerformanceExtractor: box scores to per-game records against opponent baselines
- ProfileBlender: prior-season blending for thin samples
- BayesianShrinkage: shrinkage toward reliable-team national averages
- StatisticalImpactAnalyzer: regression of game margins on efficiency differentials
- WeightManager: category weight sets and their change history
"""

from .efficiency_engine import RecursiveEfficiencyEngine, SeasonEfficiencyResult
from .performance import GamePerformanceRecord, PerformanceExtractor
from .profile_blender import ProfileBlender
from .profiles import (
    ConfidenceLevel,
    DataQuality,
    ProfileProvider,
    StaticProfileProvider,
    TeamEfficiencyProfile,
)
from .shrinkage import BayesianShrinkage, ShrinkageReport
from .weight_calibrator import (
    EnhancedStatisticalAnalysis,
    RegressionAnalysisResult,
    StatisticalImpactAnalyzer,
)
from .weights import WeightChangeLog, WeightManager, WeightSet

__all__ = [
    "BayesianShrinkage",
    "ConfidenceLevel",
    "DataQuality",
    "EnhancedStatisticalAnalysis",
    "GamePerformanceRecord",
    "PerformanceExtractor",
    "ProfileBlender",
    "ProfileProvider",
    "RecursiveEfficiencyEngine",
    "RegressionAnalysisResult",
    "SeasonEfficiencyResult",
    "ShrinkageReport",
    "StaticProfileProvider",
    "StatisticalImpactAnalyzer",
    "TeamEfficiencyProfile",
    "WeightChangeLog",
    "WeightManager",
    "WeightSet",
]
