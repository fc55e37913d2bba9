#!/usr/bin/env python3
"""
Batch pipeline runner: season profiles, calibration and audits.

Seasons are read from the parquet season cache (see src/data/season_cache.py).

Usage:
    python scripts/run_pipeline.py --season 2024
    python scripts/run_pipeline.py --season 2023 --season 2024 --workers 2
    python scripts/run_pipeline.py --season 2025 --cache-dir /data/seasons -v

Per season:
    engine -> blend with prior-season profiles (when cached) -> shrinkage
    -> regression calibration + weight update -> regression audit
    -> weight verification -> prediction accuracy test -> store finalized profiles
"""

import argparse
import logging
import sys
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pandas as pd

from config.settings import Settings
from src.data.records import CachedSeasonSource
from src.data.season_cache import SeasonDataCache
from src.data.validators import InsufficientDataError, validate_box_scores, validate_games
from src.models.efficiency_engine import RecursiveEfficiencyEngine
from src.models.profile_blender import ProfileBlender
from src.models.profiles import StaticProfileProvider
from src.models.shrinkage import BayesianShrinkage
from src.models.weight_calibrator import StatisticalImpactAnalyzer
from src.models.weights import WeightManager
from src.predictions.boundary_validator import BoundaryValidator, historical_patterns
from src.predictions.prediction_service import PredictionService
from src.validation.accuracy_tester import AccuracyTester
from src.validation.core import AuditLog
from src.validation.regression_auditor import RegressionAuditor
from src.validation.weight_verifier import WeightVerifier

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Run the team efficiency pipeline for one or more cached seasons"
    )
    parser.add_argument(
        "--season",
        type=int,
        action="append",
        required=True,
        help="Season to process (repeat for several seasons)",
    )
    parser.add_argument(
        "--cache-dir",
        type=str,
        default=None,
        help="Season cache directory (default: SEASON_CACHE_DIR or .cache/seasons)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Seasons processed in parallel (one process each). Default: 1",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    return parser.parse_args(argv)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)


def run_season(season: int, cache_dir: str, verbose: bool = False) -> dict:
    """Run the full pipeline for one season and return a summary row.

    Top-level function so it can be pickled for ProcessPoolExecutor.
    """
    # Spawned workers start without handlers
    configure_logging(verbose)

    settings = Settings(season_cache_dir=cache_dir)
    problems = settings.validate()
    if problems:
        raise ValueError(f"Invalid settings: {'; '.join(problems)}")

    cache = SeasonDataCache(str(settings.cache_path))
    source = CachedSeasonSource(cache)
    data = source.load_season(season)

    games_check = validate_games(data.games)
    if not games_check.is_valid:
        logger.warning(f"{season} games: {games_check.message}")
    box_check = validate_box_scores(data.games, data.box_scores)
    if not box_check.is_valid:
        logger.warning(f"{season} box scores: {box_check.message}")

    # 1. Opponent-adjusted efficiencies
    executor = None
    if settings.engine_workers > 1:
        executor = ThreadPoolExecutor(max_workers=settings.engine_workers)
    try:
        engine_result = RecursiveEfficiencyEngine(source, settings, executor).run_season(season)
    finally:
        if executor is not None:
            executor.shutdown()

    # 2. Prior-season blend, then shrinkage
    prior = cache.load_profiles(season - 1)
    if prior is None:
        logger.info(f"No cached {season - 1} profiles; skipping prior-season blend")
    blended = ProfileBlender(settings).blend_season(engine_result.profiles, prior)
    shrinkage = BayesianShrinkage(settings=settings)
    report = shrinkage.apply(blended, season)
    # Teams below the absolute game floor leave the rating set entirely
    profiles = report.rated_profiles

    # 3. Regression calibration
    weight_manager = WeightManager(settings)
    analyzer = StatisticalImpactAnalyzer(
        StaticProfileProvider({season: profiles}), source, settings, weight_manager
    )
    analysis = None
    try:
        analysis = analyzer.perform_regression_analysis(season)
        analyzer.update_weights_from_regression(season, analysis)
    except (InsufficientDataError, ValueError) as e:
        logger.warning(f"Regression calibration skipped for {season}: {e}; using fallback weights")

    # 4. Audits
    audit_log = AuditLog()
    regression_run = RegressionAuditor(analyzer, settings, audit_log).run(season)
    weight_run = WeightVerifier(weight_manager, settings, audit_log).run(season, analysis)

    patterns = {}
    if cache.has_cached_season(season - 1):
        patterns = historical_patterns([cache.load_season(season - 1)])
    service = PredictionService(
        StaticProfileProvider({season: profiles}),
        settings=settings,
        boundary_validator=BoundaryValidator(patterns),
        weight_manager=weight_manager,
        analysis=analysis,
    )
    accuracy_run = AccuracyTester(source, service, settings, audit_log).run(season)

    # 5. Persist for next season's blend
    cache.save_profiles(season, profiles)

    accuracy = accuracy_run.result.win_accuracy
    return {
        "season": season,
        "teams": len(profiles),
        "converged": engine_result.converged,
        "iterations": engine_result.iterations_run,
        "blended": sum(1 for p in profiles.values() if p.is_blended),
        "shrunk": report.teams_adjusted,
        "dropped": len(report.dropped_teams),
        "model_r2": analysis.overall_model_r_squared if analysis else None,
        "significant": len(analysis.significant_results) if analysis else 0,
        "regression_score": regression_run.result.score,
        "regression_status": regression_run.status.value,
        "weight_score": weight_run.result.score,
        "weight_status": weight_run.status.value,
        "accuracy_pct": accuracy.accuracy if accuracy else None,
        "accuracy_score": accuracy_run.result.score,
        "accuracy_status": accuracy_run.status.value,
    }


def print_summary(rows: list[dict]) -> None:
    df = pd.DataFrame(rows).sort_values("season")
    print("\n" + "=" * 80)
    print("PIPELINE SUMMARY")
    print("=" * 80)
    print(df.to_string(index=False, float_format=lambda v: f"{v:.3f}"))
    print("=" * 80)


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)
    configure_logging(args.verbose)

    cache_dir = args.cache_dir or Settings().season_cache_dir
    seasons = sorted(set(args.season))

    rows = []
    if args.workers > 1 and len(seasons) > 1:
        # Seasons are independent: each runs in its own process
        n_workers = min(args.workers, len(seasons))
        logger.info(f"Running {len(seasons)} seasons in parallel ({n_workers} workers)")
        with ProcessPoolExecutor(max_workers=n_workers) as executor:
            futures = {
                executor.submit(run_season, season, cache_dir, args.verbose): season
                for season in seasons
            }
            for future in futures:
                try:
                    rows.append(future.result())
                except Exception as e:
                    logger.error(f"Season {futures[future]} failed: {e}")
                    raise
    else:
        for season in seasons:
            rows.append(run_season(season, cache_dir, args.verbose))

    print_summary(rows)
    return 0


if __name__ == "__main__":
    sys.exit(main())
