"""Data validation utilities for the ingestion boundary."""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Optional

from src.data.records import BoxScoreStats, GameRecord

logger = logging.getLogger(__name__)

MAX_PLAUSIBLE_SCORE = 200
YARDAGE_TOLERANCE = 5.0  # passing + rushing may exceed total by rounding noise


class InsufficientDataError(ValueError):
    """Too few games or teams for a computation to mean anything."""


@dataclass
class ValidationResult:
    """Result of a data validation check."""

    is_valid: bool
    message: str
    details: Optional[dict] = None


def validate_games(games: list[GameRecord], min_completion_rate: float = 0.0) -> ValidationResult:
    """Validate game records for a season.

    Args:
        games: Game records
        min_completion_rate: Minimum share of games that must be final

    Returns:
        ValidationResult with status and details
    """
    if not games:
        return ValidationResult(is_valid=False, message="No games provided")

    problems: list[str] = []
    completed = [g for g in games if g.is_complete]

    for g in games:
        if g.home_team_id == g.away_team_id:
            problems.append(f"Game {g.game_id}: team {g.home_team_id} plays itself")
        if g.is_complete:
            if g.home_score < 0 or g.away_score < 0:
                problems.append(f"Game {g.game_id}: negative score")
            elif g.home_score > MAX_PLAUSIBLE_SCORE or g.away_score > MAX_PLAUSIBLE_SCORE:
                problems.append(f"Game {g.game_id}: implausible score above {MAX_PLAUSIBLE_SCORE}")

    duplicates = [gid for gid, n in Counter(g.game_id for g in games).items() if n > 1]
    if duplicates:
        problems.append(f"Duplicate game ids: {sorted(duplicates)}")

    completion_rate = len(completed) / len(games)
    details = {
        "total_games": len(games),
        "completed_games": len(completed),
        "completion_rate": completion_rate,
        "problems": problems,
    }

    if completion_rate < min_completion_rate:
        return ValidationResult(
            is_valid=False,
            message=f"Only {len(completed)}/{len(games)} games have final scores",
            details=details,
        )

    if problems:
        for p in problems:
            logger.warning(p)
        return ValidationResult(
            is_valid=False,
            message=f"{len(problems)} game record problems",
            details=details,
        )

    return ValidationResult(
        is_valid=True,
        message=f"Games valid: {len(completed)}/{len(games)} completed",
        details=details,
    )


def validate_box_scores(
    games: list[GameRecord],
    box_scores: list[BoxScoreStats],
) -> ValidationResult:
    """Validate that every completed game has two sane box score lines.

    Args:
        games: Game records
        box_scores: Box score lines

    Returns:
        ValidationResult with missing/invalid lines in details
    """
    by_key = {(b.game_id, b.team_id): b for b in box_scores}

    missing = []
    for g in games:
        if not g.is_complete:
            continue
        for team_id in (g.home_team_id, g.away_team_id):
            if (g.game_id, team_id) not in by_key:
                missing.append({"game_id": g.game_id, "team_id": team_id})

    invalid = []
    for b in box_scores:
        counts = {
            "turnovers": b.turnovers,
            "sacks": b.sacks,
            "field_goals_made": b.field_goals_made,
            "total_yards": b.total_yards,
            "passing_yards": b.passing_yards,
        }
        for name, value in counts.items():
            if value < 0:
                invalid.append({"game_id": b.game_id, "team_id": b.team_id,
                                "field": name, "value": value, "reason": "negative"})
        if b.passing_yards + b.rushing_yards > b.total_yards + YARDAGE_TOLERANCE:
            invalid.append({"game_id": b.game_id, "team_id": b.team_id,
                            "field": "total_yards", "value": b.total_yards,
                            "reason": "passing + rushing exceeds total"})
        if b.field_goals_attempted and b.field_goals_made > b.field_goals_attempted:
            invalid.append({"game_id": b.game_id, "team_id": b.team_id,
                            "field": "field_goals_made", "value": b.field_goals_made,
                            "reason": "more makes than attempts"})

    details = {"missing": missing, "invalid": invalid, "lines": len(box_scores)}

    if missing or invalid:
        logger.warning(
            f"Box score validation: {len(missing)} missing lines, {len(invalid)} invalid values"
        )
        return ValidationResult(
            is_valid=False,
            message=f"{len(missing)} missing box score lines, {len(invalid)} invalid values",
            details=details,
        )

    return ValidationResult(
        is_valid=True,
        message=f"Box scores complete: {len(box_scores)} lines",
        details=details,
    )
