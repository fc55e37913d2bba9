"""Frame schemas for data crossing the ingestion boundary.

Upstream storage round-trips numbers through strings and nullable columns.
Frames are cast to these schemas once, when they enter the pipeline, so the
statistical core only ever sees native numeric types.

DESIGN DECISIONS:
=================

1. IDENTIFIERS (Int64)
   - game_id, team ids: large unique identifiers from the data store

2. SMALL INTEGERS (Int16)
   - season: 2000-2100
   - week: 0-20
   - Counting stats (turnovers, sacks, field goals, conversions): rarely exceed 100

3. FLOAT64
   - Yardage and points: summed and averaged repeatedly, keep full precision
   - Profile efficiencies: regression inputs, keep full precision
"""

import polars as pl

GAMES_SCHEMA: dict[str, pl.DataType] = {
    "game_id": pl.Int64,
    "season": pl.Int16,
    "week": pl.Int16,
    "home_team_id": pl.Int64,
    "away_team_id": pl.Int64,
    "home_score": pl.Float64,
    "away_score": pl.Float64,
    "is_final": pl.Boolean,
}

BOX_SCORE_SCHEMA: dict[str, pl.DataType] = {
    "game_id": pl.Int64,
    "team_id": pl.Int64,
    "total_yards": pl.Float64,
    "passing_yards": pl.Float64,
    "rushing_yards": pl.Float64,
    "turnovers": pl.Int16,
    "sacks": pl.Int16,
    "field_goals_made": pl.Int16,
    "field_goals_attempted": pl.Int16,
    "third_down_conversions": pl.Int16,
    "third_down_attempts": pl.Int16,
    "red_zone_scores": pl.Int16,
    "red_zone_attempts": pl.Int16,
}

# Columns that may be absent upstream; filled with 0 before casting
OPTIONAL_BOX_SCORE_COLUMNS = {
    "field_goals_attempted",
    "third_down_conversions",
    "third_down_attempts",
    "red_zone_scores",
    "red_zone_attempts",
}

PROFILE_SCHEMA: dict[str, pl.DataType] = {
    "team_id": pl.Int64,
    "season": pl.Int16,
    "games_played": pl.Int16,
    "convergence_score": pl.Float64,
    "confidence_level": pl.Utf8,
    "is_blended": pl.Boolean,
}


def coerce_frame(
    df: pl.DataFrame,
    schema: dict[str, pl.DataType],
    optional: frozenset[str] | set[str] = frozenset(),
) -> pl.DataFrame:
    """Cast a frame to a schema, filling optional columns with zero.

    Extra columns are kept untouched. String-encoded numbers are parsed by
    the cast (strict, so garbage raises instead of becoming null).

    Args:
        df: Incoming frame
        schema: Column name -> target dtype
        optional: Columns allowed to be missing (filled with 0)

    Returns:
        Frame with every schema column present and cast

    Raises:
        ValueError: If a required column is missing
    """
    missing = [c for c in schema if c not in df.columns and c not in optional]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")

    fills = [pl.lit(0).alias(c) for c in schema if c not in df.columns]
    if fills:
        df = df.with_columns(fills)

    return df.with_columns(
        [pl.col(name).cast(dtype, strict=True) for name, dtype in schema.items()]
    )
