"""Tests for pipeline settings."""

import pytest

from config.categories import CATEGORY_DEFINITIONS, PROFILE_CATEGORIES
from config.settings import Settings


class TestDefaults:
    """Defaults match the documented pipeline constants."""

    def test_engine_defaults(self, monkeypatch):
        """Engine tunables fall back to their defaults without env overrides."""
        for var in ("MAX_ITERATIONS", "CONVERGENCE_THRESHOLD", "OPPONENT_QUALITY_FACTOR"):
            monkeypatch.delenv(var, raising=False)
        s = Settings()
        assert s.max_iterations == 50
        assert s.convergence_threshold == pytest.approx(0.001)
        assert s.opponent_quality_factor == pytest.approx(0.1)
        assert s.team_convergence_ratio == pytest.approx(0.98)

    def test_env_override(self, monkeypatch):
        """Env vars are read when the instance is built, not at import."""
        monkeypatch.setenv("MAX_ITERATIONS", "7")
        monkeypatch.setenv("HOME_FIELD_ADVANTAGE", "3.5")
        s = Settings()
        assert s.max_iterations == 7
        assert s.home_field_advantage == pytest.approx(3.5)

    def test_explicit_argument_wins(self, monkeypatch):
        monkeypatch.setenv("MAX_ITERATIONS", "7")
        assert Settings(max_iterations=3).max_iterations == 3


class TestValidate:
    """Settings.validate() reports problems instead of raising."""

    def test_defaults_are_valid(self):
        assert Settings().validate() == []

    def test_blend_weights_must_sum_to_one(self):
        errors = Settings(scoring_blend_weight=0.9).validate()
        assert any("sum to 1.0" in e for e in errors)

    def test_bad_blend_weight(self):
        errors = Settings(blend_current_weight=1.5).validate()
        assert any("blend_current_weight" in e for e in errors)

    def test_non_positive_threshold(self):
        errors = Settings(convergence_threshold=0.0).validate()
        assert any("convergence_threshold" in e for e in errors)


class TestCategoryTable:
    """Category definitions line up with each other."""

    def test_thirteen_categories(self):
        assert len(PROFILE_CATEGORIES) == 13

    def test_mirrors_are_symmetric(self):
        """A category's mirror points back at it."""
        for name, d in CATEGORY_DEFINITIONS.items():
            if d.mirror is None:
                continue
            assert CATEGORY_DEFINITIONS[d.mirror].mirror == name

    def test_scoring_bound(self):
        assert CATEGORY_DEFINITIONS["scoring_offense"].bound == 30.0
