"""Tests for the OLS helpers."""

import numpy as np
import pytest

from src.data.validators import InsufficientDataError
from src.models.regression import fit_multiple, fit_single


class TestFitSingle:
    def test_exact_line(self):
        """Twelve games from a four-team round robin where the margin is exactly twice the differential."""
        x = np.array([3.0, -1.0, 4.0, -2.0, 0.5, 1.5, -3.0, 1.0, -4.0, 2.0, -0.5, -1.5])
        fit = fit_single(x, 2 * x)
        assert fit.slope == pytest.approx(2.0)
        assert fit.intercept == pytest.approx(0.0, abs=1e-9)
        assert fit.r_squared == pytest.approx(1.0)
        assert fit.n == 12

    def test_noisy_fit_interval_contains_slope(self):
        rng = np.random.default_rng(11)
        x = rng.normal(0, 5, 80)
        y = 1.5 * x + rng.normal(0, 4, 80)
        fit = fit_single(x, y)
        lo, hi = fit.confidence_interval
        assert lo < fit.slope < hi
        assert lo < 1.5 < hi
        assert 0.0 <= fit.p_value <= 1.0
        assert fit.f_statistic > 0

    def test_no_variance(self):
        with pytest.raises(ValueError, match="cannot regress: no variance"):
            fit_single([2.0, 2.0, 2.0, 2.0], [1.0, 5.0, -3.0, 0.0])

    def test_too_few_points(self):
        with pytest.raises(InsufficientDataError, match="at least 3 points"):
            fit_single([1.0, 2.0], [3.0, 4.0])

    def test_length_mismatch(self):
        with pytest.raises(ValueError, match="lengths differ"):
            fit_single([1.0, 2.0, 3.0], [1.0, 2.0])


class TestFitMultiple:
    def test_two_predictors(self):
        rng = np.random.default_rng(5)
        X = rng.normal(0, 1, (60, 2))
        y = 3.0 * X[:, 0] - 1.0 * X[:, 1] + rng.normal(0, 0.5, 60)
        fit = fit_multiple(X, y)
        assert fit.coefficients[0] == pytest.approx(3.0, abs=0.3)
        assert fit.coefficients[1] == pytest.approx(-1.0, abs=0.3)
        assert fit.adjusted_r_squared <= fit.r_squared
        assert fit.f_p_value < 0.001
        assert fit.n_predictors == 2

    def test_one_dimensional_input(self):
        x = np.arange(10, dtype=float)
        fit = fit_multiple(x, x + 1.0)
        assert fit.n_predictors == 1
        assert fit.intercept == pytest.approx(1.0)

    def test_not_enough_rows(self):
        with pytest.raises(InsufficientDataError):
            fit_multiple(np.ones((3, 2)), np.ones(3))
