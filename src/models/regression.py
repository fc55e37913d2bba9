"""Ordinary least squares helpers with the diagnostics the calibrator reports.

Single-predictor fits go through scipy.stats.linregress; the coefficient CI is
t-based. Multi-predictor fits use sklearn's LinearRegression for the
coefficients and compute the overall F test here.
"""

import logging
from dataclasses import dataclass

import numpy as np
from scipy import stats
from sklearn.linear_model import LinearRegression

from src.data.validators import InsufficientDataError

logger = logging.getLogger(__name__)

VARIANCE_EPS = 1e-12


@dataclass
class SingleFit:
    """Result of y = intercept + slope * x."""

    slope: float
    intercept: float
    r_squared: float
    p_value: float
    std_error: float
    ci_lower: float
    ci_upper: float
    n: int
    residual_std_error: float
    f_statistic: float

    @property
    def confidence_interval(self) -> tuple[float, float]:
        return (self.ci_lower, self.ci_upper)

    def __repr__(self) -> str:
        return (
            f"SingleFit(slope={self.slope:.4f}, r2={self.r_squared:.3f}, "
            f"p={self.p_value:.4f}, n={self.n})"
        )


@dataclass
class MultipleFit:
    """Result of a multi-predictor OLS fit."""

    coefficients: np.ndarray
    intercept: float
    r_squared: float
    adjusted_r_squared: float
    residual_std_error: float
    f_statistic: float
    f_p_value: float
    n: int
    n_predictors: int


def fit_single(x, y, confidence: float = 0.95) -> SingleFit:
    """Fit a one-predictor OLS regression.

    Args:
        x: Predictor values
        y: Response values
        confidence: Coverage of the coefficient interval

    Returns:
        SingleFit with slope, R^2, p-value and coefficient CI

    Raises:
        InsufficientDataError: Fewer than 3 points (no residual degrees of freedom)
        ValueError: Predictor has no variance
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if len(x) != len(y):
        raise ValueError(f"x and y lengths differ: {len(x)} vs {len(y)}")
    n = len(x)
    if n < 3:
        raise InsufficientDataError(f"Need at least 3 points to regress, got {n}")
    if np.var(x) < VARIANCE_EPS:
        raise ValueError("cannot regress: no variance")

    res = stats.linregress(x, y)
    df = n - 2
    slope = float(res.slope)
    intercept = float(res.intercept)
    r_squared = float(res.rvalue ** 2)
    std_error = float(res.stderr)
    p_value = float(np.clip(res.pvalue, 0.0, 1.0))

    t_crit = float(stats.t.ppf(0.5 + confidence / 2, df))
    half_width = t_crit * std_error

    residuals = y - (intercept + slope * x)
    sse = float(np.sum(residuals ** 2))
    rse = float(np.sqrt(sse / df))

    if r_squared >= 1.0:
        f_statistic = float("inf")
    else:
        f_statistic = r_squared / (1.0 - r_squared) * df

    return SingleFit(
        slope=slope,
        intercept=intercept,
        r_squared=r_squared,
        p_value=p_value,
        std_error=std_error,
        ci_lower=slope - half_width,
        ci_upper=slope + half_width,
        n=n,
        residual_std_error=rse,
        f_statistic=f_statistic,
    )


def fit_multiple(X, y) -> MultipleFit:
    """Fit a multi-predictor OLS regression with an overall F test.

    Args:
        X: (n, p) predictor matrix
        y: Response values

    Returns:
        MultipleFit with R^2, adjusted R^2, RSE and F test

    Raises:
        InsufficientDataError: Not enough rows for the number of predictors
    """
    X = np.asarray(X, dtype=float)
    y = np.asarray(y, dtype=float)
    if X.ndim == 1:
        X = X.reshape(-1, 1)
    n, p = X.shape
    df_resid = n - p - 1
    if df_resid < 1:
        raise InsufficientDataError(
            f"Need more than {p + 1} rows for {p} predictors, got {n}"
        )

    model = LinearRegression().fit(X, y)
    fitted = model.predict(X)
    sse = float(np.sum((y - fitted) ** 2))
    sst = float(np.sum((y - y.mean()) ** 2))

    r_squared = 1.0 - sse / sst if sst > 0 else 0.0
    r_squared = float(np.clip(r_squared, 0.0, 1.0))
    adjusted = 1.0 - (1.0 - r_squared) * (n - 1) / df_resid
    rse = float(np.sqrt(sse / df_resid))

    if r_squared >= 1.0:
        f_statistic, f_p = float("inf"), 0.0
    else:
        f_statistic = (r_squared / p) / ((1.0 - r_squared) / df_resid)
        f_p = float(stats.f.sf(f_statistic, p, df_resid))

    return MultipleFit(
        coefficients=np.asarray(model.coef_, dtype=float),
        intercept=float(model.intercept_),
        r_squared=r_squared,
        adjusted_r_squared=float(adjusted),
        residual_std_error=rse,
        f_statistic=float(f_statistic),
        f_p_value=f_p,
        n=n,
        n_predictors=p,
    )
