"""Method-of-moments estimators of the doubly-gamma Poisson model.

Counts Y[j, i] of day j and period i are Poisson with rate
``xi_j * eta_ji * lam_i`` where xi ~ Gamma(Q, Q) is the daily factor and
eta ~ Gamma(R_i, R_i) the period factor. Matching the first two moments
gives

* ``Cov(Y_i, Y_k) = mu_i mu_k / Q`` for i != k, which fixes Q;
* ``Var(Y_i) = mu_i + mu_i^2 (Q + R_i + 1) / (Q R_i)``, which fixes R_i.

These estimates also seed the maximum-likelihood search.
"""

import logging
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)

# Period shape used when the variance shows no overdispersion
FALLBACK_SHAPE = 10.0
# Cap on windowed period shapes
MAX_WINDOW_SHAPE = 100.0


def as_count_matrix(counts, min_rows: int = 2) -> np.ndarray:
    """Validate a days x periods matrix of non-negative counts."""
    y = np.array(counts, dtype=float)
    if y.ndim == 1:
        y = y[:, None]
    if y.ndim != 2:
        raise ValueError(f"Counts must form a 2-D matrix, got {y.ndim} dimensions")
    if y.shape[0] < min_rows:
        raise ValueError(f"At least {min_rows} observations are required, got {y.shape[0]}")
    if y.shape[1] < 1:
        raise ValueError("At least one period is required")
    if not np.all(np.isfinite(y)) or np.any(y < 0):
        raise ValueError("Counts must be finite and non-negative")
    return y


@dataclass
class MomentEstimate:
    """Moment estimates of the doubly-gamma model.

    Attributes:
        means: Mean count per period.
        shapes: Period shape R_i per period.
        q: Daily shape Q.
        q_at_ceiling: True when Q could not be identified from the data
            and was pinned at the configured ceiling.
    """

    means: np.ndarray
    shapes: np.ndarray
    q: float
    q_at_ceiling: bool = False


def _shape_from_sums(var_sum: float, mu2_sum: float, mean_sum: float, q: float) -> float:
    denom = var_sum * q - mu2_sum - mean_sum * q
    if denom <= 0:
        return FALLBACK_SHAPE * q
    return (1.0 + q) * mu2_sum / denom


def daily_shape(y: np.ndarray, q_ceiling: float):
    """Daily shape Q from the cross-period covariances.

    Returns:
        Tuple (q, at_ceiling).
    """
    num_periods = y.shape[1]
    if num_periods < 2:
        logger.warning("Daily shape is not identifiable from a single period; pinned at ceiling")
        return q_ceiling, True
    means = y.mean(axis=0)
    cov = np.cov(y, rowvar=False, bias=True)
    upper = np.triu_indices(num_periods, k=1)
    r_sum = cov[upper].sum()
    mu_sum = np.outer(means, means)[upper].sum()
    if r_sum == 0 or mu_sum / abs(r_sum) >= q_ceiling:
        logger.warning(f"Cross-period covariances sum to {r_sum:.4g}; daily shape pinned at {q_ceiling:g}")
        return q_ceiling, True
    return mu_sum / abs(r_sum), False


def mme_doubly_gamma(counts, q_ceiling: float = 1e6) -> MomentEstimate:
    """Moment estimates with one period shape R shared by all periods.

    Args:
        counts: Days x periods count matrix.
        q_ceiling: Value of Q when it cannot be identified.

    Returns:
        MomentEstimate whose ``shapes`` repeat the common R.
    """
    y = as_count_matrix(counts)
    means = y.mean(axis=0)
    variances = y.var(axis=0)
    q, at_ceiling = daily_shape(y, q_ceiling)
    r = _shape_from_sums(variances.sum(), (means ** 2).sum(), means.sum(), q)
    logger.info(f"Moment estimates: Q={q:.4g}, R={r:.4g} over {y.shape[1]} periods")
    return MomentEstimate(
        means=means,
        shapes=np.full(y.shape[1], r),
        q=q,
        q_at_ceiling=at_ceiling,
    )


def window_bounds(period: int, num_periods: int, window: int):
    """Half-open range of periods averaged for ``period``."""
    window = min(window, num_periods)
    half = int(np.floor((window - 1) / 2 + 0.5))
    if period < half:
        return 0, window
    if period > num_periods - half - 1:
        return num_periods - window, num_periods
    return period - half, period - half + window


def mme_doubly_gamma_windowed(counts, window: int = 5, q_ceiling: float = 1e6) -> MomentEstimate:
    """Moment estimates with one shape per period, smoothed over a window.

    The shape of period i matches the summed moments of the ``window``
    periods around i (shifted inward at the edges). Non-overdispersed
    windows get the shape 10, and shapes are capped at 100.

    Args:
        counts: Days x periods count matrix.
        window: Number of adjacent periods per shape.
        q_ceiling: Value of Q when it cannot be identified.
    """
    if window < 1:
        raise ValueError(f"window must be >= 1, got {window}")
    y = as_count_matrix(counts)
    num_periods = y.shape[1]
    means = y.mean(axis=0)
    variances = y.var(axis=0)
    q, at_ceiling = daily_shape(y, q_ceiling)
    shapes = np.empty(num_periods)
    for i in range(num_periods):
        lo, hi = window_bounds(i, num_periods, window)
        mu = means[lo:hi]
        denom = variances[lo:hi].sum() * q - (mu ** 2).sum() - mu.sum() * q
        if denom <= 0:
            shapes[i] = FALLBACK_SHAPE
        else:
            shapes[i] = min((1.0 + q) * (mu ** 2).sum() / denom, MAX_WINDOW_SHAPE)
    logger.info(f"Windowed moment estimates: Q={q:.4g}, window={window}")
    return MomentEstimate(means=means, shapes=shapes, q=q, q_at_ceiling=at_ceiling)
