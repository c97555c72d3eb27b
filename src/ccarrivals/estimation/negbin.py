"""Maximum-likelihood fits of count marginals (negative binomial, Poisson)."""

import logging
from dataclasses import dataclass

import numpy as np
from scipy.special import digamma

logger = logging.getLogger(__name__)

# Expansions of the upper bracket for the size parameter
MAX_EXPANSIONS = 10
MAX_BISECTIONS = 1000


@dataclass
class NegBinEstimate:
    """Negative binomial fit in the ``scipy.stats.nbinom`` parametrization.

    The mean of NB(r, p) is ``r (1 - p) / p``.

    Attributes:
        r: Size (shape) parameter.
        p: Success probability.
        mean: Sample mean.
        no_finite_maximum: True when the likelihood kept increasing in r
            (data not overdispersed); ``r`` is then the last bracket end.
        degenerate: True when every count is zero.
    """

    r: float
    p: float
    mean: float
    no_finite_maximum: bool = False
    degenerate: bool = False

    @property
    def gamma_rate(self) -> float:
        """Rate of the gamma mixing distribution, p / (1 - p)."""
        if self.p >= 1.0:
            return float("inf")
        return self.p / (1.0 - self.p)


def _as_counts(x) -> np.ndarray:
    arr = np.asarray(x, dtype=float).ravel()
    if arr.size == 0:
        raise ValueError("At least one observation is required")
    if not np.all(np.isfinite(arr)) or np.any(arr < 0):
        raise ValueError("Counts must be finite and non-negative")
    return arr


def size_score(r: float, x: np.ndarray, mean: float) -> float:
    """Derivative of the profile log-likelihood in r (mean fixed to its MLE)."""
    if r <= 0:
        return float("inf")
    n = x.size
    return float(-n * digamma(r) + n * np.log(r / (r + mean)) + np.sum(digamma(x + r)))


def negbin_mle(x, tol: float = 1e-6) -> NegBinEstimate:
    """Fit a negative binomial by bisection on the size score.

    The score is decreasing in r, so the root is bracketed between 0 and
    the sample mean, extended five-fold up to ten times.

    Args:
        x: Observed counts.
        tol: Bracket width at which bisection stops.

    Returns:
        NegBinEstimate; see its flags for degenerate data.
    """
    if tol <= 0:
        raise ValueError(f"tol must be positive, got {tol}")
    x = _as_counts(x)
    mean = float(x.mean())
    if mean == 0:
        logger.warning("All counts are zero; negative binomial fit is degenerate")
        return NegBinEstimate(r=float("inf"), p=1.0, mean=0.0, degenerate=True)

    r_min, r_max = 0.0, mean
    expansions = 0
    while size_score(r_max, x, mean) > 0 and expansions < MAX_EXPANSIONS:
        r_min = r_max
        r_max *= 5.0
        expansions += 1
    if size_score(r_max, x, mean) >= 0:
        logger.warning(
            f"Negative binomial likelihood has no finite maximum (mean={mean:.4g}); using r={r_max:.4g}"
        )
        return NegBinEstimate(r=r_max, p=r_max / (r_max + mean), mean=mean, no_finite_maximum=True)

    r = 0.5 * (r_min + r_max)
    for _ in range(MAX_BISECTIONS):
        if r_max - r_min < tol:
            break
        r = 0.5 * (r_min + r_max)
        if size_score(r, x, mean) > 0:
            r_min = r
        else:
            r_max = r
    r = 0.5 * (r_min + r_max)
    return NegBinEstimate(r=r, p=r / (r + mean), mean=mean)


def poisson_mle(x) -> float:
    """Poisson rate MLE, the sample mean."""
    return float(_as_counts(x).mean())
