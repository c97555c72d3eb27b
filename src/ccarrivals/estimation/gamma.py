"""Parameter estimator of the doubly-gamma Poisson arrival model.

Moment estimates are closed form and always available. Maximum
likelihood starts from them and refines the rates, the period shapes and
the daily shape Q with the stochastic trust-region search.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from ccarrivals.core.entities import ShapeEstimator
from ccarrivals.estimation.config import EstimatorConfig
from ccarrivals.estimation.likelihood import DoublyGammaLikelihood, SplineDoublyGammaLikelihood
from ccarrivals.estimation.moments import (
    MomentEstimate,
    as_count_matrix,
    mme_doubly_gamma,
    mme_doubly_gamma_windowed,
)
from ccarrivals.estimation.trust_region import (
    OptimizationResult,
    maximize_trust_region,
    maximize_trust_region_spline,
)

logger = logging.getLogger(__name__)


@dataclass
class GammaEstimate:
    """Fitted doubly-gamma parameters.

    Attributes:
        alphas: Period shape R_i per main period.
        lambdas: Mean count per main period.
        q: Daily shape Q.
        q_at_ceiling: True when Q sits at the configured ceiling, meaning
            the data show no daily busyness.
        method: Estimator that produced the values.
        optimization: Trust-region outcome for likelihood estimates.
    """

    alphas: np.ndarray
    lambdas: np.ndarray
    q: float
    q_at_ceiling: bool
    method: str
    optimization: Optional[OptimizationResult] = None


class GammaParameterEstimator:
    """Fits the doubly-gamma model to a days x periods count matrix.

    Attributes:
        counts: Observed counts.
        config: Estimator settings.
        rng: Stream of the Monte Carlo draws.
    """

    def __init__(
        self,
        counts,
        config: Optional[EstimatorConfig] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.counts = as_count_matrix(counts)
        self.config = config or EstimatorConfig()
        self.rng = rng if rng is not None else np.random.default_rng(self.config.seed)

    @property
    def num_periods(self) -> int:
        return self.counts.shape[1]

    def _from_moments(self, est: MomentEstimate, method: str) -> GammaEstimate:
        return GammaEstimate(
            alphas=est.shapes.copy(),
            lambdas=est.means.copy(),
            q=est.q,
            q_at_ceiling=est.q_at_ceiling,
            method=method,
        )

    def mme(self) -> GammaEstimate:
        """Moment estimates with a single period shape."""
        est = mme_doubly_gamma(self.counts, self.config.q_ceiling)
        return self._from_moments(est, "mme")

    def mme_windowed(self, window: Optional[int] = None) -> GammaEstimate:
        """Moment estimates with per-period shapes over a moving window."""
        window = self.config.moving_window if window is None else window
        est = mme_doubly_gamma_windowed(self.counts, window, self.config.q_ceiling)
        return self._from_moments(est, "mme_windowed")

    def _finish(self, likelihood, result: OptimizationResult, start: GammaEstimate, method: str) -> GammaEstimate:
        lam, r, q = likelihood.unpack(result.x)
        ceiling = self.config.q_ceiling
        at_ceiling = start.q_at_ceiling or q >= ceiling
        if at_ceiling:
            q = ceiling
        alphas = np.broadcast_to(r, (self.num_periods,)).copy()
        logger.info(
            f"{method} estimate after {result.iterations} iterations: Q={q:.4g}"
            f"{' (ceiling)' if at_ceiling else ''}"
        )
        return GammaEstimate(
            alphas=alphas,
            lambdas=np.array(lam, dtype=float),
            q=float(q),
            q_at_ceiling=at_ceiling,
            method=method,
            optimization=result,
        )

    def mle(self) -> GammaEstimate:
        """Likelihood estimates with a single period shape.

        Q is held at its ceiling when the moments cannot identify it.
        """
        start = self.mme()
        likelihood = DoublyGammaLikelihood(self.counts, self.config.num_samples, self.rng)
        x0 = likelihood.pack(start.lambdas, start.alphas[:1], start.q)
        frozen = [likelihood.size - 1] if start.q_at_ceiling else []
        result = maximize_trust_region(likelihood, x0, self.config.trust_region, frozen=frozen)
        return self._finish(likelihood, result, start, "mle")

    def mle_spline(self) -> GammaEstimate:
        """Likelihood estimates with smoothed per-period shapes."""
        start = self.mme_windowed()
        likelihood = SplineDoublyGammaLikelihood(
            self.counts,
            self.config.num_samples,
            self.rng,
            smoothing_lambda=self.config.smoothing_lambda,
        )
        x0 = likelihood.pack(start.lambdas, start.alphas, start.q)
        frozen = [likelihood.size - 1] if start.q_at_ceiling else []
        result = maximize_trust_region_spline(likelihood, x0, self.config.trust_region, frozen=frozen)
        return self._finish(likelihood, result, start, "mle_spline")

    def estimate(self, shape: ShapeEstimator = ShapeEstimator.SINGLE_SHAPE) -> GammaEstimate:
        """Likelihood estimate with the requested shape model."""
        if shape == ShapeEstimator.SPLINE:
            return self.mle_spline()
        return self.mle()
