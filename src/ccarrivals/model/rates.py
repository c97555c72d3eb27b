"""Piecewise-constant Poisson arrivals and their latent rate strategies.

A RateModel turns static parameters into the base rate vector of one
replication (one rate per period, preliminary and wrap-up included).
PiecewiseConstantModel follows the period clock and switches its
exponential rate to ``base(p) * B^e_p * B_p`` at each boundary, where the
busyness exponent e_p is 1 except for the power-busyness variant.
"""

import logging
from abc import ABC, abstractmethod
from typing import Sequence

import numpy as np
from scipy.special import gammaln
from scipy.stats import gamma as gamma_dist

from ccarrivals.core.busyness import Busyness, BusynessState
from ccarrivals.core.errors import IllegalStateError, UnsupportedOperationError
from ccarrivals.core.periods import PeriodLayout
from ccarrivals.model.base import ExponentialModel, average_over_periods
from ccarrivals.model.copula import correlation_factor, draw_uniforms

logger = logging.getLogger(__name__)


def as_parameter_vector(values, name: str, size: int = None) -> np.ndarray:
    """Validate a vector of finite non-negative parameters."""
    arr = np.array(values, dtype=float)
    if arr.ndim != 1:
        raise ValueError(f"{name} must be one-dimensional")
    if size is not None and arr.size != size:
        raise ValueError(f"{name} must have {size} entries, got {arr.size}")
    if not np.all(np.isfinite(arr)):
        raise ValueError(f"{name} must be finite")
    if np.any(arr < 0):
        raise ValueError(f"{name} must be non-negative")
    return arr


class RateModel(ABC):
    """Latent base-rate strategy of a piecewise-constant process.

    Attributes:
        size: Number of periods covered (P+2).
    """

    size: int

    @abstractmethod
    def draw(self, state: BusynessState, rng: np.random.Generator) -> np.ndarray:
        """Base rates of a new replication, before busyness."""

    @abstractmethod
    def expected_rate(self, period: int) -> float:
        """Expected base rate of a period."""

    def busyness_exponent(self, period: int) -> float:
        """Power applied to the day-level busyness B in ``period``."""
        return 1.0


class FixedRates(RateModel):
    """Deterministic rates, identical in every replication."""

    def __init__(self, lambdas: Sequence[float]) -> None:
        self.lambdas = as_parameter_vector(lambdas, "lambdas")
        self.size = self.lambdas.size

    def draw(self, state, rng):
        return self.lambdas.copy()

    def expected_rate(self, period: int) -> float:
        return float(self.lambdas[period])


class GammaRates(RateModel):
    """Poisson-Gamma rates: ``lambda_p * Gamma(alpha_p, alpha_p)``.

    Periods with a zero shape or a zero scale rate are degenerate and
    always get a rate of exactly 0.

    Attributes:
        alphas: Gamma shape per period.
        lambdas: Mean rate per period.
    """

    def __init__(self, alphas: Sequence[float], lambdas: Sequence[float]) -> None:
        self.alphas = as_parameter_vector(alphas, "alphas")
        self.lambdas = as_parameter_vector(lambdas, "lambdas", self.alphas.size)
        self.size = self.alphas.size
        self._active = (self.alphas > 0) & (self.lambdas > 0)

    def draw(self, state, rng):
        rates = np.zeros(self.size)
        a = self.alphas[self._active]
        rates[self._active] = self.lambdas[self._active] * rng.gamma(a, 1.0 / a)
        return rates

    def expected_rate(self, period: int) -> float:
        return float(self.lambdas[period]) if self._active[period] else 0.0


class NortaGammaRates(GammaRates):
    """Gamma rates made dependent across periods by a normal copula.

    Each marginal stays ``lambda_p * Gamma(alpha_p, alpha_p)``; the
    dependence comes from ``correlation``, a (P+2)x(P+2) correlation
    matrix for the underlying normal vector.
    """

    def __init__(
        self,
        alphas: Sequence[float],
        lambdas: Sequence[float],
        correlation,
    ) -> None:
        super().__init__(alphas, lambdas)
        self.correlation = np.array(correlation, dtype=float)
        self._factor = correlation_factor(self.correlation, self.size)

    def draw(self, state, rng):
        u = draw_uniforms(self._factor, rng)
        rates = np.zeros(self.size)
        a = self.alphas[self._active]
        rates[self._active] = self.lambdas[self._active] * gamma_dist.ppf(
            u[self._active], a, scale=1.0 / a
        )
        return rates


class GammaPowRates(GammaRates):
    """Gamma rates with busyness raised to a per-period power.

    The effective rate is ``lambda_p * B^pow_p * Gamma(alpha_p, alpha_p) /
    E[B^pow_p]`` where B ~ Gamma(beta, beta). The normalizing constant keeps
    the expected rate of each period at ``lambda_p``.

    Attributes:
        powers: Busyness exponent per period.
        busyness_shape: Shape beta of the day-level Gamma busyness.
    """

    def __init__(
        self,
        alphas: Sequence[float],
        lambdas: Sequence[float],
        powers: Sequence[float],
        busyness_shape: float,
    ) -> None:
        super().__init__(alphas, lambdas)
        self.powers = np.array(powers, dtype=float)
        if self.powers.shape != (self.size,) or not np.all(np.isfinite(self.powers)):
            raise ValueError(f"powers must hold {self.size} finite values")
        if not np.isfinite(busyness_shape) or busyness_shape <= 0:
            raise ValueError(f"busyness_shape must be positive, got {busyness_shape}")
        self.busyness_shape = float(busyness_shape)
        beta = self.busyness_shape
        # log(1 / E[B^pow]) for B ~ Gamma(beta, rate beta)
        self._log_inv_moment = self.powers * np.log(beta) - gammaln(self.powers + beta) + gammaln(beta)

    @classmethod
    def from_busyness(
        cls,
        alphas: Sequence[float],
        lambdas: Sequence[float],
        powers: Sequence[float],
        busyness: Busyness,
    ) -> "GammaPowRates":
        """Build from a Busyness model whose day-level factor is gamma.

        Raises:
            IllegalStateError: If the busyness distribution is not a gamma.
        """
        dist = busyness.distribution
        if dist is None or getattr(getattr(dist, "dist", None), "name", None) != "gamma":
            raise IllegalStateError("Power busyness requires a gamma day-level busyness distribution")
        var = float(dist.var())
        if var <= 0:
            raise IllegalStateError("Gamma busyness distribution has zero variance")
        return cls(alphas, lambdas, powers, 1.0 / var)

    def draw(self, state, rng):
        return super().draw(state, rng) * np.exp(self._log_inv_moment)

    def busyness_exponent(self, period: int) -> float:
        return float(self.powers[period])


class DirichletCompoundRates(RateModel):
    """Rates from a Dirichlet vector of dimension P+1.

    With q ~ Dirichlet(alpha_0..alpha_P), main period p gets
    ``q_{p-1} / q_P``; preliminary and wrap-up rates are 0.
    """

    def __init__(self, alphas: Sequence[float]) -> None:
        self.alphas = as_parameter_vector(alphas, "alphas")
        if self.alphas.size < 2:
            raise ValueError("Dirichlet-compound rates need at least two shape parameters")
        if np.any(self.alphas <= 0):
            raise ValueError("Dirichlet shape parameters must be positive")
        self.size = self.alphas.size + 1

    def draw(self, state, rng):
        q = rng.dirichlet(self.alphas)
        rates = np.zeros(self.size)
        rates[1:-1] = q[:-1] / q[-1]
        return rates

    def expected_rate(self, period: int) -> float:
        if period <= 0 or period >= self.size - 1:
            return 0.0
        return float(self.alphas[period - 1] / self.alphas[-1])


class RandomRates(RateModel):
    """Independent per-period rates from arbitrary distributions.

    Attributes:
        distributions: One frozen ``scipy.stats`` distribution (or any
            object with ``rvs`` and ``mean``) per period.
    """

    def __init__(self, distributions: Sequence) -> None:
        if not distributions:
            raise ValueError("At least one rate distribution is required")
        self.distributions = list(distributions)
        self.size = len(self.distributions)

    def draw(self, state, rng):
        rates = np.array([float(d.rvs(random_state=rng)) for d in self.distributions])
        if np.any(rates < 0) or not np.all(np.isfinite(rates)):
            raise ValueError("Rate distributions must produce finite non-negative values")
        return rates

    def expected_rate(self, period: int) -> float:
        return float(self.distributions[period].mean())


class PiecewiseConstantModel(ExponentialModel):
    """Poisson arrivals whose rate is constant within each period.

    Attributes:
        periods: Period layout the rates refer to.
        rates: Latent rate strategy.
        normalize: Whether rates are expected counts per period, divided by
            the period duration to obtain a rate.
    """

    requires_periods = True
    follows_periods = True

    def __init__(self, periods: PeriodLayout, rates: RateModel, normalize: bool = False) -> None:
        super().__init__(0.0)
        if rates.size != periods.period_count():
            raise ValueError(
                f"Rate model covers {rates.size} periods, layout has {periods.period_count()}"
            )
        self.periods = periods
        self.rates = rates
        self.normalize = normalize
        self._lambdas = np.zeros(rates.size)

    @property
    def lambdas(self) -> np.ndarray:
        """Base rates drawn for the current replication."""
        return self._lambdas.copy()

    def draw(self, state: BusynessState, rng: np.random.Generator) -> None:
        super().draw(state, rng)
        self._lambdas = np.asarray(self.rates.draw(state, rng), dtype=float)
        logger.debug(f"Drew base rates {np.round(self._lambdas, 4).tolist()}")

    def _normalized(self, value: float, period: int) -> float:
        if not self.normalize or self.periods.is_wrapup(period):
            return value
        d = self.periods.period_duration(period)
        return value / d if d > 0 else value

    def base_rate(self, period: int) -> float:
        """Base rate of a period in the current replication."""
        return self._normalized(float(self._lambdas[period]), period)

    def base_rate_at(self, now: float, period: int) -> float:
        return self.base_rate(period)

    def period_multiplier(self, period: int) -> float:
        s = self._state
        return s.b ** self.rates.busyness_exponent(period) * s.factor(period)

    def multiplier(self) -> float:
        return self.period_multiplier(self._period)

    def check_stationary(self, schedule) -> None:
        if schedule is None or not schedule.is_locked():
            raise UnsupportedOperationError(
                "Stationary mode requires the period schedule to be locked"
            )

    def arrival_rate(self, period: int) -> float:
        return self.base_rate(period) * self.period_multiplier(period)

    def expected_arrival_rate(self, period: int) -> float:
        return self._normalized(self.rates.expected_rate(period), period)

    def arrival_rate_between(self, start: float, end: float) -> float:
        return average_over_periods(self.periods, start, end, self.arrival_rate)

    def expected_arrival_rate_between(self, start: float, end: float) -> float:
        return average_over_periods(self.periods, start, end, self.expected_arrival_rate)
