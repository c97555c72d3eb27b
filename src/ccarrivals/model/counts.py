"""Count-driven arrivals generated as uniform order statistics.

A CountModel draws how many contacts arrive in each period of the
replication. OrderStatisticsModel then spreads each period count as
sorted uniform instants over the period window, which is a Poisson
process conditioned on its count. The wrap-up period is unbounded, so
its count must always be zero.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Sequence

import numpy as np
from scipy.stats import nbinom

from ccarrivals.core.busyness import BusynessState
from ccarrivals.core.errors import IllegalStateError
from ccarrivals.core.periods import PeriodLayout
from ccarrivals.model.base import ArrivalModel, average_over_periods
from ccarrivals.model.copula import correlation_factor, draw_uniforms
from ccarrivals.model.rates import as_parameter_vector

logger = logging.getLogger(__name__)


class CountModel(ABC):
    """Per-period arrival count strategy.

    Attributes:
        size: Number of periods covered (P+2).
        scales_with_busyness: Whether counts are multiplied by B * B_p
            and rounded after the draw.
    """

    size: int
    scales_with_busyness = True

    @abstractmethod
    def draw(self, rng: np.random.Generator) -> np.ndarray:
        """Counts of a new replication, before busyness."""

    @abstractmethod
    def expected_count(self, period: int) -> float:
        """Expected count of a period."""


class FixedCounts(CountModel):
    """The same counts in every replication, busyness ignored."""

    scales_with_busyness = False

    def __init__(self, counts: Sequence[int]) -> None:
        arr = as_parameter_vector(counts, "counts")
        if np.any(arr != np.round(arr)):
            raise ValueError("counts must be integers")
        self.counts = arr.astype(int)
        self.size = self.counts.size

    def draw(self, rng):
        return self.counts.copy()

    def expected_count(self, period: int) -> float:
        return float(self.counts[period])


class UniformCounts(FixedCounts):
    """Fixed counts scaled by the busyness of each replication."""

    scales_with_busyness = True


class DirichletCounts(CountModel):
    """Total count split across main periods by a Dirichlet vector.

    With A the total and q ~ Dirichlet(alphas), main period p gets
    ``round(q_{p-1} * A)``. Preliminary and wrap-up counts are 0.

    Attributes:
        alphas: Dirichlet shape per main period.
        total: Sampler for A (frozen ``scipy.stats`` distribution), or
            None when the total is given through ``draw_with_total``.
    """

    def __init__(self, alphas: Sequence[float], total=None) -> None:
        self.alphas = as_parameter_vector(alphas, "alphas")
        if self.alphas.size < 1 or np.any(self.alphas <= 0):
            raise ValueError("Dirichlet shape parameters must be positive")
        self.total = total
        self.size = self.alphas.size + 2
        self._fixed_total: Optional[float] = None

    def fix_total(self, a: float) -> None:
        """Use the total ``a`` for every following draw."""
        if not np.isfinite(a) or a <= 0:
            raise ValueError(f"Total count must be positive, got {a}")
        self._fixed_total = float(a)

    def draw_with_total(self, a: float, rng: np.random.Generator) -> np.ndarray:
        """Split a given total ``a`` across the main periods."""
        if not np.isfinite(a) or a < 0:
            raise ValueError(f"Total count must be finite and non-negative, got {a}")
        q = rng.dirichlet(self.alphas)
        counts = np.zeros(self.size, dtype=int)
        if a == 0:
            return counts
        counts[1:-1] = np.round(q * a).astype(int)
        return counts

    def draw(self, rng):
        if self._fixed_total is not None:
            return self.draw_with_total(self._fixed_total, rng)
        if self.total is None:
            raise IllegalStateError("No total-count distribution and no fixed total")
        return self.draw_with_total(float(self.total.rvs(random_state=rng)), rng)

    def _mean_total(self) -> float:
        if self._fixed_total is not None:
            return self._fixed_total
        if self.total is None:
            raise IllegalStateError("No total-count distribution and no fixed total")
        return float(self.total.mean())

    def expected_count(self, period: int) -> float:
        if period <= 0 or period >= self.size - 1:
            return 0.0
        return self._mean_total() * self.alphas[period - 1] / self.alphas.sum()


class NegBinNortaCounts(CountModel):
    """Correlated negative-binomial counts for the main periods.

    Main period p gets ``NB(gammas[p-1], probs[p-1])`` (scipy ``nbinom``
    parametrization) evaluated at a normal-copula uniform; ``correlation``
    is the PxP correlation of the underlying normal vector.
    """

    def __init__(self, gammas: Sequence[float], probs: Sequence[float], correlation) -> None:
        self.gammas = as_parameter_vector(gammas, "gammas")
        self.probs = as_parameter_vector(probs, "probs", self.gammas.size)
        if np.any(self.gammas <= 0):
            raise ValueError("Negative binomial sizes must be positive")
        if np.any((self.probs <= 0) | (self.probs > 1)):
            raise ValueError("Negative binomial probabilities must lie in (0, 1]")
        self.correlation = np.array(correlation, dtype=float)
        self._factor = correlation_factor(self.correlation, self.gammas.size)
        self.size = self.gammas.size + 2

    def draw(self, rng):
        u = draw_uniforms(self._factor, rng)
        main = np.zeros(self.gammas.size, dtype=int)
        # p == 1 puts all the mass at 0
        live = self.probs < 1
        main[live] = nbinom.ppf(u[live], self.gammas[live], self.probs[live]).astype(int)
        counts = np.zeros(self.size, dtype=int)
        counts[1:-1] = main
        return counts

    def expected_count(self, period: int) -> float:
        if period <= 0 or period >= self.size - 1:
            return 0.0
        return float(nbinom.mean(self.gammas[period - 1], self.probs[period - 1]))


class OrderStatisticsModel(ArrivalModel):
    """Arrivals pre-generated from per-period counts.

    At each draw the counts are turned into sorted arrival instants, and
    ``next_time`` walks through them.

    Attributes:
        periods: Period layout the counts refer to.
        counts: Count strategy.
    """

    def __init__(self, periods: PeriodLayout, counts: CountModel) -> None:
        super().__init__()
        if counts.size != periods.period_count():
            raise ValueError(
                f"Count model covers {counts.size} periods, layout has {periods.period_count()}"
            )
        self.periods = periods
        self.counts = counts
        self._counts = np.zeros(counts.size, dtype=int)
        self._times = np.zeros(0)
        self._index = 0

    @property
    def period_counts(self) -> np.ndarray:
        """Counts used in the current replication."""
        return self._counts.copy()

    @property
    def arrival_times(self) -> np.ndarray:
        """Sorted absolute arrival instants of the current replication."""
        return self._times.copy()

    def draw(self, state: BusynessState, rng: np.random.Generator) -> None:
        super().draw(state, rng)
        counts = np.asarray(self.counts.draw(rng), dtype=float)
        if self.counts.scales_with_busyness:
            scale = np.array([state.busyness(p) for p in range(counts.size)])
            counts = np.round(counts * scale)
        counts = counts.astype(int)
        wrapup = self.periods.wrapup_period()
        if counts[wrapup] > 0:
            raise IllegalStateError(
                f"Cannot generate {counts[wrapup]} arrivals in the unbounded wrap-up period"
            )
        times = [
            rng.uniform(self.periods.period_start(p), self.periods.period_end(p), n)
            for p, n in enumerate(counts[:wrapup])
            if n > 0
        ]
        self._counts = counts
        self._times = np.sort(np.concatenate(times)) if times else np.zeros(0)
        self._index = 0
        logger.debug(f"Generated {self._times.size} arrival instants from counts {counts.tolist()}")

    def next_time(self, now: float, rng: np.random.Generator) -> float:
        while self._index < self._times.size and self._times[self._index] < now:
            self._index += 1
        if self._index >= self._times.size:
            return float("inf")
        t = self._times[self._index]
        self._index += 1
        return t - now

    def arrival_rate(self, period: int) -> float:
        if self.periods.is_wrapup(period):
            return 0.0
        d = self.periods.period_duration(period)
        return self._counts[period] / d if d > 0 else 0.0

    def expected_arrival_rate(self, period: int) -> float:
        if self.periods.is_wrapup(period):
            return 0.0
        d = self.periods.period_duration(period)
        return self.counts.expected_count(period) / d if d > 0 else 0.0

    def arrival_rate_between(self, start: float, end: float) -> float:
        return average_over_periods(self.periods, start, end, self.arrival_rate)

    def expected_arrival_rate_between(self, start: float, end: float) -> float:
        return average_over_periods(self.periods, start, end, self.expected_arrival_rate)
