"""Arrival model strategies plugged into ArrivalProcess.

An arrival model decides when the next contact arrives. It owns the
latent quantities drawn at the start of each replication and answers
arrival-rate queries. Queries a model cannot answer raise
UnsupportedOperationError rather than returning a default.
"""

from abc import ABC, abstractmethod
from typing import Callable, Sequence, Tuple

import numpy as np

from ccarrivals.core.busyness import BusynessState
from ccarrivals.core.errors import UnsupportedOperationError


def average_over_periods(
    periods,
    start: float,
    end: float,
    rate: Callable[[int], float],
) -> float:
    """Duration-weighted average of a per-period rate over [start, end).

    Args:
        periods: Period oracle (PeriodLayout or PeriodSchedule).
        start: Interval start time.
        end: Interval end time.
        rate: Rate of each period index.

    Returns:
        The average rate, 0 for an empty interval.
    """
    if end <= start:
        return 0.0
    total = 0.0
    p = periods.period_of(start)
    while p < periods.period_count():
        s = max(start, periods.period_start(p))
        e = min(end, periods.period_end(p))
        if e > s:
            total += (e - s) * rate(p)
        if end <= periods.period_end(p):
            break
        p += 1
    return total / (end - start)


class ArrivalModel(ABC):
    """Strategy producing inter-arrival times for an ArrivalProcess.

    Subclasses implement ``next_time`` and whichever rate queries make
    sense for them.
    """

    # Whether the process must supply a PeriodSchedule
    requires_periods = False

    def __init__(self) -> None:
        self._state = BusynessState()

    @property
    def busyness_state(self) -> BusynessState:
        """Busyness of the current replication."""
        return self._state

    def draw(self, state: BusynessState, rng: np.random.Generator) -> None:
        """Draw the latent quantities of a new replication.

        Args:
            state: Busyness realized for the replication.
            rng: Stream for latent draws.
        """
        self._state = state

    @abstractmethod
    def next_time(self, now: float, rng: np.random.Generator) -> float:
        """Time until the next arrival, or inf to stop generating."""

    def check_stationary(self, schedule) -> None:
        """Raise unless the model can start in stationary mode."""
        raise UnsupportedOperationError(
            f"{type(self).__name__} does not support stationary mode"
        )

    def arrival_rate(self, period: int) -> float:
        """Realized arrival rate of a period for the current replication."""
        raise UnsupportedOperationError(
            f"{type(self).__name__} cannot report per-period arrival rates"
        )

    def expected_arrival_rate(self, period: int) -> float:
        """Expected arrival rate of a period, with busyness factor 1."""
        raise UnsupportedOperationError(
            f"{type(self).__name__} cannot report expected per-period arrival rates"
        )

    def arrival_rate_between(self, start: float, end: float) -> float:
        """Realized average arrival rate over [start, end)."""
        raise UnsupportedOperationError(
            f"{type(self).__name__} cannot report interval arrival rates"
        )

    def expected_arrival_rate_between(self, start: float, end: float) -> float:
        """Expected average arrival rate over [start, end)."""
        raise UnsupportedOperationError(
            f"{type(self).__name__} cannot report expected interval arrival rates"
        )


class ExponentialModel(ArrivalModel):
    """Model whose inter-arrival times are exponential at a current rate.

    The current base rate ``lam`` is scaled by the busyness of the
    current period. ArrivalProcess changes it through ``set_lambda`` and
    rescales any pending arrival so the residual stays memoryless.
    """

    # Whether the base rate follows period changes
    follows_periods = False

    def __init__(self, lam: float = 0.0) -> None:
        super().__init__()
        if not np.isfinite(lam) or lam < 0:
            raise ValueError(f"lambda must be finite and non-negative, got {lam}")
        self._lam = float(lam)
        self._period = 0

    @property
    def lam(self) -> float:
        """Current base rate, before busyness."""
        return self._lam

    def multiplier(self) -> float:
        """Busyness multiplier applied to the current base rate."""
        return self._state.busyness(self._period)

    @property
    def effective_rate(self) -> float:
        return self._lam * self.multiplier()

    def set_lambda(self, lam: float) -> Tuple[float, float]:
        """Change the current base rate.

        Returns:
            The (old, new) effective rates.
        """
        if not np.isfinite(lam) or lam < 0:
            raise ValueError(f"lambda must be finite and non-negative, got {lam}")
        old = self.effective_rate
        self._lam = float(lam)
        return old, self.effective_rate

    def base_rate_at(self, now: float, period: int) -> float:
        """Base rate in effect at time ``now`` in ``period``."""
        return self._lam

    def change_times(self) -> Sequence[float]:
        """Times at which the base rate changes independently of periods."""
        return ()

    def move_to(self, now: float, period: int) -> Tuple[float, float]:
        """Switch to ``period`` and refresh the current base rate.

        Returns:
            The (old, new) effective rates.
        """
        old = self.effective_rate
        self._period = period
        self._lam = self.base_rate_at(now, period)
        return old, self.effective_rate

    def next_time(self, now: float, rng: np.random.Generator) -> float:
        rate = self.effective_rate
        if rate <= 0:
            return float("inf")
        return rng.standard_exponential() / rate


class PoissonModel(ExponentialModel):
    """Homogeneous Poisson arrivals at a deterministic rate.

    The day-level busyness B multiplies the rate; period factors are not
    used since the rate does not depend on the period.
    """

    def multiplier(self) -> float:
        return self._state.b

    def check_stationary(self, schedule) -> None:
        return None

    def arrival_rate(self, period: int) -> float:
        return self._lam * self._state.b

    def expected_arrival_rate(self, period: int) -> float:
        return self._lam

    def arrival_rate_between(self, start: float, end: float) -> float:
        if end <= start:
            return 0.0
        return self._lam * self._state.b

    def expected_arrival_rate_between(self, start: float, end: float) -> float:
        if end <= start:
            return 0.0
        return self._lam


class RenewalModel(ArrivalModel):
    """Stationary renewal arrivals with i.i.d. inter-arrival times.

    Inter-arrival times come from ``distribution`` (frozen
    ``scipy.stats`` distribution) and are divided by the busyness B.

    Attributes:
        distribution: Inter-arrival time distribution with positive mean.
    """

    def __init__(self, distribution) -> None:
        super().__init__()
        mean = float(distribution.mean())
        if not np.isfinite(mean) or mean <= 0:
            raise ValueError(f"Inter-arrival distribution must have a positive finite mean, got {mean}")
        self.distribution = distribution
        self._mean = mean

    def next_time(self, now: float, rng: np.random.Generator) -> float:
        b = self._state.b
        if b <= 0:
            return float("inf")
        return float(self.distribution.rvs(random_state=rng)) / b

    def check_stationary(self, schedule) -> None:
        return None

    def arrival_rate(self, period: int) -> float:
        return self._state.b / self._mean

    def expected_arrival_rate(self, period: int) -> float:
        return 1.0 / self._mean

    def arrival_rate_between(self, start: float, end: float) -> float:
        return 0.0 if end <= start else self._state.b / self._mean

    def expected_arrival_rate_between(self, start: float, end: float) -> float:
        return 0.0 if end <= start else 1.0 / self._mean
