"""Non-homogeneous Poisson arrivals driven by an explicit intensity.

Three ways of following a time-varying rate: thinning a homogeneous
process at an upper bound, inverting the cumulative rate function, and
switching a piecewise-constant rate at arbitrary change times.
"""

import bisect
import logging
from typing import Callable, Optional, Sequence

import numpy as np
from scipy.integrate import quad
from scipy.optimize import brentq

from ccarrivals.core.errors import UnsupportedOperationError
from ccarrivals.core.periods import PeriodLayout
from ccarrivals.model.base import ArrivalModel, ExponentialModel
from ccarrivals.model.rates import as_parameter_vector

logger = logging.getLogger(__name__)

# Bracket doublings before the cumulative rate is deemed bounded
MAX_BRACKET_DOUBLINGS = 200


class ThinningModel(ArrivalModel):
    """Arrivals with intensity ``B * rate_fn(t)`` generated by thinning.

    Candidates come from a Poisson process at ``B * rate_max``; a candidate
    at t is kept with probability ``rate_fn(t) / rate_max``. No candidate is
    generated at or beyond ``max_time``, which bounds every call.

    Attributes:
        rate_fn: Intensity function of time.
        rate_max: Upper bound of ``rate_fn`` on [0, max_time).
        max_time: Time after which no arrival is generated.
        periods: Optional layout used by per-period rate queries.
    """

    def __init__(
        self,
        rate_fn: Callable[[float], float],
        rate_max: float,
        max_time: float,
        periods: Optional[PeriodLayout] = None,
    ) -> None:
        super().__init__()
        if not np.isfinite(rate_max) or rate_max < 0:
            raise ValueError(f"rate_max must be finite and non-negative, got {rate_max}")
        if not np.isfinite(max_time) or max_time <= 0:
            raise ValueError(f"max_time must be finite and positive, got {max_time}")
        self.rate_fn = rate_fn
        self.rate_max = float(rate_max)
        self.max_time = float(max_time)
        self.periods = periods

    def acceptance_probability(self, t: float) -> float:
        """Probability ``rate_fn(t) / rate_max`` of keeping a candidate at t.

        Raises:
            ValueError: If the intensity exceeds ``rate_max`` or is negative.
        """
        prob = self.rate_fn(t) / self.rate_max
        if not 0.0 <= prob <= 1.0:
            raise ValueError(
                f"Acceptance probability {prob} at t={t} is outside [0, 1]; "
                f"rate_max={self.rate_max} does not bound the intensity"
            )
        return prob

    def next_time(self, now: float, rng: np.random.Generator) -> float:
        bound = self.rate_max * self._state.b
        if bound <= 0:
            return float("inf")
        t = now
        while True:
            t += rng.standard_exponential() / bound
            if t >= self.max_time:
                return float("inf")
            if rng.random() < self.acceptance_probability(t):
                return t - now

    def _average(self, start: float, end: float) -> float:
        if end <= start:
            return 0.0
        integral, _ = quad(self.rate_fn, start, end, limit=200)
        return integral / (end - start)

    def arrival_rate_between(self, start: float, end: float) -> float:
        return self._state.b * self._average(start, end)

    def expected_arrival_rate_between(self, start: float, end: float) -> float:
        return self._average(start, end)

    def _period_window(self, period: int):
        if self.periods is None:
            raise UnsupportedOperationError("Per-period rates need a period layout")
        if self.periods.is_wrapup(period):
            return self.periods.period_start(period), self.max_time
        return self.periods.period_start(period), self.periods.period_end(period)

    def arrival_rate(self, period: int) -> float:
        return self.arrival_rate_between(*self._period_window(period))

    def expected_arrival_rate(self, period: int) -> float:
        return self.expected_arrival_rate_between(*self._period_window(period))


class InversionModel(ArrivalModel):
    """Arrivals obtained by inverting the cumulative intensity.

    With a rate-1 exponential E, the next arrival after ``now`` is the time
    t solving ``cum_fn(t) = cum_fn(now) + E / B``. Without ``inv_fn`` the
    equation is solved numerically with Brent's method.

    Attributes:
        cum_fn: Non-decreasing cumulative intensity, ``cum_fn(0) == 0``.
        inv_fn: Optional closed-form inverse of ``cum_fn``.
        periods: Optional layout used by per-period rate queries.
    """

    def __init__(
        self,
        cum_fn: Callable[[float], float],
        inv_fn: Optional[Callable[[float], float]] = None,
        periods: Optional[PeriodLayout] = None,
        xtol: float = 1e-10,
    ) -> None:
        super().__init__()
        self.cum_fn = cum_fn
        self.inv_fn = inv_fn
        self.periods = periods
        self.xtol = xtol

    def inverse(self, target: float, lower: float = 0.0) -> float:
        """Smallest time t >= ``lower`` with ``cum_fn(t) >= target``.

        Returns inf when the cumulative intensity never reaches ``target``.
        """
        if self.inv_fn is not None:
            return float(self.inv_fn(target))
        if self.cum_fn(lower) >= target:
            return lower
        width = 1.0
        upper = lower + width
        for _ in range(MAX_BRACKET_DOUBLINGS):
            if self.cum_fn(upper) >= target:
                return brentq(lambda t: self.cum_fn(t) - target, lower, upper, xtol=self.xtol)
            lower = upper
            width *= 2.0
            upper = lower + width
        logger.debug(f"Cumulative intensity stays below {target}, no further arrivals")
        return float("inf")

    def next_time(self, now: float, rng: np.random.Generator) -> float:
        b = self._state.b
        if b <= 0:
            return float("inf")
        target = self.cum_fn(now) + rng.standard_exponential() / b
        t = self.inverse(target, now)
        return max(t - now, 0.0)

    def _average(self, start: float, end: float) -> float:
        if end <= start:
            return 0.0
        return (self.cum_fn(end) - self.cum_fn(start)) / (end - start)

    def arrival_rate_between(self, start: float, end: float) -> float:
        return self._state.b * self._average(start, end)

    def expected_arrival_rate_between(self, start: float, end: float) -> float:
        return self._average(start, end)

    def _period_window(self, period: int):
        if self.periods is None:
            raise UnsupportedOperationError("Per-period rates need a period layout")
        if self.periods.is_wrapup(period):
            raise UnsupportedOperationError("The wrap-up period has no finite end")
        return self.periods.period_start(period), self.periods.period_end(period)

    def arrival_rate(self, period: int) -> float:
        return self.arrival_rate_between(*self._period_window(period))

    def expected_arrival_rate(self, period: int) -> float:
        return self.expected_arrival_rate_between(*self._period_window(period))


class TimeIntervalModel(ExponentialModel):
    """Poisson arrivals with a constant rate between arbitrary change times.

    Interval j covers ``[times[j], times[j+1])`` with base rate
    ``lambdas[j]``; the rate is 0 before the first and after the last time.
    The arrival process reschedules the rate at every entry of
    ``change_times()``.

    Attributes:
        times: Strictly increasing change times (n+1 entries).
        lambdas: Rate per interval (n entries).
        normalize: Whether ``lambdas`` are expected counts per interval.
    """

    def __init__(self, times: Sequence[float], lambdas: Sequence[float], normalize: bool = False) -> None:
        super().__init__(0.0)
        self.times = np.array(times, dtype=float)
        if self.times.ndim != 1 or self.times.size < 2:
            raise ValueError("At least two change times are required")
        if np.any(np.diff(self.times) <= 0) or self.times[0] < 0:
            raise ValueError("Change times must be non-negative and strictly increasing")
        self.lambdas = as_parameter_vector(lambdas, "lambdas", self.times.size - 1)
        self.normalize = normalize

    def change_times(self) -> Sequence[float]:
        return self.times.tolist()

    def multiplier(self) -> float:
        return self._state.b

    def interval_rate(self, j: int) -> float:
        """Base rate of interval j, 0 outside the covered range."""
        if j < 0 or j >= self.lambdas.size:
            return 0.0
        lam = float(self.lambdas[j])
        if self.normalize:
            lam /= self.times[j + 1] - self.times[j]
        return lam

    def base_rate_at(self, now: float, period: int) -> float:
        return self.interval_rate(bisect.bisect_right(self.times, now) - 1)

    def _average(self, start: float, end: float) -> float:
        if end <= start:
            return 0.0
        total = 0.0
        for j in range(self.lambdas.size):
            s = max(start, self.times[j])
            e = min(end, self.times[j + 1])
            if e > s:
                total += (e - s) * self.interval_rate(j)
        return total / (end - start)

    def arrival_rate_between(self, start: float, end: float) -> float:
        return self._state.b * self._average(start, end)

    def expected_arrival_rate_between(self, start: float, end: float) -> float:
        return self._average(start, end)
