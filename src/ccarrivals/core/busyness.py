"""Busyness factors: multiplicative randomization of arrival rates."""

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence, Tuple

import numpy as np


@dataclass(frozen=True)
class BusynessState:
    """Busyness realized for one replication.

    The effective arrival rate of period p is
    ``base_rate(p) * b * factor(p)``.

    Attributes:
        b: Day-level busyness factor B (non-negative).
        period_factors: Optional per-period factors B_p.
    """

    b: float = 1.0
    period_factors: Optional[Tuple[float, ...]] = None

    def __post_init__(self) -> None:
        if not np.isfinite(self.b) or self.b < 0:
            raise ValueError(f"Busyness factor must be finite and non-negative, got {self.b}")
        if self.period_factors is not None:
            factors = tuple(float(f) for f in self.period_factors)
            if any(not np.isfinite(f) or f < 0 for f in factors):
                raise ValueError("Period busyness factors must be finite and non-negative")
            object.__setattr__(self, "period_factors", factors)

    def factor(self, period: int) -> float:
        """Period factor B_p, 1.0 when no factor is defined for the period."""
        if self.period_factors is None or period < 0 or period >= len(self.period_factors):
            return 1.0
        return self.period_factors[period]

    def busyness(self, period: int) -> float:
        """Combined factor B * B_p for a period."""
        return self.b * self.factor(period)

    def effective_rate(self, base_rate: float, period: int) -> float:
        """Scale a base rate by the busyness of the period."""
        return base_rate * self.busyness(period)


@dataclass
class Busyness:
    """Busyness model owning the day-level distribution and expectation.

    The day-level factor B is drawn once per replication from
    ``distribution`` (any object with ``rvs(random_state=...)``, typically a
    frozen ``scipy.stats`` distribution). Without a distribution B is fixed
    at ``b``.

    Attributes:
        b: Fixed day-level factor used when no distribution is given.
        distribution: Optional sampler for B.
        period_factors: Optional per-period factors B_p.
        b_mean: Expected value of B. Defaults to the distribution mean,
            or to ``b`` without a distribution.
    """

    b: float = 1.0
    distribution: Optional[Any] = None
    period_factors: Optional[Sequence[float]] = None
    b_mean: Optional[float] = None
    _last: BusynessState = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if not np.isfinite(self.b) or self.b < 0:
            raise ValueError(f"Busyness factor must be finite and non-negative, got {self.b}")
        if self.b_mean is None:
            if self.distribution is not None and hasattr(self.distribution, "mean"):
                self.b_mean = float(self.distribution.mean())
            else:
                self.b_mean = self.b
        elif self.b_mean < 0:
            raise ValueError(f"Expected busyness must be non-negative, got {self.b_mean}")
        self._last = self._state(self.b)

    def _state(self, b: float) -> BusynessState:
        factors = None if self.period_factors is None else tuple(self.period_factors)
        return BusynessState(b=float(b), period_factors=factors)

    @property
    def expected_factor(self) -> float:
        """Expected day-level busyness E[B]."""
        return float(self.b_mean)

    def set_expected_factor(self, b_mean: float) -> None:
        """Override the expected busyness used by expected-rate queries."""
        if b_mean < 0:
            raise ValueError(f"Expected busyness must be non-negative, got {b_mean}")
        self.b_mean = float(b_mean)

    def draw(self, rng: np.random.Generator) -> BusynessState:
        """Draw the busyness state of a new replication."""
        if self.distribution is None:
            b = self.b
        else:
            b = float(self.distribution.rvs(random_state=rng))
            if b < 0:
                raise ValueError(f"Busyness distribution produced a negative factor {b}")
        self._last = self._state(b)
        return self._last

    def fixed(self, b: float) -> BusynessState:
        """State with a caller-chosen day factor (period factors kept)."""
        self._last = self._state(b)
        return self._last

    @property
    def last(self) -> BusynessState:
        """Most recently drawn state."""
        return self._last
