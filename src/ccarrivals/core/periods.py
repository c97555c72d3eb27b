"""Period structure of a simulated day and its SimPy-driven clock."""

import bisect
import logging
from dataclasses import dataclass
from typing import Callable, Generator, List, Optional, Tuple

import simpy

logger = logging.getLogger(__name__)

PeriodListener = Callable[[int], None]


@dataclass(frozen=True)
class PeriodLayout:
    """Static period boundaries of a day.

    ``boundaries`` holds P+1 increasing times t_0 < ... < t_P. Period 0 is
    the preliminary period [0, t_0), main period p (1 <= p <= P) covers
    [t_{p-1}, t_p) and the wrap-up period P+1 covers [t_P, inf).

    Attributes:
        boundaries: Period boundary times.
    """

    boundaries: Tuple[float, ...]

    def __post_init__(self) -> None:
        bounds = tuple(float(t) for t in self.boundaries)
        if len(bounds) < 2:
            raise ValueError("At least one main period (two boundaries) is required")
        if bounds[0] < 0:
            raise ValueError("Period boundaries must be non-negative")
        if any(b <= a for a, b in zip(bounds, bounds[1:])):
            raise ValueError("Period boundaries must be strictly increasing")
        object.__setattr__(self, "boundaries", bounds)

    @classmethod
    def regular(cls, num_periods: int, duration: float, start: float = 0.0) -> "PeriodLayout":
        """Layout of ``num_periods`` main periods of equal ``duration``."""
        if num_periods < 1:
            raise ValueError(f"num_periods must be >= 1, got {num_periods}")
        if duration <= 0:
            raise ValueError(f"duration must be positive, got {duration}")
        return cls(tuple(start + k * duration for k in range(num_periods + 1)))

    def period_count(self) -> int:
        """Total number of periods, preliminary and wrap-up included (P+2)."""
        return len(self.boundaries) + 1

    def main_period_count(self) -> int:
        """Number of main periods P."""
        return len(self.boundaries) - 1

    def wrapup_period(self) -> int:
        """Index of the wrap-up period (P+1)."""
        return len(self.boundaries)

    def is_wrapup(self, period: int) -> bool:
        return period == self.wrapup_period()

    def is_preliminary(self, period: int) -> bool:
        return period == 0

    def _check(self, period: int) -> None:
        if period < 0 or period >= self.period_count():
            raise ValueError(f"Invalid period index {period}")

    def period_start(self, period: int) -> float:
        """Starting time of a period (0 for the preliminary period)."""
        self._check(period)
        return 0.0 if period == 0 else self.boundaries[period - 1]

    def period_end(self, period: int) -> float:
        """Ending time of a period (infinite for the wrap-up period)."""
        self._check(period)
        if period == self.wrapup_period():
            return float("inf")
        return self.boundaries[period]

    def period_duration(self, period: int) -> float:
        return self.period_end(period) - self.period_start(period)

    def period_of(self, time: float) -> int:
        """Index of the period containing ``time``."""
        return bisect.bisect_right(self.boundaries, time)

    @property
    def day_length(self) -> float:
        """Total length of the main periods."""
        return self.boundaries[-1] - self.boundaries[0]


class PeriodSchedule:
    """Period clock on a SimPy environment.

    Answers period queries for the current simulation time and notifies
    listeners, in registration order, each time a boundary is crossed.
    The schedule can be locked to a fixed period, in which case it reports
    that period and broadcasts nothing.

    Attributes:
        env: SimPy environment.
        layout: Static period boundaries.
    """

    def __init__(self, env: simpy.Environment, layout: PeriodLayout, name: str = "") -> None:
        self.env = env
        self.layout = layout
        self.name = name
        self._listeners: List[PeriodListener] = []
        self._locked: Optional[int] = None
        self._started = False

    @classmethod
    def regular(
        cls,
        env: simpy.Environment,
        num_periods: int,
        duration: float,
        start: float = 0.0,
    ) -> "PeriodSchedule":
        """Schedule of equal-length main periods."""
        return cls(env, PeriodLayout.regular(num_periods, duration, start))

    # Layout queries

    def period_count(self) -> int:
        return self.layout.period_count()

    def main_period_count(self) -> int:
        return self.layout.main_period_count()

    def is_wrapup(self, period: int) -> bool:
        return self.layout.is_wrapup(period)

    def period_start(self, period: int) -> float:
        return self.layout.period_start(period)

    def period_end(self, period: int) -> float:
        return self.layout.period_end(period)

    def period_duration(self, period: int) -> float:
        return self.layout.period_duration(period)

    def period_of(self, time: float) -> int:
        return self.layout.period_of(time)

    # Clock

    @property
    def current_period(self) -> int:
        """Period of the current simulation time, or the locked period."""
        if self._locked is not None:
            return self._locked
        return self.layout.period_of(self.env.now)

    def is_locked(self) -> bool:
        return self._locked is not None

    def lock(self, period: int) -> None:
        """Freeze the schedule in ``period``."""
        self.layout._check(period)
        self._locked = period
        logger.info(f"Period schedule {self.name or id(self)} locked to period {period}")

    def unlock(self) -> None:
        self._locked = None

    def add_listener(self, listener: PeriodListener) -> None:
        """Register a period-change callback, ignoring duplicates."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: PeriodListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listeners(self) -> List[PeriodListener]:
        return list(self._listeners)

    def start(self) -> None:
        """Start broadcasting period changes from the current time."""
        if self._started:
            return
        self._started = True
        self.env.process(self._run())

    def _run(self) -> Generator[simpy.Event, None, None]:
        for boundary in self.layout.boundaries:
            if boundary < self.env.now:
                continue
            yield self.env.timeout(boundary - self.env.now)
            if self._locked is not None:
                continue
            period = self.layout.period_of(self.env.now)
            logger.debug(f"Period change to {period} at t={self.env.now:.4f}")
            for listener in list(self._listeners):
                listener(period)
