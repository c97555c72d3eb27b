"""Arrival process state machine driven by a SimPy environment.

The process owns one ArrivalModel. At each firing it creates a contact
through its factory, notifies its listeners in registration order and
schedules the following arrival from ``model.next_time``.
"""

import logging
from typing import Callable, Generator, List, Optional

import numpy as np
import simpy

from ccarrivals.core.busyness import Busyness, BusynessState
from ccarrivals.core.contact import Contact, ContactFactory
from ccarrivals.core.entities import ProcessState
from ccarrivals.core.errors import (
    ContactInstantiationError,
    IllegalStateError,
    UnsupportedOperationError,
)
from ccarrivals.core.periods import PeriodSchedule
from ccarrivals.core.scheduler import SimEvent
from ccarrivals.model.base import ArrivalModel, ExponentialModel

logger = logging.getLogger(__name__)

NewContactListener = Callable[[Contact], None]


class ArrivalProcess:
    """Generates contacts following an arrival model.

    Lifecycle per replication: ``init()``, then ``start()`` (or
    ``start_stationary()``), then optionally ``stop()``. Calling ``start``
    without a prior ``init`` reuses whatever latent rates the model holds.

    Attributes:
        env: SimPy environment.
        model: Arrival model strategy.
        factory: Creates one contact per arrival.
        rng: Stream for inter-arrival times.
        rate_rng: Stream for latent draws at init (defaults to ``rng``).
        busyness: Busyness model, fixed at 1 when not given.
        periods: Period clock, required by period-aware models.
    """

    def __init__(
        self,
        env: simpy.Environment,
        model: ArrivalModel,
        factory: ContactFactory,
        rng: np.random.Generator,
        rate_rng: Optional[np.random.Generator] = None,
        busyness: Optional[Busyness] = None,
        periods: Optional[PeriodSchedule] = None,
        name: str = "",
    ) -> None:
        if model.requires_periods and periods is None:
            raise ValueError(f"{type(model).__name__} requires a period schedule")
        self.env = env
        self.model = model
        self.factory = factory
        self.rng = rng
        self.rate_rng = rng if rate_rng is None else rate_rng
        self.busyness = busyness if busyness is not None else Busyness()
        self.periods = periods
        self.name = name or f"arrivals-{id(self)}"
        self._event = SimEvent(env, self._fire, name=self.name)
        self._state = ProcessState.STOPPED
        self._listeners: List[NewContactListener] = []
        self._broadcasting = False
        self._num_arrivals = 0
        self._change_proc: Optional[simpy.Process] = None
        if periods is not None and self._follows_periods:
            periods.add_listener(self._on_period_change)
        self._check_period_factors(self.busyness.period_factors)

    @property
    def _follows_periods(self) -> bool:
        return isinstance(self.model, ExponentialModel) and self.model.follows_periods

    def _period_count(self) -> Optional[int]:
        if self.periods is not None:
            return self.periods.period_count()
        layout = getattr(self.model, "periods", None)
        return None if layout is None else layout.period_count()

    def _check_period_factors(self, factors) -> None:
        """Reject period busyness factors that do not cover every period."""
        count = self._period_count()
        if factors is None or count is None:
            return
        if len(factors) != count:
            raise ValueError(f"Busyness has {len(factors)} period factors, layout has {count} periods")

    def _current_period(self) -> int:
        return self.periods.current_period if self.periods is not None else 0

    # Lifecycle

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def is_started(self) -> bool:
        return self._state == ProcessState.STARTED

    @property
    def num_arrivals(self) -> int:
        """Contacts generated since the last init."""
        return self._num_arrivals

    @property
    def busyness_state(self) -> BusynessState:
        return self.model.busyness_state

    def init(self, b: Optional[float] = None) -> None:
        """Prepare a new replication.

        Cancels the pending arrival, resets the counters and draws new
        latent quantities. When ``b`` is given it replaces the random
        day-level busyness.

        Args:
            b: Optional fixed day-level busyness factor.
        """
        self._event.cancel()
        self._state = ProcessState.STOPPED
        self._num_arrivals = 0
        state = self.busyness.draw(self.rate_rng) if b is None else self.busyness.fixed(b)
        self._check_period_factors(state.period_factors)
        self.model.draw(state, self.rate_rng)
        if isinstance(self.model, ExponentialModel):
            self.model.move_to(self.env.now, self._current_period())
        logger.debug(f"Process {self.name} initialized with busyness {state.b:.4f}")

    def start(self, delay: Optional[float] = None) -> None:
        """Start generating arrivals.

        Args:
            delay: Time of the first arrival from now. When None it is
                drawn from the model.

        Raises:
            IllegalStateError: If the process is already started.
        """
        if self.is_started:
            raise IllegalStateError(f"Process {self.name} is already started")
        self._state = ProcessState.STARTED
        first = self.next_time() if delay is None else delay
        self._event.schedule(first)
        self._start_change_times()
        logger.info(f"Process {self.name} started at t={self.env.now:.4f}")

    def start_stationary(self) -> None:
        """Start in stationary mode, for steady-state simulations.

        Raises:
            UnsupportedOperationError: If the model cannot run stationary,
                e.g. a piecewise-constant model whose periods are not locked.
        """
        self.model.check_stationary(self.periods)
        self.start()

    def stop(self) -> None:
        """Stop generating arrivals.

        Raises:
            IllegalStateError: If the process is not started.
        """
        if not self.is_started:
            raise IllegalStateError(f"Process {self.name} is not started")
        self._event.cancel()
        self._state = ProcessState.STOPPED
        logger.info(f"Process {self.name} stopped at t={self.env.now:.4f} after {self._num_arrivals} arrivals")

    def next_time(self) -> float:
        """Time until the next arrival, inf when none is due."""
        return self.model.next_time(self.env.now, self.rng)

    # Listeners

    def add_listener(self, listener: NewContactListener) -> None:
        """Register a new-contact listener, ignoring duplicates."""
        self._check_mutable()
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: NewContactListener) -> None:
        self._check_mutable()
        if listener in self._listeners:
            self._listeners.remove(listener)

    def clear_listeners(self) -> None:
        self._check_mutable()
        self._listeners.clear()

    @property
    def listeners(self) -> List[NewContactListener]:
        return list(self._listeners)

    def _check_mutable(self) -> None:
        if self._broadcasting:
            raise IllegalStateError("Listeners cannot be changed while a contact is being broadcast")

    def notify(self, contact: Contact) -> None:
        """Send ``contact`` to every listener in registration order."""
        self._broadcasting = True
        try:
            for listener in self._listeners:
                listener(contact)
        finally:
            self._broadcasting = False

    # Event handling

    def _fire(self) -> None:
        try:
            contact = self.factory.create()
        except Exception as exc:
            raise ContactInstantiationError(self.factory) from exc
        contact.arrival_time = self.env.now
        contact.source = self
        self._num_arrivals += 1
        logger.debug(f"Process {self.name}: arrival #{self._num_arrivals} at t={self.env.now:.4f}")
        self.notify(contact)
        if self.is_started and not self._event.pending:
            self._event.schedule(self.next_time())

    def set_lambda(self, lam: float) -> None:
        """Change the current base rate of an exponential model.

        A pending arrival is rescaled by old/new effective rate, cancelled
        when the new rate is 0, and scheduled when the rate leaves 0.

        Raises:
            UnsupportedOperationError: If the model has no current rate.
        """
        if not isinstance(self.model, ExponentialModel):
            raise UnsupportedOperationError(
                f"{type(self.model).__name__} has no current exponential rate"
            )
        self._apply_rate_change(*self.model.set_lambda(lam))

    def _apply_rate_change(self, old: float, new: float) -> None:
        if old == new:
            return
        if self._event.pending:
            if new <= 0:
                self._event.cancel()
            elif old > 0:
                remaining = self._event.delay()
                self._event.reschedule(remaining * old / new)
                logger.debug(f"Process {self.name}: rate {old:.4f} -> {new:.4f}, residual rescaled")
        elif self.is_started and old <= 0 < new:
            self._event.schedule(self.next_time())

    def _on_period_change(self, period: int) -> None:
        self._apply_rate_change(*self.model.move_to(self.env.now, period))

    def _start_change_times(self) -> None:
        if not isinstance(self.model, ExponentialModel):
            return
        times = [t for t in self.model.change_times() if t > self.env.now]
        if times and self._change_proc is None:
            self._change_proc = self.env.process(self._follow_change_times(times))

    def _follow_change_times(self, times) -> Generator[simpy.Event, None, None]:
        for t in times:
            yield self.env.timeout(t - self.env.now)
            self._apply_rate_change(*self.model.move_to(self.env.now, self._current_period()))
        self._change_proc = None

    # Rate queries

    def arrival_rate(self, period: int) -> float:
        return self.model.arrival_rate(period)

    def expected_arrival_rate(self, period: int) -> float:
        return self.model.expected_arrival_rate(period)

    def expected_arrival_rate_b(self, period: int) -> float:
        """Expected rate of a period scaled by the expected busyness."""
        return self.model.expected_arrival_rate(period) * self.busyness.expected_factor

    def arrival_rate_between(self, start: float, end: float) -> float:
        return self.model.arrival_rate_between(start, end)

    def expected_arrival_rate_between(self, start: float, end: float) -> float:
        return self.model.expected_arrival_rate_between(start, end)

    def expected_arrival_rate_between_b(self, start: float, end: float) -> float:
        return self.model.expected_arrival_rate_between(start, end) * self.busyness.expected_factor
