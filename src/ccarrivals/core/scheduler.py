"""SimPy-backed event handle used by arrival processes."""

import logging
from typing import Callable, Generator, Optional

import simpy

logger = logging.getLogger(__name__)


class SimEvent:
    """Single re-schedulable event on a SimPy environment.

    SimPy timeouts cannot be withdrawn once created, so each scheduling
    bumps a generation token; a wake-up whose token is stale is ignored.
    At most one firing is pending at any time.

    Attributes:
        env: SimPy environment providing the clock.
        action: Callback run when the event fires.
    """

    def __init__(self, env: simpy.Environment, action: Callable[[], None], name: str = "") -> None:
        self.env = env
        self.action = action
        self.name = name
        self._token = 0
        self._fire_time: Optional[float] = None

    @property
    def now(self) -> float:
        """Current simulation time."""
        return self.env.now

    def time(self) -> Optional[float]:
        """Absolute firing time of the pending event, None when idle."""
        return self._fire_time

    def delay(self) -> Optional[float]:
        """Time left before the pending event fires, None when idle."""
        if self._fire_time is None:
            return None
        return self._fire_time - self.env.now

    @property
    def pending(self) -> bool:
        """Whether a firing is currently scheduled."""
        return self._fire_time is not None

    def schedule(self, delay: float) -> None:
        """Schedule the event ``delay`` time units from now.

        An infinite delay leaves the event idle.
        """
        if delay < 0:
            raise ValueError(f"Cannot schedule an event in the past (delay={delay})")
        self._token += 1
        if delay == float("inf"):
            self._fire_time = None
            return
        self._fire_time = self.env.now + delay
        logger.debug(f"Event {self.name or id(self)} scheduled at t={self._fire_time:.4f}")
        self.env.process(self._wait(delay, self._token))

    def reschedule(self, delay: float) -> None:
        """Move the pending event (or schedule a new one) to ``delay`` from now."""
        self.schedule(delay)

    def cancel(self) -> bool:
        """Cancel the pending event.

        Returns:
            True if an event was pending.
        """
        was_pending = self._fire_time is not None
        self._token += 1
        self._fire_time = None
        return was_pending

    def _wait(self, delay: float, token: int) -> Generator[simpy.Event, None, None]:
        yield self.env.timeout(delay)
        if token != self._token:
            return
        self._fire_time = None
        self.action()
