"""Tests for periods, busyness, contacts, events and streams."""

import numpy as np
import pytest
import simpy
from scipy import stats

from ccarrivals.core.busyness import Busyness, BusynessState
from ccarrivals.core.contact import Contact, RandomTypeContactFactory, SimpleContactFactory
from ccarrivals.core.errors import ContactInstantiationError
from ccarrivals.core.periods import PeriodLayout
from ccarrivals.core.scheduler import SimEvent
from ccarrivals.core.streams import StreamSet


class TestPeriodLayout:
    """Test static period boundaries."""

    def test_counts(self, layout):
        """Three main periods plus preliminary and wrap-up."""
        assert layout.main_period_count() == 3
        assert layout.period_count() == 5
        assert layout.wrapup_period() == 4

    def test_period_of(self, layout):
        """Times map to the period containing them."""
        assert layout.period_of(0.0) == 0
        assert layout.period_of(9.99) == 0
        assert layout.period_of(10.0) == 1
        assert layout.period_of(39.9) == 3
        assert layout.period_of(40.0) == 4
        assert layout.period_of(1e9) == 4

    def test_period_windows(self, layout):
        """Preliminary starts at 0, wrap-up never ends."""
        assert layout.period_start(0) == 0.0
        assert layout.period_end(0) == 10.0
        assert layout.period_duration(2) == 10.0
        assert layout.period_end(4) == float("inf")
        assert layout.day_length == 30.0

    def test_regular(self):
        """Regular layout has equal durations."""
        layout = PeriodLayout.regular(4, 2.5)
        assert layout.boundaries == (0.0, 2.5, 5.0, 7.5, 10.0)
        assert layout.period_duration(0) == 0.0

    def test_validation_increasing(self):
        """Rejects non-increasing boundaries."""
        with pytest.raises(ValueError, match="strictly increasing"):
            PeriodLayout((0.0, 5.0, 5.0))

    def test_validation_single_boundary(self):
        """Rejects a layout without a main period."""
        with pytest.raises(ValueError, match="At least one main period"):
            PeriodLayout((1.0,))

    def test_invalid_period_index(self, layout):
        """Out-of-range period indices are rejected."""
        with pytest.raises(ValueError, match="Invalid period"):
            layout.period_start(5)


class TestPeriodSchedule:
    """Test the SimPy period clock."""

    def test_broadcasts_changes_in_order(self, env, schedule):
        """Listeners see every boundary, in registration order."""
        seen = []
        schedule.add_listener(lambda p: seen.append(("a", p, env.now)))
        schedule.add_listener(lambda p: seen.append(("b", p, env.now)))
        schedule.start()
        env.run(until=100)

        assert [s[1] for s in seen if s[0] == "a"] == [1, 2, 3, 4]
        assert seen[0] == ("a", 1, 10.0)
        assert seen[1] == ("b", 1, 10.0)

    def test_current_period_follows_clock(self, env, schedule):
        """Current period tracks simulation time."""
        schedule.start()
        env.run(until=25)
        assert schedule.current_period == 2

    def test_lock(self, env, schedule):
        """A locked schedule reports its period and broadcasts nothing."""
        seen = []
        schedule.add_listener(seen.append)
        schedule.lock(2)
        schedule.start()
        env.run(until=100)

        assert schedule.current_period == 2
        assert schedule.is_locked()
        assert seen == []

    def test_duplicate_listener_ignored(self, schedule):
        """Registering twice keeps one entry."""
        listener = lambda p: None  # noqa: E731
        schedule.add_listener(listener)
        schedule.add_listener(listener)
        assert len(schedule.listeners) == 1
        schedule.remove_listener(listener)
        assert schedule.listeners == []


class TestBusyness:
    """Test busyness factors."""

    def test_default_is_one(self, rng):
        """Without a distribution B stays fixed."""
        busyness = Busyness()
        assert busyness.draw(rng).b == 1.0
        assert busyness.expected_factor == 1.0

    def test_draw_from_distribution(self, rng):
        """B is drawn from the supplied distribution."""
        busyness = Busyness(distribution=stats.gamma(4.0, scale=0.25))
        draws = [busyness.draw(rng).b for _ in range(2000)]
        assert busyness.expected_factor == pytest.approx(1.0)
        assert np.mean(draws) == pytest.approx(1.0, abs=0.05)
        assert busyness.last.b == draws[-1]

    def test_period_factors(self):
        """Combined factor is B times the period factor."""
        state = BusynessState(b=2.0, period_factors=(1.0, 0.5))
        assert state.busyness(1) == 1.0
        assert state.factor(7) == 1.0
        assert state.effective_rate(3.0, 0) == 6.0

    def test_fixed_overrides_draw(self):
        """fixed() sets the day factor and keeps period factors."""
        busyness = Busyness(period_factors=[1.0, 2.0])
        state = busyness.fixed(3.0)
        assert state.busyness(1) == 6.0

    def test_validation_negative(self):
        """Rejects negative factors."""
        with pytest.raises(ValueError, match="non-negative"):
            BusynessState(b=-1.0)
        with pytest.raises(ValueError, match="non-negative"):
            Busyness(b=-0.5)

    def test_set_expected_factor(self):
        """Expected factor can be overridden."""
        busyness = Busyness()
        busyness.set_expected_factor(1.5)
        assert busyness.expected_factor == 1.5


class TestContact:
    """Test contacts and factories."""

    def test_copy_carries_selected_fields(self):
        """Copy keeps requested fields and resets the others."""
        contact = Contact(type_id=2, priority=0.5, arrival_time=3.0, attributes={"k": 1})
        contact.start_waiting_time = 4.0
        clone = contact.copy()

        assert clone.type_id == 2
        assert clone.arrival_time == 3.0
        assert clone.attributes == {"k": 1}
        assert clone.attributes is not contact.attributes
        assert clone.start_waiting_time == -1.0
        assert clone.source is None

    def test_copy_rejects_transient(self):
        """Transient fields cannot be copied."""
        with pytest.raises(ValueError, match="transient"):
            Contact().copy(carry=("source",))

    def test_copy_rejects_unknown(self):
        with pytest.raises(ValueError, match="Unknown"):
            Contact().copy(carry=("colour",))

    def test_simple_factory(self):
        """Simple factory sets type and priority."""
        contact = SimpleContactFactory(type_id=3, priority=2.0).create()
        assert (contact.type_id, contact.priority) == (3, 2.0)

    def test_random_type_factory(self, rng):
        """Random factory picks types in proportion to the weights."""
        factory = RandomTypeContactFactory(
            [SimpleContactFactory(0), SimpleContactFactory(1)], [1.0, 3.0], rng
        )
        types = [factory.create().type_id for _ in range(4000)]
        assert np.mean(types) == pytest.approx(0.75, abs=0.03)

    def test_random_type_factory_validation(self, rng):
        """Weights must match factories and not all be zero."""
        with pytest.raises(ValueError, match="same length"):
            RandomTypeContactFactory([SimpleContactFactory()], [0.5, 0.5], rng)
        with pytest.raises(ValueError, match="all be zero"):
            RandomTypeContactFactory([SimpleContactFactory()], [0.0], rng)

    def test_instantiation_error_keeps_factory(self):
        """The error remembers the failing factory."""
        factory = SimpleContactFactory()
        err = ContactInstantiationError(factory)
        assert err.factory is factory


class TestSimEvent:
    """Test the re-schedulable event."""

    def test_fires_once(self, env):
        """Scheduled action runs at the right time."""
        fired = []
        event = SimEvent(env, lambda: fired.append(env.now))
        event.schedule(5.0)
        assert event.pending
        env.run()
        assert fired == [5.0]
        assert not event.pending

    def test_reschedule_drops_old_firing(self, env):
        """Only the latest scheduling fires."""
        fired = []
        event = SimEvent(env, lambda: fired.append(env.now))
        event.schedule(5.0)
        event.reschedule(2.0)
        env.run()
        assert fired == [2.0]

    def test_cancel(self, env):
        """A cancelled event never fires."""
        fired = []
        event = SimEvent(env, lambda: fired.append(env.now))
        event.schedule(5.0)
        assert event.cancel()
        assert not event.cancel()
        env.run()
        assert fired == []

    def test_infinite_delay_stays_idle(self, env):
        event = SimEvent(env, lambda: None)
        event.schedule(float("inf"))
        assert event.time() is None

    def test_negative_delay_rejected(self, env):
        with pytest.raises(ValueError, match="past"):
            SimEvent(env, lambda: None).schedule(-1.0)

    def test_delay_reports_remaining_time(self):
        env = simpy.Environment()
        event = SimEvent(env, lambda: None)
        event.schedule(10.0)
        env.run(until=4.0)
        assert event.delay() == pytest.approx(6.0)


class TestStreamSet:
    """Test random stream bundles."""

    def test_same_seed_same_draws(self):
        """Equal seeds reproduce draws."""
        a, b = StreamSet(random_seed=7), StreamSet(random_seed=7)
        assert a.rng_arrivals.random() == b.rng_arrivals.random()

    def test_streams_are_distinct(self):
        """Each element has its own stream."""
        s = StreamSet(random_seed=7)
        assert s.rng_arrivals.random() != s.rng_rates.random()

    def test_clone_with_seed(self):
        clone = StreamSet(random_seed=1).clone_with_seed(99)
        assert clone.random_seed == 99
