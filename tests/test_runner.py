"""Tests for the day-by-day simulation runner."""

import numpy as np
import pytest

from ccarrivals.core.contact import SimpleContactFactory
from ccarrivals.core.periods import PeriodLayout
from ccarrivals.core.streams import StreamSet
from ccarrivals.estimation.fitting import fit_piecewise_constant
from ccarrivals.experiment.runner import run_day, simulate_daily_counts
from ccarrivals.model.process import ArrivalProcess
from ccarrivals.model.rates import FixedRates, PiecewiseConstantModel


@pytest.fixture
def day_layout():
    return PeriodLayout.regular(3, 10.0, start=10.0)


def builder_for(model, busyness=None):
    def build(env, schedule, streams):
        return ArrivalProcess(
            env,
            model,
            SimpleContactFactory(),
            streams.rng_arrivals,
            rate_rng=streams.rng_rates,
            busyness=busyness,
            periods=schedule,
        )
    return build


class TestRunDay:
    def test_counts_one_day(self, day_layout):
        """No arrival falls outside the main periods when they carry all the rate."""
        model = PiecewiseConstantModel(day_layout, FixedRates([0.0, 5.0, 5.0, 5.0, 0.0]))
        counter = run_day(builder_for(model), day_layout, StreamSet(random_seed=1))
        m = counter.matrix()
        assert m[0, 0] == 0
        assert m[0, 4] == 0
        assert m.sum() > 0


class TestSimulateDailyCounts:
    """Test multi-day count matrices."""

    def test_shape_and_means(self, day_layout):
        """Means of the simulated counts follow the rates."""
        model = PiecewiseConstantModel(day_layout, FixedRates([0.0, 2.0, 4.0, 1.0, 0.0]))
        counts = simulate_daily_counts(builder_for(model), day_layout, n_days=200, seed=5)
        assert counts.shape == (200, 3)
        assert counts.mean(axis=0) == pytest.approx([20.0, 40.0, 10.0], rel=0.1)

    def test_reproducible(self, day_layout):
        model = PiecewiseConstantModel(day_layout, FixedRates([0.0, 2.0, 4.0, 1.0, 0.0]))
        a = simulate_daily_counts(builder_for(model), day_layout, n_days=5, seed=9)
        b = simulate_daily_counts(builder_for(model), day_layout, n_days=5, seed=9)
        assert np.array_equal(a, b)

    def test_frame_output(self, day_layout):
        model = PiecewiseConstantModel(day_layout, FixedRates([0.0, 2.0, 4.0, 1.0, 0.0]))
        frame = simulate_daily_counts(builder_for(model), day_layout, n_days=3, as_frame=True)
        assert list(frame.columns) == [1, 2, 3]
        assert frame.index.name == "day"

    def test_fit_then_simulate(self, day_layout, make_counts):
        """A model fitted to counts reproduces their means."""
        data = make_counts(300, [30.0, 50.0, 20.0])
        fitted = fit_piecewise_constant(data, day_layout)
        sim = simulate_daily_counts(builder_for(fitted.model, fitted.busyness), day_layout, n_days=200)
        assert sim.mean(axis=0) == pytest.approx(data.mean(axis=0), rel=0.1)

    def test_n_days_validation(self, day_layout):
        model = PiecewiseConstantModel(day_layout, FixedRates([1.0] * 5))
        with pytest.raises(ValueError, match="n_days"):
            simulate_daily_counts(builder_for(model), day_layout, n_days=0)
