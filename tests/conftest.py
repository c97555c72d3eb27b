"""Pytest fixtures for ccarrivals tests."""

import numpy as np
import pytest
import simpy

from ccarrivals.core.periods import PeriodLayout, PeriodSchedule


@pytest.fixture
def default_seed() -> int:
    """Default random seed for reproducible tests."""
    return 42


@pytest.fixture
def rng(default_seed) -> np.random.Generator:
    return np.random.default_rng(default_seed)


@pytest.fixture
def env() -> simpy.Environment:
    return simpy.Environment()


@pytest.fixture
def layout() -> PeriodLayout:
    """Three main periods of length 10 starting at t=10."""
    return PeriodLayout((10.0, 20.0, 30.0, 40.0))


@pytest.fixture
def schedule(env, layout) -> PeriodSchedule:
    return PeriodSchedule(env, layout)


def doubly_gamma_counts(rng, n_days, lambdas, q=None, r=None):
    """Counts Y_ji ~ Poisson(xi_j * eta_ji * lam_i) with gamma xi and eta."""
    lambdas = np.asarray(lambdas, dtype=float)
    rates = np.tile(lambdas, (n_days, 1))
    if q is not None:
        rates *= rng.gamma(q, 1.0 / q, size=(n_days, 1))
    if r is not None:
        rates *= rng.gamma(r, 1.0 / r, size=rates.shape)
    return rng.poisson(rates)


@pytest.fixture
def poisson_counts(rng) -> np.ndarray:
    """Plain Poisson counts, no busyness: 400 days x 4 periods."""
    return doubly_gamma_counts(rng, 400, [20.0, 40.0, 30.0, 10.0])


@pytest.fixture
def busy_counts(rng) -> np.ndarray:
    """Counts with a strong daily factor (Q=5) and period factor (R=20)."""
    return doubly_gamma_counts(rng, 500, [50.0, 80.0, 60.0, 40.0, 30.0], q=5.0, r=20.0)


@pytest.fixture
def make_counts(rng):
    """Factory for doubly-gamma count matrices on the test stream."""
    def _make(n_days, lambdas, q=None, r=None):
        return doubly_gamma_counts(rng, n_days, lambdas, q=q, r=r)
    return _make
