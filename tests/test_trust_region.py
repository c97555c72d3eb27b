"""Tests for the stochastic trust-region optimizer."""

import numpy as np
import pytest

from ccarrivals.estimation.config import TrustRegionConfig
from ccarrivals.estimation.likelihood import LikelihoodResult
from ccarrivals.estimation.trust_region import maximize_trust_region, maximize_trust_region_spline


class QuadraticObjective:
    """Concave quadratic with three parameter groups and its maximum at target."""

    def __init__(self, target):
        self.target = np.asarray(target, dtype=float)

    def groups(self):
        return [np.array([0, 1]), np.array([2]), np.array([3])]

    def cost_packed(self, x):
        return -float(np.sum((x - self.target) ** 2))

    def evaluate_packed(self, x):
        return LikelihoodResult(
            cost=self.cost_packed(x),
            gradient=-2.0 * (x - self.target),
            curvature=np.full(x.size, -2.0),
        )


@pytest.fixture
def objective():
    return QuadraticObjective([1.0, 2.0, 3.0, 4.0])


class TestTrustRegion:
    """Test the Newton-step optimizer."""

    def test_moves_toward_maximum(self, objective):
        """The search improves the cost and approaches the maximizer."""
        x0 = np.array([3.0, 0.5, 6.0, 1.0])
        result = maximize_trust_region(objective, x0)
        start = np.linalg.norm(x0 - objective.target)
        assert np.linalg.norm(result.x - objective.target) < 0.1 * start
        assert result.cost > objective.cost_packed(x0)

    def test_commits_never_lower_cost(self, objective):
        """Committed steps never lower the cost."""
        result = maximize_trust_region(objective, [3.0, 0.5, 6.0, 1.0])
        trace = result.trace
        committed = trace[trace["committed"]]
        assert (committed["committed_cost"] >= committed["cost"]).all()
        assert np.all(np.diff(trace["cost"].to_numpy()) >= -1e-12)

    def test_trace_columns(self, objective):
        result = maximize_trust_region(objective, [3.0, 0.5, 6.0, 1.0], TrustRegionConfig(maxit=5))
        assert result.iterations <= 5
        for col in ("iteration", "cost", "rho", "anneal", "regulator_0", "regulator_2"):
            assert col in result.trace.columns
        assert result.history.shape[1] == 4

    def test_frozen_parameter(self, objective):
        """Frozen indices keep their starting value."""
        result = maximize_trust_region(objective, [3.0, 0.5, 6.0, 1.0], frozen=[3])
        assert result.x[3] == 1.0
        assert result.x[2] == pytest.approx(3.0, abs=0.5)

    def test_invalid_start_replaced(self, objective):
        """Non-positive starting values are reset to 0.1."""
        result = maximize_trust_region(objective, [-1.0, 2.0, 3.0, 4.0], TrustRegionConfig(maxit=1))
        assert result.history[0][0] >= 0.1

    def test_polyak_average(self, objective):
        result = maximize_trust_region(objective, [3.0, 0.5, 6.0, 1.0], TrustRegionConfig(maxit=20))
        avg = result.polyak_average()
        assert avg.shape == (4,)
        assert np.all(avg > 0)


class TestSplineTrustRegion:
    """Test the regulated gradient optimizer."""

    def test_converges(self, objective):
        """Undamped first half converges to the maximizer."""
        result = maximize_trust_region_spline(objective, [3.0, 0.5, 6.0, 1.0])
        assert result.x == pytest.approx(objective.target, abs=1e-3)
        assert result.converged

    def test_config_validation(self):
        with pytest.raises(ValueError, match="g0"):
            TrustRegionConfig(g0=1.5)
        with pytest.raises(ValueError, match="c0 <= c1"):
            TrustRegionConfig(c0=0.9, c1=0.1)
