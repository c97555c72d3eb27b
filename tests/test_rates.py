"""Tests for latent rate strategies and the piecewise-constant model."""

import numpy as np
import pytest
from scipy import stats

from ccarrivals.core.busyness import Busyness, BusynessState
from ccarrivals.core.errors import IllegalStateError
from ccarrivals.model.copula import correlation_factor, draw_uniforms
from ccarrivals.model.rates import (
    DirichletCompoundRates,
    FixedRates,
    GammaPowRates,
    GammaRates,
    NortaGammaRates,
    PiecewiseConstantModel,
    RandomRates,
)


class TestGammaRates:
    """Test Poisson-Gamma latent rates."""

    def test_mean_matches_lambda(self, rng):
        """Sample mean of the drawn rates is lambda."""
        rates = GammaRates([2.0, 5.0], [10.0, 3.0])
        draws = np.array([rates.draw(BusynessState(), rng) for _ in range(5000)])
        assert draws.mean(axis=0) == pytest.approx([10.0, 3.0], rel=0.05)
        assert draws[:, 0].var() == pytest.approx(100.0 / 2.0, rel=0.15)

    def test_degenerate_periods_are_zero(self, rng):
        """Zero shape or zero lambda gives a rate of exactly 0."""
        rates = GammaRates([0.0, 3.0, 2.0], [5.0, 0.0, 1.0])
        draw = rates.draw(BusynessState(), rng)
        assert draw[0] == 0.0
        assert draw[1] == 0.0
        assert draw[2] > 0.0
        assert rates.expected_rate(0) == 0.0

    def test_validation(self):
        """Rejects negative or mismatched parameters."""
        with pytest.raises(ValueError, match="non-negative"):
            GammaRates([-1.0], [1.0])
        with pytest.raises(ValueError, match="entries"):
            GammaRates([1.0, 1.0], [1.0])


class TestNortaGammaRates:
    """Test copula-correlated gamma rates."""

    def test_marginal_mean_and_correlation(self, rng):
        """Marginals keep their means; strong normal correlation carries over."""
        corr = np.array([[1.0, 0.9], [0.9, 1.0]])
        rates = NortaGammaRates([4.0, 4.0], [10.0, 20.0], corr)
        draws = np.array([rates.draw(BusynessState(), rng) for _ in range(4000)])
        assert draws.mean(axis=0) == pytest.approx([10.0, 20.0], rel=0.05)
        assert stats.spearmanr(draws[:, 0], draws[:, 1])[0] > 0.8

    def test_rejects_bad_correlation(self):
        """Correlation must be a valid matrix of the right size."""
        with pytest.raises(ValueError, match="2x2"):
            NortaGammaRates([1.0, 1.0], [1.0, 1.0], np.eye(3))
        with pytest.raises(ValueError, match="positive definite"):
            NortaGammaRates([1.0] * 3, [1.0] * 3, [[1, 0.9, -0.9], [0.9, 1, 0.9], [-0.9, 0.9, 1]])


class TestCopula:
    """Test normal-copula helpers."""

    def test_factor_reconstructs_matrix(self):
        corr = np.array([[1.0, 0.3], [0.3, 1.0]])
        factor = correlation_factor(corr, 2)
        assert factor @ factor.T == pytest.approx(corr)

    def test_uniforms_in_open_interval(self, rng):
        u = draw_uniforms(np.eye(3), rng)
        assert np.all((u > 0) & (u < 1))

    def test_rejects_non_unit_diagonal(self):
        with pytest.raises(ValueError, match="unit diagonal"):
            correlation_factor(2.0 * np.eye(2), 2)


class TestGammaPowRates:
    """Test power-busyness gamma rates."""

    def test_expected_rate_preserved(self, rng):
        """E[B^pow * rate] stays lambda after normalization."""
        beta = 4.0
        rates = GammaPowRates([5.0, 5.0], [10.0, 10.0], [0.5, 2.0], beta)
        totals = []
        for _ in range(20000):
            b = rng.gamma(beta, 1.0 / beta)
            r = rates.draw(BusynessState(b=b), rng)
            totals.append(r * np.array([b ** 0.5, b ** 2.0]))
        assert np.mean(totals, axis=0) == pytest.approx([10.0, 10.0], rel=0.05)
        assert rates.busyness_exponent(1) == 2.0

    def test_from_busyness_requires_gamma(self):
        """Only gamma busyness distributions are accepted."""
        with pytest.raises(IllegalStateError, match="gamma"):
            GammaPowRates.from_busyness([1.0], [1.0], [1.0], Busyness())
        rates = GammaPowRates.from_busyness(
            [1.0], [1.0], [1.0], Busyness(distribution=stats.gamma(4.0, scale=0.25))
        )
        assert rates.busyness_shape == pytest.approx(4.0)


class TestDirichletCompoundRates:
    """Test Dirichlet-compound rates."""

    def test_shape_and_boundaries(self, rng):
        """P+1 shapes give P+2 rates with empty end periods."""
        rates = DirichletCompoundRates([2.0, 3.0, 5.0])
        draw = rates.draw(BusynessState(), rng)
        assert draw.size == 4
        assert draw[0] == 0.0 and draw[-1] == 0.0
        assert rates.expected_rate(1) == pytest.approx(0.4)
        assert rates.expected_rate(3) == 0.0

    def test_requires_positive_shapes(self):
        with pytest.raises(ValueError, match="positive"):
            DirichletCompoundRates([1.0, 0.0])


class TestRandomRates:
    def test_draws_from_distributions(self, rng):
        rates = RandomRates([stats.uniform(0, 2), stats.uniform(5, 1)])
        draw = rates.draw(BusynessState(), rng)
        assert 0 <= draw[0] <= 2
        assert 5 <= draw[1] <= 6
        assert rates.expected_rate(1) == pytest.approx(5.5)


class TestPiecewiseConstantModel:
    """Test rate queries of the piecewise-constant model."""

    def test_normalized_rates(self, layout, rng):
        """Counts per period become rates per unit time; wrap-up kept as is."""
        model = PiecewiseConstantModel(layout, FixedRates([5.0, 20.0, 0.0, 40.0, 3.0]), normalize=True)
        model.draw(BusynessState(), rng)
        assert model.arrival_rate(0) == pytest.approx(0.5)
        assert model.arrival_rate(1) == pytest.approx(2.0)
        assert model.arrival_rate(4) == pytest.approx(3.0)
        assert model.expected_arrival_rate(3) == pytest.approx(4.0)

    def test_busyness_applies(self, layout, rng):
        """Realized rates include B and the period factor."""
        model = PiecewiseConstantModel(layout, FixedRates([1.0] * 5))
        model.draw(BusynessState(b=2.0, period_factors=(1, 1, 3, 1, 1)), rng)
        assert model.arrival_rate(1) == 2.0
        assert model.arrival_rate(2) == 6.0
        assert model.expected_arrival_rate(2) == 1.0

    def test_rate_between(self, layout, rng):
        """Interval average weights periods by overlap."""
        model = PiecewiseConstantModel(layout, FixedRates([0.0, 2.0, 4.0, 0.0, 0.0]))
        model.draw(BusynessState(), rng)
        assert model.arrival_rate_between(15.0, 25.0) == pytest.approx(3.0)
        assert model.expected_arrival_rate_between(10.0, 30.0) == pytest.approx(3.0)
        assert model.arrival_rate_between(5.0, 5.0) == 0.0

    def test_size_mismatch(self, layout):
        with pytest.raises(ValueError, match="covers 3 periods"):
            PiecewiseConstantModel(layout, FixedRates([1.0, 1.0, 1.0]))
