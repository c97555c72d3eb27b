"""Tests for NORTA correlation estimation and matrix repair."""

import numpy as np
import pytest

from ccarrivals.core.entities import CorrelationFit
from ccarrivals.estimation.config import CorrectorConfig, NortaConfig, TrustRegionConfig
from ccarrivals.estimation.correlation import (
    CorrelationEstimator,
    CorrelationFitter,
    CorrelationMatrixCorrector,
    lag_correlations,
    markov_matrix,
)

NOT_PSD = np.array([[1.0, 0.9, -0.9], [0.9, 1.0, 0.9], [-0.9, 0.9, 1.0]])


@pytest.fixture
def norta_counts(rng):
    """Counts whose gamma rates are correlated through a normal copula."""
    from scipy.stats import gamma, norm

    corr = markov_matrix(3, 0.8)
    z = rng.standard_normal((400, 3)) @ np.linalg.cholesky(corr).T
    rates = gamma.ppf(norm.cdf(z), 5.0, scale=[4.0, 6.0, 3.0])
    return rng.poisson(rates)


@pytest.fixture
def quick_norta():
    return NortaConfig(num_samples=400, trust_region=TrustRegionConfig(eta=0.5, pwr=9 / 16, maxit=60))


class TestCorrector:
    """Test positive-definiteness repair."""

    def test_repairs_indefinite_matrix(self):
        """Output is a PSD correlation matrix."""
        res = CorrelationMatrixCorrector().correct(NOT_PSD)
        assert res.negative_eigenvalues >= 1
        assert not res.fallback_used
        assert np.diag(res.matrix) == pytest.approx(np.ones(3))
        assert res.matrix == pytest.approx(res.matrix.T)
        assert np.linalg.eigvalsh(res.matrix).min() >= 0
        np.linalg.cholesky(res.matrix)

    def test_valid_matrix_untouched(self):
        corr = markov_matrix(4, 0.5)
        res = CorrelationMatrixCorrector().correct(corr)
        assert res.iterations == 0
        assert res.matrix == pytest.approx(corr)

    def test_diagonal_loading_fallback(self):
        """Without flooring iterations the matrix is diagonally loaded."""
        res = CorrelationMatrixCorrector(CorrectorConfig(maxit=0)).correct(NOT_PSD)
        assert res.fallback_used
        assert np.diag(res.matrix) == pytest.approx(np.ones(3))
        assert np.linalg.eigvalsh(res.matrix).min() > 0

    def test_rejects_asymmetric(self):
        with pytest.raises(ValueError, match="symmetric"):
            CorrelationMatrixCorrector().correct([[1.0, 0.2], [0.3, 1.0]])


class TestLagFits:
    """Test parametric fits of lag correlations."""

    def test_lag_correlations(self):
        assert lag_correlations(markov_matrix(4, 0.5)) == pytest.approx([0.5, 0.25, 0.125])

    def test_markov_matrix(self):
        m = markov_matrix(3, 0.5, a=0.8, c=0.1)
        assert np.diag(m) == pytest.approx(np.ones(3))
        assert m[0, 2] == pytest.approx(0.8 * 0.25 + 0.1)

    def test_single_rho(self):
        lags = 0.6 ** np.arange(1, 6)
        fit = CorrelationFitter().fit_single_rho(lags)
        assert fit.b == pytest.approx(0.6, abs=2e-3)
        assert fit.a == 1.0 and fit.c == 0.0

    def test_general_linear(self):
        lags = 0.7 * 0.5 ** np.arange(1, 7) + 0.1
        fit = CorrelationFitter().fit_general_linear(lags)
        assert fit.b == pytest.approx(0.5, abs=1e-2)
        assert fit.a == pytest.approx(0.7, abs=2e-2)
        assert fit.c == pytest.approx(0.1, abs=1e-2)
        assert fit.sse < 1e-4

    def test_empty_lags(self):
        with pytest.raises(ValueError, match="lag"):
            CorrelationFitter().fit_single_rho([])


class TestCorrelationEstimator:
    """Test the NORTA estimation pipeline."""

    def test_rank_correlation(self, norta_counts, quick_norta, rng):
        target = CorrelationEstimator(norta_counts, quick_norta, rng).rank_correlation()
        assert target.shape == (3, 3)
        assert np.diag(target) == pytest.approx(np.ones(3))
        assert target[0, 1] > 0.4

    def test_target_matches_simulated_statistic(self, norta_counts, quick_norta, rng):
        """The target is the Pearson correlation of the CDF-mapped counts."""
        from scipy.stats import nbinom

        est = CorrelationEstimator(norta_counts, quick_norta, rng)
        m = est.marginals()
        u0 = nbinom.cdf(norta_counts[:, 0], m[0].r, m[0].p)
        u1 = nbinom.cdf(norta_counts[:, 1], m[1].r, m[1].p)
        expected = np.corrcoef(u0, u1)[0, 1]
        assert est.rank_correlation()[0, 1] == pytest.approx(expected, rel=1e-9)

    def test_norta_rho_independent(self, norta_counts, quick_norta, rng):
        """A zero target needs a near-zero normal correlation."""
        est = CorrelationEstimator(norta_counts, quick_norta, rng)
        m = est.marginals()
        assert est.norta_rho(0.0, m[0], m[1]) == pytest.approx(0.0, abs=0.15)

    def test_full_estimate(self, norta_counts, quick_norta, rng):
        """Full fit yields a usable correlation matrix with positive dependence."""
        res = CorrelationEstimator(norta_counts, quick_norta, rng).estimate(CorrelationFit.FULL)
        assert res.gaussian[0, 1] > 0.4
        assert np.all(res.shapes > 0)
        assert res.means == pytest.approx(norta_counts.mean(axis=0))
        np.linalg.cholesky(res.correlation)

    def test_markov_estimate(self, norta_counts, quick_norta, rng):
        res = CorrelationEstimator(norta_counts, quick_norta, rng).estimate(CorrelationFit.MARKOV_SINGLE_RHO)
        b = res.correlation[0, 1]
        assert res.correlation[0, 2] == pytest.approx(b * b)
        assert res.fit == CorrelationFit.MARKOV_SINGLE_RHO

    def test_degenerate_period(self, rng, quick_norta):
        """An all-zero period is independent of the others."""
        counts = np.column_stack([rng.poisson(5, 100), np.zeros(100, dtype=int)])
        res = CorrelationEstimator(counts, quick_norta, rng).estimate()
        assert res.gaussian[0, 1] == 0.0
        assert res.shapes[1] == 0.0
