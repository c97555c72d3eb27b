"""Cross-period correlation of latent rates for NORTA models.

The pipeline fits a negative binomial marginal per period, measures the
correlation of the counts mapped through their fitted CDFs, and converts
each pairwise target into the correlation of the underlying normal vector
by stochastic root finding. The resulting matrix is repaired to be
positive definite, or replaced by a parametric Markov-type fit.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy.stats import gamma as gamma_dist
from scipy.stats import nbinom, norm

from ccarrivals.core.entities import CorrelationFit
from ccarrivals.estimation.config import CorrectorConfig, GridFitConfig, NortaConfig
from ccarrivals.estimation.moments import as_count_matrix
from ccarrivals.estimation.negbin import NegBinEstimate, negbin_mle

logger = logging.getLogger(__name__)

# Starting correlation is kept strictly inside (-1, 1)
RHO_START_LIMIT = 0.999


def _as_correlation(matrix) -> np.ndarray:
    r = np.array(matrix, dtype=float)
    if r.ndim != 2 or r.shape[0] != r.shape[1]:
        raise ValueError(f"Correlation matrix must be square, got shape {r.shape}")
    if not np.all(np.isfinite(r)):
        raise ValueError("Correlation matrix contains non-finite entries")
    if not np.allclose(r, r.T, atol=1e-10):
        raise ValueError("Correlation matrix must be symmetric")
    return 0.5 * (r + r.T)


def _unit_diagonal(r: np.ndarray) -> np.ndarray:
    d = np.sqrt(np.diag(r))
    out = r / np.outer(d, d)
    np.fill_diagonal(out, 1.0)
    return 0.5 * (out + out.T)


@dataclass
class CorrectionResult:
    """Outcome of a positive-definiteness correction.

    Attributes:
        matrix: Corrected correlation matrix.
        iterations: Eigenvalue-flooring iterations performed.
        negative_eigenvalues: Negative eigenvalues of the input.
        fallback_used: True when diagonal loading replaced the iteration.
    """

    matrix: np.ndarray
    iterations: int
    negative_eigenvalues: int
    fallback_used: bool = False


class CorrelationMatrixCorrector:
    """Repairs a correlation matrix so that it is positive semi-definite.

    Eigenvalues below ``epsilon`` are floored to ``epsilon``, the matrix
    is rebuilt and rescaled to a unit diagonal, and this repeats until no
    eigenvalue is negative. If that fails within ``maxit`` iterations the
    input is diagonally loaded, ``(R + (eps_l - lmin) I) / (1 - lmin + eps_l)``.
    """

    def __init__(self, config: Optional[CorrectorConfig] = None) -> None:
        self.config = config or CorrectorConfig()

    def correct(self, matrix) -> CorrectionResult:
        original = _as_correlation(matrix)
        eps = self.config.epsilon
        values, vectors = np.linalg.eigh(original)
        negative = int(np.sum(values < 0))
        r = original
        it = 0
        while np.any(values < 0) and it < self.config.maxit:
            floored = np.maximum(values, eps)
            r = _unit_diagonal((vectors * floored) @ vectors.T)
            values, vectors = np.linalg.eigh(r)
            it += 1
        if np.any(values < 0):
            lmin = min(0.0, float(np.linalg.eigvalsh(original).min()))
            load = self.config.epsilon_loading - lmin
            r = (original + load * np.eye(original.shape[0])) / (1.0 + load)
            logger.warning(f"Eigenvalue flooring failed after {it} iterations; diagonal loading applied")
            return CorrectionResult(matrix=r, iterations=it, negative_eigenvalues=negative, fallback_used=True)
        if negative:
            logger.info(f"Corrected {negative} negative eigenvalues in {it} iterations")
        return CorrectionResult(matrix=r, iterations=it, negative_eigenvalues=negative)


def lag_correlations(matrix) -> np.ndarray:
    """Average correlation at each lag 1..P-1 of a correlation matrix."""
    r = np.asarray(matrix, dtype=float)
    return np.array([np.mean(np.diagonal(r, offset=-(k + 1))) for k in range(r.shape[0] - 1)])


def markov_matrix(size: int, b: float, a: float = 1.0, c: float = 0.0) -> np.ndarray:
    """Matrix with entries ``a * b^|i-j| + c`` and a unit diagonal."""
    lags = np.abs(np.subtract.outer(np.arange(size), np.arange(size)))
    r = a * np.power(b, lags) + c
    np.fill_diagonal(r, 1.0)
    return r


@dataclass
class LagFit:
    """Parametric fit ``rho_j = a * b^j + c`` of lag correlations."""

    a: float
    b: float
    c: float
    sse: float


class CorrelationFitter:
    """Grid-search fits of lag correlations over b in [-1+delta, 1-delta]."""

    def __init__(self, config: Optional[GridFitConfig] = None) -> None:
        self.config = config or GridFitConfig()

    def _grid(self) -> np.ndarray:
        d = self.config.delta
        return np.arange(-1.0 + d, 1.0 - d + 0.5 * self.config.step, self.config.step)

    @staticmethod
    def _powers(b: np.ndarray, num_lags: int) -> np.ndarray:
        return np.power(b[:, None], np.arange(1, num_lags + 1)[None, :])

    def fit_single_rho(self, lags) -> LagFit:
        """Fit ``rho_j = b^j`` by least squares."""
        r = np.asarray(lags, dtype=float)
        if r.size == 0:
            raise ValueError("At least one lag correlation is required")
        grid = self._grid()
        sse = np.sum((r[None, :] - self._powers(grid, r.size)) ** 2, axis=1)
        k = int(np.argmin(sse))
        return LagFit(a=1.0, b=float(grid[k]), c=0.0, sse=float(sse[k]))

    def fit_general_linear(self, lags) -> LagFit:
        """Fit ``rho_j = a * b^j + c``; a and c are closed form for each b."""
        r = np.asarray(lags, dtype=float)
        if r.size == 0:
            raise ValueError("At least one lag correlation is required")
        grid = self._grid()
        x = self._powers(grid, r.size)
        x_mean = x.mean(axis=1)
        r_mean = r.mean()
        sxx = np.sum((x - x_mean[:, None]) ** 2, axis=1)
        sxr = np.sum((x - x_mean[:, None]) * (r - r_mean)[None, :], axis=1)
        a = np.divide(sxr, sxx, out=np.zeros_like(sxr), where=sxx > 0)
        c = r_mean - a * x_mean
        sse = np.sum((r[None, :] - (a[:, None] * x + c[:, None])) ** 2, axis=1)
        k = int(np.argmin(sse))
        return LagFit(a=float(a[k]), b=float(grid[k]), c=float(c[k]), sse=float(sse[k]))


@dataclass
class NortaEstimate:
    """NORTA parameters of correlated gamma rates.

    Attributes:
        shapes: Gamma shape per period (negative binomial size).
        means: Mean rate per period.
        marginals: Negative binomial fit per period.
        rank_correlation: Target rank correlation of the counts.
        gaussian: Normal-copula correlation before correction.
        correlation: Correlation matrix selected by ``fit``.
        fit: How ``correlation`` was built.
        fallback_used: Whether the correction fell back to diagonal loading.
    """

    shapes: np.ndarray
    means: np.ndarray
    marginals: List[NegBinEstimate]
    rank_correlation: np.ndarray
    gaussian: np.ndarray
    correlation: np.ndarray
    fit: CorrelationFit
    fallback_used: bool = False


class CorrelationEstimator:
    """Estimates NORTA correlated-gamma parameters from daily counts.

    Attributes:
        counts: Days x periods count matrix.
        config: Estimator settings.
        rng: Stream of the simulated pairs.
    """

    def __init__(
        self,
        counts,
        config: Optional[NortaConfig] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.counts = as_count_matrix(counts)
        self.config = config or NortaConfig()
        self.rng = rng if rng is not None else np.random.default_rng()
        self.corrector = CorrelationMatrixCorrector(self.config.corrector)
        self.fitter = CorrelationFitter(self.config.grid)
        self._marginals: Optional[List[NegBinEstimate]] = None
        self._gaussian: Optional[np.ndarray] = None
        self._target: Optional[np.ndarray] = None

    @property
    def num_periods(self) -> int:
        return self.counts.shape[1]

    def marginals(self) -> List[NegBinEstimate]:
        """Negative binomial fit of every period."""
        if self._marginals is None:
            tol = self.config.bisection_tol
            self._marginals = [negbin_mle(self.counts[:, p], tol) for p in range(self.num_periods)]
        return self._marginals

    def rank_correlation(self) -> np.ndarray:
        """Pearson correlation of the counts mapped through their fitted CDFs.

        ``simulated_correlation`` measures the same statistic on simulated
        pairs.
        """
        if self._target is None:
            cols = {}
            for p, m in enumerate(self.marginals()):
                if m.degenerate:
                    cols[p] = np.zeros(self.counts.shape[0])
                else:
                    cols[p] = nbinom.cdf(self.counts[:, p], m.r, m.p)
            frame = pd.DataFrame(cols)
            target = frame.corr(method="pearson").to_numpy()
            target = np.nan_to_num(target, nan=0.0)
            np.fill_diagonal(target, 1.0)
            self._target = target
        return self._target

    def simulated_correlation(
        self,
        rho: float,
        first: NegBinEstimate,
        second: NegBinEstimate,
    ) -> float:
        """Correlation of CDF-transformed counts generated under normal correlation rho.

        Correlated normals go through the normal CDF, the inverse gamma CDF
        of each marginal and a Poisson draw; the counts are mapped back
        through their negative binomial CDFs.
        """
        n = self.config.num_samples
        z1 = self.rng.standard_normal(n)
        z2 = rho * z1 + np.sqrt(max(0.0, 1.0 - rho * rho)) * self.rng.standard_normal(n)
        values = []
        for z, m in ((z1, first), (z2, second)):
            u = np.clip(norm.cdf(z), 1e-15, 1.0 - 1e-15)
            lam = gamma_dist.ppf(u, m.r, scale=1.0 / m.gamma_rate)
            values.append(nbinom.cdf(self.rng.poisson(lam), m.r, m.p))
        if np.std(values[0]) == 0 or np.std(values[1]) == 0:
            return 0.0
        return float(np.corrcoef(values[0], values[1])[0, 1])

    def norta_rho(
        self,
        target: float,
        first: NegBinEstimate,
        second: NegBinEstimate,
        rho_init: Optional[float] = None,
    ) -> float:
        """Normal correlation reproducing ``target`` by Robbins-Monro search.

        Args:
            target: Rank correlation to match.
            first: Marginal of the first period.
            second: Marginal of the second period.
            rho_init: Starting value, ``target`` when omitted.
        """
        tr = self.config.trust_region
        x = target if rho_init is None else rho_init
        x = float(np.clip(x, -RHO_START_LIMIT, RHO_START_LIMIT))
        f = float("inf")
        f_new = 0.0
        k = 1
        while k < tr.maxit and abs(f_new - f) > tr.tol:
            f = f_new
            f_new = self.simulated_correlation(x, first, second)
            step = k ** (-tr.pwr) * tr.eta * (target - f_new)
            if -1.0 <= x + step <= 1.0:
                x += step
            k += 1
        return x

    def gaussian_correlation(self) -> np.ndarray:
        """Pairwise normal-copula correlations, before any correction."""
        if self._gaussian is None:
            marg = self.marginals()
            target = self.rank_correlation()
            p = self.num_periods
            g = np.eye(p)
            for i in range(p):
                for j in range(i + 1, p):
                    if marg[i].degenerate or marg[j].degenerate:
                        continue
                    g[i, j] = g[j, i] = self.norta_rho(target[i, j], marg[i], marg[j])
            self._gaussian = g
            logger.info(f"Estimated {p * (p - 1) // 2} normal-copula correlations")
        return self._gaussian

    def corrected(self) -> CorrectionResult:
        return self.corrector.correct(self.gaussian_correlation())

    def fit_markov_single_rho(self) -> LagFit:
        return self.fitter.fit_single_rho(lag_correlations(self.gaussian_correlation()))

    def fit_general_linear(self) -> LagFit:
        return self.fitter.fit_general_linear(lag_correlations(self.gaussian_correlation()))

    def matrix(self, fit: CorrelationFit = CorrelationFit.FULL) -> Tuple[np.ndarray, bool]:
        """Positive semi-definite correlation matrix built as ``fit`` says.

        Returns:
            Tuple (matrix, fallback_used).
        """
        p = self.num_periods
        if fit == CorrelationFit.FULL or p < 2:
            res = self.corrected()
            return res.matrix, res.fallback_used
        if fit == CorrelationFit.MARKOV_SINGLE_RHO:
            lag = self.fit_markov_single_rho()
            return markov_matrix(p, lag.b), False
        lag = self.fit_general_linear()
        res = self.corrector.correct(markov_matrix(p, lag.b, lag.a, lag.c))
        return res.matrix, res.fallback_used

    def estimate(self, fit: CorrelationFit = CorrelationFit.FULL) -> NortaEstimate:
        marg = self.marginals()
        shapes = np.array([0.0 if m.degenerate else m.r for m in marg])
        means = np.array([m.mean for m in marg])
        matrix, fallback = self.matrix(fit)
        return NortaEstimate(
            shapes=shapes,
            means=means,
            marginals=marg,
            rank_correlation=self.rank_correlation(),
            gaussian=self.gaussian_correlation(),
            correlation=matrix,
            fit=fit,
            fallback_used=fallback,
        )
