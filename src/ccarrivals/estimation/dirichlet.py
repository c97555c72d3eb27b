"""Dirichlet and Dirichlet-compound negative multinomial estimators."""

import logging
from dataclasses import dataclass

import numpy as np
from scipy.optimize import brentq, minimize
from scipy.special import digamma, gammaln, polygamma

from ccarrivals.estimation.moments import as_count_matrix

logger = logging.getLogger(__name__)

# Floor on proportions before taking logs
PROPORTION_FLOOR = 1e-10
# Bracket of the initial busyness shape
GAMMA_BRACKET = (1e-15, 1e9)


@dataclass
class DirichletEstimate:
    """Dirichlet MLE.

    Attributes:
        alphas: Shape parameter per component.
        iterations: Fixed-point iterations performed.
        converged: Whether the tolerance was met.
    """

    alphas: np.ndarray
    iterations: int
    converged: bool


@dataclass
class DirichletCompoundEstimate:
    """Dirichlet-compound negative multinomial MLE.

    Attributes:
        alphas: P+1 shape parameters (P periods and the residual component).
        gamma: Shape of the gamma busyness factor.
        neg_log_likelihood: Minimized objective.
        converged: Whether the optimizer reported success.
    """

    alphas: np.ndarray
    gamma: float
    neg_log_likelihood: float
    converged: bool


def inverse_digamma(y: np.ndarray, iterations: int = 5) -> np.ndarray:
    """Solve digamma(x) = y by Newton's method (Minka's initialization)."""
    y = np.asarray(y, dtype=float)
    x = np.where(y >= -2.22, np.exp(y) + 0.5, -1.0 / (y - digamma(1.0)))
    for _ in range(iterations):
        x = x - (digamma(x) - y) / polygamma(1, x)
    return x


def dirichlet_mle(proportions, tol: float = 1e-9, maxit: int = 1000) -> DirichletEstimate:
    """Fit a Dirichlet to rows of proportions by Minka's fixed point.

    Args:
        proportions: Observations x components matrix; rows sum to 1.
        tol: Largest change of any alpha at convergence.
        maxit: Iteration cap.
    """
    p = np.array(proportions, dtype=float)
    if p.ndim != 2 or p.shape[0] < 2 or p.shape[1] < 2:
        raise ValueError("Need at least two observations of at least two components")
    if not np.all(np.isfinite(p)) or np.any(p < 0):
        raise ValueError("Proportions must be finite and non-negative")
    p = np.clip(p, PROPORTION_FLOOR, None)
    p = p / p.sum(axis=1, keepdims=True)
    log_bar = np.log(p).mean(axis=0)

    m = p.mean(axis=0)
    m2 = (p[:, 0] ** 2).mean()
    spread = m2 - m[0] ** 2
    s = (m[0] - m2) / spread if spread > 0 else 1.0
    alphas = np.maximum(s, 1e-3) * m

    converged = False
    it = 0
    for it in range(1, maxit + 1):
        updated = inverse_digamma(digamma(alphas.sum()) + log_bar)
        change = np.max(np.abs(updated - alphas))
        alphas = updated
        if change < tol:
            converged = True
            break
    if not converged:
        logger.warning(f"Dirichlet fixed point did not converge in {maxit} iterations")
    return DirichletEstimate(alphas=alphas, iterations=it, converged=converged)


def dirichlet_mle_from_counts(counts) -> DirichletEstimate:
    """Dirichlet fit of the daily proportions of a days x periods count matrix.

    Days without any arrival carry no proportion information and are dropped.
    """
    y = as_count_matrix(counts)
    totals = y.sum(axis=1)
    keep = totals > 0
    if keep.sum() < 2:
        raise ValueError("At least two days with arrivals are required")
    return dirichlet_mle(y[keep] / totals[keep, None])


def _gamma_equation(g: float, tail: np.ndarray, total: float, n: int) -> float:
    return float(np.sum(tail / (g + np.arange(tail.size))) - np.log1p(total / (n * g)))


def initial_busyness_shape(totals: np.ndarray) -> float:
    """Negative multinomial estimate of the busyness shape from daily totals.

    Solves ``sum_l P(Y > l) / (g + l) = log(1 + mean(Y) / g)``. Totals that
    are not overdispersed have no root and get the upper bracket end.
    """
    n = totals.size
    top = int(totals.max())
    if top == 0:
        return GAMMA_BRACKET[1]
    tail = np.array([(totals > l).mean() for l in range(top)])
    lo, hi = GAMMA_BRACKET
    f_hi = _gamma_equation(hi, tail, totals.sum(), n)
    if f_hi >= 0:
        logger.warning("Daily totals are not overdispersed; busyness shape set to its upper bound")
        return hi
    return brentq(_gamma_equation, lo, hi, args=(tail, totals.sum(), n), xtol=1e-5)


def dirichlet_compound_mle(counts) -> DirichletCompoundEstimate:
    """Fit the Dirichlet-compound negative multinomial model.

    Starting values come from the negative multinomial busyness shape and
    a moment heuristic; the negative log-likelihood is then minimized over
    the logarithms of the P+2 parameters.

    Args:
        counts: Days x periods count matrix.
    """
    y = as_count_matrix(counts)
    n, num_periods = y.shape
    totals = y.sum(axis=1)
    means = y.mean(axis=0)
    variances = y.var(axis=0, ddof=1)

    g0 = initial_busyness_shape(totals)
    sum_means = float(np.sum(means * (means + g0) / g0))
    c0 = variances.sum() / sum_means if sum_means > 0 else 1.1
    c0 = max(c0, 1.1)
    theta0 = np.empty(num_periods + 2)
    theta0[:num_periods] = means * (c0 + g0) / (g0 * (c0 - 1.0))
    theta0[num_periods] = (2.0 * c0 + g0 - 1.0) / (c0 - 1.0)
    theta0[num_periods + 1] = g0
    theta0 = np.clip(theta0, 1e-8, None)

    def objective(log_theta):
        theta = np.exp(log_theta)
        beta = theta[:num_periods + 1]
        r = theta[num_periods + 1]
        a = beta.sum()
        tail = beta[num_periods]
        f = (
            -np.sum(gammaln(totals + r))
            + n * gammaln(r)
            - n * gammaln(a)
            - np.sum(gammaln(y + beta[:num_periods]))
            - n * gammaln(r + tail)
            + n * np.sum(gammaln(beta))
            + np.sum(gammaln(totals + r + a))
        )
        psi_tra = np.sum(digamma(totals + r + a))
        grad = np.empty(num_periods + 2)
        grad[:num_periods] = (
            -n * digamma(a)
            - np.sum(digamma(y + beta[:num_periods]), axis=0)
            + n * digamma(beta[:num_periods])
            + psi_tra
        )
        grad[num_periods] = -n * digamma(a) - n * digamma(r + tail) + n * digamma(tail) + psi_tra
        grad[num_periods + 1] = (
            -np.sum(digamma(totals + r)) + n * digamma(r) - n * digamma(r + tail) + psi_tra
        )
        return float(f), grad * theta

    result = minimize(objective, np.log(theta0), jac=True, method="L-BFGS-B")
    theta = np.exp(result.x)
    if not result.success:
        logger.warning(f"Dirichlet-compound fit did not converge: {result.message}")
    logger.info(f"Dirichlet-compound fit: gamma={theta[-1]:.4g} after {result.nit} iterations")
    return DirichletCompoundEstimate(
        alphas=theta[:num_periods + 1],
        gamma=float(theta[-1]),
        neg_log_likelihood=float(result.fun),
        converged=bool(result.success),
    )
