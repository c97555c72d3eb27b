"""Ready-to-simulate arrival models fitted to historical counts.

Each ``fit_*`` function takes a days x main-periods count matrix and the
period layout of the simulated day, and returns the arrival model with
the busyness model it needs. Main-period parameters are padded to the
P+2 periods of the layout: the preliminary period copies the first main
period and the wrap-up period is empty. Rate models are normalized, so
counts per period become rates per time unit.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np
from scipy import stats

from ccarrivals.core.busyness import Busyness
from ccarrivals.core.entities import CorrelationFit, ShapeEstimator
from ccarrivals.core.periods import PeriodLayout
from ccarrivals.estimation.config import EstimatorConfig, NortaConfig
from ccarrivals.estimation.correlation import CorrelationEstimator
from ccarrivals.estimation.dirichlet import dirichlet_compound_mle, dirichlet_mle_from_counts
from ccarrivals.estimation.gamma import GammaParameterEstimator
from ccarrivals.estimation.moments import as_count_matrix
from ccarrivals.estimation.negbin import negbin_mle, poisson_mle
from ccarrivals.model.base import ArrivalModel, PoissonModel
from ccarrivals.model.counts import DirichletCounts, NegBinNortaCounts, OrderStatisticsModel
from ccarrivals.model.rates import (
    DirichletCompoundRates,
    FixedRates,
    GammaRates,
    NortaGammaRates,
    PiecewiseConstantModel,
)

logger = logging.getLogger(__name__)


@dataclass
class FittedModel:
    """Arrival model fitted to data.

    Attributes:
        model: Arrival model to plug into an ArrivalProcess.
        busyness: Busyness model the fit assumes.
        estimate: Underlying estimator output.
    """

    model: ArrivalModel
    busyness: Busyness
    estimate: Any = None


def pad_main_periods(values) -> np.ndarray:
    """Extend P main-period values to P+2 periods."""
    v = np.asarray(values, dtype=float)
    out = np.zeros(v.size + 2)
    out[1:-1] = v
    out[0] = v[0]
    return out


def pad_correlation(matrix) -> np.ndarray:
    """Embed a PxP correlation in a (P+2)x(P+2) one, independent at the ends."""
    m = np.asarray(matrix, dtype=float)
    out = np.eye(m.shape[0] + 2)
    out[1:-1, 1:-1] = m
    return out


def _checked(counts, periods: PeriodLayout) -> np.ndarray:
    y = as_count_matrix(counts)
    if y.shape[1] != periods.main_period_count():
        raise ValueError(
            f"Counts cover {y.shape[1]} periods, layout has {periods.main_period_count()} main periods"
        )
    return y


def _gamma_busyness(shape: float) -> Busyness:
    return Busyness(distribution=stats.gamma(shape, scale=1.0 / shape))


def fit_poisson(counts, duration: float = 1.0) -> FittedModel:
    """Homogeneous Poisson model from counts over windows of ``duration``."""
    if duration <= 0:
        raise ValueError(f"duration must be positive, got {duration}")
    mean = poisson_mle(counts)
    return FittedModel(model=PoissonModel(mean / duration), busyness=Busyness(), estimate=mean)


def fit_piecewise_constant(counts, periods: PeriodLayout) -> FittedModel:
    """Deterministic rates equal to the mean count of each period."""
    y = _checked(counts, periods)
    means = y.mean(axis=0)
    rates = FixedRates(pad_main_periods(means))
    return FittedModel(
        model=PiecewiseConstantModel(periods, rates, normalize=True),
        busyness=Busyness(),
        estimate=means,
    )


def fit_poisson_gamma(counts, periods: PeriodLayout, config: Optional[EstimatorConfig] = None) -> FittedModel:
    """Independent gamma rates, one negative binomial fit per period.

    Periods whose likelihood has no finite maximum get a shape just above
    the configured ceiling, which makes their rate practically fixed.
    """
    config = config or EstimatorConfig()
    y = _checked(counts, periods)
    big = config.q_ceiling
    alphas = np.empty(y.shape[1])
    lambdas = np.empty(y.shape[1])
    for p in range(y.shape[1]):
        est = negbin_mle(y[:, p])
        lambdas[p] = est.mean
        if est.degenerate or est.no_finite_maximum or est.r >= big:
            alphas[p] = big + 1.0
            logger.info(f"Period {p + 1} shows no overdispersion; gamma shape set to {big + 1.0:g}")
        else:
            alphas[p] = est.r
    rates = GammaRates(pad_main_periods(alphas), pad_main_periods(lambdas))
    return FittedModel(
        model=PiecewiseConstantModel(periods, rates, normalize=True),
        busyness=Busyness(),
        estimate=(alphas, lambdas),
    )


def fit_poisson_gamma_doubly(
    counts,
    periods: PeriodLayout,
    config: Optional[EstimatorConfig] = None,
    shape: ShapeEstimator = ShapeEstimator.SINGLE_SHAPE,
    rng: Optional[np.random.Generator] = None,
) -> FittedModel:
    """Gamma rates times a gamma daily busyness, fitted by likelihood."""
    y = _checked(counts, periods)
    est = GammaParameterEstimator(y, config, rng).estimate(shape)
    rates = GammaRates(pad_main_periods(est.alphas), pad_main_periods(est.lambdas))
    busyness = Busyness() if est.q_at_ceiling else _gamma_busyness(est.q)
    return FittedModel(
        model=PiecewiseConstantModel(periods, rates, normalize=True),
        busyness=busyness,
        estimate=est,
    )


def fit_norta_gamma(
    counts,
    periods: PeriodLayout,
    config: Optional[NortaConfig] = None,
    fit: CorrelationFit = CorrelationFit.FULL,
    rng: Optional[np.random.Generator] = None,
) -> FittedModel:
    """Correlated gamma rates with negative binomial marginals."""
    y = _checked(counts, periods)
    est = CorrelationEstimator(y, config, rng).estimate(fit)
    rates = NortaGammaRates(
        pad_main_periods(est.shapes),
        pad_main_periods(est.means),
        pad_correlation(est.correlation),
    )
    return FittedModel(
        model=PiecewiseConstantModel(periods, rates, normalize=True),
        busyness=Busyness(),
        estimate=est,
    )


def fit_negbin_norta(
    counts,
    periods: PeriodLayout,
    config: Optional[NortaConfig] = None,
    fit: CorrelationFit = CorrelationFit.FULL,
    rng: Optional[np.random.Generator] = None,
) -> FittedModel:
    """Correlated negative binomial counts spread as order statistics."""
    y = _checked(counts, periods)
    est = CorrelationEstimator(y, config, rng).estimate(fit)
    sizes = np.array([1.0 if m.degenerate else m.r for m in est.marginals])
    probs = np.array([1.0 if m.degenerate else m.p for m in est.marginals])
    counts_model = NegBinNortaCounts(sizes, probs, est.correlation)
    return FittedModel(
        model=OrderStatisticsModel(periods, counts_model),
        busyness=Busyness(),
        estimate=est,
    )


def fit_dirichlet(counts, periods: PeriodLayout) -> FittedModel:
    """Dirichlet proportions with a negative binomial (or Poisson) daily total."""
    y = _checked(counts, periods)
    est = dirichlet_mle_from_counts(y)
    totals = y.sum(axis=1)
    total_fit = negbin_mle(totals)
    if total_fit.no_finite_maximum or total_fit.degenerate:
        total = stats.poisson(max(total_fit.mean, 1e-12))
    else:
        total = stats.nbinom(total_fit.r, total_fit.p)
    return FittedModel(
        model=OrderStatisticsModel(periods, DirichletCounts(est.alphas, total)),
        busyness=Busyness(),
        estimate=est,
    )


def fit_dirichlet_compound(counts, periods: PeriodLayout) -> FittedModel:
    """Dirichlet-compound rates with a gamma(gamma, 1) busyness factor."""
    y = _checked(counts, periods)
    est = dirichlet_compound_mle(y)
    busyness = Busyness(distribution=stats.gamma(est.gamma))
    return FittedModel(
        model=PiecewiseConstantModel(periods, DirichletCompoundRates(est.alphas), normalize=True),
        busyness=busyness,
        estimate=est,
    )
