"""Estimators of arrival-model parameters from historical counts."""

from ccarrivals.estimation.config import (
    CorrectorConfig,
    EstimatorConfig,
    GridFitConfig,
    NortaConfig,
    TrustRegionConfig,
)
from ccarrivals.estimation.correlation import (
    CorrelationEstimator,
    CorrelationFitter,
    CorrelationMatrixCorrector,
    NortaEstimate,
)
from ccarrivals.estimation.dirichlet import dirichlet_compound_mle, dirichlet_mle
from ccarrivals.estimation.fitting import (
    FittedModel,
    fit_dirichlet,
    fit_dirichlet_compound,
    fit_negbin_norta,
    fit_norta_gamma,
    fit_piecewise_constant,
    fit_poisson,
    fit_poisson_gamma,
    fit_poisson_gamma_doubly,
)
from ccarrivals.estimation.gamma import GammaEstimate, GammaParameterEstimator
from ccarrivals.estimation.likelihood import (
    DoublyGammaLikelihood,
    SplineDoublyGammaLikelihood,
    spline_penalty_matrix,
)
from ccarrivals.estimation.moments import (
    MomentEstimate,
    mme_doubly_gamma,
    mme_doubly_gamma_windowed,
)
from ccarrivals.estimation.negbin import NegBinEstimate, negbin_mle, poisson_mle
from ccarrivals.estimation.trust_region import (
    OptimizationResult,
    maximize_trust_region,
    maximize_trust_region_spline,
)

__all__ = [
    "CorrectorConfig",
    "EstimatorConfig",
    "GridFitConfig",
    "NortaConfig",
    "TrustRegionConfig",
    "CorrelationEstimator",
    "CorrelationFitter",
    "CorrelationMatrixCorrector",
    "NortaEstimate",
    "dirichlet_mle",
    "dirichlet_compound_mle",
    "FittedModel",
    "fit_dirichlet",
    "fit_dirichlet_compound",
    "fit_negbin_norta",
    "fit_norta_gamma",
    "fit_piecewise_constant",
    "fit_poisson",
    "fit_poisson_gamma",
    "fit_poisson_gamma_doubly",
    "GammaEstimate",
    "GammaParameterEstimator",
    "DoublyGammaLikelihood",
    "SplineDoublyGammaLikelihood",
    "spline_penalty_matrix",
    "MomentEstimate",
    "mme_doubly_gamma",
    "mme_doubly_gamma_windowed",
    "NegBinEstimate",
    "negbin_mle",
    "poisson_mle",
    "OptimizationResult",
    "maximize_trust_region",
    "maximize_trust_region_spline",
]
