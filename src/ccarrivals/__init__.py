"""Randomized arrival processes for contact-center simulation.

The package provides arrival processes driven by a SimPy environment,
a family of arrival models (Poisson, piecewise-constant rates with random
latent parameters, order statistics of random counts, thinning and
inversion of an intensity) and estimators that fit those models to
historical days x periods count matrices.
"""

__version__ = "0.1.0"

from ccarrivals.core import (
    Busyness,
    BusynessState,
    Contact,
    CorrelationFit,
    IllegalStateError,
    PeriodLayout,
    PeriodSchedule,
    ShapeEstimator,
    SimpleContactFactory,
    StreamSet,
    UnsupportedOperationError,
)
from ccarrivals.estimation import (
    CorrelationEstimator,
    EstimatorConfig,
    GammaParameterEstimator,
    NortaConfig,
)
from ccarrivals.experiment import simulate_daily_counts
from ccarrivals.model import ArrivalProcess, PiecewiseConstantModel, PoissonModel
from ccarrivals.results import ArrivalCounter

__all__ = [
    "__version__",
    "ArrivalCounter",
    "ArrivalProcess",
    "Busyness",
    "BusynessState",
    "Contact",
    "CorrelationEstimator",
    "CorrelationFit",
    "EstimatorConfig",
    "GammaParameterEstimator",
    "IllegalStateError",
    "NortaConfig",
    "PeriodLayout",
    "PeriodSchedule",
    "PiecewiseConstantModel",
    "PoissonModel",
    "ShapeEstimator",
    "SimpleContactFactory",
    "StreamSet",
    "UnsupportedOperationError",
    "simulate_daily_counts",
]
