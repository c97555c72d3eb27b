"""Arrival process layer: the SimPy state machine and its arrival models."""

from ccarrivals.model.base import ArrivalModel, ExponentialModel, PoissonModel, RenewalModel
from ccarrivals.model.counts import (
    CountModel,
    DirichletCounts,
    FixedCounts,
    NegBinNortaCounts,
    OrderStatisticsModel,
    UniformCounts,
)
from ccarrivals.model.intensity import InversionModel, ThinningModel, TimeIntervalModel
from ccarrivals.model.process import ArrivalProcess
from ccarrivals.model.rates import (
    DirichletCompoundRates,
    FixedRates,
    GammaPowRates,
    GammaRates,
    NortaGammaRates,
    PiecewiseConstantModel,
    RandomRates,
    RateModel,
)

__all__ = [
    "ArrivalProcess",
    "ArrivalModel",
    "ExponentialModel",
    "PoissonModel",
    "RenewalModel",
    "PiecewiseConstantModel",
    "RateModel",
    "FixedRates",
    "GammaRates",
    "NortaGammaRates",
    "GammaPowRates",
    "DirichletCompoundRates",
    "RandomRates",
    "OrderStatisticsModel",
    "CountModel",
    "FixedCounts",
    "UniformCounts",
    "DirichletCounts",
    "NegBinNortaCounts",
    "ThinningModel",
    "InversionModel",
    "TimeIntervalModel",
]
