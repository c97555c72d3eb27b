"""Core enum definitions for arrival processes and estimators.

This module contains enums that are used across the codebase,
placed here to avoid circular imports.
"""

from enum import Enum, IntEnum


class ProcessState(IntEnum):
    """Lifecycle state of an arrival process."""
    STOPPED = 0
    STARTED = 1


class CorrelationFit(Enum):
    """How the NORTA gaussian correlation matrix is built from data.

    - FULL: every pairwise correlation, repaired to be positive definite
    - MARKOV_SINGLE_RHO: rho_ij = b^|i-j|
    - MARKOV_LINEAR_FIT: rho_ij = a * b^|i-j| + c, unit diagonal
    """
    FULL = "full"
    MARKOV_SINGLE_RHO = "markov_single_rho"
    MARKOV_LINEAR_FIT = "markov_linear_fit"


class ShapeEstimator(Enum):
    """Period shape parameter model used by the doubly-gamma MLE."""
    SINGLE_SHAPE = "single_shape"  # One R shared by every period
    SPLINE = "spline"              # One R per period, smoothness penalised
