"""Configuration dataclasses for the parameter estimators.

All tuning constants of the estimators live here and are passed
explicitly; nothing is kept in module-level mutable state.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class TrustRegionConfig:
    """Tuning of the stochastic trust-region optimizer.

    Attributes:
        c0: Quality ratio below which a step regulator shrinks; a step is
            only accepted above it.
        c1: Quality ratio above which a step regulator grows.
        g0: Shrink factor (< 1).
        g1: Growth factor (> 1).
        maxit: Maximum number of iterations.
        tol: Convergence threshold on successive cost values.
        eta: Noise attenuator applied to accepted steps, in (0, 1].
        pwr: Exponent of the annealing factor (k+1)^(-pwr).
        r_init: Initial value of every step regulator.
    """

    c0: float = 0.01
    c1: float = 0.5
    g0: float = 1 / 1.21
    g1: float = 1.1
    maxit: int = 200
    tol: float = 1e-9
    eta: float = 0.5
    pwr: float = 5 / 6
    r_init: float = 0.5

    def __post_init__(self) -> None:
        if not 0 <= self.c0 <= self.c1:
            raise ValueError(f"Need 0 <= c0 <= c1, got c0={self.c0}, c1={self.c1}")
        if not 0 < self.g0 < 1:
            raise ValueError(f"g0 must lie in (0, 1), got {self.g0}")
        if self.g1 <= 1:
            raise ValueError(f"g1 must exceed 1, got {self.g1}")
        if self.maxit < 1:
            raise ValueError(f"maxit must be >= 1, got {self.maxit}")
        if self.tol < 0:
            raise ValueError(f"tol must be non-negative, got {self.tol}")
        if not 0 < self.eta <= 1:
            raise ValueError(f"eta must lie in (0, 1], got {self.eta}")
        if self.pwr < 0:
            raise ValueError(f"pwr must be non-negative, got {self.pwr}")
        if self.r_init <= 0:
            raise ValueError(f"r_init must be positive, got {self.r_init}")

    @classmethod
    def for_norta(cls) -> "TrustRegionConfig":
        """Settings of the scalar Robbins-Monro search for NORTA correlations."""
        return cls(eta=0.5, pwr=9 / 16, maxit=1000)


@dataclass
class EstimatorConfig:
    """Settings of the doubly-gamma parameter estimator.

    Attributes:
        num_samples: Monte Carlo samples of the daily factor per evaluation.
        moving_window: Window of adjacent periods used by the windowed
            moment estimator.
        smoothing_lambda: Weight of the likelihood against the smoothness
            penalty in the spline estimator, in [0, 1].
        variance_epsilon: Variance of the daily factor below which it is
            treated as absent; its inverse is the ceiling of Q.
        seed: Seed of the Monte Carlo stream when none is supplied.
        trust_region: Optimizer settings.
    """

    num_samples: int = 100
    moving_window: int = 5
    smoothing_lambda: float = 0.95
    variance_epsilon: float = 1e-6
    seed: Optional[int] = None
    trust_region: TrustRegionConfig = field(default_factory=TrustRegionConfig)

    def __post_init__(self) -> None:
        if self.num_samples < 1:
            raise ValueError(f"num_samples must be >= 1, got {self.num_samples}")
        if self.moving_window < 1:
            raise ValueError(f"moving_window must be >= 1, got {self.moving_window}")
        if not 0 <= self.smoothing_lambda <= 1:
            raise ValueError(f"smoothing_lambda must lie in [0, 1], got {self.smoothing_lambda}")
        if self.variance_epsilon <= 0:
            raise ValueError(f"variance_epsilon must be positive, got {self.variance_epsilon}")

    @property
    def q_ceiling(self) -> float:
        """Largest daily shape Q, meaning "no daily busyness"."""
        return 1.0 / self.variance_epsilon


@dataclass
class CorrectorConfig:
    """Settings of the positive-definiteness correction.

    Attributes:
        maxit: Eigenvalue-flooring iterations before diagonal loading.
        epsilon: Floor applied to small eigenvalues.
        epsilon_loading: Extra diagonal load of the fallback.
    """

    maxit: int = 100
    epsilon: float = 1e-3
    epsilon_loading: float = 1e-5

    def __post_init__(self) -> None:
        if self.maxit < 0:
            raise ValueError(f"maxit must be non-negative, got {self.maxit}")
        if self.epsilon <= 0 or self.epsilon_loading <= 0:
            raise ValueError("epsilon and epsilon_loading must be positive")


@dataclass
class GridFitConfig:
    """Grid of the parametric correlation fits over b in [-1+delta, 1-delta]."""

    delta: float = 1e-3
    step: float = 1e-3

    def __post_init__(self) -> None:
        if not 0 < self.delta < 1:
            raise ValueError(f"delta must lie in (0, 1), got {self.delta}")
        if self.step <= 0:
            raise ValueError(f"step must be positive, got {self.step}")


@dataclass
class NortaConfig:
    """Settings of the NORTA correlation estimator.

    Attributes:
        num_samples: Simulated pairs per correlation evaluation.
        bisection_tol: Width at which the negative-binomial bisection stops.
        trust_region: Robbins-Monro settings (eta, pwr, maxit, tol).
        corrector: Positive-definiteness correction settings.
        grid: Parametric fit grid.
    """

    num_samples: int = 1000
    bisection_tol: float = 1e-6
    trust_region: TrustRegionConfig = field(default_factory=TrustRegionConfig.for_norta)
    corrector: CorrectorConfig = field(default_factory=CorrectorConfig)
    grid: GridFitConfig = field(default_factory=GridFitConfig)

    def __post_init__(self) -> None:
        if self.num_samples < 2:
            raise ValueError(f"num_samples must be >= 2, got {self.num_samples}")
        if self.bisection_tol <= 0:
            raise ValueError(f"bisection_tol must be positive, got {self.bisection_tol}")
