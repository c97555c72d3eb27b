"""Stochastic trust-region maximization of a Monte Carlo likelihood.

Each iteration draws fresh samples, computes a step per parameter and
scales it by the regulator of the parameter's group (rates, shapes,
daily shape). The quality ratio ``actual / predicted`` improvement is
measured on the reused draws, globally and group by group, and drives
the regulators. An accepted step is damped by ``eta * k^(-pwr)`` before
it is committed, and committed only if it does not lower the cost on the
reused draws.

Non-positive or non-finite proposed parameters are rejected in place;
the optimizer never raises on numerical trouble.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from ccarrivals.estimation.config import TrustRegionConfig

logger = logging.getLogger(__name__)


@dataclass
class OptimizationResult:
    """Outcome of a trust-region run.

    Attributes:
        x: Final packed parameter vector.
        cost: Cost of ``x`` on the last draws.
        iterations: Iterations performed.
        converged: Whether successive costs met the tolerance.
        trace: One row per iteration (costs, quality ratio, regulators).
        history: Packed parameter vector after each iteration.
    """

    x: np.ndarray
    cost: float
    iterations: int
    converged: bool
    trace: pd.DataFrame
    history: np.ndarray = field(repr=False)

    def polyak_average(self, start: Optional[int] = None) -> np.ndarray:
        """Average of the iterates from ``start`` on (default: second half)."""
        if self.history.size == 0:
            return self.x.copy()
        if start is None:
            start = len(self.history) // 2
        return self.history[start:].mean(axis=0)


def _newton_direction(gradient: np.ndarray, curvature: np.ndarray) -> np.ndarray:
    """Ascent direction -g/h where the curvature is negative, g elsewhere."""
    direction = gradient.copy()
    concave = curvature < 0
    direction[concave] = -gradient[concave] / curvature[concave]
    return direction


def _valid(x: np.ndarray) -> np.ndarray:
    return np.isfinite(x) & (x > 0)


def _run(
    likelihood,
    x0: Sequence[float],
    config: TrustRegionConfig,
    newton: bool,
    delayed_annealing: bool,
    per_group_commit: bool,
    frozen: Sequence[int] = (),
) -> OptimizationResult:
    x = np.array(x0, dtype=float)
    x[~_valid(x)] = 0.1
    groups: List[np.ndarray] = list(likelihood.groups())
    frozen_mask = np.zeros(x.size, dtype=bool)
    frozen_mask[list(frozen)] = True
    active = [not frozen_mask[g].all() for g in groups]
    regulators = np.full(len(groups), config.r_init)
    c = config

    rows = []
    history = []
    f_prev = None
    converged = False
    f = None
    for k in range(c.maxit):
        res = likelihood.evaluate_packed(x)
        f = res.cost
        if f_prev is not None and abs(f - f_prev) < c.tol:
            converged = True
            history.append(x.copy())
            break
        f_prev = f

        direction = _newton_direction(res.gradient, res.curvature) if newton else res.gradient.copy()
        direction[frozen_mask] = 0.0
        step = np.zeros_like(x)
        for gi, g in enumerate(groups):
            step[g] = regulators[gi] * direction[g]
        step[~np.isfinite(step)] = 0.0

        trial = x + step
        bad = ~_valid(trial)
        trial[bad] = x[bad]
        step[bad] = 0.0

        predicted = float(np.dot(step, res.gradient))
        f_trial = likelihood.cost_packed(trial)
        rho = (f_trial - f) / abs(predicted) if predicted != 0 else 0.0

        group_rho = np.zeros(len(groups))
        for gi, g in enumerate(groups):
            if not active[gi]:
                continue
            expected = abs(float(np.dot(step[g], res.gradient[g])))
            if expected == 0:
                continue
            partial = x.copy()
            partial[g] = trial[g]
            group_rho[gi] = (likelihood.cost_packed(partial) - f) / expected
            if group_rho[gi] < c.c0:
                regulators[gi] *= c.g0
            elif group_rho[gi] > c.c1:
                regulators[gi] *= c.g1

        if delayed_annealing:
            half = int(round(c.maxit / 2))
            anneal = 1.0 if k < half else (k - half + 1) ** (-c.pwr)
        else:
            anneal = (k + 1) ** (-c.pwr)

        committed = False
        committed_cost = f
        if rho > c.c0:
            damped = anneal * c.eta * step
            if per_group_commit:
                mask = np.zeros(x.size, dtype=bool)
                for gi, g in enumerate(groups):
                    if group_rho[gi] > c.c0:
                        mask[g] = True
                damped[~mask] = 0.0
            candidate = x + damped
            bad = ~_valid(candidate)
            candidate[bad] = x[bad]
            if not np.array_equal(candidate, x):
                f_candidate = likelihood.cost_packed(candidate)
                if f_candidate >= f:
                    x = candidate
                    committed = True
                    committed_cost = f_candidate

        row = {
            "iteration": k + 1,
            "cost": f,
            "trial_cost": f_trial,
            "rho": rho,
            "anneal": anneal,
            "committed": committed,
            "committed_cost": committed_cost,
        }
        for gi in range(len(groups)):
            row[f"regulator_{gi}"] = regulators[gi]
        rows.append(row)
        history.append(x.copy())
        logger.debug(f"Iteration {k + 1}: cost={f:.6f} rho={rho:.4f} committed={committed}")

    iterations = len(rows)
    final_cost = likelihood.cost_packed(x) if f is not None else float("nan")
    logger.info(
        f"Trust-region search finished after {iterations} iterations "
        f"(converged={converged}, cost={final_cost:.6f})"
    )
    return OptimizationResult(
        x=x,
        cost=final_cost,
        iterations=iterations,
        converged=converged,
        trace=pd.DataFrame(rows),
        history=np.array(history),
    )


def maximize_trust_region(
    likelihood,
    x0: Sequence[float],
    config: Optional[TrustRegionConfig] = None,
    frozen: Sequence[int] = (),
) -> OptimizationResult:
    """Maximize a shared-shape likelihood with Newton-like steps.

    Args:
        likelihood: Object with ``groups``, ``evaluate_packed`` and
            ``cost_packed`` (e.g. DoublyGammaLikelihood).
        x0: Starting packed vector; non-positive entries become 0.1.
        config: Optimizer settings.
        frozen: Packed indices kept at their starting value.
    """
    return _run(
        likelihood,
        x0,
        config or TrustRegionConfig(),
        newton=True,
        delayed_annealing=False,
        per_group_commit=False,
        frozen=frozen,
    )


def maximize_trust_region_spline(
    likelihood,
    x0: Sequence[float],
    config: Optional[TrustRegionConfig] = None,
    frozen: Sequence[int] = (),
) -> OptimizationResult:
    """Maximize a per-period-shape likelihood with regulated gradient steps.

    Groups whose own quality ratio passes ``c0`` are committed; annealing
    only starts after half of the iteration budget.
    """
    return _run(
        likelihood,
        x0,
        config or TrustRegionConfig(),
        newton=False,
        delayed_annealing=True,
        per_group_commit=True,
        frozen=frozen,
    )
