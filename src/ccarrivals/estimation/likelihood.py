"""Monte Carlo log-likelihood of the doubly-gamma Poisson model.

Given the daily factor xi, the period factors integrate out in closed form
and each count is negative binomial, so the likelihood of day j is

    L_j = E_xi[ prod_i NB(y_ji; R_i, xi * lam_i) ],    xi ~ Gamma(Q, Q).

The expectation over xi has no closed form. ``evaluate`` draws M samples
of xi per day and returns the log-likelihood with its gradient and a
diagonal curvature estimate. ``cost_only`` reuses the same draws and
reweights them by the ratio of gamma densities when Q changes, so two
nearby parameter vectors are compared on common random numbers.

Parameters travel as one packed vector ``[lam_1..lam_P, R..., Q]`` where
the shape block holds a single R or one R per period.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
from scipy.special import digamma, gammaln, polygamma, xlogy

from ccarrivals.estimation.moments import as_count_matrix

logger = logging.getLogger(__name__)

# Upper bound on the size of one (days x samples x periods) work array
CHUNK_ELEMENTS = 2_000_000


@dataclass
class LikelihoodResult:
    """Log-likelihood with first and second derivatives.

    Attributes:
        cost: Log-likelihood (up to a parameter-free constant).
        gradient: Partial derivatives in packed order.
        curvature: Diagonal second-derivative estimates in packed order.
    """

    cost: float
    gradient: np.ndarray
    curvature: np.ndarray


def spline_penalty_matrix(num_periods: int) -> np.ndarray:
    """Second-difference roughness matrix K = Qm^T Rs^{-1} Qm.

    Qm holds rows ``[3, -6, 3]`` and Rs is tridiagonal with 4 on the
    diagonal and 1 off it. Fewer than three periods have no curvature and
    give a zero matrix.
    """
    if num_periods < 3:
        return np.zeros((num_periods, num_periods))
    n = num_periods - 2
    rs = 4.0 * np.eye(n) + np.eye(n, k=1) + np.eye(n, k=-1)
    qm = np.zeros((n, num_periods))
    for i in range(n):
        qm[i, i:i + 3] = (3.0, -6.0, 3.0)
    return qm.T @ np.linalg.solve(rs, qm)


class DoublyGammaLikelihood:
    """Monte Carlo likelihood with one period shape R shared by all periods.

    Attributes:
        y: Days x periods count matrix.
        num_samples: Samples of xi per day.
        rng: Stream of the xi draws.
    """

    shared_shape = True

    def __init__(
        self,
        counts,
        num_samples: int = 100,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        if num_samples < 1:
            raise ValueError(f"num_samples must be >= 1, got {num_samples}")
        self.y = as_count_matrix(counts, min_rows=1)
        self.num_obs, self.num_periods = self.y.shape
        self.num_samples = num_samples
        self.rng = rng if rng is not None else np.random.default_rng()
        self._xi: Optional[np.ndarray] = None
        self._log_pdf: Optional[np.ndarray] = None
        self._q: Optional[float] = None
        rows = CHUNK_ELEMENTS // max(1, num_samples * self.num_periods)
        self._chunk = max(1, int(rows))

    # Packing

    @property
    def num_shapes(self) -> int:
        return 1 if self.shared_shape else self.num_periods

    @property
    def size(self) -> int:
        """Length of the packed parameter vector."""
        return self.num_periods + self.num_shapes + 1

    def groups(self) -> List[np.ndarray]:
        """Index blocks sharing one step regulator: rates, shapes, Q."""
        p, k = self.num_periods, self.num_shapes
        return [np.arange(p), np.arange(p, p + k), np.array([p + k])]

    def pack(self, lam, r, q: float) -> np.ndarray:
        lam = np.asarray(lam, dtype=float).ravel()
        r = np.asarray(r, dtype=float).ravel()
        if lam.size != self.num_periods:
            raise ValueError(f"Expected {self.num_periods} rates, got {lam.size}")
        if r.size != self.num_shapes:
            raise ValueError(f"Expected {self.num_shapes} shape parameters, got {r.size}")
        return np.concatenate([lam, r, [float(q)]])

    def unpack(self, x: np.ndarray):
        """Split a packed vector into (lam, r, q)."""
        p, k = self.num_periods, self.num_shapes
        return x[:p], x[p:p + k], float(x[p + k])

    def _period_shapes(self, r: np.ndarray) -> np.ndarray:
        return np.broadcast_to(r, (self.num_periods,)) if self.shared_shape else r

    # Monte Carlo draws

    def draw(self, q: float) -> None:
        """Fresh xi samples from Gamma(q, q) for every day."""
        if not np.isfinite(q) or q <= 0:
            raise ValueError(f"Daily shape must be positive, got {q}")
        self._xi = self.rng.gamma(q, 1.0 / q, size=(self.num_obs, self.num_samples))
        self._log_pdf = self._gamma_log_pdf(q)
        self._q = q

    def _gamma_log_pdf(self, q: float) -> np.ndarray:
        xi = self._xi
        return q * np.log(q) + (q - 1.0) * np.log(xi) - q * xi - gammaln(q)

    def _constant(self, r: np.ndarray) -> float:
        """Terms of the log-likelihood that do not involve xi."""
        n = self.num_obs
        return float(np.sum(n * (r * np.log(r) - gammaln(r))) + np.sum(gammaln(r + self.y)))

    def _chunks(self):
        for start in range(0, self.num_obs, self._chunk):
            yield slice(start, min(start + self._chunk, self.num_obs))

    def _log_weights(self, rows: slice, lam: np.ndarray, r: np.ndarray):
        y = self.y[rows][:, None, :]
        a_lam = self._xi[rows][:, :, None] * lam
        denom = r + a_lam
        w = np.sum(xlogy(y, a_lam) - (r + y) * np.log(denom), axis=2)
        return w, y, a_lam, denom

    @staticmethod
    def _normalize(w: np.ndarray):
        top = w.max(axis=1)
        e = np.exp(w - top[:, None])
        total = e.sum(axis=1)
        return float(np.sum(np.log(total) + top)), e / total[:, None]

    # Evaluation

    def cost_only(self, lam, r, q: float) -> float:
        """Log-likelihood on the last draws, reweighted to the daily shape q."""
        if self._xi is None:
            raise RuntimeError("cost_only needs a previous evaluate() to provide draws")
        lam = np.asarray(lam, dtype=float)
        r = self._period_shapes(np.asarray(r, dtype=float))
        shift = None
        if q != self._q:
            shift = self._gamma_log_pdf(q) - self._log_pdf
        cost = self._constant(r)
        for rows in self._chunks():
            w, *_ = self._log_weights(rows, lam, r)
            if shift is not None:
                w = w + shift[rows]
            cost += self._normalize(w)[0]
        return cost

    def evaluate(self, lam, r, q: float) -> LikelihoodResult:
        """Draw fresh samples at q and return cost, gradient and curvature."""
        lam = np.asarray(lam, dtype=float)
        r_in = np.asarray(r, dtype=float)
        r = self._period_shapes(r_in)
        self.draw(q)
        n, p = self.num_obs, self.num_periods

        cost = self._constant(r)
        g_lam = np.zeros(p)
        h_lam = np.zeros(p)
        g_r = np.zeros(p)
        h_r = np.zeros(p)
        g_rs = 0.0
        h_rs = 0.0
        g_q = 0.0
        h_q = 0.0
        for rows in self._chunks():
            w_log, y, a_lam, denom = self._log_weights(rows, lam, r)
            part, w = self._normalize(w_log)
            cost += part
            wk = w[:, :, None]

            # shape derivatives of the log-weights
            d_r = -(np.log(denom) + (r + y) / denom)
            d2_r = -(1.0 / denom + (a_lam - y) / denom ** 2)
            if self.shared_shape:
                d_tot = d_r.sum(axis=2)
                t = np.sum(w * d_tot, axis=1)
                g_rs += t.sum()
                h_rs += np.sum(np.sum(w * d_tot ** 2, axis=1) - t ** 2)
                h_rs += np.sum(wk * d2_r)
            else:
                t = np.sum(wk * d_r, axis=1)
                g_r += t.sum(axis=0)
                h_r += np.sum(np.sum(wk * d_r ** 2, axis=1) - t ** 2, axis=0)
                h_r += np.sum(wk * d2_r, axis=(0, 1))

            # rate derivatives, curvature by outer product of day scores
            xi = self._xi[rows][:, :, None]
            term = y[:, 0, :] / lam - np.sum(wk * (r + y) * xi / denom, axis=1)
            g_lam += term.sum(axis=0)
            h_lam -= np.sum(term ** 2, axis=0)

            # daily shape derivatives through the sampling density
            s_q = np.log(self._xi[rows]) - self._xi[rows]
            tq = np.sum(w * s_q, axis=1)
            g_q += tq.sum()
            h_q += np.sum(np.sum(w * s_q ** 2, axis=1) - tq ** 2)

        g_q += n * (np.log(q) + 1.0 - digamma(q))
        h_q += n * (1.0 / q - polygamma(1, q))
        ry = r + self.y
        if self.shared_shape:
            rr = float(r_in.ravel()[0])
            g_rs += n * p * (np.log(rr) + 1.0 - digamma(rr)) + np.sum(digamma(ry))
            h_rs += n * p * (1.0 / rr - polygamma(1, rr)) + np.sum(polygamma(1, ry))
            g_shape, h_shape = np.array([g_rs]), np.array([h_rs])
        else:
            g_shape = g_r + n * (np.log(r) + 1.0 - digamma(r)) + np.sum(digamma(ry), axis=0)
            h_shape = h_r + n * (1.0 / r - polygamma(1, r)) + np.sum(polygamma(1, ry), axis=0)

        return LikelihoodResult(
            cost=cost,
            gradient=np.concatenate([g_lam, g_shape, [g_q]]),
            curvature=np.concatenate([h_lam, h_shape, [h_q]]),
        )

    # Packed-vector interface used by the optimizer

    def evaluate_packed(self, x: np.ndarray) -> LikelihoodResult:
        return self.evaluate(*self.unpack(x))

    def cost_packed(self, x: np.ndarray) -> float:
        return self.cost_only(*self.unpack(x))


class SplineDoublyGammaLikelihood(DoublyGammaLikelihood):
    """Likelihood with one shape per period and a roughness penalty.

    The objective is ``s * loglik - (2/3)(1 - s) R^T K R`` with K the
    second-difference matrix of ``spline_penalty_matrix`` and s the
    smoothing weight. Each period shape gets its own step regulator.

    Attributes:
        smoothing_lambda: Weight s of the likelihood, in [0, 1].
    """

    shared_shape = False

    def __init__(
        self,
        counts,
        num_samples: int = 100,
        rng: Optional[np.random.Generator] = None,
        smoothing_lambda: float = 0.95,
    ) -> None:
        super().__init__(counts, num_samples, rng)
        if not 0 <= smoothing_lambda <= 1:
            raise ValueError(f"smoothing_lambda must lie in [0, 1], got {smoothing_lambda}")
        self.smoothing_lambda = smoothing_lambda
        self.penalty = spline_penalty_matrix(self.num_periods)

    def groups(self) -> List[np.ndarray]:
        p = self.num_periods
        return [np.arange(p)] + [np.array([p + i]) for i in range(p)] + [np.array([2 * p])]

    def roughness(self, r) -> float:
        r = np.asarray(r, dtype=float)
        return float(r @ self.penalty @ r)

    def cost_only(self, lam, r, q: float) -> float:
        s = self.smoothing_lambda
        base = super().cost_only(lam, r, q)
        return s * base - (2.0 / 3.0) * (1.0 - s) * self.roughness(r)

    def evaluate(self, lam, r, q: float) -> LikelihoodResult:
        s = self.smoothing_lambda
        res = super().evaluate(lam, r, q)
        r = np.asarray(r, dtype=float)
        p = self.num_periods
        kr = self.penalty @ r
        gradient = s * res.gradient
        curvature = s * res.curvature
        gradient[p:2 * p] -= (1.0 - s) * (4.0 / 3.0) * kr
        curvature[p:2 * p] -= (1.0 - s) * (4.0 / 3.0) * np.diag(self.penalty)
        return LikelihoodResult(
            cost=s * res.cost - (2.0 / 3.0) * (1.0 - s) * self.roughness(r),
            gradient=gradient,
            curvature=curvature,
        )
