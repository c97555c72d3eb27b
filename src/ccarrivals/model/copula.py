"""Normal copula helpers shared by the NORTA rate and count models."""

import numpy as np
from scipy.stats import norm

# Keeps inverse CDFs finite when a normal coordinate lands far in a tail
_U_EPS = 1e-15


def correlation_factor(correlation, size: int) -> np.ndarray:
    """Validate a correlation matrix and return its lower Cholesky factor.

    Args:
        correlation: Square matrix of dimension ``size``.
        size: Expected dimension.

    Returns:
        Lower-triangular L with L @ L.T == correlation.

    Raises:
        ValueError: If the matrix is not a symmetric positive-definite
            correlation matrix of the right dimension.
    """
    sigma = np.asarray(correlation, dtype=float)
    if sigma.ndim != 2 or sigma.shape[0] != sigma.shape[1]:
        raise ValueError(f"Correlation matrix must be square, got shape {sigma.shape}")
    if sigma.shape[0] != size:
        raise ValueError(f"Correlation matrix must be {size}x{size}, got {sigma.shape[0]}x{sigma.shape[1]}")
    if not np.all(np.isfinite(sigma)):
        raise ValueError("Correlation matrix contains non-finite entries")
    if not np.allclose(sigma, sigma.T, atol=1e-10):
        raise ValueError("Correlation matrix must be symmetric")
    if not np.allclose(np.diag(sigma), 1.0, atol=1e-8):
        raise ValueError("Correlation matrix must have a unit diagonal")
    if np.any(np.abs(sigma) > 1.0 + 1e-12):
        raise ValueError("Correlation coefficients must lie in [-1, 1]")
    try:
        return np.linalg.cholesky(sigma)
    except np.linalg.LinAlgError as exc:
        raise ValueError("Correlation matrix is not positive definite") from exc


def draw_uniforms(factor: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """Correlated uniforms: normal vector with covariance LL^T through Phi."""
    z = factor @ rng.standard_normal(factor.shape[0])
    return np.clip(norm.cdf(z), _U_EPS, 1.0 - _U_EPS)
