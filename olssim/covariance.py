"""
Covariance Construction and Multivariate Normal Sampling
========================================================

Covariates for the fixed-X and random-X designs are drawn from

    X ~ N(μ, Σ),    Σ = diag(σ) · R · diag(σ)

where σ is a vector of standard deviations and R a correlation matrix.

With ``exact_moments=True`` the draw is corrected after sampling so that the
realized sample mean equals μ and the realized sample covariance (ddof=1)
equals Σ exactly. This removes sampling noise in X from fixed-design
experiments, so that all variation across trials comes from the errors.
"""

from __future__ import annotations

import warnings
from typing import Optional, Sequence

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from olssim.exceptions import DistributionError, InvalidInputError


# Relative tolerance on negative eigenvalues when checking PSD
PSD_TOL: float = 1e-6


# =============================================================================
# COVARIANCE CONSTRUCTION
# =============================================================================

def make_toeplitz_corr(k: int, rho: float) -> NDArray:
    """
    Construct an AR(1) correlation matrix R with entries R_{ij} = ρ^{|i-j|}.

    Parameters
    ----------
    k : int
        Dimension of the matrix.
    rho : float
        Correlation decay parameter in (-1, 1).

    Returns
    -------
    R : ndarray of shape (k, k)
        Symmetric positive-definite Toeplitz correlation matrix.
    """
    if k < 1:
        raise InvalidInputError(f"k must be a positive integer, got {k}")
    if not -1 < rho < 1:
        raise InvalidInputError(f"rho must be in (-1, 1), got {rho}")
    idx = np.arange(k)
    return rho ** np.abs(idx[:, None] - idx[None, :])


def sdcor_to_cov(
    sigma: Sequence[float],
    correlation: Optional[NDArray] = None,
) -> NDArray:
    """
    Combine standard deviations and a correlation matrix into a covariance.

        Σ = diag(σ) · R · diag(σ)

    Parameters
    ----------
    sigma : array-like of shape (k,)
        Non-negative standard deviations.
    correlation : ndarray of shape (k, k), optional
        Correlation matrix R. Defaults to the identity.

    Returns
    -------
    Sigma : ndarray of shape (k, k)
        Covariance matrix with diagonal σ².

    Raises
    ------
    InvalidInputError
        If ``sigma`` has negative or non-finite entries, or ``correlation``
        is not a symmetric unit-diagonal matrix of matching dimension.
    """
    sigma = np.asarray(sigma, dtype=float)
    if sigma.ndim != 1 or sigma.size == 0:
        raise InvalidInputError("sigma must be a non-empty 1-D vector")
    if not np.all(np.isfinite(sigma)) or np.any(sigma < 0):
        raise InvalidInputError(f"sigma must be finite and non-negative, got {sigma}")

    k = sigma.size
    if correlation is None:
        R = np.eye(k)
    else:
        R = np.asarray(correlation, dtype=float)
        if R.ndim != 2 or R.shape[0] != R.shape[1]:
            raise InvalidInputError(f"correlation must be square, got shape {R.shape}")
        if R.shape[0] != k:
            raise InvalidInputError(
                f"sigma has length {k} but correlation has dimension {R.shape[0]}"
            )
        if not np.allclose(R, R.T):
            raise InvalidInputError("correlation must be symmetric")
        if not np.allclose(np.diag(R), 1.0):
            raise InvalidInputError("correlation must have a unit diagonal")

    D = np.diag(sigma)
    return D @ R @ D


def _psd_factor(Sigma: NDArray) -> NDArray:
    """Return F with F @ F.T == Sigma, or raise DistributionError."""
    try:
        ev, vecs = np.linalg.eigh(Sigma)
    except np.linalg.LinAlgError as e:
        raise DistributionError(f"covariance could not be decomposed: {e}") from e

    scale = max(np.max(np.abs(ev)), 1.0)
    if np.any(ev < -PSD_TOL * scale):
        raise DistributionError(
            f"covariance is not positive semi-definite (min eigenvalue {ev.min():.3g})"
        )
    if np.any(ev < PSD_TOL * scale):
        warnings.warn("Covariance is singular; some covariates are collinear.")

    return vecs * np.sqrt(np.clip(ev, 0.0, None))


# =============================================================================
# MULTIVARIATE NORMAL SAMPLING
# =============================================================================

def mvnorm_sample(
    n: int,
    mu: Sequence[float],
    sigma: Optional[Sequence[float]] = None,
    correlation: Optional[NDArray] = None,
    exact_moments: bool = True,
    rng: Optional[np.random.Generator] = None,
    columns: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """
    Draw an n × k covariate table from a multivariate normal distribution.

    Parameters
    ----------
    n : int
        Number of rows.
    mu : array-like of shape (k,)
        Target mean vector.
    sigma : array-like of shape (k,), optional
        Target standard deviations. Defaults to ones.
    correlation : ndarray of shape (k, k), optional
        Target correlation matrix. Defaults to the identity.
    exact_moments : bool, default True
        If True, recenter and rescale the draw so its sample mean and sample
        covariance equal the targets exactly. Requires n ≥ k + 1.
    rng : numpy.random.Generator, optional
        Random source. A fresh unseeded generator is used if None.
    columns : sequence of str, optional
        Column names. Defaults to ``x1, ..., xk``.

    Returns
    -------
    X : pd.DataFrame of shape (n, k)

    Raises
    ------
    InvalidInputError
        On dimension mismatches or a non-positive ``n``.
    DistributionError
        If the implied covariance is not positive semi-definite.

    Notes
    -----
    The exact-moment correction centers the standard normal draw Z, rotates
    it onto the right singular vectors of the centered draw (making the
    columns orthogonal) and rescales each column to unit sample variance.
    The corrected draw then has sample covariance I, and μ + Z F' has sample
    covariance F F' = Σ.
    """
    mu = np.asarray(mu, dtype=float)
    if mu.ndim != 1 or mu.size == 0:
        raise InvalidInputError("mu must be a non-empty 1-D vector")
    k = mu.size

    if sigma is None:
        sigma = np.ones(k)
    Sigma = sdcor_to_cov(sigma, correlation)
    if Sigma.shape[0] != k:
        raise InvalidInputError(
            f"mu has length {k} but sigma has length {Sigma.shape[0]}"
        )

    if int(n) != n or n < 1:
        raise InvalidInputError(f"n must be a positive integer, got {n}")
    n = int(n)
    if exact_moments and n < k + 1:
        raise InvalidInputError(
            f"exact_moments requires n >= k + 1 = {k + 1}, got n = {n}"
        )

    if columns is None:
        columns = [f"x{j + 1}" for j in range(k)]
    columns = list(columns)
    if len(columns) != k or len(set(columns)) != k:
        raise InvalidInputError(f"need {k} distinct column names, got {columns}")

    F = _psd_factor(Sigma)

    if rng is None:
        rng = np.random.default_rng()
    Z = rng.standard_normal((n, k))

    if exact_moments:
        Z = Z - Z.mean(axis=0)
        _, _, vt = np.linalg.svd(Z, full_matrices=False)
        Z = Z @ vt.T
        Z = Z / Z.std(axis=0, ddof=1)

    X = mu + Z @ F.T
    return pd.DataFrame(X, columns=columns)


__all__ = [
    "make_toeplitz_corr",
    "sdcor_to_cov",
    "mvnorm_sample",
    "PSD_TOL",
]
