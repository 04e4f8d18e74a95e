"""
Error Processes
===============

Samplers for the non-normal and dependent error terms used by the DGP
variants:

- ``rsstd``: standardized skewed Student-t (Fernández & Steel, 1998)
- ``arma_errors``: stationary ARMA(p, q) series
- ``contiguous_groups``: cluster labels from quantile blocks of row order

All samplers take an explicit ``numpy.random.Generator``.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy.special import betaln
from statsmodels.tsa.arima_process import ArmaProcess

from olssim.exceptions import InvalidInputError


# =============================================================================
# SKEWED STUDENT-T
# =============================================================================

def _sstd_moments(nu: float, xi: float):
    """Mean and sd of the unstandardized Fernández–Steel skew-t."""
    if math.isinf(nu):
        m1 = math.sqrt(2.0 / math.pi)
    else:
        # E|T| for a unit-variance t with nu degrees of freedom
        m1 = 2.0 * math.sqrt(nu - 2.0) / (nu - 1.0) * math.exp(-betaln(0.5, nu / 2.0))
    mu = m1 * (xi - 1.0 / xi)
    sigma = math.sqrt((1.0 - m1 ** 2) * (xi ** 2 + 1.0 / xi ** 2) + 2.0 * m1 ** 2 - 1.0)
    return mu, sigma


def rsstd(
    n: int,
    mean: float = 0.0,
    sd: float = 1.0,
    nu: float = 5.0,
    xi: float = 1.5,
    rng: Optional[np.random.Generator] = None,
) -> NDArray:
    """
    Draw from the standardized skewed Student-t distribution.

    The symmetric kernel is a unit-variance t with ``nu`` degrees of freedom.
    Skewness is introduced by scaling the positive half-line by ξ and the
    negative half-line by 1/ξ, then the draw is re-centered and re-scaled so
    that it has exactly the requested mean and standard deviation.

    Parameters
    ----------
    n : int
        Number of draws.
    mean, sd : float
        Target mean and standard deviation.
    nu : float, default 5
        Degrees of freedom, > 2. ``np.inf`` gives a (skewed) normal kernel.
    xi : float, default 1.5
        Skewness: 1 is symmetric, (0, 1) left skew, > 1 right skew.
    rng : numpy.random.Generator, optional

    Returns
    -------
    eps : ndarray of shape (n,)
    """
    if not nu > 2:
        raise InvalidInputError(f"nu must be > 2 for a finite variance, got {nu}")
    if not xi > 0:
        raise InvalidInputError(f"xi must be positive, got {xi}")
    if not sd > 0:
        raise InvalidInputError(f"sd must be positive, got {sd}")
    if rng is None:
        rng = np.random.default_rng()

    weight = xi / (xi + 1.0 / xi)
    z = rng.uniform(-weight, 1.0 - weight, size=n)
    if math.isinf(nu):
        kernel = rng.standard_normal(n)
    else:
        kernel = rng.standard_t(nu, size=n) / math.sqrt(nu / (nu - 2.0))
    sign = np.sign(z)
    draws = -np.abs(kernel) / xi ** sign * sign

    mu, sigma = _sstd_moments(nu, xi)
    return mean + sd * (draws - mu) / sigma


# =============================================================================
# ARMA ERRORS
# =============================================================================

def make_arma_process(
    ar: Sequence[float] = (),
    ma: Sequence[float] = (),
) -> Tuple[ArmaProcess, int]:
    """
    Build a stationary ARMA process and its burn-in length.

    Returns
    -------
    process : statsmodels ArmaProcess
    burnin : int
        p + q + ceil(6 / log(min |AR root|)), as in R's ``arima.sim``.

    Raises
    ------
    InvalidInputError
        If the AR part is not stationary or a coefficient is not finite.
    """
    # trailing zero lags do not change the process
    ar = np.trim_zeros(np.atleast_1d(np.asarray(ar if ar is not None else [], dtype=float)), "b")
    ma = np.trim_zeros(np.atleast_1d(np.asarray(ma if ma is not None else [], dtype=float)), "b")
    if not (np.all(np.isfinite(ar)) and np.all(np.isfinite(ma))):
        raise InvalidInputError("ARMA coefficients must be finite")

    process = ArmaProcess.from_coeffs(ar, ma)
    if not process.isstationary:
        raise InvalidInputError(f"AR coefficients {ar.tolist()} are not stationary")

    burnin = ar.size + ma.size
    if ar.size > 0:
        min_root = np.min(np.abs(process.arroots))
        burnin += int(math.ceil(6.0 / math.log(min_root)))
    return process, burnin


def arma_errors(
    n: int,
    ar: Sequence[float] = (),
    ma: Sequence[float] = (),
    sd: float = 1.0,
    rng: Optional[np.random.Generator] = None,
) -> NDArray:
    """
    Simulate n observations of a stationary ARMA(p, q) process.

        ε_t = Σ φ_i ε_{t-i} + u_t + Σ θ_j u_{t-j},    u_t ~ N(0, sd²)

    A burn-in of p + q + ceil(6 / log(min |AR root|)) observations is
    discarded so the returned series starts close to its stationary law.

    Parameters
    ----------
    n : int
        Series length. Observations are ordered by row index.
    ar, ma : sequence of float
        AR coefficients φ and MA coefficients θ (without the leading 1).
    sd : float
        Innovation standard deviation.
    rng : numpy.random.Generator, optional

    Raises
    ------
    InvalidInputError
        If the AR part is not stationary.
    """
    if not sd > 0:
        raise InvalidInputError(f"sd must be positive, got {sd}")
    process, burnin = make_arma_process(ar, ma)
    if rng is None:
        rng = np.random.default_rng()
    return process.generate_sample(
        nsample=n, scale=sd, distrvs=rng.standard_normal, burnin=burnin
    )


# =============================================================================
# CLUSTER LABELS
# =============================================================================

def contiguous_groups(n: int, groups: int) -> NDArray:
    """
    Split row positions 0..n-1 into ``groups`` contiguous blocks of
    (nearly) equal size, using quantiles of the row order.

    Returns
    -------
    labels : ndarray of int of shape (n,)
        Block label in 0..groups-1 for each row.
    """
    if int(groups) != groups or groups < 1:
        raise InvalidInputError(f"groups must be a positive integer, got {groups}")
    if groups > n:
        raise InvalidInputError(f"groups ({groups}) exceeds the number of rows ({n})")
    if groups == 1:
        return np.zeros(n, dtype=int)
    labels = pd.qcut(np.arange(1, n + 1), q=int(groups), labels=False)
    return np.asarray(labels, dtype=int)


__all__ = ["rsstd", "make_arma_process", "arma_errors", "contiguous_groups"]
