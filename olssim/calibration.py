"""
Noise Calibration via R²
========================

For a normal linear model Y = E[Y|X] + ε with ε ~ N(0, σ²), the law of total
variance gives

    Var(Y) = Var(E[Y|X]) + E[Var(Y|X)]
    R²     = Var(E[Y|X]) / Var(Y)

so the residual standard deviation needed to hit a target R² is

    σ² = Var(E[Y|X]) × (1 - R²) / R²

Var(E[Y|X]) is evaluated on the realized sample, treating it as the
population (divide by n).
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from olssim.exceptions import InvalidInputError


def linear_predictor(design: pd.DataFrame, beta: Sequence[float]) -> NDArray:
    """
    Compute E[Y|X] = [1 | X] · β.

    Parameters
    ----------
    design : pd.DataFrame of shape (n, k)
        Covariate table. Columns are used in their stored order.
    beta : array-like of shape (k + 1,)
        Coefficients, intercept first.

    Returns
    -------
    E_y : ndarray of shape (n,)
    """
    beta = np.asarray(beta, dtype=float).ravel()
    k = design.shape[1]
    if beta.size != k + 1:
        raise InvalidInputError(
            f"beta must have length 1 + {k} = {k + 1} (intercept plus one "
            f"coefficient per column), got {beta.size}"
        )
    X = design.to_numpy(dtype=float)
    return beta[0] + X @ beta[1:]


def r2_to_sigma(y_hat: Sequence[float], r2: float) -> float:
    """
    Find the regression standard deviation that produces a given R².

    Parameters
    ----------
    y_hat : array-like of shape (n,)
        Conditional means E[Y|X] for the sample. The sample size n is the
        length of this vector.
    r2 : float
        Target R² in (0, 1).

    Returns
    -------
    sigma : float
        Residual standard deviation, sqrt(SSE / n) with
        SSE = (1 - R²) / R² × Σ (ŷᵢ - ȳ)².

    Raises
    ------
    InvalidInputError
        If ``r2`` is outside (0, 1) or ``y_hat`` is empty, non-finite or
        constant.

    Examples
    --------
    >>> r2_to_sigma([-1.0, 1.0], 0.5)
    1.0
    """
    if not 0 < r2 < 1:
        raise InvalidInputError(f"r2 must be in (0, 1), got {r2}")

    y_hat = np.asarray(y_hat, dtype=float).ravel()
    n = y_hat.size
    if n == 0 or not np.all(np.isfinite(y_hat)):
        raise InvalidInputError("y_hat must be a non-empty finite vector")
    if np.ptp(y_hat) == 0:
        raise InvalidInputError("y_hat is constant; sigma is undefined for any R²")

    ssm = np.sum((y_hat - y_hat.mean()) ** 2)
    sse = (1 - r2) / r2 * ssm
    return float(np.sqrt(sse / n))


__all__ = ["linear_predictor", "r2_to_sigma"]
