"""
OLS Estimator
=============

Fits ordinary least squares of the simulated response on an intercept plus
the covariates named by the dataset's ``RegressionSpec`` and keeps only the
per-term estimates and standard errors.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import statsmodels.api as sm

from olssim.dgp import SimulatedDataset
from olssim.exceptions import InvalidInputError, SingularDesignError


INTERCEPT: str = "Intercept"     # Term name of the intercept

COV_TYPES: Tuple[str, ...] = ("nonrobust", "HC0", "HC1", "HC2", "HC3", "cluster")


# =============================================================================
# Result Container
# =============================================================================

@dataclass
class FitResult:
    """
    Per-term OLS results for one simulated dataset.

    Attributes
    ----------
    estimates : dict
        Term name → point estimate. The intercept is ``"Intercept"``.
    std_errors : dict
        Term name → standard error.
    nobs : int
        Number of observations used.
    rsquared : float
        In-sample R².
    cov_type : str
        Covariance estimator used for the standard errors.
    """
    estimates: Dict[str, float]
    std_errors: Dict[str, float]
    nobs: int
    rsquared: float
    cov_type: str = "nonrobust"

    @property
    def terms(self) -> List[str]:
        """Term names in model order."""
        return list(self.estimates)

    def to_records(self) -> List[Dict[str, Any]]:
        """One dict per term with ``term``, ``estimate``, ``std_error``, ``nobs``."""
        return [
            {
                "term": term,
                "estimate": self.estimates[term],
                "std_error": self.std_errors[term],
                "nobs": self.nobs,
            }
            for term in self.estimates
        ]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.to_records())

    def __repr__(self) -> str:
        lines = [f"OLS fit (n = {self.nobs}, R² = {self.rsquared:.3f}, {self.cov_type})"]
        for term in self.estimates:
            lines.append(
                f"  {term:<12} {self.estimates[term]: .4f}  (SE = {self.std_errors[term]:.4f})"
            )
        return "\n".join(lines)


# =============================================================================
# Estimator
# =============================================================================

class OLSEstimator:
    """
    Ordinary least squares with an intercept.

    Parameters
    ----------
    cov_type : str, default 'nonrobust'
        Standard error type: 'nonrobust' (classical), 'HC0'-'HC3'
        (heteroskedasticity-robust) or 'cluster' (uses the dataset's
        group labels).
    """

    def __init__(self, cov_type: str = "nonrobust"):
        if cov_type not in COV_TYPES:
            raise InvalidInputError(
                f"Unknown cov_type: '{cov_type}'. Choose from: {', '.join(COV_TYPES)}"
            )
        self.cov_type = cov_type

    def fit(
        self,
        dataset: SimulatedDataset,
        covariates: Optional[Sequence[str]] = None,
    ) -> FitResult:
        """
        Fit OLS of the response on an intercept plus ``covariates``.

        Parameters
        ----------
        dataset : SimulatedDataset
            Output of a DGP variant.
        covariates : sequence of str, optional
            Covariates to regress on, in order. Defaults to
            ``dataset.spec.covariates``.

        Returns
        -------
        FitResult

        Raises
        ------
        SingularDesignError
            If [1 | X] is rank-deficient or leaves no residual degrees of
            freedom.
        """
        if covariates is None:
            covariates = dataset.spec.covariates
        covariates = list(covariates)
        missing = [c for c in covariates if c not in dataset.data.columns]
        if missing:
            raise InvalidInputError(f"covariates not in dataset: {missing}")

        y = dataset.data[dataset.spec.response].to_numpy(dtype=float)
        n = y.size
        X = np.column_stack(
            [np.ones(n)] + [dataset.data[c].to_numpy(dtype=float) for c in covariates]
        )
        p = X.shape[1]

        if n <= p:
            raise SingularDesignError(
                f"{n} observations for {p} parameters leaves no residual degrees of freedom"
            )
        rank = np.linalg.matrix_rank(X)
        if rank < p:
            raise SingularDesignError(
                f"design matrix has rank {rank} < {p} columns "
                f"(constant or collinear covariates among {covariates})"
            )

        fit_kwargs: Dict[str, Any] = {}
        if self.cov_type == "cluster":
            if dataset.groups is None:
                raise InvalidInputError("cov_type='cluster' requires group labels")
            fit_kwargs = {"cov_type": "cluster", "cov_kwds": {"groups": dataset.groups}}
        elif self.cov_type != "nonrobust":
            fit_kwargs = {"cov_type": self.cov_type}

        results = sm.OLS(y, X).fit(**fit_kwargs)

        terms = [INTERCEPT] + covariates
        params = np.asarray(results.params)
        bse = np.asarray(results.bse)
        return FitResult(
            estimates={t: float(v) for t, v in zip(terms, params)},
            std_errors={t: float(v) for t, v in zip(terms, bse)},
            nobs=int(n),
            rsquared=float(results.rsquared),
            cov_type=self.cov_type,
        )

    def __repr__(self) -> str:
        return f"OLSEstimator(cov_type='{self.cov_type}')"


__all__ = ["OLSEstimator", "FitResult", "INTERCEPT", "COV_TYPES"]
