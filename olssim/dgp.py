"""
Data Generating Processes for OLS Stress Tests
==============================================

Each DGP variant turns a covariate table X (the design) into a synthetic
response and reports which covariates the estimating equation uses.

Linear Predictor
----------------
All variants share the conditional mean

    E[Y|X] = [1 | X] · β,    β = (β₀, β₁, ..., β_k)

where β has one coefficient per column of the *full* design, in column
order, including any columns that are later omitted from the regression.

Variants
--------
==========================  =============================================
NormalDGP                   ε ~ N(0, σ²), σ scalar or per-row
RandomXDGP                  fresh X ~ N(μ, Σ) every trial, normal errors
StudentTDGP                 ε = σ · t(df)
SkewTDGP                    standardized skew-t with sd σ
ClusteredDGP                ε = ν_g + u_i, contiguous groups
ARMADGP                     ε ~ stationary ARMA(p, q)
MeasurementErrorDGP         X observed with additive noise
OutcomeSelectionDGP         keep rows with y inside quantile bounds
PredictorSelectionDGP       keep rows with every x inside quantile bounds
==========================  =============================================

Omitted Variables
-----------------
``omitted`` names columns that stay in the linear predictor but are left
out of the estimating equation (omitted variable bias). The default ``()``
omits nothing. Pass ``LAST_COLUMN`` to omit the last column of the design.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from typing import Any, ClassVar, Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from olssim.calibration import linear_predictor
from olssim.covariance import mvnorm_sample
from olssim.exceptions import EmptySampleError, InvalidInputError
from olssim.noise import arma_errors, contiguous_groups, make_arma_process, rsstd

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

RESPONSE: str = "y"              # Name of the generated response column
LAST_COLUMN: str = "<last>"      # Sentinel: omit the last design column

ColumnValues = Union[float, Sequence[float], Mapping[str, float]]
Omitted = Union[str, Sequence[str]]


# =============================================================================
# DATASET CONTAINERS
# =============================================================================

@dataclass(frozen=True)
class RegressionSpec:
    """
    Declarative estimating equation: response ~ 1 + covariates.

    Attributes
    ----------
    covariates : tuple of str
        Ordered covariate names (the intercept is implicit).
    response : str
        Response column name.
    """
    covariates: Tuple[str, ...]
    response: str = RESPONSE

    def __post_init__(self) -> None:
        if len(set(self.covariates)) != len(self.covariates):
            raise InvalidInputError(f"duplicate covariates in {self.covariates}")
        if self.response in self.covariates:
            raise InvalidInputError(f"response '{self.response}' listed as a covariate")


@dataclass
class SimulatedDataset:
    """
    One synthetic dataset: covariates plus response, ready for estimation.

    The frame keeps the row index of the design it was generated from, so
    rows removed by a selection variant can be traced back.

    Attributes
    ----------
    data : pd.DataFrame
        Covariate columns plus the response column.
    spec : RegressionSpec
        Covariates to regress on and the response name.
    groups : ndarray, optional
        Cluster label per row (clustered designs only).
    """
    data: pd.DataFrame
    spec: RegressionSpec
    groups: Optional[NDArray] = None

    @property
    def nobs(self) -> int:
        return len(self.data)

    @property
    def y(self) -> NDArray:
        return self.data[self.spec.response].to_numpy()


# =============================================================================
# VALIDATION HELPERS
# =============================================================================

def _as_design(design: Any) -> pd.DataFrame:
    if isinstance(design, pd.DataFrame):
        return design
    X = np.asarray(design, dtype=float)
    if X.ndim == 1:
        X = X.reshape(-1, 1)
    if X.ndim != 2:
        raise InvalidInputError(f"design must be 2-D, got shape {X.shape}")
    return pd.DataFrame(X, columns=[f"x{j + 1}" for j in range(X.shape[1])])


def _check_positive(name: str, value: Any) -> None:
    arr = np.asarray(value, dtype=float)
    if arr.size == 0 or not np.all(np.isfinite(arr)) or np.any(arr <= 0):
        raise InvalidInputError(f"{name} must be positive, got {value}")


def _per_column(
    name: str,
    value: ColumnValues,
    columns: Sequence[str],
    default: float,
) -> Dict[str, float]:
    """
    Expand a scalar, a per-column sequence or a {column: value} mapping to
    one value per design column. Mapping keys are matched by name.
    """
    if isinstance(value, Mapping):
        unknown = set(value) - set(columns)
        if unknown:
            raise InvalidInputError(f"{name} names unknown columns: {sorted(unknown)}")
        return {c: float(value.get(c, default)) for c in columns}
    if np.ndim(value) == 0:
        return {c: float(value) for c in columns}
    values = list(value)
    if len(values) != len(columns):
        raise InvalidInputError(
            f"{name} has {len(values)} entries for {len(columns)} columns"
        )
    return {c: float(v) for c, v in zip(columns, values)}


def resolve_omitted(columns: Sequence[str], omitted: Optional[Omitted]) -> Tuple[str, ...]:
    """Return the omitted column names, expanding the ``LAST_COLUMN`` sentinel."""
    if omitted is None:
        return ()
    if isinstance(omitted, str):
        omitted = (columns[-1],) if omitted == LAST_COLUMN else (omitted,)
    omitted = tuple(omitted)
    unknown = [c for c in omitted if c not in columns]
    if unknown:
        raise InvalidInputError(f"omitted variables not in design: {unknown}")
    return omitted


# =============================================================================
# BASE CLASS
# =============================================================================

class LinearDGP:
    """
    Shared behaviour of the DGP variants.

    Subclasses are dataclasses with a ``beta`` field, their noise fields and
    an ``omitted`` field, and implement ``simulate(design, rng)``.
    """

    name: ClassVar[str] = "linear"
    fixed_design: ClassVar[bool] = True

    def _check_beta(self) -> None:
        self.beta = np.asarray(self.beta, dtype=float).ravel()
        if self.beta.size < 1 or not np.all(np.isfinite(self.beta)):
            raise InvalidInputError(f"beta must be a finite non-empty vector, got {self.beta}")

    @property
    def params(self) -> Dict[str, Any]:
        """Configuration fields, tagged with the variant name."""
        out: Dict[str, Any] = {"dgp": self.name}
        for f in fields(self):
            out[f.name] = getattr(self, f.name)
        return out

    def _prepare(self, design: Any) -> Tuple[pd.DataFrame, RegressionSpec]:
        """Private copy of the design plus the estimating equation."""
        design = _as_design(design)
        columns = [str(c) for c in design.columns]
        if RESPONSE in columns:
            raise InvalidInputError(f"design already has a '{RESPONSE}' column")
        if len(design) == 0:
            raise InvalidInputError("design has no rows")
        if not all(pd.api.types.is_numeric_dtype(t) for t in design.dtypes):
            raise InvalidInputError("design columns must be numeric")
        if self.beta.size != len(columns) + 1:
            raise InvalidInputError(
                f"beta has length {self.beta.size}, expected 1 + {len(columns)} "
                f"columns = {len(columns) + 1}"
            )

        omitted = resolve_omitted(columns, self.omitted)
        covariates = tuple(c for c in columns if c not in omitted)
        data = design.copy()
        data.columns = columns
        return data, RegressionSpec(covariates=covariates)

    def simulate(self, design: pd.DataFrame, rng: np.random.Generator) -> SimulatedDataset:
        raise NotImplementedError


# =============================================================================
# NORMAL ERRORS
# =============================================================================

@dataclass
class NormalDGP(LinearDGP):
    """
    Classical linear model with fixed X: Y = [1 | X]β + ε, ε ~ N(0, σ²).

    Parameters
    ----------
    beta : array-like
        Coefficients, intercept first.
    sigma : float or array-like of shape (n,)
        Error standard deviation. A per-row vector gives a heteroskedastic
        design; its length must match the design rows.
    omitted : str or sequence of str
        Columns left out of the estimating equation.
    """
    beta: Sequence[float]
    sigma: Union[float, Sequence[float]] = 1.0
    omitted: Omitted = ()

    name: ClassVar[str] = "normal"

    def __post_init__(self) -> None:
        self._check_beta()
        _check_positive("sigma", self.sigma)

    def simulate(self, design: pd.DataFrame, rng: np.random.Generator) -> SimulatedDataset:
        data, spec = self._prepare(design)
        n = len(data)
        sigma = np.asarray(self.sigma, dtype=float)
        if sigma.ndim > 0 and sigma.size != n:
            raise InvalidInputError(f"sigma has {sigma.size} entries for {n} rows")

        E_y = linear_predictor(data, self.beta)
        eps = rng.normal(0.0, sigma, size=n)
        data[RESPONSE] = E_y + eps
        return SimulatedDataset(data, spec)


@dataclass
class RandomXDGP(LinearDGP):
    """
    Linear model with random covariates, redrawn every trial.

    X ~ N(μ, diag(sd) R diag(sd)) is drawn with ``mvnorm_sample`` (exact
    moments by default), independently of the errors ε ~ N(0, σ²).

    Parameters
    ----------
    beta : array-like of shape (k + 1,)
    n : int
        Rows per draw.
    mu : array-like of shape (k,)
    sd : array-like of shape (k,), optional
    correlation : ndarray of shape (k, k), optional
    sigma : float
    exact_moments : bool, default True
    omitted : str or sequence of str
    """
    beta: Sequence[float]
    n: int = 100
    mu: Optional[Sequence[float]] = None
    sd: Optional[Sequence[float]] = None
    correlation: Optional[NDArray] = None
    sigma: float = 1.0
    exact_moments: bool = True
    omitted: Omitted = ()

    name: ClassVar[str] = "random_x"
    fixed_design: ClassVar[bool] = False

    def __post_init__(self) -> None:
        self._check_beta()
        _check_positive("sigma", self.sigma)
        if np.ndim(self.sigma) != 0:
            raise InvalidInputError("sigma must be a scalar for random designs")
        if int(self.n) != self.n or self.n < 1:
            raise InvalidInputError(f"n must be a positive integer, got {self.n}")
        if self.mu is None:
            self.mu = np.zeros(self.beta.size - 1)
        self.mu = np.asarray(self.mu, dtype=float)
        if self.mu.size + 1 != self.beta.size:
            raise InvalidInputError(
                f"beta has length {self.beta.size} but mu implies "
                f"{self.mu.size} covariates"
            )

    def make_design(self, rng: np.random.Generator) -> pd.DataFrame:
        """Draw a fresh covariate table for one trial."""
        return mvnorm_sample(
            self.n,
            self.mu,
            sigma=self.sd,
            correlation=self.correlation,
            exact_moments=self.exact_moments,
            rng=rng,
        )

    def simulate(self, design: pd.DataFrame, rng: np.random.Generator) -> SimulatedDataset:
        data, spec = self._prepare(design)
        E_y = linear_predictor(data, self.beta)
        eps = rng.normal(0.0, self.sigma, size=len(data))
        data[RESPONSE] = E_y + eps
        return SimulatedDataset(data, spec)


# =============================================================================
# HEAVY-TAILED AND SKEWED ERRORS
# =============================================================================

@dataclass
class StudentTDGP(LinearDGP):
    """
    Heavy-tailed errors ε = σ · T, T ~ t(df).

    ``sigma`` is a scale, not the error sd: Var(ε) = σ² df / (df - 2).
    """
    beta: Sequence[float]
    sigma: float = 1.0
    df: float = 3.0
    omitted: Omitted = ()

    name: ClassVar[str] = "student_t"

    def __post_init__(self) -> None:
        self._check_beta()
        _check_positive("sigma", self.sigma)
        _check_positive("df", self.df)

    def simulate(self, design: pd.DataFrame, rng: np.random.Generator) -> SimulatedDataset:
        data, spec = self._prepare(design)
        E_y = linear_predictor(data, self.beta)
        eps = rng.standard_t(self.df, size=len(data)) * self.sigma
        data[RESPONSE] = E_y + eps
        return SimulatedDataset(data, spec)


@dataclass
class SkewTDGP(LinearDGP):
    """
    Skewed, heavy-tailed errors: standardized skew-t with sd σ.

    Parameters
    ----------
    beta : array-like
    sigma : float
        Error standard deviation.
    df : float, default 5
        Degrees of freedom (> 2). ``np.inf`` gives a skew-normal kernel.
    skew : float, default 1.5
        1 is symmetric, (0, 1) left skew, > 1 right skew.
    omitted : str or sequence of str
    """
    beta: Sequence[float]
    sigma: float = 1.0
    df: float = 5.0
    skew: float = 1.5
    omitted: Omitted = ()

    name: ClassVar[str] = "skew_t"

    def __post_init__(self) -> None:
        self._check_beta()
        _check_positive("sigma", self.sigma)
        if not self.df > 2:
            raise InvalidInputError(f"df must be > 2, got {self.df}")
        _check_positive("skew", self.skew)

    def simulate(self, design: pd.DataFrame, rng: np.random.Generator) -> SimulatedDataset:
        data, spec = self._prepare(design)
        E_y = linear_predictor(data, self.beta)
        eps = rsstd(len(data), mean=0.0, sd=self.sigma, nu=self.df, xi=self.skew, rng=rng)
        data[RESPONSE] = E_y + eps
        return SimulatedDataset(data, spec)


# =============================================================================
# CLUSTERED ERRORS
# =============================================================================

@dataclass
class ClusteredDGP(LinearDGP):
    """
    Within-group correlated errors.

    Rows are split into ``groups`` contiguous blocks of the row order. Each
    block g gets a shared error ν_g ~ N(0, σ_g²) and each row an individual
    error u_i ~ N(0, σ_y²):

        y_i = E[y_i|X] + ν_{g(i)} + u_i

    so Corr(ε_i, ε_j) = σ_g² / (σ_g² + σ_y²) within a block and 0 across.
    Individual errors are drawn before group errors; with ``sigma_g=0`` the
    response equals that of ``NormalDGP(beta, sigma=sigma_y)`` for the same
    generator state.
    """
    beta: Sequence[float]
    groups: int = 10
    sigma_y: float = 1.0
    sigma_g: float = 1.0
    omitted: Omitted = ()

    name: ClassVar[str] = "clustered"

    def __post_init__(self) -> None:
        self._check_beta()
        _check_positive("sigma_y", self.sigma_y)
        if not (np.isfinite(self.sigma_g) and self.sigma_g >= 0):
            raise InvalidInputError(f"sigma_g must be non-negative, got {self.sigma_g}")
        if int(self.groups) != self.groups or self.groups < 1:
            raise InvalidInputError(f"groups must be a positive integer, got {self.groups}")

    def simulate(self, design: pd.DataFrame, rng: np.random.Generator) -> SimulatedDataset:
        data, spec = self._prepare(design)
        n = len(data)
        g = contiguous_groups(n, self.groups)

        E_y = linear_predictor(data, self.beta)
        eps = rng.normal(0.0, self.sigma_y, size=n)
        nu = rng.normal(0.0, self.sigma_g, size=int(self.groups))
        data[RESPONSE] = E_y + nu[g] + eps
        return SimulatedDataset(data, spec, groups=g)


# =============================================================================
# SERIALLY CORRELATED ERRORS
# =============================================================================

@dataclass
class ARMADGP(LinearDGP):
    """
    Serially correlated errors from a stationary ARMA(p, q) process.

    Errors are ordered by row position. ``sigma_y`` is the innovation sd.
    """
    beta: Sequence[float]
    sigma_y: float = 1.0
    ar: Sequence[float] = ()
    ma: Sequence[float] = ()
    omitted: Omitted = ()

    name: ClassVar[str] = "arma"

    def __post_init__(self) -> None:
        self._check_beta()
        _check_positive("sigma_y", self.sigma_y)
        make_arma_process(self.ar, self.ma)

    def simulate(self, design: pd.DataFrame, rng: np.random.Generator) -> SimulatedDataset:
        data, spec = self._prepare(design)
        E_y = linear_predictor(data, self.beta)
        eps = arma_errors(len(data), ar=self.ar, ma=self.ma, sd=self.sigma_y, rng=rng)
        data[RESPONSE] = E_y + eps
        return SimulatedDataset(data, spec)


# =============================================================================
# MEASUREMENT ERROR
# =============================================================================

@dataclass
class MeasurementErrorDGP(LinearDGP):
    """
    Covariates observed with classical additive measurement error.

    The response is generated from the true covariates. Afterwards each
    column i is contaminated with N(0, δᵢ²) noise, where

        ρᵢ = δᵢ² / (δᵢ² + Var(Xᵢ))   ⇔   δᵢ = sqrt(ρᵢ / (1 - ρᵢ) · Var(Xᵢ))

    is the share of the observed variance due to noise. Var(Xᵢ) is the
    sample variance of the uncontaminated column, computed for all columns
    before any column is modified. The OLS slope on a single contaminated
    covariate is attenuated by the factor (1 - ρᵢ).

    Parameters
    ----------
    beta : array-like
    sigma_y : float
        Regression error sd.
    rho : float, sequence or mapping
        Noise share per column in [0, 1): a scalar for every column, one
        value per column in design order, or {column: rho} (unlisted
        columns get 0).
    omitted : str or sequence of str
    """
    beta: Sequence[float]
    sigma_y: float = 1.0
    rho: ColumnValues = 0.0
    omitted: Omitted = ()

    name: ClassVar[str] = "measurement_error"

    def __post_init__(self) -> None:
        self._check_beta()
        _check_positive("sigma_y", self.sigma_y)
        values = self.rho.values() if isinstance(self.rho, Mapping) else np.ravel(self.rho)
        for r in values:
            if not 0 <= r < 1:
                raise InvalidInputError(f"rho must be in [0, 1), got {r}")

    def simulate(self, design: pd.DataFrame, rng: np.random.Generator) -> SimulatedDataset:
        data, spec = self._prepare(design)
        n = len(data)
        columns = list(data.columns)
        rho = _per_column("rho", self.rho, columns, default=0.0)

        # response from the true covariates
        E_y = linear_predictor(data, self.beta)
        y = E_y + rng.normal(0.0, self.sigma_y, size=n)

        variances = {c: float(np.var(data[c].to_numpy(), ddof=1)) if n > 1 else 0.0
                     for c in columns}
        for c in columns:
            if rho[c] == 0:
                continue
            delta = np.sqrt(rho[c] / (1 - rho[c]) * variances[c])
            data[c] = data[c] + rng.normal(0.0, delta, size=n)

        data[RESPONSE] = y
        return SimulatedDataset(data, spec)


# =============================================================================
# SAMPLE SELECTION
# =============================================================================

def _check_bounds(lb: Any, ub: Any) -> None:
    lbs = list(lb.values()) if isinstance(lb, Mapping) else list(np.ravel(lb))
    ubs = list(ub.values()) if isinstance(ub, Mapping) else list(np.ravel(ub))
    for v in lbs + ubs:
        if not 0 <= v <= 1:
            raise InvalidInputError(f"selection bounds must be in [0, 1], got {v}")


@dataclass
class OutcomeSelectionDGP(LinearDGP):
    """
    Selection on the outcome (truncation of y).

    Normal errors as in ``NormalDGP``; only rows with

        quantile(y, lb) ≤ y ≤ quantile(y, ub)

    are kept, with quantiles taken on the generated y. ``lb=0, ub=1`` keeps
    every row.
    """
    beta: Sequence[float]
    sigma_y: float = 1.0
    lb: float = 0.0
    ub: float = 1.0
    omitted: Omitted = ()

    name: ClassVar[str] = "outcome_selection"

    def __post_init__(self) -> None:
        self._check_beta()
        _check_positive("sigma_y", self.sigma_y)
        if any(isinstance(b, Mapping) or np.ndim(b) != 0 for b in (self.lb, self.ub)):
            raise InvalidInputError("outcome selection bounds must be scalars")
        _check_bounds(self.lb, self.ub)
        if self.lb > self.ub:
            raise InvalidInputError(f"lb ({self.lb}) exceeds ub ({self.ub})")

    def simulate(self, design: pd.DataFrame, rng: np.random.Generator) -> SimulatedDataset:
        data, spec = self._prepare(design)
        n = len(data)
        E_y = linear_predictor(data, self.beta)
        y = E_y + rng.normal(0.0, self.sigma_y, size=n)

        lo, hi = np.quantile(y, [self.lb, self.ub])
        keep = (y >= lo) & (y <= hi)
        if not keep.any():
            raise EmptySampleError(
                f"outcome selection [{self.lb}, {self.ub}] removed all {n} rows"
            )

        data[RESPONSE] = y
        data = data.loc[keep]
        logger.debug("outcome selection kept %d of %d rows", len(data), n)
        return SimulatedDataset(data, spec)


@dataclass
class PredictorSelectionDGP(LinearDGP):
    """
    Selection on the predictors (truncation of X).

    For every design column the bounds [quantile(x, lbᵢ), quantile(x, ubᵢ)]
    are computed on the original, unfiltered column. A row is kept when
    all columns are inside their bounds at once; the response is then
    generated for the kept rows only. The kept row set does not depend on
    the column order.

    Parameters
    ----------
    beta : array-like
    sigma_y : float
    lb, ub : float, sequence or mapping
        Quantile bounds per column: a scalar for every column, one value
        per column in design order, or {column: bound} (unlisted columns
        get 0 and 1).
    omitted : str or sequence of str
    """
    beta: Sequence[float]
    sigma_y: float = 1.0
    lb: ColumnValues = 0.0
    ub: ColumnValues = 1.0
    omitted: Omitted = ()

    name: ClassVar[str] = "predictor_selection"

    def __post_init__(self) -> None:
        self._check_beta()
        _check_positive("sigma_y", self.sigma_y)
        _check_bounds(self.lb, self.ub)

    def selection_mask(self, design: pd.DataFrame) -> NDArray:
        """Boolean mask of the rows that survive the simultaneous filter."""
        design = _as_design(design)
        columns = list(design.columns)
        lbs = _per_column("lb", self.lb, columns, default=0.0)
        ubs = _per_column("ub", self.ub, columns, default=1.0)

        bounds = {}
        for c in columns:
            if lbs[c] > ubs[c]:
                raise InvalidInputError(f"lb ({lbs[c]}) exceeds ub ({ubs[c]}) for '{c}'")
            x = design[c].to_numpy(dtype=float)
            bounds[c] = np.quantile(x, [lbs[c], ubs[c]])

        keep = np.ones(len(design), dtype=bool)
        for c in columns:
            x = design[c].to_numpy(dtype=float)
            lo, hi = bounds[c]
            keep &= (x >= lo) & (x <= hi)
        return keep

    def simulate(self, design: pd.DataFrame, rng: np.random.Generator) -> SimulatedDataset:
        data, spec = self._prepare(design)
        n = len(data)
        keep = self.selection_mask(data)
        if not keep.any():
            raise EmptySampleError("predictor selection removed all rows")

        data = data.loc[keep].copy()
        E_y = linear_predictor(data, self.beta)
        data[RESPONSE] = E_y + rng.normal(0.0, self.sigma_y, size=len(data))
        logger.debug("predictor selection kept %d of %d rows", len(data), n)
        return SimulatedDataset(data, spec)


DGP_VARIANTS: Dict[str, type] = {
    cls.name: cls
    for cls in (
        NormalDGP,
        RandomXDGP,
        StudentTDGP,
        SkewTDGP,
        ClusteredDGP,
        ARMADGP,
        MeasurementErrorDGP,
        OutcomeSelectionDGP,
        PredictorSelectionDGP,
    )
}


__all__ = [
    "RESPONSE",
    "LAST_COLUMN",
    "RegressionSpec",
    "SimulatedDataset",
    "LinearDGP",
    "NormalDGP",
    "RandomXDGP",
    "StudentTDGP",
    "SkewTDGP",
    "ClusteredDGP",
    "ARMADGP",
    "MeasurementErrorDGP",
    "OutcomeSelectionDGP",
    "PredictorSelectionDGP",
    "DGP_VARIANTS",
    "resolve_omitted",
]
