"""
olssim: Monte Carlo Stress Tests for Ordinary Least Squares
===========================================================

This package simulates linear-model data under controlled violations of the
classical OLS assumptions and records how the OLS estimates and their
standard errors behave across many independent trials.

Quick Start
-----------
>>> import numpy as np
>>> from olssim import NormalDGP, mvnorm_sample, r2_to_sigma, linear_predictor
>>> from olssim import run_simulation, summarize_batch
>>>
>>> # Fixed design with one covariate
>>> X = mvnorm_sample(100, [0.0], sigma=[1.0], rng=np.random.default_rng(1))
>>> beta = [0.0, 1.0]
>>>
>>> # Error sd that makes the population R² equal 0.5
>>> sigma = r2_to_sigma(linear_predictor(X, beta), 0.5)
>>>
>>> batch = run_simulation(NormalDGP(beta, sigma=sigma), n_trials=500, design=X)
>>> print(summarize_batch(batch, beta=beta))

Variants
--------
Normal and heteroskedastic errors, random designs, Student-t and skewed
Student-t errors, clustered errors, ARMA errors, measurement error in X,
selection on y and selection on X. Any variant can leave covariates out of
the estimating equation to study omitted variable bias.
"""

from olssim.exceptions import (
    OLSSimError,
    InvalidInputError,
    DistributionError,
    EmptySampleError,
    SingularDesignError,
)
from olssim.covariance import make_toeplitz_corr, mvnorm_sample, sdcor_to_cov
from olssim.calibration import linear_predictor, r2_to_sigma
from olssim.noise import arma_errors, contiguous_groups, rsstd
from olssim.dgp import (
    LAST_COLUMN,
    RESPONSE,
    DGP_VARIANTS,
    RegressionSpec,
    SimulatedDataset,
    LinearDGP,
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
from olssim.estimator import INTERCEPT, FitResult, OLSEstimator
from olssim.simulation import (
    DEFAULT_SEED,
    N_TRIALS_DEFAULT,
    SimulationBatch,
    TrialFailure,
    run_simulation,
    run_simulation_grid,
    run_single_trial,
)
from olssim.reporting import print_summary, summarize_batch

__version__ = "0.1.0"

__all__ = [
    # Errors
    "OLSSimError",
    "InvalidInputError",
    "DistributionError",
    "EmptySampleError",
    "SingularDesignError",
    # Covariates and calibration
    "sdcor_to_cov",
    "make_toeplitz_corr",
    "mvnorm_sample",
    "linear_predictor",
    "r2_to_sigma",
    # Error processes
    "rsstd",
    "arma_errors",
    "contiguous_groups",
    # DGP variants
    "RESPONSE",
    "LAST_COLUMN",
    "DGP_VARIANTS",
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
    # Estimation
    "INTERCEPT",
    "OLSEstimator",
    "FitResult",
    # Simulation
    "DEFAULT_SEED",
    "N_TRIALS_DEFAULT",
    "SimulationBatch",
    "TrialFailure",
    "run_simulation",
    "run_simulation_grid",
    "run_single_trial",
    # Reporting
    "summarize_batch",
    "print_summary",
]
