"""Tests for the Monte Carlo runner."""

import logging
import time
from dataclasses import dataclass
from typing import ClassVar

import numpy as np
import pandas as pd
import pytest

from olssim import (
    EmptySampleError,
    InvalidInputError,
    NormalDGP,
    OLSEstimator,
    OutcomeSelectionDGP,
    RandomXDGP,
    SimulationBatch,
    linear_predictor,
    mvnorm_sample,
    r2_to_sigma,
    run_simulation,
    run_simulation_grid,
    run_single_trial,
)
from olssim.simulation import RESULT_COLUMNS


@dataclass
class FlakyDGP(NormalDGP):
    """Normal DGP whose sample is lost with probability ``p_fail``."""
    p_fail: float = 0.3

    name: ClassVar[str] = "flaky"

    def simulate(self, design, rng):
        if rng.random() < self.p_fail:
            raise EmptySampleError("sample lost")
        return super().simulate(design, rng)


@dataclass
class SlowDGP(NormalDGP):
    delay: float = 0.05

    name: ClassVar[str] = "slow"

    def simulate(self, design, rng):
        time.sleep(self.delay)
        return super().simulate(design, rng)


# =============================================================================
# Calibrated normal scenario
# =============================================================================

@pytest.fixture(scope="module")
def calibrated():
    X = mvnorm_sample(100, [0.0], rng=np.random.default_rng(2024))
    beta = [0.0, 1.0]
    sigma = r2_to_sigma(linear_predictor(X, beta), 0.5)
    return X, beta, sigma


def test_unbiased_slope_and_calibrated_standard_errors(calibrated):
    X, beta, sigma = calibrated
    batch = run_simulation(NormalDGP(beta, sigma=sigma), n_trials=2048, design=X, seed=1)

    assert batch.n_completed == 2048
    assert not batch.timed_out
    slope = batch.results[batch.results["term"] == "x1"]
    assert slope["estimate"].mean() == pytest.approx(1.0, abs=0.05)
    empirical_sd = slope["estimate"].std()
    assert slope["std_error"].mean() == pytest.approx(empirical_sd, rel=0.10)


def test_average_r2_near_target(calibrated):
    X, beta, sigma = calibrated
    dgp = NormalDGP(beta, sigma=sigma)
    estimator = OLSEstimator()
    rngs = [np.random.default_rng(s) for s in np.random.SeedSequence(3).spawn(500)]
    r2 = [run_single_trial(dgp, X, estimator, rng).rsquared for rng in rngs]
    assert np.mean(r2) == pytest.approx(0.5, abs=0.03)


# =============================================================================
# Output shape and reproducibility
# =============================================================================

def test_results_table(design, beta):
    batch = run_simulation(NormalDGP(beta), n_trials=10, design=design, metadata={"sample_size": 100})

    df = batch.to_frame()
    assert list(df.columns) == ["sample_size"] + RESULT_COLUMNS
    assert len(df) == 30
    assert df["trial_id"].tolist() == sorted(df["trial_id"].tolist())
    assert set(df["term"]) == {"Intercept", "x1", "x2"}
    assert (df["sample_size"] == 100).all()
    assert (df["nobs"] == 100).all()
    assert batch.n_requested == 10
    assert "10/10" in repr(batch)


def test_same_seed_same_results(design, beta):
    a = run_simulation(NormalDGP(beta), n_trials=20, design=design, seed=5)
    b = run_simulation(NormalDGP(beta), n_trials=20, design=design, seed=5)
    c = run_simulation(NormalDGP(beta), n_trials=20, design=design, seed=6)

    pd.testing.assert_frame_equal(a.results, b.results)
    assert not np.allclose(a.results["estimate"], c.results["estimate"])


def test_parallel_matches_sequential(design, beta):
    sequential = run_simulation(NormalDGP(beta), n_trials=30, design=design, seed=8)
    parallel = run_simulation(
        NormalDGP(beta), n_trials=30, design=design, seed=8, n_jobs=2, backend="threading"
    )
    pd.testing.assert_frame_equal(sequential.results, parallel.results)


def test_trials_are_independent(design, beta):
    batch = run_simulation(NormalDGP(beta), n_trials=4, design=design, seed=0)
    estimates = batch.results.pivot(index="trial_id", columns="term", values="estimate")
    assert estimates["x1"].nunique() == 4


def test_random_design_drawn_each_trial():
    dgp = RandomXDGP([0.0, 1.0], n=50)
    batch = run_simulation(dgp, n_trials=5, seed=2)
    assert batch.n_completed == 5
    assert batch.results["estimate"].nunique() == 10


def test_random_design_ignores_supplied_design(design, caplog):
    with caplog.at_level(logging.WARNING, logger="olssim.simulation"):
        batch = run_simulation(RandomXDGP([0.0, 1.0], n=40), n_trials=3, design=design)
    assert "ignored" in caplog.text
    assert (batch.results["nobs"] == 40).all()


# =============================================================================
# Validation and failure policy
# =============================================================================

def test_fixed_design_required(beta):
    with pytest.raises(InvalidInputError):
        run_simulation(NormalDGP(beta), n_trials=5)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"n_trials": 0},
        {"n_trials": 2.5},
        {"on_error": "ignore"},
        {"max_seconds": 0},
        {"n_jobs": 0},
        {"n_jobs": 1.5},
    ],
)
def test_invalid_run_arguments(design, beta, kwargs):
    params = {"n_trials": 5, **kwargs}
    with pytest.raises(InvalidInputError):
        run_simulation(NormalDGP(beta), design=design, **params)


def test_error_is_annotated_and_raised(design, beta):
    dgp = OutcomeSelectionDGP(beta, lb=0.5, ub=0.5)
    with pytest.raises(EmptySampleError) as exc_info:
        run_simulation(dgp, n_trials=5, design=design)

    err = exc_info.value
    assert err.trial_id == 0
    assert err.params["dgp"] == "outcome_selection"
    assert err.params["lb"] == 0.5
    assert "(trial 0)" in str(err)


def test_skip_records_failures(design, beta, caplog):
    dgp = FlakyDGP(beta, p_fail=0.3)
    with caplog.at_level(logging.WARNING, logger="olssim.simulation"):
        batch = run_simulation(dgp, n_trials=100, design=design, seed=4, on_error="skip")

    assert batch.n_failed > 0
    assert batch.n_completed + batch.n_failed == 100
    assert 10 < batch.n_failed < 50
    assert "failed and were skipped" in caplog.text

    failed_ids = {f.trial_id for f in batch.failures}
    assert failed_ids.isdisjoint(set(batch.results["trial_id"]))
    assert all(f.error == "EmptySampleError" for f in batch.failures)
    assert set(batch.failures_frame().columns) >= {"trial_id", "error", "message"}


def test_skip_mode_is_deterministic_in_parallel(design, beta):
    dgp = FlakyDGP(beta, p_fail=0.3)
    a = run_simulation(dgp, n_trials=40, design=design, seed=4, on_error="skip")
    b = run_simulation(
        dgp, n_trials=40, design=design, seed=4, on_error="skip", n_jobs=2, backend="threading"
    )
    assert [f.trial_id for f in a.failures] == [f.trial_id for f in b.failures]
    pd.testing.assert_frame_equal(a.results, b.results)


def test_raise_mode_in_parallel(design, beta):
    dgp = OutcomeSelectionDGP(beta, lb=0.5, ub=0.5)
    with pytest.raises(EmptySampleError) as exc_info:
        run_simulation(dgp, n_trials=8, design=design, n_jobs=2, backend="threading")
    # any failing trial may surface first when trials run concurrently
    assert exc_info.value.trial_id in range(8)
    assert exc_info.value.params["dgp"] == "outcome_selection"


def test_time_budget_stops_scheduling(design, beta):
    dgp = SlowDGP(beta, delay=0.05)
    batch = run_simulation(dgp, n_trials=100, design=design, max_seconds=0.3)

    assert batch.timed_out
    assert 0 < batch.n_completed < 100
    assert batch.n_requested == 100
    assert "timed out" in repr(batch)


def test_time_budget_in_parallel(design, beta):
    dgp = SlowDGP(beta, delay=0.05)
    batch = run_simulation(
        dgp, n_trials=200, design=design, max_seconds=0.3, n_jobs=2, backend="threading"
    )
    assert batch.timed_out
    assert 0 < batch.n_completed < 200


def test_progress_bar(design, beta):
    batch = run_simulation(NormalDGP(beta), n_trials=5, design=design, progress=True)
    assert batch.n_completed == 5


# =============================================================================
# Grid
# =============================================================================

def test_simulation_grid():
    beta = [0.0, 1.0]
    configs = []
    for n in (30, 60):
        X = mvnorm_sample(n, [0.0], rng=np.random.default_rng(n))
        configs.append({"dgp": NormalDGP(beta), "design": X, "sample_size": n, "label": "normal"})

    batch = run_simulation_grid(configs, n_trials=10, seed=3)

    assert isinstance(batch, SimulationBatch)
    assert batch.n_requested == 20
    assert batch.n_completed == 20
    df = batch.results
    assert {"sample_size", "label"} <= set(df.columns)
    assert sorted(df["sample_size"].unique()) == [30, 60]
    nobs = df.groupby("sample_size")["nobs"].first()
    assert nobs.to_dict() == {30: 30, 60: 60}

    again = run_simulation_grid(configs, n_trials=10, seed=3)
    pd.testing.assert_frame_equal(df, again.results)


def test_simulation_grid_requires_dgp():
    with pytest.raises(InvalidInputError):
        run_simulation_grid([{"sample_size": 10}], n_trials=2)


def test_concat_empty():
    batch = SimulationBatch.concat([])
    assert batch.n_completed == 0
    assert list(batch.results.columns) == RESULT_COLUMNS
