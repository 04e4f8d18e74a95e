import numpy as np
import pandas as pd
import pytest

from olssim import (
    INTERCEPT,
    ClusteredDGP,
    InvalidInputError,
    NormalDGP,
    OLSEstimator,
    RegressionSpec,
    SimulatedDataset,
    SingularDesignError,
)


def test_fit_matches_least_squares(design, beta):
    ds = NormalDGP(beta).simulate(design, np.random.default_rng(0))
    fit = OLSEstimator().fit(ds)

    X = np.column_stack([np.ones(len(design)), design.to_numpy()])
    coef, *_ = np.linalg.lstsq(X, ds.y, rcond=None)
    resid = ds.y - X @ coef
    s2 = resid @ resid / (len(design) - 3)
    se = np.sqrt(np.diag(s2 * np.linalg.inv(X.T @ X)))

    assert fit.terms == [INTERCEPT, "x1", "x2"]
    np.testing.assert_allclose(list(fit.estimates.values()), coef)
    np.testing.assert_allclose(list(fit.std_errors.values()), se)
    assert fit.nobs == 100
    assert 0 < fit.rsquared < 1


def test_fit_uses_estimating_equation(design, beta):
    ds = NormalDGP(beta, omitted="x2").simulate(design, np.random.default_rng(0))
    fit = OLSEstimator().fit(ds)
    assert fit.terms == [INTERCEPT, "x1"]

    fit = OLSEstimator().fit(ds, covariates=["x2"])
    assert fit.terms == [INTERCEPT, "x2"]

    with pytest.raises(InvalidInputError):
        OLSEstimator().fit(ds, covariates=["z"])


def test_to_records(design, beta):
    ds = NormalDGP(beta).simulate(design, np.random.default_rng(0))
    fit = OLSEstimator().fit(ds)
    records = fit.to_records()

    assert [r["term"] for r in records] == [INTERCEPT, "x1", "x2"]
    assert set(records[0]) == {"term", "estimate", "std_error", "nobs"}
    assert fit.to_frame().shape == (3, 4)
    assert "OLS fit" in repr(fit)


def test_collinear_design_raises():
    x = np.linspace(0, 1, 20)
    data = pd.DataFrame({"x1": x, "x2": 2 * x, "y": x})
    ds = SimulatedDataset(data, RegressionSpec(covariates=("x1", "x2")))
    with pytest.raises(SingularDesignError):
        OLSEstimator().fit(ds)


def test_constant_covariate_raises():
    data = pd.DataFrame({"x1": np.ones(10), "y": np.arange(10.0)})
    ds = SimulatedDataset(data, RegressionSpec(covariates=("x1",)))
    with pytest.raises(SingularDesignError):
        OLSEstimator().fit(ds)


def test_too_few_rows_raises():
    data = pd.DataFrame({"x1": [0.0, 1.0], "y": [1.0, 2.0]})
    ds = SimulatedDataset(data, RegressionSpec(covariates=("x1",)))
    with pytest.raises(SingularDesignError):
        OLSEstimator().fit(ds)


def test_unknown_cov_type():
    with pytest.raises(InvalidInputError):
        OLSEstimator(cov_type="HC9")


def test_robust_standard_errors_differ(design_1d):
    n = len(design_1d)
    sigma = 0.2 + 3 * np.abs(design_1d["x1"].to_numpy())
    ds = NormalDGP([0.0, 1.0], sigma=sigma).simulate(design_1d, np.random.default_rng(1))

    classical = OLSEstimator().fit(ds)
    robust = OLSEstimator("HC3").fit(ds)
    assert robust.cov_type == "HC3"
    assert robust.estimates == classical.estimates
    assert robust.std_errors["x1"] != pytest.approx(classical.std_errors["x1"])
    assert n == robust.nobs


def test_cluster_standard_errors():
    n, groups = 1000, 20
    rng = np.random.default_rng(0)
    x = np.repeat(rng.normal(size=groups), n // groups)
    design = pd.DataFrame({"x1": x})
    ds = ClusteredDGP([0.0, 1.0], groups=groups, sigma_y=1.0, sigma_g=2.0).simulate(
        design, np.random.default_rng(1)
    )

    classical = OLSEstimator().fit(ds)
    clustered = OLSEstimator("cluster").fit(ds)
    assert clustered.std_errors["x1"] > 1.5 * classical.std_errors["x1"]


def test_cluster_requires_groups(design, beta):
    ds = NormalDGP(beta).simulate(design, np.random.default_rng(0))
    with pytest.raises(InvalidInputError):
        OLSEstimator("cluster").fit(ds)
