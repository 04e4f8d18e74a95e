import numpy as np
import pytest
from scipy import stats

from olssim import InvalidInputError, arma_errors, contiguous_groups, rsstd


def test_rsstd_has_requested_moments():
    rng = np.random.default_rng(0)
    draws = rsstd(200_000, mean=2.0, sd=3.0, nu=5.0, xi=1.5, rng=rng)

    assert draws.mean() == pytest.approx(2.0, abs=0.05)
    assert draws.std() == pytest.approx(3.0, rel=0.03)
    assert stats.skew(draws) > 0


def test_rsstd_skew_direction():
    left = rsstd(100_000, nu=10.0, xi=0.6, rng=np.random.default_rng(1))
    right = rsstd(100_000, nu=10.0, xi=1.6, rng=np.random.default_rng(1))
    assert stats.skew(left) < 0 < stats.skew(right)


def test_rsstd_symmetric_normal_kernel():
    draws = rsstd(100_000, nu=np.inf, xi=1.0, rng=np.random.default_rng(2))
    assert draws.mean() == pytest.approx(0.0, abs=0.02)
    assert draws.std() == pytest.approx(1.0, rel=0.02)
    assert abs(stats.skew(draws)) < 0.05


def test_rsstd_invalid():
    with pytest.raises(InvalidInputError):
        rsstd(10, nu=2.0)
    with pytest.raises(InvalidInputError):
        rsstd(10, xi=0.0)
    with pytest.raises(InvalidInputError):
        rsstd(10, sd=-1.0)


def test_arma_errors_ar1_autocorrelation():
    eps = arma_errors(20_000, ar=[0.6], sd=1.0, rng=np.random.default_rng(3))

    lag1 = np.corrcoef(eps[:-1], eps[1:])[0, 1]
    assert lag1 == pytest.approx(0.6, abs=0.03)
    # stationary variance sd² / (1 - φ²)
    assert eps.var() == pytest.approx(1 / (1 - 0.36), rel=0.06)


def test_arma_errors_ma1_autocorrelation():
    eps = arma_errors(20_000, ma=[0.5], rng=np.random.default_rng(4))
    lag1 = np.corrcoef(eps[:-1], eps[1:])[0, 1]
    lag2 = np.corrcoef(eps[:-2], eps[2:])[0, 1]
    assert lag1 == pytest.approx(0.5 / 1.25, abs=0.03)
    assert abs(lag2) < 0.03


def test_arma_errors_white_noise():
    eps = arma_errors(500, rng=np.random.default_rng(5))
    assert eps.shape == (500,)


def test_arma_errors_reproducible():
    a = arma_errors(100, ar=[0.5, -0.2], ma=[0.3], rng=np.random.default_rng(6))
    b = arma_errors(100, ar=[0.5, -0.2], ma=[0.3], rng=np.random.default_rng(6))
    np.testing.assert_array_equal(a, b)


@pytest.mark.parametrize("ar", [[1.0], [1.2], [0.5, 0.6]])
def test_arma_errors_non_stationary(ar):
    with pytest.raises(InvalidInputError):
        arma_errors(100, ar=ar, rng=np.random.default_rng(0))


def test_contiguous_groups():
    g = contiguous_groups(10, 5)
    np.testing.assert_array_equal(g, [0, 0, 1, 1, 2, 2, 3, 3, 4, 4])

    g = contiguous_groups(100, 7)
    assert set(g) == set(range(7))
    assert np.all(np.diff(g) >= 0)
    counts = np.bincount(g)
    assert counts.max() - counts.min() <= 1


def test_contiguous_groups_single_group():
    np.testing.assert_array_equal(contiguous_groups(4, 1), [0, 0, 0, 0])


def test_contiguous_groups_invalid():
    with pytest.raises(InvalidInputError):
        contiguous_groups(5, 0)
    with pytest.raises(InvalidInputError):
        contiguous_groups(5, 6)
    with pytest.raises(InvalidInputError):
        contiguous_groups(5, 2.5)
