"""Shared fixtures for olssim tests."""

import numpy as np
import pytest

from olssim import mvnorm_sample


@pytest.fixture
def rng():
    """Seeded random number generator."""
    return np.random.default_rng(42)


@pytest.fixture
def design():
    """Fixed 100 x 2 design with exact moments: means 0, sds 1, correlation 0.3."""
    R = np.array([[1.0, 0.3], [0.3, 1.0]])
    return mvnorm_sample(100, [0.0, 0.0], correlation=R, rng=np.random.default_rng(7))


@pytest.fixture
def design_1d():
    """Fixed 100 x 1 standard normal design with exact moments."""
    return mvnorm_sample(100, [0.0], rng=np.random.default_rng(11))


@pytest.fixture
def beta():
    return np.array([1.0, 2.0, -0.5])
