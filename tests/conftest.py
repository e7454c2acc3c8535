"""
pytest configuration and shared fixtures.
"""

import pytest
import numpy as np


@pytest.fixture
def rng():
    """Seeded random number generator for reproducible tests."""
    return np.random.default_rng(42)


@pytest.fixture
def six_subjects():
    """Six subjects with ties at 10 and 20 and censoring at both.

    Risk sets 6, 5, 3, 2 at event times 5, 10, 15, 20.
    """
    time = np.array([5, 10, 10, 15, 20, 20], dtype=np.float64)
    event = np.array([1, 0, 1, 1, 0, 1], dtype=np.float64)
    return time, event


@pytest.fixture
def proportional_hazards_data(rng):
    """Exponential survival times with log hazard ratios (0.7, -0.5)."""
    n = 1500
    x1 = rng.standard_normal(n)
    x2 = rng.integers(0, 2, n).astype(np.float64)
    beta_true = np.array([0.7, -0.5])
    X = np.column_stack([x1, x2])
    t_event = rng.exponential(1.0, n) / np.exp(X @ beta_true)
    t_censor = rng.exponential(3.0, n)
    time = np.minimum(t_event, t_censor)
    event = (t_event <= t_censor).astype(np.float64)
    return time, event, X, beta_true


@pytest.fixture
def collinear_data(rng):
    """Covariates with perfect collinearity (should fail)."""
    n = 60
    x1 = rng.standard_normal(n)
    x2 = rng.standard_normal(n)
    x3 = x1 + x2  # Perfect collinearity
    X = np.column_stack([x1, x2, x3])
    time = rng.exponential(1.0, n)
    event = np.ones(n)
    return time, event, X
