"""
Shared test fixtures and configuration for MICRODIFF tests.
"""

import os

import numpy as np
import pytest


# =============================================================================
# Pytest configuration
# =============================================================================


def pytest_addoption(parser):
    parser.addoption(
        "--device",
        default="cpu",
        choices=["cpu", "gpu"],
        help="Device to run tests on: cpu or gpu",
    )
    parser.addoption(
        "--run-slow",
        action="store_true",
        default=False,
        help="Run slow end-to-end sampler tests",
    )


def pytest_configure(config):
    """Configure JAX device before any imports happen and register markers."""
    device = config.getoption("--device")
    if device == "cpu":
        os.environ["JAX_PLATFORM_NAME"] = "cpu"
    elif "JAX_PLATFORM_NAME" in os.environ:
        del os.environ["JAX_PLATFORM_NAME"]

    config.addinivalue_line(
        "markers", "slow: marks tests as slow (skip unless --run-slow)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip slow tests unless --run-slow is specified."""
    if config.getoption("--run-slow"):
        return

    skip_slow = pytest.mark.skip(reason="need --run-slow option to run")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


# =============================================================================
# Synthetic data
# =============================================================================


def simulate_counts(
    n_per_group=6,
    n_taxa=8,
    shifted=(0, 1),
    log_fold=2.0,
    mean=20.0,
    dispersion=5.0,
    zero_prob=0.05,
    seed=0,
):
    """Two-group ZINB counts with a multiplicative shift on ``shifted`` taxa.

    Returns
    -------
    counts : np.ndarray, shape (2 * n_per_group, n_taxa)
    group : np.ndarray, shape (2 * n_per_group,)
    """
    rng = np.random.default_rng(seed)
    n = 2 * n_per_group
    group = np.repeat([0, 1], n_per_group)
    size_factors = rng.lognormal(0.0, 0.2, size=n)
    base = rng.lognormal(np.log(mean), 0.5, size=n_taxa)

    effect = np.zeros(n_taxa)
    effect[list(shifted)] = log_fold
    means = size_factors[:, None] * base[None, :] * np.exp(
        group[:, None] * effect[None, :]
    )
    counts = rng.negative_binomial(
        dispersion, dispersion / (dispersion + means)
    )
    structural = rng.uniform(size=counts.shape) < zero_prob
    counts[structural] = 0
    return counts.astype(np.int64), group


@pytest.fixture
def small_dataset():
    """12 samples (6 per group), 8 taxa, taxa 0 and 1 shifted."""
    return simulate_counts()


@pytest.fixture
def path_adjacency():
    """Adjacency of the path 0-1-2-...-7."""
    adj = np.zeros((8, 8), dtype=int)
    for j in range(7):
        adj[j, j + 1] = adj[j + 1, j] = 1
    return adj


@pytest.fixture
def simulate():
    """The synthetic-data generator, for tests that need custom settings."""
    return simulate_counts
