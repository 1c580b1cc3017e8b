"""Tests for the Dirichlet-process normalization block."""

import numpy as np
import jax.numpy as jnp
from jax import random
import pytest

from microdiff.core import build_count_data
from microdiff.mcmc._normalization import (
    reassign_samples,
    refresh_cluster_sizes,
    resample_concentration,
    resample_normalization,
)
from microdiff.mcmc.state import clip_log_size, init_state
from microdiff.models.config import ModelConfig, PartitionInit


def _check_partition(state, n):
    cluster_of = np.asarray(state.cluster_of)
    cluster_count = np.asarray(state.cluster_count)
    assert cluster_of.shape == (n,)
    assert np.all((cluster_of >= 0) & (cluster_of < n))
    # Occupancy matches the assignment and every sample sits in a live slot
    np.testing.assert_array_equal(
        cluster_count, np.bincount(cluster_of, minlength=n)
    )
    assert cluster_count.sum() == n
    assert np.all(cluster_count[cluster_of] > 0)


@pytest.fixture
def data(small_dataset):
    counts, group = small_dataset
    return build_count_data(counts, group)


@pytest.fixture
def base_loc(data):
    return jnp.mean(jnp.log(data.size_factors))


@pytest.mark.parametrize(
    "partition_init", [PartitionInit.SINGLETONS, PartitionInit.SHARED]
)
def test_initial_partition_is_total(data, partition_init):
    state = init_state(data, ModelConfig(partition_init=partition_init))
    _check_partition(state, data.n_samples)
    expected = 1 if partition_init == PartitionInit.SHARED else data.n_samples
    assert int(state.n_clusters) == expected


def test_shared_init_ignored_without_dpp(data):
    state = init_state(
        data, ModelConfig(use_dpp=False, partition_init=PartitionInit.SHARED)
    )
    assert int(state.n_clusters) == data.n_samples


@pytest.mark.parametrize("seed", [0, 1, 2])
def test_reassignment_keeps_partition_total(data, base_loc, seed):
    config = ModelConfig()
    state = init_state(data, config)
    key = random.PRNGKey(seed)
    for _ in range(3):
        key, subkey = random.split(key)
        state, failed = reassign_samples(state, subkey, data, config, base_loc)
        assert not bool(failed)
        _check_partition(state, data.n_samples)


def test_reassignment_can_open_clusters_from_shared(data, base_loc):
    config = ModelConfig(
        partition_init=PartitionInit.SHARED, concentration=50.0
    )
    state = init_state(data, config)
    state, _ = reassign_samples(
        state, random.PRNGKey(3), data, config, base_loc
    )
    _check_partition(state, data.n_samples)
    assert int(state.n_clusters) >= 1


def test_cluster_refresh_only_touches_live_slots(data, base_loc):
    config = ModelConfig(partition_init=PartitionInit.SHARED)
    state = init_state(data, config)
    before = np.asarray(state.cluster_log_size)
    state, accepted, proposed = refresh_cluster_sizes(
        state, random.PRNGKey(0), data, config, base_loc
    )
    after = np.asarray(state.cluster_log_size)
    assert int(proposed) == 1
    np.testing.assert_array_equal(before[1:], after[1:])
    assert int(accepted) in (0, 1)


def test_size_factors_stay_in_clip_window(data, base_loc):
    config = ModelConfig(size_factor_min=0.5, size_factor_max=2.0)
    state = init_state(data, config)
    key = random.PRNGKey(7)
    for _ in range(5):
        key, subkey = random.split(key)
        state, *_ = resample_normalization(state, subkey, data, config, base_loc)
    size = np.exp(np.asarray(state.log_size))
    assert np.all(size >= 0.5 - 1e-5) and np.all(size <= 2.0 + 1e-5)


def test_no_dpp_keeps_size_factors_fixed(data, base_loc):
    config = ModelConfig(use_dpp=False)
    state = init_state(data, config)
    new_state, failed, accepted, proposed = resample_normalization(
        state, random.PRNGKey(0), data, config, base_loc
    )
    assert new_state is state
    assert not bool(failed)
    assert int(proposed) == 0
    np.testing.assert_allclose(
        np.exp(np.asarray(new_state.log_size)),
        np.asarray(data.size_factors),
        rtol=1e-5,
    )


def test_clip_log_size():
    config = ModelConfig(size_factor_min=0.1, size_factor_max=10.0)
    clipped = clip_log_size(jnp.array([-10.0, 0.0, 10.0]), config)
    np.testing.assert_allclose(
        clipped, [np.log(0.1), 0.0, np.log(10.0)], rtol=1e-6
    )


@pytest.mark.parametrize("n_clusters", [1, 4, 12])
def test_concentration_stays_positive(n_clusters):
    key = random.PRNGKey(0)
    concentration = jnp.asarray(1.0)
    for _ in range(50):
        key, subkey = random.split(key)
        concentration = resample_concentration(
            concentration, jnp.asarray(n_clusters), 12, subkey, (1.0, 1.0)
        )
        assert float(concentration) > 0
        assert np.isfinite(float(concentration))
