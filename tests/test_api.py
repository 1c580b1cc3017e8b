"""Tests for the ``microdiff.fit`` entry point on short chains."""

import numpy as np
import pytest
from pydantic import ValidationError

import microdiff
from microdiff import ConfigurationError, MCMCResults
from microdiff.models.config import MCMCConfig, ModelConfig, PriorConfig

SHORT = dict(n_iter=8, n_burnin=3, progress=False)


def test_fit_returns_results(small_dataset, path_adjacency):
    counts, group = small_dataset
    results = microdiff.fit(counts, group, graph=path_adjacency, **SHORT)
    assert isinstance(results, MCMCResults)
    assert results.ppi.shape == (8,)
    assert np.all((results.ppi >= 0) & (results.ppi <= 1))
    assert set(np.unique(results.final_gamma)).issubset({0, 1})
    assert results.history is None
    assert results.graph.n_edges == 7


def test_fit_store_chain(small_dataset):
    counts, group = small_dataset
    results = microdiff.fit(counts, group, store_chain=True, thin=1, **SHORT)
    assert results.history["gamma"].shape == (5, 8)


def test_fit_without_dpp_keeps_size_factors(small_dataset):
    counts, group = small_dataset
    size_factors = np.linspace(0.5, 1.5, 12)
    results = microdiff.fit(
        counts, group, size_factors, use_dpp=False, use_mrf=False, **SHORT
    )
    np.testing.assert_allclose(
        results.mean_size_factors, size_factors, rtol=1e-5
    )
    assert results.chains[0].mean_n_clusters == 12


def test_fit_passes_structure_matrix_through(small_dataset):
    counts, group = small_dataset
    structure = np.eye(8, dtype=int)
    results = microdiff.fit(counts, group, structure_matrix=structure, **SHORT)
    np.testing.assert_array_equal(results.structure_matrix, structure)
    assert not results.aggregated


def test_fit_aggregated(small_dataset):
    counts, group = small_dataset
    structure = np.zeros((3, 8), dtype=int)
    structure[0, :2] = 1
    structure[1, 2:] = 1
    structure[2, :] = 1
    graph = [(0, 2), (1, 2)]
    results = microdiff.fit(
        counts,
        group,
        structure_matrix=structure,
        aggregate=True,
        graph=graph,
        **SHORT,
    )
    assert results.aggregated
    assert results.ppi.shape == (3,)
    assert results.taxon_names[0] == "taxon_0|taxon_1"


def test_fit_with_explicit_configs(small_dataset):
    counts, group = small_dataset
    results = microdiff.fit(
        counts,
        group,
        model_config=ModelConfig(priors=PriorConfig(mrf_sparsity=-3.0)),
        mcmc_config=MCMCConfig(n_iter=4, n_burnin=1, progress=False),
    )
    assert results.mcmc_config.n_iter == 4
    assert results.model_config.priors.mrf_sparsity == -3.0


def test_fit_accepts_prior_dict(small_dataset):
    counts, group = small_dataset
    results = microdiff.fit(
        counts, group, priors={"effect_scale": 1.0}, **SHORT
    )
    assert results.model_config.priors.effect_scale == 1.0


# ---------------------------------------------------------------------------
# Validation before any sweep
# ---------------------------------------------------------------------------


def test_invalid_input_raises_configuration_error(small_dataset):
    counts, group = small_dataset
    bad = counts.copy().astype(float)
    bad[0, 0] = -1
    with pytest.raises(ConfigurationError):
        microdiff.fit(bad, group, **SHORT)


def test_invalid_settings_raise_validation_error(small_dataset):
    counts, group = small_dataset
    with pytest.raises(ValidationError):
        microdiff.fit(counts, group, n_iter=5, n_burnin=5, progress=False)


def test_reproducible_fit(small_dataset):
    counts, group = small_dataset
    first = microdiff.fit(counts, group, seed=3, **SHORT)
    second = microdiff.fit(counts, group, seed=3, **SHORT)
    np.testing.assert_array_equal(first.ppi, second.ppi)
    np.testing.assert_array_equal(first.final_gamma, second.final_gamma)
