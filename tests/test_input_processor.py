"""Tests for input validation in ``microdiff.core.input_processor``."""

import numpy as np
import pandas as pd
import pytest
from anndata import AnnData

from microdiff.core import ConfigurationError, InputProcessor, build_count_data


# ---------------------------------------------------------------------------
# build_count_data
# ---------------------------------------------------------------------------


def test_build_count_data_defaults(small_dataset):
    counts, group = small_dataset
    data = build_count_data(counts, group)
    assert data.n_samples == 12
    assert data.n_taxa == 8
    assert data.taxon_names[0] == "taxon_0"
    assert data.sample_names[-1] == "sample_11"
    assert data.graph.n_edges == 0
    assert not data.aggregated
    # Default size factors have geometric mean one
    np.testing.assert_allclose(
        np.exp(np.mean(np.log(np.asarray(data.size_factors)))), 1.0, rtol=1e-5
    )


def test_build_count_data_does_not_mutate_inputs(small_dataset):
    counts, group = small_dataset
    counts_copy, group_copy = counts.copy(), group.copy()
    size_factors = np.ones(12)
    build_count_data(counts, group, size_factors=size_factors)
    np.testing.assert_array_equal(counts, counts_copy)
    np.testing.assert_array_equal(group, group_copy)
    np.testing.assert_array_equal(size_factors, np.ones(12))


def test_build_count_data_from_anndata(small_dataset):
    counts, group = small_dataset
    adata = AnnData(
        X=counts.astype(np.float32),
        obs=pd.DataFrame(
            {"phenotype": group}, index=[f"s{i}" for i in range(12)]
        ),
        var=pd.DataFrame(index=[f"otu{j}" for j in range(8)]),
    )
    data = build_count_data(adata, group_key="phenotype")
    assert data.taxon_names[3] == "otu3"
    assert data.sample_names[0] == "s0"
    np.testing.assert_array_equal(np.asarray(data.group), group)


def test_samples_axis_transposes(small_dataset):
    counts, group = small_dataset
    data = build_count_data(counts.T, group, samples_axis=1)
    assert data.counts.shape == (12, 8)


def test_aggregation_builds_node_counts(small_dataset):
    counts, group = small_dataset
    structure = np.zeros((3, 8), dtype=int)
    structure[0, :4] = 1
    structure[1, 4:] = 1
    structure[2, :] = 1
    data = build_count_data(
        counts,
        group,
        structure_matrix=structure,
        aggregate=True,
        taxon_names=list("abcdefgh"),
    )
    assert data.aggregated
    assert data.counts.shape == (12, 3)
    np.testing.assert_allclose(
        np.asarray(data.counts[:, 2]), counts.sum(axis=1)
    )
    assert data.taxon_names[0] == "a|b|c|d"
    assert data.graph.n_nodes == 3


# ---------------------------------------------------------------------------
# Validation errors
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "mutate,match",
    [
        (lambda c: c.astype(float) - 100, "negative"),
        (lambda c: c + 0.5, "non-integer"),
        (lambda c: np.where(c == c.max(), np.nan, c), "non-finite"),
        (lambda c: c[0], "2-D"),
    ],
)
def test_invalid_counts_raise(small_dataset, mutate, match):
    counts, group = small_dataset
    with pytest.raises(ConfigurationError, match=match):
        build_count_data(mutate(counts), group)


@pytest.mark.parametrize(
    "group,match",
    [
        (np.zeros(12, dtype=int), "two distinct"),
        (np.arange(12) % 3, "0 and 1"),
        (np.array([0, 1] * 5), "length"),
    ],
)
def test_invalid_group_raises(small_dataset, group, match):
    counts, _ = small_dataset
    with pytest.raises(ConfigurationError, match=match):
        build_count_data(counts, group)


def test_missing_group_raises(small_dataset):
    counts, _ = small_dataset
    with pytest.raises(ConfigurationError, match="group label is required"):
        build_count_data(counts)


def test_boolean_group_is_accepted(small_dataset):
    counts, group = small_dataset
    data = build_count_data(counts, group.astype(bool))
    np.testing.assert_array_equal(np.asarray(data.group), group)


@pytest.mark.parametrize(
    "size_factors",
    [np.zeros(12), -np.ones(12), np.full(12, np.inf), np.ones(5)],
)
def test_invalid_size_factors_raise(small_dataset, size_factors):
    counts, group = small_dataset
    with pytest.raises(ConfigurationError, match="Size factors"):
        build_count_data(counts, group, size_factors=size_factors)


def test_graph_of_wrong_size_raises(small_dataset):
    counts, group = small_dataset
    with pytest.raises(ConfigurationError, match="nodes"):
        build_count_data(counts, group, graph=np.zeros((3, 3)))


def test_aggregate_requires_structure_matrix(small_dataset):
    counts, group = small_dataset
    with pytest.raises(ConfigurationError, match="structure matrix"):
        build_count_data(counts, group, aggregate=True)


def test_structure_matrix_validation(small_dataset):
    counts, group = small_dataset
    with pytest.raises(ConfigurationError, match="shape"):
        build_count_data(counts, group, structure_matrix=np.ones((2, 5)))
    with pytest.raises(ConfigurationError, match="binary"):
        build_count_data(counts, group, structure_matrix=np.full((2, 8), 2))
    empty_row = np.ones((2, 8))
    empty_row[1] = 0
    with pytest.raises(ConfigurationError, match="at least one taxon"):
        build_count_data(counts, group, structure_matrix=empty_row)


def test_default_size_factors_handle_empty_samples():
    counts = np.array([[0, 0], [2, 2], [4, 4]])
    factors = InputProcessor.default_size_factors(counts)
    assert np.all(factors > 0)
    assert factors[0] == factors[1]


def test_default_size_factors_ignore_a_shifted_minority():
    """A 20-fold shift in one of ten taxa does not move the factors, while
    total counts would differ by a factor of almost three."""
    counts = np.full((4, 10), 10)
    counts[2:, 0] = 200
    factors = InputProcessor.default_size_factors(counts)
    np.testing.assert_allclose(factors, 1.0)
    totals = counts.sum(axis=1)
    assert totals[2] / totals[0] > 2.5


def test_default_size_factors_track_sequencing_depth():
    counts = np.array([[5, 10, 0, 20], [10, 20, 4, 40], [20, 40, 8, 0]])
    factors = InputProcessor.default_size_factors(counts)
    np.testing.assert_allclose(factors[1] / factors[0], 2.0, rtol=1e-6)
    np.testing.assert_allclose(factors[2] / factors[1], 2.0, rtol=1e-6)
    np.testing.assert_allclose(np.exp(np.mean(np.log(factors))), 1.0)
