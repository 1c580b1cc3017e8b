"""Tests for ``microdiff.core.graph``."""

import numpy as np
import pytest
import scipy.sparse

from microdiff.core import ConfigurationError, TaxonGraph
from microdiff.core.graph import as_taxon_graph


def test_from_adjacency_builds_neighbors(path_adjacency):
    graph = TaxonGraph.from_adjacency(path_adjacency)
    assert graph.n_nodes == 8
    assert graph.neighbors(0) == (1,)
    assert graph.neighbors(3) == (2, 4)
    assert graph.n_edges == 7
    np.testing.assert_array_equal(graph.to_adjacency(), path_adjacency != 0)


def test_from_adjacency_accepts_sparse(path_adjacency):
    graph = TaxonGraph.from_adjacency(scipy.sparse.csr_matrix(path_adjacency))
    assert graph.n_edges == 7


def test_from_edges_merges_duplicates():
    graph = TaxonGraph.from_edges(4, [(0, 1), (1, 0), (2, 3)])
    assert graph.n_edges == 2
    assert graph.neighbors(1) == (0,)
    np.testing.assert_array_equal(graph.degree(), [1, 1, 1, 1])


def test_empty_graph_is_all_isolated():
    graph = TaxonGraph.empty(5)
    assert graph.isolated().all()
    table, mask = graph.neighbor_table()
    assert table.shape == (5, 1)
    assert not bool(mask.any())


def test_neighbor_table_padding():
    graph = TaxonGraph.from_edges(3, [(0, 1), (0, 2)])
    table, mask = graph.neighbor_table()
    assert table.shape == (3, 2)
    np.testing.assert_array_equal(mask, [[True, True], [True, False], [True, False]])
    np.testing.assert_array_equal(table[0], [1, 2])


@pytest.mark.parametrize(
    "adjacency,match",
    [
        (np.ones((2, 3)), "square"),
        (np.array([[1, 0], [0, 0]]), "self loops"),
        (np.array([[0, 1], [0, 0]]), "symmetric"),
    ],
)
def test_invalid_adjacency_raises(adjacency, match):
    with pytest.raises(ConfigurationError, match=match):
        TaxonGraph.from_adjacency(adjacency)


def test_invalid_edges_raise():
    with pytest.raises(ConfigurationError, match="outside"):
        TaxonGraph.from_edges(2, [(0, 2)])
    with pytest.raises(ConfigurationError, match="Self loop"):
        TaxonGraph.from_edges(2, [(1, 1)])


def test_as_taxon_graph_coercions(path_adjacency):
    assert as_taxon_graph(None, 3).n_edges == 0
    assert as_taxon_graph(path_adjacency, 8).n_edges == 7
    assert as_taxon_graph([(0, 2)], 3).neighbors(2) == (0,)
    graph = TaxonGraph.empty(4)
    assert as_taxon_graph(graph, 4) is graph


def test_as_taxon_graph_rejects_wrong_size(path_adjacency):
    with pytest.raises(ConfigurationError, match="8 nodes"):
        as_taxon_graph(path_adjacency, 5)


def test_nested_list_is_read_as_adjacency():
    path = [[0, 1, 0], [1, 0, 1], [0, 1, 0]]
    graph = as_taxon_graph(path, 3)
    assert graph.n_edges == 2
    assert graph.neighbors(1) == (0, 2)
    # A 2 x 2 nested list is a matrix too, not two edges
    assert as_taxon_graph([[0, 0], [0, 0]], 2).n_edges == 0


def test_edge_generator_is_accepted():
    graph = as_taxon_graph(((j, j + 1) for j in range(3)), 4)
    assert graph.n_edges == 3


def test_malformed_edges_raise():
    with pytest.raises(ConfigurationError, match=r"\(j, l\) pairs"):
        as_taxon_graph([(0, 1, 2)], 4)
    with pytest.raises(ConfigurationError, match=r"\(j, l\) pairs"):
        TaxonGraph.from_edges(3, [0, 1])
