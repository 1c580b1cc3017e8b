"""
Taxon adjacency graph used by the Markov-random-field inclusion prior.

The graph is built once from an adjacency matrix or an edge list and then only
read. For the sampler it is exposed as a padded neighbor table so that the
number of included neighbors of every taxon can be computed with a single
gather.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence, Tuple, Union

import numpy as np
import jax.numpy as jnp

from .errors import ConfigurationError

# ==============================================================================
# TaxonGraph
# ==============================================================================


@dataclass(frozen=True)
class TaxonGraph:
    """Undirected, loop-free adjacency relation over ``n_nodes`` taxa.

    Parameters
    ----------
    n_nodes : int
        Number of nodes (taxa, or taxonomic nodes when aggregating).
    adjacency : Tuple[Tuple[int, ...], ...]
        Sorted neighbor indices for every node.

    Notes
    -----
    Use :meth:`from_adjacency` or :meth:`from_edges` rather than the raw
    constructor; both validate symmetry and the absence of self loops.
    """

    n_nodes: int
    adjacency: Tuple[Tuple[int, ...], ...]
    _table: np.ndarray = field(init=False, repr=False, compare=False)
    _mask: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        # Pad to at least one column so empty graphs still gather cleanly
        width = max([1] + [len(nbrs) for nbrs in self.adjacency])
        table = np.zeros((self.n_nodes, width), dtype=np.int32)
        mask = np.zeros((self.n_nodes, width), dtype=bool)
        for j, nbrs in enumerate(self.adjacency):
            table[j, : len(nbrs)] = nbrs
            mask[j, : len(nbrs)] = True
        object.__setattr__(self, "_table", table)
        object.__setattr__(self, "_mask", mask)

    # --------------------------------------------------------------------------
    # Constructors
    # --------------------------------------------------------------------------

    @classmethod
    def from_adjacency(cls, adjacency) -> "TaxonGraph":
        """Build a graph from a square 0/1 (or boolean) adjacency matrix.

        Parameters
        ----------
        adjacency : array-like, shape (n_nodes, n_nodes)
            Dense matrix or any object with a ``toarray`` method (e.g. a
            scipy sparse matrix).

        Raises
        ------
        ConfigurationError
            If the matrix is not square, not symmetric, or has a non-zero
            diagonal.
        """
        if hasattr(adjacency, "toarray"):
            adjacency = adjacency.toarray()
        adj = np.asarray(adjacency)
        if adj.ndim != 2 or adj.shape[0] != adj.shape[1]:
            raise ConfigurationError(
                f"Adjacency matrix must be square, got shape {adj.shape}"
            )
        adj = adj != 0
        if np.any(np.diag(adj)):
            loops = np.flatnonzero(np.diag(adj)).tolist()
            raise ConfigurationError(
                f"Adjacency matrix has self loops at nodes {loops}"
            )
        if not np.array_equal(adj, adj.T):
            raise ConfigurationError("Adjacency matrix must be symmetric")
        adjacency_list = tuple(
            tuple(int(k) for k in np.flatnonzero(row)) for row in adj
        )
        return cls(n_nodes=adj.shape[0], adjacency=adjacency_list)

    # --------------------------------------------------------------------------

    @classmethod
    def from_edges(
        cls, n_nodes: int, edges: Iterable[Tuple[int, int]]
    ) -> "TaxonGraph":
        """Build a graph from an iterable of undirected ``(j, l)`` pairs.

        Duplicate edges (in either orientation) are merged.
        """
        neighbors = [set() for _ in range(n_nodes)]
        for edge in edges:
            if not hasattr(edge, "__len__") or len(edge) != 2:
                raise ConfigurationError(
                    f"Edges must be (j, l) pairs, got {edge!r}"
                )
            j, l = int(edge[0]), int(edge[1])
            if not (0 <= j < n_nodes and 0 <= l < n_nodes):
                raise ConfigurationError(
                    f"Edge ({j}, {l}) references a node outside "
                    f"[0, {n_nodes})"
                )
            if j == l:
                raise ConfigurationError(f"Self loop on node {j}")
            neighbors[j].add(l)
            neighbors[l].add(j)
        return cls(
            n_nodes=n_nodes,
            adjacency=tuple(tuple(sorted(nbrs)) for nbrs in neighbors),
        )

    # --------------------------------------------------------------------------

    @classmethod
    def empty(cls, n_nodes: int) -> "TaxonGraph":
        """Graph with no edges: every node falls back to the sparsity prior."""
        return cls(n_nodes=n_nodes, adjacency=tuple(() for _ in range(n_nodes)))

    # --------------------------------------------------------------------------
    # Queries
    # --------------------------------------------------------------------------

    def neighbors(self, j: int) -> Tuple[int, ...]:
        """Neighbors of node ``j``."""
        return self.adjacency[j]

    def degree(self) -> np.ndarray:
        """Number of neighbors of every node."""
        return self._mask.sum(axis=1)

    def isolated(self) -> np.ndarray:
        """Boolean mask of nodes without neighbors."""
        return self.degree() == 0

    @property
    def n_edges(self) -> int:
        return int(self._mask.sum()) // 2

    def to_adjacency(self) -> np.ndarray:
        """Dense boolean adjacency matrix."""
        adj = np.zeros((self.n_nodes, self.n_nodes), dtype=bool)
        for j, nbrs in enumerate(self.adjacency):
            adj[j, list(nbrs)] = True
        return adj

    def neighbor_table(self) -> Tuple[jnp.ndarray, jnp.ndarray]:
        """Padded ``(n_nodes, max_degree)`` neighbor indices and mask.

        Padding entries point at node 0 and are masked out.
        """
        return jnp.asarray(self._table), jnp.asarray(self._mask)


# ------------------------------------------------------------------------------


GraphLike = Union[TaxonGraph, np.ndarray, Sequence[Tuple[int, int]], None]


def _is_square_nested(rows: list, n_nodes: int) -> bool:
    """Whether ``rows`` form a nested ``n_nodes x n_nodes`` sequence."""
    return len(rows) == n_nodes and all(
        hasattr(row, "__len__") and len(row) == n_nodes for row in rows
    )


def as_taxon_graph(graph: GraphLike, n_nodes: int) -> TaxonGraph:
    """Coerce ``graph`` into a :class:`TaxonGraph` with ``n_nodes`` nodes.

    Accepts an existing graph, a square adjacency matrix (an array, a sparse
    matrix, or a nested ``n_nodes x n_nodes`` sequence), a list of ``(j, l)``
    edge tuples, or ``None`` for a graph without edges. A nested sequence of
    shape ``(n_nodes, n_nodes)`` is always read as an adjacency matrix.
    """
    if graph is None:
        return TaxonGraph.empty(n_nodes)
    if isinstance(graph, TaxonGraph):
        result = graph
    elif hasattr(graph, "toarray") or isinstance(
        graph, (np.ndarray, jnp.ndarray)
    ):
        result = TaxonGraph.from_adjacency(graph)
    else:
        rows = list(graph)
        if _is_square_nested(rows, n_nodes):
            result = TaxonGraph.from_adjacency(np.asarray(rows))
        else:
            result = TaxonGraph.from_edges(n_nodes, rows)
    if result.n_nodes != n_nodes:
        raise ConfigurationError(
            f"Graph has {result.n_nodes} nodes but the fit has "
            f"{n_nodes} taxa"
        )
    return result
