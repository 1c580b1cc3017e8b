"""
Input processing and validation for MICRODIFF fits.

Everything the sampler reads (counts, group labels, size factors, the taxon
graph, and the optional taxonomic structure matrix) is validated here, before
any sweep runs. Invalid inputs raise :class:`ConfigurationError`; nothing is
silently coerced.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

import numpy as np
import jax.numpy as jnp
import scipy.sparse

from .errors import ConfigurationError
from .graph import GraphLike, TaxonGraph, as_taxon_graph

# ==============================================================================
# CountData
# ==============================================================================


@dataclass(frozen=True)
class CountData:
    """Immutable observed data shared by every state block of a fit.

    Attributes
    ----------
    counts : jnp.ndarray, shape (n_samples, n_taxa)
        Non-negative integer counts (stored as float for the likelihood).
    group : jnp.ndarray, shape (n_samples,)
        Binary phenotype label; group 1 carries the differential effect.
    size_factors : jnp.ndarray, shape (n_samples,)
        Positive initial size factors.
    graph : TaxonGraph
        Adjacency over the ``n_taxa`` fitted nodes.
    taxon_names, sample_names : tuple of str
        Labels used in result tables.
    structure_matrix : np.ndarray or None
        Taxonomic structure matrix, passed through to the results.
    aggregated : bool
        Whether ``counts`` are tree-aggregated node counts.
    """

    counts: jnp.ndarray
    group: jnp.ndarray
    size_factors: jnp.ndarray
    graph: TaxonGraph
    taxon_names: Tuple[str, ...]
    sample_names: Tuple[str, ...]
    structure_matrix: Optional[np.ndarray] = None
    aggregated: bool = False

    @property
    def n_samples(self) -> int:
        return self.counts.shape[0]

    @property
    def n_taxa(self) -> int:
        return self.counts.shape[1]

    @property
    def zero_mask(self) -> jnp.ndarray:
        """Cells whose observed count is exactly zero."""
        return self.counts == 0


# ==============================================================================
# InputProcessor
# ==============================================================================


class InputProcessor:
    """Handles input processing and validation for MICRODIFF inference."""

    @staticmethod
    def process_counts_data(
        counts: Union[np.ndarray, jnp.ndarray, "AnnData"],
        samples_axis: int = 0,
        layer: Optional[str] = None,
        group_key: Optional[str] = None,
    ) -> Tuple[np.ndarray, Optional[np.ndarray], Optional["AnnData"]]:
        """
        Extract a dense samples-by-taxa count matrix from various inputs.

        Parameters
        ----------
        counts : array-like or AnnData
            Count matrix or AnnData object (samples in ``obs``, taxa in
            ``var``).
        samples_axis : int, default=0
            Axis holding samples for array input (0=rows, 1=columns).
        layer : str, optional
            AnnData layer holding the counts. If None, uses ``.X``.
        group_key : str, optional
            Column of ``adata.obs`` holding the group label.

        Returns
        -------
        Tuple[np.ndarray, Optional[np.ndarray], Optional[AnnData]]
            Count matrix (samples as rows), group labels read from the
            AnnData object (or None), and the original AnnData (or None).
        """
        group = None
        if hasattr(counts, "obs"):
            adata = counts
            count_data = adata.layers[layer] if layer else adata.X
            if scipy.sparse.issparse(count_data):
                count_data = count_data.toarray()
            count_data = np.asarray(count_data)
            if group_key is not None:
                if group_key not in adata.obs:
                    raise ConfigurationError(
                        f"Group column '{group_key}' not found in adata.obs"
                    )
                group = np.asarray(adata.obs[group_key])
        else:
            if scipy.sparse.issparse(counts):
                counts = counts.toarray()
            count_data = np.asarray(counts)
            adata = None
            if samples_axis == 1:
                count_data = count_data.T

        return count_data, group, adata

    # --------------------------------------------------------------------------

    @staticmethod
    def validate_counts(counts) -> np.ndarray:
        """Check that ``counts`` is a finite 2-D array of non-negative integers.

        Returns the counts as an ``int64`` array.
        """
        arr = np.asarray(counts)
        if arr.ndim != 2:
            raise ConfigurationError(
                f"Count matrix must be 2-D (samples x taxa), got "
                f"{arr.ndim} dimensions"
            )
        if arr.shape[0] == 0 or arr.shape[1] == 0:
            raise ConfigurationError(
                f"Count matrix must be non-empty, got shape {arr.shape}"
            )
        if arr.dtype == bool or not np.issubdtype(arr.dtype, np.number):
            raise ConfigurationError(
                f"Count matrix must be numeric, got dtype {arr.dtype}"
            )
        if not np.all(np.isfinite(arr)):
            raise ConfigurationError("Count matrix contains non-finite values")
        if np.any(arr < 0):
            bad = np.argwhere(arr < 0)[0].tolist()
            raise ConfigurationError(
                f"Count matrix contains negative entries (first at {bad})"
            )
        if not np.all(arr == np.floor(arr)):
            raise ConfigurationError(
                "Count matrix contains non-integer entries"
            )
        return arr.astype(np.int64)

    # --------------------------------------------------------------------------

    @staticmethod
    def validate_group(group, n_samples: int) -> np.ndarray:
        """Check that ``group`` is a length-``n_samples`` {0, 1} labelling.

        Boolean labels are accepted and mapped to {0, 1}.
        """
        arr = np.asarray(group)
        if arr.ndim != 1:
            raise ConfigurationError(
                f"Group label must be 1-D, got {arr.ndim} dimensions"
            )
        if arr.shape[0] != n_samples:
            raise ConfigurationError(
                f"Group label has length {arr.shape[0]} but the count "
                f"matrix has {n_samples} samples"
            )
        if arr.dtype == bool:
            arr = arr.astype(np.int64)
        if not np.issubdtype(arr.dtype, np.number) or not np.all(
            np.isin(arr, (0, 1))
        ):
            raise ConfigurationError(
                f"Group label must only contain 0 and 1, got values "
                f"{np.unique(arr).tolist()}"
            )
        if np.unique(arr).size < 2:
            raise ConfigurationError(
                "Group label must contain two distinct groups"
            )
        return arr.astype(np.int64)

    # --------------------------------------------------------------------------

    @staticmethod
    def validate_size_factors(size_factors, n_samples: int) -> np.ndarray:
        """Check that ``size_factors`` are finite and strictly positive."""
        arr = np.asarray(size_factors, dtype=float)
        if arr.shape != (n_samples,):
            raise ConfigurationError(
                f"Size factors must have shape ({n_samples},), got "
                f"{arr.shape}"
            )
        if not np.all(np.isfinite(arr)) or np.any(arr <= 0):
            raise ConfigurationError(
                "Size factors must be finite and strictly positive"
            )
        return arr

    # --------------------------------------------------------------------------

    @staticmethod
    def validate_structure_matrix(structure_matrix, n_taxa: int) -> np.ndarray:
        """Check that the structure matrix is a ``(p_ext, n_taxa)`` 0/1 matrix.

        Row ``k`` marks the leaf taxa that descend from taxonomic node ``k``.
        """
        if scipy.sparse.issparse(structure_matrix):
            structure_matrix = structure_matrix.toarray()
        arr = np.asarray(structure_matrix)
        if arr.ndim != 2 or arr.shape[1] != n_taxa:
            raise ConfigurationError(
                f"Structure matrix must have shape (n_nodes, {n_taxa}), "
                f"got {arr.shape}"
            )
        if not np.all(np.isin(arr, (0, 1))):
            raise ConfigurationError("Structure matrix must be binary")
        if np.any(arr.sum(axis=1) == 0):
            raise ConfigurationError(
                "Every structure-matrix row must cover at least one taxon"
            )
        return arr.astype(np.int64)

    # --------------------------------------------------------------------------

    @staticmethod
    def default_size_factors(counts: np.ndarray) -> np.ndarray:
        """Median-of-ratios size factors scaled to a geometric mean of one.

        Each taxon's reference is the geometric mean of its positive counts.
        A sample's factor is the median ratio of its positive counts to those
        references, so a shift confined to a minority of taxa leaves it
        unchanged. Samples without positive counts get the smallest factor
        of the others.
        """
        counts = np.asarray(counts, dtype=float)
        positive = counts > 0
        if not np.any(positive):
            raise ConfigurationError("Every sample has a zero total count")
        log_counts = np.log(np.where(positive, counts, 1.0))

        # Log geometric mean of every taxon over its positive entries
        n_positive = np.maximum(positive.sum(axis=0), 1)
        log_reference = (
            np.where(positive, log_counts, 0.0).sum(axis=0) / n_positive
        )

        # Median log ratio of every sample that has a positive count
        log_ratio = np.where(positive, log_counts - log_reference, np.nan)
        has_counts = positive.any(axis=1)
        log_factors = np.empty(counts.shape[0])
        log_factors[has_counts] = np.nanmedian(log_ratio[has_counts], axis=1)
        log_factors[~has_counts] = log_factors[has_counts].min()
        return np.exp(log_factors - log_factors.mean())


# ==============================================================================
# Public builder
# ==============================================================================


def build_count_data(
    counts,
    group=None,
    size_factors=None,
    graph: GraphLike = None,
    structure_matrix=None,
    aggregate: bool = False,
    taxon_names: Optional[Sequence[str]] = None,
    sample_names: Optional[Sequence[str]] = None,
    samples_axis: int = 0,
    layer: Optional[str] = None,
    group_key: Optional[str] = None,
) -> CountData:
    """Validate all inputs of a fit and assemble a :class:`CountData`.

    Parameters
    ----------
    counts : array-like or AnnData
        Samples-by-taxa count matrix.
    group : array-like, optional
        Binary group labels. Required unless ``group_key`` names an
        AnnData ``obs`` column.
    size_factors : array-like, optional
        Initial positive size factors; default median-of-ratios factors.
    graph : TaxonGraph, adjacency matrix, edge list, or None
        Taxon adjacency. Must cover the structure-matrix nodes when
        ``aggregate=True`` and the leaf taxa otherwise.
    structure_matrix : array-like, optional
        ``(p_ext, p)`` binary matrix mapping taxonomic nodes to leaf taxa.
    aggregate : bool, default=False
        Fit every structure-matrix node on aggregated counts.
    taxon_names, sample_names : sequence of str, optional
        Labels for results; taken from AnnData when available.
    samples_axis, layer, group_key
        See :meth:`InputProcessor.process_counts_data`.

    Returns
    -------
    CountData

    Raises
    ------
    ConfigurationError
        On any invalid input.
    """
    count_data, adata_group, adata = InputProcessor.process_counts_data(
        counts, samples_axis=samples_axis, layer=layer, group_key=group_key
    )
    leaf_counts = InputProcessor.validate_counts(count_data)
    n_samples, n_leaves = leaf_counts.shape

    if group is None:
        group = adata_group
    if group is None:
        raise ConfigurationError(
            "A group label is required (pass `group` or `group_key`)"
        )
    group = InputProcessor.validate_group(group, n_samples)

    if size_factors is None:
        size_factors = InputProcessor.default_size_factors(leaf_counts)
    size_factors = InputProcessor.validate_size_factors(
        size_factors, n_samples
    )

    if adata is not None:
        if taxon_names is None:
            taxon_names = [str(v) for v in adata.var_names]
        if sample_names is None:
            sample_names = [str(v) for v in adata.obs_names]

    structure = None
    if structure_matrix is not None:
        structure = InputProcessor.validate_structure_matrix(
            structure_matrix, n_leaves
        )

    if aggregate:
        if structure is None:
            raise ConfigurationError(
                "aggregate=True requires a structure matrix"
            )
        fitted_counts = leaf_counts @ structure.T
        leaf_names = (
            list(taxon_names)
            if taxon_names is not None
            else [f"taxon_{j}" for j in range(n_leaves)]
        )
        # Node names join the leaf names they cover
        names = [
            "|".join(leaf_names[j] for j in np.flatnonzero(row))
            for row in structure
        ]
    else:
        fitted_counts = leaf_counts
        names = (
            [str(t) for t in taxon_names]
            if taxon_names is not None
            else [f"taxon_{j}" for j in range(n_leaves)]
        )

    n_nodes = fitted_counts.shape[1]
    if len(names) != n_nodes:
        raise ConfigurationError(
            f"Got {len(names)} taxon names for {n_nodes} taxa"
        )
    if sample_names is None:
        sample_names = [f"sample_{i}" for i in range(n_samples)]
    if len(sample_names) != n_samples:
        raise ConfigurationError(
            f"Got {len(sample_names)} sample names for {n_samples} samples"
        )

    taxon_graph = as_taxon_graph(graph, n_nodes)

    return CountData(
        counts=jnp.asarray(fitted_counts, dtype=jnp.float32),
        group=jnp.asarray(group, dtype=jnp.float32),
        size_factors=jnp.asarray(size_factors, dtype=jnp.float32),
        graph=taxon_graph,
        taxon_names=tuple(names),
        sample_names=tuple(str(s) for s in sample_names),
        structure_matrix=structure,
        aggregated=aggregate,
    )
