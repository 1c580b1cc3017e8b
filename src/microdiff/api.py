"""
Simplified API for MICRODIFF inference.

This module provides the user-facing entry point with sensible defaults and
flat kwargs instead of nested configuration objects.

Functions
---------
fit
    Validate the inputs, run the ZINB-DPP-MRF sampler and return its results.

Examples
--------
>>> import microdiff
>>>
>>> # Counts and a binary group label are all that is required
>>> results = microdiff.fit(counts, group, n_iter=2_000, n_burnin=1_000)
>>> results.discovered_taxa(target_fdr=0.1)
>>>
>>> # With a taxon graph and a few model toggles
>>> results = microdiff.fit(
...     counts,
...     group,
...     graph=adjacency,
...     use_dpp=False,
...     store_chain=True,
... )
>>>
>>> # Power users can still pass explicit config objects
>>> from microdiff.models.config import ModelConfig, MCMCConfig, PriorConfig
>>> model_config = ModelConfig(priors=PriorConfig(mrf_sparsity=-3.0))
>>> results = microdiff.fit(
...     counts,
...     group,
...     model_config=model_config,
...     mcmc_config=MCMCConfig(n_iter=20_000, n_burnin=10_000, n_chains=2),
... )
"""

import warnings
from typing import TYPE_CHECKING, Any, Dict, Optional, Sequence, Union

import numpy as np
import jax.numpy as jnp

if TYPE_CHECKING:
    from anndata import AnnData

from .core.graph import GraphLike
from .core.input_processor import build_count_data
from .models.config import (
    MCMCConfig,
    ModelConfig,
    PartitionInit,
    PriorConfig,
    ProposalConfig,
)
from .mcmc.inference_engine import MCMCInferenceEngine
from .mcmc.results import MCMCResults


def fit(
    counts: Union[np.ndarray, jnp.ndarray, "AnnData"],
    group: Optional[Sequence[int]] = None,
    size_factors: Optional[Sequence[float]] = None,
    *,
    # Taxon structure
    graph: GraphLike = None,
    structure_matrix: Optional[np.ndarray] = None,
    aggregate: bool = False,
    # Model toggles
    use_dpp: bool = True,
    use_mrf: bool = True,
    infer_zero_inflation: bool = True,
    partition_init: Union[str, PartitionInit] = PartitionInit.SINGLETONS,
    priors: Optional[Union[PriorConfig, Dict[str, Any]]] = None,
    proposals: Optional[Union[ProposalConfig, Dict[str, Any]]] = None,
    # Run options
    n_iter: int = 10_000,
    n_burnin: int = 5_000,
    n_chains: int = 1,
    thin: int = 1,
    store_chain: bool = False,
    seed: int = 42,
    progress: bool = True,
    # Labels and AnnData options
    taxon_names: Optional[Sequence[str]] = None,
    sample_names: Optional[Sequence[str]] = None,
    samples_axis: int = 0,
    layer: Optional[str] = None,
    group_key: Optional[str] = None,
    # Explicit configs override the flat kwargs above
    model_config: Optional[ModelConfig] = None,
    mcmc_config: Optional[MCMCConfig] = None,
) -> MCMCResults:
    """
    Fit the ZINB-DPP-MRF model and return posterior inclusion summaries.

    Every input is validated before the first sweep; invalid input raises
    :class:`~microdiff.core.errors.ConfigurationError` and invalid settings
    raise ``pydantic.ValidationError``.

    Parameters
    ----------
    counts : array-like or AnnData
        Non-negative integer counts, samples by taxa (see ``samples_axis``).
    group : array-like, optional
        Binary phenotype label per sample; group 1 carries the effect.
        May be omitted when ``group_key`` names an AnnData ``obs`` column.
    size_factors : array-like, optional
        Positive initial size factors. Default: median-of-ratios factors
        scaled to a geometric mean of 1.
    graph : TaxonGraph, adjacency matrix, edge list, or None
        Undirected taxon graph for the MRF prior. ``None`` means no edges.
    structure_matrix : array-like, optional
        ``(p_ext, p)`` binary map from taxonomic nodes to leaf taxa. Passed
        through to the results, and required when ``aggregate=True``.
    aggregate : bool, default=False
        Fit every structure-matrix node on its aggregated counts.
    use_dpp : bool, default=True
        Infer size factors under the Dirichlet-process prior; otherwise keep
        ``size_factors`` fixed.
    use_mrf : bool, default=True
        Couple inclusion indicators through ``graph``.
    infer_zero_inflation : bool, default=True
        Infer per-taxon zero-inflation probabilities.
    partition_init : str or PartitionInit, default="singletons"
        Initial normalization partition.
    priors, proposals : config or dict, optional
        Prior hyperparameters and proposal settings.
    n_iter : int, default=10_000
        Total sweeps per chain.
    n_burnin : int, default=5_000
        Sweeps discarded before accumulation starts. Must be below ``n_iter``.
    n_chains : int, default=1
        Independent chains; their PPIs are averaged.
    thin : int, default=1
        Keep every ``thin``-th sampling sweep in the stored history.
    store_chain : bool, default=False
        Keep the per-sweep history of the sampling phase.
    seed : int, default=42
        Base random seed.
    progress : bool, default=True
        Show a progress bar.
    taxon_names, sample_names : sequence of str, optional
        Labels used in result tables.
    samples_axis, layer, group_key
        Input layout options (see
        :meth:`~microdiff.core.InputProcessor.process_counts_data`).
    model_config : ModelConfig, optional
        Full model configuration; overrides the model kwargs.
    mcmc_config : MCMCConfig, optional
        Full run configuration; overrides the run kwargs.

    Returns
    -------
    MCMCResults

    Raises
    ------
    ConfigurationError
        On invalid input.
    SamplerError
        When a block fails to produce any finite proposal in a sweep.
    """
    # ==========================================================================
    # Step 1: Build or use the configs
    # ==========================================================================
    if model_config is None:
        if isinstance(priors, dict):
            priors = PriorConfig(**priors)
        if isinstance(proposals, dict):
            proposals = ProposalConfig(**proposals)
        model_config = ModelConfig(
            use_dpp=use_dpp,
            use_mrf=use_mrf,
            aggregate=aggregate,
            infer_zero_inflation=infer_zero_inflation,
            partition_init=partition_init,
            priors=priors or PriorConfig(),
            proposals=proposals or ProposalConfig(),
        )
    elif model_config.aggregate != aggregate and aggregate:
        warnings.warn(
            "aggregate=True is ignored because model_config.aggregate is "
            "False.",
            UserWarning,
            stacklevel=2,
        )

    if mcmc_config is None:
        mcmc_config = MCMCConfig(
            n_iter=n_iter,
            n_burnin=n_burnin,
            n_chains=n_chains,
            seed=seed,
            thin=thin,
            store_chain=store_chain,
            progress=progress,
        )

    # ==========================================================================
    # Step 2: Validate and assemble the data
    # ==========================================================================
    data = build_count_data(
        counts,
        group=group,
        size_factors=size_factors,
        graph=graph,
        structure_matrix=structure_matrix,
        aggregate=model_config.aggregate,
        taxon_names=taxon_names,
        sample_names=sample_names,
        samples_axis=samples_axis,
        layer=layer,
        group_key=group_key,
    )

    # ==========================================================================
    # Step 3: Run inference
    # ==========================================================================
    return MCMCInferenceEngine.run_inference(data, model_config, mcmc_config)
