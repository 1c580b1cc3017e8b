"""
Chain state of the ZINB-DPP-MRF sampler.

All state lives in a single ``NamedTuple`` of JAX arrays so that one sweep can
be compiled with ``jax.jit`` and the whole state can be copied, stored or
vmapped without any pointer structure.

The normalization partition is an arena of ``n_samples`` cluster slots. A slot
is live while its occupancy is positive; ``cluster_of`` maps every sample to a
slot. Because a partition of ``n`` samples never has more than ``n`` clusters,
the arena never needs to grow.
"""

from typing import NamedTuple

import jax.numpy as jnp

from ..core.input_processor import CountData
from ..models.config import ModelConfig, PartitionInit

# ==============================================================================
# State containers
# ==============================================================================


class ChainState(NamedTuple):
    """Complete state of one chain.

    Attributes
    ----------
    cluster_of : jnp.ndarray, int32, shape (n_samples,)
        Arena slot of every sample.
    cluster_log_size : jnp.ndarray, shape (n_samples,)
        Log size factor of every slot (stale for free slots).
    cluster_count : jnp.ndarray, int32, shape (n_samples,)
        Occupancy of every slot; 0 marks a free slot.
    concentration : jnp.ndarray, scalar
        Dirichlet-process concentration.
    log_mu : jnp.ndarray, shape (n_taxa,)
        Log baseline means.
    log_phi : jnp.ndarray, shape (n_taxa,)
        Log NB dispersions.
    gamma : jnp.ndarray, int32, shape (n_taxa,)
        Inclusion indicators.
    delta : jnp.ndarray, shape (n_taxa,)
        Effects. Inert while ``gamma == 0`` but kept as the last value.
    gate : jnp.ndarray, shape (n_taxa,)
        Zero-inflation probabilities.
    structural : jnp.ndarray, bool, shape (n_samples, n_taxa)
        Structural-zero indicators; always False for positive counts.
    """

    cluster_of: jnp.ndarray
    cluster_log_size: jnp.ndarray
    cluster_count: jnp.ndarray
    concentration: jnp.ndarray
    log_mu: jnp.ndarray
    log_phi: jnp.ndarray
    gamma: jnp.ndarray
    delta: jnp.ndarray
    gate: jnp.ndarray
    structural: jnp.ndarray

    # --------------------------------------------------------------------------

    @property
    def log_size(self) -> jnp.ndarray:
        """Log size factor of every sample."""
        return self.cluster_log_size[self.cluster_of]

    @property
    def n_clusters(self) -> jnp.ndarray:
        """Number of live normalization clusters."""
        return jnp.sum(self.cluster_count > 0)


# ------------------------------------------------------------------------------


class SweepDiagnostics(NamedTuple):
    """Per-sweep acceptance counts and failure flags.

    Acceptance entries count accepted proposals; ``*_proposed`` entries count
    proposals that were actually made. ``*_failed`` flags are True when no
    proposal of that block had a finite log-likelihood.
    """

    normalization_failed: jnp.ndarray
    dispersion_failed: jnp.ndarray
    inclusion_failed: jnp.ndarray
    log_size_accepted: jnp.ndarray
    log_size_proposed: jnp.ndarray
    log_mu_accepted: jnp.ndarray
    log_phi_accepted: jnp.ndarray
    effect_accepted: jnp.ndarray
    effect_proposed: jnp.ndarray
    inclusion_accepted: jnp.ndarray
    inclusion_proposed: jnp.ndarray
    log_likelihood: jnp.ndarray


# ==============================================================================
# Initialization
# ==============================================================================


def clip_log_size(log_size: jnp.ndarray, model_config: ModelConfig):
    """Clip log size factors to the configured window."""
    return jnp.clip(
        log_size,
        jnp.log(model_config.size_factor_min),
        jnp.log(model_config.size_factor_max),
    )


# ------------------------------------------------------------------------------


def init_state(data: CountData, model_config: ModelConfig) -> ChainState:
    """Initial chain state: moderate defaults and the configured partition.

    Baseline means start at the size-factor-normalized column means,
    dispersions at the prior location, every taxon excluded with its stored
    effect at the empirical log fold change between the groups (the warm
    start of its first add proposal), and no structural zeros. With
    ``use_dpp=False`` every sample keeps its own fixed size factor regardless
    of ``partition_init``.
    """
    n, p = data.n_samples, data.n_taxa
    log_size = clip_log_size(jnp.log(data.size_factors), model_config)

    shared = (
        model_config.use_dpp
        and model_config.partition_init == PartitionInit.SHARED
    )
    if shared:
        cluster_of = jnp.zeros(n, dtype=jnp.int32)
        cluster_log_size = jnp.full(n, jnp.mean(log_size))
        cluster_count = jnp.zeros(n, dtype=jnp.int32).at[0].set(n)
    else:
        cluster_of = jnp.arange(n, dtype=jnp.int32)
        cluster_log_size = log_size
        cluster_count = jnp.ones(n, dtype=jnp.int32)

    normalized = data.counts / data.size_factors[:, None]
    log_mu = jnp.log(jnp.mean(normalized, axis=0) + 0.1)
    in_group = data.group[:, None]
    mean_1 = jnp.sum(normalized * in_group, axis=0) / jnp.sum(data.group)
    mean_0 = jnp.sum(normalized * (1 - in_group), axis=0) / jnp.sum(
        1 - data.group
    )
    delta = jnp.log(mean_1 + 0.5) - jnp.log(mean_0 + 0.5)

    return ChainState(
        cluster_of=cluster_of,
        cluster_log_size=cluster_log_size.astype(jnp.float32),
        cluster_count=cluster_count,
        concentration=jnp.asarray(model_config.concentration, jnp.float32),
        log_mu=log_mu.astype(jnp.float32),
        log_phi=jnp.full(p, model_config.priors.log_phi[0], jnp.float32),
        gamma=jnp.zeros(p, dtype=jnp.int32),
        delta=delta.astype(jnp.float32),
        gate=jnp.full(p, model_config.zero_inflation_prob, jnp.float32),
        structural=jnp.zeros((n, p), dtype=bool),
    )
