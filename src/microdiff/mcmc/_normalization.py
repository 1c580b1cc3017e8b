"""
Dirichlet-process normalization block.

Size factors are shared within clusters of samples. Every sweep

1. reassigns each sample with Neal's (2000) Algorithm 8: existing clusters are
   weighted by their occupancy, ``n_auxiliary`` fresh clusters drawn from the
   base measure by ``concentration / n_auxiliary``, and each by the likelihood
   of the sample's row of counts;
2. refreshes the size factor of every live cluster with a random-walk
   Metropolis step on the log scale;
3. optionally resamples the concentration with the auxiliary-variable Gibbs
   step of Escobar & West (1995).
"""

from typing import Tuple

import jax
import jax.numpy as jnp
from jax import lax, random
import numpyro.distributions as dist

from ..core.input_processor import CountData
from ..models.config import ModelConfig
from ..models.likelihood import cell_log_likelihood, effective_effect
from .state import ChainState, clip_log_size

# ==============================================================================
# Row likelihood
# ==============================================================================


def _row_log_likelihood(
    data: CountData,
    state: ChainState,
    effect: jnp.ndarray,
    i: jnp.ndarray,
    candidates: jnp.ndarray,
) -> jnp.ndarray:
    """Log-likelihood of sample ``i``'s counts under each candidate log size.

    Returns
    -------
    jnp.ndarray, shape (n_candidates,)
    """
    n_candidates = candidates.shape[0]
    ll = cell_log_likelihood(
        data.counts[i][None, :],
        jnp.broadcast_to(data.group[i], (n_candidates,)),
        candidates,
        state.log_mu,
        state.log_phi,
        effect,
        state.structural[i][None, :],
    )
    return jnp.sum(ll, axis=1)


# ==============================================================================
# Cluster reassignment
# ==============================================================================


def reassign_samples(
    state: ChainState,
    key: jnp.ndarray,
    data: CountData,
    model_config: ModelConfig,
    base_loc: jnp.ndarray,
) -> Tuple[ChainState, jnp.ndarray]:
    """Reassign every sample to a normalization cluster.

    Parameters
    ----------
    state : ChainState
        Current chain state.
    key : jax.random.PRNGKey
        Random key for this block.
    data : CountData
        Observed data.
    model_config : ModelConfig
        Model configuration.
    base_loc : jnp.ndarray
        Location of the base measure on log size factors.

    Returns
    -------
    Tuple[ChainState, jnp.ndarray]
        Updated state, and a flag that is True when some sample had no
        candidate with a finite weight (it then keeps its cluster).
    """
    n = data.n_samples
    m = model_config.proposals.n_auxiliary
    base_scale = model_config.priors.size_factor_scale
    effect = effective_effect(state.gamma, state.delta)
    log_new_weight = jnp.log(state.concentration / m)

    def body(i, carry):
        cluster_of, cluster_log_size, cluster_count, failed, key = carry
        key, key_aux, key_pick = random.split(key, 3)

        # Remove sample i from its cluster
        old = cluster_of[i]
        count = cluster_count.at[old].add(-1)
        emptied = count[old] == 0

        # Auxiliary clusters; an emptied cluster keeps its value as the first
        aux = base_loc + base_scale * random.normal(key_aux, (m,))
        aux = aux.at[0].set(jnp.where(emptied, cluster_log_size[old], aux[0]))
        aux = clip_log_size(aux, model_config)
        candidates = jnp.concatenate([cluster_log_size, aux])

        # CRP weights: occupancy for live clusters, alpha / m for auxiliaries
        log_weight = jnp.concatenate(
            [
                jnp.where(
                    count > 0,
                    jnp.log(jnp.maximum(count, 1).astype(jnp.float32)),
                    -jnp.inf,
                ),
                jnp.full(m, log_new_weight),
            ]
        )
        # Add the likelihood of the row under every candidate size factor
        logits = log_weight + _row_log_likelihood(
            data, state, effect, i, candidates
        )
        logits = jnp.where(jnp.isfinite(logits), logits, -jnp.inf)
        ok = jnp.any(jnp.isfinite(logits))

        # Draw one outcome; candidates past the arena are new clusters
        pick = random.categorical(key_pick, logits)
        is_new = pick >= n
        # A free slot always exists once sample i has been removed
        slot = jnp.where(is_new, jnp.argmin(count), pick)
        slot = jnp.where(ok, slot, old)
        value = jnp.where(ok & is_new, candidates[pick], cluster_log_size[slot])

        # Commit the assignment and restore the occupancy count
        cluster_log_size = cluster_log_size.at[slot].set(value)
        cluster_count = count.at[slot].add(1)
        cluster_of = cluster_of.at[i].set(slot)
        return cluster_of, cluster_log_size, cluster_count, failed | ~ok, key

    init = (
        state.cluster_of,
        state.cluster_log_size,
        state.cluster_count,
        jnp.asarray(False),
        key,
    )
    cluster_of, cluster_log_size, cluster_count, failed, _ = lax.fori_loop(
        0, n, body, init
    )
    state = state._replace(
        cluster_of=cluster_of,
        cluster_log_size=cluster_log_size,
        cluster_count=cluster_count,
    )
    return state, failed


# ==============================================================================
# Cluster size-factor refresh
# ==============================================================================


def refresh_cluster_sizes(
    state: ChainState,
    key: jnp.ndarray,
    data: CountData,
    model_config: ModelConfig,
    base_loc: jnp.ndarray,
) -> Tuple[ChainState, jnp.ndarray, jnp.ndarray]:
    """Random-walk Metropolis step on the log size factor of every cluster.

    All clusters are proposed at once; cluster log-likelihood differences are
    summed over members with ``segment_sum``. Free slots are never updated.

    Returns
    -------
    Tuple[ChainState, jnp.ndarray, jnp.ndarray]
        Updated state, number of accepted and of proposed (live) clusters.
    """
    n = data.n_samples
    key_step, key_u = random.split(key)
    step = model_config.proposals.log_size_step
    effect = effective_effect(state.gamma, state.delta)
    prior = dist.Normal(base_loc, model_config.priors.size_factor_scale)

    # Propose every slot at once; free slots are masked out below
    current = state.cluster_log_size
    proposed = clip_log_size(
        current + step * random.normal(key_step, (n,)), model_config
    )

    def member_log_likelihood(values):
        ll = cell_log_likelihood(
            data.counts,
            data.group,
            values[state.cluster_of],
            state.log_mu,
            state.log_phi,
            effect,
            state.structural,
        )
        return jnp.sum(ll, axis=1)

    # Per-cluster likelihood change, summed over members
    delta_ll = jax.ops.segment_sum(
        member_log_likelihood(proposed) - member_log_likelihood(current),
        state.cluster_of,
        num_segments=n,
    )
    log_ratio = delta_ll + prior.log_prob(proposed) - prior.log_prob(current)

    # Only live clusters can accept
    live = state.cluster_count > 0
    log_u = jnp.log(random.uniform(key_u, (n,)))
    accept = live & jnp.isfinite(log_ratio) & (log_u < log_ratio)

    state = state._replace(
        cluster_log_size=jnp.where(accept, proposed, current)
    )
    return state, jnp.sum(accept), jnp.sum(live)


# ==============================================================================
# Concentration update
# ==============================================================================


def resample_concentration(
    concentration: jnp.ndarray,
    n_clusters: jnp.ndarray,
    n_samples: int,
    key: jnp.ndarray,
    prior: Tuple[float, float],
) -> jnp.ndarray:
    """Escobar & West auxiliary-variable update of the DP concentration.

    Parameters
    ----------
    concentration : jnp.ndarray
        Current concentration.
    n_clusters : jnp.ndarray
        Number of live clusters.
    n_samples : int
        Number of samples.
    key : jax.random.PRNGKey
        Random key.
    prior : Tuple[float, float]
        Gamma ``(shape, rate)`` prior on the concentration.

    Returns
    -------
    jnp.ndarray
        New concentration.
    """
    a, b = prior
    key_eta, key_mix, key_gamma = random.split(key, 3)
    # Auxiliary eta | alpha ~ Beta(alpha + 1, n)
    eta = random.beta(key_eta, concentration + 1.0, n_samples)
    rate = b - jnp.log(eta)
    k = n_clusters.astype(jnp.float32)

    # Mixture weight of the Gamma(a + k, rate) component
    odds = (a + k - 1.0) / (n_samples * rate)
    use_upper = random.uniform(key_mix) < odds / (1.0 + odds)
    shape = jnp.where(use_upper, a + k, a + k - 1.0)
    return random.gamma(key_gamma, shape) / rate


# ==============================================================================
# Block update
# ==============================================================================


def resample_normalization(
    state: ChainState,
    key: jnp.ndarray,
    data: CountData,
    model_config: ModelConfig,
    base_loc: jnp.ndarray,
) -> Tuple[ChainState, jnp.ndarray, jnp.ndarray, jnp.ndarray]:
    """Full normalization update for one sweep.

    With ``use_dpp=False`` the state is returned unchanged.

    Returns
    -------
    Tuple[ChainState, jnp.ndarray, jnp.ndarray, jnp.ndarray]
        Updated state, failure flag, accepted and proposed cluster refreshes.
    """
    if not model_config.use_dpp:
        zero = jnp.asarray(0, jnp.int32)
        return state, jnp.asarray(False), zero, zero

    key_assign, key_refresh, key_conc = random.split(key, 3)
    state, failed = reassign_samples(
        state, key_assign, data, model_config, base_loc
    )
    state, accepted, proposed = refresh_cluster_sizes(
        state, key_refresh, data, model_config, base_loc
    )
    if model_config.update_concentration:
        concentration = resample_concentration(
            state.concentration,
            state.n_clusters,
            data.n_samples,
            key_conc,
            model_config.priors.concentration,
        )
        state = state._replace(concentration=concentration)
    return state, failed, accepted.astype(jnp.int32), proposed.astype(jnp.int32)
