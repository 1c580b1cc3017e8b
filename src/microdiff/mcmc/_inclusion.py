"""
Inclusion/effect block: stochastic search over discriminating taxa under a
Markov-random-field prior.

The prior over the indicator field is

    log p(gamma) = d * sum_j gamma_j + f * sum_{(j, l) in E} gamma_j gamma_l

so the prior log-odds of including taxon ``j`` given the others is
``d + f * (number of included neighbors of j)``. An isolated taxon gets ``d``.

Effects follow a ``Normal(0, effect_scale)`` prior whether or not a taxon is
included (Kuo & Mallick, 1998). An excluded taxon's effect is inert in the
likelihood, so its full conditional is the prior itself; it is kept as the
warm start of the next add proposal.

Each visit to taxon ``j`` first draws a fresh effect for ``j`` if it is
excluded: a random-walk step of scale ``add_effect_scale`` around the stored
value, accepted against the effect prior. It then proposes either

* a **swap** with a uniformly chosen neighbor in the opposite state
  (probability ``swap_prob`` when such a neighbor exists), or
* an **add** (0 -> 1, at the freshly drawn effect) or a **delete**
  (1 -> 0, effect kept).

Add, delete and swap only flip indicators, so every pair of moves is exactly
reversible. After the search, the effects of included taxa get a random-walk
refresh.
"""

from typing import Tuple

import jax.numpy as jnp
from jax import lax, random
import numpyro.distributions as dist

from ..core.input_processor import CountData
from ..models.config import ModelConfig
from ..models.likelihood import cell_log_likelihood, effective_effect
from .state import ChainState

# ==============================================================================
# MRF prior
# ==============================================================================


def mrf_log_odds(
    gamma: jnp.ndarray,
    neighbors: jnp.ndarray,
    neighbor_mask: jnp.ndarray,
    sparsity: float,
    smoothness: float,
) -> jnp.ndarray:
    """Prior log-odds of inclusion of every taxon given all the others.

    Parameters
    ----------
    gamma : jnp.ndarray, shape (n_taxa,)
        Current inclusion indicators.
    neighbors : jnp.ndarray, shape (n_taxa, max_degree)
        Padded neighbor table.
    neighbor_mask : jnp.ndarray, shape (n_taxa, max_degree)
        True for real (non-padding) neighbor entries.
    sparsity : float
        Intercept ``d``.
    smoothness : float
        Coupling ``f`` per included neighbor.

    Returns
    -------
    jnp.ndarray, shape (n_taxa,)
    """
    active = jnp.sum(jnp.where(neighbor_mask, gamma[neighbors], 0), axis=-1)
    return sparsity + smoothness * active


# ------------------------------------------------------------------------------


def mrf_log_prior(
    gamma: jnp.ndarray,
    neighbors: jnp.ndarray,
    neighbor_mask: jnp.ndarray,
    sparsity: float,
    smoothness: float,
) -> jnp.ndarray:
    """Unnormalized MRF log prior of a full indicator field."""
    pairs = jnp.sum(
        jnp.where(neighbor_mask, gamma[:, None] * gamma[neighbors], 0)
    )
    # Every edge appears twice in the neighbor table
    return sparsity * jnp.sum(gamma) + smoothness * pairs / 2


# ------------------------------------------------------------------------------


def _flip_log_prior(j, gamma, neighbors, neighbor_mask, sparsity, smoothness):
    """Change in MRF log prior from flipping ``gamma[j]`` alone."""
    active = jnp.sum(jnp.where(neighbor_mask[j], gamma[neighbors[j]], 0))
    return (1 - 2 * gamma[j]) * (sparsity + smoothness * active)


# ==============================================================================
# Likelihood of a single taxon
# ==============================================================================


def _taxon_log_likelihood(
    state: ChainState,
    data: CountData,
    log_size: jnp.ndarray,
    j: jnp.ndarray,
    effect_j: jnp.ndarray,
) -> jnp.ndarray:
    """NB log-likelihood of column ``j`` with effect ``effect_j`` applied."""
    ll = cell_log_likelihood(
        data.counts[:, j][:, None],
        data.group,
        log_size,
        state.log_mu[j][None],
        state.log_phi[j][None],
        jnp.reshape(effect_j, (1,)),
        state.structural[:, j][:, None],
    )
    return jnp.sum(ll)


# ==============================================================================
# Stochastic search
# ==============================================================================


def search_inclusion(
    state: ChainState,
    key: jnp.ndarray,
    data: CountData,
    model_config: ModelConfig,
) -> Tuple[ChainState, jnp.ndarray, jnp.ndarray, jnp.ndarray]:
    """Run the add/delete/swap proposals of one sweep.

    Taxa are visited in a fresh random permutation (or, when
    ``n_inclusion_updates`` is set, drawn uniformly with replacement). Each
    visit is a fresh-effect draw for an excluded taxon followed by a
    Metropolis-Hastings step on the indicators; both leave the joint
    posterior of ``(gamma, delta)`` invariant. Proposals are decided one at a
    time because neighboring indicators condition on each other.

    Returns
    -------
    Tuple[ChainState, jnp.ndarray, jnp.ndarray, jnp.ndarray]
        Updated state, failure flag (no proposal had a finite log ratio),
        number of accepted and of proposed moves.
    """
    p = data.n_taxa
    priors = model_config.priors
    proposals = model_config.proposals
    sparsity = priors.mrf_sparsity
    smoothness = model_config.mrf_smoothness
    swap_prob = proposals.swap_prob
    add_scale = proposals.add_effect_scale
    effect_prior = dist.Normal(0.0, priors.effect_scale)
    neighbors, neighbor_mask = data.graph.neighbor_table()
    log_size = state.log_size

    # Visit order: a permutation, or uniform draws when a count is given
    n_updates = proposals.n_inclusion_updates or p
    key_order, key_loop = random.split(key)
    if n_updates == p:
        order = random.permutation(key_order, p)
    else:
        order = random.randint(key_order, (n_updates,), 0, p)

    def fresh_effect(k, gamma, delta, eps, log_u):
        """Random-walk draw of an excluded taxon's effect under its prior."""
        proposed = delta[k] + add_scale * eps
        log_ratio = effect_prior.log_prob(proposed) - effect_prior.log_prob(
            delta[k]
        )
        accept = (gamma[k] == 0) & (log_u < log_ratio)
        return delta.at[k].set(jnp.where(accept, proposed, delta[k]))

    def flip(k, gamma, delta):
        """Flip taxon k at its stored effect: new gamma and log target ratio."""
        adding = gamma[k] == 0
        ll_zero = _taxon_log_likelihood(state, data, log_size, k, 0.0)
        ll_effect = _taxon_log_likelihood(state, data, log_size, k, delta[k])
        log_lik = jnp.where(adding, ll_effect - ll_zero, ll_zero - ll_effect)
        log_prior = _flip_log_prior(
            k, gamma, neighbors, neighbor_mask, sparsity, smoothness
        )
        return gamma.at[k].set(1 - gamma[k]), log_lik + log_prior

    def n_opposite(j, gamma):
        return jnp.sum(neighbor_mask[j] & (gamma[neighbors[j]] != gamma[j]))

    def log_flip_choice(n_opp):
        # Probability of choosing add/delete rather than swap at a taxon
        return jnp.log(jnp.where(n_opp > 0, 1.0 - swap_prob, 1.0))

    def body(t, carry):
        gamma, delta, key, accepted, any_finite = carry
        key, key_move, key_partner, key_eps, key_fresh, key_u = random.split(
            key, 6
        )
        j = order[t]

        # Fresh effect for an excluded taxon, seeded by its stored value
        delta = fresh_effect(
            j,
            gamma,
            delta,
            random.normal(key_eps),
            jnp.log(random.uniform(key_fresh)),
        )

        # Choose between a swap and a plain add/delete
        opposite = neighbor_mask[j] & (gamma[neighbors[j]] != gamma[j])
        n_opp = jnp.sum(opposite)
        do_swap = (n_opp > 0) & (random.uniform(key_move) < swap_prob)
        partner = neighbors[j][
            random.categorical(
                key_partner, jnp.where(opposite, 0.0, -jnp.inf)
            )
        ]
        partner = jnp.where(do_swap, partner, j)

        # Flip j, then (for a swap) its partner against the updated field
        gamma_1, log_ratio_1 = flip(j, gamma, delta)
        gamma_2, log_ratio_2 = flip(partner, gamma_1, delta)
        new_gamma = jnp.where(do_swap, gamma_2, gamma_1)

        # Proposal ratio: partner choice for a swap, move choice otherwise
        n_opp_after = n_opposite(j, new_gamma)
        log_proposal = jnp.where(
            do_swap,
            jnp.log(n_opp.astype(jnp.float32))
            - jnp.log(jnp.maximum(n_opp_after, 1).astype(jnp.float32)),
            log_flip_choice(n_opp_after) - log_flip_choice(n_opp),
        )
        log_ratio = (
            log_ratio_1 + jnp.where(do_swap, log_ratio_2, 0.0) + log_proposal
        )

        # Non-finite ratios are always rejected
        finite = jnp.isfinite(log_ratio)
        accept = finite & (jnp.log(random.uniform(key_u)) < log_ratio)
        gamma = jnp.where(accept, new_gamma, gamma)
        return gamma, delta, key, accepted + accept, any_finite | finite

    init = (
        state.gamma,
        state.delta,
        key_loop,
        jnp.asarray(0, jnp.int32),
        jnp.asarray(False),
    )
    gamma, delta, _, accepted, any_finite = lax.fori_loop(
        0, n_updates, body, init
    )
    state = state._replace(gamma=gamma, delta=delta)
    return state, ~any_finite, accepted, jnp.asarray(n_updates, jnp.int32)


# ==============================================================================
# Effect refresh
# ==============================================================================


def refresh_effects(
    state: ChainState,
    key: jnp.ndarray,
    data: CountData,
    model_config: ModelConfig,
) -> Tuple[ChainState, jnp.ndarray, jnp.ndarray]:
    """Random-walk Metropolis step on the effect of every included taxon.

    Excluded taxa keep their stored effect untouched.

    Returns
    -------
    Tuple[ChainState, jnp.ndarray, jnp.ndarray]
        Updated state, number of accepted and of proposed effects.
    """
    key_step, key_u = random.split(key)
    prior = dist.Normal(0.0, model_config.priors.effect_scale)
    # Proposals for every taxon; only included ones can accept
    included = state.gamma == 1
    proposed = state.delta + model_config.proposals.effect_step * (
        random.normal(key_step, state.delta.shape)
    )

    def column_log_likelihood(delta):
        ll = cell_log_likelihood(
            data.counts,
            data.group,
            state.log_size,
            state.log_mu,
            state.log_phi,
            effective_effect(state.gamma, delta),
            state.structural,
        )
        return jnp.sum(ll, axis=0)

    # Excluded columns have a zero likelihood difference
    log_ratio = (
        column_log_likelihood(proposed)
        - column_log_likelihood(state.delta)
        + prior.log_prob(proposed)
        - prior.log_prob(state.delta)
    )
    log_u = jnp.log(random.uniform(key_u, state.delta.shape))
    accept = included & jnp.isfinite(log_ratio) & (log_u < log_ratio)
    state = state._replace(delta=jnp.where(accept, proposed, state.delta))
    return (
        state,
        jnp.sum(accept).astype(jnp.int32),
        jnp.sum(included).astype(jnp.int32),
    )


# ==============================================================================
# Block update
# ==============================================================================


def resample_inclusion(
    state: ChainState,
    key: jnp.ndarray,
    data: CountData,
    model_config: ModelConfig,
):
    """Stochastic search followed by the effect refresh.

    Returns
    -------
    tuple
        ``(state, failed, inclusion_accepted, inclusion_proposed,
        effect_accepted, effect_proposed)``.
    """
    key_search, key_effect = random.split(key)
    state, failed, inc_accepted, inc_proposed = search_inclusion(
        state, key_search, data, model_config
    )
    state, eff_accepted, eff_proposed = refresh_effects(
        state, key_effect, data, model_config
    )
    return (
        state,
        failed,
        inc_accepted,
        inc_proposed,
        eff_accepted,
        eff_proposed,
    )
