"""
Dispersion/mean block: random-walk Metropolis on ``log mu`` and ``log phi``.

Taxa are conditionally independent given the size factors, effects and
structural-zero indicators, so every taxon's proposal is evaluated against the
same snapshot and all accept/reject decisions are committed together.
"""

from typing import Tuple

import jax.numpy as jnp
from jax import random
import numpyro.distributions as dist

from ..core.input_processor import CountData
from ..models.config import ModelConfig
from ..models.likelihood import cell_log_likelihood, effective_effect
from .state import ChainState


def _column_log_likelihood(
    state: ChainState,
    data: CountData,
    log_mu: jnp.ndarray,
    log_phi: jnp.ndarray,
) -> jnp.ndarray:
    """Per-taxon NB log-likelihood, shape ``(n_taxa,)``."""
    ll = cell_log_likelihood(
        data.counts,
        data.group,
        state.log_size,
        log_mu,
        log_phi,
        effective_effect(state.gamma, state.delta),
        state.structural,
    )
    return jnp.sum(ll, axis=0)


# ------------------------------------------------------------------------------


def _metropolis_step(
    key: jnp.ndarray,
    current: jnp.ndarray,
    step: float,
    prior: dist.Distribution,
    log_likelihood,
) -> Tuple[jnp.ndarray, jnp.ndarray, jnp.ndarray]:
    """One vectorized random-walk step.

    Returns the new values, the acceptance mask and whether any proposal had
    a finite log-likelihood.
    """
    # Symmetric proposal, so the ratio is target only
    key_step, key_u = random.split(key)
    proposed = current + step * random.normal(key_step, current.shape)
    ll_current = log_likelihood(current)
    ll_proposed = log_likelihood(proposed)
    log_ratio = (
        ll_proposed
        - ll_current
        + prior.log_prob(proposed)
        - prior.log_prob(current)
    )
    # NaN and -inf ratios never accept
    log_u = jnp.log(random.uniform(key_u, current.shape))
    accept = jnp.isfinite(log_ratio) & (log_u < log_ratio)
    any_finite = jnp.any(jnp.isfinite(ll_proposed))
    return jnp.where(accept, proposed, current), accept, any_finite


# ------------------------------------------------------------------------------


def resample_dispersion_mean(
    state: ChainState,
    key: jnp.ndarray,
    data: CountData,
    model_config: ModelConfig,
) -> Tuple[ChainState, jnp.ndarray, jnp.ndarray, jnp.ndarray]:
    """Update ``log mu`` then ``log phi`` for every taxon.

    Parameters
    ----------
    state : ChainState
        Current chain state.
    key : jax.random.PRNGKey
        Random key for this block.
    data : CountData
        Observed data.
    model_config : ModelConfig
        Model configuration (priors and step sizes).

    Returns
    -------
    Tuple[ChainState, jnp.ndarray, jnp.ndarray, jnp.ndarray]
        Updated state, failure flag (no finite proposal in either step),
        number of accepted ``log mu`` and ``log phi`` proposals.
    """
    priors = model_config.priors
    proposals = model_config.proposals
    key_mu, key_phi = random.split(key)

    # log mu first, against the current dispersions
    log_mu, accept_mu, finite_mu = _metropolis_step(
        key_mu,
        state.log_mu,
        proposals.log_mu_step,
        dist.Normal(*priors.log_mu),
        lambda values: _column_log_likelihood(
            state, data, values, state.log_phi
        ),
    )
    state = state._replace(log_mu=log_mu)

    # Then log phi, against the updated means
    log_phi, accept_phi, finite_phi = _metropolis_step(
        key_phi,
        state.log_phi,
        proposals.log_phi_step,
        dist.Normal(*priors.log_phi),
        lambda values: _column_log_likelihood(
            state, data, state.log_mu, values
        ),
    )
    state = state._replace(log_phi=log_phi)

    # The block fails only when neither step had a finite proposal
    failed = ~(finite_mu | finite_phi)
    return (
        state,
        failed,
        jnp.sum(accept_mu).astype(jnp.int32),
        jnp.sum(accept_phi).astype(jnp.int32),
    )
