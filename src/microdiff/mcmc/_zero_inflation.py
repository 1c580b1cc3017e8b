"""
Zero-inflation block.

Every zero cell is labelled structural or sampling by a Gibbs draw from its
full conditional; positive cells are always sampling cells. When zero-inflation
probabilities are inferred, each taxon's probability then gets its conjugate
Beta update from the number of structural cells in its column.
"""

from typing import Tuple

import jax.numpy as jnp
from jax import random

from ..core.input_processor import CountData
from ..models.config import ModelConfig
from ..models.likelihood import (
    GATE_EPS,
    effective_effect,
    negative_binomial_log_mean,
    structural_zero_prob,
)
from .state import ChainState


def resample_zero_inflation(
    state: ChainState,
    key: jnp.ndarray,
    data: CountData,
    model_config: ModelConfig,
) -> Tuple[ChainState, jnp.ndarray]:
    """Gibbs update of the structural-zero indicators and gates.

    Returns
    -------
    Tuple[ChainState, jnp.ndarray]
        Updated state and the number of structural cells.
    """
    key_cells, key_gate = random.split(key)

    # Full conditional of every cell under the current NB means
    mean = jnp.exp(
        negative_binomial_log_mean(
            state.log_size,
            state.log_mu,
            effective_effect(state.gamma, state.delta),
            data.group,
        )
    )
    prob = structural_zero_prob(
        data.counts,
        mean,
        jnp.exp(state.log_phi)[None, :],
        state.gate[None, :],
    )
    # Positive cells are masked out, so they are never structural
    u = random.uniform(key_cells, data.counts.shape)
    structural = data.zero_mask & (u < prob)
    state = state._replace(structural=structural)

    if model_config.infer_zero_inflation:
        # Conjugate Beta update from the structural count of every column
        a, b = model_config.priors.gate
        n_structural = jnp.sum(structural, axis=0)
        gate = random.beta(
            key_gate, a + n_structural, b + data.n_samples - n_structural
        )
        state = state._replace(
            gate=jnp.clip(gate, GATE_EPS, 1.0 - GATE_EPS).astype(jnp.float32)
        )

    return state, jnp.sum(structural).astype(jnp.int32)
