"""Zero-Inflated Negative Binomial likelihood for taxon count data.

A cell ``(i, j)`` is either a structural zero, with probability ``gate_j``, or
a draw from a Negative Binomial with mean

    s_i * mu_j * exp(z_i * gamma_j * delta_j)

and dispersion ``phi_j`` (variance ``m + m^2 / phi``). The sampler works with
the data-augmented form: a latent indicator marks which zero cells are
structural, and only the remaining cells contribute a Negative Binomial term.
"""

import jax.numpy as jnp
import numpyro.distributions as dist

# Window for the log NB mean. Keeps exp() finite for extreme proposals.
LOG_MEAN_MIN = -25.0
LOG_MEAN_MAX = 25.0

# Zero-inflation probabilities are kept strictly inside (0, 1).
GATE_EPS = 1e-6

# ==============================================================================
# Mean and effect helpers
# ==============================================================================


def effective_effect(gamma: jnp.ndarray, delta: jnp.ndarray) -> jnp.ndarray:
    """Effect entering the likelihood: ``delta`` where included, else 0."""
    return jnp.where(gamma == 1, delta, 0.0)


def negative_binomial_log_mean(
    log_size: jnp.ndarray,
    log_mu: jnp.ndarray,
    effect: jnp.ndarray,
    group: jnp.ndarray,
) -> jnp.ndarray:
    """Log NB mean for every sample/taxon pair.

    Parameters
    ----------
    log_size : jnp.ndarray, shape (n_samples,)
        Log size factor of every sample.
    log_mu : jnp.ndarray, shape (n_taxa,)
        Log baseline mean of every taxon.
    effect : jnp.ndarray, shape (n_taxa,)
        Effective effect (``gamma * delta``).
    group : jnp.ndarray, shape (n_samples,)
        Group label (0 or 1).

    Returns
    -------
    jnp.ndarray, shape (n_samples, n_taxa)
        Clipped log mean.
    """
    log_mean = (
        log_size[:, None] + log_mu[None, :] + group[:, None] * effect[None, :]
    )
    return jnp.clip(log_mean, LOG_MEAN_MIN, LOG_MEAN_MAX)


# ==============================================================================
# Log densities
# ==============================================================================


def nb_log_prob(
    counts: jnp.ndarray, mean: jnp.ndarray, dispersion: jnp.ndarray
) -> jnp.ndarray:
    """Negative Binomial log pmf with mean/dispersion parameterization."""
    return dist.NegativeBinomial2(mean, dispersion).log_prob(counts)


# ------------------------------------------------------------------------------


def zinb_log_prob(
    counts: jnp.ndarray,
    mean: jnp.ndarray,
    dispersion: jnp.ndarray,
    gate: jnp.ndarray,
) -> jnp.ndarray:
    """Marginal ZINB log pmf (structural-zero indicator summed out)."""
    base_nb = dist.NegativeBinomial2(mean, dispersion)
    return dist.ZeroInflatedDistribution(base_nb, gate=gate).log_prob(counts)


# ------------------------------------------------------------------------------


def augmented_log_prob(
    counts: jnp.ndarray,
    mean: jnp.ndarray,
    dispersion: jnp.ndarray,
    gate: jnp.ndarray,
    structural: jnp.ndarray,
) -> jnp.ndarray:
    """Cell log-likelihood given the structural-zero indicator.

    Structural cells contribute ``log gate`` when the count is 0 and
    ``-inf`` otherwise; the remaining cells contribute
    ``log(1 - gate) + log NB(count)``.
    """
    log_gate = jnp.log(gate)
    structural_term = jnp.where(counts == 0, log_gate, -jnp.inf)
    sampling_term = jnp.log1p(-gate) + nb_log_prob(counts, mean, dispersion)
    return jnp.where(structural, structural_term, sampling_term)


# ------------------------------------------------------------------------------


def structural_zero_prob(
    counts: jnp.ndarray,
    mean: jnp.ndarray,
    dispersion: jnp.ndarray,
    gate: jnp.ndarray,
) -> jnp.ndarray:
    """Full-conditional probability that a cell is a structural zero.

    ``gate / (gate + (1 - gate) NB(0))`` for zero counts and exactly 0 for
    positive counts.
    """
    log_structural = jnp.log(gate)
    log_sampling = jnp.log1p(-gate) + nb_log_prob(
        jnp.zeros_like(counts), mean, dispersion
    )
    prob = jnp.exp(
        log_structural - jnp.logaddexp(log_structural, log_sampling)
    )
    return jnp.where(counts == 0, prob, 0.0)


# ==============================================================================
# Matrix-level helpers used by the state blocks
# ==============================================================================


def cell_log_likelihood(
    counts: jnp.ndarray,
    group: jnp.ndarray,
    log_size: jnp.ndarray,
    log_mu: jnp.ndarray,
    log_phi: jnp.ndarray,
    effect: jnp.ndarray,
    structural: jnp.ndarray,
) -> jnp.ndarray:
    """NB log-likelihood of every non-structural cell (0 for structural cells).

    This is the part of the augmented likelihood that depends on size
    factors, means, dispersions and effects; the ``log gate`` and
    ``log(1 - gate)`` terms are constant for all of those updates.

    Returns
    -------
    jnp.ndarray, shape (n_samples, n_taxa)
    """
    mean = jnp.exp(negative_binomial_log_mean(log_size, log_mu, effect, group))
    ll = nb_log_prob(counts, mean, jnp.exp(log_phi)[None, :])
    return jnp.where(structural, 0.0, ll)


# ------------------------------------------------------------------------------


def marginal_log_likelihood(
    counts: jnp.ndarray,
    group: jnp.ndarray,
    log_size: jnp.ndarray,
    log_mu: jnp.ndarray,
    log_phi: jnp.ndarray,
    effect: jnp.ndarray,
    gate: jnp.ndarray,
) -> jnp.ndarray:
    """Total marginal ZINB log-likelihood of the count matrix (a scalar)."""
    mean = jnp.exp(negative_binomial_log_mean(log_size, log_mu, effect, group))
    ll = zinb_log_prob(
        counts, mean, jnp.exp(log_phi)[None, :], gate[None, :]
    )
    return jnp.sum(ll)
