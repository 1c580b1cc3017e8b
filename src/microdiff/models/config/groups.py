"""
Parameter group definitions for model configuration using Pydantic for type
safety and validation.

Priors, proposal scales and chain settings are kept in separate, immutable
groups so each can be validated on its own and shared across fits.
"""

from typing import Optional, Tuple
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict

# ==============================================================================
# Prior Configuration Group
# ==============================================================================


class PriorConfig(BaseModel):
    """Prior hyperparameters with automatic validation.

    Location/scale pairs are ``(loc, scale)`` of a Normal on the log scale;
    Beta and Gamma pairs are ``(a, b)`` with ``b`` a rate.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    log_mu: Tuple[float, float] = Field(
        (0.0, 10.0), description="Normal prior on log baseline mean"
    )
    log_phi: Tuple[float, float] = Field(
        (0.0, 3.0), description="Normal prior on log NB dispersion"
    )
    effect_scale: float = Field(
        2.0, gt=0, description="Normal(0, scale) prior on effects"
    )
    gate: Tuple[float, float] = Field(
        (1.0, 9.0), description="Beta prior on zero-inflation probability"
    )
    size_factor_scale: float = Field(
        1.0,
        gt=0,
        description="Scale of the DP base measure on log size factors",
    )
    concentration: Tuple[float, float] = Field(
        (1.0, 1.0), description="Gamma prior on DP concentration"
    )
    mrf_sparsity: float = Field(
        -4.0, description="MRF intercept d (log-odds of isolated inclusion)"
    )
    mrf_smoothness: float = Field(
        0.5, ge=0, description="MRF coupling f per included neighbor"
    )

    # --------------------------------------------------------------------------
    # Validation Methods
    # --------------------------------------------------------------------------

    @field_validator("log_mu", "log_phi")
    @classmethod
    def validate_normal_params(
        cls, v: Tuple[float, float]
    ) -> Tuple[float, float]:
        """Validate that the scale of a Normal prior is positive."""
        if v[1] <= 0:
            raise ValueError(f"Prior scale must be positive, got {v}")
        return v

    # --------------------------------------------------------------------------

    @field_validator("gate", "concentration")
    @classmethod
    def validate_positive_params(
        cls, v: Tuple[float, float]
    ) -> Tuple[float, float]:
        """Validate that both shape parameters are positive."""
        if any(x <= 0 for x in v):
            raise ValueError(f"Prior parameters must be positive, got {v}")
        return v


# ==============================================================================
# Proposal Configuration Group
# ==============================================================================


class ProposalConfig(BaseModel):
    """Random-walk scales and move settings of the Metropolis steps."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    log_mu_step: float = Field(0.3, gt=0, description="Step on log mu")
    log_phi_step: float = Field(0.5, gt=0, description="Step on log phi")
    effect_step: float = Field(
        0.3, gt=0, description="Step of the effect refresh for included taxa"
    )
    add_effect_scale: float = Field(
        1.0,
        gt=0,
        description="Step of the fresh-effect draw around the stored effect",
    )
    log_size_step: float = Field(
        0.2, gt=0, description="Step on cluster log size factors"
    )
    swap_prob: float = Field(
        0.5, ge=0, le=1, description="Probability of proposing a swap"
    )
    n_auxiliary: int = Field(
        3, ge=1, description="Auxiliary clusters per DP reassignment"
    )
    n_inclusion_updates: Optional[int] = Field(
        None,
        gt=0,
        description="Inclusion proposals per sweep (default: one per taxon)",
    )


# ==============================================================================
# MCMC Configuration Group
# ==============================================================================


class MCMCConfig(BaseModel):
    """Chain length, seeding and storage settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    n_iter: int = Field(10_000, gt=0, description="Total number of sweeps")
    n_burnin: int = Field(5_000, ge=0, description="Burn-in sweeps")
    n_chains: int = Field(1, gt=0, description="Independent chains")
    seed: int = Field(42, description="Base random seed")
    thin: int = Field(1, gt=0, description="Keep every thin-th sweep")
    store_chain: bool = Field(
        False, description="Store the full per-sweep history"
    )
    progress: bool = Field(True, description="Show a progress bar")

    @model_validator(mode="after")
    def validate_burnin(self) -> "MCMCConfig":
        """Burn-in must leave at least one sampling sweep."""
        if self.n_burnin >= self.n_iter:
            raise ValueError(
                f"n_burnin ({self.n_burnin}) must be smaller than n_iter "
                f"({self.n_iter})"
            )
        return self

    @property
    def n_sampling(self) -> int:
        """Number of post-burn-in sweeps."""
        return self.n_iter - self.n_burnin
