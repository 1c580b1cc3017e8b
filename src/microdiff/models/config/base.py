"""Base model configuration class using Pydantic."""

from pydantic import (
    BaseModel,
    Field,
    ConfigDict,
    computed_field,
    model_validator,
)

from .enums import PartitionInit
from .groups import PriorConfig, ProposalConfig

# ==============================================================================
# Model Configuration Class
# ==============================================================================


class ModelConfig(BaseModel):
    """
    ZINB-DPP-MRF model configuration.

    Parameters
    ----------
    use_dpp : bool
        Infer size factors under a Dirichlet-process prior. When False the
        caller's initial size factors are held fixed.
    use_mrf : bool
        Couple inclusion indicators through the taxon graph. When False every
        taxon gets the independent sparsity prior.
    aggregate : bool
        Fit every node of the taxonomic structure matrix on aggregated
        counts.
    infer_zero_inflation : bool
        Infer per-taxon zero-inflation probabilities. When False they stay at
        ``zero_inflation_prob``.
    zero_inflation_prob : float
        Fixed (or initial) zero-inflation probability.
    update_concentration : bool
        Resample the DP concentration every sweep.
    concentration : float
        Fixed (or initial) DP concentration.
    partition_init : PartitionInit
        One cluster per sample, or one shared cluster.
    priors : PriorConfig
        Prior hyperparameters.
    proposals : ProposalConfig
        Metropolis proposal settings.

    Notes
    -----
    Configuration objects are immutable; unrecognized parameters raise
    validation errors.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Toggles
    use_dpp: bool = Field(True, description="DPP size-factor normalization")
    use_mrf: bool = Field(True, description="MRF graph prior on inclusion")
    aggregate: bool = Field(False, description="Tree-aggregated fit")
    infer_zero_inflation: bool = Field(
        True, description="Infer zero-inflation probabilities"
    )
    update_concentration: bool = Field(
        True, description="Resample the DP concentration"
    )

    # Initial / fixed values
    zero_inflation_prob: float = Field(
        0.1, gt=0, lt=1, description="Fixed or initial zero inflation"
    )
    concentration: float = Field(
        1.0, gt=0, description="Fixed or initial DP concentration"
    )
    partition_init: PartitionInit = Field(
        PartitionInit.SINGLETONS, description="Initial partition"
    )
    size_factor_min: float = Field(
        1e-4, gt=0, description="Lower clip of size factors"
    )
    size_factor_max: float = Field(
        1e4, gt=0, description="Upper clip of size factors"
    )

    # Parameter groups
    priors: PriorConfig = Field(default_factory=PriorConfig)
    proposals: ProposalConfig = Field(default_factory=ProposalConfig)

    # --------------------------------------------------------------------------
    # Validation Methods
    # --------------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_size_factor_window(self) -> "ModelConfig":
        """The size-factor clip window must be non-empty."""
        if self.size_factor_min >= self.size_factor_max:
            raise ValueError(
                f"size_factor_min ({self.size_factor_min}) must be smaller "
                f"than size_factor_max ({self.size_factor_max})"
            )
        return self

    # --------------------------------------------------------------------------
    # Computed Fields
    # --------------------------------------------------------------------------

    @computed_field
    @property
    def mrf_smoothness(self) -> float:
        """Effective neighbor coupling (zero when the MRF is disabled)."""
        return self.priors.mrf_smoothness if self.use_mrf else 0.0
