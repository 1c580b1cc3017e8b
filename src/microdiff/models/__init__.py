"""Model configuration and the zero-inflated negative binomial likelihood."""

from .config import ModelConfig, PriorConfig, ProposalConfig, MCMCConfig
from . import likelihood

__all__ = [
    "ModelConfig",
    "PriorConfig",
    "ProposalConfig",
    "MCMCConfig",
    "likelihood",
]
