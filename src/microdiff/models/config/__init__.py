"""
Configuration system for MICRODIFF models.

Uses Pydantic for validation and enums for type safety. All configs are
immutable.
"""

from .enums import PartitionInit, ChainStage, StateBlock
from .groups import PriorConfig, ProposalConfig, MCMCConfig
from .base import ModelConfig

__all__ = [
    # Config types
    "ModelConfig",
    # Parameter groups
    "PriorConfig",
    "ProposalConfig",
    "MCMCConfig",
    # Enums
    "PartitionInit",
    "ChainStage",
    "StateBlock",
]
