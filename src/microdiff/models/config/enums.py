"""
Enums and constants for model configuration.

Enums restrict configuration values to a fixed set of choices so invalid
options are rejected when a configuration is built rather than deep inside a
running chain.
"""

from enum import Enum

# ==============================================================================
# Enums for model configuration
# ==============================================================================


class PartitionInit(str, Enum):
    """Initial partition of samples into normalization clusters."""

    SINGLETONS = "singletons"
    SHARED = "shared"


# ------------------------------------------------------------------------------


class ChainStage(str, Enum):
    """Stages of a single MCMC chain."""

    INITIALIZING = "initializing"
    BURN_IN = "burn_in"
    SAMPLING = "sampling"
    FINALIZED = "finalized"


# ------------------------------------------------------------------------------


class StateBlock(str, Enum):
    """State blocks updated in every sweep, in update order."""

    NORMALIZATION = "normalization"
    DISPERSION = "dispersion"
    INCLUSION = "inclusion"
    ZERO_INFLATION = "zero_inflation"
