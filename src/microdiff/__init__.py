"""
MICRODIFF: Bayesian differential abundance for microbiome counts

A Markov chain Monte Carlo method for identifying the taxa whose abundance
differs between two phenotype groups, using a zero-inflated negative binomial
model with a Dirichlet-process prior on sample size factors and a
Markov-random-field prior over the taxon graph.
"""

import warnings

# Suppress FutureWarnings from scanpy/anndata about deprecated __version__ usage
warnings.filterwarnings(
    "ignore",
    message=".*__version__ is deprecated.*",
    category=FutureWarning,
)

# Import core components for advanced usage
from .core import (
    ConfigurationError,
    CountData,
    InputProcessor,
    SamplerError,
    TaxonGraph,
    build_count_data,
)
from .models.config import MCMCConfig, ModelConfig, PriorConfig, ProposalConfig

from . import data_loader

# Import main inference function
from .api import fit

# Import results and error control
from .mcmc import Excluded, Included, MCMCResults
from .de import bayesian_fdr_threshold, call_discoveries, expected_fdr

__version__ = "0.1.0"

__all__ = [
    # Core components
    "InputProcessor",
    "CountData",
    "TaxonGraph",
    "build_count_data",
    # Errors
    "ConfigurationError",
    "SamplerError",
    # Configuration classes
    "ModelConfig",
    "MCMCConfig",
    "PriorConfig",
    "ProposalConfig",
    # Main inference function
    "fit",
    # Results classes
    "MCMCResults",
    "Included",
    "Excluded",
    # Error control
    "bayesian_fdr_threshold",
    "call_discoveries",
    "expected_fdr",
    # Other modules
    "data_loader",
]
