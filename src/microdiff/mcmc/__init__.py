"""
Markov Chain Monte Carlo (MCMC) module for microbiome differential abundance.

This module implements the Metropolis-within-Gibbs sampler of the ZINB model
with a Dirichlet-process prior on the size factors and a Markov-random-field
prior on the discriminating-taxon indicators.
"""

from ._inclusion import mrf_log_odds, mrf_log_prior
from .inference_engine import ChainRunner, MCMCInferenceEngine, build_sweep
from .results import (
    ChainResult,
    Excluded,
    Included,
    MCMCResults,
    TaxonInclusion,
    inclusion_states,
)
from .state import ChainState, SweepDiagnostics, init_state

__all__ = [
    "MCMCInferenceEngine",
    "ChainRunner",
    "build_sweep",
    "ChainState",
    "SweepDiagnostics",
    "init_state",
    "ChainResult",
    "MCMCResults",
    "Included",
    "Excluded",
    "TaxonInclusion",
    "inclusion_states",
    "mrf_log_odds",
    "mrf_log_prior",
]
