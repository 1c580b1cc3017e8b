"""
Results classes for MICRODIFF MCMC inference.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from ..core.graph import TaxonGraph
from ..models.config import MCMCConfig, ModelConfig
from ..de import bayesian_fdr_threshold, expected_fdr

# ------------------------------------------------------------------------------
# Tagged per-taxon inclusion view
# ------------------------------------------------------------------------------


@dataclass(frozen=True)
class Included:
    """Taxon flagged as discriminating, with its current effect."""

    effect: float


@dataclass(frozen=True)
class Excluded:
    """Taxon not flagged; ``last_effect`` is kept as a warm start."""

    last_effect: float


TaxonInclusion = Union[Included, Excluded]


def inclusion_states(
    gamma: np.ndarray, delta: np.ndarray
) -> List[TaxonInclusion]:
    """Tagged inclusion state of every taxon from indicator/effect arrays."""
    return [
        Included(float(d)) if g == 1 else Excluded(float(d))
        for g, d in zip(np.asarray(gamma), np.asarray(delta))
    ]


# ==============================================================================
# Single-chain result
# ==============================================================================


@dataclass
class ChainResult:
    """Summaries of one finalized chain.

    Attributes
    ----------
    ppi : np.ndarray, shape (n_taxa,)
        Fraction of sampling sweeps with ``gamma_j = 1``.
    final_gamma : np.ndarray, shape (n_taxa,)
        Inclusion indicators after the last sweep.
    final_delta : np.ndarray, shape (n_taxa,)
        Effects after the last sweep (stored values for excluded taxa).
    mean_effect : np.ndarray, shape (n_taxa,)
        Posterior mean effect over sweeps where the taxon was included
        (NaN if it never was).
    mean_size_factors : np.ndarray, shape (n_samples,)
        Posterior mean size factors.
    mean_n_clusters : float
        Average number of normalization clusters.
    acceptance : Dict[str, float]
        Acceptance rate of every Metropolis step over the sampling sweeps.
    n_kept : int
        Number of sampling sweeps.
    seed : int
        Seed the chain was started from.
    history : Dict[str, np.ndarray], optional
        Per-sweep snapshots (leading axis = stored sweep) when the chain was
        run with ``store_chain=True``.
    """

    ppi: np.ndarray
    final_gamma: np.ndarray
    final_delta: np.ndarray
    mean_effect: np.ndarray
    mean_size_factors: np.ndarray
    mean_n_clusters: float
    acceptance: Dict[str, float]
    n_kept: int
    seed: int
    history: Optional[Dict[str, np.ndarray]] = None

    def inclusion_states(self) -> List[TaxonInclusion]:
        """Tagged ``Included``/``Excluded`` view of the final sweep."""
        return inclusion_states(self.final_gamma, self.final_delta)


# ==============================================================================
# Multi-chain results
# ==============================================================================


@dataclass
class MCMCResults:
    """Results of a MICRODIFF fit.

    PPIs are averaged over chains; per-chain summaries are kept in
    ``chains``.
    """

    chains: List[ChainResult]
    taxon_names: Tuple[str, ...]
    sample_names: Tuple[str, ...]
    model_config: ModelConfig
    mcmc_config: MCMCConfig
    graph: Optional[TaxonGraph] = None
    structure_matrix: Optional[np.ndarray] = None
    aggregated: bool = False

    # --------------------------------------------------------------------------
    # Core summaries
    # --------------------------------------------------------------------------

    @property
    def n_chains(self) -> int:
        return len(self.chains)

    @property
    def n_taxa(self) -> int:
        return len(self.taxon_names)

    @property
    def ppi(self) -> np.ndarray:
        """Posterior probability of inclusion averaged over chains."""
        return np.mean([c.ppi for c in self.chains], axis=0)

    @property
    def ppi_by_chain(self) -> np.ndarray:
        """PPIs of every chain, shape ``(n_chains, n_taxa)``."""
        return np.stack([c.ppi for c in self.chains])

    @property
    def final_gamma(self) -> np.ndarray:
        """Inclusion flags of the last sweep of the first chain."""
        return self.chains[0].final_gamma

    @property
    def history(self) -> Optional[Dict[str, np.ndarray]]:
        """Stored history of the first chain (None unless stored)."""
        return self.chains[0].history

    @property
    def mean_effect(self) -> np.ndarray:
        """Posterior mean effect given inclusion, weighted across chains."""
        weights = np.stack([c.ppi for c in self.chains])
        effects = np.stack(
            [np.nan_to_num(c.mean_effect) for c in self.chains]
        )
        total = weights.sum(axis=0)
        with np.errstate(invalid="ignore", divide="ignore"):
            return np.where(
                total > 0, (weights * effects).sum(axis=0) / total, np.nan
            )

    @property
    def mean_size_factors(self) -> np.ndarray:
        return np.mean([c.mean_size_factors for c in self.chains], axis=0)

    # --------------------------------------------------------------------------
    # Discovery calls
    # --------------------------------------------------------------------------

    def fdr_threshold(self, target_fdr: float = 0.1) -> float:
        """PPI cutoff controlling the Bayesian FDR at ``target_fdr``."""
        return bayesian_fdr_threshold(self.ppi, target_fdr)

    def discoveries(self, target_fdr: float = 0.1) -> np.ndarray:
        """Boolean mask of taxa called discriminating at ``target_fdr``."""
        return self.ppi >= self.fdr_threshold(target_fdr)

    def discovered_taxa(self, target_fdr: float = 0.1) -> List[str]:
        """Names of the taxa called discriminating at ``target_fdr``."""
        mask = self.discoveries(target_fdr)
        return [name for name, hit in zip(self.taxon_names, mask) if hit]

    def expected_fdr(self, target_fdr: float = 0.1) -> float:
        """Expected FDR of the discovery set chosen at ``target_fdr``."""
        return expected_fdr(self.ppi, self.fdr_threshold(target_fdr))

    # --------------------------------------------------------------------------
    # Tables
    # --------------------------------------------------------------------------

    def to_dataframe(self, target_fdr: Optional[float] = 0.1) -> pd.DataFrame:
        """Per-taxon summary table.

        Columns: ``ppi``, ``mean_effect``, ``final_gamma`` and, when
        ``target_fdr`` is given, ``discovery``. Multi-chain fits also get
        ``ppi_sd`` (spread of the PPI across chains).
        """
        df = pd.DataFrame(
            {
                "ppi": self.ppi,
                "mean_effect": self.mean_effect,
                "final_gamma": self.final_gamma,
            },
            index=pd.Index(self.taxon_names, name="taxon"),
        )
        if self.n_chains > 1:
            df["ppi_sd"] = self.ppi_by_chain.std(axis=0)
        if target_fdr is not None:
            df["discovery"] = self.discoveries(target_fdr)
        return df

    def acceptance_table(self) -> pd.DataFrame:
        """Acceptance rates per Metropolis step (rows) and chain (columns)."""
        return pd.DataFrame(
            {f"chain_{k}": c.acceptance for k, c in enumerate(self.chains)}
        )

    def summary(self, target_fdr: float = 0.1) -> str:
        """Short text summary of the fit."""
        hits = self.discovered_taxa(target_fdr)
        lines = [
            f"MICRODIFF fit: {len(self.sample_names)} samples, "
            f"{self.n_taxa} taxa, {self.n_chains} chain(s)",
            f"sweeps: {self.mcmc_config.n_iter} "
            f"(burn-in {self.mcmc_config.n_burnin})",
            f"normalization clusters (mean): "
            f"{np.mean([c.mean_n_clusters for c in self.chains]):.2f}",
            f"discoveries at FDR {target_fdr}: {len(hits)}",
        ]
        lines.extend(f"  {name}" for name in hits)
        return "\n".join(lines)
