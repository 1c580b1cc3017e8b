"""
Inference engine for MCMC.

This module compiles one full Gibbs/Metropolis sweep over the four state
blocks and drives it through the stages of a chain: burn-in, sampling
(where statistics are accumulated) and finalization.
"""

import warnings
from typing import Dict, List, Optional

import numpy as np
import jax
import jax.numpy as jnp
from jax import random
from rich.progress import (
    Progress,
    TextColumn,
    BarColumn,
    TaskProgressColumn,
    TimeRemainingColumn,
    MofNCompleteColumn,
)
from rich import print as rich_print

from ..core.errors import SamplerError
from ..core.input_processor import CountData
from ..models.config import ChainStage, MCMCConfig, ModelConfig, StateBlock
from ..models.likelihood import effective_effect, marginal_log_likelihood
from ._dispersion import resample_dispersion_mean
from ._inclusion import resample_inclusion
from ._normalization import resample_normalization
from ._zero_inflation import resample_zero_inflation
from .results import ChainResult, MCMCResults
from .state import ChainState, SweepDiagnostics, clip_log_size, init_state

# Acceptance rates below this value trigger a warning after the fit
LOW_ACCEPTANCE = 0.01

# ==============================================================================
# Sweep
# ==============================================================================


def build_sweep(data: CountData, model_config: ModelConfig):
    """Compile one full sweep over every state block.

    Blocks run in a fixed order: normalization, dispersion/mean,
    inclusion/effect, zero inflation. The returned function maps
    ``(state, key)`` to ``(state, SweepDiagnostics)`` and is compiled with
    ``jax.jit``; the data and configuration are baked in as constants.

    Parameters
    ----------
    data : CountData
        Observed data.
    model_config : ModelConfig
        Model configuration.

    Returns
    -------
    Callable[[ChainState, jax.random.PRNGKey], Tuple[ChainState,
    SweepDiagnostics]]
    """
    # Location of the DP base measure on the log size factors
    base_loc = jnp.mean(clip_log_size(jnp.log(data.size_factors), model_config))

    def sweep(state: ChainState, key: jnp.ndarray):
        key_norm, key_disp, key_inc, key_zero = random.split(key, 4)

        state, norm_failed, size_acc, size_prop = resample_normalization(
            state, key_norm, data, model_config, base_loc
        )
        state, disp_failed, mu_acc, phi_acc = resample_dispersion_mean(
            state, key_disp, data, model_config
        )
        (
            state,
            inc_failed,
            inc_acc,
            inc_prop,
            eff_acc,
            eff_prop,
        ) = resample_inclusion(state, key_inc, data, model_config)
        state, _ = resample_zero_inflation(state, key_zero, data, model_config)

        log_likelihood = marginal_log_likelihood(
            data.counts,
            data.group,
            state.log_size,
            state.log_mu,
            state.log_phi,
            effective_effect(state.gamma, state.delta),
            state.gate,
        )
        diagnostics = SweepDiagnostics(
            normalization_failed=norm_failed,
            dispersion_failed=disp_failed,
            inclusion_failed=inc_failed,
            log_size_accepted=size_acc,
            log_size_proposed=size_prop,
            log_mu_accepted=mu_acc,
            log_phi_accepted=phi_acc,
            effect_accepted=eff_acc,
            effect_proposed=eff_prop,
            inclusion_accepted=inc_acc,
            inclusion_proposed=inc_prop,
            log_likelihood=log_likelihood,
        )
        return state, diagnostics

    return jax.jit(sweep)


# ------------------------------------------------------------------------------


@jax.jit
def _accumulate(sums: Dict[str, jnp.ndarray], state: ChainState):
    """Add one sampling sweep to the running sums."""
    included = state.gamma.astype(jnp.float32)
    return {
        "gamma": sums["gamma"] + included,
        "effect": sums["effect"] + included * state.delta,
        "size_factors": sums["size_factors"] + jnp.exp(state.log_size),
        "n_clusters": sums["n_clusters"] + state.n_clusters,
    }


# ==============================================================================
# Single chain driver
# ==============================================================================


class ChainRunner:
    """Drive one chain through its stages.

    The stage decides what a sweep does beyond updating the state: sweeps
    accumulate PPI, effect and size-factor sums (and history, when stored)
    only while the chain is in ``ChainStage.SAMPLING``. Stage changes are
    checked against ``_TRANSITIONS``.

    Parameters
    ----------
    data : CountData
        Observed data (read-only, may be shared with other chains).
    model_config : ModelConfig
        Model configuration.
    mcmc_config : MCMCConfig
        Run configuration.
    chain : int, default=0
        Chain index, folded into the base seed.
    sweep_fn : callable, optional
        Compiled sweep from :func:`build_sweep`. Built here if not given so
        that several chains can share one compilation.
    """

    _TRANSITIONS = {
        ChainStage.INITIALIZING: (ChainStage.BURN_IN,),
        ChainStage.BURN_IN: (ChainStage.SAMPLING,),
        ChainStage.SAMPLING: (ChainStage.FINALIZED,),
        ChainStage.FINALIZED: (),
    }

    # Failure flag of every block that can abort a fit, in update order
    _FAILURE_FLAGS = (
        ("normalization_failed", StateBlock.NORMALIZATION),
        ("dispersion_failed", StateBlock.DISPERSION),
        ("inclusion_failed", StateBlock.INCLUSION),
    )

    def __init__(
        self,
        data: CountData,
        model_config: ModelConfig,
        mcmc_config: MCMCConfig,
        chain: int = 0,
        sweep_fn=None,
    ):
        self.data = data
        self.model_config = model_config
        self.mcmc_config = mcmc_config
        self.chain = chain
        self.sweep_fn = sweep_fn or build_sweep(data, model_config)

        self.stage = ChainStage.INITIALIZING
        self.chain_key = random.fold_in(random.PRNGKey(mcmc_config.seed), chain)
        self.state = init_state(data, model_config)

        self._sums = {
            "gamma": jnp.zeros(data.n_taxa, jnp.float32),
            "effect": jnp.zeros(data.n_taxa, jnp.float32),
            "size_factors": jnp.zeros(data.n_samples, jnp.float32),
            "n_clusters": jnp.asarray(0, jnp.int32),
        }
        self._accepted = {
            "log_size": 0,
            "log_mu": 0,
            "log_phi": 0,
            "effect": 0,
            "inclusion": 0,
        }
        self._proposed = dict.fromkeys(self._accepted, 0)
        self._history: Optional[Dict[str, List[np.ndarray]]] = None
        self.n_kept = 0

    # --------------------------------------------------------------------------
    # Stage handling
    # --------------------------------------------------------------------------

    def transition(self, stage: ChainStage):
        """Move the chain to ``stage``; raise on a transition not allowed."""
        if stage not in self._TRANSITIONS[self.stage]:
            raise RuntimeError(
                f"Illegal chain transition {self.stage.value} -> "
                f"{stage.value}"
            )
        self.stage = stage

    @property
    def accumulating(self) -> bool:
        """Whether sweeps in the current stage contribute to summaries."""
        return self.stage == ChainStage.SAMPLING

    # --------------------------------------------------------------------------
    # Sweeps
    # --------------------------------------------------------------------------

    def step(self, iteration: int):
        """Run sweep ``iteration`` and record it according to the stage.

        Raises
        ------
        SamplerError
            If a block produced no finite proposal. The chain state is left
            at the last completed sweep.
        """
        if self.stage not in (ChainStage.BURN_IN, ChainStage.SAMPLING):
            raise RuntimeError(
                f"Cannot run a sweep in stage {self.stage.value}"
            )
        # Keys depend only on the chain and the sweep index
        key = random.fold_in(self.chain_key, iteration)
        state, diagnostics = self.sweep_fn(self.state, key)
        diagnostics = jax.device_get(diagnostics)

        # Abort before committing a sweep that had a failed block
        for flag, block in self._FAILURE_FLAGS:
            if bool(getattr(diagnostics, flag)):
                raise SamplerError(block.value, iteration, self.chain)

        self.state = state
        if self.accumulating:
            self._record(diagnostics)

    # --------------------------------------------------------------------------

    def _record(self, diagnostics: SweepDiagnostics):
        p = self.data.n_taxa
        self._sums = _accumulate(self._sums, self.state)

        self._accepted["log_size"] += int(diagnostics.log_size_accepted)
        self._proposed["log_size"] += int(diagnostics.log_size_proposed)
        self._accepted["log_mu"] += int(diagnostics.log_mu_accepted)
        self._proposed["log_mu"] += p
        self._accepted["log_phi"] += int(diagnostics.log_phi_accepted)
        self._proposed["log_phi"] += p
        self._accepted["effect"] += int(diagnostics.effect_accepted)
        self._proposed["effect"] += int(diagnostics.effect_proposed)
        self._accepted["inclusion"] += int(diagnostics.inclusion_accepted)
        self._proposed["inclusion"] += int(diagnostics.inclusion_proposed)

        # Thinned history of the sampling sweeps
        if (
            self.mcmc_config.store_chain
            and self.n_kept % self.mcmc_config.thin == 0
        ):
            self._store(float(diagnostics.log_likelihood))
        self.n_kept += 1

    # --------------------------------------------------------------------------

    def _store(self, log_likelihood: float):
        state = jax.device_get(self.state)
        snapshot = {
            "gamma": state.gamma,
            "delta": state.delta,
            "log_mu": state.log_mu,
            "log_phi": state.log_phi,
            "gate": state.gate,
            "size_factors": np.exp(state.cluster_log_size[state.cluster_of]),
            "cluster_of": state.cluster_of,
            "n_clusters": np.sum(state.cluster_count > 0),
            "concentration": state.concentration,
            "log_likelihood": np.float32(log_likelihood),
        }
        if self._history is None:
            self._history = {name: [] for name in snapshot}
        for name, value in snapshot.items():
            self._history[name].append(np.asarray(value))

    # --------------------------------------------------------------------------
    # Full run
    # --------------------------------------------------------------------------

    def run(self, on_sweep=None) -> ChainResult:
        """Run every sweep of the chain and return its summaries.

        Parameters
        ----------
        on_sweep : callable, optional
            Called with the chain after every sweep (used for progress
            reporting).
        """
        self.transition(ChainStage.BURN_IN)
        for iteration in range(self.mcmc_config.n_iter):
            if iteration == self.mcmc_config.n_burnin:
                self.transition(ChainStage.SAMPLING)
            self.step(iteration)
            if on_sweep is not None:
                on_sweep(self)
        return self.finalize()

    # --------------------------------------------------------------------------

    def finalize(self) -> ChainResult:
        """Close the chain and turn the running sums into summaries."""
        self.transition(ChainStage.FINALIZED)
        sums = jax.device_get(self._sums)
        n_kept = max(self.n_kept, 1)
        gamma_sum = np.asarray(sums["gamma"], dtype=np.float64)

        with np.errstate(invalid="ignore", divide="ignore"):
            mean_effect = np.where(
                gamma_sum > 0, np.asarray(sums["effect"]) / gamma_sum, np.nan
            )
        acceptance = {
            name: (
                self._accepted[name] / self._proposed[name]
                if self._proposed[name] > 0
                else float("nan")
            )
            for name in self._accepted
        }
        history = None
        if self._history is not None:
            history = {
                name: np.stack(values) for name, values in self._history.items()
            }

        state = jax.device_get(self.state)
        return ChainResult(
            ppi=gamma_sum / n_kept,
            final_gamma=np.asarray(state.gamma),
            final_delta=np.asarray(state.delta),
            mean_effect=mean_effect,
            mean_size_factors=np.asarray(sums["size_factors"]) / n_kept,
            mean_n_clusters=float(sums["n_clusters"]) / n_kept,
            acceptance=acceptance,
            n_kept=self.n_kept,
            seed=self.mcmc_config.seed,
            history=history,
        )


# ==============================================================================
# Engine
# ==============================================================================


class MCMCInferenceEngine:
    """Handles MCMC inference execution."""

    @staticmethod
    def run_inference(
        data: CountData,
        model_config: ModelConfig,
        mcmc_config: MCMCConfig,
    ) -> MCMCResults:
        """Run every chain of a fit and collect the results.

        Chains run one after another and share the compiled sweep and the
        read-only data; nothing else is shared between them.

        Parameters
        ----------
        data : CountData
            Validated observed data.
        model_config : ModelConfig
            Model configuration.
        mcmc_config : MCMCConfig
            Run configuration.

        Returns
        -------
        MCMCResults
            Per-chain summaries plus chain-averaged PPIs.

        Raises
        ------
        SamplerError
            If any chain aborts. No partial results are returned.
        """
        empty = np.flatnonzero(np.all(np.asarray(data.counts) == 0, axis=0))
        if empty.size > 0:
            names = ", ".join(data.taxon_names[j] for j in empty[:5])
            warnings.warn(
                f"{empty.size} taxa have no positive counts ({names}"
                f"{', ...' if empty.size > 5 else ''}); their inclusion is "
                "driven by the prior alone.",
                UserWarning,
                stacklevel=2,
            )

        sweep_fn = build_sweep(data, model_config)
        chains = []

        progress_ctx = Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            MofNCompleteColumn(),
            TimeRemainingColumn(),
            TextColumn("{task.fields[stage]}"),
            disable=not mcmc_config.progress,
        )
        with progress_ctx as pbar:
            for chain in range(mcmc_config.n_chains):
                task = pbar.add_task(
                    f"Chain {chain}",
                    total=mcmc_config.n_iter,
                    stage=ChainStage.INITIALIZING.value,
                )

                def on_sweep(runner, task=task):
                    pbar.update(task, advance=1, stage=runner.stage.value)

                runner = ChainRunner(
                    data, model_config, mcmc_config, chain, sweep_fn
                )
                result = runner.run(on_sweep=on_sweep)
                pbar.update(task, stage=runner.stage.value)
                chains.append(result)

        for chain, result in enumerate(chains):
            low = [
                name
                for name, rate in result.acceptance.items()
                if np.isfinite(rate) and rate < LOW_ACCEPTANCE
            ]
            if low:
                warnings.warn(
                    f"Chain {chain}: acceptance rate below {LOW_ACCEPTANCE} "
                    f"for {', '.join(low)}; consider smaller proposal steps.",
                    UserWarning,
                    stacklevel=2,
                )

        if mcmc_config.progress:
            rich_print(
                f"[bold cyan]Finished {mcmc_config.n_chains} chain(s)"
                f"[/bold cyan] ({mcmc_config.n_iter - mcmc_config.n_burnin} "
                "sampling sweeps each)"
            )

        return MCMCResults(
            chains=chains,
            taxon_names=data.taxon_names,
            sample_names=data.sample_names,
            model_config=model_config,
            mcmc_config=mcmc_config,
            graph=data.graph,
            structure_matrix=data.structure_matrix,
            aggregated=data.aggregated,
        )
