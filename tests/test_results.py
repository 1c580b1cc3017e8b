"""Tests for ``microdiff.mcmc.results`` built from hand-made chain summaries,
so no sampling is required."""

import numpy as np
import pandas as pd
import pytest

from microdiff.mcmc.results import (
    ChainResult,
    Excluded,
    Included,
    MCMCResults,
    inclusion_states,
)
from microdiff.models.config import MCMCConfig, ModelConfig


# --------------------------------------------------------------------------
# Helpers
# --------------------------------------------------------------------------


def _make_chain(ppi, mean_effect=None, seed=42):
    ppi = np.asarray(ppi, dtype=float)
    p = len(ppi)
    return ChainResult(
        ppi=ppi,
        final_gamma=(ppi > 0.5).astype(np.int32),
        final_delta=np.linspace(-1.0, 1.0, p),
        mean_effect=(
            np.asarray(mean_effect, dtype=float)
            if mean_effect is not None
            else np.ones(p)
        ),
        mean_size_factors=np.ones(4),
        mean_n_clusters=2.5,
        acceptance={"log_mu": 0.4, "inclusion": 0.1},
        n_kept=100,
        seed=seed,
    )


def _make_results(*chains):
    p = len(chains[0].ppi)
    return MCMCResults(
        chains=list(chains),
        taxon_names=tuple(f"taxon_{j}" for j in range(p)),
        sample_names=tuple(f"sample_{i}" for i in range(4)),
        model_config=ModelConfig(),
        mcmc_config=MCMCConfig(n_iter=200, n_burnin=100),
    )


# --------------------------------------------------------------------------
# Tagged inclusion view
# --------------------------------------------------------------------------


def test_inclusion_states_tags():
    states = inclusion_states(np.array([1, 0]), np.array([0.7, -0.2]))
    assert states == [Included(0.7), Excluded(-0.2)]
    assert isinstance(states[1], Excluded)
    assert states[1].last_effect == pytest.approx(-0.2)


def test_chain_inclusion_states():
    chain = _make_chain([0.9, 0.1, 0.6])
    states = chain.inclusion_states()
    assert [type(s) for s in states] == [Included, Excluded, Included]


# --------------------------------------------------------------------------
# Multi-chain summaries
# --------------------------------------------------------------------------


def test_ppi_averaged_over_chains():
    results = _make_results(
        _make_chain([0.9, 0.2, 0.0]), _make_chain([0.7, 0.4, 0.0])
    )
    np.testing.assert_allclose(results.ppi, [0.8, 0.3, 0.0])
    assert results.n_chains == 2
    assert results.n_taxa == 3


def test_mean_effect_weighted_by_ppi():
    results = _make_results(
        _make_chain([0.75, 0.0], mean_effect=[1.0, np.nan]),
        _make_chain([0.25, 0.0], mean_effect=[3.0, np.nan]),
    )
    effect = results.mean_effect
    assert effect[0] == pytest.approx(1.5)
    assert np.isnan(effect[1])


def test_discoveries():
    results = _make_results(_make_chain([0.95, 0.9, 0.5, 0.5, 0.1]))
    assert results.fdr_threshold(0.1) == pytest.approx(0.9)
    assert results.discovered_taxa(0.1) == ["taxon_0", "taxon_1"]
    assert results.expected_fdr(0.1) == pytest.approx(0.075)


def test_to_dataframe():
    results = _make_results(
        _make_chain([0.95, 0.1]), _make_chain([0.85, 0.3])
    )
    df = results.to_dataframe(target_fdr=0.2)
    assert isinstance(df, pd.DataFrame)
    assert list(df.index) == ["taxon_0", "taxon_1"]
    assert {"ppi", "mean_effect", "final_gamma", "ppi_sd", "discovery"} <= set(
        df.columns
    )
    assert df.loc["taxon_0", "discovery"]
    assert not df.loc["taxon_1", "discovery"]


def test_single_chain_dataframe_has_no_spread():
    df = _make_results(_make_chain([0.5])).to_dataframe(target_fdr=None)
    assert "ppi_sd" not in df.columns
    assert "discovery" not in df.columns


def test_acceptance_table_and_summary():
    results = _make_results(_make_chain([0.99, 0.2]), _make_chain([0.97, 0.1]))
    table = results.acceptance_table()
    assert list(table.columns) == ["chain_0", "chain_1"]
    assert table.loc["log_mu", "chain_1"] == pytest.approx(0.4)
    summary = results.summary(0.1)
    assert "2 chain(s)" in summary
    assert "taxon_0" in summary
