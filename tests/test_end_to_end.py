"""End-to-end recovery of differentially abundant taxa on synthetic data.

These runs take several minutes and are skipped unless ``--run-slow`` is
given.
"""

import numpy as np
import pytest

import microdiff

SHIFTED = [0, 1, 2, 3, 4]
SEEDS = [0, 1, 2]


def _fit_scenario(simulate, seed):
    """24 samples (12/12), 50 taxa, taxa 0-4 strongly shifted."""
    counts, group = simulate(
        n_per_group=12,
        n_taxa=50,
        shifted=SHIFTED,
        log_fold=2.5,
        mean=50.0,
        dispersion=10.0,
        zero_prob=0.05,
        seed=seed,
    )
    return microdiff.fit(
        counts,
        group,
        n_iter=10_000,
        n_burnin=5_000,
        seed=seed,
        progress=False,
    )


@pytest.mark.slow
def test_recovers_shifted_taxa(simulate):
    """Shifted taxa are above 0.8 in every run, and every null taxon is
    below 0.2 in most runs."""
    null = np.setdiff1d(np.arange(50), SHIFTED)
    clean_runs = 0
    for seed in SEEDS:
        results = _fit_scenario(simulate, seed)
        ppi = results.ppi
        assert np.all(ppi[SHIFTED] > 0.8), (seed, ppi[SHIFTED])
        discovered = set(np.flatnonzero(results.discoveries(0.1)))
        assert set(SHIFTED) <= discovered
        clean_runs += bool(np.all(ppi[null] < 0.2))
    assert clean_runs >= len(SEEDS) - 1


@pytest.mark.slow
def test_graph_prior_runs_on_tree_graph(simulate, path_adjacency):
    counts, group = simulate(n_per_group=12, n_taxa=8, seed=5)
    results = microdiff.fit(
        counts,
        group,
        graph=path_adjacency,
        n_iter=2_000,
        n_burnin=1_000,
        n_chains=2,
        progress=False,
    )
    assert results.ppi[0] > 0.5
    assert np.all(np.isfinite(results.ppi))
