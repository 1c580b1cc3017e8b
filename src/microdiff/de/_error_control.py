"""Bayesian false-discovery control over posterior inclusion probabilities.

Given the posterior probability of inclusion (PPI) of every taxon, the
expected proportion of false discoveries among the taxa called
discriminating is the average of ``1 - PPI`` over the called set. This module
finds the PPI cutoff that makes that set as large as possible while keeping
the expected proportion at or below a target level.
"""

from typing import Optional, Sequence

import numpy as np
import pandas as pd

# All accepted values for the ``sort_by`` parameter in
# ``format_inclusion_table``.
_VALID_SORT_COLUMNS = {"ppi", "mean_effect", "taxon"}


# --------------------------------------------------------------------------
# Expected false discovery rate of a discovery set
# --------------------------------------------------------------------------


def expected_fdr(ppi, threshold: float) -> float:
    """Expected proportion of false discoveries among taxa with PPI at or
    above ``threshold``.

    Parameters
    ----------
    ppi : array_like
        Posterior inclusion probabilities.
    threshold : float
        PPI cutoff; taxa with ``ppi >= threshold`` are called.

    Returns
    -------
    float
        ``mean(1 - ppi)`` over the called taxa, or ``0.0`` when nothing is
        called.

    Examples
    --------
    >>> expected_fdr(np.array([0.95, 0.9, 0.5]), threshold=0.9)
    0.075
    """
    ppi = np.asarray(ppi, dtype=np.float64)
    called = ppi >= threshold
    n_called = np.sum(called)

    # No discoveries => nothing can be false
    if n_called == 0:
        return 0.0

    return float(np.sum(np.where(called, 1.0 - ppi, 0.0)) / n_called)


# --------------------------------------------------------------------------
# Find the PPI threshold that controls the Bayesian FDR
# --------------------------------------------------------------------------


def bayesian_fdr_threshold(ppi, target_fdr: float = 0.1) -> float:
    """PPI cutoff selecting the largest set of taxa whose expected FDR is at
    most ``target_fdr``.

    PPIs are sorted in descending order; selecting the top ``k`` taxa has
    expected FDR ``mean(1 - sorted_ppi[:k])``, computed for every ``k`` with
    one cumulative sum. Only ``k`` values that do not split a run of tied
    PPIs are admissible, so taxa tied at the cutoff are selected together.

    Parameters
    ----------
    ppi : array_like
        Posterior inclusion probabilities, each in ``[0, 1]``.
    target_fdr : float, default=0.1
        Target expected false discovery rate.

    Returns
    -------
    float
        Threshold such that taxa with ``ppi >= threshold`` are discoveries.
        ``inf`` when no non-empty set meets the target.

    Examples
    --------
    >>> bayesian_fdr_threshold(np.array([0.95, 0.9, 0.5, 0.5, 0.1]), 0.1)
    0.9
    """
    sorted_ppi = np.sort(np.asarray(ppi, dtype=np.float64))[::-1]
    D = len(sorted_ppi)
    if D == 0:
        return float("inf")

    # fdrs[i] is the expected FDR when selecting taxa 0 .. i
    fdrs = np.cumsum(1.0 - sorted_ppi) / np.arange(1, D + 1)

    # A set may end at i only if the next PPI is strictly smaller
    boundary = np.append(sorted_ppi[:-1] > sorted_ppi[1:], True)
    valid = boundary & (fdrs <= target_fdr)
    if not np.any(valid):
        return float("inf")

    k_star = int(np.max(np.where(valid, np.arange(D), -1)))
    return float(sorted_ppi[k_star])


# --------------------------------------------------------------------------
# Discovery calls
# --------------------------------------------------------------------------


def call_discoveries(ppi, target_fdr: float = 0.1) -> np.ndarray:
    """Boolean mask of taxa called discriminating at ``target_fdr``."""
    ppi = np.asarray(ppi)
    return ppi >= bayesian_fdr_threshold(ppi, target_fdr)


# --------------------------------------------------------------------------
# Format inclusion results as a readable table
# --------------------------------------------------------------------------


def format_inclusion_table(
    ppi,
    taxon_names: Optional[Sequence[str]] = None,
    mean_effect=None,
    target_fdr: Optional[float] = 0.1,
    sort_by: str = "ppi",
    top_n: Optional[int] = None,
) -> str:
    """Format per-taxon inclusion results as a readable table.

    Parameters
    ----------
    ppi : array_like
        Posterior inclusion probabilities.
    taxon_names : sequence of str, optional
        Taxon labels. Defaults to ``taxon_0``, ``taxon_1``, ...
    mean_effect : array_like, optional
        Posterior mean effect given inclusion.
    target_fdr : float, optional
        When given, adds a ``discovery`` column.
    sort_by : str, default='ppi'
        Column to sort by: ``'ppi'`` (descending), ``'mean_effect'``
        (descending absolute value) or ``'taxon'``.
    top_n : int, optional
        Number of rows to display. If ``None``, shows all taxa.

    Returns
    -------
    str
        Formatted table string.
    """
    if sort_by not in _VALID_SORT_COLUMNS:
        raise ValueError(
            f"Invalid sort_by='{sort_by}'. "
            f"Valid options: {sorted(_VALID_SORT_COLUMNS)}"
        )

    ppi = np.asarray(ppi)
    if taxon_names is None:
        taxon_names = [f"taxon_{j}" for j in range(len(ppi))]

    df = pd.DataFrame({"taxon": list(taxon_names), "ppi": ppi})
    if mean_effect is not None:
        df["mean_effect"] = np.asarray(mean_effect)
    elif sort_by == "mean_effect":
        raise ValueError("sort_by='mean_effect' requires mean_effect")
    if target_fdr is not None:
        df["discovery"] = call_discoveries(ppi, target_fdr)

    if sort_by == "ppi":
        df = df.sort_values("ppi", ascending=False, kind="stable")
    elif sort_by == "mean_effect":
        df = df.sort_values(
            "mean_effect", key=np.abs, ascending=False, kind="stable"
        )
    else:
        df = df.sort_values("taxon", kind="stable")

    if top_n is not None:
        df = df.head(top_n)

    return df.to_string(index=False)
