"""Bayesian false-discovery control for differential-abundance calls.

>>> from microdiff.de import bayesian_fdr_threshold
>>> threshold = bayesian_fdr_threshold(results.ppi, target_fdr=0.1)
>>> hits = results.ppi >= threshold
"""

from ._error_control import (
    bayesian_fdr_threshold,
    call_discoveries,
    expected_fdr,
    format_inclusion_table,
)

__all__ = [
    "bayesian_fdr_threshold",
    "call_discoveries",
    "expected_fdr",
    "format_inclusion_table",
]
