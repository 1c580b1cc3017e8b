"""
Core shared components for MICRODIFF inference.

This module holds the read-only inputs of a fit (counts, group labels, size
factors, taxon graph) together with their validation, and the package
exceptions.
"""

from .errors import ConfigurationError, SamplerError
from .graph import TaxonGraph, as_taxon_graph
from .input_processor import CountData, InputProcessor, build_count_data

__all__ = [
    "ConfigurationError",
    "SamplerError",
    "TaxonGraph",
    "as_taxon_graph",
    "CountData",
    "InputProcessor",
    "build_count_data",
]
