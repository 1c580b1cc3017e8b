"""Exceptions raised by MICRODIFF."""

from typing import Optional


class ConfigurationError(ValueError):
    """Invalid input detected before any sweep is run."""


# ------------------------------------------------------------------------------


class SamplerError(RuntimeError):
    """A state block failed to produce a single finite proposal in a sweep.

    Parameters
    ----------
    block : str
        Name of the state block that failed (``"normalization"``,
        ``"dispersion"`` or ``"inclusion"``).
    iteration : int, optional
        Zero-based sweep index at which the failure occurred.
    chain : int, optional
        Index of the chain that aborted.
    """

    def __init__(
        self,
        block: str,
        iteration: Optional[int] = None,
        chain: Optional[int] = None,
    ):
        self.block = block
        self.iteration = iteration
        self.chain = chain
        where = f" at sweep {iteration}" if iteration is not None else ""
        if chain is not None:
            where += f" of chain {chain}"
        super().__init__(
            f"Fit aborted: every proposal of the '{block}' block evaluated "
            f"to a non-finite log-likelihood{where}. Check the count matrix "
            "and size factors for pathological values."
        )
