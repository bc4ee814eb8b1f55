"""
Error types raised by the copula sensitivity pipeline.

Task-level failures (a family that cannot be fitted, a bootstrap that never
produces a usable replicate) are converted into result rows by the work
distributor; only configuration errors escape a run.
"""


class CopulaSensitivityError(Exception):
    """Base class for all package errors."""


class ConfigurationError(CopulaSensitivityError, ValueError):
    """Invalid run configuration, raised before any fitting starts."""


class InsufficientDataError(CopulaSensitivityError):
    """A condition has fewer paired observations than the configured minimum."""

    def __init__(self, n_pairs: int, min_sample_size: int):
        self.n_pairs = n_pairs
        self.min_sample_size = min_sample_size
        super().__init__(
            f"insufficient data: {n_pairs} pairs (minimum {min_sample_size})"
        )


class FitError(CopulaSensitivityError):
    """Maximum pseudo-likelihood estimation failed or hit a degenerate estimate."""

    def __init__(self, family: str, message: str):
        self.family = family
        self.reason = message
        super().__init__(f"{family}: {message}")


class GoFError(CopulaSensitivityError):
    """The goodness-of-fit bootstrap produced no usable replicate."""
