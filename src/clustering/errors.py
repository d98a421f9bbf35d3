"""
Exceptions raised by the jet clustering algorithms.
"""


class ClusteringError(Exception):
    """Base class for all clustering failures."""


class InvalidParameterError(ClusteringError, ValueError):
    """
    Raised at an entry point when a parameter or an input particle is
    unusable (non-positive radius, non-positive energy, ...).
    """


class EmptyClusterError(InvalidParameterError):
    """
    Raised when a centroid is requested over an empty or zero-energy set.
    """


class DegenerateMinimumError(ClusteringError, RuntimeError):
    """
    Raised by the kT recombination when no finite minimum distance exists
    while pseudo-particles remain. This is an internal invariant violation.
    """
