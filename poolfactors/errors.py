"""
Failure signals for poolfactors.

Configuration problems derive from ``ValueError`` as well as from
``SizeFactorError`` so callers catching ``ValueError`` keep working.
Per-cluster failures carry the offending cluster identifier.
"""


class SizeFactorError(Exception):
    """Base class for all size-factor estimation errors."""


class InvalidConfigurationError(SizeFactorError, ValueError):
    """Malformed pool sizes, labels, reference cluster or input matrix."""


class ClusterError(SizeFactorError):
    """Failure confined to a single cluster."""

    def __init__(self, message, cluster=None):
        super().__init__(message)
        self.cluster = cluster

    def __reduce__(self):
        return (type(self), (str(self),), self.__dict__)


class InsufficientCellsError(ClusterError):
    """A cluster is too small for the requested pool sizes."""

    def __init__(self, message, cluster=None, n_cells=None, required=None):
        super().__init__(message, cluster=cluster)
        self.n_cells = n_cells
        self.required = required


class EmptyPoolError(SizeFactorError):
    """A pool has no features left for ratio estimation."""


class SingularSystemError(ClusterError):
    """The assembled linear system does not identify every cell."""


class DisconnectedSystemError(SingularSystemError):
    """Some cell is not covered by any equation of the linear system."""

    def __init__(self, message, cluster=None, cells=None):
        super().__init__(message, cluster=cluster)
        self.cells = cells


class ClusterFailureReport(SizeFactorError):
    """Aggregated per-cluster failures of one run.

    ``failures`` maps each failed cluster label to the exception raised
    while processing it.
    """

    def __init__(self, failures):
        self.failures = dict(failures)
        lines = [f"{k}: {type(e).__name__}: {e}" for k, e in self.failures.items()]
        super().__init__(
            f"size factor estimation failed for {len(self.failures)} "
            f"cluster(s):\n  " + "\n  ".join(lines))

    def __reduce__(self):
        return (type(self), (self.failures,))


class NegativeFactorWarning(UserWarning):
    """Negative or zero size factors were estimated for some cells."""


class InsufficientCellsWarning(UserWarning):
    """A pool size was skipped because the cluster is too small for it."""
