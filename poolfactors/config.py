"""
Run configuration for pooled size-factor estimation.

All public entry points accept keyword arguments; they are gathered into
a frozen :class:`SumFactorsConfig` and validated before any computation.
"""

from dataclasses import dataclass

import numpy as np

from .errors import InvalidConfigurationError


DEFAULT_SIZES = tuple(range(21, 102, 5))

# Weight of the per-cell and scale-fixing equations relative to pool rows.
LOW_WEIGHT = 1e-6


@dataclass(frozen=True)
class SumFactorsConfig:
    """Validated settings shared by every cluster of one run."""

    sizes: tuple = DEFAULT_SIZES
    positive: bool = True
    errors: bool = False
    max_cluster_size: int = 3000
    min_mean: float = None
    weight: float = LOW_WEIGHT
    tol: float = 1e-13
    ncore: int = 1
    on_error: str = 'raise'
    verbose: bool = False

    @property
    def min_cells(self):
        """Smallest cluster that can be pooled with these sizes."""
        return 2 * max(self.sizes)


def _check_sizes(sizes):
    if sizes is None:
        return DEFAULT_SIZES
    if np.isscalar(sizes):
        sizes = [sizes]
    arr = np.asarray(list(sizes))
    if arr.size == 0:
        raise InvalidConfigurationError("'sizes' must contain at least one pool size")
    if arr.dtype.kind not in ('i', 'u', 'f'):
        raise InvalidConfigurationError("'sizes' must be numeric")
    if not np.all(np.isfinite(arr)) or np.any(arr != np.round(arr)):
        raise InvalidConfigurationError("'sizes' must be whole numbers")
    arr = arr.astype(int)
    if np.any(arr < 1):
        raise InvalidConfigurationError("'sizes' must be positive")
    if len(np.unique(arr)) != len(arr):
        raise InvalidConfigurationError("'sizes' are not unique")
    return tuple(int(s) for s in np.sort(arr))


def make_config(sizes=None, positive=True, errors=False, max_cluster_size=3000,
                min_mean=None, weight=LOW_WEIGHT, tol=1e-13, ncore=1,
                on_error='raise', verbose=False):
    """Validate keyword settings and build a :class:`SumFactorsConfig`.

    Raises
    ------
    InvalidConfigurationError
        If any setting is malformed.
    """
    sizes = _check_sizes(sizes)

    if max_cluster_size is not None:
        if int(max_cluster_size) != max_cluster_size or max_cluster_size < 1:
            raise InvalidConfigurationError("'max_cluster_size' must be a positive integer")
        max_cluster_size = int(max_cluster_size)
        if max_cluster_size < 2 * max(sizes):
            raise InvalidConfigurationError(
                f"'max_cluster_size' ({max_cluster_size}) must be at least twice "
                f"the largest pool size ({max(sizes)})")

    if min_mean is not None:
        min_mean = float(min_mean)
        if not np.isfinite(min_mean) or min_mean < 0:
            raise InvalidConfigurationError("'min_mean' must be a non-negative number")

    weight = float(weight)
    if not np.isfinite(weight) or weight < 0:
        raise InvalidConfigurationError("'weight' must be a non-negative number")
    tol = float(tol)
    if not (0 < tol < 1):
        raise InvalidConfigurationError("'tol' must lie in (0, 1)")

    if int(ncore) != ncore or ncore < 1:
        raise InvalidConfigurationError("'ncore' must be a positive integer")
    if on_error not in ('raise', 'report'):
        raise InvalidConfigurationError("'on_error' must be 'raise' or 'report'")

    return SumFactorsConfig(
        sizes=sizes, positive=bool(positive), errors=bool(errors),
        max_cluster_size=max_cluster_size, min_mean=min_mean,
        weight=weight, tol=tol, ncore=int(ncore), on_error=on_error,
        verbose=bool(verbose))
