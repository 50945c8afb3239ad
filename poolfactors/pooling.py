"""
Pool construction.

Cells are arranged on a ring ordered by library size and pools are
sliding windows over every rotation of that ring, one set of windows per
pool size.
"""

from dataclasses import dataclass
import warnings

import numpy as np
from scipy import sparse

from .errors import InsufficientCellsError, InsufficientCellsWarning


@dataclass(frozen=True, eq=False)
class Pool:
    """One window of cells (local indices) and the pool size that made it."""

    cells: np.ndarray
    size: int
    start: int


@dataclass(frozen=True, eq=False)
class PoolSet:
    """All pools of one cluster.

    ``order`` is the ring ordering of the local cell indices; pools of size
    ``sizes[i]`` occupy rows ``i * n`` to ``(i + 1) * n - 1`` and the pool in
    row ``i * n + k`` starts at ring position ``k``.
    """

    order: np.ndarray
    sizes: tuple

    @property
    def ncells(self):
        return len(self.order)

    def __len__(self):
        return self.ncells * len(self.sizes)

    def members(self, k):
        """Local cell indices of the k-th pool."""
        n = self.ncells
        s = self.sizes[k // n]
        start = k % n
        return self.order[(start + np.arange(s)) % n]

    def pool(self, k):
        n = self.ncells
        return Pool(cells=self.members(k), size=self.sizes[k // n], start=k % n)

    def __iter__(self):
        for k in range(len(self)):
            yield self.pool(k)

    def pool_sizes(self):
        """Size of every pool, in row order."""
        return np.repeat(np.asarray(self.sizes, dtype=int), self.ncells)

    def incidence(self):
        """Sparse 0/1 matrix, pools x cells."""
        n = self.ncells
        rows, cols = [], []
        for i, s in enumerate(self.sizes):
            start = np.arange(n)
            pos = (start[:, np.newaxis] + np.arange(s)[np.newaxis, :]) % n
            rows.append(np.repeat(i * n + start, s))
            cols.append(self.order[pos].ravel())
        rows = np.concatenate(rows)
        cols = np.concatenate(cols)
        data = np.ones(len(rows))
        return sparse.csr_matrix((data, (rows, cols)), shape=(len(self), n))


def ring_order(lib_sizes):
    """Arrange cells on a ring by library size.

    Cells are sorted by increasing library size (ties keep their original
    order); even ranks are laid out ascending, then odd ranks descending, so
    each window, including those wrapping around, spans cells of similar
    library size.
    """
    lib_sizes = np.asarray(lib_sizes, dtype=np.float64)
    o = np.argsort(lib_sizes, kind='stable')
    return np.concatenate([o[0::2], o[1::2][::-1]])


def build_pools(order, sizes, cluster=None):
    """Build sliding-window pools over a ring ordering.

    Parameters
    ----------
    order : array-like of int
        Ring ordering of local cell indices, e.g. from :func:`ring_order`.
    sizes : sequence of int
        Pool sizes. Sizes not smaller than the number of cells are skipped
        with an :class:`InsufficientCellsWarning`.
    cluster : optional
        Cluster label used in messages.

    Returns
    -------
    PoolSet
    """
    order = np.asarray(order, dtype=int)
    n = len(order)
    usable = []
    for s in sizes:
        if s >= n:
            warnings.warn(
                f"pool size {s} skipped for cluster {cluster!r} with {n} cells",
                InsufficientCellsWarning, stacklevel=2)
        else:
            usable.append(int(s))
    if not usable:
        raise InsufficientCellsError(
            f"no pool size is smaller than the number of cells ({n})",
            cluster=cluster, n_cells=n, required=min(sizes) + 1)
    return PoolSet(order=order, sizes=tuple(usable))
