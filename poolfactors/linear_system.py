"""
Assembly of the pool-to-cell linear system.

A pool of ``s`` cells with factor ``f`` contributes the row
``sum(theta[pool]) = s * f``. Each cell also gets a low-weight row tying it
to its own ratio estimate, and a final low-weight row ties the mean factor
to one.
"""

from dataclasses import dataclass
import warnings

import numpy as np
from scipy import sparse

from .config import LOW_WEIGHT
from .errors import DisconnectedSystemError, EmptyPoolError
from .ratios import pool_size_factors


@dataclass(frozen=True, eq=False)
class LinearSystem:
    """Stacked equations of one cluster.

    ``kinds`` labels each row as ``'pool'``, ``'cell'`` or ``'scale'``.
    """

    A: sparse.csr_matrix
    b: np.ndarray
    kinds: np.ndarray
    dropped: int = 0
    cluster: object = None

    @property
    def ncells(self):
        return self.A.shape[1]

    @property
    def nrows(self):
        return self.A.shape[0]

    def coverage(self):
        """Number of pool equations each cell takes part in."""
        pool_rows = self.A[self.kinds == 'pool']
        return np.asarray((pool_rows != 0).sum(axis=0)).ravel()


def assemble_system(pools, pool_factors, cell_factors=None, weight=LOW_WEIGHT,
                    cluster=None):
    """Build the sparse system ``A theta = b`` for one cluster.

    Parameters
    ----------
    pools : PoolSet
        Pools of the cluster.
    pool_factors : array-like
        Factor of every pool, ``NaN`` for pools without a usable estimate.
    cell_factors : array-like, optional
        Per-cell ratio estimates for the low-weight cell rows.
    weight : float
        Weight of the per-cell rows; 0 omits them.
    cluster : optional
        Label used in error messages.

    Raises
    ------
    DisconnectedSystemError
        If a cell appears in no retained equation.
    """
    n = pools.ncells
    pool_factors = np.asarray(pool_factors, dtype=np.float64)
    incidence = pools.incidence()
    rhs = pools.pool_sizes() * pool_factors

    ok = np.isfinite(rhs)
    dropped = int(np.sum(~ok))
    if dropped:
        warnings.warn(
            f"{dropped} degenerate pool equation(s) dropped in cluster {cluster!r}",
            stacklevel=2)
    blocks = [incidence[ok]]
    rhs_blocks = [rhs[ok]]
    kinds = [np.full(int(np.sum(ok)), 'pool', dtype=object)]

    has_cell_row = np.zeros(n, dtype=bool)
    if weight > 0 and cell_factors is not None:
        cell_factors = np.asarray(cell_factors, dtype=np.float64)
        has_cell_row = np.isfinite(cell_factors)
        idx = np.where(has_cell_row)[0]
        w = np.sqrt(weight)
        blocks.append(sparse.csr_matrix(
            (np.full(len(idx), w), (np.arange(len(idx)), idx)), shape=(len(idx), n)))
        rhs_blocks.append(w * cell_factors[idx])
        kinds.append(np.full(len(idx), 'cell', dtype=object))

    covered = has_cell_row | (np.asarray(blocks[0].sum(axis=0)).ravel() > 0)
    if not np.all(covered):
        missing = np.where(~covered)[0]
        raise DisconnectedSystemError(
            f"{len(missing)} cell(s) appear in no usable equation",
            cluster=cluster, cells=missing)

    w = np.sqrt(LOW_WEIGHT)
    blocks.append(sparse.csr_matrix(np.full((1, n), w / n)))
    rhs_blocks.append(np.array([w]))
    kinds.append(np.array(['scale'], dtype=object))

    return LinearSystem(
        A=sparse.vstack(blocks, format='csr'),
        b=np.concatenate(rhs_blocks),
        kinds=np.concatenate(kinds),
        dropped=dropped,
        cluster=cluster,
    )


def build_system(exprs, ref, pools, features=None, cell_factors=None,
                 weight=LOW_WEIGHT, cluster=None):
    """Estimate pool factors and assemble the system in one step.

    Pools left without usable features are dropped; when that empties the
    whole pool block the remaining cell rows must still cover every cell.
    """
    try:
        pool_factors = pool_size_factors(exprs, ref, pools, features=features)
    except EmptyPoolError:
        pool_factors = np.full(len(pools), np.nan)
    return assemble_system(pools, pool_factors, cell_factors=cell_factors,
                           weight=weight, cluster=cluster)
