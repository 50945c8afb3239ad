"""
Pool-level size factors as median ratios to a pseudo-cell reference.

Counts are first divided by each cell's scaling value (library size by
default). A pool's factor is the median, over features with a non-zero
reference, of the pooled normalized counts divided by the pool size times
the reference.
"""

import numpy as np
from numba import njit

from .errors import EmptyPoolError


@njit(cache=True)
def _window_medians_nb(exprs, ref, order, size):
    """Median ratio for every cyclic window of ``size`` cells on the ring."""
    ngene, n = exprs.shape
    out = np.empty(n)
    total = np.zeros(ngene)
    ratio = np.empty(ngene)
    for j in range(size):
        c = order[j]
        for g in range(ngene):
            total[g] += exprs[g, c]
    for start in range(n):
        if start > 0:
            leave = order[start - 1]
            enter = order[(start + size - 1) % n]
            for g in range(ngene):
                total[g] += exprs[g, enter] - exprs[g, leave]
        for g in range(ngene):
            # Running sums may drift a few ulps below zero.
            ratio[g] = max(total[g], 0.0) / (size * ref[g])
        out[start] = np.median(ratio)
    return out


def scaled_expression(counts, scaling):
    """Divide each cell (column) by its scaling value."""
    return counts / np.asarray(scaling, dtype=np.float64)[np.newaxis, :]


def pseudo_cell(exprs):
    """Average normalized profile of the cells of one cluster."""
    return np.asarray(exprs, dtype=np.float64).mean(axis=1)


def eligible_features(ref, mean_scaling=1.0, min_mean=None):
    """Features usable for ratios: non-zero reference above ``min_mean``.

    ``min_mean`` is compared against the reference re-expressed in counts,
    i.e. ``ref * mean_scaling``.
    """
    keep = ref > 0
    if min_mean is not None:
        keep &= ref * mean_scaling >= min_mean
    return keep


def pool_size_factor(pooled, ref, size=1, features=None):
    """Size factor of a single pool.

    Parameters
    ----------
    pooled : array-like
        Summed normalized counts of the pool's cells.
    ref : array-like
        Pseudo-cell reference of the cluster.
    size : int
        Number of cells in the pool.
    features : array-like of bool, optional
        Features allowed in the ratio. Defaults to ``ref > 0``.

    Raises
    ------
    EmptyPoolError
        If no feature with a non-zero reference remains.
    """
    pooled = np.asarray(pooled, dtype=np.float64)
    ref = np.asarray(ref, dtype=np.float64)
    keep = ref > 0 if features is None else np.asarray(features, dtype=bool) & (ref > 0)
    if not np.any(keep):
        raise EmptyPoolError("pool has no features with a non-zero reference")
    return float(np.median(pooled[keep] / (size * ref[keep])))


def pool_size_factors(exprs, ref, pools, features=None):
    """Size factors of every pool in a :class:`~poolfactors.pooling.PoolSet`.

    Returns an array ordered like the rows of ``pools``.

    Raises
    ------
    EmptyPoolError
        If no feature is eligible, which empties every pool of the cluster.
    """
    ref = np.asarray(ref, dtype=np.float64)
    keep = ref > 0 if features is None else np.asarray(features, dtype=bool) & (ref > 0)
    if not np.any(keep):
        raise EmptyPoolError("no features with a non-zero reference")
    sub = np.ascontiguousarray(np.asarray(exprs, dtype=np.float64)[keep])
    ref_sub = np.ascontiguousarray(ref[keep])
    order = np.ascontiguousarray(pools.order, dtype=np.int64)
    return np.concatenate([
        _window_medians_nb(sub, ref_sub, order, s) for s in pools.sizes
    ])


def cell_ratios(exprs, ref, features=None):
    """Single-cell median ratios to the reference (pools of one cell).

    Cells are ``NaN`` when no feature is eligible.
    """
    exprs = np.asarray(exprs, dtype=np.float64)
    ref = np.asarray(ref, dtype=np.float64)
    keep = ref > 0 if features is None else np.asarray(features, dtype=bool) & (ref > 0)
    if not np.any(keep):
        return np.full(exprs.shape[1], np.nan)
    return np.median(exprs[keep] / ref[keep, np.newaxis], axis=0)
