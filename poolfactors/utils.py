"""
Utility functions for poolfactors.

Input coercion for the supported count containers, row/column index
resolution, cluster label checks and library-size factors.
"""

import numpy as np
import pandas as pd
from scipy import sparse

from .errors import InvalidConfigurationError


def _is_anndata(x):
    try:
        import anndata
    except ImportError:
        return False
    return isinstance(x, anndata.AnnData)


def as_count_matrix(x):
    """Coerce a count container to a features x cells matrix.

    Accepts ndarrays, scipy sparse matrices, DataFrames (features x cells),
    DGEList-style dicts with a ``'counts'`` key, and AnnData objects
    (cells x features, transposed here).

    Returns
    -------
    dict with keys ``counts`` (float64 ndarray, or CSC matrix for sparse
    input), ``features`` and ``cells`` (identifier arrays or ``None``) and
    ``kind`` (``'array'``, ``'dataframe'``, ``'dgelist'`` or ``'anndata'``).
    """
    features = cells = None
    if _is_anndata(x):
        kind = 'anndata'
        counts = x.X
        counts = counts.T if not sparse.issparse(counts) else counts.T.tocsc()
        features = np.asarray(x.var_names)
        cells = np.asarray(x.obs_names)
    elif isinstance(x, dict) and 'counts' in x:
        kind = 'dgelist'
        counts = x['counts']
        if x.get('samples') is not None:
            cells = np.asarray(x['samples'].index)
        if x.get('genes') is not None:
            features = np.asarray(x['genes'].index)
    elif isinstance(x, pd.DataFrame):
        kind = 'dataframe'
        counts = x.values
        features = np.asarray(x.index)
        cells = np.asarray(x.columns)
    else:
        kind = 'array'
        counts = x

    if sparse.issparse(counts):
        counts = sparse.csc_matrix(counts, dtype=np.float64)
        values = counts.data
    else:
        counts = np.asarray(counts, dtype=np.float64)
        if counts.ndim == 1:
            counts = counts.reshape(-1, 1)
        if counts.ndim != 2:
            raise InvalidConfigurationError("counts must be a two-dimensional matrix")
        values = counts

    if counts.shape[0] == 0 or counts.shape[1] == 0:
        raise InvalidConfigurationError("'counts' must contain at least one feature and one cell")
    if values.size:
        if np.any(np.isnan(values)):
            raise InvalidConfigurationError("NA counts not allowed")
        if np.min(values) < 0:
            raise InvalidConfigurationError("Negative counts not allowed")
        if not np.all(np.isfinite(values)):
            raise InvalidConfigurationError("Infinite counts not allowed")

    return {'counts': counts, 'features': features, 'cells': cells, 'kind': kind}


def column_sums(counts, rows=None):
    """Per-cell totals, optionally over a subset of rows."""
    if rows is not None:
        counts = counts[rows]
    if sparse.issparse(counts):
        return np.asarray(counts.sum(axis=0)).ravel()
    return counts.sum(axis=0)


def dense_columns(counts, cols, rows=None):
    """Dense float64 block of the given columns (and rows)."""
    sub = counts[:, cols]
    if rows is not None:
        sub = sub[rows]
    if sparse.issparse(sub):
        sub = sub.toarray()
    return np.asarray(sub, dtype=np.float64)


def resolve_index(idx, names, n, what='subset_row'):
    """Resolve a selector to sorted-as-given integer positions.

    Supports boolean masks, integer positions and identifier names.
    Returns ``None`` when *idx* is ``None`` (all rows).
    """
    if idx is None:
        return None
    if isinstance(idx, slice):
        return np.arange(n)[idx]
    idx = np.atleast_1d(np.asarray(idx))
    if idx.dtype == bool:
        if len(idx) != n:
            raise InvalidConfigurationError(f"logical '{what}' must have length {n}")
        return np.where(idx)[0]
    if idx.dtype.kind in ('U', 'S', 'O'):
        if names is None:
            raise InvalidConfigurationError(f"'{what}' uses names but the input has none")
        lookup = {name: i for i, name in enumerate(np.asarray(names).tolist())}
        result = []
        for name in idx.tolist():
            if name not in lookup:
                raise InvalidConfigurationError(f"Name '{name}' not found in '{what}'")
            result.append(lookup[name])
        return np.array(result, dtype=int)
    if idx.dtype.kind not in ('i', 'u'):
        raise InvalidConfigurationError(f"'{what}' must be logical, integer or character")
    idx = idx.astype(int)
    if np.any(idx < 0) or np.any(idx >= n):
        raise InvalidConfigurationError(f"'{what}' contains out-of-range indices")
    return idx


def check_clusters(clusters, ncells):
    """Validate a per-cell label vector; ``None`` means one cluster.

    Returns an object ndarray of labels.
    """
    if clusters is None:
        return np.zeros(ncells, dtype=object)
    if isinstance(clusters, (pd.Series, pd.Categorical)):
        clusters = np.asarray(clusters, dtype=object)
    clusters = np.asarray(clusters, dtype=object)
    if clusters.ndim != 1 or len(clusters) != ncells:
        raise InvalidConfigurationError(
            "Length of 'clusters' must equal number of cells "
            f"({len(np.atleast_1d(clusters))} != {ncells})")
    if any(c is None or (isinstance(c, float) and np.isnan(c)) for c in clusters):
        raise InvalidConfigurationError("NA cluster labels not allowed")
    return clusters


def check_scaling(scaling, ncells):
    """Validate per-cell scaling values used in place of library sizes."""
    scaling = np.asarray(scaling, dtype=np.float64)
    if scaling.ndim != 1 or len(scaling) != ncells:
        raise InvalidConfigurationError("Length of 'scaling' must equal number of cells")
    if not np.all(np.isfinite(scaling)) or np.any(scaling <= 0):
        raise InvalidConfigurationError("'scaling' values must be positive and finite")
    return scaling


def library_size_factors(x, subset_row=None):
    """Library-size factors centred to unit mean.

    Parameters
    ----------
    x : array-like, sparse matrix, DataFrame, DGEList or AnnData
        Count matrix (features x cells).
    subset_row : array-like, optional
        Features used to compute library sizes.

    Returns
    -------
    ndarray of per-cell factors with mean 1.
    """
    info = as_count_matrix(x)
    counts = info['counts']
    rows = resolve_index(subset_row, info['features'], counts.shape[0])
    lib = column_sums(counts, rows)
    if np.mean(lib) <= 0:
        raise InvalidConfigurationError("all library sizes are zero")
    return lib / np.mean(lib)
