"""
Normalized expression values from size factors.
"""

import numpy as np
import pandas as pd
from scipy import sparse

from .classes import SizeFactors
from .errors import InvalidConfigurationError


def normalize_counts(y, size_factors=None, log=True, pseudo_count=1,
                     center=True):
    """Divide counts by per-cell size factors.

    Parameters
    ----------
    y : array-like, sparse matrix, DataFrame or DGEList
        Count matrix (features x cells). A DGEList-style dict supplies its
        own ``samples['size.factors']`` when *size_factors* is omitted.
    size_factors : array-like or SizeFactors, optional
        One positive factor per cell.
    log : bool
        Return ``log2(y / sf + pseudo_count)``.
    pseudo_count : float
        Added before the log transformation.
    center : bool
        Centre factors to mean 1 first.

    Returns
    -------
    ndarray (DataFrame for DataFrame input) of normalized values.
    """
    if isinstance(y, dict) and 'counts' in y:
        if size_factors is None:
            samples = y.get('samples')
            if samples is None or 'size.factors' not in samples.columns:
                raise InvalidConfigurationError("DGEList has no 'size.factors' column")
            size_factors = samples['size.factors'].values
        return _normalize_default(y['counts'], size_factors, log=log,
                                  pseudo_count=pseudo_count, center=center)

    if size_factors is None:
        raise InvalidConfigurationError("'size_factors' must be supplied for matrix input")
    if isinstance(y, pd.DataFrame):
        out = _normalize_default(y.values, size_factors, log=log,
                                 pseudo_count=pseudo_count, center=center)
        return pd.DataFrame(out, index=y.index, columns=y.columns)
    return _normalize_default(y, size_factors, log=log,
                              pseudo_count=pseudo_count, center=center)


def _normalize_default(y, size_factors, log=True, pseudo_count=1, center=True):
    """Core normalization for a features x cells matrix."""
    if sparse.issparse(y):
        y = y.toarray()
    y = np.asarray(y, dtype=np.float64)
    if y.ndim == 1:
        y = y.reshape(-1, 1)
    ymin = np.nanmin(y) if y.size else 0
    if np.isnan(ymin):
        raise InvalidConfigurationError("NA counts not allowed")
    if ymin < 0:
        raise InvalidConfigurationError("Negative counts not allowed")

    if isinstance(size_factors, SizeFactors):
        size_factors = size_factors['size_factors']
    sf = np.asarray(size_factors, dtype=np.float64)
    if len(sf) != y.shape[1]:
        raise InvalidConfigurationError("Length of 'size_factors' differs from number of cells")
    if not np.all(np.isfinite(sf)) or np.any(sf <= 0):
        raise InvalidConfigurationError("size factors should be positive and finite")
    if center:
        sf = sf / np.mean(sf)
    if pseudo_count < 0:
        raise InvalidConfigurationError("'pseudo_count' must be non-negative")

    out = y / sf[np.newaxis, :]
    if log:
        with np.errstate(divide='ignore'):
            out = np.log2(out + pseudo_count)
    return out
