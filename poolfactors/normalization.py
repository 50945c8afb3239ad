"""
Pooled size-factor normalization.

``compute_sum_factors`` is the public entry point: it validates the
configuration, runs the per-cluster deconvolution and merges the rescaled
cluster factors into one vector in input cell order.

Reference
---------
Lun ATL, Bach K, Marioni JC. Pooling across cells to normalize single-cell
RNA sequencing data with many zero counts. *Genome Biology*, 17:75, 2016.
"""

import warnings

import numpy as np
import pandas as pd
from scipy import sparse

from .classes import SizeFactors
from .clusters import run_clusters
from .config import DEFAULT_SIZES, LOW_WEIGHT, make_config
from .errors import InvalidConfigurationError, SizeFactorError
from .utils import (_is_anndata, as_count_matrix, check_clusters, check_scaling,
                    column_sums, dense_columns, resolve_index)


def compute_sum_factors(x, sizes=DEFAULT_SIZES, clusters=None, ref_clust=None,
                        max_cluster_size=3000, positive=True, scaling=None,
                        min_mean=None, subset_row=None, errors=False,
                        ncore=1, verbose=False, on_error='raise',
                        weight=LOW_WEIGHT, tol=1e-13):
    """Deconvolve per-cell size factors from pooled cells.

    Parameters
    ----------
    x : array-like, sparse matrix, DataFrame, DGEList or AnnData
        Count matrix (features x cells); AnnData is cells x features.
    sizes : sequence of int
        Pool sizes. Every cluster needs at least ``2 * max(sizes)`` cells.
    clusters : array-like, optional
        Cluster label of every cell. ``None`` treats all cells as one
        cluster.
    ref_clust : optional
        Label of the reference cluster. Defaults to the cluster whose mean
        library size is closest to the median library size.
    max_cluster_size : int or None
        Clusters larger than this are split into smaller pooling groups.
    positive : bool
        Constrain factors to be non-negative.
    scaling : array-like, optional
        Per-cell scaling values used in place of library sizes.
    min_mean : float, optional
        Minimum average count of features used for ratios and rescaling.
    subset_row : array-like, optional
        Features (positions, mask or names) used for ratio estimation.
        Every cell still gets a factor.
    errors : bool
        Also return standard errors. With ``positive=True`` they are
        ``NaN`` for cells whose factor was constrained to zero.
    ncore : int
        Number of worker processes, one cluster per task.
    verbose : bool
        Print progress per cluster.
    on_error : str
        ``'raise'`` (default) raises the first cluster failure after all
        clusters ran. ``'report'`` keeps going, leaves ``NaN`` factors for
        failed clusters and lists them in ``report``.
    weight : float
        Weight of the per-cell equations; 0 omits them.
    tol : float
        Relative pivot tolerance below which a system is singular.

    Returns
    -------
    SizeFactors
    """
    config = make_config(
        sizes=sizes, positive=positive, errors=errors,
        max_cluster_size=max_cluster_size, min_mean=min_mean, weight=weight,
        tol=tol, ncore=ncore, on_error=on_error, verbose=verbose)

    info = as_count_matrix(x)
    counts = info['counts']
    nfeatures, ncells = counts.shape
    if sparse.issparse(counts):
        warnings.warn(
            f"Sparse input ({nfeatures} x {ncells}, "
            f"{100 * counts.nnz / (nfeatures * ncells):.1f}% non-zero) "
            f"is densified one cluster at a time.",
            stacklevel=2,
        )
    rows = resolve_index(subset_row, info['features'], nfeatures)
    if rows is not None and len(rows) == 0:
        raise InvalidConfigurationError("'subset_row' selects no features")
    labels = check_clusters(clusters, ncells)

    lib_sizes = column_sums(counts, rows)
    if scaling is None:
        if np.any(lib_sizes <= 0):
            raise InvalidConfigurationError(
                f"{int(np.sum(lib_sizes <= 0))} cell(s) have zero library size; "
                f"remove them or supply 'scaling'")
        scaling = lib_sizes
    else:
        scaling = check_scaling(scaling, ncells)

    if verbose:
        nrows = nfeatures if rows is None else len(rows)
        print(f"Computing size factors for {ncells} cells using {nrows} features.")

    run = run_clusters(
        lambda cols: dense_columns(counts, cols, rows),
        scaling, labels, config, ref_clust=ref_clust, lib_sizes=lib_sizes)

    return assemble_factors(run, cells=info['cells'])


def assemble_factors(run, cells=None):
    """Merge rescaled cluster factors into the final result.

    Factors are centred to mean 1 over the cells that received one;
    standard errors are divided by the same constant.
    """
    factors = np.array(run['factors'], dtype=np.float64)
    se = None if run['se'] is None else np.array(run['se'], dtype=np.float64)
    ok = np.isfinite(factors)
    center = np.mean(factors[ok])
    if not np.isfinite(center) or center <= 0:
        raise SizeFactorError("size factors cannot be centred: mean is not positive")
    factors = factors / center
    if se is not None:
        se = se / center

    factors.setflags(write=False)
    if se is not None:
        se.setflags(write=False)
    if cells is not None:
        factors = pd.Series(factors, index=cells, name='size_factor')
        if se is not None:
            se = pd.Series(se, index=cells, name='se')

    return SizeFactors({
        'size_factors': factors,
        'se': se,
        'clusters': run['labels'],
        'reference': run['reference'],
        'rescaling': run['rescaling'],
        'report': run['report'],
        'failures': run['failures'],
    })


def set_size_factors(y, size_factors):
    """Return a copy of a DGEList or AnnData with size factors stored.

    DGEList-style dicts get ``samples['size.factors']``; AnnData objects
    get ``obs['size_factors']``. The input container is not modified.
    """
    if isinstance(size_factors, SizeFactors):
        size_factors = size_factors['size_factors']
    sf = np.asarray(size_factors, dtype=np.float64)

    if isinstance(y, dict) and 'counts' in y:
        if np.shape(y['counts'])[1] != len(sf):
            raise InvalidConfigurationError("number of size factors must equal number of cells")
        out = dict(y)
        samples = y.get('samples')
        samples = pd.DataFrame(index=range(len(sf))) if samples is None else samples.copy()
        samples['size.factors'] = sf
        out['samples'] = samples
        return out

    if _is_anndata(y):
        if y.n_obs != len(sf):
            raise InvalidConfigurationError("number of size factors must equal number of cells")
        out = y.copy()
        out.obs['size_factors'] = sf
        return out

    raise InvalidConfigurationError("expected a DGEList-style dict or an AnnData object")
