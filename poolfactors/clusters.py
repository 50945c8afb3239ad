"""
Per-cluster deconvolution and inter-cluster rescaling.

Each cluster is pooled and solved independently; clusters are then put on
the scale of a reference cluster by the median ratio of their pseudo-cell
profiles.
"""

from concurrent.futures import ProcessPoolExecutor
import math
import warnings

import numpy as np
import pandas as pd

from .errors import (ClusterError, ClusterFailureReport, DisconnectedSystemError,
                     InsufficientCellsError, InvalidConfigurationError)
from .linear_system import build_system
from .pooling import build_pools, ring_order
from .ratios import cell_ratios, eligible_features, pseudo_cell, scaled_expression
from .solvers import get_solver


def split_clusters(clusters, max_cluster_size=None, min_cells=1):
    """Group cell indices by label, splitting oversized clusters.

    Labels keep their order of first appearance. A cluster with more than
    ``max_cluster_size`` cells is dealt round-robin into
    ``ceil(n / max_cluster_size)`` chunks labelled ``"<label>.<k>"``, but
    never into so many that a chunk drops below ``min_cells``.

    Returns
    -------
    groups : dict
        Label to sorted array of cell indices.
    parent : dict
        Label to the original cluster label.

    Raises
    ------
    InvalidConfigurationError
        If a chunk label coincides with another cluster label.
    """
    clusters = np.asarray(clusters, dtype=object)
    levels = list(dict.fromkeys(clusters.tolist()))
    taken = set(levels)
    groups, parent = {}, {}
    for level in levels:
        idx = np.where(clusters == level)[0]
        nchunks = 1
        if max_cluster_size is not None and len(idx) > max_cluster_size:
            nchunks = min(math.ceil(len(idx) / max_cluster_size), len(idx) // min_cells)
        if nchunks <= 1:
            groups[level] = idx
            parent[level] = level
            continue
        for k in range(nchunks):
            label = f"{level}.{k + 1}"
            if label in taken:
                raise InvalidConfigurationError(
                    f"cannot split cluster {level!r}: chunk label {label!r} "
                    f"is already a cluster label")
            taken.add(label)
            groups[label] = idx[k::nchunks]
            parent[label] = level
    return groups, parent


def choose_reference(groups, lib_sizes, ref_clust=None, parent=None, candidates=None):
    """Pick the reference cluster.

    An explicit ``ref_clust`` names an original cluster label (its first
    chunk is used if it was split). Otherwise the cluster whose mean library
    size is closest to the median library size of all cells is chosen,
    among ``candidates`` when given.
    """
    if ref_clust is not None:
        parent = parent if parent is not None else {k: k for k in groups}
        for label in groups:
            if parent[label] == ref_clust:
                return label
        raise InvalidConfigurationError(f"'ref_clust' {ref_clust!r} not in 'clusters'")

    lib_sizes = np.asarray(lib_sizes, dtype=np.float64)
    target = np.median(lib_sizes)
    labels = [k for k in groups if candidates is None or k in candidates]
    if not labels:
        return None
    dist = [abs(np.mean(lib_sizes[groups[k]]) - target) for k in labels]
    return labels[int(np.argmin(dist))]


def rescale_clusters(profiles, mean_scaling, reference, min_mean=None):
    """Scaling of each cluster relative to the reference cluster.

    The factor for cluster ``k`` is the median of ``profile_k / profile_ref``
    over features expressed in both clusters whose average abundance, in
    counts, is at least ``min_mean``.

    Returns
    -------
    dict mapping label to rescaling factor (1 for the reference).
    """
    ref_prof = profiles[reference]
    out = {}
    for label, prof in profiles.items():
        if label == reference:
            out[label] = 1.0
            continue
        keep = (prof > 0) & (ref_prof > 0)
        if min_mean is not None:
            ave = (prof * mean_scaling[label] + ref_prof * mean_scaling[reference]) / 2
            keep &= ave >= min_mean
        if not np.any(keep):
            raise DisconnectedSystemError(
                f"cluster {label!r} shares no usable features with reference "
                f"cluster {reference!r}", cluster=label)
        out[label] = float(np.median(prof[keep] / ref_prof[keep]))
    return out


def fit_cluster(counts, scaling, config, label=None):
    """Deconvolve size factors for the cells of one cluster.

    Parameters
    ----------
    counts : ndarray
        Dense counts (features x cells) of the cluster, restricted to the
        features used for ratio estimation.
    scaling : ndarray
        Per-cell scaling values (library sizes by default).
    config : SumFactorsConfig
    label : optional
        Cluster label used in messages and errors.

    Returns
    -------
    dict with the cluster's local ``factors`` (and ``se`` when requested),
    its pseudo-cell ``profile``, ``mean_scaling`` and solver diagnostics.
    """
    n = counts.shape[1]
    if n < config.min_cells:
        raise _too_small(label, n, config)

    exprs = scaled_expression(counts, scaling)
    ref = pseudo_cell(exprs)
    mean_scaling = float(np.mean(scaling))
    features = eligible_features(ref, mean_scaling, config.min_mean)

    pools = build_pools(ring_order(scaling), config.sizes, cluster=label)
    system = build_system(
        exprs, ref, pools, features=features,
        cell_factors=cell_ratios(exprs, ref, features),
        weight=config.weight, cluster=label)
    solution = get_solver(config.positive, config.tol).solve(system, errors=config.errors)

    return {
        'factors': solution.factors * scaling,
        'se': None if solution.se is None else solution.se * scaling,
        'profile': ref,
        'mean_scaling': mean_scaling,
        'npools': len(pools),
        'dropped': system.dropped,
        'method': solution.method,
        'df_residual': solution.df_residual,
    }


def _too_small(label, n, config):
    return InsufficientCellsError(
        f"cluster {label!r} has {n} cells, at least {config.min_cells} "
        f"are needed for pool sizes up to {max(config.sizes)}",
        cluster=label, n_cells=n, required=config.min_cells)


def _cluster_task(label, counts, scaling, config):
    """Run :func:`fit_cluster`, capturing warnings and cluster failures."""
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        try:
            result, error = fit_cluster(counts, scaling, config, label=label), None
        except ClusterError as exc:
            result, error = None, exc
    return result, error, [(str(w.message), w.category) for w in caught]


def _ordered(failures, groups):
    return {k: failures[k] for k in groups if k in failures}


def _raise_first(failures, groups):
    ordered = _ordered(failures, groups)
    err = next(iter(ordered.values()))
    err.failures = ordered
    raise err


def run_clusters(counts_block, scaling, clusters, config, ref_clust=None,
                 lib_sizes=None):
    """Deconvolve every cluster and rescale onto a common scale.

    Parameters
    ----------
    counts_block : callable
        ``counts_block(cols)`` returns the dense counts of those cells,
        restricted to the features used for ratio estimation.
    scaling : ndarray
        Per-cell scaling values, in input cell order.
    clusters : ndarray
        Per-cell cluster labels.
    config : SumFactorsConfig
    ref_clust : optional
        Label of the reference cluster.
    lib_sizes : ndarray, optional
        Library sizes for choosing the default reference. Defaults to
        ``scaling``.

    Returns
    -------
    dict with ``factors`` and ``se`` (input cell order, ``NaN`` for cells
    of failed clusters), ``labels`` (per-cell working labels), ``reference``,
    ``rescaling`` (Series), ``report`` (DataFrame, one row per cluster) and
    ``failures``.

    Raises
    ------
    ClusterError
        With ``on_error='raise'``, the first cluster failure, after every
        cluster was attempted; all failures are in its ``failures``
        attribute.
    ClusterFailureReport
        With ``on_error='report'``, when the reference cluster failed.
    """
    ncells = len(scaling)
    lib_sizes = scaling if lib_sizes is None else lib_sizes
    groups, parent = split_clusters(clusters, config.max_cluster_size, config.min_cells)
    if ref_clust is not None:
        choose_reference(groups, lib_sizes, ref_clust, parent)

    fits, failures = {}, {}
    tasks = []
    for label, idx in groups.items():
        if len(idx) < config.min_cells:
            failures[label] = _too_small(label, len(idx), config)
        else:
            tasks.append(label)

    def _collect(label, outcome):
        result, error, caught = outcome
        for message, category in caught:
            warnings.warn(message, category, stacklevel=3)
        if error is not None:
            failures[label] = error
        else:
            fits[label] = result
        if config.verbose:
            status = 'failed' if error is not None else f"{result['npools']} pools"
            print(f"Cluster {label}: {len(groups[label])} cells, {status}")

    if config.ncore > 1 and len(tasks) > 1:
        with ProcessPoolExecutor(max_workers=config.ncore) as executor:
            futures = [
                executor.submit(_cluster_task, label, counts_block(groups[label]),
                                scaling[groups[label]], config)
                for label in tasks
            ]
            for label, fut in zip(tasks, futures):
                _collect(label, fut.result())
    else:
        for label in tasks:
            _collect(label, _cluster_task(
                label, counts_block(groups[label]), scaling[groups[label]], config))

    if failures and config.on_error == 'raise':
        _raise_first(failures, groups)

    if ref_clust is not None:
        reference = choose_reference(groups, lib_sizes, ref_clust, parent)
    else:
        reference = choose_reference(groups, lib_sizes, candidates=fits)
    if reference not in fits:
        raise ClusterFailureReport(_ordered(failures, groups))

    rescaling = {reference: 1.0}
    for label in [k for k in groups if k in fits and k != reference]:
        try:
            rescaling.update(rescale_clusters(
                {label: fits[label]['profile'], reference: fits[reference]['profile']},
                {label: fits[label]['mean_scaling'],
                 reference: fits[reference]['mean_scaling']},
                reference, config.min_mean))
        except DisconnectedSystemError as exc:
            failures[label] = exc
            if config.on_error == 'raise':
                _raise_first(failures, groups)
            del fits[label]

    factors = np.full(ncells, np.nan)
    se = np.full(ncells, np.nan) if config.errors else None
    labels = np.empty(ncells, dtype=object)
    rows = []
    for label, idx in groups.items():
        labels[idx] = label
        fit = fits.get(label)
        if fit is not None:
            factors[idx] = fit['factors'] * rescaling[label]
            if se is not None:
                se[idx] = fit['se'] * rescaling[label]
        err = failures.get(label)
        rows.append({
            'cluster': label,
            'parent': parent[label],
            'ncells': len(idx),
            'status': 'ok' if fit is not None else 'failed',
            'error': None if err is None else type(err).__name__,
            'message': None if err is None else str(err),
            'npools': np.nan if fit is None else fit['npools'],
            'dropped': np.nan if fit is None else fit['dropped'],
            'method': None if fit is None else fit['method'],
            'rescaling': rescaling.get(label, np.nan),
        })

    report = pd.DataFrame(rows).set_index('cluster')
    return {
        'factors': factors,
        'se': se,
        'labels': labels,
        'reference': reference,
        'rescaling': report['rescaling'].copy(),
        'report': report,
        'failures': _ordered(failures, groups),
    }
