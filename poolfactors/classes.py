"""
Result container for poolfactors.

``SizeFactors`` is a read-only dict with attribute access, returned by
:func:`~poolfactors.compute_sum_factors`.
"""

import numpy as np
import pandas as pd


class _ResultBase(dict):
    """Read-only dict with attribute access and a compact display."""

    def __getattr__(self, name):
        try:
            return self[name]
        except KeyError:
            raise AttributeError(f"'{type(self).__name__}' has no attribute '{name}'")

    def _readonly(self, *args, **kwargs):
        raise TypeError(f"'{type(self).__name__}' objects are read-only")

    __setattr__ = __delattr__ = _readonly
    __setitem__ = __delitem__ = _readonly
    update = pop = popitem = clear = setdefault = _readonly

    def __reduce__(self):
        return (type(self), (dict(self),))

    def __repr__(self):
        cls = type(self).__name__
        return f"{cls}\nComponents: {', '.join(self.keys())}"


class SizeFactors(_ResultBase):
    """Per-cell size factors and run diagnostics.

    Components
    ----------
    size_factors : Series or ndarray
        One factor per cell in input order, centred to mean 1 over the
        cells of successful clusters; ``NaN`` for cells of failed clusters.
    se : Series, ndarray or None
        Standard errors on the same scale, when requested.
    clusters : ndarray
        Working cluster label of every cell (split labels included).
    reference : object
        Label of the reference cluster.
    rescaling : Series
        Rescaling factor per cluster.
    report : DataFrame
        One row per cluster with status and solver diagnostics.
    failures : dict
        Cluster label to the exception that failed it.
    """

    @property
    def shape(self):
        return (len(self['size_factors']),)

    @property
    def failed(self):
        """Boolean mask of cells whose cluster failed."""
        return ~np.isfinite(np.asarray(self['size_factors'], dtype=np.float64))

    @property
    def zero(self):
        """Boolean mask of cells with non-positive factors."""
        sf = np.asarray(self['size_factors'], dtype=np.float64)
        with np.errstate(invalid='ignore'):
            return np.isfinite(sf) & (sf <= 0)

    def __repr__(self):
        sf = np.asarray(self['size_factors'], dtype=np.float64)
        ok = sf[np.isfinite(sf)]
        rng = f"[{ok.min():.3g}, {ok.max():.3g}]" if len(ok) else "[]"
        return (f"SizeFactors for {len(sf)} cells in {len(self['report'])} cluster(s), "
                f"range {rng}\nComponents: {', '.join(self.keys())}")

    def head(self, n=5):
        """First n cells as a DataFrame."""
        return self.to_frame().head(n)

    def to_frame(self):
        """Per-cell table of factors, standard errors and cluster labels."""
        sf = self['size_factors']
        index = sf.index if isinstance(sf, pd.Series) else None
        out = pd.DataFrame({'size_factor': np.asarray(sf)}, index=index)
        if self.get('se') is not None:
            out['se'] = np.asarray(self['se'])
        out['cluster'] = self['clusters']
        return out
