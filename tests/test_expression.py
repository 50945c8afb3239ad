"""Tests for normalized expression and storing size factors."""

import numpy as np
import pandas as pd
import pytest
from scipy import sparse

import poolfactors as pf


@pytest.fixture
def small():
    counts = np.array([[2.0, 4.0, 6.0],
                       [0.0, 8.0, 3.0]])
    sf = np.array([0.5, 1.0, 1.5])
    return counts, sf


class TestNormalizeCounts:
    """normalize_counts on arrays, DataFrames and DGEList dicts."""

    def test_log_values(self, small):
        counts, sf = small
        out = pf.normalize_counts(counts, sf)
        assert np.allclose(out, np.log2(counts / sf + 1))

    def test_no_log(self, small):
        counts, sf = small
        out = pf.normalize_counts(counts, sf, log=False)
        assert np.allclose(out[0], [4.0, 4.0, 4.0])

    def test_centering(self, small):
        counts, sf = small
        a = pf.normalize_counts(counts, sf * 10, log=False)
        b = pf.normalize_counts(counts, sf * 10, log=False, center=False)
        assert np.allclose(a, counts / sf)
        assert np.allclose(b, counts / (sf * 10))

    def test_pseudo_count(self, small):
        counts, sf = small
        out = pf.normalize_counts(counts, sf, pseudo_count=0.5)
        assert np.allclose(out, np.log2(counts / sf + 0.5))

    def test_dataframe(self, small):
        counts, sf = small
        df = pd.DataFrame(counts, index=['g1', 'g2'], columns=['a', 'b', 'c'])
        out = pf.normalize_counts(df, sf, log=False)
        assert isinstance(out, pd.DataFrame)
        assert out.loc['g1', 'c'] == pytest.approx(4.0)

    def test_sparse(self, small):
        counts, sf = small
        out = pf.normalize_counts(sparse.csr_matrix(counts), sf, log=False)
        assert np.allclose(out, counts / sf)

    def test_dgelist_uses_stored_factors(self, small):
        counts, sf = small
        y = {'counts': counts, 'samples': pd.DataFrame({'size.factors': sf})}
        assert np.allclose(pf.normalize_counts(y, log=False), counts / sf)

    def test_dgelist_without_factors(self, small):
        counts, _ = small
        with pytest.raises(pf.InvalidConfigurationError, match="size.factors"):
            pf.normalize_counts({'counts': counts, 'samples': pd.DataFrame(index=range(3))})

    def test_size_factors_result(self, exact_counts):
        res = pf.compute_sum_factors(exact_counts, sizes=[5, 10])
        out = pf.normalize_counts(exact_counts, res, log=False)
        # Proportional cells normalize to the same profile.
        assert np.allclose(out / out[:, :1], 1.0)

    def test_requires_factors(self, small):
        counts, _ = small
        with pytest.raises(pf.InvalidConfigurationError):
            pf.normalize_counts(counts)

    @pytest.mark.parametrize("sf", [[1.0, 1.0], [1.0, 0.0, 1.0], [1.0, np.nan, 1.0]])
    def test_bad_factors(self, small, sf):
        counts, _ = small
        with pytest.raises(pf.InvalidConfigurationError):
            pf.normalize_counts(counts, sf)

    def test_negative_counts(self, small):
        counts, sf = small
        counts = counts.copy()
        counts[0, 0] = -1
        with pytest.raises(pf.InvalidConfigurationError):
            pf.normalize_counts(counts, sf)


class TestSetSizeFactors:
    """set_size_factors stores factors on a copy."""

    def test_dgelist(self, small):
        counts, sf = small
        y = {'counts': counts, 'samples': pd.DataFrame({'lib.size': counts.sum(axis=0)})}
        out = pf.set_size_factors(y, sf)
        assert np.allclose(out['samples']['size.factors'], sf)
        assert 'size.factors' not in y['samples'].columns
        assert out['counts'] is counts

    def test_dgelist_without_samples(self, small):
        counts, sf = small
        out = pf.set_size_factors({'counts': counts}, sf)
        assert list(out['samples']['size.factors']) == list(sf)

    def test_length_mismatch(self, small):
        counts, _ = small
        with pytest.raises(pf.InvalidConfigurationError):
            pf.set_size_factors({'counts': counts}, [1.0, 2.0])

    def test_matrix_rejected(self, small):
        counts, sf = small
        with pytest.raises(pf.InvalidConfigurationError):
            pf.set_size_factors(counts, sf)
