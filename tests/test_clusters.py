"""Tests for cluster splitting, reference choice and rescaling."""

import numpy as np
import pytest

import poolfactors as pf


class TestSplitClusters:

    def test_groups_in_order_of_appearance(self):
        groups, parent = pf.split_clusters(np.array(['b', 'a', 'b', 'a', 'c']))
        assert list(groups) == ['b', 'a', 'c']
        assert list(groups['a']) == [1, 3]
        assert parent == {'b': 'b', 'a': 'a', 'c': 'c'}

    def test_large_cluster_dealt_round_robin(self):
        labels = np.array(['a'] * 10 + ['b'] * 3)
        groups, parent = pf.split_clusters(labels, max_cluster_size=4)
        assert list(groups) == ['a.1', 'a.2', 'a.3', 'b']
        assert list(groups['a.1']) == [0, 3, 6, 9]
        assert list(groups['a.3']) == [2, 5, 8]
        assert parent['a.2'] == 'a'
        sizes = [len(v) for v in groups.values()]
        assert sum(sizes) == 13

    def test_chunk_label_clash(self):
        labels = np.array(['a'] * 40 + ['a.1'] * 20)
        with pytest.raises(pf.InvalidConfigurationError, match="a.1"):
            pf.split_clusters(labels, max_cluster_size=20)

    def test_chunks_not_below_min_cells(self):
        groups, _ = pf.split_clusters(np.zeros(21, dtype=object), 20, min_cells=20)
        assert list(groups) == [0]
        assert len(groups[0]) == 21
        groups, _ = pf.split_clusters(np.array(['x'] * 45), 20, min_cells=20)
        assert list(groups) == ['x.1', 'x.2']
        assert min(len(v) for v in groups.values()) >= 20


class TestChooseReference:

    @pytest.fixture
    def groups(self):
        return {'a': np.array([0, 1]), 'b': np.array([2, 3]), 'c': np.array([4, 5])}

    def test_closest_to_median(self, groups):
        lib = np.array([1, 1, 5, 5, 10, 10])
        assert pf.choose_reference(groups, lib) == 'b'

    def test_candidates(self, groups):
        lib = np.array([1, 1, 5, 5, 10, 10])
        assert pf.choose_reference(groups, lib, candidates={'a', 'c'}) == 'a'

    def test_explicit(self, groups):
        assert pf.choose_reference(groups, np.ones(6), ref_clust='c') == 'c'

    def test_explicit_split_cluster(self):
        groups, parent = pf.split_clusters(np.array(['x'] * 6), max_cluster_size=3)
        assert pf.choose_reference(groups, np.ones(6), 'x', parent) == 'x.1'

    def test_unknown(self, groups):
        with pytest.raises(pf.InvalidConfigurationError):
            pf.choose_reference(groups, np.ones(6), ref_clust='zzz')


class TestRescaleClusters:

    def test_median_ratio(self, profile):
        p = profile / profile.sum()
        out = pf.rescale_clusters({'r': p, 'k': 2 * p}, {'r': 1.0, 'k': 1.0}, 'r')
        assert out['r'] == 1.0
        assert out['k'] == pytest.approx(2.0)

    def test_robust_to_few_changed_features(self, profile):
        p = profile / profile.sum()
        q = p.copy()
        q[:10] *= 50
        out = pf.rescale_clusters({'r': p, 'k': q}, {'r': 1.0, 'k': 1.0}, 'r')
        assert out['k'] == pytest.approx(1.0)

    def test_min_mean(self):
        p = np.array([1.0, 1.0, 1.0, 100.0, 100.0])
        q = np.array([10.0, 10.0, 10.0, 50.0, 50.0])
        assert pf.rescale_clusters({'r': p, 'k': q}, {'r': 1.0, 'k': 1.0}, 'r')['k'] == 10
        out = pf.rescale_clusters({'r': p, 'k': q}, {'r': 1.0, 'k': 1.0}, 'r', min_mean=10)
        assert out['k'] == pytest.approx(0.5)

    def test_no_shared_features(self):
        p = np.array([1.0, 0.0])
        q = np.array([0.0, 1.0])
        with pytest.raises(pf.DisconnectedSystemError):
            pf.rescale_clusters({'r': p, 'k': q}, {'r': 1.0, 'k': 1.0}, 'r')


class TestFitCluster:

    def test_too_small_before_pooling(self, exact_counts):
        config = pf.make_config(sizes=[20, 40])
        with pytest.raises(pf.InsufficientCellsError) as info:
            pf.fit_cluster(exact_counts[:, :50], exact_counts[:, :50].sum(axis=0),
                           config, label='k')
        assert info.value.n_cells == 50
        assert info.value.required == 80
        assert info.value.cluster == 'k'

    def test_local_factors(self, exact_counts):
        config = pf.make_config(sizes=[5, 10], errors=True)
        lib = exact_counts.sum(axis=0)
        fit = pf.fit_cluster(exact_counts, lib, config)
        assert np.allclose(fit['factors'], lib, rtol=1e-6)
        assert fit['se'].shape == (60,)
        assert fit['npools'] == 120
        assert fit['dropped'] == 0
        assert fit['mean_scaling'] == pytest.approx(lib.mean())
