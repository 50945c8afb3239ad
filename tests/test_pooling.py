"""Tests for ring ordering and sliding-window pool construction."""

import numpy as np
import pytest

import poolfactors as pf


class TestRingOrder:
    """Library-size ring ordering."""

    def test_ring_layout(self):
        order = pf.ring_order([5, 1, 4, 2, 3])
        assert list(order) == [1, 4, 0, 2, 3]

    def test_ties_keep_input_order(self):
        order = pf.ring_order([1, 1, 1, 1])
        assert list(order) == [0, 2, 3, 1]

    def test_neighbours_have_similar_library_sizes(self, rng):
        lib = rng.uniform(100, 1000, 51)
        ring = lib[pf.ring_order(lib)]
        step = np.abs(np.diff(np.append(ring, ring[0])))
        srt = np.sort(lib)
        # Adjacent ring cells are at most two ranks apart.
        assert np.all(step <= np.max(srt[2:] - srt[:-2]) + 1e-12)

    def test_deterministic(self, rng):
        lib = rng.poisson(50, 40)
        assert np.array_equal(pf.ring_order(lib), pf.ring_order(lib))


class TestBuildPools:
    """Sliding windows over the ring."""

    def test_pool_count_and_members(self):
        pools = pf.build_pools(np.arange(6), [2, 3])
        assert len(pools) == 12
        assert pools.sizes == (2, 3)
        assert list(pools.members(0)) == [0, 1]
        assert list(pools.members(5)) == [5, 0]
        assert list(pools.members(6)) == [0, 1, 2]
        assert list(pools.members(11)) == [5, 0, 1]

    def test_iteration_yields_pools(self):
        pools = pf.build_pools(np.array([3, 1, 0, 2]), [2])
        out = list(pools)
        assert len(out) == 4
        assert all(isinstance(p, pf.Pool) for p in out)
        assert list(out[3].cells) == [2, 3]
        assert out[3].size == 2
        assert out[3].start == 3

    def test_incidence(self):
        pools = pf.build_pools(np.arange(6), [2, 3])
        inc = pools.incidence().toarray()
        assert inc.shape == (12, 6)
        assert np.array_equal(inc.sum(axis=1), pools.pool_sizes())
        # Every cell is in s pools of each size s.
        assert np.all(inc.sum(axis=0) == 5)
        assert np.array_equal(np.where(inc[5])[0], [0, 5])

    def test_oversized_pool_skipped(self):
        with pytest.warns(pf.InsufficientCellsWarning):
            pools = pf.build_pools(np.arange(6), [3, 10])
        assert pools.sizes == (3,)

    def test_no_usable_size(self):
        with pytest.warns(pf.InsufficientCellsWarning):
            with pytest.raises(pf.InsufficientCellsError):
                pf.build_pools(np.arange(6), [6], cluster='x')
