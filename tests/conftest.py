"""Shared fixtures for poolfactors tests."""

import numpy as np
import pytest


@pytest.fixture
def rng():
    """Seeded random number generator for reproducibility."""
    return np.random.RandomState(42)


@pytest.fixture
def profile(rng):
    """Common expression profile: 100 genes with positive counts."""
    return rng.randint(1, 20, 100).astype(np.float64)


@pytest.fixture
def four_cells(profile):
    """4 cells x 100 genes, library sizes 1:2:3:4 times a common profile."""
    return np.outer(profile, [50, 100, 150, 200]) / 50


@pytest.fixture
def exact_counts(rng, profile):
    """100 genes x 60 cells, every cell an exact multiple of the profile."""
    scale = rng.randint(1, 9, 60).astype(np.float64)
    return np.outer(profile, scale)


@pytest.fixture
def true_sf(rng):
    """True size factors of the simulated cells."""
    return rng.uniform(0.5, 2.0, 120)


@pytest.fixture
def sim_counts(rng, true_sf):
    """Poisson counts: 300 genes x 120 cells with known size factors."""
    mu = rng.gamma(2.0, 2.0, 300)
    return rng.poisson(mu[:, np.newaxis] * true_sf[np.newaxis, :]).astype(np.float64)
