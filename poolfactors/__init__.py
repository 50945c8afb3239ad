"""
poolfactors: pooled size-factor normalization for single-cell count data.

Per-cell size factors are deconvolved from the size factors of many
overlapping pools of cells, optionally within clusters that are then
rescaled onto a common reference.
"""

__version__ = "0.1.0"

# --- Classes ---
from .classes import SizeFactors
from .config import SumFactorsConfig, make_config, DEFAULT_SIZES

# --- Errors and warnings ---
from .errors import (
    SizeFactorError,
    InvalidConfigurationError,
    ClusterError,
    InsufficientCellsError,
    EmptyPoolError,
    SingularSystemError,
    DisconnectedSystemError,
    ClusterFailureReport,
    NegativeFactorWarning,
    InsufficientCellsWarning,
)

# --- Normalization ---
from .normalization import compute_sum_factors, assemble_factors, set_size_factors
from .utils import library_size_factors

# --- Pipeline stages ---
from .pooling import Pool, PoolSet, ring_order, build_pools
from .ratios import pseudo_cell, pool_size_factor, pool_size_factors, cell_ratios
from .linear_system import LinearSystem, assemble_system, build_system
from .solvers import Solution, LeastSquaresSolver, NonNegativeSolver, get_solver
from .clusters import split_clusters, choose_reference, rescale_clusters, fit_cluster, run_clusters

# --- Expression ---
from .expression import normalize_counts
