"""
Solvers for the pooled size-factor system.

Both strategies factorize the same assembled system. The triangular factor
``R`` of ``A = QR`` is obtained as the Cholesky factor of ``A'A``, which
keeps memory at ``ncells x ncells`` for tall sparse systems.
"""

from dataclasses import dataclass
import warnings

import numpy as np
from scipy import linalg as sla
from scipy.optimize import lsq_linear

from .errors import NegativeFactorWarning, SingularSystemError


# Largest system (rows x cells) handed to the dense bounded solver.
_DENSE_LIMIT = 10_000_000


@dataclass(frozen=True, eq=False)
class Solution:
    factors: np.ndarray
    se: np.ndarray = None
    residual_ss: float = np.nan
    df_residual: int = 0
    method: str = ''


def _triangular_factor(system, tol):
    """Upper-triangular R with R'R = A'A; raises on rank deficiency."""
    A = system.A
    gram = (A.T @ A).toarray()
    try:
        R = sla.cholesky(gram, lower=False)
    except sla.LinAlgError:
        raise SingularSystemError(
            "linear system is rank deficient (factorization failed)",
            cluster=system.cluster) from None
    d = np.diag(R) ** 2
    if not np.all(np.isfinite(d)) or d.min() <= tol * d.max():
        raise SingularSystemError(
            f"linear system is rank deficient (pivot ratio {d.min() / d.max():.3g})",
            cluster=system.cluster)
    return R


def _standard_errors(system, R, theta):
    resid = system.A @ theta - system.b
    rss = float(resid @ resid)
    df = system.nrows - system.ncells
    sigma2 = rss / df if df > 0 else np.nan
    Rinv = sla.solve_triangular(R, np.eye(R.shape[0]), lower=False)
    unscaled = np.sum(Rinv ** 2, axis=1)
    return np.sqrt(sigma2 * unscaled), rss, df


class Solver:
    """Strategy interface: turn a :class:`LinearSystem` into cell factors."""

    method = None

    def __init__(self, tol=1e-13):
        self.tol = tol

    def solve(self, system, errors=False):
        R = _triangular_factor(system, self.tol)
        theta = self._solve(system, R)
        if errors:
            se, rss, df = _standard_errors(system, R, theta)
            se = self._mask_se(se, theta)
        else:
            se = None
            resid = system.A @ theta - system.b
            rss, df = float(resid @ resid), system.nrows - system.ncells
        self._check(theta, system.cluster)
        return Solution(factors=theta, se=se, residual_ss=rss,
                        df_residual=df, method=self.method)

    def _solve(self, system, R):
        raise NotImplementedError

    def _mask_se(self, se, theta):
        return se

    def _check(self, theta, cluster):
        pass


class LeastSquaresSolver(Solver):
    """Unconstrained least squares; factors may be negative."""

    method = 'lstsq'

    def _solve(self, system, R):
        return sla.cho_solve((R, False), system.A.T @ system.b)

    def _check(self, theta, cluster):
        bad = np.sum(theta <= 0)
        if bad:
            warnings.warn(
                f"{bad} negative or zero size factor estimate(s) in cluster {cluster!r}",
                NegativeFactorWarning, stacklevel=3)


class NonNegativeSolver(LeastSquaresSolver):
    """Least squares subject to ``theta >= 0``.

    The unconstrained solution is returned when it is already
    non-negative; otherwise the bounded problem is solved. Standard
    errors come from the unconstrained fit and are ``NaN`` for cells
    constrained to zero.
    """

    method = 'nnls'

    def _solve(self, system, R):
        theta = super()._solve(system, R)
        if np.all(theta >= 0):
            return theta
        A = system.A
        if A.shape[0] * A.shape[1] <= _DENSE_LIMIT:
            res = lsq_linear(A.toarray(), system.b, bounds=(0, np.inf), method='bvls')
        else:
            res = lsq_linear(A, system.b, bounds=(0, np.inf),
                             method='trf', tol=1e-12, lsmr_tol='auto')
        theta = np.maximum(res.x, 0)
        theta[res.active_mask == -1] = 0.0
        return theta

    def _mask_se(self, se, theta):
        se = se.copy()
        se[theta <= 0] = np.nan
        return se

    def _check(self, theta, cluster):
        zero = np.sum(theta <= 0)
        if zero:
            warnings.warn(
                f"{zero} size factor estimate(s) constrained to zero in cluster "
                f"{cluster!r}; consider removing these cells",
                NegativeFactorWarning, stacklevel=3)


def get_solver(positive=True, tol=1e-13):
    """Solver strategy for the requested mode."""
    if positive:
        return NonNegativeSolver(tol=tol)
    return LeastSquaresSolver(tol=tol)
