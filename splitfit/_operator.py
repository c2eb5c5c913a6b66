"""
_operator.py
============
The circular split operator ``A`` and its fast recurrences.

For a circular ordering of n taxa, ``A`` maps the ``n(n-1)/2`` circular split
weights to the ``n(n-1)/2`` pairwise distances they induce: the distance
between two taxa is the total weight of the splits separating them.  The
matrix is never formed.  Every product is computed one diagonal level at a
time from the two previous levels, so ``A x``, ``A^T y`` and ``A^{-1} y`` each
cost O(n^2).

Public API
----------
  CircularOperator(n_taxa, backend='best')
      .forward(x)        A x
      .adjoint(y)        A^T y
      .inverse(y)        A^{-1} y  (unconstrained least-squares solution)
      .residual(x, d)    A x - d
      .gradient(x, d)    A^T (A x - d)
      .objective(x, d)   0.5 * ||A x - d||^2
      .estimate_norm()   polynomial estimate of the spectral norm of A^T A

  projected_gradient(x, g), projected_gradient_squared(x, g)
      Gradient restricted to feasible directions at x >= 0.

Backends
--------
  'python'        numpy, each diagonal level vectorised
  'cpu-parallel'  numba kernels from ``_cpu_kernels``; levels run in order,
                  the entries of one level are split across threads

Module-level optimization logging
---------------------------------
On first import this module logs system and optimization library status and
the available backends at INFO level, and routes NumbaPerformanceWarning
through the ``splitfit._logging`` logger.  Silence it with::

    logging.getLogger('splitfit').setLevel(logging.WARNING)
"""

import logging
from typing import Optional

import numpy as np

from splitfit._indexing import n_pairs, triu_indices, flat_to_square, square_to_flat
from splitfit._logging import (
    log_optimization_status,
    install_numba_warning_filter,
    log_backend_availability,
)
from splitfit._backend import (
    check_numba_available,
    get_available_backends,
    get_best_backend,
    resolve_backend,
    import_cpu_kernels,
)
from splitfit._context import get_backend_override


_NUMBA_AVAILABLE = check_numba_available()
_cpu_import_ok, _calc_ax_nb, _calc_atx_nb, _calc_ainv_nb = import_cpu_kernels()

logger = logging.getLogger(__name__)

_BACKENDS_AVAILABLE = get_available_backends()

# Track first calls to kernels for compilation logging
_kernel_first_call = {
    "forward": True,
    "adjoint": True,
    "inverse": True,
}

log_optimization_status(_NUMBA_AVAILABLE)
log_backend_availability(_BACKENDS_AVAILABLE, _NUMBA_AVAILABLE)
install_numba_warning_filter(_NUMBA_AVAILABLE)


# ======================================================================== #
# Reference recurrences (numpy, one diagonal level at a time)              #
# ======================================================================== #


def _forward_numpy(x: np.ndarray, n: int) -> np.ndarray:
    X = flat_to_square(x, n, symmetric=False)
    S = X + X.T
    Y = np.zeros((n, n), dtype=np.float64)

    a = np.arange(n - 1)
    Y[a, a + 1] = S.sum(axis=1)[1:]
    for k in range(2, n):
        r = np.arange(n - k)
        c = r + k
        Y[r, c] = Y[r, c - 1] + Y[r + 1, c] - Y[r + 1, c - 1] - 2.0 * X[r + 1, c]
    return square_to_flat(Y)


def _adjoint_numpy(y: np.ndarray, n: int) -> np.ndarray:
    D = flat_to_square(y, n, symmetric=True)
    X = np.zeros((n, n), dtype=np.float64)

    a = np.arange(n - 1)
    X[a, a + 1] = D.sum(axis=1)[:-1]
    for k in range(2, n):
        r = np.arange(n - k)
        c = r + k
        X[r, c] = X[r, c - 1] + X[r + 1, c] - X[r + 1, c - 1] - 2.0 * D[r, c - 1]
    return square_to_flat(X)


def _inverse_numpy(y: np.ndarray, n: int) -> np.ndarray:
    D = flat_to_square(y, n, symmetric=True)
    X = np.zeros((n, n), dtype=np.float64)

    b = np.arange(1, n)
    X[0, b] = 0.5 * (D[b - 1, n - 1] + D[0, b] - D[0, b - 1] - D[b, n - 1])

    rows, cols = triu_indices(n)
    inner = rows >= 1
    r, c = rows[inner], cols[inner]
    X[r, c] = 0.5 * (D[r - 1, c - 1] + D[r, c] - D[r, c - 1] - D[r - 1, c])
    return square_to_flat(X)


# ======================================================================== #
# Projected gradient                                                       #
# ======================================================================== #


def projected_gradient(x: np.ndarray, g: np.ndarray) -> np.ndarray:
    """
    Gradient restricted to feasible directions.

    Entries with ``x > 0`` keep their gradient; entries on the boundary keep
    only a negative gradient (a direction that would increase ``x``).
    """
    return np.where(x > 0, g, np.minimum(g, 0.0))


def projected_gradient_squared(x: np.ndarray, g: np.ndarray) -> float:
    """Squared norm of :func:`projected_gradient`."""
    pg = projected_gradient(x, g)
    return float(pg @ pg)


# ======================================================================== #
# Operator                                                                  #
# ======================================================================== #


class CircularOperator:
    """
    Matrix-free circular split operator for a fixed number of taxa.

    Parameters
    ----------
    n_taxa : int
        Number of taxa in the circular ordering (at least 2).
    backend : str, default 'best'
        'python', 'cpu-parallel' or 'best'.  An active ``use_backend``
        override replaces 'best'.  An unavailable backend falls back to the
        best available one with a warning.

    Notes
    -----
    Vectors are flat, in the layout of ``_indexing``: for weights,
    ``x[pair_index(i, j, n)]`` weighs the split of cycle positions
    ``{i, ..., j-1}``; for distances, entry ``(i, j)`` is the distance between
    the taxa at cycle positions i and j.
    """

    def __init__(self, n_taxa: int, backend: str = "best"):
        if isinstance(n_taxa, bool) or not isinstance(n_taxa, (int, np.integer)):
            raise TypeError(f"n_taxa must be an int, got {type(n_taxa).__name__}")
        if n_taxa < 2:
            raise ValueError(f"CircularOperator needs at least 2 taxa, got {n_taxa}")

        self.n_taxa = int(n_taxa)
        self.size = n_pairs(self.n_taxa)

        backend_override = get_backend_override()
        if backend == "best" and backend_override is not None:
            backend = backend_override
        try:
            self.backend = resolve_backend(backend)
        except ValueError as e:
            logger.warning(str(e))
            self.backend = get_best_backend()

        self._norm = None

    def __repr__(self):
        return f"CircularOperator(n_taxa={self.n_taxa}, backend={self.backend!r})"

    # ── input handling ───────────────────────────────────────────────────

    def _as_vector(self, v, name: str) -> np.ndarray:
        v = np.ascontiguousarray(v, dtype=np.float64)
        if v.shape != (self.size,):
            raise ValueError(
                f"{name} must have shape ({self.size},) for n_taxa={self.n_taxa}, "
                f"got {v.shape}"
            )
        return v

    def _log_first_call(self, key: str) -> None:
        if self.backend == "cpu-parallel" and _kernel_first_call.get(key, False):
            logger.info(f"  Compiling {key} kernel (cached for future calls)")
            _kernel_first_call[key] = False

    # ── linear maps ──────────────────────────────────────────────────────

    def forward(self, x, out: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Pairwise distances induced by split weights, ``A x``.

        Parameters
        ----------
        x : array_like, shape (n_pairs,)
            Split weights.
        out : np.ndarray, optional
            Preallocated float64 output buffer.

        Returns
        -------
        np.ndarray[float64, shape=(n_pairs,)]
        """
        x = self._as_vector(x, "x")
        if self.backend == "cpu-parallel":
            self._log_first_call("forward")
            if out is None:
                out = np.empty(self.size, dtype=np.float64)
            _calc_ax_nb(x, out, self.n_taxa)
            return out
        y = _forward_numpy(x, self.n_taxa)
        if out is not None:
            out[:] = y
            return out
        return y

    def adjoint(self, y, out: Optional[np.ndarray] = None) -> np.ndarray:
        """Adjoint product ``A^T y`` of a distance-space vector."""
        y = self._as_vector(y, "y")
        if self.backend == "cpu-parallel":
            self._log_first_call("adjoint")
            if out is None:
                out = np.empty(self.size, dtype=np.float64)
            _calc_atx_nb(y, out, self.n_taxa)
            return out
        x = _adjoint_numpy(y, self.n_taxa)
        if out is not None:
            out[:] = x
            return out
        return x

    def inverse(self, y, out: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Unconstrained solution of ``A x = y``.

        Exact when *y* is a circular metric for the ordering; otherwise some
        entries are negative.
        """
        y = self._as_vector(y, "y")
        if self.backend == "cpu-parallel":
            self._log_first_call("inverse")
            if out is None:
                out = np.empty(self.size, dtype=np.float64)
            _calc_ainv_nb(y, out, self.n_taxa)
            return out
        x = _inverse_numpy(y, self.n_taxa)
        if out is not None:
            out[:] = x
            return out
        return x

    # ── least-squares helpers ────────────────────────────────────────────

    def residual(self, x, d) -> np.ndarray:
        """``A x - d``."""
        return self.forward(x) - d

    def gradient(self, x, d) -> np.ndarray:
        """Gradient of ``0.5 ||A x - d||^2``, that is ``A^T (A x - d)``."""
        return self.adjoint(self.residual(x, d))

    def objective(self, x, d) -> float:
        """``0.5 ||A x - d||^2``."""
        r = self.residual(x, d)
        return 0.5 * float(r @ r)

    def estimate_norm(self) -> float:
        """
        Estimate of the largest eigenvalue of ``A^T A``.

        A quartic fit in n of the computed spectral norms; its reciprocal is
        the fixed step size of the accelerated projected gradient method.
        """
        if self._norm is None:
            n = float(self.n_taxa)
            self._norm = (
                (
                    (0.041063124831008 * n + 0.000073540331934) * n
                    + 0.065260125117342
                )
                * n
                + 0.027499142031727
            ) * n - 0.038454953524879
        return self._norm
