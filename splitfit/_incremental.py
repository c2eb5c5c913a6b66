"""
_incremental.py
===============
Fast non-negative starting point for the split-weight problem.

Taxa are sorted so that every prefix is as spread out as possible
(``max_divergence_order``) and then inserted back one at a time into a growing
circular sub-ordering.  Inserting a taxon between its circular neighbours u
and v creates one new split per taxon already placed, and the weights ``g``
of those splits must satisfy ``M g ~ z`` with ``0 <= g_i <= b_i``, where

    M = [ V(r1)        U(r1, r2) ]
        [ -U(r2, r1)   V(r2)     ]

``V(r)`` is r x r with ones on and below the diagonal and -1 above, ``U`` is
all ones, r1 counts the placed taxa that precede the new one in the cycle and
r2 those that follow it.  ``M``, its transpose and its inverse are applied in
O(k) without forming the matrix.  When the exact solution violates the box,
a bounded Brent search along the projected segment from a feasible guess
repairs it, followed by a few projected-gradient steps on the box problem.

On distances that are exactly circular for the ordering the procedure
reproduces the generating split weights.

Unlike the operator and the solvers, the insertion loop does not work on the
flat triangular layout of ``_indexing``.  Every insertion reads and writes a
whole row and column of the placed taxa, so the distances, the split weights
and the induced distances of the partial circle are held as symmetric
``(n, n)`` arrays indexed by cycle position.  ``flat_to_square`` and
``square_to_flat`` convert at entry and exit, so callers see only the flat
layout.  This costs O(n^2) extra memory, the same order as the input.
"""

import bisect
import logging
from typing import List

import numpy as np
from scipy.optimize import minimize_scalar

from splitfit._indexing import n_pairs, triu_indices, flat_to_square, square_to_flat
from splitfit._operator import CircularOperator
from splitfit._cancel import Cancelled, as_cancel_check
from splitfit._logging import log_incremental_progress


logger = logging.getLogger(__name__)

# Projected-gradient steps on the box problem after a Brent repair
_POLISH_STEPS = 5


# ======================================================================== #
# Insertion order                                                          #
# ======================================================================== #


def max_divergence_order(dist: np.ndarray) -> List[int]:
    """
    Order taxa so that each prefix is maximally spread out.

    The first taxon has the largest row sum; every following taxon is the
    unplaced one with the largest summed distance to those already placed.
    Ties go to the smallest index.

    Parameters
    ----------
    dist : np.ndarray, shape (n, n)
        Symmetric non-negative distances.

    Returns
    -------
    list[int]
        A permutation of ``0..n-1``.

    Examples
    --------
    >>> d = np.array([[0, 1, 4], [1, 0, 2], [4, 2, 0]], dtype=float)
    >>> max_divergence_order(d)
    [2, 0, 1]
    """
    dist = np.asarray(dist, dtype=np.float64)
    n = dist.shape[0]
    first = int(np.argmax(dist.sum(axis=1)))
    order = [first]

    placed = np.zeros(n, dtype=bool)
    placed[first] = True
    s = dist[first].copy()

    for _ in range(1, n):
        nxt = int(np.argmax(np.where(placed, -np.inf, s)))
        order.append(nxt)
        placed[nxt] = True
        s += dist[nxt]
    return order


# ======================================================================== #
# Structured matrix M(r1, r2)                                              #
# ======================================================================== #


def multiply_m(r1: int, g: np.ndarray) -> np.ndarray:
    """
    Product ``M g`` for ``M = M(r1, len(g) - r1)``.

    ``r1 == 0`` is treated as ``r1 == len(g)`` (no second block).
    """
    g = np.asarray(g, dtype=np.float64)
    m = len(g)
    if r1 == 0:
        r1 = m
    y = np.empty(m, dtype=np.float64)

    y0 = g[0] - g[1:r1].sum() + g[r1:].sum()
    y[0] = y0
    y[1:r1] = y0 + 2.0 * np.cumsum(g[1:r1])
    if r1 < m:
        y[r1] = -y[r1 - 1] + 2.0 * g[r1]
        y[r1 + 1:] = y[r1] + 2.0 * np.cumsum(g[r1 + 1:])
    return y


def multiply_mt(r1: int, g: np.ndarray) -> np.ndarray:
    """
    Product ``M^T g`` for ``M = M(r1, len(g) - r1)``.

    Column i of M differs from column i-1 only in row i-1, where the sign
    flips from +1 to -1, so consecutive entries of ``M^T g`` differ by
    ``-2 g[i-1]``.  The first entry of each block is a plain signed sum.
    """
    g = np.asarray(g, dtype=np.float64)
    m = len(g)
    if r1 == 0:
        r1 = m
    y = np.empty(m, dtype=np.float64)

    y0 = g[:r1].sum() - g[r1:].sum()
    y[0] = y0
    y[1:r1] = y0 - 2.0 * np.cumsum(g[: r1 - 1])
    if r1 < m:
        y[r1] = g.sum()
        y[r1 + 1:] = y[r1] - 2.0 * np.cumsum(g[r1 : m - 1])
    return y


def solve_m(r1: int, z: np.ndarray) -> np.ndarray:
    """
    Solve ``M g = z`` in O(len(z)).

    Parameters
    ----------
    r1 : int
        Size of the first block, ``0 <= r1 <= len(z)``.
    z : np.ndarray
        Right-hand side.

    Returns
    -------
    np.ndarray
        The unconstrained solution; entries may fall outside any box.
    """
    z = np.asarray(z, dtype=np.float64)
    m = len(z)
    g = 0.5 * (z - np.roll(z, 1))
    if 0 < r1 < m:
        g[r1] += z[r1 - 1]
    else:
        g[0] += z[m - 1]
    return g


def _box_residual(r1, g, z):
    r = multiply_m(r1, g) - z
    return float(r @ r)


def _repair_insertion(g0, g1, b, r1, z, tol):
    """
    Best feasible point on the projected segment from g0 to g1.

    The residual ``||M proj((1-t) g0 + t g1) - z||`` is minimised over
    ``t in [0, 1]`` with scipy's bounded Brent method.  Both endpoints are
    also checked, since the bounded method never evaluates them.
    """

    def project(t):
        return np.clip((1.0 - t) * g0 + t * g1, 0.0, b)

    def objective(t):
        return np.sqrt(_box_residual(r1, project(t), z))

    res = minimize_scalar(
        objective,
        bounds=(0.0, 1.0),
        method="bounded",
        options={"xatol": tol, "maxiter": 100},
    )
    candidates = [(float(res.fun), float(res.x)), (objective(0.0), 0.0), (objective(1.0), 1.0)]
    _, t_best = min(candidates)
    return project(t_best)


def _polish_insertion(g, b, r1, z, steps=_POLISH_STEPS):
    """Projected steepest descent on ``0.5 ||M g - z||^2`` over the box."""
    f = _box_residual(r1, g, z)
    for _ in range(steps):
        grad = multiply_mt(r1, multiply_m(r1, g) - z)
        pg = np.where(g > 0, grad, np.minimum(grad, 0.0))
        pg = np.where(g < b, pg, np.maximum(pg, 0.0))
        mg = multiply_m(r1, pg)
        denom = float(mg @ mg)
        if denom <= 0.0:
            break
        step = float(pg @ pg) / denom
        trial = np.clip(g - step * pg, 0.0, b)
        ft = _box_residual(r1, trial, z)
        if not ft < f:
            break
        g, f = trial, ft
    return g


# ======================================================================== #
# Incremental fit                                                          #
# ======================================================================== #


def _refine_prefix(X, P, D, cycle, backend):
    """
    One projected steepest-descent step on the taxa inserted so far.

    The sub-problem lives on the circular ordering of the placed taxa, so
    the full circular operator of that size applies.  The step length is
    chosen by a bounded Brent search over ``t in [0, 1]`` and only kept if
    it lowers the residual.
    """
    k = len(cycle)
    cyc = np.asarray(cycle)
    rows, cols = triu_indices(k)
    ri, ci = cyc[rows], cyc[cols]

    op = CircularOperator(k, backend=backend)
    xs = X[ri, ci].copy()
    ds = D[ri, ci]
    grad = op.gradient(xs, ds)

    def objective(t):
        return op.objective(np.maximum(xs - t * grad, 0.0), ds)

    res = minimize_scalar(objective, bounds=(0.0, 1.0), method="bounded", options={"maxiter": 20})
    if not res.fun < objective(0.0):
        return
    xs = np.maximum(xs - res.x * grad, 0.0)
    ps = op.forward(xs)
    X[ri, ci] = X[ci, ri] = xs
    P[ri, ci] = P[ci, ri] = ps


def incremental_fitting(
    d: np.ndarray,
    n_taxa: int,
    tol: float = 1e-10,
    refine: bool = False,
    backend: str = "best",
    cancel=None,
) -> np.ndarray:
    """
    Heuristic non-negative split weights in O(n^2 log n).

    Parameters
    ----------
    d : np.ndarray, shape (n_pairs,)
        Distances in cycle order (flat triangular layout).
    n_taxa : int
        Number of taxa, at least 2.
    tol : float, default 1e-10
        Absolute tolerance of the bounded line search, and the slack with
        which an exact insertion solution still counts as inside its box.
    refine : bool, default False
        Take one projected steepest-descent step on the inserted taxa after
        every insertion.
    backend : str, default 'best'
        Operator backend used by the refinement step.
    cancel : CancellationToken, callable or None
        Polled once per insertion.

    Returns
    -------
    np.ndarray[float64, shape=(n_pairs,)]
        Non-negative split weights.

    Raises
    ------
    Cancelled
        If cancellation was requested; ``partial_weights`` holds the weights
        of the taxa inserted so far.
    """
    if n_taxa < 2:
        raise ValueError(f"incremental fitting needs at least 2 taxa, got {n_taxa}")
    d = np.asarray(d, dtype=np.float64)
    if d.shape != (n_pairs(n_taxa),):
        raise ValueError(f"d must have shape ({n_pairs(n_taxa)},), got {d.shape}")
    check = as_cancel_check(cancel)

    n = n_taxa
    D = flat_to_square(d, n)
    X = np.zeros((n, n), dtype=np.float64)
    P = np.zeros((n, n), dtype=np.float64)

    order = max_divergence_order(D)
    s1, s2 = order[0], order[1]
    X[s1, s2] = X[s2, s1] = D[s1, s2]
    P[s1, s2] = P[s2, s1] = D[s1, s2]
    cycle = sorted((s1, s2))

    repaired = 0
    for sk in order[2:]:
        if check is not None and check():
            raise Cancelled(
                "incremental fitting cancelled",
                partial_weights=np.maximum(square_to_flat(X), 0.0),
            )

        m = len(cycle)
        r1 = bisect.bisect_left(cycle, sk)
        if 0 < r1 < m:
            u, v = cycle[r1 - 1], cycle[r1]
        else:
            u, v = cycle[-1], cycle[0]
        cyc = np.asarray(cycle)

        z = D[cyc, sk] - P[cyc, u]
        b = X[cyc, v].copy()
        trivial = r1 if r1 < m else 0
        b[trivial] = np.inf

        g1 = solve_m(r1, z)
        if np.all(g1 >= -tol) and np.all(g1 <= b + tol):
            gamma = np.clip(g1, 0.0, b)
        else:
            g0 = 0.5 * b
            g0[trivial] = np.sqrt(float(z @ z)) / m
            gamma = _repair_insertion(g0, g1, b, r1, z, tol)
            gamma = _polish_insertion(gamma, b, r1, z)
            repaired += 1

        mg = multiply_m(r1, gamma)
        P[sk, cyc] = P[u, cyc] + mg
        P[cyc, sk] = P[sk, cyc]
        X[sk, cyc] = gamma
        X[cyc, sk] = gamma
        X[v, cyc] = np.maximum(X[v, cyc] - gamma, 0.0)
        X[cyc, v] = X[v, cyc]
        X[v, v] = 0.0

        cycle.insert(r1, sk)

        if refine:
            _refine_prefix(X, P, D, cycle, backend)

        if logger.isEnabledFor(logging.DEBUG):
            log_incremental_progress(len(cycle), n, float(np.sum((P[cyc, sk] - D[cyc, sk]) ** 2)))

    logger.debug("Incremental fit repaired %d of %d insertions", repaired, max(n - 2, 0))
    return square_to_flat(X)
