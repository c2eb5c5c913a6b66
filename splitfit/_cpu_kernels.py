"""
_cpu_kernels.py
===============
CPU-parallel circular-operator kernels using Numba.

This module contains ONLY numba-accelerated code and should not import other
project modules to avoid import-time complications.  All kernels work on the
flat triangular layout described in ``_indexing.py``; the index arithmetic is
duplicated here in ``_pidx`` so the kernels stay self-contained.

Exported Functions
------------------
_pidx : njit function
    Flat position of pair (i, j), i < j.

_calc_ax_nb : njit function
    Forward map  x (split weights) -> A x (circular distances).

_calc_atx_nb : njit function
    Adjoint map  d -> A^T d.

_calc_ainv_nb : njit function
    Exact inverse  d -> A^{-1} d.

Notes
-----
Forward and adjoint are computed one diagonal level ``k = j - i`` at a time.
Level k reads only levels k-1 and k-2, so the levels run sequentially and the
``n - k`` updates inside a level are spread over threads with ``prange``.
The implicit join at the end of each ``prange`` loop is the barrier between
levels.  ``cache=True`` persists the compiled binary to disk.
"""

from numba import njit, prange


# ======================================================================== #
# Index helpers                                                             #
# ======================================================================== #


@njit(cache=True)
def _pidx(i, j, n):
    """Flat position of pair (i, j) with 0 <= i < j < n."""
    return i * (2 * n - i - 1) // 2 + j - i - 1


@njit(cache=True)
def _get(v, i, j, n):
    """Symmetric read of a flat vector, zero on the diagonal."""
    if i == j:
        return 0.0
    if i > j:
        i, j = j, i
    return v[_pidx(i, j, n)]


# ======================================================================== #
# Operator kernels                                                          #
# ======================================================================== #


@njit(parallel=True, cache=True)
def _calc_ax_nb(x, y, n):
    """
    Circular distances from split weights.

    Parameters
    ----------
    x : float64[n_pairs]
        Split weights.  x[(i, j)] weights the split {i, ..., j-1} | rest.
    y : float64[n_pairs]
        Output, overwritten with the induced distances.
    n : int
        Number of taxa.

    Adjacent pairs (a, a+1) are separated by exactly the splits with an
    endpoint at a+1, so y[(a, a+1)] is the sum of row and column a+1 of x.
    Longer gaps follow

        y[a, b] = y[a, b-1] + y[a+1, b] - y[a+1, b-1] - 2 x[a+1, b]

    with y[a+1, a+1] = 0 for the k = 2 level.
    """
    for a in prange(n - 1):
        m = a + 1
        s = 0.0
        for c in range(m):
            s += x[_pidx(c, m, n)]
        for b in range(m + 1, n):
            s += x[_pidx(m, b, n)]
        y[_pidx(a, m, n)] = s

    for k in range(2, n):
        for a in prange(n - k):
            b = a + k
            v = y[_pidx(a, b - 1, n)] + y[_pidx(a + 1, b, n)] - 2.0 * x[_pidx(a + 1, b, n)]
            if k > 2:
                v -= y[_pidx(a + 1, b - 1, n)]
            y[_pidx(a, b, n)] = v


@njit(parallel=True, cache=True)
def _calc_atx_nb(x, y, n):
    """
    Adjoint of the circular operator.

    Parameters
    ----------
    x : float64[n_pairs]
        Vector in distance space.
    y : float64[n_pairs]
        Output, overwritten with A^T x.
    n : int
        Number of taxa.

    The trivial split {a} separates every pair containing a, so
    y[(a, a+1)] is the sum of all entries of x involving taxon a.  Longer
    splits follow

        y[a, b] = y[a, b-1] + y[a+1, b] - y[a+1, b-1] - 2 x[a, b-1].
    """
    for a in prange(n - 1):
        s = 0.0
        for c in range(a):
            s += x[_pidx(c, a, n)]
        for b in range(a + 1, n):
            s += x[_pidx(a, b, n)]
        y[_pidx(a, a + 1, n)] = s

    for k in range(2, n):
        for a in prange(n - k):
            b = a + k
            v = y[_pidx(a, b - 1, n)] + y[_pidx(a + 1, b, n)] - 2.0 * x[_pidx(a, b - 1, n)]
            if k > 2:
                v -= y[_pidx(a + 1, b - 1, n)]
            y[_pidx(a, b, n)] = v


@njit(parallel=True, cache=True)
def _calc_ainv_nb(y, x, n):
    """
    Unconstrained inverse of the circular operator.

    Parameters
    ----------
    y : float64[n_pairs]
        Distances in cycle order.
    x : float64[n_pairs]
        Output, overwritten with A^{-1} y.  Entries are negative when y is
        not a circular metric for this ordering.
    n : int
        Number of taxa.

    Every entry is an independent four-term difference, so both loops are
    parallel:

        x[0, b] = (y[b-1, n-1] + y[0, b] - y[0, b-1] - y[b, n-1]) / 2
        x[a, b] = (y[a-1, b-1] + y[a, b] - y[a, b-1] - y[a-1, b]) / 2
    """
    for b in prange(1, n):
        x[_pidx(0, b, n)] = 0.5 * (
            _get(y, b - 1, n - 1, n)
            + y[_pidx(0, b, n)]
            - _get(y, 0, b - 1, n)
            - _get(y, b, n - 1, n)
        )

    for a in prange(1, n - 1):
        for b in range(a + 1, n):
            x[_pidx(a, b, n)] = 0.5 * (
                _get(y, a - 1, b - 1, n)
                + y[_pidx(a, b, n)]
                - _get(y, a, b - 1, n)
                - y[_pidx(a - 1, b, n)]
            )
