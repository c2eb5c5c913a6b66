"""
_indexing.py
============
Flat triangular storage shared by every component of splitfit.

Split weights and pairwise distances both live in vectors of length
``n_pairs(n) = n(n-1)/2``.  Pairs ``(i, j)`` with ``0 <= i < j < n`` are laid
out row-major over the strict upper triangle:

  (0,1) (0,2) ... (0,n-1) (1,2) ... (1,n-1) ... (n-2,n-1)

For a split-weight vector ``x``, ``x[pair_index(i, j, n)]`` is the weight of
the circular split separating positions ``{i, i+1, ..., j-1}`` from the rest.
For a distance vector ``d``, it is the distance between the taxa at cycle
positions ``i`` and ``j``.

This is the only module that knows the layout; everything else goes through
``pair_index`` or the square/flat converters below.
"""

from functools import lru_cache
from typing import Tuple

import numpy as np


def n_pairs(n: int) -> int:
    """Number of unordered pairs of *n* taxa."""
    return n * (n - 1) // 2


def pair_index(i: int, j: int, n: int) -> int:
    """
    Position of pair ``(i, j)`` in the flat triangular buffer.

    The pair is unordered; ``pair_index(i, j, n) == pair_index(j, i, n)``.

    Parameters
    ----------
    i, j : int
        0-based cycle positions, ``i != j``.
    n : int
        Number of taxa.

    Returns
    -------
    int

    Raises
    ------
    ValueError
        If ``i == j`` or either index is out of range.

    Examples
    --------
    >>> pair_index(0, 1, 4)
    0
    >>> pair_index(0, 3, 4)
    2
    >>> pair_index(2, 3, 4)
    5
    """
    if i == j:
        raise ValueError(f"pair_index requires distinct positions, got ({i}, {j})")
    if i > j:
        i, j = j, i
    if i < 0 or j >= n:
        raise ValueError(f"positions ({i}, {j}) out of range for n={n}")
    return i * (2 * n - i - 1) // 2 + (j - i - 1)


@lru_cache(maxsize=64)
def triu_indices(n: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Row and column arrays of the strict upper triangle in flat-buffer order.

    Cached per *n*; the returned arrays are marked read-only.
    """
    rows, cols = np.triu_indices(n, k=1)
    rows.setflags(write=False)
    cols.setflags(write=False)
    return rows, cols


def flat_to_square(v: np.ndarray, n: int, symmetric: bool = True) -> np.ndarray:
    """
    Expand a flat triangular vector into an ``(n, n)`` array.

    The diagonal is zero.  With ``symmetric=False`` only the strict upper
    triangle is filled.
    """
    v = np.asarray(v, dtype=np.float64)
    if v.shape != (n_pairs(n),):
        raise ValueError(
            f"expected flat vector of length {n_pairs(n)} for n={n}, got shape {v.shape}"
        )
    rows, cols = triu_indices(n)
    out = np.zeros((n, n), dtype=np.float64)
    out[rows, cols] = v
    if symmetric:
        out[cols, rows] = v
    return out


def square_to_flat(m: np.ndarray) -> np.ndarray:
    """Read the strict upper triangle of a square array into a flat vector."""
    m = np.asarray(m, dtype=np.float64)
    if m.ndim != 2 or m.shape[0] != m.shape[1]:
        raise ValueError(f"expected a square array, got shape {m.shape}")
    rows, cols = triu_indices(m.shape[0])
    return m[rows, cols].copy()


def reindex_distances(distances: np.ndarray, cycle) -> np.ndarray:
    """
    Flatten a taxon-indexed distance matrix into cycle order.

    Parameters
    ----------
    distances : array_like, shape (n, n)
        ``distances[a - 1, b - 1]`` is the distance between taxa ``a`` and
        ``b`` (taxon ids are 1-based).
    cycle : sequence of int
        Circular ordering, a permutation of ``1..n``.

    Returns
    -------
    np.ndarray[float64, shape=(n_pairs(n),)]
        ``out[pair_index(i, j, n)] = distances[cycle[i] - 1, cycle[j] - 1]``.
    """
    dm = np.asarray(distances, dtype=np.float64)
    perm = np.asarray(cycle, dtype=np.int64) - 1
    rows, cols = triu_indices(len(perm))
    return dm[perm[rows], perm[cols]].copy()
