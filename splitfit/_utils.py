"""
_utils.py
=========
General-purpose utility functions for splitfit.

These are standalone functions that don't depend on the main classes:
argument validation for cycles and distance matrices, and the small in-place
array helpers every solver uses to keep weights non-negative.
"""

from typing import List

import numpy as np


def validate_cycle(cycle) -> List[int]:
    """
    Validate a circular ordering and return it as a list of ints.

    A valid cycle must:
    1. Be a sequence (list, tuple or 1-D integer array)
    2. Contain integers only
    3. Be a permutation of ``1..n``

    Parameters
    ----------
    cycle : sequence of int
        Circular ordering of taxon ids (1-based).

    Returns
    -------
    list[int]

    Raises
    ------
    TypeError
        If *cycle* is not a sequence of integers.
    ValueError
        If *cycle* is empty or not a permutation of ``1..n``.

    Examples
    --------
    >>> validate_cycle((2, 1, 3))
    [2, 1, 3]

    >>> validate_cycle([1, 1, 3])
    ValueError: cycle must be a permutation of 1..3
    """
    if isinstance(cycle, (str, bytes)) or not hasattr(cycle, "__len__"):
        raise TypeError(
            f"cycle must be a sequence of taxon ids, got {type(cycle).__name__}"
        )
    out = []
    for t in cycle:
        if isinstance(t, (bool, np.bool_)) or not isinstance(t, (int, np.integer)):
            raise TypeError(f"cycle entries must be integers, got {t!r}")
        out.append(int(t))

    n = len(out)
    if n == 0:
        raise ValueError("cycle must contain at least one taxon")
    if sorted(out) != list(range(1, n + 1)):
        raise ValueError(f"cycle must be a permutation of 1..{n}")
    return out


def validate_distances(distances, n: int) -> np.ndarray:
    """
    Validate a distance matrix against a taxon count.

    Parameters
    ----------
    distances : array_like, shape (n, n)
        ``distances[a - 1, b - 1]`` is the distance between taxa a and b.
    n : int
        Expected number of taxa.

    Returns
    -------
    np.ndarray[float64, shape=(n, n)]
        A float64 copy of the matrix.

    Raises
    ------
    TypeError
        If the matrix is not numeric.
    ValueError
        If the matrix is not square of size n, is asymmetric, or has negative
        or non-finite entries.
    """
    try:
        dm = np.array(distances, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise TypeError(f"distances must be a numeric matrix: {e}") from e

    if dm.ndim != 2 or dm.shape[0] != dm.shape[1]:
        raise ValueError(f"distances must be a square matrix, got shape {dm.shape}")
    if dm.shape[0] != n:
        raise ValueError(
            f"distances has {dm.shape[0]} taxa but the cycle has {n}"
        )
    if not np.all(np.isfinite(dm)):
        raise ValueError("distances contains non-finite entries")
    if np.any(dm < 0):
        raise ValueError("distances contains negative entries")

    scale = max(1.0, float(np.max(np.abs(dm)))) if dm.size else 1.0
    if not np.allclose(dm, dm.T, rtol=0.0, atol=1e-12 * scale):
        raise ValueError("distances must be symmetric")
    return dm


def zero_negative_entries(x: np.ndarray) -> int:
    """
    Clamp negative entries of *x* to zero in place.

    Returns
    -------
    int
        Number of entries that were negative.
    """
    neg = x < 0
    count = int(np.count_nonzero(neg))
    if count:
        x[neg] = 0.0
    return count


def threshold_entries(x: np.ndarray, threshold: float) -> np.ndarray:
    """Copy of *x* with every entry below *threshold* set to zero."""
    out = x.copy()
    out[out < threshold] = 0.0
    return out
