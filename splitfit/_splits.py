"""
_splits.py
==========
Weighted splits and the split-system utilities built on them.

A split is a bipartition of the taxa ``1..n``; it is stored as one side plus
the taxon count, and compares equal to any split describing the same
bipartition with the same weight, whichever side was given.

Functions
---------
  splits_to_distances(splits, n_taxa)   metric induced by a weighted split system
  least_squares_fit(distances, splits)  percentage of the squared distances explained
  is_circular(split, cycle)             whether a split is an arc of the cycle
"""

from typing import FrozenSet, Iterable, Sequence

import numpy as np


class Split:
    """
    A weighted bipartition of the taxa ``1..n_taxa``.

    Parameters
    ----------
    side : iterable of int
        Taxon ids (1-based) on one side.  Must be a non-empty proper subset.
    n_taxa : int
        Total number of taxa.
    weight : float, default 1.0
        Non-negative split weight.

    Examples
    --------
    >>> s = Split({1, 2}, 4, weight=0.5)
    >>> s.complement
    frozenset({3, 4})
    >>> s == Split({3, 4}, 4, weight=0.5)
    True
    >>> s.is_trivial
    False
    """

    __slots__ = ("_side", "_n_taxa", "_weight")

    def __init__(self, side: Iterable[int], n_taxa: int, weight: float = 1.0):
        side = frozenset(int(t) for t in side)
        if not side:
            raise ValueError("a split side must not be empty")
        if len(side) >= n_taxa:
            raise ValueError(f"split side {sorted(side)} is not a proper subset of 1..{n_taxa}")
        if min(side) < 1 or max(side) > n_taxa:
            raise ValueError(f"split side {sorted(side)} is not contained in 1..{n_taxa}")
        if weight < 0:
            raise ValueError(f"split weight must be non-negative, got {weight}")
        self._side = side
        self._n_taxa = int(n_taxa)
        self._weight = float(weight)

    @property
    def side(self) -> FrozenSet[int]:
        """The side given at construction."""
        return self._side

    @property
    def complement(self) -> FrozenSet[int]:
        return frozenset(range(1, self._n_taxa + 1)) - self._side

    @property
    def n_taxa(self) -> int:
        return self._n_taxa

    @property
    def weight(self) -> float:
        return self._weight

    @property
    def bipartition(self) -> FrozenSet[int]:
        """Canonical side: the one not containing taxon 1."""
        return self.complement if 1 in self._side else self._side

    @property
    def size(self) -> int:
        """Size of the smaller side."""
        k = len(self._side)
        return min(k, self._n_taxa - k)

    @property
    def is_trivial(self) -> bool:
        """True when one side holds a single taxon."""
        return self.size == 1

    def separates(self, a: int, b: int) -> bool:
        return (a in self._side) != (b in self._side)

    def with_weight(self, weight: float) -> "Split":
        return Split(self._side, self._n_taxa, weight)

    def __eq__(self, other):
        if not isinstance(other, Split):
            return NotImplemented
        return (
            self._n_taxa == other._n_taxa
            and self.bipartition == other.bipartition
            and self._weight == other._weight
        )

    def __hash__(self):
        return hash((self._n_taxa, self.bipartition, self._weight))

    def __repr__(self):
        return f"Split({sorted(self._side)}, n_taxa={self._n_taxa}, weight={self._weight:.6g})"


def splits_to_distances(splits: Iterable[Split], n_taxa: int, use_weights: bool = True) -> np.ndarray:
    """
    Distance matrix induced by a split system.

    The distance between taxa a and b is the summed weight (or, with
    ``use_weights=False``, the number) of splits separating them.

    Returns
    -------
    np.ndarray[float64, shape=(n_taxa, n_taxa)]
        Indexed by ``taxon - 1``.
    """
    dist = np.zeros((n_taxa, n_taxa), dtype=np.float64)
    mask = np.zeros(n_taxa, dtype=bool)
    for s in splits:
        if s.n_taxa != n_taxa:
            raise ValueError(f"split over {s.n_taxa} taxa in a system of {n_taxa}")
        mask[:] = False
        mask[np.fromiter(s.side, dtype=np.int64) - 1] = True
        dist += (s.weight if use_weights else 1.0) * (mask[:, None] != mask[None, :])
    return dist


def least_squares_fit(distances, splits: Iterable[Split]) -> float:
    """
    Least-squares fit of a split system to a distance matrix, in percent.

    ``100 * (1 - sum (s_ij - d_ij)^2 / sum d_ij^2)`` over pairs ``i < j``,
    where s is the split-induced metric.  0 when every distance is zero.
    """
    dm = np.asarray(distances, dtype=np.float64)
    n = dm.shape[0]
    sd = splits_to_distances(splits, n)
    rows, cols = np.triu_indices(n, k=1)
    dv = dm[rows, cols]
    sum_d2 = float(dv @ dv)
    if sum_d2 <= 0.0:
        return 0.0
    diff = sd[rows, cols] - dv
    return 100.0 * (1.0 - float(diff @ diff) / sum_d2)


def is_circular(split: Split, cycle: Sequence[int]) -> bool:
    """
    Whether *split* is a contiguous arc of the circular ordering *cycle*.

    The side not containing ``cycle[0]`` must occupy consecutive positions.
    """
    part = split.complement if cycle[0] in split.side else split.side
    positions = [pos for pos, t in enumerate(cycle) if t in part]
    return positions[-1] - positions[0] == len(positions) - 1
