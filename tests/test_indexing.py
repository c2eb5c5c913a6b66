"""
tests/test_indexing.py
======================
Flat triangular layout: pair positions, square/flat conversion and the
reindexing of taxon-indexed distances into cycle order.
"""

import numpy as np
import pytest

from splitfit._indexing import (
    n_pairs,
    pair_index,
    triu_indices,
    flat_to_square,
    square_to_flat,
    reindex_distances,
)


class TestPairIndex:
    def test_small_layout(self):
        n = 4
        expected = [(0, 1), (0, 2), (0, 3), (1, 2), (1, 3), (2, 3)]
        for k, (i, j) in enumerate(expected):
            assert pair_index(i, j, n) == k

    def test_unordered(self):
        assert pair_index(3, 1, 6) == pair_index(1, 3, 6)

    @pytest.mark.parametrize("n", [2, 3, 7, 12])
    def test_bijection_matches_triu(self, n):
        rows, cols = triu_indices(n)
        got = [pair_index(int(i), int(j), n) for i, j in zip(rows, cols)]
        assert got == list(range(n_pairs(n)))

    def test_rejects_diagonal(self):
        with pytest.raises(ValueError):
            pair_index(2, 2, 5)

    def test_rejects_out_of_range(self):
        with pytest.raises(ValueError):
            pair_index(0, 5, 5)
        with pytest.raises(ValueError):
            pair_index(-1, 2, 5)


class TestTriuIndices:
    def test_read_only(self):
        rows, _ = triu_indices(5)
        with pytest.raises(ValueError):
            rows[0] = 3

    def test_cached(self):
        assert triu_indices(6) is triu_indices(6)


class TestSquareFlat:
    def test_round_trip(self):
        v = np.arange(1.0, 11.0)
        sq = flat_to_square(v, 5)
        np.testing.assert_array_equal(sq, sq.T)
        np.testing.assert_array_equal(np.diag(sq), 0.0)
        np.testing.assert_array_equal(square_to_flat(sq), v)

    def test_upper_only(self):
        sq = flat_to_square(np.ones(3), 3, symmetric=False)
        assert sq[1, 0] == 0.0
        assert sq[0, 1] == 1.0

    def test_wrong_length(self):
        with pytest.raises(ValueError):
            flat_to_square(np.ones(4), 3)

    def test_non_square(self):
        with pytest.raises(ValueError):
            square_to_flat(np.ones((2, 3)))


class TestReindexDistances:
    def test_cycle_order(self):
        # distances[a-1, b-1] = 10a + b for a < b
        dm = np.zeros((3, 3))
        for a in range(1, 4):
            for b in range(a + 1, 4):
                dm[a - 1, b - 1] = dm[b - 1, a - 1] = 10 * a + b
        d = reindex_distances(dm, [3, 1, 2])
        # positions (0,1)=taxa(3,1), (0,2)=taxa(3,2), (1,2)=taxa(1,2)
        np.testing.assert_array_equal(d, [13.0, 23.0, 12.0])

    def test_identity_cycle(self):
        v = np.arange(1.0, 7.0)
        np.testing.assert_array_equal(
            reindex_distances(flat_to_square(v, 4), [1, 2, 3, 4]), v
        )
