"""
tests/test_incremental.py
=========================
The incremental starting point.

The structured insertion matrix ``M(r1, r2)`` is checked against its dense
form for every block split; the full procedure is checked for exact recovery
on circular distances and for feasibility on noisy ones.
"""

import numpy as np
import pytest

from splitfit import CancellationToken, Cancelled, incremental_fitting, max_divergence_order
from splitfit._incremental import multiply_m, multiply_mt, solve_m
from splitfit._indexing import flat_to_square, n_pairs, pair_index, reindex_distances

from circular_data import dense_m, dense_matrix, noisy_distances, sparse_weights


def _block_cases(max_m=6):
    return [(r1, m) for m in range(1, max_m + 1) for r1 in range(0, m + 1)]


# ========================================================================== #
# Structured matrix                                                          #
# ========================================================================== #


class TestInsertionMatrix:
    """Fast products and solve against the dense block matrix."""

    @pytest.mark.parametrize("r1,m", _block_cases())
    def test_multiply(self, r1, m):
        g = np.random.default_rng(10 * m + r1).normal(size=m)
        np.testing.assert_allclose(multiply_m(r1, g), dense_m(r1, m) @ g, atol=1e-12)

    @pytest.mark.parametrize("r1,m", _block_cases())
    def test_multiply_transpose(self, r1, m):
        g = np.random.default_rng(10 * m + r1 + 5).normal(size=m)
        np.testing.assert_allclose(multiply_mt(r1, g), dense_m(r1, m).T @ g, atol=1e-12)

    @pytest.mark.parametrize("r1,m", _block_cases())
    def test_solve(self, r1, m):
        z = np.random.default_rng(10 * m + r1 + 7).normal(size=m)
        np.testing.assert_allclose(dense_m(r1, m) @ solve_m(r1, z), z, atol=1e-12)

    def test_dense_layout(self):
        expected = np.array([[1, -1, 1], [1, 1, 1], [-1, -1, 1]], dtype=float)
        np.testing.assert_array_equal(dense_m(2, 3), expected)


# ========================================================================== #
# Insertion order                                                            #
# ========================================================================== #


class TestMaxDivergenceOrder:
    def test_small_example(self):
        d = np.array([[0, 1, 4], [1, 0, 2], [4, 2, 0]], dtype=float)
        assert max_divergence_order(d) == [2, 0, 1]

    def test_greedy_property(self):
        d = noisy_distances(9, seed=3)
        order = max_divergence_order(d)
        assert sorted(order) == list(range(9))
        assert order[0] == int(np.argmax(d.sum(axis=1)))
        for k in range(1, 9):
            placed = order[:k]
            remaining = [t for t in range(9) if t not in placed]
            scores = {t: d[t, placed].sum() for t in remaining}
            assert scores[order[k]] == pytest.approx(max(scores.values()))


# ========================================================================== #
# Full procedure                                                             #
# ========================================================================== #


class TestIncrementalFitting:
    @pytest.mark.parametrize("n", [3, 4, 5, 7, 10])
    def test_recovers_circular_weights(self, n):
        rng = np.random.default_rng(n)
        x0 = rng.uniform(0.1, 1.0, n_pairs(n))
        d = dense_matrix(n) @ x0
        x = incremental_fitting(d, n, backend="python")
        np.testing.assert_allclose(x, x0, atol=1e-8)

    @pytest.mark.parametrize("seed", range(3))
    @pytest.mark.parametrize("n,zero_fraction", [(12, 0.5), (12, 0.8), (12, 0.95), (30, 0.9)])
    def test_recovers_sparse_weights(self, n, zero_fraction, seed):
        # zero weights put the optimum of many insertions on the box boundary
        x0 = sparse_weights(n, zero_fraction, seed=seed)
        d = dense_matrix(n) @ x0
        x = incremental_fitting(d, n, backend="python")
        assert np.max(np.abs(x - x0)) < 1e-6

    def test_flat_layout(self):
        n = 6
        x0 = np.zeros(n_pairs(n))
        for i in range(n - 1):
            x0[pair_index(i, i + 1, n)] = 1.0
        x0[pair_index(0, n - 1, n)] = 1.0
        x0[pair_index(1, 4, n)] = 0.7
        x = incremental_fitting(dense_matrix(n) @ x0, n, backend="python")
        assert x[pair_index(1, 4, n)] == pytest.approx(0.7, abs=1e-8)
        np.testing.assert_allclose(x, x0, atol=1e-8)

    def test_rejects_square_distances(self):
        n = 5
        d = dense_matrix(n) @ np.ones(n_pairs(n))
        with pytest.raises(ValueError, match="shape"):
            incremental_fitting(flat_to_square(d, n), n)

    def test_two_taxa(self):
        np.testing.assert_allclose(incremental_fitting(np.array([2.5]), 2), [2.5])

    @pytest.mark.parametrize("refine", [False, True])
    def test_noisy_is_feasible(self, refine):
        n = 9
        dm = noisy_distances(n, seed=11)
        d = reindex_distances(dm, list(range(1, n + 1)))
        x = incremental_fitting(d, n, refine=refine, backend="python")
        assert x.shape == (n_pairs(n),)
        assert np.all(np.isfinite(x))
        assert np.all(x >= 0.0)

    def test_rejects_wrong_length(self):
        with pytest.raises(ValueError):
            incremental_fitting(np.ones(5), 4)

    def test_rejects_single_taxon(self):
        with pytest.raises(ValueError):
            incremental_fitting(np.zeros(0), 1)

    def test_cancellation(self):
        n = 6
        d = reindex_distances(noisy_distances(n), list(range(1, n + 1)))
        token = CancellationToken()
        token.cancel()
        with pytest.raises(Cancelled) as info:
            incremental_fitting(d, n, cancel=token)
        partial = info.value.partial_weights
        assert partial.shape == (n_pairs(n),)
        assert np.all(partial >= 0.0)
