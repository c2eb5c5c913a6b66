"""
tests/test_engine.py
====================
End-to-end split-weight computation through ``compute`` and
``SplitWeightsEngine``.

Validation layers
-----------------
1. Degenerate orderings (one or two taxa) are answered directly.
2. Circular distances take the exact path and reproduce their weights.
3. Noisy distances go through every solver and yield non-negative,
   cutoff-filtered circular splits with every trivial split present.
4. Input validation, cancellation and backend agreement.
"""

import logging

import numpy as np
import pytest

from splitfit import (
    Algorithm,
    Cancelled,
    CancellationToken,
    ComputeContext,
    SolverConfig,
    Split,
    SplitWeightsEngine,
    compute,
    get_available_backends,
    is_circular,
    quiet,
)
from splitfit._indexing import n_pairs, pair_index

from circular_data import circular_instance, dense_matrix, noisy_distances, to_taxon_matrix


_AVAILABLE = get_available_backends()

cpu_parallel_skip = pytest.mark.skipif(
    "cpu-parallel" not in _AVAILABLE, reason="numba kernels not available"
)

PYTHON = ComputeContext("python")


# ========================================================================== #
# Fixtures                                                                   #
# ========================================================================== #


@pytest.fixture(scope="module")
def circular():
    return circular_instance(7, seed=3)


@pytest.fixture(scope="module")
def noisy():
    n = 8
    return list(range(1, n + 1)), noisy_distances(n, seed=13)


# ========================================================================== #
# Degenerate orderings                                                       #
# ========================================================================== #


class TestDegenerate:
    def test_single_taxon(self):
        assert compute([1], [[0.0]]) == []

    def test_two_taxa(self):
        splits = compute([2, 1], [[0.0, 5.0], [5.0, 0.0]])
        assert splits == [Split({2}, 2, 5.0)]

    def test_two_taxa_zero_distance(self):
        assert compute([1, 2], np.zeros((2, 2))) == []

    def test_two_taxa_result(self):
        result = SplitWeightsEngine().run([1, 2], [[0, 3], [3, 0]])
        assert result.stats.exact
        assert result.fit == pytest.approx(100.0)


# ========================================================================== #
# Exact path                                                                 #
# ========================================================================== #


class TestCircularDistances:
    def test_weights_recovered(self, circular):
        cycle, dm, x0 = circular
        result = SplitWeightsEngine(context=PYTHON).run(cycle, dm)
        assert result.stats.exact
        assert result.stats.converged
        np.testing.assert_allclose(result.weights, x0, atol=1e-9)
        assert len(result.splits) == n_pairs(7)
        assert result.fit == pytest.approx(100.0)

    @pytest.mark.parametrize("seed", range(3))
    @pytest.mark.parametrize("n,zero_fraction", [(7, 0.5), (12, 0.8), (12, 0.95), (30, 0.9)])
    def test_sparse_weights_recovered(self, n, zero_fraction, seed):
        cycle, dm, x0 = circular_instance(n, seed=seed, zero_fraction=zero_fraction)
        result = SplitWeightsEngine(context=PYTHON).run(cycle, dm)

        assert result.stats.exact
        assert np.max(np.abs(result.weights - x0)) < 1e-6
        # round-off below zero is clamped
        assert np.all(result.weights >= 0.0)

        trivial = {pair_index(i, i + 1, n) for i in range(n - 1)} | {pair_index(0, n - 1, n)}
        kept = [k for k in range(n_pairs(n)) if k in trivial or x0[k] > 0.0]
        assert len(result.splits) == len(kept)
        assert result.fit == pytest.approx(100.0)

    def test_split_sides_follow_cycle(self, circular):
        cycle, dm, x0 = circular
        splits = compute(cycle, dm, context=PYTHON)
        # emitted in (i, j) order; split (i, j) is the arc cycle[i:j]
        assert splits[0].side == frozenset(cycle[0:1])
        assert splits[1].side == frozenset(cycle[0:2])
        assert splits[-1].side == frozenset(cycle[5:6])
        assert splits[1].weight == pytest.approx(x0[pair_index(0, 2, 7)])

    def test_cutoff_keeps_trivial_splits(self):
        n = 5
        x0 = np.ones(n_pairs(n))
        x0[pair_index(0, 1, n)] = 5e-5  # trivial {1}
        x0[pair_index(1, 3, n)] = 5e-5  # non-trivial {2, 3}
        cycle = list(range(1, n + 1))
        dm = to_taxon_matrix(dense_matrix(n) @ x0, cycle)

        splits = compute(cycle, dm, context=PYTHON)
        sides = {s.side for s in splits}
        assert frozenset({1}) in sides
        assert frozenset({2, 3}) not in sides
        assert len(splits) == n_pairs(n) - 1

    def test_zero_cutoff_keeps_everything_positive(self):
        n = 5
        x0 = np.ones(n_pairs(n))
        x0[pair_index(1, 3, n)] = 5e-5
        cycle = list(range(1, n + 1))
        dm = to_taxon_matrix(dense_matrix(n) @ x0, cycle)
        splits = compute(cycle, dm, config=SolverConfig(cutoff=0.0), context=PYTHON)
        assert len(splits) == n_pairs(n)

    def test_all_zero_distances(self):
        splits = compute([1, 2, 3, 4], np.zeros((4, 4)), context=PYTHON)
        # only the trivial splits survive, with weight zero
        assert len(splits) == 4
        assert all(s.is_trivial and s.weight == 0.0 for s in splits)


# ========================================================================== #
# Noisy distances                                                            #
# ========================================================================== #


class TestNoisyDistances:
    @pytest.mark.parametrize("algorithm", list(Algorithm))
    def test_output_invariants(self, noisy, algorithm):
        cycle, dm = noisy
        n = len(cycle)
        cfg = SolverConfig(algorithm=algorithm, max_iterations=5000)
        with quiet():
            result = SplitWeightsEngine(cfg, PYTHON).run(cycle, dm)

        assert not result.stats.exact
        assert np.all(result.weights >= 0.0)
        assert all(s.weight >= 0.0 for s in result.splits)
        assert all(is_circular(s, cycle) for s in result.splits)
        assert sum(s.is_trivial for s in result.splits) == n
        assert all(s.weight > cfg.cutoff for s in result.splits if not s.is_trivial)
        assert 0.0 < result.fit <= 100.0

    def test_active_set_converges(self, noisy):
        cycle, dm = noisy
        result = SplitWeightsEngine(SolverConfig(algorithm="active-set"), PYTHON).run(cycle, dm)
        assert result.stats.converged
        assert result.stats.cgnr_iterations > 0

    def test_incremental_seed(self, noisy):
        cycle, dm = noisy
        cfg = SolverConfig(algorithm="active-set", use_incremental_seed=True)
        result = SplitWeightsEngine(cfg, PYTHON).run(cycle, dm)
        assert result.stats.seeded
        assert np.all(result.weights >= 0.0)

    def test_refined_incremental_seed(self, noisy):
        cycle, dm = noisy
        cfg = SolverConfig(algorithm="active-set", use_incremental_seed=True, refine_incremental=True)
        result = SplitWeightsEngine(cfg, PYTHON).run(cycle, dm)
        assert result.stats.seeded
        assert np.all(result.weights >= 0.0)

    def test_active_cleanup(self, noisy):
        cycle, dm = noisy
        cfg = SolverConfig(algorithm="apgd", max_iterations=200, active_cleanup=True)
        with quiet():
            result = SplitWeightsEngine(cfg, PYTHON).run(cycle, dm)
        assert result.stats.algorithm == "apgd+active-set"
        assert result.stats.converged

    def test_non_convergence_is_logged(self, noisy, caplog):
        cycle, dm = noisy
        cfg = SolverConfig(max_iterations=1)
        with caplog.at_level(logging.WARNING, logger="splitfit"):
            result = SplitWeightsEngine(cfg, PYTHON).run(cycle, dm)
        assert not result.stats.converged
        assert "failed to converge" in caplog.text

    def test_taxon_labels_do_not_matter(self, noisy):
        """Relabelling taxa together with the cycle gives the same weights."""
        cycle, dm = noisy
        n = len(cycle)
        perm = np.random.default_rng(1).permutation(n)
        relabel = {t: int(perm[t - 1]) + 1 for t in cycle}
        dm2 = np.empty_like(dm)
        for a in range(1, n + 1):
            for b in range(1, n + 1):
                dm2[relabel[a] - 1, relabel[b] - 1] = dm[a - 1, b - 1]
        cycle2 = [relabel[t] for t in cycle]

        cfg = SolverConfig(algorithm="active-set")
        w1 = SplitWeightsEngine(cfg, PYTHON).run(cycle, dm).weights
        w2 = SplitWeightsEngine(cfg, PYTHON).run(cycle2, dm2).weights
        np.testing.assert_allclose(w1, w2, atol=1e-9)


# ========================================================================== #
# Validation                                                                 #
# ========================================================================== #


class TestValidation:
    def test_cycle_not_permutation(self):
        with pytest.raises(ValueError):
            compute([1, 2, 2], np.zeros((3, 3)))

    def test_cycle_not_integers(self):
        with pytest.raises(TypeError):
            compute(["a", "b", "c"], np.zeros((3, 3)))

    def test_size_mismatch(self):
        with pytest.raises(ValueError):
            compute([1, 2, 3], np.zeros((4, 4)))

    def test_asymmetric(self):
        dm = np.ones((3, 3)) - np.eye(3)
        dm[0, 1] = 2.0
        with pytest.raises(ValueError):
            compute([1, 2, 3], dm)

    def test_negative(self):
        dm = -(np.ones((3, 3)) - np.eye(3))
        with pytest.raises(ValueError):
            compute([1, 2, 3], dm)

    def test_non_finite(self):
        dm = np.ones((3, 3)) - np.eye(3)
        dm[0, 2] = dm[2, 0] = np.nan
        with pytest.raises(ValueError):
            compute([1, 2, 3], dm)

    def test_bad_config_type(self):
        with pytest.raises(TypeError):
            SplitWeightsEngine(config={"algorithm": "apgd"})

    def test_bad_context_type(self):
        with pytest.raises(TypeError):
            SplitWeightsEngine(context="python")


# ========================================================================== #
# Cancellation                                                               #
# ========================================================================== #


class TestCancellation:
    @pytest.mark.parametrize("seeded", [False, True])
    def test_partial_weights(self, noisy, seeded):
        cycle, dm = noisy
        n = len(cycle)
        token = CancellationToken()
        token.cancel()
        cfg = SolverConfig(use_incremental_seed=seeded)
        with pytest.raises(Cancelled) as info:
            compute(cycle, dm, config=cfg, cancel=token, context=PYTHON)
        partial = info.value.partial_weights
        assert partial.shape == (n_pairs(n),)
        assert np.all(partial >= 0.0)

    def test_exact_path_ignores_cancel(self, circular):
        cycle, dm, _ = circular
        token = CancellationToken()
        token.cancel()
        splits = compute(cycle, dm, cancel=token, context=PYTHON)
        assert len(splits) == n_pairs(7)


# ========================================================================== #
# Backend agreement                                                          #
# ========================================================================== #


@cpu_parallel_skip
class TestBackendAgreement:
    def test_exact_path(self, circular):
        cycle, dm, _ = circular
        w_py = SplitWeightsEngine(context=PYTHON).run(cycle, dm).weights
        w_nb = SplitWeightsEngine(context=ComputeContext("cpu-parallel", n_threads=2)).run(cycle, dm).weights
        np.testing.assert_allclose(w_nb, w_py, atol=1e-10)

    def test_active_set(self, noisy):
        cycle, dm = noisy
        cfg = SolverConfig(algorithm="active-set")
        w_py = SplitWeightsEngine(cfg, PYTHON).run(cycle, dm).weights
        w_nb = SplitWeightsEngine(cfg, ComputeContext("cpu-parallel")).run(cycle, dm).weights
        np.testing.assert_allclose(w_nb, w_py, atol=1e-3)
