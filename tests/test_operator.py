"""
tests/test_operator.py
======================
Correctness of the circular split operator.

Validation layers
-----------------
1. Dense reference: forward, adjoint and inverse agree with a matrix built
   entry by entry from the definition of a circular split
   (``circular_data.dense_matrix``), for every available backend.
2. Algebra: ``<A u, v> == <u, A^T v>`` and ``A^{-1} A x == x`` on random
   vectors.
3. Backend agreement: the numba kernels reproduce the numpy recurrences.
"""

import numpy as np
import pytest

from splitfit import CircularOperator, get_available_backends, use_backend
from splitfit._indexing import n_pairs
from splitfit._operator import projected_gradient, projected_gradient_squared

from circular_data import dense_matrix


_AVAILABLE = get_available_backends()

cpu_parallel_skip = pytest.mark.skipif(
    "cpu-parallel" not in _AVAILABLE, reason="numba kernels not available"
)

SIZES = [2, 3, 4, 5, 8, 11]


# ========================================================================== #
# Fixtures                                                                   #
# ========================================================================== #


@pytest.fixture(scope="module")
def dense():
    return {n: dense_matrix(n) for n in SIZES}


@pytest.fixture(params=_AVAILABLE)
def backend(request):
    return request.param


# ========================================================================== #
# Dense reference                                                            #
# ========================================================================== #


class TestAgainstDenseMatrix:
    """Every backend must reproduce the explicit split matrix."""

    @pytest.mark.parametrize("n", SIZES)
    def test_forward(self, dense, backend, n):
        rng = np.random.default_rng(n)
        x = rng.uniform(0.0, 2.0, n_pairs(n))
        op = CircularOperator(n, backend=backend)
        np.testing.assert_allclose(op.forward(x), dense[n] @ x, rtol=1e-10, atol=1e-10)

    @pytest.mark.parametrize("n", SIZES)
    def test_adjoint(self, dense, backend, n):
        rng = np.random.default_rng(100 + n)
        y = rng.normal(size=n_pairs(n))
        op = CircularOperator(n, backend=backend)
        np.testing.assert_allclose(op.adjoint(y), dense[n].T @ y, rtol=1e-10, atol=1e-10)

    @pytest.mark.parametrize("n", SIZES)
    def test_inverse(self, dense, backend, n):
        rng = np.random.default_rng(200 + n)
        y = rng.uniform(1.0, 2.0, n_pairs(n))
        op = CircularOperator(n, backend=backend)
        np.testing.assert_allclose(dense[n] @ op.inverse(y), y, rtol=1e-10, atol=1e-10)

    def test_two_taxa(self, backend):
        op = CircularOperator(2, backend=backend)
        np.testing.assert_allclose(op.forward([3.0]), [3.0])
        np.testing.assert_allclose(op.adjoint([3.0]), [3.0])
        np.testing.assert_allclose(op.inverse([3.0]), [3.0])


# ========================================================================== #
# Algebraic identities                                                       #
# ========================================================================== #


class TestIdentities:
    @pytest.mark.parametrize("n", [3, 6, 13])
    def test_adjoint_identity(self, backend, n):
        rng = np.random.default_rng(n)
        u = rng.normal(size=n_pairs(n))
        v = rng.normal(size=n_pairs(n))
        op = CircularOperator(n, backend=backend)
        lhs = float(op.forward(u) @ v)
        rhs = float(u @ op.adjoint(v))
        assert lhs == pytest.approx(rhs, rel=1e-10, abs=1e-10)

    @pytest.mark.parametrize("n", [3, 6, 13])
    def test_inverse_of_forward(self, backend, n):
        rng = np.random.default_rng(n + 1)
        x = rng.normal(size=n_pairs(n))
        op = CircularOperator(n, backend=backend)
        np.testing.assert_allclose(op.inverse(op.forward(x)), x, atol=1e-10)

    def test_gradient_and_objective(self, backend):
        rng = np.random.default_rng(7)
        n = 6
        A = dense_matrix(n)
        x = rng.uniform(size=n_pairs(n))
        d = rng.uniform(size=n_pairs(n))
        op = CircularOperator(n, backend=backend)
        r = A @ x - d
        np.testing.assert_allclose(op.residual(x, d), r, atol=1e-12)
        np.testing.assert_allclose(op.gradient(x, d), A.T @ r, atol=1e-12)
        assert op.objective(x, d) == pytest.approx(0.5 * float(r @ r))

    def test_out_buffer(self, backend):
        op = CircularOperator(5, backend=backend)
        x = np.ones(10)
        out = np.empty(10)
        result = op.forward(x, out=out)
        assert result is out
        np.testing.assert_allclose(out, dense_matrix(5) @ x)


# ========================================================================== #
# Backend agreement                                                          #
# ========================================================================== #


@cpu_parallel_skip
class TestBackendAgreement:
    """Numba kernels vs numpy recurrences on larger problems."""

    @pytest.mark.parametrize("n", [20, 57])
    def test_all_maps(self, n):
        rng = np.random.default_rng(n)
        x = rng.uniform(size=n_pairs(n))
        py = CircularOperator(n, backend="python")
        nb = CircularOperator(n, backend="cpu-parallel")
        np.testing.assert_allclose(nb.forward(x), py.forward(x), rtol=1e-10)
        np.testing.assert_allclose(nb.adjoint(x), py.adjoint(x), rtol=1e-10)
        np.testing.assert_allclose(nb.inverse(x), py.inverse(x), rtol=1e-10, atol=1e-10)


# ========================================================================== #
# Construction and validation                                               #
# ========================================================================== #


class TestConstruction:
    def test_rejects_small_n(self):
        with pytest.raises(ValueError):
            CircularOperator(1)

    def test_rejects_non_int(self):
        with pytest.raises(TypeError):
            CircularOperator(4.0)

    def test_wrong_vector_length(self):
        op = CircularOperator(4, backend="python")
        with pytest.raises(ValueError):
            op.forward(np.ones(5))

    def test_use_backend_override(self):
        with use_backend("python"):
            assert CircularOperator(5).backend == "python"

    def test_explicit_backend_beats_override(self):
        with use_backend("best"):
            assert CircularOperator(5, backend="python").backend == "python"

    def test_unknown_backend_falls_back(self, caplog):
        with caplog.at_level("WARNING", logger="splitfit"):
            op = CircularOperator(4, backend="cuda")
        assert op.backend in _AVAILABLE
        assert "not available" in caplog.text

    def test_estimate_norm_grows(self):
        norms = [CircularOperator(n, backend="python").estimate_norm() for n in (3, 5, 10, 20)]
        assert all(v > 0 for v in norms)
        assert norms == sorted(norms)


class TestProjectedGradient:
    def test_boundary_keeps_negative_only(self):
        x = np.array([0.0, 0.0, 1.0])
        g = np.array([2.0, -3.0, 4.0])
        np.testing.assert_array_equal(projected_gradient(x, g), [0.0, -3.0, 4.0])
        assert projected_gradient_squared(x, g) == pytest.approx(25.0)
