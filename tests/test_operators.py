"""Tests for the TGV differential operators.

Uses the dot-product test to verify adjoint correctness:
    ⟨gradient(u), p⟩       = -⟨u, divergence(p)⟩
    ⟨sym_gradient(v), q⟩_F = -⟨v, sym_divergence(q)⟩

For random fields both inner products should be equal (up to
floating-point precision). The tensor inner product is the Frobenius one,
which counts each stored off-diagonal component twice.
"""

import pytest
import torch

from tgvdenoise import ShapeMismatchError
from tgvdenoise.fields import inner, num_tensor_components, tensor_weights
from tgvdenoise.operators import (
    backward_diff,
    divergence,
    forward_diff,
    gradient,
    sym_divergence,
    sym_gradient,
    tgv_operator_norm_sq,
)


def dot_product_test(
    forward,
    adjoint,
    x_shape: tuple,
    y_shape: tuple,
    dtype: torch.dtype = torch.float64,
    weights: torch.Tensor = None,
    rtol: float = 1e-10,
) -> tuple:
    """Verify ⟨A(x), y⟩ = ⟨x, A^T(y)⟩ for random x and y.

    Args:
        forward: Forward operator A
        adjoint: Adjoint operator A^T
        x_shape: Shape of input to forward operator
        y_shape: Shape of input to adjoint operator
        dtype: Data type (float64 or complex128 recommended)
        weights: Component weights of the inner product on the range of A
        rtol: Relative tolerance for comparison

    Returns:
        Tuple of (lhs, rhs, relative_error)
    """
    torch.manual_seed(42)
    x = torch.randn(x_shape, dtype=dtype)
    y = torch.randn(y_shape, dtype=dtype)

    lhs = inner(forward(x), y, weights)
    rhs = inner(x, adjoint(y))

    rel_error = abs(lhs - rhs) / (0.5 * (abs(lhs) + abs(rhs)) + 1e-12)

    assert rel_error < rtol, (
        f"Dot-product test failed: ⟨Ax, y⟩ = {lhs:.12e}, ⟨x, A^T y⟩ = {rhs:.12e}, "
        f"relative error = {rel_error:.2e} (tolerance = {rtol:.2e})"
    )

    return lhs, rhs, rel_error


GRIDS = [(7,), (8, 6), (5, 4, 6)]


class TestFiniteDifferences:
    """Forward/backward differences with Neumann boundary."""

    def test_forward_diff_values(self):
        x = torch.tensor([1.0, 2.0, 4.0, 7.0], dtype=torch.float64)
        expected = torch.tensor([1.0, 2.0, 3.0, 0.0], dtype=torch.float64)
        assert torch.equal(forward_diff(x, 0), expected)

    def test_backward_diff_values(self):
        y = torch.tensor([1.0, 2.0, 0.5], dtype=torch.float64)
        # [y0, y1 - y0, -y1]
        expected = torch.tensor([1.0, 1.0, -2.0], dtype=torch.float64)
        assert torch.equal(backward_diff(y, 0), expected)

    def test_single_sample_axis_is_zero(self):
        x = torch.randn(1, 5, dtype=torch.float64)
        assert torch.equal(forward_diff(x, 0), torch.zeros_like(x))
        assert torch.equal(backward_diff(x, 0), torch.zeros_like(x))

    @pytest.mark.parametrize("shape", [(9,), (6, 7), (3, 4, 5)])
    def test_forward_backward_adjoint(self, shape):
        for dim in range(len(shape)):
            lhs, rhs, err = dot_product_test(
                lambda x, d=dim: forward_diff(x, d),
                lambda y, d=dim: -backward_diff(y, d),
                shape,
                shape,
            )
            print(f"D dim{dim} {shape}: ⟨Dx, y⟩={lhs:.10e}, ⟨x, D^T y⟩={rhs:.10e}, err={err:.2e}")

    def test_last_index_is_zero(self):
        x = torch.randn(4, 5, dtype=torch.float64)
        assert torch.all(forward_diff(x, 0)[-1] == 0)
        assert torch.all(forward_diff(x, 1)[:, -1] == 0)


class TestGradientDivergence:
    """gradient / divergence pair."""

    @pytest.mark.parametrize("grid", GRIDS)
    @pytest.mark.parametrize("dtype", [torch.float64, torch.complex128])
    def test_adjoint(self, grid, dtype):
        ndim = len(grid)
        lhs, rhs, err = dot_product_test(
            gradient,
            lambda p: -divergence(p),
            grid,
            (ndim, *grid),
            dtype=dtype,
        )
        print(f"grad {grid} {dtype}: ⟨∇u, p⟩={lhs:.10e}, -⟨u, div p⟩={rhs:.10e}, err={err:.2e}")

    def test_shapes(self):
        u = torch.zeros(4, 5, 6)
        g = gradient(u)
        assert g.shape == (3, 4, 5, 6)
        assert divergence(g).shape == (4, 5, 6)

    def test_gradient_of_constant_is_zero(self):
        u = torch.full((5, 5), 3.0, dtype=torch.float64)
        assert torch.equal(gradient(u), torch.zeros(2, 5, 5, dtype=torch.float64))

    def test_divergence_sums_to_zero(self):
        # Neumann boundary: div is the negative adjoint of grad, and grad kills constants
        torch.manual_seed(0)
        p = torch.randn(2, 6, 7, dtype=torch.float64)
        assert abs(float(divergence(p).sum())) < 1e-12

    def test_divergence_rejects_wrong_component_count(self):
        with pytest.raises(ShapeMismatchError):
            divergence(torch.zeros(3, 4, 5))

    def test_gradient_rejects_scalar(self):
        with pytest.raises(ShapeMismatchError):
            gradient(torch.tensor(1.0))


class TestSymmetrizedOperators:
    """sym_gradient / sym_divergence pair with Frobenius inner product."""

    @pytest.mark.parametrize("grid", GRIDS)
    @pytest.mark.parametrize("dtype", [torch.float64, torch.complex128])
    def test_adjoint(self, grid, dtype):
        ndim = len(grid)
        lhs, rhs, err = dot_product_test(
            sym_gradient,
            lambda q: -sym_divergence(q),
            (ndim, *grid),
            (num_tensor_components(ndim), *grid),
            dtype=dtype,
            weights=tensor_weights(ndim),
        )
        print(f"E {grid} {dtype}: ⟨Ev, q⟩={lhs:.10e}, -⟨v, div2 q⟩={rhs:.10e}, err={err:.2e}")

    def test_shapes(self):
        v = torch.zeros(3, 4, 5, 6)
        e = sym_gradient(v)
        assert e.shape == (6, 4, 5, 6)
        assert sym_divergence(e).shape == (3, 4, 5, 6)

    def test_diagonal_matches_gradient_components(self):
        torch.manual_seed(1)
        v = torch.randn(2, 5, 6, dtype=torch.float64)
        e = sym_gradient(v)
        assert torch.allclose(e[0], forward_diff(v[0], 0))
        assert torch.allclose(e[1], forward_diff(v[1], 1))

    def test_off_diagonal_is_symmetric_average(self):
        torch.manual_seed(2)
        v = torch.randn(2, 5, 6, dtype=torch.float64)
        e = sym_gradient(v)
        expected = 0.5 * (forward_diff(v[0], 1) + forward_diff(v[1], 0))
        assert torch.allclose(e[2], expected)

    def test_rigid_rotation_field_has_zero_symmetric_gradient(self):
        # v = (y, -x) has antisymmetric Jacobian; away from the far boundary E(v) = 0
        yy, xx = torch.meshgrid(
            torch.arange(6, dtype=torch.float64),
            torch.arange(6, dtype=torch.float64),
            indexing="ij",
        )
        v = torch.stack([xx, -yy], dim=0)
        e = sym_gradient(v)
        assert torch.allclose(e[:, :-1, :-1], torch.zeros_like(e[:, :-1, :-1]))

    def test_sym_gradient_of_constant_field_is_zero(self):
        v = torch.ones(3, 4, 4, 4, dtype=torch.float64)
        assert torch.equal(sym_gradient(v), torch.zeros(6, 4, 4, 4, dtype=torch.float64))

    def test_1d_reduces_to_first_order_pair(self):
        torch.manual_seed(3)
        v = torch.randn(1, 9, dtype=torch.float64)
        assert torch.allclose(sym_gradient(v), gradient(v[0]))
        assert torch.allclose(sym_divergence(v)[0], divergence(v))

    def test_sym_divergence_rejects_wrong_component_count(self):
        with pytest.raises(ShapeMismatchError):
            sym_divergence(torch.zeros(2, 4, 5))


class TestOperatorNorm:
    """The closed-form step-size bound dominates the power-method estimate."""

    @staticmethod
    def _apply_K(u, v):
        return gradient(u) - v, sym_gradient(v)

    @staticmethod
    def _apply_K_adj(p, q):
        return -divergence(p), -p - sym_divergence(q)

    @pytest.mark.parametrize("grid", [(16,), (12, 10), (6, 5, 7)])
    def test_bound_holds(self, grid):
        ndim = len(grid)
        w = tensor_weights(ndim, like=torch.zeros(1, dtype=torch.float64))
        torch.manual_seed(0)
        u = torch.randn(grid, dtype=torch.float64)
        v = torch.randn((ndim, *grid), dtype=torch.float64)

        estimate = 0.0
        for _ in range(200):
            norm = (inner(u, u) + inner(v, v)) ** 0.5
            u, v = u / norm, v / norm
            p, q = self._apply_K(u, v)
            estimate = inner(p, p) + inner(q, q, w)
            u, v = self._apply_K_adj(p, q)

        bound = tgv_operator_norm_sq(ndim)
        print(f"||K||^2 {grid}: power method {estimate:.4f}, bound {bound:.1f}")
        assert estimate <= bound
        assert estimate > 0.25 * bound

    def test_rejects_rank_zero(self):
        with pytest.raises(ShapeMismatchError):
            tgv_operator_norm_sq(0)
