"""Tests for the ball projection and the data proximal map."""

import pytest
import torch

from tgvdenoise import ConfigurationError, ShapeMismatchError
from tgvdenoise.fields import pointwise_norm, tensor_weights
from tgvdenoise.prox import data_proximal, project_ball


def random_field(shape, dtype=torch.float64, scale=3.0, seed=42):
    torch.manual_seed(seed)
    return scale * torch.randn(shape, dtype=dtype)


class TestProjectBall:
    """Pointwise Euclidean / Frobenius ball projection."""

    @pytest.mark.parametrize("radius", [0.0, 0.3, 1.0, 5.0])
    @pytest.mark.parametrize("dtype", [torch.float64, torch.complex128])
    def test_idempotent(self, radius, dtype):
        x = random_field((2, 8, 9), dtype=dtype)
        once = project_ball(x, radius)
        twice = project_ball(once, radius)
        assert torch.allclose(once, twice, rtol=1e-12, atol=1e-14)

    @pytest.mark.parametrize("radius", [0.1, 1.0, 2.5])
    def test_bounded(self, radius):
        x = random_field((3, 6, 5, 4))
        before = pointwise_norm(x)
        after = pointwise_norm(project_ball(x, radius))
        assert torch.all(after <= radius * (1 + 1e-12))
        outside = before > radius
        assert outside.any()
        assert torch.allclose(after[outside], torch.full_like(after[outside], radius))

    def test_identity_inside_ball(self):
        x = random_field((2, 10, 10), scale=0.01)
        assert torch.equal(project_ball(x, 10.0), x)

    def test_preserves_direction(self):
        x = torch.tensor([[3.0], [4.0]], dtype=torch.float64)
        y = project_ball(x, 1.0)
        assert torch.allclose(y, torch.tensor([[0.6], [0.8]], dtype=torch.float64))

    def test_radius_zero_collapses_to_zero(self):
        x = random_field((2, 4, 4))
        assert torch.equal(project_ball(x, 0.0), torch.zeros_like(x))

    def test_zero_points_stay_finite(self):
        x = torch.zeros(2, 5, 5, dtype=torch.float64)
        x[:, 2, 2] = 7.0
        y = project_ball(x, 1.0)
        assert torch.isfinite(y).all()
        assert torch.equal(y[:, 0, 0], torch.zeros(2, dtype=torch.float64))

    def test_complex_uses_real_and_imaginary_channels(self):
        # |(3+4i, 0)| = 5
        x = torch.tensor([[3.0 + 4.0j], [0.0 + 0.0j]], dtype=torch.complex128)
        y = project_ball(x, 1.0)
        expected = torch.tensor([[0.6 + 0.8j], [0.0]], dtype=torch.complex128)
        assert torch.allclose(y, expected)

    def test_frobenius_weights_count_off_diagonal_twice(self):
        # 2D tensor [[0, 1], [1, 0]] has Frobenius norm sqrt(2)
        q = torch.tensor([[0.0], [0.0], [1.0]], dtype=torch.float64)
        w = tensor_weights(2, like=q)
        assert torch.allclose(pointwise_norm(q, w), torch.tensor([2.0 ** 0.5], dtype=torch.float64))
        y = project_ball(q, 1.0, w)
        assert torch.allclose(pointwise_norm(y, w), torch.ones(1, dtype=torch.float64))
        assert torch.allclose(y[2], torch.tensor([2.0 ** -0.5], dtype=torch.float64))

    def test_negative_radius_rejected(self):
        with pytest.raises(ConfigurationError):
            project_ball(torch.zeros(1, 3), -1.0)


class TestDataProximal:
    """Resolvent of the quadratic data term."""

    @pytest.mark.parametrize("tau,lam", [(0.1, 1.0), (1.0, 0.5), (0.35, 20.0)])
    def test_fixed_point(self, tau, lam):
        u = random_field((7, 8))
        assert torch.allclose(data_proximal(u, u, tau, lam), u)

    def test_closed_form(self):
        u = torch.tensor([1.0, 2.0], dtype=torch.float64)
        f = torch.tensor([3.0, -2.0], dtype=torch.float64)
        # (u + 0.5*2*f) / (1 + 0.5*2)
        expected = torch.tensor([2.0, 0.0], dtype=torch.float64)
        assert torch.allclose(data_proximal(u, f, 0.5, 2.0), expected)

    def test_complex_channels_independent(self):
        u = random_field((5,), dtype=torch.complex128, seed=1)
        f = random_field((5,), dtype=torch.complex128, seed=2)
        out = data_proximal(u, f, 0.4, 3.0)
        assert torch.allclose(out.real, data_proximal(u.real, f.real, 0.4, 3.0))
        assert torch.allclose(out.imag, data_proximal(u.imag, f.imag, 0.4, 3.0))

    def test_minimizes_prox_objective(self):
        # prox(u) = argmin_x (lam/2)|x - f|^2 + |x - u|^2 / (2 tau)
        u = random_field((20,), seed=3)
        f = random_field((20,), seed=4)
        tau, lam = 0.3, 2.0
        x = data_proximal(u, f, tau, lam)
        grad = lam * (x - f) + (x - u) / tau
        assert torch.allclose(grad, torch.zeros_like(grad), atol=1e-12)

    def test_shape_mismatch(self):
        with pytest.raises(ShapeMismatchError):
            data_proximal(torch.zeros(4, 4), torch.zeros(4, 5), 0.1, 1.0)
