"""Differential operators for second-order TGV on an N-dimensional grid.

All operators use forward differences with a zero difference at the last
index of each axis (discrete Neumann boundary). The divergences are defined
as negative adjoints, so that

    <gradient(u), p>          = -<u, divergence(p)>
    <sym_gradient(v), q>_F    = -<v, sym_divergence(q)>

hold exactly, where <., .>_F is the Frobenius inner product on symmetric
tensor fields (see ``fields``). Exact adjointness is required for the
convergence of the primal-dual iteration.

The module also provides the forward-operator seam used by the data term:
a ``LinearOperator`` base class and its ``IdentityOperator`` instance.
"""

from abc import ABC, abstractmethod

import torch

from .base import ShapeMismatchError
from .fields import (
    check_tensor_field,
    check_vector_field,
    tensor_index,
    tensor_pairs,
)

__all__ = [
    "forward_diff",
    "backward_diff",
    "gradient",
    "divergence",
    "sym_gradient",
    "sym_divergence",
    "tgv_operator_norm_sq",
    "LinearOperator",
    "IdentityOperator",
]


# =============================================================================
# Finite Difference Operators with Exact Adjoints (Neumann Boundary)
# =============================================================================


def forward_diff(x: torch.Tensor, dim: int) -> torch.Tensor:
    """Forward difference: D[i] = x[i+1] - x[i], and D[n-1] = 0."""
    n = x.shape[dim]
    out = torch.zeros_like(x)
    if n > 1:
        out.narrow(dim, 0, n - 1).copy_(
            x.narrow(dim, 1, n - 1) - x.narrow(dim, 0, n - 1)
        )
    return out


def backward_diff(y: torch.Tensor, dim: int) -> torch.Tensor:
    """Backward difference, the negative adjoint of ``forward_diff``.

    D[0] = y[0], D[i] = y[i] - y[i-1] for 0 < i < n-1, D[n-1] = -y[n-2].
    """
    n = y.shape[dim]
    out = torch.zeros_like(y)
    if n > 1:
        out.narrow(dim, 0, n - 1).copy_(y.narrow(dim, 0, n - 1))
        out.narrow(dim, 1, n - 1).sub_(y.narrow(dim, 0, n - 1))
    return out


# =============================================================================
# First-order operators
# =============================================================================


def gradient(u: torch.Tensor) -> torch.Tensor:
    """Discrete gradient of a scalar field.

    Args:
        u: Image, shape ``grid``.

    Returns:
        Vector field of shape (ndim, *grid), component k = forward
        difference along axis k.
    """
    if u.ndim < 1:
        raise ShapeMismatchError("gradient requires an image with ndim >= 1")
    return torch.stack([forward_diff(u, dim) for dim in range(u.ndim)], dim=0)


def divergence(p: torch.Tensor) -> torch.Tensor:
    """Discrete divergence of a vector field, equal to -gradient^*.

    Args:
        p: Vector field, shape (ndim, *grid).

    Returns:
        Scalar field of shape ``grid``.
    """
    ndim = check_vector_field(p, "divergence input")
    result = backward_diff(p[0], 0)
    for dim in range(1, ndim):
        result = result + backward_diff(p[dim], dim)
    return result


# =============================================================================
# Second-order (symmetrized) operators
# =============================================================================


def sym_gradient(v: torch.Tensor) -> torch.Tensor:
    """Symmetrized gradient E(v) = (Dv + Dv^T) / 2 of a vector field.

    Diagonal entries are D_i v_i. Off-diagonal entries are
    (D_j v_i + D_i v_j) / 2. All differences are forward with the same
    boundary rule as ``gradient``.

    Args:
        v: Vector field, shape (ndim, *grid).

    Returns:
        Symmetric tensor field, shape (ndim*(ndim+1)/2, *grid).
    """
    ndim = check_vector_field(v, "sym_gradient input")
    components = []
    for i, j in tensor_pairs(ndim):
        if i == j:
            components.append(forward_diff(v[i], i))
        else:
            components.append(0.5 * (forward_diff(v[i], j) + forward_diff(v[j], i)))
    return torch.stack(components, dim=0)


def sym_divergence(q: torch.Tensor) -> torch.Tensor:
    """Divergence of a symmetric tensor field, equal to -sym_gradient^*.

    Component i of the result is sum_j backward_diff(q_ij, axis j), with
    q_ij = q_ji read from the single stored off-diagonal component. The
    adjoint is taken with respect to the Frobenius inner product, which
    counts each off-diagonal entry twice.

    Args:
        q: Symmetric tensor field, shape (ndim*(ndim+1)/2, *grid).

    Returns:
        Vector field, shape (ndim, *grid).
    """
    ndim = check_tensor_field(q, "sym_divergence input")
    index = tensor_index(ndim)
    components = []
    for i in range(ndim):
        acc = backward_diff(q[index[(i, 0)]], 0)
        for j in range(1, ndim):
            acc = acc + backward_diff(q[index[(i, j)]], j)
        components.append(acc)
    return torch.stack(components, dim=0)


def tgv_operator_norm_sq(ndim: int) -> float:
    """Upper bound for ||K||^2 with K(u, v) = (grad u - v, E v).

    Uses ||grad||^2 <= 4*ndim and ||E||^2 <= 4*ndim (Frobenius norm), so

        ||K(u, v)||^2 <= 2||grad u||^2 + 2||v||^2 + ||E v||^2
                      <= 8*ndim * (||u||^2 + ||v||^2).
    """
    if ndim < 1:
        raise ShapeMismatchError(f"grid rank must be >= 1, got {ndim}")
    return 8.0 * ndim


# =============================================================================
# Forward operator seam
# =============================================================================


class LinearOperator(ABC):
    """Linear forward operator A with its adjoint, as used by a data term.

    Attributes:
        operator_norm_sq: Upper bound for ||A||^2.
    """

    operator_norm_sq = 1.0

    @abstractmethod
    def forward(self, x: torch.Tensor) -> torch.Tensor:
        """Apply A."""

    @abstractmethod
    def adjoint(self, y: torch.Tensor) -> torch.Tensor:
        """Apply A^*."""

    @property
    def is_identity(self) -> bool:
        return False

    def __call__(self, x: torch.Tensor) -> torch.Tensor:
        return self.forward(x)


class IdentityOperator(LinearOperator):
    """A = I, the forward operator of pure denoising."""

    operator_norm_sq = 1.0

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return x

    def adjoint(self, y: torch.Tensor) -> torch.Tensor:
        return y

    @property
    def is_identity(self) -> bool:
        return True

    def __repr__(self) -> str:
        return "IdentityOperator()"
