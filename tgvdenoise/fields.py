"""Field containers for the TGV primal-dual iteration.

Three kinds of fields live on the same N-dimensional grid:

- scalar field: the image, shape ``grid``
- vector field: ``ndim`` components per grid point, shape ``(ndim, *grid)``
- symmetric tensor field: ``ndim*(ndim+1)/2`` independent components per
  grid point, shape ``(ndim*(ndim+1)//2, *grid)``

Tensor components are stored diagonals first, then the off-diagonal pairs
(i, j) with i < j:

    2D: [xx_00, xx_11, xx_01]
    3D: [xx_00, xx_11, xx_22, xx_01, xx_02, xx_12]

Norms and inner products on tensor fields are those of the full symmetric
matrix, so every stored off-diagonal component is counted twice:

    |q|_F^2 = sum_i |q_ii|^2 + 2 * sum_{i<j} |q_ij|^2

Complex pixels are treated as two independent real channels.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import torch

from .base import ShapeMismatchError

__all__ = [
    "num_tensor_components",
    "tensor_pairs",
    "tensor_index",
    "tensor_weights",
    "zeros_vector_field",
    "zeros_tensor_field",
    "check_vector_field",
    "check_tensor_field",
    "pointwise_norm",
    "inner",
    "TGVState",
]


def num_tensor_components(ndim: int) -> int:
    """Return number of independent entries of a symmetric ndim x ndim tensor."""
    return ndim * (ndim + 1) // 2


def tensor_pairs(ndim: int) -> List[Tuple[int, int]]:
    """Axis pair (i, j) for each stored tensor component, in storage order."""
    pairs = [(i, i) for i in range(ndim)]
    for i in range(ndim):
        for j in range(i + 1, ndim):
            pairs.append((i, j))
    return pairs


def tensor_index(ndim: int) -> Dict[Tuple[int, int], int]:
    """Map both (i, j) and (j, i) to the component index of that entry."""
    index = {}
    for k, (i, j) in enumerate(tensor_pairs(ndim)):
        index[(i, j)] = k
        index[(j, i)] = k
    return index


def tensor_weights(ndim: int, like: Optional[torch.Tensor] = None) -> torch.Tensor:
    """Per-component weights of the Frobenius norm: 1 on the diagonal, 2 off it.

    Args:
        ndim: Grid rank.
        like: If given, the weights are real tensors on its device, with the
            real dtype matching its precision.
    """
    weights = [1.0] * ndim + [2.0] * (num_tensor_components(ndim) - ndim)
    if like is None:
        return torch.tensor(weights)
    dtype = like.real.dtype if like.is_complex() else like.dtype
    return torch.tensor(weights, dtype=dtype, device=like.device)


def zeros_vector_field(u: torch.Tensor) -> torch.Tensor:
    """Allocate a zero vector field on the grid of image ``u``."""
    return torch.zeros((u.ndim, *u.shape), dtype=u.dtype, device=u.device)


def zeros_tensor_field(u: torch.Tensor) -> torch.Tensor:
    """Allocate a zero symmetric tensor field on the grid of image ``u``."""
    return torch.zeros(
        (num_tensor_components(u.ndim), *u.shape), dtype=u.dtype, device=u.device
    )


def check_vector_field(v: torch.Tensor, name: str = "vector field") -> int:
    """Validate a vector field and return its grid rank."""
    ndim = v.ndim - 1
    if ndim < 1 or v.shape[0] != ndim:
        raise ShapeMismatchError(
            f"{name} must have shape (ndim, *grid) with ndim == len(grid), "
            f"got {tuple(v.shape)}"
        )
    return ndim


def check_tensor_field(q: torch.Tensor, name: str = "tensor field") -> int:
    """Validate a symmetric tensor field and return its grid rank."""
    ndim = q.ndim - 1
    if ndim < 1 or q.shape[0] != num_tensor_components(ndim):
        expected = num_tensor_components(max(ndim, 1))
        raise ShapeMismatchError(
            f"{name} on a {ndim}D grid must have {expected} components, "
            f"got shape {tuple(q.shape)}"
        )
    return ndim


def _abs_sq(x: torch.Tensor) -> torch.Tensor:
    if x.is_complex():
        return x.real * x.real + x.imag * x.imag
    return x * x


def _weight_view(weights: torch.Tensor, field: torch.Tensor) -> torch.Tensor:
    if weights.shape[0] != field.shape[0]:
        raise ShapeMismatchError(
            f"got {weights.shape[0]} weights for a field with "
            f"{field.shape[0]} components"
        )
    return weights.view(-1, *([1] * (field.ndim - 1)))


def pointwise_norm(
    field: torch.Tensor, weights: Optional[torch.Tensor] = None
) -> torch.Tensor:
    """Euclidean norm across the leading component axis at each grid point.

    Args:
        field: Stacked field, shape (C, *grid).
        weights: Optional per-component weights applied to the squared
            magnitudes (use ``tensor_weights`` for symmetric tensors).

    Returns:
        Real tensor of shape ``grid``.
    """
    sq = _abs_sq(field)
    if weights is not None:
        sq = sq * _weight_view(weights.to(device=sq.device, dtype=sq.dtype), sq)
    return torch.sqrt(torch.sum(sq, dim=0))


def inner(
    a: torch.Tensor, b: torch.Tensor, weights: Optional[torch.Tensor] = None
) -> float:
    """Real inner product Re(sum a * conj(b)), optionally component-weighted."""
    if a.shape != b.shape:
        raise ShapeMismatchError(
            f"inner product of fields with shapes {tuple(a.shape)} "
            f"and {tuple(b.shape)}"
        )
    prod = a * b.conj() if b.is_complex() else a * b
    if prod.is_complex():
        prod = prod.real
    if weights is not None:
        prod = prod * _weight_view(weights.to(device=prod.device, dtype=prod.dtype), prod)
    return float(torch.sum(prod))


@dataclass
class TGVState:
    """Primal and dual iterates of the TGV saddle-point iteration.

    Attributes:
        u: Primal image.
        u_bar: Overrelaxed image used by the dual updates.
        v: Auxiliary vector field approximating grad(u).
        v_bar: Overrelaxed auxiliary field.
        p: Dual vector field, |p| <= alpha1 pointwise.
        q: Dual symmetric tensor field, |q|_F <= alpha0 pointwise.
    """

    u: torch.Tensor
    u_bar: torch.Tensor
    v: torch.Tensor
    v_bar: torch.Tensor
    p: torch.Tensor
    q: torch.Tensor

    @classmethod
    def allocate(cls, u0: torch.Tensor) -> "TGVState":
        """Create a state with u = u0 and all other fields zero."""
        u = u0.clone()
        v = zeros_vector_field(u)
        return cls(
            u=u,
            u_bar=u.clone(),
            v=v,
            v_bar=v.clone(),
            p=zeros_vector_field(u),
            q=zeros_tensor_field(u),
        )

    @property
    def ndim(self) -> int:
        return self.u.ndim

    @property
    def grid(self) -> Tuple[int, ...]:
        return tuple(self.u.shape)
