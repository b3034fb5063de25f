"""Proximal and projection operators for the TGV primal-dual iteration."""

from typing import Optional

import torch

from .base import ConfigurationError, ShapeMismatchError
from .fields import pointwise_norm

__all__ = ["project_ball", "data_proximal"]


def project_ball(
    field: torch.Tensor,
    radius: float,
    weights: Optional[torch.Tensor] = None,
) -> torch.Tensor:
    """Pointwise projection onto the Euclidean ball of given radius.

    This is the proximal map of the conjugate of radius * |.|_{1,2}:

        prox(y) = y / max(1, |y| / radius)

    where |y| is taken across the component axis at each grid point
    (Frobenius norm for symmetric tensors when ``weights`` is given).
    Points already inside the ball are left unchanged. At radius 0 every
    point collapses to zero.

    Args:
        field: Stacked field, shape (C, *grid). Real or complex.
        radius: Ball radius (alpha1 for p, alpha0 for q). Must be >= 0.
        weights: Optional per-component norm weights, shape (C,).

    Returns:
        Projected field with the same shape and dtype.
    """
    if not radius >= 0:
        raise ConfigurationError(f"projection radius must be >= 0, got {radius}")
    if radius == 0:
        return torch.zeros_like(field)

    norm = pointwise_norm(field, weights)
    # norm > radius > 0 wherever the scale is used, so the clamp never bites
    scale = torch.where(
        norm > radius,
        radius / torch.clamp(norm, min=torch.finfo(norm.dtype).tiny),
        torch.ones_like(norm),
    )
    return field * scale.unsqueeze(0)


def data_proximal(
    u: torch.Tensor,
    noisy: torch.Tensor,
    tau: float,
    lambda_: float,
) -> torch.Tensor:
    """Resolvent of the quadratic data term (lambda/2)||u - f||^2.

    prox(u) = (u + tau*lambda*f) / (1 + tau*lambda), applied per pixel
    (per real/imaginary channel for complex pixels).

    Args:
        u: Primal image after the gradient step.
        noisy: Observed data f, same grid as u.
        tau: Primal step size, > 0.
        lambda_: Data fidelity weight, > 0.

    Returns:
        Updated primal image.
    """
    if u.shape != noisy.shape:
        raise ShapeMismatchError(
            f"data proximal: image shape {tuple(u.shape)} does not match "
            f"observation shape {tuple(noisy.shape)}"
        )
    tl = tau * lambda_
    return (u + tl * noisy) / (1.0 + tl)
