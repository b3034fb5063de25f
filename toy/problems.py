"""Synthetic test problems for TGV denoising.

Piecewise-constant objects favour first-order TV; piecewise-affine objects
are where TV produces staircasing and TGV2 should not. All generators return
NumPy arrays in float64.
"""

from typing import Tuple

import numpy as np


def spike_1d(n: int = 5, position: int = None, height: float = 10.0) -> np.ndarray:
    """Zero signal with a single spike.

    The default is the signal [0, 0, 10, 0, 0].

    Args:
        n: Signal length.
        position: Spike index. Default n // 2.
        height: Spike height.

    Returns:
        (n,) signal.
    """
    if position is None:
        position = n // 2
    x = np.zeros(n)
    x[position] = height
    return x


def piecewise_affine_1d(
    n: int = 128,
    slope: float = 1.0 / 32.0,
    jump: float = 1.0,
) -> np.ndarray:
    """Ramp on the first half and a flat plateau after a jump on the second.

    Example:
        >>> x = piecewise_affine_1d(n=64)
        >>> x.shape
        (64,)
    """
    t = np.arange(n, dtype=float)
    half = n // 2
    x = np.where(t < half, slope * t, slope * half + jump)
    return x


def block_2d(shape: Tuple[int, int] = (64, 64), value: float = 1.0) -> np.ndarray:
    """Square block with sharp edges in the central half of the image."""
    field = np.zeros(shape)
    h, w = shape
    field[h // 4 : 3 * h // 4, w // 4 : 3 * w // 4] = value
    return field


def ramp_2d(shape: Tuple[int, int] = (64, 64), radius: float = None) -> np.ndarray:
    """Linear ramp along x, with a raised disk in the centre.

    The ramp is affine (zero TGV2 second-order cost); the disk adds a jump
    discontinuity along a curved edge.
    """
    h, w = shape
    if radius is None:
        radius = min(h, w) / 4.0
    yy, xx = np.meshgrid(np.arange(h), np.arange(w), indexing="ij")
    field = xx / max(w - 1, 1)
    dist = np.sqrt((yy - h / 2.0) ** 2 + (xx - w / 2.0) ** 2)
    field = field + 0.5 * (dist < radius)
    return field


def add_gaussian_noise(
    x_exact: np.ndarray,
    sigma: float = 0.05,
    rng: np.random.Generator = None,
) -> np.ndarray:
    """Add white Gaussian noise of standard deviation ``sigma``.

    Complex inputs receive independent noise in the real and imaginary
    parts, each with standard deviation ``sigma``.

    Args:
        x_exact: Noise-free image.
        sigma: Noise standard deviation (absolute, not relative).
        rng: NumPy random generator. If None, uses default.

    Returns:
        Noisy image of the same shape.
    """
    if rng is None:
        rng = np.random.default_rng()

    noise = sigma * rng.standard_normal(x_exact.shape)
    if np.iscomplexobj(x_exact):
        noise = noise + 1j * sigma * rng.standard_normal(x_exact.shape)

    return x_exact + noise
