"""Synthetic denoising test problems.

Example:
    >>> import numpy as np
    >>> import torch
    >>> from toy import ramp_2d, add_gaussian_noise
    >>> from tgvdenoise import denoise_tgv
    >>>
    >>> clean = ramp_2d((64, 64))
    >>> noisy = add_gaussian_noise(clean, sigma=0.05, rng=np.random.default_rng(0))
    >>> result = denoise_tgv(torch.from_numpy(noisy), lambda_=20.0)
"""

from .problems import (
    spike_1d,
    piecewise_affine_1d,
    block_2d,
    ramp_2d,
    add_gaussian_noise,
)

__all__ = [
    "spike_1d",
    "piecewise_affine_1d",
    "block_2d",
    "ramp_2d",
    "add_gaussian_noise",
]
