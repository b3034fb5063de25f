"""tgvdenoise - Second-order Total Generalized Variation image denoising.

Recovers a clean N-dimensional image from a noisy observation by minimizing
a quadratic data term plus the TGV2 regularizer with a Chambolle-Pock
primal-dual iteration. Images are PyTorch tensors (CPU or GPU, real or
complex) of any rank.

The package is organized into:

- **operators**: gradient, divergence, symmetrized gradient/divergence
- **fields**: field containers and pointwise norms
- **prox**: ball projection and the data-term proximal map
- **tgv**: the TGVOptimizer and the ``denoise_tgv`` convenience function

Example:
    >>> import torch
    >>> from tgvdenoise import denoise_tgv
    >>>
    >>> noisy = torch.tensor([0.0, 0.0, 10.0, 0.0, 0.0], dtype=torch.float64)
    >>> result = denoise_tgv(noisy, lambda_=1.0, alpha0=0.5, alpha1=0.5,
    ...                      num_iter=200)
    >>> int(result.restored.argmax())
    2

Reference:
    K. Bredies, K. Kunisch and T. Pock. "Total Generalized Variation."
    SIAM Journal on Imaging Sciences 3(3): 492-526 (2010).
"""

__version__ = "0.1.0"

from .base import (
    TGVError,
    ConfigurationError,
    ShapeMismatchError,
    NotConfiguredError,
    NotSolvedError,
    ConcurrentSolveError,
    TGVParameters,
    DenoisingResult,
)
from .fields import (
    num_tensor_components,
    tensor_weights,
    zeros_vector_field,
    zeros_tensor_field,
    pointwise_norm,
    inner,
    TGVState,
)
from .operators import (
    gradient,
    divergence,
    sym_gradient,
    sym_divergence,
    tgv_operator_norm_sq,
    LinearOperator,
    IdentityOperator,
)
from .prox import (
    project_ball,
    data_proximal,
)
from .tgv import (
    OptimizerState,
    TGVOptimizer,
    denoise_tgv,
    tgv_energy,
)

__all__ = [
    # Version
    "__version__",
    # Errors
    "TGVError",
    "ConfigurationError",
    "ShapeMismatchError",
    "NotConfiguredError",
    "NotSolvedError",
    "ConcurrentSolveError",
    # Parameters and results
    "TGVParameters",
    "DenoisingResult",
    # Field containers
    "num_tensor_components",
    "tensor_weights",
    "zeros_vector_field",
    "zeros_tensor_field",
    "pointwise_norm",
    "inner",
    "TGVState",
    # Differential operators
    "gradient",
    "divergence",
    "sym_gradient",
    "sym_divergence",
    "tgv_operator_norm_sq",
    # Forward operator seam
    "LinearOperator",
    "IdentityOperator",
    # Proximal maps
    "project_ball",
    "data_proximal",
    # Optimizer
    "OptimizerState",
    "TGVOptimizer",
    "denoise_tgv",
    "tgv_energy",
]
