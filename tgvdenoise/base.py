"""Base types for the TGV denoising solver."""

import math
import numbers
from dataclasses import dataclass, field, fields
from typing import List

import torch

__all__ = [
    "TGVError",
    "ConfigurationError",
    "ShapeMismatchError",
    "NotConfiguredError",
    "NotSolvedError",
    "ConcurrentSolveError",
    "TGVParameters",
    "DenoisingResult",
]


class TGVError(Exception):
    """Base class for all errors raised by tgvdenoise."""


class ConfigurationError(TGVError, ValueError):
    """Invalid parameter value or unsupported solver configuration."""


class ShapeMismatchError(TGVError, ValueError):
    """Grid or component count of a field does not match what is expected."""


class NotConfiguredError(TGVError, RuntimeError):
    """`solve` was called before both input and noisy data were set."""


class NotSolvedError(TGVError, RuntimeError):
    """A result was requested before `solve` ran."""


class ConcurrentSolveError(TGVError, RuntimeError):
    """`solve` was entered while another call on the same optimizer runs."""


@dataclass
class TGVParameters:
    """Parameters for the second-order TGV denoising optimizer.

    Attributes:
        lambda_: Data fidelity weight. Must be finite and > 0.
        alpha0: Weight of the second-order term |E(v)|. Must be finite, >= 0.
        alpha1: Weight of the first-order term |grad(u) - v|. Must be
            finite, >= 0.
        max_iter: Number of primal-dual iterations per solve. Must be > 0.
        check: Diagnostic interval in iterations. 0 disables diagnostics.
    """

    lambda_: float = 1.0
    alpha0: float = 2.0
    alpha1: float = 1.0
    max_iter: int = 500
    check: int = 10

    def validate(self) -> None:
        """Raise ConfigurationError if any value is out of range."""
        if not (self.lambda_ > 0 and math.isfinite(self.lambda_)):
            raise ConfigurationError(
                f"lambda_ must be finite and > 0, got {self.lambda_}"
            )
        for name in ("alpha0", "alpha1"):
            value = getattr(self, name)
            if not (value >= 0 and math.isfinite(value)):
                raise ConfigurationError(f"{name} must be finite and >= 0, got {value}")
        for name in ("max_iter", "check"):
            value = getattr(self, name)
            # numpy integers are Integral; bool is rejected explicitly
            if isinstance(value, bool) or not isinstance(value, numbers.Integral):
                raise ConfigurationError(
                    f"{name} must be an integer, got {type(value).__name__}"
                )
        if self.max_iter <= 0:
            raise ConfigurationError(f"max_iter must be > 0, got {self.max_iter}")
        if self.check < 0:
            raise ConfigurationError(f"check must be >= 0, got {self.check}")

    def print(self) -> str:
        """Human-readable description of the current values."""
        lines = ["TGVParameters:"]
        for f in fields(self):
            lines.append(f" {f.name}={getattr(self, f.name)}")
        return "\n".join(lines) + "\n"

    def __str__(self) -> str:
        return self.print()


@dataclass
class DenoisingResult:
    """Result from a TGV denoising run.

    Attributes:
        restored: The denoised image tensor.
        iterations: Number of iterations performed by this solve.
        energy_history: TGV energy recorded every `check` iterations.
        converged: False only if the run was cancelled by a callback.
        metadata: Step sizes, parameters and other run information.
    """

    restored: torch.Tensor
    iterations: int
    energy_history: List[float] = field(default_factory=list)
    converged: bool = False
    metadata: dict = field(default_factory=dict)
