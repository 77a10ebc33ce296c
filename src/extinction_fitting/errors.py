"""Exceptions and warnings raised by extinction_fitting."""

from __future__ import annotations

from typing import Any, Dict, Optional

import numpy as np


class ExtinctionFittingError(Exception):
    """Base class for errors raised by this package."""


class InvalidInput(ExtinctionFittingError, ValueError):
    """Malformed or out-of-domain observation data."""


class ObjectiveEvaluationFailure(ExtinctionFittingError, ArithmeticError):
    """The likelihood is undefined for the requested parameters.

    Objectives catch this and return +inf, so it only escapes from the
    low-level helpers (e.g. `beta_shapes`).
    """


class OptimizerNonConvergence(ExtinctionFittingError, RuntimeError):
    """A single local optimisation run failed to converge."""


class NonInvertibleHessian(ExtinctionFittingError, np.linalg.LinAlgError):
    """Hessian is singular, non-finite or not positive-definite."""

    def __init__(self, message: str, eigenvalues: Optional[np.ndarray] = None):
        super().__init__(message)
        self.eigenvalues = eigenvalues


class FitFailure(ExtinctionFittingError, RuntimeError):
    """An estimation method produced no usable result."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details: Dict[str, Any] = dict(details or {})


class MultimodalityWarning(UserWarning):
    """The best optimiser restarts disagree with each other."""


class ChainDisagreement(UserWarning):
    """MCMC chains did not mix (R-hat above threshold)."""


class SamplerDivergence(UserWarning):
    """The sampler reported divergent transitions."""
