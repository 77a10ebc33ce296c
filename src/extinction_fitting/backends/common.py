from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

import numpy as np


@dataclass(frozen=True)
class OptimizationResult:
    """Normalized result of one local optimisation run."""

    theta: np.ndarray  # optimiser coordinates, shape (P,)
    objective_value: float
    hessian: Optional[np.ndarray] = None  # (P, P) at theta
    start: Optional[np.ndarray] = None
    seed: Optional[int] = None
    converged: bool = True
    message: str = ""
    n_iter: int = 0
    n_eval: int = 0
    backend: str = ""
    stats: Dict[str, Any] = field(default_factory=dict)


class Backend(Protocol):
    """Backend protocol: run one local optimisation from one start."""

    name: str

    def minimize_one(
        self,
        *,
        objective: Any,
        start: np.ndarray,
        options: dict[str, Any],
    ) -> OptimizationResult: ...
