"""Delta-method confidence intervals for scalar transforms of a fit.

Each transform maps the optimiser's parameter vector to a scalar and knows
its gradient. The variance of the transform is grad^T C grad, where C is the
inverse Hessian (optionally rescaled), and the interval is symmetric:
value +/- z * stderr.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
import uncertainties

from .errors import NonInvertibleHessian
from .util import level_to_z, numdiff_gradient, uncertainty_to_string


# ---- transforms --------------------------------------------------------------


@dataclass(frozen=True)
class Coefficient:
    """theta[group] itself (k_j when coefficients are not log-transformed)."""

    group: int
    label: str = ""

    def __call__(self, theta: np.ndarray) -> float:
        return float(theta[self.group])

    def gradient(self, theta: np.ndarray) -> np.ndarray:
        g = np.zeros(np.shape(theta), dtype=float)
        g[self.group] = 1.0
        return g


@dataclass(frozen=True)
class ExpCoefficient:
    """exp(theta[group]), e.g. k_j = exp(log_k_j) or sigma2 = exp(log_sigma2)."""

    group: int
    label: str = ""

    def __call__(self, theta: np.ndarray) -> float:
        return float(np.exp(theta[self.group]))

    def gradient(self, theta: np.ndarray) -> np.ndarray:
        g = np.zeros(np.shape(theta), dtype=float)
        g[self.group] = float(np.exp(theta[self.group]))
        return g


@dataclass(frozen=True)
class ExpDispersion:
    """sigma2 = exp(theta[-1])."""

    label: str = "sigma2"

    def __call__(self, theta: np.ndarray) -> float:
        return float(np.exp(theta[-1]))

    def gradient(self, theta: np.ndarray) -> np.ndarray:
        g = np.zeros(np.shape(theta), dtype=float)
        g[-1] = float(np.exp(theta[-1]))
        return g


@dataclass(frozen=True)
class FunctionTransform:
    """Any scalar function of theta; gradient by central differences."""

    func: Callable[[np.ndarray], float]
    label: str = ""
    step: Optional[float] = None

    def __call__(self, theta: np.ndarray) -> float:
        return float(self.func(np.asarray(theta, dtype=float)))

    def gradient(self, theta: np.ndarray) -> np.ndarray:
        return numdiff_gradient(self, theta, step=self.step)


Transform = Union[Coefficient, ExpCoefficient, ExpDispersion, FunctionTransform]


def coefficient_transforms(objective: Any, groups: Optional[Sequence[Any]] = None) -> Tuple[Transform, ...]:
    """One transform per group returning k_j on the natural scale.

    `groups` selects labels (default: all, in group order).
    """
    group_set = objective.design.groups
    labels = group_set.labels if groups is None else list(groups)
    cls = ExpCoefficient if objective.log_k else Coefficient
    return tuple(cls(group=group_set.index(label), label=str(label)) for label in labels)


def _as_transform(t: Any) -> Any:
    if hasattr(t, "gradient"):
        return t
    if callable(t):
        return FunctionTransform(func=t, label=getattr(t, "__name__", ""))
    raise TypeError(f"Transforms must be callables; got {t!r}.")


# ---- covariance --------------------------------------------------------------


def covariance_from_hessian(hessian: Any, scale: float = 1.0) -> np.ndarray:
    """Invert a Hessian after checking that it is positive-definite.

    Raises NonInvertibleHessian for a missing, non-finite, singular or
    indefinite Hessian.
    """
    if hessian is None:
        raise NonInvertibleHessian("No Hessian available for this result.")
    H = np.asarray(hessian, dtype=float)
    if H.ndim != 2 or H.shape[0] != H.shape[1]:
        raise NonInvertibleHessian(f"Hessian must be square; got shape {H.shape}.")
    if not np.all(np.isfinite(H)):
        raise NonInvertibleHessian("Hessian contains non-finite entries.")
    H = 0.5 * (H + H.T)
    try:
        L = np.linalg.cholesky(H)
    except np.linalg.LinAlgError as e:
        eig = np.linalg.eigvalsh(H)
        raise NonInvertibleHessian(
            f"Hessian is not positive-definite (smallest eigenvalue {eig.min():.3g}).",
            eigenvalues=eig,
        ) from e

    eye = np.eye(H.shape[0])
    L_inv = np.linalg.solve(L, eye)
    cov = float(scale) * (L_inv.T @ L_inv)
    if not np.all(np.isfinite(cov)):
        raise NonInvertibleHessian("Inverse Hessian is not finite.")
    return 0.5 * (cov + cov.T)


# ---- results -----------------------------------------------------------------


@dataclass(frozen=True)
class Estimate:
    """A point estimate with delta-method standard error and interval."""

    label: str
    value: float
    stderr: float = float("nan")
    lower: float = float("nan")
    upper: float = float("nan")
    level: float = 0.95

    @property
    def u(self):
        """Return an uncertainties ufloat (value +/- stderr)."""
        if not np.isfinite(self.stderr):
            raise ValueError(f"No stderr available for {self.label!r}.")
        return uncertainties.ufloat(self.value, self.stderr, tag=self.label)

    def __getitem__(self, key: str) -> Any:
        if key == "value":
            return self.value
        if key in ("error", "stderr"):
            return self.stderr
        if key == "lower":
            return self.lower
        if key == "upper":
            return self.upper
        raise KeyError(key)


class EstimateTable:
    """Ordered per-label estimates with lookup by label or position.

    Keys are matched against labels first, so integer group labels resolve
    to their own row; an integer that is not a label is a position.
    """

    def __init__(self, rows: Iterable[Estimate]):
        self._rows: Tuple[Estimate, ...] = tuple(rows)
        self._by_label = {r.label: r for r in self._rows}

    def __getitem__(self, key: Union[int, str, Any]) -> Estimate:
        if str(key) in self._by_label:
            return self._by_label[str(key)]
        if isinstance(key, (int, np.integer)):
            return self._rows[int(key)]
        try:
            return self._by_label[str(key)]
        except KeyError:
            raise KeyError(key) from None

    def __iter__(self) -> Iterator[Estimate]:
        return iter(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    @property
    def labels(self) -> Tuple[str, ...]:
        return tuple(r.label for r in self._rows)

    @property
    def values(self) -> np.ndarray:
        return np.array([r.value for r in self._rows], dtype=float)

    @property
    def stderrs(self) -> np.ndarray:
        return np.array([r.stderr for r in self._rows], dtype=float)

    def as_rows(self) -> List[Tuple[str, float, float, float, float]]:
        return [(r.label, r.value, r.stderr, r.lower, r.upper) for r in self._rows]

    def summary(self, digits: int = 4) -> str:
        """Return a human-readable table."""
        lines = []
        for r in self._rows:
            if np.isfinite(r.stderr):
                val = uncertainty_to_string(r.value, r.stderr)
                ci = f"[{r.lower:.{digits}g}, {r.upper:.{digits}g}]"
            else:
                val = f"{r.value:.{digits}g}"
                ci = "(no interval)"
            lines.append(f"  {r.label:>12s}: {val:<14s} {ci}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"EstimateTable({list(self.labels)!r})"


def unavailable(theta: Any, transforms: Sequence[Any], level: float = 0.95) -> EstimateTable:
    """Point estimates only, for results whose covariance is unavailable."""
    theta = np.asarray(theta, dtype=float)
    rows = []
    for t in transforms:
        t = _as_transform(t)
        rows.append(Estimate(label=str(getattr(t, "label", "")), value=float(t(theta)), level=float(level)))
    return EstimateTable(rows)


def delta_method(
    theta: Any,
    covariance: Any,
    transforms: Sequence[Any],
    *,
    level: float = 0.95,
) -> EstimateTable:
    """Propagate `covariance` through each transform to a symmetric interval."""
    theta = np.asarray(theta, dtype=float)
    cov = np.asarray(covariance, dtype=float)
    if cov.shape != (theta.shape[0], theta.shape[0]):
        raise ValueError(
            f"covariance shape {cov.shape} does not match {theta.shape[0]} parameters."
        )
    z = level_to_z(level)

    rows = []
    for t in transforms:
        t = _as_transform(t)
        value = float(t(theta))
        grad = np.asarray(t.gradient(theta), dtype=float)
        var = float(grad @ cov @ grad)
        se = float(np.sqrt(var)) if var >= 0.0 else float("nan")
        rows.append(
            Estimate(
                label=str(getattr(t, "label", "")),
                value=value,
                stderr=se,
                lower=value - z * se,
                upper=value + z * se,
                level=float(level),
            )
        )
    return EstimateTable(rows)
