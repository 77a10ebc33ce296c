from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np

from .delta import Estimate, EstimateTable
from .design import GroupedDesign
from .errors import NonInvertibleHessian
from .models import extinction_mean
from .multistart import MultiStartResult
from .objectives import Objective
from .util import sample_mvn, uncertainty_to_string


@dataclass(frozen=True)
class Band:
    low: np.ndarray
    high: np.ndarray
    median: Optional[np.ndarray] = None


@dataclass(frozen=True)
class EstimationRun:
    """Outcome of one estimation method on one dataset."""

    method: str
    design: GroupedDesign = field(repr=False)
    objective: Objective = field(repr=False)
    multistart: MultiStartResult = field(repr=False)
    estimates: EstimateTable
    dispersion: Optional[Estimate] = None
    covariance: Optional[np.ndarray] = field(default=None, repr=False)
    covariance_error: Optional[NonInvertibleHessian] = None
    level: float = 0.95

    @property
    def theta(self) -> np.ndarray:
        """Optimiser coordinates of the selected restart."""
        return np.asarray(self.multistart.best.theta, dtype=float)

    @property
    def objective_value(self) -> float:
        return float(self.multistart.best.objective_value)

    @property
    def coefficients(self) -> np.ndarray:
        """Per-group k on the natural scale, in group order."""
        return self.objective.coefficients(self.theta)

    @property
    def has_intervals(self) -> bool:
        return self.covariance is not None

    def __getitem__(self, group: Any) -> Estimate:
        return self.estimates[group]

    def predict(self, groups: Any, x: Any) -> np.ndarray:
        """Fitted mean at (group, x) pairs; a single label applies to every x."""
        x = np.asarray(x, dtype=float).reshape((-1,))
        if isinstance(groups, (list, tuple, np.ndarray)):
            labels = list(groups)
        else:
            labels = [groups] * x.shape[0]
        rows = self.design.rows_for(labels, x)
        return extinction_mean(self.coefficients, rows.matrix)

    def band(
        self,
        group: Any,
        x: Any,
        *,
        level: float = 0.95,
        nsamples: int = 400,
        rng: Optional[np.random.Generator] = None,
    ) -> Band:
        """Pointwise band for one group's mean curve.

        Parameter vectors are drawn from MVN(theta, covariance) and pushed
        through the mean function; the band holds the central `level`
        quantiles of the resulting curves.
        """
        if self.covariance is None:
            raise ValueError(
                f"No covariance available for band() on the {self.method!r} run."
            ) from self.covariance_error
        if not 0.0 < float(level) < 1.0:
            raise ValueError(f"level must be in (0, 1); got {level!r}.")
        if int(nsamples) < 1:
            raise ValueError("nsamples must be >= 1.")
        if rng is None:
            rng = np.random.default_rng()

        j = self.design.groups.index(group)
        x = np.asarray(x, dtype=float).reshape((-1,))
        theta = sample_mvn(self.theta, self.covariance, int(nsamples), rng)  # (S,P)
        k = theta[:, j]
        if self.objective.log_k:
            k = np.exp(k)
        preds = -np.expm1(-k[:, None] * x[None, :])  # (S,M)

        qlo = 0.5 * (1.0 - float(level))
        lo = np.quantile(preds, qlo, axis=0)
        hi = np.quantile(preds, 1.0 - qlo, axis=0)
        med = np.quantile(preds, 0.5, axis=0)
        return Band(low=lo, high=hi, median=med)

    def as_rows(self) -> List[Tuple[Any, str, float, float, float, float]]:
        """(group, method, estimate, stderr, lower, upper) per group."""
        rows = []
        for label, est in zip(self.design.groups.labels, self.estimates):
            rows.append((label, self.method, est.value, est.stderr, est.lower, est.upper))
        return rows

    def summary(self, digits: int = 4) -> str:
        """Return a human-readable summary string for the run."""
        ms = self.multistart
        lines = [
            f"EstimationRun(method={self.method!r}, objective={self.objective_value:.{digits}g}, "
            f"restarts={len(ms.records)}, failed={ms.n_failed})"
        ]
        lines.append(self.estimates.summary(digits=digits))
        if self.dispersion is not None:
            d = self.dispersion
            if np.isfinite(d.stderr):
                lines.append(f"  {d.label:>12s}: {uncertainty_to_string(d.value, d.stderr)}")
            else:
                lines.append(f"  {d.label:>12s}: {d.value:.{digits}g}")
        if self.covariance_error is not None:
            lines.append(f"  no intervals: {self.covariance_error}")
        if ms.multimodal:
            lines.append("  warning: best restarts disagree; optimum may not be global")
        return "\n".join(lines)


@dataclass(frozen=True)
class MethodComparison:
    """Independent runs of several methods on the same observations.

    `failures` maps a method to the error that stopped it (FitFailure,
    InvalidInput) or that withheld its intervals (NonInvertibleHessian).
    """

    runs: Dict[str, EstimationRun] = field(default_factory=dict)
    failures: Dict[str, Exception] = field(default_factory=dict)

    def __getitem__(self, method: str) -> EstimationRun:
        return self.runs[method]

    def __iter__(self) -> Iterator[str]:
        return iter(self.runs)

    def __contains__(self, method: object) -> bool:
        return method in self.runs

    def as_rows(self) -> List[Tuple[Any, str, float, float, float, float]]:
        """Rows grouped by group label, then by method in run order."""
        per_method = [run.as_rows() for run in self.runs.values()]
        if not per_method:
            return []
        rows = []
        for group_rows in zip(*per_method):
            rows.extend(group_rows)
        return rows

    def summary(self, digits: int = 4) -> str:
        lines = [f"{'group':>10s} {'method':>14s} {'estimate':>14s} {'interval':>24s}"]
        lines.append("-" * len(lines[0]))
        for group, method, value, se, lo, hi in self.as_rows():
            if np.isfinite(se):
                est = uncertainty_to_string(value, se)
                ci = f"[{lo:.{digits}g}, {hi:.{digits}g}]"
            else:
                est = f"{value:.{digits}g}"
                ci = "-"
            lines.append(f"{str(group):>10s} {method:>14s} {est:>14s} {ci:>24s}")
        for method, err in self.failures.items():
            lines.append(f"{method}: {type(err).__name__}: {err}")
        return "\n".join(lines)
