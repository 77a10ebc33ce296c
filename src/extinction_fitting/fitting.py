"""Frequentist estimation: multi-start fit + delta-method intervals per method."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Sequence

import numpy as np

from .delta import (
    Estimate,
    ExpDispersion,
    coefficient_transforms,
    covariance_from_hessian,
    delta_method,
    unavailable,
)
from .design import GroupOrder, build_design
from .errors import FitFailure, InvalidInput, NonInvertibleHessian
from .inputs import Observations
from .models import extinction_mean
from .multistart import MultiStartConfig, run_multistart
from .objectives import build_objective, sum_of_squares
from .run import EstimationRun, MethodComparison

logger = logging.getLogger(__name__)

METHODS = ("least_squares", "normal", "beta")


def _as_observations(data: Any) -> Observations:
    if isinstance(data, Observations):
        return data
    if isinstance(data, Mapping) or hasattr(data, "columns"):
        return Observations.from_columns(data)
    return Observations.from_records(data)


def fit(
    observations: Any,
    method: str = "least_squares",
    *,
    config: Optional[MultiStartConfig] = None,
    level: float = 0.95,
    group_order: GroupOrder = "sorted",
    log_k: bool = True,
) -> EstimationRun:
    """Estimate per-group k with one method.

    method:
    - "least_squares": sum of squared residuals; covariance 2 s^2 H^-1 with
      s^2 = SSE / (N - G)
    - "normal": Gaussian negative log-likelihood; covariance H^-1
    - "beta": Beta negative log-likelihood (k optionally on the log scale);
      covariance H^-1

    A Hessian that cannot be inverted does not fail the fit: point estimates
    are kept, intervals are NaN and the error is stored on the run.
    """
    if method not in METHODS:
        raise ValueError(f"Unknown method {method!r}. Available: {METHODS}")
    obs = _as_observations(observations)
    design = build_design(obs, group_order=group_order)
    objective = build_objective(method, design, log_k=log_k)
    ms = run_multistart(objective, config)
    best = ms.best
    theta = np.asarray(best.theta, dtype=float)
    transforms = coefficient_transforms(objective)

    scale = 1.0
    dispersion: Optional[Estimate] = None
    cov_error: Optional[NonInvertibleHessian] = None
    if method == "least_squares":
        dof = design.n_obs - design.n_groups
        sse = sum_of_squares(design.response, extinction_mean(theta, design.matrix))
        s2 = sse / dof if dof > 0 else float("nan")
        dispersion = Estimate(label="sigma2", value=float(s2), level=float(level))
        if dof > 0:
            scale = 2.0 * s2
        else:
            cov_error = NonInvertibleHessian(
                f"Residual variance needs more observations ({design.n_obs}) than groups ({design.n_groups})."
            )

    cov = None
    if cov_error is None:
        try:
            cov = covariance_from_hessian(best.hessian, scale=scale)
        except NonInvertibleHessian as e:
            cov_error = e

    if cov is not None:
        estimates = delta_method(theta, cov, transforms, level=level)
        if objective.has_dispersion:
            dispersion = delta_method(theta, cov, [ExpDispersion()], level=level)[0]
    else:
        logger.warning("%s: no confidence intervals (%s)", method, cov_error)
        estimates = unavailable(theta, transforms, level=level)
        if objective.has_dispersion:
            dispersion = unavailable(theta, [ExpDispersion()], level=level)[0]

    return EstimationRun(
        method=method,
        design=design,
        objective=objective,
        multistart=ms,
        estimates=estimates,
        dispersion=dispersion,
        covariance=cov,
        covariance_error=cov_error,
        level=float(level),
    )


def compare_methods(
    observations: Any,
    methods: Sequence[str] = METHODS,
    *,
    config: Optional[MultiStartConfig] = None,
    configs: Optional[Dict[str, MultiStartConfig]] = None,
    level: float = 0.95,
    group_order: GroupOrder = "sorted",
    log_k: bool = True,
) -> MethodComparison:
    """Run each method independently on the same observations.

    `configs` overrides `config` per method (e.g. a derivative-free backend
    for one objective only). A failing method never stops the others.
    """
    obs = _as_observations(observations)
    configs = dict(configs or {})
    runs: Dict[str, EstimationRun] = {}
    failures: Dict[str, Exception] = {}
    for method in methods:
        cfg = configs.get(method, config)
        try:
            run = fit(obs, method, config=cfg, level=level, group_order=group_order, log_k=log_k)
        except (FitFailure, InvalidInput) as e:
            logger.warning("%s failed: %s", method, e)
            failures[method] = e
            continue
        runs[method] = run
        if run.covariance_error is not None:
            failures[method] = run.covariance_error
    return MethodComparison(runs=runs, failures=failures)
