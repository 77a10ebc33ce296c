from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple
from warnings import warn

import numpy as np

from .backends import get_backend
from .backends.common import OptimizationResult
from .errors import FitFailure, MultimodalityWarning, OptimizerNonConvergence
from .objectives import Objective

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MultiStartConfig:
    """Settings for a multi-start optimisation.

    Restart r draws its start from `np.random.default_rng(seeds[r])`. When
    `seeds` is None the seeds are `seed, seed + 1, ...`, so the first R
    restarts are the same whatever the total number of restarts.
    """

    restarts: int = 10
    seed: int = 0
    seeds: Optional[Tuple[int, ...]] = None
    init_range: Tuple[float, float] = (0.2, 0.8)
    init_dispersion: float = 0.01
    backend: str = "scipy.bfgs"
    backend_options: Dict[str, Any] = field(default_factory=dict)
    workers: int = 1
    compare_top: int = 3
    objective_tol: float = 1e-6
    param_tol: float = 1e-3

    def restart_seeds(self) -> Tuple[int, ...]:
        if self.seeds is not None:
            seeds = tuple(int(s) for s in self.seeds)
            if len(seeds) != int(self.restarts):
                raise ValueError(
                    f"Got {len(seeds)} seeds for {self.restarts} restarts."
                )
            return seeds
        return tuple(int(self.seed) + r for r in range(int(self.restarts)))

    def replace(self, **changes: Any) -> "MultiStartConfig":
        return replace(self, **changes)


@dataclass(frozen=True)
class RestartRecord:
    """Outcome of one restart; `result` is None only if the run raised."""

    index: int
    seed: int
    start: np.ndarray
    result: Optional[OptimizationResult] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.result is not None and self.result.converged

    @property
    def objective_value(self) -> float:
        if self.result is None:
            return float("nan")
        return float(self.result.objective_value)


@dataclass(frozen=True)
class MultiStartResult:
    objective: Objective = field(repr=False)
    records: Tuple[RestartRecord, ...]
    best_index: int
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    @property
    def best(self) -> OptimizationResult:
        res = self.records[self.best_index].result
        assert res is not None
        return res

    @property
    def n_failed(self) -> int:
        return sum(1 for r in self.records if not r.ok)

    @property
    def multimodal(self) -> bool:
        return bool(self.diagnostics.get("multimodal", False))

    def objective_values(self) -> np.ndarray:
        """Objective value per restart (NaN for failed restarts)."""
        return np.array(
            [r.objective_value if r.ok else np.nan for r in self.records], dtype=float
        )

    def ranked(self) -> List[RestartRecord]:
        """Successful restarts ordered by objective value (stable)."""
        ok = [r for r in self.records if r.ok]
        return sorted(ok, key=lambda r: r.objective_value)


def _one_restart(
    objective: Objective,
    index: int,
    seed: int,
    config: MultiStartConfig,
) -> RestartRecord:
    rng = np.random.default_rng(seed)
    start = objective.initial_point(rng, config.init_range, config.init_dispersion)
    options = dict(config.backend_options)
    options["seed"] = seed
    backend = get_backend(config.backend)
    result = backend.minimize_one(objective=objective, start=start, options=options)
    if not result.converged:
        err = OptimizerNonConvergence(
            f"restart {index} (seed={seed}) did not converge: {result.message}"
        )
        logger.debug("Skipping %s", err)
        return RestartRecord(index=index, seed=seed, start=start, result=result, error=err)
    return RestartRecord(index=index, seed=seed, start=start, result=result)


def _agreement(ranked: Sequence[RestartRecord], config: MultiStartConfig) -> Dict[str, Any]:
    """Compare the best few restarts; disagreement flags an unreliable optimum."""
    top = list(ranked[: max(1, int(config.compare_top))])
    best = top[0].result
    assert best is not None
    f0 = float(best.objective_value)
    theta0 = np.asarray(best.theta, dtype=float)

    obj_spread = 0.0
    par_spread = 0.0
    for rec in top[1:]:
        assert rec.result is not None
        obj_spread = max(obj_spread, float(rec.result.objective_value) - f0)
        dtheta = np.abs(np.asarray(rec.result.theta, dtype=float) - theta0) / (np.abs(theta0) + 1.0)
        par_spread = max(par_spread, float(np.max(dtheta)))

    multimodal = bool(
        obj_spread > float(config.objective_tol) * (abs(f0) + 1.0)
        or par_spread > float(config.param_tol)
    )
    return {
        "compared": len(top),
        "objective_spread": obj_spread,
        "parameter_spread": par_spread,
        "multimodal": multimodal,
    }


def run_multistart(objective: Objective, config: Optional[MultiStartConfig] = None) -> MultiStartResult:
    """Run a local optimiser from many random starts and keep the best.

    Restarts are independent: a failed restart is recorded and skipped. The
    reported optimum is the lowest objective value among converged restarts,
    ties going to the earliest restart. Raises FitFailure if none converge.
    """
    if config is None:
        config = MultiStartConfig()
    if int(config.restarts) < 1:
        raise ValueError("restarts must be >= 1.")
    seeds = config.restart_seeds()

    jobs = list(enumerate(seeds))
    workers = max(1, int(config.workers))
    if workers == 1 or len(jobs) == 1:
        records = [_one_restart(objective, i, s, config) for i, s in jobs]
    else:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            records = list(pool.map(lambda job: _one_restart(objective, job[0], job[1], config), jobs))

    ok_values = [(rec.objective_value, rec.index) for rec in records if rec.ok]
    if not ok_values:
        raise FitFailure(
            f"All {len(records)} restarts of the {objective.name!r} objective failed.",
            details={
                "objective": objective.name,
                "seeds": seeds,
                "messages": [None if r.result is None else r.result.message for r in records],
                "objective_values": [r.objective_value for r in records],
                "records": tuple(records),
            },
        )

    # min() over (value, index) breaks ties by the earliest restart.
    best_value, best_index = min(ok_values)
    ranked = sorted((r for r in records if r.ok), key=lambda r: (r.objective_value, r.index))
    diagnostics = _agreement(ranked, config)
    diagnostics["n_restarts"] = len(records)
    diagnostics["n_failed"] = len(records) - len(ok_values)

    logger.info(
        "%s: best restart %d (seed=%d) objective=%.6g, %d/%d restarts failed",
        objective.name,
        best_index,
        seeds[best_index],
        best_value,
        diagnostics["n_failed"],
        len(records),
    )
    if diagnostics["multimodal"]:
        warn(
            f"Top {diagnostics['compared']} restarts of {objective.name!r} disagree "
            f"(objective spread {diagnostics['objective_spread']:.3g}, "
            f"parameter spread {diagnostics['parameter_spread']:.3g}); "
            "the reported optimum may not be global.",
            MultimodalityWarning,
        )

    return MultiStartResult(
        objective=objective,
        records=tuple(records),
        best_index=int(best_index),
        diagnostics=diagnostics,
    )
