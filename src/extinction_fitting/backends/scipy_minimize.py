from __future__ import annotations

import time
from typing import Any, Dict

import numpy as np
from scipy.optimize import minimize

from ..util import numdiff_hessian
from .common import OptimizationResult


class ScipyMinimizeBackend:
    """Unconstrained local optimisation via scipy.optimize.minimize."""

    def __init__(self, method: str = "BFGS"):
        self.method = str(method)
        self.name = "scipy." + self.method.lower().replace("-", "_")

    def minimize_one(
        self,
        *,
        objective: Any,
        start: np.ndarray,
        options: dict[str, Any],
    ) -> OptimizationResult:
        """Minimise `objective` from `start`.

        Backend options:
        - maxiter: iteration ceiling forwarded to scipy
        - max_time: wall-clock ceiling in seconds; the run is stopped and
          reported as unconverged once it is exceeded
        - tol: forwarded to scipy.optimize.minimize
        - hess_step: relative finite-difference step for the Hessian (default 1e-4)
        - options: dict forwarded verbatim to scipy.optimize.minimize
        """
        start = np.asarray(start, dtype=float)
        seed = options.get("seed", None)
        scipy_opts: Dict[str, Any] = dict(options.get("options", None) or {})
        if options.get("maxiter", None) is not None:
            scipy_opts["maxiter"] = int(options["maxiter"])
        tol = options.get("tol", None)
        hess_step = options.get("hess_step", None)
        max_time = options.get("max_time", None)

        grad = getattr(objective, "grad", None)
        jac = grad if (grad is not None and self.method != "Nelder-Mead") else None

        def _failed(message: str, theta: np.ndarray, fun: float) -> OptimizationResult:
            return OptimizationResult(
                theta=np.asarray(theta, dtype=float),
                objective_value=float(fun),
                hessian=None,
                start=start,
                seed=seed,
                converged=False,
                message=message,
                backend=self.name,
            )

        f0 = float(objective.func(start))
        if not np.isfinite(f0):
            return _failed("objective is not finite at the starting point", start, f0)

        timed_out = False
        callback = None
        if max_time is not None:
            deadline = time.monotonic() + float(max_time)

            def callback(xk: np.ndarray) -> None:
                nonlocal timed_out
                if time.monotonic() > deadline:
                    timed_out = True
                    raise StopIteration

        try:
            res = minimize(
                objective.func,
                start,
                jac=jac,
                method=self.method,
                tol=tol,
                options=scipy_opts,
                callback=callback,
            )
        except (ValueError, ArithmeticError, np.linalg.LinAlgError) as e:
            return _failed(f"{type(e).__name__}: {e}", start, f0)

        theta = np.asarray(res.x, dtype=float)
        fun = float(res.fun)
        message = f"wall-clock limit of {max_time}s exceeded" if timed_out else str(res.message)
        finite = bool(np.isfinite(fun) and np.all(np.isfinite(theta)))
        converged = bool(res.success) and finite and not timed_out

        hess = None
        if finite:
            with np.errstate(over="ignore", invalid="ignore"):
                hess = numdiff_hessian(objective.func, theta, grad=grad, step=hess_step)

        return OptimizationResult(
            theta=theta,
            objective_value=fun,
            hessian=hess,
            start=start,
            seed=seed,
            converged=converged,
            message=message,
            n_iter=int(getattr(res, "nit", 0) or 0),
            n_eval=int(getattr(res, "nfev", 0) or 0),
            backend=self.name,
            stats={"method": self.method, "status": int(getattr(res, "status", 0) or 0)},
        )
