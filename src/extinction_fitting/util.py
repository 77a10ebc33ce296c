from __future__ import annotations

import math
from typing import Any, Callable, Optional

import numpy as np
from scipy.stats import norm


def level_to_z(level: float) -> float:
    """Two-sided Normal critical value for a central confidence level."""
    level = float(level)
    if not 0.0 < level < 1.0:
        raise ValueError(f"Confidence level must be in (0, 1); got {level!r}.")
    return float(norm.ppf(0.5 + 0.5 * level))


def _steps(x0: np.ndarray, step: Optional[float]) -> np.ndarray:
    rel = 1e-4 if step is None else float(step)
    return rel * (np.abs(x0) + 1.0)


def numdiff_gradient(
    func: Callable[[np.ndarray], float], x0: Any, step: Optional[float] = None
) -> np.ndarray:
    """Central-difference gradient of a scalar function."""
    x0 = np.asarray(x0, dtype=float)
    eps = _steps(x0, 1e-6 if step is None else step)
    out = np.empty_like(x0)
    for i in range(x0.shape[0]):
        e = np.zeros_like(x0)
        e[i] = eps[i]
        out[i] = (float(func(x0 + e)) - float(func(x0 - e))) / (2.0 * eps[i])
    return out


def numdiff_hessian(
    func: Callable[[np.ndarray], float],
    x0: Any,
    *,
    grad: Optional[Callable[[np.ndarray], np.ndarray]] = None,
    step: Optional[float] = None,
) -> np.ndarray:
    """Central-difference Hessian at x0.

    With `grad`, differences the gradient and symmetrises; otherwise uses
    second differences of function values. Non-finite evaluations propagate
    into the returned matrix so callers can reject it.
    """
    x0 = np.asarray(x0, dtype=float)
    npar = int(x0.shape[0])
    eps = _steps(x0, step)
    hess = np.zeros((npar, npar), dtype=float)

    if grad is not None:
        for i in range(npar):
            ei = np.zeros(npar, dtype=float)
            ei[i] = eps[i]
            gp = np.asarray(grad(x0 + ei), dtype=float)
            gm = np.asarray(grad(x0 - ei), dtype=float)
            hess[i, :] = (gp - gm) / (2.0 * eps[i])
        return 0.5 * (hess + hess.T)

    f0 = float(func(x0))
    for i in range(npar):
        ei = np.zeros(npar, dtype=float)
        ei[i] = eps[i]
        fpp = float(func(x0 + ei))
        fmm = float(func(x0 - ei))
        hess[i, i] = (fpp - 2.0 * f0 + fmm) / (eps[i] ** 2)
        for j in range(i + 1, npar):
            ej = np.zeros(npar, dtype=float)
            ej[j] = eps[j]
            fpp = float(func(x0 + ei + ej))
            fpm = float(func(x0 + ei - ej))
            fmp = float(func(x0 - ei + ej))
            fmm = float(func(x0 - ei - ej))
            hij = (fpp - fpm - fmp + fmm) / (4.0 * eps[i] * eps[j])
            hess[i, j] = hij
            hess[j, i] = hij
    return hess


def _jittered_cholesky(cov: np.ndarray, max_tries: int = 6) -> np.ndarray:
    cov = np.asarray(cov, dtype=float)
    cov = 0.5 * (cov + cov.T)
    diag = np.diag(cov)
    scale = float(np.max(diag)) if diag.size else 1.0
    scale = 1.0 if not np.isfinite(scale) or scale <= 0 else scale

    jitter = 0.0
    for i in range(max_tries):
        try:
            return np.linalg.cholesky(cov + jitter * np.eye(cov.shape[0]))
        except np.linalg.LinAlgError:
            jitter = (10.0 ** (-(max_tries - i))) * 1e-6 * scale + (
                jitter * 10.0 if jitter else 0.0
            )

    w, v = np.linalg.eigh(cov)
    w = np.clip(w, 0.0, None)
    return v @ np.diag(np.sqrt(w))


def sample_mvn(
    mean: np.ndarray, cov: np.ndarray, nsamples: int, rng: np.random.Generator
) -> np.ndarray:
    """Sample from MVN(mean, cov) robustly. Returns shape (nsamples, P)."""
    mean = np.asarray(mean, dtype=float)
    cov = np.asarray(cov, dtype=float)
    L = _jittered_cholesky(cov)
    z = rng.normal(size=(nsamples, mean.shape[0]))
    return mean[None, :] + z @ L.T


def uncertainty_to_string(x: float, err: float, precision: int = 1) -> str:
    """Format a value with uncertainty compactly, e.g. 0.512(13).

    Falls back to scientific notation x.xx(ee)e+xx when that is shorter.
    """
    x = float(x)
    err = float(err)

    if math.isnan(x):
        return "NaN"
    if math.isnan(err):
        return f"{x:.4g}"
    if math.isinf(x) or math.isinf(err):
        return "inf"

    err = abs(err)
    precision = max(1, int(precision))
    if err == 0.0:
        return f"{x:.{precision}g}(0)"

    err_exp = int(math.floor(math.log10(err)))
    if x == 0.0 or abs(x) < err:
        x_exp = err_exp
    else:
        x_exp = int(math.floor(math.log10(abs(x))))

    un_exp = err_exp - precision + 1
    un_int = round(err * 10 ** (-un_exp))
    no_int = round(x * 10 ** (-un_exp))

    fieldw = x_exp - un_exp
    sci = (f"%.{fieldw}f" + "(%.0f)e%d") % (no_int * 10 ** (-fieldw), un_int, x_exp)

    fieldw = max(0, -un_exp)
    plain = (f"%.{fieldw}f" + "(%.0f)") % (no_int * 10 ** un_exp, un_int * 10 ** max(0, un_exp))

    return plain if len(plain) <= len(sci) else sci
