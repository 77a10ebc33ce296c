from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple

import numpy as np
from scipy.special import betaln, digamma

from .design import GroupedDesign
from .errors import InvalidInput, ObjectiveEvaluationFailure
from .models import extinction_mean

_LOG_2PI = float(np.log(2.0 * np.pi))


def sum_of_squares(y: np.ndarray, mu: np.ndarray) -> float:
    """Residual sum of squares sum (y - mu)^2."""
    r = np.asarray(y, dtype=float) - np.asarray(mu, dtype=float)
    return float(r @ r)


def neg_loglike_normal(y: np.ndarray, mu: np.ndarray, sigma2: float) -> float:
    """Negative log-likelihood of y under Normal(mu, sigma2)."""
    y = np.asarray(y, dtype=float)
    r = y - np.asarray(mu, dtype=float)
    sigma2 = float(sigma2)
    if not sigma2 > 0.0:
        return float("inf")
    return float(0.5 * (y.size * (_LOG_2PI + np.log(sigma2)) + (r @ r) / sigma2))


def beta_shapes(mu: Any, sigma2: Any) -> Tuple[np.ndarray, np.ndarray]:
    """Convert Beta mean `mu` and variance-like `sigma2` into (alpha, beta).

        alpha = (mu^2 - mu^3 - mu*sigma2) / sigma2
        beta  = (mu - 2mu^2 + mu^3 - sigma2 + mu*sigma2) / sigma2

    Both are positive only while 0 < sigma2 < mu(1 - mu). Outside that region
    ObjectiveEvaluationFailure is raised instead of returning negative shapes.
    """
    mu = np.asarray(mu, dtype=float)
    sigma2 = np.asarray(sigma2, dtype=float)
    if np.any(~(sigma2 > 0.0)) or not np.all(np.isfinite(sigma2)):
        raise ObjectiveEvaluationFailure(f"sigma2 must be finite and > 0; got {sigma2!r}.")

    with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
        # Factored form of the expressions above.
        precision = mu * (1.0 - mu) / sigma2 - 1.0
        alpha = mu * precision
        beta_ = (1.0 - mu) * precision

    ok = np.isfinite(alpha) & np.isfinite(beta_) & (alpha > 0.0) & (beta_ > 0.0)
    if not np.all(ok):
        i = int(np.flatnonzero(~np.ravel(ok))[0])
        mu_i = float(np.broadcast_to(mu, np.shape(ok)).ravel()[i])
        raise ObjectiveEvaluationFailure(
            f"Invalid Beta shapes at index {i}: mu={mu_i!r}, sigma2={sigma2!r} "
            f"(need 0 < sigma2 < mu(1-mu))."
        )
    return alpha, beta_


def neg_loglike_beta(y: np.ndarray, mu: np.ndarray, sigma2: float) -> float:
    """Negative log-likelihood of y under the mean/dispersion Beta density.

    Returns +inf where the shape parameters are invalid.
    """
    y = np.asarray(y, dtype=float)
    try:
        a, b = beta_shapes(mu, sigma2)
    except ObjectiveEvaluationFailure:
        return float("inf")
    ll = (a - 1.0) * np.log(y) + (b - 1.0) * np.log1p(-y) - betaln(a, b)
    val = float(-np.sum(ll))
    return val if np.isfinite(val) else float("inf")


@dataclass(frozen=True)
class Objective:
    """A scalar objective to minimise over the optimiser's coordinates.

    theta layout: G coefficient entries (k_j, or log k_j when `log_k`), then
    `log_sigma2` when `has_dispersion`.
    """

    name: str
    func: Callable[[np.ndarray], float]
    param_names: Tuple[str, ...]
    n_groups: int
    design: GroupedDesign = field(repr=False)
    grad: Optional[Callable[[np.ndarray], np.ndarray]] = field(default=None, repr=False)
    log_k: bool = False
    has_dispersion: bool = False
    cap_dispersion: bool = False

    def __call__(self, theta: Any) -> float:
        return self.func(np.asarray(theta, dtype=float))

    @property
    def n_params(self) -> int:
        return len(self.param_names)

    def coefficients(self, theta: Any) -> np.ndarray:
        """Per-group k on the natural scale."""
        t = np.asarray(theta, dtype=float)[: self.n_groups]
        return np.exp(t) if self.log_k else t.copy()

    def dispersion(self, theta: Any) -> Optional[float]:
        """sigma2 on the natural scale, or None for objectives without one."""
        if not self.has_dispersion:
            return None
        return float(np.exp(np.asarray(theta, dtype=float)[self.n_groups]))

    def initial_point(
        self,
        rng: np.random.Generator,
        init_range: Tuple[float, float] = (0.2, 0.8),
        init_dispersion: float = 0.01,
    ) -> np.ndarray:
        """Random start: k_j ~ Uniform(init_range), fixed starting sigma2.

        With `cap_dispersion` (the Beta objective) the starting sigma2 is
        min(init_dispersion, 0.5 * min(mu0 * (1 - mu0))) over the rows at the
        drawn k, so the Beta shapes exist at the start.
        """
        lo, hi = float(init_range[0]), float(init_range[1])
        if not (0.0 < lo < hi):
            raise ValueError(f"init_range must satisfy 0 < lo < hi; got {init_range!r}.")
        k0 = rng.uniform(lo, hi, size=self.n_groups)
        start = np.log(k0) if self.log_k else k0
        if self.has_dispersion:
            if not init_dispersion > 0.0:
                raise ValueError("init_dispersion must be > 0.")
            s2 = float(init_dispersion)
            if self.cap_dispersion:
                mu0 = extinction_mean(k0, self.design.matrix)
                s2 = min(s2, 0.5 * float(np.min(mu0 * (1.0 - mu0))))
            start = np.append(start, np.log(s2))
        return np.asarray(start, dtype=float)


def _names(design: GroupedDesign, prefix: str) -> Tuple[str, ...]:
    return tuple(f"{prefix}[{label}]" for label in design.groups.labels)


def _finite_or(value: float) -> float:
    return float(value) if np.isfinite(value) else float("inf")


def least_squares_objective(design: GroupedDesign) -> Objective:
    """Sum of squared residuals over k_1..k_G (no distributional assumption)."""
    X = design.matrix
    y = np.asarray(design.response, dtype=float)

    def func(theta: np.ndarray) -> float:
        with np.errstate(over="ignore", invalid="ignore"):
            return _finite_or(sum_of_squares(y, extinction_mean(theta, X)))

    def grad(theta: np.ndarray) -> np.ndarray:
        with np.errstate(over="ignore", invalid="ignore"):
            mu = extinction_mean(theta, X)
            g = X.T @ (-2.0 * (y - mu) * (1.0 - mu))
        return np.where(np.isfinite(g), g, 0.0)

    return Objective(
        name="least_squares",
        func=func,
        grad=grad,
        param_names=_names(design, "k"),
        n_groups=design.n_groups,
        design=design,
    )


def normal_objective(design: GroupedDesign) -> Objective:
    """Gaussian negative log-likelihood over (k_1..k_G, log_sigma2)."""
    X = design.matrix
    y = np.asarray(design.response, dtype=float)
    G = design.n_groups
    n = float(y.size)

    def func(theta: np.ndarray) -> float:
        with np.errstate(over="ignore", invalid="ignore"):
            mu = extinction_mean(theta[:G], X)
            return _finite_or(neg_loglike_normal(y, mu, np.exp(theta[G])))

    def grad(theta: np.ndarray) -> np.ndarray:
        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            s2 = np.exp(theta[G])
            mu = extinction_mean(theta[:G], X)
            r = y - mu
            g_k = X.T @ (-(r / s2) * (1.0 - mu))
            g_s = 0.5 * (n - (r @ r) / s2)
            g = np.append(g_k, g_s)
        return np.where(np.isfinite(g), g, 0.0)

    return Objective(
        name="normal",
        func=func,
        grad=grad,
        param_names=_names(design, "k") + ("log_sigma2",),
        n_groups=G,
        design=design,
        has_dispersion=True,
    )


def beta_objective(design: GroupedDesign, *, log_k: bool = True) -> Objective:
    """Beta negative log-likelihood over (k or log k, log_sigma2).

    Observations at predictor 0 have mu = 0, where the Beta density does not
    exist for any parameter value, so they are rejected up front.
    """
    x = np.asarray(design.predictor, dtype=float)
    zero = np.flatnonzero(x <= 0.0)
    if zero.size:
        raise InvalidInput(
            f"Beta likelihood needs predictor > 0; observation {int(zero[0])} has predictor 0."
        )

    X = design.matrix
    y = np.asarray(design.response, dtype=float)
    log_y = np.log(y)
    log_1my = np.log1p(-y)
    G = design.n_groups

    def _state(theta: np.ndarray):
        k = np.exp(theta[:G]) if log_k else theta[:G]
        s2 = float(np.exp(theta[G]))
        mu = extinction_mean(k, X)
        a, b = beta_shapes(mu, s2)
        return k, s2, mu, a, b

    def func(theta: np.ndarray) -> float:
        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            try:
                _, _, _, a, b = _state(theta)
            except ObjectiveEvaluationFailure:
                return float("inf")
            ll = (a - 1.0) * log_y + (b - 1.0) * log_1my - betaln(a, b)
            return _finite_or(-np.sum(ll))

    def grad(theta: np.ndarray) -> np.ndarray:
        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            try:
                k, s2, mu, a, b = _state(theta)
            except ObjectiveEvaluationFailure:
                return np.zeros_like(theta, dtype=float)
            psi_ab = digamma(a + b)
            dll_da = log_y - digamma(a) + psi_ab
            dll_db = log_1my - digamma(b) + psi_ab

            precision = a + b
            dprec_dmu = (1.0 - 2.0 * mu) / s2
            da_dmu = precision + mu * dprec_dmu
            db_dmu = -precision + (1.0 - mu) * dprec_dmu
            dll_dmu = dll_da * da_dmu + dll_db * db_dmu

            g_k = -(X.T @ (dll_dmu * (1.0 - mu)))
            if log_k:
                g_k = g_k * k

            dprec_ds2 = -mu * (1.0 - mu) / (s2 * s2)
            dll_ds2 = (dll_da * mu + dll_db * (1.0 - mu)) * dprec_ds2
            g_s = -float(np.sum(dll_ds2)) * s2
            g = np.append(g_k, g_s)
        return np.where(np.isfinite(g), g, 0.0)

    prefix = "log_k" if log_k else "k"
    return Objective(
        name="beta",
        func=func,
        grad=grad,
        param_names=_names(design, prefix) + ("log_sigma2",),
        n_groups=G,
        design=design,
        log_k=bool(log_k),
        has_dispersion=True,
        cap_dispersion=True,
    )


OBJECTIVE_BUILDERS = {
    "least_squares": least_squares_objective,
    "normal": normal_objective,
    "beta": beta_objective,
}


def build_objective(method: str, design: GroupedDesign, *, log_k: bool = True) -> Objective:
    """Return the objective named `method` for `design`."""
    if method == "beta":
        return beta_objective(design, log_k=log_k)
    try:
        builder = OBJECTIVE_BUILDERS[method]
    except KeyError as e:
        raise ValueError(
            f"Unknown method {method!r}. Available: {tuple(OBJECTIVE_BUILDERS)}"
        ) from e
    return builder(design)
