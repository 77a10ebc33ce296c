"""Hierarchical Bayesian estimation of per-group k.

Model
-----
    k_j    ~ Uniform(0, 2)           j = 1..G (shared prior family, no hyper-parameters)
    kappa  ~ Gamma(24, rate=2)
    y_i    ~ Beta(mean=mu_i, precision=kappa)
    mu_i   = 1 - exp(-k_{group(i)} * x_i)

The model description is plain data (`HierarchicalSpec`); an engine compiles
it and returns ArviZ InferenceData. Generated quantities (posterior predictive
draws at new pairs and the pointwise log-likelihood) are computed here from
the retained draws, so they do not depend on the engine.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple
from warnings import warn

import arviz as az
import numpy as np
from scipy.stats import beta as beta_dist

from .design import GroupedDesign, GroupOrder, build_design
from .errors import ChainDisagreement, FitFailure, InvalidInput, SamplerDivergence
from .inputs import Observations

logger = logging.getLogger(__name__)

QUANTILES = (0.025, 0.25, 0.5, 0.75, 0.975)
SUMMARY_COLUMNS = ("mean", "se_mean", "sd", "q2.5", "q25", "q50", "q75", "q97.5", "ess", "r_hat")


# ---- model description ---------------------------------------------------------


@dataclass(frozen=True)
class Prior:
    kind: str  # "uniform" | "gamma"
    args: Tuple[float, ...]

    def __post_init__(self) -> None:
        if self.kind == "uniform":
            lo, hi = self.args
            if not float(lo) < float(hi):
                raise ValueError(f"uniform prior needs lower < upper; got {self.args!r}.")
        elif self.kind == "gamma":
            a, rate = self.args
            if not (float(a) > 0.0 and float(rate) > 0.0):
                raise ValueError(f"gamma prior needs alpha > 0 and rate > 0; got {self.args!r}.")
        else:
            raise ValueError(f"Unknown prior kind {self.kind!r}; use 'uniform' or 'gamma'.")

    @property
    def support(self) -> Tuple[float, float]:
        if self.kind == "uniform":
            return float(self.args[0]), float(self.args[1])
        return 0.0, float("inf")


def uniform(lower: float, upper: float) -> Prior:
    return Prior("uniform", (float(lower), float(upper)))


def gamma(alpha: float, rate: float) -> Prior:
    return Prior("gamma", (float(alpha), float(rate)))


@dataclass(frozen=True)
class HierarchicalSpec:
    """Priors plus the (group, predictor) pairs to generate predictions at."""

    k_prior: Prior = uniform(0.0, 2.0)
    kappa_prior: Prior = gamma(24.0, 2.0)
    new_groups: Tuple[Any, ...] = ()
    new_predictors: Tuple[float, ...] = ()

    def __post_init__(self) -> None:
        if len(self.new_groups) != len(self.new_predictors):
            raise ValueError(
                f"new_groups and new_predictors must have equal length; "
                f"got {len(self.new_groups)} and {len(self.new_predictors)}."
            )

    def replace(self, **changes: Any) -> "HierarchicalSpec":
        return replace(self, **changes)


@dataclass(frozen=True)
class SamplerConfig:
    """NUTS settings. Chain c uses seed `seed + c` unless `chain_seeds` is given."""

    chains: int = 4
    warmup: int = 1000
    draws: int = 1000
    seed: int = 0
    chain_seeds: Optional[Tuple[int, ...]] = None
    cores: Optional[int] = None
    target_accept: float = 0.8
    rhat_threshold: float = 1.01
    progressbar: bool = False

    def seeds(self) -> Tuple[int, ...]:
        if self.chain_seeds is not None:
            seeds = tuple(int(s) for s in self.chain_seeds)
            if len(seeds) != int(self.chains):
                raise ValueError(f"Got {len(seeds)} chain seeds for {self.chains} chains.")
            return seeds
        return tuple(int(self.seed) + c for c in range(int(self.chains)))

    def replace(self, **changes: Any) -> "SamplerConfig":
        return replace(self, **changes)


# ---- engines -------------------------------------------------------------------


class SamplingEngine(Protocol):
    """Compile a HierarchicalSpec for a design and return posterior draws."""

    name: str

    def sample(
        self, design: GroupedDesign, spec: HierarchicalSpec, config: SamplerConfig
    ) -> az.InferenceData: ...


def _pm_prior(pm: Any, name: str, prior: Prior, **kwargs: Any) -> Any:
    if prior.kind == "uniform":
        return pm.Uniform(name, lower=prior.args[0], upper=prior.args[1], **kwargs)
    return pm.Gamma(name, alpha=prior.args[0], beta=prior.args[1], **kwargs)


class PyMCEngine:
    """NUTS via PyMC. BetaProportion(mu, kappa) is `pm.Beta(mu=mu, nu=kappa)`."""

    name = "pymc"

    def build_model(self, design: GroupedDesign, spec: HierarchicalSpec) -> Any:
        import pymc as pm

        coords = {"group": [str(g) for g in design.groups.labels], "obs": np.arange(design.n_obs)}
        gidx = np.asarray(design.group_index)
        x = np.asarray(design.predictor, dtype=float)
        y = np.asarray(design.response, dtype=float)

        with pm.Model(coords=coords) as model:
            k = _pm_prior(pm, "k", spec.k_prior, dims="group")
            kappa = _pm_prior(pm, "kappa", spec.kappa_prior)
            mu = 1.0 - pm.math.exp(-k[gidx] * x)
            pm.Beta("y", mu=mu, nu=kappa, observed=y, dims="obs")
        return model

    def sample(
        self, design: GroupedDesign, spec: HierarchicalSpec, config: SamplerConfig
    ) -> az.InferenceData:
        import pymc as pm

        model = self.build_model(design, spec)
        seeds = config.seeds()
        cores = int(config.cores) if config.cores is not None else int(config.chains)
        logger.info(
            "Sampling %d chains x (%d warm-up + %d draws) on %d cores, seeds=%s",
            config.chains,
            config.warmup,
            config.draws,
            cores,
            seeds,
        )
        with model:
            idata = pm.sample(
                draws=int(config.draws),
                tune=int(config.warmup),
                chains=int(config.chains),
                cores=cores,
                random_seed=list(seeds),
                target_accept=float(config.target_accept),
                progressbar=bool(config.progressbar),
                idata_kwargs={"log_likelihood": True},
                return_inferencedata=True,
            )
        return idata


# ---- results -------------------------------------------------------------------


@dataclass(frozen=True)
class PosteriorFit:
    idata: Any = field(repr=False)
    design: GroupedDesign = field(repr=False)
    spec: HierarchicalSpec
    config: SamplerConfig
    summary: Dict[str, Dict[str, float]] = field(repr=False)
    predictive: np.ndarray = field(repr=False)  # (C, S, M)
    log_likelihood: np.ndarray = field(repr=False)  # (C, S, N)
    n_divergent: int = 0
    max_r_hat: float = float("nan")
    reliable: bool = True

    def __getitem__(self, name: str) -> Dict[str, float]:
        return self.summary[name]

    @property
    def k_draws(self) -> np.ndarray:
        """Posterior draws of k, shape (C, S, G)."""
        return np.asarray(self.idata.posterior["k"].values, dtype=float)

    @property
    def kappa_draws(self) -> np.ndarray:
        return np.asarray(self.idata.posterior["kappa"].values, dtype=float)

    def loo(self, **kwargs: Any) -> Any:
        """PSIS leave-one-out estimate of expected log predictive density."""
        return az.loo(self.idata, var_name="y", **kwargs)

    def summary_text(self, digits: int = 4) -> str:
        header = f"{'':>12s} " + " ".join(f"{c:>9s}" for c in SUMMARY_COLUMNS)
        lines = [
            f"PosteriorFit(chains={self.config.chains}, draws={self.config.draws}, "
            f"divergent={self.n_divergent}, max_r_hat={self.max_r_hat:.{digits}g}, "
            f"reliable={self.reliable})",
            header,
            "-" * len(header),
        ]
        for name, row in self.summary.items():
            cells = " ".join(f"{row[c]:>9.{digits}g}" for c in SUMMARY_COLUMNS)
            lines.append(f"{name:>12s} {cells}")
        return "\n".join(lines)


def _per_parameter(name: str, arr: np.ndarray, labels: Sequence[Any]) -> List[Tuple[str, np.ndarray]]:
    """Split a (C, S[, G]) draw array into scalar-parameter (C, S) slices."""
    if arr.ndim == 2:
        return [(name, arr)]
    return [(f"{name}[{label}]", arr[:, :, j]) for j, label in enumerate(labels)]


def summarize_draws(idata: Any, labels: Sequence[Any]) -> Dict[str, Dict[str, float]]:
    """mean, se_mean, sd, quantiles, ess and r_hat for k[...] and kappa."""
    posterior = idata.posterior
    mcse = az.mcse(idata, var_names=["k", "kappa"], method="mean")
    ess = az.ess(idata, var_names=["k", "kappa"], method="bulk")
    rhat = az.rhat(idata, var_names=["k", "kappa"])

    out: Dict[str, Dict[str, float]] = {}
    for var in ("k", "kappa"):
        draws = _per_parameter(var, np.asarray(posterior[var].values, dtype=float), labels)
        se_all = np.atleast_1d(np.asarray(mcse[var].values, dtype=float))
        ess_all = np.atleast_1d(np.asarray(ess[var].values, dtype=float))
        rhat_all = np.atleast_1d(np.asarray(rhat[var].values, dtype=float))
        for j, (name, a) in enumerate(draws):
            flat = a.reshape((-1,))
            q = np.quantile(flat, QUANTILES)
            out[name] = {
                "mean": float(np.mean(flat)),
                "se_mean": float(se_all[j]),
                "sd": float(np.std(flat, ddof=1)) if flat.size > 1 else float("nan"),
                "q2.5": float(q[0]),
                "q25": float(q[1]),
                "q50": float(q[2]),
                "q75": float(q[3]),
                "q97.5": float(q[4]),
                "ess": float(ess_all[j]),
                "r_hat": float(rhat_all[j]),
            }
    return out


def check_convergence(
    idata: Any, summary: Dict[str, Dict[str, float]], rhat_threshold: float
) -> Tuple[int, float, bool]:
    """Warn on divergences or R-hat above threshold; return (n_divergent, max_r_hat, reliable)."""
    n_div = 0
    stats = getattr(idata, "sample_stats", None)
    if stats is not None and "diverging" in stats:
        n_div = int(np.asarray(stats["diverging"].values).sum())

    rhats = np.array([row["r_hat"] for row in summary.values()], dtype=float)
    finite = rhats[np.isfinite(rhats)]
    max_rhat = float(finite.max()) if finite.size else float("nan")

    reliable = True
    if n_div > 0:
        reliable = False
        warn(
            f"{n_div} divergent transitions after warm-up; posterior summaries may be biased.",
            SamplerDivergence,
        )
    if finite.size and max_rhat > float(rhat_threshold):
        reliable = False
        bad = [name for name, row in summary.items() if row["r_hat"] > float(rhat_threshold)]
        warn(
            f"Chains disagree: max r_hat={max_rhat:.4g} > {rhat_threshold} for {bad}.",
            ChainDisagreement,
        )
    elif not finite.size:
        logger.info("r_hat unavailable (single chain?); chain agreement not checked")
    return n_div, max_rhat, reliable


def generated_quantities(
    k: np.ndarray,
    kappa: np.ndarray,
    design: GroupedDesign,
    new_rows: Optional[GroupedDesign],
    rng: np.random.Generator,
) -> Tuple[np.ndarray, np.ndarray]:
    """Predictive draws (C, S, M) at new_rows and pointwise log-likelihood (C, S, N)."""
    kappa_ = kappa[..., None]

    mu_obs = -np.expm1(-k[..., design.group_index] * design.predictor)
    with np.errstate(divide="ignore", invalid="ignore"):
        loglik = beta_dist.logpdf(design.response, mu_obs * kappa_, (1.0 - mu_obs) * kappa_)

    if new_rows is None or new_rows.n_obs == 0:
        pred = np.empty(k.shape[:2] + (0,), dtype=float)
    else:
        mu_new = -np.expm1(-k[..., new_rows.group_index] * new_rows.predictor)
        pred = rng.beta(mu_new * kappa_, (1.0 - mu_new) * kappa_)
    return pred, np.asarray(loglik, dtype=float)


def sample_hierarchical(
    observations: Observations,
    spec: Optional[HierarchicalSpec] = None,
    config: Optional[SamplerConfig] = None,
    *,
    engine: Optional[SamplingEngine] = None,
    group_order: GroupOrder = "sorted",
) -> PosteriorFit:
    """Sample the hierarchical model and summarise the posterior.

    Raises InvalidInput for predictors of 0 (mu = 0 has no Beta density) and
    FitFailure when the engine returns no draws. Divergences and R-hat above
    `config.rhat_threshold` produce warnings and `reliable=False`.
    """
    spec = spec or HierarchicalSpec()
    config = config or SamplerConfig()
    engine = engine or PyMCEngine()
    if int(config.chains) < 1 or int(config.draws) < 1 or int(config.warmup) < 0:
        raise ValueError("chains and draws must be >= 1 and warmup >= 0.")

    design = build_design(observations, group_order=group_order)
    if np.any(design.predictor <= 0.0):
        i = int(np.flatnonzero(design.predictor <= 0.0)[0])
        raise InvalidInput(
            f"Beta likelihood needs predictor > 0; observation {i} has predictor 0."
        )
    new_rows = None
    if spec.new_groups:
        new_rows = design.rows_for(list(spec.new_groups), list(spec.new_predictors))

    idata = engine.sample(design, spec, config)
    posterior = getattr(idata, "posterior", None)
    if posterior is None or "k" not in posterior or posterior["k"].size == 0:
        raise FitFailure(
            "Sampler returned no usable draws.",
            details={"engine": getattr(engine, "name", ""), "config": config},
        )

    k = np.asarray(posterior["k"].values, dtype=float)
    kappa = np.asarray(posterior["kappa"].values, dtype=float)
    if not (np.all(np.isfinite(k)) and np.all(np.isfinite(kappa))):
        raise FitFailure(
            "Sampler returned non-finite draws.",
            details={"engine": getattr(engine, "name", ""), "config": config},
        )

    rng = np.random.default_rng(int(config.seed))
    predictive, loglik = generated_quantities(k, kappa, design, new_rows, rng)
    if "log_likelihood" not in idata.groups():
        idata.add_groups(
            log_likelihood={"y": loglik},
            dims={"y": ["obs"]},
        )

    summary = summarize_draws(idata, design.groups.labels)
    n_div, max_rhat, reliable = check_convergence(idata, summary, config.rhat_threshold)

    return PosteriorFit(
        idata=idata,
        design=design,
        spec=spec,
        config=config,
        summary=summary,
        predictive=predictive,
        log_likelihood=loglik,
        n_divergent=n_div,
        max_r_hat=max_rhat,
        reliable=reliable,
    )
