import logging

import numpy as np
from extinction_fitting import MultiStartConfig, compare_methods, simulate_observations

logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

rng = np.random.default_rng(0)
true_k = {"maize": 0.65, "soy": 0.45, "wheat": 0.9}
lai = [rng.uniform(0.3, 3.0, size=25) for _ in true_k]
obs = simulate_observations(list(true_k.values()), lai, groups=list(true_k), kappa=40.0, rng=rng)

config = MultiStartConfig(restarts=10, seed=0, workers=4)
comparison = compare_methods(
    obs,
    config=config,
    # Derivative-free simplex for the least-squares objective only.
    configs={"least_squares": config.replace(backend="scipy.nelder_mead")},
)
print(comparison.summary())

for method, run in comparison.runs.items():
    err = np.abs(run.coefficients - np.array(list(true_k.values())))
    print(f"{method:>14s}: max |k - k_true| = {err.max():.3f}, sigma2 = {run.dispersion.value:.4g}")
