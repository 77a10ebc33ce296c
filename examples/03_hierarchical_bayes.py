import numpy as np
from extinction_fitting import HierarchicalSpec, SamplerConfig, sample_hierarchical, simulate_observations

rng = np.random.default_rng(1)
lai = [rng.uniform(0.5, 4.0, size=40), rng.uniform(0.5, 4.0, size=30)]
obs = simulate_observations([0.5, 0.8], lai, groups=["north", "south"], kappa=50.0, rng=rng)

spec = HierarchicalSpec(
    new_groups=("north", "north", "south"),
    new_predictors=(1.0, 3.0, 2.0),
)
config = SamplerConfig(chains=2, warmup=500, draws=500, cores=1, seed=0)

post = sample_hierarchical(obs, spec, config)
print(post.summary_text())

pred = post.predictive.reshape((-1, post.predictive.shape[-1]))
for g, x, col in zip(spec.new_groups, spec.new_predictors, pred.T):
    lo, med, hi = np.quantile(col, [0.025, 0.5, 0.975])
    print(f"{g:>6s} x={x:.1f}: y ~ {med:.3f} [{lo:.3f}, {hi:.3f}]")

print(post.loo())
