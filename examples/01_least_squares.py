import numpy as np
from extinction_fitting import MultiStartConfig, Observations, fit


# Two canopies: A intercepts light faster than B.
obs = Observations.from_records(
    [
        (0.60, 1.0, "A"),
        (0.85, 2.0, "A"),
        (0.30, 1.0, "B"),
        (0.55, 2.0, "B"),
    ]
)

run = fit(obs, "least_squares", config=MultiStartConfig(restarts=5, seed=0))
print(run.summary())

k_a = run["A"].u
k_b = run["B"].u
print("k_A - k_B =", k_a - k_b)

x = np.linspace(0.0, 4.0, 9)
band = run.band("A", x, level=0.95, rng=np.random.default_rng(0))
for xi, lo, med, hi in zip(x, band.low, band.median, band.high):
    print(f"x={xi:4.1f}  mu={med:.3f}  [{lo:.3f}, {hi:.3f}]")
