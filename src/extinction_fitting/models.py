from __future__ import annotations

from typing import Any, Optional, Sequence

import numpy as np

from .inputs import Observations


def extinction_mean(k: Any, matrix: Any) -> np.ndarray:
    """Saturating-exponential mean mu = 1 - exp(-X @ k) for a grouped design.

    Each design row has a single nonzero entry, so this is the per-group
    curve 1 - exp(-k_group * x). Rows with x = 0 give exactly 0.
    """
    k = np.asarray(k, dtype=float)
    eta = np.asarray(matrix, dtype=float) @ k
    return -np.expm1(-eta)


def extinction_curve(x: Any, k: float) -> np.ndarray:
    """Module-level single-group curve 1 - exp(-k x)."""
    return -np.expm1(-float(k) * np.asarray(x, dtype=float))


def mean_slope(mu: np.ndarray, predictor: np.ndarray) -> np.ndarray:
    """d mu / d k for the observation's own group: x * (1 - mu)."""
    return np.asarray(predictor, dtype=float) * (1.0 - np.asarray(mu, dtype=float))


def simulate_observations(
    k: Sequence[float],
    predictors: Any,
    *,
    groups: Optional[Sequence[Any]] = None,
    kappa: float = 50.0,
    rng: Optional[np.random.Generator] = None,
) -> Observations:
    """Draw synthetic Beta-proportion responses around the mean curve.

    `predictors` is either a 1-D array shared by every group, or a sequence
    with one array per group. `groups` defaults to 0..G-1.
    """
    if rng is None:
        rng = np.random.default_rng()
    k = [float(v) for v in k]
    labels = list(range(len(k))) if groups is None else list(groups)
    if len(labels) != len(k):
        raise ValueError("groups must have one label per coefficient.")

    if isinstance(predictors, (list, tuple)) and len(predictors) == len(k) and np.ndim(predictors[0]) == 1:
        per_group = [np.asarray(p, dtype=float) for p in predictors]
    else:
        shared = np.asarray(predictors, dtype=float).reshape((-1,))
        per_group = [shared for _ in k]

    if any(np.any(x <= 0.0) for x in per_group) or any(kj <= 0.0 for kj in k):
        raise ValueError("simulate_observations needs predictors > 0 and k > 0.")

    ys, xs, gs = [], [], []
    for kj, x, label in zip(k, per_group, labels):
        mu = extinction_curve(x, kj)
        y = rng.beta(mu * kappa, (1.0 - mu) * kappa)
        # Keep draws strictly inside the unit interval.
        y = np.clip(y, 1e-9, 1.0 - 1e-9)
        ys.append(y)
        xs.append(x)
        gs.extend([label] * x.shape[0])

    return Observations.from_arrays(np.concatenate(ys), np.concatenate(xs), gs)
