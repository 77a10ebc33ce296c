import numpy as np
import pytest

from extinction_fitting import build_design, extinction_curve, extinction_mean, simulate_observations
from extinction_fitting.models import mean_slope


def test_mean_strictly_inside_unit_interval():
    rng = np.random.default_rng(0)
    k = rng.uniform(0.01, 5.0, size=3)
    x = rng.uniform(0.01, 10.0, size=(50,))
    gidx = rng.integers(0, 3, size=50)
    X = np.zeros((50, 3))
    X[np.arange(50), gidx] = x

    mu = extinction_mean(k, X)
    assert np.all(mu > 0.0)
    assert np.all(mu < 1.0)


def test_mean_is_zero_at_zero_predictor():
    X = np.array([[0.0, 0.0], [1.0, 0.0]])
    mu = extinction_mean([0.7, 1.3], X)
    assert mu[0] == 0.0
    assert mu[1] == pytest.approx(1.0 - np.exp(-0.7))


def test_curve_matches_design_evaluation():
    obs = simulate_observations([0.5, 1.5], np.linspace(0.5, 3.0, 6), rng=np.random.default_rng(1))
    design = build_design(obs)
    mu = extinction_mean([0.5, 1.5], design.matrix)
    np.testing.assert_allclose(mu[:6], extinction_curve(np.linspace(0.5, 3.0, 6), 0.5))
    np.testing.assert_allclose(mu[6:], extinction_curve(np.linspace(0.5, 3.0, 6), 1.5))


def test_mean_slope_matches_finite_difference():
    x = np.array([0.5, 1.0, 3.0])
    k = 0.8
    h = 1e-6
    fd = (extinction_curve(x, k + h) - extinction_curve(x, k - h)) / (2 * h)
    np.testing.assert_allclose(mean_slope(extinction_curve(x, k), x), fd, rtol=1e-6)


def test_simulate_observations_shapes_and_labels():
    rng = np.random.default_rng(2)
    obs = simulate_observations(
        [0.4, 0.9], [np.linspace(0.5, 2, 4), np.linspace(1, 3, 7)], groups=["p", "q"], rng=rng
    )
    assert len(obs) == 11
    assert obs.group.tolist().count("q") == 7
    assert np.all((obs.response > 0) & (obs.response < 1))

    with pytest.raises(ValueError):
        simulate_observations([0.4], [0.0, 1.0])
