import numpy as np
import pytest
from scipy import stats

from extinction_fitting import InvalidInput, Observations, build_design, build_objective, simulate_observations
from extinction_fitting.errors import ObjectiveEvaluationFailure
from extinction_fitting.objectives import beta_shapes, neg_loglike_beta, neg_loglike_normal, sum_of_squares
from extinction_fitting.util import numdiff_gradient


def _design():
    obs = simulate_observations(
        [0.5, 1.0], np.linspace(0.5, 3.0, 12), groups=["a", "b"], rng=np.random.default_rng(0)
    )
    return build_design(obs)


def test_beta_shapes_match_polynomial_form():
    mu = np.array([0.1, 0.5, 0.9])
    s2 = 0.01
    a, b = beta_shapes(mu, s2)
    np.testing.assert_allclose(a, (mu**2 - mu**3 - mu * s2) / s2)
    np.testing.assert_allclose(b, (mu - 2 * mu**2 + mu**3 - s2 + mu * s2) / s2)
    np.testing.assert_allclose(a / (a + b), mu)


@pytest.mark.parametrize("mu", [0.05, 0.3, 0.5, 0.77, 0.99])
def test_beta_shapes_positive_inside_valid_region(mu):
    for frac in (1e-6, 0.1, 0.5, 0.999):
        a, b = beta_shapes(mu, frac * mu * (1 - mu))
        assert a > 0
        assert b > 0


@pytest.mark.parametrize("s2", [0.25, 0.3, 1.0, 0.0, -0.1])
def test_beta_shapes_rejects_invalid_dispersion(s2):
    with pytest.raises(ObjectiveEvaluationFailure):
        beta_shapes(0.5, s2)


def test_neg_loglikes_match_scipy():
    rng = np.random.default_rng(1)
    mu = rng.uniform(0.2, 0.8, size=20)
    y = np.clip(mu + rng.normal(0, 0.05, size=20), 0.01, 0.99)
    s2 = 0.01

    a, b = beta_shapes(mu, s2)
    assert neg_loglike_beta(y, mu, s2) == pytest.approx(-np.sum(stats.beta.logpdf(y, a, b)))
    assert neg_loglike_normal(y, mu, s2) == pytest.approx(-np.sum(stats.norm.logpdf(y, mu, np.sqrt(s2))))
    assert sum_of_squares(y, mu) == pytest.approx(np.sum((y - mu) ** 2))
    assert neg_loglike_beta(y, mu, 0.5) == np.inf


@pytest.mark.parametrize(
    "method, theta",
    [
        ("least_squares", [0.6, 0.9]),
        ("normal", [0.6, 0.9, np.log(0.01)]),
        ("beta", [np.log(0.6), np.log(0.9), np.log(0.005)]),
    ],
)
def test_analytic_gradient_matches_numerical(method, theta):
    objective = build_objective(method, _design())
    theta = np.asarray(theta, dtype=float)
    assert np.isfinite(objective(theta))
    np.testing.assert_allclose(
        objective.grad(theta), numdiff_gradient(objective.func, theta), rtol=1e-4, atol=1e-6
    )


def test_beta_gradient_without_log_transform():
    objective = build_objective("beta", _design(), log_k=False)
    theta = np.array([0.6, 0.9, np.log(0.005)])
    assert objective.param_names == ("k[a]", "k[b]", "log_sigma2")
    np.testing.assert_allclose(
        objective.grad(theta), numdiff_gradient(objective.func, theta), rtol=1e-4, atol=1e-6
    )


def test_beta_objective_is_infinite_outside_valid_region():
    objective = build_objective("beta", _design())
    theta = np.array([np.log(0.6), np.log(0.9), np.log(0.5)])
    assert objective(theta) == np.inf
    g = objective.grad(theta)
    assert np.all(np.isfinite(g))


def test_beta_objective_rejects_zero_predictor():
    obs = Observations.from_arrays([0.1, 0.5], [0.0, 1.0], ["a", "a"])
    with pytest.raises(InvalidInput, match="predictor > 0"):
        build_objective("beta", build_design(obs))
    build_objective("normal", build_design(obs))


def test_boundary_response_is_rejected_before_any_objective():
    with pytest.raises(InvalidInput):
        Observations.from_arrays([0.5, 1.0], [1.0, 2.0], ["a", "a"])


def test_parameter_layout_and_initial_point():
    design = _design()
    beta = build_objective("beta", design)
    assert beta.param_names == ("log_k[a]", "log_k[b]", "log_sigma2")
    assert beta.n_params == 3

    start = beta.initial_point(np.random.default_rng(3))
    k0 = beta.coefficients(start)
    assert np.all((k0 >= 0.2) & (k0 <= 0.8))
    assert beta.dispersion(start) == pytest.approx(0.01)

    ls = build_objective("least_squares", design)
    assert ls.dispersion(ls.initial_point(np.random.default_rng(3))) is None
    with pytest.raises(ValueError, match="Unknown method"):
        build_objective("poisson", design)


def _near_zero_observations():
    obs = simulate_observations(
        [0.5, 0.9], np.linspace(0.3, 3.0, 40), groups=["g1", "g2"], rng=np.random.default_rng(0)
    )
    return Observations.from_arrays(
        np.append(obs.response, 0.006),
        np.append(obs.predictor, 0.01),
        obs.group.tolist() + ["g1"],
    )


def test_beta_starting_dispersion_is_capped_to_valid_region():
    beta = build_objective("beta", build_design(_near_zero_observations()))

    for seed in range(10):
        start = beta.initial_point(np.random.default_rng(seed))
        k0 = beta.coefficients(start)
        mu0 = 1.0 - np.exp(-beta.design.matrix @ k0)
        assert beta.dispersion(start) < np.min(mu0 * (1 - mu0))
        assert np.isfinite(beta(start))

    ls = build_objective("normal", beta.design)
    assert ls.dispersion(ls.initial_point(np.random.default_rng(0))) == pytest.approx(0.01)
