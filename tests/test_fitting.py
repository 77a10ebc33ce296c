import numpy as np
import pytest

from extinction_fitting import (
    FitFailure,
    InvalidInput,
    MultiStartConfig,
    NonInvertibleHessian,
    Observations,
    compare_methods,
    fit,
    simulate_observations,
)


def _two_groups() -> Observations:
    return Observations.from_records(
        [
            (0.6, 1.0, "A"),
            (0.85, 2.0, "A"),
            (0.3, 1.0, "B"),
            (0.55, 2.0, "B"),
        ]
    )


def test_least_squares_separates_fast_and_slow_groups():
    run = fit(_two_groups(), "least_squares", config=MultiStartConfig(restarts=5, seed=0))

    k_a = run["A"].value
    k_b = run["B"].value
    assert k_a > k_b
    assert 0.0 < k_b < k_a < 3.0
    # Single-point solutions bracket the least-squares estimate.
    assert np.log(1 / 0.4) - 0.05 < k_a < np.log(1 / 0.15) / 2 + 0.05
    assert np.log(1 / 0.7) - 0.05 < k_b < np.log(1 / 0.45) / 2 + 0.05

    assert run.covariance is not None
    for est in run.estimates:
        assert est.lower < est.value < est.upper
    assert run.dispersion.label == "sigma2"
    assert run.dispersion.value > 0


def test_predict_and_band():
    run = fit(_two_groups(), "least_squares", config=MultiStartConfig(restarts=3, seed=0))

    mu = run.predict("A", [1.0, 2.0])
    np.testing.assert_allclose(mu, 1.0 - np.exp(-run["A"].value * np.array([1.0, 2.0])))
    mixed = run.predict(["A", "B"], [1.0, 1.0])
    assert mixed[0] > mixed[1]

    x = np.linspace(0.1, 3.0, 7)
    band = run.band("B", x, nsamples=300, rng=np.random.default_rng(0))
    assert band.low.shape == x.shape
    assert np.all(band.low <= band.median)
    assert np.all(band.median <= band.high)


def test_beta_fit_recovers_simulated_coefficients():
    rng = np.random.default_rng(0)
    x = np.linspace(0.3, 3.0, 40)
    obs = simulate_observations([0.5, 0.9], x, groups=["g1", "g2"], kappa=50.0, rng=rng)

    run = fit(obs, "beta", config=MultiStartConfig(restarts=5, seed=1))

    np.testing.assert_allclose(run.coefficients, [0.5, 0.9], atol=0.15)
    assert run.objective.log_k
    assert np.all(np.isfinite(run.estimates.stderrs))
    assert np.all(run.estimates.stderrs > 0)
    # True variance is mu(1-mu)/(kappa+1) <= 0.25/51.
    assert 0.0 < run.dispersion.value < 0.01
    assert "beta" in run.summary()


def test_normal_fit_recovers_simulated_coefficients():
    rng = np.random.default_rng(4)
    x = np.linspace(0.3, 3.0, 40)
    obs = simulate_observations([0.7, 0.3], x, groups=["g1", "g2"], kappa=80.0, rng=rng)

    run = fit(obs, "normal", config=MultiStartConfig(restarts=4, seed=0))

    np.testing.assert_allclose(run.coefficients, [0.7, 0.3], atol=0.15)
    assert run.covariance is not None
    assert run.estimates["g1"].lower < 0.7 + 0.15


def test_boundary_response_raises_invalid_input_for_beta():
    rows = [(0.6, 1.0, "A"), (1.0, 2.0, "A"), (0.3, 1.0, "B")]
    with pytest.raises(InvalidInput, match="strictly inside"):
        fit(rows, "beta")


def test_mapping_input_and_unknown_method():
    table = {"response": [0.6, 0.85, 0.3, 0.55], "predictor": [1.0, 2.0, 1.0, 2.0], "group": list("AABB")}
    run = fit(table, "least_squares", config=MultiStartConfig(restarts=2))
    assert run.design.groups.labels == ("A", "B")
    with pytest.raises(ValueError, match="Unknown method"):
        fit(table, "poisson")


def test_least_squares_without_residual_dof_has_no_intervals():
    obs = Observations.from_records([(0.6, 1.0, "A"), (0.3, 1.0, "B")])
    run = fit(obs, "least_squares", config=MultiStartConfig(restarts=2, seed=0))

    assert run.covariance is None
    assert isinstance(run.covariance_error, NonInvertibleHessian)
    assert np.isnan(run["A"].stderr)
    assert run["A"].value == pytest.approx(np.log(1 / 0.4), rel=1e-3)
    with pytest.raises(ValueError, match="No covariance"):
        run.band("A", [1.0])


def test_compare_methods_isolates_failures():
    rng = np.random.default_rng(2)
    obs = simulate_observations([0.6, 1.0], np.linspace(0.5, 3.0, 20), groups=["a", "b"], rng=rng)
    extra = Observations.from_arrays(
        np.append(obs.response, 0.02),
        np.append(obs.predictor, 0.0),
        obs.group.tolist() + ["a"],
    )

    comparison = compare_methods(extra, config=MultiStartConfig(restarts=3, seed=0))

    assert set(comparison.runs) == {"least_squares", "normal"}
    assert isinstance(comparison.failures["beta"], InvalidInput)
    rows = comparison.as_rows()
    assert len(rows) == 4
    assert [r[:2] for r in rows[:2]] == [("a", "least_squares"), ("a", "normal")]
    text = comparison.summary()
    assert "beta: InvalidInput" in text


def test_compare_methods_records_fit_failure(monkeypatch):
    def _fail(objective, config=None):
        raise FitFailure("All restarts failed.", details={"objective": objective.name})

    monkeypatch.setattr("extinction_fitting.fitting.run_multistart", _fail)
    comparison = compare_methods(_two_groups(), methods=("least_squares", "normal"))

    assert comparison.runs == {}
    assert set(comparison.failures) == {"least_squares", "normal"}
    assert comparison.as_rows() == []


def test_beta_fit_with_observation_near_zero_predictor():
    rng = np.random.default_rng(0)
    obs = simulate_observations([0.5, 0.9], np.linspace(0.3, 3.0, 40), groups=["g1", "g2"], rng=rng)
    obs = Observations.from_arrays(
        np.append(obs.response, 0.006),
        np.append(obs.predictor, 0.01),
        obs.group.tolist() + ["g1"],
    )

    run = fit(obs, "beta", config=MultiStartConfig(restarts=10, seed=0))

    assert np.all(np.isfinite(run.coefficients))
    assert np.all(run.coefficients > 0)
    for record in run.multistart.records:
        assert np.isfinite(record.result.objective_value)
        assert "starting point" not in record.result.message
