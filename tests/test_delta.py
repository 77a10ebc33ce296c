import numpy as np
import pytest

from extinction_fitting import (
    Coefficient,
    ExpCoefficient,
    ExpDispersion,
    FunctionTransform,
    NonInvertibleHessian,
    Observations,
    build_design,
    build_objective,
    covariance_from_hessian,
    delta_method,
)
from extinction_fitting.delta import coefficient_transforms, unavailable


def test_identity_transform_stderr_is_exact():
    theta = np.array([0.3, 1.7, -2.0])
    cov = np.diag([0.04, 0.0123, 0.5])
    table = delta_method(theta, cov, [Coefficient(group=i, label=f"p{i}") for i in range(3)])

    for i, est in enumerate(table):
        assert est.stderr == np.sqrt(cov[i, i])
        assert est.value == theta[i]


def test_interval_is_symmetric_at_requested_level():
    theta = np.array([0.5])
    cov = np.array([[0.01]])
    est = delta_method(theta, cov, [Coefficient(group=0, label="k")], level=0.9)["k"]

    assert est.level == 0.9
    assert est.value - est.lower == pytest.approx(est.upper - est.value)
    assert est.upper - est.value == pytest.approx(1.6448536 * 0.1, rel=1e-6)


def test_exp_transform_uses_chain_rule():
    theta = np.array([np.log(0.8), np.log(0.02)])
    cov = np.array([[0.01, 0.002], [0.002, 0.04]])
    table = delta_method(theta, cov, [ExpCoefficient(group=0, label="k"), ExpDispersion()])

    assert table["k"].value == pytest.approx(0.8)
    assert table["k"].stderr == pytest.approx(0.8 * 0.1)
    assert table["sigma2"].stderr == pytest.approx(0.02 * 0.2)


def test_function_transform_numerical_gradient():
    theta = np.array([0.4, 0.9])
    cov = np.array([[0.01, 0.003], [0.003, 0.02]])

    def ratio(t):
        return t[1] / t[0]

    est = delta_method(theta, cov, [FunctionTransform(ratio, label="ratio")])["ratio"]
    g = np.array([-theta[1] / theta[0] ** 2, 1.0 / theta[0]])
    assert est.value == pytest.approx(ratio(theta))
    assert est.stderr == pytest.approx(np.sqrt(g @ cov @ g), rel=1e-6)

    # Plain callables are wrapped automatically.
    assert delta_method(theta, cov, [ratio])[0].stderr == pytest.approx(est.stderr)


def test_covariance_from_hessian_inverts_positive_definite():
    H = np.array([[4.0, 1.0], [1.0, 3.0]])
    np.testing.assert_allclose(covariance_from_hessian(H), np.linalg.inv(H))
    np.testing.assert_allclose(covariance_from_hessian(H, scale=2.0), 2.0 * np.linalg.inv(H))


@pytest.mark.parametrize(
    "hessian",
    [
        None,
        np.array([[1.0, 1.0], [1.0, 1.0]]),
        np.array([[1.0, 0.0], [0.0, -2.0]]),
        np.array([[1.0, np.nan], [np.nan, 1.0]]),
        np.zeros((2, 3)),
    ],
)
def test_covariance_from_hessian_rejects_bad_hessians(hessian):
    with pytest.raises(NonInvertibleHessian):
        covariance_from_hessian(hessian)


def test_indefinite_hessian_reports_eigenvalues():
    with pytest.raises(NonInvertibleHessian) as info:
        covariance_from_hessian(np.array([[1.0, 0.0], [0.0, -2.0]]))
    np.testing.assert_allclose(np.sort(info.value.eigenvalues), [-2.0, 1.0])
    assert isinstance(info.value, np.linalg.LinAlgError)


def test_estimate_u_and_table_views():
    theta = np.array([0.5, 1.5])
    cov = np.diag([0.0004, 0.0009])
    table = delta_method(theta, cov, [Coefficient(0, "a"), Coefficient(1, "b")])

    u = table["b"].u
    assert u.nominal_value == pytest.approx(1.5)
    assert u.std_dev == pytest.approx(0.03)
    assert table[0] is table["a"]
    assert table.labels == ("a", "b")
    np.testing.assert_allclose(table.values, theta)
    np.testing.assert_allclose(table.stderrs, [0.02, 0.03])
    assert table.as_rows()[1][:3] == ("b", 1.5, pytest.approx(0.03))
    assert "0.50(2)" in table.summary()
    assert table["a"]["error"] == pytest.approx(0.02)


def test_unavailable_table_has_nan_intervals():
    table = unavailable(np.array([0.5]), [Coefficient(0, "a")])
    assert table["a"].value == 0.5
    assert np.isnan(table["a"].stderr)
    with pytest.raises(ValueError):
        table["a"].u
    assert "(no interval)" in table.summary()


def test_integer_labels_resolve_before_positions():
    theta = np.array([3.0, 1.0, 2.0])
    cov = np.diag([0.01, 0.04, 0.09])
    table = delta_method(theta, cov, [Coefficient(i, str(int(v))) for i, v in enumerate(theta)])

    assert table[1].value == 1.0
    assert table[np.int64(3)].value == 3.0
    assert table["2"] is table[2]
    # Not a label, so a position.
    assert table[0].value == 3.0
    with pytest.raises(KeyError):
        table["7"]


def test_coefficient_transforms_follow_parameterisation():
    design = build_design(Observations.from_arrays([0.3, 0.6], [1.0, 1.0], ["x", "y"]))
    beta = build_objective("beta", design)
    ls = build_objective("least_squares", design)

    t_beta = coefficient_transforms(beta)
    t_ls = coefficient_transforms(ls, groups=["y"])
    assert [type(t) for t in t_beta] == [ExpCoefficient, ExpCoefficient]
    assert [t.label for t in t_beta] == ["x", "y"]
    assert t_ls == (Coefficient(group=1, label="y"),)
