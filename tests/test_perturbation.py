import numpy as np
import pandas as pd
import pytest

from safemicro.core.errors import DegenerateModelWarning, ParameterError
from safemicro.core.perturbation import (
    add_noise,
    invariant_transition_matrix,
    pram,
    validate_transition_matrix,
)
from safemicro.core.problem import create_problem
from safemicro.core.utility import categorical_tv_distance


@pytest.fixture
def numeric_problem():
    rng = np.random.default_rng(11)
    n = 20000
    x = rng.normal(50.0, 10.0, size=n)
    y = 0.8 * x + rng.normal(0.0, 6.0, size=n)
    df = pd.DataFrame({"g": rng.choice(["a", "b"], size=n), "x": x, "y": y})
    return create_problem(df, key_vars=["g"], num_vars=["x", "y"])


def test_correlated_noise_variance(numeric_problem):
    var_before = numeric_problem.original["x"].var()
    add_noise(numeric_problem, method="correlated", noise=20.0, seed=1)
    var_after = numeric_problem.data["x"].var()
    # noise variance is (0.2 sigma)^2
    assert var_after == pytest.approx(var_before * 1.04, rel=0.015)


def test_correlated_noise_keeps_correlation(numeric_problem):
    corr_before = numeric_problem.original["x"].corr(numeric_problem.original["y"])
    add_noise(numeric_problem, method="correlated", noise=50.0, seed=2)
    corr_after = numeric_problem.data["x"].corr(numeric_problem.data["y"])
    assert corr_after == pytest.approx(corr_before, abs=0.02)


def test_additive_noise_variance(numeric_problem):
    var_before = numeric_problem.original["y"].var()
    add_noise(numeric_problem, method="additive", noise=20.0, seed=3)
    assert numeric_problem.data["y"].var() == pytest.approx(var_before * 1.04, rel=0.015)


def test_noise_is_reproducible_with_seed(numeric_problem):
    other = create_problem(numeric_problem.original, key_vars=["g"], num_vars=["x", "y"])
    add_noise(numeric_problem, seed=5)
    add_noise(other, seed=5)
    pd.testing.assert_frame_equal(numeric_problem.data, other.data)
    assert not numeric_problem.data["x"].equals(numeric_problem.original["x"])


def test_noise_keeps_missing_cells():
    df = pd.DataFrame({"g": ["a"] * 5, "x": [1.0, 2.0, np.nan, 4.0, 5.0], "y": [2.0, 1.0, 3.0, 5.0, 4.0]})
    problem = create_problem(df, key_vars=["g"], num_vars=["x", "y"])
    add_noise(problem, method="additive", noise=10.0, seed=0)
    assert problem.data["x"].isna().tolist() == [False, False, True, False, False]


def test_unknown_noise_method(numeric_problem):
    with pytest.raises(ParameterError):
        add_noise(numeric_problem, method="laplace")


def _categorical_problem(n=10000, seed=3):
    rng = np.random.default_rng(seed)
    df = pd.DataFrame(
        {
            "region": rng.choice(["a", "b"], size=n),
            "walls": rng.choice(["brick", "wood", "mud"], size=n, p=[0.5, 0.3, 0.2]),
        }
    )
    return create_problem(df, key_vars=["region"], pram_vars=["walls"])


def test_identity_biased_matrix_changes_at_most_eps():
    problem = _categorical_problem()
    eps = 0.05
    levels = ["brick", "mud", "wood"]
    matrix = pd.DataFrame(
        [[1 - eps if i == j else eps / 2 for j in range(3)] for i in range(3)],
        index=levels,
        columns=levels,
    )

    report = pram(problem, transition={"walls": matrix}, seed=9)

    changed = (problem.data["walls"] != problem.original["walls"]).mean()
    assert changed == pytest.approx(eps, abs=0.01)
    assert report.changed["walls"] == int((problem.data["walls"] != problem.original["walls"]).sum())
    assert problem.pram_changes["walls"] == report.changed["walls"]


def test_transition_matrix_as_dict():
    problem = _categorical_problem(n=200)
    identity = {v: {w: float(v == w) for w in ["brick", "mud", "wood"]} for v in ["brick", "mud", "wood"]}
    report = pram(problem, transition={"walls": identity}, seed=1)
    assert report.changed["walls"] == 0
    pd.testing.assert_frame_equal(problem.data, problem.original)


def test_invariant_matrix_preserves_marginals():
    problem = _categorical_problem(n=20000)
    series = problem.data["walls"]
    matrix = invariant_transition_matrix(series, pd_min=0.7, alpha=0.5, seed=4)

    assert np.allclose(matrix.sum(axis=1), 1.0)
    pi = series.value_counts(normalize=True).reindex(matrix.index).to_numpy()
    assert np.allclose(pi @ matrix.to_numpy(), pi)

    pram(problem, seed=4)
    assert categorical_tv_distance(problem.original, problem.data, "walls") < 0.02


def test_pram_keeps_missing_values():
    df = pd.DataFrame({"k": ["a"] * 6, "v": ["x", "y", None, "x", "y", "z"]})
    problem = create_problem(df, key_vars=["k"], pram_vars=["v"])
    pram(problem, pd_min=0.5, alpha=1.0, seed=0)
    assert problem.data["v"].isna().tolist() == [False, False, True, False, False, False]


def test_pram_per_stratum():
    problem = _categorical_problem(n=1000)
    report = pram(problem, strata="region", seed=2)
    assert set(report.matrices["walls"]) == {"a", "b"}


def test_missing_transition_matrix_is_an_error():
    problem = _categorical_problem(n=100)
    before = problem.data.copy()
    with pytest.raises(ParameterError):
        pram(problem, transition={"other": None})
    pd.testing.assert_frame_equal(problem.data, before)


def test_value_without_transition_row_is_an_error():
    problem = _categorical_problem(n=100)
    partial = pd.DataFrame([[0.9, 0.1], [0.2, 0.8]], index=["brick", "wood"], columns=["brick", "wood"])
    with pytest.raises(ParameterError):
        pram(problem, transition={"walls": partial})


@pytest.mark.parametrize(
    "values",
    [
        [[0.9, 0.2], [0.2, 0.8]],
        [[1.2, -0.2], [0.0, 1.0]],
    ],
)
def test_validate_transition_matrix_rejects(values):
    matrix = pd.DataFrame(values, index=["a", "b"], columns=["a", "b"])
    with pytest.raises(ParameterError):
        validate_transition_matrix(matrix, ["a", "b"])


def test_validate_transition_matrix_needs_square_domain():
    matrix = pd.DataFrame([[1.0, 0.0]], index=["a"], columns=["a", "b"])
    with pytest.raises(ParameterError):
        validate_transition_matrix(matrix)


def test_pram_without_variables():
    problem = create_problem(pd.DataFrame({"k": ["a", "b"]}), key_vars=["k"])
    with pytest.raises(ParameterError):
        pram(problem)


def test_pram_on_categorical_column_with_new_state():
    df = pd.DataFrame({"k": ["x"] * 200, "v": pd.Categorical(["a", "b"] * 100)})
    problem = create_problem(df, key_vars=["k"], pram_vars=["v"])
    matrix = pd.DataFrame(
        [[0.5, 0.0, 0.5], [0.0, 0.5, 0.5], [0.0, 0.0, 1.0]],
        index=["a", "b", "c"],
        columns=["a", "b", "c"],
    )

    report = pram(problem, transition={"v": matrix}, seed=3)

    v = problem.data["v"]
    assert v.notna().all()
    assert isinstance(v.dtype, pd.CategoricalDtype)
    assert "c" in set(v)
    assert report.changed["v"] == int((v.astype(object) == "c").sum())


def test_noise_skipped_when_covariance_not_psd():
    # pairwise covariances from disjoint rows: a~b and b~c positive, a~c negative
    nan = np.nan
    df = pd.DataFrame(
        {
            "g": ["x"] * 12,
            "a": [1, 2, 3, 4, nan, nan, nan, nan, 1, 2, 3, 4],
            "b": [1, 2, 3, 4, 1, 2, 3, 4, nan, nan, nan, nan],
            "c": [nan, nan, nan, nan, 1, 2, 3, 4, 4, 3, 2, 1],
        }
    )
    problem = create_problem(df, key_vars=["g"], num_vars=["a", "b", "c"])
    before = problem.data.copy()

    with pytest.warns(DegenerateModelWarning):
        add_noise(problem, method="correlated", noise=20.0, seed=0)

    pd.testing.assert_frame_equal(problem.data, before)
