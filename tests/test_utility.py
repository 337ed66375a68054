import numpy as np
import pandas as pd
import pytest

from safemicro.core.errors import SchemaError
from safemicro.core.utility import (
    categorical_tv_distance,
    compare,
    eigen_shift,
    gender_pay_gap,
    gini,
    il1s,
    mean_ci,
    numeric_mean_std_error,
    regression_fit,
    suppression_rate,
    utility_report,
)


def test_information_loss_against_itself_is_zero(survey_100):
    cols = ["income", "expend"]
    assert il1s(survey_100, survey_100, cols) == 0.0
    assert eigen_shift(survey_100, survey_100, cols) == pytest.approx(0.0, abs=1e-12)


def test_information_loss_is_non_negative(survey_100):
    cols = ["income", "expend"]
    rng = np.random.default_rng(0)
    other = survey_100.copy()
    other[cols] = other[cols] * rng.uniform(0.5, 1.5, size=(len(other), 2))
    assert il1s(survey_100, other, cols) > 0
    assert eigen_shift(survey_100, other, cols) >= 0


def test_il1s_value():
    raw = pd.DataFrame({"x": [0.0, 2.0]})
    anon = pd.DataFrame({"x": [1.0, 1.0]})
    # sd = sqrt(2): each cell contributes 1 / (sqrt(2) * sqrt(2)) = 0.5
    assert il1s(raw, anon, ["x"]) == pytest.approx(0.5)


def test_schema_mismatch_raises(survey_100):
    with pytest.raises(SchemaError):
        il1s(survey_100, survey_100.drop(columns="income"), ["income"])
    with pytest.raises(SchemaError):
        eigen_shift(survey_100, survey_100.iloc[:10], ["income"])


def test_suppression_rate():
    raw = pd.DataFrame({"a": ["x", "y"], "b": [1, 2]})
    anon = pd.DataFrame({"a": ["x", None], "b": [1, 2]})
    assert suppression_rate(raw, anon, ["a", "b"]) == pytest.approx(0.25)
    assert suppression_rate(raw, raw, ["a", "b"]) == 0.0


def test_tv_distance_and_numeric_errors(survey_100):
    assert categorical_tv_distance(survey_100, survey_100, "region") == 0.0
    shifted = survey_100.assign(region="north")
    assert categorical_tv_distance(survey_100, shifted, "region") > 0.5

    err = numeric_mean_std_error(survey_100, survey_100.assign(income=survey_100["income"] * 2), "income")
    assert err["mean_rel_error"] == pytest.approx(1.0)
    assert err["std_rel_error"] == pytest.approx(1.0)


def test_gini():
    assert gini([5.0, 5.0, 5.0, 5.0]) == pytest.approx(0.0)
    assert gini([0.0, 0.0, 0.0, 1.0]) == pytest.approx(0.75)
    # a weight of 3 equals three copies
    assert gini([1.0, 4.0], weights=[3.0, 1.0]) == pytest.approx(gini([1.0, 1.0, 1.0, 4.0]))
    assert np.isnan(gini([np.nan]))


def test_gender_pay_gap():
    df = pd.DataFrame(
        {
            "sex": ["male", "male", "female", "female"],
            "wage": [10.0, 30.0, 15.0, 15.0],
            "w": [1.0, 3.0, 1.0, 1.0],
        }
    )
    assert gender_pay_gap(df, "wage", "sex") == pytest.approx(0.25)
    # weighted male mean is 25
    assert gender_pay_gap(df, "wage", "sex", weight="w") == pytest.approx(0.4)
    with pytest.raises(SchemaError):
        gender_pay_gap(df, "salary", "sex")


def test_mean_ci(survey_100):
    overall = mean_ci(survey_100, "income")
    assert len(overall) == 1
    row = overall.iloc[0]
    assert row["lower"] < row["mean"] < row["upper"]
    assert row["mean"] == pytest.approx(survey_100["income"].mean())

    by_region = mean_ci(survey_100, "income", by="region", weight="weight")
    assert set(by_region["region"]) == set(survey_100["region"])
    assert (by_region["lower"] <= by_region["upper"]).all()


def test_regression_fit():
    x = np.arange(20, dtype=float)
    df = pd.DataFrame({"x": x, "y": 2 * x + 1, "g": ["a", "b"] * 10})
    fit = regression_fit(df, "y", ["x"])
    assert fit["coefficients"]["x"] == pytest.approx(2.0)
    assert fit["intercept"] == pytest.approx(1.0)
    assert fit["r2"] == pytest.approx(1.0)

    fit = regression_fit(df, "y", ["x", "g"])
    assert "g_b" in fit["coefficients"].index


def test_compare_runs_statistic_on_both(survey_100):
    anon = survey_100.assign(income=survey_100["income"] + 1.0)
    result = compare(survey_100, anon, lambda d: d["income"].mean())
    assert result["anonymized"] == pytest.approx(result["original"] + 1.0)


def test_utility_report(survey_problem):
    report = utility_report(survey_problem)
    assert report["il1s"] == 0.0
    assert report["key_suppression_rate"] == 0.0
    assert report["region_tv_distance"] == 0.0
