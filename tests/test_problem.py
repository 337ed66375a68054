import pandas as pd
import pytest

from safemicro.core.errors import SchemaError
from safemicro.core.problem import create_problem
from safemicro.core.profiler import ColumnKind


def test_kinds_are_pinned_by_role(survey_100):
    problem = create_problem(survey_100, key_vars=["region", "age_group"],
                             num_vars=["income"], weight_var="weight")
    assert problem.kinds["region"] is ColumnKind.CATEGORICAL
    assert problem.kinds["age_group"] is ColumnKind.CATEGORICAL
    assert problem.kinds["income"] is ColumnKind.NUMERIC
    assert problem.kinds["weight"] is ColumnKind.NUMERIC


def test_tables_are_copies(survey_100):
    problem = create_problem(survey_100, key_vars=["region"])
    problem.data.loc[0, "region"] = "changed"
    assert survey_100.loc[0, "region"] != "changed"
    assert problem.original.loc[0, "region"] != "changed"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"key_vars": []},
        {"key_vars": ["nope"]},
        {"key_vars": ["region"], "num_vars": ["region"]},
        {"key_vars": ["region"], "weight_var": "region"},
        {"key_vars": ["region"], "pram_vars": ["nope"]},
        {"key_vars": ["region", "income"], "num_vars": ["income"]},
        {"key_vars": ["region"], "kinds": {"region": "numeric"}},
        {"key_vars": ["region"], "kinds": {"nope": "numeric"}},
    ],
)
def test_schema_errors(survey_100, kwargs):
    with pytest.raises(SchemaError):
        create_problem(survey_100, **kwargs)


def test_weights_must_be_positive(survey_100):
    survey_100.loc[3, "weight"] = 0.0
    with pytest.raises(SchemaError):
        create_problem(survey_100, key_vars=["region"], weight_var="weight")


def test_record_appends_risk_snapshot(survey_problem):
    entry = survey_problem.record("raw", {"note": "baseline"}, k=3)
    assert survey_problem.history == [entry]
    assert entry["stage"] == "raw"
    assert entry["risk"]["records"] == 100
    assert entry["params"] == {"note": "baseline"}


def test_require_columns(survey_problem):
    survey_problem.require_columns(["region", "income"])
    with pytest.raises(SchemaError):
        survey_problem.require_columns(["region", "height"])
