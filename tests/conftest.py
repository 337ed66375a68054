import numpy as np
import pandas as pd
import pytest

from safemicro.core.problem import create_problem


@pytest.fixture
def survey_100() -> pd.DataFrame:
    """100 synthetic records, two categorical keys with five levels each."""
    rng = np.random.default_rng(7)
    income = rng.lognormal(mean=10.0, sigma=0.5, size=100)
    return pd.DataFrame(
        {
            "region": rng.choice(["north", "south", "east", "west", "centre"], size=100),
            "age_group": rng.choice([1, 2, 3, 4, 5], size=100),
            "income": income,
            "expend": income * rng.uniform(0.6, 1.0, size=100),
            "weight": rng.uniform(5.0, 50.0, size=100),
        }
    )


@pytest.fixture
def survey_problem(survey_100):
    return create_problem(
        survey_100,
        key_vars=["region", "age_group"],
        num_vars=["income", "expend"],
        weight_var="weight",
    )
