# safemicro/core/datasets.py

"""
Bundled synthetic microdata samples.

Both generators are deterministic for a given seed. They mimic the layout
of the two survey files the workflow was built around:

- ``testdata``: a household survey with geographic/dwelling key variables,
  household income/expenditure/savings and a sampling weight.
- ``ses``: a structure-of-earnings survey with employee characteristics,
  hourly and monthly earnings and a grossing-up weight.
"""

import numpy as np
import pandas as pd


def make_testdata(n: int = 4580, seed: int = 2024) -> pd.DataFrame:
    rng = np.random.default_rng(seed)

    # Households of 1..8 members until n persons are drawn
    hh_sizes = []
    while sum(hh_sizes) < n:
        hh_sizes.append(int(rng.integers(1, 9)))
    hh_sizes[-1] -= sum(hh_sizes) - n
    hh_sizes = [s for s in hh_sizes if s > 0]
    n_hh = len(hh_sizes)

    hh_id = np.repeat(np.arange(1, n_hh + 1), hh_sizes)

    def per_household(values, p):
        return np.repeat(rng.choice(values, size=n_hh, p=p), hh_sizes)

    urbrur = per_household([1, 2], [0.35, 0.65])
    roof = per_household([1, 2, 3, 4, 9], [0.45, 0.3, 0.15, 0.08, 0.02])
    walls = per_household([1, 2, 3], [0.5, 0.35, 0.15])
    water = per_household([1, 2, 3, 4, 5, 6, 7, 9], [0.3, 0.2, 0.15, 0.1, 0.1, 0.08, 0.05, 0.02])
    electcon = per_household([0, 1, 2, 3], [0.2, 0.6, 0.15, 0.05])

    relat = np.concatenate(
        [
            np.concatenate([[1], rng.choice([2, 3, 4, 5, 6, 7, 8, 9], size=s - 1,
                                            p=[0.3, 0.4, 0.05, 0.05, 0.05, 0.05, 0.05, 0.05])])
            for s in hh_sizes
        ]
    ).astype(int)
    sex = rng.choice([1, 2], size=n)
    age = np.where(
        relat <= 2,
        rng.integers(18, 90, size=n),
        rng.integers(0, 60, size=n),
    )
    hhcivil = np.where(age < 16, 1, rng.choice([1, 2, 3, 4], size=n, p=[0.35, 0.5, 0.1, 0.05]))

    # Correlated household economics
    base = rng.normal(size=n_hh)
    income_hh = np.exp(9.5 + 0.8 * base + rng.normal(scale=0.3, size=n_hh))
    expend_hh = income_hh * np.exp(rng.normal(-0.1, 0.2, size=n_hh))
    savings_hh = np.clip(income_hh - expend_hh, 0, None) * rng.uniform(0.5, 1.5, size=n_hh)
    weight_hh = np.round(rng.gamma(shape=6.0, scale=25.0, size=n_hh) + 20, 2)

    df = pd.DataFrame(
        {
            "urbrur": urbrur,
            "roof": roof,
            "walls": walls,
            "water": water,
            "electcon": electcon,
            "relat": relat,
            "sex": sex,
            "age": age,
            "hhcivil": hhcivil,
            "expend": np.round(np.repeat(expend_hh, hh_sizes)),
            "income": np.round(np.repeat(income_hh, hh_sizes)),
            "savings": np.round(np.repeat(savings_hh, hh_sizes)),
            "ori_hid": hh_id,
            "sampling_weight": np.repeat(weight_hh, hh_sizes),
        }
    )
    return df


def make_ses(n: int = 5000, seed: int = 2024) -> pd.DataFrame:
    rng = np.random.default_rng(seed)

    location = rng.choice(["AT1", "AT2", "AT3"], size=n, p=[0.45, 0.2, 0.35])
    nace = rng.choice(["C", "F", "G", "H", "K", "M", "N"], size=n)
    size = rng.choice([1, 2, 3, 4, 5], size=n, p=[0.15, 0.25, 0.25, 0.2, 0.15])
    sex = rng.choice(["male", "female"], size=n, p=[0.55, 0.45])
    age = rng.integers(18, 66, size=n)
    education = rng.choice(
        ["ISCED 1", "ISCED 2", "ISCED 3", "ISCED 4", "ISCED 5", "ISCED 6"],
        size=n,
        p=[0.05, 0.15, 0.4, 0.1, 0.2, 0.1],
    )
    edu_level = np.array([int(e[-1]) for e in education])
    occupation = rng.integers(1, 10, size=n)
    contract = np.where(
        rng.random(n) < np.where(sex == "female", 0.45, 0.12), "part-time", "full-time"
    )
    hours = np.where(
        contract == "full-time",
        rng.normal(39.0, 2.0, size=n),
        rng.normal(22.0, 5.0, size=n),
    ).clip(5, 60)

    log_wage = (
        2.4
        + 0.08 * edu_level
        + 0.01 * (age - 18)
        - 0.12 * (sex == "female")
        + 0.04 * size
        + rng.normal(scale=0.3, size=n)
    )
    earnings_hour = np.round(np.exp(log_wage), 2)
    earnings_month = np.round(earnings_hour * hours * 4.33, 2)
    weight = np.round(rng.uniform(1.0, 60.0, size=n), 2)

    return pd.DataFrame(
        {
            "location": location,
            "nace": nace,
            "size": size,
            "sex": sex,
            "age": age,
            "education": education,
            "occupation": occupation,
            "contract": contract,
            "hours": np.round(hours, 1),
            "earnings_hour": earnings_hour,
            "earnings_month": earnings_month,
            "weight": weight,
        }
    )
