# safemicro/core/loader.py

import logging
import re
from pathlib import Path
from typing import Iterable, Optional, Union

import pandas as pd

from .datasets import make_ses, make_testdata
from .errors import ParameterError

logger = logging.getLogger(__name__)

SAMPLES = {
    "testdata": make_testdata,
    "ses": make_ses,
}


def normalize_column_names(df: pd.DataFrame) -> pd.DataFrame:
    """
    Lower-case column names, replace anything that is not a letter or digit
    with "_" and de-duplicate ("age", "age_1", ...).
    """
    used = set()
    names = []
    for col in df.columns:
        base = re.sub(r"[^0-9a-zA-Z]+", "_", str(col).strip().lower()).strip("_") or "col"
        name, i = base, 0
        while name in used:
            i += 1
            name = f"{base}_{i}"
        used.add(name)
        names.append(name)

    df = df.copy()
    df.columns = names
    return df


def read_microdata(
    path: Union[str, Path],
    sep: str = ",",
    na_values: Optional[Iterable[str]] = None,
) -> pd.DataFrame:
    df = pd.read_csv(path, sep=sep, na_values=na_values)
    df = normalize_column_names(df)
    logger.info("Loaded %s: %d rows, %d columns", path, len(df), df.shape[1])
    return df


def load_sample(name: str, n: Optional[int] = None, seed: int = 2024) -> pd.DataFrame:
    """Bundled in-memory sample data set ("testdata" or "ses")."""
    if name not in SAMPLES:
        raise ParameterError(
            f"Unknown sample '{name}'. Available: {sorted(SAMPLES)}"
        )
    factory = SAMPLES[name]
    df = factory(seed=seed) if n is None else factory(n=n, seed=seed)
    return normalize_column_names(df)


def fetch_adult(data_home: Optional[Union[str, Path]] = None) -> pd.DataFrame:
    """UCI adult data through OpenML (needs network on first call)."""
    from sklearn.datasets import fetch_openml

    adult = fetch_openml(name="adult", version=2, as_frame=True, data_home=data_home)
    df = adult.frame.copy()

    if "class" in df.columns:
        df = df.rename(columns={"class": "income"})

    return normalize_column_names(df)
