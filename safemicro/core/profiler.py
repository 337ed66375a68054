# safemicro/core/profiler.py

from enum import Enum
from typing import Any, Dict, List

import pandas as pd
from pandas.api.types import is_numeric_dtype


class ColumnKind(str, Enum):
    CATEGORICAL = "categorical"
    NUMERIC = "numeric"
    IDENTIFIER = "identifier"


class DataProfiler:
    """
    Data profiling module.
    Computes:
    - basic summary stats
    - missing values
    - unique counts
    - column kinds (categorical / numeric / identifier)
    - heuristic key-variable suggestions
    """

    def __init__(self, df: pd.DataFrame, max_categories: int = 50) -> None:
        self.df = df
        self.max_categories = max_categories

    def basic_summary(self) -> pd.DataFrame:
        """Describe all columns (numeric + categorical)."""
        return self.df.describe(include="all").transpose()

    def missing_values(self) -> pd.Series:
        """Count of missing values per column."""
        return self.df.isna().sum()

    def unique_counts(self) -> pd.Series:
        """Number of unique values per column."""
        return self.df.nunique()

    def infer_kind(self, col: str, id_ratio: float = 0.95) -> ColumnKind:
        """
        - identifier: (almost) every value distinct and not a float column
        - numeric: numeric dtype with more than `max_categories` levels
        - categorical: everything else
        """
        series = self.df[col]
        n = len(series)
        u = series.nunique(dropna=True)
        numeric = is_numeric_dtype(series) and not pd.api.types.is_bool_dtype(series)

        if n > 1 and u >= id_ratio * n and not pd.api.types.is_float_dtype(series):
            return ColumnKind.IDENTIFIER
        if numeric and u > self.max_categories:
            return ColumnKind.NUMERIC
        return ColumnKind.CATEGORICAL

    def infer_kinds(self) -> Dict[str, ColumnKind]:
        return {col: self.infer_kind(col) for col in self.df.columns}

    def infer_key_variables(self, max_unique_ratio: float = 0.5) -> List[str]:
        """
        Heuristic key-variable detector:
        - only categorical columns
        - ignore columns that are constant
        - ignore columns that are almost all-unique
        """
        n = len(self.df)
        kinds = self.infer_kinds()
        keys: List[str] = []
        for col in self.df.columns:
            if kinds[col] is not ColumnKind.CATEGORICAL:
                continue
            u = self.df[col].nunique()
            if 1 < u < max_unique_ratio * n:
                keys.append(col)
        return keys

    def summary_dict(self) -> Dict[str, Any]:
        """Pack key stats into a dict (good for CLI / UI)."""
        return {
            "rows": len(self.df),
            "cols": self.df.shape[1],
            "missing": self.missing_values().to_dict(),
            "unique": self.unique_counts().to_dict(),
            "kinds": {col: kind.value for col, kind in self.infer_kinds().items()},
            "suggested_key_vars": self.infer_key_variables(),
        }
