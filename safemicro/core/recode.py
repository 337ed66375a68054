# safemicro/core/recode.py

import logging
from typing import Any, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
from pandas.api.types import is_numeric_dtype

from .errors import ParameterError, SchemaError
from .profiler import ColumnKind

logger = logging.getLogger(__name__)


def _numeric_column(problem, column: str) -> pd.Series:
    problem.require_columns([column])
    series = problem.data[column]
    if not is_numeric_dtype(series):
        raise SchemaError(f"Column '{column}' is not numeric (dtype {series.dtype})")
    return series


def global_recode(
    problem,
    column: str,
    breaks: Sequence[float],
    labels: Optional[Sequence[Any]] = None,
    right: bool = True,
):
    """
    Collapse a numeric column into intervals.

    Breaks must be strictly increasing; the outermost breaks are widened to
    the observed range so no value falls outside. Default labels follow the
    "lo-hi" pattern.
    """
    series = _numeric_column(problem, column)

    breaks = [float(b) for b in breaks]
    if len(breaks) < 2 or any(b2 <= b1 for b1, b2 in zip(breaks, breaks[1:])):
        raise ParameterError(f"Breaks for '{column}' must be strictly increasing: {breaks}")
    if labels is not None and len(labels) != len(breaks) - 1:
        raise ParameterError(
            f"{len(breaks) - 1} intervals for '{column}' but {len(labels)} labels"
        )

    if labels is None:
        labels = [f"{lo:g}-{hi:g}" for lo, hi in zip(breaks, breaks[1:])]

    observed = series.dropna()
    if not observed.empty:
        breaks[0] = min(breaks[0], float(observed.min()))
        breaks[-1] = max(breaks[-1], float(observed.max()))
    if not right:
        # [a, b) intervals: the last break itself must fall inside
        breaks[-1] = float(np.nextafter(breaks[-1], np.inf))

    recoded = pd.cut(
        series, bins=breaks, labels=list(labels), right=right, include_lowest=True,
        ordered=False,
    ).astype(object)

    lost = recoded.isna() & series.notna()
    if lost.any():
        raise SchemaError(
            f"Recoding '{column}' would leave {int(lost.sum())} values outside every interval"
        )

    problem.data[column] = recoded
    problem.kinds[column] = ColumnKind.CATEGORICAL
    logger.info("Global recode of '%s' into %d intervals", column, len(labels))
    return problem


def group_categories(problem, column: str, mapping: Mapping[Any, Any]):
    """
    Recode categories by an explicit old -> new label mapping. Labels not in
    the mapping are kept.
    """
    problem.require_columns([column])
    if not isinstance(mapping, Mapping):
        raise ParameterError(f"Mapping for '{column}' must be a dict")

    series = problem.data[column].astype(object)
    unused = [old for old in mapping if not (series == old).any()]
    if unused:
        logger.debug("Labels not present in '%s': %s", column, unused)

    problem.data[column] = series.map(lambda v: mapping.get(v, v), na_action="ignore")
    logger.info(
        "Grouped categories of '%s': %d -> %d levels",
        column, series.nunique(), problem.data[column].nunique(),
    )
    return problem


def top_bottom_code(
    problem,
    column: str,
    value: float,
    replacement: Optional[float] = None,
    kind: str = "top",
):
    """
    Top coding replaces values above `value`, bottom coding values below it,
    with `replacement` (default: `value`).
    """
    series = _numeric_column(problem, column)
    if kind not in ("top", "bottom"):
        raise ParameterError(f"kind must be 'top' or 'bottom', got '{kind}'")

    replacement = value if replacement is None else replacement
    mask = series > value if kind == "top" else series < value

    coded = series.astype(float).copy()
    coded[mask] = replacement
    problem.data[column] = coded
    logger.info("%s coding of '%s' at %s: %d values replaced",
                kind.capitalize(), column, value, int(mask.sum()))
    return problem
