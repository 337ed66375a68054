# safemicro/core/microaggregation.py

import logging
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd
from pandas.api.types import is_numeric_dtype
from sklearn.preprocessing import StandardScaler

from .errors import ParameterError, SchemaError

logger = logging.getLogger(__name__)


def _sq_dist(Z: np.ndarray, point: np.ndarray) -> np.ndarray:
    return ((Z - point) ** 2).sum(axis=1)


def _mdav_partition(Z: np.ndarray, g: int) -> List[np.ndarray]:
    """
    Maximum Distance to Average Vector partition of the rows of Z
    (len(Z) >= g). Every group has between g and 2g-1 members.
    """
    remaining = np.arange(len(Z))
    groups: List[np.ndarray] = []

    def take_group(center: int) -> None:
        nonlocal remaining
        order = np.argsort(_sq_dist(Z[remaining], Z[center]), kind="stable")[:g]
        groups.append(remaining[order])
        remaining = np.delete(remaining, order)

    while len(remaining) >= 3 * g:
        centroid = Z[remaining].mean(axis=0)
        r = remaining[np.argmax(_sq_dist(Z[remaining], centroid))]
        take_group(r)
        s = remaining[np.argmax(_sq_dist(Z[remaining], Z[r]))]
        take_group(s)

    if len(remaining) >= 2 * g:
        centroid = Z[remaining].mean(axis=0)
        take_group(remaining[np.argmax(_sq_dist(Z[remaining], centroid))])
    if len(remaining):
        groups.append(remaining)
    return groups


def mdav(X, g: int = 3) -> np.ndarray:
    """
    Group labels for the rows of X (complete numeric data).

    Rows are compared on standardised values. Blocks of identical rows with
    at least g members are grouped among themselves and never mixed with
    other rows, so aggregating an aggregated table changes nothing. Rows
    left over go through MDAV; a leftover smaller than g first absorbs the
    nearest identical block.
    """
    X = np.asarray(X, dtype=float)
    if X.ndim == 1:
        X = X.reshape(-1, 1)
    n = len(X)
    if g < 2:
        raise ParameterError(f"Group size must be >= 2, got {g}")
    if n < g:
        raise ParameterError(f"{n} records cannot form groups of size {g}")

    Z = StandardScaler().fit_transform(X)

    _, inverse, counts = np.unique(X, axis=0, return_inverse=True, return_counts=True)
    inverse = inverse.reshape(-1)
    blocks = [np.flatnonzero(inverse == b) for b in np.flatnonzero(counts >= g)]
    pool = np.flatnonzero(counts[inverse] < g)

    while 0 < len(pool) < g:
        centroid = Z[pool].mean(axis=0)
        nearest = int(np.argmin([_sq_dist(Z[b[:1]], centroid)[0] for b in blocks]))
        pool = np.concatenate([pool, blocks.pop(nearest)])

    groups: List[np.ndarray] = []
    for block in blocks:
        groups.extend(np.array_split(block, len(block) // g))
    if len(pool):
        groups.extend(pool[members] for members in _mdav_partition(Z[pool], g))

    labels = np.full(n, -1, dtype=np.int64)
    for label, members in enumerate(groups):
        labels[members] = label
    return labels


def _aggregate(values: pd.DataFrame, labels: np.ndarray) -> pd.DataFrame:
    """Group means; groups whose values are already all equal keep them."""
    grouped = values.groupby(labels)
    means = grouped.transform("mean")
    constant = grouped.transform("min") == grouped.transform("max")
    return means.where(~constant, values)


def microaggregate(
    problem,
    variables: Optional[Sequence[str]] = None,
    group_size: int = 3,
    strata: Optional[str] = None,
):
    """
    Replace numeric key variables by MDAV group means (per stratum).

    Records with a missing value in any of the variables are left as they
    are. Raises ParameterError, leaving the table untouched, when a stratum
    has fewer than `group_size` complete records.
    """
    variables = list(problem.num_vars if variables is None else variables)
    if not variables:
        raise ParameterError("No numeric variables to microaggregate")
    if int(group_size) != group_size or group_size < 2:
        raise ParameterError(f"Group size must be an integer >= 2, got {group_size}")

    problem.require_columns(variables + ([strata] if strata else []))
    for col in variables:
        if not is_numeric_dtype(problem.data[col]):
            raise SchemaError(f"Column '{col}' is not numeric (dtype {problem.data[col].dtype})")

    values = problem.data[variables].astype(float)
    complete = values.notna().all(axis=1)
    if not complete.all():
        logger.warning("%d records with missing numeric keys are not aggregated",
                       int((~complete).sum()))

    if strata is None:
        strata_keys = pd.Series(0, index=values.index)
    else:
        strata_keys = problem.data[strata]

    result = values.copy()
    n_groups = 0
    for stratum, block in values[complete].groupby(strata_keys[complete], dropna=False):
        if len(block) < group_size:
            raise ParameterError(
                f"Stratum {stratum!r} has {len(block)} complete records, "
                f"fewer than group size {group_size}"
            )
        labels = mdav(block.to_numpy(), group_size)
        result.loc[block.index] = _aggregate(block, labels).to_numpy()
        n_groups += int(labels.max()) + 1

    for col in variables:
        problem.data[col] = result[col]
    logger.info("Microaggregation of %s (g=%d): %d groups", variables, group_size, n_groups)
    return problem
