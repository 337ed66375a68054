# safemicro/core/suppression.py

import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

import numpy as np
import pandas as pd
from pandas.api.types import is_numeric_dtype

from .errors import ParameterError
from .risk import RiskAssessor

logger = logging.getLogger(__name__)


@dataclass
class SuppressionReport:
    k: int
    feasible: bool
    rounds: int = 0
    suppressed: Dict[str, int] = field(default_factory=dict)
    remaining_violations: int = 0

    @property
    def total(self) -> int:
        return int(sum(self.suppressed.values()))


def _nullable(series: pd.Series) -> pd.Series:
    """Key column in a dtype that can hold a missing marker."""
    if isinstance(series.dtype, pd.CategoricalDtype):
        return series.copy()
    if is_numeric_dtype(series):
        return series.astype(float)
    return series.astype(object)


def _costs(key_vars, importance: Optional[Mapping[str, int]]) -> Dict[str, float]:
    """
    Cost of suppressing one cell per variable. Rank 1 is the most important
    variable and the most expensive to suppress.
    """
    if importance is None:
        return {v: 1.0 for v in key_vars}

    unknown = [v for v in importance if v not in key_vars]
    if unknown:
        raise ParameterError(f"Importance given for non-key variables: {unknown}")
    worst = max(importance.values(), default=1)
    costs = {}
    for v in key_vars:
        rank = importance.get(v, worst + 1)
        if rank < 1:
            raise ParameterError(f"Importance rank of '{v}' must be >= 1")
        costs[v] = 1.0 + (worst + 1 - rank) / (worst + 1)
    return costs


def local_suppression(
    problem,
    k: int = 3,
    importance: Optional[Mapping[str, int]] = None,
) -> SuppressionReport:
    """
    Suppress categorical key cells until every record shares its key pattern
    with at least k records (missing cells match any value).

    Greedy weighted set cover: in each round every key variable that still
    holds a value on some violating record is tried. Suppressing it on those
    records is scored by records made safe per unit of cost; the best one is
    applied and classes are recomputed. The work happens on a copy which is
    committed only if the target is reached.
    """
    if int(k) != k or k < 1:
        raise ParameterError(f"k must be an integer >= 1, got {k}")

    key_vars = list(problem.key_vars)
    problem.require_columns(key_vars)
    costs = _costs(key_vars, importance)
    n_levels = {v: problem.data[v].nunique() for v in key_vars}

    work = pd.DataFrame(
        {v: _nullable(problem.data[v]) for v in key_vars}, index=problem.data.index
    )
    counts = {v: 0 for v in key_vars}

    def violating(frame: pd.DataFrame) -> pd.Series:
        return RiskAssessor(frame, key_vars).violations(k)

    viol = violating(work)
    n_start = int(viol.sum())
    rounds = 0
    max_rounds = len(key_vars) * n_start

    if len(work) < k and n_start > 0:
        logger.warning("Local suppression infeasible: %d records < k=%d", len(work), k)
        return SuppressionReport(k=k, feasible=False, remaining_violations=n_start,
                                 suppressed={v: 0 for v in key_vars})

    while viol.any() and rounds < max_rounds:
        best = None
        n_viol = int(viol.sum())
        for var in key_vars:
            cells = viol & work[var].notna()
            n_cells = int(cells.sum())
            if n_cells == 0:
                continue

            trial = work.copy()
            trial.loc[cells, var] = np.nan
            gained = n_viol - int(violating(trial).sum())
            score = gained / (n_cells * costs[var])
            rank = (score, -n_cells, n_levels[var])
            if best is None or rank > best[0]:
                best = (rank, var, cells, n_cells)

        if best is None:
            break

        _, var, cells, n_cells = best
        work.loc[cells, var] = np.nan
        counts[var] += n_cells
        rounds += 1
        viol = violating(work)
        logger.debug("Round %d: suppressed %d cells of '%s', %d violations left",
                     rounds, n_cells, var, int(viol.sum()))

    remaining = int(viol.sum())
    if remaining:
        logger.warning(
            "Local suppression could not reach k=%d: %d violating records left; "
            "table left unchanged", k, remaining,
        )
        return SuppressionReport(k=k, feasible=False, rounds=rounds,
                                 suppressed={v: 0 for v in key_vars},
                                 remaining_violations=remaining)

    for var in key_vars:
        if counts[var]:
            problem.data[var] = work[var]
        problem.suppressed[var] = problem.suppressed.get(var, 0) + counts[var]

    report = SuppressionReport(k=k, feasible=True, rounds=rounds, suppressed=counts)
    logger.info("Local suppression (k=%d): %d cells in %d rounds %s",
                k, report.total, rounds, counts)
    return report
