# safemicro/core/problem.py

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd
from pandas.api.types import is_numeric_dtype

from .errors import SchemaError
from .profiler import ColumnKind, DataProfiler
from .risk import measure_risk

logger = logging.getLogger(__name__)


@dataclass
class SdcProblem:
    """
    The pipeline state. Owned by one pipeline run and threaded through
    every stage: each stage mutates `data` and returns the same object.
    `original` is never touched.
    """

    original: pd.DataFrame
    data: pd.DataFrame
    kinds: Dict[str, ColumnKind]
    key_vars: List[str]
    num_vars: List[str] = field(default_factory=list)
    weight_var: Optional[str] = None
    pram_vars: List[str] = field(default_factory=list)
    strata_var: Optional[str] = None
    suppressed: Dict[str, int] = field(default_factory=dict)
    pram_changes: Dict[str, int] = field(default_factory=dict)
    history: List[Dict[str, Any]] = field(default_factory=list)

    def require_columns(self, columns: Iterable[str]) -> None:
        missing = [c for c in columns if c not in self.data.columns]
        if missing:
            raise SchemaError(f"Columns not in table: {missing}")

    def record(
        self,
        stage: str,
        params: Optional[Dict[str, Any]] = None,
        k: int = 3,
        use_loglinear: bool = False,
    ) -> Dict[str, Any]:
        """Append a history entry with a freshly computed risk snapshot."""
        risk = measure_risk(self, k=k, use_loglinear=use_loglinear)
        entry = {"stage": stage, "params": dict(params or {}), "risk": risk}
        self.history.append(entry)
        logger.info(
            "[%s] records=%d violations(k=%d)=%d expected_reid=%.2f risk=%.2f%%",
            stage,
            risk["records"],
            risk["k"],
            risk["k_violations"],
            risk["expected_reidentifications"],
            risk["global_risk_pct"],
        )
        return entry


def _check_kind(kinds: Mapping[str, ColumnKind], col: str, expected: ColumnKind, role: str) -> None:
    if kinds.get(col, expected) is not expected:
        raise SchemaError(
            f"{role} '{col}' is declared {kinds[col].value}, expected {expected.value}"
        )


def create_problem(
    df: pd.DataFrame,
    key_vars: Iterable[str],
    num_vars: Iterable[str] = (),
    weight_var: Optional[str] = None,
    pram_vars: Iterable[str] = (),
    strata_var: Optional[str] = None,
    kinds: Optional[Mapping[str, Any]] = None,
) -> SdcProblem:
    """
    Wrap a table into an SdcProblem, checking the schema up front.

    Column kinds not given in `kinds` are inferred by the profiler; the
    roles then pin them (key and PRAM variables are categorical, numeric key
    variables and the weight are numeric). A role that contradicts an
    explicitly declared kind is a SchemaError.
    """
    key_vars = list(key_vars)
    num_vars = list(num_vars)
    pram_vars = list(pram_vars)

    if not key_vars:
        raise SchemaError("At least one categorical key variable is required.")

    referenced = key_vars + num_vars + pram_vars
    referenced += [c for c in (weight_var, strata_var) if c is not None]
    missing = [c for c in referenced if c not in df.columns]
    if missing:
        raise SchemaError(f"Columns not in table: {missing}")

    declared = {col: ColumnKind(kind) for col, kind in (kinds or {}).items()}
    unknown = [c for c in declared if c not in df.columns]
    if unknown:
        raise SchemaError(f"Kinds declared for unknown columns: {unknown}")

    overlap = set(key_vars) & set(num_vars)
    if overlap:
        raise SchemaError(f"Variables both categorical and numeric keys: {sorted(overlap)}")

    for col in key_vars:
        _check_kind(declared, col, ColumnKind.CATEGORICAL, "Key variable")
    for col in pram_vars:
        _check_kind(declared, col, ColumnKind.CATEGORICAL, "PRAM variable")
    for col in num_vars + ([weight_var] if weight_var else []):
        _check_kind(declared, col, ColumnKind.NUMERIC, "Numeric variable")
        if not is_numeric_dtype(df[col]):
            raise SchemaError(f"Numeric variable '{col}' has dtype {df[col].dtype}")

    if weight_var is not None:
        w = df[weight_var]
        if w.isna().any() or (w <= 0).any():
            raise SchemaError(f"Weight variable '{weight_var}' must be positive and complete")

    resolved = DataProfiler(df).infer_kinds()
    resolved.update(declared)
    for col in key_vars + pram_vars:
        resolved[col] = ColumnKind.CATEGORICAL
    for col in num_vars + ([weight_var] if weight_var else []):
        resolved[col] = ColumnKind.NUMERIC

    problem = SdcProblem(
        original=df.copy(),
        data=df.copy(),
        kinds=resolved,
        key_vars=key_vars,
        num_vars=num_vars,
        weight_var=weight_var,
        pram_vars=pram_vars,
        strata_var=strata_var,
    )
    logger.info(
        "Problem created: %d records, key vars %s, numeric %s, weight %s",
        len(df), key_vars, num_vars, weight_var,
    )
    return problem
