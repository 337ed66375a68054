# safemicro/core/risk.py

import logging
import warnings
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from .errors import DegenerateModelWarning, SchemaError

logger = logging.getLogger(__name__)

# Thresholds always listed in risk reports, next to the requested k
REPORT_THRESHOLDS = (2, 3, 5)


def _encode_keys(df: pd.DataFrame, key_vars: List[str]) -> np.ndarray:
    """Integer codes per key column, -1 for missing (suppressed) cells."""
    codes = np.empty((len(df), len(key_vars)), dtype=np.int64)
    for j, col in enumerate(key_vars):
        codes[:, j], _ = pd.factorize(df[col])
    return codes


def _compatible_totals(patterns: np.ndarray, values: np.ndarray) -> np.ndarray:
    """
    For every distinct key pattern, sum `values` over all patterns that agree
    with it on each key where both are non-missing. A missing cell matches
    any value.
    """
    if not (patterns < 0).any():
        return values.copy()

    m, p = patterns.shape
    out = np.zeros_like(values, dtype=float)
    chunk = max(1, int(2e7 // max(m * p, 1)))
    other = patterns[None, :, :]
    other_missing = other < 0
    for start in range(0, m, chunk):
        block = patterns[start:start + chunk, None, :]
        match = (block == other) | (block < 0) | other_missing
        out[start:start + chunk] = match.all(axis=2) @ values
    return out


class RiskAssessor:
    """
    Re-identification risk assessment based on equivalence classes defined
    over categorical key variables.

    Suppressed key cells act as wildcards: a record's class size is the
    number of records it cannot be told apart from on the non-missing keys.
    With a weight variable the population frequency Fk is the weight total
    of those records, otherwise Fk equals the sample frequency fk.
    """

    def __init__(
        self,
        df: pd.DataFrame,
        key_vars: List[str],
        weight_var: Optional[str] = None,
    ) -> None:
        if not key_vars:
            raise ValueError("RiskAssessor requires at least one key variable.")
        missing = [c for c in key_vars if c not in df.columns]
        if weight_var is not None and weight_var not in df.columns:
            missing.append(weight_var)
        if missing:
            raise SchemaError(f"Columns not in table: {missing}")

        self.df = df
        self.key_vars = list(key_vars)
        self.weight_var = weight_var
        self._cache = None

    def _frequencies(self):
        if self._cache is not None:
            return self._cache

        n = len(self.df)
        if n == 0:
            empty = np.zeros(0)
            self._cache = (np.zeros(0, dtype=np.int64), empty, empty, np.zeros(0, dtype=np.int64))
            return self._cache

        codes = _encode_keys(self.df, self.key_vars)
        patterns, first, inverse = np.unique(
            codes, axis=0, return_index=True, return_inverse=True
        )
        inverse = inverse.reshape(-1)

        if self.weight_var is None:
            weights = np.ones(n)
        else:
            weights = self.df[self.weight_var].to_numpy(dtype=float)

        values = np.column_stack(
            [
                np.bincount(inverse, minlength=len(patterns)).astype(float),
                np.bincount(inverse, weights=weights, minlength=len(patterns)),
            ]
        )
        totals = _compatible_totals(patterns, values)
        self._cache = (inverse, totals[:, 0], totals[:, 1], first)
        return self._cache

    def equivalence_class_sizes(self) -> pd.Series:
        """
        Size of each equivalence class (one entry per distinct key pattern).
        """
        _, fk, _, first = self._frequencies()
        index = pd.MultiIndex.from_frame(self.df[self.key_vars].iloc[first])
        return pd.Series(fk.astype(int), index=index, name="fk")

    def sample_frequencies(self) -> pd.Series:
        """Per-record fk."""
        inverse, fk, _, _ = self._frequencies()
        return pd.Series(fk[inverse].astype(int), index=self.df.index, name="fk")

    def population_frequencies(self) -> pd.Series:
        """Per-record Fk (weight total of the record's class)."""
        inverse, _, big_fk, _ = self._frequencies()
        return pd.Series(big_fk[inverse], index=self.df.index, name="Fk")

    def individual_risk(self) -> pd.Series:
        return (1.0 / self.population_frequencies()).rename("risk")

    def violations(self, k: int) -> pd.Series:
        """Records whose class is smaller than k."""
        return (self.sample_frequencies() < k).rename("violates")

    def n_violations(self, k: int) -> int:
        return int(self.violations(k).sum())

    def expected_reidentifications(self) -> float:
        return float(self.individual_risk().sum())

    def uniqueness_ratio(self) -> float:
        """
        Fraction of records that are unique on the key variables.
        """
        if len(self.df) == 0:
            return 0.0
        return float((self.sample_frequencies() == 1).mean())

    def risk_report(self, k: int = 3) -> Dict[str, Any]:
        """
        Key risk metrics for reporting:
        - number of records
        - number of equivalence classes
        - uniqueness ratio
        - average / min / max equivalence class sizes
        - k-anonymity violations
        - expected re-identifications and global risk
        """
        n = len(self.df)
        if n == 0:
            return {
                "records": 0,
                "num_equivalence_classes": 0,
                "uniqueness_ratio": 0.0,
                "avg_equiv_class_size": 0.0,
                "min_equiv_class_size": 0,
                "max_equiv_class_size": 0,
                "k": k,
                "k_violations": 0,
                "expected_reidentifications": 0.0,
                "global_risk_pct": 0.0,
            }

        sizes = self.equivalence_class_sizes()
        fk = self.sample_frequencies()
        expected = self.expected_reidentifications()
        report = {
            "records": int(n),
            "num_equivalence_classes": int(len(sizes)),
            "uniqueness_ratio": float((fk == 1).mean()),
            "avg_equiv_class_size": float(sizes.mean()),
            "min_equiv_class_size": int(sizes.min()),
            "max_equiv_class_size": int(sizes.max()),
            "k": k,
            "k_violations": int((fk < k).sum()),
        }
        for t in REPORT_THRESHOLDS:
            report[f"violations_k{t}"] = int((fk < t).sum())
        report["expected_reidentifications"] = expected
        report["global_risk_pct"] = 100.0 * expected / n
        return report


@dataclass
class LoglinearRisk:
    risk: pd.Series
    tau1: float
    tau2: float
    sampling_fraction: float
    n_cells: int
    deviance: float


def _degenerate(msg: str) -> None:
    logger.warning("Log-linear risk skipped: %s", msg)
    warnings.warn(msg, DegenerateModelWarning, stacklevel=3)


def _design_matrix(cell_codes: np.ndarray, key_vars: List[str], interactions: bool) -> pd.DataFrame:
    dummies = {
        v: pd.get_dummies(
            pd.Categorical(cell_codes[:, j]), prefix=v, drop_first=True, dtype=float
        )
        for j, v in enumerate(key_vars)
    }
    blocks = list(dummies.values())
    if interactions:
        for i, a in enumerate(key_vars):
            for b in key_vars[i + 1:]:
                for ca in dummies[a].columns:
                    for cb in dummies[b].columns:
                        blocks.append(
                            (dummies[a][ca] * dummies[b][cb]).rename(f"{ca}:{cb}").to_frame()
                        )
    return pd.concat(blocks, axis=1)


def loglinear_risk(
    df: pd.DataFrame,
    key_vars: List[str],
    weight_var: Optional[str],
    interactions: bool = False,
    max_cells: int = 200_000,
) -> Optional[LoglinearRisk]:
    """
    Model-based per-record risk from a Poisson log-linear model of the
    cross-classified key-variable counts.

    The model smooths sample cell counts into expected sample counts mu;
    with sampling fraction pi = n / sum(w), the unobserved population part
    of a cell is Poisson with mean nu = mu * (1 - pi) / pi. For sample
    uniques the risk is E[1/F | f=1] = (1 - exp(-nu)) / nu; all other records
    keep the frequency-based 1/Fk.

    Returns None (after a DegenerateModelWarning) when the model cannot be
    used; callers fall back to frequency-based estimation.
    """
    import statsmodels.api as sm
    from statsmodels.tools.sm_exceptions import ConvergenceWarning

    if weight_var is None:
        _degenerate("a sampling weight is required to extrapolate to the population")
        return None

    complete = df[key_vars].notna().all(axis=1)
    sub = df.loc[complete]
    if sub.empty:
        _degenerate("no record has all key variables observed")
        return None

    codes = _encode_keys(sub, key_vars)
    n_levels = codes.max(axis=0) + 1
    n_cells = int(np.prod(n_levels.astype(float)))
    if n_cells > max_cells:
        _degenerate(f"{n_cells} cells exceed the limit of {max_cells}")
        return None

    cell_of_record = np.ravel_multi_index(codes.T, n_levels)
    counts = np.bincount(cell_of_record, minlength=n_cells).astype(float)
    cell_codes = np.column_stack(np.unravel_index(np.arange(n_cells), n_levels))

    X = sm.add_constant(_design_matrix(cell_codes, key_vars, interactions), has_constant="add")
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("error", ConvergenceWarning)
            result = sm.GLM(counts, X.astype("float64"), family=sm.families.Poisson()).fit()
    except (ConvergenceWarning, np.linalg.LinAlgError, ValueError) as exc:
        _degenerate(f"log-linear model did not converge ({exc})")
        return None

    mu = np.asarray(result.fittedvalues, dtype=float)
    if not np.all(np.isfinite(mu)):
        _degenerate("log-linear model produced non-finite fitted values")
        return None

    weights = sub[weight_var].to_numpy(dtype=float)
    pi = min(len(sub) / weights.sum(), 1.0)
    nu = mu * (1.0 - pi) / pi
    with np.errstate(divide="ignore", invalid="ignore"):
        cell_risk = np.where(nu > 1e-12, (1.0 - np.exp(-nu)) / nu, 1.0)

    freq_risk = RiskAssessor(df, key_vars, weight_var).individual_risk()
    risk = freq_risk.copy()

    unique_cells = counts == 1
    record_unique = unique_cells[cell_of_record]
    unique_idx = sub.index[record_unique]
    risk.loc[unique_idx] = cell_risk[cell_of_record[record_unique]]

    tau1 = float(np.exp(-nu[unique_cells]).sum())
    tau2 = float(cell_risk[unique_cells].sum())
    logger.info(
        "Log-linear model over %d cells: tau1=%.2f tau2=%.2f (pi=%.4f)",
        n_cells, tau1, tau2, pi,
    )
    return LoglinearRisk(
        risk=risk.rename("model_risk"),
        tau1=tau1,
        tau2=tau2,
        sampling_fraction=float(pi),
        n_cells=n_cells,
        deviance=float(result.deviance),
    )


def measure_risk(problem, k: int = 3, use_loglinear: bool = False) -> Dict[str, Any]:
    """Fresh risk snapshot of the problem's working table."""
    assessor = RiskAssessor(problem.data, problem.key_vars, problem.weight_var)
    report = assessor.risk_report(k)
    report["method"] = "frequency"

    if use_loglinear:
        model = loglinear_risk(problem.data, problem.key_vars, problem.weight_var)
        if model is not None:
            report["method"] = "loglinear"
            report["model_expected_reidentifications"] = float(model.risk.sum())
            report["model_global_risk_pct"] = 100.0 * float(model.risk.mean())
            report["tau1"] = model.tau1
            report["tau2"] = model.tau2
    return report
