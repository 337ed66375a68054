# safemicro/core/utility.py

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .errors import SchemaError

logger = logging.getLogger(__name__)


def _check_pair(df_raw: pd.DataFrame, df_anon: pd.DataFrame, variables: Sequence[str]) -> None:
    missing = [c for c in variables if c not in df_raw.columns or c not in df_anon.columns]
    if missing:
        raise SchemaError(f"Columns not in both tables: {missing}")
    if len(df_raw) != len(df_anon):
        raise SchemaError(
            f"Tables differ in length ({len(df_raw)} vs {len(df_anon)} records)"
        )


def suppression_rate(
    df_raw: pd.DataFrame,
    df_anon: pd.DataFrame,
    variables: Sequence[str],
) -> float:
    """
    Fraction of cells in `variables` that are missing after anonymisation
    but were observed before.

    0.0  -> nothing suppressed
    0.5  -> half the key cells suppressed
    """
    _check_pair(df_raw, df_anon, variables)
    if len(df_raw) == 0 or not variables:
        return 0.0
    raw = df_raw[list(variables)].notna().to_numpy()
    anon = df_anon[list(variables)].isna().to_numpy()
    return float((raw & anon).sum() / raw.size)


def il1s(
    df_raw: pd.DataFrame,
    df_anon: pd.DataFrame,
    variables: Sequence[str],
) -> float:
    """
    Information loss IL1s: mean over cells of |x - x'| / (sqrt(2) * S_j),
    S_j the standard deviation of variable j in the raw table.

    0 for identical tables, never negative. Cells missing in either table
    are ignored.
    """
    _check_pair(df_raw, df_anon, variables)
    if len(df_raw) == 0 or not variables:
        return 0.0

    raw = df_raw[list(variables)].astype(float)
    anon = df_anon[list(variables)].astype(float).set_axis(raw.index)
    sd = raw.std(ddof=1).replace(0.0, 1.0).fillna(1.0)
    diff = (raw - anon).abs() / (np.sqrt(2.0) * sd)
    return float(diff.sum().sum() / (len(raw) * len(variables)))


def eigen_shift(
    df_raw: pd.DataFrame,
    df_anon: pd.DataFrame,
    variables: Sequence[str],
) -> float:
    """
    Relative shift of the covariance eigenvalue spectrum:
    sum |lambda - lambda'| / sum lambda, both tables standardised with the
    raw table's means and standard deviations.
    """
    _check_pair(df_raw, df_anon, variables)
    if len(df_raw) < 2 or not variables:
        return 0.0

    raw = df_raw[list(variables)].astype(float)
    anon = df_anon[list(variables)].astype(float)
    mu = raw.mean()
    sd = raw.std(ddof=1).replace(0.0, 1.0).fillna(1.0)

    ev_raw = np.sort(np.linalg.eigvalsh(((raw - mu) / sd).cov().fillna(0.0).to_numpy()))[::-1]
    ev_anon = np.sort(np.linalg.eigvalsh(((anon - mu) / sd).cov().fillna(0.0).to_numpy()))[::-1]
    total = ev_raw.sum()
    if total <= 0:
        return 0.0
    return float(np.abs(ev_raw - ev_anon).sum() / total)


def categorical_tv_distance(
    df_raw: pd.DataFrame,
    df_anon: pd.DataFrame,
    col: str,
) -> float:
    """
    Total variation distance between categorical distributions of a column.

    TV = 0      -> identical distributions
    TV -> 1     -> completely different

    Missing values (suppressed cells) count as a separate category.
    """
    if col not in df_raw.columns or col not in df_anon.columns:
        return 0.0

    raw_counts = df_raw[col].astype(object).value_counts(dropna=False)
    anon_counts = df_anon[col].astype(object).value_counts(dropna=False)

    n_raw = raw_counts.sum()
    n_anon = anon_counts.sum()
    if n_raw == 0 or n_anon == 0:
        return 0.0

    all_values = raw_counts.index.union(anon_counts.index)

    p_raw = (raw_counts.reindex(all_values, fill_value=0) / n_raw).to_numpy()
    p_anon = (anon_counts.reindex(all_values, fill_value=0) / n_anon).to_numpy()

    return float(0.5 * np.abs(p_raw - p_anon).sum())


def numeric_mean_std_error(
    df_raw: pd.DataFrame,
    df_anon: pd.DataFrame,
    col: str,
) -> Dict[str, float]:
    """
    Relative error in mean and standard deviation of a numeric column.
    """
    if col not in df_raw.columns or col not in df_anon.columns:
        return {"mean_rel_error": 0.0, "std_rel_error": 0.0}

    raw = df_raw[col].dropna().astype(float)
    anon = df_anon[col].dropna().astype(float)
    if raw.empty or anon.empty:
        return {"mean_rel_error": 0.0, "std_rel_error": 0.0}

    eps = 1e-9
    mu_raw, mu_anon = float(raw.mean()), float(anon.mean())
    std_raw, std_anon = float(raw.std(ddof=1)), float(anon.std(ddof=1))

    return {
        "mean_rel_error": abs(mu_raw - mu_anon) / max(abs(mu_raw), eps),
        "std_rel_error": abs(std_raw - std_anon) / max(abs(std_raw), eps),
    }


# ---------------------------------------------------------------------------
# Domain statistics, computed the same way on original and anonymised data
# ---------------------------------------------------------------------------


def gini(values, weights=None) -> float:
    """
    (Weighted) Gini coefficient in [0, 1]. Missing values are dropped.
    """
    x = pd.Series(values, dtype=float)
    w = pd.Series(1.0, index=x.index) if weights is None else pd.Series(weights, index=x.index, dtype=float)
    keep = x.notna() & w.notna()
    x, w = x[keep].to_numpy(), w[keep].to_numpy()
    if len(x) == 0:
        return float("nan")

    order = np.argsort(x, kind="stable")
    x, w = x[order], w[order]
    cum = np.cumsum(w * x)
    total = cum[-1]
    if total == 0:
        return 0.0
    prev = np.concatenate([[0.0], cum[:-1]])
    return float(1.0 - (w * (cum + prev)).sum() / (w.sum() * total))


def _weighted_mean(x: pd.Series, w: Optional[pd.Series]) -> float:
    if w is None:
        return float(x.mean())
    return float(np.average(x, weights=w))


def gender_pay_gap(
    df: pd.DataFrame,
    earnings: str,
    sex: str,
    male: Any = "male",
    female: Any = "female",
    weight: Optional[str] = None,
) -> float:
    """
    Unadjusted gender pay gap: (mean_m - mean_f) / mean_m of `earnings`.
    """
    cols = [earnings, sex] + ([weight] if weight else [])
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise SchemaError(f"Columns not in table: {missing}")

    data = df[cols].dropna()
    men = data[data[sex] == male]
    women = data[data[sex] == female]
    if men.empty or women.empty:
        return float("nan")

    mean_m = _weighted_mean(men[earnings], men[weight] if weight else None)
    mean_f = _weighted_mean(women[earnings], women[weight] if weight else None)
    return (mean_m - mean_f) / mean_m


def mean_ci(
    df: pd.DataFrame,
    column: str,
    by: Optional[str] = None,
    weight: Optional[str] = None,
    alpha: float = 0.05,
) -> pd.DataFrame:
    """
    Mean of `column` with a (1 - alpha) t confidence interval, overall or per
    stratum `by`. Sampling weights are rescaled to sum to the sample size.
    """
    from statsmodels.stats.weightstats import DescrStatsW

    cols = [column] + [c for c in (by, weight) if c]
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise SchemaError(f"Columns not in table: {missing}")

    data = df[cols].dropna(subset=[column] + ([weight] if weight else []))
    groups = [("all", data)] if by is None else list(data.groupby(by, dropna=False))

    rows = []
    for label, part in groups:
        x = part[column].to_numpy(dtype=float)
        if len(x) < 2:
            rows.append({by or "group": label, "n": len(x), "mean": np.nan,
                         "lower": np.nan, "upper": np.nan})
            continue
        w = None
        if weight:
            w = part[weight].to_numpy(dtype=float)
            w = w * len(w) / w.sum()
        stats = DescrStatsW(x, weights=w, ddof=1)
        lower, upper = stats.tconfint_mean(alpha=alpha)
        rows.append({by or "group": label, "n": len(x), "mean": float(stats.mean),
                     "lower": float(lower), "upper": float(upper)})
    return pd.DataFrame(rows)


def regression_fit(
    df: pd.DataFrame,
    target: str,
    features: List[str],
    weight: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Linear regression of `target` on `features` (categorical features
    one-hot encoded, first level dropped). Rows with missing values are
    dropped.
    """
    from sklearn.linear_model import LinearRegression

    cols = [target] + list(features) + ([weight] if weight else [])
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise SchemaError(f"Columns not in table: {missing}")

    data = df[cols].dropna()
    X = pd.get_dummies(data[list(features)], drop_first=True, dtype=float)
    y = data[target].astype(float)
    sample_weight = data[weight].to_numpy(dtype=float) if weight else None

    model = LinearRegression().fit(X, y, sample_weight=sample_weight)
    return {
        "intercept": float(model.intercept_),
        "coefficients": pd.Series(model.coef_, index=X.columns),
        "r2": float(model.score(X, y, sample_weight=sample_weight)),
        "n": int(len(data)),
    }


def compare(
    df_raw: pd.DataFrame,
    df_anon: pd.DataFrame,
    func: Callable[..., Any],
    **kwargs,
) -> Dict[str, Any]:
    """Run one statistic on both tables, side by side."""
    return {
        "original": func(df_raw, **kwargs),
        "anonymized": func(df_anon, **kwargs),
    }


def utility_report(problem) -> Dict[str, Any]:
    """Information-loss snapshot of the working table against the original."""
    report: Dict[str, Any] = {
        "key_suppression_rate": suppression_rate(problem.original, problem.data, problem.key_vars),
    }
    if problem.num_vars:
        report["il1s"] = il1s(problem.original, problem.data, problem.num_vars)
        report["eigen_shift"] = eigen_shift(problem.original, problem.data, problem.num_vars)
        for col in problem.num_vars:
            err = numeric_mean_std_error(problem.original, problem.data, col)
            report[f"{col}_mean_rel_error"] = err["mean_rel_error"]
            report[f"{col}_std_rel_error"] = err["std_rel_error"]
    for col in problem.key_vars + problem.pram_vars:
        report[f"{col}_tv_distance"] = categorical_tv_distance(problem.original, problem.data, col)
    return report
