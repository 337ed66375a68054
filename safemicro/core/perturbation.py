# safemicro/core/perturbation.py

import logging
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
from pandas.api.types import is_numeric_dtype

from .config import NOISE_METHODS
from .errors import DegenerateModelWarning, ParameterError, SchemaError

logger = logging.getLogger(__name__)


def _numeric_vars(problem, variables: Optional[Sequence[str]]):
    variables = list(problem.num_vars if variables is None else variables)
    if not variables:
        raise ParameterError("No numeric variables to perturb")
    problem.require_columns(variables)
    for col in variables:
        if not is_numeric_dtype(problem.data[col]):
            raise SchemaError(f"Column '{col}' is not numeric (dtype {problem.data[col].dtype})")
    return variables


def add_noise(
    problem,
    variables: Optional[Sequence[str]] = None,
    method: str = "correlated",
    noise: float = 20.0,
    seed=None,
):
    """
    Add normal noise to numeric variables.

    - additive:   independent noise per variable, sd = noise% of its sd
    - correlated: multivariate noise with covariance (noise/100)^2 * Cov(X),
                  so the correlation structure is kept

    The noise variance is (noise/100)^2 times the variable's variance, e.g.
    noise=20 inflates each variance by about 4%. Missing cells stay missing.
    """
    if method not in NOISE_METHODS:
        raise ParameterError(f"Unknown noise method '{method}', expected one of {NOISE_METHODS}")
    if noise < 0:
        raise ParameterError("Noise magnitude must be >= 0")
    variables = _numeric_vars(problem, variables)

    rng = np.random.default_rng(seed)
    X = problem.data[variables].astype(float)
    n = len(X)
    scale = noise / 100.0

    if method == "additive":
        sd = X.std(ddof=1).fillna(0.0).to_numpy()
        E = rng.normal(size=(n, len(variables))) * (scale * sd)
    else:
        sigma = X.cov().fillna(0.0).to_numpy() * scale ** 2
        eig = np.linalg.eigvalsh(sigma) if sigma.size else np.zeros(0)
        if eig.size and eig.min() < -1e-8 * max(abs(eig.max()), 1.0):
            msg = "covariance matrix is not positive semi-definite; noise not added"
            logger.warning(msg)
            warnings.warn(msg, DegenerateModelWarning, stacklevel=2)
            return problem
        E = rng.multivariate_normal(np.zeros(len(variables)), sigma, size=n, method="eigh")

    noisy = X + E
    for col in variables:
        problem.data[col] = noisy[col]
    logger.info("%s noise (%.1f%%) added to %s", method.capitalize(), noise, variables)
    return problem


def _domain(series: pd.Series) -> pd.Index:
    domain = pd.Index(pd.unique(series.dropna()))
    try:
        return domain.sort_values()
    except TypeError:
        # mixed labels, keep order of appearance
        return domain


def invariant_transition_matrix(
    series: pd.Series,
    pd_min: float = 0.8,
    alpha: float = 0.5,
    seed=None,
) -> pd.DataFrame:
    """
    Generate an invariant PRAM matrix for one categorical variable.

    P has a diagonal drawn uniformly from [pd_min, 1] and the remaining
    mass of each row spread evenly. With the observed distribution pi,
    Q[j, i] = P[i, j] pi_i / (pi P)_j and R = P Q satisfies pi R = pi, so
    the marginal distribution is preserved in expectation. The returned
    matrix is alpha * R + (1 - alpha) * I.
    """
    if not 0 < pd_min <= 1:
        raise ParameterError("pd_min must be in (0, 1]")
    if not 0 <= alpha <= 1:
        raise ParameterError("alpha must be in [0, 1]")

    rng = np.random.default_rng(seed)
    domain = _domain(series)
    L = len(domain)
    if L <= 1:
        return pd.DataFrame(np.eye(L), index=domain, columns=domain)

    diag = rng.uniform(pd_min, 1.0, size=L)
    P = np.tile(((1.0 - diag) / (L - 1))[:, None], (1, L))
    np.fill_diagonal(P, diag)

    pi = series.value_counts(normalize=True).reindex(domain, fill_value=0.0).to_numpy()
    denom = pi @ P
    if np.any(denom <= 0):
        msg = f"PRAM matrix for '{series.name}' cannot be made invariant; using P"
        logger.warning(msg)
        warnings.warn(msg, DegenerateModelWarning, stacklevel=2)
        return pd.DataFrame(P, index=domain, columns=domain)

    Q = (P * pi[:, None]).T / denom[:, None]
    R = alpha * (P @ Q) + (1.0 - alpha) * np.eye(L)
    return pd.DataFrame(R, index=domain, columns=domain)


def validate_transition_matrix(
    matrix: Any,
    domain: Optional[Sequence[Any]] = None,
    name: str = "",
) -> pd.DataFrame:
    """
    Check that a transition matrix is square, non-negative, row-stochastic
    and has a row for every value in `domain`.
    """
    if isinstance(matrix, Mapping):
        matrix = pd.DataFrame.from_dict(matrix, orient="index").fillna(0.0)
    if not isinstance(matrix, pd.DataFrame):
        raise ParameterError(f"Transition matrix for '{name}' must be a DataFrame or dict")

    if set(matrix.index) != set(matrix.columns):
        raise ParameterError(f"Transition matrix for '{name}' must be square over one domain")
    matrix = matrix.loc[:, list(matrix.index)].astype(float)

    values = matrix.to_numpy()
    if (values < 0).any():
        raise ParameterError(f"Transition matrix for '{name}' has negative entries")
    if not np.allclose(values.sum(axis=1), 1.0, atol=1e-8):
        raise ParameterError(f"Rows of the transition matrix for '{name}' must sum to 1")

    if domain is not None:
        missing = [v for v in domain if v not in matrix.index]
        if missing:
            raise ParameterError(f"No transition row for values {missing} of '{name}'")
    return matrix


def _apply_matrix(series: pd.Series, matrix: pd.DataFrame, rng: np.random.Generator) -> pd.Series:
    out = series.astype(object).copy()
    targets = matrix.columns.to_numpy(dtype=object)
    for value, row in matrix.iterrows():
        mask = (series == value).to_numpy()
        m = int(mask.sum())
        if m:
            p = row.to_numpy(dtype=float)
            out[mask] = targets[rng.choice(len(targets), size=m, p=p / p.sum())]
    return out


def _restore_dtype(series: pd.Series, new: pd.Series, targets: Sequence[Any]) -> pd.Series:
    """Cast PRAM output back to the column dtype without losing target states."""
    if isinstance(series.dtype, pd.CategoricalDtype):
        extra = [t for t in pd.unique(pd.Series(targets, dtype=object))
                 if t not in series.cat.categories]
        return new.astype(series.cat.add_categories(extra).dtype)
    if set(targets) <= set(series.dropna()):
        return new.astype(series.dtype)
    return new


@dataclass
class PramReport:
    matrices: Dict[str, Any] = field(default_factory=dict)
    changed: Dict[str, int] = field(default_factory=dict)


def pram(
    problem,
    variables: Optional[Sequence[str]] = None,
    transition: Optional[Mapping[str, Any]] = None,
    pd_min: float = 0.8,
    alpha: float = 0.5,
    strata: Optional[str] = None,
    seed=None,
) -> PramReport:
    """
    Post-randomise categorical variables.

    Each record's value is replaced by a draw from the transition row of
    its current value. Without `transition`, an invariant matrix is
    generated per variable (and per stratum). With `transition`, every
    variable needs an entry there. Missing values are never changed.
    """
    variables = list(problem.pram_vars if variables is None else variables)
    if not variables:
        raise ParameterError("No variables to post-randomise")
    problem.require_columns(variables + ([strata] if strata else []))
    if transition is not None:
        missing = [v for v in variables if v not in transition]
        if missing:
            raise ParameterError(f"No transition matrix defined for {missing}")

    rng = np.random.default_rng(seed)
    report = PramReport()
    new_columns = {}

    for var in variables:
        series = problem.data[var]
        if transition is not None:
            matrix = validate_transition_matrix(transition[var], _domain(series), name=var)
            new = _apply_matrix(series, matrix, rng)
            report.matrices[var] = matrix
        elif strata is None:
            matrix = invariant_transition_matrix(series, pd_min, alpha, seed=rng)
            new = _apply_matrix(series, matrix, rng)
            report.matrices[var] = matrix
        else:
            new = series.astype(object).copy()
            report.matrices[var] = {}
            for stratum, part in series.groupby(problem.data[strata], dropna=False):
                matrix = invariant_transition_matrix(part, pd_min, alpha, seed=rng)
                new.loc[part.index] = _apply_matrix(part, matrix, rng)
                report.matrices[var][stratum] = matrix

        matrices = report.matrices[var]
        targets = [
            t for m in (matrices.values() if isinstance(matrices, dict) else [matrices])
            for t in m.columns
        ]
        new = _restore_dtype(series, new, targets)
        new_columns[var] = new
        report.changed[var] = int((series.notna() & (new.astype(object) != series.astype(object))).sum())

    for var, new in new_columns.items():
        problem.data[var] = new
        problem.pram_changes[var] = problem.pram_changes.get(var, 0) + report.changed[var]

    logger.info("PRAM on %s: changed records %s", variables, report.changed)
    return report
