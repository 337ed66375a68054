# safemicro/core/pipeline.py

import logging
from typing import Any, Dict, List, Mapping

import numpy as np
import pandas as pd

from .config import PipelineConfig
from .errors import ParameterError
from .microaggregation import microaggregate
from .perturbation import add_noise, pram
from .problem import SdcProblem, create_problem
from .recode import global_recode, group_categories, top_bottom_code
from .suppression import local_suppression
from .utility import utility_report

logger = logging.getLogger(__name__)


def apply_recode(problem: SdcProblem, step: Mapping[str, Any]) -> SdcProblem:
    """
    One recode step:
      {"type": "interval", "column": ..., "breaks": [...], "labels": [...]}
      {"type": "group", "column": ..., "mapping": {old: new}}
      {"type": "top" | "bottom", "column": ..., "value": ..., "replacement": ...}
    """
    kind = step.get("type")
    column = step.get("column")
    if kind == "interval":
        return global_recode(problem, column, step["breaks"], step.get("labels"),
                             right=step.get("right", True))
    if kind == "group":
        return group_categories(problem, column, step["mapping"])
    if kind in ("top", "bottom"):
        return top_bottom_code(problem, column, step["value"], step.get("replacement"), kind=kind)
    raise ParameterError(f"Unknown recode type '{kind}'")


def _checkpoint(problem: SdcProblem, config: PipelineConfig, stage: str,
                params: Dict[str, Any] = None) -> None:
    entry = problem.record(stage, params, k=config.k, use_loglinear=config.use_loglinear)
    entry["utility"] = utility_report(problem)


def run_pipeline(df: pd.DataFrame, config: PipelineConfig) -> SdcProblem:
    """
    Raw risk -> recoding -> local suppression -> microaggregation -> noise
    -> PRAM, with risk and utility recomputed after every stage.
    """
    config.validate()
    problem = create_problem(
        df,
        key_vars=config.key_vars,
        num_vars=config.num_vars,
        weight_var=config.weight_var,
        pram_vars=config.pram_vars,
        strata_var=config.strata_var,
    )
    rng = np.random.default_rng(config.seed)

    _checkpoint(problem, config, "raw")

    for step in config.recodes:
        apply_recode(problem, step)
        _checkpoint(problem, config, f"recode:{step['column']}", dict(step))

    report = local_suppression(problem, k=config.k, importance=config.importance)
    _checkpoint(problem, config, "local_suppression",
                {"k": config.k, "feasible": report.feasible, "suppressed": report.suppressed})

    if config.num_vars and config.microaggregation:
        microaggregate(problem, group_size=config.group_size, strata=config.strata_var)
        _checkpoint(problem, config, "microaggregation", {"group_size": config.group_size})

    if config.num_vars and config.noise_method is not None:
        add_noise(problem, method=config.noise_method, noise=config.noise_magnitude, seed=rng)
        _checkpoint(problem, config, "noise",
                    {"method": config.noise_method, "noise": config.noise_magnitude})

    if config.pram_vars:
        pram_report = pram(problem, pd_min=config.pram_pd, alpha=config.pram_alpha,
                           strata=config.strata_var, seed=rng)
        _checkpoint(problem, config, "pram", {"changed": pram_report.changed})

    logger.info("Pipeline finished after %d stages", len(problem.history))
    return problem


def stage_summary(problem: SdcProblem) -> List[Dict[str, Any]]:
    """One flat row per stage, for printing or a table."""
    rows = []
    for entry in problem.history:
        risk = entry["risk"]
        utility = entry.get("utility", {})
        rows.append(
            {
                "stage": entry["stage"],
                "k_violations": risk["k_violations"],
                "expected_reidentifications": round(risk["expected_reidentifications"], 2),
                "global_risk_pct": round(risk["global_risk_pct"], 3),
                "key_suppression_rate": round(utility.get("key_suppression_rate", 0.0), 4),
                "il1s": round(utility["il1s"], 4) if "il1s" in utility else None,
                "eigen_shift": round(utility["eigen_shift"], 4) if "eigen_shift" in utility else None,
            }
        )
    return rows
