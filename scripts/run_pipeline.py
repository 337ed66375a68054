# scripts/run_pipeline.py

import logging
import sys

from safemicro.core.config import PipelineConfig
from safemicro.core.exporter import export_csv
from safemicro.core.loader import load_sample
from safemicro.core.pipeline import run_pipeline, stage_summary
from safemicro.core.profiler import DataProfiler
from safemicro.core.utility import compare, gender_pay_gap, gini, mean_ci


def console_print(title: str, data):
    print("\n" + title)
    if isinstance(data, dict):
        for k, v in data.items():
            print(f"  {k}: {v}")
    else:
        print(" ", data)


TESTDATA_CONFIG = {
    "key_vars": ["urbrur", "roof", "walls", "water", "electcon", "relat", "sex"],
    "num_vars": ["expend", "income", "savings"],
    "weight_var": "sampling_weight",
    "pram_vars": ["hhcivil"],
    "k": 3,
    "group_size": 3,
    "noise_method": "correlated",
    "noise_magnitude": 20.0,
    "recodes": [
        {"type": "group", "column": "water", "mapping": {5: 4, 6: 4, 7: 4, 9: 4}},
        {"type": "group", "column": "relat", "mapping": {5: 4, 6: 4, 7: 4, 8: 4, 9: 4}},
    ],
    "seed": 42,
}

SES_CONFIG = {
    "key_vars": ["location", "nace", "size", "sex", "age"],
    "num_vars": ["earnings_hour", "earnings_month"],
    "weight_var": "weight",
    "pram_vars": ["education"],
    "k": 3,
    "group_size": 3,
    "noise_method": None,
    "recodes": [
        {"type": "interval", "column": "age", "breaks": [18, 29, 39, 49, 59, 65],
         "labels": ["18-29", "30-39", "40-49", "50-59", "60-65"]},
    ],
    "seed": 42,
}


def run_sample(name: str, mapping) -> None:
    df = load_sample(name)

    profile = DataProfiler(df).summary_dict()
    print(f"=== DATA PROFILE ({name}) ===")
    print(f"Rows: {profile['rows']}, Columns: {profile['cols']}")
    print("Suggested key variables (from profiler):")
    print("  ", profile["suggested_key_vars"])

    config = PipelineConfig.from_dict(mapping)
    console_print("=== PIPELINE CONFIGURATION ===", {
        "key_vars": config.key_vars,
        "num_vars": config.num_vars,
        "weight_var": config.weight_var,
        "k": config.k,
        "group_size": config.group_size,
        "noise": f"{config.noise_method} ({config.noise_magnitude}%)",
        "pram_vars": config.pram_vars,
    })

    problem = run_pipeline(df, config)

    for row in stage_summary(problem):
        console_print(f"--- {row.pop('stage').upper()} ---", row)

    if name == "ses":
        gap = compare(problem.original, problem.data, gender_pay_gap,
                      earnings="earnings_hour", sex="sex", weight="weight")
        console_print("--- GENDER PAY GAP ---", gap)
        g = compare(problem.original, problem.data,
                    lambda d: gini(d["earnings_month"], d["weight"]))
        console_print("--- GINI (monthly earnings) ---", g)
        ci = compare(problem.original, problem.data, mean_ci,
                     column="earnings_hour", by="location", weight="weight")
        console_print("--- MEAN HOURLY EARNINGS BY LOCATION ---", {
            k: v.round(2).to_dict(orient="records") for k, v in ci.items()
        })

    out = export_csv(problem, f"output/{name}_anonymised.csv")
    print(f"\nSaved anonymised data to {out}")
    print("\n=== END OF RUN ===\n")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    names = sys.argv[1:] or ["testdata", "ses"]
    configs = {"testdata": TESTDATA_CONFIG, "ses": SES_CONFIG}

    for name in names:
        if name not in configs:
            print(f"[ERROR] Unknown sample '{name}'. Choose from {sorted(configs)}.")
            return
        run_sample(name, configs[name])


if __name__ == "__main__":
    main()
