from pathlib import Path
import sys

import pandas as pd
import streamlit as st

# Ensure project root is on sys.path so "safemicro" imports work
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from safemicro.core.config import PipelineConfig
from safemicro.core.errors import SdcError
from safemicro.core.loader import load_sample, read_microdata
from safemicro.core.pipeline import run_pipeline, stage_summary
from safemicro.core.profiler import DataProfiler


def pct(x: float) -> str:
    return f"{x:.2f}%"


@st.cache_data
def load_data(source: str) -> pd.DataFrame:
    if source in ("testdata", "ses"):
        return load_sample(source)
    return read_microdata(ROOT / "data" / "adult.csv")


def show_profile(df: pd.DataFrame, source: str) -> dict:
    profiler = DataProfiler(df)
    summary = profiler.summary_dict()

    st.subheader("Dataset profile")

    c1, c2, c3 = st.columns(3)
    c1.metric("Rows", summary["rows"])
    c2.metric("Columns", summary["cols"])
    c3.metric("Source", source)

    with st.expander("Column kinds", expanded=False):
        st.dataframe(
            pd.DataFrame.from_dict(summary["kinds"], orient="index", columns=["kind"])
        )

    with st.expander("Missing / unique values per column", expanded=False):
        st.dataframe(
            pd.DataFrame({"missing": summary["missing"], "nunique": summary["unique"]})
        )

    st.markdown("Suggested key variables (categorical, inferred from uniqueness):")
    st.code(summary["suggested_key_vars"])

    return summary


def show_stages(problem) -> None:
    st.subheader("Risk and utility after each stage")

    rows = stage_summary(problem)
    st.dataframe(pd.DataFrame(rows).set_index("stage"))

    first, last = problem.history[0]["risk"], problem.history[-1]["risk"]
    c1, c2, c3 = st.columns(3)
    c1.metric("k-violations", last["k_violations"],
              delta=last["k_violations"] - first["k_violations"], delta_color="inverse")
    c2.metric("Expected re-identifications", f"{last['expected_reidentifications']:.1f}")
    c3.metric("Global risk", pct(last["global_risk_pct"]),
              delta=f"{last['global_risk_pct'] - first['global_risk_pct']:.2f}",
              delta_color="inverse")

    if problem.suppressed:
        st.markdown("Suppressed cells per key variable:")
        st.table(pd.DataFrame.from_dict(problem.suppressed, orient="index", columns=["cells"]))

    if problem.pram_changes:
        st.markdown("Records changed by PRAM:")
        st.table(pd.DataFrame.from_dict(problem.pram_changes, orient="index", columns=["records"]))

    st.markdown("Final anonymised dataset sample:")
    st.dataframe(problem.data.head(50))


def main():
    st.set_page_config(
        page_title="SafeMicro – Disclosure Risk Dashboard",
        layout="wide",
    )

    st.title("SafeMicro – Statistical Disclosure Control")

    source = st.sidebar.selectbox("Data set", ["testdata", "ses", "adult.csv"])
    df = load_data(source)
    summary = show_profile(df, source)
    numeric_cols = [c for c, kind in summary["kinds"].items() if kind == "numeric"]

    st.sidebar.header("Configuration")
    key_vars = st.sidebar.multiselect(
        "Categorical key variables", options=list(df.columns),
        default=summary["suggested_key_vars"][:5],
    )
    num_vars = st.sidebar.multiselect("Numeric key variables", options=numeric_cols)
    weight_var = st.sidebar.selectbox("Weight variable", options=[None] + numeric_cols)
    pram_vars = st.sidebar.multiselect("PRAM variables", options=list(df.columns))

    k_value = st.sidebar.slider("k for k-anonymity", min_value=2, max_value=20, value=3)
    group_size = st.sidebar.slider("Microaggregation group size", min_value=2, max_value=10, value=3)
    noise_method = st.sidebar.selectbox("Noise", options=["correlated", "additive", None])
    noise = st.sidebar.slider("Noise magnitude (%)", min_value=0, max_value=150, value=20)
    seed = st.sidebar.number_input("Seed", value=42, step=1)

    if st.sidebar.button("Run pipeline"):
        config = PipelineConfig(
            key_vars=key_vars,
            num_vars=num_vars,
            weight_var=weight_var,
            pram_vars=pram_vars,
            k=k_value,
            group_size=group_size,
            noise_method=noise_method,
            noise_magnitude=float(noise),
            seed=int(seed),
        )
        try:
            problem = run_pipeline(df, config)
        except SdcError as exc:
            st.error(str(exc))
            return

        show_stages(problem)

        csv_bytes = problem.data.to_csv(index=False, na_rep="NA").encode("utf-8")
        st.download_button(
            label="Download anonymised CSV",
            data=csv_bytes,
            file_name=f"{source.split('.')[0]}_anonymised_k{k_value}.csv",
            mime="text/csv",
        )


if __name__ == "__main__":
    main()
