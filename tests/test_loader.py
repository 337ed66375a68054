import pandas as pd
import pytest

from safemicro.core.errors import ParameterError
from safemicro.core.loader import load_sample, normalize_column_names, read_microdata
from safemicro.core.profiler import ColumnKind, DataProfiler


def test_normalize_column_names():
    df = pd.DataFrame([[1, 2, 3, 4]], columns=[" Age ", "Native-Country", "age", "%"])
    assert list(normalize_column_names(df).columns) == ["age", "native_country", "age_1", "col"]


def test_normalize_column_names_never_repeats_a_name():
    df = pd.DataFrame([[1, 2, 3]], columns=["a", "a", "a_1"])
    names = list(normalize_column_names(df).columns)
    assert len(set(names)) == 3
    assert names[:2] == ["a", "a_1"]


def test_read_microdata(tmp_path):
    path = tmp_path / "micro.csv"
    path.write_text("Sex;Age Group;Income\nf;1;10.5\nm;2;NA\n")
    df = read_microdata(path, sep=";")
    assert list(df.columns) == ["sex", "age_group", "income"]
    assert len(df) == 2
    assert df["income"].isna().sum() == 1


def test_read_microdata_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_microdata(tmp_path / "absent.csv")


def test_load_testdata():
    df = load_sample("testdata", n=500)
    assert len(df) == 500
    assert {"urbrur", "roof", "walls", "water", "sex", "age", "income", "sampling_weight"} <= set(df.columns)
    assert (df["sampling_weight"] > 0).all()
    # household variables are shared by all household members
    assert (df.groupby("ori_hid")["roof"].nunique() == 1).all()


def test_load_ses_is_deterministic():
    a = load_sample("ses", n=300, seed=1)
    b = load_sample("ses", n=300, seed=1)
    pd.testing.assert_frame_equal(a, b)
    assert set(a["sex"]) == {"male", "female"}


def test_unknown_sample():
    with pytest.raises(ParameterError):
        load_sample("census")


def test_profiler_kinds():
    df = load_sample("testdata", n=500)
    kinds = DataProfiler(df).infer_kinds()
    assert kinds["roof"] is ColumnKind.CATEGORICAL
    assert kinds["income"] is ColumnKind.NUMERIC
    summary = DataProfiler(df).summary_dict()
    assert summary["rows"] == 500
    assert "income" not in summary["suggested_key_vars"]


def test_profiler_key_variables():
    df = pd.DataFrame({
        "id": range(100),
        "region": ["n", "s", "e", "w"] * 25,
        "const": ["x"] * 100,
        "income": [float(i) * 1.5 for i in range(100)],
    })
    profiler = DataProfiler(df)
    assert profiler.infer_kind("id") is ColumnKind.IDENTIFIER
    assert profiler.infer_key_variables() == ["region"]


def test_download_adult_keeps_census_weight(tmp_path, monkeypatch):
    import runpy
    from pathlib import Path
    from types import SimpleNamespace

    import sklearn.datasets

    frame = pd.DataFrame(
        {
            "age": [25, 38],
            "fnlwgt": [226802.0, 89814.0],
            "education": ["11th", "HS-grad"],
            "class": ["<=50K", ">50K"],
        }
    )
    monkeypatch.setattr(
        sklearn.datasets, "fetch_openml", lambda **kwargs: SimpleNamespace(frame=frame)
    )
    monkeypatch.chdir(tmp_path)

    tool = Path(__file__).resolve().parents[1] / "tools" / "download_adult.py"
    runpy.run_path(str(tool), run_name="__main__")

    saved = pd.read_csv(tmp_path / "data" / "adult.csv")
    assert list(saved.columns) == ["age", "fnlwgt", "education", "income"]
    assert saved["fnlwgt"].tolist() == [226802.0, 89814.0]
