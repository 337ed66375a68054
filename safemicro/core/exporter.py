# safemicro/core/exporter.py

import logging
from pathlib import Path
from typing import Union

import pandas as pd

logger = logging.getLogger(__name__)


def extract_data(problem) -> pd.DataFrame:
    """Copy of the anonymised table, same columns as the input."""
    return problem.data[list(problem.original.columns)].copy()


def export_csv(problem, path: Union[str, Path], na_rep: str = "NA", sep: str = ",") -> Path:
    """Write the anonymised table; suppressed cells are written as `na_rep`."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    extract_data(problem).to_csv(path, index=False, na_rep=na_rep, sep=sep)
    logger.info("Exported %d records to %s", len(problem.data), path)
    return path
