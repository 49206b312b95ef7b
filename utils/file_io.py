import json
import pandas as pd
from pathlib import Path
from typing import Any, Dict


def save_dataframe(df: pd.DataFrame, path: Path, *, csv_copy: bool = False, index: bool = False) -> Path:
    """
    Save a DataFrame to Parquet for fast I/O with an optional CSV copy for human readability.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_parquet(path, index=index)

    if csv_copy:
        df.to_csv(path.with_suffix(".csv"), index=index)

    return path


def read_dataframe(path: Path, index_col=None) -> pd.DataFrame:
    """
    Load a DataFrame from Parquet/Excel/CSV/TSV based on file extension.
    """
    path = Path(path)
    suffix = path.suffix.lower()

    if suffix == ".parquet":
        df = pd.read_parquet(path)
        return df.set_index(index_col) if index_col is not None else df
    if suffix in {".xlsx", ".xls"}:
        return pd.read_excel(path, index_col=index_col)
    if suffix == ".csv":
        return pd.read_csv(path, index_col=index_col)
    if suffix in {".tsv", ".txt"}:
        return pd.read_csv(path, sep="\t", index_col=index_col)

    raise ValueError(f"Unsupported file extension for reading: {suffix}")


def save_json(payload: Dict[str, Any], path: Path) -> Path:
    """Write a JSON document, creating parent directories as needed."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        json.dump(payload, f, indent=2, default=_json_default)
    return path


def _json_default(obj):
    # numpy scalars expose .item(); arrays expose .tolist()
    if hasattr(obj, 'tolist'):
        return obj.tolist()
    if hasattr(obj, 'item'):
        return obj.item()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
