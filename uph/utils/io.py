"""File I/O utilities for reading registry extracts and writing snapshots."""

from pathlib import Path

import pandas as pd

type FilePath = str | Path


def read_table(path: FilePath) -> pd.DataFrame:
    """Read a single extract file, choosing the reader from its suffix.

    Values are kept as read (strings for CSV) so the normalizer sees the
    same shapes the upstream export produced.
    """
    path = Path(path)

    match path.suffix:
        case ".csv":
            return pd.read_csv(path, dtype=str, keep_default_na=False)
        case ".json":
            return pd.read_json(path, orient="records", dtype=False, convert_dates=False)
        case ".parquet":
            return pd.read_parquet(path)
        case ext:
            raise ValueError(f"Unsupported extract format: {ext}")


def write_output(df: pd.DataFrame, path: FilePath, fmt: str = "csv") -> Path:
    """Write a DataFrame to the specified format."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    match fmt:
        case "csv":
            df.to_csv(path, index=False)
        case "parquet":
            df.to_parquet(path, index=False)
        case "json":
            df.to_json(path, orient="records", indent=2, date_format="iso")
        case other:
            raise ValueError(f"Unsupported output format: {other}")

    return path


def read_output(path: FilePath, fmt: str = "csv") -> pd.DataFrame:
    """Read back a frame written by :func:`write_output`."""
    path = Path(path)

    match fmt:
        case "csv":
            return pd.read_csv(path)
        case "parquet":
            return pd.read_parquet(path)
        case "json":
            return pd.read_json(path, orient="records", convert_dates=False)
        case other:
            raise ValueError(f"Unsupported output format: {other}")
