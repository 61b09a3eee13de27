"""Common data transformation utilities."""

import pandas as pd

type ColumnMapping = dict[str, str]


def normalize_columns(df: pd.DataFrame, mapping: ColumnMapping | None = None) -> pd.DataFrame:
    """Normalize column names to snake_case and apply optional mapping."""
    df = df.copy()
    df.columns = [
        str(col).strip().lower().replace(" ", "_").replace("-", "_").replace("/", "_")
        for col in df.columns
    ]

    if mapping:
        df = df.rename(columns=mapping)

    return df


def merge_datasets(
    left: pd.DataFrame,
    right: pd.DataFrame,
    on: str | list[str],
    how: str = "left",
) -> pd.DataFrame:
    """Merge two datasets, refusing to fan out rows on a non-unique right key."""
    match how:
        case "left" | "inner":
            result = pd.merge(left, right, on=on, how=how, validate="many_to_one")
        case "right" | "outer":
            result = pd.merge(left, right, on=on, how=how)
        case other:
            raise ValueError(f"Unsupported merge type: {other}")

    return result


def join_ids(values: pd.Series) -> str:
    """Collapse a group's ids into one sorted, comma-separated string."""
    return ",".join(sorted({str(v) for v in values.dropna()}))
