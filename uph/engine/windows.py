"""Rolling-window UPH statistics over surviving MO observations.

Each statistic is an average of per-MO rates. A long MO and a short one
count equally; rates are never recombined from summed quantity and summed
duration.
"""

import logging
from datetime import datetime

import pandas as pd

from uph.engine.models import STATISTIC_COLUMNS
from uph.engine.outliers import COHORT_KEYS
from uph.utils.types import OUTLIER_REASONS, WorkCenterCategory, parse_category

logger = logging.getLogger(__name__)

NO_DATA = "no data"
ALL_FILTERED = "all data filtered as outliers"


def to_utc(value: datetime | str | pd.Timestamp) -> pd.Timestamp:
    ts = pd.Timestamp(value)
    return ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")


def select_window(
    frame: pd.DataFrame,
    window_days: int | None,
    as_of: pd.Timestamp,
    date_col: str = "mo_created_at",
) -> pd.DataFrame:
    """Rows whose MO creation date lies in ``[as_of - window_days, as_of]``.

    ``None`` means unbounded. Rows without a creation date never fall inside
    a bounded window.
    """
    if window_days is None or frame.empty:
        return frame
    as_of = to_utc(as_of)
    start = as_of - pd.Timedelta(days=window_days)
    dates = pd.to_datetime(frame[date_col], utc=True, errors="coerce")
    return frame[(dates >= start) & (dates <= as_of)]


def apply_filters(
    frame: pd.DataFrame,
    product_name: str | None = None,
    category: str | WorkCenterCategory | None = None,
    operator_id: int | None = None,
) -> pd.DataFrame:
    mask = pd.Series(True, index=frame.index)
    if product_name is not None:
        mask &= frame["product_name"] == product_name
    if category is not None:
        mask &= frame["category"] == parse_category(category).value
    if operator_id is not None:
        mask &= frame["operator_id"] == operator_id
    return frame[mask]


def no_data_row(
    window_days: int,
    methodology_version: str,
    reason: str = NO_DATA,
    product_name: str | None = None,
    category: str | None = None,
    operator_id: int | None = None,
    operator_name: str | None = None,
) -> dict[str, object]:
    return {
        "product_name": product_name,
        "category": category,
        "operator_id": operator_id,
        "operator_name": operator_name,
        "window_days": window_days,
        "average_uph": 0.0,
        "mo_count": 0,
        "total_observations": 0,
        "data_available": False,
        "reason": reason,
        "methodology_version": methodology_version,
    }


def _available(observations: pd.DataFrame) -> pd.DataFrame:
    stats = (
        observations.groupby(COHORT_KEYS, as_index=False)
        .agg(
            operator_name=("operator_name", "first"),
            average_uph=("uph", "mean"),
            mo_count=("mo_key", "nunique"),
            total_observations=("cycle_count", "sum"),
        )
    )
    stats["data_available"] = True
    stats["reason"] = None
    return stats


def _filtered_only(rejected: pd.DataFrame, available: pd.DataFrame) -> pd.DataFrame:
    """Groups that had aggregates in the window but lost all of them to outlier checks."""
    if rejected.empty:
        return pd.DataFrame(columns=COHORT_KEYS + ["operator_name"])
    groups = rejected.groupby(COHORT_KEYS, as_index=False).agg(operator_name=("operator_name", "first"))
    if available.empty:
        return groups
    seen = set(available[COHORT_KEYS].itertuples(index=False, name=None))
    keep = [key not in seen for key in groups[COHORT_KEYS].itertuples(index=False, name=None)]
    return groups[keep]


def compute_uph_statistics(
    observations: pd.DataFrame,
    anomalies: pd.DataFrame,
    window_days: int,
    as_of: datetime | pd.Timestamp,
    methodology_version: str,
    product_name: str | None = None,
    category: str | WorkCenterCategory | None = None,
    operator_id: int | None = None,
) -> pd.DataFrame:
    """Average per-MO UPH per (product, category, operator) within the window.

    Groups measured in the window whose every aggregate was rejected as an
    outlier are reported with ``data_available=False`` so callers can tell
    them apart from groups that were never measured.
    """
    as_of = to_utc(as_of)
    window_obs = apply_filters(
        select_window(observations, window_days, as_of), product_name, category, operator_id
    )

    outliers = anomalies
    if not anomalies.empty:
        outliers = anomalies[anomalies["reason"].isin([r.value for r in OUTLIER_REASONS])]
        outliers = apply_filters(
            select_window(outliers, window_days, as_of), product_name, category, operator_id
        )
        outliers = outliers.dropna(subset=COHORT_KEYS)

    available = _available(window_obs) if not window_obs.empty else pd.DataFrame()
    filtered = _filtered_only(outliers, available)

    frames = []
    if not available.empty:
        frames.append(available)
    if not filtered.empty:
        filtered = filtered.assign(
            average_uph=0.0,
            mo_count=0,
            total_observations=0,
            data_available=False,
            reason=ALL_FILTERED,
        )
        frames.append(filtered)

    if not frames:
        return pd.DataFrame(columns=STATISTIC_COLUMNS)

    stats = pd.concat(frames, ignore_index=True)
    stats["window_days"] = window_days
    stats["methodology_version"] = methodology_version
    stats["operator_id"] = stats["operator_id"].astype("int64")
    stats["mo_count"] = stats["mo_count"].astype("int64")
    stats["total_observations"] = stats["total_observations"].astype("int64")
    stats["average_uph"] = stats["average_uph"].astype(float)
    stats["data_available"] = stats["data_available"].astype(bool)

    stats = stats.sort_values(COHORT_KEYS, kind="mergesort").reset_index(drop=True)
    logger.info(
        f"Window {window_days}d as of {as_of:%Y-%m-%d}: {int(stats['data_available'].sum())} groups "
        f"with data, {int((~stats['data_available']).sum())} filtered out"
    )
    return stats.reindex(columns=STATISTIC_COLUMNS)
