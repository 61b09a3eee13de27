"""Reject implausible MO aggregates and flag cohort outliers for review."""

import logging

import numpy as np
import pandas as pd

from uph.config import OutlierConfig
from uph.engine.aggregate import _concat_anomalies, aggregate_anomalies
from uph.engine.models import ANOMALY_COLUMNS
from uph.utils.types import RejectionReason

logger = logging.getLogger(__name__)

COHORT_KEYS = ["product_name", "category", "operator_id"]


def _ceilings(categories: pd.Series, config: OutlierConfig) -> pd.Series:
    by_name = {category.value: ceiling for category, ceiling in config.max_uph.items()}
    return categories.map(by_name).astype(float).fillna(np.inf)


def filter_outliers(
    aggregates: pd.DataFrame,
    config: OutlierConfig,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Split aggregates into (observations, anomalies).

    The minimum-duration check is inclusive and compared in whole seconds,
    so exactly five minutes passes. An aggregate failing both checks is
    reported once, as ``DurationTooShort``.
    """
    if aggregates.empty:
        return aggregates.copy(), pd.DataFrame(columns=ANOMALY_COLUMNS)

    too_short = aggregates["total_duration_seconds"] < config.min_duration_seconds
    ceilings = _ceilings(aggregates["category"], config)
    too_high = ~too_short & (aggregates["uph"] > ceilings)

    short_rows = aggregate_anomalies(
        aggregates[too_short],
        RejectionReason.DURATION_TOO_SHORT,
        stage="outliers",
        value=aggregates.loc[too_short, "duration_hours"],
        threshold=config.min_duration_minutes / 60,
    )
    high_rows = aggregate_anomalies(
        aggregates[too_high],
        RejectionReason.UPH_TOO_HIGH,
        stage="outliers",
        value=aggregates.loc[too_high, "uph"],
        threshold=ceilings[too_high],
    )

    survivors = aggregates[~(too_short | too_high)].reset_index(drop=True)
    anomalies = _concat_anomalies([short_rows, high_rows])
    logger.info(
        f"Outlier filter: kept {len(survivors)} of {len(aggregates)} aggregates "
        f"(too short={int(too_short.sum())}, uph too high={int(too_high.sum())})"
    )
    return survivors, anomalies


def _iqr_bounds(values: pd.Series, multiplier: float) -> tuple[float, float, float]:
    q1, median, q3 = np.percentile(values.to_numpy(dtype=float), [25, 50, 75])
    spread = q3 - q1
    return q1 - multiplier * spread, q3 + multiplier * spread, median


def detect_cohort_outliers(observations: pd.DataFrame, config: OutlierConfig) -> pd.DataFrame:
    """Flag per-MO UPH values far outside their (product, category, operator) cohort.

    Flags are advisory: they never remove an observation and never change an
    average. Cohorts smaller than ``iqr_min_samples`` are not reviewed.
    """
    if observations.empty:
        return pd.DataFrame(columns=ANOMALY_COLUMNS)

    flagged = []
    for key, cohort in observations.groupby(COHORT_KEYS, sort=True):
        if len(cohort) < config.iqr_min_samples:
            continue
        lower, upper, median = _iqr_bounds(cohort["uph"], config.iqr_multiplier)
        outside = cohort[(cohort["uph"] < lower) | (cohort["uph"] > upper)].copy()
        if outside.empty:
            continue
        outside["threshold"] = np.where(outside["uph"] > upper, upper, lower)
        outside["detail"] = [
            f"uph {u:.4g} outside [{lower:.4g}, {upper:.4g}], cohort median {median:.4g} (n={len(cohort)})"
            for u in outside["uph"]
        ]
        flagged.append(outside)
        logger.warning(f"Cohort {key}: {len(outside)} of {len(cohort)} MOs outside IQR bounds")

    if not flagged:
        return pd.DataFrame(columns=ANOMALY_COLUMNS)

    out = pd.concat(flagged, ignore_index=True)
    out["reason"] = RejectionReason.COHORT_OUTLIER.value
    out["stage"] = "review"
    out["value"] = out["uph"]
    out["excluded"] = False
    return out.reindex(columns=ANOMALY_COLUMNS)
