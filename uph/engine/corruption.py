"""Detect bulk-import corruption in canonical cycles.

Known bad imports wrote placeholder durations (5s, 10s, 15s) for many
distinct cycles of one MO. A real operator almost never repeats the same
sub-minute duration three times on one order, so such groups are excluded
from every later stage. The signature is a heuristic; both limits come from
:class:`uph.config.CorruptionConfig`.
"""

import logging

import pandas as pd

from uph.config import CorruptionConfig
from uph.engine.models import ANOMALY_COLUMNS
from uph.utils.transforms import join_ids
from uph.utils.types import RejectionReason

logger = logging.getLogger(__name__)

GROUP_KEYS = ["mo_key", "operator_id", "duration_seconds"]


def flag_corrupted(cycles: pd.DataFrame, config: CorruptionConfig) -> pd.DataFrame:
    """Return a copy of ``cycles`` with the ``corrupted`` column set."""
    df = cycles.copy()
    if df.empty:
        df["corrupted"] = pd.Series(dtype=bool)
        return df
    sizes = df.groupby(GROUP_KEYS)["cycle_id"].transform("size")
    df["corrupted"] = (df["duration_seconds"] <= config.max_duration_seconds) & (
        sizes >= config.min_repeats
    )
    return df


def _corruption_anomalies(flagged: pd.DataFrame, config: CorruptionConfig) -> pd.DataFrame:
    groups = (
        flagged.groupby(GROUP_KEYS, as_index=False)
        .agg(
            operator_name=("operator_name", "first"),
            cycle_count=("cycle_id", "size"),
            cycle_ids=("cycle_id", join_ids),
            work_centers=("work_center", join_ids),
        )
    )
    groups["reason"] = RejectionReason.CORRUPTED_DUPLICATE.value
    groups["stage"] = "corruption"
    groups["value"] = groups["duration_seconds"].astype(float)
    groups["threshold"] = float(config.max_duration_seconds)
    groups["total_duration_seconds"] = groups["duration_seconds"] * groups["cycle_count"]
    groups["excluded"] = True
    groups["detail"] = [
        f"{n} cycles of {d}s at {wc}"
        for n, d, wc in zip(groups["cycle_count"], groups["duration_seconds"], groups["work_centers"])
    ]
    return groups.reindex(columns=ANOMALY_COLUMNS)


def detect_corruption(
    cycles: pd.DataFrame,
    config: CorruptionConfig,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Split canonical cycles into (clean cycles, corruption anomalies).

    Every cycle of a flagged (MO, operator, duration) group is removed; the
    anomaly rows keep the group's cycle ids for audit.
    """
    df = flag_corrupted(cycles, config)
    flagged = df[df["corrupted"]]

    if flagged.empty:
        anomalies = pd.DataFrame(columns=ANOMALY_COLUMNS)
    else:
        anomalies = _corruption_anomalies(flagged, config)
        for row in anomalies.itertuples(index=False):
            logger.warning(
                f"Corrupted cycles excluded: {row.mo_key} operator={row.operator_name} "
                f"{row.detail} (ids {row.cycle_ids})"
            )

    clean = df[~df["corrupted"]].reset_index(drop=True)
    logger.info(
        f"Corruption check: {len(flagged)} of {len(df)} cycles excluded "
        f"in {len(anomalies)} groups"
    )
    return clean, anomalies
