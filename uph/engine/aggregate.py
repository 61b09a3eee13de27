"""Consolidate canonical cycles into per-(operator, MO, category) aggregates.

The MO quantity is attached once per aggregate from the MO registry. It is
never summed over cycles: a group of twelve cycles against a 75-unit MO
still produced 75 units, not 900.
"""

import logging
from collections.abc import Sequence

import numpy as np
import pandas as pd

from uph.engine.models import AGGREGATE_COLUMNS, ANOMALY_COLUMNS, MO_COLUMNS
from uph.engine.registries import MORegistry
from uph.errors import RegistryUnavailable, UphEngineError
from uph.utils.transforms import join_ids, merge_datasets
from uph.utils.types import RejectionReason

logger = logging.getLogger(__name__)

AGGREGATE_KEYS = ["operator_id", "mo_key", "category"]
UNKNOWN_PRODUCT = "Unknown product"


def resolve_mo_context(registry: MORegistry, mo_keys: Sequence[str]) -> pd.DataFrame:
    """Look up every referenced MO once; unknown keys are simply absent."""
    keys = sorted(set(mo_keys))
    try:
        found = registry.lookup(keys)
    except UphEngineError:
        raise
    except (ConnectionError, TimeoutError, OSError) as exc:
        raise RegistryUnavailable("MO", exc) from exc

    found = found.reindex(columns=MO_COLUMNS)
    found["quantity"] = pd.to_numeric(found["quantity"], errors="coerce")
    found["mo_created_at"] = pd.to_datetime(found["mo_created_at"], utc=True, errors="coerce")
    # blank names count as missing
    for col in ("product_name", "routing_name"):
        found[col] = found[col].map(lambda v: (v.strip() or None) if isinstance(v, str) else None)
    found["product_name"] = found["product_name"].fillna(found["routing_name"]).fillna(UNKNOWN_PRODUCT)
    if found["mo_key"].duplicated().any():
        logger.warning("MO registry returned duplicate keys; keeping the first of each")
        found = found.drop_duplicates(subset=["mo_key"], keep="first")

    logger.info(f"Resolved {len(found)} of {len(keys)} MOs from registry")
    return found.reset_index(drop=True)


def aggregate_anomalies(
    rows: pd.DataFrame,
    reason: RejectionReason,
    stage: str,
    value: pd.Series | float,
    threshold: pd.Series | float,
) -> pd.DataFrame:
    """Turn rejected aggregate rows into anomaly rows and log each one."""
    if rows.empty:
        return pd.DataFrame(columns=ANOMALY_COLUMNS)

    out = rows.copy()
    out["reason"] = reason.value
    out["stage"] = stage
    out["value"] = value
    out["threshold"] = threshold
    out["excluded"] = True
    out["detail"] = [
        f"{reason.value}: value={v:.4g} threshold={t:.4g}" if pd.notna(v) else reason.value
        for v, t in zip(out["value"], out["threshold"])
    ]

    for row in out.itertuples(index=False):
        logger.warning(
            f"Rejected {row.mo_key} operator={row.operator_name} category={row.category}: "
            f"{row.detail}"
        )
    return out.reindex(columns=ANOMALY_COLUMNS)


def _group_cycles(cycles: pd.DataFrame) -> pd.DataFrame:
    return (
        cycles.groupby(AGGREGATE_KEYS, as_index=False)
        .agg(
            operator_name=("operator_name", "first"),
            total_duration_seconds=("duration_seconds", "sum"),
            cycle_count=("cycle_id", "size"),
            cycle_ids=("cycle_id", join_ids),
        )
    )


def aggregate_by_mo(
    cycles: pd.DataFrame,
    mo_context: pd.DataFrame,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Build MOAggregates; return (aggregates, anomalies).

    Groups whose MO is unknown or has no positive quantity are rejected as
    ``MissingMOQuantity``; groups without positive duration as
    ``ZeroDuration``.
    """
    if cycles.empty:
        return pd.DataFrame(columns=AGGREGATE_COLUMNS), pd.DataFrame(columns=ANOMALY_COLUMNS)

    grouped = _group_cycles(cycles)
    merged = merge_datasets(grouped, mo_context, on="mo_key", how="left")

    missing = merged["quantity"].isna() | (merged["quantity"] <= 0)
    missing_mo = aggregate_anomalies(
        merged[missing],
        RejectionReason.MISSING_MO_QUANTITY,
        stage="aggregate",
        value=merged.loc[missing, "quantity"],
        threshold=0.0,
    )

    ok = merged[~missing].copy()
    ok["quantity"] = ok["quantity"].astype(float)
    ok["duration_hours"] = ok["total_duration_seconds"] / 3600

    zero = ok["duration_hours"] <= 0
    zero_duration = aggregate_anomalies(
        ok[zero],
        RejectionReason.ZERO_DURATION,
        stage="aggregate",
        value=ok.loc[zero, "duration_hours"],
        threshold=0.0,
    )

    ok = ok[~zero].copy()
    ok["uph"] = ok["quantity"] / ok["duration_hours"]

    aggregates = (
        ok.reindex(columns=AGGREGATE_COLUMNS)
        .sort_values(AGGREGATE_KEYS, kind="mergesort")
        .reset_index(drop=True)
    )
    anomalies = _concat_anomalies([missing_mo, zero_duration])
    logger.info(
        f"Aggregated {len(cycles)} cycles into {len(aggregates)} MO aggregates "
        f"({len(anomalies)} rejected)"
    )
    return aggregates, anomalies


def check_quantity_once(aggregates: pd.DataFrame, mo_context: pd.DataFrame) -> pd.DataFrame:
    """Return (MO, operator) pairs whose attributed quantity is not exactly
    the MO quantity times the number of categories that operator touched.

    An empty result means no quantity was summed over cycles.
    """
    if aggregates.empty:
        return pd.DataFrame(columns=["mo_key", "operator_id", "attributed", "expected"])

    per_pair = (
        aggregates.groupby(["mo_key", "operator_id"], as_index=False)
        .agg(attributed=("quantity", "sum"), categories=("category", "nunique"))
    )
    per_pair = per_pair.merge(mo_context[["mo_key", "quantity"]], on="mo_key", how="left")
    per_pair["expected"] = per_pair["quantity"] * per_pair["categories"]
    bad = ~np.isclose(per_pair["attributed"], per_pair["expected"])
    return per_pair.loc[bad, ["mo_key", "operator_id", "attributed", "expected"]].reset_index(drop=True)


def _concat_anomalies(frames: list[pd.DataFrame]) -> pd.DataFrame:
    frames = [f for f in frames if not f.empty]
    if not frames:
        return pd.DataFrame(columns=ANOMALY_COLUMNS)
    return pd.concat(frames, ignore_index=True).reindex(columns=ANOMALY_COLUMNS)
