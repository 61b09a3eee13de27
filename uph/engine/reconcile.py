"""Check the work-order to MO relationship in the cycle feed.

A work order belongs to exactly one MO, but the feed does not enforce it.
Conflicting work orders are reported, not repaired: the cycles stay keyed
by the MO reference they carry.
"""

import logging

import pandas as pd

from uph.utils.transforms import join_ids

logger = logging.getLogger(__name__)

CONFLICT_COLUMNS = ["work_order_id", "mo_keys", "mo_count", "cycle_count"]


def reconcile_work_orders(cycles: pd.DataFrame) -> pd.DataFrame:
    """Return work orders whose cycles reference more than one MO."""
    linked = cycles.dropna(subset=["work_order_id"])
    if linked.empty:
        return pd.DataFrame(columns=CONFLICT_COLUMNS)

    per_wo = (
        linked.groupby("work_order_id", as_index=False)
        .agg(
            mo_keys=("mo_key", join_ids),
            mo_count=("mo_key", "nunique"),
            cycle_count=("cycle_id", "size"),
        )
    )
    conflicts = per_wo[per_wo["mo_count"] > 1].sort_values("work_order_id").reset_index(drop=True)

    for row in conflicts.itertuples(index=False):
        logger.warning(
            f"Work order {row.work_order_id} maps to {row.mo_count} MOs ({row.mo_keys}) "
            f"across {row.cycle_count} cycles"
        )
    logger.info(f"WO/MO reconcile: {len(per_wo)} work orders, {len(conflicts)} conflicting")
    return conflicts[CONFLICT_COLUMNS]
