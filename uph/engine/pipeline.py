"""Run the full UPH calculation from raw cycles to windowed statistics.

Every stage is a pure DataFrame transform. The only I/O is reading the
cycle feed and the two registries; nothing is published from here.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

import pandas as pd

from uph.config import EngineConfig
from uph.engine.aggregate import (
    _concat_anomalies,
    aggregate_by_mo,
    check_quantity_once,
    resolve_mo_context,
)
from uph.engine.categories import categorize_cycles
from uph.engine.corruption import detect_corruption
from uph.engine.ingest import _no_cancel, fetch_cycles
from uph.engine.models import (
    ANOMALY_COLUMNS,
    MOAggregateSchema,
    REJECTION_COLUMNS,
    STATISTIC_COLUMNS,
    UphStatisticSchema,
)
from uph.engine.outliers import filter_outliers
from uph.engine.reconcile import reconcile_work_orders
from uph.engine.registries import CycleFeed, MORegistry, OperatorRegistry
from uph.engine.transform import normalize_cycles
from uph.engine.windows import compute_uph_statistics, to_utc
from uph.errors import PublishGateFailed
from uph.utils.types import CancelCheck
from uph.utils.validators import validate_dataframe

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    as_of: pd.Timestamp
    methodology_version: str
    windows: tuple[int, ...]
    observations: pd.DataFrame
    anomalies: pd.DataFrame
    rejections: pd.DataFrame
    statistics: pd.DataFrame
    work_order_conflicts: pd.DataFrame
    counters: dict[str, int] = field(default_factory=dict)


def _attach_mo_context(anomalies: pd.DataFrame, mo_context: pd.DataFrame) -> pd.DataFrame:
    """Fill product, creation date and quantity on anomalies rejected before aggregation."""
    if anomalies.empty:
        return anomalies
    context = mo_context[["mo_key", "product_name", "mo_created_at", "quantity"]]
    merged = anomalies.drop(columns=["product_name", "mo_created_at", "quantity"]).merge(
        context, on="mo_key", how="left"
    )
    return merged.reindex(columns=ANOMALY_COLUMNS)


def _check_frame(df: pd.DataFrame, schema, name: str) -> None:
    if df.empty:
        return
    result = validate_dataframe(df, schema)
    if not result["valid"]:
        raise PublishGateFailed([f"{name}: {e}" for e in result["errors"]])


def run_pipeline(
    feed: CycleFeed,
    mo_registry: MORegistry,
    operator_registry: OperatorRegistry,
    config: EngineConfig,
    as_of: datetime | pd.Timestamp,
    windows: Sequence[int] | None = None,
    cancel_check: CancelCheck = _no_cancel,
) -> PipelineResult:
    """Execute every stage once and return the staged result.

    ``cancel_check`` is called between stages and between feed pages; it
    cancels the run by raising.
    """
    as_of = to_utc(as_of)
    windows = tuple(windows) if windows is not None else config.windows
    for window_days in windows:
        config.check_window(window_days)

    raw, duplicates = fetch_cycles(
        feed, state=config.feed.state, page_size=config.feed.page_size, cancel_check=cancel_check
    )
    cancel_check()

    canonical, invalid = normalize_cycles(raw, operator_registry)
    conflicts = reconcile_work_orders(canonical)
    cancel_check()

    clean, corrupted = detect_corruption(canonical, config.corruption)
    categorized, unmapped = categorize_cycles(clean, config.categories)
    cancel_check()

    # corrupted cycles need MO context too, for anomaly review
    mo_context = resolve_mo_context(mo_registry, canonical["mo_key"].tolist())
    aggregates, unaggregated = aggregate_by_mo(categorized, mo_context)

    violations = check_quantity_once(aggregates, mo_context)
    if not violations.empty:
        raise PublishGateFailed([
            f"{r.mo_key} operator {r.operator_id}: attributed {r.attributed} != expected {r.expected}"
            for r in violations.itertuples(index=False)
        ])
    cancel_check()

    observations, outliers = filter_outliers(aggregates, config.outliers)
    _check_frame(observations, MOAggregateSchema, "observations")

    anomalies = _concat_anomalies([_attach_mo_context(corrupted, mo_context), unaggregated, outliers])
    rejections = pd.concat(
        [f for f in (duplicates, invalid, unmapped) if not f.empty] or [pd.DataFrame(columns=REJECTION_COLUMNS)],
        ignore_index=True,
    )
    cancel_check()

    stats_frames = [
        compute_uph_statistics(observations, anomalies, w, as_of, config.methodology_version)
        for w in windows
    ]
    stats_frames = [f for f in stats_frames if not f.empty]
    statistics = (
        pd.concat(stats_frames, ignore_index=True)
        if stats_frames
        else pd.DataFrame(columns=STATISTIC_COLUMNS)
    )
    _check_frame(statistics, UphStatisticSchema, "statistics")

    counters = {
        "cycles_fetched": len(raw) + len(duplicates),
        "cycles_canonical": len(canonical),
        "cycles_corrupted": len(canonical) - len(clean),
        "cycles_categorized": len(categorized),
        "mos_resolved": len(mo_context),
        "aggregates": len(aggregates),
        "observations": len(observations),
        "record_rejections": len(rejections),
        "aggregate_rejections": len(anomalies),
        "work_order_conflicts": len(conflicts),
        "statistics": len(statistics),
    }
    logger.info(
        f"Pipeline complete as of {as_of:%Y-%m-%d %H:%M}: "
        + ", ".join(f"{k}={v}" for k, v in counters.items())
    )
    return PipelineResult(
        as_of=as_of,
        methodology_version=config.methodology_version,
        windows=windows,
        observations=observations,
        anomalies=anomalies,
        rejections=rejections,
        statistics=statistics,
        work_order_conflicts=conflicts,
        counters=counters,
    )
