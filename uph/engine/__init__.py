"""UPH calculation engine: normalize, de-corrupt, categorize, aggregate, filter, average."""

from uph.engine.ingest import fetch_cycles
from uph.engine.transform import normalize_cycles, parse_duration
from uph.engine.corruption import detect_corruption
from uph.engine.categories import categorize_cycles, categorize_work_center
from uph.engine.aggregate import aggregate_by_mo, resolve_mo_context
from uph.engine.outliers import detect_cohort_outliers, filter_outliers
from uph.engine.windows import compute_uph_statistics
from uph.engine.reconcile import reconcile_work_orders
from uph.engine.pipeline import PipelineResult, run_pipeline
from uph.engine.store import Snapshot, UphStore
from uph.engine.jobs import JobHandle, JobStatus, RecomputeService
from uph.engine.models import (
    AnomalySchema,
    CanonicalCycleSchema,
    MOAggregateSchema,
    UphStatisticSchema,
)


def validate(df, schema_name: str = "observations") -> bool:
    """Run pandera validation against the given schema."""
    match schema_name:
        case "cycles":
            CanonicalCycleSchema.validate(df)
        case "observations":
            MOAggregateSchema.validate(df)
        case "statistics":
            UphStatisticSchema.validate(df)
        case "anomalies":
            AnomalySchema.validate(df)
        case other:
            raise ValueError(f"No schema registered for: {other}")
    return True
