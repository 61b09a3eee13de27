"""Column layouts and pandera schemas for the UPH engine frames."""

import pandera as pa
from pandera import Column, Check

from uph.utils.types import RejectionReason, WorkCenterCategory

CATEGORIES = [c.value for c in WorkCenterCategory]
REASONS = [r.value for r in RejectionReason]

RAW_CYCLE_FIELDS = [
    "cycle_id",
    "work_order_id",
    "mo_id",
    "operator_name",
    "work_center",
    "duration",
    "quantity_done",
    "state",
    "created_at",
]

CYCLE_COLUMNS = [
    "cycle_id",
    "work_order_id",
    "mo_key",
    "operator_id",
    "operator_name",
    "work_center",
    "duration_seconds",
    "quantity_done",
    "state",
    "created_at",
    "corrupted",
]

REJECTION_COLUMNS = ["stage", "cycle_id", "reason", "detail"]

MO_COLUMNS = ["mo_key", "quantity", "product_name", "routing_name", "mo_created_at"]

AGGREGATE_COLUMNS = [
    "operator_id",
    "operator_name",
    "mo_key",
    "category",
    "product_name",
    "routing_name",
    "mo_created_at",
    "quantity",
    "total_duration_seconds",
    "duration_hours",
    "uph",
    "cycle_count",
    "cycle_ids",
]

ANOMALY_COLUMNS = [
    "reason",
    "stage",
    "mo_key",
    "operator_id",
    "operator_name",
    "category",
    "product_name",
    "mo_created_at",
    "value",
    "threshold",
    "quantity",
    "total_duration_seconds",
    "cycle_count",
    "cycle_ids",
    "excluded",
    "detail",
]

STATISTIC_COLUMNS = [
    "product_name",
    "category",
    "operator_id",
    "operator_name",
    "window_days",
    "average_uph",
    "mo_count",
    "total_observations",
    "data_available",
    "reason",
    "methodology_version",
]

CanonicalCycleSchema = pa.DataFrameSchema(
    columns={
        "cycle_id": Column(str, nullable=False, unique=True),
        "mo_key": Column(str, Check.str_matches(r"\S"), nullable=False),
        "operator_id": Column(int, nullable=False),
        "operator_name": Column(str, nullable=False),
        "work_center": Column(str, nullable=False),
        "duration_seconds": Column(int, Check.greater_than(0)),
        "category": Column(str, Check.isin(CATEGORIES)),
        "corrupted": Column(bool),
    },
    coerce=True,
    strict=False,
)

MOAggregateSchema = pa.DataFrameSchema(
    columns={
        "operator_id": Column(int, nullable=False),
        "mo_key": Column(str, nullable=False),
        "category": Column(str, Check.isin(CATEGORIES)),
        "quantity": Column(float, Check.greater_than(0)),
        "total_duration_seconds": Column(int, Check.greater_than(0)),
        "duration_hours": Column(float, Check.greater_than(0)),
        "uph": Column(float, Check.greater_than(0)),
        "cycle_count": Column(int, Check.greater_than_or_equal_to(1)),
        "mo_created_at": Column("datetime64[ns, UTC]", nullable=True),
    },
    coerce=True,
    strict=False,
)

UphStatisticSchema = pa.DataFrameSchema(
    columns={
        "product_name": Column(str, nullable=False),
        "category": Column(str, Check.isin(CATEGORIES)),
        "operator_id": Column(int, nullable=False),
        "window_days": Column(int, Check.greater_than(0)),
        "average_uph": Column(float, Check.greater_than_or_equal_to(0)),
        "mo_count": Column(int, Check.greater_than_or_equal_to(0)),
        "total_observations": Column(int, Check.greater_than_or_equal_to(0)),
        "data_available": Column(bool),
    },
    checks=[
        Check(
            lambda df: (df["mo_count"] > 0) == df["data_available"],
            error="data_available must equal mo_count > 0",
        ),
    ],
    coerce=True,
    strict=False,
)

AnomalySchema = pa.DataFrameSchema(
    columns={
        "reason": Column(str, Check.isin(REASONS)),
        "stage": Column(str, nullable=False),
        "mo_key": Column(str, nullable=True),
        "excluded": Column(bool),
    },
    coerce=True,
    strict=False,
)
