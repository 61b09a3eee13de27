"""Shared type definitions for the UPH engine."""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

type RawRecord = dict[str, object]
type CancelCheck = Callable[[], None]
type Clock = Callable[[], datetime]
type OperatorId = int
type MOKey = str


class WorkCenterCategory(StrEnum):
    CUTTING = "Cutting"
    ASSEMBLY = "Assembly"
    PACKAGING = "Packaging"


class RejectionReason(StrEnum):
    INVALID_DURATION = "InvalidDuration"
    MISSING_FIELD = "MissingField"
    DUPLICATE_CYCLE = "DuplicateCycle"
    UNRESOLVED_OPERATOR = "UnresolvedOperator"
    CORRUPTED_DUPLICATE = "CorruptedDuplicate"
    UNMAPPED_WORK_CENTER = "UnmappedWorkCenter"
    MISSING_MO_QUANTITY = "MissingMOQuantity"
    ZERO_DURATION = "ZeroDuration"
    DURATION_TOO_SHORT = "DurationTooShort"
    UPH_TOO_HIGH = "UphTooHigh"
    COHORT_OUTLIER = "CohortOutlier"


class JobState(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


OUTLIER_REASONS = frozenset({
    RejectionReason.DURATION_TOO_SHORT,
    RejectionReason.UPH_TOO_HIGH,
})


@dataclass(frozen=True)
class Ok:
    seconds: int


@dataclass(frozen=True)
class Err:
    reason: RejectionReason
    detail: str


type DurationResult = Ok | Err


def parse_category(value: str | WorkCenterCategory | None) -> WorkCenterCategory | None:
    """Accept a category by value, case-insensitively."""
    if value is None or isinstance(value, WorkCenterCategory):
        return value
    match str(value).strip().lower():
        case "cutting":
            return WorkCenterCategory.CUTTING
        case "assembly":
            return WorkCenterCategory.ASSEMBLY
        case "packaging":
            return WorkCenterCategory.PACKAGING
        case other:
            raise ValueError(f"Unknown work-center category: {other}")
