"""Normalize raw work-cycle records into canonical cycles.

Durations arrive as seconds, ``HH:MM:SS`` strings, numeric strings, or
``{"seconds": ...}`` objects depending on which export produced them.
:func:`parse_duration` is the only place that interprets them, and it never
turns an unreadable value into zero.
"""

import logging
import math
import numbers
from collections.abc import Mapping

import pandas as pd

from uph.engine.models import CYCLE_COLUMNS, RAW_CYCLE_FIELDS, REJECTION_COLUMNS
from uph.engine.registries import OperatorRegistry, normalize_mo_key
from uph.errors import RegistryUnavailable, UphEngineError
from uph.utils.types import DurationResult, Err, Ok, RejectionReason

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("cycle_id", "operator_name", "work_center", "mo_key")


def _invalid(detail: str) -> Err:
    return Err(RejectionReason.INVALID_DURATION, detail)


def _hms_seconds(text: str) -> float | None:
    parts = text.split(":")
    if len(parts) != 3:
        return None
    try:
        hours, minutes = int(parts[0]), int(parts[1])
        seconds = float(parts[2])
    except ValueError:
        return None
    if hours < 0 or not 0 <= minutes < 60 or not 0 <= seconds < 60:
        return None
    return hours * 3600 + minutes * 60 + seconds


def parse_duration(value: object, _nested: bool = False) -> DurationResult:
    """Parse one raw duration into whole seconds, or say why it can't be."""
    match value:
        case None:
            return _invalid("duration missing")
        case bool():
            return _invalid(f"boolean duration: {value}")
        case numbers.Real():
            seconds = float(value)
        case str() if ":" in value:
            seconds = _hms_seconds(value.strip())
            if seconds is None:
                return _invalid(f"malformed HH:MM:SS duration: {value!r}")
        case str():
            try:
                seconds = float(value.strip())
            except ValueError:
                return _invalid(f"non-numeric duration: {value!r}")
        case Mapping() if not _nested and "seconds" in value:
            return parse_duration(value["seconds"], _nested=True)
        case _:
            return _invalid(f"unsupported duration shape: {type(value).__name__}")

    if math.isnan(seconds) or math.isinf(seconds):
        return _invalid(f"non-finite duration: {value!r}")
    rounded = int(round(seconds))
    if rounded <= 0:
        return _invalid(f"non-positive duration: {value!r}")
    return Ok(rounded)


def _clean_text(value: object) -> str:
    if value is None or (isinstance(value, float) and math.isnan(value)) or value is pd.NA:
        return ""
    return str(value).strip()


def _first_failure(result: DurationResult, fields: dict[str, str]) -> tuple[str, str] | None:
    if isinstance(result, Err):
        return result.reason.value, result.detail
    missing = [name for name in REQUIRED_FIELDS if not fields[name]]
    if missing:
        return RejectionReason.MISSING_FIELD.value, f"missing {', '.join(missing)}"
    return None


def _resolve_operators(registry: OperatorRegistry, names: list[str]) -> dict[str, int]:
    try:
        return registry.resolve(names)
    except UphEngineError:
        raise
    except (ConnectionError, TimeoutError, OSError) as exc:
        raise RegistryUnavailable("operator", exc) from exc


def _display_names(registry: OperatorRegistry, ids: list[int]) -> dict[int, str]:
    try:
        return registry.display_names(ids)
    except UphEngineError:
        raise
    except (ConnectionError, TimeoutError, OSError) as exc:
        raise RegistryUnavailable("operator", exc) from exc


def normalize_cycles(
    raw: pd.DataFrame,
    operators: OperatorRegistry,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Validate and coerce raw cycles; return (canonical cycles, rejections).

    Operator names are resolved to stable ids here, once, and replaced by
    the registry display name. A name the operator registry does not know
    is rejected rather than guessed.
    """
    columns = list(dict.fromkeys(RAW_CYCLE_FIELDS + list(raw.columns)))
    df = raw.reindex(columns=columns).reset_index(drop=True)
    for col in ("cycle_id", "operator_name", "work_center", "work_order_id"):
        df[col] = [_clean_text(v) for v in df[col]]
    df["mo_key"] = [normalize_mo_key(v) or "" for v in df["mo_id"]]

    durations = [parse_duration(v) for v in df["duration"]]
    failures = [
        _first_failure(result, fields)
        for result, fields in zip(durations, df[list(REQUIRED_FIELDS)].to_dict("records"))
    ]
    failed = pd.Series([f is not None for f in failures], index=df.index, dtype=bool)

    rejections = [
        {"stage": "normalize", "cycle_id": df.at[i, "cycle_id"] or None, "reason": f[0], "detail": f[1]}
        for i, f in enumerate(failures)
        if f is not None
    ]

    df["duration_seconds"] = [r.seconds if isinstance(r, Ok) else 0 for r in durations]
    df = df[~failed].copy()

    resolved = _resolve_operators(operators, sorted(df["operator_name"].unique().tolist()))
    df["operator_id"] = df["operator_name"].map(resolved)
    unresolved = df["operator_id"].isna()
    for cycle_id, name in zip(df.loc[unresolved, "cycle_id"], df.loc[unresolved, "operator_name"]):
        rejections.append({
            "stage": "normalize",
            "cycle_id": cycle_id,
            "reason": RejectionReason.UNRESOLVED_OPERATOR.value,
            "detail": f"operator {name!r} not in registry",
        })
    df = df[~unresolved].copy()

    df["operator_id"] = df["operator_id"].astype("int64")
    # display names come from the registry
    names = _display_names(operators, sorted(df["operator_id"].unique().tolist()))
    df["operator_name"] = df["operator_id"].map(names).fillna(df["operator_name"])
    df["duration_seconds"] = df["duration_seconds"].astype("int64")
    df["work_order_id"] = df["work_order_id"].where(df["work_order_id"] != "", None)
    df["quantity_done"] = pd.to_numeric(df["quantity_done"], errors="coerce")
    df["created_at"] = pd.to_datetime(df["created_at"], utc=True, errors="coerce", format="mixed")
    df["corrupted"] = False

    canonical = df[CYCLE_COLUMNS].reset_index(drop=True)
    rejected = pd.DataFrame(rejections, columns=REJECTION_COLUMNS)
    logger.info(
        f"Normalized {len(canonical)} of {len(raw)} cycles; "
        f"rejected {len(rejected)} ({_reason_counts(rejected)})"
    )
    return canonical, rejected


def _reason_counts(rejected: pd.DataFrame) -> str:
    if rejected.empty:
        return "none"
    counts = rejected["reason"].value_counts()
    return ", ".join(f"{reason}={count}" for reason, count in counts.items())
