"""Great Expectations publish gate for staged snapshots.

great_expectations is imported only when the gate runs, so an engine with
the gate disabled never pays for loading it.
"""

import logging

import pandas as pd

from uph.config import OutlierConfig
from uph.engine.store import Snapshot
from uph.errors import PublishGateFailed
from uph.validation.suites import SuiteConfig, build_suite

type ValidationStatus = str  # "passed" | "warning" | "failed"

logger = logging.getLogger(__name__)


def _expectation_class_name(expectation_type: str) -> str:
    """``expect_column_values_to_not_be_null`` -> ``ExpectColumnValuesToNotBeNull``."""
    return "".join(part.capitalize() for part in expectation_type.split("_"))


def _get_batch(context, name: str, df: pd.DataFrame):
    source = context.data_sources.add_pandas(f"uph_{name}")
    asset = source.add_dataframe_asset(name=name)
    definition = asset.add_batch_definition_whole_dataframe(f"{name}_whole")
    return definition.get_batch(batch_parameters={"dataframe": df})


def run_frame_expectations(
    name: str,
    df: pd.DataFrame,
    suite: SuiteConfig,
    strict: bool = True,
    context=None,
) -> dict[str, ValidationStatus | int | list[str]]:
    """Run one suite against one frame and summarize the outcome."""
    import great_expectations as gx

    context = context or gx.get_context(mode="ephemeral")
    batch = _get_batch(context, name, df)

    failed_expectations: list[str] = []
    total = 0
    passed = 0

    for expectation in suite:
        total += 1
        expectation_type = expectation["expectation_type"]
        kwargs = expectation.get("kwargs", {})

        expectation_cls = getattr(gx.expectations, _expectation_class_name(expectation_type), None)
        if expectation_cls is None:
            logger.warning(f"Unknown expectation: {expectation_type}")
            failed_expectations.append(f"{expectation_type}: not supported")
            continue

        result = batch.validate(expectation_cls(**kwargs))
        if result.success:
            passed += 1
        else:
            failed_expectations.append(
                f"{name}.{expectation_type}({kwargs}): "
                f"{result.result.get('unexpected_count', '?')} failures"
            )

    status: ValidationStatus
    match total - passed:
        case 0:
            status = "passed"
        case n if n <= 2 and not strict:
            status = "warning"
        case _:
            status = "failed"

    logger.info(f"{name}: {passed}/{total} expectations passed ({status})")
    return {
        "frame": name,
        "status": status,
        "total": total,
        "passed": passed,
        "failed_expectations": failed_expectations,
    }


def run_publish_gate(snapshot: Snapshot, outliers: OutlierConfig | None = None) -> list[dict]:
    """Validate a staged snapshot; raise :class:`PublishGateFailed` if any suite fails."""
    import great_expectations as gx

    context = gx.get_context(mode="ephemeral")
    frames = {
        "statistics": build_suite("statistics", windows=snapshot.windows),
        "observations": build_suite("observations", outliers=outliers),
    }

    results = []
    for name, suite in frames.items():
        df = getattr(snapshot, name)
        if df.empty:
            logger.info(f"{name}: empty, expectations skipped")
            continue
        results.append(run_frame_expectations(name, df, suite, strict=True, context=context))

    failed = [msg for r in results if r["status"] == "failed" for msg in r["failed_expectations"]]
    if failed:
        raise PublishGateFailed(failed)
    logger.info(f"Publish gate passed for snapshot {snapshot.job_id}")
    return results
