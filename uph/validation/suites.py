"""Expectation suites for the frames a recompute publishes.

These are the quality contract a staged snapshot must meet before it
replaces the published one. The pandera schemas check types and row
rules inside the pipeline; these suites restate the contract in the form
the publish gate runs.
"""

from uph.config import OutlierConfig
from uph.engine.models import CATEGORIES

type ExpectationConfig = dict[str, str | dict]
type SuiteConfig = list[ExpectationConfig]
type FrameName = str


def _exists(column: str) -> ExpectationConfig:
    return {"expectation_type": "expect_column_to_exist", "kwargs": {"column": column}}


def _not_null(column: str) -> ExpectationConfig:
    return {"expectation_type": "expect_column_values_to_not_be_null", "kwargs": {"column": column}}


_SUITES: dict[FrameName, SuiteConfig] = {
    "statistics": [
        _exists("product_name"),
        _exists("average_uph"),
        _not_null("product_name"),
        _not_null("operator_id"),
        {
            "expectation_type": "expect_column_values_to_be_in_set",
            "kwargs": {"column": "category", "value_set": CATEGORIES},
        },
        {
            "expectation_type": "expect_column_values_to_be_between",
            "kwargs": {"column": "average_uph", "min_value": 0},
        },
        {
            "expectation_type": "expect_column_values_to_be_between",
            "kwargs": {"column": "mo_count", "min_value": 0},
        },
        {
            "expectation_type": "expect_column_values_to_be_in_set",
            "kwargs": {"column": "window_days", "value_set": [7, 30, 180]},
        },
    ],
    "observations": [
        _exists("uph"),
        _not_null("mo_key"),
        _not_null("operator_id"),
        _not_null("quantity"),
        {
            "expectation_type": "expect_column_values_to_be_in_set",
            "kwargs": {"column": "category", "value_set": CATEGORIES},
        },
        {
            "expectation_type": "expect_compound_columns_to_be_unique",
            "kwargs": {"column_list": ["operator_id", "mo_key", "category"]},
        },
    ],
}


def build_suite(
    name: FrameName,
    outliers: OutlierConfig | None = None,
    windows: tuple[int, ...] | None = None,
) -> SuiteConfig:
    """Return the expectation list for a published frame.

    With ``outliers`` the observation suite also asserts the outlier
    thresholds that produced it, so a snapshot can't be published with a
    rate or duration the filter should have removed.
    """
    if name not in _SUITES:
        raise ValueError(f"No expectation suite for frame: {name}")

    suite = []
    for expectation in _SUITES[name]:
        if windows and expectation["kwargs"].get("column") == "window_days":
            expectation = {**expectation, "kwargs": {"column": "window_days", "value_set": list(windows)}}
        suite.append(expectation)

    if name == "observations" and outliers is not None:
        suite.append({
            "expectation_type": "expect_column_values_to_be_between",
            "kwargs": {"column": "total_duration_seconds", "min_value": outliers.min_duration_seconds},
        })
        suite.append({
            "expectation_type": "expect_column_values_to_be_between",
            "kwargs": {"column": "uph", "min_value": 0, "max_value": max(outliers.max_uph.values())},
        })
    return suite
