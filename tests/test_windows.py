"""Tests for rolling-window statistics."""

from datetime import timedelta

import pandas as pd
import pytest

from conftest import NOW
from uph.engine.windows import ALL_FILTERED, compute_uph_statistics, select_window
from uph.utils.types import RejectionReason


def observation(mo_key, uph, days_ago=1, product="Duffel 60L", category="Assembly", operator_id=2, cycles=1):
    return {
        "operator_id": operator_id,
        "operator_name": f"op{operator_id}",
        "mo_key": mo_key,
        "category": category,
        "product_name": product,
        "mo_created_at": pd.Timestamp(NOW - timedelta(days=days_ago)),
        "quantity": uph,
        "total_duration_seconds": 3600,
        "duration_hours": 1.0,
        "uph": float(uph),
        "cycle_count": cycles,
    }


def stats(observations, anomalies=None, window_days=30, **filters):
    return compute_uph_statistics(
        pd.DataFrame(observations),
        pd.DataFrame(anomalies or []),
        window_days,
        NOW,
        "test-v1",
        **filters,
    )


class TestAverageOfRates:

    def test_scenario_c_average_of_per_mo_rates(self):
        result = stats([observation("MO1", 10, cycles=1), observation("MO2", 20, cycles=3)])

        assert len(result) == 1
        row = result.iloc[0]
        assert row["average_uph"] == pytest.approx(15.0)
        assert row["mo_count"] == 2
        assert row["total_observations"] == 4
        assert row["data_available"]
        assert row["methodology_version"] == "test-v1"

    def test_long_mo_does_not_dominate(self):
        """50 units in 3h combined would be 16.7; the per-MO average stays 15."""
        short = observation("MO1", 10)
        long = {**observation("MO2", 20), "quantity": 40, "total_duration_seconds": 7200, "duration_hours": 2.0}
        result = stats([short, long])
        assert result["average_uph"].iloc[0] == pytest.approx(15.0)

    def test_grouped_by_product_category_operator(self):
        result = stats([
            observation("MO1", 10),
            observation("MO2", 30, operator_id=3),
            observation("MO3", 50, category="Cutting"),
            observation("MO4", 70, product="Tote"),
        ])
        assert len(result) == 4
        assert result[["product_name", "category", "operator_id"]].duplicated().sum() == 0

    def test_filters(self):
        rows = [observation("MO1", 10), observation("MO2", 30, operator_id=3), observation("MO3", 50, category="Cutting")]
        assert stats(rows, operator_id=3)["operator_id"].tolist() == [3]
        assert stats(rows, category="cutting")["category"].tolist() == ["Cutting"]
        assert stats(rows, product_name="Nothing").empty


class TestWindowMembership:

    def test_181_days_excluded_from_180_window(self):
        rows = [observation("OLD", 10, days_ago=181)]
        assert stats(rows, window_days=180).empty
        assert len(select_window(pd.DataFrame(rows), None, NOW)) == 1

    def test_window_is_inclusive_at_start(self):
        edge = observation("EDGE", 10, days_ago=30)
        past = {**observation("PAST", 10), "mo_created_at": pd.Timestamp(NOW - timedelta(days=30, seconds=1))}
        result = stats([edge, past], window_days=30)
        assert result["mo_count"].tolist() == [1]

    def test_mo_without_creation_date_never_in_bounded_window(self):
        row = {**observation("MO1", 10), "mo_created_at": pd.NaT}
        assert stats([row]).empty


class TestFilteredGroups:

    def test_all_rejected_group_reports_reason(self):
        rejected = {
            **observation("MO9", 400),
            "reason": RejectionReason.UPH_TOO_HIGH.value,
            "excluded": True,
        }
        result = stats([observation("MO1", 10)], anomalies=[rejected, {**rejected, "operator_id": 3}])

        by_operator = result.set_index("operator_id")
        assert by_operator.loc[2, "data_available"]
        assert not by_operator.loc[3, "data_available"]
        assert by_operator.loc[3, "reason"] == ALL_FILTERED
        assert by_operator.loc[3, "mo_count"] == 0
        assert by_operator.loc[3, "average_uph"] == 0.0

    def test_corruption_rejections_do_not_count_as_outliers(self):
        corrupted = {**observation("MO9", 400), "reason": RejectionReason.CORRUPTED_DUPLICATE.value}
        assert stats([], anomalies=[corrupted]).empty

    def test_deterministic_order(self):
        rows = [observation("MO2", 20, operator_id=3), observation("MO1", 10, product="Alpha")]
        first = stats(rows)
        second = stats(list(reversed(rows)))
        assert first.to_json() == second.to_json()
