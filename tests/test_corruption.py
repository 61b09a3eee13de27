"""Tests for the bulk-import corruption signature and work-center categories."""

import pandas as pd
import pytest

from uph.config import DEFAULT_CATEGORY_KEYWORDS, CorruptionConfig
from uph.engine import validate
from uph.engine.categories import categorize_cycles, categorize_work_center
from uph.engine.corruption import detect_corruption, flag_corrupted
from uph.utils.types import RejectionReason, WorkCenterCategory


def canonical(rows):
    """rows: (cycle_id, mo_key, operator_id, duration_seconds[, work_center])"""
    records = []
    for row in rows:
        cycle_id, mo_key, operator_id, seconds, *rest = row
        records.append({
            "cycle_id": cycle_id,
            "mo_key": mo_key,
            "operator_id": operator_id,
            "operator_name": f"op{operator_id}",
            "work_center": rest[0] if rest else "Sewing",
            "duration_seconds": seconds,
            "corrupted": False,
        })
    return pd.DataFrame(records)


# =====================================================================
# corruption detection
# =====================================================================

class TestCorruption:

    def test_five_identical_five_second_cycles_fully_excluded(self):
        cycles = canonical(
            [(f"x{i}", "MO1", 1, 5) for i in range(5)]
            + [("ok", "MO2", 1, 600)]
        )
        clean, anomalies = detect_corruption(cycles, CorruptionConfig())

        assert clean["cycle_id"].tolist() == ["ok"]
        assert len(anomalies) == 1
        row = anomalies.iloc[0]
        assert row["reason"] == RejectionReason.CORRUPTED_DUPLICATE.value
        assert row["cycle_count"] == 5
        assert row["cycle_ids"] == "x0,x1,x2,x3,x4"
        assert row["excluded"]

    @pytest.mark.parametrize("count, seconds, corrupted", [
        (3, 60, True),
        (3, 10, True),
        (2, 10, False),
        (3, 61, False),
        (10, 600, False),
    ])
    def test_signature_boundaries(self, count, seconds, corrupted):
        cycles = canonical([(f"c{i}", "MO1", 1, seconds) for i in range(count)])
        flagged = flag_corrupted(cycles, CorruptionConfig())
        assert flagged["corrupted"].all() == corrupted

    def test_groups_are_per_operator_and_duration(self):
        cycles = canonical([
            ("a1", "MO1", 1, 10), ("a2", "MO1", 1, 10),
            ("b1", "MO1", 2, 10),
            ("c1", "MO1", 1, 15),
        ])
        clean, anomalies = detect_corruption(cycles, CorruptionConfig())
        assert len(clean) == 4
        assert anomalies.empty

    def test_thresholds_are_configurable(self):
        cycles = canonical([(f"c{i}", "MO1", 1, 90) for i in range(4)])
        strict = CorruptionConfig(max_duration_seconds=120, min_repeats=4)
        clean, _ = detect_corruption(cycles, strict)
        assert clean.empty

    def test_empty_input(self):
        empty = pd.DataFrame(columns=["cycle_id", "mo_key", "operator_id", "duration_seconds"])
        clean, anomalies = detect_corruption(empty, CorruptionConfig())
        assert clean.empty
        assert anomalies.empty


# =====================================================================
# work-center categories
# =====================================================================

class TestCategories:

    @pytest.mark.parametrize("name, expected", [
        ("Laser Cutter 1", WorkCenterCategory.CUTTING),
        ("WEBBING station", WorkCenterCategory.CUTTING),
        ("Sewing Line 2", WorkCenterCategory.ASSEMBLY),
        ("Rope Assembly", WorkCenterCategory.ASSEMBLY),
        ("Zipper Install", WorkCenterCategory.ASSEMBLY),
        ("Grommet Press", WorkCenterCategory.ASSEMBLY),
        ("Packing Station", WorkCenterCategory.PACKAGING),
        ("Final Packaging", WorkCenterCategory.PACKAGING),
    ])
    def test_keyword_match(self, name, expected):
        assert categorize_work_center(name) == expected

    def test_first_match_wins(self):
        # both "webbing" and "assembly"; Cutting rules come first
        assert categorize_work_center("Webbing Assembly") == WorkCenterCategory.CUTTING
        # both "sewing" and "pack"; Assembly comes before Packaging
        assert categorize_work_center("Backpack Sewing") == WorkCenterCategory.ASSEMBLY

    @pytest.mark.parametrize("name", ["Quality Inspection", "", None, "Warehouse"])
    def test_unmatched_is_not_defaulted(self, name):
        assert categorize_work_center(name) is None

    def test_unmapped_cycles_dropped_with_reason(self):
        cycles = canonical([
            ("c1", "MO1", 1, 600, "Sewing Line 2"),
            ("c2", "MO1", 1, 600, "Quality Inspection"),
        ])
        categorized, rejected = categorize_cycles(cycles, DEFAULT_CATEGORY_KEYWORDS)

        assert categorized["category"].tolist() == ["Assembly"]
        assert rejected["cycle_id"].tolist() == ["c2"]
        assert rejected["reason"].tolist() == [RejectionReason.UNMAPPED_WORK_CENTER.value]

    def test_categorized_cycles_match_schema(self):
        cycles = canonical([("c1", "MO1", 1, 600, "Sewing Line 2"), ("c2", "MO1", 1, 900, "Laser Cutter")])
        categorized, _ = categorize_cycles(cycles, DEFAULT_CATEGORY_KEYWORDS)
        assert validate(categorized, "cycles")
