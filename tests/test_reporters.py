"""Tests for run report formatting."""

import json
from dataclasses import replace

import pandas as pd
import pytest

from conftest import NOW, OPERATORS
from uph.engine.pipeline import run_pipeline
from uph.engine.registries import FrameCycleFeed, FrameMORegistry, FrameOperatorRegistry
from uph.engine.store import Snapshot
from uph.validation.reporters import _cell, build_run_report, frame_table, rejection_counts, save_report


@pytest.fixture
def snapshot(scenario_cycles, scenario_orders, config):
    result = run_pipeline(
        FrameCycleFeed(scenario_cycles),
        FrameMORegistry(scenario_orders),
        FrameOperatorRegistry(OPERATORS),
        config,
        as_of=NOW,
    )
    return Snapshot.from_result("job42", result)


def with_cohort_flag(snapshot):
    flag = pd.DataFrame([{"reason": "CohortOutlier", "stage": "review", "mo_key": "MO1003", "excluded": False}])
    return replace(snapshot, anomalies=pd.concat([snapshot.anomalies, flag], ignore_index=True))


class TestRunReport:

    def test_rejection_counts(self, snapshot):
        counts = {(r["stage"], r["reason"]): r for r in rejection_counts(snapshot)}
        assert counts[("corruption", "CorruptedDuplicate")]["count"] == 1
        assert counts[("outliers", "DurationTooShort")]["excluded"]

    def test_json_report(self, snapshot):
        report = json.loads(build_run_report(snapshot, "json"))
        assert report["job_id"] == "job42"
        assert report["counters"]["observations"] == 3
        assert report["windows"] == [7, 30, 180]

    def test_summary_marks_dropped_and_flagged(self, snapshot):
        summary = build_run_report(with_cohort_flag(snapshot), "summary")
        lines = summary.splitlines()

        assert lines[0].startswith("[job42]")
        assert "3 observations from 10 cycles" in lines[0]
        assert "  DROP: corruption/CorruptedDuplicate x1" in lines
        assert "  FLAG: review/CohortOutlier x1" in lines

    def test_table_report(self, snapshot):
        table = build_run_report(snapshot, "table")
        assert "job42" in table
        assert "cycles_fetched" in table

    def test_save_report(self, tmp_path, snapshot):
        path = save_report(build_run_report(snapshot, "json"), tmp_path / "reports", "recompute_job42", "json")
        assert path == tmp_path / "reports" / "recompute_job42.json"
        assert json.loads(path.read_text())["job_id"] == "job42"

        text = save_report(build_run_report(snapshot, "summary"), tmp_path, "run", "summary")
        assert text.suffix == ".txt"


class TestFrameTable:

    def test_columns_and_rows(self, snapshot):
        table = frame_table(snapshot.observations, "Observations", ["mo_key", "uph"])
        assert [c.header for c in table.columns] == ["mo_key", "uph"]
        assert table.row_count == 3

    @pytest.mark.parametrize("value, expected", [
        (None, ""),
        (float("nan"), ""),
        (37.5, "37.50"),
        (pd.Timestamp("2026-10-15T12:00:00Z"), "2026-10-15"),
        (pd.NaT, ""),
        ("Assembly", "Assembly"),
        (3, "3"),
    ])
    def test_cell_formatting(self, value, expected):
        assert _cell(value) == expected
