"""End-to-end tests of run_pipeline over in-memory registries."""

import pytest

from conftest import NOW, OPERATORS, UnavailableMORegistry, cycle, cycles_frame, order, orders_frame
from uph.engine import validate
from uph.engine.pipeline import run_pipeline
from uph.engine.registries import FrameCycleFeed, FrameMORegistry, FrameOperatorRegistry
from uph.errors import RecomputeCancelled, RegistryUnavailable
from uph.utils.types import RejectionReason


def run(cycles, orders, config, **kwargs):
    return run_pipeline(
        FrameCycleFeed(cycles),
        FrameMORegistry(orders),
        FrameOperatorRegistry(OPERATORS),
        config,
        as_of=NOW,
        **kwargs,
    )


class TestScenarios:

    def test_scenario_a_observed_and_averaged(self, scenario_cycles, scenario_orders, config):
        result = run(scenario_cycles, scenario_orders, config)

        a = result.observations.set_index("mo_key").loc["MO1001"]
        assert a["duration_hours"] == pytest.approx(2.0)
        assert a["uph"] == pytest.approx(37.5)

        stats = result.statistics
        row = stats[(stats["window_days"] == 30) & (stats["product_name"] == "Trail Pack 40L")].iloc[0]
        assert row["average_uph"] == pytest.approx(37.5)
        assert row["mo_count"] == 1

    def test_scenario_b_rejected_and_listed(self, scenario_cycles, scenario_orders, config):
        result = run(scenario_cycles, scenario_orders, config)

        assert "MO1002" not in result.observations["mo_key"].tolist()
        b = result.anomalies.set_index("mo_key").loc["MO1002"]
        assert b["reason"] == RejectionReason.DURATION_TOO_SHORT.value
        assert b["value"] == pytest.approx(120 / 3600)

    def test_scenario_c_average_of_rates(self, scenario_cycles, scenario_orders, config):
        result = run(scenario_cycles, scenario_orders, config)

        stats = result.statistics
        row = stats[(stats["window_days"] == 7) & (stats["product_name"] == "Duffel 60L")].iloc[0]
        assert row["average_uph"] == pytest.approx(15.0)
        assert row["mo_count"] == 2
        assert row["operator_name"] == "Ben Okafor"

    def test_corrupted_mo_never_observed(self, scenario_cycles, scenario_orders, config):
        result = run(scenario_cycles, scenario_orders, config)

        assert "MO1005" not in result.observations["mo_key"].tolist()
        corrupt = result.anomalies[result.anomalies["reason"] == RejectionReason.CORRUPTED_DUPLICATE.value]
        assert corrupt["mo_key"].tolist() == ["MO1005"]
        assert corrupt["cycle_count"].tolist() == [5]
        assert corrupt["product_name"].tolist() == ["Trail Pack 40L"]
        assert result.counters["cycles_corrupted"] == 5

    def test_quantity_once_per_mo(self, scenario_cycles, scenario_orders, config):
        result = run(scenario_cycles, scenario_orders, config)
        merged = result.observations.merge(
            scenario_orders.assign(mo_key=scenario_orders["mo_number"]), on="mo_key", suffixes=("", "_mo")
        )
        assert (merged["quantity"] == merged["quantity_mo"]).all()


class TestRunBehaviour:

    def test_counters_and_rejections(self, config):
        cycles = cycles_frame([
            cycle("c1", "MO1", "Ana Ruiz", "Sewing", 3600, wo="WO1"),
            cycle("c2", "MO1", "Ana Ruiz", "Inspection", 3600, wo="WO1"),
            cycle("c3", "MO1", "Nobody", "Sewing", 3600, wo="WO1"),
            cycle("c4", "MO1", "Ana Ruiz", "Sewing", "bad", wo="WO1"),
            cycle("c4", "MO1", "Ana Ruiz", "Sewing", 3600, wo="WO1"),
        ])
        result = run(cycles, orders_frame([order("MO1", 20)]), config)

        reasons = sorted(result.rejections["reason"])
        assert reasons == sorted([
            RejectionReason.UNMAPPED_WORK_CENTER.value,
            RejectionReason.UNRESOLVED_OPERATOR.value,
            RejectionReason.INVALID_DURATION.value,
            RejectionReason.DUPLICATE_CYCLE.value,
        ])
        assert result.counters["cycles_fetched"] == 5
        assert result.counters["observations"] == 1

    def test_work_order_spanning_mos_reported(self, config):
        cycles = cycles_frame([
            cycle("c1", "MO1", "Ana Ruiz", "Sewing", 3600, wo="WO1"),
            cycle("c2", "MO2", "Ana Ruiz", "Sewing", 3600, wo="WO1"),
        ])
        result = run(cycles, orders_frame([order("MO1", 20), order("MO2", 20)]), config)

        assert result.work_order_conflicts["work_order_id"].tolist() == ["WO1"]
        assert result.work_order_conflicts["mo_keys"].tolist() == ["MO1,MO2"]
        assert len(result.observations) == 2

    def test_only_requested_windows(self, scenario_cycles, scenario_orders, config):
        result = run(scenario_cycles, scenario_orders, config, windows=[7])
        assert set(result.statistics["window_days"]) == {7}

    def test_unsupported_window(self, scenario_cycles, scenario_orders, config):
        with pytest.raises(ValueError):
            run(scenario_cycles, scenario_orders, config, windows=[14])

    def test_mo_registry_down(self, scenario_cycles, config):
        with pytest.raises(RegistryUnavailable):
            run_pipeline(
                FrameCycleFeed(scenario_cycles),
                UnavailableMORegistry(),
                FrameOperatorRegistry(OPERATORS),
                config,
                as_of=NOW,
            )

    def test_cancellation_between_stages(self, scenario_cycles, scenario_orders, config):
        calls = []

        def cancel_on_third():
            calls.append(1)
            if len(calls) == 3:
                raise RecomputeCancelled("cancelled")

        with pytest.raises(RecomputeCancelled):
            run(scenario_cycles, scenario_orders, config, cancel_check=cancel_on_third)

    def test_empty_feed(self, scenario_orders, config):
        result = run(cycles_frame([]), scenario_orders, config)
        assert result.observations.empty
        assert result.statistics.empty


class TestSchemas:

    def test_published_frames_validate(self, scenario_cycles, scenario_orders, config):
        result = run(scenario_cycles, scenario_orders, config)

        assert validate(result.observations, "observations")
        assert validate(result.statistics, "statistics")
        assert validate(result.anomalies, "anomalies")

    def test_unknown_schema(self, scenario_cycles, scenario_orders, config):
        result = run(scenario_cycles, scenario_orders, config)
        with pytest.raises(ValueError):
            validate(result.observations, "work_orders")

    def test_statistic_reports_registry_operator_name(self, config):
        cycles = cycles_frame([
            cycle("c1", "MO1", "  ana   RUIZ ", "Sewing", 1800, wo="WO1"),
            cycle("c2", "MO1", "Ana Ruiz", "Sewing", 1800, wo="WO1"),
        ])
        result = run(cycles, orders_frame([order("MO1", 20)]), config)

        assert set(result.observations["operator_name"]) == {"Ana Ruiz"}
        assert set(result.statistics["operator_name"]) == {"Ana Ruiz"}
