"""Shared fixtures: raw cycle frames, registries, and a fixed clock."""

import threading
from datetime import UTC, datetime, timedelta

import pandas as pd
import pytest

from uph.config import EngineConfig
from uph.engine.jobs import RecomputeService
from uph.engine.registries import FrameCycleFeed, FrameMORegistry, FrameOperatorRegistry

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)

OPERATORS = pd.DataFrame({
    "operator_id": [1, 2, 3],
    "name": ["Ana Ruiz", "Ben Okafor", "Chen Wei"],
})


def cycle(cycle_id, mo, operator, work_center, duration, wo=None, state="done", created_at=None):
    return {
        "cycle_id": cycle_id,
        "work_order_id": wo,
        "mo_id": mo,
        "operator_name": operator,
        "work_center": work_center,
        "duration": duration,
        "quantity_done": 1,
        "state": state,
        "created_at": created_at or NOW.isoformat(),
    }


def order(mo, quantity, product="Trail Pack 40L", days_ago=3, routing=None):
    return {
        "mo_number": mo,
        "quantity": quantity,
        "product_name": product,
        "routing_name": routing or f"{product} routing",
        "created_at": (NOW - timedelta(days=days_ago)).isoformat(),
    }


def cycles_frame(rows) -> pd.DataFrame:
    return pd.DataFrame(rows)


def orders_frame(rows) -> pd.DataFrame:
    return pd.DataFrame(rows)


class UnavailableMORegistry:
    def lookup(self, mo_keys):
        raise ConnectionError("connection refused")


class UnavailableOperatorRegistry:
    def resolve(self, names):
        raise TimeoutError("operator service timed out")

    def display_names(self, ids):
        raise TimeoutError("operator service timed out")


class BlockingFeed(FrameCycleFeed):
    """Feed whose first page waits until the test releases it."""

    def __init__(self, records: pd.DataFrame):
        super().__init__(records)
        self.started = threading.Event()
        self.release = threading.Event()

    def fetch_page(self, state, offset, limit):
        self.started.set()
        self.release.wait(timeout=10)
        return super().fetch_page(state, offset, limit)


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def operators():
    return FrameOperatorRegistry(OPERATORS)


@pytest.fixture
def scenario_cycles():
    """Scenarios A, B and C plus one corrupted MO."""
    return cycles_frame([
        # A: MO1001, 75 units, two cycles totalling 2h
        cycle("c1", "MO1001", "Ana Ruiz", "Sewing Line 2", 5400, wo="WO1"),
        cycle("c2", "MO1001", "Ana Ruiz", "Sewing Line 2", "00:30:00", wo="WO1"),
        # B: MO1002, 40 units in 120s, too short
        cycle("c3", "MO1002", "Ana Ruiz", "Sewing Line 2", 120, wo="WO2"),
        # C: same product/operator at 10 and 20 UPH
        cycle("c4", "MO1003", "Ben Okafor", "Assembly Bench", 3600, wo="WO3"),
        cycle("c5", "MO1004", "Ben Okafor", "Assembly Bench", {"seconds": 7200}, wo="WO4"),
        # bulk-import placeholder rows
        *[cycle(f"x{i}", "MO1005", "Chen Wei", "Laser Cutter", 5, wo="WO5") for i in range(5)],
    ])


@pytest.fixture
def scenario_orders():
    return orders_frame([
        order("MO1001", 75),
        order("MO1002", 40),
        order("MO1003", 10, product="Duffel 60L"),
        order("MO1004", 40, product="Duffel 60L"),
        order("MO1005", 500),
    ])


@pytest.fixture
def make_service(clock, config):
    services = []

    def _make(cycles, orders, operators=OPERATORS, cfg=None, store=None, feed=None):
        service = RecomputeService(
            feed=feed or FrameCycleFeed(cycles),
            mo_registry=FrameMORegistry(orders),
            operator_registry=FrameOperatorRegistry(operators),
            config=cfg or config,
            store=store,
            clock=clock,
        )
        services.append(service)
        return service

    yield _make
    for service in services:
        service.shutdown(wait=False)
