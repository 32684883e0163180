"""Pytest configuration and shared shop-floor fixtures.

Also ensures the project root is on sys.path so 'import assemblysim.*' works
without an install.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path so 'import assemblysim.*' works
_root = Path(__file__).resolve().parents[1]
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

from assemblysim.models import (  # noqa: E402
    DispatchContext, MaterialPolicy, Operation, Product, Station,
    StrategyWeights, Vehicle, Warehouse,
)
from assemblysim.routing import Router  # noqa: E402


def op(name, processing=10.0, material=False, preds=(), setup=0.0, follow_up=0.0):
    return Operation(
        name=name,
        processing_time=processing,
        setup_time=setup,
        follow_up_time=follow_up,
        material_required=material,
        predecessors=tuple(preds),
    )


@pytest.fixture
def diamond() -> Product:
    """a → (b, c) → d"""
    return Product("diamond", (
        op("a"),
        op("b", preds=["a"]),
        op("c", preds=["a"]),
        op("d", preds=["b", "c"]),
    ))


@pytest.fixture
def linear() -> Product:
    """op1 → op2 → op3, only op2 needs material."""
    return Product("linear", (
        op("op1", processing=10.0),
        op("op2", processing=20.0, material=True, preds=["op1"]),
        op("op3", processing=30.0, preds=["op2"]),
    ))


@pytest.fixture
def make_ctx():
    def _make(
        stations,
        vehicles=(),
        warehouses=(),
        policy=MaterialPolicy.NONE,
        weights=None,
        now=0.0,
    ) -> DispatchContext:
        return DispatchContext(
            clock=lambda: now,
            router=Router(1.0),
            stations=list(stations),
            vehicles=list(vehicles),
            warehouses=list(warehouses),
            policy=policy,
            weights=weights or StrategyWeights(),
        )
    return _make


@pytest.fixture
def warehouse() -> Warehouse:
    return Warehouse("WH", position=(0.0, 10.0), unload_delay=30.0, load_delay=20.0)


def station(sid, origin, *capabilities, **kwargs) -> Station:
    return Station(station_id=sid, origin=origin, capabilities=frozenset(capabilities), **kwargs)


def vehicle(vid, position=(0.0, 0.0)) -> Vehicle:
    return Vehicle(vehicle_id=vid, position=position)
