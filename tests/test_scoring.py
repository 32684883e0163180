import math

import pytest

from assemblysim.job import Job
from assemblysim.models import (
    JobEventType, MaterialPolicy, Planned, PlannedWithSupply, StrategyWeights,
    Unplanned, VehicleStatus,
)
from assemblysim.scoring import find_next_station, score_candidates
from conftest import op, station, vehicle


def fresh(product, position=(0.0, 0.0), job_id="J1"):
    return Job(product=product, due_date=1_000.0, job_id=job_id, position=position)


def test_identical_transport_normalises_to_one(linear, make_ctx) -> None:
    stations = [
        station("S1", (10.0, 0.0), "op1"),
        station("S2", (0.0, 10.0), "op1"),
        station("S3", (-10.0, 0.0), "op1"),
    ]
    rows = score_candidates(fresh(linear), make_ctx(stations))
    assert len(rows) == 3
    assert all(r.terms["transport"] == pytest.approx(1.0) for r in rows)


def test_zero_means_do_not_divide_by_zero(make_ctx) -> None:
    from assemblysim.models import Product

    product = Product("z", (op("x", processing=0.0),))
    s = station("S", (0.0, 0.0), "x")
    rows = score_candidates(fresh(product), make_ctx([s]))
    assert rows[0].terms == {"transport": 0.0, "processing": 0.0,
                             "station_busy": 0.0, "queued_work": 0.0}
    assert math.isinf(rows[0].score)


def test_ties_go_to_the_first_enumerated_pair(linear, make_ctx) -> None:
    stations = [station("S1", (5.0, 0.0), "op1"), station("S2", (0.0, 5.0), "op1")]
    job = fresh(linear)
    outcome = find_next_station(job, make_ctx(stations))
    assert isinstance(job.plan, Planned)
    assert job.plan.station.station_id == "S1"
    assert outcome.chosen.station is stations[0]


def test_same_inputs_same_choice(diamond, make_ctx) -> None:
    def run():
        stations = [
            station("S1", (3.0, 4.0), "a", "b"),
            station("S2", (6.0, 8.0), "a", "c", expected_finish_time=30.0),
            station("S3", (1.0, 1.0), "a", "d"),
        ]
        job = fresh(diamond)
        find_next_station(job, make_ctx(stations, now=10.0))
        return job.plan.station.station_id, job.plan.operation.name

    assert run() == run() == run()


def test_busy_station_is_avoided(linear, make_ctx) -> None:
    busy = station("BUSY", (5.0, 0.0), "op1", expected_finish_time=200.0)
    idle = station("IDLE", (0.0, 5.0), "op1")
    job = fresh(linear)
    find_next_station(job, make_ctx([busy, idle], now=0.0))
    assert job.plan.station is idle


def test_transport_weight_shifts_the_choice(linear, make_ctx) -> None:
    near_busy = station("NEAR", (1.0, 0.0), "op1", expected_finish_time=30.0)
    far_idle = station("FAR", (40.0, 0.0), "op1")

    job = fresh(linear)
    find_next_station(job, make_ctx([near_busy, far_idle],
                                    weights=StrategyWeights(transport=10.0)))
    assert job.plan.station is near_busy

    job = fresh(linear)
    find_next_station(job, make_ctx([near_busy, far_idle],
                                    weights=StrategyWeights(station_busy=10.0)))
    assert job.plan.station is far_idle


def test_no_capable_enabled_station_leaves_job_unplanned(linear, make_ctx) -> None:
    stations = [station("S1", (0.0, 0.0), "op1", disabled=True),
                station("S2", (0.0, 0.0), "op3")]
    job = fresh(linear)
    outcome = find_next_station(job, make_ctx(stations))
    assert isinstance(outcome.plan, Unplanned)
    assert outcome.candidates == []
    assert outcome.chosen is None


def test_no_material_policy_marks_material_present(linear, make_ctx) -> None:
    job = fresh(linear)
    job.complete_operation(linear.operation("op1"), 0.0)
    find_next_station(job, make_ctx([station("S", (0.0, 0.0), "op2")]))
    assert job.plan.operation.name == "op2"
    assert job.material_arrived


def test_controlled_policy_reserves_a_vehicle(linear, make_ctx, warehouse) -> None:
    s = station("S", (0.0, 20.0), "op2")
    v = vehicle("V", (0.0, 0.0))
    ctx = make_ctx([s], vehicles=[v], warehouses=[warehouse],
                   policy=MaterialPolicy.CONTROLLED, now=5.0)

    job = fresh(linear)
    job.complete_operation(linear.operation("op1"), 0.0)
    outcome = find_next_station(job, ctx)

    assert isinstance(job.plan, PlannedWithSupply)
    assert job.plan.vehicle is v and job.plan.warehouse is warehouse
    assert job.plan.supply_time == pytest.approx(40.0)
    assert not job.material_arrived
    assert v.status is VehicleStatus.RESERVED
    assert v.reserved_for == "J1"
    assert v.expected_supply_completion_time == pytest.approx(45.0)
    assert [e.kind for e in outcome.events] == [JobEventType.VEHICLE_RESERVED]
    # 40 s delivery against 20 s travel + 20 s processing: fully hidden
    assert outcome.chosen.material_supply == 0.0


def test_second_job_is_parked_when_fleet_is_busy(linear, make_ctx, warehouse) -> None:
    s = station("S", (0.0, 20.0), "op2")
    ctx = make_ctx([s], vehicles=[vehicle("V")], warehouses=[warehouse],
                   policy=MaterialPolicy.PREDICTIVE)

    first, second = fresh(linear, job_id="J1"), fresh(linear, job_id="J2")
    for job in (first, second):
        job.complete_operation(linear.operation("op1"), 0.0)
        find_next_station(job, ctx)

    assert isinstance(first.plan, PlannedWithSupply)
    assert type(second.plan) is Planned
    assert list(ctx.pending_material) == ["J2"]
    assert ctx.pending_material["J2"] == (second, s)


def test_reactive_policy_does_not_reserve(linear, make_ctx, warehouse) -> None:
    v = vehicle("V")
    ctx = make_ctx([station("S", (0.0, 20.0), "op2")], vehicles=[v],
                   warehouses=[warehouse], policy=MaterialPolicy.REACTIVE)
    job = fresh(linear)
    job.complete_operation(linear.operation("op1"), 0.0)
    outcome = find_next_station(job, ctx)
    assert type(job.plan) is Planned
    assert not job.material_arrived
    assert v.is_available
    assert outcome.events == []
    assert "material_supply" not in outcome.chosen.terms


def test_unhidden_supply_time_is_scored(linear, make_ctx) -> None:
    from assemblysim.models import Warehouse

    remote = Warehouse("FAR", position=(0.0, 500.0), load_delay=0.0)
    s = station("S", (0.0, 0.0), "op2")
    ctx = make_ctx([s], vehicles=[vehicle("V", (0.0, 500.0))], warehouses=[remote],
                   policy=MaterialPolicy.CONTROLLED)
    job = fresh(linear)
    job.complete_operation(linear.operation("op1"), 0.0)
    outcome = find_next_station(job, ctx)
    # 500 s delivery, 0 s travel, 20 s processing
    assert outcome.chosen.material_supply == pytest.approx(480.0)
    assert outcome.chosen.terms["material_supply"] == pytest.approx(1.0)
