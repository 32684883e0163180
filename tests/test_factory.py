import pytest
import simpy

from assemblysim.config import SIM_DURATION
from assemblysim.factory import AssemblyFactory, build_products
from assemblysim.job import Job, JobStatus
from assemblysim.models import JobEventType, MaterialDelivery, VehicleStatus


def run(scenario, n_jobs=8, seed=7, tweak=None, until=SIM_DURATION):
    env = simpy.Environment()
    factory = AssemblyFactory(env, scenario=scenario, seed=seed, n_jobs=n_jobs)
    if tweak:
        tweak(factory)
    factory.register_processes()
    env.run(until=until)
    return factory


def assert_topological(job):
    seen = set()
    for o in job.completed_operations:
        assert set(o.predecessors) <= seen
        seen.add(o.name)


def test_configured_products_are_valid() -> None:
    products = build_products()
    assert set(products) == {"CHASSIS-A", "CHASSIS-B", "CHASSIS-C"}
    assert products["CHASSIS-A"].operation("test").predecessors == ("panel", "wiring")


@pytest.mark.parametrize("scenario", ["no_material", "reactive", "controlled", "predictive"])
def test_every_job_finishes_in_one_shift(scenario) -> None:
    factory = run(scenario)
    released = factory.metrics.released_jobs
    assert len(released) == 8
    assert factory.jobs == {}
    assert len(factory.completed_jobs) == 8
    for job in released:
        assert job.status is JobStatus.COMPLETED
        assert len(job.completed_operations) == len(job.product.operations)
        assert_topological(job)
        assert len(job.station_history) == len(job.product.operations)
        m = job.metrics
        assert m.transport_time + m.working_time + m.waiting_time == pytest.approx(m.total_time)

    for v in factory.vehicles:
        assert v.status is VehicleStatus.IDLE
    for s in factory.stations:
        assert s.queued == [] and s.moving == []
    assert not factory.ctx.pending_material


def test_no_material_policy_never_uses_agvs() -> None:
    factory = run("no_material")
    assert factory.metrics.deliveries == []
    assert all(v.deliveries == 0 for v in factory.vehicles)


def test_material_policies_deliver_kits() -> None:
    factory = run("controlled")
    needed = sum(
        1 for job in factory.completed_jobs
        for o in job.completed_operations if o.material_required
    )
    arrived = [d for d in factory.metrics.deliveries if d.arrived_at is not None]
    assert len(arrived) >= needed
    kinds = factory.metrics.event_counts
    assert kinds[JobEventType.MATERIAL_ARRIVED] == len(arrived)


def test_predictive_policy_forecasts_on_arrival() -> None:
    factory = run("predictive")
    counts = factory.metrics.event_counts
    assert counts[JobEventType.MATERIAL_NEEDS_CALCULATED] == counts[JobEventType.ARRIVED]
    assert factory.metrics.material_needs


def test_same_seed_same_run() -> None:
    a = run("predictive", seed=3)
    b = run("predictive", seed=3)
    assert [(j.job_id, j.metrics.completed_at) for j in a.completed_jobs] == \
           [(j.job_id, j.metrics.completed_at) for j in b.completed_jobs]
    assert [j.station_history for j in a.completed_jobs] == \
           [j.station_history for j in b.completed_jobs]


def test_breakdowns_abort_and_replan_moving_jobs() -> None:
    def fragile(factory):
        factory.scen = dict(factory.scen, breakdowns=True)
        for s in factory.stations:
            s.mtbf, s.mttr = 300.0, 60.0

    factory = run("predictive", n_jobs=12, tweak=fragile)
    breakdowns = factory.metrics.breakdowns
    assert breakdowns
    aborted = factory.metrics.event_counts[JobEventType.ABORTED]
    assert aborted == sum(b.aborted_jobs for b in breakdowns)

    for job in factory.metrics.released_jobs:
        assert job.is_terminal
        assert_topological(job)
    for v in factory.vehicles:
        assert v.reserved_for is None or v.reserved_for in factory.jobs


def test_kpis_cover_the_run() -> None:
    factory = run("controlled")
    kpis = factory.metrics.compute_kpis(SIM_DURATION)
    assert kpis["jobs_completed"] == 8
    assert kpis["jobs_infeasible"] == 0
    assert kpis["jobs_in_progress"] == 0
    assert 0.0 <= kpis["on_time_pct"] <= 100.0
    assert set(kpis["station_utilization"]) == {s.station_id for s in factory.stations}
    assert kpis["deliveries"] == sum(kpis["deliveries_by_agv"].values())
    assert factory.metrics.snapshots


@pytest.mark.parametrize("scenario", ["reactive", "controlled"])
def test_parked_jobs_get_material_once_the_agv_is_free(scenario) -> None:
    def one_slow_agv(factory):
        del factory.vehicles[1:]
        for wh in factory.warehouses:
            wh.load_delay = 300.0

    factory = run(scenario, n_jobs=10, tweak=one_slow_agv)
    events = factory.metrics.events
    parked = [e for e in events if e.kind is JobEventType.MATERIAL_PENDING]
    assert parked

    for p in parked:
        later = [e for e in events
                 if e.job_id == p.job_id and e.operation == p.operation and e.time >= p.time]
        kinds = {e.kind for e in later}
        assert JobEventType.VEHICLE_RESERVED in kinds
        assert JobEventType.MATERIAL_ARRIVED in kinds

    assert not factory.ctx.pending_material
    assert len(factory.completed_jobs) == 10
    assert factory.vehicles[0].deliveries == len(factory.metrics.deliveries)


def test_cancelled_delivery_leaves_agv_where_it_stopped() -> None:
    env = simpy.Environment()
    factory = AssemblyFactory(env, scenario="controlled", seed=1, n_jobs=1)
    vehicle, wh, st = factory.vehicles[0], factory.warehouses[0], factory.stations[0]
    vehicle.position = (wh.position[0] + 60.0, wh.position[1])
    leg = factory.router.duration(vehicle.position, wh.position)

    product = next(iter(factory.products.values()))
    job = Job(product=product, due_date=1_000.0, job_id="J1")
    trip = MaterialDelivery(vehicle_id=vehicle.vehicle_id, job_id="J1", operation="base",
                            station_id=st.station_id, warehouse_id=wh.warehouse_id,
                            requested_at=0.0)
    proc = env.process(factory.deliver(vehicle, job, st, wh, trip))
    env.run(until=leg / 2)
    proc.interrupt("plan aborted")
    env.run(until=leg)

    assert vehicle.position == pytest.approx((wh.position[0] + 30.0, wh.position[1]))
    assert vehicle.busy_time == pytest.approx(leg / 2)
    assert trip.arrived_at is None
    assert not job.material_arrived
