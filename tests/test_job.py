import pytest

from assemblysim.job import Job, JobStatus
from assemblysim.models import (
    UNPLANNED, JobEventType, Planned, PlannedWithSupply, Product, Unplanned,
)
from conftest import op, station, vehicle


def is_topological_prefix(product, completed):
    seen = set()
    for o in completed:
        if not set(o.predecessors) <= seen:
            return False
        seen.add(o.name)
    return True


def test_complete_operation_rejects_unready_operation(diamond) -> None:
    job = Job(product=diamond, due_date=100.0)
    with pytest.raises(ValueError, match="not executable"):
        job.complete_operation(diamond.operation("b"), 1.0)
    assert job.completed_operations == []


def test_completed_operations_stay_a_topological_prefix(diamond) -> None:
    job = Job(product=diamond, due_date=100.0)
    t = 0.0
    while job.next_operations:
        t += 1.0
        job.complete_operation(job.next_operations[-1], t)
        assert is_topological_prefix(diamond, job.completed_operations)
    assert [o.name for o in job.completed_operations] == ["a", "c", "b", "d"]
    assert job.sequence_string == "a; c; b; d;"


def test_complete_operation_records_station_and_clears_plan(diamond) -> None:
    job = Job(product=diamond, due_date=100.0)
    s = station("S1", (0, 0), "a")
    job.plan = Planned(station=s, operation=diamond.operation("a"))
    job.material_arrived = True
    assert job.complete_operation(diamond.operation("a"), 5.0) == []
    assert job.station_history == ["S1"]
    assert isinstance(job.plan, Unplanned)
    assert not job.material_arrived


def test_dispatch_only_once(diamond) -> None:
    job = Job(product=diamond, due_date=100.0)
    events = job.dispatch(3.0)
    assert events[0].kind is JobEventType.DISPATCHED
    assert events[0].time == 3.0
    with pytest.raises(ValueError):
        job.dispatch(4.0)


def test_abort_releases_reserved_vehicle(diamond, warehouse) -> None:
    job = Job(product=diamond, due_date=100.0, job_id="J1")
    s = station("S1", (0, 0), "a")
    v = vehicle("V1")
    v.reserve("J1", 40.0)
    job.plan = PlannedWithSupply(
        station=s, operation=diamond.operation("a"),
        vehicle=v, warehouse=warehouse, supply_time=40.0,
    )
    job.start_moving(10.0)

    events = job.abort(14.0)
    assert [e.kind for e in events] == [JobEventType.ABORTED]
    assert events[0].station == "S1" and events[0].operation == "a"
    assert v.is_available
    assert job.plan is UNPLANNED
    assert job.status is JobStatus.WAITING
    assert job.metrics.transport_time == pytest.approx(4.0)


def test_abort_leaves_foreign_reservation_alone(diamond, warehouse) -> None:
    job = Job(product=diamond, due_date=100.0, job_id="J1")
    v = vehicle("V1")
    v.reserve("J2", 40.0)
    job.plan = PlannedWithSupply(
        station=station("S1", (0, 0), "a"), operation=diamond.operation("a"),
        vehicle=v, warehouse=warehouse, supply_time=40.0,
    )
    job.abort(1.0)
    assert v.reserved_for == "J2"


def test_abort_without_plan_is_a_no_op(diamond) -> None:
    job = Job(product=diamond, due_date=100.0)
    assert job.abort(1.0) == []


def test_completion_attributes_unaccounted_time_to_waiting() -> None:
    product = Product("single", (op("a"),))
    job = Job(product=product, due_date=100.0)
    s = station("S1", (0, 0), "a")
    job.dispatch(0.0)
    job.plan = Planned(station=s, operation=product.operation("a"))
    job.set_queued(10.0)
    job.set_processing(15.0)
    job.complete_operation(product.operation("a"), 25.0)

    m = job.metrics
    assert m.waiting_time == pytest.approx(5.0)
    assert m.working_time == pytest.approx(10.0)

    events = job.mark_completed(40.0)
    assert events[0].kind is JobEventType.COMPLETED
    assert m.total_time == pytest.approx(40.0)
    assert m.unaccounted_time == pytest.approx(25.0)
    assert m.waiting_time == pytest.approx(30.0)
    assert m.transport_time + m.working_time + m.waiting_time == pytest.approx(m.total_time)
    assert job.is_terminal


def test_infeasible_is_terminal_and_lists_remaining_work(diamond) -> None:
    job = Job(product=diamond, due_date=100.0)
    events = job.mark_infeasible(7.0)
    assert events[0].kind is JobEventType.INFEASIBLE
    assert events[0].payload == ["a", "b", "c", "d"]
    assert job.status is JobStatus.INFEASIBLE
    assert job.is_terminal


def test_cannot_complete_with_work_left(diamond) -> None:
    job = Job(product=diamond, due_date=100.0)
    job.dispatch(0.0)
    with pytest.raises(ValueError, match="work left"):
        job.mark_completed(5.0)
    assert job.status is JobStatus.WAITING
    assert job.metrics.completed_at is None


def test_processing_only_starts_from_the_queue(diamond) -> None:
    job = Job(product=diamond, due_date=100.0)
    job.plan = Planned(station=station("S1", (0, 0), "a"), operation=diamond.operation("a"))
    with pytest.raises(ValueError, match="only queued jobs"):
        job.set_processing(1.0)
    job.start_moving(1.0)
    with pytest.raises(ValueError, match="only queued jobs"):
        job.set_processing(2.0)
    job.set_queued(3.0)
    job.set_processing(4.0)
    assert job.status is JobStatus.PROCESSING


def test_completed_job_rejects_further_transitions() -> None:
    product = Product("single", (op("a"),))
    job = Job(product=product, due_date=100.0)
    job.complete_operation(product.operation("a"), 1.0)
    job.mark_completed(2.0)

    for transition in (job.mark_infeasible, job.set_queued, job.start_moving,
                       job.set_processing, job.mark_completed):
        with pytest.raises(ValueError):
            transition(3.0)
    with pytest.raises(ValueError):
        job.stop_moving(3.0, (0.0, 0.0))
    assert job.status is JobStatus.COMPLETED


def test_infeasible_job_stays_infeasible(diamond) -> None:
    job = Job(product=diamond, due_date=100.0)
    job.mark_infeasible(1.0)
    for transition in (job.mark_infeasible, job.set_queued, job.start_moving,
                       job.set_processing):
        with pytest.raises(ValueError):
            transition(2.0)
    with pytest.raises(ValueError):
        job.complete_operation(diamond.operation("a"), 2.0)
    assert job.status is JobStatus.INFEASIBLE
