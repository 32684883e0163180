import math

import pytest

from assemblysim.admission import (
    effective_setup_time,
    observe_candidates,
    remaining_time_to_material,
    score_job_operation,
    select_job_operation,
)
from assemblysim.job import Job
from assemblysim.models import (
    JobOperation, MaterialPolicy, Planned, PlannedWithSupply, Product,
)
from conftest import op, station, vehicle


@pytest.fixture
def cell():
    product = Product("p", (
        op("drill", setup=30.0),
        op("weld", setup=60.0, material=True),
    ))
    return product, station("S", (0.0, 0.0), "drill", "weld")


def queue(s, *entries):
    s.queued = [JobOperation(job, operation) for job, operation in entries]


def test_no_setup_when_operation_repeats(cell) -> None:
    product, _ = cell
    drill, weld = product.operation("drill"), product.operation("weld")
    assert effective_setup_time(drill, drill) == 0.0
    assert effective_setup_time(drill, weld) == 30.0
    assert effective_setup_time(drill, None) == 30.0


def test_earlier_due_date_is_admitted_first(cell, make_ctx) -> None:
    product, s = cell
    drill = product.operation("drill")
    late = Job(product=product, due_date=900.0, job_id="LATE")
    soon = Job(product=product, due_date=300.0, job_id="SOON")
    queue(s, (late, drill), (soon, drill))
    ctx = make_ctx([s], now=100.0)

    assert select_job_operation(s, ctx).job is soon
    assert ctx.normalizers.max_remaining_time_to_finish == 800.0


def test_matching_last_operation_saves_setup(cell, make_ctx) -> None:
    product, s = cell
    drill, weld = product.operation("drill"), product.operation("weld")
    a = Job(product=product, due_date=500.0, job_id="A")
    b = Job(product=product, due_date=500.0, job_id="B")
    queue(s, (a, weld), (b, drill))
    s.last_operation = drill

    chosen = select_job_operation(s, make_ctx([s]))
    assert chosen.job is b and chosen.operation is drill


def test_material_wait_only_counts_under_proactive_policy(cell, make_ctx, warehouse) -> None:
    product, s = cell
    weld = product.operation("weld")
    waiting = Job(product=product, due_date=500.0, job_id="WAIT")
    ready = Job(product=product, due_date=500.0, job_id="READY")
    v = vehicle("V")
    v.reserve("WAIT", 300.0)
    waiting.plan = PlannedWithSupply(station=s, operation=weld, vehicle=v,
                                     warehouse=warehouse, supply_time=300.0)
    ready.plan = Planned(station=s, operation=weld)
    ready.material_arrived = True
    queue(s, (waiting, weld), (ready, weld))

    controlled = make_ctx([s], policy=MaterialPolicy.CONTROLLED, now=100.0)
    assert remaining_time_to_material(waiting, controlled) == 200.0
    assert remaining_time_to_material(ready, controlled) == 0.0
    assert select_job_operation(s, controlled).job is ready

    # Without the material term both are equal and the first queued wins
    reactive = make_ctx([s], policy=MaterialPolicy.REACTIVE, now=100.0)
    assert select_job_operation(s, reactive).job is waiting


def test_unsupplied_job_falls_back_to_worst_observed_wait(cell, make_ctx) -> None:
    product, s = cell
    job = Job(product=product, due_date=500.0)
    ctx = make_ctx([s], policy=MaterialPolicy.CONTROLLED)
    ctx.normalizers.observe(material_wait=120.0)
    assert remaining_time_to_material(job, ctx) == 120.0


def test_running_maxima_never_shrink(cell, make_ctx) -> None:
    product, s = cell
    drill = product.operation("drill")
    ctx = make_ctx([s], now=0.0)
    queue(s, (Job(product=product, due_date=1_000.0), drill))
    observe_candidates(ctx)
    queue(s, (Job(product=product, due_date=10.0), drill))
    observe_candidates(ctx)
    assert ctx.normalizers.max_remaining_time_to_finish == 1_000.0
    assert ctx.normalizers.max_setup_time == 30.0


def test_all_terms_dropped_scores_infinite(cell, make_ctx) -> None:
    product, s = cell
    job = Job(product=product, due_date=0.0)
    ctx = make_ctx([s], now=50.0)
    assert math.isinf(score_job_operation(job, product.operation("drill"), None, ctx))


def test_empty_queue_admits_nothing(cell, make_ctx) -> None:
    _, s = cell
    assert select_job_operation(s, make_ctx([s])) is None
