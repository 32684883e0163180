"""
Queue admission — which waiting job does a station start next?

Candidates are ranked on due-date slack, retooling and how long their
material is still out.  The three terms are normalised by running maxima
shared by all stations, so a score is comparable across the hall.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Optional

from .models import DispatchContext, JobOperation, Operation, PlannedWithSupply, Station

if TYPE_CHECKING:
    from .job import Job

log = logging.getLogger(__name__)


def effective_setup_time(operation: Operation, last_operation: Optional[Operation]) -> float:
    """No retooling when the station just ran the same operation."""
    if last_operation is not None and last_operation == operation:
        return 0.0
    return operation.setup_time


def remaining_time_to_material(job: "Job", ctx: DispatchContext) -> float:
    if job.material_arrived:
        return 0.0
    if isinstance(job.plan, PlannedWithSupply):
        return max(0.0, job.plan.vehicle.expected_supply_completion_time - ctx.now)
    # Nothing on the way yet: assume the worst wait seen so far
    return ctx.normalizers.max_material_wait


def observe_candidates(ctx: DispatchContext) -> None:
    """Refresh the running maxima from every station's backlog."""
    now = ctx.now
    norm = ctx.normalizers
    proactive = ctx.policy.reserves_vehicles
    for station in ctx.stations:
        for jo in station.queued:
            wait = None
            if proactive and not jo.job.material_arrived \
                    and isinstance(jo.job.plan, PlannedWithSupply):
                wait = max(0.0, jo.job.plan.vehicle.expected_supply_completion_time - now)
            norm.observe(
                remaining_time_to_finish = max(0.0, jo.job.due_date - now),
                setup_time               = effective_setup_time(jo.operation, station.last_operation),
                material_wait            = wait,
            )


def score_job_operation(
    job: "Job",
    operation: Operation,
    last_operation: Optional[Operation],
    ctx: DispatchContext,
) -> float:
    """Priority of (*job*, *operation*) in a station queue; higher goes first."""
    w, norm = ctx.weights, ctx.normalizers

    denominator = 0.0
    if norm.max_remaining_time_to_finish > 0:
        slack = max(0.0, job.due_date - ctx.now)
        denominator += w.due_date * slack / norm.max_remaining_time_to_finish
    if norm.max_setup_time > 0:
        setup = effective_setup_time(operation, last_operation)
        denominator += w.setup * setup / norm.max_setup_time
    if ctx.policy.reserves_vehicles and norm.max_material_wait > 0:
        wait = remaining_time_to_material(job, ctx)
        denominator += w.material_wait * wait / norm.max_material_wait

    return 1.0 / denominator if denominator > 0 else math.inf


def select_job_operation(station: Station, ctx: DispatchContext) -> Optional[JobOperation]:
    if not station.queued:
        return None
    observe_candidates(ctx)

    best, best_score = None, -math.inf
    for jo in station.queued:
        score = score_job_operation(jo.job, jo.operation, station.last_operation, ctx)
        if score > best_score:
            best, best_score = jo, score
    log.debug("%s admits %s/%s (score %.3f of %d)",
              station.station_id, best.job.job_id, best.operation.name,
              best_score, len(station.queued))
    return best
