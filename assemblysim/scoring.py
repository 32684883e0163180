"""
Station / operation scoring — where does a job go next?

Every (station, operation) pair the job can legally start is costed on five
signals.  Each signal is divided by its mean over all pairs so that seconds of
travel and seconds of queue are comparable, weighted by the active strategy,
and the pair with the highest ``1 / weighted sum`` wins.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple

from .models import (
    UNPLANNED, DispatchContext, JobEvent, JobEventType, Operation, Plan,
    Planned, PlannedWithSupply, Station, Vehicle, Warehouse,
)

if TYPE_CHECKING:
    from .job import Job

log = logging.getLogger(__name__)

SIGNALS = ("transport", "processing", "station_busy", "queued_work", "material_supply")


@dataclass
class CandidateScore:
    """Raw costs, normalised terms and score of one (station, operation) pair."""

    station:         Station
    operation:       Operation
    transport:       float               = 0.0
    processing:      float               = 0.0
    station_busy:    float               = 0.0
    queued_work:     float               = 0.0
    material_supply: float               = 0.0
    vehicle:         Optional[Vehicle]   = None
    warehouse:       Optional[Warehouse] = None
    supply_time:     Optional[float]     = None
    terms:           Dict[str, float]    = field(default_factory=dict)
    score:           float               = 0.0


@dataclass
class PlanningOutcome:
    plan:       Plan
    candidates: List[CandidateScore] = field(default_factory=list)
    events:     List[JobEvent]       = field(default_factory=list)

    @property
    def chosen(self) -> Optional[CandidateScore]:
        if not isinstance(self.plan, Planned):
            return None
        return next(
            (c for c in self.candidates
             if c.station is self.plan.station and c.operation == self.plan.operation),
            None,
        )


def candidate_pairs(job: "Job", stations: Sequence[Station]) -> List[Tuple[Station, Operation]]:
    """Enabled, capable stations for every next-legal operation."""
    pairs = []
    for operation in job.next_operations:
        capable = [s for s in stations if s.can_perform(operation) and not s.disabled]
        if not capable:
            log.debug("%s: no enabled station for %s", job.job_id, operation.name)
        pairs.extend((s, operation) for s in capable)
    return pairs


def best_delivery(
    vehicles: Sequence[Vehicle],
    station: Station,
    ctx: DispatchContext,
) -> Tuple[Optional[Vehicle], Optional[Warehouse], float]:
    """Fastest available AGV/warehouse combination for *station*."""
    best = (None, None, math.inf)
    for vehicle in vehicles:
        wh, t = vehicle.delivery_time_estimate(station, ctx.warehouses, ctx.router)
        if wh is not None and t < best[2]:
            best = (vehicle, wh, t)
    return best


def _mean_or_one(values: Sequence[float]) -> float:
    mean = sum(values) / len(values) if values else 0.0
    return mean if mean != 0 else 1.0


def score_candidates(job: "Job", ctx: DispatchContext) -> List[CandidateScore]:
    """Cost and score every candidate pair; the list keeps enumeration order."""
    pairs = candidate_pairs(job, ctx.stations)
    if not pairs:
        return []

    now = ctx.now
    proactive = ctx.policy.reserves_vehicles
    free = ctx.available_vehicles() if proactive else []

    rows: List[CandidateScore] = []
    for station, operation in pairs:
        row = CandidateScore(
            station      = station,
            operation    = operation,
            transport    = ctx.router.duration(job.position, station.origin),
            processing   = operation.processing_time,
            station_busy = max(0.0, station.expected_finish_time - now),
            queued_work  = station.queued_duration(),
        )
        if proactive and operation.material_required and free:
            vehicle, wh, supply = best_delivery(free, station, ctx)
            if vehicle is not None:
                row.vehicle, row.warehouse, row.supply_time = vehicle, wh, supply
                # Only the part of the delivery the job cannot hide is a cost
                row.material_supply = max(0.0, supply - (
                    row.transport + row.processing + row.station_busy + row.queued_work))
        rows.append(row)

    signals = SIGNALS if proactive else SIGNALS[:-1]
    means = {s: _mean_or_one([getattr(r, s) for r in rows]) for s in signals}

    w = ctx.weights
    for row in rows:
        row.terms = {s: getattr(row, s) / means[s] for s in signals}
        denominator = sum(getattr(w, s) * row.terms[s] for s in signals)
        row.score = 1.0 / denominator if denominator > 0 else math.inf
    return rows


def find_next_station(job: "Job", ctx: DispatchContext) -> PlanningOutcome:
    """
    Plan the job's next (station, operation) and, under a proactive supply
    policy, the AGV that brings its material.

    With no candidate the job is left unplanned; the caller decides whether
    that means infeasible or finished.
    """
    rows = score_candidates(job, ctx)
    if not rows:
        job.plan = UNPLANNED
        return PlanningOutcome(plan=UNPLANNED)

    best = rows[0]
    for row in rows[1:]:
        if row.score > best.score:
            best = row

    now = ctx.now
    job.planned_transport_time = best.transport
    job.plan = Planned(station=best.station, operation=best.operation)
    outcome = PlanningOutcome(plan=job.plan, candidates=rows)

    if not best.operation.material_required or not ctx.policy.moves_material:
        job.material_arrived = True
        return outcome
    job.material_arrived = False
    if not ctx.policy.reserves_vehicles:
        return outcome

    vehicle = best.vehicle
    if vehicle is not None and vehicle.is_available:
        vehicle.reserve(job.job_id, now + best.supply_time)
        job.plan = PlannedWithSupply(
            station     = best.station,
            operation   = best.operation,
            vehicle     = vehicle,
            warehouse   = best.warehouse,
            supply_time = best.supply_time,
        )
        outcome.plan = job.plan
        outcome.events.append(JobEvent(
            kind      = JobEventType.VEHICLE_RESERVED,
            job_id    = job.job_id,
            time      = now,
            operation = best.operation.name,
            station   = best.station.station_id,
            payload   = vehicle.vehicle_id,
        ))
        log.debug("%s reserved %s for %s @ %s",
                  job.job_id, vehicle.vehicle_id, best.operation.name, best.station.station_id)
    else:
        ctx.pending_material[job.job_id] = (job, best.station)
        outcome.events.append(JobEvent(
            kind      = JobEventType.MATERIAL_PENDING,
            job_id    = job.job_id,
            time      = now,
            operation = best.operation.name,
            station   = best.station.station_id,
        ))
        log.info("%s: no free AGV for %s, parked until one is released",
                 job.job_id, best.operation.name)
    return outcome
