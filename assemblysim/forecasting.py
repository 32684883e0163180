"""
Material-need forecasting.

From the enumerated sequences of a job, estimate for every pending operation
that needs material the earliest and latest time it can start, and how likely
the earliest position is.  The vehicle dispatch side uses these records to
send AGVs ahead of the job.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple

from .models import (
    DispatchContext, JobEvent, JobEventType, MaterialNeed, Operation, Station,
    Warehouse,
)
from .sequences import regenerate_sequences

if TYPE_CHECKING:
    from .job import Job

log = logging.getLogger(__name__)

# Allowance per operation in the prefix for moving between stations
STEP_ALLOWANCE = 1.0


def locate_material_operations(
    sequences: Sequence[Sequence[Operation]],
) -> Tuple[Dict[str, int], Dict[str, int], Dict[str, Tuple[Operation, ...]], Dict[str, Tuple[Operation, ...]]]:
    """
    Earliest and latest position of each material operation, with the
    operations that precede it at that position.  First seen wins on ties.
    """
    earliest: Dict[str, int] = {}
    latest:   Dict[str, int] = {}
    before_earliest: Dict[str, Tuple[Operation, ...]] = {}
    before_latest:   Dict[str, Tuple[Operation, ...]] = {}

    for seq in sequences:
        for index, op in enumerate(seq):
            if not op.material_required:
                continue
            if op.name not in earliest or index < earliest[op.name]:
                earliest[op.name] = index
                before_earliest[op.name] = tuple(seq[:index])
            if op.name not in latest or index > latest[op.name]:
                latest[op.name] = index
                before_latest[op.name] = tuple(seq[:index])
    return earliest, latest, before_earliest, before_latest


def contention_time(job: "Job", station: Optional[Station]) -> float:
    """Work at *station* that will be served before *job* gets its turn."""
    if station is None:
        return 0.0
    t = 0.0
    for jo in station.moving:
        if jo.job is job:
            continue
        # Only simultaneous arrivals are counted as competing
        if jo.job.planned_transport_time == job.planned_transport_time:
            t += jo.operation.processing_time
    if station.active is not None:
        t += station.queued_duration()
    return t


def time_to_operation(
    job: "Job",
    now: float,
    preceding: Sequence[Operation],
    station: Optional[Station] = None,
    warehouse: Optional[Warehouse] = None,
    load_delay: float = 0.0,
) -> float:
    planned = job.planned_operation
    t = now + (planned.processing_time if planned else 0.0)

    # The very first forecast of a job waits for its own kit to be unloaded
    if not job.forecast_built and planned is not None and planned.material_required \
            and warehouse is not None:
        t += warehouse.unload_delay

    t += contention_time(job, station)

    for op in preceding:
        t += op.processing_time + STEP_ALLOWANCE
        if op.material_required:
            t += load_delay
    return t


def forecast_material_needs(
    job: "Job",
    now: float,
    station: Optional[Station] = None,
    warehouse: Optional[Warehouse] = None,
    load_delay: float = 0.0,
) -> List[MaterialNeed]:
    """One :class:`MaterialNeed` per material operation in ``job.sequences``."""
    earliest, latest, before_earliest, before_latest = locate_material_operations(job.sequences)

    needs: List[MaterialNeed] = []
    for name, position in earliest.items():
        earliest_time = time_to_operation(
            job, now, before_earliest[name], station, warehouse, load_delay)
        latest_time = None
        if name in before_latest:
            latest_time = time_to_operation(
                job, now, before_latest[name], station, warehouse, load_delay)

        entry = job.position_stats.get(position, {}).get(name)
        needs.append(MaterialNeed(
            job_id              = job.job_id,
            operation           = name,
            operation_id        = job.product.operation(name).id,
            earliest_time       = earliest_time,
            earliest_percentage = entry.percentage if entry else 0.0,
            earliest_position   = position,
            latest_time         = latest_time,
            # Not derived from the statistics; see DESIGN.md
            latest_percentage   = 100.0 if latest_time is not None else None,
            latest_position     = latest.get(name),
        ))
    return needs


def update_material_forecast(
    job: "Job",
    ctx: DispatchContext,
    station: Optional[Station] = None,
    warehouse: Optional[Warehouse] = None,
) -> List[JobEvent]:
    """
    Regenerate the job's sequences and replace its material needs.

    Returns the ``MATERIAL_NEEDS_CALCULATED`` event that announces the list.
    """
    regenerate_sequences(job)
    loading = warehouse or (ctx.warehouses[0] if ctx.warehouses else None)
    load_delay = loading.load_delay if loading is not None else 0.0

    job.material_needs = forecast_material_needs(
        job, ctx.now, station, warehouse, load_delay)
    job.forecast_built = True
    log.debug("%s: %d material needs forecast", job.job_id, len(job.material_needs))

    op = job.planned_operation
    return [JobEvent(
        kind      = JobEventType.MATERIAL_NEEDS_CALCULATED,
        job_id    = job.job_id,
        time      = ctx.now,
        operation = op.name if op else None,
        station   = station.station_id if station else None,
        payload   = list(job.material_needs),
    )]
