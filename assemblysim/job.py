"""Assembly job and its decision state machine."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .models import (
    UNPLANNED, Coordinate, JobEvent, JobEventType, MaterialNeed, Operation,
    OperationCount, Plan, Planned, PlannedWithSupply, Product, Station,
)


def _short_id() -> str:
    return uuid.uuid4().hex[:8].upper()


class JobStatus(Enum):
    WAITING    = "waiting"
    QUEUED     = "queued"
    MOVING     = "moving"
    PROCESSING = "processing"
    COMPLETED  = "completed"
    INFEASIBLE = "infeasible"


@dataclass
class JobMetrics:
    dispatched_at:    Optional[float] = None
    completed_at:     Optional[float] = None
    transport_time:   float           = 0.0
    working_time:     float           = 0.0
    waiting_time:     float           = 0.0
    unaccounted_time: float           = 0.0
    last_time:        float           = 0.0
    last_event:       Optional[str]   = None
    moving_since:     Optional[float] = None

    @property
    def total_time(self) -> Optional[float]:
        if self.dispatched_at is None or self.completed_at is None:
            return None
        return self.completed_at - self.dispatched_at


@dataclass(eq=False)
class Job:
    """
    A production order moving through the operations of its product.

    The transition methods mutate the job and return the events to emit; they
    never publish anything themselves.
    """

    product:    Product
    due_date:   float
    job_id:     str        = field(default_factory=lambda: f"JOB-{_short_id()}")
    is_rush:    bool       = False
    position:   Coordinate = (0.0, 0.0)
    released_at: float     = 0.0

    status:               JobStatus       = JobStatus.WAITING
    completed_operations: List[Operation] = field(default_factory=list)
    plan:                 Plan            = UNPLANNED
    # Travel time estimate to the planned station, set by the scoring engine
    planned_transport_time: float = 0.0
    current_station:      Optional[Station] = None
    material_arrived:     bool            = False
    station_history:      List[str]       = field(default_factory=list)
    metrics:              JobMetrics      = field(default_factory=JobMetrics)

    # Derived at every regeneration, never persisted
    sequences:      List[Tuple[Operation, ...]]          = field(default_factory=list)
    position_stats: Dict[int, Dict[str, OperationCount]] = field(default_factory=dict)
    material_needs: List[MaterialNeed]                   = field(default_factory=list)
    forecast_built: bool = False

    # ── Precedence views ──────────────────────────────────────────────────────

    @property
    def uncompleted_operations(self) -> List[Operation]:
        return [o for o in self.product.operations if o not in self.completed_operations]

    @property
    def next_operations(self) -> List[Operation]:
        """Uncompleted operations whose predecessors are all complete."""
        done = {o.name for o in self.completed_operations}
        return [
            o for o in self.uncompleted_operations
            if all(p in done for p in o.predecessors)
        ]

    @property
    def planned_operation(self) -> Optional[Operation]:
        return self.plan.operation if isinstance(self.plan, Planned) else None

    @property
    def planned_station(self) -> Optional[Station]:
        return self.plan.station if isinstance(self.plan, Planned) else None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.INFEASIBLE)

    @property
    def sequence_string(self) -> str:
        return " ".join(f"{o.name};" for o in self.completed_operations)

    def _event(self, kind: JobEventType, now: float, payload=None) -> JobEvent:
        op, st = self.planned_operation, self.planned_station
        return JobEvent(
            kind      = kind,
            job_id    = self.job_id,
            time      = now,
            operation = op.name if op else None,
            station   = st.station_id if st else None,
            payload   = payload,
        )

    def _require_active(self, action: str) -> None:
        if self.is_terminal:
            raise ValueError(f"{self.job_id} is {self.status.value}; cannot {action}")

    # ── Transitions ───────────────────────────────────────────────────────────

    def dispatch(self, now: float) -> List[JobEvent]:
        if self.metrics.dispatched_at is not None:
            raise ValueError(f"{self.job_id} was already dispatched")
        self.metrics.dispatched_at = now
        self.metrics.last_time     = now
        return [self._event(JobEventType.DISPATCHED, now)]

    def start_moving(self, now: float) -> List[JobEvent]:
        self._require_active("start moving")
        self.status = JobStatus.MOVING
        self.current_station = None
        self.metrics.moving_since = now
        return [self._event(JobEventType.STARTED_MOVING, now)]

    def stop_moving(self, now: float, position: Coordinate) -> List[JobEvent]:
        self._require_active("stop moving")
        if self.metrics.moving_since is not None:
            self.metrics.transport_time += now - self.metrics.moving_since
            self.metrics.moving_since = None
        self.position = position
        return [self._event(JobEventType.STOPPED_MOVING, now)]

    def set_queued(self, now: float) -> List[JobEvent]:
        self._require_active("be queued")
        self.status = JobStatus.QUEUED
        self.current_station   = self.planned_station
        self.metrics.last_event = "arrived"
        self.metrics.last_time  = now
        return [self._event(JobEventType.ARRIVED, now)]

    def set_processing(self, now: float) -> List[JobEvent]:
        if self.status is not JobStatus.QUEUED:
            raise ValueError(
                f"{self.job_id} is {self.status.value}; only queued jobs start processing")
        m = self.metrics
        if m.last_event == "processing":
            m.working_time += now - m.last_time
        elif m.last_event == "arrived":
            m.waiting_time += now - m.last_time
        m.last_event = "processing"
        m.last_time  = now
        self.status  = JobStatus.PROCESSING
        return [self._event(JobEventType.PROCESSING_STARTED, now)]

    def complete_operation(self, operation: Operation, now: float) -> List[JobEvent]:
        """
        Record *operation* as done.  Planning for the next operation is the
        caller's job; the plan is cleared here so it cannot be reused.
        """
        self._require_active("complete an operation")
        if operation not in self.next_operations:
            raise ValueError(
                f"{operation.name!r} is not executable for {self.job_id} "
                f"(done: {[o.name for o in self.completed_operations]})"
            )
        self.metrics.working_time += now - self.metrics.last_time
        self.metrics.last_time     = now
        self.completed_operations.append(operation)
        if self.planned_station is not None:
            self.station_history.append(self.planned_station.station_id)
        self.plan = UNPLANNED
        self.material_arrived = False
        self.status = JobStatus.WAITING
        return []

    def abort(self, now: float) -> List[JobEvent]:
        """Cancel the in-flight plan and free its AGV reservation."""
        if not isinstance(self.plan, Planned):
            return []
        events = [self._event(JobEventType.ABORTED, now)]
        if isinstance(self.plan, PlannedWithSupply):
            vehicle = self.plan.vehicle
            if vehicle.reserved_for == self.job_id:
                vehicle.release()
        if self.metrics.moving_since is not None:
            self.metrics.transport_time += now - self.metrics.moving_since
            self.metrics.moving_since = None
        self.plan = UNPLANNED
        self.material_arrived = False
        self.status = JobStatus.WAITING
        return events

    def mark_infeasible(self, now: float) -> List[JobEvent]:
        self._require_active("become infeasible")
        self.plan   = UNPLANNED
        self.status = JobStatus.INFEASIBLE
        remaining = [o.name for o in self.uncompleted_operations]
        return [self._event(JobEventType.INFEASIBLE, now, payload=remaining)]

    def mark_completed(self, now: float) -> List[JobEvent]:
        """Close the job and attribute unexplained time to waiting."""
        self._require_active("complete")
        if self.uncompleted_operations:
            raise ValueError(
                f"{self.job_id} still has work left: "
                f"{[o.name for o in self.uncompleted_operations]}"
            )
        m = self.metrics
        self.status = JobStatus.COMPLETED
        m.completed_at = now
        total = m.total_time or 0.0
        m.unaccounted_time = total - (m.transport_time + m.working_time + m.waiting_time)
        m.waiting_time += m.unaccounted_time
        return [self._event(JobEventType.COMPLETED, now, payload={
            "total":     total,
            "transport": m.transport_time,
            "working":   m.working_time,
            "waiting":   m.waiting_time,
        })]
