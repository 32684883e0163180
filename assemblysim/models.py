"""Data-model classes shared across the simulation."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import (
    TYPE_CHECKING, Any, Callable, Dict, FrozenSet, List, NamedTuple,
    Optional, Sequence, Tuple, Union,
)

if TYPE_CHECKING:
    from .job import Job
    from .routing import Router

Coordinate = Tuple[float, float]


# =============================================================================
# Precedence model
# =============================================================================

@dataclass(frozen=True)
class Operation:
    """One unit of work of a product; immutable and shared by every job."""

    name:              str
    processing_time:   float
    setup_time:        float           = 0.0
    follow_up_time:    float           = 0.0
    material_required: bool            = False
    predecessors:      Tuple[str, ...] = ()
    op_id:             str             = ""

    @property
    def id(self) -> str:
        return self.op_id or self.name

    @property
    def total_time(self) -> float:
        """Setup + processing + follow-up, i.e. how long a station is blocked."""
        return self.setup_time + self.processing_time + self.follow_up_time


@dataclass
class Product:
    """
    Operations of a product type plus their dependency matrix.

    The matrix is square with ``len(operations) + 1`` rows.  Row ``i`` belongs
    to operation ``i``; the last row is the terminal sink and never yields an
    operation.  Column 0 is the source node, which is always satisfied, and
    column ``j >= 1`` stands for operation ``j - 1``.  ``matrix[i][j]`` is True
    when the operation behind column ``j`` must precede operation ``i``.
    """

    name:       str
    operations: Tuple[Operation, ...]
    dependency_matrix: Tuple[Tuple[bool, ...], ...] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.operations = tuple(self.operations)
        names = [op.name for op in self.operations]
        if len(set(names)) != len(names):
            raise ValueError(f"product {self.name!r} has duplicate operation names")
        self._index = {n: i for i, n in enumerate(names)}

        n = len(self.operations)
        rows = []
        for op in self.operations:
            row = [False] * (n + 1)
            for pred in op.predecessors:
                if pred not in self._index:
                    raise ValueError(
                        f"operation {op.name!r} depends on unknown operation {pred!r}"
                    )
                row[self._index[pred] + 1] = True
            if not op.predecessors:
                row[0] = True
            rows.append(tuple(row))
        # Sink: everything has to be finished
        rows.append(tuple([False] + [True] * n))
        self.dependency_matrix = tuple(rows)

        # Bitmask of required operation indices per operation
        self._requirements = tuple(
            sum(1 << (j - 1) for j in range(1, n + 1) if row[j])
            for row in rows[:-1]
        )
        self._check_acyclic()

    @classmethod
    def from_dependency_matrix(
        cls,
        name: str,
        operations: Sequence[Operation],
        matrix: Sequence[Sequence[Any]],
    ) -> "Product":
        """Build a product from an explicit matrix (see class docstring)."""
        n = len(operations)
        if len(matrix) != n + 1 or any(len(row) != n + 1 for row in matrix):
            raise ValueError(
                f"dependency matrix for {n} operations must be {n + 1}x{n + 1}"
            )
        ops = []
        for i, op in enumerate(operations):
            preds = tuple(operations[j - 1].name for j in range(1, n + 1) if matrix[i][j])
            ops.append(replace(op, predecessors=preds))
        return cls(name=name, operations=tuple(ops))

    def _check_acyclic(self) -> None:
        done, remaining = 0, set(range(len(self.operations)))
        while remaining:
            ready = [i for i in remaining if self._requirements[i] & ~done == 0]
            if not ready:
                cyclic = sorted(self.operations[i].name for i in remaining)
                raise ValueError(f"dependency cycle in {self.name!r}: {cyclic}")
            for i in ready:
                done |= 1 << i
                remaining.discard(i)

    # ── Lookups ───────────────────────────────────────────────────────────────

    def index_of(self, operation: Union[Operation, str]) -> int:
        name = operation if isinstance(operation, str) else operation.name
        return self._index[name]

    def operation(self, name: str) -> Operation:
        return self.operations[self._index[name]]

    def mask_of(self, operations: Sequence[Operation]) -> int:
        mask = 0
        for op in operations:
            mask |= 1 << self._index[op.name]
        return mask

    def eligible_indices(self, done_mask: int) -> List[int]:
        """Indices of operations whose matrix row is satisfied by *done_mask*."""
        return [
            i for i, req in enumerate(self._requirements)
            if not done_mask & (1 << i) and req & ~done_mask == 0
        ]


# =============================================================================
# Policies and weights
# =============================================================================

class MaterialPolicy(Enum):
    NONE       = "none"
    REACTIVE   = "reactive"
    CONTROLLED = "controlled"
    PREDICTIVE = "predictive"

    @property
    def reserves_vehicles(self) -> bool:
        """Supply time is scored and an AGV is reserved while planning."""
        return self in (MaterialPolicy.CONTROLLED, MaterialPolicy.PREDICTIVE)

    @property
    def forecasts(self) -> bool:
        return self is MaterialPolicy.PREDICTIVE

    @property
    def moves_material(self) -> bool:
        return self is not MaterialPolicy.NONE


@dataclass(frozen=True)
class StrategyWeights:
    """Weights pA..pH shared by station scoring and queue admission."""

    transport:       float = 1.0   # pA
    processing:      float = 1.0   # pB
    station_busy:    float = 1.0   # pC
    queued_work:     float = 1.0   # pD
    due_date:        float = 1.0   # pE
    setup:           float = 1.0   # pF
    material_supply: float = 1.0   # pG
    material_wait:   float = 1.0   # pH

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "StrategyWeights":
        return cls(**{k: float(v) for k, v in cfg.items() if k in cls.__dataclass_fields__})


# =============================================================================
# Shop-floor entities
# =============================================================================

class JobOperation(NamedTuple):
    job:       "Job"
    operation: Operation


@dataclass(eq=False)
class Warehouse:
    warehouse_id: str
    position:     Coordinate
    unload_delay: float = 30.0
    load_delay:   float = 20.0


@dataclass(eq=False)
class Station:
    """Work centre; the core only reads its queues and pushes assignments."""

    station_id:           str
    origin:               Coordinate
    capabilities:         FrozenSet[str]
    disabled:             bool                   = False
    expected_finish_time: float                  = 0.0
    moving:               List[JobOperation]     = field(default_factory=list)
    queued:               List[JobOperation]     = field(default_factory=list)
    active:               Optional[JobOperation] = None
    last_operation:       Optional[Operation]    = None
    mtbf:                 float                  = 0.0
    mttr:                 float                  = 0.0

    def can_perform(self, operation: Operation) -> bool:
        return operation.name in self.capabilities

    def queued_duration(self) -> float:
        return sum(jo.operation.total_time for jo in self.queued)

    def forget_job(self, job: "Job") -> None:
        """Drop every moving/queued entry that belongs to *job*."""
        self.moving = [jo for jo in self.moving if jo.job is not job]
        self.queued = [jo for jo in self.queued if jo.job is not job]


class VehicleStatus(Enum):
    IDLE     = "idle"
    RESERVED = "reserved"
    MOVING   = "moving"


@dataclass(eq=False)
class Vehicle:
    """An AGV carrying material kits from a warehouse to a station."""

    vehicle_id:   str
    position:     Coordinate
    status:       VehicleStatus  = VehicleStatus.IDLE
    reserved_for: Optional[str]  = None
    expected_supply_completion_time: float = 0.0
    deliveries:   int            = 0
    busy_time:    float          = 0.0

    @property
    def is_available(self) -> bool:
        return self.status is VehicleStatus.IDLE

    def delivery_time_estimate(
        self,
        station: Station,
        warehouses: Sequence[Warehouse],
        router: "Router",
    ) -> Tuple[Optional[Warehouse], float]:
        """
        Best warehouse and time to bring one kit to *station*:
        drive to the warehouse, load, drive to the station.
        """
        best_wh, best_t = None, float("inf")
        for wh in warehouses:
            t = (router.duration(self.position, wh.position)
                 + wh.load_delay
                 + router.duration(wh.position, station.origin))
            if t < best_t:
                best_wh, best_t = wh, t
        return best_wh, best_t

    def reserve(self, job_id: str, completion_time: float) -> None:
        if not self.is_available:
            raise ValueError(f"{self.vehicle_id} is already {self.status.value}")
        self.status       = VehicleStatus.RESERVED
        self.reserved_for = job_id
        self.expected_supply_completion_time = completion_time

    def release(self) -> None:
        self.status       = VehicleStatus.IDLE
        self.reserved_for = None


# =============================================================================
# Planning state
# =============================================================================

@dataclass(frozen=True)
class Unplanned:
    pass


UNPLANNED = Unplanned()


@dataclass(frozen=True)
class Planned:
    station:   Station
    operation: Operation


@dataclass(frozen=True)
class PlannedWithSupply(Planned):
    vehicle:     Vehicle
    warehouse:   Warehouse
    supply_time: float


Plan = Union[Unplanned, Planned, PlannedWithSupply]


# =============================================================================
# Events and forecasts
# =============================================================================

class JobEventType(Enum):
    DISPATCHED                = "job:dispatched"
    STARTED_MOVING            = "job:started_movement"
    STOPPED_MOVING            = "job:stopped_movement"
    ARRIVED                   = "job:arrived_at_station"
    PROCESSING_STARTED        = "job:started_processing"
    COMPLETED                 = "job:completed"
    ABORTED                   = "job:abort"
    INFEASIBLE                = "job:infeasible"
    MATERIAL_NEEDS_CALCULATED = "job:material_calculated"
    VEHICLE_RESERVED          = "material:vehicle_reserved"
    MATERIAL_PENDING          = "material:pending"
    MATERIAL_REQUESTED        = "material:requested"
    MATERIAL_ARRIVED          = "material:arrived"


@dataclass(frozen=True)
class JobEvent:
    kind:      JobEventType
    job_id:    str
    time:      float
    operation: Optional[str] = None
    station:   Optional[str] = None
    payload:   Any           = None


@dataclass
class OperationCount:
    """How often an operation shows up at one position of the sequences."""

    count:          int             = 0
    percentage:     float           = 0.0
    needs_material: bool            = False
    finishing_time: Optional[float] = None


@dataclass(frozen=True)
class MaterialNeed:
    """Forecast of when a pending material-requiring operation will start."""

    job_id:              str
    operation:           str
    operation_id:        str
    earliest_time:       float
    earliest_percentage: float
    earliest_position:   int
    latest_time:         Optional[float] = None
    latest_percentage:   Optional[float] = None
    latest_position:     Optional[int]   = None


@dataclass
class MaterialDelivery:
    """One AGV trip: warehouse pick-up and drop-off at a station."""

    vehicle_id:   str
    job_id:       str
    operation:    str
    station_id:   str
    warehouse_id: str
    requested_at: float
    arrived_at:   Optional[float] = None
    cancelled:    bool            = False

    @property
    def lead_time(self) -> Optional[float]:
        if self.arrived_at is None:
            return None
        return self.arrived_at - self.requested_at


@dataclass
class BreakdownEvent:
    """A station failure and subsequent repair."""

    station_id:      str   = ""
    occurred_at:     float = 0.0
    repair_duration: float = 0.0
    aborted_jobs:    int   = 0

    @property
    def resolved_at(self) -> float:
        return self.occurred_at + self.repair_duration


# =============================================================================
# Dispatch context
# =============================================================================

@dataclass
class AdmissionNormalizers:
    """Running maxima that normalise the queue admission terms."""

    max_remaining_time_to_finish: float = 0.0
    max_setup_time:               float = 0.0
    max_material_wait:            float = 0.0

    def observe(
        self,
        remaining_time_to_finish: Optional[float] = None,
        setup_time: Optional[float] = None,
        material_wait: Optional[float] = None,
    ) -> None:
        if remaining_time_to_finish is not None:
            self.max_remaining_time_to_finish = max(
                self.max_remaining_time_to_finish, remaining_time_to_finish)
        if setup_time is not None:
            self.max_setup_time = max(self.max_setup_time, setup_time)
        if material_wait is not None:
            self.max_material_wait = max(self.max_material_wait, material_wait)


@dataclass
class DispatchContext:
    """Everything a planning call may read; the only shared mutation is AGV reservation."""

    clock:       Callable[[], float]
    router:      "Router"
    stations:    List[Station]
    vehicles:    List[Vehicle]
    warehouses:  List[Warehouse]
    policy:      MaterialPolicy    = MaterialPolicy.NONE
    weights:     StrategyWeights   = field(default_factory=StrategyWeights)
    normalizers: AdmissionNormalizers = field(default_factory=AdmissionNormalizers)
    # job id → (job, station) waiting for a free AGV, oldest first
    pending_material: "OrderedDict[str, Tuple[Job, Station]]" = field(
        default_factory=OrderedDict)

    @property
    def now(self) -> float:
        return self.clock()

    def available_vehicles(self) -> List[Vehicle]:
        return [v for v in self.vehicles if v.is_available]

    def vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        return next((v for v in self.vehicles if v.vehicle_id == vehicle_id), None)
