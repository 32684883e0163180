"""
AssemblyFactory — SimPy discrete-event simulation of a flexible assembly hall.

Job life cycle:

  Order release ── Job (product, due date) at the source
        │
   [Scoring]  find_next_station ── (station, operation[, AGV, warehouse])
        │                               │
   moving (timeout) ◄── breakdown       └── AGV delivery (warehouse → station)
        │              interrupt → abort → replan
   station queue ── forecast material needs (predictive policy)
        │
   [Station worker]  select_job_operation ── waits for material ── process
        │
   next operation … or travel to the sink and complete
"""

from __future__ import annotations

import logging
import random
from typing import Dict, List, Optional

import simpy

from .admission import effective_setup_time, select_job_operation
from .config import (
    AGVS, PRODUCTS, RELEASE, SCENARIOS, SINK_POSITION, SOURCE_POSITION,
    STATIONS, STRATEGIES, TRANSPORT_SPEED_M_S, WAREHOUSES,
)
from .forecasting import update_material_forecast
from .job import Job
from .metrics import MetricsCollector
from .models import (
    BreakdownEvent, DispatchContext, JobEvent, JobEventType, JobOperation,
    MaterialDelivery, MaterialPolicy, Operation, Planned, PlannedWithSupply,
    Product, Station, StrategyWeights, Vehicle, VehicleStatus, Warehouse,
)
from .routing import Router
from .scoring import best_delivery, find_next_station

log = logging.getLogger(__name__)

SNAPSHOT_INTERVAL_S = 900


def build_products(cfg: Dict[str, dict] = PRODUCTS) -> Dict[str, Product]:
    products = {}
    for key, product_cfg in cfg.items():
        ops = tuple(
            Operation(
                name              = o["name"],
                processing_time   = float(o["processing"]),
                setup_time        = float(o.get("setup", 0)),
                follow_up_time    = float(o.get("follow_up", 0)),
                material_required = bool(o.get("material", False)),
                predecessors      = tuple(o.get("predecessors", ())),
                op_id             = f"{key}:{o['name']}",
            )
            for o in product_cfg["operations"]
        )
        products[key] = Product(name=key, operations=ops)
    return products


class AssemblyFactory:
    """
    Shop-floor model: job carriers, stations and the AGV fleet.

    Usage::

        env     = simpy.Environment()
        factory = AssemblyFactory(env, scenario="predictive", seed=42)
        factory.register_processes()
        env.run(until=SIM_DURATION)
        kpis = factory.metrics.compute_kpis(SIM_DURATION)
    """

    def __init__(
        self,
        env: simpy.Environment,
        scenario: str = "predictive",
        strategy: str = "balanced",
        seed: int = 42,
        n_jobs: Optional[int] = None,
    ) -> None:
        self.env      = env
        self.scenario = scenario
        self.scen     = SCENARIOS[scenario]
        self.strategy = strategy
        self.policy   = MaterialPolicy(self.scen["policy"])
        self.n_jobs   = RELEASE["jobs"] if n_jobs is None else n_jobs

        random.seed(seed)

        # ── Layout ────────────────────────────────────────────────────────────
        self.products = build_products()
        self.router   = Router(TRANSPORT_SPEED_M_S)
        self.stations: List[Station] = [
            Station(
                station_id   = sid,
                origin       = tuple(cfg["origin"]),
                capabilities = frozenset(cfg["capabilities"]),
                mtbf         = cfg.get("mtbf_s", 0.0),
                mttr         = cfg.get("mttr_s", 0.0),
            )
            for sid, cfg in STATIONS.items()
        ]
        self.warehouses: List[Warehouse] = [
            Warehouse(
                warehouse_id = wid,
                position     = tuple(cfg["position"]),
                unload_delay = cfg["unload_delay_s"],
                load_delay   = cfg["load_delay_s"],
            )
            for wid, cfg in WAREHOUSES.items()
        ]
        self.vehicles: List[Vehicle] = [
            Vehicle(vehicle_id=vid, position=tuple(cfg["position"]))
            for vid, cfg in AGVS.items()
        ]

        self.ctx = DispatchContext(
            clock      = lambda: self.env.now,
            router     = self.router,
            stations   = self.stations,
            vehicles   = self.vehicles,
            warehouses = self.warehouses,
            policy     = self.policy,
            weights    = StrategyWeights.from_config(STRATEGIES[strategy]),
        )

        # ── Metrics ───────────────────────────────────────────────────────────
        self.metrics = MetricsCollector(env)

        # ── Internal state ────────────────────────────────────────────────────
        self.jobs:           Dict[str, Job] = {}     # active
        self.completed_jobs: List[Job]      = []
        self._job_procs:  Dict[str, simpy.Process] = {}
        self._op_done:    Dict[str, simpy.Event]   = {}
        self._material:   Dict[str, simpy.Event]   = {}
        self._wakeup:     Dict[str, simpy.Event]   = {}
        # vehicle id → (delivery process, trip record)
        self._deliveries: Dict[str, tuple] = {}

    # =========================================================================
    # Event dispatch
    # =========================================================================

    def apply(self, events: List[JobEvent]) -> None:
        """Single sink for the events returned by the planning code."""
        for ev in events:
            self.metrics.record_event(ev)
            if ev.kind is JobEventType.INFEASIBLE:
                log.warning("%8.1f  %s infeasible, remaining %s", ev.time, ev.job_id, ev.payload)
            else:
                log.debug("%8.1f  %-28s %s %s @ %s",
                          ev.time, ev.kind.value, ev.job_id, ev.operation, ev.station)

    # =========================================================================
    # Station signalling
    # =========================================================================

    def _wait(self, station: Station) -> simpy.Event:
        ev = self._wakeup.get(station.station_id)
        if ev is None or ev.triggered:
            ev = self._wakeup[station.station_id] = self.env.event()
        return ev

    def _notify(self, station: Station) -> None:
        ev = self._wakeup.get(station.station_id)
        if ev is not None and not ev.triggered:
            ev.succeed()

    # =========================================================================
    # Material supply
    # =========================================================================

    def _reserve_supply(self, job: Job) -> bool:
        """
        Reserve the AGV that can supply the job's planned station first.
        Used by the reactive policy right after planning and by the
        pending-material retry of every policy.
        """
        plan = job.plan
        vehicle, wh, supply = best_delivery(self.ctx.available_vehicles(), plan.station, self.ctx)
        if vehicle is None:
            return False
        vehicle.reserve(job.job_id, self.env.now + supply)
        job.plan = PlannedWithSupply(
            station     = plan.station,
            operation   = plan.operation,
            vehicle     = vehicle,
            warehouse   = wh,
            supply_time = supply,
        )
        self.apply([JobEvent(
            kind      = JobEventType.VEHICLE_RESERVED,
            job_id    = job.job_id,
            time      = self.env.now,
            operation = plan.operation.name,
            station   = plan.station.station_id,
            payload   = vehicle.vehicle_id,
        )])
        return True

    def _start_delivery(self, job: Job) -> None:
        plan = job.plan
        trip = MaterialDelivery(
            vehicle_id   = plan.vehicle.vehicle_id,
            job_id       = job.job_id,
            operation    = plan.operation.name,
            station_id   = plan.station.station_id,
            warehouse_id = plan.warehouse.warehouse_id,
            requested_at = self.env.now,
        )
        self.metrics.deliveries.append(trip)
        proc = self.env.process(self.deliver(plan.vehicle, job, plan.station, plan.warehouse, trip))
        self._deliveries[plan.vehicle.vehicle_id] = (proc, trip)
        self.apply([JobEvent(
            kind      = JobEventType.MATERIAL_REQUESTED,
            job_id    = job.job_id,
            time      = self.env.now,
            operation = plan.operation.name,
            station   = plan.station.station_id,
            payload   = plan.vehicle.vehicle_id,
        )])

    def _cancel_delivery(self, job: Job) -> None:
        if not isinstance(job.plan, PlannedWithSupply):
            return
        vid = job.plan.vehicle.vehicle_id
        running = self._deliveries.get(vid)
        if running is None or running[1].job_id != job.job_id:
            return
        proc, trip = self._deliveries.pop(vid)
        if proc.is_alive:
            trip.cancelled = True
            proc.interrupt("plan aborted")

    def _retry_pending(self) -> None:
        """Hand freed AGVs to parked jobs, oldest first."""
        pending = self.ctx.pending_material
        for job_id, (job, station) in list(pending.items()):
            if not self.ctx.available_vehicles():
                break
            if job.planned_station is not station or job.material_arrived:
                del pending[job_id]
                continue
            if self._reserve_supply(job):
                del pending[job_id]
                self._start_delivery(job)
                log.info("%s: pending material for %s now on its way",
                         job_id, job.planned_operation.name)

    def deliver(
        self,
        vehicle: Vehicle,
        job: Job,
        station: Station,
        warehouse: Warehouse,
        trip: MaterialDelivery,
    ):
        """
        One AGV round: drive to the warehouse, load a kit, drive to the
        station.  An aborted plan interrupts the trip; the reservation was
        already released by the job.
        """
        started = self.env.now
        vehicle.status = VehicleStatus.MOVING
        # current leg: (from, to, departure); None while loading
        leg = (vehicle.position, warehouse.position, started)
        try:
            yield self.env.timeout(self.router.duration(vehicle.position, warehouse.position))
            vehicle.position = warehouse.position
            leg = None
            yield self.env.timeout(warehouse.load_delay)
            leg = (warehouse.position, station.origin, self.env.now)
            yield self.env.timeout(self.router.duration(warehouse.position, station.origin))
        except simpy.Interrupt:
            if leg is not None:
                origin, target, departed = leg
                vehicle.position = self.router.position_after(origin, target, self.env.now - departed)
            vehicle.busy_time += self.env.now - started
            log.info("%s: delivery for %s cancelled at %s",
                     vehicle.vehicle_id, job.job_id, vehicle.position)
            return

        vehicle.position   = station.origin
        vehicle.deliveries += 1
        vehicle.busy_time  += self.env.now - started
        trip.arrived_at     = self.env.now
        self._deliveries.pop(vehicle.vehicle_id, None)

        job.material_arrived = True
        self.apply([JobEvent(
            kind      = JobEventType.MATERIAL_ARRIVED,
            job_id    = job.job_id,
            time      = self.env.now,
            operation = trip.operation,
            station   = station.station_id,
            payload   = vehicle.vehicle_id,
        )])
        ev = self._material.get(job.job_id)
        if ev is not None and not ev.triggered:
            ev.succeed()

        vehicle.release()
        self._retry_pending()

    # =========================================================================
    # Jobs
    # =========================================================================

    def order_release(self):
        """
        Releases production orders at the source via a Poisson process.

        Due dates are a uniform slack after release; rush orders get a
        fraction of it.
        """
        names   = list(self.products)
        weights = [PRODUCTS[p]["demand_share"] for p in names]
        for i in range(self.n_jobs):
            yield self.env.timeout(random.expovariate(1.0 / RELEASE["mean_interarrival_s"]))

            is_rush = random.random() < RELEASE["rush_fraction"]
            slack   = random.uniform(RELEASE["due_offset_min_s"], RELEASE["due_offset_max_s"])
            if is_rush:
                slack *= RELEASE["rush_due_factor"]

            job = Job(
                product     = self.products[random.choices(names, weights=weights)[0]],
                due_date    = self.env.now + slack,
                job_id      = f"JOB-{i + 1:04d}",
                is_rush     = is_rush,
                position    = SOURCE_POSITION,
                released_at = self.env.now,
            )
            self.jobs[job.job_id] = job
            self.metrics.released_jobs.append(job)
            self._job_procs[job.job_id] = self.env.process(self.job_flow(job))

    def _plan(self, job: Job) -> bool:
        outcome = find_next_station(job, self.ctx)
        self.apply(outcome.events)
        if not isinstance(job.plan, Planned):
            return False

        if not job.material_arrived:
            self._material[job.job_id] = self.env.event()
            if isinstance(job.plan, PlannedWithSupply):
                self._start_delivery(job)
            elif self.policy is MaterialPolicy.REACTIVE:
                if self._reserve_supply(job):
                    self._start_delivery(job)
                else:
                    self.ctx.pending_material[job.job_id] = (job, job.plan.station)
                    self.apply([JobEvent(
                        kind      = JobEventType.MATERIAL_PENDING,
                        job_id    = job.job_id,
                        time      = self.env.now,
                        operation = job.plan.operation.name,
                        station   = job.plan.station.station_id,
                    )])
        return True

    def job_flow(self, job: Job):
        """Decision loop of one job, from release to the sink."""
        self.apply(job.dispatch(self.env.now))

        while job.uncompleted_operations:
            if not self._plan(job):
                self.apply(job.mark_infeasible(self.env.now))
                self.metrics.infeasible_jobs.append(job)
                self._retire(job)
                return

            station, operation = job.plan.station, job.plan.operation
            jo = JobOperation(job, operation)

            if job.current_station is not station:
                station.moving.append(jo)
                self.apply(job.start_moving(self.env.now))
                try:
                    yield self.env.timeout(job.planned_transport_time)
                except simpy.Interrupt:
                    station.forget_job(job)
                    self.ctx.pending_material.pop(job.job_id, None)
                    self._cancel_delivery(job)
                    self.apply(job.abort(self.env.now))
                    self._retry_pending()
                    continue
                station.moving.remove(jo)
                self.apply(job.stop_moving(self.env.now, station.origin))

            station.queued.append(jo)
            self.apply(job.set_queued(self.env.now))
            if self.policy.forecasts:
                wh = job.plan.warehouse if isinstance(job.plan, PlannedWithSupply) else None
                self.apply(update_material_forecast(job, self.ctx, station, wh))

            done = self._op_done[job.job_id] = self.env.event()
            self._notify(station)
            yield done

        yield from self._finish(job)

    def _finish(self, job: Job):
        for station in self.stations:
            station.forget_job(job)
        if job.position != SINK_POSITION:
            self.apply(job.start_moving(self.env.now))
            yield self.env.timeout(self.router.duration(job.position, SINK_POSITION))
            self.apply(job.stop_moving(self.env.now, SINK_POSITION))
        self.apply(job.mark_completed(self.env.now))
        self.completed_jobs.append(job)
        self._retire(job)

    def _retire(self, job: Job) -> None:
        self.jobs.pop(job.job_id, None)
        self._job_procs.pop(job.job_id, None)
        self._material.pop(job.job_id, None)

    # =========================================================================
    # Stations
    # =========================================================================

    def station_worker(self, station: Station):
        """
        Serves one station: admit the best queued job, wait for its kit,
        set up, process and clear down.  The job is released before the
        follow-up time so it can travel while the station is being cleared.
        """
        while True:
            if station.disabled or not station.queued:
                yield self._wait(station)
                continue

            jo = select_job_operation(station, self.ctx)
            station.queued.remove(jo)
            station.active = jo
            job, op = jo

            if not job.material_arrived:
                yield self._material[job.job_id]

            setup = effective_setup_time(op, station.last_operation)
            station.expected_finish_time = self.env.now + setup + op.processing_time + op.follow_up_time
            self.apply(job.set_processing(self.env.now))
            yield self.env.timeout(setup + op.processing_time)

            self.apply(job.complete_operation(op, self.env.now))
            station.last_operation = op
            self.metrics.record_busy(station.station_id, setup + op.processing_time + op.follow_up_time)
            self._op_done.pop(job.job_id).succeed()

            yield self.env.timeout(op.follow_up_time)
            station.active = None

    def station_breakdowns(self, station: Station):
        """
        Random failures (exponential MTBF / MTTR).  Jobs on their way to the
        station are interrupted and replan; queued jobs wait for the repair.
        """
        while True:
            yield self.env.timeout(random.expovariate(1.0 / station.mtbf))
            repair = random.expovariate(1.0 / station.mttr)
            station.disabled = True

            victims = [jo.job for jo in station.moving]
            for job in victims:
                self._job_procs[job.job_id].interrupt("station down")
            self.metrics.breakdowns.append(BreakdownEvent(
                station_id      = station.station_id,
                occurred_at     = self.env.now,
                repair_duration = repair,
                aborted_jobs    = len(victims),
            ))
            log.warning("%8.1f  %s down for %.0f s, %d jobs rerouted",
                        self.env.now, station.station_id, repair, len(victims))

            yield self.env.timeout(repair)
            station.disabled = False
            self._notify(station)

    # =========================================================================
    # Monitoring
    # =========================================================================

    def recorder(self):
        """Snapshots shop-floor state at a fixed interval for trend charts."""
        while True:
            yield self.env.timeout(SNAPSHOT_INTERVAL_S)
            self.metrics.snapshots.append({
                "time":      self.env.now,
                "wip":       len(self.jobs),
                "completed": len(self.completed_jobs),
                "queued":    {s.station_id: len(s.queued) for s in self.stations},
                "agv_busy":  sum(1 for v in self.vehicles if not v.is_available),
                "pending":   len(self.ctx.pending_material),
            })

    # =========================================================================
    # Bootstrap
    # =========================================================================

    def register_processes(self) -> None:
        """
        Register every SimPy process.  Call this before ``env.run()``.
        """
        env = self.env

        env.process(self.order_release())
        for station in self.stations:
            env.process(self.station_worker(station))
            if self.scen["breakdowns"] and station.mtbf > 0 and station.mttr > 0:
                env.process(self.station_breakdowns(station))

        env.process(self.recorder())
